"""Concrete adapters for the contracts in :mod:`kbindex.interfaces`."""
