"""Document store implementations."""

from kbindex.providers.store.memory_store import InMemoryDocumentStore
from kbindex.providers.store.sqlite_store import SQLiteDocumentStore

__all__ = ["InMemoryDocumentStore", "SQLiteDocumentStore"]
