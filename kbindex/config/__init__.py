"""Configuration module -- exports Settings and load_config."""

from kbindex.config.loader import load_config
from kbindex.config.settings import Settings

__all__ = ["Settings", "load_config"]
