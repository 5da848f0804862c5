"""Source-text extractors."""

from kbindex.providers.extraction.file_extractor import FileTextExtractor

__all__ = ["FileTextExtractor"]
