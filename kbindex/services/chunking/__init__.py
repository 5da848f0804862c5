"""Chunking engine: cleaning, strategy splitting and parent/child trees."""

from kbindex.services.chunking.cjk_splitter import CJKTextSplitter
from kbindex.services.chunking.hierarchical_chunker import HierarchicalChunker, SegmentDraft
from kbindex.services.chunking.text_cleaner import (
    clean_text,
    cjk_ratio,
    count_words,
    estimate_tokens,
    is_cjk_text,
    preprocess_cjk,
)
from kbindex.services.chunking.text_splitter import DEFAULT_SEPARATORS, TextSplitter, min_chunk_size

__all__ = [
    "CJKTextSplitter",
    "DEFAULT_SEPARATORS",
    "HierarchicalChunker",
    "SegmentDraft",
    "TextSplitter",
    "clean_text",
    "cjk_ratio",
    "count_words",
    "estimate_tokens",
    "is_cjk_text",
    "min_chunk_size",
    "preprocess_cjk",
]
