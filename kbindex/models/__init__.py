"""Pydantic v2 data models for kbindex.

All models are frozen; state changes produce new instances via
``model_copy(update={...})``.
"""

from kbindex.models.config import IndexingConfig, SplitConfig, SplitStrategy
from kbindex.models.document import (
    UNRESOLVED_SEGMENT_STATUSES,
    Document,
    DocumentSegment,
    DocumentStatus,
    Embedding,
    SegmentStatus,
    SegmentType,
    new_id,
)
from kbindex.models.embedding import (
    EmbeddingResponse,
    EmbeddingResult,
    EmbeddingTask,
    ProviderKind,
)
from kbindex.models.entities import (
    EntityExtractionConfig,
    EntityExtractionResult,
    ExtractionMethod,
)
from kbindex.models.pipeline import PipelineStage

__all__ = [
    "UNRESOLVED_SEGMENT_STATUSES",
    "Document",
    "DocumentSegment",
    "DocumentStatus",
    "Embedding",
    "EmbeddingResponse",
    "EmbeddingResult",
    "EmbeddingTask",
    "EntityExtractionConfig",
    "EntityExtractionResult",
    "ExtractionMethod",
    "IndexingConfig",
    "PipelineStage",
    "ProviderKind",
    "SegmentStatus",
    "SegmentType",
    "SplitConfig",
    "SplitStrategy",
    "new_id",
]
