"""Persistent record models for documents, segments, and embeddings.

Defines Pydantic v2 models for the three persisted record types and the
status enums that drive the indexing state machine.  All models use frozen
config; stores and stages produce new instances via
``model_copy(update={...})`` instead of mutating in place.

Status flow (document)::

    waiting → parsing → splitting → chunking → chunked → embedding
            → embedded → ner_processing → completed

with ``chunking_failed``, ``embedding_failed`` and ``ner_failed`` reachable
from the matching in-progress state.  Segments follow the shorter
``waiting → chunked → embedding → embedded → ner_processing → completed``
path with ``ner_failed`` as their only failure branch.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kbindex.models.config import IndexingConfig


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


def new_id() -> str:
    """Return a fresh record identifier."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Status enums
# ---------------------------------------------------------------------------
class DocumentStatus(str, Enum):  # noqa: UP042
    """Indexing status of a document."""

    WAITING = "waiting"
    PARSING = "parsing"
    SPLITTING = "splitting"
    CHUNKING = "chunking"
    CHUNKED = "chunked"
    EMBEDDING = "embedding"
    EMBEDDED = "embedded"
    NER_PROCESSING = "ner_processing"
    COMPLETED = "completed"
    CHUNKING_FAILED = "chunking_failed"
    EMBEDDING_FAILED = "embedding_failed"
    NER_FAILED = "ner_failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_DOCUMENT_STATUSES

    @property
    def is_failed(self) -> bool:
        return self.value.endswith("_failed")


_TERMINAL_DOCUMENT_STATUSES = frozenset(
    {
        DocumentStatus.COMPLETED,
        DocumentStatus.CHUNKING_FAILED,
        DocumentStatus.EMBEDDING_FAILED,
        DocumentStatus.NER_FAILED,
    }
)


class SegmentStatus(str, Enum):  # noqa: UP042
    """Processing status of a single segment."""

    WAITING = "waiting"
    CHUNKED = "chunked"
    EMBEDDING = "embedding"
    EMBEDDED = "embedded"
    NER_PROCESSING = "ner_processing"
    COMPLETED = "completed"
    NER_FAILED = "ner_failed"


# Segments that still need an embedding.  A document is never completed
# while any of its segments sits in one of these states.
UNRESOLVED_SEGMENT_STATUSES = frozenset(
    {SegmentStatus.WAITING, SegmentStatus.CHUNKED, SegmentStatus.EMBEDDING}
)


class SegmentType(str, Enum):  # noqa: UP042
    """Role of a segment in flat or parent/child chunking."""

    PARENT = "parent"
    CHILD = "child"
    CHUNK = "chunk"


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------
class Document(BaseModel):
    """A source document moving through the indexing pipeline.

    ``embedding_dimensions`` is set once, from the first successful
    embedding, and every later embedding attached to this document must
    share it.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    dataset_id: str = "default"
    name: str = ""
    source_path: str | None = None
    doc_type: str = "txt"
    # Already-decoded text; when empty the chunking stage runs the extractor.
    source_text: str | None = None
    indexing_status: DocumentStatus = DocumentStatus.WAITING
    indexing_config: IndexingConfig = Field(default_factory=IndexingConfig)
    embedding_model: str | None = None
    embedding_dimensions: int | None = None
    # Per-stage start/complete timestamps and counts, e.g.
    # {"chunking": {"started_at": ..., "completed_at": ..., "segments": 12}}
    processing_metadata: dict[str, Any] = Field(default_factory=dict)
    last_error: str | None = None
    stopped_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# DocumentSegment
# ---------------------------------------------------------------------------
class DocumentSegment(BaseModel):
    """A contiguous span of a document stored as an indexable unit.

    ``id`` is ``None`` until the store assigns one on insert.  For
    parent/child chunking, ``parent_id`` references a ``parent`` segment of
    the same document and ``child_count`` on the parent equals the number
    of its live children.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    document_id: str
    dataset_id: str = "default"
    position: int = Field(ge=1)
    content: str
    word_count: int = Field(default=0, ge=0)
    tokens: int = Field(default=0, ge=0)
    # {"extracted": [...], "count": n, "extracted_at": iso-timestamp}
    keywords: dict[str, Any] = Field(default_factory=dict)
    status: SegmentStatus = SegmentStatus.WAITING
    embedding_id: str | None = None
    parent_id: str | None = None
    segment_type: SegmentType = SegmentType.CHUNK
    hierarchy_level: int = Field(default=1, ge=1)
    child_order: int | None = None
    child_count: int = Field(default=0, ge=0)
    hierarchy_metadata: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Embedding
# ---------------------------------------------------------------------------
class Embedding(BaseModel):
    """An immutable embedding vector, shared by every segment with the same hash."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    model_name: str
    provider_name: str
    # sha256 of content + model name; the dedup/reuse key.
    hash: str
    embedding: list[float]
    dimensions: int = 0
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="before")
    @classmethod
    def _derive_dimensions(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("dimensions"):
            data = {**data, "dimensions": len(data.get("embedding") or [])}
        return data
