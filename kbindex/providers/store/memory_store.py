"""Dict-backed document store for tests and one-shot CLI runs."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

import structlog

from kbindex.interfaces.document_store import IDocumentStore
from kbindex.models.document import (
    Document,
    DocumentSegment,
    Embedding,
    SegmentStatus,
    new_id,
)

logger = structlog.get_logger(logger_name=__name__)


class InMemoryDocumentStore(IDocumentStore):
    """Keeps every record in process memory; nothing survives a restart."""

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._segments: dict[str, DocumentSegment] = {}
        self._embeddings: dict[str, Embedding] = {}
        self._embeddings_by_hash: dict[str, str] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def save_document(self, document: Document) -> Document:
        self._documents[document.id] = document
        return document

    async def get_document(self, document_id: str) -> Document | None:
        return self._documents.get(document_id)

    async def update_document(self, document_id: str, **fields: Any) -> Document:
        async with self._lock:
            current = self._documents.get(document_id)
            if current is None:
                raise KeyError(f"Document {document_id} not found")
            updated = current.model_copy(update=fields)
            self._documents[document_id] = updated
            return updated

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------

    async def insert_segment(self, segment: DocumentSegment) -> DocumentSegment:
        stored = segment if segment.id else segment.model_copy(update={"id": new_id()})
        self._segments[stored.id] = stored  # type: ignore[index]
        return stored

    async def get_segment(self, segment_id: str) -> DocumentSegment | None:
        return self._segments.get(segment_id)

    async def list_segments(
        self,
        document_id: str,
        statuses: Iterable[SegmentStatus] | None = None,
    ) -> list[DocumentSegment]:
        wanted = set(statuses) if statuses is not None else None
        segments = [
            s
            for s in self._segments.values()
            if s.document_id == document_id and (wanted is None or s.status in wanted)
        ]
        return sorted(segments, key=lambda s: s.position)

    async def update_segment(self, segment_id: str, **fields: Any) -> DocumentSegment:
        async with self._lock:
            current = self._segments.get(segment_id)
            if current is None:
                raise KeyError(f"Segment {segment_id} not found")
            updated = current.model_copy(update=fields)
            self._segments[segment_id] = updated
            return updated

    async def delete_segments(self, document_id: str) -> int:
        doomed = [sid for sid, s in self._segments.items() if s.document_id == document_id]
        for sid in doomed:
            del self._segments[sid]
        return len(doomed)

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    async def find_embedding_by_hash(self, content_hash: str) -> Embedding | None:
        embedding_id = self._embeddings_by_hash.get(content_hash)
        return self._embeddings.get(embedding_id) if embedding_id else None

    async def insert_embedding(self, embedding: Embedding) -> Embedding:
        async with self._lock:
            existing_id = self._embeddings_by_hash.get(embedding.hash)
            if existing_id is not None:
                return self._embeddings[existing_id]
            self._embeddings[embedding.id] = embedding
            self._embeddings_by_hash[embedding.hash] = embedding.id
            return embedding

    async def get_embedding(self, embedding_id: str) -> Embedding | None:
        return self._embeddings.get(embedding_id)
