"""Abstract base class for document, segment, and embedding persistence.

The store is the only shared state between pipeline stages.  Stages read
the document, work on its segments, and write back new immutable model
instances; nothing is cached between stage runs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from kbindex.models.document import (
    Document,
    DocumentSegment,
    Embedding,
    SegmentStatus,
)


# Concrete implementations:
#   InMemoryDocumentStore -- dict-backed, used by tests and the ``split`` CLI
#   SQLiteDocumentStore   -- aiosqlite with JSON columns
# Located in: kbindex/providers/store/
class IDocumentStore(ABC):
    """Contract for persisting documents, segments and embeddings."""

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_document(self, document: Document) -> Document:
        """Insert or replace *document* and return it."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        """Return the document with *document_id*, or ``None``."""

    @abstractmethod
    async def update_document(self, document_id: str, **fields: Any) -> Document:
        """Apply *fields* to the stored document and return the new instance.

        Raises
        ------
        KeyError
            If no document with *document_id* exists.
        """

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_segment(self, segment: DocumentSegment) -> DocumentSegment:
        """Persist *segment*, assigning an ``id`` if it has none.

        Returns
        -------
        DocumentSegment
            The stored segment, with its assigned ``id``.
        """

    @abstractmethod
    async def get_segment(self, segment_id: str) -> DocumentSegment | None:
        """Return the segment with *segment_id*, or ``None``."""

    @abstractmethod
    async def list_segments(
        self,
        document_id: str,
        statuses: Iterable[SegmentStatus] | None = None,
    ) -> list[DocumentSegment]:
        """Return the document's segments ordered by ``position``.

        When *statuses* is given only segments in one of those states are
        returned.
        """

    @abstractmethod
    async def update_segment(self, segment_id: str, **fields: Any) -> DocumentSegment:
        """Apply *fields* to the stored segment and return the new instance.

        Raises
        ------
        KeyError
            If no segment with *segment_id* exists.
        """

    @abstractmethod
    async def delete_segments(self, document_id: str) -> int:
        """Delete every segment of the document and return how many were removed."""

    async def count_segments(
        self,
        document_id: str,
        statuses: Iterable[SegmentStatus] | None = None,
    ) -> int:
        return len(await self.list_segments(document_id, statuses))

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    @abstractmethod
    async def find_embedding_by_hash(self, content_hash: str) -> Embedding | None:
        """Return the embedding stored under *content_hash*, or ``None``."""

    @abstractmethod
    async def insert_embedding(self, embedding: Embedding) -> Embedding:
        """Persist *embedding*.

        Embeddings are immutable and deduplicated by ``hash``; inserting a
        hash that already exists returns the stored row unchanged.
        """

    @abstractmethod
    async def get_embedding(self, embedding_id: str) -> Embedding | None:
        """Return the embedding with *embedding_id*, or ``None``."""

    async def segment_dimensions(self, document_id: str) -> dict[str, int]:
        """Map each embedded segment id of the document to its vector length."""
        dimensions: dict[str, int] = {}
        for segment in await self.list_segments(document_id):
            if segment.id is None or segment.embedding_id is None:
                continue
            embedding = await self.get_embedding(segment.embedding_id)
            if embedding is not None:
                dimensions[segment.id] = embedding.dimensions
        return dimensions

    async def close(self) -> None:
        """Release any held connections; the default does nothing."""
