"""Per-document embedding dimension checks, repair, and guarded search.

Every embedding referenced by one document's segments must have the same
length; cosine similarity between vectors of different lengths is
meaningless.  :class:`DimensionGuard` detects violations, refuses to
introduce new ones, and can repair a document by detaching the segments
whose vectors disagree with the majority so they are re-embedded on the
next embedding run.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from kbindex.interfaces.document_store import IDocumentStore
from kbindex.models.document import Document, SegmentStatus
from kbindex.utils.errors import DimensionMismatchError

logger = structlog.get_logger(logger_name=__name__)


@dataclass(frozen=True)
class DimensionReport:
    document_id: str
    dimension_counts: dict[int, int]
    majority_dimension: int | None

    @property
    def is_consistent(self) -> bool:
        return len(self.dimension_counts) <= 1


@dataclass(frozen=True)
class RepairResult:
    document_id: str
    majority_dimension: int | None
    detached_segment_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SearchHit:
    segment_id: str
    position: int
    score: float
    content: str


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors (0.0 if either is all zeros)."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def _majority(counts: Counter[int], preferred: int | None) -> int | None:
    """Most common dimension; ties go to *preferred*, then to the first seen."""
    if not counts:
        return None
    top = max(counts.values())
    tied = [dim for dim, n in counts.items() if n == top]
    if preferred in tied:
        return preferred
    return tied[0]


class DimensionGuard:
    """Enforces one embedding length per document."""

    def __init__(self, store: IDocumentStore) -> None:
        self._store = store

    @staticmethod
    def assert_compatible(document: Document, dimensions: int) -> None:
        """Raise if a *dimensions*-long vector cannot be attached to *document*.

        Raises
        ------
        DimensionMismatchError
            When the document already declares a different dimension.
        """
        expected = document.embedding_dimensions
        if expected is not None and expected != dimensions:
            raise DimensionMismatchError(
                message=(
                    f"Document {document.id} holds {expected}-dimensional embeddings; "
                    f"refusing to attach a {dimensions}-dimensional vector"
                ),
                document_id=document.id,
                expected=expected,
                actual=dimensions,
            )

    async def check_document(self, document_id: str) -> DimensionReport:
        """Count the document's embedded segments per vector length."""
        document = await self._store.get_document(document_id)
        dimensions = await self._store.segment_dimensions(document_id)
        counts = Counter(dimensions.values())
        preferred = document.embedding_dimensions if document else None
        report = DimensionReport(
            document_id=document_id,
            dimension_counts=dict(counts),
            majority_dimension=_majority(counts, preferred),
        )
        if not report.is_consistent:
            logger.warning(
                "document_dimensions_inconsistent",
                document_id=document_id,
                dimension_counts=report.dimension_counts,
            )
        return report

    async def repair(self, document_id: str) -> RepairResult:
        """Detach minority-dimension segments so they get re-embedded.

        Segments whose vector length differs from the majority lose their
        ``embedding_id`` and go back to ``waiting``; nothing is deleted.
        The document's ``embedding_dimensions`` is set to the majority.
        """
        report = await self.check_document(document_id)
        majority = report.majority_dimension
        if report.is_consistent:
            return RepairResult(document_id=document_id, majority_dimension=majority)

        detached: list[str] = []
        for segment_id, dims in (await self._store.segment_dimensions(document_id)).items():
            if dims == majority:
                continue
            await self._store.update_segment(
                segment_id,
                embedding_id=None,
                status=SegmentStatus.WAITING,
                completed_at=None,
            )
            detached.append(segment_id)

        await self._store.update_document(document_id, embedding_dimensions=majority)
        logger.info(
            "document_dimensions_repaired",
            document_id=document_id,
            majority_dimension=majority,
            detached=len(detached),
        )
        return RepairResult(
            document_id=document_id,
            majority_dimension=majority,
            detached_segment_ids=detached,
        )

    async def search(
        self,
        document_id: str,
        query_vector: Sequence[float],
        top_k: int = 5,
    ) -> list[SearchHit]:
        """Rank the document's embedded segments by cosine similarity to *query_vector*.

        Raises
        ------
        DimensionMismatchError
            If the document's embeddings have more than one length, or the
            query vector's length differs from theirs.
        """
        report = await self.check_document(document_id)
        if not report.is_consistent:
            raise DimensionMismatchError(
                message=(
                    f"Document {document_id} has embeddings of several dimensions "
                    f"{sorted(report.dimension_counts)}; run repair before searching"
                ),
                document_id=document_id,
            )
        if report.majority_dimension is not None and report.majority_dimension != len(query_vector):
            raise DimensionMismatchError(
                message=(
                    f"Query vector has {len(query_vector)} dimensions but document "
                    f"{document_id} uses {report.majority_dimension}"
                ),
                document_id=document_id,
                expected=report.majority_dimension,
                actual=len(query_vector),
            )

        hits: list[SearchHit] = []
        for segment in await self._store.list_segments(document_id):
            if segment.embedding_id is None or segment.id is None:
                continue
            embedding = await self._store.get_embedding(segment.embedding_id)
            if embedding is None:
                continue
            hits.append(
                SearchHit(
                    segment_id=segment.id,
                    position=segment.position,
                    score=cosine_similarity(query_vector, embedding.embedding),
                    content=segment.content,
                )
            )
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]
