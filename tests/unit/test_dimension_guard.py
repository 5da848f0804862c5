"""Unit tests for DimensionGuard: compatibility checks, repair and guarded search."""

from __future__ import annotations

import pytest

from kbindex.models.document import Document, DocumentSegment, Embedding, SegmentStatus
from kbindex.providers.store.memory_store import InMemoryDocumentStore
from kbindex.services.dimension_guard import DimensionGuard, cosine_similarity
from kbindex.utils.errors import DimensionMismatchError


async def _seed_vectors(
    store: InMemoryDocumentStore,
    vectors: list[list[float]],
    declared: int | None,
) -> Document:
    document = await store.save_document(Document(name="vectors.txt", embedding_dimensions=declared))
    for position, vector in enumerate(vectors, start=1):
        embedding = await store.insert_embedding(
            Embedding(model_name="m", provider_name="fake", hash=f"h{position}", embedding=vector)
        )
        await store.insert_segment(
            DocumentSegment(
                document_id=document.id,
                position=position,
                content=f"segment {position}",
                status=SegmentStatus.EMBEDDED,
                embedding_id=embedding.id,
            )
        )
    return document


class TestAssertCompatible:
    def test_unset_dimension_accepts_anything(self) -> None:
        DimensionGuard.assert_compatible(Document(), 384)

    def test_matching_dimension_passes(self) -> None:
        DimensionGuard.assert_compatible(Document(embedding_dimensions=1024), 1024)

    def test_different_dimension_raises(self) -> None:
        document = Document(embedding_dimensions=1024)
        with pytest.raises(DimensionMismatchError) as exc_info:
            DimensionGuard.assert_compatible(document, 768)
        assert exc_info.value.document_id == document.id
        assert (exc_info.value.expected, exc_info.value.actual) == (1024, 768)


class TestCheckAndRepair:
    @pytest.mark.asyncio
    async def test_consistent_document(self, memory_store) -> None:
        document = await _seed_vectors(memory_store, [[1.0, 0.0], [0.0, 1.0]], declared=2)

        report = await DimensionGuard(memory_store).check_document(document.id)

        assert report.is_consistent
        assert report.dimension_counts == {2: 2}
        assert report.majority_dimension == 2

    @pytest.mark.asyncio
    async def test_repair_detaches_minority(self, memory_store) -> None:
        vectors = [[1.0, 0.0], [0.0, 1.0], [1.0, 1.0], [1.0, 0.0, 0.0]]
        document = await _seed_vectors(memory_store, vectors, declared=3)
        guard = DimensionGuard(memory_store)

        result = await guard.repair(document.id)

        assert result.majority_dimension == 2
        assert len(result.detached_segment_ids) == 1
        detached = await memory_store.get_segment(result.detached_segment_ids[0])
        assert detached.status is SegmentStatus.WAITING
        assert detached.embedding_id is None
        assert (await memory_store.get_document(document.id)).embedding_dimensions == 2
        assert (await guard.check_document(document.id)).is_consistent

    @pytest.mark.asyncio
    async def test_tie_prefers_declared_dimension(self, memory_store) -> None:
        document = await _seed_vectors(memory_store, [[1.0, 0.0], [1.0, 0.0, 0.0]], declared=3)

        report = await DimensionGuard(memory_store).check_document(document.id)

        assert report.majority_dimension == 3

    @pytest.mark.asyncio
    async def test_repair_of_consistent_document_is_noop(self, memory_store) -> None:
        document = await _seed_vectors(memory_store, [[1.0], [2.0]], declared=1)
        result = await DimensionGuard(memory_store).repair(document.id)
        assert result.detached_segment_ids == []


class TestSearch:
    @pytest.mark.asyncio
    async def test_hits_ranked_by_similarity(self, memory_store) -> None:
        document = await _seed_vectors(memory_store, [[1.0, 0.0], [0.0, 1.0], [0.7, 0.7]], declared=2)

        hits = await DimensionGuard(memory_store).search(document.id, [1.0, 0.0], top_k=2)

        assert [h.position for h in hits] == [1, 3]
        assert hits[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_query_dimension_mismatch_raises(self, memory_store) -> None:
        document = await _seed_vectors(memory_store, [[1.0, 0.0]], declared=2)
        with pytest.raises(DimensionMismatchError):
            await DimensionGuard(memory_store).search(document.id, [1.0, 0.0, 0.0])

    @pytest.mark.asyncio
    async def test_mixed_document_refuses_search(self, memory_store) -> None:
        document = await _seed_vectors(memory_store, [[1.0, 0.0], [1.0, 0.0, 0.0]], declared=2)
        with pytest.raises(DimensionMismatchError, match="run repair"):
            await DimensionGuard(memory_store).search(document.id, [1.0, 0.0])


def test_cosine_similarity_of_zero_vector() -> None:
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
