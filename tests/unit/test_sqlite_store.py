"""Unit tests for SQLiteDocumentStore using a temporary database file."""

from __future__ import annotations

import pytest

from kbindex.models.config import IndexingConfig, SplitStrategy
from kbindex.models.document import (
    Document,
    DocumentSegment,
    DocumentStatus,
    Embedding,
    SegmentStatus,
    SegmentType,
)
from kbindex.providers.store.sqlite_store import SQLiteDocumentStore


@pytest.fixture
async def store(tmp_path) -> SQLiteDocumentStore:
    sqlite_store = SQLiteDocumentStore(tmp_path / "db" / "kbindex.db")
    await sqlite_store.initialize()
    return sqlite_store


async def _document(store: SQLiteDocumentStore) -> Document:
    return await store.save_document(
        Document(
            name="notes.md",
            doc_type="md",
            source_text="body",
            indexing_config=IndexingConfig(strategy=SplitStrategy.MARKDOWN, chunk_size=400, chunk_overlap=40),
        )
    )


class TestDocuments:
    @pytest.mark.asyncio
    async def test_initialize_creates_parent_directory(self, tmp_path) -> None:
        path = tmp_path / "nested" / "dir" / "store.db"
        await SQLiteDocumentStore(path).initialize()
        assert path.exists()

    @pytest.mark.asyncio
    async def test_round_trips_nested_config(self, store) -> None:
        document = await _document(store)

        loaded = await store.get_document(document.id)

        assert loaded is not None
        assert loaded.indexing_config.strategy is SplitStrategy.MARKDOWN
        assert loaded.indexing_config.chunk_size == 400
        assert loaded.indexing_status is DocumentStatus.WAITING

    @pytest.mark.asyncio
    async def test_update_document_merges_fields(self, store) -> None:
        document = await _document(store)

        await store.update_document(
            document.id,
            indexing_status=DocumentStatus.CHUNKED,
            processing_metadata={"chunking": {"segment_count": 3}},
        )

        loaded = await store.get_document(document.id)
        assert loaded.indexing_status is DocumentStatus.CHUNKED
        assert loaded.processing_metadata == {"chunking": {"segment_count": 3}}
        assert loaded.name == "notes.md"

    @pytest.mark.asyncio
    async def test_update_unknown_document_raises(self, store) -> None:
        with pytest.raises(KeyError):
            await store.update_document("missing", last_error="x")

    @pytest.mark.asyncio
    async def test_get_unknown_document(self, store) -> None:
        assert await store.get_document("missing") is None


class TestSegments:
    @pytest.mark.asyncio
    async def test_listing_ordered_and_filtered(self, store) -> None:
        document = await _document(store)
        for position, status in [(2, SegmentStatus.EMBEDDED), (1, SegmentStatus.CHUNKED), (3, SegmentStatus.CHUNKED)]:
            await store.insert_segment(
                DocumentSegment(document_id=document.id, position=position, content=f"p{position}", status=status)
            )

        everything = await store.list_segments(document.id)
        chunked = await store.list_segments(document.id, [SegmentStatus.CHUNKED])

        assert [s.position for s in everything] == [1, 2, 3]
        assert [s.position for s in chunked] == [1, 3]
        assert await store.list_segments(document.id, []) == []
        assert await store.count_segments(document.id) == 3
        assert await store.count_segments(document.id, [SegmentStatus.EMBEDDED]) == 1

    @pytest.mark.asyncio
    async def test_update_segment_keeps_json_columns(self, store) -> None:
        document = await _document(store)
        segment = await store.insert_segment(
            DocumentSegment(
                document_id=document.id,
                position=1,
                content="parent text",
                segment_type=SegmentType.PARENT,
                hierarchy_metadata={"key": "parent_0"},
            )
        )

        await store.update_segment(
            segment.id,
            status=SegmentStatus.COMPLETED,
            keywords={"extracted": ["parent"], "count": 1},
        )

        loaded = await store.get_segment(segment.id)
        assert loaded.status is SegmentStatus.COMPLETED
        assert loaded.keywords["extracted"] == ["parent"]
        assert loaded.hierarchy_metadata == {"key": "parent_0"}
        assert loaded.segment_type is SegmentType.PARENT

    @pytest.mark.asyncio
    async def test_delete_segments(self, store) -> None:
        document = await _document(store)
        for position in (1, 2):
            await store.insert_segment(DocumentSegment(document_id=document.id, position=position, content="x"))

        assert await store.delete_segments(document.id) == 2
        assert await store.list_segments(document.id) == []


class TestEmbeddings:
    @pytest.mark.asyncio
    async def test_hash_is_unique(self, store) -> None:
        first = await store.insert_embedding(
            Embedding(model_name="m", provider_name="local", hash="abc", embedding=[0.1, 0.2])
        )
        second = await store.insert_embedding(
            Embedding(model_name="m", provider_name="local", hash="abc", embedding=[0.9, 0.9])
        )

        assert second.id == first.id
        assert second.embedding == [0.1, 0.2]
        assert (await store.get_embedding(first.id)).dimensions == 2

    @pytest.mark.asyncio
    async def test_segment_dimensions_join(self, store) -> None:
        document = await _document(store)
        embedding = await store.insert_embedding(
            Embedding(model_name="m", provider_name="local", hash="h", embedding=[1.0, 0.0, 0.0])
        )
        linked = await store.insert_segment(
            DocumentSegment(document_id=document.id, position=1, content="a", embedding_id=embedding.id)
        )
        await store.insert_segment(DocumentSegment(document_id=document.id, position=2, content="b"))

        assert await store.segment_dimensions(document.id) == {linked.id: 3}
