"""Unit tests for MemoryCacheProvider and ProgressTracker."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from kbindex.pipeline.progress_tracker import ALL_DOCUMENTS, ProgressTracker
from kbindex.providers.cache.memory_cache import MemoryCacheProvider

# ======================================================================
# MemoryCacheProvider
# ======================================================================


class TestMemoryCacheProvider:
    @pytest.fixture()
    def cache(self) -> MemoryCacheProvider:
        return MemoryCacheProvider(max_size=2, ttl=60)

    @pytest.mark.asyncio
    async def test_set_and_get(self, cache: MemoryCacheProvider) -> None:
        await cache.set("hash-1", {"vector": [1.0]})
        assert await cache.get("hash-1") == {"vector": [1.0]}

    @pytest.mark.asyncio
    async def test_missing_key_returns_none(self, cache: MemoryCacheProvider) -> None:
        assert await cache.get("nope") is None
        assert not await cache.exists("nope")

    @pytest.mark.asyncio
    async def test_delete(self, cache: MemoryCacheProvider) -> None:
        await cache.set("hash-1", "value")
        await cache.delete("hash-1")
        await cache.delete("never-set")
        assert not await cache.exists("hash-1")

    @pytest.mark.asyncio
    async def test_max_size_evicts(self, cache: MemoryCacheProvider) -> None:
        for key in ("a", "b", "c"):
            await cache.set(key, key)
        assert len(cache) == 2


# ======================================================================
# ProgressTracker
# ======================================================================


class TestProgressTracker:
    @pytest.fixture()
    def tracker(self) -> ProgressTracker:
        return ProgressTracker()

    def test_untracked_document_has_defaults(self, tracker: ProgressTracker) -> None:
        assert tracker.get_status("doc-1") == {
            "status": "waiting",
            "stage": "",
            "message": "",
            "progress": 0.0,
            "dataset_id": "",
        }

    @pytest.mark.asyncio
    async def test_notify_records_snapshot(self, tracker: ProgressTracker) -> None:
        await tracker.notify(
            "doc-1", "ds", {"status": "embedding", "stage": "embedding", "message": "2/4", "progress": 50}
        )
        status = tracker.get_status("doc-1")
        assert status["status"] == "embedding"
        assert status["progress"] == 50.0
        assert status["dataset_id"] == "ds"

    @pytest.mark.asyncio
    async def test_progress_clamped_and_kept(self, tracker: ProgressTracker) -> None:
        await tracker.notify("doc-1", "ds", {"status": "chunked", "stage": "chunking", "progress": 250})
        assert tracker.get_status("doc-1")["progress"] == 100.0

        await tracker.notify("doc-1", "ds", {"status": "embedding", "stage": "embedding"})
        assert tracker.get_status("doc-1")["progress"] == 100.0

        await tracker.notify("doc-1", "ds", {"status": "embedding", "stage": "embedding", "progress": -5})
        assert tracker.get_status("doc-1")["progress"] == 0.0

    @pytest.mark.asyncio
    async def test_document_and_catch_all_listeners(self, tracker: ProgressTracker) -> None:
        own = MagicMock()
        everything = AsyncMock()
        tracker.register_listener("doc-1", own)
        tracker.register_listener(ALL_DOCUMENTS, everything)

        await tracker.notify("doc-1", "ds", {"status": "completed", "stage": "completion"})
        await tracker.notify("doc-2", "ds", {"status": "chunked", "stage": "chunking"})

        own.assert_called_once()
        assert own.call_args.args[0] == "doc-1"
        assert own.call_args.args[1]["status"] == "completed"
        assert everything.await_count == 2

    @pytest.mark.asyncio
    async def test_listener_registered_once(self, tracker: ProgressTracker) -> None:
        listener = MagicMock()
        tracker.register_listener("doc-1", listener)
        tracker.register_listener("doc-1", listener)

        await tracker.notify("doc-1", "ds", {"status": "parsing", "stage": "chunking"})

        listener.assert_called_once()

    @pytest.mark.asyncio
    async def test_unregistered_listener_not_called(self, tracker: ProgressTracker) -> None:
        listener = MagicMock()
        tracker.register_listener("doc-1", listener)
        tracker.unregister_listener("doc-1", listener)
        tracker.unregister_listener("doc-1", listener)

        await tracker.notify("doc-1", "ds", {"status": "parsing", "stage": "chunking"})

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, tracker: ProgressTracker) -> None:
        broken = MagicMock(side_effect=RuntimeError("listener bug"))
        healthy = MagicMock()
        tracker.register_listener("doc-1", broken)
        tracker.register_listener("doc-1", healthy)

        await tracker.notify("doc-1", "ds", {"status": "embedding", "stage": "embedding"})

        healthy.assert_called_once()
