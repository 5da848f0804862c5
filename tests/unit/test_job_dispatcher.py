"""Unit tests for InProcessJobDispatcher."""

from __future__ import annotations

import asyncio

import pytest

from kbindex.providers.dispatch.in_process import InProcessJobDispatcher
from kbindex.utils.errors import ConfigurationError, StageError


class TestDispatch:
    @pytest.mark.asyncio
    async def test_handler_receives_payload(self) -> None:
        seen: list[dict] = []

        async def handler(payload: dict) -> None:
            seen.append(payload)

        dispatcher = InProcessJobDispatcher(retry_backoff=0)
        dispatcher.register("chunking", handler)

        await dispatcher.dispatch("chunking", {"document_id": "d1", "dataset_id": "ds"})
        await dispatcher.run_until_idle()

        assert seen == [{"document_id": "d1", "dataset_id": "ds"}]
        assert dispatcher.stats()["completed"] == 1

    @pytest.mark.asyncio
    async def test_unknown_stage_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="No handler registered"):
            await InProcessJobDispatcher().dispatch("nowhere", {"document_id": "d1"})

    def test_invalid_limits_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            InProcessJobDispatcher(max_concurrent_jobs=0)
        with pytest.raises(ConfigurationError):
            InProcessJobDispatcher(max_attempts=0)

    @pytest.mark.asyncio
    async def test_jobs_dispatched_from_handlers_are_awaited(self) -> None:
        order: list[str] = []
        dispatcher = InProcessJobDispatcher(retry_backoff=0)

        async def first(payload: dict) -> None:
            order.append("first")
            await dispatcher.dispatch("second", payload)

        async def second(payload: dict) -> None:
            order.append("second")

        dispatcher.register("first", first)
        dispatcher.register("second", second)
        await dispatcher.dispatch("first", {"document_id": "d1"})
        await dispatcher.run_until_idle()

        assert order == ["first", "second"]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self) -> None:
        running = 0
        peak = 0

        async def handler(payload: dict) -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        dispatcher = InProcessJobDispatcher(max_concurrent_jobs=2)
        dispatcher.register("embedding", handler)
        for i in range(6):
            await dispatcher.dispatch("embedding", {"document_id": f"d{i}"})
        await dispatcher.run_until_idle()

        assert peak == 2


class TestRetries:
    @pytest.mark.asyncio
    async def test_stage_error_retried_until_success(self) -> None:
        attempts = 0

        async def flaky(payload: dict) -> None:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise StageError("transient", stage="embedding", document_id="d1")

        dispatcher = InProcessJobDispatcher(max_attempts=3, retry_backoff=0)
        dispatcher.register("embedding", flaky)
        await dispatcher.dispatch("embedding", {"document_id": "d1"})
        await dispatcher.run_until_idle()

        assert attempts == 3
        assert dispatcher.stats() == {"queued": 0, "active": 0, "completed": 1, "retried": 2, "failed": 0}

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self) -> None:
        async def always_fails(payload: dict) -> None:
            raise StageError("still broken", stage="embedding", document_id="d1")

        dispatcher = InProcessJobDispatcher(max_attempts=2, retry_backoff=0)
        dispatcher.register("embedding", always_fails)
        await dispatcher.dispatch("embedding", {"document_id": "d1"})
        await dispatcher.run_until_idle()

        [failure] = dispatcher.failures
        assert (failure.stage, failure.document_id, failure.attempts) == ("embedding", "d1", 2)
        assert failure.retryable
        assert "still broken" in failure.error

    @pytest.mark.asyncio
    async def test_other_exceptions_are_not_retried(self) -> None:
        calls = 0

        async def buggy(payload: dict) -> None:
            nonlocal calls
            calls += 1
            raise ValueError("programming error")

        dispatcher = InProcessJobDispatcher(max_attempts=3, retry_backoff=0)
        dispatcher.register("ner", buggy)
        await dispatcher.dispatch("ner", {"document_id": "d1"})
        await dispatcher.run_until_idle()

        assert calls == 1
        assert dispatcher.failures[0].retryable is False
        assert dispatcher.stats()["retried"] == 0
