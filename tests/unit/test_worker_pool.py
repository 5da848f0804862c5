"""Unit tests for EmbeddingWorkerPool: ordering, failures, crashes, bounds and shutdown."""

from __future__ import annotations

import asyncio
import threading

import pytest

from kbindex.models.embedding import EmbeddingResponse, EmbeddingTask
from kbindex.services.worker_pool import EmbeddingWorkerPool, default_worker_count
from kbindex.utils.errors import QueueFullError, WorkerPoolError, WorkerPoolShutdownError


def _task(task_id: str, text: str | None = None) -> EmbeddingTask:
    return EmbeddingTask(id=task_id, text=text or f"text for {task_id}", model="test-model")


def _length_handler(task: EmbeddingTask) -> EmbeddingResponse:
    if "bad" in task.text:
        raise ValueError("cannot embed this text")
    if "crash" in task.text:
        raise SystemExit(3)
    return EmbeddingResponse(embedding=[float(len(task.text)), 1.0], model=task.model, dimensions=2)


async def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


@pytest.fixture()
def pool():
    worker_pool = EmbeddingWorkerPool(_length_handler, worker_count=2, restart_backoff=0.01)
    yield worker_pool
    worker_pool.shutdown(wait=True, timeout=2.0)


class TestSubmission:
    @pytest.mark.asyncio
    async def test_results_follow_input_order(self, pool: EmbeddingWorkerPool) -> None:
        tasks = [_task(f"t{i}", "x" * (i + 1)) for i in range(6)]

        results = await pool.submit_batch(tasks)

        assert [r.id for r in results] == [t.id for t in tasks]
        assert [r.embedding[0] for r in results] == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
        assert all(r.ok and r.dimensions == 2 for r in results)

    @pytest.mark.asyncio
    async def test_empty_batch(self, pool: EmbeddingWorkerPool) -> None:
        assert await pool.submit_batch([]) == []

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error_result(self, pool: EmbeddingWorkerPool) -> None:
        results = await pool.submit_batch([_task("a"), _task("b", "bad input"), _task("c")])

        assert results[0].ok and results[2].ok
        assert not results[1].ok
        assert "cannot embed this text" in (results[1].error or "")
        assert pool.stats()["worker_count"] == 2

    @pytest.mark.asyncio
    async def test_queue_full_rejects_whole_batch(self) -> None:
        small = EmbeddingWorkerPool(_length_handler, worker_count=1, max_queue_size=2)
        try:
            with pytest.raises(QueueFullError):
                await small.submit_batch([_task("a"), _task("b"), _task("c")])
            assert small.stats()["active_tasks"] == 0
        finally:
            small.shutdown()


class TestCrashIsolation:
    @pytest.mark.asyncio
    async def test_crash_fails_only_its_task_and_worker_is_replaced(self, pool: EmbeddingWorkerPool) -> None:
        results = await pool.submit_batch(
            [_task("ok-1"), _task("boom", "crash now"), _task("ok-2"), _task("ok-3")]
        )

        crashed = results[1]
        assert not crashed.ok
        assert "exited while running task boom" in (crashed.error or "")
        assert all(r.ok for i, r in enumerate(results) if i != 1)
        assert await _wait_for(lambda: pool.stats()["worker_count"] == 2)

    @pytest.mark.asyncio
    async def test_pool_keeps_working_after_crash(self, pool: EmbeddingWorkerPool) -> None:
        await pool.submit_batch([_task("boom", "crash")])
        results = await pool.submit_batch([_task("after")])
        assert results[0].ok


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_slow_task_times_out(self) -> None:
        release = threading.Event()

        def slow(task: EmbeddingTask) -> EmbeddingResponse:
            release.wait(2.0)
            return EmbeddingResponse(embedding=[1.0], model=task.model, dimensions=1)

        slow_pool = EmbeddingWorkerPool(slow, worker_count=1, task_timeout_ms=50)
        try:
            results = await slow_pool.submit_batch([_task("slow")])
            assert not results[0].ok
            assert "timed out" in (results[0].error or "")
            assert slow_pool.stats()["active_tasks"] == 0
        finally:
            release.set()
            slow_pool.shutdown()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_submit_after_shutdown_raises(self, pool: EmbeddingWorkerPool) -> None:
        pool.shutdown()
        assert not pool.is_enabled
        with pytest.raises(WorkerPoolShutdownError):
            await pool.submit_batch([_task("late")])

    @pytest.mark.asyncio
    async def test_shutdown_fails_queued_tasks(self) -> None:
        gate = threading.Event()

        def gated(task: EmbeddingTask) -> EmbeddingResponse:
            gate.wait(2.0)
            return EmbeddingResponse(embedding=[1.0], model=task.model, dimensions=1)

        single = EmbeddingWorkerPool(gated, worker_count=1, task_timeout_ms=5000)
        pending = asyncio.create_task(single.submit_batch([_task("running"), _task("queued")]))
        assert await _wait_for(lambda: single.stats()["queue_size"] == 1 and single.stats()["active_tasks"] == 2)

        single.shutdown(wait=False)
        gate.set()
        results = await pending

        assert results[0].ok
        assert "pending at shutdown" in (results[1].error or "")

    @pytest.mark.asyncio
    async def test_disabled_pool_refuses_work(self) -> None:
        disabled = EmbeddingWorkerPool(_length_handler, enabled=False)

        assert not disabled.is_enabled
        with pytest.raises(WorkerPoolError, match="disabled"):
            await disabled.submit_batch([_task("a")])
        assert disabled.stats()["worker_count"] == 0

    def test_start_is_idempotent(self, pool: EmbeddingWorkerPool) -> None:
        pool.start()
        pool.start()
        assert pool.stats()["worker_count"] == 2

    def test_no_threads_before_first_submission(self) -> None:
        lazy = EmbeddingWorkerPool(_length_handler)
        assert lazy.stats()["worker_count"] == 0
        assert default_worker_count() >= 1
