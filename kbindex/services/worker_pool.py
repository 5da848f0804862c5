"""Bounded OS-thread worker pool for embedding computation.

Embedding calls are CPU-bound (in-process ONNX) or blocking I/O, so they
run on a fixed set of worker threads rather than on the event loop.
Workers pull :class:`_QueuedTask` items from one shared ``queue.Queue``;
every task carries a ``concurrent.futures.Future`` which the async caller
awaits through :func:`asyncio.wrap_future` with a per-task timeout.

Guarantees
----------
* **Bounded depth.**  Submitting a batch that would push the number of
  unfinished tasks past ``max_queue_size`` raises :class:`QueueFullError`
  before anything from the batch is queued.
* **Per-task timeout.**  A task that has not finished within
  ``task_timeout_ms`` resolves to an error result for the caller.  The
  worker running it is not interrupted; its late result is discarded.
* **Crash isolation.**  A handler that lets a ``BaseException`` escape
  (for example ``SystemExit``) takes its worker thread down.  Only the task
  on that worker is failed with :class:`WorkerCrashedError`; the worker is
  removed and a replacement is started after ``restart_backoff`` seconds.
  Queued tasks are picked up by the surviving workers.
* **One coarse lock** guards the active-task map and the worker list.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import queue
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future
from dataclasses import dataclass, field

import structlog

from kbindex.models.embedding import EmbeddingResponse, EmbeddingResult, EmbeddingTask
from kbindex.utils.errors import (
    QueueFullError,
    TaskTimeoutError,
    WorkerCrashedError,
    WorkerPoolError,
    WorkerPoolShutdownError,
)

logger = structlog.get_logger(logger_name=__name__)

EmbeddingHandler = Callable[[EmbeddingTask], EmbeddingResponse]

DEFAULT_MAX_QUEUE_SIZE = 1000
DEFAULT_TASK_TIMEOUT_MS = 300_000
DEFAULT_RESTART_BACKOFF = 1.0


def default_worker_count() -> int:
    """One worker per CPU, leaving one core for the event loop."""
    return max(1, (os.cpu_count() or 2) - 1)


@dataclass
class _QueuedTask:
    task: EmbeddingTask
    future: Future = field(default_factory=Future)
    timed_out: bool = False


@dataclass
class _Worker:
    worker_id: int
    thread: threading.Thread | None = None
    current_task: str | None = None


class EmbeddingWorkerPool:
    """Fixed-size thread pool executing :class:`EmbeddingTask` items.

    Parameters
    ----------
    handler:
        Blocking callable turning one task into an
        :class:`EmbeddingResponse`; typically
        ``lambda t: provider.embed_blocking(t.text, t.model)``.
    worker_count:
        Number of threads; ``0`` uses :func:`default_worker_count`.
    max_queue_size:
        Maximum number of unfinished tasks (queued plus running).
    task_timeout_ms:
        Per-task timeout in milliseconds, measured from submission.
    restart_backoff:
        Seconds to wait before replacing a crashed worker.
    enabled:
        When ``False`` the pool never starts threads and
        :meth:`submit_batch` raises :class:`WorkerPoolError`; callers are
        expected to check :attr:`is_enabled` first.
    """

    def __init__(
        self,
        handler: EmbeddingHandler,
        worker_count: int = 0,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        task_timeout_ms: int = DEFAULT_TASK_TIMEOUT_MS,
        restart_backoff: float = DEFAULT_RESTART_BACKOFF,
        enabled: bool = True,
    ) -> None:
        self._handler = handler
        self._size = worker_count if worker_count > 0 else default_worker_count()
        self._max_queue_size = max_queue_size
        self._timeout = task_timeout_ms / 1000.0
        self._restart_backoff = restart_backoff
        self._enabled = enabled

        self._queue: queue.Queue[_QueuedTask | None] = queue.Queue()
        self._lock = threading.Lock()
        self._active: dict[str, _QueuedTask] = {}
        self._workers: dict[int, _Worker] = {}
        self._worker_ids = itertools.count(1)
        self._restart_timers: list[threading.Timer] = []
        self._started = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the worker threads (idempotent)."""
        with self._lock:
            if self._started or self._closed or not self._enabled:
                return
            self._started = True
        for _ in range(self._size):
            self._spawn_worker()
        logger.info("worker_pool_started", workers=self._size, max_queue_size=self._max_queue_size)

    def shutdown(self, wait: bool = True, timeout: float | None = 10.0) -> None:
        """Stop accepting work, fail everything still queued, and stop the workers.

        Tasks already running finish on their worker; their callers still
        receive the result unless it arrives after their timeout.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            timers, self._restart_timers = self._restart_timers, []
            workers = list(self._workers.values())

        for timer in timers:
            timer.cancel()

        drained = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is None:
                continue
            with self._lock:
                self._active.pop(item.task.id, None)
            if item.future.set_running_or_notify_cancel():
                item.future.set_exception(
                    WorkerPoolShutdownError(f"Task {item.task.id} was pending at shutdown")
                )
            drained += 1

        for _ in workers:
            self._queue.put(None)
        if wait:
            for worker in workers:
                if worker.thread is not None:
                    worker.thread.join(timeout)
        logger.info("worker_pool_stopped", drained_tasks=drained, workers=len(workers))

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @property
    def is_enabled(self) -> bool:
        return self._enabled and not self._closed

    async def submit_batch(self, tasks: Sequence[EmbeddingTask]) -> list[EmbeddingResult]:
        """Run *tasks* on the pool and return one result per task, in input order.

        Failed, timed-out and crashed tasks come back as results with
        ``error`` set; the call itself only raises when the batch could not
        be queued.

        Raises
        ------
        WorkerPoolShutdownError
            If the pool has been shut down.
        QueueFullError
            If the batch would exceed ``max_queue_size`` unfinished tasks.
        WorkerPoolError
            If the pool is disabled.
        """
        if self._closed:
            raise WorkerPoolShutdownError("Worker pool is shut down")
        if not self._enabled:
            raise WorkerPoolError("Worker pool is disabled")
        if not tasks:
            return []
        self.start()

        items = [_QueuedTask(task=task) for task in tasks]
        with self._lock:
            if len(self._active) + len(items) > self._max_queue_size:
                raise QueueFullError(
                    f"Cannot queue {len(items)} tasks: {len(self._active)} of "
                    f"{self._max_queue_size} slots in use"
                )
            for item in items:
                self._active[item.task.id] = item
        for item in items:
            self._queue.put_nowait(item)

        return list(await asyncio.gather(*(self._await_result(item) for item in items)))

    async def _await_result(self, item: _QueuedTask) -> EmbeddingResult:
        task_id = item.task.id
        try:
            return await asyncio.wait_for(asyncio.wrap_future(item.future), timeout=self._timeout)
        except asyncio.TimeoutError:
            with self._lock:
                item.timed_out = True
                self._active.pop(task_id, None)
            error = TaskTimeoutError(f"Task {task_id} timed out after {self._timeout:.1f}s")
            logger.warning("embedding_task_timeout", task_id=task_id, timeout_s=self._timeout)
            return EmbeddingResult(id=task_id, model=item.task.model, error=str(error))
        except WorkerPoolError as exc:
            return EmbeddingResult(id=task_id, model=item.task.model, error=str(exc))

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def _spawn_worker(self) -> None:
        with self._lock:
            if self._closed:
                return
            worker = _Worker(worker_id=next(self._worker_ids))
            thread = threading.Thread(
                target=self._worker_loop,
                args=(worker,),
                name=f"embedding-worker-{worker.worker_id}",
                daemon=True,
            )
            worker.thread = thread
            self._workers[worker.worker_id] = worker
        thread.start()

    def _worker_loop(self, worker: _Worker) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                with self._lock:
                    self._workers.pop(worker.worker_id, None)
                return
            # False when the caller already gave up on this task.
            if not item.future.set_running_or_notify_cancel():
                continue

            task = item.task
            with self._lock:
                worker.current_task = task.id
            try:
                response = self._handler(task)
            except Exception as exc:  # noqa: BLE001 -- per-task failure becomes an error result
                result = EmbeddingResult(id=task.id, model=task.model, error=str(exc))
            except BaseException as exc:
                self._on_worker_crash(worker, item, exc)
                return
            else:
                result = EmbeddingResult(
                    id=task.id,
                    embedding=response.embedding,
                    dimensions=response.dimensions,
                    model=response.model,
                )

            with self._lock:
                worker.current_task = None
                self._active.pop(task.id, None)
                timed_out = item.timed_out
            if timed_out:
                logger.debug("late_result_discarded", task_id=task.id, worker_id=worker.worker_id)
            item.future.set_result(result)

    def _on_worker_crash(self, worker: _Worker, item: _QueuedTask, exc: BaseException) -> None:
        """Fail the crashed worker's task, drop the worker, and schedule a replacement."""
        with self._lock:
            self._workers.pop(worker.worker_id, None)
            self._active.pop(item.task.id, None)
            worker.current_task = None
            closed = self._closed

        item.future.set_exception(
            WorkerCrashedError(
                f"Worker {worker.worker_id} exited while running task {item.task.id}: "
                f"{type(exc).__name__}: {exc}"
            )
        )
        logger.error(
            "embedding_worker_crashed",
            worker_id=worker.worker_id,
            task_id=item.task.id,
            error=f"{type(exc).__name__}: {exc}",
        )
        if closed:
            return

        timer = threading.Timer(self._restart_backoff, self._replace_worker, args=(worker.worker_id,))
        timer.daemon = True
        with self._lock:
            self._restart_timers.append(timer)
        timer.start()

    def _replace_worker(self, crashed_id: int) -> None:
        self._spawn_worker()
        logger.info("worker_replaced", crashed_worker_id=crashed_id, workers=self.stats()["worker_count"])

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, int | bool]:
        with self._lock:
            return {
                "worker_count": len(self._workers),
                "active_tasks": len(self._active),
                "queue_size": self._queue.qsize(),
                "is_enabled": self._enabled and not self._closed,
            }
