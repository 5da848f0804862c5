"""In-process asyncio job dispatcher.

Runs stage jobs on the current event loop with bounded concurrency.  A job
whose handler raises :class:`~kbindex.utils.errors.StageError` is
re-dispatched after a linear backoff (``retry_backoff × attempt``) until
``max_attempts`` is reached.  Any other exception fails the job at once.
Stages are idempotent against already-advanced segments, which is what
makes re-running a failed stage safe.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

from kbindex.interfaces.job_dispatcher import IJobDispatcher, StageHandler
from kbindex.utils.errors import ConfigurationError, StageError

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class _Job:
    stage: str
    payload: dict[str, Any]
    attempt: int = 1


@dataclass
class JobFailure:
    """A job that exhausted its attempts or failed with a non-retryable error."""

    stage: str
    document_id: str
    attempts: int
    error: str
    retryable: bool = field(default=True)


class InProcessJobDispatcher(IJobDispatcher):
    """Bounded-concurrency dispatcher for pipeline stage jobs.

    Parameters
    ----------
    max_concurrent_jobs:
        Upper bound on stage handlers running at the same time.
    max_attempts:
        Total attempts per job, including the first.
    retry_backoff:
        Seconds of delay per attempt number before a retry.
    """

    def __init__(
        self,
        max_concurrent_jobs: int = 2,
        max_attempts: int = 3,
        retry_backoff: float = 2.0,
    ) -> None:
        if max_concurrent_jobs < 1:
            raise ConfigurationError("max_concurrent_jobs must be at least 1")
        if max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        self._handlers: dict[str, StageHandler] = {}
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self._max_attempts = max_attempts
        self._retry_backoff = retry_backoff
        self._tasks: set[asyncio.Task[None]] = set()
        self._queued = 0
        self._active = 0
        self._completed = 0
        self._retried = 0
        self._failures: list[JobFailure] = []

    # ------------------------------------------------------------------
    # IJobDispatcher implementation
    # ------------------------------------------------------------------

    def register(self, stage: str, handler: StageHandler) -> None:
        self._handlers[stage] = handler

    async def dispatch(self, stage: str, payload: dict[str, Any]) -> None:
        if stage not in self._handlers:
            raise ConfigurationError(f"No handler registered for stage '{stage}'")
        self._spawn(_Job(stage=stage, payload=dict(payload)))
        logger.debug("job_dispatched", stage=stage, document_id=payload.get("document_id"))

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------

    async def run_until_idle(self) -> None:
        """Wait until every queued, running and retrying job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    @property
    def failures(self) -> list[JobFailure]:
        return list(self._failures)

    def stats(self) -> dict[str, int]:
        return {
            "queued": self._queued,
            "active": self._active,
            "completed": self._completed,
            "retried": self._retried,
            "failed": len(self._failures),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _spawn(self, job: _Job, delay: float = 0.0) -> None:
        self._queued += 1
        task = asyncio.get_running_loop().create_task(self._run(job, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, job: _Job, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        document_id = str(job.payload.get("document_id", ""))
        handler = self._handlers[job.stage]

        async with self._semaphore:
            self._queued -= 1
            self._active += 1
            try:
                await handler(job.payload)
            except StageError as exc:
                self._handle_stage_error(job, document_id, exc)
            except Exception as exc:  # noqa: BLE001 -- job boundary: record and stop
                logger.error(
                    "job_failed",
                    stage=job.stage,
                    document_id=document_id,
                    attempt=job.attempt,
                    error=str(exc),
                    exc_info=True,
                )
                self._failures.append(
                    JobFailure(job.stage, document_id, job.attempt, str(exc), retryable=False)
                )
            else:
                self._completed += 1
                logger.debug("job_completed", stage=job.stage, document_id=document_id)
            finally:
                self._active -= 1

    def _handle_stage_error(self, job: _Job, document_id: str, exc: StageError) -> None:
        if job.attempt < self._max_attempts:
            delay = self._retry_backoff * job.attempt
            self._retried += 1
            logger.warning(
                "job_retry_scheduled",
                stage=job.stage,
                document_id=document_id,
                attempt=job.attempt,
                next_attempt=job.attempt + 1,
                delay_seconds=delay,
                error=str(exc),
            )
            self._spawn(_Job(job.stage, job.payload, job.attempt + 1), delay=delay)
            return

        logger.error(
            "job_attempts_exhausted",
            stage=job.stage,
            document_id=document_id,
            attempts=job.attempt,
            error=str(exc),
        )
        self._failures.append(JobFailure(job.stage, document_id, job.attempt, str(exc)))
