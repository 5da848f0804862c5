"""Abstract base class for stage-job dispatch.

Pipeline stages never call each other directly; each stage finishes by
dispatching the next one.  The dispatcher owns retries and concurrency.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

StageHandler = Callable[[dict[str, Any]], Awaitable[None]]


# Concrete implementation: InProcessJobDispatcher (kbindex/providers/dispatch/)
class IJobDispatcher(ABC):
    """Contract for queueing pipeline stage jobs."""

    @abstractmethod
    def register(self, stage: str, handler: StageHandler) -> None:
        """Route jobs for *stage* to *handler*."""

    @abstractmethod
    async def dispatch(self, stage: str, payload: dict[str, Any]) -> None:
        """Queue a job for *stage* carrying *payload*.

        Parameters
        ----------
        stage:
            Name of the stage, e.g. ``"chunking"`` or ``"embedding"``.
        payload:
            Job arguments; always carries ``document_id`` and
            ``dataset_id``.
        """
