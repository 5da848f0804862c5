"""Abstract base class for document progress notifications."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


# Concrete implementation: ProgressTracker (kbindex/pipeline/progress_tracker.py)
class INotifier(ABC):
    """Receives status events as a document moves through the pipeline.

    Callers treat notification as best effort: a failing notifier is
    logged and never fails the stage that emitted the event.
    """

    @abstractmethod
    async def notify(self, document_id: str, dataset_id: str, event: dict[str, Any]) -> None:
        """Publish *event* for the document.

        ``event`` always carries ``status`` and ``stage`` and may carry
        ``message``, ``progress`` (0-100) and stage-specific counts.
        """
