"""Document progress tracking with callback-based listener notification.

Implements :class:`~kbindex.interfaces.notifier.INotifier`: every event a
stage emits is stored as the document's latest snapshot and broadcast to
the listeners registered for that document (or for all documents).

    Stage ──notify()──→ ProgressTracker ──callback()──→ CLI printer
                                                     ──→ (any other listener)

Listener errors are caught and logged, so a broken listener can never
fail a pipeline stage.  Both sync and async callbacks are supported.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

import structlog

from kbindex.interfaces.notifier import INotifier
from kbindex.utils.logging import get_logger

# Listeners registered under this key receive events for every document.
ALL_DOCUMENTS = "*"


@dataclass
class _DocumentStatus:
    """Internal snapshot of a single document's progress."""

    status: str = "waiting"
    stage: str = ""
    message: str = ""
    progress: float = 0.0
    dataset_id: str = ""


class ProgressTracker(INotifier):
    """Tracks and broadcasts per-document indexing progress.

    Listeners are callables accepting ``(document_id, snapshot)`` where
    ``snapshot`` is the dict returned by :meth:`get_status`.
    """

    def __init__(self) -> None:
        self._statuses: dict[str, _DocumentStatus] = {}
        self._listeners: dict[str, list[Callable]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # INotifier implementation
    # ------------------------------------------------------------------

    async def notify(self, document_id: str, dataset_id: str, event: dict[str, Any]) -> None:
        """Record *event* as the document's snapshot and notify listeners.

        Parameters
        ----------
        document_id:
            The document the event belongs to.
        dataset_id:
            The dataset the document belongs to.
        event:
            Carries ``status`` and ``stage``; ``message`` and ``progress``
            are optional.  Progress is clamped to 0..100 and keeps its
            previous value when omitted.
        """
        previous = self._statuses.get(document_id, _DocumentStatus())
        progress = event.get("progress")
        progress = previous.progress if progress is None else max(0.0, min(100.0, float(progress)))

        snapshot = _DocumentStatus(
            status=str(event.get("status", previous.status)),
            stage=str(event.get("stage", previous.stage)),
            message=str(event.get("message", "")),
            progress=progress,
            dataset_id=dataset_id,
        )
        self._statuses[document_id] = snapshot

        self._logger.debug(
            "progress_update",
            document_id=document_id,
            status=snapshot.status,
            stage=snapshot.stage,
            progress=round(progress, 1),
            message=snapshot.message,
        )
        await self._notify_listeners(document_id, asdict(snapshot))

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------

    def register_listener(self, document_id: str, callback: Callable) -> None:
        """Register *callback* for one document, or for all with ``"*"``."""
        listeners = self._listeners.setdefault(document_id, [])
        if callback not in listeners:
            listeners.append(callback)
            self._logger.debug(
                "listener_registered",
                document_id=document_id,
                total_listeners=len(listeners),
            )

    def unregister_listener(self, document_id: str, callback: Callable) -> None:
        listeners = self._listeners.get(document_id, [])
        if callback in listeners:
            listeners.remove(callback)
            self._logger.debug(
                "listener_unregistered",
                document_id=document_id,
                remaining_listeners=len(listeners),
            )

    def get_status(self, document_id: str) -> dict[str, Any]:
        """Return the latest snapshot for *document_id*.

        Returns
        -------
        dict
            Keys: ``status``, ``stage``, ``message``, ``progress`` and
            ``dataset_id``.  Zeroed defaults when the document has not
            been tracked yet.
        """
        return asdict(self._statuses.get(document_id, _DocumentStatus()))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _notify_listeners(self, document_id: str, snapshot: dict[str, Any]) -> None:
        """Invoke the document's listeners, then the catch-all ones.

        Listeners that raise are logged and skipped.
        """
        listeners = [*self._listeners.get(document_id, []), *self._listeners.get(ALL_DOCUMENTS, [])]
        for callback in listeners:
            try:
                result = callback(document_id, dict(snapshot))
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    document_id=document_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
