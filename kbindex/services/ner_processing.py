"""NER stage: attach extracted keywords to embedded segments."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from kbindex.interfaces.document_store import IDocumentStore
from kbindex.interfaces.notifier import INotifier
from kbindex.models.config import IndexingConfig
from kbindex.models.document import Document, DocumentSegment, SegmentStatus
from kbindex.services.entity_extractor import EntityExtractor
from kbindex.utils.concurrency import batched, throttled_gather

logger = structlog.get_logger(logger_name=__name__)

_NER_PENDING_STATUSES = frozenset({SegmentStatus.EMBEDDED, SegmentStatus.NER_PROCESSING})


@dataclass(frozen=True)
class NerRunResult:
    processed_count: int
    failed_count: int = 0


class NerProcessor:
    """Runs :class:`EntityExtractor` over a document's ``embedded`` segments.

    Segments still in ``ner_processing`` from an interrupted run are picked up again.

    Each batch is extracted concurrently on worker threads.  A segment whose
    extraction raises is marked ``ner_failed`` with the error; its siblings
    carry on.
    """

    def __init__(
        self,
        store: IDocumentStore,
        extractor: EntityExtractor | None = None,
        notifier: INotifier | None = None,
    ) -> None:
        self._store = store
        self._extractor = extractor or EntityExtractor()
        self._notifier = notifier

    async def process_segments(
        self,
        document: Document,
        segments: Sequence[DocumentSegment],
        config: IndexingConfig,
    ) -> NerRunResult:
        pending = [s for s in segments if s.status in _NER_PENDING_STATUSES]
        if not pending:
            return NerRunResult(0)

        extraction_config = config.extraction_config()
        processed = failed = 0
        for batch in batched(pending, config.ner_batch_size):
            for segment in batch:
                await self._store.update_segment(segment.id, status=SegmentStatus.NER_PROCESSING)

            outcomes = await throttled_gather(
                [asyncio.to_thread(self._extractor.extract, s.content, extraction_config) for s in batch]
            )
            for segment, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    failed += 1
                    logger.error(
                        "ner_segment_failed",
                        document_id=document.id,
                        segment_id=segment.id,
                        error=str(outcome),
                    )
                    await self._store.update_segment(
                        segment.id, status=SegmentStatus.NER_FAILED, error=str(outcome)
                    )
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome

                now = datetime.now(tz=timezone.utc)  # noqa: UP017
                await self._store.update_segment(
                    segment.id,
                    status=SegmentStatus.COMPLETED,
                    keywords={
                        "extracted": outcome.entities,
                        "count": len(outcome.entities),
                        "extracted_at": now.isoformat(),
                        "method": outcome.method.value,
                        "confidence": outcome.confidence,
                    },
                    completed_at=now,
                )
                processed += 1

            await self._notify(document, processed + failed, len(pending))

        logger.info("ner_complete", document_id=document.id, processed=processed, failed=failed)
        return NerRunResult(processed, failed)

    async def _notify(self, document: Document, done: int, total: int) -> None:
        if self._notifier is None:
            return
        percentage = round(done / total * 100) if total else 100
        try:
            await self._notifier.notify(
                document.id,
                document.dataset_id,
                {
                    "status": "ner_processing",
                    "stage": "ner",
                    "message": f"Extracting entities - {done}/{total} segments",
                    "progress": percentage,
                },
            )
        except Exception as exc:  # noqa: BLE001 -- notifications are best effort
            logger.warning("progress_notify_failed", document_id=document.id, error=str(exc))
