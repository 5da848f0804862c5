"""Embedding stage: turn a document's pending segments into stored vectors.

Only segments still waiting for a vector (``waiting``, ``chunked``, or
``embedding`` left over from an interrupted run) are processed, so calling
:meth:`EmbeddingOrchestrator.process_segments` twice embeds nothing the
second time.

Segments are handled in batches.  With the worker pool enabled each batch
is submitted to :class:`~kbindex.services.worker_pool.EmbeddingWorkerPool`;
otherwise the provider's async ``embed`` is called with bounded local
concurrency.  A failed item is logged and its segment returned to
``chunked``; the rest of the batch carries on.  A vector whose length
differs from the document's established dimension aborts the run with
:class:`~kbindex.utils.errors.DimensionMismatchError`.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from kbindex.interfaces.cache_provider import ICacheProvider
from kbindex.interfaces.document_store import IDocumentStore
from kbindex.interfaces.embedding_provider import IEmbeddingProvider
from kbindex.interfaces.notifier import INotifier
from kbindex.models.config import IndexingConfig
from kbindex.models.document import (
    UNRESOLVED_SEGMENT_STATUSES,
    Document,
    DocumentSegment,
    Embedding,
    SegmentStatus,
)
from kbindex.models.embedding import EmbeddingResult, EmbeddingTask
from kbindex.services.dimension_guard import DimensionGuard
from kbindex.services.model_mapping import ModelMappingService
from kbindex.services.worker_pool import EmbeddingWorkerPool
from kbindex.utils.concurrency import batched, throttled_gather

logger = structlog.get_logger(logger_name=__name__)


def embedding_hash(text: str, model: str) -> str:
    """Content + model digest used to reuse identical embeddings."""
    return hashlib.sha256((text + model).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class EmbeddingOptions:
    batch_size: int = 5
    use_worker_pool: bool = True
    # Concurrent provider calls per batch when the pool is not used.
    max_concurrency: int = 3


@dataclass(frozen=True)
class EmbeddingRunResult:
    processed_count: int
    embedding_dimensions: int | None
    failed_count: int = 0


class EmbeddingOrchestrator:
    """Generates, deduplicates and attaches embeddings for segments.

    Parameters
    ----------
    store:
        Persistence for segments, documents and embeddings.
    provider:
        Backend that computes vectors.
    model_mapping:
        Resolves the document's logical model to the provider's name.
    cache:
        Optional hash → :class:`Embedding` cache consulted before the store.
    worker_pool:
        Optional thread pool; ignored when ``None`` or disabled.
    notifier:
        Optional progress sink; failures are logged and ignored.
    """

    def __init__(
        self,
        store: IDocumentStore,
        provider: IEmbeddingProvider,
        model_mapping: ModelMappingService | None = None,
        cache: ICacheProvider | None = None,
        worker_pool: EmbeddingWorkerPool | None = None,
        notifier: INotifier | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._mapping = model_mapping or ModelMappingService()
        self._cache = cache
        self._pool = worker_pool
        self._notifier = notifier

    async def process_segments(
        self,
        document: Document,
        segments: Sequence[DocumentSegment],
        config: IndexingConfig,
        options: EmbeddingOptions | None = None,
    ) -> EmbeddingRunResult:
        """Embed every unresolved segment in *segments*.

        Returns
        -------
        EmbeddingRunResult
            How many segments were embedded in this call and the
            document's embedding dimension (``None`` if still unknown).

        Raises
        ------
        DimensionMismatchError
            If a vector's length disagrees with the document's dimension.
        WorkerPoolError
            If a batch cannot be queued on the worker pool.
        """
        options = options or EmbeddingOptions(batch_size=config.batch_size)
        pending = [s for s in segments if s.status in UNRESOLVED_SEGMENT_STATUSES]
        if not pending:
            logger.info("embedding_nothing_pending", document_id=document.id)
            return EmbeddingRunResult(0, document.embedding_dimensions)

        model = self._mapping.resolve(
            config.embedding_model, config.embedding_provider, config.custom_model_name
        )
        use_pool = options.use_worker_pool and self._pool is not None and self._pool.is_enabled
        logger.info(
            "embedding_started",
            document_id=document.id,
            pending=len(pending),
            model=model,
            provider=config.embedding_provider.value,
            worker_pool=use_pool,
        )

        processed = failed = 0
        total = len(pending)
        batches = batched(pending, options.batch_size)
        for index, batch in enumerate(batches, start=1):
            for segment in batch:
                await self._store.update_segment(segment.id, status=SegmentStatus.EMBEDDING)

            if use_pool:
                results = await self._pool.submit_batch(  # type: ignore[union-attr]
                    [self._task_for(segment, model, config) for segment in batch]
                )
            else:
                results = await self._embed_locally(batch, model, options.max_concurrency)

            for segment, result in zip(batch, results):
                if not result.ok:
                    failed += 1
                    logger.error(
                        "embedding_segment_failed",
                        document_id=document.id,
                        segment_id=segment.id,
                        error=result.error,
                    )
                    await self._store.update_segment(
                        segment.id, status=SegmentStatus.CHUNKED, error=result.error
                    )
                    continue

                document = await self._lock_dimensions(document, result.dimensions, model)
                embedding = await self._find_or_create_embedding(segment.content, model, config, result)
                await self._store.update_segment(
                    segment.id,
                    status=SegmentStatus.EMBEDDED,
                    embedding_id=embedding.id,
                    completed_at=datetime.now(tz=timezone.utc),  # noqa: UP017
                    error=None,
                )
                processed += 1

            logger.debug(
                "embedding_batch_complete",
                document_id=document.id,
                batch=index,
                batches=len(batches),
                processed=processed,
            )
            await self._notify_progress(document, processed, total)

        logger.info(
            "embedding_complete",
            document_id=document.id,
            processed=processed,
            failed=failed,
            dimensions=document.embedding_dimensions,
        )
        return EmbeddingRunResult(processed, document.embedding_dimensions, failed)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _task_for(segment: DocumentSegment, model: str, config: IndexingConfig) -> EmbeddingTask:
        return EmbeddingTask(
            id=segment.id or "",
            text=segment.content,
            model=model,
            provider=config.embedding_provider,
            custom_model_name=config.custom_model_name,
        )

    async def _embed_locally(
        self,
        batch: Sequence[DocumentSegment],
        model: str,
        max_concurrency: int,
    ) -> list[EmbeddingResult]:
        semaphore = asyncio.Semaphore(max(1, max_concurrency))
        outcomes = await throttled_gather(
            [self._provider.embed(segment.content, model) for segment in batch],
            semaphore=semaphore,
        )
        results: list[EmbeddingResult] = []
        for segment, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                results.append(EmbeddingResult(id=segment.id or "", model=model, error=str(outcome)))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(
                    EmbeddingResult(
                        id=segment.id or "",
                        embedding=outcome.embedding,
                        dimensions=outcome.dimensions,
                        model=outcome.model,
                    )
                )
        return results

    async def _lock_dimensions(self, document: Document, dimensions: int, model: str) -> Document:
        """Record the document's dimension on first success; reject any other length after that."""
        if document.embedding_dimensions is None:
            logger.info(
                "embedding_dimensions_set",
                document_id=document.id,
                model=model,
                dimensions=dimensions,
            )
            return await self._store.update_document(document.id, embedding_dimensions=dimensions)
        DimensionGuard.assert_compatible(document, dimensions)
        return document

    async def _find_or_create_embedding(
        self,
        text: str,
        model: str,
        config: IndexingConfig,
        result: EmbeddingResult,
    ) -> Embedding:
        digest = embedding_hash(text, model)
        if self._cache is not None:
            cached = await self._cache.get(digest)
            if cached is not None:
                return cached

        existing = await self._store.find_embedding_by_hash(digest)
        if existing is None:
            existing = await self._store.insert_embedding(
                Embedding(
                    model_name=model,
                    provider_name=config.embedding_provider.value,
                    hash=digest,
                    embedding=result.embedding,
                )
            )
        if self._cache is not None:
            await self._cache.set(digest, existing)
        return existing

    async def _notify_progress(self, document: Document, processed: int, total: int) -> None:
        if self._notifier is None:
            return
        percentage = round(processed / total * 100) if total else 100
        try:
            await self._notifier.notify(
                document.id,
                document.dataset_id,
                {
                    "status": "embedding",
                    "stage": "embedding",
                    "message": f"Generating embeddings - {processed}/{total} segments ({percentage}%)",
                    "progress": percentage,
                },
            )
        except Exception as exc:  # noqa: BLE001 -- notifications are best effort
            logger.warning("progress_notify_failed", document_id=document.id, error=str(exc))
