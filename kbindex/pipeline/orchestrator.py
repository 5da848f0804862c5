"""Staged indexing pipeline for a single document.

Coordinates chunking, embedding, optional NER and the completion gate as
independent stage jobs.  Stages never call each other: each one finishes
by dispatching the next through the injected
:class:`~kbindex.interfaces.job_dispatcher.IJobDispatcher`, which owns
retries and concurrency.

Document status flow::

    waiting → parsing → splitting → chunking → chunked → embedding
            → embedded → ner_processing → completed

Every stage is safe to re-run.  Chunking reuses segments that already
exist, embedding and NER only touch segments that have not advanced past
them yet, and the completion gate refuses to complete a document while
any segment still lacks an embedding.

Any exception inside a stage moves the document to that stage's
``_failed`` status with ``last_error`` and ``stopped_at`` recorded, and is
re-raised as :class:`~kbindex.utils.errors.StageError` so the dispatcher
can decide whether to retry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from kbindex.interfaces.document_store import IDocumentStore
from kbindex.interfaces.job_dispatcher import IJobDispatcher
from kbindex.interfaces.notifier import INotifier
from kbindex.interfaces.text_extractor import ITextExtractor
from kbindex.models.config import IndexingConfig
from kbindex.models.document import (
    UNRESOLVED_SEGMENT_STATUSES,
    Document,
    DocumentSegment,
    DocumentStatus,
    SegmentType,
)
from kbindex.models.pipeline import PipelineStage
from kbindex.services.chunking.hierarchical_chunker import HierarchicalChunker, SegmentDraft
from kbindex.services.embedding_orchestrator import EmbeddingOptions, EmbeddingOrchestrator
from kbindex.services.model_mapping import ModelMappingService
from kbindex.services.ner_processing import NerProcessor
from kbindex.utils.errors import ExtractionError, KBIndexError, StageError
from kbindex.utils.logging import get_logger, stage_context

_StageBody = Callable[[Document, dict[str, Any]], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class IndexingPipeline:
    """State machine that moves documents through the indexing stages.

    All collaborators are injected; the pipeline never builds providers
    itself.  Call :meth:`register` once to route the dispatcher's stage
    jobs to this instance, then :meth:`start` per document.

    Parameters
    ----------
    store:
        Persistence for documents, segments and embeddings.
    dispatcher:
        Queues the next stage job.
    embedding_orchestrator:
        Runs the embedding stage over pending segments.
    ner_processor:
        Runs entity extraction; when ``None`` the NER stage is skipped even
        for documents that enable it.
    chunker:
        Builds flat or parent/child segment drafts.
    model_mapping:
        Applies model-aware chunk defaults and names the stored model.
    extractor:
        Reads source files for documents without ``source_text``.
    notifier:
        Best-effort progress sink.
    embedding_options:
        Overrides the per-document embedding batch options.
    """

    def __init__(
        self,
        store: IDocumentStore,
        dispatcher: IJobDispatcher,
        embedding_orchestrator: EmbeddingOrchestrator,
        ner_processor: NerProcessor | None = None,
        chunker: HierarchicalChunker | None = None,
        model_mapping: ModelMappingService | None = None,
        extractor: ITextExtractor | None = None,
        notifier: INotifier | None = None,
        embedding_options: EmbeddingOptions | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._embedding = embedding_orchestrator
        self._ner = ner_processor
        self._chunker = chunker or HierarchicalChunker()
        self._mapping = model_mapping or ModelMappingService()
        self._extractor = extractor
        self._notifier = notifier
        self._embedding_options = embedding_options
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def register(self) -> None:
        """Route every :class:`PipelineStage` job to this pipeline."""
        self._dispatcher.register(PipelineStage.CHUNKING.value, self.run_chunking)
        self._dispatcher.register(PipelineStage.EMBEDDING.value, self.run_embedding)
        self._dispatcher.register(PipelineStage.NER.value, self.run_ner)
        self._dispatcher.register(PipelineStage.COMPLETION.value, self.run_completion)

    async def start(self, document: Document) -> Document:
        """Persist *document* and dispatch its chunking stage."""
        saved = await self._store.save_document(document)
        self._logger.info(
            "indexing_started",
            document_id=saved.id,
            dataset_id=saved.dataset_id,
            strategy=saved.indexing_config.strategy.value,
        )
        await self._dispatch(PipelineStage.CHUNKING, saved)
        return saved

    # ------------------------------------------------------------------
    # Stage handlers (dispatcher entry points)
    # ------------------------------------------------------------------

    async def run_chunking(self, payload: dict[str, Any]) -> None:
        await self._run_stage(PipelineStage.CHUNKING, payload, self._chunking)

    async def run_embedding(self, payload: dict[str, Any]) -> None:
        await self._run_stage(PipelineStage.EMBEDDING, payload, self._embedding_stage)

    async def run_ner(self, payload: dict[str, Any]) -> None:
        await self._run_stage(PipelineStage.NER, payload, self._ner_stage)

    async def run_completion(self, payload: dict[str, Any]) -> None:
        await self._run_stage(PipelineStage.COMPLETION, payload, self._completion)

    async def _run_stage(
        self,
        stage: PipelineStage,
        payload: dict[str, Any],
        body: _StageBody,
    ) -> None:
        document_id = str(payload.get("document_id", ""))
        document = await self._store.get_document(document_id)
        if document is None:
            raise StageError(
                message=f"Document {document_id} not found",
                stage=stage.value,
                document_id=document_id,
            )

        with stage_context(document_id, stage.value):
            try:
                await body(document, payload)
            except Exception as exc:
                await self._fail(stage, document, exc)
                raise StageError(
                    message=str(exc),
                    stage=stage.value,
                    document_id=document_id,
                    cause=exc,
                ) from exc

    # ------------------------------------------------------------------
    # Chunking
    # ------------------------------------------------------------------

    async def _chunking(self, document: Document, payload: dict[str, Any]) -> None:
        started_at = _utcnow()
        segments = await self._store.list_segments(document.id)

        if segments:
            self._logger.info("chunking_resumed", existing_segments=len(segments))
            config = document.indexing_config
        else:
            removed = await self._store.delete_segments(document.id)
            if removed:
                self._logger.info("stale_segments_cleared", removed=removed)

            document = await self._set_status(document, DocumentStatus.PARSING)
            text = await self._load_text(document)

            document = await self._set_status(document, DocumentStatus.SPLITTING)
            config = self._mapping.apply_model_defaults(document.indexing_config)

            document = await self._set_status(document, DocumentStatus.CHUNKING)
            segments = await self._persist_segments(document, text, config)

        word_count = sum(s.word_count for s in segments)
        tokens = sum(s.tokens for s in segments)
        metadata = {
            **document.processing_metadata,
            "current_stage": PipelineStage.EMBEDDING.value,
            "chunking": {
                "started_at": started_at.isoformat(),
                "completed_at": _utcnow().isoformat(),
                "segment_count": len(segments),
                "word_count": word_count,
                "tokens": tokens,
                "strategy": config.strategy.value,
                "chunk_size": config.chunk_size,
                "chunk_overlap": config.chunk_overlap,
                "parent_child": config.enable_parent_child,
            },
        }
        document = await self._store.update_document(
            document.id,
            indexing_status=DocumentStatus.CHUNKED,
            processing_metadata=metadata,
        )
        self._logger.info(
            "chunking_complete",
            segments=len(segments),
            word_count=word_count,
            tokens=tokens,
        )
        await self._notify(
            document,
            status=DocumentStatus.CHUNKED,
            stage=PipelineStage.CHUNKING,
            message="Document chunking completed",
            progress=100,
            segments_count=len(segments),
        )
        await self._dispatch(
            PipelineStage.EMBEDDING,
            document,
            segment_ids=[s.id for s in segments if s.id is not None],
        )

    async def _load_text(self, document: Document) -> str:
        if document.source_text:
            return document.source_text
        if self._extractor is None or not document.source_path:
            raise ExtractionError(f"Document {document.id} has no source text and no readable source")
        return await self._extractor.extract_text(document.source_path, document.doc_type)

    async def _persist_segments(
        self,
        document: Document,
        text: str,
        config: IndexingConfig,
    ) -> list[DocumentSegment]:
        """Split *text* and store the resulting segments at ``chunked``.

        Parent segments are inserted first so their ids exist before any
        child references them; children are positioned after all parents.
        """
        base = config.split_config()
        if not config.enable_parent_child:
            drafts = await asyncio.to_thread(self._chunker.build_flat, text, base)
            return [
                await self._store.insert_segment(
                    self._chunker.to_segment(draft, document.id, document.dataset_id, position)
                )
                for position, draft in enumerate(drafts, start=1)
            ]

        parent_config, child_config = self._chunker.derive_configs(base)
        drafts = await asyncio.to_thread(self._chunker.build_hierarchy, text, parent_config, child_config)
        parents = [d for d in drafts if d.segment_type is SegmentType.PARENT]
        children = [d for d in drafts if d.segment_type is SegmentType.CHILD]

        stored: list[DocumentSegment] = []
        key_to_id: dict[str, str] = {}
        for position, draft in enumerate(parents, start=1):
            segment = await self._store.insert_segment(
                self._chunker.to_segment(draft, document.id, document.dataset_id, position)
            )
            key_to_id[draft.key] = segment.id or ""
            stored.append(segment)

        linked = self._chunker.link_children(children, key_to_id)
        for offset, (draft, parent_id) in enumerate(linked, start=1):
            stored.append(
                await self._store.insert_segment(
                    self._chunker.to_segment(
                        draft,
                        document.id,
                        document.dataset_id,
                        len(parents) + offset,
                        parent_id=parent_id,
                    )
                )
            )

        stored = await self._reconcile_child_counts(stored, parents, linked, key_to_id)
        self._logger.info("hierarchy_persisted", parents=len(parents), children=len(linked))
        return stored

    async def _reconcile_child_counts(
        self,
        stored: list[DocumentSegment],
        parents: list[SegmentDraft],
        linked: list[tuple[SegmentDraft, str]],
        key_to_id: dict[str, str],
    ) -> list[DocumentSegment]:
        """Make each parent's ``child_count`` match the children actually stored."""
        live: dict[str, int] = {}
        for _, parent_id in linked:
            live[parent_id] = live.get(parent_id, 0) + 1

        corrected: dict[str, DocumentSegment] = {}
        for draft in parents:
            parent_id = key_to_id[draft.key]
            if live.get(parent_id, 0) != draft.child_count:
                corrected[parent_id] = await self._store.update_segment(
                    parent_id, child_count=live.get(parent_id, 0)
                )
        return [corrected.get(s.id or "", s) for s in stored]

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def _embedding_stage(self, document: Document, payload: dict[str, Any]) -> None:
        segments = await self._segments_for(document, payload.get("segment_ids"))
        pending = [s for s in segments if s.status in UNRESOLVED_SEGMENT_STATUSES]
        if not pending:
            self._logger.info("embedding_skipped_nothing_pending", segments=len(segments))
            await self._dispatch(PipelineStage.COMPLETION, document)
            return

        config = document.indexing_config
        started_at = _utcnow()
        document = await self._set_status(document, DocumentStatus.EMBEDDING)
        result = await self._embedding.process_segments(
            document,
            pending,
            config,
            self._embedding_options or EmbeddingOptions(batch_size=config.batch_size),
        )

        model = self._mapping.resolve(
            config.embedding_model, config.embedding_provider, config.custom_model_name
        )
        refreshed = await self._store.get_document(document.id) or document
        metadata = {
            **refreshed.processing_metadata,
            "embedding": {
                "started_at": started_at.isoformat(),
                "completed_at": _utcnow().isoformat(),
                "processed_count": result.processed_count,
                "failed_count": result.failed_count,
                "model": model,
            },
        }
        document = await self._store.update_document(
            document.id,
            indexing_status=DocumentStatus.EMBEDDED,
            embedding_model=model,
            embedding_dimensions=result.embedding_dimensions,
            processing_metadata=metadata,
        )
        await self._notify(
            document,
            status=DocumentStatus.EMBEDDED,
            stage=PipelineStage.EMBEDDING,
            message=f"Embedded {result.processed_count} segments",
            progress=100,
        )

        if config.enable_ner and self._ner is not None:
            await self._dispatch(PipelineStage.NER, document)
        else:
            await self._dispatch(PipelineStage.COMPLETION, document)

    async def _segments_for(
        self,
        document: Document,
        segment_ids: list[str] | None,
    ) -> list[DocumentSegment]:
        if not segment_ids:
            return await self._store.list_segments(document.id)
        segments: list[DocumentSegment] = []
        for segment_id in segment_ids:
            segment = await self._store.get_segment(segment_id)
            if segment is None or segment.document_id != document.id:
                self._logger.warning("segment_not_found", segment_id=segment_id)
                continue
            segments.append(segment)
        return segments

    # ------------------------------------------------------------------
    # NER
    # ------------------------------------------------------------------

    async def _ner_stage(self, document: Document, payload: dict[str, Any]) -> None:
        if self._ner is None:
            await self._dispatch(PipelineStage.COMPLETION, document)
            return

        started_at = _utcnow()
        document = await self._set_status(document, DocumentStatus.NER_PROCESSING)
        segments = await self._store.list_segments(document.id)
        result = await self._ner.process_segments(document, segments, document.indexing_config)

        metadata = {
            **document.processing_metadata,
            "ner": {
                "started_at": started_at.isoformat(),
                "completed_at": _utcnow().isoformat(),
                "processed_count": result.processed_count,
                "failed_count": result.failed_count,
            },
        }
        document = await self._store.update_document(document.id, processing_metadata=metadata)
        await self._dispatch(PipelineStage.COMPLETION, document)

    # ------------------------------------------------------------------
    # Completion gate
    # ------------------------------------------------------------------

    async def _completion(self, document: Document, payload: dict[str, Any]) -> None:
        unresolved = await self._store.count_segments(document.id, UNRESOLVED_SEGMENT_STATUSES)
        if unresolved:
            error = f"{unresolved} segments failed to embed properly"
            self._logger.error("document_incomplete", unresolved=unresolved)
            document = await self._store.update_document(
                document.id,
                indexing_status=DocumentStatus.EMBEDDING_FAILED,
                last_error=error,
                stopped_at=_utcnow(),
            )
            await self._notify(
                document,
                status=DocumentStatus.EMBEDDING_FAILED,
                stage=PipelineStage.COMPLETION,
                message=error,
            )
            return

        metadata = {
            **document.processing_metadata,
            "current_stage": PipelineStage.COMPLETION.value,
            "completed_at": _utcnow().isoformat(),
        }
        document = await self._store.update_document(
            document.id,
            indexing_status=DocumentStatus.COMPLETED,
            last_error=None,
            stopped_at=None,
            processing_metadata=metadata,
        )
        self._logger.info("document_completed")
        await self._notify(
            document,
            status=DocumentStatus.COMPLETED,
            stage=PipelineStage.COMPLETION,
            message="Document indexing completed",
            progress=100,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _set_status(self, document: Document, status: DocumentStatus) -> Document:
        return await self._store.update_document(document.id, indexing_status=status)

    async def _dispatch(self, stage: PipelineStage, document: Document, **extra: Any) -> None:
        await self._dispatcher.dispatch(
            stage.value,
            {"document_id": document.id, "dataset_id": document.dataset_id, **extra},
        )

    async def _fail(self, stage: PipelineStage, document: Document, exc: Exception) -> None:
        """Record *exc* on the document under the stage's failed status."""
        status = stage.failed_status
        error = str(exc)
        self._logger.error(
            "stage_failed",
            failed_status=status.value,
            error=error,
            error_type=type(exc).__name__,
            expected=isinstance(exc, KBIndexError),
        )
        try:
            document = await self._store.update_document(
                document.id,
                indexing_status=status,
                last_error=error,
                stopped_at=_utcnow(),
            )
        except KeyError:
            self._logger.warning("failed_status_not_recorded", reason="document deleted")
            return
        await self._notify(document, status=status, stage=stage, message=error)

    async def _notify(
        self,
        document: Document,
        status: DocumentStatus,
        stage: PipelineStage,
        message: str,
        progress: int | None = None,
        **extra: Any,
    ) -> None:
        if self._notifier is None:
            return
        event: dict[str, Any] = {
            "status": status.value,
            "stage": stage.value,
            "message": message,
            **extra,
        }
        if progress is not None:
            event["progress"] = progress
        try:
            await self._notifier.notify(document.id, document.dataset_id, event)
        except Exception as exc:  # noqa: BLE001 -- notifications are best effort
            self._logger.warning("progress_notify_failed", error=str(exc))
