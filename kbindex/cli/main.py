"""Command-line interface for the kbindex indexing pipeline.

Usage::

    python -m kbindex.cli index --file notes.md --strategy markdown --parent-child
    python -m kbindex.cli split --file notes.md --strategy sentence --chunk-size 500
    python -m kbindex.cli status --document-id <id>
    python -m kbindex.cli repair --document-id <id>
    python -m kbindex.cli models --provider ollama
    python -m kbindex.cli --config staging.yaml index --file notes.md

Chunking, batch and NER defaults come from the YAML config merged with the
environment (see :func:`kbindex.config.load_config`); flags override both.

Heavy providers (fastembed, transformers) are only loaded by the commands
that embed or extract entities.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from kbindex.config.loader import load_config
from kbindex.config.settings import Settings
from kbindex.interfaces.document_store import IDocumentStore
from kbindex.models.config import IndexingConfig, SplitStrategy
from kbindex.models.document import Document, DocumentStatus
from kbindex.models.embedding import ProviderKind
from kbindex.models.entities import ExtractionMethod
from kbindex.pipeline.orchestrator import IndexingPipeline
from kbindex.pipeline.progress_tracker import ALL_DOCUMENTS, ProgressTracker
from kbindex.providers.cache.memory_cache import MemoryCacheProvider
from kbindex.providers.dispatch.in_process import InProcessJobDispatcher
from kbindex.providers.embedding import build_embedding_provider
from kbindex.providers.extraction.file_extractor import FileTextExtractor
from kbindex.providers.store.memory_store import InMemoryDocumentStore
from kbindex.providers.store.sqlite_store import SQLiteDocumentStore
from kbindex.services.chunking.text_splitter import TextSplitter
from kbindex.services.dimension_guard import DimensionGuard
from kbindex.services.embedding_orchestrator import EmbeddingOrchestrator
from kbindex.services.entity_extractor import EntityExtractor
from kbindex.services.model_mapping import ModelMappingService
from kbindex.services.ner_processing import NerProcessor
from kbindex.services.worker_pool import EmbeddingWorkerPool
from kbindex.utils.errors import KBIndexError
from kbindex.utils.logging import configure_logging

_MEMORY_DB = ":memory:"


@dataclass
class _Runtime:
    """Everything one ``index`` run needs, built from :class:`Settings`."""

    store: IDocumentStore
    dispatcher: InProcessJobDispatcher
    pipeline: IndexingPipeline
    tracker: ProgressTracker
    pool: EmbeddingWorkerPool


async def _open_store(db_path: str) -> IDocumentStore:
    if db_path == _MEMORY_DB:
        return InMemoryDocumentStore()
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    store = SQLiteDocumentStore(db_path)
    await store.initialize()
    return store


async def _build_runtime(
    app_settings: Settings,
    app_config: dict,
    provider_kind: ProviderKind,
    db_path: str,
    ner_method: ExtractionMethod,
) -> _Runtime:
    """Wire store, providers, worker pool, dispatcher and pipeline together."""
    store = await _open_store(db_path)
    provider = build_embedding_provider(app_settings, provider_kind)

    pool = EmbeddingWorkerPool(
        handler=lambda task: provider.embed_blocking(task.text, task.model),
        worker_count=app_settings.resolved_worker_count(),
        max_queue_size=app_settings.embedding_max_queue_size,
        task_timeout_ms=app_settings.embedding_worker_timeout,
        restart_backoff=float(app_config.get("worker_pool", {}).get("restart_backoff_seconds", 1.0)),
        enabled=app_settings.embedding_worker_pool_enabled,
    )
    tracker = ProgressTracker()
    mapping = ModelMappingService()
    cache = MemoryCacheProvider(
        max_size=app_settings.embedding_cache_size, ttl=app_settings.embedding_cache_ttl
    )

    classifier = None
    if ner_method is ExtractionMethod.PATTERN_MODEL:
        from kbindex.providers.ner.transformers_classifier import TransformersTokenClassifier

        classifier = TransformersTokenClassifier(model_name=app_settings.ner_model)

    dispatcher = InProcessJobDispatcher(
        max_concurrent_jobs=app_settings.max_concurrent_jobs,
        max_attempts=app_settings.job_max_attempts,
        retry_backoff=app_settings.job_retry_backoff,
    )
    pipeline = IndexingPipeline(
        store=store,
        dispatcher=dispatcher,
        embedding_orchestrator=EmbeddingOrchestrator(
            store, provider, model_mapping=mapping, cache=cache, worker_pool=pool, notifier=tracker
        ),
        ner_processor=NerProcessor(store, EntityExtractor(classifier=classifier), notifier=tracker),
        model_mapping=mapping,
        extractor=FileTextExtractor(),
        notifier=tracker,
    )
    pipeline.register()
    return _Runtime(store, dispatcher, pipeline, tracker, pool)


def _print_progress(document_id: str, snapshot: dict[str, Any]) -> None:
    print(f"  [{snapshot['stage']:<10}] {snapshot['progress']:5.1f}%  {snapshot['message']}")


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_index(args: argparse.Namespace, app_settings: Settings, app_config: dict) -> int:
    """Run the full pipeline over one file and print a summary."""
    path = Path(args.file)
    provider_kind = ProviderKind(args.provider or app_settings.embedding_provider)
    ner_method = ExtractionMethod(args.ner_method)
    enable_ner = app_settings.ner_enabled if args.ner is None else args.ner
    ner_section = app_config.get("ner", {})

    try:
        config = IndexingConfig(
            strategy=SplitStrategy(args.strategy),
            chunk_size=args.chunk_size,
            chunk_overlap=args.chunk_overlap,
            enable_parent_child=args.parent_child,
            use_model_defaults=args.use_model_defaults,
            embedding_model=args.model or app_settings.embedding_model,
            embedding_provider=provider_kind,
            batch_size=app_config.get("embedding", {}).get("batch_size", 5),
            enable_ner=enable_ner,
            ner_method=ner_method,
            ner_batch_size=ner_section.get("batch_size", 10),
            max_entities=ner_section.get("max_entities", 8),
        )
    except ValidationError as exc:
        print(f"Invalid indexing configuration: {exc.errors()[0]['msg']}", file=sys.stderr)
        return 2

    runtime = await _build_runtime(app_settings, app_config, provider_kind, args.db, ner_method)
    runtime.tracker.register_listener(ALL_DOCUMENTS, _print_progress)

    document = Document(
        dataset_id=args.dataset,
        name=path.name,
        source_path=str(path),
        doc_type=path.suffix.lstrip(".").lower() or "txt",
        indexing_config=config,
    )
    print(f"Indexing {path} as document {document.id}")
    print(f"  Provider: {provider_kind.value} | Model: {config.embedding_model} | Store: {args.db}")

    try:
        await runtime.pipeline.start(document)
        await runtime.dispatcher.run_until_idle()
    finally:
        runtime.pool.shutdown()

    final = await runtime.store.get_document(document.id)
    segments = await runtime.store.list_segments(document.id)
    await runtime.store.close()
    if final is None:
        print("Document disappeared from the store.", file=sys.stderr)
        return 1

    by_status = Counter(s.status.value for s in segments)
    print("\nIndexing finished:")
    print(f"  Status:      {final.indexing_status.value}")
    print(f"  Segments:    {len(segments)}")
    for status, count in sorted(by_status.items()):
        print(f"    {status:<15} {count}")
    print(f"  Model:       {final.embedding_model}")
    print(f"  Dimensions:  {final.embedding_dimensions}")
    if final.last_error:
        print(f"  Last error:  {final.last_error}")
    for failure in runtime.dispatcher.failures:
        print(f"  Job failed:  {failure.stage} after {failure.attempts} attempt(s): {failure.error}")
    return 0 if final.indexing_status is DocumentStatus.COMPLETED else 1


async def _handle_split(args: argparse.Namespace) -> int:
    """Print the chunks a strategy produces for a file, without embedding."""
    path = Path(args.file)
    text = await FileTextExtractor().extract_text(str(path), path.suffix.lstrip(".").lower() or "txt")
    chunks = TextSplitter().split(
        text,
        strategy=args.strategy,
        chunk_size=args.chunk_size,
        chunk_overlap=args.chunk_overlap,
    )
    for index, chunk in enumerate(chunks, start=1):
        print(f"--- chunk {index} ({len(chunk)} chars) ---")
        print(chunk)
    print(f"\n{len(chunks)} chunks")
    return 0


async def _handle_status(args: argparse.Namespace) -> int:
    store = await _open_store(args.db)
    document = await store.get_document(args.document_id)
    if document is None:
        print(f"Document {args.document_id} not found.", file=sys.stderr)
        return 1
    segments = await store.list_segments(document.id)
    await store.close()

    print(f"Document {document.id} ({document.name or 'unnamed'})")
    print(f"  Status:      {document.indexing_status.value}")
    print(f"  Model:       {document.embedding_model}")
    print(f"  Dimensions:  {document.embedding_dimensions}")
    if document.last_error:
        print(f"  Last error:  {document.last_error}")
        print(f"  Stopped at:  {document.stopped_at}")
    for status, count in sorted(Counter(s.status.value for s in segments).items()):
        print(f"    {status:<15} {count}")
    return 0


async def _handle_repair(args: argparse.Namespace) -> int:
    store = await _open_store(args.db)
    if await store.get_document(args.document_id) is None:
        print(f"Document {args.document_id} not found.", file=sys.stderr)
        return 1
    result = await DimensionGuard(store).repair(args.document_id)
    await store.close()

    if not result.detached_segment_ids:
        print(f"Document {args.document_id} is consistent ({result.majority_dimension} dimensions).")
        return 0
    print(
        f"Detached {len(result.detached_segment_ids)} segments; "
        f"document now uses {result.majority_dimension} dimensions."
    )
    print("Re-run the embedding stage to re-embed them.")
    return 0


def _handle_models(args: argparse.Namespace, app_settings: Settings) -> int:
    provider = ProviderKind(args.provider or app_settings.embedding_provider)
    print(f"Embedding models for provider '{provider.value}':")
    for entry in ModelMappingService().models_for_provider(provider):
        print(f"  {entry['model']:<40} -> {entry['name']:<40} {entry['dimensions']:>5}d")
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _build_parser(app_settings: Settings, app_config: dict | None = None) -> argparse.ArgumentParser:
    """Build the argument parser; chunking and NER defaults come from *app_config*."""
    app_config = app_config or {}
    chunking = app_config.get("chunking", {})
    ner_section = app_config.get("ner", {})

    parser = argparse.ArgumentParser(
        prog="kbindex",
        description="Chunk, embed and index documents into a knowledge base.",
    )
    parser.add_argument(
        "--config", default="config/config.yaml", help="YAML config file (default: config/config.yaml)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")
    strategies = [s.value for s in SplitStrategy]
    providers = [p.value for p in ProviderKind]
    default_strategy = chunking.get("strategy", SplitStrategy.RECURSIVE_CHARACTER.value)
    default_size = chunking.get("chunk_size", 1000)
    default_overlap = chunking.get("chunk_overlap", 200)

    index_parser = subparsers.add_parser("index", help="Run the full indexing pipeline on a file")
    index_parser.add_argument("--file", required=True, help="Path to the document")
    index_parser.add_argument("--dataset", default="default", help="Dataset id (default: default)")
    index_parser.add_argument("--strategy", default=default_strategy, choices=strategies)
    index_parser.add_argument("--chunk-size", type=int, default=default_size, dest="chunk_size")
    index_parser.add_argument("--chunk-overlap", type=int, default=default_overlap, dest="chunk_overlap")
    index_parser.add_argument(
        "--parent-child",
        action="store_true",
        default=bool(chunking.get("enable_parent_child", False)),
        dest="parent_child",
        help="Build parent/child segments",
    )
    index_parser.add_argument(
        "--use-model-defaults",
        action="store_true",
        default=bool(chunking.get("use_model_defaults", False)),
        dest="use_model_defaults",
        help="Raise the chunk size to the model's recommendation",
    )
    index_parser.add_argument(
        "--ner",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Extract keywords after embedding (default: NER_ENABLED)",
    )
    index_parser.add_argument(
        "--ner-method",
        default=ner_section.get("method", ExtractionMethod.NGRAM.value),
        choices=[m.value for m in ExtractionMethod],
        dest="ner_method",
    )
    index_parser.add_argument("--model", default=None, help="Logical embedding model")
    index_parser.add_argument("--provider", default=None, choices=providers)
    index_parser.add_argument("--db", default=app_settings.document_db_path, help="SQLite path or :memory:")

    split_parser = subparsers.add_parser("split", help="Print the chunks for a file")
    split_parser.add_argument("--file", required=True, help="Path to the document")
    split_parser.add_argument("--strategy", default=default_strategy, choices=strategies)
    split_parser.add_argument("--chunk-size", type=int, default=default_size, dest="chunk_size")
    split_parser.add_argument("--chunk-overlap", type=int, default=default_overlap, dest="chunk_overlap")

    status_parser = subparsers.add_parser("status", help="Show a document's indexing status")
    status_parser.add_argument("--document-id", required=True, dest="document_id")
    status_parser.add_argument("--db", default=app_settings.document_db_path)

    repair_parser = subparsers.add_parser(
        "repair", help="Detach segments whose embedding dimension disagrees with the majority"
    )
    repair_parser.add_argument("--document-id", required=True, dest="document_id")
    repair_parser.add_argument("--db", default=app_settings.document_db_path)

    models_parser = subparsers.add_parser("models", help="List embedding models per provider")
    models_parser.add_argument("--provider", default=None, choices=providers)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point; exits with the command's status code."""
    app_settings = Settings()

    # --config has to be known before the real parser so YAML values can seed its defaults
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--config", default="config/config.yaml")
    known, _ = pre_parser.parse_known_args(argv)
    try:
        app_config = load_config(known.config, settings=app_settings)
    except KBIndexError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)

    parser = _build_parser(app_settings, app_config)
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    log_config = app_config.get("logging", {})
    configure_logging(
        log_config.get("level", app_settings.log_level),
        json_output=bool(log_config.get("json", False)),
    )

    try:
        if args.command == "index":
            exit_code = asyncio.run(_handle_index(args, app_settings, app_config))
        elif args.command == "split":
            exit_code = asyncio.run(_handle_split(args))
        elif args.command == "status":
            exit_code = asyncio.run(_handle_status(args))
        elif args.command == "repair":
            exit_code = asyncio.run(_handle_repair(args))
        else:
            exit_code = _handle_models(args, app_settings)
    except KBIndexError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 2

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
