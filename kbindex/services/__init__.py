"""Domain services: chunking, embedding, dimension checks and entity extraction."""

from kbindex.services.dimension_guard import DimensionGuard, DimensionReport, RepairResult, SearchHit
from kbindex.services.embedding_orchestrator import (
    EmbeddingOptions,
    EmbeddingOrchestrator,
    EmbeddingRunResult,
    embedding_hash,
)
from kbindex.services.entity_extractor import EntityExtractor
from kbindex.services.model_mapping import ModelMapping, ModelMappingService
from kbindex.services.ner_processing import NerProcessor, NerRunResult
from kbindex.services.worker_pool import EmbeddingWorkerPool

__all__ = [
    "DimensionGuard",
    "DimensionReport",
    "EmbeddingOptions",
    "EmbeddingOrchestrator",
    "EmbeddingRunResult",
    "EmbeddingWorkerPool",
    "EntityExtractor",
    "ModelMapping",
    "ModelMappingService",
    "NerProcessor",
    "NerRunResult",
    "RepairResult",
    "SearchHit",
    "embedding_hash",
]
