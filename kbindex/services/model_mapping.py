"""Logical embedding model → provider-specific model name mapping.

A dataset declares one *logical* embedding model (e.g. ``Xenova/bge-m3``).
Each backend knows that model under its own name, and the document's
declared dimension must stay the same whichever backend produced the
vectors.  :class:`ModelMappingService` is the single table that answers
"what does provider X call this model" and "how long are its vectors".

It also carries each model's recommended chunk size, used when a dataset
opts into model-aware chunk defaults.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from kbindex.models.config import IndexingConfig, max_chunk_size_for
from kbindex.models.embedding import ProviderKind
from kbindex.providers.embedding.profiles import profile_for

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MODEL = "Xenova/bge-m3"
DEFAULT_DIMENSIONS = 1024
CUSTOM_MODEL = "custom"


@dataclass(frozen=True)
class ModelMapping:
    """Names of one logical model on every backend, plus its vector length."""

    local: str
    ollama: str
    dashscope: str
    dimensions: int
    recommended_chunk_size: int
    openai: str = ""
    description: str = ""

    def name_for(self, column: str) -> str:
        return getattr(self, column, "") or self.local


def _same_everywhere(name: str, dimensions: int, chunk_size: int, description: str) -> ModelMapping:
    return ModelMapping(
        local=name,
        ollama=name,
        dashscope=name,
        openai=name,
        dimensions=dimensions,
        recommended_chunk_size=chunk_size,
        description=description,
    )


_MODEL_MAPPINGS: dict[str, ModelMapping] = {
    # Local transformer models, 1024 dimensions.
    "Xenova/bge-m3": ModelMapping(
        local="Xenova/bge-m3",
        ollama="Xenova/bge-m3",
        dashscope="text-embedding-v4",
        dimensions=1024,
        recommended_chunk_size=2400,
        description="BGE-M3: multilingual model, good for diverse languages",
    ),
    "mixedbread-ai/mxbai-embed-large-v1": ModelMapping(
        local="mixedbread-ai/mxbai-embed-large-v1",
        ollama="mixedbread-ai/mxbai-embed-large-v1",
        dashscope="text-embedding-v4",
        dimensions=1024,
        recommended_chunk_size=1200,
        description="mxbai-embed-large-v1: high-quality English model",
    ),
    "WhereIsAI/UAE-Large-V1": ModelMapping(
        local="WhereIsAI/UAE-Large-V1",
        ollama="WhereIsAI/UAE-Large-V1",
        dashscope="text-embedding-v4",
        dimensions=1024,
        recommended_chunk_size=1000,
        description="UAE-Large-V1: universal angle embedding",
    ),
    # Ollama-served models.
    "qwen3-embedding:0.6b": ModelMapping(
        local="qwen3-embedding:0.6b",
        ollama="qwen3-embedding:0.6b",
        dashscope="text-embedding-v4",
        dimensions=2560,
        recommended_chunk_size=8000,
        description="Qwen3 Embedding 0.6B (Ollama)",
    ),
    "qwen3-embedding:4b": ModelMapping(
        local="qwen3-embedding:4b",
        ollama="qwen3-embedding:4b",
        dashscope="text-embedding-v4",
        dimensions=2560,
        recommended_chunk_size=10000,
        description="Qwen3 Embedding 4B (Ollama)",
    ),
    "embeddinggemma:300m": ModelMapping(
        local="embeddinggemma:300m",
        ollama="embeddinggemma:300m",
        dashscope="text-embedding-v4",
        dimensions=1024,
        recommended_chunk_size=1500,
        description="Embedding Gemma 300M (Ollama)",
    ),
    "nomic-embed-text:v1.5": ModelMapping(
        local="nomic-embed-text:v1.5",
        ollama="nomic-embed-text:v1.5",
        dashscope="text-embedding-v4",
        dimensions=768,
        recommended_chunk_size=3000,
        description="Nomic Embed Text v1.5 (Ollama)",
    ),
    # DashScope models, 1536 dimensions.
    "text-embedding-v1": _same_everywhere("text-embedding-v1", 1536, 2000, "Text Embedding V1 (DashScope)"),
    "text-embedding-v2": _same_everywhere("text-embedding-v2", 1536, 2500, "Text Embedding V2 (DashScope)"),
    "text-embedding-v3": _same_everywhere("text-embedding-v3", 1536, 3000, "Text Embedding V3 (DashScope)"),
    "text-embedding-v4": _same_everywhere("text-embedding-v4", 1536, 4000, "Text Embedding V4 (DashScope)"),
    # OpenAI models.
    "text-embedding-3-small": _same_everywhere("text-embedding-3-small", 1536, 4000, "OpenAI text-embedding-3-small"),
    "text-embedding-3-large": _same_everywhere("text-embedding-3-large", 3072, 4000, "OpenAI text-embedding-3-large"),
    # User-supplied model name; must produce 1024-dimensional vectors.
    CUSTOM_MODEL: _same_everywhere(CUSTOM_MODEL, 1024, 1000, "Custom model (1024 dimensions)"),
}


class ModelMappingService:
    """Resolves logical embedding models to concrete provider model names."""

    def __init__(self, mappings: dict[str, ModelMapping] | None = None) -> None:
        self._mappings = dict(mappings or _MODEL_MAPPINGS)

    # ------------------------------------------------------------------
    # Forward lookups
    # ------------------------------------------------------------------

    def resolve(
        self,
        logical_model: str,
        provider: ProviderKind | str,
        custom_model_name: str | None = None,
    ) -> str:
        """Return the model name *provider* expects for *logical_model*.

        Unknown models fall back to :data:`DEFAULT_MODEL` with a warning.
        The ``custom`` model resolves to *custom_model_name* when given.
        """
        if logical_model == CUSTOM_MODEL and custom_model_name:
            return custom_model_name

        mapping = self._mappings.get(logical_model)
        if mapping is None:
            logger.warning("unknown_embedding_model", model=logical_model, fallback=DEFAULT_MODEL)
            return DEFAULT_MODEL

        column = profile_for(provider).mapping_column
        name = mapping.name_for(column)
        logger.debug("model_resolved", model=logical_model, provider=str(provider), name=name)
        return name

    def dimensions_for(self, logical_model: str) -> int:
        """Return the vector length *logical_model* produces (1024 when unknown)."""
        mapping = self._mappings.get(logical_model)
        if mapping is None:
            logger.warning("unknown_embedding_model_dimensions", model=logical_model)
            return DEFAULT_DIMENSIONS
        return mapping.dimensions

    def mapping_for(self, logical_model: str) -> ModelMapping | None:
        return self._mappings.get(logical_model)

    def is_known(self, logical_model: str) -> bool:
        return logical_model in self._mappings

    def models_for_provider(self, provider: ProviderKind | str) -> list[dict[str, object]]:
        """List every logical model with the name *provider* uses for it."""
        column = profile_for(provider).mapping_column
        return [
            {
                "model": model,
                "name": mapping.name_for(column),
                "dimensions": mapping.dimensions,
                "description": mapping.description,
            }
            for model, mapping in self._mappings.items()
        ]

    # ------------------------------------------------------------------
    # Reverse lookups
    # ------------------------------------------------------------------

    def logical_from_stored_name(self, stored_name: str) -> str | None:
        """Return the first logical model any backend stores as *stored_name*."""
        for model, mapping in self._mappings.items():
            if stored_name in (mapping.local, mapping.ollama, mapping.dashscope, mapping.openai):
                return model
        return None

    def stored_names_for(self, logical_model: str) -> list[str]:
        """Every distinct name embeddings of *logical_model* may be stored under."""
        mapping = self._mappings.get(logical_model)
        if mapping is None:
            return [DEFAULT_MODEL]
        names: list[str] = []
        for name in (mapping.local, mapping.ollama, mapping.dashscope, mapping.openai):
            if name and name not in names:
                names.append(name)
        return names

    # ------------------------------------------------------------------
    # Chunk defaults
    # ------------------------------------------------------------------

    def recommended_chunk_size(self, logical_model: str) -> int | None:
        mapping = self._mappings.get(logical_model)
        return mapping.recommended_chunk_size if mapping else None

    def apply_model_defaults(self, config: IndexingConfig) -> IndexingConfig:
        """Raise the chunk size to the model's recommendation and cap overlap at 10%.

        The raised size never exceeds the model's chunk-size ceiling.

        A no-op unless ``config.use_model_defaults`` is set.
        """
        if not config.use_model_defaults:
            return config
        recommended = self.recommended_chunk_size(config.embedding_model)
        if recommended is None:
            return config

        size = min(max(config.chunk_size, recommended), max_chunk_size_for(config.embedding_model))
        overlap = min(config.chunk_overlap, size // 10)
        logger.info(
            "model_chunk_defaults_applied",
            model=config.embedding_model,
            chunk_size=size,
            chunk_overlap=overlap,
        )
        return config.model_copy(update={"chunk_size": size, "chunk_overlap": overlap})
