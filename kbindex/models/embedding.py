"""Embedding work items and provider responses.

``EmbeddingTask`` / ``EmbeddingResult`` are the ephemeral units that flow
through the worker pool; they are never persisted.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ProviderKind(str, Enum):  # noqa: UP042
    """Embedding backend family.

    Each kind resolves once to a :class:`~kbindex.providers.embedding.profiles.ProviderProfile`
    carrying its model-name column and response parser.
    """

    LOCAL = "local"
    OLLAMA = "ollama"
    DASHSCOPE = "dashscope"
    OPENAI = "openai"


class EmbeddingResponse(BaseModel):
    """Vector returned by an :class:`IEmbeddingProvider` for one text."""

    model_config = ConfigDict(frozen=True)

    embedding: list[float]
    model: str
    dimensions: int


class EmbeddingTask(BaseModel):
    """One text to embed, submitted to the worker pool."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    model: str
    provider: ProviderKind = ProviderKind.LOCAL
    custom_model_name: str | None = None


class EmbeddingResult(BaseModel):
    """Outcome of an :class:`EmbeddingTask`; ``error`` is set on failure."""

    model_config = ConfigDict(frozen=True)

    id: str
    embedding: list[float] = Field(default_factory=list)
    dimensions: int = 0
    model: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.embedding)
