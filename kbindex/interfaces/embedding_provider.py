"""Abstract base class for text-embedding service providers.

Defines the contract for turning one text into an embedding vector.
Implementations wrap fastembed (in-process ONNX), an OpenAI-compatible
HTTP API (OpenAI, DashScope compatible mode), or an Ollama server.

Every provider exposes both an ``async`` entry point, used by the embedding
stage when the worker pool is disabled, and a blocking one, called from
worker-pool threads.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from kbindex.models.embedding import EmbeddingResponse, ProviderKind


# Concrete implementations:
#   FastEmbedEmbeddingProvider        -- in-process ONNX models (ProviderKind.LOCAL)
#   OpenAICompatibleEmbeddingProvider -- OpenAI / DashScope compatible mode
#   OllamaEmbeddingProvider           -- Ollama /api/embeddings over httpx
# Located in: kbindex/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the embedding stage."""

    @abstractmethod
    def embed_blocking(self, text: str, model: str) -> EmbeddingResponse:
        """Embed *text* with *model*, blocking the calling thread.

        Must be safe to call concurrently from several worker threads.

        Parameters
        ----------
        text:
            The segment content to embed.
        model:
            Concrete provider model name, already resolved through the
            model-mapping table.

        Returns
        -------
        EmbeddingResponse
            The vector, the model that produced it and its length.

        Raises
        ------
        kbindex.utils.errors.ProviderUnavailableError
            If the backend cannot be reached.
        kbindex.utils.errors.ModelNotFoundError
            If the backend does not serve *model*.
        kbindex.utils.errors.RateLimitError
            If the backend throttled the request.
        kbindex.utils.errors.ProviderError
            For any other backend failure.
        """

    async def embed(self, text: str, model: str) -> EmbeddingResponse:
        """Async variant of :meth:`embed_blocking`.

        The default runs the blocking call on the default thread pool;
        HTTP-backed providers override it with a native async client.
        """
        return await asyncio.to_thread(self.embed_blocking, text, model)

    @abstractmethod
    def get_kind(self) -> ProviderKind:
        """Return the backend family, used to resolve model names."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier stored on every Embedding row.

        Example return values: ``"fastembed"``, ``"ollama"``, ``"dashscope"``.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable."""
