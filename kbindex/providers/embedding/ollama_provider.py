"""Ollama embedding provider adapter (local/free).

Calls Ollama's native ``/api/embeddings`` endpoint over httpx.  A shared
sync client serves worker-pool threads; the async path opens a short-lived
client per call so it never outlives the event loop that created it.
"""

from __future__ import annotations

import httpx
import structlog

from kbindex.interfaces.embedding_provider import IEmbeddingProvider
from kbindex.models.embedding import EmbeddingResponse, ProviderKind
from kbindex.providers.embedding.profiles import profile_for
from kbindex.utils.errors import (
    ModelNotFoundError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
)

logger = structlog.get_logger(logger_name=__name__)


class OllamaEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an Ollama server.

    Parameters
    ----------
    base_url:
        Ollama server URL; ``http://localhost:11434`` when empty.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(self, base_url: str = "", timeout: float = 60.0) -> None:
        self._profile = profile_for(ProviderKind.OLLAMA)
        self._base_url = (base_url or self._profile.default_base_url).rstrip("/")
        self._timeout = timeout
        self._client = httpx.Client(base_url=self._base_url, timeout=timeout)

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    def embed_blocking(self, text: str, model: str) -> EmbeddingResponse:
        try:
            response = self._client.post("/api/embeddings", json={"model": model, "prompt": text})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise self._translate(exc, model) from exc
        return self._to_response(response.json(), model)

    async def embed(self, text: str, model: str) -> EmbeddingResponse:
        try:
            async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout) as client:
                response = await client.post(
                    "/api/embeddings", json={"model": model, "prompt": text}
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise self._translate(exc, model) from exc
        return self._to_response(response.json(), model)

    def get_kind(self) -> ProviderKind:
        return ProviderKind.OLLAMA

    def get_provider_name(self) -> str:
        return "ollama"

    def is_available(self) -> bool:
        """Return ``True`` if the Ollama server is reachable."""
        try:
            response = self._client.get("/api/tags", timeout=3.0)
            return response.status_code == 200
        except (httpx.ConnectError, httpx.TimeoutException):
            return False

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _to_response(self, payload: object, model: str) -> EmbeddingResponse:
        vector = self._profile.parse_vector(payload)
        if not vector:
            raise ProviderError(
                message=f"Ollama returned an empty embedding for {model}",
                provider_name=self.get_provider_name(),
            )
        return EmbeddingResponse(embedding=vector, model=model, dimensions=len(vector))

    def _translate(self, exc: httpx.HTTPError, model: str) -> ProviderError:
        name = self.get_provider_name()
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            if status == 404:
                return ModelNotFoundError(
                    message=f"Model '{model}' is not pulled on {self._base_url}",
                    provider_name=name,
                )
            if status == 429:
                return RateLimitError(provider_name=name)
            return ProviderError(message=f"Ollama returned HTTP {status}", provider_name=name)
        if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
            return ProviderUnavailableError(
                message=f"Cannot reach Ollama at {self._base_url}: {exc}", provider_name=name
            )
        return ProviderError(message=f"Ollama request failed: {exc}", provider_name=name)
