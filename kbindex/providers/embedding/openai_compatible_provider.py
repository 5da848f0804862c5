"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` clients to implement :class:`IEmbeddingProvider` for
both real OpenAI and DashScope's OpenAI-compatible mode.  The sync client
serves worker-pool threads; the async client serves the in-loop path.
"""

from __future__ import annotations

import openai
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

_REQUEST_TIMEOUT = 60.0


class OpenAICompatibleEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Parameters
    ----------
    kind:
        :attr:`ProviderKind.OPENAI` or :attr:`ProviderKind.DASHSCOPE`.
    api_key:
        Key for the service; the provider reports itself unavailable
        without one.
    base_url:
        Endpoint override; the kind's default endpoint when empty.
    """

    def __init__(
        self,
        kind: ProviderKind = ProviderKind.OPENAI,
        api_key: str = "",
        base_url: str = "",
        max_retries: int = 2,
    ) -> None:
        if kind not in (ProviderKind.OPENAI, ProviderKind.DASHSCOPE):
            raise ValueError(f"{kind.value} is not an OpenAI-compatible provider")
        self._kind = kind
        self._profile = profile_for(kind)
        self._api_key = api_key
        self._base_url = base_url or self._profile.default_base_url

        client_kwargs: dict = {
            "api_key": api_key or "unset",
            "base_url": self._base_url,
            "timeout": _REQUEST_TIMEOUT,
            "max_retries": max_retries,
        }
        self._client = openai.OpenAI(**client_kwargs)
        self._async_client = openai.AsyncOpenAI(**client_kwargs)

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    def embed_blocking(self, text: str, model: str) -> EmbeddingResponse:
        try:
            response = self._client.embeddings.create(input=[text], model=model)
        except openai.APIError as exc:
            raise self._translate(exc, model) from exc
        return self._to_response(response, model)

    async def embed(self, text: str, model: str) -> EmbeddingResponse:
        try:
            response = await self._async_client.embeddings.create(input=[text], model=model)
        except openai.APIError as exc:
            raise self._translate(exc, model) from exc
        return self._to_response(response, model)

    def get_kind(self) -> ProviderKind:
        return self._kind

    def get_provider_name(self) -> str:
        return self._kind.value

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _to_response(self, response: object, model: str) -> EmbeddingResponse:
        vector = self._profile.parse_vector(response.model_dump())  # type: ignore[attr-defined]
        usage = getattr(response, "usage", None)
        logger.debug(
            "openai_embedding",
            provider=self._kind.value,
            model=model,
            dimensions=len(vector),
            tokens=usage.total_tokens if usage else None,
        )
        return EmbeddingResponse(embedding=vector, model=model, dimensions=len(vector))

    def _translate(self, exc: openai.APIError, model: str) -> ProviderError:
        """Map an openai exception onto the kbindex provider error family."""
        name = self.get_provider_name()
        if isinstance(exc, openai.RateLimitError):
            return RateLimitError(message=f"Rate limited embedding with {model}", provider_name=name)
        if isinstance(exc, openai.NotFoundError):
            return ModelNotFoundError(message=f"Model '{model}' not found", provider_name=name)
        if isinstance(exc, openai.APIConnectionError):
            return ProviderUnavailableError(
                message=f"Cannot reach {self._base_url}: {exc}", provider_name=name
            )
        return ProviderError(message=f"Embedding API error: {exc}", provider_name=name)
