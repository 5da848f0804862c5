"""Embedding provider implementations.

Three implementations of IEmbeddingProvider, one per backend family:
    1. FastEmbedEmbeddingProvider        -- ONNX-based, no PyTorch (ProviderKind.LOCAL).
    2. OpenAICompatibleEmbeddingProvider -- OpenAI and DashScope compatible mode.
    3. OllamaEmbeddingProvider           -- native Ollama API over httpx.

fastembed itself is imported lazily on first use, so this package imports
cleanly without the ``local`` extra installed.
"""

from __future__ import annotations

from kbindex.config.settings import Settings
from kbindex.interfaces.embedding_provider import IEmbeddingProvider
from kbindex.models.embedding import ProviderKind
from kbindex.providers.embedding.fastembed_provider import FastEmbedEmbeddingProvider
from kbindex.providers.embedding.ollama_provider import OllamaEmbeddingProvider
from kbindex.providers.embedding.openai_compatible_provider import (
    OpenAICompatibleEmbeddingProvider,
)
from kbindex.providers.embedding.profiles import PROVIDER_PROFILES, ProviderProfile, profile_for
from kbindex.utils.errors import ConfigurationError


def build_embedding_provider(
    settings: Settings, kind: ProviderKind | None = None
) -> IEmbeddingProvider:
    """Construct the provider for *kind* (``settings.embedding_provider`` by default).

    Raises
    ------
    ConfigurationError
        If a remote provider is selected without an API key.
    """
    kind = ProviderKind(kind or settings.embedding_provider)
    if kind is ProviderKind.LOCAL:
        return FastEmbedEmbeddingProvider()
    if kind is ProviderKind.OLLAMA:
        return OllamaEmbeddingProvider(base_url=settings.base_url_for(kind))

    api_key = settings.api_key_for(kind)
    if not api_key:
        raise ConfigurationError(
            message=f"{kind.value.upper()}_API_KEY is not set",
            provider_name=kind.value,
        )
    return OpenAICompatibleEmbeddingProvider(
        kind=kind, api_key=api_key, base_url=settings.base_url_for(kind)
    )


__all__ = [
    "PROVIDER_PROFILES",
    "FastEmbedEmbeddingProvider",
    "OllamaEmbeddingProvider",
    "OpenAICompatibleEmbeddingProvider",
    "ProviderProfile",
    "build_embedding_provider",
    "profile_for",
]
