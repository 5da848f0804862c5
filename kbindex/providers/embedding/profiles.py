"""Per-backend transform profiles.

Each :class:`~kbindex.models.embedding.ProviderKind` resolves once to a
:class:`ProviderProfile` naming the model-mapping column it reads, its
default endpoint, and how a raw response payload becomes a vector.
Providers look their profile up at construction time instead of
switching on the kind at every call site.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kbindex.models.embedding import ProviderKind
from kbindex.utils.errors import ProviderError


def _parse_openai_payload(payload: Any) -> list[float]:
    """``{"data": [{"embedding": [...]}]}`` (OpenAI and DashScope compatible mode)."""
    try:
        return [float(x) for x in payload["data"][0]["embedding"]]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProviderError(f"Malformed embedding response: {exc}") from exc


def _parse_ollama_payload(payload: Any) -> list[float]:
    """``{"embedding": [...]}`` from ``/api/embeddings`` or ``{"embeddings": [[...]]}`` from ``/api/embed``."""
    try:
        if "embeddings" in payload:
            return [float(x) for x in payload["embeddings"][0]]
        return [float(x) for x in payload["embedding"]]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProviderError(f"Malformed Ollama embedding response: {exc}") from exc


def _parse_local_vector(payload: Any) -> list[float]:
    """A bare vector (list or numpy array) from an in-process model."""
    try:
        return [float(x) for x in payload]
    except TypeError as exc:
        raise ProviderError(f"Local model returned a non-vector: {exc}") from exc


@dataclass(frozen=True)
class ProviderProfile:
    """Static description of one embedding backend family."""

    kind: ProviderKind
    mapping_column: str
    default_base_url: str
    parse_vector: Callable[[Any], list[float]]


PROVIDER_PROFILES: dict[ProviderKind, ProviderProfile] = {
    ProviderKind.LOCAL: ProviderProfile(
        kind=ProviderKind.LOCAL,
        mapping_column="local",
        default_base_url="",
        parse_vector=_parse_local_vector,
    ),
    ProviderKind.OLLAMA: ProviderProfile(
        kind=ProviderKind.OLLAMA,
        mapping_column="ollama",
        default_base_url="http://localhost:11434",
        parse_vector=_parse_ollama_payload,
    ),
    ProviderKind.DASHSCOPE: ProviderProfile(
        kind=ProviderKind.DASHSCOPE,
        mapping_column="dashscope",
        default_base_url="https://dashscope.aliyuncs.com/compatible-mode/v1",
        parse_vector=_parse_openai_payload,
    ),
    ProviderKind.OPENAI: ProviderProfile(
        kind=ProviderKind.OPENAI,
        mapping_column="openai",
        default_base_url="https://api.openai.com/v1",
        parse_vector=_parse_openai_payload,
    ),
}


def profile_for(kind: ProviderKind | str) -> ProviderProfile:
    """Return the :class:`ProviderProfile` for *kind*."""
    return PROVIDER_PROFILES[ProviderKind(kind)]
