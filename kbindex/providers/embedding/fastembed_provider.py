"""Local ONNX-based embedding provider using fastembed.

Wraps the ``fastembed`` library to implement :class:`IEmbeddingProvider`
using ONNX Runtime; **no PyTorch dependency required**.  Runs on CPU and
is the backend behind :attr:`ProviderKind.LOCAL`.

Models are loaded lazily on first use, once per model name, and shared by
every worker thread.
"""

from __future__ import annotations

import threading
from typing import Any

import structlog

from kbindex.interfaces.embedding_provider import IEmbeddingProvider
from kbindex.models.embedding import EmbeddingResponse, ProviderKind
from kbindex.providers.embedding.profiles import profile_for
from kbindex.utils.errors import ModelNotFoundError, ProviderError

logger = structlog.get_logger(logger_name=__name__)

# Logical model names with no ONNX export in fastembed's catalogue, mapped
# to the fastembed model with the same vector length.
_FASTEMBED_ALIASES: dict[str, str] = {
    "Xenova/bge-m3": "intfloat/multilingual-e5-large",
    "WhereIsAI/UAE-Large-V1": "mixedbread-ai/mxbai-embed-large-v1",
}


class FastEmbedEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by fastembed (ONNX Runtime).

    Parameters
    ----------
    cache_dir:
        Where fastembed stores downloaded model weights; fastembed's own
        default when ``None``.
    """

    def __init__(self, cache_dir: str | None = None) -> None:
        self._cache_dir = cache_dir
        self._models: dict[str, Any] = {}
        self._load_lock = threading.Lock()
        self._profile = profile_for(ProviderKind.LOCAL)

    def _load_model(self, model: str) -> Any:
        """Return the loaded fastembed model for *model*, loading it on first use."""
        with self._load_lock:
            loaded = self._models.get(model)
            if loaded is not None:
                return loaded
            try:
                from fastembed import TextEmbedding
            except ImportError as exc:
                raise ProviderError(
                    message="fastembed is not installed; install the 'local' extra",
                    provider_name=self.get_provider_name(),
                ) from exc

            onnx_name = _FASTEMBED_ALIASES.get(model, model)
            logger.info("loading_fastembed_model", model=model, onnx_model=onnx_name)
            try:
                kwargs: dict[str, Any] = {"model_name": onnx_name}
                if self._cache_dir:
                    kwargs["cache_dir"] = self._cache_dir
                loaded = TextEmbedding(**kwargs)
            except ValueError as exc:
                # fastembed raises ValueError for names outside its catalogue.
                raise ModelNotFoundError(
                    message=f"fastembed does not support model '{onnx_name}': {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            except Exception as exc:
                raise ProviderError(
                    message=f"Failed to load fastembed model '{onnx_name}': {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

            self._models[model] = loaded
            logger.info("fastembed_model_loaded", model=model)
            return loaded

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    def embed_blocking(self, text: str, model: str) -> EmbeddingResponse:
        """Embed one text on the calling thread."""
        loaded = self._load_model(model)
        try:
            # fastembed returns a generator of numpy arrays
            raw = next(iter(loaded.embed([text])))
        except Exception as exc:
            raise ProviderError(
                message=f"Fastembed embedding error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        vector = self._profile.parse_vector(raw)
        return EmbeddingResponse(embedding=vector, model=model, dimensions=len(vector))

    def get_kind(self) -> ProviderKind:
        return ProviderKind.LOCAL

    def get_provider_name(self) -> str:
        return "fastembed"

    def is_available(self) -> bool:
        """Return ``True`` if fastembed is installed."""
        try:
            import fastembed  # noqa: F401

            return True
        except ImportError:
            return False
