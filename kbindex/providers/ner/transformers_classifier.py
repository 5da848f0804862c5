"""Token-classification backend using the HuggingFace ``transformers`` pipeline.

The pipeline is built lazily on the first :meth:`classify` call.  When the
primary (Chinese) model cannot be loaded, the multilingual fallback is
tried before giving up.  ``transformers`` is imported inside the loader so
the package imports cleanly without the ``ner`` extra.
"""

from __future__ import annotations

import threading
from typing import Any

import structlog

from kbindex.interfaces.token_classifier import ITokenClassifier, TokenPrediction
from kbindex.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)

CHINESE_NER_MODEL = "ckiplab/bert-base-chinese-ner"
MULTILINGUAL_NER_MODEL = "Davlan/bert-base-multilingual-cased-ner-hrl"


class TransformersTokenClassifier(ITokenClassifier):
    """Runs a ``token-classification`` pipeline over short text windows.

    Parameters
    ----------
    model_name:
        Primary model to load.
    fallback_model:
        Model tried when the primary fails to load; ``None`` disables the
        fallback.
    device:
        ``-1`` for CPU, or a CUDA device index.
    """

    def __init__(
        self,
        model_name: str = CHINESE_NER_MODEL,
        fallback_model: str | None = MULTILINGUAL_NER_MODEL,
        device: int = -1,
    ) -> None:
        self._candidates = [model_name] + ([fallback_model] if fallback_model else [])
        self._device = device
        self._pipe: Any = None
        self._current_model = model_name
        self._lock = threading.Lock()

    def _load(self) -> Any:
        with self._lock:
            if self._pipe is not None:
                return self._pipe
            try:
                from transformers import pipeline
            except ImportError as exc:
                raise ProviderError(
                    message="transformers is not installed; install the 'ner' extra",
                    provider_name="transformers",
                ) from exc

            last_error: Exception | None = None
            for candidate in self._candidates:
                logger.info("loading_ner_model", model=candidate)
                try:
                    self._pipe = pipeline("token-classification", model=candidate, device=self._device)
                except Exception as exc:  # noqa: BLE001 -- any load failure moves to the next model
                    logger.warning("ner_model_load_failed", model=candidate, error=str(exc))
                    last_error = exc
                    continue
                self._current_model = candidate
                logger.info("ner_model_loaded", model=candidate)
                return self._pipe

            raise ProviderError(
                message=f"Failed to load any NER model ({', '.join(self._candidates)}): {last_error}",
                provider_name="transformers",
            ) from last_error

    # ------------------------------------------------------------------
    # ITokenClassifier implementation
    # ------------------------------------------------------------------

    def classify(self, text: str) -> list[TokenPrediction]:
        if not text.strip():
            return []
        pipe = self._load()
        try:
            raw = pipe(text)
        except Exception as exc:
            raise ProviderError(
                message=f"NER inference failed: {exc}",
                provider_name="transformers",
            ) from exc

        return [
            TokenPrediction(
                word=str(item.get("word", "")),
                entity=str(item.get("entity") or item.get("entity_group") or ""),
                score=float(item.get("score", 0.0)),
                start=item.get("start"),
                end=item.get("end"),
            )
            for item in raw
        ]

    def get_model_name(self) -> str:
        return self._current_model

    def is_available(self) -> bool:
        """Return ``True`` if transformers is installed."""
        try:
            import transformers  # noqa: F401

            return True
        except ImportError:
            return False
