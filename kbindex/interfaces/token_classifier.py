"""Abstract base class for token-classification (NER) models.

The entity extractor only needs raw per-token predictions; grouping
B-/I-/E- tagged sub-tokens into entity spans happens in
:class:`~kbindex.services.entity_extractor.EntityExtractor`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class TokenPrediction:
    """One model prediction for one (sub-)token."""

    word: str
    entity: str
    score: float
    start: int | None = None
    end: int | None = None


# Concrete implementation: TransformersTokenClassifier (kbindex/providers/ner/)
class ITokenClassifier(ABC):
    """Contract for token-classification backends."""

    @abstractmethod
    def classify(self, text: str) -> list[TokenPrediction]:
        """Return per-token predictions for *text*.

        Raises
        ------
        kbindex.utils.errors.ProviderError
            If the model cannot be loaded or inference fails.
        """

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the identifier of the loaded model."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the backing library is installed."""
