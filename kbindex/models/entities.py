"""Entity-extraction configuration and result models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ExtractionMethod(str, Enum):  # noqa: UP042
    """How keywords are pulled out of a segment."""

    PATTERN_MODEL = "pattern+model"
    NGRAM = "ngram"


class EntityExtractionConfig(BaseModel):
    """Tuning knobs for :class:`~kbindex.services.entity_extractor.EntityExtractor`."""

    model_config = ConfigDict(frozen=True)

    method: ExtractionMethod = ExtractionMethod.NGRAM
    max_entities: int = Field(default=8, ge=1)
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    # Characters per model window.
    window_size: int = Field(default=512, ge=16)


class EntityExtractionResult(BaseModel):
    """Entities found in one text, with the method that produced them."""

    model_config = ConfigDict(frozen=True)

    entities: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    method: ExtractionMethod = ExtractionMethod.NGRAM
    model_used: str | None = None
