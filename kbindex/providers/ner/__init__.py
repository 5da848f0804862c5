"""Token-classification (NER) backends."""

from kbindex.providers.ner.transformers_classifier import (
    CHINESE_NER_MODEL,
    MULTILINGUAL_NER_MODEL,
    TransformersTokenClassifier,
)

__all__ = ["CHINESE_NER_MODEL", "MULTILINGUAL_NER_MODEL", "TransformersTokenClassifier"]
