"""Unit tests for EntityExtractor, token grouping and text normalisation."""

from __future__ import annotations

import pytest

from kbindex.interfaces.token_classifier import ITokenClassifier, TokenPrediction
from kbindex.models.entities import EntityExtractionConfig, ExtractionMethod
from kbindex.services.entity_extractor import (
    MODEL_CONFIDENCE,
    NGRAM_CONFIDENCE,
    EntityExtractor,
    group_tokens,
    is_stop_word,
    normalize_text,
    split_windows,
)
from kbindex.utils.errors import ProviderError


class _StubClassifier(ITokenClassifier):
    """Tags every occurrence of the configured phrases as a single-token entity."""

    def __init__(self, phrases: list[tuple[str, str]] | None = None, error: Exception | None = None) -> None:
        self.phrases = phrases or []
        self.error = error
        self.windows: list[str] = []

    def classify(self, text: str) -> list[TokenPrediction]:
        self.windows.append(text)
        if self.error is not None:
            raise self.error
        predictions = []
        for phrase, label in self.phrases:
            start = text.find(phrase)
            if start >= 0:
                predictions.append(
                    TokenPrediction(word=phrase, entity=f"S-{label}", score=0.95, start=start, end=start + len(phrase))
                )
        return predictions

    def get_model_name(self) -> str:
        return "stub-ner"

    def is_available(self) -> bool:
        return True


MODEL_CONFIG = EntityExtractionConfig(method=ExtractionMethod.PATTERN_MODEL, max_entities=8)


# ======================================================================
# Normalisation helpers
# ======================================================================


class TestNormalizeText:
    def test_joins_spaced_article_numbers(self) -> None:
        assert normalize_text("見第1 9條規定") == "見第19條規定"

    def test_tightens_parentheses(self) -> None:
        assert normalize_text("( b )") == "(b)"

    def test_attaches_units(self) -> None:
        assert normalize_text("高度 24 米") == "高度 24米"

    def test_collapses_whitespace(self) -> None:
        assert normalize_text("  a \n\n b  ") == "a b"


class TestStopWords:
    @pytest.mark.parametrize("word", ["的", "a", "the", "Which"])
    def test_stop_words(self, word: str) -> None:
        assert is_stop_word(word)

    @pytest.mark.parametrize("word", ["第5條", "《條例》", "pipeline"])
    def test_not_stop_words(self, word: str) -> None:
        assert not is_stop_word(word)


class TestSplitWindows:
    def test_short_text_is_one_window(self) -> None:
        assert split_windows("One sentence.", 100) == ["One sentence."]

    def test_sentences_packed_into_windows(self) -> None:
        text = "First sentence here. Second sentence here. Third sentence here."
        windows = split_windows(text, 45)
        assert windows == ["First sentence here. Second sentence here.", "Third sentence here."]

    def test_long_sentence_is_cut(self) -> None:
        windows = split_windows("x" * 50, 20)
        assert windows == ["x" * 20, "x" * 20, "x" * 10]


# ======================================================================
# Token grouping
# ======================================================================


class TestGroupTokens:
    def test_bio_tags_merge_using_source_offsets(self) -> None:
        source = "John Smith works at Acme Corp"
        predictions = [
            TokenPrediction("John", "B-PER", 0.99, 0, 4),
            TokenPrediction("Smith", "I-PER", 0.97, 5, 10),
            TokenPrediction("works", "O", 0.99, 11, 16),
            TokenPrediction("Acme", "B-ORG", 0.90, 20, 24),
            TokenPrediction("Corp", "I-ORG", 0.80, 25, 29),
        ]

        grouped = group_tokens(predictions, min_confidence=0.5, source=source)

        assert [entity for entity, _ in grouped] == ["John Smith", "Acme Corp"]
        assert grouped[0][1] == pytest.approx(0.98)

    def test_wordpiece_prefixes_removed_without_offsets(self) -> None:
        predictions = [TokenPrediction("Lon", "B-LOC", 0.9), TokenPrediction("##don", "I-LOC", 0.9)]
        assert group_tokens(predictions, 0.5) == [("London", pytest.approx(0.9))]

    def test_single_token_tag_and_low_confidence(self) -> None:
        predictions = [
            TokenPrediction("IBM", "S-ORG", 0.9),
            TokenPrediction("Maybe", "B-PER", 0.2),
        ]
        assert [entity for entity, _ in group_tokens(predictions, 0.5)] == ["IBM"]

    def test_unknown_labels_and_stop_words_dropped(self) -> None:
        predictions = [TokenPrediction("thing", "B-WIDGET", 0.9), TokenPrediction("the", "B-ORG", 0.9)]
        assert group_tokens(predictions, 0.5) == []


# ======================================================================
# Extraction
# ======================================================================


class TestPatternMatching:
    def test_patterns_in_order_of_appearance(self) -> None:
        text = "請參閱《建築物條例》，高度 24米，於2023年5月1日生效。"
        assert EntityExtractor().match_patterns(text) == ["《建築物條例》", "24米", "2023年5月1日"]

    def test_iso_date_and_quoted_title(self) -> None:
        text = "Released 2024-01-31 as 「向量檢索」."
        assert EntityExtractor().match_patterns(text) == ["向量檢索", "2024-01-31"]


class TestPatternModelExtraction:
    def test_model_entities_returned(self) -> None:
        classifier = _StubClassifier(
            [("Ada Lovelace", "PER"), ("Analytical Engine", "MISC"), ("London", "LOC")]
        )
        text = "Ada Lovelace wrote notes about the Analytical Engine in London."

        result = EntityExtractor(classifier).extract(text, MODEL_CONFIG)

        assert result.method is ExtractionMethod.PATTERN_MODEL
        assert result.confidence == MODEL_CONFIDENCE
        assert result.model_used == "stub-ner"
        assert result.entities == ["Ada Lovelace", "Analytical Engine", "London"]

    def test_substrings_of_longer_entities_dropped(self) -> None:
        classifier = _StubClassifier([("Ada Lovelace", "PER"), ("Lovelace", "PER")])
        result = EntityExtractor(classifier).extract("Ada Lovelace was here.", MODEL_CONFIG)
        assert result.entities == ["Ada Lovelace"]

    def test_pattern_matches_survive_substring_rule(self) -> None:
        classifier = _StubClassifier([("512GB drive", "PRODUCT")])
        result = EntityExtractor(classifier).extract("The 512GB drive ships 2024-01-31.", MODEL_CONFIG)
        assert result.entities == ["512GB", "2024-01-31", "512GB drive"]

    def test_near_duplicates_dropped(self) -> None:
        classifier = _StubClassifier([("Acme Corporation", "ORG"), ("Acme Corporatoin", "ORG")])
        result = EntityExtractor(classifier).extract(
            "Acme Corporation, also spelled Acme Corporatoin.", MODEL_CONFIG
        )
        assert result.entities == ["Acme Corporation"]

    def test_max_entities_respected(self) -> None:
        classifier = _StubClassifier([("Alpha", "ORG"), ("Bravo", "ORG"), ("Charlie", "ORG")])
        config = EntityExtractionConfig(method=ExtractionMethod.PATTERN_MODEL, max_entities=2)
        result = EntityExtractor(classifier).extract("Alpha met Bravo and Charlie.", config)
        assert result.entities == ["Alpha", "Bravo"]

    def test_without_classifier_keeps_pattern_matches(self) -> None:
        result = EntityExtractor().extract("The data sheet lists 16GB of memory.", MODEL_CONFIG)
        assert result.method is ExtractionMethod.PATTERN_MODEL
        assert result.entities == ["16GB"]
        assert result.model_used is None


class TestFallbackToNgram:
    def test_provider_error_falls_back(self) -> None:
        classifier = _StubClassifier(error=ProviderError("model missing", provider_name="transformers"))
        result = EntityExtractor(classifier).extract("Vector search ranks passages by similarity.", MODEL_CONFIG)

        assert result.method is ExtractionMethod.NGRAM
        assert result.confidence == NGRAM_CONFIDENCE
        assert result.entities

    def test_empty_model_output_falls_back(self) -> None:
        result = EntityExtractor(_StubClassifier()).extract("Vector search ranks passages.", MODEL_CONFIG)
        assert result.method is ExtractionMethod.NGRAM

    def test_empty_text(self) -> None:
        result = EntityExtractor().extract("   ", MODEL_CONFIG)
        assert result.entities == []
        assert result.method is ExtractionMethod.PATTERN_MODEL


class TestNgramExtraction:
    def test_latin_terms_ranked_by_weighted_frequency(self) -> None:
        entities = EntityExtractor.extract_ngrams("vector index vector index vector search", 3)
        assert entities == ["vector", "index", "vector index"]

    def test_cjk_terms_are_substrings(self) -> None:
        text = "知識庫管理"
        entities = EntityExtractor.extract_ngrams(text, 3)
        assert len(entities) == 3
        assert all(term in text and len(term) >= 2 for term in entities)

    def test_default_method_is_ngram(self) -> None:
        result = EntityExtractor().extract("Chunking splits documents into passages.")
        assert result.method is ExtractionMethod.NGRAM
        assert "Chunking" in result.entities
