"""Keyword and named-entity extraction for document segments.

Two methods are available:

``pattern+model``
    Normalise the text, collect high-confidence regex matches (book-style
    titles, quoted titles, measurements, dates), then run a
    token-classification model over bounded windows and group its
    B-/I-/E-/S- tagged sub-tokens into entity spans.  Entities contained in
    a longer kept entity are dropped (regex matches are exempt), as are
    near-duplicates.  When the model raises or nothing survives, the
    n-gram method is used instead.

``ngram``
    Frequency-scored 2-6 character n-grams over CJK runs plus word
    n-grams over Latin text.  Needs no model, so it is the default.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

import structlog
from rapidfuzz import fuzz

from kbindex.interfaces.token_classifier import ITokenClassifier, TokenPrediction
from kbindex.models.entities import (
    EntityExtractionConfig,
    EntityExtractionResult,
    ExtractionMethod,
)
from kbindex.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)

MODEL_CONFIDENCE = 0.9
NGRAM_CONFIDENCE = 0.6
MAX_SPAN_LENGTH = 15
NEAR_DUPLICATE_RATIO = 90.0

# Standard CoNLL tags, OntoNotes tags (ckiplab models), and the domain
# tags used by legal and technical corpora.
VALID_ENTITY_TYPES = frozenset(
    {
        "PER", "ORG", "LOC", "MISC",
        "PERSON", "GPE", "NORP", "FAC", "EVENT", "PRODUCT", "WORK_OF_ART", "LANGUAGE",
        "LAW", "RULE", "TECH", "AI", "DATA", "BUSINESS", "CURRENCY",
        "DATE", "TIME", "MEASUREMENT", "QUANTITY", "MONEY",
    }
)  # fmt: skip

STOP_WORDS = frozenset(
    {
        # Classical and modern Chinese function characters
        "的", "是", "在", "有", "和", "或", "但", "於", "以", "及", "與", "而",
        "為", "若", "則", "須", "可", "應", "將", "把", "被", "由", "從", "對",
        "至", "到", "內", "中", "外", "上", "下", "前", "後", "間", "該", "此",
        "這", "那", "其", "之", "者", "所", "任", "何", "如", "凡", "每", "各",
        "等", "某", "既", "即", "亦", "乃", "矣", "焉", "兮", "哉", "也", "耳",
        "夫", "盖", "然", "否", "未", "已", "且", "仍", "復", "嘗", "常", "乎",
        "斯", "云", "爾",
        # English
        "the", "and", "for", "with", "that", "this", "from", "are", "was", "were",
        "has", "have", "had", "not", "but", "its", "into", "than", "then", "they",
        "their", "there", "which", "will", "would", "can", "could", "should",
        "also", "such", "been", "being", "these", "those", "about", "over",
    }
)  # fmt: skip

_LEGAL_REFERENCE = re.compile(r"^第\d+條")
_BOOK_TITLE = re.compile(r"^《.+》$")
_PURE_MEASUREMENT = re.compile(r"^\d+\s*(?:毫米|米|毫|mm|m)$", re.IGNORECASE)
_NATURAL_BREAK = re.compile(r"》第|條第")

# --- Normalisation ---
_SPACED_ARTICLE = re.compile(r"第\s*(\d+(?:\s+\d+)*)\s*([條章])")
_SPACED_PARENS = re.compile(r"\(\s*([^)]+?)\s*\)")
_SPACED_UNIT = re.compile(
    r"(\d+)\s+(毫米|公里|港元|美元|米|毫|元|mm|km|m)(?![A-Za-z])", re.IGNORECASE
)
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class EntityPattern:
    """A regex whose matches are kept as high-confidence entities."""

    name: str
    pattern: re.Pattern[str]
    # Capture group holding the entity text; 0 keeps the whole match.
    group: int = 0
    max_length: int = 30


DEFAULT_PATTERNS: tuple[EntityPattern, ...] = (
    EntityPattern("document", re.compile(r"《[^》]+》")),
    EntityPattern("quoted_title", re.compile(r"「([^」]{2,30})」"), group=1),
    EntityPattern("quoted_title", re.compile(r"“([^”]{2,30})”"), group=1),
    EntityPattern(
        "measurement",
        re.compile(
            r"\d+(?:毫米|公里|港元|美元|米|毫|元|mm|km|m|GB|MB|KB|TB)(?![A-Za-z])",
            re.IGNORECASE,
        ),
        max_length=15,
    ),
    EntityPattern("date", re.compile(r"\d{4}年\d{1,2}月\d{1,2}日"), max_length=12),
    EntityPattern("date", re.compile(r"\b\d{4}-\d{2}-\d{2}\b"), max_length=10),
)

# --- N-gram ---
_NGRAM_PUNCTUATION = re.compile(r"[^\u4e00-\u9fffA-Za-z0-9\s]")
_CJK_RUN = re.compile(r"[\u4e00-\u9fff]{2,}")
_LATIN_WORD = re.compile(r"[A-Za-z][A-Za-z0-9'-]*")
_SENTENCE = re.compile(r"[^。！？；.!?\n]+[。！？；.!?]*")


def is_stop_word(word: str) -> bool:
    """Stop words and single characters; legal references and book titles never are."""
    if _LEGAL_REFERENCE.match(word) or _BOOK_TITLE.match(word):
        return False
    return len(word) < 2 or word.lower() in STOP_WORDS


def normalize_text(text: str) -> str:
    """Undo spacing artefacts that PDF extraction introduces.

    ``第1 9條`` → ``第19條``, ``( b ) ( i v)`` → ``(b)(iv)``, ``24 米`` → ``24米``,
    and runs of whitespace collapse to one space.
    """
    if not text:
        return text
    normalized = _SPACED_ARTICLE.sub(
        lambda m: f"第{_WHITESPACE.sub('', m.group(1))}{m.group(2)}", text
    )
    normalized = _SPACED_PARENS.sub(lambda m: f"({_WHITESPACE.sub('', m.group(1))})", normalized)
    normalized = _SPACED_UNIT.sub(r"\1\2", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


@dataclass
class _Span:
    text: str
    label: str
    score_total: float
    count: int
    start: int | None
    end: int | None

    @property
    def confidence(self) -> float:
        return self.score_total / self.count if self.count else 0.0


def _split_tag(tag: str) -> tuple[str, str]:
    """``"B-PER"`` → ``("B", "PER")``; untagged labels count as span starts."""
    prefix, sep, entity_type = tag.partition("-")
    if not sep:
        return "B", tag
    return prefix.upper(), entity_type.upper()


def group_tokens(
    predictions: Sequence[TokenPrediction],
    min_confidence: float,
    source: str | None = None,
) -> list[tuple[str, float]]:
    """Merge tagged sub-tokens into ``(entity_text, confidence)`` spans.

    Low-confidence and non-entity tokens are skipped.  When every token
    carries character offsets the span text is sliced from *source*, which
    keeps the spaces between words; otherwise sub-tokens are concatenated
    with BERT ``##`` prefixes removed.  A span is cut when it would grow
    past 15 characters or cross a ``》第`` / ``條第`` boundary.
    """
    spans: list[_Span] = []
    current: _Span | None = None

    def text_of(span: _Span) -> str:
        if source is not None and span.start is not None and span.end is not None:
            return source[span.start : span.end].strip()
        return span.text.strip()

    def start_span(p: TokenPrediction, label: str) -> _Span:
        return _Span(p.word.removeprefix("##"), label, p.score, 1, p.start, p.end)

    def close() -> None:
        nonlocal current
        if current is not None:
            spans.append(current)
        current = None

    for p in predictions:
        if p.score < min_confidence:
            continue
        prefix, label = _split_tag(p.entity)
        if label not in VALID_ENTITY_TYPES:
            continue

        if prefix == "S":
            close()
            spans.append(start_span(p, label))
            continue

        if prefix == "B" or current is None or current.label != label:
            close()
            current = start_span(p, label)
            continue

        piece = p.word.removeprefix("##")
        extended_end = p.end if current.end is not None else None
        candidate = _Span(
            current.text + piece,
            label,
            current.score_total + p.score,
            current.count + 1,
            current.start,
            extended_end,
        )
        candidate_text = text_of(candidate)
        if len(candidate_text) > MAX_SPAN_LENGTH or _NATURAL_BREAK.search(candidate_text):
            close()
            current = start_span(p, label)
        else:
            current = candidate
        if prefix == "E":
            close()
    close()

    grouped: list[tuple[str, float]] = []
    for span in spans:
        entity = text_of(span)
        if len(entity) < 2 or _PURE_MEASUREMENT.match(entity):
            continue
        if is_stop_word(entity):
            continue
        grouped.append((entity, span.confidence))
    grouped.sort(key=lambda item: item[1], reverse=True)
    return grouped


def split_windows(text: str, window_size: int) -> list[str]:
    """Pack sentences into windows of at most *window_size* characters.

    Sentences longer than a window are cut at the window size.
    """
    if len(text) <= window_size:
        return [text] if text.strip() else []

    windows: list[str] = []
    current = ""
    for match in _SENTENCE.finditer(text):
        sentence = match.group(0).strip()
        if not sentence:
            continue
        while len(sentence) > window_size:
            if current:
                windows.append(current)
                current = ""
            windows.append(sentence[:window_size])
            sentence = sentence[window_size:]
        joiner = " " if current else ""
        if len(current) + len(joiner) + len(sentence) > window_size:
            windows.append(current)
            current = sentence
        else:
            current = f"{current}{joiner}{sentence}"
    if current:
        windows.append(current)
    return windows


class EntityExtractor:
    """Extracts up to ``max_entities`` keywords from a text.

    Parameters
    ----------
    classifier:
        Token-classification backend for the ``pattern+model`` method.
        Without one, that method keeps only regex matches before falling
        back to n-grams.
    patterns:
        Regex entity patterns; :data:`DEFAULT_PATTERNS` when omitted.
    """

    def __init__(
        self,
        classifier: ITokenClassifier | None = None,
        patterns: Sequence[EntityPattern] | None = None,
    ) -> None:
        self._classifier = classifier
        self._patterns = tuple(patterns) if patterns is not None else DEFAULT_PATTERNS

    def extract(self, text: str, config: EntityExtractionConfig | None = None) -> EntityExtractionResult:
        config = config or EntityExtractionConfig()
        if not text or not text.strip():
            return EntityExtractionResult(method=config.method)

        if config.method is ExtractionMethod.PATTERN_MODEL:
            try:
                entities = self._extract_with_model(text, config)
            except ProviderError as exc:
                logger.warning("ner_model_failed_using_ngram", error=str(exc))
            else:
                if entities:
                    return EntityExtractionResult(
                        entities=entities,
                        confidence=MODEL_CONFIDENCE,
                        method=ExtractionMethod.PATTERN_MODEL,
                        model_used=self._classifier.get_model_name() if self._classifier else None,
                    )
                logger.info("ner_no_entities_using_ngram", characters=len(text))

        return EntityExtractionResult(
            entities=self.extract_ngrams(text, config.max_entities),
            confidence=NGRAM_CONFIDENCE,
            method=ExtractionMethod.NGRAM,
        )

    # ------------------------------------------------------------------
    # pattern+model
    # ------------------------------------------------------------------

    def match_patterns(self, text: str) -> list[str]:
        """Regex entities in order of first appearance, without duplicates."""
        found: dict[str, None] = {}
        for entity_pattern in self._patterns:
            for match in entity_pattern.pattern.finditer(text):
                value = match.group(entity_pattern.group).strip()
                if 2 <= len(value) <= entity_pattern.max_length or _BOOK_TITLE.match(value):
                    found.setdefault(value, None)
        return list(found)

    def _extract_with_model(self, text: str, config: EntityExtractionConfig) -> list[str]:
        normalized = normalize_text(text)
        pattern_entities = self.match_patterns(normalized)
        candidates: dict[str, None] = dict.fromkeys(pattern_entities)

        if self._classifier is not None:
            for window in split_windows(normalized, config.window_size):
                predictions = self._classifier.classify(window)
                for entity, _confidence in group_tokens(predictions, config.min_confidence, window):
                    candidates.setdefault(entity, None)

        return self._finalize(list(candidates), set(pattern_entities), config.max_entities)

    @staticmethod
    def _finalize(candidates: list[str], pattern_entities: set[str], max_entities: int) -> list[str]:
        kept = [c for c in candidates if not is_stop_word(c)]
        # Drop strict substrings of a longer entity; regex matches stay.
        kept = [
            entity
            for entity in kept
            if entity in pattern_entities
            or not any(other != entity and len(other) > len(entity) and entity in other for other in kept)
        ]
        unique: list[str] = []
        for entity in kept:
            if entity not in pattern_entities and any(
                fuzz.ratio(entity, other) >= NEAR_DUPLICATE_RATIO for other in unique
            ):
                continue
            unique.append(entity)
        return unique[:max_entities]

    # ------------------------------------------------------------------
    # n-gram
    # ------------------------------------------------------------------

    @staticmethod
    def extract_ngrams(text: str, max_entities: int) -> list[str]:
        """Top *max_entities* n-grams by weighted frequency.

        CJK runs contribute every 2-6 character substring; Latin text
        contributes single words and two-word phrases.  Terms longer than
        three characters count double and score 1.5× when ranked.
        """
        cleaned = _WHITESPACE.sub(" ", _NGRAM_PUNCTUATION.sub(" ", text)).strip()
        weights: Counter[str] = Counter()

        for run in _CJK_RUN.findall(cleaned):
            for length in range(2, 7):
                for i in range(len(run) - length + 1):
                    term = run[i : i + length]
                    if not is_stop_word(term):
                        weights[term] += 2 if length > 3 else 1

        words = _LATIN_WORD.findall(cleaned)
        for i, word in enumerate(words):
            if len(word) >= 3 and not is_stop_word(word):
                weights[word] += 2 if len(word) > 3 else 1
            if i + 1 < len(words):
                first, second = word, words[i + 1]
                if not is_stop_word(first) and not is_stop_word(second) and len(first) > 1 and len(second) > 1:
                    weights[f"{first} {second}"] += 1

        def score(item: tuple[str, int]) -> float:
            term, weight = item
            return weight * (1.5 if len(term) > 3 else 1.0)

        # sorted() is stable, so equal scores keep first-appearance order.
        ranked = sorted(weights.items(), key=score, reverse=True)
        return [term for term, _ in ranked[:max_entities]]
