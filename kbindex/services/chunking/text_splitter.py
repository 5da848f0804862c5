"""Strategy-driven text splitting.

:class:`TextSplitter` turns one string into an ordered list of chunk
strings.  It performs no I/O and keeps no state between calls, so the same
input always produces the same chunks.

Strategies (``chunk_size`` / ``chunk_overlap`` are characters except for
``token``, where they are estimated tokens):

- **character** -- fixed windows advancing by ``size - overlap``.
- **recursive_character** -- rightmost separator in the window, scored by
  separator priority times relative position; word-boundary search in the
  last 20% of the window; hard cut as the final fallback.
- **token** -- words accumulated up to the token budget.
- **sentence** -- abbreviation-aware sentence packing with trailing
  sentences reused as overlap.
- **markdown** / **python_code** -- structural boundaries first, oversized
  sections fall back to recursive_character.
- **smart_chunking** -- paragraph packing, sentence-level fallback for long
  paragraphs and a merge pass for undersized chunks.

Text whose CJK share exceeds 15% is routed to
:class:`~kbindex.services.chunking.cjk_splitter.CJKTextSplitter` for every
strategy except ``python_code``.  Every strategy's output goes through a
shared post-pass that drops empty chunks, folds a tiny trailing chunk into
its predecessor and removes duplicates.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

import structlog

from kbindex.models.config import SplitStrategy
from kbindex.services.chunking.cjk_splitter import CJKTextSplitter
from kbindex.services.chunking.text_cleaner import clean_text, estimate_tokens, is_cjk_text
from kbindex.utils.errors import SplitConfigError

logger = structlog.get_logger(logger_name=__name__)

# Coarse to fine.  The empty string stands for "split anywhere" and is
# handled by the word-boundary / hard-cut fallback.
DEFAULT_SEPARATORS: tuple[str, ...] = (
    "\n\n",
    "\n",
    ". ",
    "! ",
    "? ",
    "; ",
    ", ",
    " ",
    "",
)

# Common abbreviations that should NOT trigger a sentence split.
_ABBREVIATIONS = frozenset(
    {
        "Dr",
        "Mr",
        "Mrs",
        "Ms",
        "Prof",
        "Jr",
        "Sr",
        "St",
        "Ave",
        "Vol",
        "No",
        "vs",
        "etc",
        "approx",
        "dept",
        "est",
        "govt",
        "inc",
        "ltd",
        "co",
        "e.g",
        "i.e",
        "Fig",
        "Eq",
    }
)
_ABBREVIATION_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(a) for a in sorted(_ABBREVIATIONS, key=len, reverse=True)) + r")\."
)
_SENTENCE_END = re.compile(r"[.!?](?:\s|$)|[。！？；]")

_MARKDOWN_HEADING = re.compile(r"^(?=#{1,6}\s)", re.MULTILINE)
_CODE_BOUNDARY = re.compile(
    r"^(?=(?:async\s+def |def |class |if __name__|import |from |@))", re.MULTILINE
)

_SENTENCE_OVERLAP_FACTOR = 1.2
_SMART_OVERLAP_FACTOR = 1.3
_SMART_MERGE_LIMIT = 1.2


def min_chunk_size(chunk_size: int) -> int:
    """Smallest chunk kept on its own: ``max(50, 10%)``, capped at half the chunk size."""
    return min(max(50, chunk_size // 10), chunk_size // 2)


class TextSplitter:
    """Splits text into ordered chunks according to a :class:`SplitStrategy`."""

    def __init__(self, cjk_splitter: CJKTextSplitter | None = None) -> None:
        self._cjk = cjk_splitter or CJKTextSplitter()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def split(
        self,
        text: str,
        strategy: SplitStrategy | str = SplitStrategy.RECURSIVE_CHARACTER,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        separators: Sequence[str] | None = None,
        clean: bool = True,
    ) -> list[str]:
        """Split *text* into chunks.

        Parameters
        ----------
        text:
            Already-decoded document text.
        strategy:
            A :class:`SplitStrategy` or its string value.
        chunk_size:
            Maximum chunk length (characters, or estimated tokens for
            the ``token`` strategy).
        chunk_overlap:
            Overlap carried into the next chunk; must be smaller than
            *chunk_size*.
        separators:
            Custom separator list for ``recursive_character``.
        clean:
            Apply :func:`clean_text` before splitting.

        Returns
        -------
        list[str]
            Non-empty chunks with no adjacent repeats.  Empty input returns ``[]``.

        Raises
        ------
        SplitConfigError
            If the strategy is unknown or the size/overlap pair is invalid.
        """
        resolved = self._validate(strategy, chunk_size, chunk_overlap)
        if not text or not text.strip():
            return []

        if resolved is not SplitStrategy.PYTHON_CODE and is_cjk_text(text):
            chunks = self._cjk.split(text, chunk_size, chunk_overlap)
            logger.debug("cjk_split_applied", chunks=len(chunks), chunk_size=chunk_size)
        else:
            if clean:
                text = clean_text(text, preserve_indentation=resolved is SplitStrategy.PYTHON_CODE)
            chunks = self._dispatch(resolved, text, chunk_size, chunk_overlap, separators)

        result = self._post_process(chunks, chunk_size, chunk_overlap)
        logger.debug(
            "split_complete",
            strategy=resolved.value,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            num_chunks=len(result),
        )
        return result

    # ------------------------------------------------------------------
    # Validation / dispatch
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(
        strategy: SplitStrategy | str, chunk_size: int, chunk_overlap: int
    ) -> SplitStrategy:
        try:
            resolved = SplitStrategy(strategy)
        except ValueError as exc:
            raise SplitConfigError(f"Unknown splitting strategy: {strategy!r}") from exc
        if chunk_size <= 0:
            raise SplitConfigError(f"Chunk size must be positive, got {chunk_size}")
        if chunk_overlap < 0:
            raise SplitConfigError(f"Chunk overlap must be non-negative, got {chunk_overlap}")
        if chunk_overlap >= chunk_size:
            raise SplitConfigError(
                f"Chunk overlap ({chunk_overlap}) must be smaller than chunk size ({chunk_size})"
            )
        return resolved

    def _dispatch(
        self,
        strategy: SplitStrategy,
        text: str,
        size: int,
        overlap: int,
        separators: Sequence[str] | None,
    ) -> list[str]:
        if strategy is SplitStrategy.CHARACTER:
            return self._split_character(text, size, overlap)
        if strategy is SplitStrategy.RECURSIVE_CHARACTER:
            return self._split_recursive(text, size, overlap, separators)
        if strategy is SplitStrategy.TOKEN:
            return self._split_token(text, size, overlap)
        if strategy is SplitStrategy.SENTENCE:
            return self._split_sentence(text, size, overlap)
        if strategy is SplitStrategy.MARKDOWN:
            return self._split_markdown(text, size, overlap)
        if strategy is SplitStrategy.PYTHON_CODE:
            return self._split_python_code(text, size, overlap)
        return self._split_smart(text, size, overlap)

    # ------------------------------------------------------------------
    # character
    # ------------------------------------------------------------------

    @staticmethod
    def _split_character(text: str, size: int, overlap: int) -> list[str]:
        step = size - overlap
        chunks: list[str] = []
        start = 0
        while start < len(text):
            end = min(start + size, len(text))
            chunks.append(text[start:end])
            if end >= len(text):
                break
            start += step
        return chunks

    # ------------------------------------------------------------------
    # recursive_character
    # ------------------------------------------------------------------

    def _split_recursive(
        self,
        text: str,
        size: int,
        overlap: int,
        separators: Sequence[str] | None = None,
    ) -> list[str]:
        seps = list(separators) if separators else list(DEFAULT_SEPARATORS)
        chunks: list[str] = []
        start = 0
        length = len(text)

        while start < length:
            if length - start <= size:
                chunks.append(text[start:])
                break

            window = text[start : start + size]
            cut, skip = self._find_split_point(window, size, seps)
            end = start + cut
            chunks.append(text[start:end])

            next_start = end + skip
            if overlap > 0:
                overlap_start = self._overlap_start(text, start, end, overlap)
                if overlap_start > start:
                    next_start = overlap_start
            start = next_start

        return chunks

    @staticmethod
    def _find_split_point(window: str, size: int, separators: Sequence[str]) -> tuple[int, int]:
        """Return ``(cut, skip)``: chunk ends at *cut*, next chunk starts after *skip* more chars."""
        best_cut, best_skip, best_score = -1, 0, -1.0
        count = len(separators)

        for i, sep in enumerate(separators):
            if not sep:
                continue
            idx = window.rfind(sep)
            if idx <= 0:
                continue
            score = (count - i) * (idx / size)
            if score > best_score:
                # Punctuation stays with the chunk; trailing whitespace is skipped.
                kept = len(sep.rstrip())
                best_cut, best_skip, best_score = idx + kept, len(sep) - kept, score

        if best_cut > 0:
            return best_cut, best_skip

        floor = int(size * 0.8)
        for pos in range(len(window) - 1, max(floor, 1) - 1, -1):
            if window[pos].isspace():
                return pos, 1
        return len(window), 0

    @staticmethod
    def _overlap_start(text: str, start: int, end: int, overlap: int) -> int:
        """Start of the overlap tail of ``text[start:end]``, moved forward to a word boundary."""
        tail_begin = max(start, end - overlap)
        if tail_begin == start or text[tail_begin - 1].isspace():
            return tail_begin
        match = re.search(r"\s", text[tail_begin:end])
        if match:
            candidate = tail_begin + match.end()
            if candidate < end:
                return candidate
        return tail_begin

    # ------------------------------------------------------------------
    # token
    # ------------------------------------------------------------------

    def _split_token(self, text: str, size: int, overlap: int) -> list[str]:
        chunks: list[str] = []
        current: list[str] = []
        current_tokens = 0

        for word in text.split():
            word_tokens = estimate_tokens(word)

            if word_tokens > size:
                if current:
                    chunks.append(" ".join(current))
                    current, current_tokens = [], 0
                chunks.extend(self._split_character(word, size * 4, 0))
                continue

            if current and current_tokens + word_tokens > size:
                chunks.append(" ".join(current))
                current = self._overlap_words(current, overlap)
                current_tokens = sum(estimate_tokens(w) for w in current)
                if current_tokens + word_tokens > size:
                    current, current_tokens = [], 0

            current.append(word)
            current_tokens += word_tokens

        if current:
            chunks.append(" ".join(current))
        return chunks

    @staticmethod
    def _overlap_words(words: list[str], overlap_tokens: int) -> list[str]:
        """Trailing words whose estimated tokens fit in *overlap_tokens*."""
        kept: list[str] = []
        total = 0
        for word in reversed(words):
            tokens = estimate_tokens(word)
            if total + tokens > overlap_tokens:
                break
            kept.insert(0, word)
            total += tokens
        return kept

    # ------------------------------------------------------------------
    # sentence
    # ------------------------------------------------------------------

    def _split_sentence(
        self,
        text: str,
        size: int,
        overlap: int,
        overlap_factor: float = _SENTENCE_OVERLAP_FACTOR,
    ) -> list[str]:
        chunks: list[str] = []
        current: list[str] = []

        for sentence in self.split_sentences(text):
            if len(sentence) > size:
                if current:
                    chunks.append(" ".join(current))
                    current = []
                chunks.extend(self._split_recursive(sentence, size, overlap))
                continue

            if current and len(" ".join(current)) + 1 + len(sentence) > size:
                chunks.append(" ".join(current))
                current = self._overlap_sentences(current, overlap, overlap_factor)
                if current and len(" ".join(current)) + 1 + len(sentence) > size:
                    current = []

            current.append(sentence)

        if current:
            chunks.append(" ".join(current))
        return chunks

    @staticmethod
    def split_sentences(text: str) -> list[str]:
        """Split *text* at sentence boundaries while respecting abbreviations.

        Handles ``.``, ``!``, ``?`` followed by whitespace or end-of-string,
        and the full-width terminators ``。！？；``.  Known abbreviations
        (Dr., e.g., etc.) are masked so they do not end a sentence.
        """
        # Same-length mask keeps indices aligned with the original text.
        masked = _ABBREVIATION_PATTERN.sub(lambda m: m.group(1) + "\x00", text)

        sentences: list[str] = []
        last = 0
        for match in _SENTENCE_END.finditer(masked):
            end = match.end()
            sentence = text[last:end].strip()
            if sentence:
                sentences.append(sentence)
            last = end

        remainder = text[last:].strip()
        if remainder:
            sentences.append(remainder)
        return sentences

    def _overlap_sentences(self, sentences: list[str], overlap: int, factor: float) -> list[str]:
        """Trailing sentences within ``overlap * factor`` characters.

        When not even the last sentence fits, the word-aligned tail of the
        last sentence is reused instead.
        """
        if overlap <= 0:
            return []
        limit = overlap * factor
        kept: list[str] = []
        for sentence in reversed(sentences):
            if len(" ".join([sentence, *kept])) > limit:
                break
            kept.insert(0, sentence)
        if kept:
            return kept

        last = sentences[-1]
        start = self._overlap_start(last, 0, len(last), overlap)
        tail = last[start:].strip()
        return [tail] if tail else []

    # ------------------------------------------------------------------
    # markdown / python_code
    # ------------------------------------------------------------------

    def _split_markdown(self, text: str, size: int, overlap: int) -> list[str]:
        sections = [s.strip() for s in _MARKDOWN_HEADING.split(text) if s.strip()]
        return self._pack_sections(sections, size, overlap)

    def _split_python_code(self, text: str, size: int, overlap: int) -> list[str]:
        pieces = [p.rstrip() for p in _CODE_BOUNDARY.split(text) if p.strip()]

        # Keep decorators attached to the definition that follows them.
        sections: list[str] = []
        pending = ""
        for piece in pieces:
            if all(line.lstrip().startswith("@") for line in piece.splitlines() if line.strip()):
                pending = f"{pending}\n{piece}" if pending else piece
                continue
            sections.append(f"{pending}\n{piece}" if pending else piece)
            pending = ""
        if pending:
            sections.append(pending)

        return self._pack_sections(sections, size, overlap)

    def _pack_sections(self, sections: list[str], size: int, overlap: int) -> list[str]:
        """Pack structural sections up to *size*; oversized ones fall back to recursive splitting."""
        chunks: list[str] = []
        current = ""
        for section in sections:
            if len(section) > size:
                if current:
                    chunks.append(current)
                    current = ""
                chunks.extend(self._split_recursive(section, size, overlap))
                continue
            if current and len(current) + 2 + len(section) > size:
                chunks.append(current)
                current = ""
            current = f"{current}\n\n{section}" if current else section
        if current:
            chunks.append(current)
        return chunks

    # ------------------------------------------------------------------
    # smart_chunking
    # ------------------------------------------------------------------

    def _split_smart(self, text: str, size: int, overlap: int) -> list[str]:
        paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]
        chunks: list[str] = []
        current: list[str] = []

        for para in paragraphs:
            if len(para) > size:
                if current:
                    chunks.append("\n\n".join(current))
                    current = []
                chunks.extend(
                    self._split_sentence(para, size, overlap, overlap_factor=_SMART_OVERLAP_FACTOR)
                )
                continue

            if current and len("\n\n".join(current)) + 2 + len(para) > size:
                chunks.append("\n\n".join(current))
                current = self._overlap_paragraphs(current, overlap)
                if current and len("\n\n".join(current)) + 2 + len(para) > size:
                    current = []

            current.append(para)

        if current:
            chunks.append("\n\n".join(current))
        return self._merge_small_chunks(chunks, size)

    @staticmethod
    def _overlap_paragraphs(paragraphs: list[str], overlap: int) -> list[str]:
        """Return tail paragraphs whose combined length <= *overlap*."""
        kept: list[str] = []
        total = 0
        for para in reversed(paragraphs):
            if total + len(para) > overlap:
                break
            kept.insert(0, para)
            total += len(para) + 2
        return kept

    @staticmethod
    def _merge_small_chunks(chunks: list[str], size: int) -> list[str]:
        """Fold undersized chunks into the next one while the result stays within 1.2x *size*."""
        threshold = min_chunk_size(size)
        limit = size * _SMART_MERGE_LIMIT
        merged: list[str] = []
        i = 0
        while i < len(chunks):
            chunk = chunks[i]
            while (
                len(chunk) < threshold
                and i + 1 < len(chunks)
                and len(chunk) + 2 + len(chunks[i + 1]) <= limit
            ):
                chunk = f"{chunk}\n\n{chunks[i + 1]}"
                i += 1
            merged.append(chunk)
            i += 1
        return merged

    # ------------------------------------------------------------------
    # Universal post-pass
    # ------------------------------------------------------------------

    @staticmethod
    def _post_process(chunks: list[str], size: int, overlap: int) -> list[str]:
        cleaned = [c.strip() for c in chunks if c and c.strip()]

        if len(cleaned) > 1 and len(cleaned[-1]) < min_chunk_size(size):
            tail = cleaned.pop()
            cleaned[-1] = join_with_overlap(cleaned[-1], tail, overlap)

        # Adjacent repeats only; a passage repeated elsewhere in the document stays.
        result: list[str] = []
        for chunk in cleaned:
            if result and result[-1] == chunk:
                continue
            result.append(chunk)
        return result


def join_with_overlap(previous: str, tail: str, overlap: int) -> str:
    """Append *tail* to *previous*, skipping a word-aligned prefix of *tail* already at the end of *previous*.

    Only a shared prefix no longer than *overlap* characters is treated as
    carried-over text; with ``overlap <= 0`` the two are joined unchanged.
    """
    for k in range(min(len(previous), len(tail), max(overlap, 0)), 0, -1):
        if not previous.endswith(tail[:k]):
            continue
        tail_aligned = k == len(tail) or tail[k].isspace()
        prev_aligned = k == len(previous) or previous[-k - 1].isspace()
        if tail_aligned and prev_aligned:
            rest = tail[k:].strip()
            return f"{previous} {rest}" if rest else previous
    return f"{previous} {tail}"
