"""Text cleaning and size estimation applied before splitting.

This module handles three concerns:

1. **General cleaning** -- Normalizes line endings, repairs PDF ligatures
   and typographic punctuation left behind by text extraction, and
   collapses runs of whitespace while keeping paragraph breaks intact.

2. **CJK preprocessing** -- Removes the spurious spaces that PDF
   extraction inserts between ideographs and around full-width
   punctuation, and re-joins sentences broken across lines.

3. **Size estimation** -- Script-aware token and word counts stored on
   every segment.  These are estimates, not tokenizer-exact values.
"""

from __future__ import annotations

import math
import re

_CJK_CHAR = re.compile(r"[\u4e00-\u9fff]")

# Ligatures and typographic characters emitted by PDF text layers.
_CHARACTER_FIXES: tuple[tuple[str, str], ...] = (
    ("\ufb01", "fi"),
    ("\ufb02", "fl"),
    ("\ufb00", "ff"),
    ("\ufb03", "ffi"),
    ("\ufb04", "ffl"),
    ("\u2018", "'"),
    ("\u2019", "'"),
    ("\u201c", '"'),
    ("\u201d", '"'),
    ("\u2026", "..."),
    ("\u00a0", " "),
)

_CJK_CLOSING_PUNCT = "，。；：！？、）】〉》」』"
_CJK_OPENING_PUNCT = "（【〈《「『"

CJK_THRESHOLD = 0.15


def clean_text(text: str, preserve_indentation: bool = False) -> str:
    """Normalize line endings, ligatures and whitespace.

    Paragraph breaks (blank lines) survive; three or more consecutive
    newlines collapse to one blank line.  With *preserve_indentation*
    (source code), leading and internal runs of spaces are left alone.
    """
    if not text:
        return ""

    cleaned = text.replace("\r\n", "\n").replace("\r", "\n")
    for bad, good in _CHARACTER_FIXES:
        cleaned = cleaned.replace(bad, good)

    cleaned = re.sub(r"[ \t\f\v]+$", "", cleaned, flags=re.MULTILINE)
    if not preserve_indentation:
        cleaned = re.sub(r"^[ \t\f\v]+(?=\S)", "", cleaned, flags=re.MULTILINE)
        cleaned = re.sub(r"[ \t\f\v]{2,}", " ", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    if preserve_indentation:
        return cleaned.strip("\n")
    return cleaned.strip()


def preprocess_cjk(text: str) -> str:
    """Remove extraction artefacts from CJK text, then apply :func:`clean_text`."""
    if not text:
        return ""

    processed = text.replace("\r\n", "\n").replace("\r", "\n")
    # Spaces between two ideographs.
    processed = re.sub(r"(?<=[\u4e00-\u9fff])[ \t]+(?=[\u4e00-\u9fff])", "", processed)
    # Spaces around full-width punctuation.
    processed = re.sub(rf"[ \t]*([{_CJK_CLOSING_PUNCT}])[ \t]*", r"\1", processed)
    processed = re.sub(rf"[ \t]*([{_CJK_OPENING_PUNCT}])[ \t]*", r"\1", processed)
    # Sentences broken across a single line break.
    processed = re.sub(r"(?<=[\u4e00-\u9fff，、])\n(?=[\u4e00-\u9fff])", "", processed)
    return clean_text(processed)


def cjk_ratio(text: str) -> float:
    """Return the share of CJK ideographs among non-whitespace characters."""
    visible = re.sub(r"\s+", "", text or "")
    if not visible:
        return 0.0
    return len(_CJK_CHAR.findall(visible)) / len(visible)


def is_cjk_text(text: str, threshold: float = CJK_THRESHOLD) -> bool:
    """Return ``True`` when *text* should use the script-aware splitter."""
    return cjk_ratio(text) > threshold


def estimate_tokens(text: str) -> int:
    """Approximate token count: 1.5 chars/token for CJK, 4 chars/token otherwise."""
    if not text:
        return 0
    cjk = len(_CJK_CHAR.findall(text))
    other = len(text) - cjk
    return math.ceil(cjk / 1.5 + other / 4)


def count_words(text: str) -> int:
    """Count whitespace-separated words, treating each ideograph as one word."""
    if not text:
        return 0
    cjk = len(_CJK_CHAR.findall(text))
    latin_words = [w for w in _CJK_CHAR.sub(" ", text).split() if w]
    return cjk + len(latin_words)
