"""Script-aware splitting for Chinese, Japanese and Korean text.

Space-based tokenization is meaningless for ideographic text, so this
splitter packs whole paragraphs first and falls back to full-width
sentence terminators (``。！？；``) for paragraphs longer than the chunk
size.  Overlap is built from trailing sentences of the previous chunk.
"""

from __future__ import annotations

import re

import structlog

from kbindex.services.chunking.text_cleaner import preprocess_cjk

logger = structlog.get_logger(logger_name=__name__)

_CJK_SENTENCE = re.compile(r"[^。！？；\n]*[。！？；]+|[^。！？；\n]+")


class CJKTextSplitter:
    """Paragraph-then-sentence splitter for CJK-dominant text."""

    def split(self, text: str, chunk_size: int, chunk_overlap: int) -> list[str]:
        """Split *text* into chunks of at most *chunk_size* characters.

        Parameters
        ----------
        text:
            Raw text; :func:`preprocess_cjk` is applied first.
        chunk_size:
            Maximum characters per chunk.
        chunk_overlap:
            Maximum characters of trailing sentences carried forward.
        """
        processed = preprocess_cjk(text)
        paragraphs = [p.strip() for p in re.split(r"\n\s*\n", processed) if p.strip()]

        chunks: list[str] = []
        current = ""
        for para in paragraphs:
            if len(para) > chunk_size:
                if current:
                    chunks.append(current)
                    current = ""
                chunks.extend(self._split_long_paragraph(para, chunk_size, chunk_overlap))
                continue

            if current and len(current) + 2 + len(para) > chunk_size:
                chunks.append(current)
                tail = self._overlap_tail(current, chunk_overlap)
                if tail and len(tail) + 2 + len(para) <= chunk_size:
                    current = f"{tail}\n\n{para}"
                else:
                    current = para
            else:
                current = f"{current}\n\n{para}" if current else para

        if current:
            chunks.append(current)

        logger.debug("cjk_chunks_built", paragraphs=len(paragraphs), chunks=len(chunks))
        return chunks

    @staticmethod
    def sentences(text: str) -> list[str]:
        """Split *text* after each run of full-width terminators, keeping the terminators."""
        return [s.strip() for s in _CJK_SENTENCE.findall(text) if s.strip()]

    def _split_long_paragraph(self, paragraph: str, chunk_size: int, chunk_overlap: int) -> list[str]:
        chunks: list[str] = []
        current = ""
        for sentence in self.sentences(paragraph):
            if len(sentence) > chunk_size:
                if current:
                    chunks.append(current)
                    current = ""
                chunks.extend(self._hard_cut(sentence, chunk_size, chunk_overlap))
                continue

            if current and len(current) + len(sentence) > chunk_size:
                chunks.append(current)
                tail = self._overlap_tail(current, chunk_overlap)
                current = tail if tail and len(tail) + len(sentence) <= chunk_size else ""

            current += sentence

        if current:
            chunks.append(current)
        return chunks

    def _overlap_tail(self, chunk: str, chunk_overlap: int) -> str:
        """Trailing sentences of *chunk* whose combined length fits in *chunk_overlap*."""
        if chunk_overlap <= 0:
            return ""
        kept: list[str] = []
        total = 0
        for sentence in reversed(self.sentences(chunk)):
            if total + len(sentence) > chunk_overlap:
                break
            kept.insert(0, sentence)
            total += len(sentence)
        return "".join(kept)

    @staticmethod
    def _hard_cut(sentence: str, chunk_size: int, chunk_overlap: int) -> list[str]:
        step = chunk_size - chunk_overlap
        pieces: list[str] = []
        start = 0
        while start < len(sentence):
            pieces.append(sentence[start : start + chunk_size])
            if start + chunk_size >= len(sentence):
                break
            start += step
        return pieces
