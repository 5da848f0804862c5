"""Local-file text extractor.

Plain-text formats are decoded as UTF-8, falling back to latin-1 for
legacy encodings.  PDFs are read page by page with PyMuPDF (``fitz``),
installed through the ``pdf`` extra.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from kbindex.interfaces.text_extractor import ITextExtractor
from kbindex.utils.errors import ExtractionError, UnsupportedFormatError

logger = structlog.get_logger(logger_name=__name__)

_TEXT_TYPES = frozenset({"txt", "md", "markdown", "py", "csv", "json"})
_PDF_TYPES = frozenset({"pdf"})


class FileTextExtractor(ITextExtractor):
    """Reads documents from the local filesystem."""

    def supported_types(self) -> frozenset[str]:
        return _TEXT_TYPES | _PDF_TYPES

    async def extract_text(self, file_ref: str, doc_type: str) -> str:
        kind = doc_type.lower().lstrip(".")
        if kind not in self.supported_types():
            raise UnsupportedFormatError(f"No extractor for document type '{doc_type}'")

        path = Path(file_ref)
        if not path.is_file():
            raise ExtractionError(f"File not found: {file_ref}")

        if kind in _PDF_TYPES:
            text = await asyncio.to_thread(self._read_pdf, path)
        else:
            text = await asyncio.to_thread(self._read_text, path)

        logger.info("text_extracted", path=str(path), doc_type=kind, characters=len(text))
        return text

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _read_text(path: Path) -> str:
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise ExtractionError(f"Cannot read {path}: {exc}") from exc
        try:
            return raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.warning("utf8_decode_failed", path=str(path), fallback="latin-1")
            return raw.decode("latin-1")

    @staticmethod
    def _read_pdf(path: Path) -> str:
        """Concatenate the text of every page, pages separated by a blank line."""
        try:
            import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
        except ImportError as exc:
            raise ExtractionError(
                "PDF extraction requires PyMuPDF; install the 'pdf' extra",
                provider_name="pymupdf",
            ) from exc

        try:
            doc = fitz.open(str(path))
        except Exception as exc:
            raise ExtractionError(f"Cannot open PDF {path}: {exc}", provider_name="pymupdf") from exc

        pages: list[str] = []
        try:
            for page_num in range(len(doc)):
                text = doc[page_num].get_text("text").strip()
                if text:
                    pages.append(text)
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", path=str(path))
        return "\n\n".join(pages)
