"""Abstract base class for source-text extraction."""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: FileTextExtractor (kbindex/providers/extraction/)
class ITextExtractor(ABC):
    """Turns a stored file into already-decoded text."""

    @abstractmethod
    async def extract_text(self, file_ref: str, doc_type: str) -> str:
        """Return the text content of *file_ref*.

        Parameters
        ----------
        file_ref:
            Path or storage key of the uploaded file.
        doc_type:
            File type such as ``"txt"``, ``"md"`` or ``"pdf"``.

        Raises
        ------
        kbindex.utils.errors.UnsupportedFormatError
            If *doc_type* is not handled.
        kbindex.utils.errors.ExtractionError
            If the file cannot be read or decoded.
        """

    @abstractmethod
    def supported_types(self) -> frozenset[str]:
        """Return the document types this extractor handles."""
