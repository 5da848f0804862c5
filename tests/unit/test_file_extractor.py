"""Unit tests for FileTextExtractor."""

from __future__ import annotations

import pytest

from kbindex.providers.extraction.file_extractor import FileTextExtractor
from kbindex.utils.errors import ExtractionError, UnsupportedFormatError


class TestFileTextExtractor:
    @pytest.mark.asyncio
    async def test_reads_utf8_text(self, tmp_path) -> None:
        path = tmp_path / "notes.md"
        path.write_text("# 標題\n\nBody text.", encoding="utf-8")

        text = await FileTextExtractor().extract_text(str(path), "md")

        assert text == "# 標題\n\nBody text."

    @pytest.mark.asyncio
    async def test_byte_order_mark_stripped(self, tmp_path) -> None:
        path = tmp_path / "bom.txt"
        path.write_bytes(b"\xef\xbb\xbfhello")
        assert await FileTextExtractor().extract_text(str(path), ".TXT") == "hello"

    @pytest.mark.asyncio
    async def test_latin1_fallback(self, tmp_path) -> None:
        path = tmp_path / "legacy.txt"
        path.write_bytes("café".encode("latin-1"))
        assert await FileTextExtractor().extract_text(str(path), "txt") == "café"

    @pytest.mark.asyncio
    async def test_unsupported_type(self, tmp_path) -> None:
        with pytest.raises(UnsupportedFormatError):
            await FileTextExtractor().extract_text(str(tmp_path / "slides.pptx"), "pptx")

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ExtractionError, match="File not found"):
            await FileTextExtractor().extract_text(str(tmp_path / "gone.txt"), "txt")

    def test_supported_types_include_pdf(self) -> None:
        types = FileTextExtractor().supported_types()
        assert {"txt", "md", "py", "pdf"} <= types
