"""Unit tests for the pipeline logging processors and stage context."""

from __future__ import annotations

import structlog

from kbindex.models.document import SegmentStatus
from kbindex.utils.logging import render_enum_values, stage_context, summarize_vectors


class TestProcessors:
    def test_enums_rendered_by_value(self) -> None:
        event = render_enum_values(None, "info", {"event": "segment_updated", "status": SegmentStatus.EMBEDDED})
        assert event["status"] == "embedded"

    def test_embedding_vectors_summarized(self) -> None:
        event = summarize_vectors(None, "debug", {"event": "embedded", "vector": [0.5] * 1024})
        assert event["vector"] == "<vector dims=1024>"

    def test_short_and_non_float_lists_untouched(self) -> None:
        ids = [f"seg-{i}" for i in range(20)]
        event = summarize_vectors(None, "info", {"event": "batch", "ids": ids, "scores": [0.1, 0.2]})
        assert event["ids"] == ids
        assert event["scores"] == [0.1, 0.2]


class TestStageContext:
    def test_binds_and_restores(self) -> None:
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(stage="chunking")

        with stage_context("doc-1", "embedding"):
            assert structlog.contextvars.get_contextvars() == {"document_id": "doc-1", "stage": "embedding"}

        assert structlog.contextvars.get_contextvars() == {"stage": "chunking"}
        structlog.contextvars.clear_contextvars()
