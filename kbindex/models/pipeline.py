"""Pipeline stage names shared by the orchestrator, dispatcher and notifier."""

from __future__ import annotations

from enum import Enum

from kbindex.models.document import DocumentStatus


# ---------------------------------------------------------------------------
# PipelineStage -- the units of work the job dispatcher runs per document.
# ---------------------------------------------------------------------------
class PipelineStage(str, Enum):  # noqa: UP042
    """Stage jobs of the indexing pipeline, in execution order.

    ``COMPLETION`` is the gate that decides between ``completed`` and
    ``embedding_failed``; it never touches segment content.
    """

    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    NER = "ner"
    COMPLETION = "completion"

    @property
    def failed_status(self) -> DocumentStatus:
        """Document status recorded when this stage aborts."""
        return _FAILED_STATUS[self]


_FAILED_STATUS = {
    PipelineStage.CHUNKING: DocumentStatus.CHUNKING_FAILED,
    PipelineStage.EMBEDDING: DocumentStatus.EMBEDDING_FAILED,
    PipelineStage.NER: DocumentStatus.NER_FAILED,
    # A crash while gating completion leaves embeddings unverified.
    PipelineStage.COMPLETION: DocumentStatus.EMBEDDING_FAILED,
}
