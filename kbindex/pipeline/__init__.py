"""Indexing pipeline: stage state machine and progress tracking."""

from kbindex.pipeline.orchestrator import IndexingPipeline
from kbindex.pipeline.progress_tracker import ALL_DOCUMENTS, ProgressTracker

__all__ = ["ALL_DOCUMENTS", "IndexingPipeline", "ProgressTracker"]
