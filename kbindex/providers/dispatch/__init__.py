"""Stage-job dispatchers."""

from kbindex.providers.dispatch.in_process import InProcessJobDispatcher, JobFailure

__all__ = ["InProcessJobDispatcher", "JobFailure"]
