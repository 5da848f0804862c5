"""Utility modules for kbindex.

- **errors** -- Domain-specific exception hierarchy rooted at KBIndexError;
  each pipeline stage raises its own subclass so callers can handle failures
  granularly without broad ``except Exception`` blocks.
- **concurrency** -- asyncio semaphore throttling and batching helpers.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
"""

from kbindex.utils.concurrency import batched, throttled_gather
from kbindex.utils.errors import (
    ConfigurationError,
    DimensionMismatchError,
    ExtractionError,
    KBIndexError,
    ModelNotFoundError,
    ProviderError,
    ProviderUnavailableError,
    QueueFullError,
    RateLimitError,
    SplitConfigError,
    StageError,
    TaskTimeoutError,
    UnsupportedFormatError,
    WorkerCrashedError,
    WorkerPoolError,
    WorkerPoolShutdownError,
)
from kbindex.utils.logging import configure_logging, get_logger, stage_context

__all__ = [
    "ConfigurationError",
    "DimensionMismatchError",
    "ExtractionError",
    "KBIndexError",
    "ModelNotFoundError",
    "ProviderError",
    "ProviderUnavailableError",
    "QueueFullError",
    "RateLimitError",
    "SplitConfigError",
    "StageError",
    "TaskTimeoutError",
    "UnsupportedFormatError",
    "WorkerCrashedError",
    "WorkerPoolError",
    "WorkerPoolShutdownError",
    "batched",
    "configure_logging",
    "get_logger",
    "stage_context",
    "throttled_gather",
]
