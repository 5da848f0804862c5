"""Custom exception hierarchy for kbindex.

All application exceptions inherit from :class:`KBIndexError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "ollama", "fastembed") caused the failure.

The hierarchy is organized by pipeline domain:

    KBIndexError  (base -- catch-all for any kbindex error)
    +-- ExtractionError          (source text could not be read)
    |   +-- UnsupportedFormatError
    +-- SplitConfigError         (invalid chunk size / overlap / strategy)
    +-- ProviderError            (embedding or NER backend failure)
    |   +-- ProviderUnavailableError
    |   +-- ModelNotFoundError
    |   +-- RateLimitError
    +-- DimensionMismatchError   (second vector length inside one document)
    +-- StageError               (a pipeline stage aborted for a document)
    +-- WorkerPoolError          (embedding worker pool failures)
    |   +-- QueueFullError
    |   +-- WorkerPoolShutdownError
    |   +-- TaskTimeoutError
    |   +-- WorkerCrashedError
    +-- ConfigurationError       (startup / missing config)

Per-segment failures are caught and logged by the stage that owns them;
per-stage failures surface as :class:`StageError` so the job dispatcher
can decide whether to retry.
"""

from __future__ import annotations


class KBIndexError(Exception):
    """Base exception for all kbindex errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[ollama] Model not found``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Source extraction / splitting
# ---------------------------------------------------------------------------

class ExtractionError(KBIndexError):
    """Raised when a source document cannot be read or decoded."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UnsupportedFormatError(ExtractionError):
    """Raised when no extractor handles the requested document type."""

    def __init__(
        self,
        message: str = "Unsupported document format",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class SplitConfigError(KBIndexError):
    """Raised for an invalid chunk size, overlap, or splitting strategy."""

    def __init__(self, message: str = "Invalid split configuration") -> None:
        super().__init__(message=message)


# ---------------------------------------------------------------------------
# External provider errors
# ---------------------------------------------------------------------------

class ProviderError(KBIndexError):
    """Generic failure reported by an embedding or NER backend."""

    def __init__(
        self,
        message: str = "Provider call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(ProviderError):
    """Raised when an external service or provider is unreachable."""

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ModelNotFoundError(ProviderError):
    """Raised when the provider does not serve the requested model."""

    def __init__(
        self,
        message: str = "Model not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(ProviderError):
    """Raised when an API rate limit is exceeded.

    The embedding stage leaves the affected segment unadvanced; a later
    re-dispatch of the stage picks it up again.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Embedding invariants
# ---------------------------------------------------------------------------

class DimensionMismatchError(KBIndexError):
    """Raised when a document would hold embeddings of two different lengths."""

    def __init__(
        self,
        message: str = "Embedding dimension mismatch",
        document_id: str | None = None,
        expected: int | None = None,
        actual: int | None = None,
    ) -> None:
        self._document_id = document_id
        self._expected = expected
        self._actual = actual
        super().__init__(message=message)

    @property
    def document_id(self) -> str | None:
        return self._document_id

    @property
    def expected(self) -> int | None:
        return self._expected

    @property
    def actual(self) -> int | None:
        return self._actual


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class StageError(KBIndexError):
    """Raised when a pipeline stage aborts for a document.

    The original exception is chained via ``raise ... from`` and is also
    available as :attr:`cause`.
    """

    def __init__(
        self,
        message: str = "Pipeline stage failed",
        stage: str = "",
        document_id: str = "",
        cause: BaseException | None = None,
    ) -> None:
        self._stage = stage
        self._document_id = document_id
        self._cause = cause
        super().__init__(message=message)

    @property
    def stage(self) -> str:
        return self._stage

    @property
    def document_id(self) -> str:
        return self._document_id

    @property
    def cause(self) -> BaseException | None:
        return self._cause

    def __str__(self) -> str:
        return f"{self._stage} failed for document {self._document_id}: {self.message}"


class ConfigurationError(KBIndexError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Worker pool errors
# ---------------------------------------------------------------------------

class WorkerPoolError(KBIndexError):
    """Base class for embedding worker pool failures."""

    def __init__(self, message: str = "Worker pool failure") -> None:
        super().__init__(message=message)


class QueueFullError(WorkerPoolError):
    """Raised when a submission would exceed the pool's maximum queue depth."""

    def __init__(self, message: str = "Worker pool queue is full") -> None:
        super().__init__(message=message)


class WorkerPoolShutdownError(WorkerPoolError):
    """Raised for tasks submitted to, or still pending in, a stopped pool."""

    def __init__(self, message: str = "Worker pool is shutting down") -> None:
        super().__init__(message=message)


class TaskTimeoutError(WorkerPoolError):
    """Raised when a task does not finish within its per-task timeout."""

    def __init__(self, message: str = "Embedding task timed out") -> None:
        super().__init__(message=message)


class WorkerCrashedError(WorkerPoolError):
    """Raised for tasks that were running on a worker that exited unexpectedly."""

    def __init__(self, message: str = "Worker exited unexpectedly") -> None:
        super().__init__(message=message)
