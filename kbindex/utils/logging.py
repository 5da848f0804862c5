"""structlog setup for the indexing pipeline.

One shared processor chain feeds either a ConsoleRenderer (development) or
a JSONRenderer (``APP_ENV=production`` or ``json_output=True``).  Two
pipeline processors sit in that chain:

* :func:`render_enum_values` logs status and stage enums by their value, so
  ``status=SegmentStatus.EMBEDDED`` renders as ``status=embedded``.
* :func:`summarize_vectors` replaces embedding vectors with a
  ``<vector dims=N>`` marker instead of dumping thousands of floats.

Standard-library ``logging`` (httpx, openai, transformers, aiosqlite) is
routed through the same formatter.  :func:`stage_context` binds
``document_id`` and ``stage`` for every event logged while a pipeline stage
runs.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import MutableMapping
from contextlib import AbstractContextManager
from enum import Enum
from typing import Any

import structlog

# Lists of floats at least this long are treated as embedding vectors.
_VECTOR_MIN_LENGTH = 16


def render_enum_values(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def summarize_vectors(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key, value in event_dict.items():
        if (
            isinstance(value, (list, tuple))
            and len(value) >= _VECTOR_MIN_LENGTH
            and isinstance(value[0], float)
        ):
            event_dict[key] = f"<vector dims={len(value)}>"
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: Force JSON lines.  Otherwise JSON is used only when
                     ``APP_ENV`` is ``production``.

    Returns:
        The root structlog logger.
    """
    use_json = json_output or os.environ.get("APP_ENV", "development") == "production"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        render_enum_values,
        summarize_vectors,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Named logger; applies the default configuration on first use."""
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)


def stage_context(document_id: str, stage: str) -> AbstractContextManager[None]:
    """Bind ``document_id`` and ``stage`` to every log event inside the block.

    Values bound by an enclosing block are restored on exit.
    """
    return structlog.contextvars.bound_contextvars(document_id=document_id, stage=stage)
