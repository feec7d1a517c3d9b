"""Structured logging for extraction runs.

Every log entry emitted while a run is active carries the run's ``call_id``
(bound through ``structlog.contextvars``), so the interleaved output of
concurrently executing stages can be separated afterwards.

Usage:
    from freight_intel.logging_config import configure_logging

    configure_logging(level="DEBUG", json_output=False)
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Root log level name.
        json_output: JSON lines when True, colored console output otherwise.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def bound_run_context(call_id: str, organization_id: Optional[str] = None) -> Iterator[None]:
    """Bind run identifiers to every log entry emitted inside the block."""
    tokens = structlog.contextvars.bind_contextvars(
        call_id=call_id,
        organization_id=organization_id,
    )
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
