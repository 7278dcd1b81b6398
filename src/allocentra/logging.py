"""
Structured logging.

structlog bridged onto stdlib logging. Run-scoped identifiers are carried
in context variables so that log lines from the ledger, the audit recorder
and the persistence layer emitted during a run all carry its run_id.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


def configure_logging(level: int | str = logging.INFO, *, json: bool = True) -> None:
    """Configure structlog/standard logging bridge."""

    renderer: Any = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(level=level, format="%(message)s")


@contextmanager
def run_context(run_id: str, cycle_id: str, **extra: Any) -> Iterator[structlog.stdlib.BoundLogger]:
    """Attach run identifiers to every log line emitted inside the block."""
    tokens = structlog.contextvars.bind_contextvars(run_id=run_id, cycle_id=cycle_id, **extra)
    try:
        yield structlog.get_logger()
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
