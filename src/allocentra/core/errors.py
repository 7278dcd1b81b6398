"""
Unified error handling for Allocentra.

Every error raised by the engine, the persistence layer and the API derives
from AllocentraError. Each class carries the HTTP status the API answers
with and the exit code the CLI terminates with.

Exit Codes:
- 0: Success
- 2: Conflict (cycle state, capacity, lock contention)
- 10: Configuration error
- 11: Persistence error
- 12: Validation error
- 13: Not found
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    CONFLICT = 2
    CONFIG_ERROR = 10
    PERSISTENCE_ERROR = 11
    VALIDATION_ERROR = 12
    NOT_FOUND = 13
    UNKNOWN_ERROR = 127


class AllocentraError(Exception):
    """Base exception for Allocentra errors with exit code and HTTP status."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    status_code: int = 500
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(AllocentraError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class ValidationError(AllocentraError):
    """Raised for malformed input, rejected before any mutation."""

    exit_code = ExitCode.VALIDATION_ERROR
    status_code = 400


class CrossCycleReference(ValidationError):
    """A request references a pool that belongs to another cycle."""


class EmptyRequest(ValidationError):
    """A request asks for nothing from every pool."""


class InvalidTransition(ValidationError):
    """A run or cycle was asked to move to a state it cannot reach."""


class NotFoundError(AllocentraError):
    """Raised when a cycle, pool, request or run does not exist."""

    exit_code = ExitCode.NOT_FOUND
    status_code = 404


class UnknownPool(NotFoundError):
    """The ledger has no pool with the given identity."""


class CycleStateError(AllocentraError):
    """The cycle status forbids the requested operation."""

    exit_code = ExitCode.CONFLICT
    status_code = 409


class CapacityError(AllocentraError):
    """Base class for capacity shortfalls on direct ledger calls."""

    exit_code = ExitCode.CONFLICT
    status_code = 409


class InsufficientCapacity(CapacityError):
    """A reservation or capacity change would break committed + reserved <= capacity."""


class LedgerError(AllocentraError):
    """Raised on misuse of the ledger's reservation protocol."""


class UnknownToken(LedgerError):
    """A reservation token was already committed or released."""


class ConcurrencyError(AllocentraError):
    """Raised on lock contention. Callers retry with backoff."""

    exit_code = ExitCode.CONFLICT
    status_code = 423


class CycleLocked(ConcurrencyError):
    """Another COMMIT run holds the cycle's write lock."""


class PersistenceError(AllocentraError):
    """A run, result or audit record failed to write."""

    exit_code = ExitCode.PERSISTENCE_ERROR


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - AllocentraError subclasses: Prints the message to stderr, uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except AllocentraError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                print(f"Error: {format_error_message(e)}", file=sys.stderr)
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: AllocentraError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
