"""Core modules for Allocentra - centralized error definitions."""

from allocentra.core.errors import (
    AllocentraError,
    CapacityError,
    ConcurrencyError,
    ConfigurationError,
    CrossCycleReference,
    CycleLocked,
    CycleStateError,
    EmptyRequest,
    ExitCode,
    InsufficientCapacity,
    InvalidTransition,
    LedgerError,
    NotFoundError,
    PersistenceError,
    UnknownPool,
    UnknownToken,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "AllocentraError",
    "ConfigurationError",
    "ValidationError",
    "CrossCycleReference",
    "EmptyRequest",
    "InvalidTransition",
    "NotFoundError",
    "UnknownPool",
    "CycleStateError",
    "CapacityError",
    "InsufficientCapacity",
    "LedgerError",
    "UnknownToken",
    "ConcurrencyError",
    "CycleLocked",
    "PersistenceError",
    "main_with_error_handling",
    "format_error_message",
]
