"""Tests for the error hierarchy and CLI error handling."""

import pytest

from allocentra.core.errors import (
    AllocentraError,
    CapacityError,
    ConcurrencyError,
    CrossCycleReference,
    CycleLocked,
    CycleStateError,
    EmptyRequest,
    ExitCode,
    InsufficientCapacity,
    NotFoundError,
    PersistenceError,
    UnknownPool,
    UnknownToken,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)


@pytest.mark.parametrize(
    "error_cls,status_code",
    [
        (ValidationError, 400),
        (CrossCycleReference, 400),
        (EmptyRequest, 400),
        (NotFoundError, 404),
        (UnknownPool, 404),
        (CycleStateError, 409),
        (InsufficientCapacity, 409),
        (CycleLocked, 423),
        (PersistenceError, 500),
        (UnknownToken, 500),
    ],
)
def test_http_status_codes(error_cls, status_code):
    assert error_cls("boom").status_code == status_code


def test_hierarchy():
    assert issubclass(InsufficientCapacity, CapacityError)
    assert issubclass(CycleLocked, ConcurrencyError)
    assert issubclass(EmptyRequest, ValidationError)
    assert issubclass(PersistenceError, AllocentraError)


def test_format_error_message_includes_details():
    error = NotFoundError("Cycle missing", details={"cycle_id": "fy26"})

    assert format_error_message(error) == "Cycle missing (cycle_id=fy26)"


class TestMainWithErrorHandling:
    def test_success_passes_through(self):
        @main_with_error_handling()
        def command() -> int:
            return 0

        assert command() == ExitCode.SUCCESS

    def test_allocentra_error_maps_to_exit_code(self):
        @main_with_error_handling()
        def command() -> int:
            raise CycleStateError("closed")

        assert command() == ExitCode.CONFLICT

    def test_unexpected_error(self):
        @main_with_error_handling()
        def command() -> int:
            raise RuntimeError("kaboom")

        assert command() == ExitCode.UNKNOWN_ERROR

    def test_keyboard_interrupt(self):
        @main_with_error_handling()
        def command() -> int:
            raise KeyboardInterrupt

        assert command() == 130

    def test_allocentra_error_message_goes_to_stderr(self, capsys):
        @main_with_error_handling()
        def command() -> int:
            raise NotFoundError("Cycle missing", details={"cycle_id": "fy26"})

        assert command() == ExitCode.NOT_FOUND
        assert "Error: Cycle missing (cycle_id=fy26)" in capsys.readouterr().err
