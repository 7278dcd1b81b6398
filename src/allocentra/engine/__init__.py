"""
Allocation engine.

Pool ledger, request queue, allocation algorithm and trace builder. The run
controller and cycle service live in ``allocentra.engine.controller`` and
``allocentra.engine.cycles``.
"""

from allocentra.engine.algorithm import AllocationOutcome, RequestDecision, allocate
from allocentra.engine.ledger import (
    LedgerRegistry,
    PoolLedger,
    PoolSnapshot,
    Reservation,
    ReservationState,
)
from allocentra.engine.locks import CycleLockManager
from allocentra.engine.trace import TraceBuilder

__all__ = [
    "AllocationOutcome",
    "CycleLockManager",
    "LedgerRegistry",
    "PoolLedger",
    "PoolSnapshot",
    "RequestDecision",
    "Reservation",
    "ReservationState",
    "TraceBuilder",
    "allocate",
]
