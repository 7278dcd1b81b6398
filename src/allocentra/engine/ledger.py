"""
Pool ledger.

Tracks capacity, committed and reserved quantities for every pool of one
cycle. Reservations are explicit tokens consumed exactly once by commit or
release. Every operation on a pool holds that pool's mutex, so
``committed + reserved <= capacity`` holds under concurrent callers.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from typing import TYPE_CHECKING, Iterable

import structlog

from allocentra.core.errors import InsufficientCapacity, UnknownPool, UnknownToken, ValidationError

if TYPE_CHECKING:
    from allocentra.domain.models import Cycle, Pool

logger = structlog.get_logger()

ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class PoolSnapshot:
    """Point-in-time view of one pool's counters."""

    pool_id: str
    capacity: Decimal
    committed: Decimal
    reserved: Decimal

    @property
    def available(self) -> Decimal:
        return self.capacity - self.committed - self.reserved

    def to_dict(self) -> dict[str, str]:
        return {
            "pool_id": self.pool_id,
            "capacity": str(self.capacity),
            "committed": str(self.committed),
            "reserved": str(self.reserved),
        }


class ReservationState(StrEnum):
    HELD = "held"
    COMMITTED = "committed"
    RELEASED = "released"


class Reservation:
    """Token returned by :meth:`PoolLedger.reserve`.

    Usable as a context manager: leaving the block releases the hold unless
    it was committed inside it.
    """

    __slots__ = ("token", "pool_id", "quantity", "state", "_ledger")

    def __init__(self, ledger: PoolLedger, pool_id: str, quantity: Decimal) -> None:
        self.token = str(uuid.uuid4())
        self.pool_id = pool_id
        self.quantity = quantity
        self.state = ReservationState.HELD
        self._ledger = ledger

    def __enter__(self) -> Reservation:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._ledger.release(self)

    def __repr__(self) -> str:
        return (
            f"Reservation(token={self.token!r}, pool_id={self.pool_id!r}, "
            f"quantity={self.quantity}, state={self.state.value})"
        )


class _PoolAccount:
    __slots__ = ("capacity", "committed", "reserved", "lock")

    def __init__(self, capacity: Decimal, committed: Decimal) -> None:
        self.capacity = capacity
        self.committed = committed
        self.reserved = ZERO
        self.lock = threading.Lock()

    def snapshot(self, pool_id: str) -> PoolSnapshot:
        return PoolSnapshot(pool_id, self.capacity, self.committed, self.reserved)


class PoolLedger:
    """Single source of truth for the capacity of one cycle's pools."""

    def __init__(self, cycle_id: str, pools: Iterable[Pool] = ()) -> None:
        self.cycle_id = cycle_id
        self._accounts: dict[str, _PoolAccount] = {}
        self._held: dict[str, Reservation] = {}
        self._registry_lock = threading.Lock()
        for pool in pools:
            self.add_pool(pool.id, pool.capacity, pool.committed)

    def add_pool(self, pool_id: str, capacity: Decimal, committed: Decimal = ZERO) -> None:
        if capacity < 0 or committed < 0:
            raise ValidationError(
                "Pool quantities must be non-negative",
                details={"pool_id": pool_id},
            )
        if committed > capacity:
            raise InsufficientCapacity(
                "Committed quantity exceeds capacity",
                details={"pool_id": pool_id, "capacity": str(capacity), "committed": str(committed)},
            )
        with self._registry_lock:
            if pool_id in self._accounts:
                raise ValidationError("Pool already registered", details={"pool_id": pool_id})
            self._accounts[pool_id] = _PoolAccount(capacity, committed)

    def __contains__(self, pool_id: object) -> bool:
        return pool_id in self._accounts

    def _account(self, pool_id: str) -> _PoolAccount:
        try:
            return self._accounts[pool_id]
        except KeyError:
            raise UnknownPool(
                f"Pool {pool_id} is not part of cycle {self.cycle_id}",
                details={"pool_id": pool_id, "cycle_id": self.cycle_id},
            ) from None

    def reserve(self, pool_id: str, qty: Decimal) -> Reservation:
        if qty <= 0:
            raise ValidationError(
                "Reservation quantity must be positive",
                details={"pool_id": pool_id, "quantity": str(qty)},
            )
        account = self._account(pool_id)
        with account.lock:
            available = account.capacity - account.committed - account.reserved
            if qty > available:
                raise InsufficientCapacity(
                    f"Pool {pool_id} cannot reserve {qty}",
                    details={
                        "pool_id": pool_id,
                        "requested": str(qty),
                        "available": str(available),
                    },
                )
            account.reserved += qty
            reservation = Reservation(self, pool_id, qty)
        with self._registry_lock:
            self._held[reservation.token] = reservation
        return reservation

    def commit(self, reservation: Reservation) -> None:
        with self._registry_lock:
            held = self._held.pop(reservation.token, None)
        if held is None:
            raise UnknownToken(
                "Reservation is not held",
                details={"token": reservation.token, "state": reservation.state.value},
            )
        account = self._account(held.pool_id)
        with account.lock:
            account.reserved -= held.quantity
            account.committed += held.quantity
            held.state = ReservationState.COMMITTED

    def release(self, reservation: Reservation) -> None:
        with self._registry_lock:
            held = self._held.pop(reservation.token, None)
        if held is None:
            return
        account = self._account(held.pool_id)
        with account.lock:
            account.reserved -= held.quantity
            held.state = ReservationState.RELEASED

    def release_all(self, reservations: Iterable[Reservation]) -> None:
        for reservation in reservations:
            self.release(reservation)

    def set_capacity(self, pool_id: str, capacity: Decimal) -> PoolSnapshot:
        """Change a pool's capacity and return the state before the change."""
        if capacity < 0:
            raise ValidationError(
                "Capacity must be non-negative", details={"pool_id": pool_id}
            )
        account = self._account(pool_id)
        with account.lock:
            before = account.snapshot(pool_id)
            if capacity < account.committed + account.reserved:
                raise InsufficientCapacity(
                    f"Pool {pool_id} capacity cannot drop below committed + reserved",
                    details={
                        "pool_id": pool_id,
                        "capacity": str(capacity),
                        "committed": str(account.committed),
                        "reserved": str(account.reserved),
                    },
                )
            account.capacity = capacity
        return before

    def snapshot(self) -> dict[str, PoolSnapshot]:
        """Consistent per-pool view, keyed in ascending pool id."""
        snapshots: dict[str, PoolSnapshot] = {}
        for pool_id in sorted(self._accounts):
            account = self._accounts[pool_id]
            with account.lock:
                snapshots[pool_id] = account.snapshot(pool_id)
        return snapshots

    def copy(self) -> PoolLedger:
        """Private copy seeded from committed state, without in-flight holds."""
        private = PoolLedger(self.cycle_id)
        for pool_id, snap in self.snapshot().items():
            private.add_pool(pool_id, snap.capacity, snap.committed)
        return private

    @property
    def held_count(self) -> int:
        return len(self._held)


class LedgerRegistry:
    """Process-wide map of cycle id to its ledger, hydrated on first use."""

    def __init__(self) -> None:
        self._ledgers: dict[str, PoolLedger] = {}
        self._lock = threading.Lock()

    def get(self, cycle_id: str) -> PoolLedger | None:
        return self._ledgers.get(cycle_id)

    def load(self, cycle: Cycle) -> PoolLedger:
        with self._lock:
            ledger = self._ledgers.get(cycle.id)
            if ledger is None:
                ledger = PoolLedger(cycle.id, cycle.pools)
                self._ledgers[cycle.id] = ledger
                logger.debug("ledger_hydrated", cycle_id=cycle.id, pools=len(cycle.pools))
            return ledger

    def evict(self, cycle_id: str) -> None:
        with self._lock:
            self._ledgers.pop(cycle_id, None)

