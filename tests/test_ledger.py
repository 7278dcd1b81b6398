import random
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from factories import make_cycle, make_pool

from allocentra.core.errors import InsufficientCapacity, UnknownPool, UnknownToken, ValidationError
from allocentra.engine.ledger import LedgerRegistry, PoolLedger, ReservationState


@pytest.fixture
def ledger():
    return PoolLedger("fy26", [make_pool("pool-a", 100), make_pool("pool-b", 50, committed=20)])


def test_reserve_increments_reserved(ledger):
    reservation = ledger.reserve("pool-a", Decimal("30"))

    snap = ledger.snapshot()["pool-a"]
    assert snap.reserved == Decimal("30")
    assert snap.committed == Decimal("0")
    assert snap.available == Decimal("70")
    assert reservation.state == ReservationState.HELD
    assert ledger.held_count == 1


def test_reserve_beyond_available_fails(ledger):
    ledger.reserve("pool-b", Decimal("25"))

    with pytest.raises(InsufficientCapacity) as exc_info:
        ledger.reserve("pool-b", Decimal("6"))

    assert exc_info.value.details["available"] == "5"
    assert ledger.snapshot()["pool-b"].reserved == Decimal("25")


def test_reserve_rejects_non_positive_quantity(ledger):
    with pytest.raises(ValidationError):
        ledger.reserve("pool-a", Decimal("0"))
    with pytest.raises(ValidationError):
        ledger.reserve("pool-a", Decimal("-1"))


def test_reserve_unknown_pool(ledger):
    with pytest.raises(UnknownPool):
        ledger.reserve("pool-z", Decimal("1"))


def test_commit_moves_reserved_into_committed(ledger):
    reservation = ledger.reserve("pool-b", Decimal("10"))
    ledger.commit(reservation)

    snap = ledger.snapshot()["pool-b"]
    assert snap.committed == Decimal("30")
    assert snap.reserved == Decimal("0")
    assert reservation.state == ReservationState.COMMITTED
    assert ledger.held_count == 0


def test_commit_twice_raises_unknown_token(ledger):
    reservation = ledger.reserve("pool-a", Decimal("10"))
    ledger.commit(reservation)

    with pytest.raises(UnknownToken):
        ledger.commit(reservation)


def test_commit_after_release_raises_unknown_token(ledger):
    reservation = ledger.reserve("pool-a", Decimal("10"))
    ledger.release(reservation)

    with pytest.raises(UnknownToken):
        ledger.commit(reservation)


def test_release_is_idempotent(ledger):
    reservation = ledger.reserve("pool-a", Decimal("10"))
    ledger.release(reservation)
    ledger.release(reservation)

    snap = ledger.snapshot()["pool-a"]
    assert snap.reserved == Decimal("0")
    assert reservation.state == ReservationState.RELEASED


def test_reservation_context_manager_releases_on_exit(ledger):
    with ledger.reserve("pool-a", Decimal("40")):
        assert ledger.snapshot()["pool-a"].reserved == Decimal("40")

    assert ledger.snapshot()["pool-a"].reserved == Decimal("0")


def test_reservation_context_manager_keeps_commit(ledger):
    with ledger.reserve("pool-a", Decimal("40")) as reservation:
        ledger.commit(reservation)

    snap = ledger.snapshot()["pool-a"]
    assert snap.committed == Decimal("40")
    assert snap.reserved == Decimal("0")


def test_set_capacity_returns_previous_state(ledger):
    before = ledger.set_capacity("pool-a", Decimal("150"))

    assert before.capacity == Decimal("100")
    assert ledger.snapshot()["pool-a"].capacity == Decimal("150")


def test_set_capacity_below_committed_plus_reserved_fails(ledger):
    ledger.reserve("pool-b", Decimal("10"))

    with pytest.raises(InsufficientCapacity):
        ledger.set_capacity("pool-b", Decimal("29"))

    ledger.set_capacity("pool-b", Decimal("30"))
    assert ledger.snapshot()["pool-b"].available == Decimal("0")


def test_add_pool_rejects_duplicates_and_overcommit(ledger):
    with pytest.raises(ValidationError):
        ledger.add_pool("pool-a", Decimal("10"))
    with pytest.raises(InsufficientCapacity):
        ledger.add_pool("pool-c", Decimal("10"), Decimal("11"))

    ledger.add_pool("pool-c", Decimal("10"))
    assert "pool-c" in ledger


def test_snapshot_is_sorted_by_pool_id():
    ledger = PoolLedger("fy26", [make_pool("zeta", 1), make_pool("alpha", 1), make_pool("mid", 1)])

    assert list(ledger.snapshot()) == ["alpha", "mid", "zeta"]


def test_copy_is_isolated_and_drops_holds(ledger):
    ledger.reserve("pool-a", Decimal("60"))

    private = ledger.copy()
    assert private.snapshot()["pool-a"].reserved == Decimal("0")

    private.commit(private.reserve("pool-a", Decimal("90")))
    assert private.snapshot()["pool-a"].committed == Decimal("90")
    assert ledger.snapshot()["pool-a"].committed == Decimal("0")
    assert ledger.snapshot()["pool-a"].reserved == Decimal("60")


def test_registry_hydrates_once():
    registry = LedgerRegistry()
    cycle = make_cycle([make_pool("pool-a", 100)])

    first = registry.load(cycle)
    first.commit(first.reserve("pool-a", Decimal("10")))
    second = registry.load(cycle)

    assert first is second
    assert registry.get("fy26") is first
    registry.evict("fy26")
    assert registry.get("fy26") is None


def test_concurrent_operations_never_overcommit():
    pools = [make_pool(f"pool-{i}", 100) for i in range(3)]
    ledger = PoolLedger("fy26", pools)
    violations: list[str] = []
    stop = threading.Event()

    def check_invariant() -> None:
        while not stop.is_set():
            for snap in ledger.snapshot().values():
                if snap.committed + snap.reserved > snap.capacity or snap.reserved < 0:
                    violations.append(f"{snap}")

    def worker(seed: int) -> None:
        rng = random.Random(seed)
        for _ in range(300):
            pool_id = f"pool-{rng.randrange(3)}"
            qty = Decimal(rng.randint(1, 15))
            try:
                reservation = ledger.reserve(pool_id, qty)
            except InsufficientCapacity:
                continue
            if rng.random() < 0.1:
                ledger.commit(reservation)
            else:
                ledger.release(reservation)

    checker = threading.Thread(target=check_invariant)
    checker.start()
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(worker, range(16)))
    stop.set()
    checker.join()

    assert violations == []
    for snap in ledger.snapshot().values():
        assert snap.reserved == Decimal("0")
        assert snap.committed <= snap.capacity
    assert ledger.held_count == 0
