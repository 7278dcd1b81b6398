import random
from decimal import Decimal

import pytest
from factories import make_request

from allocentra.core.errors import CrossCycleReference, EmptyRequest
from allocentra.domain.models import (
    AllocationPolicy,
    Decision,
    LimitingFactor,
    RunMode,
    TraceRule,
)
from allocentra.engine.algorithm import allocate
from allocentra.engine.ledger import PoolSnapshot

PARTIAL = AllocationPolicy(partial_allocation_allowed=True)
ALL_OR_NOTHING = AllocationPolicy(partial_allocation_allowed=False)


def snapshot(**pools: int | tuple[int, int, int]) -> dict[str, PoolSnapshot]:
    snaps = {}
    for pool_id, value in sorted(pools.items()):
        capacity, committed, reserved = value if isinstance(value, tuple) else (value, 0, 0)
        snaps[pool_id] = PoolSnapshot(
            pool_id, Decimal(capacity), Decimal(committed), Decimal(reserved)
        )
    return snaps


def test_partial_allocation_example():
    requests = [
        make_request("r1", {"pool": 70}, priority=1),
        make_request("r2", {"pool": 50}, priority=2),
    ]

    outcome = allocate(snapshot(pool=100), requests, PARTIAL)
    r1, r2 = outcome.decisions

    assert r1.decision == Decision.ALLOCATED
    assert r1.granted == {"pool": Decimal("70")}
    assert r1.trace[0].rule == TraceRule.FULL_GRANT
    assert r2.decision == Decision.PARTIAL
    assert r2.granted == {"pool": Decimal("30")}
    assert r2.trace[0].limiting_factor == LimitingFactor.POOL_CAPACITY
    assert r2.trace[0].available_before == Decimal("30")
    assert r2.limiting_pools == ["pool"]
    assert outcome.residual["pool"] == Decimal("0")
    assert outcome.granted_by_pool["pool"] == Decimal("100")


def test_all_or_nothing_example():
    requests = [
        make_request("r1", {"pool": 70}, priority=1),
        make_request("r2", {"pool": 50}, priority=2),
    ]

    outcome = allocate(snapshot(pool=100), requests, ALL_OR_NOTHING)
    r1, r2 = outcome.decisions

    assert r1.decision == Decision.ALLOCATED
    assert r2.decision == Decision.DENIED
    assert r2.granted == {"pool": Decimal("0")}
    assert r2.trace[0].rule == TraceRule.ALL_OR_NOTHING
    assert outcome.residual["pool"] == Decimal("30")


def test_nothing_available_is_denied_even_with_partial():
    requests = [
        make_request("r1", {"pool": 50}, priority=1),
        make_request("r2", {"pool": 10}, priority=2),
    ]

    outcome = allocate(snapshot(pool=50), requests, PARTIAL)
    r2 = outcome.decisions[1]

    assert r2.decision == Decision.DENIED
    assert r2.granted == {"pool": Decimal("0")}
    assert r2.trace[0].rule == TraceRule.NOTHING_AVAILABLE
    assert r2.trace[0].limiting_factor == LimitingFactor.POOL_CAPACITY


def test_per_pool_cap_limits_grant():
    policy = AllocationPolicy(per_pool_cap=Decimal("0.25"))

    outcome = allocate(snapshot(pool=100), [make_request("r1", {"pool": 40})], policy)
    r1 = outcome.decisions[0]

    assert r1.decision == Decision.PARTIAL
    assert r1.granted == {"pool": Decimal("25.00")}
    assert r1.trace[0].limiting_factor == LimitingFactor.PER_POOL_CAP


def test_per_pool_cap_tie_reports_pool_capacity():
    policy = AllocationPolicy(per_pool_cap=Decimal("0.3"))

    outcome = allocate(snapshot(pool=(100, 70, 0)), [make_request("r1", {"pool": 50})], policy)
    step = outcome.decisions[0].trace[0]

    assert step.granted == Decimal("30")
    assert step.limiting_factor == LimitingFactor.POOL_CAPACITY


def test_multi_pool_partial_records_limiting_pool_in_pool_order():
    request = make_request("r1", {"pool-b": 20, "pool-a": 50})

    outcome = allocate(snapshot(**{"pool-a": 100, "pool-b": 10}), [request], PARTIAL)
    r1 = outcome.decisions[0]

    assert [step.pool_id for step in r1.trace] == ["pool-a", "pool-b"]
    assert r1.decision == Decision.PARTIAL
    assert r1.granted == {"pool-a": Decimal("50"), "pool-b": Decimal("10")}
    assert r1.limiting_pools == ["pool-b"]
    assert r1.trace[0].limiting_factor == LimitingFactor.NONE


def test_all_or_nothing_decrements_no_pool():
    request = make_request("r1", {"pool-a": 50, "pool-b": 20})

    outcome = allocate(snapshot(**{"pool-a": 100, "pool-b": 10}), [request], ALL_OR_NOTHING)

    assert outcome.decisions[0].decision == Decision.DENIED
    assert outcome.residual == {"pool-a": Decimal("100"), "pool-b": Decimal("10")}


def test_commit_counts_reservations_scenario_does_not():
    snap = snapshot(pool=(100, 0, 40))
    request = make_request("r1", {"pool": 80})

    committed = allocate(snap, [request], PARTIAL, RunMode.COMMIT)
    scenario = allocate(snap, [request], PARTIAL, RunMode.SCENARIO)

    assert committed.decisions[0].granted == {"pool": Decimal("60")}
    assert scenario.decisions[0].granted == {"pool": Decimal("80")}


def test_ranks_follow_input_order():
    requests = [make_request(f"r{i}", {"pool": 1}, offset=i) for i in range(3)]

    outcome = allocate(snapshot(pool=10), requests, PARTIAL)

    assert [(d.rank, d.request_id) for d in outcome.decisions] == [(1, "r0"), (2, "r1"), (3, "r2")]


def test_validation_happens_before_evaluation():
    with pytest.raises(EmptyRequest):
        allocate(
            snapshot(pool=10),
            [make_request("ok", {"pool": 1}), make_request("empty", {"pool": 0})],
            PARTIAL,
        )
    with pytest.raises(CrossCycleReference):
        allocate(snapshot(pool=10), [make_request("x", {"elsewhere": 1})], PARTIAL)


def test_identical_inputs_give_identical_canonical_output():
    snap = snapshot(**{"pool-a": 120, "pool-b": 35})
    requests = [
        make_request("r1", {"pool-a": "40.5", "pool-b": 20}, priority=2),
        make_request("r2", {"pool-a": 100}, priority=1),
        make_request("r3", {"pool-b": 30}, priority=3),
    ]

    first = allocate(snap, requests, PARTIAL, RunMode.SCENARIO)
    second = allocate(snap, list(requests), PARTIAL, RunMode.SCENARIO)

    assert first.canonical_json() == second.canonical_json()


@pytest.mark.parametrize("seed", range(5))
def test_lower_priority_requests_never_reduce_earlier_grants(seed):
    rng = random.Random(seed)
    snap = snapshot(**{"pool-a": 100, "pool-b": 60})
    requests = [
        make_request(
            f"r{i}",
            {"pool-a": rng.randint(0, 60), "pool-b": rng.randint(1, 40)},
            priority=i,
        )
        for i in range(6)
    ]

    full = allocate(snap, requests, PARTIAL)
    for cut in range(1, len(requests)):
        prefix = allocate(snap, requests[:cut], PARTIAL)
        for before, after in zip(prefix.decisions, full.decisions):
            assert before.granted == after.granted
