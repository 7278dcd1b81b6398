from decimal import Decimal

import pytest
from factories import make_pool, make_request, seed_cycle

from allocentra.core.errors import NotFoundError
from allocentra.db.repositories import CycleRepository, RequestRepository, RunRepository
from allocentra.domain.models import (
    AllocationPolicy,
    AllocationResult,
    AllocationRun,
    CycleStatus,
    Decision,
    LimitingFactor,
    RequestStatus,
    RunMode,
    RunStatus,
    TraceRule,
    TraceStep,
)


@pytest.mark.asyncio
async def test_cycle_round_trip(session):
    await seed_cycle(
        session, [make_pool("pool-b", "12.5"), make_pool("pool-a", 100, committed=10)]
    )

    cycle = await CycleRepository(session).require("fy26")

    assert [p.id for p in cycle.pools] == ["pool-a", "pool-b"]
    assert cycle.pools[0].committed == Decimal("10")
    assert cycle.pools[1].capacity == Decimal("12.5")


@pytest.mark.asyncio
async def test_cycle_list_filters_by_status(session):
    await seed_cycle(session, [make_pool("a1", 1, cycle_id="c1")], cycle_id="c1")
    await seed_cycle(
        session, [make_pool("a2", 1, cycle_id="c2")], status=CycleStatus.DRAFT, cycle_id="c2"
    )

    repo = CycleRepository(session)

    assert [c.id for c in await repo.list()] == ["c1", "c2"]
    assert [c.id for c in await repo.list(CycleStatus.DRAFT)] == ["c2"]


@pytest.mark.asyncio
async def test_missing_cycle_raises_not_found(session):
    with pytest.raises(NotFoundError):
        await CycleRepository(session).require("nope")


@pytest.mark.asyncio
async def test_requests_listed_in_queue_order(session):
    await seed_cycle(
        session,
        [make_pool("pool-a", 10)],
        [
            make_request("r-late", {"pool-a": 1}, priority=1, offset=10),
            make_request("r-low", {"pool-a": 1}, priority=5, offset=0),
            make_request("r-early", {"pool-a": 1}, priority=1, offset=1),
        ],
    )
    repo = RequestRepository(session)

    assert [r.id for r in await repo.list("fy26")] == ["r-early", "r-late", "r-low"]

    await repo.update_statuses({"r-low": RequestStatus.DENIED})
    await session.commit()

    pending = await repo.list("fy26", RequestStatus.PENDING)
    assert [r.id for r in pending] == ["r-early", "r-late"]


@pytest.mark.asyncio
async def test_run_round_trip_keeps_results_and_traces(session):
    await seed_cycle(session, [make_pool("pool-a", 10)])
    step = TraceStep(
        pool_id="pool-a",
        available_before=Decimal("10"),
        requested=Decimal("15"),
        granted=Decimal("10"),
        limiting_factor=LimitingFactor.POOL_CAPACITY,
        rule=TraceRule.PARTIAL_GRANT,
    )
    run = AllocationRun(
        id="run-1",
        cycle_id="fy26",
        mode=RunMode.SCENARIO,
        policy=AllocationPolicy(per_pool_cap=Decimal("0.5")),
        snapshot={"pools": [], "request_ids": ["r1"]},
        results=[
            AllocationResult(
                run_id="run-1",
                request_id="r1",
                decision=Decision.PARTIAL,
                rank=1,
                requested={"pool-a": Decimal("15")},
                granted={"pool-a": Decimal("10")},
                limiting_pools=["pool-a"],
                trace=[step],
            )
        ],
    )
    run.transition(RunStatus.RUNNING)
    run.transition(RunStatus.SUCCEEDED)

    repo = RunRepository(session)
    await repo.save(run)
    await session.commit()

    stored = await repo.require("run-1")
    assert stored.status == RunStatus.SUCCEEDED
    assert stored.policy.per_pool_cap == Decimal("0.5")
    assert stored.results[0].trace == [step]
    assert stored.results[0].granted == {"pool-a": Decimal("10")}
    assert stored.execution_time_ms is not None

    assert [r.id for r in await repo.list(mode=RunMode.SCENARIO)] == ["run-1"]
    assert await repo.list(mode=RunMode.COMMIT) == []
