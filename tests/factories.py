"""Builders for domain objects shared by the test modules."""

from collections.abc import Iterable
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from allocentra.db.repositories import CycleRepository, RequestRepository
from allocentra.domain.models import Cycle, CycleStatus, Pool, PoolKind, Request

BASE_TIME = datetime(2026, 1, 5, 9, 0, 0)


def make_pool(
    pool_id: str, capacity: str | int, committed: str | int = 0, cycle_id: str = "fy26"
) -> Pool:
    return Pool(
        id=pool_id,
        cycle_id=cycle_id,
        kind=PoolKind.BUDGET,
        name=pool_id,
        capacity=Decimal(str(capacity)),
        committed=Decimal(str(committed)),
    )


def make_request(
    request_id: str,
    quantities: dict[str, str | int],
    priority: int = 3,
    offset: int = 0,
    cycle_id: str = "fy26",
) -> Request:
    return Request(
        id=request_id,
        cycle_id=cycle_id,
        requester="alice",
        title=f"Request {request_id}",
        quantities={pool_id: Decimal(str(qty)) for pool_id, qty in quantities.items()},
        priority=priority,
        submitted_at=BASE_TIME + timedelta(minutes=offset),
    )


def make_cycle(
    pools: Iterable[Pool] = (),
    status: CycleStatus = CycleStatus.ACTIVE,
    cycle_id: str = "fy26",
) -> Cycle:
    return Cycle(
        id=cycle_id,
        name="FY26 budget",
        start_date=date(2026, 1, 1),
        end_date=date(2027, 1, 1),
        status=status,
        pools=list(pools),
    )


async def seed_cycle(
    session: AsyncSession,
    pools: Iterable[Pool],
    requests: Iterable[Request] = (),
    status: CycleStatus = CycleStatus.ACTIVE,
    cycle_id: str = "fy26",
) -> Cycle:
    cycle = make_cycle(pools, status, cycle_id)
    await CycleRepository(session).create(cycle)
    for request in requests:
        await RequestRepository(session).create(request)
    await session.commit()
    return cycle
