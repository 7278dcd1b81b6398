from decimal import Decimal

import pytest
from factories import make_cycle, make_pool, make_request, seed_cycle

from allocentra.audit import AuditAction, AuditRecorder, AuditRepository
from allocentra.core.errors import (
    CrossCycleReference,
    CycleLocked,
    CycleStateError,
    EmptyRequest,
    InsufficientCapacity,
    UnknownPool,
    ValidationError,
)
from allocentra.db.repositories import CycleRepository, RequestRepository
from allocentra.domain.models import CycleStatus, RequestStatus, RunMode
from allocentra.engine.controller import AllocationRunController
from allocentra.engine.cycles import CycleService
from allocentra.engine.ledger import LedgerRegistry
from allocentra.engine.locks import CycleLockManager


@pytest.fixture
def ledgers():
    return LedgerRegistry()


@pytest.fixture
def locks():
    return CycleLockManager()


@pytest.fixture
def service(session, ledgers, locks, settings):
    return CycleService(session, ledgers, locks, settings)


async def _audit_actions(session, cycle_id="fy26"):
    entries = await AuditRecorder(AuditRepository(session)).query(cycle_id).to_list()
    return [entry.action for entry in entries]


@pytest.mark.asyncio
async def test_create_cycle_audits_each_pool(session, service):
    cycle = make_cycle(
        [make_pool("pool-a", 100), make_pool("pool-b", 5)], status=CycleStatus.DRAFT
    )

    created = await service.create_cycle(cycle, actor="admin")

    assert created.status == CycleStatus.DRAFT
    assert sorted(created.pool_ids()) == ["pool-a", "pool-b"]
    assert await _audit_actions(session) == [AuditAction.POOL_CREATED] * 2


@pytest.mark.asyncio
async def test_create_cycle_rejects_duplicate_pool_ids(service):
    cycle = make_cycle([make_pool("pool-a", 1), make_pool("pool-a", 2)], status=CycleStatus.DRAFT)

    with pytest.raises(ValidationError):
        await service.create_cycle(cycle)


@pytest.mark.asyncio
async def test_cycle_lifecycle(session, service):
    await seed_cycle(session, [make_pool("pool-a", 10)], status=CycleStatus.DRAFT)

    active = await service.transition("fy26", CycleStatus.ACTIVE, actor="admin")
    assert active.status == CycleStatus.ACTIVE

    with pytest.raises(CycleStateError):
        await service.transition("fy26", CycleStatus.DRAFT)

    closed = await service.transition("fy26", CycleStatus.CLOSED)
    assert closed.status == CycleStatus.CLOSED
    assert (await CycleRepository(session).require("fy26")).status == CycleStatus.CLOSED

    with pytest.raises(CycleStateError):
        await service.transition("fy26", CycleStatus.ACTIVE)

    assert await _audit_actions(session) == [AuditAction.CYCLE_STATUS_CHANGED] * 2


@pytest.mark.asyncio
async def test_set_capacity_updates_ledger_db_and_audit(session, service, ledgers):
    await seed_cycle(session, [make_pool("pool-a", 100, committed=40)])

    pool = await service.set_capacity("fy26", "pool-a", Decimal("150"), actor="admin")

    assert pool.capacity == Decimal("150")
    assert ledgers.get("fy26").snapshot()["pool-a"].capacity == Decimal("150")
    stored = await CycleRepository(session).get_pool("pool-a")
    assert stored.capacity == Decimal("150")

    entries = await AuditRecorder(AuditRepository(session)).query("fy26").to_list()
    assert entries[-1].action == AuditAction.POOL_CAPACITY_CHANGED
    assert entries[-1].details["pool_id"] == "pool-a"
    assert Decimal(entries[-1].details["from"]) == Decimal("100")
    assert Decimal(entries[-1].details["to"]) == Decimal("150")
    assert entries[-1].before_digest != entries[-1].after_digest


@pytest.mark.asyncio
async def test_set_capacity_below_committed_is_rejected(session, service, ledgers):
    await seed_cycle(session, [make_pool("pool-a", 100, committed=40)])

    with pytest.raises(InsufficientCapacity):
        await service.set_capacity("fy26", "pool-a", Decimal("39.99"))

    assert ledgers.get("fy26").snapshot()["pool-a"].capacity == Decimal("100")
    assert await _audit_actions(session) == []


@pytest.mark.asyncio
async def test_set_capacity_unknown_pool(session, service):
    await seed_cycle(session, [make_pool("pool-a", 100)])

    with pytest.raises(UnknownPool):
        await service.set_capacity("fy26", "pool-z", Decimal("1"))


@pytest.mark.asyncio
async def test_set_capacity_honours_cycle_lock(session, service, locks):
    await seed_cycle(session, [make_pool("pool-a", 100)])

    async with locks.hold("fy26"):
        with pytest.raises(CycleLocked):
            await service.set_capacity("fy26", "pool-a", Decimal("10"))


@pytest.mark.asyncio
async def test_capacity_change_is_seen_by_next_commit(session, service, ledgers, locks, settings):
    await seed_cycle(session, [make_pool("pool-a", 50)], [make_request("r1", {"pool-a": 80})])
    controller = AllocationRunController(session, ledgers, locks, settings)

    await service.set_capacity("fy26", "pool-a", Decimal("80"))
    run = await controller.start("fy26", RunMode.COMMIT)

    assert run.results[0].granted == {"pool-a": Decimal("80")}


@pytest.mark.asyncio
async def test_add_pool_registers_with_loaded_ledger(session, service, ledgers):
    cycle = await seed_cycle(session, [make_pool("pool-a", 10)])
    ledgers.load(cycle)

    await service.add_pool("fy26", make_pool("pool-b", 25), actor="admin")

    assert "pool-b" in ledgers.get("fy26")
    assert (await CycleRepository(session).require("fy26")).pool_ids() == {"pool-a", "pool-b"}
    assert await _audit_actions(session) == [AuditAction.POOL_CREATED]


@pytest.mark.asyncio
async def test_add_pool_rejects_existing_id(session, service):
    await seed_cycle(session, [make_pool("pool-a", 10)])

    with pytest.raises(ValidationError):
        await service.add_pool("fy26", make_pool("pool-a", 25))


@pytest.mark.asyncio
async def test_submit_request_normalizes_quantities(session, service):
    await seed_cycle(session, [make_pool("pool-a", 10), make_pool("pool-b", 10)])

    stored = await service.submit_request(make_request("r1", {"pool-a": 0, "pool-b": 4}))

    assert stored.quantities == {"pool-b": Decimal("4")}
    fetched = await RequestRepository(session).require("r1")
    assert fetched.status == RequestStatus.PENDING
    assert fetched.quantities == {"pool-b": Decimal("4")}


@pytest.mark.asyncio
async def test_submit_request_validation(session, service):
    await seed_cycle(session, [make_pool("pool-a", 10)])

    with pytest.raises(EmptyRequest):
        await service.submit_request(make_request("r1", {"pool-a": 0}))
    with pytest.raises(CrossCycleReference):
        await service.submit_request(make_request("r2", {"other": 1}))


@pytest.mark.asyncio
async def test_submit_request_to_closed_cycle(session, service):
    await seed_cycle(session, [make_pool("pool-a", 10)], status=CycleStatus.CLOSED)

    with pytest.raises(CycleStateError):
        await service.submit_request(make_request("r1", {"pool-a": 1}))
