"""
Cycle administration.

Creates cycles, moves them through DRAFT -> ACTIVE -> CLOSED, adds pools,
changes pool capacity and accepts request submissions. Every mutation of
pool state runs under the cycle lock and is audited in the same transaction
as the change itself; the in-memory ledger is only touched after the
transaction commits.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from allocentra.audit import AuditAction, AuditRecorder, AuditRepository
from allocentra.config import Settings, get_settings
from allocentra.core.errors import (
    CycleStateError,
    InsufficientCapacity,
    UnknownPool,
    ValidationError,
)
from allocentra.db.repositories import CycleRepository, RequestRepository
from allocentra.domain.models import Cycle, CycleStatus, Pool, Request, RequestStatus
from allocentra.engine import queue
from allocentra.engine.ledger import LedgerRegistry, PoolSnapshot
from allocentra.engine.locks import CycleLockManager

logger = structlog.get_logger()

T = TypeVar("T")


def _snapshot(pool: Pool) -> PoolSnapshot:
    return PoolSnapshot(pool.id, pool.capacity, pool.committed, pool.reserved)


class CycleService:
    """Cycle, pool and request administration."""

    def __init__(
        self,
        session: AsyncSession,
        ledgers: LedgerRegistry,
        locks: CycleLockManager,
        settings: Settings | None = None,
        audit: AuditRecorder | None = None,
    ) -> None:
        self.session = session
        self.ledgers = ledgers
        self.locks = locks
        self.settings = settings or get_settings()
        self.cycles = CycleRepository(session)
        self.requests = RequestRepository(session)
        self.audit = audit or AuditRecorder(AuditRepository(session), self.settings.audit_page_size)

    async def _transaction(self, work: Callable[[], Awaitable[T]]) -> T:
        try:
            result = await work()
            await self.session.commit()
        except BaseException:
            await self.session.rollback()
            raise
        return result

    async def _check_new_pool(self, pool: Pool, cycle_id: str) -> None:
        if pool.cycle_id != cycle_id:
            raise ValidationError(
                "Pool belongs to a different cycle",
                details={"pool_id": pool.id, "cycle_id": cycle_id},
            )
        if await self.cycles.get_pool(pool.id) is not None:
            raise ValidationError("Pool id already exists", details={"pool_id": pool.id})

    async def create_cycle(self, cycle: Cycle, actor: str | None = None) -> Cycle:
        if cycle.status != CycleStatus.DRAFT:
            raise CycleStateError(
                "Cycles are created in DRAFT", details={"cycle_id": cycle.id}
            )
        if await self.cycles.get(cycle.id) is not None:
            raise ValidationError("Cycle id already exists", details={"cycle_id": cycle.id})
        pool_ids = [pool.id for pool in cycle.pools]
        if len(pool_ids) != len(set(pool_ids)):
            raise ValidationError("Duplicate pool ids", details={"cycle_id": cycle.id})
        for pool in cycle.pools:
            await self._check_new_pool(pool, cycle.id)

        async def work() -> None:
            await self.cycles.create(cycle)
            for pool in cycle.pools:
                await self.audit.record_change(
                    cycle_id=cycle.id,
                    action=AuditAction.POOL_CREATED,
                    actor=actor,
                    before=None,
                    after=[_snapshot(pool)],
                    details={"pool_id": pool.id, "kind": pool.kind.value},
                )

        await self._transaction(work)
        logger.info("cycle_created", cycle_id=cycle.id, pools=len(cycle.pools))
        return await self.cycles.require(cycle.id)

    async def transition(
        self,
        cycle_id: str,
        target: CycleStatus,
        actor: str | None = None,
        lock_timeout: float | None = None,
    ) -> Cycle:
        """Move a cycle along DRAFT -> ACTIVE -> CLOSED."""
        timeout = self.settings.lock_timeout_seconds if lock_timeout is None else lock_timeout
        async with self.locks.hold(cycle_id, timeout):
            cycle = await self.cycles.require(cycle_id)
            if not cycle.can_transition(target):
                raise CycleStateError(
                    f"Cycle cannot move from {cycle.status.value} to {target.value}",
                    details={"cycle_id": cycle_id, "status": cycle.status.value},
                )

            async def work() -> None:
                await self.cycles.update_status(cycle_id, target)
                await self.audit.record_change(
                    cycle_id=cycle_id,
                    action=AuditAction.CYCLE_STATUS_CHANGED,
                    actor=actor,
                    before=None,
                    after=None,
                    details={"from": cycle.status.value, "to": target.value},
                )

            await self._transaction(work)

        logger.info(
            "cycle_status_changed", cycle_id=cycle_id, previous=cycle.status.value, status=target.value
        )
        return cycle.model_copy(update={"status": target})

    async def add_pool(
        self,
        cycle_id: str,
        pool: Pool,
        actor: str | None = None,
        lock_timeout: float | None = None,
    ) -> Pool:
        timeout = self.settings.lock_timeout_seconds if lock_timeout is None else lock_timeout
        async with self.locks.hold(cycle_id, timeout):
            cycle = await self.cycles.require(cycle_id)
            if cycle.status == CycleStatus.CLOSED:
                raise CycleStateError(
                    "Pools cannot be added to a CLOSED cycle", details={"cycle_id": cycle_id}
                )
            await self._check_new_pool(pool, cycle_id)

            async def work() -> None:
                await self.cycles.add_pool(pool)
                await self.audit.record_change(
                    cycle_id=cycle_id,
                    action=AuditAction.POOL_CREATED,
                    actor=actor,
                    before=None,
                    after=[_snapshot(pool)],
                    details={"pool_id": pool.id, "kind": pool.kind.value},
                )

            await self._transaction(work)

            ledger = self.ledgers.get(cycle_id)
            if ledger is not None:
                ledger.add_pool(pool.id, pool.capacity, pool.committed)

        logger.info("pool_created", cycle_id=cycle_id, pool_id=pool.id)
        return pool

    async def set_capacity(
        self,
        cycle_id: str,
        pool_id: str,
        capacity: Decimal,
        actor: str | None = None,
        lock_timeout: float | None = None,
    ) -> Pool:
        """Change a pool's capacity.

        Raises:
            UnknownPool: pool is not part of the cycle
            CycleStateError: cycle is CLOSED
            InsufficientCapacity: new capacity is below committed + reserved
        """
        if capacity < 0:
            raise ValidationError("Capacity must be non-negative", details={"pool_id": pool_id})

        timeout = self.settings.lock_timeout_seconds if lock_timeout is None else lock_timeout
        async with self.locks.hold(cycle_id, timeout):
            cycle = await self.cycles.require(cycle_id)
            if cycle.status == CycleStatus.CLOSED:
                raise CycleStateError(
                    "Capacity of a CLOSED cycle is frozen", details={"cycle_id": cycle_id}
                )
            if pool_id not in cycle.pool_ids():
                raise UnknownPool(
                    f"Pool {pool_id} is not part of cycle {cycle_id}",
                    details={"pool_id": pool_id, "cycle_id": cycle_id},
                )

            ledger = self.ledgers.load(cycle)
            before = ledger.snapshot()[pool_id]
            if capacity < before.committed + before.reserved:
                raise InsufficientCapacity(
                    f"Pool {pool_id} capacity cannot drop below committed + reserved",
                    details={
                        "pool_id": pool_id,
                        "capacity": str(capacity),
                        "committed": str(before.committed),
                        "reserved": str(before.reserved),
                    },
                )
            after = PoolSnapshot(pool_id, capacity, before.committed, before.reserved)

            async def work() -> None:
                await self.cycles.set_capacity(pool_id, capacity)
                await self.audit.record_change(
                    cycle_id=cycle_id,
                    action=AuditAction.POOL_CAPACITY_CHANGED,
                    actor=actor,
                    before=[before],
                    after=[after],
                    details={
                        "pool_id": pool_id,
                        "from": str(before.capacity),
                        "to": str(capacity),
                    },
                )

            await self._transaction(work)
            ledger.set_capacity(pool_id, capacity)

        logger.info(
            "pool_capacity_changed",
            cycle_id=cycle_id,
            pool_id=pool_id,
            previous=str(before.capacity),
            capacity=str(capacity),
        )
        pool = next(p for p in cycle.pools if p.id == pool_id)
        return pool.model_copy(update={"capacity": capacity, "committed": before.committed})

    async def submit_request(self, request: Request) -> Request:
        cycle = await self.cycles.require(request.cycle_id)
        if cycle.status == CycleStatus.CLOSED:
            raise CycleStateError(
                "Requests cannot be submitted to a CLOSED cycle",
                details={"cycle_id": cycle.id},
            )
        if request.status != RequestStatus.PENDING:
            raise ValidationError(
                "New requests must be PENDING", details={"request_id": request.id}
            )
        if await self.requests.get(request.id) is not None:
            raise ValidationError("Request id already exists", details={"request_id": request.id})
        queue.validate(request, cycle.pool_ids())

        normalized = request.model_copy(update={"quantities": request.requested_pools()})
        await self._transaction(lambda: self.requests.create(normalized))
        logger.info("request_submitted", request_id=request.id, cycle_id=cycle.id)
        return normalized
