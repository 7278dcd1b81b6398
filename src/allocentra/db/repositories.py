from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from allocentra.core.errors import NotFoundError
from allocentra.db import models as db_models
from allocentra.domain.models import (
    AllocationPolicy,
    AllocationResult,
    AllocationRun,
    Cycle,
    CycleStatus,
    Decision,
    Pool,
    PoolKind,
    Request,
    RequestStatus,
    ResourceCategory,
    RunMode,
    RunStatus,
    RunSummary,
    TraceStep,
)


def _dump_quantities(quantities: Mapping[str, Decimal]) -> dict[str, str]:
    return {pool_id: str(qty) for pool_id, qty in quantities.items()}


def _load_quantities(raw: Mapping[str, str] | None) -> dict[str, Decimal]:
    return {pool_id: Decimal(qty) for pool_id, qty in (raw or {}).items()}


@dataclass(slots=True)
class CycleRepository:
    """Persistence helpers for cycles and their pools."""

    session: AsyncSession

    async def create(self, cycle: Cycle) -> None:
        self.session.add(
            db_models.CycleModel(
                id=cycle.id,
                name=cycle.name,
                description=cycle.description,
                start_date=cycle.start_date,
                end_date=cycle.end_date,
                status=cycle.status.value,
                created_by=cycle.created_by,
                created_at=cycle.created_at,
            )
        )
        await self.session.flush()
        for pool in cycle.pools:
            await self.add_pool(pool)

    async def add_pool(self, pool: Pool) -> None:
        self.session.add(
            db_models.PoolModel(
                id=pool.id,
                cycle_id=pool.cycle_id,
                kind=pool.kind.value,
                name=pool.name,
                category=pool.category.value,
                unit=pool.unit,
                capacity=pool.capacity,
                committed=pool.committed,
            )
        )
        await self.session.flush()

    async def get(self, cycle_id: str) -> Cycle | None:
        result = await self.session.execute(
            select(db_models.CycleModel).where(db_models.CycleModel.id == cycle_id)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        pools = await self._pools_for([cycle_id])
        return self._to_domain(model, pools.get(cycle_id, []))

    async def require(self, cycle_id: str) -> Cycle:
        cycle = await self.get(cycle_id)
        if cycle is None:
            raise NotFoundError(f"Cycle {cycle_id} not found", details={"cycle_id": cycle_id})
        return cycle

    async def list(self, status: CycleStatus | None = None) -> list[Cycle]:
        stmt = select(db_models.CycleModel).order_by(
            db_models.CycleModel.created_at, db_models.CycleModel.id
        )
        if status is not None:
            stmt = stmt.where(db_models.CycleModel.status == status.value)
        result = await self.session.execute(stmt)
        models = list(result.scalars().all())
        pools = await self._pools_for([m.id for m in models])
        return [self._to_domain(m, pools.get(m.id, [])) for m in models]

    async def get_pool(self, pool_id: str) -> Pool | None:
        result = await self.session.execute(
            select(db_models.PoolModel).where(db_models.PoolModel.id == pool_id)
        )
        model = result.scalar_one_or_none()
        return self._pool_to_domain(model) if model else None

    async def update_status(self, cycle_id: str, status: CycleStatus) -> None:
        await self.session.execute(
            update(db_models.CycleModel)
            .where(db_models.CycleModel.id == cycle_id)
            .values(status=status.value)
        )

    async def set_capacity(self, pool_id: str, capacity: Decimal) -> None:
        await self.session.execute(
            update(db_models.PoolModel)
            .where(db_models.PoolModel.id == pool_id)
            .values(capacity=capacity)
        )

    async def set_committed(self, committed: Mapping[str, Decimal]) -> None:
        for pool_id, value in committed.items():
            await self.session.execute(
                update(db_models.PoolModel)
                .where(db_models.PoolModel.id == pool_id)
                .values(committed=value)
            )

    async def _pools_for(self, cycle_ids: Iterable[str]) -> dict[str, list[Pool]]:
        ids = list(cycle_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(db_models.PoolModel)
            .where(db_models.PoolModel.cycle_id.in_(ids))
            .order_by(db_models.PoolModel.id)
        )
        grouped: dict[str, list[Pool]] = {}
        for model in result.scalars().all():
            grouped.setdefault(model.cycle_id, []).append(self._pool_to_domain(model))
        return grouped

    @staticmethod
    def _pool_to_domain(model: db_models.PoolModel) -> Pool:
        return Pool(
            id=model.id,
            cycle_id=model.cycle_id,
            kind=PoolKind(model.kind),
            name=model.name,
            category=ResourceCategory(model.category),
            unit=model.unit,
            capacity=Decimal(model.capacity),
            committed=Decimal(model.committed),
        )

    @staticmethod
    def _to_domain(model: db_models.CycleModel, pools: list[Pool]) -> Cycle:
        return Cycle(
            id=model.id,
            name=model.name,
            description=model.description,
            start_date=model.start_date,
            end_date=model.end_date,
            status=CycleStatus(model.status),
            pools=pools,
            created_by=model.created_by,
            created_at=model.created_at,
        )


@dataclass(slots=True)
class RequestRepository:
    """Persistence helpers for allocation requests."""

    session: AsyncSession

    async def create(self, request: Request) -> None:
        self.session.add(
            db_models.RequestModel(
                id=request.id,
                cycle_id=request.cycle_id,
                requester=request.requester,
                title=request.title,
                description=request.description,
                quantities=_dump_quantities(request.quantities),
                priority=request.priority,
                submitted_at=request.submitted_at,
                status=request.status.value,
            )
        )
        await self.session.flush()

    async def get(self, request_id: str) -> Request | None:
        result = await self.session.execute(
            select(db_models.RequestModel).where(db_models.RequestModel.id == request_id)
        )
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def require(self, request_id: str) -> Request:
        request = await self.get(request_id)
        if request is None:
            raise NotFoundError(
                f"Request {request_id} not found", details={"request_id": request_id}
            )
        return request

    async def list(self, cycle_id: str, status: RequestStatus | None = None) -> list[Request]:
        stmt = (
            select(db_models.RequestModel)
            .where(db_models.RequestModel.cycle_id == cycle_id)
            .order_by(
                db_models.RequestModel.priority,
                db_models.RequestModel.submitted_at,
                db_models.RequestModel.id,
            )
        )
        if status is not None:
            stmt = stmt.where(db_models.RequestModel.status == status.value)
        result = await self.session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def update_statuses(self, statuses: Mapping[str, RequestStatus]) -> None:
        for request_id, status in statuses.items():
            await self.session.execute(
                update(db_models.RequestModel)
                .where(db_models.RequestModel.id == request_id)
                .values(status=status.value)
            )

    @staticmethod
    def _to_domain(model: db_models.RequestModel) -> Request:
        return Request(
            id=model.id,
            cycle_id=model.cycle_id,
            requester=model.requester,
            title=model.title,
            description=model.description,
            quantities=_load_quantities(model.quantities),
            priority=model.priority,
            submitted_at=model.submitted_at,
            status=RequestStatus(model.status),
        )


@dataclass(slots=True)
class RunRepository:
    """Persistence helpers for allocation runs and their results."""

    session: AsyncSession

    async def save(self, run: AllocationRun) -> None:
        """Insert a finished run together with its results."""
        self.session.add(
            db_models.RunModel(
                id=run.id,
                cycle_id=run.cycle_id,
                mode=run.mode.value,
                status=run.status.value,
                policy=run.policy.model_dump(mode="json"),
                actor=run.actor,
                notes=run.notes,
                engine_version=run.engine_version,
                snapshot=run.snapshot,
                snapshot_digest=run.snapshot_digest,
                summary=run.summary.model_dump(mode="json") if run.summary else None,
                created_at=run.created_at,
                started_at=run.started_at,
                finished_at=run.finished_at,
                execution_time_ms=run.execution_time_ms,
                failure_reason=run.failure_reason,
            )
        )
        await self.session.flush()
        for result in run.results:
            self.session.add(
                db_models.ResultModel(
                    run_id=run.id,
                    request_id=result.request_id,
                    decision=result.decision.value,
                    rank=result.rank,
                    requested=_dump_quantities(result.requested),
                    granted=_dump_quantities(result.granted),
                    limiting_pools=list(result.limiting_pools),
                    trace=[step.model_dump(mode="json") for step in result.trace],
                    committed=result.committed,
                )
            )
        await self.session.flush()

    async def get(self, run_id: str) -> AllocationRun | None:
        result = await self.session.execute(
            select(db_models.RunModel).where(db_models.RunModel.id == run_id)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        rows = await self.session.execute(
            select(db_models.ResultModel)
            .where(db_models.ResultModel.run_id == run_id)
            .order_by(db_models.ResultModel.rank)
        )
        return self._to_domain(model, [self._result_to_domain(r) for r in rows.scalars().all()])

    async def require(self, run_id: str) -> AllocationRun:
        run = await self.get(run_id)
        if run is None:
            raise NotFoundError(f"Run {run_id} not found", details={"run_id": run_id})
        return run

    async def list(
        self,
        cycle_id: str | None = None,
        status: RunStatus | None = None,
        mode: RunMode | None = None,
    ) -> list[AllocationRun]:
        stmt = select(db_models.RunModel).order_by(
            db_models.RunModel.created_at.desc(), db_models.RunModel.id
        )
        if cycle_id is not None:
            stmt = stmt.where(db_models.RunModel.cycle_id == cycle_id)
        if status is not None:
            stmt = stmt.where(db_models.RunModel.status == status.value)
        if mode is not None:
            stmt = stmt.where(db_models.RunModel.mode == mode.value)
        result = await self.session.execute(stmt)
        return [self._to_domain(m, []) for m in result.scalars().all()]

    @staticmethod
    def _result_to_domain(model: db_models.ResultModel) -> AllocationResult:
        return AllocationResult(
            run_id=model.run_id,
            request_id=model.request_id,
            decision=Decision(model.decision),
            rank=model.rank,
            requested=_load_quantities(model.requested),
            granted=_load_quantities(model.granted),
            limiting_pools=list(model.limiting_pools or []),
            trace=[TraceStep.model_validate(step) for step in model.trace or []],
            committed=model.committed,
        )

    @staticmethod
    def _to_domain(model: db_models.RunModel, results: list[AllocationResult]) -> AllocationRun:
        return AllocationRun(
            id=model.id,
            cycle_id=model.cycle_id,
            mode=RunMode(model.mode),
            policy=AllocationPolicy.model_validate(model.policy),
            status=RunStatus(model.status),
            actor=model.actor,
            notes=model.notes,
            engine_version=model.engine_version,
            snapshot=model.snapshot or {},
            snapshot_digest=model.snapshot_digest,
            summary=RunSummary.model_validate(model.summary) if model.summary else None,
            created_at=model.created_at,
            started_at=model.started_at,
            finished_at=model.finished_at,
            execution_time_ms=model.execution_time_ms,
            failure_reason=model.failure_reason,
            results=results,
        )
