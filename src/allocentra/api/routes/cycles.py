from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import uuid4

from fastapi import APIRouter, Depends, Query, status
from pydantic import Field

from allocentra.api.deps import get_cycle_service, get_principal
from allocentra.domain.models import (
    CamelModel,
    Cycle,
    CycleStatus,
    Pool,
    PoolKind,
    ResourceCategory,
)
from allocentra.engine.cycles import CycleService

router = APIRouter()


class PoolCreateRequest(CamelModel):
    id: str | None = None
    kind: PoolKind
    name: str
    category: ResourceCategory = ResourceCategory.MONEY
    unit: str = "USD"
    capacity: Decimal = Field(ge=0)
    committed: Decimal = Field(default=Decimal("0"), ge=0)

    def to_pool(self, cycle_id: str) -> Pool:
        return Pool(
            id=self.id or str(uuid4()),
            cycle_id=cycle_id,
            kind=self.kind,
            name=self.name,
            category=self.category,
            unit=self.unit,
            capacity=self.capacity,
            committed=self.committed,
        )


class CycleCreateRequest(CamelModel):
    id: str | None = None
    name: str
    description: str | None = None
    start_date: date
    end_date: date
    pools: list[PoolCreateRequest] = Field(default_factory=list)


class CapacityUpdateRequest(CamelModel):
    capacity: Decimal = Field(ge=0)


@router.get("/cycles", response_model=list[Cycle])
async def list_cycles(
    cycle_status: CycleStatus | None = Query(default=None, alias="status"),  # noqa: B008
    service: CycleService = Depends(get_cycle_service),  # noqa: B008
) -> list[Cycle]:
    return await service.cycles.list(cycle_status)


@router.get("/cycles/{cycle_id}", response_model=Cycle)
async def get_cycle(
    cycle_id: str,
    service: CycleService = Depends(get_cycle_service),  # noqa: B008
) -> Cycle:
    return await service.cycles.require(cycle_id)


@router.post("/cycles", status_code=status.HTTP_201_CREATED, response_model=Cycle)
async def create_cycle(
    payload: CycleCreateRequest,
    service: CycleService = Depends(get_cycle_service),  # noqa: B008
    principal: str = Depends(get_principal),  # noqa: B008
) -> Cycle:
    cycle_id = payload.id or str(uuid4())
    cycle = Cycle(
        id=cycle_id,
        name=payload.name,
        description=payload.description,
        start_date=payload.start_date,
        end_date=payload.end_date,
        pools=[pool.to_pool(cycle_id) for pool in payload.pools],
        created_by=principal,
    )
    return await service.create_cycle(cycle, actor=principal)


@router.post("/cycles/{cycle_id}/activate", response_model=Cycle)
async def activate_cycle(
    cycle_id: str,
    service: CycleService = Depends(get_cycle_service),  # noqa: B008
    principal: str = Depends(get_principal),  # noqa: B008
) -> Cycle:
    return await service.transition(cycle_id, CycleStatus.ACTIVE, actor=principal)


@router.post("/cycles/{cycle_id}/close", response_model=Cycle)
async def close_cycle(
    cycle_id: str,
    service: CycleService = Depends(get_cycle_service),  # noqa: B008
    principal: str = Depends(get_principal),  # noqa: B008
) -> Cycle:
    return await service.transition(cycle_id, CycleStatus.CLOSED, actor=principal)


@router.post(
    "/cycles/{cycle_id}/pools", status_code=status.HTTP_201_CREATED, response_model=Pool
)
async def add_pool(
    cycle_id: str,
    payload: PoolCreateRequest,
    service: CycleService = Depends(get_cycle_service),  # noqa: B008
    principal: str = Depends(get_principal),  # noqa: B008
) -> Pool:
    return await service.add_pool(cycle_id, payload.to_pool(cycle_id), actor=principal)


@router.patch("/cycles/{cycle_id}/pools/{pool_id}", response_model=Pool)
async def update_pool_capacity(
    cycle_id: str,
    pool_id: str,
    payload: CapacityUpdateRequest,
    service: CycleService = Depends(get_cycle_service),  # noqa: B008
    principal: str = Depends(get_principal),  # noqa: B008
) -> Pool:
    return await service.set_capacity(cycle_id, pool_id, payload.capacity, actor=principal)
