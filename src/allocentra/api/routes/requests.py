from __future__ import annotations

from decimal import Decimal
from typing import Annotated
from uuid import uuid4

from fastapi import APIRouter, Depends, Query, status
from pydantic import Field

from allocentra.api.deps import get_cycle_service, get_principal
from allocentra.domain.models import CamelModel, Request, RequestStatus
from allocentra.engine.cycles import CycleService

router = APIRouter()


class RequestCreateRequest(CamelModel):
    id: str | None = None
    cycle_id: str
    requester: str | None = None
    title: str
    description: str | None = None
    quantities: dict[str, Annotated[Decimal, Field(ge=0)]]
    priority: int = 3


@router.get("/requests", response_model=list[Request])
async def list_requests(
    cycle_id: str = Query(alias="cycleId"),  # noqa: B008
    request_status: RequestStatus | None = Query(default=None, alias="status"),  # noqa: B008
    service: CycleService = Depends(get_cycle_service),  # noqa: B008
) -> list[Request]:
    await service.cycles.require(cycle_id)
    return await service.requests.list(cycle_id, request_status)


@router.get("/requests/{request_id}", response_model=Request)
async def get_request(
    request_id: str,
    service: CycleService = Depends(get_cycle_service),  # noqa: B008
) -> Request:
    return await service.requests.require(request_id)


@router.post("/requests", status_code=status.HTTP_201_CREATED, response_model=Request)
async def submit_request(
    payload: RequestCreateRequest,
    service: CycleService = Depends(get_cycle_service),  # noqa: B008
    principal: str = Depends(get_principal),  # noqa: B008
) -> Request:
    request = Request(
        id=payload.id or str(uuid4()),
        cycle_id=payload.cycle_id,
        requester=payload.requester or principal,
        title=payload.title,
        description=payload.description,
        quantities=payload.quantities,
        priority=payload.priority,
    )
    return await service.submit_request(request)
