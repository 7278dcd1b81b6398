from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from allocentra.api.deps import get_controller, get_principal
from allocentra.domain.models import AllocationPolicy, AllocationRun, CamelModel, RunMode, RunStatus
from allocentra.engine.controller import AllocationRunController

router = APIRouter()


class RunCreateRequest(CamelModel):
    cycle_id: str
    mode: RunMode
    policy: AllocationPolicy | None = None
    notes: str | None = None


class RunCreateResponse(CamelModel):
    run_id: str
    status: RunStatus


@router.post("/runs", status_code=status.HTTP_201_CREATED, response_model=RunCreateResponse)
async def start_run(
    payload: RunCreateRequest,
    controller: AllocationRunController = Depends(get_controller),  # noqa: B008
    principal: str = Depends(get_principal),  # noqa: B008
) -> RunCreateResponse:
    """Execute a COMMIT or SCENARIO run inline and report its terminal status."""
    run = await controller.start(
        payload.cycle_id,
        payload.mode,
        payload.policy,
        actor=principal,
        notes=payload.notes,
    )
    return RunCreateResponse(run_id=run.id, status=run.status)


@router.get("/runs", response_model=list[AllocationRun])
async def list_runs(
    cycle_id: str | None = Query(default=None, alias="cycleId"),  # noqa: B008
    run_status: RunStatus | None = Query(default=None, alias="status"),  # noqa: B008
    mode: RunMode | None = None,
    controller: AllocationRunController = Depends(get_controller),  # noqa: B008
) -> list[AllocationRun]:
    return await controller.runs.list(cycle_id=cycle_id, status=run_status, mode=mode)


@router.get("/runs/{run_id}", response_model=AllocationRun)
async def get_run(
    run_id: str,
    controller: AllocationRunController = Depends(get_controller),  # noqa: B008
) -> AllocationRun:
    return await controller.get(run_id)
