from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import ConfigDict

from allocentra.api.deps import get_audit_recorder
from allocentra.audit import AuditAction, AuditRecorder
from allocentra.domain.models import CamelModel, naive_utc

router = APIRouter()


def _naive_utc(value: datetime | None) -> datetime | None:
    return None if value is None else naive_utc(value)


class AuditEntryResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    timestamp: datetime
    actor: str | None = None
    cycle_id: str
    action: AuditAction
    run_id: str | None = None
    before_digest: str | None = None
    after_digest: str | None = None
    details: dict[str, Any] = {}


@router.get("/audit", response_model=list[AuditEntryResponse])
async def query_audit(
    cycle_id: str = Query(alias="cycleId"),  # noqa: B008
    start: datetime | None = Query(default=None, alias="from"),  # noqa: B008
    end: datetime | None = Query(default=None, alias="to"),  # noqa: B008
    recorder: AuditRecorder = Depends(get_audit_recorder),  # noqa: B008
) -> list[AuditEntryResponse]:
    """Audit entries for a cycle in ``[from, to)``, ordered by time."""
    return [
        AuditEntryResponse.model_validate(entry)
        async for entry in recorder.query(cycle_id, start=_naive_utc(start), end=_naive_utc(end))
    ]
