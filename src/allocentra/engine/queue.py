"""Request normalization and ordering."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from allocentra.core.errors import CrossCycleReference, EmptyRequest, ValidationError
from allocentra.domain.models import Request, RequestStatus


def sort_key(request: Request) -> tuple[int, object, str]:
    return (request.priority, request.submitted_at, request.id)


def validate(request: Request, pool_ids: Iterable[str]) -> None:
    """Reject a request that could never be evaluated against ``pool_ids``."""
    known = frozenset(pool_ids)
    foreign = sorted(pool_id for pool_id in request.quantities if pool_id not in known)
    if foreign:
        raise CrossCycleReference(
            f"Request {request.id} references pools outside cycle {request.cycle_id}",
            details={"request_id": request.id, "pool_ids": foreign},
        )
    if any(qty < 0 for qty in request.quantities.values()):
        raise ValidationError(
            f"Request {request.id} has a negative quantity",
            details={"request_id": request.id},
        )
    if not request.requested_pools():
        raise EmptyRequest(
            f"Request {request.id} asks for nothing",
            details={"request_id": request.id},
        )


def pending(requests: Iterable[Request]) -> list[Request]:
    return [r for r in requests if r.status == RequestStatus.PENDING]


def order(requests: Sequence[Request], pool_ids: Iterable[str] | None = None) -> list[Request]:
    """Validate then sort by (priority, submission time, id).

    The key is total, so repeated calls on the same input give the same order.
    Validation runs over the whole batch before anything is sorted.
    """
    if pool_ids is not None:
        known = frozenset(pool_ids)
        for request in requests:
            validate(request, known)
    return sorted(requests, key=sort_key)
