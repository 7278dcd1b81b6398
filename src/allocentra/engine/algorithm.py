"""
Allocation algorithm.

A pure, single-pass function over requests already sorted by the request
queue. Earlier (higher-priority) requests may exhaust a pool before later
ones are looked at, and a grant is never revoked to benefit a later request.
Capacity shortfall is decision output, never an exception.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from allocentra.domain.models import (
    AllocationPolicy,
    Decision,
    LimitingFactor,
    Request,
    RunMode,
    TraceRule,
    TraceStep,
)
from allocentra.engine import queue
from allocentra.engine.ledger import PoolSnapshot
from allocentra.engine.trace import TraceBuilder, limiting_pools

ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class RequestDecision:
    request_id: str
    rank: int
    decision: Decision
    requested: Mapping[str, Decimal]
    granted: Mapping[str, Decimal]
    trace: tuple[TraceStep, ...]

    @property
    def limiting_pools(self) -> list[str]:
        return limiting_pools(self.trace)

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "rank": self.rank,
            "decision": self.decision.value,
            "requested": {k: str(v) for k, v in self.requested.items()},
            "granted": {k: str(v) for k, v in self.granted.items()},
            "trace": [step.model_dump(mode="json") for step in self.trace],
        }


@dataclass(frozen=True, slots=True)
class AllocationOutcome:
    decisions: tuple[RequestDecision, ...]
    residual: Mapping[str, Decimal]
    granted_by_pool: Mapping[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "decisions": [d.to_dict() for d in self.decisions],
            "residual": {k: str(v) for k, v in self.residual.items()},
            "granted_by_pool": {k: str(v) for k, v in self.granted_by_pool.items()},
        }

    def canonical_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def available_from(snapshot: Mapping[str, PoolSnapshot], mode: RunMode) -> dict[str, Decimal]:
    """Working availability per pool.

    COMMIT evaluation treats in-flight reservations as unavailable. SCENARIO
    evaluation works against committed state only, so holds taken by other
    runs do not leak into a hypothetical.
    """
    if mode == RunMode.COMMIT:
        return {pool_id: snap.available for pool_id, snap in snapshot.items()}
    return {pool_id: snap.capacity - snap.committed for pool_id, snap in snapshot.items()}


def _grantable(
    requested: Decimal,
    available: Decimal,
    capacity: Decimal,
    policy: AllocationPolicy,
) -> tuple[Decimal, LimitingFactor]:
    grantable = min(requested, max(available, ZERO))
    factor = LimitingFactor.POOL_CAPACITY if grantable < requested else LimitingFactor.NONE
    if policy.per_pool_cap is not None:
        cap_limit = policy.per_pool_cap * capacity
        if cap_limit < grantable:
            grantable = cap_limit
            factor = LimitingFactor.PER_POOL_CAP
    return grantable, factor


def allocate(
    snapshot: Mapping[str, PoolSnapshot],
    requests: Sequence[Request],
    policy: AllocationPolicy,
    mode: RunMode = RunMode.COMMIT,
) -> AllocationOutcome:
    """Decide every request in order against ``snapshot``.

    Args:
        snapshot: Immutable per-pool counters taken from the ledger
        requests: Requests in queue order
        policy: Partial-allocation and per-pool cap options
        mode: Selects how reserved quantities count toward availability

    Returns:
        AllocationOutcome with one decision per request, in input order

    Raises:
        CrossCycleReference, EmptyRequest: before any request is evaluated
    """
    for request in requests:
        queue.validate(request, snapshot.keys())

    available = available_from(snapshot, mode)
    granted_by_pool: dict[str, Decimal] = {pool_id: ZERO for pool_id in snapshot}
    decisions: list[RequestDecision] = []

    for rank, request in enumerate(requests, start=1):
        wanted = request.requested_pools()
        evaluated: list[tuple[str, Decimal, Decimal, Decimal, LimitingFactor]] = []
        for pool_id, qty in wanted.items():
            grantable, factor = _grantable(qty, available[pool_id], snapshot[pool_id].capacity, policy)
            evaluated.append((pool_id, available[pool_id], qty, grantable, factor))

        fully_satisfied = all(factor == LimitingFactor.NONE for *_, factor in evaluated)
        any_grant = any(grantable > 0 for _, _, _, grantable, _ in evaluated)

        if fully_satisfied:
            decision, rule, apply = Decision.ALLOCATED, TraceRule.FULL_GRANT, True
        elif not policy.partial_allocation_allowed:
            decision, rule, apply = Decision.DENIED, TraceRule.ALL_OR_NOTHING, False
        elif not any_grant:
            decision, rule, apply = Decision.DENIED, TraceRule.NOTHING_AVAILABLE, False
        else:
            decision, rule, apply = Decision.PARTIAL, TraceRule.PARTIAL_GRANT, True

        builder = TraceBuilder(request.id)
        granted: dict[str, Decimal] = {}
        for pool_id, before, qty, grantable, factor in evaluated:
            amount = grantable if apply else ZERO
            builder.add(
                pool_id,
                available_before=before,
                requested=qty,
                granted=amount,
                limiting_factor=factor,
                rule=rule,
            )
            granted[pool_id] = amount
            if amount > 0:
                available[pool_id] -= amount
                granted_by_pool[pool_id] += amount

        decisions.append(
            RequestDecision(
                request_id=request.id,
                rank=rank,
                decision=decision,
                requested=wanted,
                granted=granted,
                trace=builder.build(),
            )
        )

    return AllocationOutcome(
        decisions=tuple(decisions),
        residual=available,
        granted_by_pool=granted_by_pool,
    )
