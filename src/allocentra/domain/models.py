from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from allocentra.core.errors import InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(value: datetime) -> datetime:
    """Timestamps are stored and compared as naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


ZERO = Decimal("0")


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CycleStatus(StrEnum):
    """Lifecycle of an allocation cycle."""

    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


CYCLE_TRANSITIONS: dict[CycleStatus, frozenset[CycleStatus]] = {
    CycleStatus.DRAFT: frozenset({CycleStatus.ACTIVE}),
    CycleStatus.ACTIVE: frozenset({CycleStatus.CLOSED}),
    CycleStatus.CLOSED: frozenset(),
}


class PoolKind(StrEnum):
    BUDGET = "BUDGET"
    RESOURCE = "RESOURCE"


class ResourceCategory(StrEnum):
    MONEY = "MONEY"
    PERSONNEL = "PERSONNEL"
    VEHICLES = "VEHICLES"
    EQUIPMENT = "EQUIPMENT"
    HOURS = "HOURS"
    TRAINING = "TRAINING"
    TRAVEL = "TRAVEL"


class RequestStatus(StrEnum):
    PENDING = "PENDING"
    ALLOCATED = "ALLOCATED"
    PARTIAL = "PARTIAL"
    DENIED = "DENIED"


class Decision(StrEnum):
    ALLOCATED = "ALLOCATED"
    PARTIAL = "PARTIAL"
    DENIED = "DENIED"


class RunMode(StrEnum):
    COMMIT = "COMMIT"
    SCENARIO = "SCENARIO"


class RunStatus(StrEnum):
    """Enumeration of allocation run states."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)


RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.FAILED}),
    RunStatus.RUNNING: frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED}),
    RunStatus.SUCCEEDED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


class LimitingFactor(StrEnum):
    NONE = "none"
    POOL_CAPACITY = "poolCapacity"
    PER_POOL_CAP = "perPoolCap"


class TraceRule(StrEnum):
    FULL_GRANT = "full_grant"
    PARTIAL_GRANT = "partial_grant"
    ALL_OR_NOTHING = "all_or_nothing"
    NOTHING_AVAILABLE = "nothing_available"


class Pool(CamelModel):
    id: str
    cycle_id: str
    kind: PoolKind
    name: str
    category: ResourceCategory = ResourceCategory.MONEY
    unit: str = "USD"
    capacity: Decimal = Field(ge=0)
    committed: Decimal = Field(default=ZERO, ge=0)
    reserved: Decimal = Field(default=ZERO, ge=0)

    @model_validator(mode="after")
    def _check_capacity(self) -> Pool:
        if self.committed + self.reserved > self.capacity:
            raise ValueError("committed + reserved must not exceed capacity")
        return self

    @property
    def available(self) -> Decimal:
        return self.capacity - self.committed - self.reserved


class Cycle(CamelModel):
    id: str
    name: str
    description: str | None = None
    start_date: date
    end_date: date
    status: CycleStatus = CycleStatus.DRAFT
    pools: list[Pool] = Field(default_factory=list)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_window(self) -> Cycle:
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    def pool_ids(self) -> frozenset[str]:
        return frozenset(pool.id for pool in self.pools)

    def can_transition(self, target: CycleStatus) -> bool:
        return target in CYCLE_TRANSITIONS[self.status]


class Request(CamelModel):
    id: str
    cycle_id: str
    requester: str
    title: str
    description: str | None = None
    quantities: dict[str, Decimal] = Field(default_factory=dict)
    priority: int = 3
    submitted_at: datetime = Field(default_factory=utcnow)
    status: RequestStatus = RequestStatus.PENDING

    @field_validator("quantities")
    @classmethod
    def _non_negative(cls, value: dict[str, Decimal]) -> dict[str, Decimal]:
        for pool_id, qty in value.items():
            if qty < 0:
                raise ValueError(f"quantity for pool {pool_id} must be non-negative")
        return value

    @field_validator("submitted_at")
    @classmethod
    def _naive_submitted_at(cls, value: datetime) -> datetime:
        return naive_utc(value)

    def requested_pools(self) -> dict[str, Decimal]:
        """Quantities with zero entries dropped, keyed in ascending pool id."""
        return {
            pool_id: self.quantities[pool_id]
            for pool_id in sorted(self.quantities)
            if self.quantities[pool_id] > 0
        }


class AllocationPolicy(CamelModel):
    model_config = ConfigDict(frozen=True)

    partial_allocation_allowed: bool = True
    per_pool_cap: Decimal | None = None

    @field_validator("per_pool_cap")
    @classmethod
    def _cap_is_fraction(cls, value: Decimal | None) -> Decimal | None:
        if value is not None and not (ZERO < value <= Decimal("1")):
            raise ValueError("per_pool_cap must be a fraction in (0, 1]")
        return value


class TraceStep(CamelModel):
    model_config = ConfigDict(frozen=True)

    pool_id: str
    available_before: Decimal
    requested: Decimal
    granted: Decimal
    limiting_factor: LimitingFactor
    rule: TraceRule


class AllocationResult(CamelModel):
    run_id: str
    request_id: str
    decision: Decision
    rank: int
    requested: dict[str, Decimal] = Field(default_factory=dict)
    granted: dict[str, Decimal] = Field(default_factory=dict)
    limiting_pools: list[str] = Field(default_factory=list)
    trace: list[TraceStep] = Field(default_factory=list)
    committed: bool = False


class RunSummary(CamelModel):
    total_requests: int = 0
    allocated: int = 0
    partial: int = 0
    denied: int = 0
    granted_by_pool: dict[str, Decimal] = Field(default_factory=dict)
    utilization_by_pool: dict[str, float] = Field(default_factory=dict)


class AllocationRun(CamelModel):
    id: str
    cycle_id: str
    mode: RunMode
    policy: AllocationPolicy = Field(default_factory=AllocationPolicy)
    status: RunStatus = RunStatus.PENDING
    actor: str | None = None
    notes: str | None = None
    engine_version: str | None = None
    snapshot: dict[str, Any] = Field(default_factory=dict)
    snapshot_digest: str | None = None
    summary: RunSummary | None = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    execution_time_ms: int | None = None
    failure_reason: str | None = None
    results: list[AllocationResult] = Field(default_factory=list)

    def transition(self, target: RunStatus) -> None:
        """Move to ``target``, refusing anything the run state machine forbids."""
        if target not in RUN_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Run cannot move from {self.status} to {target}",
                details={"run_id": self.id},
            )
        now = utcnow()
        if target == RunStatus.RUNNING:
            self.started_at = now
        if target.is_terminal:
            self.finished_at = now
            if self.started_at is not None:
                self.execution_time_ms = int((now - self.started_at).total_seconds() * 1000)
        self.status = target
