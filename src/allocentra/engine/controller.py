"""
Allocation run controller.

Orchestrates one run: validates the cycle, snapshots the ledger and pending
requests, invokes the allocation algorithm, then either applies the outcome
(COMMIT) or discards it (SCENARIO). Every run that got past validation is
persisted with its results and traces, including FAILED ones.

COMMIT runs hold the cycle's write lock for their whole duration and are
all-or-nothing: grants are reserved on the shared ledger, the database
transaction (results, request statuses, pool counters, run, audit entry) is
committed, and only then are the reservations committed on the ledger. Any
failure before that point releases every reservation and rolls back.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import uuid
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from allocentra.audit import AuditAction, AuditRecorder, AuditRepository
from allocentra.config import Settings, get_settings
from allocentra.core.errors import CycleStateError, PersistenceError
from allocentra.db.repositories import CycleRepository, RequestRepository, RunRepository
from allocentra.domain.models import (
    AllocationPolicy,
    AllocationResult,
    AllocationRun,
    Cycle,
    CycleStatus,
    Decision,
    RequestStatus,
    RunMode,
    RunStatus,
    RunSummary,
)
from allocentra.engine import algorithm, queue
from allocentra.engine.algorithm import AllocationOutcome
from allocentra.engine.ledger import LedgerRegistry, PoolLedger, PoolSnapshot, Reservation
from allocentra.engine.locks import CycleLockManager
from allocentra.logging import run_context

RUNNABLE_STATUSES: dict[RunMode, frozenset[CycleStatus]] = {
    RunMode.COMMIT: frozenset({CycleStatus.ACTIVE}),
    RunMode.SCENARIO: frozenset({CycleStatus.ACTIVE, CycleStatus.DRAFT}),
}


def snapshot_digest(payload: Mapping[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def summarize(outcome: AllocationOutcome, snapshot: Mapping[str, PoolSnapshot]) -> RunSummary:
    counts = {decision: 0 for decision in Decision}
    for item in outcome.decisions:
        counts[item.decision] += 1

    utilization: dict[str, float] = {}
    for pool_id, snap in snapshot.items():
        if snap.capacity > 0:
            used = snap.capacity - outcome.residual[pool_id]
            utilization[pool_id] = round(float(used / snap.capacity), 4)
        else:
            utilization[pool_id] = 0.0

    return RunSummary(
        total_requests=len(outcome.decisions),
        allocated=counts[Decision.ALLOCATED],
        partial=counts[Decision.PARTIAL],
        denied=counts[Decision.DENIED],
        granted_by_pool=dict(outcome.granted_by_pool),
        utilization_by_pool=utilization,
    )


class AllocationRunController:
    """Runs the allocation engine against one cycle."""

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
        self.runs = RunRepository(session)
        self.audit = audit or AuditRecorder(AuditRepository(session), self.settings.audit_page_size)

    def default_policy(self) -> AllocationPolicy:
        return AllocationPolicy(partial_allocation_allowed=self.settings.default_partial_allocation)

    async def start(
        self,
        cycle_id: str,
        mode: RunMode,
        policy: AllocationPolicy | None = None,
        *,
        actor: str | None = None,
        notes: str | None = None,
        lock_timeout: float | None = None,
    ) -> AllocationRun:
        """Execute one run and return it in its terminal state.

        Raises:
            NotFoundError: cycle does not exist
            CycleStateError: cycle status does not allow this mode
            CycleLocked: another COMMIT run holds the cycle lock
            ValidationError: a pending request is malformed (no run is recorded)
            PersistenceError: even the FAILED run record could not be written
        """
        policy = policy or self.default_policy()

        if mode == RunMode.SCENARIO:
            cycle = await self.cycles.require(cycle_id)
            self._check_runnable(cycle, mode)
            return await self._execute(cycle, mode, policy, actor, notes)

        timeout = self.settings.lock_timeout_seconds if lock_timeout is None else lock_timeout
        async with self.locks.hold(cycle_id, timeout):
            cycle = await self.cycles.require(cycle_id)
            self._check_runnable(cycle, mode)
            return await self._execute(cycle, mode, policy, actor, notes)

    @staticmethod
    def _check_runnable(cycle: Cycle, mode: RunMode) -> None:
        if cycle.status not in RUNNABLE_STATUSES[mode]:
            raise CycleStateError(
                f"{mode.value} runs are not allowed on a {cycle.status.value} cycle",
                details={"cycle_id": cycle.id, "status": cycle.status.value, "mode": mode.value},
            )

    async def _execute(
        self,
        cycle: Cycle,
        mode: RunMode,
        policy: AllocationPolicy,
        actor: str | None,
        notes: str | None,
    ) -> AllocationRun:
        run = AllocationRun(
            id=str(uuid.uuid4()),
            cycle_id=cycle.id,
            mode=mode,
            policy=policy,
            actor=actor,
            notes=notes,
            engine_version=self.settings.engine_version,
        )
        with run_context(run.id, cycle.id, mode=mode.value) as log:
            return await self._run(run, cycle, policy, log)

    async def _run(
        self,
        run: AllocationRun,
        cycle: Cycle,
        policy: AllocationPolicy,
        log: structlog.stdlib.BoundLogger,
    ) -> AllocationRun:
        mode = run.mode
        ledger = self.ledgers.load(cycle)
        snapshot = ledger.snapshot()
        pending = await self.requests.list(cycle.id, RequestStatus.PENDING)
        ordered = queue.order(pending, snapshot.keys())

        run.snapshot = {
            "pools": [snap.to_dict() for snap in snapshot.values()],
            "request_ids": [request.id for request in ordered],
        }
        run.snapshot_digest = snapshot_digest(run.snapshot)
        run.transition(RunStatus.RUNNING)
        log.info("run_started", requests=len(ordered), pools=len(snapshot))

        try:
            outcome = algorithm.allocate(snapshot, ordered, policy, mode)
        except Exception as exc:
            return await self._fail(run, exc, log)

        run.results = [
            AllocationResult(
                run_id=run.id,
                request_id=item.request_id,
                decision=item.decision,
                rank=item.rank,
                requested=dict(item.requested),
                granted=dict(item.granted),
                limiting_pools=item.limiting_pools,
                trace=list(item.trace),
            )
            for item in outcome.decisions
        ]
        run.summary = summarize(outcome, snapshot)

        if mode == RunMode.SCENARIO:
            return await self._finish_scenario(run, ledger, outcome, log)
        return await self._finish_commit(run, ledger, outcome, snapshot, log)

    @staticmethod
    def _grants(outcome: AllocationOutcome) -> list[tuple[str, Decimal]]:
        return [
            (pool_id, amount)
            for item in outcome.decisions
            for pool_id, amount in item.granted.items()
            if amount > 0
        ]

    async def _finish_scenario(
        self,
        run: AllocationRun,
        ledger: PoolLedger,
        outcome: AllocationOutcome,
        log: structlog.stdlib.BoundLogger,
    ) -> AllocationRun:
        private = ledger.copy()
        holds: list[Reservation] = []
        try:
            for pool_id, amount in self._grants(outcome):
                holds.append(private.reserve(pool_id, amount))
        except Exception as exc:
            return await self._fail(run, exc, log)
        finally:
            private.release_all(holds)

        finished = run.model_copy(deep=True)
        finished.transition(RunStatus.SUCCEEDED)
        try:
            async with asyncio.timeout(self.settings.persist_timeout_seconds):
                await self.runs.save(finished)
                await self.session.commit()
        except asyncio.CancelledError:
            await self.session.rollback()
            raise
        except Exception as exc:
            await self.session.rollback()
            return await self._fail(run, exc, log)

        log.info("scenario_completed", summary=finished.summary.model_dump(mode="json"))
        return finished

    async def _finish_commit(
        self,
        run: AllocationRun,
        ledger: PoolLedger,
        outcome: AllocationOutcome,
        snapshot: Mapping[str, PoolSnapshot],
        log: structlog.stdlib.BoundLogger,
    ) -> AllocationRun:
        finished = run.model_copy(deep=True)
        for result in finished.results:
            result.committed = True
        finished.transition(RunStatus.SUCCEEDED)

        touched = sorted(pool_id for pool_id, amount in outcome.granted_by_pool.items() if amount > 0)
        committed_after = {
            pool_id: snapshot[pool_id].committed + outcome.granted_by_pool[pool_id]
            for pool_id in touched
        }
        before = [snapshot[pool_id] for pool_id in touched]
        after = [
            PoolSnapshot(pool_id, snapshot[pool_id].capacity, committed_after[pool_id], Decimal("0"))
            for pool_id in touched
        ]
        statuses = {
            item.request_id: RequestStatus(item.decision.value) for item in outcome.decisions
        }

        holds: list[Reservation] = []
        try:
            async with asyncio.timeout(self.settings.persist_timeout_seconds):
                for pool_id, amount in self._grants(outcome):
                    holds.append(ledger.reserve(pool_id, amount))
                await self.requests.update_statuses(statuses)
                await self.cycles.set_committed(committed_after)
                await self.runs.save(finished)
                await self.audit.record_change(
                    cycle_id=run.cycle_id,
                    action=AuditAction.RUN_COMMITTED,
                    actor=run.actor,
                    before=before,
                    after=after,
                    run_id=run.id,
                    details={
                        "summary": finished.summary.model_dump(mode="json") if finished.summary else {},
                        "snapshot_digest": run.snapshot_digest,
                    },
                )
                await self.session.commit()
        except asyncio.CancelledError:
            ledger.release_all(holds)
            await self.session.rollback()
            log.warning("run_cancelled")
            raise
        except Exception as exc:
            ledger.release_all(holds)
            await self.session.rollback()
            return await self._fail(run, exc, log)

        for hold in holds:
            ledger.commit(hold)

        log.info(
            "run_committed",
            allocated=finished.summary.allocated if finished.summary else 0,
            partial=finished.summary.partial if finished.summary else 0,
            denied=finished.summary.denied if finished.summary else 0,
        )
        return finished

    async def _fail(
        self,
        run: AllocationRun,
        exc: BaseException,
        log: structlog.stdlib.BoundLogger,
    ) -> AllocationRun:
        run.failure_reason = f"{type(exc).__name__}: {exc}"
        for result in run.results:
            result.committed = False
        run.transition(RunStatus.FAILED)
        log.error("run_failed", reason=run.failure_reason)

        try:
            async with asyncio.timeout(self.settings.persist_timeout_seconds):
                await self.runs.save(run)
                await self.session.commit()
        except Exception as persist_exc:
            await self.session.rollback()
            raise PersistenceError(
                "Failed to record failed run",
                details={"run_id": run.id, "cycle_id": run.cycle_id},
            ) from persist_exc
        return run

    async def get(self, run_id: str) -> AllocationRun:
        return await self.runs.require(run_id)
