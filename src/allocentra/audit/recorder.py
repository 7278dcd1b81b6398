"""
Audit recorder.

Appends audit entries for committed runs and pool capacity mutations.
Unlike a fail-open logger, an append failure is raised as PersistenceError:
a mutation that cannot be audited must not be applied.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Iterable
from datetime import datetime
from typing import Any

import structlog

from allocentra.audit.models import AuditAction, AuditEntry, digest
from allocentra.audit.repository import AuditRepository
from allocentra.core.errors import PersistenceError
from allocentra.domain.models import utcnow
from allocentra.engine.ledger import PoolSnapshot

logger = structlog.get_logger()


class AuditQuery:
    """Lazy, restartable sequence of audit entries ordered by (timestamp, id).

    Nothing is read until iteration starts; every new iteration starts again
    from the first page.
    """

    def __init__(
        self,
        repository: AuditRepository,
        cycle_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        page_size: int = 500,
    ) -> None:
        self.repository = repository
        self.cycle_id = cycle_id
        self.start = start
        self.end = end
        self.page_size = page_size

    def __aiter__(self) -> AsyncIterator[AuditEntry]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[AuditEntry]:
        after: tuple[datetime, str] | None = None
        while True:
            page = await self.repository.page(
                self.cycle_id,
                start=self.start,
                end=self.end,
                after=after,
                limit=self.page_size,
            )
            for entry in page:
                yield entry
            if len(page) < self.page_size:
                return
            last = page[-1]
            after = (last.timestamp, last.id)

    async def to_list(self) -> list[AuditEntry]:
        return [entry async for entry in self]


class AuditRecorder:
    """Records audit entries with fail-closed semantics."""

    def __init__(self, repository: AuditRepository, page_size: int = 500) -> None:
        self.repository = repository
        self.page_size = page_size

    async def record(self, entry: AuditEntry) -> AuditEntry:
        try:
            await self.repository.record(entry)
        except Exception as exc:
            logger.error(
                "audit_record_failed",
                cycle_id=entry.cycle_id,
                action=entry.action.value,
                run_id=entry.run_id,
                exc_info=True,
            )
            raise PersistenceError(
                "Failed to append audit entry",
                details={"cycle_id": entry.cycle_id, "action": entry.action.value},
            ) from exc

        logger.info(
            "audit_recorded",
            entry_id=entry.id,
            cycle_id=entry.cycle_id,
            action=entry.action.value,
            run_id=entry.run_id,
        )
        return entry

    async def record_change(
        self,
        *,
        cycle_id: str,
        action: AuditAction,
        actor: str | None,
        before: Iterable[PoolSnapshot] | None,
        after: Iterable[PoolSnapshot] | None,
        run_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Build and append an entry whose digests cover the affected pools."""
        entry = AuditEntry(
            id=str(uuid.uuid4()),
            timestamp=utcnow(),
            actor=actor,
            cycle_id=cycle_id,
            action=action,
            run_id=run_id,
            before_digest=digest(before) if before is not None else None,
            after_digest=digest(after) if after is not None else None,
            details=details or {},
        )
        return await self.record(entry)

    def query(
        self,
        cycle_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> AuditQuery:
        return AuditQuery(self.repository, cycle_id, start, end, self.page_size)
