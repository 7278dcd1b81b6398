"""
Audit repository.

Handles database operations for audit entries. The table is insert-only
(no update/delete).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from allocentra.audit.models import AuditAction, AuditEntry
from allocentra.db.models import AuditEntryModel


class AuditRepository:
    """Repository for audit database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(self, entry: AuditEntry) -> None:
        """Insert an audit entry."""
        model = AuditEntryModel(
            id=entry.id,
            timestamp=entry.timestamp,
            actor=entry.actor,
            cycle_id=entry.cycle_id,
            run_id=entry.run_id,
            action=entry.action.value,
            before_digest=entry.before_digest,
            after_digest=entry.after_digest,
            details=entry.details,
        )
        self.session.add(model)
        await self.session.flush()

    async def page(
        self,
        cycle_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        after: tuple[datetime, str] | None = None,
        limit: int = 500,
    ) -> list[AuditEntry]:
        """Fetch one page ordered by (timestamp, id), strictly after the ``after`` key."""
        stmt = select(AuditEntryModel).where(AuditEntryModel.cycle_id == cycle_id)
        if start is not None:
            stmt = stmt.where(AuditEntryModel.timestamp >= start)
        if end is not None:
            stmt = stmt.where(AuditEntryModel.timestamp < end)
        if after is not None:
            ts, entry_id = after
            stmt = stmt.where(
                or_(
                    AuditEntryModel.timestamp > ts,
                    and_(AuditEntryModel.timestamp == ts, AuditEntryModel.id > entry_id),
                )
            )
        stmt = stmt.order_by(AuditEntryModel.timestamp, AuditEntryModel.id).limit(limit)
        result = await self.session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    @staticmethod
    def _to_domain(model: AuditEntryModel) -> AuditEntry:
        return AuditEntry(
            id=model.id,
            timestamp=model.timestamp,
            actor=model.actor,
            cycle_id=model.cycle_id,
            action=AuditAction(model.action),
            run_id=model.run_id,
            before_digest=model.before_digest,
            after_digest=model.after_digest,
            details=model.details or {},
        )
