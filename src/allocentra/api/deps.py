from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from allocentra.audit import AuditRecorder, AuditRepository
from allocentra.config import Settings, get_settings
from allocentra.db.session import get_session
from allocentra.engine.controller import AllocationRunController
from allocentra.engine.cycles import CycleService
from allocentra.engine.ledger import LedgerRegistry
from allocentra.engine.locks import CycleLockManager


async def session_dependency() -> AsyncIterator[AsyncSession]:
    async for session in get_session():
        yield session


_ledgers: LedgerRegistry | None = None
_locks: CycleLockManager | None = None


def get_ledger_registry() -> LedgerRegistry:
    global _ledgers

    if _ledgers is None:
        _ledgers = LedgerRegistry()
    return _ledgers


def get_lock_manager() -> CycleLockManager:
    global _locks

    if _locks is None:
        _locks = CycleLockManager()
    return _locks


def get_principal(request: Request) -> str:
    return request.headers.get("X-Principal-Id", "anonymous")


def get_audit_recorder(
    session: AsyncSession = Depends(session_dependency),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> AuditRecorder:
    return AuditRecorder(AuditRepository(session), settings.audit_page_size)


def get_controller(
    session: AsyncSession = Depends(session_dependency),  # noqa: B008
    ledgers: LedgerRegistry = Depends(get_ledger_registry),  # noqa: B008
    locks: CycleLockManager = Depends(get_lock_manager),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> AllocationRunController:
    return AllocationRunController(session, ledgers, locks, settings)


def get_cycle_service(
    session: AsyncSession = Depends(session_dependency),  # noqa: B008
    ledgers: LedgerRegistry = Depends(get_ledger_registry),  # noqa: B008
    locks: CycleLockManager = Depends(get_lock_manager),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> CycleService:
    return CycleService(session, ledgers, locks, settings)
