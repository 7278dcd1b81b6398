"""Per-cycle single-writer locks."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from allocentra.core.errors import CycleLocked

logger = structlog.get_logger()


class CycleLockManager:
    """One asyncio lock per cycle, serializing COMMIT runs and capacity changes."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, cycle_id: str) -> asyncio.Lock:
        lock = self._locks.get(cycle_id)
        if lock is None:
            lock = self._locks[cycle_id] = asyncio.Lock()
        return lock

    def locked(self, cycle_id: str) -> bool:
        lock = self._locks.get(cycle_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, cycle_id: str, timeout: float = 0.0) -> AsyncIterator[None]:
        """Hold the cycle's write lock, raising CycleLocked if it is not free in time.

        A timeout of zero means try-once: contention fails immediately.
        """
        lock = self._lock(cycle_id)
        if timeout <= 0:
            if lock.locked():
                raise CycleLocked(
                    f"Cycle {cycle_id} is locked by another commit",
                    details={"cycle_id": cycle_id},
                )
            await lock.acquire()
        else:
            try:
                async with asyncio.timeout(timeout):
                    await lock.acquire()
            except TimeoutError:
                raise CycleLocked(
                    f"Timed out waiting {timeout}s for cycle {cycle_id} lock",
                    details={"cycle_id": cycle_id, "timeout": timeout},
                ) from None

        logger.debug("cycle_lock_acquired", cycle_id=cycle_id)
        try:
            yield
        finally:
            lock.release()
            logger.debug("cycle_lock_released", cycle_id=cycle_id)
