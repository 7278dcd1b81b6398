"""
Audit domain models.

Immutable records of committed runs and pool capacity mutations.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from allocentra.engine.ledger import PoolSnapshot


class AuditAction(StrEnum):
    RUN_COMMITTED = "run.committed"
    POOL_CREATED = "pool.created"
    POOL_CAPACITY_CHANGED = "pool.capacity_changed"
    CYCLE_STATUS_CHANGED = "cycle.status_changed"


@dataclass(frozen=True)
class AuditEntry:
    """Record of one state-changing decision."""

    id: str
    timestamp: datetime
    actor: str | None
    cycle_id: str
    action: AuditAction
    run_id: str | None = None
    before_digest: str | None = None
    after_digest: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor,
            "cycle_id": self.cycle_id,
            "action": self.action.value,
            "run_id": self.run_id,
            "before_digest": self.before_digest,
            "after_digest": self.after_digest,
            "details": self.details,
        }


def digest(snapshots: Iterable[PoolSnapshot]) -> str:
    """SHA-256 over the canonical JSON of the given pools, ordered by pool id."""
    payload = [snap.to_dict() for snap in sorted(snapshots, key=lambda s: s.pool_id)]
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
