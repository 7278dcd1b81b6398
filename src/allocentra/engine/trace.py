"""Explanation trace accumulation."""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from allocentra.domain.models import LimitingFactor, TraceRule, TraceStep


class TraceBuilder:
    """Append-only list of per-pool steps for one request, in evaluation order."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        self._steps: list[TraceStep] = []
        self._sealed = False

    def add(
        self,
        pool_id: str,
        *,
        available_before: Decimal,
        requested: Decimal,
        granted: Decimal,
        limiting_factor: LimitingFactor,
        rule: TraceRule,
    ) -> TraceStep:
        if self._sealed:
            raise RuntimeError(f"Trace for request {self.request_id} is already built")
        step = TraceStep(
            pool_id=pool_id,
            available_before=available_before,
            requested=requested,
            granted=granted,
            limiting_factor=limiting_factor,
            rule=rule,
        )
        self._steps.append(step)
        return step

    def build(self) -> tuple[TraceStep, ...]:
        self._sealed = True
        return tuple(self._steps)

    def __len__(self) -> int:
        return len(self._steps)


def limiting_pools(trace: Sequence[TraceStep]) -> list[str]:
    return [step.pool_id for step in trace if step.limiting_factor != LimitingFactor.NONE]


def summarize(trace: Sequence[TraceStep]) -> str:
    """One-line reason for a decision, e.g. ``limited by pool-a (poolCapacity)``."""
    if not trace:
        return "no pools evaluated"
    rules = {step.rule for step in trace}
    limited = [step for step in trace if step.limiting_factor != LimitingFactor.NONE]
    if not limited:
        return "fully granted"
    reasons = ", ".join(f"{s.pool_id} ({s.limiting_factor.value})" for s in limited)
    if TraceRule.ALL_OR_NOTHING in rules:
        return f"denied, partial allocation disallowed; short on {reasons}"
    if TraceRule.NOTHING_AVAILABLE in rules:
        return f"denied, nothing available on {reasons}"
    return f"limited by {reasons}"
