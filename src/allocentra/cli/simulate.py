"""
CLI command for offline scenario runs.

Reads pools, requests and a policy from a YAML file, runs the allocation
algorithm in SCENARIO mode against a private ledger and renders the results.
Nothing is persisted.

Commands:
    allocentra simulate <scenario.yaml>          - Render results as tables
    allocentra simulate <scenario.yaml> --format json   - Output canonical JSON
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import pydantic
import yaml

from allocentra.cli.ux import (
    console,
    decision_label,
    header,
    info,
    print_key_value,
    print_table,
    success,
)
from allocentra.core.errors import ConfigurationError, main_with_error_handling
from allocentra.domain.models import AllocationPolicy, Pool, Request, RunMode
from allocentra.engine import algorithm, queue
from allocentra.engine.algorithm import AllocationOutcome
from allocentra.engine.controller import summarize
from allocentra.engine.ledger import PoolLedger, PoolSnapshot, Reservation
from allocentra.engine.trace import summarize as summarize_trace

# Requests without submitted_at keep their file order.
_EPOCH = datetime(1970, 1, 1)


@dataclass
class Scenario:
    cycle_id: str
    pools: list[Pool]
    requests: list[Request]
    policy: AllocationPolicy


def _decimal(value: Any, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(f"Invalid number for {field}: {value!r}") from None


def load_scenario(path: str | Path) -> Scenario:
    """Parse a scenario file.

    Raises:
        ConfigurationError: file missing, not YAML, or describing invalid data
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Scenario file not found: {path}", details={"path": str(path)})
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Scenario {path} must be a mapping")

    cycle_id = str((raw.get("cycle") or {}).get("id", path.stem))
    try:
        pools = [
            Pool(
                id=str(item["id"]),
                cycle_id=cycle_id,
                kind=item.get("kind", "BUDGET"),
                name=item.get("name", str(item["id"])),
                category=item.get("category", "MONEY"),
                unit=item.get("unit", "USD"),
                capacity=_decimal(item["capacity"], f"pools.{item['id']}.capacity"),
                committed=_decimal(item.get("committed", 0), f"pools.{item['id']}.committed"),
            )
            for item in raw.get("pools") or []
        ]
        requests = [
            Request(
                id=str(item["id"]),
                cycle_id=cycle_id,
                requester=item.get("requester", "scenario"),
                title=item.get("title", str(item["id"])),
                quantities={
                    str(pool_id): _decimal(qty, f"requests.{item['id']}.{pool_id}")
                    for pool_id, qty in (item.get("quantities") or {}).items()
                },
                priority=int(item.get("priority", 3)),
                submitted_at=item.get("submitted_at") or _EPOCH + timedelta(seconds=index),
            )
            for index, item in enumerate(raw.get("requests") or [])
        ]
        policy = AllocationPolicy.model_validate(raw.get("policy") or {})
    except KeyError as exc:
        raise ConfigurationError(f"Missing field {exc} in {path}") from exc
    except pydantic.ValidationError as exc:
        raise ConfigurationError(f"Invalid scenario {path}: {exc}") from exc

    if not pools:
        raise ConfigurationError(f"Scenario {path} defines no pools")
    return Scenario(cycle_id=cycle_id, pools=pools, requests=requests, policy=policy)


def run_scenario(scenario: Scenario) -> AllocationOutcome:
    """Evaluate a scenario and exercise its grants on a throwaway ledger."""
    ledger = PoolLedger(scenario.cycle_id, scenario.pools)
    snapshot = ledger.snapshot()
    ordered = queue.order(queue.pending(scenario.requests), snapshot.keys())
    outcome = algorithm.allocate(snapshot, ordered, scenario.policy, RunMode.SCENARIO)

    holds: list[Reservation] = []
    try:
        for item in outcome.decisions:
            for pool_id, amount in item.granted.items():
                if amount > 0:
                    holds.append(ledger.reserve(pool_id, amount))
    finally:
        ledger.release_all(holds)
    return outcome


def _render(scenario: Scenario, outcome: AllocationOutcome) -> None:
    header(f"Scenario: {scenario.cycle_id}")
    print_table(
        "Decisions",
        ["Rank", "Request", "Decision", "Granted", "Reason"],
        [
            [
                str(item.rank),
                item.request_id,
                decision_label(item.decision),
                ", ".join(f"{pool}={qty}" for pool, qty in item.granted.items()),
                summarize_trace(item.trace),
            ]
            for item in outcome.decisions
        ],
    )

    snapshot = {
        pool.id: PoolSnapshot(pool.id, pool.capacity, pool.committed, pool.reserved)
        for pool in scenario.pools
    }
    summary = summarize(outcome, snapshot)
    print_table(
        "Pools",
        ["Pool", "Capacity", "Granted", "Residual", "Utilization"],
        [
            [
                pool_id,
                str(snapshot[pool_id].capacity),
                str(outcome.granted_by_pool[pool_id]),
                str(outcome.residual[pool_id]),
                f"{summary.utilization_by_pool[pool_id]:.1%}",
            ]
            for pool_id in sorted(snapshot)
        ],
    )
    print_key_value(
        {
            "requests": str(summary.total_requests),
            "allocated": str(summary.allocated),
            "partial": str(summary.partial),
            "denied": str(summary.denied),
        },
        title="Summary",
    )


@main_with_error_handling()
def simulate_command(
    scenario_file: str,
    partial: bool | None = None,
    per_pool_cap: str | None = None,
    output_format: str = "table",
) -> int:
    """
    Run a scenario file through the allocation algorithm.

    Args:
        scenario_file: Path to the scenario YAML file
        partial: Override the file's partial_allocation_allowed
        per_pool_cap: Override the file's per_pool_cap fraction
        output_format: "table" or "json"

    Returns:
        Exit code (0 on success)
    """
    scenario = load_scenario(scenario_file)

    overrides: dict[str, Any] = {}
    if partial is not None:
        overrides["partial_allocation_allowed"] = partial
    if per_pool_cap is not None:
        overrides["per_pool_cap"] = _decimal(per_pool_cap, "--per-pool-cap")
    if overrides:
        try:
            scenario.policy = AllocationPolicy.model_validate(
                scenario.policy.model_dump() | overrides
            )
        except pydantic.ValidationError as exc:
            raise ConfigurationError(f"Invalid policy override: {exc}") from exc

    outcome = run_scenario(scenario)

    if output_format == "json":
        console.print(outcome.canonical_json(), markup=False, highlight=False, soft_wrap=True)
        return 0

    _render(scenario, outcome)
    if outcome.decisions:
        success(f"Evaluated {len(outcome.decisions)} requests")
    else:
        info("No pending requests in scenario")
    return 0


def register_simulate_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("simulate", help="Run a scenario file offline")
    parser.add_argument("scenario_file", help="Path to scenario YAML file")
    partial = parser.add_mutually_exclusive_group()
    partial.add_argument(
        "--partial", dest="partial", action="store_true", default=None,
        help="Allow partial allocation",
    )
    partial.add_argument(
        "--no-partial", dest="partial", action="store_false",
        help="All-or-nothing allocation",
    )
    parser.add_argument("--per-pool-cap", help="Cap each grant at this fraction of pool capacity")
    parser.add_argument(
        "--format", dest="output_format", choices=["table", "json"], default="table",
        help="Output format",
    )


def handle_simulate_command(args: argparse.Namespace) -> int:
    return simulate_command(
        args.scenario_file,
        partial=args.partial,
        per_pool_cap=args.per_pool_cap,
        output_format=args.output_format,
    )
