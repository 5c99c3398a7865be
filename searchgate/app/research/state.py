from __future__ import annotations

import operator
from typing import Annotated, Any, TypedDict

from searchgate.app.saturation.contracts import ResultRecord, SaturationReport


class BranchState(TypedDict, total=False):
    branch_id: str
    target: str
    query: str
    requested_sources: list[str]
    max_sources: int
    max_rounds: int
    round_index: int
    round_started_at: float
    selected_backends: list[str]
    round_results: list[ResultRecord]
    backend_failures: list[str]
    report: SaturationReport | None
    stop_reason: str | None
    strategy_adjustments: int
    rounds: Annotated[list[dict[str, Any]], operator.add]
    telemetry_events: Annotated[list[dict[str, Any]], operator.add]
    errors: Annotated[list[str], operator.add]


def create_initial_state(
    target: str,
    branch_id: str = "unknown",
    max_sources: int = 3,
    max_rounds: int = 6,
    requested_sources: list[str] | None = None,
) -> BranchState:
    return {
        "branch_id": branch_id,
        "target": target,
        "query": target,
        "requested_sources": list(requested_sources or []),
        "max_sources": max_sources,
        "max_rounds": max_rounds,
        "round_index": 0,
        "selected_backends": [],
        "round_results": [],
        "backend_failures": [],
        "report": None,
        "stop_reason": None,
        "strategy_adjustments": 0,
        "rounds": [],
        "telemetry_events": [],
        "errors": [],
    }
