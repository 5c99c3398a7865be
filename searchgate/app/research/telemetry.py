from __future__ import annotations

import json
import logging
from typing import Any

DEFAULT_TELEMETRY_TAG = "research-branch"
NODES_PER_ROUND = 3


def build_branch_invoke_config(branch_id: str, max_rounds: int) -> dict[str, Any]:
    return {
        "tags": [DEFAULT_TELEMETRY_TAG],
        "metadata": {
            "branch_id": branch_id,
            "component": "research_branch",
        },
        "recursion_limit": max(max_rounds, 1) * NODES_PER_ROUND + 5,
    }


def emit_branch_telemetry(
    state: dict[str, Any],
    logger: logging.Logger | None = None,
) -> None:
    active_logger = logger or logging.getLogger(__name__)
    branch_id = _branch_id(state)
    target = state.get("target") if isinstance(state.get("target"), str) else None
    round_count = _round_count(state.get("round_index"))

    for event in _events(state.get("telemetry_events")):
        payload = {
            "branch_id": branch_id,
            "target": target,
            "round_count": round_count,
            **event,
        }
        active_logger.info("branch_event %s", json.dumps(payload, sort_keys=True))


def _branch_id(state: dict[str, Any]) -> str:
    branch_id = state.get("branch_id")
    if isinstance(branch_id, str) and branch_id.strip():
        return branch_id
    return "unknown"


def _round_count(value: Any) -> int:
    if isinstance(value, int) and value > 0:
        return value
    return 0


def _events(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [event for event in value if isinstance(event, dict)]
