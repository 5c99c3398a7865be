from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BackendTrace:
    backend_name: str
    latency_ms: int
    status: str
    result_count: int = 0
    error_message: str | None = None
    attempt: int = 1


@dataclass(frozen=True)
class RoundTrace:
    trace_id: str
    round_index: int
    strategy: str
    selected_backends: tuple[str, ...]
    recommendation: str
    saturation_level: float
    latency_ms: int
