from __future__ import annotations

import time
from uuid import uuid4

from searchgate.app.observability.contracts import BackendTrace, RoundTrace


def create_round_trace(
    round_index: int,
    strategy: str,
    selected_backends: list[str],
    recommendation: str,
    saturation_level: float,
    started_at: float,
) -> RoundTrace:
    return RoundTrace(
        trace_id=f"round-{uuid4().hex[:10]}",
        round_index=round_index,
        strategy=strategy,
        selected_backends=tuple(selected_backends),
        recommendation=recommendation,
        saturation_level=round(saturation_level, 6),
        latency_ms=_elapsed_ms(started_at),
    )


def backend_trace(
    backend_name: str,
    started_at: float,
    *,
    status: str = "ok",
    result_count: int = 0,
    error_message: str | None = None,
    attempt: int = 1,
) -> BackendTrace:
    return BackendTrace(
        backend_name=backend_name,
        latency_ms=_elapsed_ms(started_at),
        status=status,
        result_count=result_count,
        error_message=error_message,
        attempt=attempt,
    )


def _elapsed_ms(started_at: float) -> int:
    elapsed_ms = int((time.perf_counter() - started_at) * 1000)
    return max(elapsed_ms, 0)
