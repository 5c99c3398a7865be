from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Mapping, Protocol, Sequence

from searchgate.app.dispatch.contracts import BackendDescriptor, DispatchRequest
from searchgate.app.dispatch.service import Dispatcher
from searchgate.app.health.service import HealthMonitor
from searchgate.app.observability.contracts import BackendTrace
from searchgate.app.observability.service import backend_trace, create_round_trace
from searchgate.app.saturation.contracts import Recommendation, ResultRecord
from searchgate.app.saturation.service import SaturationGate

from .state import BranchState

LOGGER = logging.getLogger(__name__)


class BackendClient(Protocol):
    async def search(self, query: str, limit: int = 10) -> list[ResultRecord]: ...


def make_dispatch_node(dispatcher: Dispatcher, monitor: HealthMonitor):
    def _node(state: BranchState) -> BranchState:
        roster = monitor.healthy_backends()
        request = DispatchRequest(
            requested_sources=tuple(state.get("requested_sources", [])),
            max_sources=state.get("max_sources"),
        )
        selected = dispatcher.select_backends(roster, request)
        names = [backend.name for backend in selected]
        update: BranchState = {
            "selected_backends": names,
            "round_started_at": perf_counter(),
            "telemetry_events": [
                {
                    "event": "backends_selected",
                    "round": state.get("round_index", 0) + 1,
                    "strategy": dispatcher.strategy.value,
                    "backends": names,
                    "roster_size": len(roster),
                }
            ],
        }
        if not selected:
            update["stop_reason"] = "no_backends"
        return update

    return _node


def make_query_node(
    dispatcher: Dispatcher,
    monitor: HealthMonitor,
    clients: Mapping[str, BackendClient],
    *,
    retry_attempts: int,
    enable_fallback: bool,
    results_per_backend: int,
):
    async def _run_backend(
        backend: BackendDescriptor,
        query: str,
    ) -> tuple[list[ResultRecord] | None, list[BackendTrace]]:
        client = clients.get(backend.name)
        if client is None:
            return None, [
                backend_trace(
                    backend.name,
                    perf_counter(),
                    status="missing_client",
                    error_message="no client registered",
                )
            ]

        traces: list[BackendTrace] = []
        for attempt in range(1, max(retry_attempts, 1) + 1):
            started = perf_counter()
            dispatcher.record_connection(backend.name)
            try:
                records = await client.search(query, limit=results_per_backend)
            except Exception as exc:  # noqa: BLE001
                monitor.record_error(backend.name, exc)
                traces.append(
                    backend_trace(
                        backend.name,
                        started,
                        status="error",
                        error_message=exc.__class__.__name__,
                        attempt=attempt,
                    )
                )
                continue
            finally:
                dispatcher.release_connection(backend.name)

            trace = backend_trace(
                backend.name,
                started,
                result_count=len(records),
                attempt=attempt,
            )
            monitor.record_success(backend.name, float(trace.latency_ms))
            traces.append(trace)
            return list(records), traces
        return None, traces

    async def _query_with_fallback(
        backend: BackendDescriptor,
        query: str,
        fallback_pool: Sequence[BackendDescriptor],
        claimed: set[str],
    ) -> tuple[list[ResultRecord], list[BackendTrace], bool]:
        records, traces = await _run_backend(backend, query)
        if records is not None:
            return records, traces, False
        if enable_fallback:
            # Claim before awaiting so concurrent failures pick distinct spares.
            fallback = dispatcher.get_fallback_backend(
                backend,
                candidates=[
                    spare for spare in fallback_pool if spare.name not in claimed
                ],
            )
            if fallback is not None:
                claimed.add(fallback.name)
                LOGGER.warning(
                    "Falling back from %s to %s", backend.name, fallback.name
                )
                fallback_records, fallback_traces = await _run_backend(fallback, query)
                traces.extend(fallback_traces)
                if fallback_records is not None:
                    return fallback_records, traces, True
        return [], traces, True

    async def _node(state: BranchState) -> BranchState:
        names = state.get("selected_backends", [])
        query = state.get("query") or state.get("target", "")
        registered = {
            backend.name: backend for backend in monitor.registered_backends()
        }
        selected = [
            registered.get(name) or BackendDescriptor(name=name) for name in names
        ]
        in_round = set(names)
        claimed: set[str] = set()
        fallback_pool = [
            backend
            for backend in monitor.healthy_backends()
            if backend.name not in in_round
        ]
        outcomes = await asyncio.gather(
            *(
                _query_with_fallback(backend, query, fallback_pool, claimed)
                for backend in selected
            )
        )

        batches: list[list[ResultRecord]] = []
        failures: list[str] = []
        traces: list[BackendTrace] = []
        for backend, (records, backend_traces, failed) in zip(selected, outcomes):
            batches.append(records)
            traces.extend(backend_traces)
            if failed:
                failures.append(backend.name)

        merged = aggregate_round_results(batches)
        return {
            "round_results": merged,
            "backend_failures": failures,
            "errors": [f"backend_failed:{name}" for name in failures],
            "telemetry_events": [
                {
                    "event": "round_queried",
                    "round": state.get("round_index", 0) + 1,
                    "result_count": len(merged),
                    "backend_failures": failures,
                    "calls": [
                        {
                            "backend": trace.backend_name,
                            "status": trace.status,
                            "attempt": trace.attempt,
                            "latency_ms": trace.latency_ms,
                        }
                        for trace in traces
                    ],
                }
            ],
        }

    return _node


def make_assess_node(
    gate: SaturationGate,
    dispatcher: Dispatcher,
    monitor: HealthMonitor,
):
    def _node(state: BranchState) -> BranchState:
        batch = state.get("round_results", [])
        report = gate.detect_saturation(batch, state.get("target", ""))
        round_index = state.get("round_index", 0) + 1
        selected = state.get("selected_backends", [])
        trace = create_round_trace(
            round_index=round_index,
            strategy=dispatcher.strategy.value,
            selected_backends=selected,
            recommendation=report.recommendation.value,
            saturation_level=report.saturation_level,
            started_at=state.get("round_started_at", perf_counter()),
        )
        update: BranchState = {
            "report": report,
            "round_index": round_index,
            "rounds": [
                {
                    "round": round_index,
                    "selected_backends": list(selected),
                    "result_count": len(batch),
                    "backend_failures": list(state.get("backend_failures", [])),
                    "recommendation": report.recommendation.value,
                    "saturation_level": trace.saturation_level,
                    "latency_ms": trace.latency_ms,
                }
            ],
            "telemetry_events": [
                {
                    "event": "saturation_assessed",
                    "round": round_index,
                    "trace_id": trace.trace_id,
                    "recommendation": report.recommendation.value,
                    "is_saturated": report.is_saturated,
                    "saturation_level": trace.saturation_level,
                }
            ],
        }

        if report.recommendation == Recommendation.STOP:
            update["stop_reason"] = "saturated"
        elif round_index >= state.get("max_rounds", 1):
            update["stop_reason"] = "max_rounds"
        elif report.recommendation == Recommendation.ADJUST_STRATEGY:
            current = state.get("max_sources", 1)
            roster_size = len(monitor.healthy_backends())
            update["max_sources"] = max(min(current + 1, roster_size), current)
            update["strategy_adjustments"] = state.get("strategy_adjustments", 0) + 1
        return update

    return _node


def aggregate_round_results(
    batches: Sequence[Sequence[ResultRecord]],
) -> list[ResultRecord]:
    seen: set[str] = set()
    unique: list[ResultRecord] = []
    for batch in batches:
        for record in batch:
            if record.identifier in seen:
                continue
            seen.add(record.identifier)
            unique.append(record)
    return sorted(unique, key=lambda record: record.relevance_score, reverse=True)
