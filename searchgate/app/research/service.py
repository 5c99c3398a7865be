from __future__ import annotations

import logging
import time
from typing import Callable, Mapping, Sequence

from searchgate.app.dispatch.contracts import BackendDescriptor
from searchgate.app.health.service import HealthMonitor, HealthProbe
from searchgate.app.research import (
    BackendClient,
    build_branch_graph,
    build_branch_invoke_config,
    create_branch_engine,
    create_initial_state,
    emit_branch_telemetry,
)
from searchgate.app.saturation.contracts import SaturationReport
from searchgate.core.config import (
    AppConfig,
    build_load_balancing_config,
    build_saturation_criteria,
)
from searchgate.models import (
    BranchOutcome,
    RoundSummary,
    report_model,
    search_stats_model,
)

LOGGER = logging.getLogger(__name__)

HEALTH_PROBE_QUERY = "health check"


class ResearchBranchService:
    """Runs research branches over a shared roster of backend clients.

    Every branch gets its own dispatcher and saturation gate, so branches may
    run concurrently. Health tracking is shared across branches, and a health
    check is run before a branch whenever the configured interval has elapsed.
    """

    def __init__(
        self,
        config: AppConfig,
        backends: Sequence[BackendDescriptor],
        clients: Mapping[str, BackendClient],
        monitor: HealthMonitor | None = None,
        probe: HealthProbe | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._clients = dict(clients)
        self._load_balancing = build_load_balancing_config(config)
        self._criteria = build_saturation_criteria(config)
        self._monitor = monitor or HealthMonitor(config.failover_threshold)
        self._probe = probe or self._probe_client
        self._clock = clock
        self._last_health_check = clock()
        for backend in backends:
            if backend.name not in self._clients:
                LOGGER.warning("Skipping backend without client: %s", backend.name)
                continue
            self._monitor.register_backend(backend)

    @property
    def monitor(self) -> HealthMonitor:
        return self._monitor

    def start_monitoring(self) -> None:
        self._monitor.start_monitoring(
            self._probe, float(self._config.health_check_interval_seconds)
        )

    async def stop_monitoring(self) -> None:
        await self._monitor.stop_monitoring()

    async def refresh_health_if_due(self) -> bool:
        now = self._clock()
        if now - self._last_health_check < self._config.health_check_interval_seconds:
            return False
        self._last_health_check = now
        await self._monitor.perform_health_check(self._probe)
        return True

    async def run_branch(
        self,
        target: str,
        requested_sources: list[str] | None = None,
    ) -> BranchOutcome:
        if not self._monitor.is_monitoring:
            await self.refresh_health_if_due()

        engine = create_branch_engine(self._load_balancing, self._criteria)
        graph = build_branch_graph(
            engine,
            self._monitor,
            self._clients,
            retry_attempts=self._config.branch_retry_attempts,
            enable_fallback=self._config.branch_enable_fallback,
            results_per_backend=self._config.branch_results_per_backend,
        )
        state = create_initial_state(
            target,
            branch_id=engine.branch_id,
            max_sources=self._config.default_max_sources,
            max_rounds=self._config.branch_max_rounds,
            requested_sources=requested_sources,
        )
        result_state = await graph.ainvoke(
            state,
            config=build_branch_invoke_config(
                engine.branch_id, self._config.branch_max_rounds
            ),
        )
        emit_branch_telemetry(result_state)

        report = result_state.get("report")
        return BranchOutcome(
            branch_id=engine.branch_id,
            target=target,
            rounds=int(result_state.get("round_index", 0)),
            stop_reason=result_state.get("stop_reason"),
            strategy_adjustments=int(result_state.get("strategy_adjustments", 0)),
            final_report=(
                report_model(report) if isinstance(report, SaturationReport) else None
            ),
            stats=search_stats_model(engine.gate.get_search_stats()),
            round_summaries=_round_summaries(result_state.get("rounds")),
        )

    async def _probe_client(self, backend: BackendDescriptor) -> None:
        await self._clients[backend.name].search(HEALTH_PROBE_QUERY, limit=1)


def _round_summaries(value: object) -> list[RoundSummary]:
    if not isinstance(value, list):
        return []
    return [RoundSummary.model_validate(row) for row in value if isinstance(row, dict)]
