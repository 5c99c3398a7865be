from __future__ import annotations

from dataclasses import dataclass, field

from searchgate.app.health.service import HealthMonitor
from searchgate.app.observability.contracts import RoundTrace
from searchgate.app.research.engine import BranchEngine
from searchgate.core.config import load_app_config


def _build_monitor() -> HealthMonitor:
    return HealthMonitor(load_app_config().failover_threshold)


@dataclass
class RuntimeStore:
    engines_by_branch: dict[str, BranchEngine] = field(default_factory=dict)
    targets_by_branch: dict[str, str] = field(default_factory=dict)
    monitor: HealthMonitor = field(default_factory=_build_monitor)
    round_trace_log: list[RoundTrace] = field(default_factory=list)


def get_branch_engine(branch_id: str) -> BranchEngine | None:
    return runtime_store.engines_by_branch.get(branch_id)


def register_branch_engine(engine: BranchEngine) -> None:
    runtime_store.engines_by_branch[engine.branch_id] = engine


def drop_branch_engine(branch_id: str) -> bool:
    runtime_store.targets_by_branch.pop(branch_id, None)
    return runtime_store.engines_by_branch.pop(branch_id, None) is not None


def reset_runtime_store() -> None:
    runtime_store.engines_by_branch.clear()
    runtime_store.targets_by_branch.clear()
    runtime_store.round_trace_log.clear()
    runtime_store.monitor = _build_monitor()


runtime_store = RuntimeStore()
