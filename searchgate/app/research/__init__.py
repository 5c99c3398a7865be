from .engine import BranchEngine, create_branch_engine
from .graph import build_branch_graph
from .nodes import BackendClient, aggregate_round_results
from .state import BranchState, create_initial_state
from .telemetry import build_branch_invoke_config, emit_branch_telemetry

__all__ = [
    "BackendClient",
    "BranchEngine",
    "BranchState",
    "aggregate_round_results",
    "build_branch_graph",
    "build_branch_invoke_config",
    "create_branch_engine",
    "create_initial_state",
    "emit_branch_telemetry",
]
