from __future__ import annotations

from typing import Mapping

from langgraph.graph import END, START, StateGraph

from searchgate.app.health.service import HealthMonitor

from .engine import BranchEngine
from .nodes import (
    BackendClient,
    make_assess_node,
    make_dispatch_node,
    make_query_node,
)
from .state import BranchState


def build_branch_graph(
    engine: BranchEngine,
    monitor: HealthMonitor,
    clients: Mapping[str, BackendClient],
    retry_attempts: int = 1,
    enable_fallback: bool = True,
    results_per_backend: int = 10,
):
    graph_builder = StateGraph(BranchState)

    dispatch_node = make_dispatch_node(engine.dispatcher, monitor)
    query_node = make_query_node(
        engine.dispatcher,
        monitor,
        clients,
        retry_attempts=retry_attempts,
        enable_fallback=enable_fallback,
        results_per_backend=results_per_backend,
    )
    assess_node = make_assess_node(engine.gate, engine.dispatcher, monitor)

    graph_builder.add_node("dispatch", dispatch_node)
    graph_builder.add_node("query", query_node)
    graph_builder.add_node("assess", assess_node)

    graph_builder.add_edge(START, "dispatch")
    graph_builder.add_conditional_edges("dispatch", _route_after_dispatch)
    graph_builder.add_edge("query", "assess")
    graph_builder.add_conditional_edges("assess", _route_after_assess)

    return graph_builder.compile()


def _route_after_dispatch(state: BranchState) -> str:
    if state.get("stop_reason"):
        return END
    return "query"


def _route_after_assess(state: BranchState) -> str:
    if state.get("stop_reason"):
        return END
    return "dispatch"
