import pytest

from searchgate.app.dispatch.contracts import (
    BackendDescriptor,
    DispatchStrategy,
    LoadBalancingConfig,
)
from searchgate.app.health.service import HealthMonitor
from searchgate.app.research import (
    aggregate_round_results,
    build_branch_graph,
    build_branch_invoke_config,
    create_branch_engine,
    create_initial_state,
)
from searchgate.app.saturation.contracts import ResultRecord, SaturationCriteria

TARGET = "solar battery storage"


class _FakeClient:
    def __init__(
        self,
        name: str,
        relevance: float = 0.9,
        count: int = 2,
        fresh: bool = False,
        should_raise: bool = False,
    ) -> None:
        self._name = name
        self._relevance = relevance
        self._count = count
        self._fresh = fresh
        self._should_raise = should_raise
        self.calls = 0

    async def search(self, query: str, limit: int = 10) -> list[ResultRecord]:
        _ = limit
        self.calls += 1
        if self._should_raise:
            raise RuntimeError("backend failed")
        suffix = f"-{self.calls}" if self._fresh else ""
        return [
            ResultRecord(
                identifier=f"https://{self._name}.example/{index}{suffix}",
                source_name=self._name,
                raw_content=f"{query} report {self._name} {index}{suffix}",
                relevance_score=self._relevance,
            )
            for index in range(self._count)
        ]


def _monitor(*backends: BackendDescriptor) -> HealthMonitor:
    monitor = HealthMonitor(failover_threshold=3)
    for backend in backends:
        monitor.register_backend(backend)
    return monitor


def _engine(criteria: SaturationCriteria | None = None):
    return create_branch_engine(
        LoadBalancingConfig(strategy=DispatchStrategy.HEALTH_BASED),
        criteria or SaturationCriteria(min_results=3),
    )


def _events(result: dict, name: str) -> list[dict]:
    return [
        event
        for event in result.get("telemetry_events", [])
        if event.get("event") == name
    ]


@pytest.mark.asyncio
async def test_branch_stops_when_results_repeat() -> None:
    engine = _engine()
    monitor = _monitor(
        BackendDescriptor(name="news", reliability=0.9),
        BackendDescriptor(name="arxiv", reliability=0.8),
    )
    clients = {"news": _FakeClient("news"), "arxiv": _FakeClient("arxiv")}
    graph = build_branch_graph(engine, monitor, clients)

    result = await graph.ainvoke(
        create_initial_state(TARGET, branch_id=engine.branch_id, max_rounds=6),
        config=build_branch_invoke_config(engine.branch_id, 6),
    )

    assert result["stop_reason"] == "saturated"
    assert result["round_index"] == 2
    assert [row["recommendation"] for row in result["rounds"]] == ["continue", "stop"]
    assert result["report"].metrics.duplicate_rate == 1.0
    assert len(_events(result, "backends_selected")) == 2
    assert engine.dispatcher.connection_count("news") == 0
    assert engine.dispatcher.connection_count("arxiv") == 0


@pytest.mark.asyncio
async def test_branch_ends_without_backends() -> None:
    engine = _engine()
    graph = build_branch_graph(engine, _monitor(), {})

    result = await graph.ainvoke(create_initial_state(TARGET))

    assert result["stop_reason"] == "no_backends"
    assert result["round_index"] == 0
    assert result["rounds"] == []


@pytest.mark.asyncio
async def test_failed_backend_falls_back_to_next_best() -> None:
    engine = _engine()
    monitor = _monitor(
        BackendDescriptor(name="news", reliability=0.9),
        BackendDescriptor(name="arxiv", reliability=0.8),
        BackendDescriptor(name="forum", reliability=0.5),
    )
    failing = _FakeClient("news", should_raise=True)
    clients = {
        "news": failing,
        "arxiv": _FakeClient("arxiv", count=1),
        "forum": _FakeClient("forum", count=1),
    }
    graph = build_branch_graph(engine, monitor, clients, retry_attempts=2)

    result = await graph.ainvoke(
        create_initial_state(TARGET, max_sources=1, max_rounds=1)
    )

    assert failing.calls == 2
    assert result["stop_reason"] == "max_rounds"
    assert result["rounds"][0]["backend_failures"] == ["news"]
    assert [record.source_name for record in result["round_results"]] == ["arxiv"]
    assert "backend_failed:news" in result["errors"]
    assert engine.dispatcher.connection_count("news") == 0
    assert engine.dispatcher.connection_count("arxiv") == 0
    news_health = monitor.get_backend_health("news")
    assert news_health is not None
    assert news_health.error_count == 2


@pytest.mark.asyncio
async def test_concurrent_failures_fall_back_to_distinct_backends() -> None:
    engine = _engine()
    monitor = _monitor(
        BackendDescriptor(name="news", reliability=0.9),
        BackendDescriptor(name="arxiv", reliability=0.8),
        BackendDescriptor(name="forum", reliability=0.7),
        BackendDescriptor(name="patents", reliability=0.6),
    )
    clients = {
        "news": _FakeClient("news", should_raise=True),
        "arxiv": _FakeClient("arxiv", should_raise=True),
        "forum": _FakeClient("forum", count=1),
        "patents": _FakeClient("patents", count=1),
    }
    graph = build_branch_graph(engine, monitor, clients)

    result = await graph.ainvoke(
        create_initial_state(TARGET, max_sources=2, max_rounds=1)
    )

    assert result["rounds"][0]["selected_backends"] == ["news", "arxiv"]
    assert clients["forum"].calls == 1
    assert clients["patents"].calls == 1
    assert sorted(record.source_name for record in result["round_results"]) == [
        "forum",
        "patents",
    ]
    assert engine.dispatcher.connection_count("forum") == 0


@pytest.mark.asyncio
async def test_failed_backend_without_fallback_degrades_to_empty() -> None:
    engine = _engine()
    monitor = _monitor(BackendDescriptor(name="news"), BackendDescriptor(name="arxiv"))
    clients = {
        "news": _FakeClient("news", should_raise=True),
        "arxiv": _FakeClient("arxiv"),
    }
    graph = build_branch_graph(engine, monitor, clients, enable_fallback=False)

    result = await graph.ainvoke(
        create_initial_state(
            TARGET, max_sources=1, max_rounds=1, requested_sources=["news"]
        )
    )

    assert result["round_results"] == []
    assert result["rounds"][0]["backend_failures"] == ["news"]


@pytest.mark.asyncio
async def test_low_efficiency_widens_next_round() -> None:
    engine = _engine(SaturationCriteria(min_results=50, max_results=100))
    monitor = _monitor(
        BackendDescriptor(name="news", reliability=0.9),
        BackendDescriptor(name="arxiv", reliability=0.8),
        BackendDescriptor(name="forum", reliability=0.7),
    )
    clients = {
        name: _FakeClient(name, relevance=0.2, fresh=True)
        for name in ("news", "arxiv", "forum")
    }
    graph = build_branch_graph(engine, monitor, clients)

    result = await graph.ainvoke(
        create_initial_state(TARGET, max_sources=1, max_rounds=2)
    )

    assert result["stop_reason"] == "max_rounds"
    assert result["strategy_adjustments"] == 1
    assert result["max_sources"] == 2
    assert [len(row["selected_backends"]) for row in result["rounds"]] == [1, 2]


def test_aggregate_round_results_dedupes_and_sorts_by_relevance() -> None:
    first = ResultRecord(identifier="a", source_name="news", relevance_score=0.4)
    duplicate = ResultRecord(identifier="a", source_name="arxiv", relevance_score=0.9)
    second = ResultRecord(identifier="b", source_name="arxiv", relevance_score=0.8)

    merged = aggregate_round_results([[first], [duplicate, second]])

    assert [record.identifier for record in merged] == ["b", "a"]
    assert merged[1].source_name == "news"
