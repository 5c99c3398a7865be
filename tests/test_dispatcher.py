import threading
from collections import Counter

import pytest

from searchgate.app.dispatch.contracts import (
    BackendDescriptor,
    DispatchRequest,
    DispatchStrategy,
    LoadBalancingConfig,
)
from searchgate.app.dispatch.service import Dispatcher


class _Clock:
    def __init__(self, now: float = 10_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _dispatcher(strategy: DispatchStrategy, clock: _Clock | None = None) -> Dispatcher:
    return Dispatcher(
        LoadBalancingConfig(strategy=strategy),
        clock=clock or _Clock(),
    )


def _backends(*names: str) -> list[BackendDescriptor]:
    return [BackendDescriptor(name=name) for name in names]


def test_select_backends_returns_empty_for_empty_roster() -> None:
    dispatcher = _dispatcher(DispatchStrategy.WEIGHTED)

    assert dispatcher.select_backends([], DispatchRequest(max_sources=3)) == []


@pytest.mark.parametrize("strategy", list(DispatchStrategy))
def test_select_backends_is_bounded_and_unique(strategy: DispatchStrategy) -> None:
    dispatcher = _dispatcher(strategy)
    roster = _backends("a", "b", "c", "d")

    for max_sources in (1, 2, 4, 10):
        selected = dispatcher.select_backends(
            roster, DispatchRequest(max_sources=max_sources)
        )
        names = [backend.name for backend in selected]

        assert len(names) == min(max_sources, len(roster))
        assert len(set(names)) == len(names)


def test_select_backends_defaults_to_three_sources() -> None:
    dispatcher = _dispatcher(DispatchStrategy.HEALTH_BASED)

    selected = dispatcher.select_backends(
        _backends("a", "b", "c", "d", "e"), DispatchRequest()
    )

    assert len(selected) == 3


def test_least_connections_prefers_idle_backends() -> None:
    dispatcher = _dispatcher(DispatchStrategy.LEAST_CONNECTIONS)
    for _ in range(3):
        dispatcher.record_connection("A")
    dispatcher.record_connection("C")

    selected = dispatcher.select_backends(
        _backends("A", "B", "C"), DispatchRequest(max_sources=2)
    )

    assert [backend.name for backend in selected] == ["B", "C"]


def test_round_robin_spreads_selections_evenly() -> None:
    dispatcher = _dispatcher(DispatchStrategy.ROUND_ROBIN)
    roster = _backends("a", "b", "c", "d", "e")
    counts: Counter[str] = Counter()
    calls, per_call = 7, 2

    for _ in range(calls):
        selected = dispatcher.select_backends(
            roster, DispatchRequest(max_sources=per_call)
        )
        counts.update(backend.name for backend in selected)

    low = (calls * per_call) // len(roster)
    for backend in roster:
        assert counts[backend.name] in {low, low + 1}


def test_round_robin_advances_cursor_between_calls() -> None:
    dispatcher = _dispatcher(DispatchStrategy.ROUND_ROBIN)
    roster = _backends("a", "b", "c")

    first = dispatcher.select_backends(roster, DispatchRequest(max_sources=2))
    second = dispatcher.select_backends(roster, DispatchRequest(max_sources=2))

    assert [backend.name for backend in first] == ["a", "b"]
    assert [backend.name for backend in second] == ["c", "a"]


def test_weighted_prefers_unloaded_backend_of_equal_priority() -> None:
    dispatcher = _dispatcher(DispatchStrategy.WEIGHTED)
    for _ in range(11):
        dispatcher.record_connection("busy")
    roster = [
        BackendDescriptor(name="busy", priority=3),
        BackendDescriptor(name="idle", priority=3),
    ]

    selected = dispatcher.select_backends(roster, DispatchRequest(max_sources=2))

    assert [backend.name for backend in selected] == ["idle", "busy"]


def test_weighted_applies_recency_bonus_after_window() -> None:
    clock = _Clock()
    dispatcher = _dispatcher(DispatchStrategy.WEIGHTED, clock=clock)
    roster = [
        BackendDescriptor(name="recent", priority=2),
        BackendDescriptor(name="fresh", priority=2),
    ]
    dispatcher.record_connection("recent")
    dispatcher.release_connection("recent")

    clock.now += 30
    selected = dispatcher.select_backends(roster, DispatchRequest(max_sources=2))
    assert [backend.name for backend in selected] == ["fresh", "recent"]

    clock.now += 31
    selected = dispatcher.select_backends(roster, DispatchRequest(max_sources=2))
    assert [backend.name for backend in selected] == ["recent", "fresh"]


def test_weighted_orders_by_priority() -> None:
    dispatcher = _dispatcher(DispatchStrategy.WEIGHTED)
    roster = [
        BackendDescriptor(name="low", priority=1),
        BackendDescriptor(name="high", priority=5),
        BackendDescriptor(name="mid", priority=3),
    ]

    selected = dispatcher.select_backends(roster, DispatchRequest(max_sources=2))

    assert [backend.name for backend in selected] == ["high", "mid"]


def test_health_based_uses_default_reliability_when_unset() -> None:
    dispatcher = _dispatcher(DispatchStrategy.HEALTH_BASED)
    roster = [
        BackendDescriptor(name="flaky", reliability=0.5),
        BackendDescriptor(name="unknown"),
        BackendDescriptor(name="solid", reliability=0.9),
    ]

    selected = dispatcher.select_backends(roster, DispatchRequest(max_sources=3))

    assert [backend.name for backend in selected] == ["solid", "unknown", "flaky"]


def test_requested_sources_take_precedence() -> None:
    dispatcher = _dispatcher(DispatchStrategy.HEALTH_BASED)
    roster = [
        BackendDescriptor(name="news", reliability=0.99),
        BackendDescriptor(name="arxiv", reliability=0.4),
    ]

    selected = dispatcher.select_backends(
        roster,
        DispatchRequest(requested_sources=("arxiv",), max_sources=3),
    )

    assert [backend.name for backend in selected] == ["arxiv"]


def test_unavailable_requested_sources_fall_back_to_full_roster() -> None:
    dispatcher = _dispatcher(DispatchStrategy.HEALTH_BASED)
    roster = _backends("news", "arxiv")

    selected = dispatcher.select_backends(
        roster,
        DispatchRequest(requested_sources=("missing",), max_sources=3),
    )

    assert [backend.name for backend in selected] == ["news", "arxiv"]


def test_release_connection_never_goes_negative() -> None:
    dispatcher = _dispatcher(DispatchStrategy.LEAST_CONNECTIONS)

    dispatcher.release_connection("idle")
    dispatcher.record_connection("busy")
    dispatcher.release_connection("busy")
    dispatcher.release_connection("busy")

    assert dispatcher.connection_count("idle") == 0
    assert dispatcher.connection_count("busy") == 0


def test_connection_bookkeeping_is_consistent_under_threads() -> None:
    dispatcher = _dispatcher(DispatchStrategy.LEAST_CONNECTIONS)

    def _worker() -> None:
        for _ in range(500):
            dispatcher.record_connection("shared")
            dispatcher.release_connection("shared")

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert dispatcher.connection_count("shared") == 0


def test_fallback_prefers_best_remaining_backend() -> None:
    dispatcher = _dispatcher(DispatchStrategy.HEALTH_BASED)
    roster = [
        BackendDescriptor(name="primary", reliability=0.95),
        BackendDescriptor(name="backup", reliability=0.7),
        BackendDescriptor(name="spare", reliability=0.9),
    ]
    dispatcher.select_backends(roster, DispatchRequest(max_sources=1))

    fallback = dispatcher.get_fallback_backend(roster[0])

    assert fallback is not None
    assert fallback.name == "spare"


def test_fallback_returns_none_without_alternatives() -> None:
    dispatcher = _dispatcher(DispatchStrategy.WEIGHTED)
    only = BackendDescriptor(name="only")
    dispatcher.select_backends([only], DispatchRequest())

    assert dispatcher.get_fallback_backend(only) is None
    assert dispatcher.get_fallback_backend(only, candidates=[]) is None


def test_get_stats_reports_strategy_and_counts() -> None:
    clock = _Clock(now=42.0)
    dispatcher = _dispatcher(DispatchStrategy.ROUND_ROBIN, clock=clock)
    dispatcher.record_connection("news")
    dispatcher.record_connection("news")

    stats = dispatcher.get_stats()

    assert stats.strategy == "round-robin"
    assert stats.connection_counts == {"news": 2}
    assert stats.last_used_timestamps == {"news": 42.0}
