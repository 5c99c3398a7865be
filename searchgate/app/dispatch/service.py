from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Sequence

from searchgate.app.dispatch.contracts import (
    BackendDescriptor,
    DispatchRequest,
    DispatchStats,
    DispatchStrategy,
    LoadBalancingConfig,
)

LOGGER = logging.getLogger(__name__)


class Dispatcher:
    """Chooses which backends to query for one round of a research branch.

    Connection bookkeeping is guarded by a lock so that parallel in-flight
    requests can record and release connections concurrently. Selection is
    expected to be called once per round by a single control loop.
    """

    def __init__(
        self,
        config: LoadBalancingConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._clock = clock
        self._lock = threading.Lock()
        self._round_robin_index = 0
        self._connection_counts: dict[str, int] = {}
        self._last_used: dict[str, float] = {}
        self._roster: list[BackendDescriptor] = []

    @property
    def strategy(self) -> DispatchStrategy:
        return self._config.strategy

    def select_backends(
        self,
        available: Sequence[BackendDescriptor],
        request: DispatchRequest,
    ) -> list[BackendDescriptor]:
        candidates = _unique_by_name(available)
        self._roster = list(candidates)
        if not candidates:
            LOGGER.info("No backends available for dispatch")
            return []

        if request.requested_sources:
            requested = set(request.requested_sources)
            filtered = [backend for backend in candidates if backend.name in requested]
            if filtered:
                candidates = filtered

        limit = min(
            request.max_sources or self._config.default_max_sources,
            len(candidates),
        )
        limit = max(limit, 0)
        if self._config.strategy == DispatchStrategy.ROUND_ROBIN:
            selected = self._round_robin_selection(candidates, limit)
        else:
            selected = self._rank(candidates)[:limit]

        LOGGER.debug(
            "Selected backends",
            extra={
                "strategy": self._config.strategy.value,
                "backends": [backend.name for backend in selected],
            },
        )
        return selected

    def record_connection(self, name: str) -> None:
        with self._lock:
            self._connection_counts[name] = self._connection_counts.get(name, 0) + 1
            self._last_used[name] = self._clock()

    def release_connection(self, name: str) -> None:
        with self._lock:
            current = self._connection_counts.get(name, 0)
            if current > 0:
                self._connection_counts[name] = current - 1

    def connection_count(self, name: str) -> int:
        with self._lock:
            return self._connection_counts.get(name, 0)

    def get_fallback_backend(
        self,
        failed: BackendDescriptor,
        candidates: Sequence[BackendDescriptor] | None = None,
    ) -> BackendDescriptor | None:
        LOGGER.warning("Looking for fallback backend for %s", failed.name)
        pool = _unique_by_name(candidates if candidates is not None else self._roster)
        remaining = [backend for backend in pool if backend.name != failed.name]
        if not remaining:
            return None
        if self._config.strategy == DispatchStrategy.ROUND_ROBIN:
            offset = self._round_robin_index % len(remaining)
            return (remaining[offset:] + remaining[:offset])[0]
        return self._rank(remaining)[0]

    def get_stats(self) -> DispatchStats:
        with self._lock:
            return DispatchStats(
                strategy=self._config.strategy.value,
                connection_counts=dict(self._connection_counts),
                last_used_timestamps=dict(self._last_used),
            )

    def _round_robin_selection(
        self,
        candidates: list[BackendDescriptor],
        limit: int,
    ) -> list[BackendDescriptor]:
        size = len(candidates)
        selected = [
            candidates[(self._round_robin_index + offset) % size]
            for offset in range(limit)
        ]
        self._round_robin_index = (self._round_robin_index + limit) % size
        return selected

    def _rank(self, candidates: list[BackendDescriptor]) -> list[BackendDescriptor]:
        strategy = self._config.strategy
        if strategy == DispatchStrategy.WEIGHTED:
            weights = {backend.name: self._weight(backend) for backend in candidates}
            return sorted(
                candidates, key=lambda backend: weights[backend.name], reverse=True
            )
        if strategy == DispatchStrategy.LEAST_CONNECTIONS:
            counts = self._snapshot_counts()
            return sorted(candidates, key=lambda backend: counts.get(backend.name, 0))
        if strategy == DispatchStrategy.HEALTH_BASED:
            return sorted(candidates, key=self._health, reverse=True)
        return list(candidates)

    def _weight(self, backend: BackendDescriptor) -> float:
        weight = float(backend.priority or 1)
        with self._lock:
            last_used = self._last_used.get(backend.name)
            connections = self._connection_counts.get(backend.name, 0)

        if (
            last_used is None
            or self._clock() - last_used > self._config.recency_window_seconds
        ):
            weight *= self._config.recency_bonus
        if connections > self._config.load_penalty_threshold:
            weight *= self._config.load_penalty
        return weight

    def _health(self, backend: BackendDescriptor) -> float:
        if backend.reliability is None:
            return self._config.default_reliability
        return backend.reliability

    def _snapshot_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._connection_counts)


def _unique_by_name(
    backends: Sequence[BackendDescriptor],
) -> list[BackendDescriptor]:
    seen: set[str] = set()
    unique: list[BackendDescriptor] = []
    for backend in backends:
        if backend.name in seen:
            continue
        seen.add(backend.name)
        unique.append(backend)
    return unique
