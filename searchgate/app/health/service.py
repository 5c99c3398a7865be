from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import replace
from typing import Awaitable, Callable

from searchgate.app.dispatch.contracts import BackendDescriptor
from searchgate.app.health.contracts import BackendHealth, MonitoringStats

LOGGER = logging.getLogger(__name__)

RESPONSE_TIME_SMOOTHING = 0.1

HealthProbe = Callable[[BackendDescriptor], Awaitable[object]]


class HealthMonitor:
    """Tracks per-backend success and failure and derives the dispatch roster.

    Reliability handed to the dispatcher is the observed success rate once a
    backend has served at least one request; before that the configured value
    is kept.
    """

    def __init__(
        self,
        failover_threshold: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._failover_threshold = max(failover_threshold, 1)
        self._clock = clock
        self._lock = threading.Lock()
        self._backends: dict[str, BackendDescriptor] = {}
        self._health: dict[str, BackendHealth] = {}
        self._monitor_task: asyncio.Task[None] | None = None

    def register_backend(self, backend: BackendDescriptor) -> None:
        with self._lock:
            self._backends[backend.name] = backend
            self._health[backend.name] = BackendHealth(name=backend.name)
        LOGGER.info("Registered backend for monitoring: %s", backend.name)

    def registered_backends(self) -> list[BackendDescriptor]:
        with self._lock:
            return list(self._backends.values())

    def record_success(self, name: str, response_time_ms: float | None = None) -> None:
        with self._lock:
            health = self._health.get(name)
            if health is None:
                return
            total = health.total_requests + 1
            updated = replace(
                health,
                total_requests=total,
                consecutive_failures=0,
                success_rate=_success_rate(total, health.error_count),
                last_checked_at=self._clock(),
                is_healthy=True,
            )
            if response_time_ms is not None:
                updated = replace(
                    updated,
                    last_response_time_ms=response_time_ms,
                    average_response_time_ms=(
                        health.average_response_time_ms * (1 - RESPONSE_TIME_SMOOTHING)
                        + response_time_ms * RESPONSE_TIME_SMOOTHING
                    ),
                )
            self._health[name] = updated
        if not health.is_healthy:
            LOGGER.info("Backend %s recovered and is healthy again", name)

    def record_error(self, name: str, error: BaseException | str) -> None:
        message = str(error)
        with self._lock:
            health = self._health.get(name)
            if health is None:
                return
            total = health.total_requests + 1
            errors = health.error_count + 1
            consecutive = health.consecutive_failures + 1
            tripped = consecutive >= self._failover_threshold
            self._health[name] = replace(
                health,
                total_requests=total,
                error_count=errors,
                consecutive_failures=consecutive,
                success_rate=_success_rate(total, errors),
                last_checked_at=self._clock(),
                last_error=message,
                is_healthy=health.is_healthy and not tripped,
            )
        LOGGER.warning("Backend %s error: %s", name, message)
        if tripped and health.is_healthy:
            LOGGER.error(
                "Backend %s marked unhealthy after %d consecutive failures",
                name,
                consecutive,
            )

    def healthy_backends(self) -> list[BackendDescriptor]:
        with self._lock:
            roster: list[BackendDescriptor] = []
            for name, backend in self._backends.items():
                health = self._health[name]
                if not health.is_healthy:
                    continue
                if health.total_requests > 0:
                    backend = replace(backend, reliability=health.success_rate)
                roster.append(backend)
            return roster

    def get_backend_health(self, name: str) -> BackendHealth | None:
        with self._lock:
            return self._health.get(name)

    def reset_backend(self, name: str) -> None:
        with self._lock:
            if name not in self._health:
                return
            self._health[name] = BackendHealth(name=name)
        LOGGER.info("Reset health status for backend: %s", name)

    def get_monitoring_stats(self) -> MonitoringStats:
        with self._lock:
            rows = list(self._health.values())
        healthy = sum(1 for row in rows if row.is_healthy)
        total_requests = sum(row.total_requests for row in rows)
        weighted_time = sum(
            row.average_response_time_ms * row.total_requests for row in rows
        )
        successes = sum(row.total_requests - row.error_count for row in rows)
        return MonitoringStats(
            total_backends=len(rows),
            healthy_backends=healthy,
            unhealthy_backends=len(rows) - healthy,
            average_response_time_ms=(
                weighted_time / total_requests if total_requests else 0.0
            ),
            overall_success_rate=(
                successes / total_requests if total_requests else 1.0
            ),
        )

    async def perform_health_check(self, probe: HealthProbe) -> None:
        backends = self.registered_backends()
        if not backends:
            return
        LOGGER.debug("Performing health check for %d backends", len(backends))
        await asyncio.gather(
            *(self._check_backend(backend, probe) for backend in backends)
        )

    def start_monitoring(self, probe: HealthProbe, interval_seconds: float) -> None:
        """Re-check every registered backend each `interval_seconds` until stopped.

        Must be called from a running event loop. Periodic probing is what lets a
        backend tripped by `record_error` rejoin the roster.
        """
        if self.is_monitoring:
            return
        self._monitor_task = asyncio.create_task(
            self._monitor_loop(probe, max(interval_seconds, 0.0))
        )
        LOGGER.info("Started health monitoring every %ss", interval_seconds)

    async def stop_monitoring(self) -> None:
        task = self._monitor_task
        if task is None:
            return
        self._monitor_task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            LOGGER.info("Stopped health monitoring")

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def _monitor_loop(self, probe: HealthProbe, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.perform_health_check(probe)

    async def _check_backend(
        self,
        backend: BackendDescriptor,
        probe: HealthProbe,
    ) -> None:
        started = time.perf_counter()
        try:
            await probe(backend)
        except Exception as exc:  # noqa: BLE001
            self.record_error(backend.name, exc)
            return
        elapsed_ms = (time.perf_counter() - started) * 1000
        self.record_success(backend.name, elapsed_ms)


def _success_rate(total_requests: int, error_count: int) -> float:
    if total_requests == 0:
        return 1.0
    return (total_requests - error_count) / total_requests
