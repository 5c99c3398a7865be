from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BackendHealth:
    name: str
    is_healthy: bool = True
    success_rate: float = 1.0
    error_count: int = 0
    total_requests: int = 0
    consecutive_failures: int = 0
    last_response_time_ms: float = 0.0
    average_response_time_ms: float = 0.0
    last_checked_at: float | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class MonitoringStats:
    total_backends: int
    healthy_backends: int
    unhealthy_backends: int
    average_response_time_ms: float
    overall_success_rate: float
