from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class DispatchStrategy(str, Enum):
    ROUND_ROBIN = "round-robin"
    WEIGHTED = "weighted"
    LEAST_CONNECTIONS = "least-connections"
    HEALTH_BASED = "health-based"


def parse_strategy(value: str | None) -> DispatchStrategy:
    if value is None:
        return DispatchStrategy.ROUND_ROBIN
    normalized = value.strip().lower().replace("_", "-")
    for strategy in DispatchStrategy:
        if strategy.value == normalized:
            return strategy
    return DispatchStrategy.ROUND_ROBIN


@dataclass(frozen=True)
class BackendDescriptor:
    name: str
    priority: int = 1
    reliability: float | None = None


@dataclass(frozen=True)
class DispatchRequest:
    requested_sources: tuple[str, ...] = tuple()
    max_sources: int | None = None


@dataclass(frozen=True)
class LoadBalancingConfig:
    strategy: DispatchStrategy = DispatchStrategy.WEIGHTED
    health_check_interval: float = 60.0
    failover_threshold: int = 3
    # Weighted-strategy policy; tunable defaults.
    recency_window_seconds: float = 60.0
    recency_bonus: float = 1.2
    load_penalty_threshold: int = 10
    load_penalty: float = 0.8
    default_reliability: float = 0.8
    default_max_sources: int = 3


@dataclass(frozen=True)
class DispatchStats:
    strategy: str
    connection_counts: dict[str, int] = field(default_factory=dict)
    last_used_timestamps: dict[str, float] = field(default_factory=dict)
