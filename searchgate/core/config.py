from __future__ import annotations

import os
from dataclasses import dataclass

from searchgate.app.dispatch.contracts import (
    DispatchStrategy,
    LoadBalancingConfig,
    parse_strategy,
)
from searchgate.app.saturation.contracts import SaturationCriteria


@dataclass(frozen=True)
class AppConfig:
    app_name: str
    app_version: str
    dispatch_strategy: DispatchStrategy
    health_check_interval_seconds: int
    failover_threshold: int
    default_max_sources: int
    saturation_duplicate_threshold: float
    saturation_novelty_threshold: float
    saturation_source_overlap_limit: float
    saturation_information_gain_threshold: float
    saturation_min_results: int
    saturation_max_results: int
    branch_max_rounds: int
    branch_retry_attempts: int
    branch_enable_fallback: bool
    branch_results_per_backend: int


def _read_optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if not value:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _read_bool_env(name: str, default: bool) -> bool:
    value = _read_optional_env(name)
    if value is None:
        return default
    normalized = value.lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _read_int_env(name: str, default: int) -> int:
    value = _read_optional_env(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_float_env(name: str, default: float) -> float:
    value = _read_optional_env(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    if parsed < 0:
        return default
    if parsed > 1:
        return 1.0
    return parsed


def load_app_config() -> AppConfig:
    min_results = _read_int_env("SATURATION_MIN_RESULTS", default=5)
    max_results = _read_int_env("SATURATION_MAX_RESULTS", default=100)
    return AppConfig(
        app_name=os.getenv("APP_NAME", "searchgate"),
        app_version=os.getenv("APP_VERSION", "0.1.0"),
        dispatch_strategy=parse_strategy(os.getenv("DISPATCH_STRATEGY", "weighted")),
        health_check_interval_seconds=_read_int_env(
            "HEALTH_CHECK_INTERVAL_SECONDS", default=60
        ),
        failover_threshold=_read_int_env("FAILOVER_THRESHOLD", default=3),
        default_max_sources=_read_int_env("DEFAULT_MAX_SOURCES", default=3),
        saturation_duplicate_threshold=_read_float_env(
            "SATURATION_DUPLICATE_THRESHOLD", default=0.8
        ),
        saturation_novelty_threshold=_read_float_env(
            "SATURATION_NOVELTY_THRESHOLD", default=0.2
        ),
        saturation_source_overlap_limit=_read_float_env(
            "SATURATION_SOURCE_OVERLAP_LIMIT", default=0.7
        ),
        saturation_information_gain_threshold=_read_float_env(
            "SATURATION_INFORMATION_GAIN_THRESHOLD", default=0.1
        ),
        saturation_min_results=min(min_results, max_results),
        saturation_max_results=max_results,
        branch_max_rounds=_read_int_env("BRANCH_MAX_ROUNDS", default=6),
        branch_retry_attempts=_read_int_env("BRANCH_RETRY_ATTEMPTS", default=1),
        branch_enable_fallback=_read_bool_env("BRANCH_ENABLE_FALLBACK", default=True),
        branch_results_per_backend=_read_int_env(
            "BRANCH_RESULTS_PER_BACKEND", default=10
        ),
    )


def build_load_balancing_config(config: AppConfig) -> LoadBalancingConfig:
    return LoadBalancingConfig(
        strategy=config.dispatch_strategy,
        health_check_interval=float(config.health_check_interval_seconds),
        failover_threshold=config.failover_threshold,
        default_max_sources=config.default_max_sources,
    )


def build_saturation_criteria(config: AppConfig) -> SaturationCriteria:
    return SaturationCriteria(
        duplicate_threshold=config.saturation_duplicate_threshold,
        novelty_threshold=config.saturation_novelty_threshold,
        source_overlap_limit=config.saturation_source_overlap_limit,
        min_results=config.saturation_min_results,
        max_results=config.saturation_max_results,
        information_gain_threshold=config.saturation_information_gain_threshold,
    )
