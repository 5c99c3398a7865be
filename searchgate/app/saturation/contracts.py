from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

GAIN_SAMPLE_SIZE = 10


class Recommendation(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"
    ADJUST_STRATEGY = "adjust_strategy"


@dataclass(frozen=True)
class SaturationCriteria:
    duplicate_threshold: float = 0.8
    novelty_threshold: float = 0.2
    source_overlap_limit: float = 0.7
    min_results: int = 5
    max_results: int = 100
    information_gain_threshold: float = 0.1
    window_size: int = 50

    def __post_init__(self) -> None:
        if self.min_results > self.max_results:
            raise ValueError(
                f"min_results ({self.min_results}) must not exceed "
                f"max_results ({self.max_results})"
            )
        if self.window_size < GAIN_SAMPLE_SIZE:
            raise ValueError(
                f"window_size ({self.window_size}) must be at least "
                f"{GAIN_SAMPLE_SIZE} to cover the information-gain sample"
            )


@dataclass
class ResultRecord:
    identifier: str
    source_name: str
    raw_content: str | None = ""
    relevance_score: float = 0.0
    content_fingerprint: str | None = None
    novelty_score: float | None = None


@dataclass(frozen=True)
class SaturationMetrics:
    duplicate_rate: float
    novelty_score: float
    source_overlap_rate: float
    information_gain_rate: float
    search_efficiency: float


@dataclass(frozen=True)
class SaturationReport:
    is_saturated: bool
    saturation_level: float
    metrics: SaturationMetrics
    recommendation: Recommendation
    reasoning: str
    next_actions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SearchStats:
    total_rounds: int
    total_results: int
    unique_identifiers: int
    unique_sources: int
    average_relevance: float
