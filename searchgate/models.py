from __future__ import annotations

from pydantic import BaseModel, Field

from searchgate.app.dispatch.contracts import (
    BackendDescriptor,
    DispatchStats,
    DispatchStrategy,
)
from searchgate.app.saturation.contracts import (
    Recommendation,
    ResultRecord,
    SaturationReport,
    SearchStats,
)


class BackendModel(BaseModel):
    name: str = Field(min_length=1)
    priority: int = 1
    reliability: float | None = Field(default=None, ge=0.0, le=1.0)


class ResultRecordModel(BaseModel):
    identifier: str = Field(min_length=1)
    source_name: str = Field(min_length=1)
    raw_content: str | None = ""
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)


class CriteriaOverrides(BaseModel):
    duplicate_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    novelty_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    source_overlap_limit: float | None = Field(default=None, ge=0.0, le=1.0)
    information_gain_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    min_results: int | None = Field(default=None, ge=0)
    max_results: int | None = Field(default=None, ge=1)


class CreateBranchRequest(BaseModel):
    target: str | None = None
    strategy: DispatchStrategy | None = None
    criteria: CriteriaOverrides | None = None


class CreateBranchResponse(BaseModel):
    branch_id: str
    strategy: DispatchStrategy


class DispatchPayload(BaseModel):
    available: list[BackendModel] | None = None
    requested_sources: list[str] = Field(default_factory=list)
    max_sources: int | None = Field(default=None, ge=0)


class DispatchResponse(BaseModel):
    selected: list[BackendModel]


class FallbackPayload(BaseModel):
    failed: BackendModel
    candidates: list[BackendModel] | None = None


class FallbackResponse(BaseModel):
    fallback: BackendModel | None


class BackendOutcomePayload(BaseModel):
    ok: bool
    response_time_ms: float | None = Field(default=None, ge=0.0)
    error_message: str | None = None


class BackendHealthModel(BaseModel):
    name: str
    is_healthy: bool
    success_rate: float
    error_count: int
    total_requests: int
    consecutive_failures: int
    average_response_time_ms: float
    last_error: str | None = None


class ResultBatchPayload(BaseModel):
    branch_target: str | None = None
    results: list[ResultRecordModel] = Field(default_factory=list)


class SaturationMetricsModel(BaseModel):
    duplicate_rate: float
    novelty_score: float
    source_overlap_rate: float
    information_gain_rate: float
    search_efficiency: float


class SaturationReportModel(BaseModel):
    is_saturated: bool
    saturation_level: float
    metrics: SaturationMetricsModel
    recommendation: Recommendation
    reasoning: str
    next_actions: list[str]


class SearchStatsModel(BaseModel):
    total_rounds: int
    total_results: int
    unique_identifiers: int
    unique_sources: int
    average_relevance: float


class DispatchStatsModel(BaseModel):
    strategy: str
    connection_counts: dict[str, int]
    last_used_timestamps: dict[str, float]


class BranchStatsResponse(BaseModel):
    branch_id: str
    dispatch: DispatchStatsModel
    search: SearchStatsModel


class RoundSummary(BaseModel):
    round: int
    selected_backends: list[str]
    result_count: int
    backend_failures: list[str]
    recommendation: Recommendation
    saturation_level: float
    latency_ms: int = 0


class BranchOutcome(BaseModel):
    branch_id: str
    target: str
    rounds: int
    stop_reason: str | None
    strategy_adjustments: int
    final_report: SaturationReportModel | None
    stats: SearchStatsModel
    round_summaries: list[RoundSummary]


def to_descriptor(model: BackendModel) -> BackendDescriptor:
    return BackendDescriptor(
        name=model.name,
        priority=model.priority,
        reliability=model.reliability,
    )


def from_descriptor(backend: BackendDescriptor) -> BackendModel:
    return BackendModel(
        name=backend.name,
        priority=backend.priority,
        reliability=backend.reliability,
    )


def to_result_record(model: ResultRecordModel) -> ResultRecord:
    return ResultRecord(
        identifier=model.identifier,
        source_name=model.source_name,
        raw_content=model.raw_content,
        relevance_score=model.relevance_score,
    )


def report_model(report: SaturationReport) -> SaturationReportModel:
    metrics = report.metrics
    return SaturationReportModel(
        is_saturated=report.is_saturated,
        saturation_level=report.saturation_level,
        metrics=SaturationMetricsModel(
            duplicate_rate=metrics.duplicate_rate,
            novelty_score=metrics.novelty_score,
            source_overlap_rate=metrics.source_overlap_rate,
            information_gain_rate=metrics.information_gain_rate,
            search_efficiency=metrics.search_efficiency,
        ),
        recommendation=report.recommendation,
        reasoning=report.reasoning,
        next_actions=list(report.next_actions),
    )


def search_stats_model(stats: SearchStats) -> SearchStatsModel:
    return SearchStatsModel(
        total_rounds=stats.total_rounds,
        total_results=stats.total_results,
        unique_identifiers=stats.unique_identifiers,
        unique_sources=stats.unique_sources,
        average_relevance=stats.average_relevance,
    )


def dispatch_stats_model(stats: DispatchStats) -> DispatchStatsModel:
    return DispatchStatsModel(
        strategy=stats.strategy,
        connection_counts=dict(stats.connection_counts),
        last_used_timestamps=dict(stats.last_used_timestamps),
    )
