from __future__ import annotations

import time
from dataclasses import replace

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from searchgate.app.dispatch.contracts import DispatchRequest
from searchgate.app.observability.service import create_round_trace
from searchgate.app.research.engine import BranchEngine, create_branch_engine
from searchgate.app.runtime.store import (
    drop_branch_engine,
    get_branch_engine,
    register_branch_engine,
    runtime_store,
)
from searchgate.core.config import (
    AppConfig,
    build_load_balancing_config,
    build_saturation_criteria,
    load_app_config,
)
from searchgate.models import (
    BackendHealthModel,
    BackendModel,
    BackendOutcomePayload,
    BranchStatsResponse,
    CreateBranchRequest,
    CreateBranchResponse,
    CriteriaOverrides,
    DispatchPayload,
    DispatchResponse,
    FallbackPayload,
    FallbackResponse,
    ResultBatchPayload,
    SaturationReportModel,
    dispatch_stats_model,
    from_descriptor,
    report_model,
    search_stats_model,
    to_descriptor,
    to_result_record,
)


def _build_engine(config: AppConfig, payload: CreateBranchRequest) -> BranchEngine:
    load_balancing = build_load_balancing_config(config)
    if payload.strategy is not None:
        load_balancing = replace(load_balancing, strategy=payload.strategy)
    criteria = build_saturation_criteria(config)
    overrides = _criteria_overrides(payload.criteria)
    if overrides:
        try:
            criteria = replace(criteria, **overrides)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
    return create_branch_engine(load_balancing, criteria)


def _criteria_overrides(criteria: CriteriaOverrides | None) -> dict[str, object]:
    if criteria is None:
        return {}
    return {
        key: value
        for key, value in criteria.model_dump().items()
        if value is not None
    }


def _require_engine(branch_id: str) -> BranchEngine:
    engine = get_branch_engine(branch_id)
    if engine is None:
        raise HTTPException(status_code=404, detail=f"Unknown branch: {branch_id}")
    return engine


def create_app() -> FastAPI:
    config = load_app_config()
    app = FastAPI(title=config.app_name, version=config.app_version)

    @app.get("/")
    async def root() -> JSONResponse:
        return JSONResponse(
            content={
                "name": config.app_name,
                "version": config.app_version,
                "strategy": config.dispatch_strategy.value,
                "docs": "/docs",
            }
        )

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.post("/api/v1/backends")
    async def register_backend(payload: BackendModel) -> BackendModel:
        runtime_store.monitor.register_backend(to_descriptor(payload))
        return payload

    @app.post("/api/v1/backends/{name}/outcome")
    async def record_backend_outcome(
        name: str,
        payload: BackendOutcomePayload,
    ) -> BackendHealthModel:
        monitor = runtime_store.monitor
        if monitor.get_backend_health(name) is None:
            raise HTTPException(status_code=404, detail=f"Unknown backend: {name}")
        if payload.ok:
            monitor.record_success(name, payload.response_time_ms)
        else:
            monitor.record_error(name, payload.error_message or "backend call failed")
        return _health_model(name)

    @app.get("/api/v1/backends/healthy")
    async def healthy_backends() -> list[BackendModel]:
        return [
            from_descriptor(backend)
            for backend in runtime_store.monitor.healthy_backends()
        ]

    @app.get("/api/v1/backends/stats")
    async def monitoring_stats() -> dict[str, object]:
        stats = runtime_store.monitor.get_monitoring_stats()
        return {
            "total_backends": stats.total_backends,
            "healthy_backends": stats.healthy_backends,
            "unhealthy_backends": stats.unhealthy_backends,
            "average_response_time_ms": stats.average_response_time_ms,
            "overall_success_rate": stats.overall_success_rate,
        }

    @app.post("/api/v1/branches", status_code=201)
    async def create_branch(payload: CreateBranchRequest) -> CreateBranchResponse:
        engine = _build_engine(config, payload)
        register_branch_engine(engine)
        if payload.target:
            runtime_store.targets_by_branch[engine.branch_id] = payload.target
        return CreateBranchResponse(
            branch_id=engine.branch_id,
            strategy=engine.dispatcher.strategy,
        )

    @app.delete("/api/v1/branches/{branch_id}")
    async def delete_branch(branch_id: str) -> dict[str, bool]:
        if not drop_branch_engine(branch_id):
            raise HTTPException(status_code=404, detail=f"Unknown branch: {branch_id}")
        return {"deleted": True}

    @app.post("/api/v1/branches/{branch_id}/dispatch")
    async def dispatch(branch_id: str, payload: DispatchPayload) -> DispatchResponse:
        engine = _require_engine(branch_id)
        if payload.available is None:
            available = runtime_store.monitor.healthy_backends()
        else:
            available = [to_descriptor(backend) for backend in payload.available]
        selected = engine.dispatcher.select_backends(
            available,
            DispatchRequest(
                requested_sources=tuple(payload.requested_sources),
                max_sources=payload.max_sources,
            ),
        )
        return DispatchResponse(
            selected=[from_descriptor(backend) for backend in selected]
        )

    @app.post("/api/v1/branches/{branch_id}/connections/{name}/record")
    async def record_connection(branch_id: str, name: str) -> dict[str, int]:
        engine = _require_engine(branch_id)
        engine.dispatcher.record_connection(name)
        return {"connections": engine.dispatcher.connection_count(name)}

    @app.post("/api/v1/branches/{branch_id}/connections/{name}/release")
    async def release_connection(branch_id: str, name: str) -> dict[str, int]:
        engine = _require_engine(branch_id)
        engine.dispatcher.release_connection(name)
        return {"connections": engine.dispatcher.connection_count(name)}

    @app.post("/api/v1/branches/{branch_id}/fallback")
    async def fallback(branch_id: str, payload: FallbackPayload) -> FallbackResponse:
        engine = _require_engine(branch_id)
        candidates = (
            [to_descriptor(backend) for backend in payload.candidates]
            if payload.candidates is not None
            else None
        )
        backend = engine.dispatcher.get_fallback_backend(
            to_descriptor(payload.failed), candidates=candidates
        )
        return FallbackResponse(
            fallback=from_descriptor(backend) if backend is not None else None
        )

    @app.post("/api/v1/branches/{branch_id}/results")
    async def submit_results(
        branch_id: str,
        payload: ResultBatchPayload,
    ) -> SaturationReportModel:
        engine = _require_engine(branch_id)
        started = time.perf_counter()
        target = payload.branch_target
        if target is None:
            target = runtime_store.targets_by_branch.get(branch_id, "")
        report = engine.gate.detect_saturation(
            [to_result_record(record) for record in payload.results],
            target,
        )
        stats = engine.gate.get_search_stats()
        runtime_store.round_trace_log.append(
            create_round_trace(
                round_index=stats.total_rounds,
                strategy=engine.dispatcher.strategy.value,
                selected_backends=sorted(
                    {record.source_name for record in payload.results}
                ),
                recommendation=report.recommendation.value,
                saturation_level=report.saturation_level,
                started_at=started,
            )
        )
        return report_model(report)

    @app.post("/api/v1/branches/{branch_id}/reset")
    async def reset_branch(branch_id: str) -> dict[str, bool]:
        engine = _require_engine(branch_id)
        engine.gate.reset()
        return {"reset": True}

    @app.get("/api/v1/branches/{branch_id}/stats")
    async def branch_stats(branch_id: str) -> BranchStatsResponse:
        engine = _require_engine(branch_id)
        return BranchStatsResponse(
            branch_id=branch_id,
            dispatch=dispatch_stats_model(engine.dispatcher.get_stats()),
            search=search_stats_model(engine.gate.get_search_stats()),
        )

    @app.get("/api/v1/observability/rounds")
    async def round_traces() -> dict[str, object]:
        return {
            "traces": [
                {
                    "trace_id": row.trace_id,
                    "round_index": row.round_index,
                    "strategy": row.strategy,
                    "selected_backends": list(row.selected_backends),
                    "recommendation": row.recommendation,
                    "saturation_level": row.saturation_level,
                    "latency_ms": row.latency_ms,
                }
                for row in runtime_store.round_trace_log[-50:]
            ],
        }

    return app


def _health_model(name: str) -> BackendHealthModel:
    health = runtime_store.monitor.get_backend_health(name)
    if health is None:
        raise HTTPException(status_code=404, detail=f"Unknown backend: {name}")
    return BackendHealthModel(
        name=health.name,
        is_healthy=health.is_healthy,
        success_rate=health.success_rate,
        error_count=health.error_count,
        total_requests=health.total_requests,
        consecutive_failures=health.consecutive_failures,
        average_response_time_ms=health.average_response_time_ms,
        last_error=health.last_error,
    )
