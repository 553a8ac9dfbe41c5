"""
Analytics routes — metrics, breakdowns, trends, comparison and dashboard endpoints.

Every body carries `dataset_id` (or inline `data`), the requesting `actor`
and an optional `filter`; endpoint-specific options sit beside them.
Engine errors are mapped to HTTP status codes by the handler in main.py.
"""

from fastapi import APIRouter, Request

from core.records import parse_flag
from routes.datasets import actor_from, filter_from, service_for

router = APIRouter()


@router.post("/overview")
async def overview(request: Request, payload: dict):
    """Metrics, key trends, insights, alerts and recommendations."""
    svc = service_for(request, payload)
    return await svc.get_overview(actor_from(payload), filter_from(payload))


@router.post("/metrics")
async def performance_metrics(request: Request, payload: dict):
    svc = service_for(request, payload)
    return await svc.get_performance_metrics(actor_from(payload), filter_from(payload))


@router.post("/geographic")
async def geographic_performance(request: Request, payload: dict):
    svc = service_for(request, payload)
    rows = await svc.get_geographic_performance(
        actor_from(payload), payload.get("entity_type"), filter_from(payload)
    )
    return {"entities": rows}


@router.post("/subjects")
async def subject_performance(request: Request, payload: dict):
    svc = service_for(request, payload)
    return {"subjects": await svc.get_subject_performance(actor_from(payload), filter_from(payload))}


@router.post("/time-series")
async def time_series(request: Request, payload: dict):
    svc = service_for(request, payload)
    series = await svc.get_time_series(
        actor_from(payload), payload.get("granularity"), filter_from(payload)
    )
    return {"series": series}


@router.post("/trends")
async def trend_analysis(request: Request, payload: dict):
    svc = service_for(request, payload)
    return await svc.analyze_trend(
        actor_from(payload),
        payload.get("metric"),
        granularity=payload.get("granularity"),
        periods=payload.get("periods", 12),
        include_prediction=parse_flag(payload.get("include_prediction", False)),
        filt=filter_from(payload),
    )


@router.post("/compare")
async def compare(request: Request, payload: dict):
    svc = service_for(request, payload)
    return await svc.compare_entities(
        actor_from(payload),
        payload.get("entity_ids") or [],
        payload.get("entity_type"),
        payload.get("metrics") or [],
        filter_from(payload),
    )


@router.post("/seasonal")
async def seasonal(request: Request, payload: dict):
    svc = service_for(request, payload)
    return await svc.get_seasonal_analysis(
        actor_from(payload), payload.get("metric", "average_score"), filter_from(payload)
    )


@router.post("/benchmarks")
async def benchmarks(request: Request, payload: dict):
    svc = service_for(request, payload)
    rows = await svc.get_benchmarks(
        actor_from(payload), payload.get("entity_type"), filter_from(payload)
    )
    return {"benchmarks": rows}


@router.post("/dashboard")
async def dashboard(request: Request, payload: dict):
    svc = service_for(request, payload)
    return await svc.get_dashboard(
        actor_from(payload),
        time_period=payload.get("time_period"),
        custom_start=payload.get("custom_start_date"),
        custom_end=payload.get("custom_end_date"),
        filt=filter_from(payload),
    )


@router.post("/realtime")
async def realtime(request: Request, payload: dict):
    svc = service_for(request, payload)
    return await svc.get_realtime_snapshot(actor_from(payload))
