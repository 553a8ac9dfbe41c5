"""
dashboard.py — Dashboard composition.

Builds one dashboard payload per request: current vs previous period
metrics, quick-stat cards, recent weekly trends, top performers across
school/cluster/department, alert cards and chart-ready series.
"""

import asyncio
import logging
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from core.aggregation import (
    compute_geographic_performance,
    compute_metrics,
    compute_subject_performance,
    compute_time_series,
)
from core.clock import SystemClock
from core.errors import AccessDeniedError, InvalidArgumentError
from core.insights import generate_dashboard_alerts
from core.records import Granularity, MetricFilter, RecordSource, parse_date
from core.scope import Actor, HierarchyLevel, ScopePredicate
from core.trends import analyze_trend

logger = logging.getLogger(__name__)

RECENT_TREND_METRICS = ["average_score", "completion_rate", "session_count"]
RECENT_TREND_PERIODS = 8
TOP_PERFORMER_TYPES = [HierarchyLevel.SCHOOL, HierarchyLevel.CLUSTER, HierarchyLevel.DEPARTMENT]
TOP_PER_TYPE = 3
MAX_TOP_PERFORMERS = 10
SUBJECT_COLOURS = ["#3B82F6", "#10B981", "#F59E0B", "#EF4444", "#8B5CF6", "#EC4899", "#14B8A6"]


class TimePeriod(str, Enum):
    LAST_7_DAYS = "last_7_days"
    LAST_30_DAYS = "last_30_days"
    LAST_90_DAYS = "last_90_days"
    LAST_YEAR = "last_year"
    CUSTOM = "custom"


TIME_PERIODS = [p.value for p in TimePeriod]
PERIOD_DAYS = {
    TimePeriod.LAST_7_DAYS: 7,
    TimePeriod.LAST_30_DAYS: 30,
    TimePeriod.LAST_90_DAYS: 90,
    TimePeriod.LAST_YEAR: 365,
}


# ── Periods ─────────────────────────────────────────────────────────

def resolve_time_period(
    period: Any,
    clock=None,
    custom_start: Any = None,
    custom_end: Any = None,
) -> Tuple[date, date]:
    """Turn a named period into an inclusive (start, end) date range."""
    clock = clock or SystemClock()
    name = str(period or "").strip().lower()
    if name not in TIME_PERIODS:
        raise InvalidArgumentError("time period", period, TIME_PERIODS)
    today = clock.today()
    tp = TimePeriod(name)
    if tp == TimePeriod.CUSTOM:
        end = parse_date(custom_end, "custom_end_date") or today
        start = parse_date(custom_start, "custom_start_date") or end
        if start > end:
            raise InvalidArgumentError("date range", f"{start} > {end}")
        return start, end
    return today - timedelta(days=PERIOD_DAYS[tp]), today


def previous_period(start: date, end: date) -> Tuple[date, date]:
    """Equal-length window ending the day before `start`."""
    prev_end = start - timedelta(days=1)
    return prev_end - (end - start), prev_end


def trends_direction(changes: Dict[str, float]) -> str:
    """Majority vote across session, score and completion deltas."""
    positive = sum([
        changes["sessions"] > 0,
        changes["average_score"] > 0.1,
        changes["completion_rate"] > 2,
    ])
    negative = sum([
        changes["sessions"] < 0,
        changes["average_score"] < -0.1,
        changes["completion_rate"] < -2,
    ])
    if positive > negative:
        return "up"
    if negative > positive:
        return "down"
    return "stable"


def _period_comparison(current: Dict[str, Any], previous: Dict[str, Any]) -> Dict[str, Any]:
    def _snap(label, m):
        return {
            "period": label,
            "sessions": m["total_sessions"],
            "average_score": m["average_score"],
            "completion_rate": m["completion_rate"],
        }
    return {
        "current": _snap("Current Period", current),
        "previous": _snap("Previous Period", previous),
        "changes": {
            "sessions": current["total_sessions"] - previous["total_sessions"],
            "average_score": round(current["average_score"] - previous["average_score"], 2),
            "completion_rate": round(current["completion_rate"] - previous["completion_rate"], 2),
        },
    }


# ── Quick Stats ─────────────────────────────────────────────────────

def _direction(change: float, band: float) -> str:
    if change > band:
        return "up"
    if change < -band:
        return "down"
    return "stable"


def _pct(change: float, previous: float) -> float:
    return round(change / previous * 100, 2) if previous > 0 else 0.0


def build_quick_stats(metrics: Dict[str, Any], comparison: Dict[str, Any]) -> List[Dict[str, Any]]:
    prev = comparison["previous"]
    ch = comparison["changes"]
    return [
        {
            "label": "Total Sessions", "label_kh": "វគ្គសរុប",
            "value": metrics["total_sessions"], "unit": "sessions",
            "change": ch["sessions"], "change_percent": _pct(ch["sessions"], prev["sessions"]),
            "trend": _direction(ch["sessions"], 0), "icon": "sessions", "color": "#3B82F6",
        },
        {
            "label": "Average Score", "label_kh": "ពិន្ទុមធ្យម",
            "value": metrics["average_score"], "unit": "points",
            "change": ch["average_score"], "change_percent": _pct(ch["average_score"], prev["average_score"]),
            "trend": _direction(ch["average_score"], 0.1), "icon": "score", "color": "#10B981",
        },
        {
            "label": "Completion Rate", "label_kh": "អត្រាបញ្ចប់",
            "value": metrics["completion_rate"], "unit": "%",
            "change": ch["completion_rate"], "change_percent": _pct(ch["completion_rate"], prev["completion_rate"]),
            "trend": _direction(ch["completion_rate"], 2), "icon": "completion", "color": "#F59E0B",
        },
        {
            # user counts are not date-filtered, so there is no previous value to compare
            "label": "Active Users", "label_kh": "អ្នកប្រើប្រាស់សកម្ម",
            "value": metrics["active_users"], "unit": "users",
            "change": 0, "change_percent": 0.0,
            "trend": "stable", "icon": "users", "color": "#8B5CF6",
        },
    ]


# ── Top Performers ──────────────────────────────────────────────────

async def _performers_for(source, scope, filt, actor, level) -> List[Dict[str, Any]]:
    try:
        rows = await compute_geographic_performance(source, scope, filt, level, actor=actor)
    except AccessDeniedError as exc:
        logger.warning("Omitting %s from top performers for %s: %s", level.value, actor.id, exc)
        return []
    return [
        {
            "id": r["entity_id"],
            "name": r["entity_name"],
            "name_kh": r["entity_name_kh"],
            "type": level.value,
            "score": r["average_score"],
            "improvement": r["improvement_rate"],
            "rank": r["ranking"],
        }
        for r in rows[:TOP_PER_TYPE]
    ]


async def top_performers(
    source: RecordSource, scope: ScopePredicate, filt: MetricFilter, actor: Actor
) -> List[Dict[str, Any]]:
    per_type = await asyncio.gather(
        *[_performers_for(source, scope, filt, actor, lvl) for lvl in TOP_PERFORMER_TYPES]
    )
    merged = [p for group in per_type for p in group]
    merged.sort(key=lambda p: p["score"], reverse=True)
    merged = merged[:MAX_TOP_PERFORMERS]
    for i, p in enumerate(merged, 1):
        p["rank"] = i
    return merged


# ── Chart Data ──────────────────────────────────────────────────────

def build_chart_data(
    time_series: List[Dict[str, Any]], subjects: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    labels = [d["period"] for d in time_series]
    charts = [
        {
            "type": "line",
            "title": "Sessions Over Time",
            "title_kh": "វគ្គតាមពេលវេលា",
            "labels": labels,
            "datasets": [
                {
                    "label": "Total Sessions", "label_kh": "វគ្គសរុប",
                    "data": [d["total_sessions"] for d in time_series],
                    "border_color": "#3B82F6", "background_color": "rgba(59, 130, 246, 0.1)",
                    "fill": True,
                },
                {
                    "label": "Completed Sessions", "label_kh": "វគ្គបញ្ចប់",
                    "data": [d["completed_sessions"] for d in time_series],
                    "border_color": "#10B981", "background_color": "rgba(16, 185, 129, 0.1)",
                    "fill": True,
                },
            ],
        },
        {
            "type": "area",
            "title": "Average Score Trend",
            "title_kh": "ទំនោរពិន្ទុមធ្យម",
            "labels": labels,
            "datasets": [
                {
                    "label": "Average Score", "label_kh": "ពិន្ទុមធ្យម",
                    "data": [d["average_score"] for d in time_series],
                    "border_color": "#F59E0B", "background_color": "rgba(245, 158, 11, 0.2)",
                    "fill": True,
                },
            ],
        },
    ]
    if subjects:
        charts.append({
            "type": "bar",
            "title": "Subject Performance",
            "title_kh": "ការអនុវត្តតាមមុខវិជ្ជា",
            "labels": [s["subject"] for s in subjects],
            "datasets": [
                {
                    "label": "Average Score", "label_kh": "ពិន្ទុមធ្យម",
                    "data": [s["average_score"] for s in subjects],
                    "background_color": SUBJECT_COLOURS,
                },
            ],
        })
    return charts


# ── Dashboard ───────────────────────────────────────────────────────

async def compose_dashboard(
    source: RecordSource,
    actor: Actor,
    scope: ScopePredicate,
    clock=None,
    time_period: Any = TimePeriod.LAST_30_DAYS.value,
    custom_start: Any = None,
    custom_end: Any = None,
    base_filter: Optional[MetricFilter] = None,
) -> Dict[str, Any]:
    clock = clock or SystemClock()
    start, end = resolve_time_period(time_period, clock, custom_start, custom_end)
    prev_start, prev_end = previous_period(start, end)
    base = base_filter or MetricFilter()
    current_filter = base.with_dates(start, end)
    previous_filter = base.with_dates(prev_start, prev_end)

    current, previous, recent_trends, performers, time_series, subjects = await asyncio.gather(
        compute_metrics(source, scope, current_filter),
        compute_metrics(source, scope, previous_filter),
        asyncio.gather(*[
            analyze_trend(source, scope, current_filter, m, Granularity.WEEKLY, RECENT_TREND_PERIODS)
            for m in RECENT_TREND_METRICS
        ]),
        top_performers(source, scope, current_filter, actor),
        compute_time_series(source, scope, current_filter, Granularity.MONTHLY),
        compute_subject_performance(source, scope, current_filter),
    )
    recent_trends = list(recent_trends)

    comparison = _period_comparison(current, previous)
    overview = {
        "total_sessions": current["total_sessions"],
        "total_users": current["active_users"],
        "average_score": current["average_score"],
        "completion_rate": current["completion_rate"],
        "improvement_plans_active": current["improvement_plans_created"],
        "trends_direction": trends_direction(comparison["changes"]),
        "period_comparison": comparison,
    }

    return {
        "time_period": str(time_period),
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "overview": overview,
        "performance_metrics": current,
        "recent_trends": recent_trends,
        "top_performers": performers,
        "alerts": generate_dashboard_alerts(current, recent_trends, clock),
        "quick_stats": build_quick_stats(current, comparison),
        "chart_data": build_chart_data(time_series, subjects),
        "last_updated": clock.now().isoformat(),
    }


async def realtime_snapshot(
    source: RecordSource, scope: ScopePredicate, clock=None
) -> Dict[str, Any]:
    """Today-only counts for live tiles."""
    clock = clock or SystemClock()
    today = clock.today()
    metrics = await compute_metrics(source, scope, MetricFilter(start_date=today, end_date=today))
    return {
        "timestamp": clock.now().isoformat(),
        "today_sessions": metrics["total_sessions"],
        "today_completions": metrics["completed_sessions"],
        "active_users": metrics["active_users"],
        "average_score": metrics["average_score"],
    }
