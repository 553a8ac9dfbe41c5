"""
trends.py — Time-series construction, trend classification and forecasting.

A series is a list of {"period", "date", "value"} points ordered by
period start. analyze_series() is pure; build_series() reads scoped
records. Forecasts are a least-squares line over the last six points,
good enough for a dashboard hint and nothing more.
"""

import logging
from datetime import date
from enum import Enum
from typing import Any, Dict, List

import numpy as np
import pandas as pd

from core.errors import InvalidArgumentError
from core.periods import next_period_label, period_label, period_start, to_periods
from core.records import (
    Granularity,
    MetricFilter,
    RecordSource,
    SessionStatus,
    parse_granularity,
    safe_float,
    scoped_plans,
    scoped_responses,
    scoped_sessions,
)
from core.scope import ScopePredicate

logger = logging.getLogger(__name__)

MAX_PERIODS = 100
CHANGE_THRESHOLD = 2.0          # % change that counts as up/down
SIGNIFICANT_CHANGE = 10.0       # % change that yields an insight
HIGH_SEVERITY_CHANGE = 25.0
SLOPE_DEAD_BAND = 0.1
REGRESSION_WINDOW = 6
SEASONAL_PERIODS = 24


class TrendMetric(str, Enum):
    AVERAGE_SCORE = "average_score"
    COMPLETION_RATE = "completion_rate"
    SESSION_COUNT = "session_count"
    IMPROVEMENT_RATE = "improvement_rate"


TREND_METRICS = [m.value for m in TrendMetric]

METRIC_NAMES = {
    TrendMetric.AVERAGE_SCORE: ("Average Score", "ពិន្ទុមធ្យម", "points"),
    TrendMetric.COMPLETION_RATE: ("Completion Rate", "អត្រាបញ្ចប់", "%"),
    TrendMetric.SESSION_COUNT: ("Session Count", "ចំនួនវគ្គ", "sessions"),
    TrendMetric.IMPROVEMENT_RATE: ("Improvement Rate", "អត្រាកែលម្អ", "%"),
}

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
MONTH_NAMES_KH = [
    "មករា", "កុម្ភៈ", "មីនា", "មេសា", "ឧសភា", "មិថុនា",
    "កក្កដា", "សីហា", "កញ្ញា", "តុលា", "វិច្ឆិកា", "ធ្នូ",
]


# ── Helpers ─────────────────────────────────────────────────────────

def parse_metric(value: Any) -> TrendMetric:
    if isinstance(value, TrendMetric):
        return value
    name = str(value or "").strip().lower()
    if name not in TREND_METRICS:
        raise InvalidArgumentError("metric", value, TREND_METRICS)
    return TrendMetric(name)


def parse_periods(value: Any) -> int:
    try:
        periods = int(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError("periods", value, [f"1..{MAX_PERIODS}"])
    if not 1 <= periods <= MAX_PERIODS:
        raise InvalidArgumentError("periods", value, [f"1..{MAX_PERIODS}"])
    return periods


def metric_names(metric: TrendMetric) -> Dict[str, str]:
    name, name_kh, unit = METRIC_NAMES[metric]
    return {"metric_name": name, "metric_name_kh": name_kh, "unit": unit}


def classify_change(change_percent: float) -> str:
    if change_percent > CHANGE_THRESHOLD:
        return "up"
    if change_percent < -CHANGE_THRESHOLD:
        return "down"
    return "stable"


def percent_change(current: float, previous: float) -> float:
    return (current - previous) / previous * 100 if previous else 0.0


# ── Series construction ─────────────────────────────────────────────

async def build_series(
    source: RecordSource,
    scope: ScopePredicate,
    filt: MetricFilter,
    metric: Any,
    granularity: Any = Granularity.MONTHLY,
    periods: Any = 12,
) -> List[Dict[str, Any]]:
    """Most recent `periods` buckets of one metric, oldest first."""
    metric = parse_metric(metric)
    granularity = parse_granularity(granularity)
    periods = parse_periods(periods)

    sessions = await scoped_sessions(source, scope, filt)
    sessions = sessions[sessions["date_observed"].notna()]
    if sessions.empty:
        return []
    sessions = sessions.assign(period=to_periods(sessions["date_observed"], granularity))
    session_counts = sessions.groupby("period").size()

    if metric == TrendMetric.AVERAGE_SCORE:
        responses = await scoped_responses(source, sessions)
        scores = responses[responses["score"].notna()].merge(
            sessions[["id", "period"]].rename(columns={"id": "session_id"}),
            on="session_id", how="inner",
        )
        values = scores.groupby("period")["score"].mean() if not scores.empty else pd.Series(dtype=float)
    elif metric == TrendMetric.SESSION_COUNT:
        values = session_counts.astype(float)
    elif metric == TrendMetric.COMPLETION_RATE:
        completed = sessions["status"] == SessionStatus.COMPLETED.value
        values = completed.groupby(sessions["period"]).sum() / session_counts * 100
    else:
        plans = await scoped_plans(source, sessions)
        owned = plans.merge(
            sessions[["id", "period"]].rename(columns={"id": "session_id"}),
            on="session_id", how="inner",
        )
        plan_counts = owned.groupby("period").size() if not owned.empty else pd.Series(dtype=float)
        values = plan_counts.reindex(session_counts.index, fill_value=0) / session_counts * 100

    values = values.sort_index().tail(periods)
    return [
        {
            "period": period_label(p, granularity),
            "date": period_start(p).isoformat(),
            "value": safe_float(v),
        }
        for p, v in values.items()
    ]


# ── Trend analysis ──────────────────────────────────────────────────

def _annotate_points(series: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    points = []
    previous = None
    for point in series:
        value = float(point["value"])
        if previous is None:
            change, change_pct = 0.0, 0.0
        else:
            change = value - previous
            change_pct = percent_change(value, previous)
        points.append({
            **point,
            "change": safe_float(change),
            "change_percent": safe_float(change_pct),
            "trend": classify_change(safe_float(change_pct)),
        })
        previous = value
    return points


def _trend_insights(points: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    insights = []
    if len(points) < 2:
        return insights

    for p in points:
        pct = p["change_percent"]
        if abs(pct) <= SIGNIFICANT_CHANGE:
            continue
        kind = "improvement" if pct > 0 else "decline"
        verb_kh = "ប្រសើរឡើង" if kind == "improvement" else "ធ្លាក់ចុះ"
        insights.append({
            "type": kind,
            "severity": "high" if abs(pct) > HIGH_SEVERITY_CHANGE else "medium",
            "message": f"Significant {kind} of {abs(pct):.1f}% in {p['period']}",
            "message_kh": f"ការ{verb_kh}យ៉ាងខ្លាំង {abs(pct):.1f}% ក្នុង {p['period']}",
            "period": p["period"],
            "value": p["value"],
        })

    recent = [p["trend"] for p in points[-3:]]
    if len(recent) == 3 and len(set(recent)) == 1 and recent[0] != "stable":
        kind = "improvement" if recent[0] == "up" else "decline"
        verb_kh = "ប្រសើរឡើង" if kind == "improvement" else "ធ្លាក់ចុះ"
        insights.append({
            "type": kind,
            "severity": "medium",
            "message": f"Consistent {kind} trend over recent periods",
            "message_kh": f"ទំនោរ{verb_kh}ជាប់ៗគ្នាក្នុងរយៈពេលថ្មីៗ",
            "period": None,
            "value": None,
        })
    return insights


def predict(series: List[Dict[str, Any]], granularity: Any = Granularity.MONTHLY) -> Dict[str, Any]:
    """Least-squares forecast of the next period from the last ≤6 points."""
    granularity = parse_granularity(granularity)
    if len(series) < 3:
        return {"next_period": "N/A", "predicted_value": 0.0, "confidence": 0.0, "trend": "stable"}

    recent = series[-REGRESSION_WINDOW:]
    n = len(recent)
    x = np.arange(n, dtype=float)
    y = np.array([float(p["value"]) for p in recent])

    sum_x, sum_y = x.sum(), y.sum()
    sum_xy, sum_xx = (x * y).sum(), (x * x).sum()
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x ** 2)
    intercept = (sum_y - slope * sum_x) / n

    predicted = max(0.0, slope * n + intercept)
    ss_tot = ((y - y.mean()) ** 2).sum()
    ss_res = ((y - (slope * x + intercept)) ** 2).sum()
    r_squared = 1 - ss_res / ss_tot if ss_tot else 0.0

    if slope > SLOPE_DEAD_BAND:
        direction = "up"
    elif slope < -SLOPE_DEAD_BAND:
        direction = "down"
    else:
        direction = "stable"

    last_start = date.fromisoformat(recent[-1]["date"])
    return {
        "next_period": next_period_label(last_start, granularity),
        "predicted_value": safe_float(predicted),
        "confidence": safe_float(max(0.0, min(100.0, r_squared * 100))),
        "trend": direction,
    }


def analyze_series(
    metric: Any,
    series: List[Dict[str, Any]],
    granularity: Any = Granularity.MONTHLY,
    include_prediction: bool = False,
) -> Dict[str, Any]:
    """Classify a series point by point and overall; optionally forecast."""
    metric = parse_metric(metric)
    granularity = parse_granularity(granularity)
    points = _annotate_points(series)

    current = float(points[-1]["value"]) if points else 0.0
    previous = float(points[-2]["value"]) if len(points) > 1 else 0.0
    overall_pct = safe_float(percent_change(current, previous))

    return {
        "metric": metric.value,
        **metric_names(metric),
        "granularity": granularity.value,
        "current_value": safe_float(current),
        "previous_value": safe_float(previous),
        "overall_change": safe_float(current - previous),
        "overall_change_percent": overall_pct,
        "overall_trend": classify_change(overall_pct),
        "data": points,
        "prediction": predict(points, granularity) if include_prediction else None,
        "insights": _trend_insights(points),
    }


async def analyze_trend(
    source: RecordSource,
    scope: ScopePredicate,
    filt: MetricFilter,
    metric: Any,
    granularity: Any = Granularity.MONTHLY,
    periods: Any = 12,
    include_prediction: bool = False,
) -> Dict[str, Any]:
    series = await build_series(source, scope, filt, metric, granularity, periods)
    return analyze_series(metric, series, granularity, include_prediction)


# ── Seasonal analysis ───────────────────────────────────────────────

def seasonal_from_series(metric: Any, series: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Group a monthly series by calendar month regardless of year."""
    metric = parse_metric(metric)
    by_month: Dict[int, List[float]] = {}
    for point in series:
        month = date.fromisoformat(point["date"]).month
        by_month.setdefault(month, []).append(float(point["value"]))

    seasonal = []
    for month in sorted(by_month):
        values = np.array(by_month[month])
        seasonal.append({
            "month": month,
            "month_name": MONTH_NAMES[month - 1],
            "month_name_kh": MONTH_NAMES_KH[month - 1],
            "average": safe_float(values.mean()),
            "variance": safe_float(values.std()),
            "data_points": int(len(values)),
        })

    insights = []
    if seasonal:
        ranked = sorted(seasonal, key=lambda s: s["average"], reverse=True)
        peak, low = ranked[0], ranked[-1]
        insights.append({
            "type": "seasonal",
            "message": f"Peak performance in {peak['month_name']} ({peak['average']:.2f})",
            "message_kh": f"ការអនុវត្តកំពូលក្នុង {peak['month_name_kh']} ({peak['average']:.2f})",
            "month": peak["month"],
            "value": peak["average"],
        })
        insights.append({
            "type": "seasonal",
            "message": f"Lowest performance in {low['month_name']} ({low['average']:.2f})",
            "message_kh": f"ការអនុវត្តទាបបំផុតក្នុង {low['month_name_kh']} ({low['average']:.2f})",
            "month": low["month"],
            "value": low["average"],
        })

    return {
        "metric": metric.value,
        **metric_names(metric),
        "seasonal_data": seasonal,
        "insights": insights,
    }


async def seasonal_analysis(
    source: RecordSource, scope: ScopePredicate, filt: MetricFilter, metric: Any
) -> Dict[str, Any]:
    series = await build_series(
        source, scope, filt, metric, Granularity.MONTHLY, SEASONAL_PERIODS
    )
    return seasonal_from_series(metric, series)
