"""
insights.py — Rule-based insight, alert and recommendation generation.

Evaluates performance metrics and trend analyses against a fixed rule
library. Each rule produces a structured, bilingual object with a stable
id, so repeated evaluation of the same inputs yields the same output.

Insights: performance, trend (ranked by impact, top 10).
Alerts: critical, warning, info (ranked by severity).
Recommendations: improvement, intervention, recognition (ranked by priority).
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from core.aggregation import compute_metrics
from core.clock import SystemClock
from core.errors import AccessDeniedError, InvalidArgumentError
from core.narrative import (
    RECOMMENDATION_PLAYBOOKS,
    below_target_score_text,
    completion_below_target_text,
    critical_completion_text,
    critical_score_text,
    declined_by_text,
    declining_trend_text,
    high_performance_text,
    improved_by_text,
    low_average_text,
    low_completion_text,
    positive_trend_text,
    strongest_indicator_text,
    weakest_indicator_text,
)
from core.records import MetricFilter, RecordSource
from core.scope import ScopePredicate
from core.trends import analyze_trend

logger = logging.getLogger(__name__)

KEY_TREND_METRICS = ["average_score", "completion_rate", "session_count"]
KEY_TREND_PERIODS = 6
MAX_INSIGHTS = 10

impact_order = {"high": 0, "medium": 1, "low": 2}
severity_order = {"critical": 0, "warning": 1, "info": 2}
priority_order = {"high": 0, "medium": 1, "low": 2}


def _dedupe(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop items whose id was already seen, keeping the first."""
    seen = set()
    unique = []
    for item in items:
        if item["id"] in seen:
            continue
        seen.add(item["id"])
        unique.append(item)
    return unique


def _declining(trend: Dict[str, Any], threshold: float) -> bool:
    return trend["overall_trend"] == "down" and abs(trend["overall_change_percent"]) > threshold


def _improving(trend: Dict[str, Any], threshold: float) -> bool:
    return trend["overall_trend"] == "up" and trend["overall_change_percent"] > threshold


# ── Insights ────────────────────────────────────────────────────────

def generate_insights(
    metrics: Dict[str, Any], trends: List[Dict[str, Any]], clock=None
) -> List[Dict[str, Any]]:
    clock = clock or SystemClock()
    created_at = clock.now().isoformat()
    avg = metrics["average_score"]
    rate = metrics["completion_rate"]
    insights: List[Dict[str, Any]] = []

    def _add(id_, type_, title, title_kh, text, impact, confidence, related, actionable):
        insights.append({
            "id": id_,
            "type": type_,
            "title": title,
            "title_kh": title_kh,
            "description": text[0],
            "description_kh": text[1],
            "impact": impact,
            "confidence": confidence,
            "related_metrics": related,
            "actionable": actionable,
            "created_at": created_at,
        })

    if avg > 2.5:
        _add("high-performance", "performance",
             "High Performance Achievement", "ការសម្រេចបានការអនុវត្តខ្ពស់",
             high_performance_text(avg), "high", 85, ["average_score"], False)

    if rate < 60:
        _add("low-completion", "performance",
             "Low Completion Rate Concern", "ការព្រួយបារម្ភអត្រាបញ្ចប់ទាប",
             low_completion_text(rate), "high", 90, ["completion_rate"], True)

    for t in trends:
        if _improving(t, 15):
            _add(f"positive-trend-{t['metric']}", "trend",
                 f"Positive {t['metric_name']} Trend", f"ទំនោរវិជ្ជមាន {t['metric_name_kh']}",
                 positive_trend_text(t), "medium", 75, [t["metric"]], False)
        if _declining(t, 10):
            _add(f"negative-trend-{t['metric']}", "trend",
                 f"Declining {t['metric_name']} Trend", f"ទំនោរធ្លាក់ចុះ {t['metric_name_kh']}",
                 declining_trend_text(t), "high", 80, [t["metric"]], True)

    top = metrics.get("top_performing_indicators") or []
    if top:
        _add("top-indicator", "performance",
             "Strongest Teaching Area Identified", "បានកំណត់តំបន់បង្រៀនដ៏រឹងមាំបំផុត",
             strongest_indicator_text(top[0]), "medium", 85, ["indicator_performance"], False)

    low = metrics.get("low_performing_indicators") or []
    if low:
        _add("low-indicator", "performance",
             "Teaching Area Needing Support", "តំបន់បង្រៀនដែលត្រូវការការគាំទ្រ",
             weakest_indicator_text(low[0]), "high", 90, ["indicator_performance"], True)

    insights = _dedupe(insights)
    insights.sort(key=lambda i: impact_order.get(i["impact"], 9))
    return insights[:MAX_INSIGHTS]


# ── Alerts ──────────────────────────────────────────────────────────

def generate_alerts(
    metrics: Dict[str, Any], trends: List[Dict[str, Any]], clock=None
) -> List[Dict[str, Any]]:
    clock = clock or SystemClock()
    created_at = clock.now().isoformat()
    avg = metrics["average_score"]
    rate = metrics["completion_rate"]
    alerts: List[Dict[str, Any]] = []

    def _add(id_, type_, title, title_kh, text, threshold, current):
        alerts.append({
            "id": id_,
            "type": type_,
            "title": title,
            "title_kh": title_kh,
            "message": text[0],
            "message_kh": text[1],
            "threshold": threshold,
            "current_value": current,
            "action_required": True,
            "created_at": created_at,
        })

    if avg < 1.5:
        _add("critical-score", "critical", "Critical Performance Alert",
             "ការជូនដំណឹងការអនុវត្តធ្ងន់ធ្ងរ", critical_score_text(avg), 1.5, avg)

    if rate < 40:
        _add("critical-completion", "critical", "Critical Completion Rate",
             "អត្រាបញ្ចប់ធ្ងន់ធ្ងរ", critical_completion_text(rate), 40, rate)
    elif rate < 60:
        _add("low-completion", "warning", "Low Completion Rate",
             "អត្រាបញ្ចប់ទាប", completion_below_target_text(rate, 60), 60, rate)

    if 1.5 <= avg < 2.0:
        _add("warning-score", "warning", "Low Performance Warning",
             "ការព្រមានការអនុវត្តទាប", below_target_score_text(avg), 2.0, avg)

    for t in trends:
        if _declining(t, 20):
            _add(f"trend-alert-{t['metric']}", "warning", f"Declining {t['metric_name']}",
                 f"{t['metric_name_kh']}កំពុងធ្លាក់ចុះ", declined_by_text(t),
                 -20, t["overall_change_percent"])

    alerts = _dedupe(alerts)
    alerts.sort(key=lambda a: severity_order.get(a["type"], 9))
    return alerts


# ── Recommendations ─────────────────────────────────────────────────

def generate_recommendations(
    metrics: Dict[str, Any], trends: List[Dict[str, Any]], clock=None
) -> List[Dict[str, Any]]:
    clock = clock or SystemClock()
    created_at = clock.now().isoformat()
    avg = metrics["average_score"]
    rate = metrics["completion_rate"]
    chosen = []

    if rate < 70:
        chosen.append(("improve-completion", "high"))
    if avg < 2.0:
        chosen.append(("improve-teaching", "high"))
    if any(_declining(t, 10) for t in trends):
        chosen.append(("address-trends", "high"))
    if avg > 2.5:
        chosen.append(("recognize-excellence", "medium"))

    recommendations = [
        {"id": key, "priority": priority, **RECOMMENDATION_PLAYBOOKS[key], "created_at": created_at}
        for key, priority in chosen
    ]
    recommendations = _dedupe(recommendations)
    recommendations.sort(key=lambda r: priority_order.get(r["priority"], 9))
    return recommendations


# ── Dashboard Alerts ────────────────────────────────────────────────

def generate_dashboard_alerts(
    metrics: Dict[str, Any], trends: List[Dict[str, Any]], clock=None
) -> List[Dict[str, Any]]:
    """Alert cards shown on the dashboard, ranked by priority."""
    clock = clock or SystemClock()
    created_at = clock.now().isoformat()
    avg = metrics["average_score"]
    rate = metrics["completion_rate"]
    alerts: List[Dict[str, Any]] = []

    def _add(id_, type_, title, title_kh, text, priority, action_required=True):
        alerts.append({
            "id": id_,
            "type": type_,
            "title": title,
            "title_kh": title_kh,
            "message": text[0],
            "message_kh": text[1],
            "priority": priority,
            "action_required": action_required,
            "created_at": created_at,
        })

    if rate < 70:
        _add("completion-rate", "warning", "Low Completion Rate", "អត្រាបញ្ចប់ទាប",
             completion_below_target_text(rate, 70), "high")

    for t in trends:
        if _declining(t, 10):
            _add(f"trend-decline-{t['metric']}", "warning", f"Declining {t['metric_name']}",
                 f"{t['metric_name_kh']}កំពុងធ្លាក់ចុះ", declined_by_text(t), "medium")

    if avg < 2.0:
        _add("low-score", "error", "Low Average Score", "ពិន្ទុមធ្យមទាប",
             low_average_text(avg), "high")

    for t in trends:
        if _improving(t, 15):
            _add(f"trend-improvement-{t['metric']}", "success", f"Improving {t['metric_name']}",
                 f"{t['metric_name_kh']}កំពុងប្រសើរឡើង", improved_by_text(t), "low",
                 action_required=False)

    alerts = _dedupe(alerts)
    alerts.sort(key=lambda a: priority_order.get(a["priority"], 9))
    return alerts


# ── Overview ────────────────────────────────────────────────────────

async def _key_trend(source, scope, filt, metric) -> Optional[Dict[str, Any]]:
    try:
        return await analyze_trend(
            source, scope, filt, metric, filt.aggregation_level, KEY_TREND_PERIODS
        )
    except (InvalidArgumentError, AccessDeniedError) as exc:
        logger.warning("Skipping key trend %s: %s", metric, exc)
        return None


async def build_overview(
    source: RecordSource,
    scope: ScopePredicate,
    filt: MetricFilter,
    clock=None,
) -> Dict[str, Any]:
    """Metrics, key trends, insights, alerts and recommendations in one call."""
    clock = clock or SystemClock()
    metrics, *trend_results = await asyncio.gather(
        compute_metrics(source, scope, filt),
        *[_key_trend(source, scope, filt, m) for m in KEY_TREND_METRICS],
    )
    trends = [t for t in trend_results if t is not None]
    return {
        "performance_metrics": metrics,
        "key_trends": trends,
        "insights": generate_insights(metrics, trends, clock),
        "alerts": generate_alerts(metrics, trends, clock),
        "recommendations": generate_recommendations(metrics, trends, clock),
        "generated_at": clock.now().isoformat(),
    }
