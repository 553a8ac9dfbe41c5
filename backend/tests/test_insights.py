"""
Tests for core/insights.py — insight, alert and recommendation rules plus the overview.
"""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.insights import (
    build_overview,
    generate_alerts,
    generate_dashboard_alerts,
    generate_insights,
    generate_recommendations,
)
from core.records import MetricFilter
from core.scope import build_scope


def _metrics(avg, rate, top=None, low=None):
    return {
        "total_sessions": 10,
        "completed_sessions": int(rate / 10),
        "average_score": avg,
        "completion_rate": rate,
        "improvement_plans_created": 0,
        "active_users": 3,
        "average_session_duration": 40.0,
        "top_performing_indicators": top or [],
        "low_performing_indicators": low or [],
    }


def _trend(metric, trend, pct):
    return {
        "metric": metric,
        "metric_name": metric.replace("_", " ").title(),
        "metric_name_kh": metric,
        "overall_trend": trend,
        "overall_change_percent": pct,
        "current_value": 1.0,
        "previous_value": 1.0,
    }


INDICATOR = {
    "indicator_id": "i1",
    "indicator_name": "Lesson planning",
    "indicator_name_kh": "ការរៀបចំមេរៀន",
    "average_score": 2.8,
    "total_responses": 12,
    "improvement_needed": False,
}


class TestGenerateInsights:

    def test_high_performance_without_completion_concern(self, clock):
        insights = generate_insights(_metrics(2.6, 80.0), [], clock)
        ids = [i["id"] for i in insights]
        assert "high-performance" in ids
        assert "low-completion" not in ids
        high = insights[ids.index("high-performance")]
        assert high["title"] == "High Performance Achievement"
        assert high["title_kh"]
        assert high["created_at"] == clock.now().isoformat()

    def test_low_completion(self, clock):
        insights = generate_insights(_metrics(2.0, 50.0), [], clock)
        assert [i["id"] for i in insights] == ["low-completion"]
        assert insights[0]["actionable"] is True

    def test_trend_insights_and_ordering(self, clock):
        trends = [
            _trend("session_count", "up", 20.0),
            _trend("average_score", "down", -12.0),
        ]
        insights = generate_insights(_metrics(2.2, 75.0, top=[INDICATOR]), trends, clock)
        ids = [i["id"] for i in insights]
        assert ids[0] == "negative-trend-average_score"
        assert "positive-trend-session_count" in ids
        assert "top-indicator" in ids
        impacts = [i["impact"] for i in insights]
        assert impacts == sorted(impacts, key=["high", "medium", "low"].index)

    def test_ids_unique(self, clock):
        trends = [_trend("average_score", "down", -30.0)] * 2
        insights = generate_insights(_metrics(1.0, 30.0), trends, clock)
        ids = [i["id"] for i in insights]
        assert len(ids) == len(set(ids))

    def test_deterministic(self, clock):
        args = (_metrics(2.7, 55.0, top=[INDICATOR], low=[INDICATOR]), [_trend("average_score", "up", 16.0)])
        assert generate_insights(*args, clock) == generate_insights(*args, clock)


class TestGenerateAlerts:

    def test_critical_alerts_first(self, clock):
        alerts = generate_alerts(_metrics(1.2, 30.0), [_trend("completion_rate", "down", -25.0)], clock)
        assert [a["id"] for a in alerts] == [
            "critical-score", "critical-completion", "trend-alert-completion_rate",
        ]
        assert alerts[0]["threshold"] == 1.5
        assert alerts[0]["current_value"] == 1.2

    def test_warnings(self, clock):
        alerts = generate_alerts(_metrics(1.8, 55.0), [], clock)
        assert {a["id"] for a in alerts} == {"low-completion", "warning-score"}
        assert all(a["type"] == "warning" for a in alerts)

    def test_healthy_metrics_raise_nothing(self, clock):
        assert generate_alerts(_metrics(2.6, 80.0), [_trend("average_score", "down", -15.0)], clock) == []


class TestGenerateRecommendations:

    def test_needs_support(self, clock):
        recs = generate_recommendations(_metrics(1.9, 60.0), [_trend("average_score", "down", -11.0)], clock)
        assert [r["id"] for r in recs] == ["improve-completion", "improve-teaching", "address-trends"]
        assert recs[0]["implementation_steps"]
        assert len(recs[0]["implementation_steps"]) == len(recs[0]["implementation_steps_kh"])

    def test_recognition(self, clock):
        recs = generate_recommendations(_metrics(2.8, 90.0), [], clock)
        assert [r["id"] for r in recs] == ["recognize-excellence"]
        assert recs[0]["priority"] == "medium"


class TestDashboardAlerts:

    def test_rules(self, clock):
        trends = [_trend("average_score", "down", -12.0), _trend("session_count", "up", 18.0)]
        alerts = generate_dashboard_alerts(_metrics(1.9, 65.0), trends, clock)
        by_id = {a["id"]: a for a in alerts}
        assert by_id["completion-rate"]["priority"] == "high"
        assert by_id["low-score"]["type"] == "error"
        assert by_id["trend-decline-average_score"]["priority"] == "medium"
        assert by_id["trend-improvement-session_count"]["type"] == "success"
        assert alerts[-1]["priority"] == "low"


class TestBuildOverview:

    def test_overview(self, source, admin, clock):
        result = asyncio.run(build_overview(source, build_scope(admin), MetricFilter(), clock))
        assert result["performance_metrics"]["total_sessions"] == 18
        assert [t["metric"] for t in result["key_trends"]] == [
            "average_score", "completion_rate", "session_count",
        ]
        assert result["generated_at"] == clock.now().isoformat()
        assert isinstance(result["recommendations"], list)

    def test_teacher_overview(self, source, teacher, clock):
        result = asyncio.run(build_overview(source, build_scope(teacher), MetricFilter(), clock))
        assert result["performance_metrics"]["average_score"] == 3.0
        assert "high-performance" in [i["id"] for i in result["insights"]]
