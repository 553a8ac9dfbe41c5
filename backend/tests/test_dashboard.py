"""
Tests for core/dashboard.py — period resolution, top performers and the composed dashboard.
"""

import asyncio
import os
import sys
from datetime import date

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.dashboard import (
    compose_dashboard,
    previous_period,
    realtime_snapshot,
    resolve_time_period,
    top_performers,
    trends_direction,
)
from core.errors import InvalidArgumentError
from core.records import MetricFilter
from core.scope import build_scope


class TestPeriods:

    def test_named_periods(self, clock):
        assert resolve_time_period("last_7_days", clock) == (date(2024, 3, 24), date(2024, 3, 31))
        assert resolve_time_period("last_30_days", clock) == (date(2024, 3, 1), date(2024, 3, 31))
        assert resolve_time_period("last_year", clock)[0] == date(2023, 4, 1)

    def test_custom_period(self, clock):
        assert resolve_time_period("custom", clock, "2024-01-01", "2024-01-31") == (
            date(2024, 1, 1), date(2024, 1, 31),
        )

    def test_custom_start_defaults_to_end(self, clock):
        assert resolve_time_period("custom", clock, None, "2024-02-10") == (
            date(2024, 2, 10), date(2024, 2, 10),
        )

    def test_unknown_period(self, clock):
        with pytest.raises(InvalidArgumentError) as exc:
            resolve_time_period("fortnight", clock)
        assert "last_7_days" in str(exc.value)

    def test_previous_period_same_length(self):
        start, end = date(2024, 3, 1), date(2024, 3, 31)
        assert previous_period(start, end) == (date(2024, 1, 30), date(2024, 2, 29))

    def test_trends_direction_majority(self):
        assert trends_direction({"sessions": 3, "average_score": 0.2, "completion_rate": -5}) == "up"
        assert trends_direction({"sessions": -1, "average_score": -0.2, "completion_rate": 0}) == "down"
        assert trends_direction({"sessions": 0, "average_score": 0.05, "completion_rate": 1}) == "stable"


class TestTopPerformers:

    def test_merged_across_levels(self, source, admin):
        performers = asyncio.run(top_performers(source, build_scope(admin), MetricFilter(), admin))
        assert [(p["type"], p["id"]) for p in performers[:3]] == [
            ("school", "s1"), ("cluster", "c1"), ("department", "d1"),
        ]
        assert [p["rank"] for p in performers] == list(range(1, len(performers) + 1))
        assert len(performers) == 8

    def test_director_only_sees_school_level(self, source, director):
        performers = asyncio.run(top_performers(source, build_scope(director), MetricFilter(), director))
        assert [(p["type"], p["id"]) for p in performers] == [("school", "s1")]

    def test_teacher_gets_none(self, source, teacher):
        assert asyncio.run(top_performers(source, build_scope(teacher), MetricFilter(), teacher)) == []


class TestComposeDashboard:

    def test_dashboard(self, source, admin, clock):
        dash = asyncio.run(compose_dashboard(source, admin, build_scope(admin), clock))
        assert dash["start_date"] == "2024-03-01"
        assert dash["end_date"] == "2024-03-31"
        overview = dash["overview"]
        assert overview["total_sessions"] == 6
        assert overview["period_comparison"]["previous"]["sessions"] == 6
        assert overview["period_comparison"]["changes"]["sessions"] == 0
        assert overview["trends_direction"] == "stable"

        labels = [s["label"] for s in dash["quick_stats"]]
        assert labels == ["Total Sessions", "Average Score", "Completion Rate", "Active Users"]
        assert [s["color"] for s in dash["quick_stats"]] == ["#3B82F6", "#10B981", "#F59E0B", "#8B5CF6"]

        assert [t["metric"] for t in dash["recent_trends"]] == [
            "average_score", "completion_rate", "session_count",
        ]
        assert all(t["granularity"] == "weekly" for t in dash["recent_trends"])
        assert dash["top_performers"][0]["id"] == "s1"
        assert [c["title"] for c in dash["chart_data"]] == [
            "Sessions Over Time", "Average Score Trend", "Subject Performance",
        ]
        assert dash["last_updated"] == clock.now().isoformat()

    def test_dashboard_scoped(self, source, director, clock):
        dash = asyncio.run(compose_dashboard(source, director, build_scope(director), clock, "last_90_days"))
        assert dash["overview"]["total_sessions"] == 6
        assert dash["performance_metrics"]["average_score"] == 3.0

    def test_bad_period(self, source, admin, clock):
        with pytest.raises(InvalidArgumentError):
            asyncio.run(compose_dashboard(source, admin, build_scope(admin), clock, "yesterday"))


class TestRealtime:

    def test_only_today(self, source, admin, clock):
        snap = asyncio.run(realtime_snapshot(source, build_scope(admin), clock))
        assert snap["today_sessions"] == 0
        assert snap["active_users"] == 4
        assert snap["timestamp"] == clock.now().isoformat()
