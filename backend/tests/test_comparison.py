"""
Tests for core/comparison.py — entity comparison, rankings and benchmarks.
"""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.aggregation import compute_geographic_performance
from core.comparison import compare_entities, compute_benchmarks, rank_entities, summarize_comparison
from core.errors import InvalidArgumentError
from core.records import MetricFilter
from core.scope import build_scope


def _entity(id_, **metrics):
    return {"id": id_, "name": id_.upper(), "name_kh": id_.upper(), "type": "school", "metrics": metrics}


class TestCompareEntities:

    def test_three_schools(self, source, admin):
        result = asyncio.run(compare_entities(
            source, build_scope(admin), MetricFilter(), ["s1", "s2", "s3"], "school", ["average_score"]
        ))
        stat = result["metrics"][0]
        assert stat["average"] == 2.0
        assert stat["best"] == 3.0
        assert stat["worst"] == 1.0

        leaders = [i for i in result["insights"] if i["type"] == "leader"]
        laggards = [i for i in result["insights"] if i["type"] == "laggard"]
        assert [(i["entity_id"], i["value"]) for i in leaders] == [("s1", 3.0)]
        assert [(i["entity_id"], i["value"]) for i in laggards] == [("s3", 1.0)]

        ranks = {r["entity_id"]: r["rank"] for r in result["rankings"]}
        assert ranks == {"s1": 1, "s2": 2, "s3": 3}

    def test_entity_names_resolved(self, source, admin):
        result = asyncio.run(compare_entities(
            source, build_scope(admin), MetricFilter(), ["s1"], "school", ["session_count"]
        ))
        assert result["entities"][0]["name"] == "Riverside Primary"
        assert result["entities"][0]["metrics"]["session_count"] == 2.0

    def test_out_of_scope_entity_reads_zero(self, source, director):
        result = asyncio.run(compare_entities(
            source, build_scope(director), MetricFilter(), ["s1", "s3"], "school", ["average_score"]
        ))
        values = {e["id"]: e["metrics"]["average_score"] for e in result["entities"]}
        assert values == {"s1": 3.0, "s3": 0.0}

    def test_requires_metrics(self, source, admin):
        with pytest.raises(InvalidArgumentError):
            asyncio.run(compare_entities(source, build_scope(admin), MetricFilter(), ["s1"], "school", []))

    def test_requires_entities(self, source, admin):
        with pytest.raises(InvalidArgumentError):
            asyncio.run(compare_entities(
                source, build_scope(admin), MetricFilter(), [], "school", ["average_score"]
            ))

    def test_unknown_metric(self, source, admin):
        with pytest.raises(InvalidArgumentError):
            asyncio.run(compare_entities(
                source, build_scope(admin), MetricFilter(), ["s1"], "school", ["vibes"]
            ))


class TestRankings:

    def test_overall_score_averages_metric_ranks(self):
        entities = [
            _entity("a", average_score=3.0, completion_rate=50.0),
            _entity("b", average_score=2.0, completion_rate=90.0),
            _entity("c", average_score=1.0, completion_rate=10.0),
        ]
        rankings = rank_entities(entities, ["average_score", "completion_rate"])
        by_id = {r["entity_id"]: r for r in rankings}
        assert by_id["a"]["metric_rankings"] == {"average_score": 1, "completion_rate": 2}
        assert by_id["a"]["overall_score"] == 2.5
        assert by_id["b"]["overall_score"] == 2.5
        assert by_id["c"]["rank"] == 3

    def test_ties_keep_input_order(self):
        entities = [_entity("a", average_score=2.0), _entity("b", average_score=2.0)]
        rankings = rank_entities(entities, ["average_score"])
        assert [r["entity_id"] for r in rankings] == ["a", "b"]
        assert [r["rank"] for r in rankings] == [1, 2]

    def test_no_flags_when_values_equal(self):
        entities = [_entity("a", average_score=2.0), _entity("b", average_score=2.0)]
        assert summarize_comparison(entities, ["average_score"])["insights"] == []


class TestBenchmarks:

    def test_against_median(self, source, admin):
        rows = asyncio.run(compute_geographic_performance(
            source, build_scope(admin), MetricFilter(), "school"
        ))
        bench = compute_benchmarks(rows)
        by_id = {b["entity_id"]: b for b in bench}
        score = by_id["s1"]["metrics"]["average_score"]
        assert score["benchmark"] == 2.0
        assert score["variance_percent"] == 50.0
        assert score["status"] == "above"
        assert score["percentile"] == 100.0
        assert by_id["s2"]["metrics"]["average_score"]["status"] == "at"
        assert by_id["s3"]["metrics"]["average_score"]["status"] == "below"
        assert [b["ranking"] for b in bench] == [1, 2, 3]

    def test_empty(self):
        assert compute_benchmarks([]) == []
