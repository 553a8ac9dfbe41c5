"""
comparison.py — Cross-entity comparison, ranking and benchmarking.

compare_entities() looks at the latest monthly value of each requested
metric per entity. compute_benchmarks() works on geographic performance
rows and measures each entity against the median of its peers.
"""

import asyncio
import logging
from typing import Any, Dict, List, Sequence

import numpy as np
from scipy import stats as sp_stats

from core.errors import InvalidArgumentError
from core.records import Granularity, MetricFilter, RecordSource, entity_names, safe_float
from core.scope import ScopePredicate, parse_entity_type
from core.trends import build_series, metric_names, parse_metric, TREND_METRICS

logger = logging.getLogger(__name__)

LEADER_FACTOR = 1.2
LAGGARD_FACTOR = 0.8

BENCHMARK_METRICS = ["average_score", "completion_rate", "improvement_rate"]
BENCHMARK_BAND = 0.05
MAX_SCORE = 3.0


def _descending_ranks(values: Sequence[float]) -> List[int]:
    """1 = highest. Ties keep input order."""
    return [int(r) for r in sp_stats.rankdata(-np.asarray(values, dtype=float), method="ordinal")]


# ── Entity comparison ───────────────────────────────────────────────

async def _latest_value(source, scope, filt, metric) -> float:
    series = await build_series(source, scope, filt, metric, Granularity.MONTHLY, 1)
    return series[-1]["value"] if series else 0.0


def _comparison_insights(
    entities: List[Dict[str, Any]], stats: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    insights = []
    for stat in stats:
        metric = stat["name"]
        mean = stat["average"]
        ordered = sorted(entities, key=lambda e: e["metrics"][metric], reverse=True)
        for e in ordered:
            value = e["metrics"][metric]
            if value > mean * LEADER_FACTOR:
                insights.append({
                    "type": "leader",
                    "entity_id": e["id"],
                    "entity_name": e["name"],
                    "metric": metric,
                    "value": value,
                    "message": f"{e['name']} leads in {stat['metric_name']} with {value:.2f}",
                    "message_kh": f"{e['name_kh']} នាំមុខក្នុង {stat['metric_name_kh']} ជាមួយ {value:.2f}",
                })
        for e in reversed(ordered):
            value = e["metrics"][metric]
            if value < mean * LAGGARD_FACTOR:
                insights.append({
                    "type": "laggard",
                    "entity_id": e["id"],
                    "entity_name": e["name"],
                    "metric": metric,
                    "value": value,
                    "message": f"{e['name']} needs improvement in {stat['metric_name']}",
                    "message_kh": f"{e['name_kh']} ត្រូវការកែលម្អក្នុង {stat['metric_name_kh']}",
                })
    return insights


def rank_entities(entities: List[Dict[str, Any]], metrics: List[str]) -> List[Dict[str, Any]]:
    """Overall score = mean over metrics of (N - rank + 1); higher is better."""
    n = len(entities)
    per_metric = {
        m: _descending_ranks([e["metrics"][m] for e in entities]) for m in metrics
    }
    rankings = []
    for i, e in enumerate(entities):
        metric_ranks = {m: per_metric[m][i] for m in metrics}
        score = np.mean([n - r + 1 for r in metric_ranks.values()]) if metrics else 0.0
        rankings.append({
            "entity_id": e["id"],
            "entity_name": e["name"],
            "entity_name_kh": e["name_kh"],
            "overall_score": safe_float(score),
            "rank": 0,
            "metric_rankings": metric_ranks,
        })
    rankings.sort(key=lambda r: r["overall_score"], reverse=True)
    for i, r in enumerate(rankings, 1):
        r["rank"] = i
    return rankings


def summarize_comparison(
    entities: List[Dict[str, Any]], metrics: List[str]
) -> Dict[str, Any]:
    """Per-metric statistics, leader/laggard insights and rankings."""
    stats = []
    for m in metrics:
        values = np.array([e["metrics"][m] for e in entities], dtype=float)
        stats.append({
            "name": m,
            **metric_names(parse_metric(m)),
            "best": safe_float(values.max()),
            "worst": safe_float(values.min()),
            "average": safe_float(values.mean()),
            "standard_deviation": safe_float(values.std()),
        })
    return {
        "entities": entities,
        "metrics": stats,
        "insights": _comparison_insights(entities, stats),
        "rankings": rank_entities(entities, metrics),
    }


async def compare_entities(
    source: RecordSource,
    scope: ScopePredicate,
    filt: MetricFilter,
    entity_ids: Sequence[Any],
    entity_type: Any,
    metrics: Sequence[Any],
) -> Dict[str, Any]:
    level = parse_entity_type(entity_type)
    metric_keys = [parse_metric(m).value for m in (metrics or [])]
    if not metric_keys:
        raise InvalidArgumentError("metrics", metrics, TREND_METRICS)
    ids = list(dict.fromkeys(str(e) for e in (entity_ids or []) if str(e).strip()))
    if not ids:
        raise InvalidArgumentError("entity ids", entity_ids)

    names = await entity_names(source, level)

    async def _entity(entity_id: str) -> Dict[str, Any]:
        efilt = filt.with_entity(level, entity_id)
        values = await asyncio.gather(
            *[_latest_value(source, scope, efilt, m) for m in metric_keys]
        )
        fallback = f"{level.value}-{entity_id}"
        name, name_kh = names.get(entity_id, (fallback, fallback))
        return {
            "id": entity_id,
            "name": name,
            "name_kh": name_kh,
            "type": level.value,
            "metrics": dict(zip(metric_keys, values)),
        }

    entities = list(await asyncio.gather(*[_entity(e) for e in ids]))
    return summarize_comparison(entities, metric_keys)


# ── Benchmarks ──────────────────────────────────────────────────────

def _normalized(metric: str, value: float) -> float:
    if metric == "average_score":
        return min(100.0, max(0.0, value / MAX_SCORE * 100))
    return min(100.0, max(0.0, value))


def compute_benchmarks(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Compare each geographic row to the peer median of each metric."""
    if not rows:
        return []
    columns = {m: np.array([float(r[m]) for r in rows]) for m in BENCHMARK_METRICS}
    medians = {m: float(np.median(v)) for m, v in columns.items()}

    results = []
    for i, row in enumerate(rows):
        metrics = {}
        for m in BENCHMARK_METRICS:
            value = float(columns[m][i])
            benchmark = medians[m]
            if value > benchmark * (1 + BENCHMARK_BAND):
                status = "above"
            elif value < benchmark * (1 - BENCHMARK_BAND):
                status = "below"
            else:
                status = "at"
            metrics[m] = {
                "value": safe_float(value),
                "benchmark": safe_float(benchmark),
                "variance_percent": safe_float((value - benchmark) / benchmark * 100) if benchmark else 0.0,
                "status": status,
                "percentile": safe_float(sp_stats.percentileofscore(columns[m], value, kind="weak")),
            }
        results.append({
            "entity_id": row["entity_id"],
            "entity_name": row["entity_name"],
            "entity_name_kh": row["entity_name_kh"],
            "entity_type": row["entity_type"],
            "metrics": metrics,
            "overall_score": safe_float(np.mean([_normalized(m, metrics[m]["value"]) for m in BENCHMARK_METRICS])),
            "ranking": 0,
        })

    results.sort(key=lambda r: r["overall_score"], reverse=True)
    for i, r in enumerate(results, 1):
        r["ranking"] = i
    return results
