"""
aggregation.py — Scoped metric aggregation over observation records.

Computes:
- Performance metrics (session counts, completion rate, average
  indicator score, plans, active users, session duration)
- Top / bottom indicators by average score
- Geographic performance per zone/province/department/cluster/school
- Subject performance with per-grade breakdown
- Multi-metric time series per period
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import pandas as pd

from core.periods import period_label, period_start, to_periods
from core.records import (
    Granularity,
    MetricFilter,
    RecordSource,
    SessionStatus,
    entity_names,
    parse_granularity,
    safe_float,
    scoped_plans,
    scoped_responses,
    scoped_sessions,
    scoped_users,
)
from core.scope import Actor, ScopePredicate, parse_entity_type, require_visible

logger = logging.getLogger(__name__)

INDICATOR_LIMIT = 5
IMPROVEMENT_THRESHOLD = 2.0

SUBJECT_NAMES_KH = {
    "Math": "គណិតវិទ្យា",
    "Khmer": "ភាសាខ្មែរ",
    "Science": "វិទ្យាសាស្ត្រ",
    "Social Studies": "សង្គមវិទ្យា",
    "English": "ភាសាអង់គ្លេស",
    "Physical Education": "អប់រំកាយ",
    "Arts": "សិល្បៈ",
}


# ── Helpers ─────────────────────────────────────────────────────────

def _rate(part, whole) -> float:
    return safe_float(part / whole * 100) if whole else 0.0


def _completed_mask(sessions: pd.DataFrame) -> pd.Series:
    return sessions["status"] == SessionStatus.COMPLETED.value


def _empty_metrics() -> Dict[str, Any]:
    return {
        "total_sessions": 0,
        "completed_sessions": 0,
        "average_score": 0.0,
        "completion_rate": 0.0,
        "improvement_plans_created": 0,
        "active_users": 0,
        "average_session_duration": 0.0,
        "top_performing_indicators": [],
        "low_performing_indicators": [],
    }


# ── Independent reads ───────────────────────────────────────────────

async def _count_sessions(source, scope, filt) -> int:
    sessions = await scoped_sessions(source, scope, filt)
    return int(len(sessions))


async def _count_completed(source, scope, filt) -> int:
    sessions = await scoped_sessions(source, scope, filt)
    if sessions.empty:
        return 0
    return int(_completed_mask(sessions).sum())


async def _average_score(source, scope, filt) -> float:
    sessions = await scoped_sessions(source, scope, filt)
    responses = await scoped_responses(source, sessions)
    scores = responses["score"].dropna() if not responses.empty else pd.Series(dtype=float)
    return safe_float(scores.mean()) if len(scores) else 0.0


async def _count_plans(source, scope, filt) -> int:
    sessions = await scoped_sessions(source, scope, filt)
    plans = await scoped_plans(source, sessions)
    return int(len(plans))


async def _count_active_users(source, scope) -> int:
    users = await scoped_users(source, scope)
    if users.empty:
        return 0
    return int(users["is_active"].sum())


async def _average_duration(source, scope, filt) -> float:
    """Mean session length in minutes over sessions with both timestamps."""
    sessions = await scoped_sessions(source, scope, filt)
    if sessions.empty:
        return 0.0
    timed = sessions[sessions["start_time"].notna() & sessions["end_time"].notna()]
    minutes = (timed["end_time"] - timed["start_time"]).dt.total_seconds() / 60
    minutes = minutes[minutes >= 0]
    return safe_float(minutes.mean()) if len(minutes) else 0.0


async def _indicator_performance(
    source, scope, filt, limit: int, ascending: bool
) -> List[Dict[str, Any]]:
    sessions = await scoped_sessions(source, scope, filt)
    responses = await scoped_responses(source, sessions)
    if responses.empty:
        return []
    scored = responses[responses["score"].notna() & responses["indicator_id"].notna()]
    if scored.empty:
        return []

    grouped = scored.groupby("indicator_id", sort=True).agg(
        indicator_name=("indicator_name", "first"),
        indicator_name_kh=("indicator_name_kh", "first"),
        average_score=("score", "mean"),
        total_responses=("score", "size"),
    )
    grouped = grouped.sort_values("average_score", ascending=ascending, kind="mergesort")

    rows = []
    for indicator_id, r in grouped.head(limit).iterrows():
        avg = safe_float(r["average_score"])
        rows.append({
            "indicator_id": indicator_id,
            "indicator_name": str(r["indicator_name"]),
            "indicator_name_kh": str(r["indicator_name_kh"]),
            "average_score": avg,
            "total_responses": int(r["total_responses"]),
            "improvement_needed": avg < IMPROVEMENT_THRESHOLD,
        })
    return rows


# ── Performance Metrics ─────────────────────────────────────────────

async def compute_metrics(
    source: RecordSource, scope: ScopePredicate, filt: MetricFilter
) -> Dict[str, Any]:
    """Headline metrics for everything the scope and filter admit."""
    total, completed, avg_score, plans, active, duration = await asyncio.gather(
        _count_sessions(source, scope, filt),
        _count_completed(source, scope, filt),
        _average_score(source, scope, filt),
        _count_plans(source, scope, filt),
        _count_active_users(source, scope),
        _average_duration(source, scope, filt),
    )
    top, low = await asyncio.gather(
        _indicator_performance(source, scope, filt, INDICATOR_LIMIT, ascending=False),
        _indicator_performance(source, scope, filt, INDICATOR_LIMIT, ascending=True),
    )

    metrics = _empty_metrics()
    metrics.update({
        "total_sessions": total,
        "completed_sessions": completed,
        "average_score": avg_score,
        "completion_rate": _rate(completed, total),
        "improvement_plans_created": plans,
        "active_users": active,
        "average_session_duration": duration,
        "top_performing_indicators": top,
        "low_performing_indicators": low,
    })
    logger.debug("metrics scope=%s total=%d completed=%d", scope.describe(), total, completed)
    return metrics


# ── Geographic Performance ──────────────────────────────────────────

async def compute_geographic_performance(
    source: RecordSource,
    scope: ScopePredicate,
    filt: MetricFilter,
    entity_type: Any,
    actor: Optional[Actor] = None,
) -> List[Dict[str, Any]]:
    """
    One row per in-scope entity of `entity_type`, sorted by average score
    (descending, ties keep first-seen order) and ranked 1..N.
    """
    level = parse_entity_type(entity_type)
    if actor is not None:
        require_visible(actor, level)

    col = level.column
    sessions = await scoped_sessions(source, scope, filt)
    sessions = sessions[sessions[col].notna()]
    if sessions.empty:
        return []

    responses, plans, names = await asyncio.gather(
        scoped_responses(source, sessions),
        scoped_plans(source, sessions),
        entity_names(source, level),
    )
    owner = sessions[["id", col]].rename(columns={"id": "session_id"})
    resp = responses.merge(owner, on="session_id", how="inner")
    resp = resp[resp["score"].notna()]
    plan_owner = plans.merge(owner, on="session_id", how="inner")

    session_counts = sessions.groupby(col).size()
    completed_counts = sessions[_completed_mask(sessions)].groupby(col).size()
    score_means = resp.groupby(col)["score"].mean() if not resp.empty else pd.Series(dtype=float)
    plan_counts = plan_owner.groupby(col).size() if not plan_owner.empty else pd.Series(dtype=int)

    rows = []
    for entity_id in pd.unique(sessions[col]):
        total = int(session_counts.get(entity_id, 0))
        name, name_kh = names.get(entity_id, (f"{level.value}-{entity_id}", f"{level.value}-{entity_id}"))
        rows.append({
            "entity_id": entity_id,
            "entity_name": name,
            "entity_name_kh": name_kh,
            "entity_type": level.value,
            "total_sessions": total,
            "average_score": safe_float(score_means.get(entity_id, 0.0)),
            "completion_rate": _rate(int(completed_counts.get(entity_id, 0)), total),
            "improvement_rate": _rate(int(plan_counts.get(entity_id, 0)), total),
            "ranking": 0,
        })

    rows.sort(key=lambda r: r["average_score"], reverse=True)
    for i, row in enumerate(rows, 1):
        row["ranking"] = i
    return rows


# ── Subject Performance ─────────────────────────────────────────────

def _monthly_change(scores: pd.DataFrame) -> float:
    """Change of the mean score between the last two observed months."""
    dated = scores[scores["date_observed"].notna()]
    if dated.empty:
        return 0.0
    monthly = dated.groupby(to_periods(dated["date_observed"], Granularity.MONTHLY))["score"].mean()
    monthly = monthly.sort_index()
    if len(monthly) < 2:
        return 0.0
    return safe_float(monthly.iloc[-1] - monthly.iloc[-2])


async def compute_subject_performance(
    source: RecordSource, scope: ScopePredicate, filt: MetricFilter
) -> List[Dict[str, Any]]:
    """Per-subject averages with a per-grade breakdown."""
    sessions = await scoped_sessions(source, scope, filt)
    sessions = sessions[sessions["subject"].notna()]
    if sessions.empty:
        return []
    responses = await scoped_responses(source, sessions)
    scores = responses[responses["score"].notna()].merge(
        sessions[["id", "subject", "grade", "date_observed"]].rename(columns={"id": "session_id"}),
        on="session_id",
        how="inner",
    )

    results = []
    for subject in pd.unique(sessions["subject"]):
        subj_sessions = sessions[sessions["subject"] == subject]
        subj_scores = scores[scores["subject"] == subject]
        breakdown = []
        weighted_total = 0.0
        session_total = 0
        for grade, grade_sessions in subj_sessions.groupby("grade", sort=True, dropna=False):
            grade_key = None if pd.isna(grade) else grade
            if grade_key is None:
                grade_scores = subj_scores[subj_scores["grade"].isna()]
            else:
                grade_scores = subj_scores[subj_scores["grade"] == grade_key]
            n = int(len(grade_sessions))
            avg = safe_float(grade_scores["score"].mean()) if len(grade_scores) else 0.0
            breakdown.append({
                "grade": grade_key,
                "total_sessions": n,
                "average_score": avg,
                "completion_rate": _rate(int(_completed_mask(grade_sessions).sum()), n),
            })
            weighted_total += avg * n
            session_total += n

        results.append({
            "subject": str(subject),
            "subject_kh": SUBJECT_NAMES_KH.get(str(subject), str(subject)),
            "total_sessions": session_total,
            "average_score": safe_float(weighted_total / session_total) if session_total else 0.0,
            "improvement_trend": _monthly_change(subj_scores),
            "grade_breakdown": breakdown,
        })

    results.sort(key=lambda r: r["average_score"], reverse=True)
    return results


# ── Time Series ─────────────────────────────────────────────────────

async def compute_time_series(
    source: RecordSource,
    scope: ScopePredicate,
    filt: MetricFilter,
    granularity: Any = Granularity.MONTHLY,
) -> List[Dict[str, Any]]:
    """Per-period session, completion, score, plan and observer counts."""
    granularity = parse_granularity(granularity)
    sessions = await scoped_sessions(source, scope, filt)
    sessions = sessions[sessions["date_observed"].notna()]
    if sessions.empty:
        return []
    sessions = sessions.assign(period=to_periods(sessions["date_observed"], granularity))

    responses, plans = await asyncio.gather(
        scoped_responses(source, sessions),
        scoped_plans(source, sessions),
    )
    owner = sessions[["id", "period"]].rename(columns={"id": "session_id"})
    scores = responses[responses["score"].notna()].merge(owner, on="session_id", how="inner")
    plan_periods = plans.merge(owner, on="session_id", how="inner")

    score_means = scores.groupby("period")["score"].mean() if not scores.empty else pd.Series(dtype=float)
    plan_counts = plan_periods.groupby("period").size() if not plan_periods.empty else pd.Series(dtype=int)

    rows = []
    for period, group in sessions.groupby("period", sort=True):
        total = int(len(group))
        rows.append({
            "period": period_label(period, granularity),
            "date": period_start(period).isoformat(),
            "total_sessions": total,
            "completed_sessions": int(_completed_mask(group).sum()),
            "average_score": safe_float(score_means.get(period, 0.0)),
            "improvement_plans": int(plan_counts.get(period, 0)),
            "active_users": int(group["observer_id"].dropna().nunique()),
        })
    return rows
