"""
reports.py — Report templates and report data assembly.

A template is an ordered list of sections. assemble_report() evaluates
each data section against the engine, then builds the summary section
last from whatever the other sections produced. Export to CSV, xlsx or
PDF is handled separately by report_builder.py.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from core.aggregation import (
    compute_geographic_performance,
    compute_metrics,
    compute_subject_performance,
)
from core.clock import SystemClock
from core.comparison import compare_entities
from core.errors import (
    AccessDeniedError,
    AnalyticsError,
    InvalidArgumentError,
    ReportGenerationError,
)
from core.narrative import (
    format_period,
    summarize_comparison,
    summarize_geographic,
    summarize_metrics,
    summarize_trends,
)
from core.records import MetricFilter, RecordSource
from core.scope import REPORT_TEMPLATE_IDS, Actor, ScopePredicate, can_use_template
from core.trends import analyze_trend, seasonal_analysis

logger = logging.getLogger(__name__)

REPORT_TREND_METRICS = ["average_score", "completion_rate", "session_count"]
REPORT_TREND_PERIODS = 12
SEASONAL_METRICS = ["average_score", "completion_rate"]


def _section(id_, name, name_kh, type_, required, configurable) -> Dict[str, Any]:
    return {
        "id": id_,
        "name": name,
        "name_kh": name_kh,
        "type": type_,
        "required": required,
        "configurable": configurable,
    }


TEMPLATES: Dict[str, Dict[str, Any]] = {
    "summary": {
        "id": "summary",
        "name": "Executive Summary Report",
        "name_kh": "របាយការណ៍សង្ខេបប្រតិបត្តិ",
        "description": "High-level overview of key performance indicators and trends",
        "description_kh": "ទិដ្ឋភាពទូទៅនៃសូចនាករដែលមានការអនុវត្តសំខាន់ៗ និងទំនោរ",
        "sections": [
            _section("overview", "Overview", "ទិដ្ឋភាពទូទៅ", "metrics", True, False),
            _section("trends", "Key Trends", "ទំនោរសំខាន់ៗ", "trends", True, False),
            _section("summary", "Summary", "សង្ខេប", "summary", True, False),
        ],
        "default_filters": {"aggregation_level": "monthly"},
    },
    "detailed": {
        "id": "detailed",
        "name": "Detailed Performance Report",
        "name_kh": "របាយការណ៍ការអនុវត្តលម្អិត",
        "description": "Comprehensive analysis of all performance metrics and geographic breakdowns",
        "description_kh": "ការវិភាគទូលំទូលាយនៃការវាស់វែងការអនុវត្តទាំងអស់ និងការបែងចែកតាមតំបន់ភូមិសាស្ត្រ",
        "sections": [
            _section("metrics", "Performance Metrics", "ការវាស់វែងការអនុវត្ត", "metrics", True, False),
            _section("geographic", "Geographic Performance", "ការអនុវត្តតាមតំបន់", "geographic", True, True),
            _section("subjects", "Subject Analysis", "ការវិភាគមុខវិជ្ជា", "subjects", False, True),
            _section("trends", "Trend Analysis", "ការវិភាគទំនោរ", "trends", False, True),
        ],
        "default_filters": {"aggregation_level": "monthly"},
    },
    "trend": {
        "id": "trend",
        "name": "Trend Analysis Report",
        "name_kh": "របាយការណ៍ការវិភាគទំនោរ",
        "description": "Focus on trends and patterns over time with predictive insights",
        "description_kh": "ផ្តោតលើទំនោរ និងលំនាំតាមពេលវេលាជាមួយនឹងការយល់ដឹងអំពីការព្យាករណ៍",
        "sections": [
            _section("trends", "Trend Analysis", "ការវិភាគទំនោរ", "trends", True, True),
            _section("seasonal", "Seasonal Patterns", "លំនាំតាមរដូវ", "trends", False, True),
            _section("predictions", "Predictions", "ការព្យាករណ៍", "trends", False, True),
        ],
        "default_filters": {"aggregation_level": "monthly", "include_prediction": True},
    },
    "comparison": {
        "id": "comparison",
        "name": "Comparative Analysis Report",
        "name_kh": "របាយការណ៍ការវិភាគប្រៀបធៀប",
        "description": "Compare performance across different entities and time periods",
        "description_kh": "ប្រៀបធៀបការអនុវត្តរវាងអង្គភាពផ្សេងៗ និងរយៈពេលផ្សេងៗ",
        "sections": [
            _section("comparison", "Entity Comparison", "ការប្រៀបធៀបអង្គភាព", "comparison", True, True),
            _section("rankings", "Performance Rankings", "ចំណាត់ថ្នាក់ការអនុវត្ត", "comparison", True, False),
            _section("insights", "Comparative Insights", "ការយល់ដឹងប្រៀបធៀប", "summary", True, False),
        ],
        "default_filters": {"aggregation_level": "monthly"},
    },
}

CUSTOM_SECTIONS = [
    _section("metrics", "Performance Metrics", "ការវាស់វែងការអនុវត្ត", "metrics", False, True),
    _section("geographic", "Geographic Performance", "ការអនុវត្តតាមតំបន់", "geographic", False, True),
    _section("subjects", "Subject Analysis", "ការវិភាគមុខវិជ្ជា", "subjects", False, True),
    _section("trends", "Trend Analysis", "ការវិភាគទំនោរ", "trends", False, True),
    _section("comparison", "Comparative Analysis", "ការវិភាគប្រៀបធៀប", "comparison", False, True),
    _section("summary", "Summary", "សង្ខេប", "summary", False, True),
]
CUSTOM_SECTION_IDS = [s["id"] for s in CUSTOM_SECTIONS]


def list_templates(actor: Actor) -> List[Dict[str, Any]]:
    return [TEMPLATES[t] for t in REPORT_TEMPLATE_IDS if can_use_template(actor, t)]


def resolve_template(actor: Actor, template_id: Any) -> Dict[str, Any]:
    key = str(template_id or "").strip().lower()
    if key not in TEMPLATES:
        raise InvalidArgumentError("report template", template_id, REPORT_TEMPLATE_IDS)
    if not can_use_template(actor, key):
        raise AccessDeniedError(
            f"Role '{actor.role.value}' cannot generate the '{key}' report."
        )
    return TEMPLATES[key]


def custom_template(actor: Actor, section_ids: Sequence[Any]) -> Dict[str, Any]:
    if not actor.capability.custom_reports:
        raise AccessDeniedError(f"Role '{actor.role.value}' cannot build custom reports.")
    wanted = [str(s).strip().lower() for s in (section_ids or [])]
    if not wanted:
        raise InvalidArgumentError("report sections", section_ids, CUSTOM_SECTION_IDS)
    for s in wanted:
        if s not in CUSTOM_SECTION_IDS:
            raise InvalidArgumentError("report section", s, CUSTOM_SECTION_IDS)
    return {
        "id": "custom",
        "name": "Custom Report",
        "name_kh": "របាយការណ៍ផ្ទាល់ខ្លួន",
        "description": "Custom report with selected sections",
        "description_kh": "របាយការណ៍ផ្ទាល់ខ្លួនជាមួយផ្នែកដែលបានជ្រើសរើស",
        "sections": [s for s in CUSTOM_SECTIONS if s["id"] in wanted],
        "default_filters": {},
    }


# ── Section producers ───────────────────────────────────────────────

class _SectionContext:
    """Shared inputs for one report; trends and the comparison are computed at most once."""

    def __init__(self, source, actor, scope, filt):
        self.source = source
        self.actor = actor
        self.scope = scope
        self.filt = filt
        self.level = actor.capability.report_entity_type
        self._trends: Dict[bool, List[Dict[str, Any]]] = {}
        self._comparison: Optional[Dict[str, Any]] = None

    async def trends(self, include_prediction: bool = False) -> List[Dict[str, Any]]:
        if include_prediction not in self._trends:
            self._trends[include_prediction] = list(await asyncio.gather(*[
                analyze_trend(
                    self.source, self.scope, self.filt, metric,
                    self.filt.aggregation_level, REPORT_TREND_PERIODS, include_prediction,
                )
                for metric in REPORT_TREND_METRICS
            ]))
        return self._trends[include_prediction]

    async def comparison(self) -> Dict[str, Any]:
        if self._comparison is None:
            rows = await compute_geographic_performance(
                self.source, self.scope, self.filt, self.level, actor=self.actor
            )
            ids = [r["entity_id"] for r in rows]
            if ids:
                self._comparison = await compare_entities(
                    self.source, self.scope, self.filt, ids, self.level, REPORT_TREND_METRICS
                )
            else:
                self._comparison = {"entities": [], "metrics": [], "insights": [], "rankings": []}
        return self._comparison


async def _produce(ctx: _SectionContext, section: Dict[str, Any]) -> Dict[str, Any]:
    """Evaluate one data section, returning {report_key: payload}."""
    sid, stype = section["id"], section["type"]
    if stype == "metrics":
        return {"performance_metrics": await compute_metrics(ctx.source, ctx.scope, ctx.filt)}
    if stype == "geographic":
        return {"geographic_performance": await compute_geographic_performance(
            ctx.source, ctx.scope, ctx.filt, ctx.level, actor=ctx.actor
        )}
    if stype == "subjects":
        return {"subject_performance": await compute_subject_performance(
            ctx.source, ctx.scope, ctx.filt
        )}
    if sid == "seasonal":
        return {"seasonal_analysis": [
            await seasonal_analysis(ctx.source, ctx.scope, ctx.filt, m) for m in SEASONAL_METRICS
        ]}
    if sid == "predictions":
        trends = await ctx.trends(include_prediction=True)
        return {"predictions": [
            {
                "metric": t["metric"],
                "metric_name": t["metric_name"],
                "metric_name_kh": t["metric_name_kh"],
                "current_value": t["current_value"],
                **t["prediction"],
            }
            for t in trends
        ]}
    if stype == "trends":
        return {"trend_analysis": await ctx.trends()}
    if sid == "rankings":
        return {"rankings": (await ctx.comparison())["rankings"]}
    if stype == "comparison":
        return {"comparison": await ctx.comparison()}
    raise InvalidArgumentError("report section", sid, CUSTOM_SECTION_IDS)


def build_summary(report: Dict[str, Any], actor: Actor, filt: MetricFilter) -> Dict[str, Any]:
    findings, recs = [], []
    if report.get("performance_metrics"):
        f, r = summarize_metrics(report["performance_metrics"])
        findings += f
        recs += r
    if report.get("trend_analysis"):
        f, r = summarize_trends(report["trend_analysis"])
        findings += f
        recs += r
    if report.get("geographic_performance"):
        f, r = summarize_geographic(report["geographic_performance"])
        findings += f
        recs += r
    if report.get("comparison"):
        findings += summarize_comparison(report["comparison"])

    cap = actor.capability
    return {
        "key_findings": [en for en, _ in findings],
        "key_findings_kh": [kh for _, kh in findings],
        "recommendations": [en for en, _ in recs],
        "recommendations_kh": [kh for _, kh in recs],
        "period": format_period(filt.start_date, filt.end_date),
        "scope": cap.scope_label,
        "scope_kh": cap.scope_label_kh,
    }


# ── Assembly ────────────────────────────────────────────────────────

async def _assemble(
    source: RecordSource,
    actor: Actor,
    scope: ScopePredicate,
    filt: MetricFilter,
    template: Dict[str, Any],
    clock=None,
) -> Dict[str, Any]:
    clock = clock or SystemClock()
    report: Dict[str, Any] = {
        "template": template["id"],
        "title": template["name"],
        "title_kh": template["name_kh"],
        "generated_at": clock.now().isoformat(),
        "generated_by": actor.full_name or actor.id,
        "filters": filt.to_dict(),
        "sections": [],
    }
    ctx = _SectionContext(source, actor, scope, filt)
    summary_sections = []

    for section in template["sections"]:
        if section["type"] == "summary":
            summary_sections.append(section)
            continue
        try:
            payload = await _produce(ctx, section)
        except AccessDeniedError as exc:
            if section["required"]:
                raise ReportGenerationError(
                    f"Required section '{section['id']}' is not available: {exc}"
                ) from exc
            logger.warning("Omitting report section %s for %s: %s", section["id"], actor.id, exc)
            continue
        except AnalyticsError as exc:
            if section["required"]:
                raise ReportGenerationError(
                    f"Required section '{section['id']}' failed: {exc}"
                ) from exc
            raise
        if section["required"] and any(v is None for v in payload.values()):
            raise ReportGenerationError(f"Required section '{section['id']}' produced no data.")
        report.update(payload)
        report["sections"].append(section["id"])

    if summary_sections:
        report["summary"] = build_summary(report, actor, filt)
        report["sections"].extend(s["id"] for s in summary_sections)

    logger.info(
        "Assembled %s report for %s (%s): %s",
        template["id"], actor.id, scope.describe(), ", ".join(report["sections"]),
    )
    return report


async def assemble_report(
    source: RecordSource,
    actor: Actor,
    scope: ScopePredicate,
    filt: MetricFilter,
    template_id: Any,
    clock=None,
) -> Dict[str, Any]:
    template = resolve_template(actor, template_id)
    return await _assemble(source, actor, scope, filt, template, clock)


async def assemble_custom_report(
    source: RecordSource,
    actor: Actor,
    scope: ScopePredicate,
    filt: MetricFilter,
    section_ids: Sequence[Any],
    clock=None,
) -> Dict[str, Any]:
    template = custom_template(actor, section_ids)
    return await _assemble(source, actor, scope, filt, template, clock)
