"""
analytics.py — Service facade over the analytics core.

One AnalyticsService wraps a record source and a clock. Each call takes
the requesting actor, derives its scope once and threads it through the
engine, so no read can escape the actor's subtree.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core import config
from core.aggregation import (
    compute_geographic_performance,
    compute_metrics,
    compute_subject_performance,
    compute_time_series,
)
from core.clock import SystemClock
from core.comparison import compare_entities, compute_benchmarks
from core.dashboard import compose_dashboard, realtime_snapshot
from core.insights import build_overview
from core.records import MetricFilter, RecordSource, parse_granularity
from core.report_builder import (
    EXTENSIONS,
    MEDIA_TYPES,
    export_report,
    parse_format,
    parse_language,
)
from core.reports import assemble_custom_report, assemble_report, list_templates
from core.scope import Actor, build_scope, parse_entity_type, require_visible
from core.trends import analyze_trend, parse_periods, seasonal_analysis

logger = logging.getLogger(__name__)

ReportFile = Tuple[bytes, str, str]


class AnalyticsService:
    def __init__(self, source: RecordSource, clock=None):
        self.source = source
        self.clock = clock or SystemClock()

    def _scope(self, actor: Actor):
        scope = build_scope(actor)
        logger.debug("Actor %s (%s) scoped to %s", actor.id, actor.role.value, scope.describe())
        return scope

    # ── Metrics ─────────────────────────────────────────────────────

    async def get_overview(self, actor: Actor, filt: Optional[MetricFilter] = None) -> Dict[str, Any]:
        return await build_overview(self.source, self._scope(actor), filt or MetricFilter(), self.clock)

    async def get_performance_metrics(self, actor: Actor, filt: Optional[MetricFilter] = None) -> Dict[str, Any]:
        return await compute_metrics(self.source, self._scope(actor), filt or MetricFilter())

    async def get_geographic_performance(
        self, actor: Actor, entity_type: Any, filt: Optional[MetricFilter] = None
    ) -> List[Dict[str, Any]]:
        return await compute_geographic_performance(
            self.source, self._scope(actor), filt or MetricFilter(), entity_type, actor=actor
        )

    async def get_subject_performance(self, actor: Actor, filt: Optional[MetricFilter] = None) -> List[Dict[str, Any]]:
        return await compute_subject_performance(self.source, self._scope(actor), filt or MetricFilter())

    async def get_time_series(
        self, actor: Actor, granularity: Any = None, filt: Optional[MetricFilter] = None
    ) -> List[Dict[str, Any]]:
        filt = filt or MetricFilter()
        g = parse_granularity(granularity) if granularity else filt.aggregation_level
        return await compute_time_series(self.source, self._scope(actor), filt, g)

    # ── Trends & comparison ─────────────────────────────────────────

    async def analyze_trend(
        self,
        actor: Actor,
        metric: Any,
        granularity: Any = None,
        periods: Any = 12,
        include_prediction: bool = False,
        filt: Optional[MetricFilter] = None,
    ) -> Dict[str, Any]:
        filt = filt or MetricFilter()
        g = parse_granularity(granularity) if granularity else filt.aggregation_level
        return await analyze_trend(
            self.source, self._scope(actor), filt, metric, g, parse_periods(periods), include_prediction
        )

    async def compare_entities(
        self,
        actor: Actor,
        entity_ids: Sequence[Any],
        entity_type: Any,
        metrics: Sequence[Any],
        filt: Optional[MetricFilter] = None,
    ) -> Dict[str, Any]:
        require_visible(actor, parse_entity_type(entity_type))
        return await compare_entities(
            self.source, self._scope(actor), filt or MetricFilter(), entity_ids, entity_type, metrics
        )

    async def get_seasonal_analysis(
        self, actor: Actor, metric: Any, filt: Optional[MetricFilter] = None
    ) -> Dict[str, Any]:
        return await seasonal_analysis(self.source, self._scope(actor), filt or MetricFilter(), metric)

    async def get_benchmarks(
        self, actor: Actor, entity_type: Any, filt: Optional[MetricFilter] = None
    ) -> List[Dict[str, Any]]:
        rows = await self.get_geographic_performance(actor, entity_type, filt)
        return compute_benchmarks(rows)

    # ── Dashboard ───────────────────────────────────────────────────

    async def get_dashboard(
        self,
        actor: Actor,
        time_period: Any = None,
        custom_start: Any = None,
        custom_end: Any = None,
        filt: Optional[MetricFilter] = None,
    ) -> Dict[str, Any]:
        return await compose_dashboard(
            self.source, actor, self._scope(actor), self.clock,
            time_period or config.DEFAULT_TIME_PERIOD, custom_start, custom_end, filt,
        )

    async def get_realtime_snapshot(self, actor: Actor) -> Dict[str, Any]:
        return await realtime_snapshot(self.source, self._scope(actor), self.clock)

    # ── Reports ─────────────────────────────────────────────────────

    def list_report_templates(self, actor: Actor) -> List[Dict[str, Any]]:
        return list_templates(actor)

    def _render(self, report: Dict[str, Any], fmt: Any, language: Any) -> ReportFile:
        fmt = parse_format(fmt)
        lang = parse_language(language)
        content = export_report(report, fmt, lang)
        stamp = datetime.fromisoformat(report["generated_at"]).strftime("%Y%m%d_%H%M%S")
        filename = f"{report['template']}_report_{stamp}.{EXTENSIONS[fmt]}"
        logger.info("Rendered %s (%d bytes)", filename, len(content))
        return content, MEDIA_TYPES[fmt], filename

    async def generate_report(
        self,
        actor: Actor,
        template_id: Any = "summary",
        fmt: Any = "document",
        language: Any = "en",
        filt: Optional[MetricFilter] = None,
    ) -> ReportFile:
        # validate output options before doing any work
        parse_format(fmt)
        parse_language(language)
        report = await assemble_report(
            self.source, actor, self._scope(actor), filt or MetricFilter(), template_id, self.clock
        )
        return self._render(report, fmt, language)

    async def generate_custom_report(
        self,
        actor: Actor,
        sections: Sequence[Any],
        fmt: Any = "document",
        language: Any = "en",
        filt: Optional[MetricFilter] = None,
    ) -> ReportFile:
        parse_format(fmt)
        parse_language(language)
        report = await assemble_custom_report(
            self.source, actor, self._scope(actor), filt or MetricFilter(), sections, self.clock
        )
        return self._render(report, fmt, language)
