"""
report_builder.py — Report export to CSV, Excel and PDF.

Takes an assembled report dict (see reports.py) and renders it:
- tabular     CSV text, one block per section
- spreadsheet xlsx workbook, one styled sheet per section
- document    A4 PDF with summary, tables, a trend chart and page footer

The exporter only formats. It never queries the analytics engine.
"""

import io
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend for server use
import matplotlib.pyplot as plt
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils.dataframe import dataframe_to_rows
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm, mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import (
    Image,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from core import config
from core.errors import InvalidArgumentError, ReportGenerationError

logger = logging.getLogger(__name__)


class ReportFormat(str, Enum):
    TABULAR = "tabular"
    SPREADSHEET = "spreadsheet"
    DOCUMENT = "document"


class Language(str, Enum):
    EN = "en"
    KM = "km"


REPORT_FORMATS = [f.value for f in ReportFormat]
LANGUAGES = [l.value for l in Language]

FORMAT_ALIASES = {
    "csv": ReportFormat.TABULAR,
    "excel": ReportFormat.SPREADSHEET,
    "xlsx": ReportFormat.SPREADSHEET,
    "pdf": ReportFormat.DOCUMENT,
}

MEDIA_TYPES = {
    ReportFormat.TABULAR: "text/csv; charset=utf-8",
    ReportFormat.SPREADSHEET: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ReportFormat.DOCUMENT: "application/pdf",
}

EXTENSIONS = {
    ReportFormat.TABULAR: "csv",
    ReportFormat.SPREADSHEET: "xlsx",
    ReportFormat.DOCUMENT: "pdf",
}

KHMER_FONT = "KhmerReport"


# ── Colour palette ──────────────────────────────────────────────────

BRAND_DARK  = colors.HexColor("#1a1a2e")
BRAND_ACCENT = colors.HexColor("#0f3460")
LIGHT_GREY  = colors.HexColor("#f5f5f5")
WHITE       = colors.white

MPL_PALETTE = ["#0f3460", "#e94560", "#2ecc71", "#f39c12", "#9b59b6", "#1abc9c"]
TAB_COLOURS = ["1a1a2e", "0f3460", "e94560", "2ecc71", "f39c12", "9b59b6", "1abc9c"]


# ── Parsing ─────────────────────────────────────────────────────────

def parse_format(value: Any) -> ReportFormat:
    key = str(value or "").strip().lower()
    if key in FORMAT_ALIASES:
        return FORMAT_ALIASES[key]
    try:
        return ReportFormat(key)
    except ValueError:
        raise InvalidArgumentError("report format", value, REPORT_FORMATS)


def parse_language(value: Any) -> Language:
    key = str(value or "en").strip().lower()
    if key == "kh":
        key = "km"
    try:
        return Language(key)
    except ValueError:
        raise InvalidArgumentError("language", value, LANGUAGES)


# ── Helpers ─────────────────────────────────────────────────────────

def _t(obj: Dict[str, Any], key: str, lang: Language) -> Any:
    """Pick the Khmer variant of a field when asked for and present."""
    if lang == Language.KM and obj.get(f"{key}_kh"):
        return obj[f"{key}_kh"]
    return obj.get(key)


def _label(en: str, kh: str, lang: Language) -> str:
    return kh if lang == Language.KM else en


def _fmt(value: Any, digits: int = 2) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:.{digits}f}"
    return str(value)


# ── Section tables ──────────────────────────────────────────────────

def _metrics_frames(m: Dict[str, Any], lang: Language) -> List[Tuple[str, pd.DataFrame]]:
    rows = [
        (_label("Total Sessions", "វគ្គសរុប", lang), m["total_sessions"]),
        (_label("Completed Sessions", "វគ្គបញ្ចប់", lang), m["completed_sessions"]),
        (_label("Average Score", "ពិន្ទុមធ្យម", lang), m["average_score"]),
        (_label("Completion Rate (%)", "អត្រាបញ្ចប់ (%)", lang), m["completion_rate"]),
        (_label("Improvement Plans", "ផែនការកែលម្អ", lang), m["improvement_plans_created"]),
        (_label("Active Users", "អ្នកប្រើប្រាស់សកម្ម", lang), m["active_users"]),
        (_label("Avg Session Duration (min)", "រយៈពេលវគ្គមធ្យម (នាទី)", lang), m["average_session_duration"]),
    ]
    frames = [(
        _label("Performance Metrics", "ការវាស់វែងការអនុវត្ត", lang),
        pd.DataFrame(rows, columns=[_label("Metric", "រង្វាស់", lang), _label("Value", "តម្លៃ", lang)]),
    )]
    indicators = (
        [("top", i) for i in m.get("top_performing_indicators", [])]
        + [("low", i) for i in m.get("low_performing_indicators", [])]
    )
    if indicators:
        frames.append((
            _label("Indicator Performance", "ការអនុវត្តសូចនាករ", lang),
            pd.DataFrame([
                {
                    "group": group,
                    "indicator": _t(i, "indicator_name", lang),
                    "average_score": i["average_score"],
                    "total_responses": i["total_responses"],
                    "improvement_needed": i["improvement_needed"],
                }
                for group, i in indicators
            ]),
        ))
    return frames


def _geographic_frame(rows: List[Dict[str, Any]], lang: Language) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "ranking": r["ranking"],
            "entity": _t(r, "entity_name", lang),
            "entity_type": r["entity_type"],
            "total_sessions": r["total_sessions"],
            "average_score": r["average_score"],
            "completion_rate": r["completion_rate"],
            "improvement_rate": r["improvement_rate"],
        }
        for r in rows
    ], columns=["ranking", "entity", "entity_type", "total_sessions",
                "average_score", "completion_rate", "improvement_rate"])


def _subject_frame(rows: List[Dict[str, Any]], lang: Language) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "subject": _t(r, "subject", lang),
            "total_sessions": r["total_sessions"],
            "average_score": r["average_score"],
            "improvement_trend": r["improvement_trend"],
            "grades": len(r.get("grade_breakdown", [])),
        }
        for r in rows
    ], columns=["subject", "total_sessions", "average_score", "improvement_trend", "grades"])


def _trend_frames(trends: List[Dict[str, Any]], lang: Language) -> List[Tuple[str, pd.DataFrame]]:
    overview = pd.DataFrame([
        {
            "metric": _t(t, "metric_name", lang),
            "unit": t["unit"],
            "current_value": t["current_value"],
            "previous_value": t["previous_value"],
            "change_percent": t["overall_change_percent"],
            "trend": t["overall_trend"],
        }
        for t in trends
    ])
    points = pd.DataFrame([
        {
            "metric": t["metric"],
            "period": p["period"],
            "value": p["value"],
            "change_percent": p.get("change_percent"),
            "trend": p.get("trend"),
        }
        for t in trends for p in t["data"]
    ], columns=["metric", "period", "value", "change_percent", "trend"])
    return [
        (_label("Trend Analysis", "ការវិភាគទំនោរ", lang), overview),
        (_label("Trend Data", "ទិន្នន័យទំនោរ", lang), points),
    ]


def _seasonal_frame(items: List[Dict[str, Any]], lang: Language) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "metric": _t(s, "metric_name", lang),
            "month": _t(m, "month_name", lang),
            "average": m["average"],
            "variance": m["variance"],
            "data_points": m["data_points"],
        }
        for s in items for m in s["seasonal_data"]
    ], columns=["metric", "month", "average", "variance", "data_points"])


def _prediction_frame(items: List[Dict[str, Any]], lang: Language) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "metric": _t(p, "metric_name", lang),
            "current_value": p["current_value"],
            "next_period": p["next_period"],
            "predicted_value": p["predicted_value"],
            "confidence": p["confidence"],
            "trend": p["trend"],
        }
        for p in items
    ], columns=["metric", "current_value", "next_period", "predicted_value", "confidence", "trend"])


def _comparison_frame(comparison: Dict[str, Any], lang: Language) -> pd.DataFrame:
    rows = []
    for e in comparison["entities"]:
        row = {"entity": _t(e, "name", lang), "type": e["type"]}
        row.update(e["metrics"])
        rows.append(row)
    return pd.DataFrame(rows)


def _rankings_frame(rankings: List[Dict[str, Any]], lang: Language) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "rank": r["rank"],
            "entity": _t(r, "entity_name", lang),
            "overall_score": r["overall_score"],
            **{f"{m}_rank": v for m, v in r["metric_rankings"].items()},
        }
        for r in rankings
    ])


def _summary_frame(summary: Dict[str, Any], lang: Language) -> pd.DataFrame:
    findings = _t(summary, "key_findings", lang) or []
    recs = _t(summary, "recommendations", lang) or []
    rows = (
        [(_label("Key finding", "ការរកឃើញសំខាន់", lang), f) for f in findings]
        + [(_label("Recommendation", "អនុសាសន៍", lang), r) for r in recs]
    )
    return pd.DataFrame(rows, columns=[_label("Type", "ប្រភេទ", lang), _label("Text", "អត្ថបទ", lang)])


def section_tables(report: Dict[str, Any], lang: Language = Language.EN) -> List[Tuple[str, pd.DataFrame]]:
    """Every data section of a report flattened into titled DataFrames."""
    tables: List[Tuple[str, pd.DataFrame]] = []
    if report.get("performance_metrics"):
        tables += _metrics_frames(report["performance_metrics"], lang)
    if "geographic_performance" in report:
        tables.append((_label("Geographic Performance", "ការអនុវត្តតាមតំបន់", lang),
                       _geographic_frame(report["geographic_performance"], lang)))
    if "subject_performance" in report:
        tables.append((_label("Subject Analysis", "ការវិភាគមុខវិជ្ជា", lang),
                       _subject_frame(report["subject_performance"], lang)))
    if report.get("trend_analysis"):
        tables += _trend_frames(report["trend_analysis"], lang)
    if report.get("seasonal_analysis"):
        tables.append((_label("Seasonal Patterns", "លំនាំតាមរដូវ", lang),
                       _seasonal_frame(report["seasonal_analysis"], lang)))
    if report.get("predictions"):
        tables.append((_label("Predictions", "ការព្យាករណ៍", lang),
                       _prediction_frame(report["predictions"], lang)))
    if report.get("comparison", {}).get("entities"):
        tables.append((_label("Entity Comparison", "ការប្រៀបធៀបអង្គភាព", lang),
                       _comparison_frame(report["comparison"], lang)))
    if report.get("rankings"):
        tables.append((_label("Performance Rankings", "ចំណាត់ថ្នាក់ការអនុវត្ត", lang),
                       _rankings_frame(report["rankings"], lang)))
    if report.get("summary"):
        tables.append((_label("Summary", "សង្ខេប", lang), _summary_frame(report["summary"], lang)))
    return tables


# ═══════════════════════════════════════════════════════════════════
# 1. CSV
# ═══════════════════════════════════════════════════════════════════

def export_csv(report: Dict[str, Any], lang: Language = Language.EN) -> bytes:
    buf = io.StringIO()
    buf.write(f"# {_t(report, 'title', lang)}\n")
    buf.write(f"# Generated: {report['generated_at']} by {report['generated_by']}\n")
    for title, df in section_tables(report, lang):
        buf.write(f"\n# {title}\n")
        df.to_csv(buf, index=False)
    # BOM so spreadsheet apps detect UTF-8 Khmer text
    return buf.getvalue().encode("utf-8-sig")


# ═══════════════════════════════════════════════════════════════════
# 2. EXCEL
# ═══════════════════════════════════════════════════════════════════

HEADER_FONT = Font(bold=True, color="FFFFFF", size=11)
HEADER_FILL = PatternFill(start_color="1a1a2e", end_color="1a1a2e", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"), right=Side(style="thin"),
    top=Side(style="thin"), bottom=Side(style="thin"),
)
_SHEET_FORBIDDEN = str.maketrans({c: "-" for c in "[]:*?/\\"})


def _style_sheet(ws):
    """Header fill, borders, frozen header row and auto column width."""
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center")
        cell.border = THIN_BORDER

    for row in ws.iter_rows(min_row=2, max_row=ws.max_row):
        for cell in row:
            cell.border = THIN_BORDER
            cell.alignment = Alignment(horizontal="center")

    ws.freeze_panes = "A2"

    for col_cells in ws.columns:
        max_len = max(len(str(cell.value or "")) for cell in col_cells)
        ws.column_dimensions[col_cells[0].column_letter].width = min(max_len + 4, 50)


def _sheet_title(title: str, used: set) -> str:
    base = title.translate(_SHEET_FORBIDDEN)[:28] or "Sheet"
    name, n = base, 2
    while name in used:
        name = f"{base[:25]} {n}"
        n += 1
    used.add(name)
    return name


def export_excel(report: Dict[str, Any], lang: Language = Language.EN) -> bytes:
    wb = Workbook()
    ws_info = wb.active
    ws_info.title = "Report"
    ws_info.sheet_properties.tabColor = TAB_COLOURS[0]
    ws_info.append([_label("Field", "វាល", lang), _label("Value", "តម្លៃ", lang)])
    ws_info.append([_label("Title", "ចំណងជើង", lang), _t(report, "title", lang)])
    ws_info.append([_label("Generated at", "បង្កើតនៅ", lang), report["generated_at"]])
    ws_info.append([_label("Generated by", "បង្កើតដោយ", lang), report["generated_by"]])
    for key, value in report.get("filters", {}).items():
        if value in (None, [], {}):
            continue
        ws_info.append([key, str(value)])
    _style_sheet(ws_info)

    used = {"Report"}
    for i, (title, df) in enumerate(section_tables(report, lang), 1):
        ws = wb.create_sheet(title=_sheet_title(title, used))
        ws.sheet_properties.tabColor = TAB_COLOURS[i % len(TAB_COLOURS)]
        for row in dataframe_to_rows(df, index=False, header=True):
            ws.append(row)
        _style_sheet(ws)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


# ═══════════════════════════════════════════════════════════════════
# 3. PDF
# ═══════════════════════════════════════════════════════════════════

def _khmer_font_available() -> bool:
    if not config.REPORT_FONT_PATH:
        return False
    if KHMER_FONT in pdfmetrics.getRegisteredFontNames():
        return True
    try:
        pdfmetrics.registerFont(TTFont(KHMER_FONT, config.REPORT_FONT_PATH))
    except Exception as exc:  # reportlab raises TTFError and plain IOErrors
        logger.warning("Could not load Khmer font %s: %s", config.REPORT_FONT_PATH, exc)
        return False
    return True


def _styles(font: Optional[str] = None):
    """Return custom paragraph styles."""
    ss = getSampleStyleSheet()
    styles = {
        "title": ParagraphStyle(
            "CustomTitle", parent=ss["Title"],
            fontSize=22, leading=28, textColor=BRAND_DARK,
            spaceAfter=6 * mm,
        ),
        "subtitle": ParagraphStyle(
            "CustomSubtitle", parent=ss["Normal"],
            fontSize=12, leading=16, textColor=BRAND_ACCENT,
            spaceAfter=4 * mm,
        ),
        "heading": ParagraphStyle(
            "CustomHeading", parent=ss["Heading2"],
            fontSize=14, leading=18, textColor=BRAND_DARK,
            spaceBefore=8 * mm, spaceAfter=4 * mm,
        ),
        "body": ParagraphStyle(
            "CustomBody", parent=ss["Normal"],
            fontSize=10, leading=14, textColor=colors.black,
            spaceAfter=3 * mm,
        ),
        "center": ParagraphStyle(
            "CenterBody", parent=ss["Normal"],
            fontSize=10, leading=14, alignment=TA_CENTER,
        ),
    }
    if font:
        for style in styles.values():
            style.fontName = font
    return styles


def _make_table(data: List[List], col_widths=None, font: Optional[str] = None):
    """Create a styled table."""
    style_cmds = [
        ("BACKGROUND", (0, 0), (-1, 0), BRAND_DARK),
        ("TEXTCOLOR", (0, 0), (-1, 0), WHITE),
        ("FONTNAME", (0, 0), (-1, 0), font or "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, 0), 9),
        ("FONTSIZE", (0, 1), (-1, -1), 8),
        ("ALIGN", (0, 0), (-1, -1), "CENTER"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#cccccc")),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [WHITE, LIGHT_GREY]),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]
    if font:
        style_cmds.append(("FONTNAME", (0, 1), (-1, -1), font))
    t = Table(data, colWidths=col_widths, repeatRows=1)
    t.setStyle(TableStyle(style_cmds))
    return t


def _frame_table(df: pd.DataFrame, font: Optional[str] = None) -> Table:
    data = [list(map(str, df.columns))]
    data += [[_fmt(v) for v in row] for row in df.itertuples(index=False)]
    return _make_table(data, font=font)


def _chart_to_image(fig, width=16 * cm, height=9 * cm) -> Image:
    """Convert a matplotlib figure to a ReportLab Image."""
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=150, bbox_inches="tight")
    plt.close(fig)
    buf.seek(0)
    return Image(buf, width=width, height=height)


def _trend_chart(trends: List[Dict[str, Any]]) -> Optional[Image]:
    """One small line chart per trend metric, stacked."""
    trends = [t for t in trends if t.get("data")]
    if not trends:
        return None
    fig, axes = plt.subplots(len(trends), 1, figsize=(8, 2.4 * len(trends)), squeeze=False)
    for ax, t, colour in zip(axes[:, 0], trends, MPL_PALETTE):
        labels = [p["period"] for p in t["data"]]
        values = [p["value"] for p in t["data"]]
        ax.plot(labels, values, marker="o", color=colour, linewidth=2)
        # metric names stay English, matplotlib has no Khmer shaping
        ax.set_title(t["metric_name"], fontsize=10, fontweight="bold")
        ax.set_ylabel(t["unit"], fontsize=8)
        ax.spines["top"].set_visible(False)
        ax.spines["right"].set_visible(False)
        ax.tick_params(axis="x", rotation=30, labelsize=7)
    fig.tight_layout()
    return _chart_to_image(fig, height=5 * cm * len(trends))


def _footer_for(report: Dict[str, Any], font: Optional[str]):
    generated = report.get("generated_at", "")
    try:
        generated = datetime.fromisoformat(generated).strftime("%d %B %Y, %H:%M")
    except (TypeError, ValueError):
        pass

    def _footer(canvas, doc):
        """Draw organisation name and date in the page footer."""
        canvas.saveState()
        canvas.setFont(font or "Helvetica", 8)
        canvas.setFillColor(colors.grey)
        canvas.drawString(2 * cm, 1.2 * cm, f"{config.ORG_NAME} | Generated {generated}")
        canvas.drawRightString(A4[0] - 2 * cm, 1.2 * cm, f"Page {doc.page}")
        canvas.restoreState()

    return _footer


def export_pdf(report: Dict[str, Any], lang: Language = Language.EN) -> bytes:
    font = None
    if lang == Language.KM:
        if _khmer_font_available():
            font = KHMER_FONT
        else:
            logger.warning("No Khmer font configured (REPORT_FONT_PATH); rendering PDF in English.")
            lang = Language.EN

    st = _styles(font)
    story = [
        Paragraph(_t(report, "title", lang), st["title"]),
        Paragraph(
            f"{_label('Generated by', 'បង្កើតដោយ', lang)} {report['generated_by']}", st["subtitle"]
        ),
    ]
    summary = report.get("summary")
    if summary:
        story.append(Paragraph(
            f"{_t(summary, 'scope', lang)} | {summary['period']}", st["body"]
        ))
        findings = _t(summary, "key_findings", lang) or []
        if findings:
            story.append(Paragraph(_label("Key Findings", "ការរកឃើញសំខាន់ៗ", lang), st["heading"]))
            for f in findings:
                story.append(Paragraph(f"• {f}", st["body"]))
        recs = _t(summary, "recommendations", lang) or []
        if recs:
            story.append(Paragraph(_label("Recommendations", "អនុសាសន៍", lang), st["heading"]))
            for r in recs:
                story.append(Paragraph(f"• {r}", st["body"]))

    chart = _trend_chart(report.get("trend_analysis") or [])
    if chart:
        story.append(Paragraph(_label("Trends", "ទំនោរ", lang), st["heading"]))
        story.append(chart)

    for title, df in section_tables(report, lang):
        if title == _label("Summary", "សង្ខេប", lang):
            continue
        story.append(Paragraph(title, st["heading"]))
        if df.empty:
            story.append(Paragraph(_label("No data.", "គ្មានទិន្នន័យ។", lang), st["body"]))
        else:
            story.append(_frame_table(df, font))
        story.append(Spacer(1, 4 * mm))

    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf, pagesize=A4,
        leftMargin=2 * cm, rightMargin=2 * cm, topMargin=2 * cm, bottomMargin=2 * cm,
        title=report.get("title", ""),
    )
    footer = _footer_for(report, font)
    doc.build(story, onFirstPage=footer, onLaterPages=footer)
    return buf.getvalue()


# ── Dispatch ────────────────────────────────────────────────────────

_EXPORTERS = {
    ReportFormat.TABULAR: export_csv,
    ReportFormat.SPREADSHEET: export_excel,
    ReportFormat.DOCUMENT: export_pdf,
}


def export_report(report: Dict[str, Any], fmt: Any = ReportFormat.DOCUMENT, language: Any = Language.EN) -> bytes:
    fmt = parse_format(fmt.value if isinstance(fmt, ReportFormat) else fmt)
    lang = parse_language(language.value if isinstance(language, Language) else language)
    try:
        return _EXPORTERS[fmt](report, lang)
    except (KeyError, TypeError) as exc:
        raise ReportGenerationError(f"Report could not be rendered as {fmt.value}: {exc}") from exc
