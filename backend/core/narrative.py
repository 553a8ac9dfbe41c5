"""
narrative.py — Bilingual (English / Khmer) text for insights, alerts,
recommendations and report summaries.

Every function returns plain strings built from f-string templates.
Functions named *_text return an (english, khmer) pair.
"""

from typing import Any, Dict, List, Tuple

Pair = Tuple[str, str]


# ── Insight Narratives ──────────────────────────────────────────────

def high_performance_text(avg: float) -> Pair:
    return (
        f"Average score of {avg:.2f} indicates excellent teaching quality across the system",
        f"ពិន្ទុមធ្យម {avg:.2f} បង្ហាញពីគុណភាពបង្រៀនដ៏ល្អឥតខ្ចោះនៅទូទាំងប្រព័ន្ធ",
    )


def low_completion_text(rate: float) -> Pair:
    return (
        f"Completion rate of {rate:.1f}% suggests engagement challenges that need addressing",
        f"អត្រាបញ្ចប់ {rate:.1f}% បង្ហាញពីបញ្ហាប្រឈមការចូលរួមដែលត្រូវការដោះស្រាយ",
    )


def positive_trend_text(trend: Dict[str, Any]) -> Pair:
    pct = trend["overall_change_percent"]
    return (
        f"{trend['metric_name']} has improved by {pct:.1f}% showing positive momentum",
        f"{trend['metric_name_kh']} បានប្រសើរឡើង {pct:.1f}% បង្ហាញពីសន្ទុះវិជ្ជមាន",
    )


def declining_trend_text(trend: Dict[str, Any]) -> Pair:
    pct = abs(trend["overall_change_percent"])
    return (
        f"{trend['metric_name']} has declined by {pct:.1f}% requiring intervention",
        f"{trend['metric_name_kh']} បានធ្លាក់ចុះ {pct:.1f}% ត្រូវការការអន្តរាគមន៍",
    )


def strongest_indicator_text(indicator: Dict[str, Any]) -> Pair:
    avg = indicator["average_score"]
    return (
        f"{indicator['indicator_name']} shows excellent performance with average score of {avg:.2f}",
        f"{indicator['indicator_name_kh']} បង្ហាញការអនុវត្តដ៏ល្អឥតខ្ចោះជាមួយពិន្ទុមធ្យម {avg:.2f}",
    )


def weakest_indicator_text(indicator: Dict[str, Any]) -> Pair:
    avg = indicator["average_score"]
    return (
        f"{indicator['indicator_name']} requires attention with average score of {avg:.2f}",
        f"{indicator['indicator_name_kh']} ត្រូវការការយកចិត្តទុកដាក់ជាមួយពិន្ទុមធ្យម {avg:.2f}",
    )


# ── Alert Narratives ────────────────────────────────────────────────

def critical_score_text(avg: float) -> Pair:
    return (
        f"Average score of {avg:.2f} is critically low",
        f"ពិន្ទុមធ្យម {avg:.2f} ទាបខ្លាំងណាស់",
    )


def critical_completion_text(rate: float) -> Pair:
    return (
        f"Completion rate of {rate:.1f}% is critically low",
        f"អត្រាបញ្ចប់ {rate:.1f}% ទាបខ្លាំងណាស់",
    )


def below_target_score_text(avg: float) -> Pair:
    return (
        f"Average score of {avg:.2f} is below target",
        f"ពិន្ទុមធ្យម {avg:.2f} ស្ថិតក្រោមគោលដៅ",
    )


def completion_below_target_text(rate: float, target: float) -> Pair:
    return (
        f"Completion rate is {rate:.1f}%, below the {target:.0f}% target",
        f"អត្រាបញ្ចប់គឺ {rate:.1f}% ក្រោមគោលដៅ {target:.0f}%",
    )


def declined_by_text(trend: Dict[str, Any]) -> Pair:
    pct = abs(trend["overall_change_percent"])
    return (
        f"{trend['metric_name']} has declined by {pct:.1f}%",
        f"{trend['metric_name_kh']} បានធ្លាក់ចុះ {pct:.1f}%",
    )


def improved_by_text(trend: Dict[str, Any]) -> Pair:
    pct = trend["overall_change_percent"]
    return (
        f"{trend['metric_name']} has improved by {pct:.1f}%",
        f"{trend['metric_name_kh']} បានប្រសើរឡើង {pct:.1f}%",
    )


def low_average_text(avg: float) -> Pair:
    return (
        f"Average score is {avg:.2f}, indicating need for improvement",
        f"ពិន្ទុមធ្យមគឺ {avg:.2f} បង្ហាញពីការត្រូវការកែលម្អ",
    )


# ── Recommendation Playbooks ────────────────────────────────────────

RECOMMENDATION_PLAYBOOKS: Dict[str, Dict[str, Any]] = {
    "improve-completion": {
        "category": "improvement",
        "title": "Improve Session Completion Rates",
        "title_kh": "កែលម្អអត្រាបញ្ចប់វគ្គ",
        "description": "Implement strategies to increase observation session completion rates",
        "description_kh": "អនុវត្តយុទ្ធសាស្ត្រដើម្បីបង្កើនអត្រាបញ្ចប់វគ្គសង្កេត",
        "estimated_impact": "Could improve completion rates by 15-25%",
        "estimated_impact_kh": "អាចកែលម្អអត្រាបញ្ចប់បាន 15-25%",
        "target_entities": ["all"],
        "implementation_steps": [
            "Analyze reasons for incomplete sessions",
            "Provide additional training on session management",
            "Implement reminder systems",
            "Simplify complex observation forms",
        ],
        "implementation_steps_kh": [
            "វិភាគមូលហេតុនៃវគ្គមិនបានបញ្ចប់",
            "ផ្តល់ការបណ្តុះបណ្តាលបន្ថែមអំពីការគ្រប់គ្រងវគ្គ",
            "អនុវត្តប្រព័ន្ធរំលឹក",
            "ធ្វើឱ្យសាមញ្ញនូវទម្រង់សង្កេតស្មុគស្មាញ",
        ],
        "expected_outcome": "Increased engagement and better data quality",
        "expected_outcome_kh": "ការចូលរួមកាន់តែច្រើន និងគុណភាពទិន្នន័យប្រសើរជាង",
    },
    "improve-teaching": {
        "category": "intervention",
        "title": "Intensive Teaching Quality Improvement",
        "title_kh": "ការកែលម្អគុណភាពបង្រៀនយ៉ាងខ្លាំង",
        "description": "Launch comprehensive professional development program to improve teaching quality",
        "description_kh": "ចាប់ផ្តើមកម្មវិធីអភិវឌ្ឍន៍វិជ្ជាជីវៈទូលំទូលាយដើម្បីកែលម្អគុណភាពបង្រៀន",
        "estimated_impact": "Could improve average scores by 0.3-0.5 points",
        "estimated_impact_kh": "អាចកែលម្អពិន្ទុមធ្យមបាន 0.3-0.5 ពិន្ទុ",
        "target_entities": ["low_performing"],
        "implementation_steps": [
            "Identify specific areas needing improvement",
            "Design targeted training programs",
            "Implement peer mentoring systems",
            "Provide ongoing coaching support",
            "Monitor progress regularly",
        ],
        "implementation_steps_kh": [
            "កំណត់តំបន់ជាក់លាក់ដែលត្រូវការកែលម្អ",
            "រចនាកម្មវិធីបណ្តុះបណ្តាលដែលមានគោលដៅ",
            "អនុវត្តប្រព័ន្ធការណែនាំដោយមិត្តភក្តិ",
            "ផ្តល់ការគាំទ្រការបង្វឹកបន្ត",
            "តាមដានវឌ្ឍនភាពជាទៀងទាត់",
        ],
        "expected_outcome": "Significant improvement in teaching quality and student outcomes",
        "expected_outcome_kh": "ការកែលម្អយ៉ាងខ្លាំងក្នុងគុណភាពបង្រៀន និងលទ្ធផលសិស្ស",
    },
    "address-trends": {
        "category": "intervention",
        "title": "Address Declining Performance Trends",
        "title_kh": "ដោះស្រាយទំនោរការអនុវត្តធ្លាក់ចុះ",
        "description": "Implement corrective measures to reverse negative performance trends",
        "description_kh": "អនុវត្តវិធានការកែតម្រូវដើម្បីបញ្ច្រាសទំនោរការអនុវត្តអវិជ្ជមាន",
        "estimated_impact": "Could stabilize and reverse declining trends within 3-6 months",
        "estimated_impact_kh": "អាចធ្វើឱ្យមានស្ថិរភាព និងបញ្ច្រាសទំនោរធ្លាក់ចុះក្នុងរយៈពេល 3-6 ខែ",
        "target_entities": ["declining_entities"],
        "implementation_steps": [
            "Conduct root cause analysis",
            "Develop targeted intervention plans",
            "Allocate additional resources",
            "Implement intensive monitoring",
        ],
        "implementation_steps_kh": [
            "ធ្វើការវិភាគមូលហេតុ",
            "អភិវឌ្ឍផែនការអន្តរាគមន៍ដែលមានគោលដៅ",
            "បែងចែកធនធានបន្ថែម",
            "អនុវត្តការតាមដានយ៉ាងខ្លាំង",
        ],
        "expected_outcome": "Stabilization and improvement of declining metrics",
        "expected_outcome_kh": "ស្ថិរភាព និងការកែលម្អនៃការវាស់វែងដែលកំពុងធ្លាក់ចុះ",
    },
    "recognize-excellence": {
        "category": "recognition",
        "title": "Recognize and Share Best Practices",
        "title_kh": "ទទួលស្គាល់ និងចែករំលែកការអនុវត្តល្អបំផុត",
        "description": "Identify and share successful practices from high-performing entities",
        "description_kh": "កំណត់ និងចែករំលែកការអនុវត្តដែលទទួលបានជោគជ័យពីអង្គភាពដែលមានការអនុវត្តខ្ពស់",
        "estimated_impact": "Could improve system-wide performance by 10-15%",
        "estimated_impact_kh": "អាចកែលម្អការអនុវត្តទូទាំងប្រព័ន្ធបាន 10-15%",
        "target_entities": ["high_performing"],
        "implementation_steps": [
            "Document successful practices",
            "Create knowledge sharing platforms",
            "Organize peer learning sessions",
            "Develop case studies",
        ],
        "implementation_steps_kh": [
            "ចងក្រងការអនុវត្តដែលទទួលបានជោគជ័យ",
            "បង្កើតវេទិកាចែករំលែកចំណេះដឹង",
            "រៀបចំវគ្គសិក្សាពីមិត្តភក្តិ",
            "អភិវឌ្ឍករណីសិក្សា",
        ],
        "expected_outcome": "Spread of best practices and overall system improvement",
        "expected_outcome_kh": "ការរីករាលដាលនៃការអនុវត្តល្អបំផុត និងការកែលម្អប្រព័ន្ធទូទៅ",
    },
}


# ── Report Summary Narratives ───────────────────────────────────────

def summarize_metrics(metrics: Dict[str, Any]) -> Tuple[List[Pair], List[Pair]]:
    """Key findings and recommendations from headline metrics."""
    findings: List[Pair] = []
    recs: List[Pair] = []
    rate = metrics.get("completion_rate", 0.0)
    avg = metrics.get("average_score", 0.0)
    total = metrics.get("total_sessions", 0)
    plans = metrics.get("improvement_plans_created", 0)

    if rate > 80:
        findings.append((
            f"High completion rate of {rate:.1f}% indicates strong engagement",
            f"អត្រាបញ្ចប់ខ្ពស់ {rate:.1f}% បង្ហាញពីការចូលរួមដ៏រឹងមាំ",
        ))
    elif rate < 60:
        findings.append((
            f"Low completion rate of {rate:.1f}% requires attention",
            f"អត្រាបញ្ចប់ទាប {rate:.1f}% ត្រូវការការយកចិត្តទុកដាក់",
        ))
        recs.append((
            "Implement strategies to improve session completion rates",
            "អនុវត្តយុទ្ធសាស្ត្រដើម្បីកែលម្អអត្រាបញ្ចប់វគ្គ",
        ))

    if avg > 2.5:
        findings.append((
            f"Strong average score of {avg:.2f} demonstrates good teaching quality",
            f"ពិន្ទុមធ្យមខ្ពស់ {avg:.2f} បង្ហាញពីគុណភាពបង្រៀនល្អ",
        ))
    elif avg < 2.0:
        findings.append((
            f"Average score of {avg:.2f} indicates need for improvement",
            f"ពិន្ទុមធ្យម {avg:.2f} បង្ហាញពីការត្រូវការកែលម្អ",
        ))
        recs.append((
            "Focus on professional development and targeted support for low-performing areas",
            "ផ្តោតលើការអភិវឌ្ឍន៍វិជ្ជាជីវៈ និងការគាំទ្រដែលមានគោលដៅសម្រាប់តំបន់ដែលមានការអនុវត្តទាប",
        ))

    if total and plans > total * 0.3:
        pct = plans / total * 100
        findings.append((
            f"High rate of improvement plan creation ({pct:.1f}%) shows proactive approach",
            f"អត្រាខ្ពស់នៃការបង្កើតផែនការកែលម្អ ({pct:.1f}%) បង្ហាញពីវិធីសាស្រ្តសកម្ម",
        ))
    return findings, recs


def summarize_trends(trends: List[Dict[str, Any]]) -> Tuple[List[Pair], List[Pair]]:
    findings: List[Pair] = []
    recs: List[Pair] = []
    for t in trends:
        pct = t["overall_change_percent"]
        if t["overall_trend"] == "up" and pct > 10:
            findings.append((
                f"{t['metric_name']} shows positive trend with {pct:.1f}% improvement",
                f"{t['metric_name_kh']} បង្ហាញទំនោរវិជ្ជមានជាមួយនឹងការកែលម្អ {pct:.1f}%",
            ))
        elif t["overall_trend"] == "down" and abs(pct) > 10:
            findings.append((
                f"{t['metric_name']} shows declining trend with {abs(pct):.1f}% decrease",
                f"{t['metric_name_kh']} បង្ហាញទំនោរធ្លាក់ចុះជាមួយនឹងការថយចុះ {abs(pct):.1f}%",
            ))
            recs.append((
                f"Address factors contributing to declining {t['metric_name'].lower()}",
                f"ដោះស្រាយកត្តាដែលរួមចំណែកដល់ការធ្លាក់ចុះ {t['metric_name_kh']}",
            ))
    return findings, recs


def summarize_geographic(rows: List[Dict[str, Any]], gap: float = 0.5) -> Tuple[List[Pair], List[Pair]]:
    if not rows:
        return [], []
    top, bottom = rows[0], rows[-1]
    if top["average_score"] - bottom["average_score"] <= gap:
        return [], []
    finding = (
        f"Significant performance gap between top ({top['entity_name']}: {top['average_score']:.2f}) "
        f"and bottom performers ({bottom['entity_name']}: {bottom['average_score']:.2f})",
        f"គម្លាតការអនុវត្តសំខាន់រវាងអ្នកអនុវត្តកំពូល ({top['entity_name_kh']}: {top['average_score']:.2f}) "
        f"និងអ្នកអនុវត្តចុងក្រោយ ({bottom['entity_name_kh']}: {bottom['average_score']:.2f})",
    )
    rec = (
        "Implement knowledge sharing programs between high and low performing entities",
        "អនុវត្តកម្មវិធីចែករំលែកចំណេះដឹងរវាងអង្គភាពដែលមានការអនុវត្តខ្ពស់ និងទាប",
    )
    return [finding], [rec]


def summarize_comparison(comparison: Dict[str, Any]) -> List[Pair]:
    """One finding per leader/laggard flag."""
    return [(i["message"], i["message_kh"]) for i in comparison.get("insights", [])]


def format_period(start, end) -> str:
    if not start or not end:
        return "All time"
    return f"{start.strftime('%d %B %Y')} - {end.strftime('%d %B %Y')}"
