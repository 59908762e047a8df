"""
Summary content generation.

Turns aggregated PerformanceRows plus owner context into a prompt, sends it
to the text generation gateway, and renders the JSON answer as plain text
and HTML. Rendering never raises on malformed upstream output: anything
that does not match the summary schema is passed through verbatim as text
and as escaped, line-broken HTML.
"""

import html
import json
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from summary_mailer.infrastructure.observability.logging import get_logger
from summary_mailer.models.domain.performance_domain import OwnerData, PerformanceRow, RemediationCase
from summary_mailer.services.aggregation_service import aggregate
from summary_mailer.services.openai_service import TextGenerationError, TextGenerationService

logger = get_logger(__name__)

GENERATION_FAILED_TEXT = "Sorry, there was an error generating the summary. Please try again later."
AT_RISK_ACHIEVEMENT_THRESHOLD = 200 / 3
EMPTY_CELL = "-"

# Bulky visual fields that add nothing to a narrative summary
CASE_FIELDS_EXCLUDED_FROM_CONTEXT = (
    "mindMapNodes",
    "dataAnalysisImages",
    "resultImages",
    "dataAnalysisCanvasHeight",
    "resultCanvasHeight",
)

TABLE_HEADERS = (
    "Group",
    "Metric",
    "Latest month",
    "Last 2 months",
    "Last 3 months",
    "Linked A3s",
    "Overall target achieving %",
)

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


class ConcernItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    metric_name: str = Field(alias="metricName")
    group_name: str = Field(default="", alias="groupName")
    issue: str
    suggestion: str = ""


class SummaryReport(BaseModel):
    """Schema of the text generator's JSON answer."""

    model_config = ConfigDict(populate_by_name=True)

    executive_summary: str = Field(alias="executiveSummary", min_length=1)
    a3_summary: str | None = Field(default=None, alias="a3Summary")
    areas_of_concern: list[ConcernItem] | None = Field(default=None, alias="areasOfConcern")


@dataclass(slots=True)
class GeneratedContent:
    plain_text: str
    html: str
    rows: list[PerformanceRow]
    raw_response: str


def parse_summary(raw: str) -> SummaryReport | None:
    """Strip code fences and validate. None when the text is not a valid summary."""
    cleaned = _CODE_FENCE.sub("", raw or "").strip()
    try:
        data = json.loads(cleaned)
    except (ValueError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None
    try:
        return SummaryReport.model_validate(data)
    except ValidationError as e:
        logger.warning("Summary JSON did not match schema", error_count=e.error_count())
        return None


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------

SYSTEM_PROMPT_TEMPLATE = """You are an AI assistant for the Metric Bowler & A3 Problem Solving application.
Here is the current data in the application: {context}.
Answer the user's questions based on this data. Be concise and helpful."""

USER_PROMPT_TEMPLATE = """You are generating a one-click portfolio summary focused on improvement opportunities.

Use the pre-computed statistical snapshot below. Do not redo statistical calculations from raw data.

Consecutive failing metrics:
{snapshot}

Definitions:
- latestMet: null = no data, true = met latest target, false = missed latest target.
- fail2: true if the metric missed its target for the latest 2 consecutive periods.
- fail3: true if the metric missed its target for the latest 3 consecutive periods.
- achievementRate: percentage of historical data points that met target.
- metricId: unique id of the metric (matches linkedMetricIds in A3 cases from context).
- linkedCaseTotal / linkedCaseCompleted / linkedCaseActive: linked A3 cases overall, with status "Completed", and not completed.

Tasks:
1) "executiveSummary": a concise high-level snapshot of portfolio performance across metrics and A3 activity.
2) "a3Summary": an overview of the A3 problem-solving portfolio: themes, progress, coverage, and where A3 work is effective or insufficient.
3) "areasOfConcern": one entry per metric in the snapshot. Prioritize fail3 over fail2. Describe the issue with reference to the consecutive failures, achievementRate and linked A3 activity, and give a concrete, metric-specific suggestion (analyses to run, countermeasures to pilot, and how to monitor impact over the next 2-3 periods). When linkedCaseTotal is 0 or performance is still weak after completed A3s, recommend the next A3 step explicitly.

Return STRICT JSON with this structure and nothing else:
{{
  "executiveSummary": "string",
  "a3Summary": "string",
  "areasOfConcern": [
    {{"metricName": "string", "groupName": "string", "issue": "string", "suggestion": "string"}}
  ]
}}

Do not include any markdown formatting. Just the raw JSON object."""


def build_snapshot(rows: list[PerformanceRow], cases: list[RemediationCase]) -> list[dict[str, Any]]:
    """Compact statistics for at-risk rows only."""
    snapshot = []
    for row in rows:
        if not row.at_risk:
            continue
        linked = [case for case in cases if row.metric_id in case.linked_metric_ids]
        completed = sum(1 for case in linked if case.is_completed)
        snapshot.append(
            {
                "groupName": row.group_name,
                "metricName": row.metric_name,
                "metricId": row.metric_id,
                "latestMet": row.latest_met,
                "fail2": row.fail2,
                "fail3": row.fail3,
                "achievementRate": (
                    round(row.achievement_rate, 1) if row.achievement_rate is not None else None
                ),
                "linkedCaseTotal": len(linked),
                "linkedCaseCompleted": completed,
                "linkedCaseActive": len(linked) - completed,
            }
        )
    return snapshot


def build_context(owner_data: OwnerData) -> str:
    cases = [
        {key: value for key, value in case.raw.items() if key not in CASE_FIELDS_EXCLUDED_FROM_CONTEXT}
        for case in owner_data.cases
    ]
    return json.dumps(
        {"bowlers": [entity.raw for entity in owner_data.entities], "a3Cases": cases},
        ensure_ascii=False,
        default=str,
    )


def build_prompts(owner_data: OwnerData, rows: list[PerformanceRow]) -> tuple[str, str]:
    """(system prompt, user prompt) for one summary request."""
    snapshot = json.dumps(build_snapshot(rows, owner_data.cases), indent=2, ensure_ascii=False)
    return (
        SYSTEM_PROMPT_TEMPLATE.format(context=build_context(owner_data)),
        USER_PROMPT_TEMPLATE.format(snapshot=snapshot),
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def format_percent(rate: float) -> str:
    whole = Decimal(str(rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{whole}%"


def _latest_text(row: PerformanceRow) -> str:
    if row.latest_met is None or not row.latest_actual_display:
        return EMPTY_CELL
    return row.latest_actual_display


def _table_cells(row: PerformanceRow) -> list[str]:
    return [
        row.group_name,
        row.metric_name,
        _latest_text(row),
        "Failing" if row.fail2 else EMPTY_CELL,
        "Failing" if row.fail3 else EMPTY_CELL,
        str(row.linked_case_count or 0) if row.at_risk else EMPTY_CELL,
        format_percent(row.achievement_rate) if row.achievement_rate is not None else EMPTY_CELL,
    ]


def render_plain_text(report: SummaryReport, rows: list[PerformanceRow]) -> str:
    parts = [f"Executive Overview:\n{report.executive_summary}\n\n"]

    if report.a3_summary and report.a3_summary.strip():
        parts.append(f"A3 Problem Solving Summary:\n{report.a3_summary}\n\n")

    if rows:
        parts.append("Portfolio Statistical Table:\n")
        parts.append(" | ".join(TABLE_HEADERS) + "\n")
        parts.append(" | ".join("-" * len(header) for header in TABLE_HEADERS) + "\n")
        for row in rows:
            parts.append(" | ".join(_table_cells(row)) + "\n")
        parts.append("\n")

    if report.areas_of_concern:
        parts.append("Areas of Concern & Recommendations:\n")
        for area in report.areas_of_concern:
            parts.append(
                f"- {area.metric_name} ({area.group_name}): {area.issue}\n"
                f"  Suggestion: {area.suggestion}\n"
            )

    return "".join(parts)


def escape(value: str) -> str:
    return html.escape(value, quote=True)


def _pill(text: str, status: str, dot: bool = False) -> str:
    dot_html = '<span class="status-dot"></span>' if dot else ""
    return f'<span class="status-pill status-{status}">{dot_html}{escape(text)}</span>'


def _html_cells(row: PerformanceRow) -> list[str]:
    if row.latest_met is None or not row.latest_actual_display:
        latest = EMPTY_CELL
    else:
        latest = _pill(row.latest_actual_display, "ok" if row.latest_met else "fail")

    last2 = _pill("Failing", "warn", dot=True) if row.fail2 else EMPTY_CELL
    last3 = _pill("Failing", "fail", dot=True) if row.fail3 else EMPTY_CELL

    if not row.at_risk:
        linked = EMPTY_CELL
    elif not row.linked_case_count:
        linked = '<span class="circle-badge circle-badge-fail">0</span>'
    else:
        linked = f'<span class="circle-badge circle-badge-ok">{row.linked_case_count}</span>'

    if row.achievement_rate is None:
        achievement = EMPTY_CELL
    else:
        status = "fail" if row.achievement_rate < AT_RISK_ACHIEVEMENT_THRESHOLD else "ok"
        achievement = _pill(format_percent(row.achievement_rate), status)

    return [escape(row.group_name), escape(row.metric_name), latest, last2, last3, linked, achievement]


_STYLE = """
    body { margin: 0; padding: 24px; background: #f3f4f6; color: #111827;
           font-family: system-ui, -apple-system, "Segoe UI", sans-serif; }
    .summary-root { max-width: 1100px; margin: 0 auto; }
    .summary-title { font-size: 18px; font-weight: 700; margin: 0 0 20px 0; }
    .card { background: #ffffff; border: 1px solid #e5e7eb; border-radius: 16px;
            padding: 20px 24px; margin-bottom: 20px; }
    .card-title { margin: 0 0 12px 0; font-size: 16px; font-weight: 700; color: #4f46e5; }
    .card p { margin: 0; font-size: 14px; line-height: 1.6; color: #4b5563; }
    .card-concerns { background: #fef2f2; border-color: #fecaca; }
    .concern-card { background: #ffffff; border: 1px solid #fee2e2; border-radius: 12px;
                    padding: 12px 14px; margin-bottom: 10px; }
    .concern-metric { font-size: 13px; font-weight: 700; margin-right: 6px; }
    .concern-group { font-size: 11px; padding: 2px 6px; border-radius: 999px; background: #f3f4f6; }
    .concern-issue { font-size: 13px; color: #b91c1c; margin: 6px 0 4px 0; }
    .concern-suggestion { font-size: 13px; color: #4b5563; font-style: italic; margin: 0; }
    .empty-text { font-size: 13px; color: #9ca3af; font-style: italic; }
    .stats-table { width: 100%; border-collapse: collapse; font-size: 12px; }
    .stats-table th, .stats-table td { padding: 8px 10px; border-bottom: 1px solid #e5e7eb; text-align: left; }
    .status-pill { display: inline-block; padding: 2px 8px; border-radius: 999px; font-size: 11px; }
    .status-dot { display: inline-block; width: 6px; height: 6px; border-radius: 999px;
                  margin-right: 4px; background: currentColor; }
    .status-ok { background: #ecfdf3; color: #166534; }
    .status-fail { background: #fef2f2; color: #b91c1c; }
    .status-warn { background: #fffbeb; color: #92400e; }
    .circle-badge { display: inline-block; width: 28px; height: 28px; line-height: 28px;
                    border-radius: 999px; font-size: 11px; text-align: center; }
    .circle-badge-ok { background: #ecfdf3; color: #166534; }
    .circle-badge-fail { background: #fef2f2; color: #b91c1c; }
"""


def render_html(report: SummaryReport, rows: list[PerformanceRow]) -> str:
    """Rich HTML report. Empty string when the report has no concerns list."""
    if report.areas_of_concern is None:
        return ""

    sections = [
        '<section class="card card-executive">\n'
        '  <h2 class="card-title">Executive Overview</h2>\n'
        f"  <p>{escape(report.executive_summary)}</p>\n"
        "</section>"
    ]

    if rows:
        header_html = "".join(f"<th>{escape(header)}</th>" for header in TABLE_HEADERS)
        body_html = "\n".join(
            "<tr>" + "".join(f"<td>{cell}</td>" for cell in _html_cells(row)) + "</tr>"
            for row in rows
        )
        sections.append(
            '<section class="card card-stats">\n'
            '  <h2 class="card-title">Portfolio Statistical Table</h2>\n'
            '  <table class="stats-table">\n'
            f"    <thead><tr>{header_html}</tr></thead>\n"
            f"    <tbody>\n{body_html}\n    </tbody>\n"
            "  </table>\n"
            "</section>"
        )

    if report.a3_summary and report.a3_summary.strip():
        sections.append(
            '<section class="card card-a3">\n'
            '  <h2 class="card-title">A3 Problem Solving Summary</h2>\n'
            f"  <p>{escape(report.a3_summary)}</p>\n"
            "</section>"
        )

    if report.areas_of_concern:
        concerns_html = "\n".join(
            '<div class="concern-card">\n'
            f'  <span class="concern-metric">{escape(area.metric_name)}</span>\n'
            f'  <span class="concern-group">{escape(area.group_name)}</span>\n'
            f'  <p class="concern-issue">{escape(area.issue)}</p>\n'
            f'  <p class="concern-suggestion">{escape(area.suggestion)}</p>\n'
            "</div>"
            for area in report.areas_of_concern
        )
    else:
        concerns_html = (
            '<p class="empty-text">No major areas of concern identified. Keep up the good work!</p>'
        )
    sections.append(
        '<section class="card card-concerns">\n'
        '  <h2 class="card-title">Areas of Concern &amp; Recommendations</h2>\n'
        f"  {concerns_html}\n"
        "</section>"
    )

    body = "\n\n".join(sections)
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>Smart Summary &amp; Insights</title>
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <style>{_STYLE}  </style>
</head>
<body>
  <div class="summary-root">
    <h1 class="summary-title">Smart Summary &amp; Insights</h1>
{body}
  </div>
</body>
</html>"""


def render_simple_html(text: str) -> str:
    """Escaped text with line breaks, for upstream output that is not a summary."""
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    with_breaks = escape(normalized).replace("\n", "<br />")
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>Monthly Summary</title>
</head>
<body>
  <div style="font-family: system-ui, -apple-system, 'Segoe UI', sans-serif; font-size: 14px; line-height: 1.6;">
    {with_breaks}
  </div>
</body>
</html>"""


def render_content(raw: str, rows: list[PerformanceRow]) -> tuple[str, str]:
    """
    Render an upstream answer as (plain text, html).

    Never raises. Without a valid summary the plain text is ``raw``
    verbatim and the HTML is its escaped, line-broken rendering.
    """
    report = parse_summary(raw)
    if report is None:
        return raw, render_simple_html(raw)

    plain_text = render_plain_text(report, rows)
    rich_html = render_html(report, rows)
    if not rich_html.strip():
        rich_html = render_simple_html(plain_text)
    return plain_text, rich_html


class ContentGenerator:
    """Aggregates owner data, asks the text generator for a summary and renders it."""

    def __init__(self, text_generator: TextGenerationService):
        self.text_generator = text_generator

    async def generate(self, owner_data: OwnerData, model: str) -> GeneratedContent:
        rows = aggregate(owner_data.entities, owner_data.cases)
        system_prompt, user_prompt = build_prompts(owner_data, rows)

        try:
            raw = await self.text_generator.generate(model, system_prompt, user_prompt)
        except TextGenerationError as e:
            logger.warning("Summary generation failed, sending fallback text", error=str(e), model=model)
            raw = GENERATION_FAILED_TEXT

        plain_text, rich_html = render_content(raw, rows)
        return GeneratedContent(plain_text=plain_text, html=rich_html, rows=rows, raw_response=raw)
