"""
Tests for summary content generation and rendering.
"""

import json

import pytest

from summary_mailer.models.domain.performance_domain import OwnerData, PerformanceRow
from summary_mailer.services.content_service import (
    GENERATION_FAILED_TEXT,
    ContentGenerator,
    build_context,
    build_snapshot,
    format_percent,
    parse_summary,
    render_content,
    render_simple_html,
)
from tests.fakes import FakeTextGenerator


def at_risk_row(**overrides):
    values = dict(
        group_name="Ops",
        metric_id="m1",
        metric_name="Yield",
        owner_entity_id="b1",
        latest_met=False,
        latest_actual_display="7",
        fail2=True,
        fail3=False,
        achievement_rate=62.5,
        linked_case_count=0,
    )
    values.update(overrides)
    return PerformanceRow(**values)


def healthy_row():
    return PerformanceRow(
        group_name="Quality",
        metric_id="m2",
        metric_name="Scrap <rate>",
        owner_entity_id="b2",
        latest_met=True,
        latest_actual_display="1.2",
        achievement_rate=100.0,
    )


SUMMARY = {
    "executiveSummary": "Yield is slipping.",
    "a3Summary": "One A3 open.",
    "areasOfConcern": [
        {"metricName": "Yield", "groupName": "Ops", "issue": "Missed 2 months", "suggestion": "Run a 5-why"}
    ],
}


class TestFallback:
    @pytest.mark.parametrize("raw", ["not json at all", "Sorry, I couldn't generate a response.", "", "[1, 2]"])
    def test_non_summary_text_is_returned_verbatim(self, raw):
        plain, html = render_content(raw, [at_risk_row()])

        assert plain == raw
        assert "<!doctype html>" in html

    def test_deeply_nested_text_is_returned_verbatim(self):
        raw = "[" * 100_000

        plain, html = render_content(raw, [])

        assert plain == raw
        assert parse_summary(raw) is None
        assert "<!doctype html>" in html

    def test_missing_executive_summary_falls_back(self):
        raw = json.dumps({"a3Summary": "x", "areasOfConcern": []})

        plain, _ = render_content(raw, [])

        assert plain == raw

    def test_simple_html_escapes_and_breaks_lines(self):
        html = render_simple_html("a < b\r\nsay \"hi\" & 'bye'")

        assert "a &lt; b<br />say &quot;hi&quot; &amp; &#x27;bye&#x27;" in html


class TestParsing:
    def test_code_fences_are_stripped(self):
        raw = "```json\n" + json.dumps(SUMMARY) + "\n```"

        report = parse_summary(raw)

        assert report is not None
        assert report.executive_summary == "Yield is slipping."
        assert report.areas_of_concern[0].metric_name == "Yield"

    def test_concern_without_suggestion_is_accepted(self):
        raw = json.dumps({"executiveSummary": "ok", "areasOfConcern": [{"metricName": "Y", "issue": "bad"}]})

        report = parse_summary(raw)

        assert report.areas_of_concern[0].suggestion == ""


class TestRendering:
    def test_plain_text_layout(self):
        plain, _ = render_content(json.dumps(SUMMARY), [at_risk_row(), healthy_row()])

        assert plain.startswith("Executive Overview:\nYield is slipping.\n\n")
        assert "A3 Problem Solving Summary:\nOne A3 open.\n\n" in plain
        assert "Group | Metric | Latest month | Last 2 months | Last 3 months | Linked A3s" in plain
        assert "Ops | Yield | 7 | Failing | - | 0 | 63%" in plain
        assert "Quality | Scrap <rate> | 1.2 | - | - | - | 100%" in plain
        assert "- Yield (Ops): Missed 2 months\n  Suggestion: Run a 5-why\n" in plain

    def test_rich_html_status_indicators_and_escaping(self):
        _, html = render_content(json.dumps(SUMMARY), [at_risk_row(fail3=True, linked_case_count=2), healthy_row()])

        assert "Smart Summary &amp; Insights" in html
        assert "Scrap &lt;rate&gt;" in html
        assert "status-pill status-fail" in html
        assert "status-pill status-warn" in html
        assert "circle-badge-ok\">2<" in html
        assert "status-pill status-ok\">100%" in html
        assert "status-pill status-fail\">63%" in html

    def test_zero_linked_cases_badge(self):
        _, html = render_content(json.dumps(SUMMARY), [at_risk_row()])

        assert "circle-badge-fail\">0<" in html

    def test_empty_concerns_renders_no_concern_line(self):
        raw = json.dumps({"executiveSummary": "All good.", "areasOfConcern": []})

        _, html = render_content(raw, [healthy_row()])

        assert "No major areas of concern identified" in html

    def test_without_concerns_list_uses_simple_html(self):
        raw = json.dumps({"executiveSummary": "Just a summary."})

        plain, html = render_content(raw, [])

        assert plain == "Executive Overview:\nJust a summary.\n\n"
        assert "Executive Overview:<br />Just a summary." in html
        assert "Smart Summary" not in html

    def test_percent_rounds_half_up(self):
        assert format_percent(62.5) == "63%"
        assert format_percent(66.66) == "67%"
        assert format_percent(0.0) == "0%"


class TestPrompt:
    def test_snapshot_contains_only_at_risk_rows(self):
        owner = OwnerData.from_payload(
            {
                "a3Cases": [
                    {"id": "c1", "status": "completed", "linkedMetricIds": ["m1"]},
                    {"id": "c2", "status": "Open", "linkedMetricIds": ["m1"]},
                ]
            }
        )

        snapshot = build_snapshot([at_risk_row(achievement_rate=66.666), healthy_row()], owner.cases)

        assert len(snapshot) == 1
        assert snapshot[0]["metricId"] == "m1"
        assert snapshot[0]["achievementRate"] == 66.7
        assert snapshot[0]["linkedCaseTotal"] == 2
        assert snapshot[0]["linkedCaseCompleted"] == 1
        assert snapshot[0]["linkedCaseActive"] == 1

    def test_context_drops_bulky_case_fields(self):
        owner = OwnerData.from_payload(
            {
                "bowlers": [{"id": "b1", "group": " ", "metrics": []}],
                "a3Cases": [{"id": "c1", "title": "Fix yield", "mindMapNodes": [1], "resultImages": ["x"]}],
            }
        )

        context = json.loads(build_context(owner))

        assert context["a3Cases"] == [{"id": "c1", "title": "Fix yield"}]
        assert context["bowlers"][0]["group"] == "Ungrouped"


class TestContentGenerator:
    @pytest.mark.asyncio
    async def test_generator_failure_degrades_to_apology(self):
        generator = ContentGenerator(FakeTextGenerator(fail=True))

        content = await generator.generate(OwnerData(), "deepseek")

        assert content.plain_text == GENERATION_FAILED_TEXT
        assert GENERATION_FAILED_TEXT.replace("'", "&#x27;") in content.html

    @pytest.mark.asyncio
    async def test_generator_passes_model_and_prompts(self):
        text_generator = FakeTextGenerator(response=json.dumps(SUMMARY))
        owner = OwnerData.from_payload(
            {
                "bowlers": [
                    {
                        "id": "b1",
                        "group": "Ops",
                        "metrics": [
                            {
                                "id": "m1",
                                "name": "Yield",
                                "monthlyData": {
                                    "2025-01": {"actual": "1", "target": "10"},
                                    "2025-02": {"actual": "1", "target": "10"},
                                },
                            }
                        ],
                    }
                ]
            }
        )

        content = await ContentGenerator(text_generator).generate(owner, "kimi")

        [(model, system_prompt, user_prompt)] = text_generator.calls
        assert model == "kimi"
        assert "Metric Bowler & A3 Problem Solving" in system_prompt
        assert '"metricId": "m1"' in user_prompt
        assert [row.metric_id for row in content.rows] == ["m1"]
        assert content.plain_text.startswith("Executive Overview:")
