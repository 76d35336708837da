"""Tests for the reporter: window filtering, rendering, persistence, e-mail."""
from __future__ import annotations

import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from radar import services
from radar.models import AgentRun, Report
from radar.render import ReportModel, ReportStats, render_html, render_markdown
from radar.reporter import (
    build_report_model,
    default_sections,
    draft_sections,
    fetch_report_data,
    preview_report,
    resolve_window,
    run_reporter,
)

DAY = datetime(2026, 9, 1)

SENT = {"success": True, "id": "email_123"}

pytestmark = pytest.mark.usefixtures("no_llm")


def _day(n: int) -> datetime:
    return DAY + timedelta(days=n - 1)


class TestWindow:
    def test_inclusive_filter(self, session, make_analysis):
        make_analysis(_day(1))
        inside = make_analysis(_day(10))
        make_analysis(_day(20))
        signals = fetch_report_data(session, _day(5), _day(15))
        assert [s.id for s in signals] == [inside.id]

    def test_boundaries_included(self, session, make_analysis):
        make_analysis(_day(5))
        make_analysis(_day(15))
        assert len(fetch_report_data(session, _day(5), _day(15))) == 2

    def test_sorted_by_score(self, session, make_analysis):
        low = make_analysis(_day(2), scores=(1, 1, 1, 1))
        high = make_analysis(_day(3), scores=(4, 4, 3, 3))
        assert [s.id for s in fetch_report_data(session, _day(1), _day(4))] == [high.id, low.id]

    def test_default_window(self):
        start, end = resolve_window(now=_day(15))
        assert end == _day(15)
        assert start == _day(1)

    def test_inverted_window_rejected(self):
        with pytest.raises(ValueError):
            resolve_window("2026-09-10", "2026-09-01")

    def test_unparseable_date_rejected(self):
        with pytest.raises(ValueError, match="cycleStart"):
            resolve_window("last tuesday", "2026-09-01")


class TestRendering:
    def _model(self, session, make_analysis, **signal_fields):
        make_analysis(_day(2), scores=(4, 4, 3, 3), **signal_fields)
        make_analysis(_day(3), scores=(3, 2, 2, 1))
        model = build_report_model(fetch_report_data(session, _day(1), _day(4)), _day(1), _day(4))
        default_sections(model).apply(model)
        return model

    def test_markdown_sections(self, session, make_analysis):
        markdown = render_markdown(self._model(session, make_analysis, entity_name="Galera Bet"))
        assert markdown.startswith("# 🎯 Market Intelligence Report")
        assert "## 🔥 Top Opportunities" in markdown
        assert "### 🇧🇷 Galera Bet" in markdown
        assert "## 📊 Worth Monitoring" in markdown
        assert "## 📝 Executive Summary" in markdown

    def test_html_escapes_entity_names(self, session, make_analysis):
        html = render_html(self._model(session, make_analysis, entity_name="<script>Bet</script>"))
        assert "<script>Bet" not in html
        assert "&lt;script&gt;Bet" in html

    def test_medium_overflow(self):
        from radar.render import ReportSignal
        medium = [
            ReportSignal(
                id=str(i), signal_id=str(i), entity_name=f"Op{i}", entity_type="bookmaker", geo="mx",
                signal_type="GROWTH", final_score=8, priority="MEDIUM", score_breakdown={},
                risk_flags={}, recommended_actions=[], ai_reasoning="", analyzed_at=_day(1),
            )
            for i in range(7)
        ]
        model = ReportModel(cycle_start=_day(1), cycle_end=_day(2), medium=medium, stats=ReportStats(total=7))
        markdown = render_markdown(model)
        assert "**Op4**" in markdown
        assert "**Op5**" not in markdown
        assert "+ 2 more" in markdown


class TestDrafting:
    @pytest.mark.asyncio
    async def test_sections_from_model_and_finalize_stops(self, scripted, turns):
        tool_turn, _ = turns
        client = scripted([
            tool_turn(
                ("generate_report_section", {"section_type": "executive_summary", "content": "Brazil is hot."}),
                ("generate_report_section", {"section_type": "key_trends", "content": "- Sponsorships up\n- New licences"}),
            ),
            tool_turn(("finalize_report", {"report_complete": True})),
        ], fallback=lambda: pytest.fail("loop should stop after finalize_report"))
        model = ReportModel(cycle_start=_day(1), cycle_end=_day(2))
        sections, usage, error = await draft_sections(client, model)
        assert error is None
        assert sections.finalized is True
        assert sections.key_trends == ["Sponsorships up", "New licences"]
        sections.apply(model)
        assert model.executive_summary == "Brazil is hot."
        assert usage.total_tokens == 30

    @pytest.mark.asyncio
    async def test_bad_section_type_is_tool_error(self, scripted, turns):
        tool_turn, _ = turns
        client = scripted([tool_turn(("generate_report_section", {"section_type": "weather", "content": "x"}))])
        model = ReportModel(cycle_start=_day(1), cycle_end=_day(2))
        await draft_sections(client, model)
        results = client.calls[1]["messages"][-1].content
        assert results[0].is_error

    @pytest.mark.asyncio
    async def test_model_failure_falls_back(self, scripted):
        client = scripted([RuntimeError("overloaded")])
        model = ReportModel(cycle_start=_day(1), cycle_end=_day(2))
        sections, _, error = await draft_sections(client, model)
        assert "overloaded" in error
        sections.apply(model)
        assert model.executive_summary.startswith("0 signal(s)")


class TestRunReporter:
    @pytest.mark.asyncio
    async def test_empty_window(self, session):
        result = await run_reporter(session, cycle_start=_day(1), cycle_end=_day(2))
        assert result == {"reportId": "", "signalsIncluded": 0, "emailSent": False}
        assert session.query(Report).count() == 0
        assert session.query(AgentRun).count() == 0

    @pytest.mark.asyncio
    async def test_empty_window_via_services(self, session):
        result = await services.report(session, cycle_start="2026-09-01", cycle_end="2026-09-02")
        assert result == {"success": True, "data": {"reportId": "", "signalsIncluded": 0, "emailSent": False}}

    @pytest.mark.asyncio
    async def test_two_commits_two_rows_one_email_each(self, session, make_analysis):
        make_analysis(_day(3), scores=(4, 4, 3, 3))
        with patch("radar.reporter.send_email", new=AsyncMock(return_value=SENT)) as mock_send:
            first = await run_reporter(session, cycle_start=_day(1), cycle_end=_day(5), recipients=["bd@e-2.at"])
            first_sent_at = session.get(Report, first["reportId"]).sent_at
            second = await run_reporter(session, cycle_start=_day(1), cycle_end=_day(5), recipients=["bd@e-2.at"])

        assert first["reportId"] != second["reportId"]
        assert session.query(Report).count() == 2
        assert mock_send.await_count == 2
        assert first["emailSent"] is True
        assert first["recipients"] == ["bd@e-2.at"]
        assert session.get(Report, first["reportId"]).sent_at == first_sent_at
        to, subject, html = mock_send.await_args.args
        assert subject == "E2 Market Intelligence: 1 High Priority Opportunities"
        assert "<html" in html.lower()

    @pytest.mark.asyncio
    async def test_failed_email_leaves_report_unsent(self, session, make_analysis):
        make_analysis(_day(3))
        failure = {"success": False, "error": "Email service not configured"}
        with patch("radar.reporter.send_email", new=AsyncMock(return_value=failure)):
            result = await run_reporter(session, cycle_start=_day(1), cycle_end=_day(5))
        report = session.get(Report, result["reportId"])
        assert report.sent_at is None
        assert result["emailSent"] is False
        assert result["emailError"] == "Email service not configured"
        run = session.get(AgentRun, result["runId"])
        assert run.error is None
        assert json.loads(run.output_summary_json)["emailError"] == "Email service not configured"

    @pytest.mark.asyncio
    async def test_no_send(self, session, make_analysis):
        make_analysis(_day(3))
        with patch("radar.reporter.send_email", new=AsyncMock(return_value=SENT)) as mock_send:
            result = await run_reporter(session, cycle_start=_day(1), cycle_end=_day(5), send=False)
        mock_send.assert_not_awaited()
        report = session.get(Report, result["reportId"])
        assert report.sent_at is None
        assert json.loads(report.summary_stats_json)["totalSignals"] == 1

    @pytest.mark.asyncio
    async def test_send_crash_closes_run(self, session, make_analysis):
        make_analysis(_day(3))
        with patch("radar.reporter.send_email", new=AsyncMock(side_effect=RuntimeError("smtp exploded"))):
            result = await services.report(session, cycle_start="2026-09-01", cycle_end="2026-09-05")
        assert result == {"success": False, "error": "Report generation failed: smtp exploded"}
        run = session.query(AgentRun).one()
        assert run.completed_at is not None
        assert run.error == "smtp exploded"
        assert session.query(Report).one().sent_at is None

    @pytest.mark.asyncio
    async def test_value_error_after_window_is_a_generation_failure(self, session, make_analysis):
        make_analysis(_day(3))
        with patch("radar.reporter.send_email", new=AsyncMock(side_effect=ValueError("Expecting value"))):
            result = await services.report(session, cycle_start="2026-09-01", cycle_end="2026-09-05")
        assert result["error"] == "Report generation failed: Expecting value"
        assert session.query(AgentRun).one().error == "Expecting value"

    @pytest.mark.asyncio
    async def test_bad_window_via_services(self, session):
        result = await services.report(session, cycle_start="2026-09-05", cycle_end="2026-09-01")
        assert result == {"success": False, "error": "cycleStart must not be after cycleEnd"}
        assert session.query(AgentRun).count() == 0


class TestPreview:
    def test_preview_persists_nothing(self, session, make_analysis):
        make_analysis(_day(3))
        data = preview_report(session, _day(1), _day(5))
        assert data["stats"]["total"] == 1
        assert "Market Intelligence Report" in data["markdown"]
        assert session.query(Report).count() == 0
        assert session.query(AgentRun).count() == 0

    def test_preview_of_empty_window_renders(self, session):
        data = preview_report(session, _day(1), _day(2))
        assert data["stats"]["total"] == 0
        assert "Total Signals | 0" in data["markdown"]
