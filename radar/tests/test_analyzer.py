"""Tests for the analyzer stage."""
from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from radar.agent import AgentAbortedError
from radar.analyzer import AnalyzerTools, batch_message, build_system_prompt, run_analyzer, summarize
from radar.models import AgentRun, AnalyzedSignal
from radar.store import add_regulatory_news


def _score_args(signal_id, momentum=4, fit=3, act=2, conf=2):
    return {
        "signal_id": signal_id,
        "market_entry_momentum": momentum,
        "e2_partnership_fit": fit,
        "actionability": act,
        "data_confidence": conf,
        "risk_regulatory": True,
        "risk_notes": "license pending",
        "recommended_actions": ["Contact BD lead"],
        "reasoning": "Fresh launch",
    }


class TestAnalyzerTools:
    def test_foreign_signal_rejected(self, session, make_signal):
        inside, outside = make_signal(), make_signal()
        tools = AnalyzerTools(session, {inside.id})
        result = tools.score_signal(_score_args(outside.id))
        assert result["success"] is False
        assert "not part of this batch" in result["error"]
        assert session.query(AnalyzedSignal).count() == 0

    def test_scores_and_records(self, session, make_signal):
        signal = make_signal()
        tools = AnalyzerTools(session, {signal.id})
        result = tools.score_signal(_score_args(signal.id))
        assert result == {
            "success": True,
            "analyzed_signal_id": result["analyzed_signal_id"],
            "final_score": 11,
            "priority": "HIGH",
        }
        analysis = session.query(AnalyzedSignal).one()
        assert json.loads(analysis.risk_flags_json)["notes"] == ["license pending"]

    def test_second_score_is_tool_error(self, session, make_signal):
        signal = make_signal()
        tools = AnalyzerTools(session, {signal.id})
        tools.score_signal(_score_args(signal.id))
        result = tools.score_signal(_score_args(signal.id, momentum=0))
        assert result["success"] is False
        assert session.query(AnalyzedSignal).count() == 1
        assert tools.scored == [("HIGH", 11)]


class TestPrompt:
    def test_batch_message_lists_ids(self, make_signal):
        signals = [make_signal(), make_signal()]
        message = batch_message(signals)
        assert "2 signal(s)" in message
        assert all(s.id in message for s in signals)

    def test_regulatory_headlines_in_system_prompt(self, session):
        add_regulatory_news(session, [{"title": "SPA publishes new ordinance", "url": "https://n.test/1"}])
        prompt = build_system_prompt(session, ["br", "br"])
        assert "SPA publishes new ordinance" in prompt
        assert "{GEO_CONTEXT}" not in prompt

    def test_summarize(self):
        assert summarize([("HIGH", 12), ("LOW", 4)]) == {
            "signals_analyzed": 2,
            "by_priority": {"HIGH": 1, "MEDIUM": 0, "LOW": 1},
            "avg_score": 8.0,
        }


class TestRunAnalyzer:
    @pytest.mark.asyncio
    async def test_nothing_to_analyze(self, session, scripted):
        client = scripted([])
        result = await run_analyzer(session, client)
        assert result["signals_analyzed"] == 0
        assert client.calls == []
        assert session.query(AgentRun).count() == 0

    @pytest.mark.asyncio
    async def test_batches_and_restriction(self, session, make_signal, scripted, turns):
        tool_turn, text_turn = turns
        a, b, c = make_signal(), make_signal(), make_signal()
        both = (
            ("score_signal", _score_args(a.id)),
            ("score_signal", _score_args(b.id, momentum=1, fit=1, act=1, conf=1)),
            ("score_signal", _score_args(c.id)),
        )
        client = scripted([tool_turn(*both), text_turn(), tool_turn(*both), text_turn()])
        result = await run_analyzer(session, client, signal_ids=[a.id, b.id], batch_size=1)

        assert result["signals_analyzed"] == 2
        assert result["by_priority"] == {"HIGH": 1, "MEDIUM": 0, "LOW": 1}
        analyzed_ids = {row.signal_id for row in session.query(AnalyzedSignal)}
        assert analyzed_ids == {a.id, b.id}
        for call in (client.calls[1], client.calls[3]):
            results = call["messages"][-1].content
            accepted = [r for r in results if r.content.get("success")]
            assert len(accepted) == 1
            assert all("not part of this batch" in r.content["error"] for r in results if r not in accepted)
        run = session.get(AgentRun, result["runId"])
        assert run.error is None
        assert json.loads(run.output_summary_json)["iterations"] == 4

    @pytest.mark.asyncio
    async def test_unexpected_failure_closes_run(self, session, make_signal, scripted):
        make_signal()
        client = scripted([])
        with patch("radar.analyzer.build_system_prompt", side_effect=RuntimeError("database is locked")):
            with pytest.raises(RuntimeError):
                await run_analyzer(session, client)
        run = session.query(AgentRun).one()
        assert run.completed_at is not None
        assert run.error == "database is locked"
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_abort_keeps_scores(self, session, make_signal, scripted, turns):
        tool_turn, _ = turns
        signal = make_signal()
        client = scripted([tool_turn(("score_signal", _score_args(signal.id))), RuntimeError("timeout")])
        with pytest.raises(AgentAbortedError):
            await run_analyzer(session, client)
        assert session.query(AnalyzedSignal).count() == 1
        run = session.query(AgentRun).one()
        assert "timeout" in run.error
        assert json.loads(run.output_summary_json)["signals_analyzed"] == 1
