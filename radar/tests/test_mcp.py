"""Tests for the MCP tool functions, called directly against the in-memory database."""
from __future__ import annotations

import json

import pytest

from radar import mcp_server
from radar.models import AnalyzedSignal
from radar.store import add_regulatory_news


@pytest.fixture()
def mcp_db(session_factory, monkeypatch, no_llm):
    monkeypatch.setattr(mcp_server, "get_session", session_factory)
    return session_factory


class TestMcpServer:
    def test_server_registered(self):
        assert mcp_server.mcp is not None
        overview = json.loads(mcp_server.radar_overview())
        assert "AFFILIATE_PARTNER" in overview["partner_tiers"]

    def test_list_signals_priority_filter(self, mcp_db, session, make_signal):
        high = make_signal()
        make_signal()
        session.add(AnalyzedSignal(signal_id=high.id, final_score=12, priority="HIGH"))
        session.commit()
        assert len(mcp_server.list_signals()) == 2
        assert [s["id"] for s in mcp_server.list_signals(priority="high")] == [high.id]

    def test_feedback_and_archive(self, mcp_db, make_signal):
        signal = make_signal()
        assert mcp_server.submit_feedback(signal.id, True)["is_useful"] is True
        assert "error" in mcp_server.submit_feedback("missing", False)
        assert mcp_server.archive_signal(signal.id) == {"id": signal.id, "is_archived": True}
        assert mcp_server.list_signals() == []

    def test_review_regulatory_news(self, mcp_db, session):
        add_regulatory_news(session, [{"title": "Nova portaria", "url": "https://n.test/1"}])
        session.commit()
        item = mcp_server.list_regulatory_news()[0]
        assert mcp_server.review_regulatory_news(item["id"], "ignore")["status"] == "ignored"
        assert "error" in mcp_server.review_regulatory_news(item["id"], "delete")
        assert "error" in mcp_server.review_regulatory_news("missing", "apply")

    @pytest.mark.asyncio
    async def test_analyzer_needs_llm(self, mcp_db):
        result = await mcp_server.run_analyzer()
        assert result == {"error": "LLM not configured: set ANTHROPIC_API_KEY or OPENAI_API_KEY"}

    @pytest.mark.asyncio
    async def test_preview_and_stats(self, mcp_db):
        preview = await mcp_server.preview_report()
        assert preview["stats"]["total"] == 0
        assert "Market Intelligence Report" in preview["markdown"]
        assert mcp_server.get_stats()["signals"]["total"] == 0
        assert mcp_server.get_report_markdown("missing") == {"error": "Report missing not found"}
