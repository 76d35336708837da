"""Tests for the article-first collector."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from radar.articles import (
    EXPANSION,
    INDUSTRY_NEWS,
    MARKET_ENTRY,
    REGULATORY,
    article_score,
    categorize,
    company_names,
    is_brazil_relevant,
    run_article_collector,
)
from radar.models import AgentRun, RegulatoryNews, Signal

REGULATORY_ARTICLE = {
    "title": "Secretaria de Prêmios publica nova portaria",
    "description": "Regulamentação das apostas no Brasil avança",
    "url": "https://n.test/spa",
    "source": "Gaming Post",
    "publishedAt": "2026-10-01T12:00:00Z",
    "quality": 4,
}
LAUNCH_ARTICLE = {
    "title": "Betano launches casino vertical in Brazil",
    "description": "The operator debuts new products",
    "url": "https://n.test/betano",
    "source": "SBC Americas",
    "publishedAt": "2026-10-02T09:00:00Z",
    "quality": 5,
}
NO_COMPANY_ARTICLE = {
    "title": "Market grows 20% in third quarter",
    "description": "Industry growth continues",
    "url": "https://n.test/growth",
    "source": "iGaming Business",
    "publishedAt": "2026-10-03T09:00:00Z",
    "quality": 5,
}


class TestCategorize:
    def test_regulatory_without_company(self):
        assert categorize(REGULATORY_ARTICLE, "br") == REGULATORY

    def test_regulatory_only_for_brazil(self):
        assert categorize(REGULATORY_ARTICLE, "mx") == INDUSTRY_NEWS

    def test_named_company_is_not_regulatory(self):
        article = {**LAUNCH_ARTICLE, "description": "after receiving its federal license"}
        assert categorize(article, "br") == MARKET_ENTRY

    def test_expansion(self):
        assert categorize(NO_COMPANY_ARTICLE, "br") == EXPANSION

    def test_company_names(self):
        assert company_names({"title": "Pixbet and Estrelabet sign deal", "description": ""}) == ["Pixbet", "Estrelabet"]


class TestRelevance:
    def test_brazil_source_without_foreign_markers(self):
        assert is_brazil_relevant({"title": "New ordinance", "source": "iGaming Brazil"}) is True

    def test_foreign_marker_excludes(self):
        assert is_brazil_relevant({"title": "Ohio regulator fines operator", "source": "iGaming Brazil"}) is False

    def test_keyword_required_elsewhere(self):
        assert is_brazil_relevant({"title": "New ordinance", "source": "SBC Americas"}) is False
        assert is_brazil_relevant({"title": "Fazenda publishes ordinance", "source": "SBC Americas"}) is True


class TestArticleScore:
    def test_best_case_capped(self):
        assert article_score({"quality": 5}, MARKET_ENTRY, 2) == 10

    def test_baseline(self):
        assert article_score({"quality": 3}, INDUSTRY_NEWS, 1) == 5


class TestRunArticleCollector:
    @pytest.mark.asyncio
    async def test_signals_and_regulatory_queue(self, session):
        news = {"articles": [REGULATORY_ARTICLE, LAUNCH_ARTICLE, NO_COMPANY_ARTICLE], "errors": []}
        with patch("radar.articles.get_recent_industry_news", new=AsyncMock(return_value=news)):
            result = await run_article_collector(session, geo="BR")

        assert result["signals_stored"] == 1
        assert result["entities_discovered"] == ["Betano"]
        assert result["articles_processed"] == 3
        assert result["regulatory_news_added"] == 1

        signal = session.query(Signal).one()
        assert signal.signal_type == MARKET_ENTRY
        assert signal.signal_category == "market_entry"
        assert signal.agent_run_id == result["runId"]
        assert json.loads(signal.evidence_json)[0]["confidence"] == 0.9

        news_item = session.query(RegulatoryNews).one()
        assert news_item.status == "pending"
        assert news_item.url == REGULATORY_ARTICLE["url"]

        run = session.get(AgentRun, result["runId"])
        assert json.loads(run.input_params_json)["mode"] == "articles"
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_rerun_does_not_duplicate_regulatory_news(self, session):
        news = {"articles": [REGULATORY_ARTICLE], "errors": []}
        with patch("radar.articles.get_recent_industry_news", new=AsyncMock(return_value=news)):
            await run_article_collector(session)
            second = await run_article_collector(session)
        assert second["regulatory_news_added"] == 0
        assert session.query(RegulatoryNews).count() == 1

    @pytest.mark.asyncio
    async def test_feed_failure_closes_run(self, session):
        failing = AsyncMock(side_effect=RuntimeError("feed parser crashed"))
        with patch("radar.articles.get_recent_industry_news", new=failing):
            with pytest.raises(RuntimeError):
                await run_article_collector(session)
        run = session.query(AgentRun).one()
        assert run.completed_at is not None
        assert run.error == "feed parser crashed"
