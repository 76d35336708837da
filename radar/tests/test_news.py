"""Tests for feed parsing, industry news search and entity extraction."""
from __future__ import annotations

from datetime import timedelta
from email.utils import format_datetime
from unittest.mock import AsyncMock, patch

import pytest

from radar.extraction import extract_entities, extract_entities_from_articles
from radar.news import INDUSTRY_SOURCES, clean_html, parse_feed, search_industry_news, search_news, sources_for_region
from radar.utils import utcnow

SOURCE = INDUSTRY_SOURCES[1]


def _rss(*items: str) -> bytes:
    body = "".join(items)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<rss version=\"2.0\"><channel><title>Feed</title>{body}</channel></rss>"
    ).encode()


def _item(title: str, link: str = "https://n.test/a", description: str = "", pub: str = "") -> str:
    pub_tag = f"<pubDate>{pub}</pubDate>" if pub else ""
    return (
        f"<item><title>{title}</title><link>{link}</link>"
        f"<description><![CDATA[{description}]]></description>{pub_tag}</item>"
    )


def _recent(days_ago: int = 0) -> str:
    return format_datetime(utcnow() - timedelta(days=days_ago), usegmt=False)


class TestCleanHtml:
    def test_strips_tags_and_whitespace(self):
        assert clean_html("<p>Hello <b>world</b>\n\n</p>") == "Hello world"

    def test_empty(self):
        assert clean_html("") == ""
        assert clean_html(None) == ""

    def test_plain_text_passthrough(self):
        assert clean_html("Betano  launches") == "Betano launches"


class TestParseFeed:
    def test_items(self):
        xml = _rss(
            _item("Betano lança app", description="<p>Nova <i>casa</i></p>", pub="Thu, 01 Oct 2026 12:00:00 GMT"),
            _item("No link", link=""),
        )
        articles = parse_feed(xml, SOURCE)
        assert len(articles) == 1
        article = articles[0]
        assert article["title"] == "Betano lança app"
        assert article["description"] == "Nova casa"
        assert article["publishedAt"] == "2026-10-01T12:00:00Z"
        assert article["source"] == SOURCE.name
        assert article["quality"] == SOURCE.quality

    def test_malformed_xml(self):
        assert parse_feed(b"this is not <xml", SOURCE) == []

    def test_missing_date_uses_now(self):
        articles = parse_feed(_rss(_item("Undated")), SOURCE)
        assert articles[0]["publishedAt"].startswith(str(utcnow().year))


class TestSources:
    def test_region_includes_latam_and_global(self):
        names = {s.name for s in sources_for_region("br")}
        assert "iGaming Business" in names
        assert "SBC Americas" in names

    def test_no_region_is_everything(self):
        assert len(sources_for_region(None)) == len(INDUSTRY_SOURCES)


class TestSearchIndustryNews:
    @pytest.mark.asyncio
    async def test_keyword_filter_and_failed_source(self):
        feed = _rss(
            _item("Betano expands in Rio", link="https://n.test/1", pub=_recent(1)),
            _item("Lottery results", link="https://n.test/2", pub=_recent(1)),
            _item("Old Betano story", link="https://n.test/3", pub=_recent(60)),
        )

        async def fetch(url):
            if "yogonet" in url:
                raise RuntimeError("timeout")
            return feed

        with patch("radar.news._fetch_text", new=AsyncMock(side_effect=fetch)):
            result = await search_industry_news(["betano"], region="br", max_days_old=30)

        titles = {a["title"] for a in result["articles"]}
        assert titles == {"Betano expands in Rio"}
        assert any("Yogonet" in e for e in result["errors"])
        assert len(result["sources_checked"]) == len(INDUSTRY_SOURCES)

    @pytest.mark.asyncio
    async def test_best_quality_first(self):
        async def fetch(url):
            return _rss(_item("Betano news", link=url, pub=_recent(1)))

        with patch("radar.news._fetch_text", new=AsyncMock(side_effect=fetch)):
            result = await search_industry_news([], region="br", limit=3)
        assert [a["quality"] for a in result["articles"]] == [5, 5, 5]


class TestNewsApi:
    @pytest.mark.asyncio
    async def test_not_configured(self, monkeypatch):
        monkeypatch.delenv("NEWS_API_KEY", raising=False)
        assert await search_news("bet") == {"error": "NewsAPI not configured"}


class TestExtraction:
    def test_known_operator_first(self):
        entities = extract_entities("Betano launches new app in Brazil")
        assert entities[0].name == "Betano"
        assert entities[0].confidence == "high"
        assert entities[0].source == "known_operator"
        assert "Brazil" not in [e.name for e in entities]

    def test_pattern_match(self):
        names = [e.name for e in extract_entities("Galerabet expands to Rio")]
        assert "Galerabet" in names

    def test_grouping_promotes_repeated_entities(self):
        articles = [
            {"title": "Galerabet expands to Rio", "url": "https://n.test/1", "source": "Folha"},
            {"title": "Galerabet sponsors club", "url": "https://n.test/2", "source": "Globo"},
            {"title": "Pixbet signs striker", "url": "https://n.test/3", "source": "Globo"},
        ]
        grouped = extract_entities_from_articles(articles)
        by_name = {m.entity.name: m for m in grouped}
        assert by_name["Galerabet"].entity.confidence == "high"
        assert len(by_name["Galerabet"].articles) == 2
        assert grouped[0].entity.confidence == "high"
