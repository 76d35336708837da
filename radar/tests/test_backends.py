"""Tests for the capability backends: rate limiting, trends, sentiment, search, crawl, mail, model client."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from radar.agent import Usage
from radar.crawl import (
    HIGH_OPPORTUNITY,
    LOW_PRIORITY,
    NEEDS_REVIEW,
    detect_betting,
    recommend,
    scrape_url,
    sports_categories,
)
from radar.llm import LLMCallError, LLMClient
from radar.mailer import default_recipients, send_email
from radar.ratelimit import RateLimiter
from radar.search import check_search_presence, extract_domain, presence_score, search_web
from radar.sentiment import classify_sentiment, search_social_sentiment
from radar.trends import check_trend_interest, classify_trend, estimate_interest


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_window_cap(self):
        limiter = RateLimiter(min_delay=0.0, max_requests=2, window=60)
        assert await limiter.acquire() is True
        assert await limiter.acquire() is True
        assert await limiter.acquire() is False
        assert limiter.remaining == 0

    def test_unbounded_has_no_remaining(self):
        assert RateLimiter(min_delay=0.0).remaining is None

    def test_backoff_and_reset(self):
        limiter = RateLimiter(min_delay=2.0, max_delay=5.0)
        limiter.backoff()
        assert limiter._current_delay == 4.0
        limiter.backoff()
        assert limiter._current_delay == 5.0
        limiter.reset()
        assert limiter._current_delay == 2.0


class TestTrends:
    def test_deterministic(self):
        assert estimate_interest("Betano", "BR") == estimate_interest("Betano", "BR")
        assert estimate_interest("Betano", "BR")["interest"] == estimate_interest("betano", "br")["interest"]

    def test_series_shape(self):
        data = estimate_interest("casa de apostas")
        assert len(data["interestOverTime"]) == 30
        assert all(0 <= p["value"] <= 100 for p in data["interestOverTime"])
        assert data["trend"] in ("rising", "declining", "stable")

    def test_brands_outrank_unknown_terms(self):
        assert estimate_interest("bet365")["interest"] > estimate_interest("zzqx")["interest"]

    @pytest.mark.parametrize("values,expected", [
        ([10] * 5 + [20] * 5, "rising"),
        ([20] * 5 + [10] * 5, "declining"),
        ([10] * 10, "stable"),
        ([7], "stable"),
        ([], "stable"),
    ])
    def test_classify(self, values, expected):
        assert classify_trend(values) == expected

    @pytest.mark.asyncio
    async def test_blank_keyword(self):
        assert "error" in await check_trend_interest("  ")


class TestSentiment:
    @pytest.mark.parametrize("text,expected", [
        ("Recomendo, pagou rápido", "positive"),
        ("É golpe, evite essa casa", "negative"),
        ("Alguém conhece?", "neutral"),
    ])
    def test_classify(self, text, expected):
        assert classify_sentiment(text) == expected

    @pytest.mark.asyncio
    async def test_dedup_and_breakdown(self):
        post = {
            "title": "Betano pagou rápido", "selftext": "", "url": "", "subreddit": "brasil",
            "author": "a", "score": 10, "numComments": 1, "createdAt": "2026-10-01T00:00:00+00:00",
            "permalink": "https://www.reddit.com/r/brasil/1",
        }
        scam = {**post, "title": "Betano golpe", "score": 3, "permalink": "https://www.reddit.com/r/brasil/2"}
        with patch("radar.sentiment.search_reddit", new=AsyncMock(return_value=[post, scam])):
            result = await search_social_sentiment("Betano", "br")
        assert result["mentionCount"] == 2
        assert result["sentiment"] == {"positive": 1, "negative": 1, "neutral": 0}
        assert result["posts"][0]["score"] == 10
        assert "futebol" in result["subredditsSearched"]


class TestSearch:
    @pytest.mark.parametrize("total,trend,expected", [
        (150_000, False, 10),
        (50_001, False, 8),
        (500, True, 3),
        (50, False, 1),
        (150_000, True, 10),
    ])
    def test_presence_score(self, total, trend, expected):
        assert presence_score(total, trend) == expected

    def test_extract_domain(self):
        assert extract_domain("https://www.globo.com/esporte/") == "globo.com"
        assert extract_domain("not a url") == ""

    @pytest.mark.asyncio
    async def test_not_configured(self, monkeypatch):
        monkeypatch.delenv("SERPER_API_KEY", raising=False)
        result = await search_web("futebol")
        assert result["results"] == []
        assert result["error"] == "Serper not configured"
        presence = await check_search_presence("Betano")
        assert presence["presenceScore"] == 1


class TestCrawl:
    @pytest.mark.parametrize("has_betting,confidence,expected", [
        (False, 0.9, HIGH_OPPORTUNITY),
        (True, 0.9, LOW_PRIORITY),
        (False, 0.5, NEEDS_REVIEW),
        (True, 0.7, NEEDS_REVIEW),
    ])
    def test_recommend(self, has_betting, confidence, expected):
        assert recommend(has_betting, confidence) == expected

    def test_sports_categories(self):
        assert sports_categories("Tudo sobre o Brasileirão e a NBA") == ["futebol", "basquete"]
        assert sports_categories("Receitas de bolo") == ["esportes gerais"]

    @pytest.mark.asyncio
    async def test_scrape_not_configured(self, monkeypatch):
        monkeypatch.delenv("FIRECRAWL_API_KEY", raising=False)
        assert await scrape_url("https://globo.com") == {"success": False, "error": "Firecrawl not configured"}

    @pytest.mark.asyncio
    async def test_detect_betting(self):
        client = AsyncMock()
        client.call.return_value = {"hasBetting": False, "confidence": 0.95, "indicators": []}
        result = await detect_betting("Futebol ao vivo", ["https://globo.com"], client)
        assert result["recommendation"] == HIGH_OPPORTUNITY
        assert result["confidence"] == 0.95

    @pytest.mark.asyncio
    async def test_detect_betting_failure_needs_review(self):
        client = AsyncMock()
        client.call.side_effect = LLMCallError("bad json")
        result = await detect_betting("content", [], client)
        assert result == {"hasBetting": False, "confidence": 0.0, "indicators": [], "recommendation": NEEDS_REVIEW}


class TestMailer:
    @pytest.mark.asyncio
    async def test_not_configured(self, monkeypatch):
        monkeypatch.delenv("RESEND_API_KEY", raising=False)
        result = await send_email(["bd@e-2.at"], "Report", "<p>hi</p>")
        assert result == {"success": False, "error": "Email service not configured"}

    @pytest.mark.asyncio
    async def test_no_recipients(self, monkeypatch):
        monkeypatch.setenv("RESEND_API_KEY", "re_test")
        assert await send_email([], "Report", "<p>hi</p>") == {"success": False, "error": "No recipients"}

    def test_default_recipients(self, monkeypatch):
        monkeypatch.setenv("REPORT_RECIPIENT_EMAIL", "a@e-2.at, b@e-2.at,")
        assert default_recipients() == ["a@e-2.at", "b@e-2.at"]
        monkeypatch.delenv("REPORT_RECIPIENT_EMAIL")
        assert default_recipients() == ["team@e-2.at"]

    @pytest.mark.asyncio
    async def test_success_with_plain_text_body(self, monkeypatch):
        monkeypatch.setenv("RESEND_API_KEY", "re_test")
        real_client = httpx.AsyncClient
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="OK"))
        with patch("radar.mailer.httpx.AsyncClient", side_effect=lambda **kw: real_client(transport=transport, **kw)):
            result = await send_email(["bd@e-2.at"], "Report", "<p>hi</p>")
        assert result == {"success": True, "id": None}

    @pytest.mark.asyncio
    async def test_success_returns_message_id(self, monkeypatch):
        monkeypatch.setenv("RESEND_API_KEY", "re_test")
        real_client = httpx.AsyncClient
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"id": "msg_1"}))
        with patch("radar.mailer.httpx.AsyncClient", side_effect=lambda **kw: real_client(transport=transport, **kw)):
            result = await send_email(["bd@e-2.at"], "Report", "<p>hi</p>")
        assert result == {"success": True, "id": "msg_1"}


class TestLLMClientUsage:
    @staticmethod
    def _client(text):
        client = LLMClient(provider="anthropic", api_key="sk-test")
        response = SimpleNamespace(
            content=[SimpleNamespace(type="text", text=text)],
            usage=SimpleNamespace(input_tokens=10, output_tokens=4),
        )
        client._client = MagicMock()
        client._client.messages.create = AsyncMock(return_value=response)
        return client

    @pytest.mark.asyncio
    async def test_call_adds_usage(self):
        usage = Usage(5, 1)
        assert await self._client('{"ok": true}').call("sys", "user", usage=usage) == {"ok": True}
        assert usage.as_dict() == {"inputTokens": 15, "outputTokens": 5, "totalTokens": 20}

    @pytest.mark.asyncio
    async def test_invalid_json_still_counts_tokens(self):
        usage = Usage()
        with pytest.raises(LLMCallError):
            await self._client("not json").call("sys", "user", usage=usage)
        assert usage.total_tokens == 14
