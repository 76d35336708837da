"""News capability backends: curated industry RSS feeds and NewsAPI search."""
from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
from lxml import etree, html as lxml_html

from radar.ratelimit import RateLimiter
from radar.utils import parse_datetime, to_naive_utc, utcnow

log = logging.getLogger(__name__)

_USER_AGENT = "E2-Market-Intelligence/1.0"
_TIMEOUT = 10.0
_MAX_DESCRIPTION = 500

NEWS_API_BASE = "https://newsapi.org/v2"
NEWS_API_QUALITY = 3

_CONTENT_NS = "{http://purl.org/rss/1.0/modules/content/}encoded"
_WS = re.compile(r"\s+")


@dataclass(frozen=True)
class FeedSource:
    name: str
    url: str
    region: str  # br | latam | global
    quality: int  # 1-5
    language: str


INDUSTRY_SOURCES: tuple[FeedSource, ...] = (
    FeedSource("SBC Americas", "https://sbcamericas.com/feed/", "latam", 5, "en"),
    FeedSource("iGaming Brazil", "https://igamingbrazil.com/feed/", "br", 5, "pt"),
    FeedSource("Yogonet Latam", "https://www.yogonet.com/latinoamerica/rss/noticias.xml", "latam", 4, "es"),
    FeedSource("Gaming Post", "https://gamingpost.com.br/feed/", "br", 4, "pt"),
    FeedSource("iGaming Business", "https://igamingbusiness.com/feed/", "global", 5, "en"),
)


# ---------------------------------------------------------------------------
# RSS parsing
# ---------------------------------------------------------------------------


def clean_html(text: str | None) -> str:
    """Strip tags and entities, collapse whitespace."""
    if not text or not text.strip():
        return ""
    try:
        text = lxml_html.fragment_fromstring(text, create_parent="div").text_content()
    except (etree.ParserError, etree.XMLSyntaxError, ValueError):
        pass
    return _WS.sub(" ", text).strip()


def _parse_pub_date(value: str | None) -> datetime:
    if value:
        try:
            return to_naive_utc(parsedate_to_datetime(value.strip()))
        except (TypeError, ValueError, IndexError):
            parsed = parse_datetime(value)
            if parsed:
                return parsed
    return utcnow()


def _child_text(item: etree._Element, tag: str) -> str:
    node = item.find(tag)
    return (node.text or "") if node is not None else ""


def parse_feed(xml: bytes | str, source: FeedSource) -> list[dict[str, Any]]:
    """Parse RSS ``<item>`` elements into article dicts. Malformed XML yields []."""
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    try:
        root = etree.fromstring(xml, parser=etree.XMLParser(recover=True, resolve_entities=False))
    except etree.XMLSyntaxError:
        return []
    if root is None:
        return []

    articles: list[dict[str, Any]] = []
    for item in root.iter("item"):
        title = _child_text(item, "title")
        link = _child_text(item, "link") or _child_text(item, "guid")
        if not title.strip() or not link.strip():
            continue
        description = _child_text(item, "description") or _child_text(item, _CONTENT_NS)
        published = _parse_pub_date(_child_text(item, "pubDate"))
        articles.append({
            "title": clean_html(title),
            "description": clean_html(description)[:_MAX_DESCRIPTION],
            "url": link.strip(),
            "source": source.name,
            "publishedAt": published.isoformat() + "Z",
            "quality": source.quality,
            "language": source.language,
        })
    return articles


# ---------------------------------------------------------------------------
# RSS fetching
# ---------------------------------------------------------------------------


async def _fetch_text(url: str) -> bytes:
    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(_TIMEOUT),
        headers={"User-Agent": _USER_AGENT},
    ) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.content


def sources_for_region(region: str | None) -> list[FeedSource]:
    if not region:
        return list(INDUSTRY_SOURCES)
    return [s for s in INDUSTRY_SOURCES if s.region in (region, "global", "latam")]


async def _fetch_sources(sources: list[FeedSource]) -> tuple[list[dict[str, Any]], list[str]]:
    results = await asyncio.gather(*(_fetch_text(s.url) for s in sources), return_exceptions=True)
    articles: list[dict[str, Any]] = []
    errors: list[str] = []
    for source, result in zip(sources, results):
        if isinstance(result, Exception):
            log.warning("RSS %s failed: %s", source.name, result)
            errors.append(f"{source.name}: {result}")
            continue
        parsed = parse_feed(result, source)
        log.debug("RSS %s: %d articles", source.name, len(parsed))
        articles.extend(parsed)
    return articles, errors


async def search_industry_news(
    keywords: list[str],
    region: str | None = None,
    max_days_old: int = 30,
    limit: int = 20,
) -> dict[str, Any]:
    """Keyword search over the curated feeds, best quality and newest first."""
    sources = sources_for_region(region)
    articles, errors = await _fetch_sources(sources)

    needles = [k.lower() for k in keywords if k and k.strip()]
    if needles:
        articles = [
            a for a in articles
            if any(n in f"{a['title']} {a['description']}".lower() for n in needles)
        ]

    cutoff = utcnow() - timedelta(days=max_days_old)
    articles = [a for a in articles if (parse_datetime(a["publishedAt"]) or cutoff) >= cutoff]
    articles.sort(key=lambda a: (a["quality"], a["publishedAt"]), reverse=True)

    return {
        "articles": articles[:limit],
        "sources_checked": [s.name for s in sources],
        "errors": errors,
    }


async def get_recent_industry_news(region: str | None = None, limit: int = 30) -> dict[str, Any]:
    """Latest articles across the feeds, newest first, no keyword filter."""
    sources = sources_for_region(region)
    articles, errors = await _fetch_sources(sources)
    articles.sort(key=lambda a: a["publishedAt"], reverse=True)
    return {
        "articles": articles[:limit],
        "sources_checked": [s.name for s in sources],
        "errors": errors,
    }


# ---------------------------------------------------------------------------
# NewsAPI
# ---------------------------------------------------------------------------

# Free tier allows 100/day; stay at half with 2s spacing.
_newsapi_limiter = RateLimiter(min_delay=2.0, max_requests=50, window=24 * 60 * 60, name="NewsAPI")


async def search_news(
    query: str,
    *,
    language: str | None = None,
    from_date: str | None = None,
    sort_by: str = "publishedAt",
    page_size: int = 20,
) -> dict[str, Any]:
    """Search NewsAPI ``/everything``. Returns ``{"articles": [...]}`` or ``{"error": ...}``."""
    api_key = os.environ.get("NEWS_API_KEY", "").strip()
    if not api_key:
        return {"error": "NewsAPI not configured"}
    if not await _newsapi_limiter.acquire():
        return {"error": "Rate limited. Daily NewsAPI budget exhausted", "rateLimited": True}

    params: dict[str, Any] = {
        "q": query, "apiKey": api_key, "pageSize": min(page_size, 100), "sortBy": sort_by,
    }
    if language:
        params["language"] = language
    if from_date:
        params["from"] = from_date

    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(_TIMEOUT), headers={"User-Agent": _USER_AGENT}) as client:
            resp = await client.get(f"{NEWS_API_BASE}/everything", params=params)
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        log.warning("NewsAPI request failed for %r: %s", query, exc)
        return {"error": str(exc)}

    if data.get("status") != "ok":
        if resp.status_code == 429:
            _newsapi_limiter.backoff()
        return {"error": data.get("message") or "NewsAPI error"}
    _newsapi_limiter.reset()

    return {
        "articles": [
            {
                "title": a.get("title") or "",
                "description": a.get("description") or "",
                "url": a.get("url") or "",
                "source": (a.get("source") or {}).get("name") or "NewsAPI",
                "publishedAt": a.get("publishedAt") or "",
                "quality": NEWS_API_QUALITY,
            }
            for a in data.get("articles") or []
        ],
    }

