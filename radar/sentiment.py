"""Social sentiment backend: Reddit public search with keyword sentiment."""
from __future__ import annotations

import logging
from collections import Counter
from datetime import UTC, datetime
from typing import Any

import httpx

from radar.ratelimit import RateLimiter

log = logging.getLogger(__name__)

REDDIT_BASE = "https://www.reddit.com"
_USER_AGENT = "E2-Market-Intelligence/1.0"
_TIMEOUT = 10.0

BRAZIL_SUBREDDITS = ("brasil", "investimentos", "futebol", "sportsbook")
GLOBAL_SUBREDDITS = ("sportsbook", "gambling")

POSITIVE_KEYWORDS = (
    "recomendo", "melhor", "excelente", "ótimo", "confiável", "rápido", "pagou",
    "recommend", "great", "excellent", "reliable", "fast", "paid", "legit",
    "bom", "legal", "funciona", "works", "good",
)

NEGATIVE_KEYWORDS = (
    "golpe", "scam", "fraude", "não pagou", "roubou", "evite", "péssimo",
    "fraud", "avoid", "terrible", "worst", "stolen", "never paid",
    "ruim", "problema", "cuidado", "warning", "bad", "issue",
)

_reddit_limiter = RateLimiter(min_delay=2.0, max_delay=60.0, name="Reddit")


def classify_sentiment(text: str) -> str:
    lowered = text.lower()
    positive = sum(1 for k in POSITIVE_KEYWORDS if k in lowered)
    negative = sum(1 for k in NEGATIVE_KEYWORDS if k in lowered)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def _subreddits(region: str | None) -> tuple[str, ...]:
    return BRAZIL_SUBREDDITS if (region or "br") == "br" else GLOBAL_SUBREDDITS


def _post_from_listing(post: dict[str, Any]) -> dict[str, Any]:
    created = post.get("created_utc") or 0
    return {
        "title": post.get("title") or "",
        "selftext": (post.get("selftext") or "")[:500],
        "url": post.get("url") or "",
        "subreddit": post.get("subreddit") or "",
        "author": post.get("author") or "[deleted]",
        "score": post.get("score") or 0,
        "numComments": post.get("num_comments") or 0,
        "createdAt": datetime.fromtimestamp(created, UTC).isoformat(),
        "permalink": f"{REDDIT_BASE}{post.get('permalink') or ''}",
    }


async def search_reddit(query: str, subreddit: str | None = None, limit: int = 25) -> list[dict[str, Any]]:
    """One Reddit search request; failures are logged and yield no posts."""
    await _reddit_limiter.acquire()
    path = f"/r/{subreddit}/search.json" if subreddit else "/search.json"
    params: dict[str, Any] = {"q": query, "limit": limit, "sort": "relevance", "t": "month"}
    if subreddit:
        params["restrict_sr"] = 1
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(_TIMEOUT), headers={"User-Agent": _USER_AGENT}) as client:
            resp = await client.get(f"{REDDIT_BASE}{path}", params=params)
        if resp.status_code == 429:
            _reddit_limiter.backoff()
            return []
        if resp.status_code >= 400:
            log.warning("Reddit search failed: HTTP %s", resp.status_code)
            return []
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        log.warning("Reddit search error for %r: %s", query, exc)
        return []
    _reddit_limiter.reset()
    return [_post_from_listing(c.get("data") or {}) for c in (data.get("data") or {}).get("children") or []]


def _summarize(posts: list[dict[str, Any]], subreddits: tuple[str, ...], limit: int) -> dict[str, Any]:
    unique = list({p["permalink"]: p for p in posts}.values())
    sentiment: Counter[str] = Counter({"positive": 0, "negative": 0, "neutral": 0})
    for post in unique:
        sentiment[classify_sentiment(f"{post['title']} {post['selftext']}")] += 1
    return {
        "posts": unique[:limit],
        "subredditsSearched": list(subreddits),
        "mentionCount": len(unique),
        "sentiment": dict(sentiment),
    }


async def search_social_sentiment(entity_name: str, region: str | None = None) -> dict[str, Any]:
    """Mentions of *entity_name* across regional subreddits plus a general search."""
    subreddits = _subreddits(region)
    posts: list[dict[str, Any]] = []
    for sub in subreddits:
        posts.extend(await search_reddit(entity_name, sub, limit=10))
    posts.extend(await search_reddit(f"{entity_name} betting OR apostas", limit=15))
    posts.sort(key=lambda p: p["score"], reverse=True)
    result = _summarize(posts, subreddits, limit=20)
    log.info("Reddit: %d posts for %s", result["mentionCount"], entity_name)
    return result

