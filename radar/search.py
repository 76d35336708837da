"""Web search backend (Serper.dev): organic search, autocomplete, publisher discovery."""
from __future__ import annotations

import logging
import os
from typing import Any
from urllib.parse import urlparse

import httpx

from radar.ratelimit import RateLimiter

log = logging.getLogger(__name__)

SERPER_BASE_URL = "https://google.serper.dev"
_TIMEOUT = 15.0

PUBLISHER_QUERIES = (
    "esportes notícias brasil",
    "futebol brasileiro portal",
    "placar ao vivo site:.com.br",
    "brasileirão cobertura",
    "notícias esportivas brasil",
    "portal esportes brasil",
)

# (minimum total results, presence score), checked top down
PRESENCE_BANDS = ((100_000, 10), (50_000, 8), (10_000, 6), (1_000, 4), (100, 2))

_serper_limiter = RateLimiter(min_delay=0.2, max_delay=30.0, name="Serper")


def extract_domain(url: str) -> str:
    host = urlparse(url).hostname or ""
    return host.removeprefix("www.")


def presence_score(total_results: int, has_trend: bool = False) -> int:
    score = next((s for floor, s in PRESENCE_BANDS if total_results > floor), 1)
    if has_trend:
        score = min(10, score + 1)
    return score


async def _post(endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
    api_key = os.environ.get("SERPER_API_KEY", "").strip()
    if not api_key:
        return {"error": "Serper not configured"}
    await _serper_limiter.acquire()
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(_TIMEOUT)) as client:
            resp = await client.post(
                f"{SERPER_BASE_URL}/{endpoint}",
                json=payload,
                headers={"X-API-KEY": api_key, "Content-Type": "application/json"},
            )
        if resp.status_code == 429:
            _serper_limiter.backoff()
        if resp.status_code >= 400:
            log.warning("Serper %s error: HTTP %s", endpoint, resp.status_code)
            return {"error": f"API error: {resp.status_code}"}
        _serper_limiter.reset()
        return resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        log.warning("Serper %s failed: %s", endpoint, exc)
        return {"error": str(exc)}


async def search_web(query: str, *, country: str = "br", language: str = "pt", num: int = 20) -> dict[str, Any]:
    """Organic results with domains, or ``{"results": [], "error": ...}``."""
    data = await _post("search", {"q": query, "gl": country, "hl": language, "num": num})
    if "error" in data:
        return {"results": [], "totalResults": 0, "error": data["error"]}
    results = [
        {
            "title": r.get("title") or "",
            "link": r.get("link") or "",
            "snippet": r.get("snippet") or "",
            "position": r.get("position") or 0,
            "domain": extract_domain(r.get("link") or ""),
        }
        for r in data.get("organic") or []
    ]
    total = int((data.get("searchInformation") or {}).get("totalResults") or len(results))
    log.info("Serper: %d results for %r", len(results), query)
    return {"results": results, "totalResults": total}


async def autocomplete(query: str, *, country: str = "br") -> dict[str, Any]:
    data = await _post("autocomplete", {"q": query, "gl": country})
    if "error" in data:
        return {"suggestions": [], "hasTrend": False, "error": data["error"]}
    suggestions = [s if isinstance(s, str) else s.get("value", "") for s in data.get("suggestions") or []]
    return {"suggestions": suggestions, "hasTrend": bool(suggestions)}


async def discover_publishers(limit: int = 50, queries: tuple[str, ...] = PUBLISHER_QUERIES) -> list[dict[str, Any]]:
    """Unique sports-publisher domains across the discovery queries."""
    found: list[dict[str, Any]] = []
    seen: set[str] = set()
    for query in queries:
        response = await search_web(query, num=20)
        for result in response["results"]:
            domain = result["domain"]
            if domain and domain not in seen:
                seen.add(domain)
                found.append({
                    "domain": domain,
                    "title": result["title"],
                    "snippet": result["snippet"],
                    "url": result["link"],
                    "position": result["position"],
                })
        if len(found) >= limit:
            break
    log.info("Serper: discovered %d publishers", len(found))
    return found[:limit]


async def check_search_presence(entity_name: str, *, country: str = "br") -> dict[str, Any]:
    search = await search_web(f'"{entity_name}" brasil', country=country, num=10)
    complete = await autocomplete(entity_name, country=country)
    return {
        "totalResults": search["totalResults"],
        "presenceScore": presence_score(search["totalResults"], complete["hasTrend"]),
        "topMentions": [r["title"] for r in search["results"][:5]],
        "hasTrend": complete["hasTrend"],
    }
