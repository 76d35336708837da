"""Site crawl backend (Firecrawl) and betting-presence detection on publisher pages."""
from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from radar.llm import LLMCallError, LLMClient
from radar.search import extract_domain
from radar.utils import isoformat, utcnow

log = logging.getLogger(__name__)

FIRECRAWL_BASE_URL = "https://api.firecrawl.dev/v1"
_TIMEOUT = 30.0
_MAX_CONTENT = 15_000
_PROMPT_CONTENT = 10_000
_PROMPT_LINKS = 50

HIGH_OPPORTUNITY = "HIGH_OPPORTUNITY"
LOW_PRIORITY = "LOW_PRIORITY"
NEEDS_REVIEW = "NEEDS_REVIEW"
CONFIDENT = 0.7

SPORT_KEYWORDS = {
    "futebol": ("futebol", "brasileirão", "libertadores", "copa do brasil"),
    "basquete": ("basquete", "nba", "basketball"),
    "tênis": ("tênis", "tennis", "atp", "wta"),
    "automobilismo": ("fórmula 1", "f1", "automobilismo", "nascar"),
    "mma": ("ufc", "mma", "bellator"),
    "esports": ("esports", "lol", "cs2", "valorant"),
    "vôlei": ("vôlei", "voleibol", "superliga"),
}

DETECTION_SYSTEM = (
    "You audit sports publisher websites for betting and gambling integrations. "
    "Respond with a single JSON object and nothing else."
)

DETECTION_PROMPT = """\
Analyze this publisher website content and detect ANY betting/gambling integrations.

## Content
{content}

## Outbound Links (sample)
{links}

## Detection Criteria
Look for ANY of these signals, regardless of bookmaker brand:
1. ODDS WIDGETS: any display of betting odds (e.g. "2.50", "1.85", fractional odds)
2. AFFILIATE LINKS: URLs with tracking parameters (utm_source, ref=, aff=, btag=)
3. BOOKMAKER IFRAMES: embedded betting content
4. BETTING SCRIPTS: third-party betting SDKs or widgets
5. ODDS API CALLS: references to odds feeds or betting data providers

## Response Format
{{"hasBetting": boolean, "confidence": 0.0-1.0, "indicators": [
  {{"type": "odds_widget|affiliate_link|bookmaker_iframe|betting_script|odds_api",
    "description": "what was detected", "evidence": "example from content"}}]}}

If no betting is detected return {{"hasBetting": false, "confidence": 0.9, "indicators": []}}
"""


def _review(confidence: float = 0.5) -> dict[str, Any]:
    return {"hasBetting": False, "confidence": confidence, "indicators": [], "recommendation": NEEDS_REVIEW}


def recommend(has_betting: bool, confidence: float) -> str:
    """Sites without betting are the opportunity; low confidence needs a human."""
    if confidence > CONFIDENT:
        return LOW_PRIORITY if has_betting else HIGH_OPPORTUNITY
    return NEEDS_REVIEW


def sports_categories(content: str) -> list[str]:
    lowered = content.lower()
    found = [cat for cat, words in SPORT_KEYWORDS.items() if any(w in lowered for w in words)]
    return found or ["esportes gerais"]


async def scrape_url(url: str, *, only_main_content: bool = True, include_links: bool = True) -> dict[str, Any]:
    """Scrape *url* to markdown. Returns ``{"success": bool, "data"|"error"}``."""
    api_key = os.environ.get("FIRECRAWL_API_KEY", "").strip()
    if not api_key:
        return {"success": False, "error": "Firecrawl not configured"}
    formats = ["markdown", "links"] if include_links else ["markdown"]
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(_TIMEOUT)) as client:
            resp = await client.post(
                f"{FIRECRAWL_BASE_URL}/scrape",
                json={"url": url, "formats": formats, "onlyMainContent": only_main_content},
                headers={"Authorization": f"Bearer {api_key}"},
            )
        if resp.status_code >= 400:
            log.warning("Firecrawl error for %s: HTTP %s", url, resp.status_code)
            return {"success": False, "error": f"API error: {resp.status_code}"}
        body = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        log.warning("Firecrawl request failed for %s: %s", url, exc)
        return {"success": False, "error": str(exc)}

    if not body.get("success"):
        return {"success": False, "error": body.get("error") or "Scrape failed"}
    data = body.get("data") or {}
    return {
        "success": True,
        "data": {
            "markdown": data.get("markdown") or "",
            "links": data.get("links") or [],
            "metadata": data.get("metadata") or {},
        },
    }


async def detect_betting(content: str, links: list[str], client: LLMClient | None = None) -> dict[str, Any]:
    """Ask the model whether a page carries betting integrations. Failures yield NEEDS_REVIEW."""
    prompt = DETECTION_PROMPT.format(
        content=content[:_PROMPT_CONTENT],
        links="\n".join(links[:_PROMPT_LINKS]),
    )
    try:
        client = client or LLMClient()
        parsed = await client.call(DETECTION_SYSTEM, prompt, max_tokens=1024)
    except (LLMCallError, ValueError) as exc:
        log.warning("Betting detection failed: %s", exc)
        return _review(confidence=0.0)
    if not isinstance(parsed, dict):
        return _review()

    has_betting = bool(parsed.get("hasBetting"))
    try:
        confidence = max(0.0, min(1.0, float(parsed.get("confidence", 0.5))))
    except (TypeError, ValueError):
        confidence = 0.5
    return {
        "hasBetting": has_betting,
        "confidence": confidence,
        "indicators": parsed.get("indicators") or [],
        "recommendation": recommend(has_betting, confidence),
    }


async def analyze_site_for_betting(url: str, client: LLMClient | None = None) -> dict[str, Any]:
    """Scrape and classify one publisher page, or ``{"error": ...}`` when the scrape fails."""
    scraped = await scrape_url(url)
    if not scraped["success"]:
        return {"url": url, "error": scraped["error"]}
    data = scraped["data"]
    markdown = data["markdown"]
    detection = await detect_betting(markdown[:_MAX_CONTENT], data["links"], client)
    return {
        "url": url,
        "domain": extract_domain(url) or url,
        "title": data["metadata"].get("title") or "",
        "contentSummary": markdown[:500],
        "sportsCategories": sports_categories(markdown),
        **detection,
        "crawledAt": isoformat(utcnow()),
    }

