"""Lightweight collector: feeds, local extraction and one JSON scoring call.

Everything except the final scoring runs without a model: RSS articles are
fetched, candidate names are pulled out with patterns, and the top
candidates are checked against the partner roster and the trends
estimator.  The model sees only a compact summary per entity.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.orm import Session

from radar.agent import Usage
from radar.extraction import extract_entities_from_articles
from radar.llm import LLMCallError, LLMClient
from radar.news import search_industry_news
from radar.partners import PartnershipResolver, get_resolver
from radar.store import (
    SignalValidationError,
    agent_run_scope,
    complete_agent_run,
    create_signal,
    start_agent_run,
)
from radar.trends import check_trend_interest

log = logging.getLogger(__name__)

KEYWORD_SETS = (
    ["brazil", "betting"],
    ["brazil", "operator"],
    ["brazil", "license"],
    ["latam", "expansion"],
)
TOP_ENTITIES = 10
TOP_TRENDS = 5
MIN_SCORE = 5
MAX_TOKENS = 1024

SCORING_SYSTEM = (
    "You are a market analyst. Score entities concisely. "
    'Respond only with a JSON object of the form {"entities": [...]}.'
)

SCORING_PROMPT = """\
Score these {GEO} betting market entities for E2 partnership potential.

ENTITIES:
{entities}

Respond with JSON:
{{"entities": [{{"name": "...", "score": 0-10, "signal_type": "MARKET_ENTRY|EXPANSION|LICENSING|SPONSORSHIP|TREND_SURGE", "reasoning": "1-2 sentence explanation"}}]}}

SCORING:
- 8-10: Rising trends + multiple sources + not E2 partner
- 5-7: Some evidence, single source
- 0-4: Weak evidence or already partnered

Only include entities scoring 5+. Be concise."""


async def _gather_articles(geo: str, days_back: int) -> tuple[list[dict[str, Any]], list[str]]:
    region = "br" if geo == "br" else "latam"
    articles: list[dict[str, Any]] = []
    sources: list[str] = []
    seen: set[str] = set()
    for keywords in KEYWORD_SETS:
        result = await search_industry_news(keywords, region=region, max_days_old=days_back, limit=10)
        for name in result["sources_checked"]:
            if name not in sources:
                sources.append(name)
        for article in result["articles"]:
            if article["url"] not in seen:
                seen.add(article["url"])
                articles.append(article)
    return articles, sources


def _scored_entities(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, dict):
        payload = payload.get("entities") or []
    if not isinstance(payload, list):
        return []
    return [e for e in payload if isinstance(e, dict) and e.get("name")]


async def run_lightweight_collector(
    session: Session,
    client: LLMClient,
    *,
    geo: str = "br",
    days_back: int = 14,
    resolver: PartnershipResolver | None = None,
) -> dict[str, Any]:
    geo = geo.lower()
    resolver = resolver or get_resolver()
    run = start_agent_run(session, "collector", {"geo": geo, "daysBack": days_back, "mode": "lightweight"})
    session.commit()

    usage = Usage()
    with agent_run_scope(session, run):
        articles, sources = await _gather_articles(geo, days_back)
        groups = extract_entities_from_articles(articles)[:TOP_ENTITIES]
        log.info("Lightweight: %d articles, %d candidate entities", len(articles), len(groups))

        enriched: dict[str, dict[str, Any]] = {}
        for rank, group in enumerate(groups):
            name = group.entity.name
            check = await resolver.check(name)
            trends = None
            if rank < TOP_TRENDS:
                data = await check_trend_interest(name, geo.upper())
                if "error" not in data:
                    trends = {"interest": data["interest"], "trend": data["trend"]}
            enriched[name.lower()] = {"name": name, "articles": group.articles, "check": check, "trends": trends}

        if not enriched:
            output = {"signals_found": 0, "signals_stored": 0, "entities_discovered": [], "sources_checked": sources}
            complete_agent_run(session, run, output_summary=output, token_usage=usage.as_dict())
            session.commit()
            return {**output, "runId": run.id, "usage": usage.as_dict()}

        summary = [
            {
                "name": e["name"],
                "article_count": len(e["articles"]),
                "sample_headline": e["articles"][0]["title"] if e["articles"] else "",
                "e2_status": e["check"].tier,
                "trends_interest": (e["trends"] or {}).get("interest", 0),
                "trends_direction": (e["trends"] or {}).get("trend", "unknown"),
            }
            for e in enriched.values()
        ]
        prompt = SCORING_PROMPT.format(GEO=geo.upper(), entities=json.dumps(summary, indent=2))
        try:
            payload = await client.call(SCORING_SYSTEM, prompt, max_tokens=MAX_TOKENS, usage=usage)
        except LLMCallError as exc:
            complete_agent_run(session, run, token_usage=usage.as_dict(), error=str(exc))
            session.commit()
            raise
        scored = _scored_entities(payload)

        stored: list[str] = []
        entities: list[str] = []
        for item in scored:
            entry = enriched.get(str(item["name"]).lower())
            try:
                score = float(item.get("score", 0))
            except (TypeError, ValueError):
                continue
            if entry is None or score < MIN_SCORE or not entry["check"].is_opportunity:
                continue
            evidence = [
                {"source": a["source"], "headline": a["title"], "url": a["url"], "confidence": score / 10}
                for a in entry["articles"][:3]
            ]
            if entry["trends"]:
                evidence.append({
                    "source": "Google Trends",
                    "headline": f"Interest: {entry['trends']['interest']}%, Trend: {entry['trends']['trend']}",
                    "confidence": 0.8 if entry["trends"]["interest"] > 50 else 0.5,
                })
            try:
                signal = create_signal(
                    session,
                    entity_name=entry["name"],
                    entity_type="bookmaker",
                    geo=geo,
                    signal_type=str(item.get("signal_type") or "MARKET_ENTRY"),
                    evidence=evidence,
                    preliminary_score=score,
                    source_urls=[a["url"] for a in entry["articles"]],
                    agent_run_id=run.id,
                )
            except SignalValidationError as exc:
                log.warning("Skipping %s: %s", entry["name"], exc)
                continue
            session.commit()
            stored.append(signal.id)
            entities.append(signal.entity_name)

        output = {
            "signals_found": len(stored),
            "signals_stored": len(stored),
            "entities_discovered": entities,
            "sources_checked": sources,
        }
        complete_agent_run(session, run, output_summary=output, token_usage=usage.as_dict())
        session.commit()
    log.info("Lightweight collector stored %d signals (%d tokens)", len(stored), usage.total_tokens)
    return {**output, "runId": run.id, "usage": usage.as_dict()}
