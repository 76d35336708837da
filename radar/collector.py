"""Collector stage: an agent that searches the news for new betting operators
and stores the promising ones as signals.

The model must run at least ``MIN_SEARCHES`` distinct searches before it is
allowed to stop; stopping earlier injects a correction and the loop goes on.
Stored signals are committed as soon as the tool runs, so a run that later
aborts still leaves its signals behind.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy.orm import Session

from radar.agent import AgentAbortedError, AgentLoop, AgentResult, ModelClient, ToolSpec
from radar.news import search_industry_news, search_news
from radar.partners import PartnershipResolver, get_resolver
from radar.sentiment import search_social_sentiment
from radar.store import (
    SignalValidationError,
    agent_run_scope,
    complete_agent_run,
    create_signal,
    start_agent_run,
)
from radar.trends import check_trend_interest
from radar.utils import utcnow

log = logging.getLogger(__name__)

MAX_ITERATIONS = 10
MAX_TOKENS = 4096
MIN_SEARCHES = 3
SEARCH_TOOLS = ("search_news", "search_industry_news")

SYSTEM_PROMPT = """\
You are the Collector Agent for E2's Market Intelligence system.

## Your Mission
Find new or growing BOOKMAKERS and betting operators in {GEO} that are NOT yet E2 partners.

## REQUIRED: Search Strategy
You MUST perform at least 3 searches with VARIED signal categories:

1. MARKET_ENTRY - New operator launches
   Query: "new bookmaker launch {GEO}", "nova casa de apostas {GEO}"
2. EXPANSION - Regional/product expansion
   Query: "betting operator expansion {GEO}", "casa de apostas expansão"
3. SPONSORSHIP - Team/athlete deals
   Query: "bookmaker patrocinador futebol {GEO}", "betting sponsorship deal"
4. LICENSING - Regulatory approvals
   Query: "gambling license {GEO}", "casa de apostas licença regulamentação"
5. GROWTH - App rankings, traffic growth
   Query: "betting app ranking {GEO}", "bookmaker downloads growth"

## Available Tools
- search_news: NewsAPI search. Use varied queries from the categories above.
- search_industry_news: curated iGaming trade press feeds, filtered by keywords.
- check_e2_partner: E2 partnership status. Use BEFORE storing signals.
  AFFILIATE_PARTNER = cross-sell, KNOWN_BOOKIE = no active deal, NEW_PROSPECT = best opportunity.
- check_trends: search interest for a bookmaker name.
- search_social_sentiment: Reddit mentions and sentiment for a bookmaker name.
- store_signal: store a discovered signal with entity_name, signal_type,
  evidence_headline, evidence_url, preliminary_score (0-10) and reasoning.

## Scoring Guidelines
- 8-10: Strong evidence, multiple sources, clear opportunity
- 5-7: Moderate evidence, single reliable source
- 2-4: Weak evidence, speculation
- 0-1: Very low confidence

## CRITICAL REQUIREMENTS
1. Perform at least 3 different searches
2. Use queries from at least 2 different signal categories
3. Include Portuguese queries for the Brazil market
4. Always check E2 partnership status before storing
5. Provide detailed reasoning for EVERY signal stored

Quality over quantity. Better to store 3 excellent signals than 10 mediocre ones."""

CORRECTION = (
    "You've only performed {count} search(es). Please perform at least 3 searches using "
    "DIFFERENT signal categories (market_entry, expansion, sponsorship, licensing, growth). "
    "Try queries you haven't used yet."
)


def build_system_prompt(geo: str) -> str:
    return SYSTEM_PROMPT.replace("{GEO}", geo.upper())


def initial_message(geo: str, days_back: int) -> str:
    return (
        f"Start collecting signals for {geo.upper()} market. Look for new bookmakers, betting "
        "companies, and gambling operators that might be potential E2 partners. "
        f"Search the last {days_back} days of news."
    )


def search_queries(result: AgentResult) -> list[str]:
    """Distinct queries across both search tools, in first-use order."""
    queries: list[str] = []
    for execution in result.tool_log:
        if execution.name not in SEARCH_TOOLS:
            continue
        query = execution.input.get("query") or " ".join(execution.input.get("keywords") or [])
        query = str(query).strip()
        if query and query not in queries:
            queries.append(query)
    return queries


def require_searches(result: AgentResult) -> str | None:
    count = len(search_queries(result))
    if count >= MIN_SEARCHES:
        return None
    return CORRECTION.format(count=count)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class CollectorTools:
    """Tool handlers bound to one run: geo, session and provenance."""

    def __init__(self, session: Session, run_id: str, geo: str, days_back: int, resolver: PartnershipResolver):
        self.session = session
        self.run_id = run_id
        self.geo = geo
        self.days_back = days_back
        self.resolver = resolver
        self.stored: list[str] = []
        self.entities: list[str] = []

    async def search_news(self, args: dict[str, Any]) -> dict[str, Any]:
        query = str(args.get("query") or "").strip()
        if not query:
            return {"error": "query is required"}
        days = int(args.get("days_back") or self.days_back)
        result = await search_news(
            query,
            language="pt" if self.geo == "br" else "en",
            from_date=(utcnow() - timedelta(days=days)).date().isoformat(),
            sort_by="relevancy",
            page_size=20,
        )
        if "error" in result:
            return result
        log.info("search_news %r: %d articles", query, len(result["articles"]))
        return result

    async def search_industry_news(self, args: dict[str, Any]) -> dict[str, Any]:
        keywords = [str(k) for k in args.get("keywords") or [] if str(k).strip()]
        return await search_industry_news(keywords, region=args.get("region") or self.geo, max_days_old=self.days_back)

    async def check_e2_partner(self, args: dict[str, Any]) -> dict[str, Any]:
        name = str(args.get("entity_name") or "").strip()
        if not name:
            return {"error": "entity_name is required"}
        check = await self.resolver.check(name)
        log.info("check_e2_partner %r: %s", name, check.tier)
        return {
            "tier": check.tier,
            "is_opportunity": check.is_opportunity,
            "is_existing_affiliate": check.tier == "AFFILIATE_PARTNER",
            "matched_bookie": check.matched_name,
            "match_score": round(check.match_score, 3),
            "promotion_count": check.promotion_count,
            "recommendation": check.recommendation,
            "details": check.details,
        }

    async def check_trends(self, args: dict[str, Any]) -> dict[str, Any]:
        data = await check_trend_interest(str(args.get("keyword") or ""), args.get("geo") or self.geo.upper())
        if "error" in data:
            return data
        return {
            "keyword": data["keyword"],
            "average_interest": data["interest"],
            "trend": data["trend"],
            "related_queries": data["relatedQueries"],
        }

    async def search_social_sentiment(self, args: dict[str, Any]) -> dict[str, Any]:
        name = str(args.get("entity_name") or "").strip()
        if not name:
            return {"error": "entity_name is required"}
        result = await search_social_sentiment(name, self.geo)
        # Only the top posts go back to the model.
        return {**result, "posts": [
            {k: p[k] for k in ("title", "subreddit", "score", "permalink")} for p in result["posts"][:5]
        ]}

    def store_signal(self, args: dict[str, Any]) -> dict[str, Any]:
        score = args.get("preliminary_score")
        try:
            confidence = float(score) / 10
        except (TypeError, ValueError):
            confidence = 0.0
        evidence = [{
            "source": "NewsAPI",
            "headline": args.get("evidence_headline"),
            "url": args.get("evidence_url"),
            "description": args.get("evidence_description") or args.get("reasoning"),
            "confidence": confidence,
        }]
        try:
            signal = create_signal(
                self.session,
                entity_name=str(args.get("entity_name") or ""),
                entity_type=str(args.get("entity_type") or "bookmaker"),
                geo=self.geo,
                signal_type=str(args.get("signal_type") or ""),
                evidence=evidence,
                preliminary_score=score,
                source_urls=[args["evidence_url"]] if args.get("evidence_url") else [],
                agent_run_id=self.run_id,
            )
        except SignalValidationError as exc:
            return {"success": False, "error": f"Invalid signal data: {exc}"}
        self.session.commit()

        self.stored.append(signal.id)
        if signal.entity_name not in self.entities:
            self.entities.append(signal.entity_name)
        log.info("Stored signal %s (%s, score %s)", signal.entity_name, signal.signal_type, score)
        return {"success": True, "signal_id": signal.id}

    def specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                "search_news",
                "Search for news articles about betting/gambling companies in the target market",
                {"type": "object", "properties": {
                    "query": {"type": "string", "description": 'Search query (e.g. "new bookmaker launch Brazil")'},
                    "days_back": {"type": "number", "description": "How many days back to search"},
                }, "required": ["query"]},
                self.search_news,
            ),
            ToolSpec(
                "search_industry_news",
                "Search curated iGaming industry feeds for articles matching any of the keywords",
                {"type": "object", "properties": {
                    "keywords": {"type": "array", "items": {"type": "string"}, "description": "Keywords to match"},
                    "region": {"type": "string", "description": "br, latam or global"},
                }, "required": ["keywords"]},
                self.search_industry_news,
            ),
            ToolSpec(
                "check_e2_partner",
                "Check whether a bookmaker is an existing E2 partner and return its partnership tier",
                {"type": "object", "properties": {
                    "entity_name": {"type": "string", "description": "Name of the bookmaker/operator"},
                }, "required": ["entity_name"]},
                self.check_e2_partner,
            ),
            ToolSpec(
                "check_trends",
                "Check search interest for a keyword: average interest, trend direction, related queries",
                {"type": "object", "properties": {
                    "keyword": {"type": "string", "description": "Company name or betting term"},
                    "geo": {"type": "string", "description": 'Country code, e.g. "BR"'},
                }, "required": ["keyword"]},
                self.check_trends,
            ),
            ToolSpec(
                "search_social_sentiment",
                "Reddit mentions of an operator with a positive/negative/neutral breakdown",
                {"type": "object", "properties": {
                    "entity_name": {"type": "string", "description": "Operator name"},
                }, "required": ["entity_name"]},
                self.search_social_sentiment,
            ),
            ToolSpec(
                "store_signal",
                "Store a discovered signal. Check partnership status first.",
                {"type": "object", "properties": {
                    "entity_name": {"type": "string", "description": "Name of the bookmaker/betting company"},
                    "signal_type": {"type": "string", "description": "MARKET_ENTRY, EXPANSION, SPONSORSHIP, LICENSING or GROWTH"},
                    "evidence_headline": {"type": "string", "description": "News headline as evidence"},
                    "evidence_url": {"type": "string", "description": "URL of the source article"},
                    "evidence_description": {"type": "string", "description": "Brief description of the evidence"},
                    "preliminary_score": {"type": "number", "description": "Confidence score 0-10"},
                    "reasoning": {"type": "string", "description": "Why this is a valuable signal"},
                }, "required": ["entity_name", "signal_type", "evidence_headline", "evidence_url", "preliminary_score"]},
                self.store_signal,
            ),
        ]


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


async def run_collector(
    session: Session,
    client: ModelClient,
    *,
    geo: str = "br",
    days_back: int = 14,
    resolver: PartnershipResolver | None = None,
    max_iterations: int = MAX_ITERATIONS,
) -> dict[str, Any]:
    """Run the collector agent. Raises AgentAbortedError after closing the run."""
    geo = geo.lower()
    run = start_agent_run(session, "collector", {"geo": geo, "daysBack": days_back, "mode": "agent"})
    session.commit()

    with agent_run_scope(session, run):
        tools = CollectorTools(session, run.id, geo, days_back, resolver or get_resolver())
        loop = AgentLoop(
            client,
            system=build_system_prompt(geo),
            tools=tools.specs(),
            max_iterations=max_iterations,
            max_tokens=MAX_TOKENS,
            precondition=require_searches,
        )
        try:
            result = await loop.run(initial_message(geo, days_back))
        except AgentAbortedError as exc:
            complete_agent_run(
                session, run,
                output_summary={"signals_stored": len(tools.stored), "iterations": exc.partial.iterations},
                token_usage=exc.partial.usage.as_dict(),
                error=str(exc),
            )
            session.commit()
            log.warning("Collector aborted after %d signals: %s", len(tools.stored), exc)
            raise

        queries = search_queries(result)
        output = {
            "signals_found": len(tools.stored),
            "signals_stored": len(tools.stored),
            "entities_discovered": tools.entities,
            "search_queries_used": queries,
        }
        complete_agent_run(
            session, run,
            output_summary={**output, "iterations": result.iterations, "termination": result.termination},
            token_usage=result.usage.as_dict(),
        )
        session.commit()
    log.info(
        "Collector done: %d queries, %d signals, %d iterations (%s)",
        len(queries), len(tools.stored), result.iterations, result.termination,
    )
    return {**output, "runId": run.id, "usage": result.usage.as_dict()}
