"""Publisher collector: an agent that looks for Brazilian sports sites
without betting integrations and stores them as publisher opportunities."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from radar.agent import AgentAbortedError, AgentLoop, ToolSpec
from radar.crawl import analyze_site_for_betting
from radar.llm import LLMClient
from radar.search import check_search_presence, discover_publishers, search_web
from radar.store import (
    SignalValidationError,
    agent_run_scope,
    complete_agent_run,
    create_signal,
    start_agent_run,
)

log = logging.getLogger(__name__)

MAX_ITERATIONS = 20
MAX_TOKENS = 4096
SIGNAL_TYPE = "PUBLISHER_OPPORTUNITY"

SYSTEM_PROMPT = """\
You are the Publisher Collector Agent for E2's Market Intelligence system.

## Your Mission
Find Brazilian sports publishers WITHOUT betting integrations - these are prime opportunities for E2.

## Target Publishers
- Medium/small sports news sites
- Regional football portals
- Sports blogs with traffic
- Fan sites for Brazilian teams

## Workflow
1. discover_publishers to get a list of Brazilian sports sites; search_specific_publishers
   for niche queries such as "portal futebol mineiro" or "notícias flamengo".
2. analyze_publisher on promising sites to detect odds widgets and affiliate links.
3. check_publisher_traffic to estimate audience size.
4. store_publisher_signal for sports-focused sites with no (or minimal) betting and a
   presence score of 4 or more.

## Scoring Guidelines
- 8-10: No betting + high traffic + football focus
- 6-7: No betting + medium traffic
- 4-5: Minimal betting + good traffic
- 0-3: Has betting or low traffic (skip)

## Critical Rules
1. Focus on MEDIUM/SMALL publishers, not the national portals
2. NO betting detected = HIGH opportunity
3. Always explain WHY in your reasoning
4. Quality over quantity - 5 solid leads beat 20 weak ones"""

INITIAL_MESSAGE = (
    "Start discovering Brazilian sports publishers. Focus on medium/small sites that could "
    "benefit from E2 ad network integration. Analyze at least 5-10 publishers and store the "
    "best opportunities."
)


def _pct(confidence: float) -> str:
    return f"{confidence * 100:.0f}%"


class PublisherTools:
    def __init__(self, session: Session, run_id: str, client: LLMClient | None):
        self.session = session
        self.run_id = run_id
        self.client = client
        self.stored: list[str] = []
        self.discovered: list[str] = []

    async def discover_publishers(self, args: dict[str, Any]) -> dict[str, Any]:
        publishers = await discover_publishers(limit=int(args.get("limit") or 30))
        for p in publishers:
            if p["domain"] not in self.discovered:
                self.discovered.append(p["domain"])
        return {
            "publishers": [
                {"domain": p["domain"], "title": p["title"], "url": p["url"], "snippet": p["snippet"][:150]}
                for p in publishers
            ],
            "count": len(publishers),
        }

    async def search_specific_publishers(self, args: dict[str, Any]) -> dict[str, Any]:
        query = str(args.get("query") or "").strip()
        if not query:
            return {"error": "query is required"}
        response = await search_web(query, num=15)
        if "error" in response:
            return {"error": response["error"]}
        return {
            "results": [
                {"domain": r["domain"], "title": r["title"], "url": r["link"], "snippet": r["snippet"][:150]}
                for r in response["results"]
            ],
            "count": len(response["results"]),
        }

    async def analyze_publisher(self, args: dict[str, Any]) -> dict[str, Any]:
        url = str(args.get("url") or "").strip()
        if not url:
            return {"error": "url is required"}
        analysis = await analyze_site_for_betting(url, self.client)
        if "error" in analysis:
            return {"error": f"Failed to analyze publisher: {analysis['error']}"}
        log.info("Publisher %s: betting=%s (%s)", analysis["domain"], analysis["hasBetting"], analysis["recommendation"])
        return {
            "domain": analysis["domain"],
            "title": analysis["title"],
            "sports_categories": analysis["sportsCategories"],
            "betting_detected": analysis["hasBetting"],
            "betting_confidence": analysis["confidence"],
            "betting_indicators": analysis["indicators"][:3],
            "recommendation": analysis["recommendation"],
        }

    async def check_publisher_traffic(self, args: dict[str, Any]) -> dict[str, Any]:
        name = str(args.get("publisher_name") or "").strip()
        if not name:
            return {"error": "publisher_name is required"}
        presence = await check_search_presence(name)
        return {
            "total_results": presence["totalResults"],
            "presence_score": presence["presenceScore"],
            "has_trend": presence["hasTrend"],
            "top_mentions": presence["topMentions"][:3],
        }

    def store_publisher_signal(self, args: dict[str, Any]) -> dict[str, Any]:
        score = args.get("preliminary_score")
        url = args.get("publisher_url") or ""
        sports = [str(s) for s in args.get("sports_focus") or []]
        try:
            confidence = float(score) / 10
        except (TypeError, ValueError):
            confidence = 0.0

        evidence: list[dict[str, Any]] = [{
            "source": "Publisher Analysis",
            "headline": f"Sports focus: {', '.join(sports) or 'esportes gerais'}",
            "url": url,
            "description": args.get("reasoning"),
            "confidence": confidence,
        }]
        detection = args.get("betting_detection")
        if isinstance(detection, dict):
            det_conf = float(detection.get("confidence") or 0)
            evidence.append({
                "source": "Betting Detection",
                "headline": (
                    f"Betting widgets detected ({_pct(det_conf)} confidence)"
                    if detection.get("has_betting")
                    else f"No betting integrations found ({_pct(det_conf)} confidence)"
                ),
                "confidence": det_conf,
            })
        if args.get("traffic_score") is not None:
            traffic = float(args["traffic_score"])
            evidence.append({
                "source": "Traffic Analysis",
                "headline": f"Search presence score: {traffic:g}/10",
                "confidence": traffic / 10,
            })

        try:
            signal = create_signal(
                self.session,
                entity_name=str(args.get("publisher_name") or ""),
                entity_type="publisher",
                geo="br",
                signal_type=SIGNAL_TYPE,
                evidence=evidence,
                preliminary_score=score,
                source_urls=[url] if url else [],
                agent_run_id=self.run_id,
                signal_category="publisher",
            )
        except SignalValidationError as exc:
            return {"success": False, "error": f"Invalid signal data: {exc}"}
        self.session.commit()
        self.stored.append(signal.id)
        log.info("Stored publisher signal %s", signal.entity_name)
        return {"success": True, "signal_id": signal.id}

    def specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                "discover_publishers",
                "Discover Brazilian sports publishers via web search. Use this first.",
                {"type": "object", "properties": {
                    "limit": {"type": "number", "description": "Maximum publishers to return (default 30)"},
                }, "required": []},
                self.discover_publishers,
            ),
            ToolSpec(
                "search_specific_publishers",
                "Search for publishers by name or niche (futebol, UFC, a specific club)",
                {"type": "object", "properties": {
                    "query": {"type": "string", "description": 'e.g. "portal futebol amador brasil"'},
                }, "required": ["query"]},
                self.search_specific_publishers,
            ),
            ToolSpec(
                "analyze_publisher",
                "Crawl a publisher site and detect odds widgets, affiliate links and betting iframes. "
                "Publishers WITHOUT betting are the opportunity.",
                {"type": "object", "properties": {
                    "url": {"type": "string", "description": "Publisher URL"},
                }, "required": ["url"]},
                self.analyze_publisher,
            ),
            ToolSpec(
                "check_publisher_traffic",
                "Search presence score 0-10 from result count and autocomplete",
                {"type": "object", "properties": {
                    "publisher_name": {"type": "string", "description": "Publisher name or domain"},
                }, "required": ["publisher_name"]},
                self.check_publisher_traffic,
            ),
            ToolSpec(
                "store_publisher_signal",
                "Store a publisher opportunity: sports-focused, no betting, decent traffic. Explain why.",
                {"type": "object", "properties": {
                    "publisher_name": {"type": "string", "description": "Publisher name/domain"},
                    "publisher_url": {"type": "string", "description": "Publisher website URL"},
                    "sports_focus": {"type": "array", "items": {"type": "string"}, "description": "Sports covered"},
                    "traffic_score": {"type": "number", "description": "Presence score 0-10"},
                    "betting_detection": {"type": "object", "properties": {
                        "has_betting": {"type": "boolean"}, "confidence": {"type": "number"},
                    }, "description": "Result from analyze_publisher"},
                    "preliminary_score": {"type": "number", "description": "0-10: high traffic + no betting = high"},
                    "reasoning": {"type": "string", "description": "Why this is a good opportunity for E2"},
                }, "required": ["publisher_name", "publisher_url", "sports_focus", "preliminary_score", "reasoning"]},
                self.store_publisher_signal,
            ),
        ]


async def run_publisher_collector(
    session: Session,
    client: LLMClient,
    *,
    max_iterations: int = MAX_ITERATIONS,
) -> dict[str, Any]:
    run = start_agent_run(session, "collector", {"type": "publisher", "geo": "br"})
    session.commit()

    with agent_run_scope(session, run):
        tools = PublisherTools(session, run.id, client)
        loop = AgentLoop(
            client, system=SYSTEM_PROMPT, tools=tools.specs(),
            max_iterations=max_iterations, max_tokens=MAX_TOKENS,
        )
        try:
            result = await loop.run(INITIAL_MESSAGE)
        except AgentAbortedError as exc:
            complete_agent_run(
                session, run,
                output_summary={"signals_stored": len(tools.stored)},
                token_usage=exc.partial.usage.as_dict(),
                error=str(exc),
            )
            session.commit()
            raise

        complete_agent_run(
            session, run,
            output_summary={
                "signals_found": len(tools.stored),
                "publishers_discovered": len(tools.discovered),
                "iterations": result.iterations,
            },
            token_usage=result.usage.as_dict(),
        )
        session.commit()
    log.info("Publisher collector: %d signals from %d publishers", len(tools.stored), len(tools.discovered))
    return {
        "signals_found": len(tools.stored),
        "signals_stored": len(tools.stored),
        "entities_discovered": tools.discovered,
        "search_queries_used": [str(t.input.get("query")) for t in result.calls_to("search_specific_publishers")],
        "runId": run.id,
        "usage": result.usage.as_dict(),
    }
