from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, contextmanager

from mcp.server.fastmcp import FastMCP

from radar import services
from radar.context import PRODUCTS
from radar.db import get_session, init_db
from radar.partners import get_resolver
from radar.store import (
    get_dashboard_signals,
    get_report,
    list_agent_runs,
    list_reports,
    set_regulatory_status,
)

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def radar_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Radar",
    instructions=(
        "Radar is E2's market intelligence pipeline for betting markets. "
        "Use these tools to collect signals, score them and compile reports. "
        "Start with get_stats() for an overview, then list_signals() to browse, "
        "then run_analyzer() to score whatever is still unanalyzed."
    ),
    lifespan=radar_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session():
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def _envelope(result: dict) -> dict:
    """Flatten a services envelope into the data dict or an ``{"error"}`` dict."""
    if result["success"]:
        return result["data"]
    return {"error": result["error"]}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("radar://overview")
def radar_overview() -> str:
    """Overview of Radar: data model, workflow, scoring rubric."""
    return json.dumps({
        "system": "Radar: Market Intelligence for E2",
        "description": (
            "Radar discovers betting operators and sports publishers from news, search and "
            "social sources, checks them against E2's partner roster, scores them on a "
            "0-14 rubric and compiles bi-weekly digest reports."
        ),
        "data_model": {
            "signal": "A discovered entity (bookmaker, publisher, app, channel) with evidence and a 0-10 preliminary score.",
            "analyzed_signal": "Exactly one per signal: four sub-scores, final score 0-14, priority, risk flags, actions.",
            "report": "Digest over a date window, rendered to markdown and HTML, e-mailed at most once.",
            "regulatory_news": "Regulatory headlines awaiting a human apply/ignore decision.",
        },
        "workflow": [
            "1. get_stats() to see signal and analysis coverage.",
            "2. run_collector(geo, days_back, mode) to gather new signals.",
            "3. run_analyzer() to score unanalyzed signals.",
            "4. preview_report() to inspect the digest, generate_report() to store and send it.",
            "5. list_signals() and submit_feedback() to review results.",
        ],
        "scoring": {
            "market_entry_momentum": "0-4",
            "e2_partnership_fit": "0-4",
            "actionability": "0-3",
            "data_confidence": "0-3",
            "priority": "HIGH >= 10, MEDIUM 7-9, LOW < 7",
        },
        "partner_tiers": ["AFFILIATE_PARTNER", "KNOWN_BOOKIE", "NEW_PROSPECT"],
        "products": {pid: p["pitch"] for pid, p in PRODUCTS.items()},
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Pipeline
# ---------------------------------------------------------------------------


@mcp.tool()
async def run_collector(geo: str = "br", days_back: int = 14, mode: str = "agent") -> dict:
    """Collect new signals. mode is agent, lightweight or articles (articles needs no LLM)."""
    with _session() as session:
        return _envelope(await services.collect(session, geo=geo, days_back=days_back, mode=mode))


@mcp.tool()
async def run_publisher_collector() -> dict:
    """Find Brazilian sports publishers without betting integrations."""
    with _session() as session:
        return _envelope(await services.collect_publishers(session))


@mcp.tool()
async def run_analyzer(signal_ids: list[str] | None = None, limit: int = 50) -> dict:
    """Score unanalyzed signals (optionally only the given ids). Requires an LLM key."""
    with _session() as session:
        return _envelope(await services.analyze(session, signal_ids=signal_ids, limit=limit))


@mcp.tool()
async def preview_report(cycle_start: str | None = None, cycle_end: str | None = None) -> dict:
    """Render the markdown report for a window without storing or sending it."""
    with _session() as session:
        data = _envelope(await services.report(
            session, cycle_start=cycle_start, cycle_end=cycle_end, preview=True,
        ))
        if "error" in data:
            return data
        return {"markdown": data["markdown"], "stats": data["stats"]}


@mcp.tool()
async def generate_report(
    cycle_start: str | None = None,
    cycle_end: str | None = None,
    send_email: bool = False,
    recipient_emails: list[str] | None = None,
) -> dict:
    """Store a report for the window and optionally e-mail it."""
    with _session() as session:
        return _envelope(await services.report(
            session, cycle_start=cycle_start, cycle_end=cycle_end,
            send_email=send_email, recipients=recipient_emails,
        ))


@mcp.tool()
async def check_partnership(entity_name: str) -> dict:
    """Look up an entity's E2 partnership tier (AFFILIATE_PARTNER, KNOWN_BOOKIE, NEW_PROSPECT)."""
    check = await get_resolver().check(entity_name)
    return check.as_dict()


# ---------------------------------------------------------------------------
# Tools: Signals & Reports
# ---------------------------------------------------------------------------


@mcp.tool()
def list_signals(
    geo: str | None = None,
    entity_type: str | None = None,
    priority: str | None = None,
    limit: int = 50,
    include_archived: bool = False,
) -> list[dict]:
    """List dashboard signals, newest first. priority filters on the analysis (HIGH, MEDIUM, LOW)."""
    with _session() as session:
        signals = get_dashboard_signals(
            session, geo=geo, entity_type=entity_type, limit=limit, include_archived=include_archived,
        )
        items = [services.signal_summary(s) for s in signals]
        if priority:
            wanted = priority.strip().upper()
            items = [i for i in items if i["analysis"] and i["analysis"]["priority"] == wanted]
        return items


@mcp.tool()
def submit_feedback(signal_id: str, is_useful: bool, comment: str | None = None) -> dict:
    """Record whether a signal was useful."""
    with _session() as session:
        result = services.submit_feedback(session, signal_id=signal_id, is_useful=is_useful, comment=comment)
        if result["success"]:
            session.commit()
        return _envelope(result)


@mcp.tool()
def archive_signal(signal_id: str) -> dict:
    """Hide a signal from the dashboard."""
    with _session() as session:
        result = services.archive(session, signal_id)
        if result["success"]:
            session.commit()
        return _envelope(result)


@mcp.tool()
def list_stored_reports(limit: int = 10) -> list[dict]:
    """List stored reports, newest first."""
    with _session() as session:
        return [services.report_summary(r) for r in list_reports(session, limit)]


@mcp.tool()
def get_report_markdown(report_id: str) -> dict:
    """Get a stored report's markdown content."""
    with _session() as session:
        report = get_report(session, report_id)
        if report is None:
            return {"error": f"Report {report_id} not found"}
        return {"id": report.id, "markdown": report.content_markdown, "sent_at": services.report_summary(report)["sent_at"]}


# ---------------------------------------------------------------------------
# Tools: Regulatory news & Stats
# ---------------------------------------------------------------------------


@mcp.tool()
def list_regulatory_news(status: str = "pending", geo: str | None = None) -> list[dict]:
    """Regulatory news items; status is pending, applied or ignored."""
    with _session() as session:
        return services.list_regulatory_news(session, status=status, geo=geo)


@mcp.tool()
def review_regulatory_news(news_id: str, action: str) -> dict:
    """Apply or ignore a pending regulatory news item. action is 'apply' or 'ignore'."""
    with _session() as session:
        try:
            item = set_regulatory_status(session, news_id, action)
        except ValueError as exc:
            return {"error": str(exc)}
        if item is None:
            return {"error": f"News item {news_id} not found"}
        session.commit()
        return services.regulatory_summary(item)


@mcp.tool()
def get_stats() -> dict:
    """Signal, analysis, feedback and agent-run statistics."""
    with _session() as session:
        return services.compute_stats(session)


@mcp.tool()
def get_agent_runs(agent_type: str | None = None, limit: int = 10) -> list[dict]:
    """Recent agent runs with token usage and errors."""
    with _session() as session:
        return [services.agent_run_summary(r) for r in list_agent_runs(session, agent_type, limit)]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Radar MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
