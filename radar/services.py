"""Shared business logic for the Radar API and MCP server.

Pipeline entry points return ``{"success": True, "data": ...}`` or
``{"success": False, "error": ...}``; both surfaces map that envelope to
their own error conventions.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from radar.agent import AgentAbortedError, ModelClient
from radar.analyzer import run_analyzer
from radar.articles import run_article_collector
from radar.collector import run_collector
from radar.lightweight import run_lightweight_collector
from radar.llm import LLMCallError, LLMClient, llm_configured
from radar.models import AgentRun, AnalyzedSignal, Feedback, RegulatoryNews, Report, Signal
from radar.partners import PartnershipResolver
from radar.publishers import run_publisher_collector
from radar.reporter import preview_report, resolve_window, run_reporter
from radar.store import (
    archive_signal,
    create_feedback,
    get_agent_run_stats,
    get_analyzed_stats,
    get_feedback_stats,
    get_pending_regulatory_news,
    get_signal,
    get_signal_stats,
    is_expired,
)
from radar.utils import isoformat, json_parse

log = logging.getLogger(__name__)

COLLECT_MODES = ("agent", "lightweight", "articles")
LLM_NOT_CONFIGURED = "LLM not configured: set ANTHROPIC_API_KEY or OPENAI_API_KEY"


def ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def fail(error: str) -> dict[str, Any]:
    return {"success": False, "error": error}


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def analysis_summary(analysis: AnalyzedSignal) -> dict[str, Any]:
    return {
        "id": analysis.id,
        "final_score": analysis.final_score,
        "priority": analysis.priority,
        "score_breakdown": json_parse(analysis.score_breakdown_json, {}),
        "risk_flags": json_parse(analysis.risk_flags_json, {}),
        "recommended_actions": json_parse(analysis.recommended_actions_json, []),
        "ai_reasoning": analysis.ai_reasoning,
        "analyzed_at": isoformat(analysis.analyzed_at),
    }


def signal_summary(signal: Signal) -> dict[str, Any]:
    return {
        "id": signal.id,
        "entity_name": signal.entity_name,
        "entity_type": signal.entity_type,
        "geo": signal.geo,
        "signal_type": signal.signal_type,
        "evidence": json_parse(signal.evidence_json, []),
        "preliminary_score": signal.preliminary_score,
        "source_urls": json_parse(signal.source_urls_json, []),
        "collected_at": isoformat(signal.collected_at),
        "signal_category": signal.signal_category,
        "expires_at": isoformat(signal.expires_at),
        "is_archived": bool(signal.is_archived),
        "is_expired": is_expired(signal),
        "analysis": analysis_summary(signal.analysis) if signal.analysis else None,
        "feedback_count": len(signal.feedback),
    }


def report_summary(report: Report, detail: bool = False) -> dict[str, Any]:
    data = {
        "id": report.id,
        "cycle_start": isoformat(report.cycle_start),
        "cycle_end": isoformat(report.cycle_end),
        "summary_stats": json_parse(report.summary_stats_json, {}),
        "executive_summary": report.executive_summary,
        "key_trends": json_parse(report.key_trends_json, []),
        "news_highlights": json_parse(report.news_highlights_json, []),
        "recommendations": report.recommendations,
        "recipients": json_parse(report.recipients_json, []),
        "created_at": isoformat(report.created_at),
        "sent_at": isoformat(report.sent_at),
    }
    if detail:
        data["content_markdown"] = report.content_markdown
        data["content_html"] = report.content_html
    return data


def regulatory_summary(item: RegulatoryNews) -> dict[str, Any]:
    return {
        "id": item.id,
        "headline": item.headline,
        "headline_en": item.headline_en,
        "url": item.url,
        "source": item.source,
        "geo": item.geo,
        "published_at": isoformat(item.published_at),
        "status": item.status,
        "created_at": isoformat(item.created_at),
    }


def agent_run_summary(run: AgentRun) -> dict[str, Any]:
    return {
        "id": run.id,
        "agent_type": run.agent_type,
        "input_params": json_parse(run.input_params_json, {}),
        "output_summary": json_parse(run.output_summary_json, None),
        "token_usage": json_parse(run.token_usage_json, None),
        "duration_ms": run.duration_ms,
        "error": run.error,
        "started_at": isoformat(run.started_at),
        "completed_at": isoformat(run.completed_at),
    }


def feedback_summary(fb: Feedback) -> dict[str, Any]:
    return {
        "id": fb.id,
        "signal_id": fb.signal_id,
        "is_useful": fb.is_useful,
        "comment": fb.notes,
        "action_taken": fb.action_taken,
        "user_email": fb.user_email,
        "created_at": isoformat(fb.created_at),
    }


def compute_stats(session: Session) -> dict[str, Any]:
    return {
        "signals": get_signal_stats(session),
        "analyzed": get_analyzed_stats(session),
        "feedback": get_feedback_stats(session),
        "agent_runs": get_agent_run_stats(session),
        "pending_regulatory_news": len(get_pending_regulatory_news(session)),
    }


# ---------------------------------------------------------------------------
# Pipeline operations
# ---------------------------------------------------------------------------


def _model_client(client: ModelClient | None) -> ModelClient | None:
    if client is not None:
        return client
    return LLMClient() if llm_configured() else None


async def collect(
    session: Session,
    *,
    geo: str = "br",
    days_back: int = 14,
    mode: str = "agent",
    client: ModelClient | None = None,
    resolver: PartnershipResolver | None = None,
) -> dict[str, Any]:
    """Run one collector mode. ``articles`` needs no model."""
    if mode not in COLLECT_MODES:
        return fail(f"mode must be one of {', '.join(COLLECT_MODES)}")
    try:
        if mode == "articles":
            return ok(await run_article_collector(session, geo=geo, days_back=days_back))
        client = _model_client(client)
        if client is None:
            return fail(LLM_NOT_CONFIGURED)
        if mode == "lightweight":
            data = await run_lightweight_collector(session, client, geo=geo, days_back=days_back, resolver=resolver)
        else:
            data = await run_collector(session, client, geo=geo, days_back=days_back, resolver=resolver)
    except (AgentAbortedError, LLMCallError) as exc:
        return fail(f"Collection failed: {exc}")
    except Exception as exc:
        log.exception("Collector crashed")
        return fail(f"Collection failed: {exc}")
    return ok(data)


async def collect_publishers(session: Session, client: ModelClient | None = None) -> dict[str, Any]:
    client = _model_client(client)
    if client is None:
        return fail(LLM_NOT_CONFIGURED)
    try:
        return ok(await run_publisher_collector(session, client))
    except AgentAbortedError as exc:
        return fail(f"Publisher collection failed: {exc}")
    except Exception as exc:
        log.exception("Publisher collector crashed")
        return fail(f"Publisher collection failed: {exc}")


async def analyze(
    session: Session,
    *,
    signal_ids: list[str] | None = None,
    limit: int = 50,
    client: ModelClient | None = None,
) -> dict[str, Any]:
    client = _model_client(client)
    if client is None:
        return fail(LLM_NOT_CONFIGURED)
    try:
        return ok(await run_analyzer(session, client, signal_ids=signal_ids, limit=limit))
    except AgentAbortedError as exc:
        return fail(f"Analysis failed: {exc}")
    except Exception as exc:
        log.exception("Analyzer crashed")
        return fail(f"Analysis failed: {exc}")


async def report(
    session: Session,
    *,
    cycle_start: str | None = None,
    cycle_end: str | None = None,
    send_email: bool = True,
    recipients: list[str] | None = None,
    preview: bool = False,
    client: ModelClient | None = None,
) -> dict[str, Any]:
    """Preview renders only; commit persists a Report and mails it at most once."""
    try:
        start, end = resolve_window(cycle_start, cycle_end)
    except ValueError as exc:
        return fail(str(exc))
    try:
        if preview:
            return ok(preview_report(session, start, end))
        data = await run_reporter(
            session, _model_client(client),
            cycle_start=start, cycle_end=end,
            send=send_email, recipients=recipients,
        )
    except Exception as exc:
        log.exception("Reporter crashed")
        return fail(f"Report generation failed: {exc}")
    return ok(data)


# ---------------------------------------------------------------------------
# Mutations (caller must commit)
# ---------------------------------------------------------------------------


def submit_feedback(
    session: Session,
    *,
    signal_id: str,
    is_useful: bool,
    comment: str | None = None,
    action_taken: str | None = None,
    user_email: str | None = None,
) -> dict[str, Any]:
    if get_signal(session, signal_id) is None:
        return fail(f"Signal {signal_id} not found")
    fb = create_feedback(
        session, signal_id=signal_id, is_useful=is_useful,
        comment=comment, action_taken=action_taken, user_email=user_email,
    )
    return ok(feedback_summary(fb))


def archive(session: Session, signal_id: str) -> dict[str, Any]:
    signal = archive_signal(session, signal_id)
    if signal is None:
        return fail(f"Signal {signal_id} not found")
    return ok({"id": signal.id, "is_archived": True})


def list_regulatory_news(session: Session, status: str | None = "pending", geo: str | None = None) -> list[dict]:
    if status == "pending":
        items = get_pending_regulatory_news(session, geo)
    else:
        query = select(RegulatoryNews).order_by(RegulatoryNews.created_at.desc())
        if status:
            query = query.where(RegulatoryNews.status == status)
        if geo:
            query = query.where(RegulatoryNews.geo == geo)
        items = list(session.execute(query).scalars().all())
    return [regulatory_summary(i) for i in items]
