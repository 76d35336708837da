"""Evidence store: CRUD over signals, analyses, reports, feedback, runs.

Functions take an open session and flush; the caller commits.
"""
from __future__ import annotations

import json
import logging
from collections import Counter
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from radar.models import AgentRun, AnalyzedSignal, Feedback, RegulatoryNews, Report, Signal
from radar.utils import json_parse, parse_datetime, utcnow

log = logging.getLogger(__name__)

ENTITY_TYPES = ("bookmaker", "publisher", "app", "channel")
AGENT_TYPES = ("collector", "analyzer", "reporter")
REGULATORY_ACTIONS = {"apply": "applied", "ignore": "ignored"}
DEFAULT_FEEDBACK_EMAIL = "anonymous@dashboard.local"


class SignalValidationError(ValueError):
    """Signal shape rejected before persistence."""


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


def _confidence(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.5


def normalize_evidence(items: Any) -> list[dict[str, Any]]:
    """Keep dict items only; drop empty optional keys; clamp confidence to [0, 1]."""
    if not isinstance(items, list):
        return []
    out: list[dict[str, Any]] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        ev: dict[str, Any] = {"source": str(item.get("source") or "unknown")}
        for key in ("headline", "description", "url", "publishedAt"):
            val = item.get(key)
            if val:
                ev[key] = str(val)
        ev["confidence"] = _confidence(item.get("confidence", 0.5))
        out.append(ev)
    return out


def validate_signal(
    entity_name: str, entity_type: str, geo: str, signal_type: str,
    evidence: list[dict[str, Any]], preliminary_score: Any,
) -> None:
    if not (entity_name or "").strip():
        raise SignalValidationError("entity_name is required")
    if entity_type not in ENTITY_TYPES:
        raise SignalValidationError(f"entity_type must be one of {', '.join(ENTITY_TYPES)}")
    if not (geo or "").strip():
        raise SignalValidationError("geo is required")
    if not (signal_type or "").strip():
        raise SignalValidationError("signal_type is required")
    if not evidence:
        raise SignalValidationError("evidence must contain at least one item")
    try:
        score = float(preliminary_score)
    except (TypeError, ValueError):
        raise SignalValidationError("preliminary_score must be a number") from None
    if not 0 <= score <= 10:
        raise SignalValidationError("preliminary_score must be between 0 and 10")


def create_signal(
    session: Session,
    *,
    entity_name: str,
    entity_type: str,
    geo: str,
    signal_type: str,
    evidence: Any,
    preliminary_score: Any,
    source_urls: list[str] | None = None,
    agent_run_id: str | None = None,
    signal_category: str | None = None,
    expires_at: datetime | None = None,
) -> Signal:
    """Validate and insert a signal. Raises SignalValidationError."""
    items = normalize_evidence(evidence)
    validate_signal(entity_name, entity_type, geo, signal_type, items, preliminary_score)
    urls = source_urls if source_urls is not None else [e["url"] for e in items if e.get("url")]
    signal = Signal(
        entity_name=entity_name.strip(),
        entity_type=entity_type,
        geo=geo.strip().lower(),
        signal_type=signal_type.strip().upper(),
        evidence_json=json.dumps(items),
        preliminary_score=float(preliminary_score),
        source_urls_json=json.dumps(list(dict.fromkeys(urls))),
        agent_run_id=agent_run_id,
        signal_category=signal_category,
        expires_at=expires_at,
        collected_at=utcnow(),
    )
    session.add(signal)
    session.flush()
    return signal


def get_signal(session: Session, signal_id: str) -> Signal | None:
    return session.get(Signal, signal_id)


def get_unanalyzed_signals(
    session: Session, limit: int = 100, signal_ids: list[str] | None = None,
) -> list[Signal]:
    """Signals with no AnalyzedSignal row, newest first."""
    query = (
        select(Signal)
        .outerjoin(AnalyzedSignal, AnalyzedSignal.signal_id == Signal.id)
        .where(AnalyzedSignal.id.is_(None))
        .order_by(Signal.collected_at.desc())
        .limit(limit)
    )
    if signal_ids:
        query = query.where(Signal.id.in_(signal_ids))
    return list(session.execute(query).scalars().all())


def is_expired(signal: Signal, now: datetime | None = None) -> bool:
    if signal.expires_at is None:
        return False
    return signal.expires_at <= (now or utcnow())


def get_dashboard_signals(
    session: Session,
    *,
    geo: str | None = None,
    entity_type: str | None = None,
    limit: int = 100,
    include_archived: bool = False,
) -> list[Signal]:
    """Signals with their analysis loaded, newest first.

    Archived and expired signals are hidden unless *include_archived*.
    """
    query = (
        select(Signal)
        .options(selectinload(Signal.analysis), selectinload(Signal.feedback))
        .order_by(Signal.collected_at.desc())
    )
    if geo:
        query = query.where(Signal.geo == geo.lower())
    if entity_type:
        query = query.where(Signal.entity_type == entity_type)
    if not include_archived:
        now = utcnow()
        query = query.where(Signal.is_archived.is_(False)).where(
            (Signal.expires_at.is_(None)) | (Signal.expires_at > now)
        )
    return list(session.execute(query.limit(limit)).scalars().all())


def archive_signal(session: Session, signal_id: str) -> Signal | None:
    signal = session.get(Signal, signal_id)
    if signal is None:
        return None
    signal.is_archived = True
    session.flush()
    return signal


def get_signal_stats(session: Session, geo: str | None = None) -> dict[str, Any]:
    query = select(Signal).options(selectinload(Signal.analysis))
    if geo:
        query = query.where(Signal.geo == geo.lower())
    signals = session.execute(query).scalars().all()
    by_type: Counter[str] = Counter()
    by_priority: Counter[str] = Counter({"HIGH": 0, "MEDIUM": 0, "LOW": 0, "UNANALYZED": 0})
    for s in signals:
        by_type[s.entity_type] += 1
        by_priority[s.analysis.priority if s.analysis else "UNANALYZED"] += 1
    return {"total": len(signals), "by_type": dict(by_type), "by_priority": dict(by_priority)}


# ---------------------------------------------------------------------------
# Analyzed signals
# ---------------------------------------------------------------------------


def get_analyzed_signals_with_details(session: Session, limit: int = 100) -> list[AnalyzedSignal]:
    """Most recent analyses with their source signal eagerly loaded."""
    query = (
        select(AnalyzedSignal)
        .options(selectinload(AnalyzedSignal.signal))
        .order_by(AnalyzedSignal.analyzed_at.desc())
        .limit(limit)
    )
    return list(session.execute(query).scalars().all())


def get_analyzed_stats(session: Session) -> dict[str, Any]:
    rows = session.execute(select(AnalyzedSignal.priority, AnalyzedSignal.final_score)).all()
    by_priority: Counter[str] = Counter({"HIGH": 0, "MEDIUM": 0, "LOW": 0})
    for priority, _ in rows:
        by_priority[priority] += 1
    total = len(rows)
    avg = sum(score or 0 for _, score in rows) / total if total else 0.0
    return {"total": total, "by_priority": dict(by_priority), "avg_score": round(avg, 2)}


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def create_report(
    session: Session,
    *,
    cycle_start: datetime,
    cycle_end: datetime,
    content_markdown: str,
    content_html: str | None,
    summary_stats: dict[str, Any],
    executive_summary: str = "",
    key_trends: list[str] | None = None,
    news_highlights: list[str] | None = None,
    recommendations: str = "",
    recipients: list[str] | None = None,
) -> Report:
    report = Report(
        cycle_start=cycle_start,
        cycle_end=cycle_end,
        content_markdown=content_markdown,
        content_html=content_html,
        summary_stats_json=json.dumps(summary_stats),
        executive_summary=executive_summary,
        key_trends_json=json.dumps(key_trends or []),
        news_highlights_json=json.dumps(news_highlights or []),
        recommendations=recommendations,
        recipients_json=json.dumps(recipients or []),
        created_at=utcnow(),
    )
    session.add(report)
    session.flush()
    return report


def mark_report_sent(session: Session, report: Report) -> bool:
    """Set ``sent_at`` once. Returns False when the report was already sent."""
    if report.sent_at is not None:
        return False
    report.sent_at = utcnow()
    session.flush()
    return True


def get_report(session: Session, report_id: str) -> Report | None:
    return session.get(Report, report_id)


def list_reports(session: Session, limit: int = 20) -> list[Report]:
    return list(session.execute(
        select(Report).order_by(Report.created_at.desc()).limit(limit)
    ).scalars().all())


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------


def create_feedback(
    session: Session,
    *,
    signal_id: str,
    is_useful: bool,
    comment: str | None = None,
    user_email: str | None = None,
    action_taken: str | None = None,
) -> Feedback:
    fb = Feedback(
        signal_id=signal_id,
        is_useful=is_useful,
        notes=comment,
        user_email=user_email or DEFAULT_FEEDBACK_EMAIL,
        action_taken=action_taken,
        created_at=utcnow(),
    )
    session.add(fb)
    session.flush()
    return fb


def get_feedback_for_signal(session: Session, signal_id: str) -> list[Feedback]:
    return list(session.execute(
        select(Feedback).where(Feedback.signal_id == signal_id).order_by(Feedback.created_at.desc())
    ).scalars().all())


def get_feedback_stats(session: Session) -> dict[str, Any]:
    flags = session.execute(select(Feedback.is_useful)).scalars().all()
    total = len(flags)
    useful = sum(1 for f in flags if f)
    return {
        "total": total, "useful": useful, "not_useful": total - useful,
        "useful_rate": useful / total if total else 0.0,
    }


# ---------------------------------------------------------------------------
# Agent runs
# ---------------------------------------------------------------------------


def start_agent_run(session: Session, agent_type: str, input_params: dict[str, Any] | None = None) -> AgentRun:
    if agent_type not in AGENT_TYPES:
        raise ValueError(f"Unknown agent type: {agent_type!r}")
    run = AgentRun(
        agent_type=agent_type,
        input_params_json=json.dumps(input_params or {}),
        started_at=utcnow(),
    )
    session.add(run)
    session.flush()
    return run


def complete_agent_run(
    session: Session,
    run: AgentRun,
    *,
    output_summary: dict[str, Any] | None = None,
    token_usage: dict[str, int] | None = None,
    error: str | None = None,
) -> AgentRun:
    """Close a run exactly once. Raises RuntimeError if already completed."""
    if run.completed_at is not None:
        raise RuntimeError(f"Agent run {run.id} already completed")
    now = utcnow()
    run.output_summary_json = json.dumps(output_summary) if output_summary is not None else None
    run.token_usage_json = json.dumps(token_usage) if token_usage is not None else None
    run.error = error
    run.duration_ms = int((now - run.started_at).total_seconds() * 1000) if run.started_at else None
    run.completed_at = now
    session.flush()
    return run


@contextmanager
def agent_run_scope(session: Session, run: AgentRun) -> Generator[AgentRun, None, None]:
    """Close *run* with the error if the block raises before closing it; re-raises.

    Uncommitted work is rolled back first; rows committed earlier in the run stay.
    """
    try:
        yield run
    except Exception as exc:
        session.rollback()
        if run.completed_at is None:
            complete_agent_run(session, run, error=str(exc) or exc.__class__.__name__)
            session.commit()
        log.warning("%s run %s failed: %s", run.agent_type, run.id, exc)
        raise


def list_agent_runs(session: Session, agent_type: str | None = None, limit: int = 20) -> list[AgentRun]:
    query = select(AgentRun).order_by(AgentRun.started_at.desc()).limit(limit)
    if agent_type:
        query = query.where(AgentRun.agent_type == agent_type)
    return list(session.execute(query).scalars().all())


def get_agent_run_stats(
    session: Session, agent_type: str | None = None, since: datetime | None = None,
) -> dict[str, Any]:
    query = select(AgentRun)
    if agent_type:
        query = query.where(AgentRun.agent_type == agent_type)
    if since:
        query = query.where(AgentRun.started_at >= since)
    runs = session.execute(query).scalars().all()
    completed = [r for r in runs if r.completed_at is not None]
    failed = [r for r in completed if r.error]
    total_duration = sum(r.duration_ms or 0 for r in completed)
    total_tokens = sum(json_parse(r.token_usage_json, {}).get("totalTokens", 0) for r in runs)
    return {
        "total_runs": len(runs),
        "successful_runs": len(completed) - len(failed),
        "failed_runs": len(failed),
        "avg_duration_ms": total_duration / len(completed) if completed else 0,
        "total_tokens": total_tokens,
    }


# ---------------------------------------------------------------------------
# Regulatory news
# ---------------------------------------------------------------------------


def add_regulatory_news(session: Session, items: list[dict[str, Any]], geo: str = "br") -> int:
    """Insert items whose url is not yet known. Returns the number added."""
    urls = [i.get("url") for i in items if i.get("url")]
    if not urls:
        return 0
    known = set(session.execute(
        select(RegulatoryNews.url).where(RegulatoryNews.url.in_(urls))
    ).scalars().all())
    added = 0
    for item in items:
        url = item.get("url")
        if not url or url in known:
            continue
        session.add(RegulatoryNews(
            headline=str(item.get("headline") or item.get("title") or ""),
            headline_en=item.get("headline_en"),
            url=url,
            source=str(item.get("source") or ""),
            geo=geo,
            published_at=parse_datetime(item.get("publishedAt") or item.get("published_at")),
            status="pending",
            created_at=utcnow(),
        ))
        known.add(url)
        added += 1
    session.flush()
    return added


def get_pending_regulatory_news(session: Session, geo: str | None = None) -> list[RegulatoryNews]:
    query = select(RegulatoryNews).where(RegulatoryNews.status == "pending").order_by(
        RegulatoryNews.created_at.desc()
    )
    if geo:
        query = query.where(RegulatoryNews.geo == geo)
    return list(session.execute(query).scalars().all())


def set_regulatory_status(session: Session, news_id: str, action: str) -> RegulatoryNews | None:
    """Apply or ignore a regulatory item. Raises ValueError on an unknown action."""
    if action not in REGULATORY_ACTIONS:
        raise ValueError("action must be 'apply' or 'ignore'")
    item = session.get(RegulatoryNews, news_id)
    if item is None:
        return None
    item.status = REGULATORY_ACTIONS[action]
    session.flush()
    return item
