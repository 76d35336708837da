"""Reporter stage: compile analyzed signals in a date window into a digest.

The window filter runs in-process over the most recent ``FETCH_LIMIT``
analyses, so very busy windows undercount.  Prose sections come from a
short agent loop when a model client is available and fall back to
deterministic text otherwise.  Commit mode persists one Report row and
dispatches at most one e-mail for it.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from radar.agent import AgentAbortedError, AgentLoop, ModelClient, ToolExecution, ToolSpec, Usage
from radar.context import recommendations_for
from radar.mailer import default_recipients, send_email
from radar.render import ReportModel, ReportSignal, ReportStats, render_html, render_markdown
from radar.store import (
    agent_run_scope,
    complete_agent_run,
    create_report,
    get_analyzed_signals_with_details,
    mark_report_sent,
    start_agent_run,
)
from radar.utils import isoformat, parse_datetime, utcnow

log = logging.getLogger(__name__)

DEFAULT_DAYS = 14
FETCH_LIMIT = 100
MAX_ITERATIONS = 5
MAX_TOKENS = 2048
TOP_SIGNALS = 10

SECTION_TYPES = ("executive_summary", "key_trends", "news_highlights", "recommendations")

SYSTEM_PROMPT = """\
You are the Reporter Agent for E2's Market Intelligence system.

## Your Mission
Write the prose sections of the bi-weekly market intelligence digest for the Sales/BD team.
The signal tables are rendered for you; write only the narrative.

## Sections
- executive_summary: 2-3 sentences on the most important opportunities this period
- key_trends: one trend per line (markets heating up, recurring signal types)
- news_highlights: one notable development per line
- recommendations: concrete next steps for the team, most urgent first

## Workflow
1. Call generate_report_section once per section.
2. Call finalize_report when every section is written.

Be concise and specific. Name entities and markets; avoid filler."""

SECTION_SCHEMA = {
    "type": "object",
    "properties": {
        "section_type": {"type": "string", "enum": list(SECTION_TYPES), "description": "Which section to write"},
        "content": {"type": "string", "description": "Section text; list sections use one item per line"},
    },
    "required": ["section_type", "content"],
}

FINALIZE_SCHEMA = {
    "type": "object",
    "properties": {
        "report_complete": {"type": "boolean", "description": "True when all sections are written"},
    },
    "required": ["report_complete"],
}


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


def resolve_window(
    cycle_start: str | datetime | None = None,
    cycle_end: str | datetime | None = None,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """Default window is the last ``DEFAULT_DAYS`` days ending now.

    Raises ValueError for unparseable dates or an inverted window.
    """
    now = now or utcnow()
    end = parse_datetime(cycle_end) if cycle_end else now
    if end is None:
        raise ValueError(f"Invalid cycleEnd: {cycle_end!r}")
    start = parse_datetime(cycle_start) if cycle_start else end - timedelta(days=DEFAULT_DAYS)
    if start is None:
        raise ValueError(f"Invalid cycleStart: {cycle_start!r}")
    if start > end:
        raise ValueError("cycleStart must not be after cycleEnd")
    return start, end


def fetch_report_data(session: Session, cycle_start: datetime, cycle_end: datetime) -> list[ReportSignal]:
    """Analyses with ``cycle_start <= analyzed_at <= cycle_end``, best first."""
    analyses = get_analyzed_signals_with_details(session, FETCH_LIMIT)
    signals = [
        ReportSignal.from_analysis(a)
        for a in analyses
        if a.analyzed_at is not None and cycle_start <= a.analyzed_at <= cycle_end
    ]
    signals.sort(key=lambda s: s.final_score, reverse=True)
    return signals


def compute_report_stats(signals: list[ReportSignal]) -> ReportStats:
    stats = ReportStats(total=len(signals))
    for s in signals:
        stats.by_priority[s.priority] = stats.by_priority.get(s.priority, 0) + 1
    stats.by_geo = dict(Counter(s.geo for s in signals))
    stats.by_type = dict(Counter(s.entity_type for s in signals))
    if signals:
        stats.avg_score = round(sum(s.final_score for s in signals) / len(signals), 1)
    return stats


def build_report_model(signals: list[ReportSignal], cycle_start: datetime, cycle_end: datetime) -> ReportModel:
    return ReportModel(
        cycle_start=cycle_start,
        cycle_end=cycle_end,
        high=[s for s in signals if s.priority == "HIGH"],
        medium=[s for s in signals if s.priority == "MEDIUM"],
        low=[s for s in signals if s.priority == "LOW"],
        stats=compute_report_stats(signals),
    )


def summary_stats(model: ReportModel) -> dict[str, Any]:
    stats = model.stats
    return {
        "totalSignals": stats.total,
        "highPriority": stats.by_priority.get("HIGH", 0),
        "mediumPriority": stats.by_priority.get("MEDIUM", 0),
        "lowPriority": stats.by_priority.get("LOW", 0),
        "avgScore": stats.avg_score,
        "newEntities": stats.total,
        "topGeos": list(stats.by_geo),
    }


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _lines(content: str) -> list[str]:
    items = []
    for line in content.splitlines():
        line = line.strip().lstrip("-*•").strip()
        if line:
            items.append(line)
    return items


@dataclass
class ReportSections:
    executive_summary: str = ""
    key_trends: list[str] = field(default_factory=list)
    news_highlights: list[str] = field(default_factory=list)
    recommendations: str = ""
    finalized: bool = False

    def generate_report_section(self, args: dict[str, Any]) -> dict[str, Any]:
        section = str(args.get("section_type") or "")
        content = str(args.get("content") or "").strip()
        if section not in SECTION_TYPES:
            return {"success": False, "error": f"section_type must be one of {', '.join(SECTION_TYPES)}"}
        if not content:
            return {"success": False, "error": "content is required"}
        if section in ("key_trends", "news_highlights"):
            setattr(self, section, _lines(content))
        else:
            setattr(self, section, content)
        return {"success": True, "section": section}

    def finalize_report(self, args: dict[str, Any]) -> dict[str, Any]:
        self.finalized = bool(args.get("report_complete", True))
        return {"success": True, "finalized": self.finalized}

    def specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                "generate_report_section",
                "Write one prose section of the report",
                SECTION_SCHEMA,
                self.generate_report_section,
            ),
            ToolSpec(
                "finalize_report",
                "Mark the report as complete once every section is written",
                FINALIZE_SCHEMA,
                self.finalize_report,
            ),
        ]

    def apply(self, model: ReportModel) -> None:
        fallback = default_sections(model)
        model.executive_summary = self.executive_summary or fallback.executive_summary
        model.key_trends = self.key_trends or fallback.key_trends
        model.news_highlights = self.news_highlights
        model.recommendations = self.recommendations or fallback.recommendations


def default_sections(model: ReportModel) -> ReportSections:
    """Deterministic prose used when no model is available or the loop fails."""
    stats = model.stats
    high, medium = stats.by_priority.get("HIGH", 0), stats.by_priority.get("MEDIUM", 0)
    summary = (
        f"{stats.total} signal(s) were analyzed between {model.cycle_start:%b %d} and "
        f"{model.cycle_end:%b %d, %Y}: {high} high priority and {medium} medium priority, "
        f"with an average score of {stats.avg_score:.1f}/14."
    )
    if model.high:
        summary += " Top opportunity: " + ", ".join(s.entity_name for s in model.high[:3]) + "."

    trends = [
        f"{geo.upper()}: {count} signal(s)"
        for geo, count in Counter(stats.by_geo).most_common(3)
    ]
    trends += [
        f"{signal_type}: {count} signal(s)"
        for signal_type, count in Counter(s.signal_type for s in model.high + model.medium + model.low).most_common(3)
    ]

    actions: list[str] = []
    for s in model.high + model.medium:
        for action in s.recommended_actions or recommendations_for(s.signal_type):
            line = f"{s.entity_name}: {action}"
            if line not in actions:
                actions.append(line)
    recommendations = "\n".join(f"- {a}" for a in actions[:5])
    return ReportSections(executive_summary=summary, key_trends=trends, recommendations=recommendations)


def report_message(model: ReportModel) -> str:
    stats = model.stats
    top = (model.high + model.medium + model.low)[:TOP_SIGNALS]
    lines = [
        f"Report period: {isoformat(model.cycle_start)} to {isoformat(model.cycle_end)}",
        f"Total signals: {stats.total}",
        "Priority breakdown: " + ", ".join(f"{k}={v}" for k, v in stats.by_priority.items()),
        f"Average score: {stats.avg_score:.1f}/14",
        "Geos: " + (", ".join(f"{g} ({c})" for g, c in stats.by_geo.items()) or "none"),
        "",
        f"Top {len(top)} signals:",
    ]
    for i, s in enumerate(top, start=1):
        lines.append(
            f"{i}. {s.entity_name} ({s.entity_type}, {s.geo.upper()}, {s.signal_type}) "
            f"score {s.final_score}/14 {s.priority}: {s.ai_reasoning[:100]}"
        )
    lines += ["", "Write each section with generate_report_section, then call finalize_report."]
    return "\n".join(lines)


def _finalized(execution: ToolExecution) -> bool:
    return execution.name == "finalize_report" and not execution.is_error


async def draft_sections(client: ModelClient | None, model: ReportModel) -> tuple[ReportSections, Usage, str | None]:
    """Run the section-writing loop. Returns (sections, usage, error)."""
    sections = ReportSections()
    if client is None:
        return sections, Usage(), None
    loop = AgentLoop(
        client,
        system=SYSTEM_PROMPT,
        tools=sections.specs(),
        max_iterations=MAX_ITERATIONS,
        max_tokens=MAX_TOKENS,
        stop_when=_finalized,
    )
    try:
        result = await loop.run(report_message(model))
    except AgentAbortedError as exc:
        log.warning("Report drafting failed, using default sections: %s", exc)
        return sections, exc.partial.usage, str(exc)
    log.info("Report drafting finished (%s after %d iterations)", result.termination, result.iterations)
    return sections, result.usage, None


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def preview_report(
    session: Session,
    cycle_start: str | datetime | None = None,
    cycle_end: str | datetime | None = None,
) -> dict[str, Any]:
    """Render without a model call and without persisting anything."""
    start, end = resolve_window(cycle_start, cycle_end)
    model = build_report_model(fetch_report_data(session, start, end), start, end)
    default_sections(model).apply(model)
    return {
        "html": render_html(model),
        "markdown": render_markdown(model),
        "stats": model.stats.as_dict(),
    }


async def run_reporter(
    session: Session,
    client: ModelClient | None = None,
    *,
    cycle_start: str | datetime | None = None,
    cycle_end: str | datetime | None = None,
    send: bool = True,
    recipients: list[str] | None = None,
) -> dict[str, Any]:
    start, end = resolve_window(cycle_start, cycle_end)
    signals = fetch_report_data(session, start, end)
    if not signals:
        log.info("No analyzed signals between %s and %s", start, end)
        return {"reportId": "", "signalsIncluded": 0, "emailSent": False}

    run = start_agent_run(session, "reporter", {
        "cycleStart": isoformat(start), "cycleEnd": isoformat(end), "sendEmail": send,
    })
    session.commit()

    with agent_run_scope(session, run):
        model = build_report_model(signals, start, end)
        sections, usage, draft_error = await draft_sections(client, model)
        sections.apply(model)
        markdown = render_markdown(model)
        html = render_html(model)

        to = recipients or default_recipients()
        report = create_report(
            session,
            cycle_start=start,
            cycle_end=end,
            content_markdown=markdown,
            content_html=html,
            summary_stats=summary_stats(model),
            executive_summary=model.executive_summary,
            key_trends=model.key_trends,
            news_highlights=model.news_highlights,
            recommendations=model.recommendations,
            recipients=to,
        )
        session.commit()

        email_sent = False
        email_error = None
        if send:
            high = model.stats.by_priority.get("HIGH", 0)
            outcome = await send_email(to, f"E2 Market Intelligence: {high} High Priority Opportunities", html)
            if outcome["success"]:
                email_sent = mark_report_sent(session, report)
                session.commit()
            else:
                email_error = outcome["error"]

        output = {
            "reportId": report.id,
            "signalsIncluded": len(signals),
            "emailSent": email_sent,
            "recipients": to if email_sent else [],
            "periodStart": isoformat(start),
            "periodEnd": isoformat(end),
        }
        if email_error:
            output["emailError"] = email_error
        if draft_error:
            output["draftError"] = draft_error
        complete_agent_run(session, run, output_summary=output, token_usage=usage.as_dict())
        session.commit()
    log.info("Report %s: %d signals, email sent=%s", report.id, len(signals), email_sent)
    return {**output, "runId": run.id, "usage": usage.as_dict()}
