"""Report rendering: one :class:`ReportModel`, two jinja2 templates."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from radar.models import AnalyzedSignal
from radar.utils import json_parse, utcnow

TEMPLATES_DIR = Path(__file__).parent / "templates"
MEDIUM_LIMIT = 5

GEO_FLAGS = {
    "br": "🇧🇷",
    "mx": "🇲🇽",
    "ar": "🇦🇷",
    "co": "🇨🇴",
    "pe": "🇵🇪",
    "cl": "🇨🇱",
}

COLORS = {
    "background": "#0a0a0f",
    "surface": "#12121a",
    "surface_light": "#1a1a24",
    "border": "#2a2a3a",
    "text": "#e4e4e7",
    "muted": "#a1a1aa",
}
PRIORITY_COLORS = {
    "HIGH": {"bg": "rgba(239, 68, 68, 0.15)", "fg": "#ef4444"},
    "MEDIUM": {"bg": "rgba(245, 158, 11, 0.15)", "fg": "#f59e0b"},
    "LOW": {"bg": "rgba(34, 197, 94, 0.15)", "fg": "#22c55e"},
}


def geo_flag(geo: str | None) -> str:
    return GEO_FLAGS.get((geo or "").lower(), "🌍")


def format_date(value: datetime | None) -> str:
    return value.strftime("%b %d, %Y") if value else ""


@dataclass
class ReportSignal:
    """Flattened view of an analysis and its signal for the templates."""
    id: str
    signal_id: str
    entity_name: str
    entity_type: str
    geo: str
    signal_type: str
    final_score: int
    priority: str
    score_breakdown: dict[str, int]
    risk_flags: dict[str, Any]
    recommended_actions: list[str]
    ai_reasoning: str
    analyzed_at: datetime

    @property
    def risk_notes(self) -> list[str]:
        notes = [k for k in ("regulatory", "reputational", "financial") if self.risk_flags.get(k)]
        return notes + list(self.risk_flags.get("notes") or [])

    @classmethod
    def from_analysis(cls, analysis: AnalyzedSignal) -> ReportSignal:
        signal = analysis.signal
        return cls(
            id=analysis.id,
            signal_id=analysis.signal_id,
            entity_name=signal.entity_name,
            entity_type=signal.entity_type,
            geo=signal.geo,
            signal_type=signal.signal_type,
            final_score=analysis.final_score,
            priority=analysis.priority,
            score_breakdown=json_parse(analysis.score_breakdown_json, {}),
            risk_flags=json_parse(analysis.risk_flags_json, {}),
            recommended_actions=json_parse(analysis.recommended_actions_json, []),
            ai_reasoning=analysis.ai_reasoning or "",
            analyzed_at=analysis.analyzed_at,
        )


@dataclass
class ReportStats:
    total: int = 0
    by_priority: dict[str, int] = field(default_factory=lambda: {"HIGH": 0, "MEDIUM": 0, "LOW": 0})
    by_geo: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    avg_score: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "byPriority": dict(self.by_priority),
            "byGeo": dict(self.by_geo),
            "byType": dict(self.by_type),
            "avgScore": self.avg_score,
        }


@dataclass
class ReportModel:
    cycle_start: datetime
    cycle_end: datetime
    high: list[ReportSignal] = field(default_factory=list)
    medium: list[ReportSignal] = field(default_factory=list)
    low: list[ReportSignal] = field(default_factory=list)
    stats: ReportStats = field(default_factory=ReportStats)
    executive_summary: str = ""
    key_trends: list[str] = field(default_factory=list)
    news_highlights: list[str] = field(default_factory=list)
    recommendations: str = ""
    generated_at: datetime = field(default_factory=utcnow)


def _environment(**kwargs: Any) -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
        **kwargs,
    )
    env.filters["flag"] = geo_flag
    env.filters["date"] = format_date
    return env


_MARKDOWN_ENV = _environment(autoescape=False)
_HTML_ENV = _environment(autoescape=select_autoescape(["html", "j2"]))


def render_markdown(report: ReportModel) -> str:
    template = _MARKDOWN_ENV.get_template("report.md.j2")
    return template.render(report=report, medium_limit=MEDIUM_LIMIT).strip() + "\n"


def render_html(report: ReportModel) -> str:
    template = _HTML_ENV.get_template("report.html.j2")
    return template.render(
        report=report,
        medium_limit=MEDIUM_LIMIT,
        colors=COLORS,
        priority_colors=PRIORITY_COLORS,
    )
