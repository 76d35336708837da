from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from radar.utils import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class AgentRun(Base):
    __tablename__ = "agent_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    agent_type: Mapped[str] = mapped_column(String(20), nullable=False)  # collector | analyzer | reporter
    input_params_json: Mapped[str] = mapped_column(Text, default="{}")
    output_summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_usage_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    signals: Mapped[list[Signal]] = relationship("Signal", back_populates="agent_run")


class Signal(Base):
    __tablename__ = "signals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    entity_name: Mapped[str] = mapped_column(String(300), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)  # bookmaker | publisher | app | channel
    geo: Mapped[str] = mapped_column(String(10), nullable=False)
    signal_type: Mapped[str] = mapped_column(String(50), nullable=False)
    evidence_json: Mapped[str] = mapped_column(Text, default="[]")
    preliminary_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    source_urls_json: Mapped[str] = mapped_column(Text, default="[]")
    collected_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    agent_run_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("agent_runs.id"), nullable=True)
    signal_category: Mapped[str | None] = mapped_column(String(50), nullable=True)  # e.g. "time_sensitive"
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)

    agent_run: Mapped[AgentRun | None] = relationship("AgentRun", back_populates="signals")
    analysis: Mapped[AnalyzedSignal | None] = relationship(
        "AnalyzedSignal", back_populates="signal", uselist=False, cascade="all, delete-orphan",
    )
    feedback: Mapped[list[Feedback]] = relationship("Feedback", back_populates="signal", cascade="all, delete-orphan")


class AnalyzedSignal(Base):
    __tablename__ = "analyzed_signals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    signal_id: Mapped[str] = mapped_column(String(36), ForeignKey("signals.id"), nullable=False, unique=True)
    final_score: Mapped[int] = mapped_column(Integer, nullable=False)
    score_breakdown_json: Mapped[str] = mapped_column(Text, default="{}")
    priority: Mapped[str] = mapped_column(String(10), nullable=False)  # HIGH | MEDIUM | LOW
    risk_flags_json: Mapped[str] = mapped_column(Text, default="{}")
    recommended_actions_json: Mapped[str] = mapped_column(Text, default="[]")
    ai_reasoning: Mapped[str] = mapped_column(Text, default="")
    analyzed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    signal: Mapped[Signal] = relationship("Signal", back_populates="analysis")


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    cycle_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    cycle_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    content_markdown: Mapped[str] = mapped_column(Text, default="")
    content_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary_stats_json: Mapped[str] = mapped_column(Text, default="{}")
    executive_summary: Mapped[str] = mapped_column(Text, default="")
    key_trends_json: Mapped[str] = mapped_column(Text, default="[]")
    news_highlights_json: Mapped[str] = mapped_column(Text, default="[]")
    recommendations: Mapped[str] = mapped_column(Text, default="")
    recipients_json: Mapped[str] = mapped_column(Text, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class Feedback(Base):
    __tablename__ = "feedback"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    signal_id: Mapped[str] = mapped_column(String(36), ForeignKey("signals.id"), nullable=False)
    user_email: Mapped[str] = mapped_column(String(300), default="anonymous@dashboard.local")
    is_useful: Mapped[bool] = mapped_column(Boolean, nullable=False)
    action_taken: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    signal: Mapped[Signal] = relationship("Signal", back_populates="feedback")


class RegulatoryNews(Base):
    __tablename__ = "regulatory_news"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    headline: Mapped[str] = mapped_column(Text, nullable=False)
    headline_en: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str] = mapped_column(String(1000), nullable=False, unique=True)
    source: Mapped[str] = mapped_column(String(200), default="")
    geo: Mapped[str] = mapped_column(String(10), default="br")
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending | applied | ignored
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
