"""Pydantic request/response schemas for the Radar API."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

CollectMode = Literal["agent", "lightweight", "articles"]


class _CamelBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CollectRequest(_CamelBody):
    geo: str = "br"
    days_back: int = Field(14, alias="daysBack", ge=1, le=90)
    mode: CollectMode = "agent"

    @field_validator("geo")
    @classmethod
    def geo_must_be_code(cls, v: str) -> str:
        v = v.strip().lower()
        if not v.isalpha() or len(v) > 10:
            raise ValueError("geo must be a short alphabetic region code")
        return v


class AnalyzeRequest(_CamelBody):
    signal_ids: list[str] | None = Field(None, alias="signalIds")
    limit: int = Field(50, ge=1, le=100)


class ReportRequest(_CamelBody):
    cycle_start: str | None = Field(None, alias="cycleStart")
    cycle_end: str | None = Field(None, alias="cycleEnd")
    send_email: bool = Field(True, alias="sendEmail")
    recipient_emails: list[str] | None = Field(None, alias="recipientEmails")
    preview: bool = False


class FeedbackCreate(_CamelBody):
    signal_id: str = Field(alias="signalId")
    is_useful: bool = Field(alias="isUseful")
    comment: str | None = None
    action_taken: str | None = Field(None, alias="actionTaken")
    user_email: str | None = Field(None, alias="userEmail")


class RegulatoryAction(BaseModel):
    id: str
    action: Literal["apply", "ignore"]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class EvidenceOut(BaseModel):
    source: str
    headline: str | None = None
    description: str | None = None
    url: str | None = None
    publishedAt: str | None = None
    confidence: float = 0.5


class AnalysisOut(BaseModel):
    id: str
    final_score: int
    priority: str
    score_breakdown: dict[str, int] = {}
    risk_flags: dict[str, Any] = {}
    recommended_actions: list[str] = []
    ai_reasoning: str = ""
    analyzed_at: str | None = None


class SignalOut(BaseModel):
    id: str
    entity_name: str
    entity_type: str
    geo: str
    signal_type: str
    evidence: list[EvidenceOut] = []
    preliminary_score: float | None = None
    source_urls: list[str] = []
    collected_at: str | None = None
    signal_category: str | None = None
    expires_at: str | None = None
    is_archived: bool = False
    is_expired: bool = False
    analysis: AnalysisOut | None = None
    feedback_count: int = 0


class DashboardOut(BaseModel):
    signals: list[SignalOut]
    stats: dict[str, Any]
    count: int


class ReportOut(BaseModel):
    id: str
    cycle_start: str
    cycle_end: str
    summary_stats: dict[str, Any] = {}
    executive_summary: str = ""
    key_trends: list[str] = []
    news_highlights: list[str] = []
    recommendations: str = ""
    recipients: list[str] = []
    created_at: str
    sent_at: str | None = None


class ReportDetail(ReportOut):
    content_markdown: str = ""
    content_html: str | None = None


class RegulatoryNewsOut(BaseModel):
    id: str
    headline: str
    headline_en: str | None = None
    url: str
    source: str = ""
    geo: str = "br"
    published_at: str | None = None
    status: str
    created_at: str


class AgentRunOut(BaseModel):
    id: str
    agent_type: str
    input_params: dict[str, Any] = {}
    output_summary: dict[str, Any] | None = None
    token_usage: dict[str, int] | None = None
    duration_ms: int | None = None
    error: str | None = None
    started_at: str
    completed_at: str | None = None


class StatsOut(BaseModel):
    signals: dict[str, Any]
    analyzed: dict[str, Any]
    feedback: dict[str, Any]
    agent_runs: dict[str, Any]
    pending_regulatory_news: int
