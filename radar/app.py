from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Generator

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from sqlalchemy.orm import Session

from radar import services
from radar.db import init_db, session_generator
from radar.schemas import (
    AgentRunOut,
    AnalyzeRequest,
    CollectRequest,
    DashboardOut,
    FeedbackCreate,
    RegulatoryAction,
    RegulatoryNewsOut,
    ReportDetail,
    ReportOut,
    ReportRequest,
    StatsOut,
)
from radar.store import (
    AGENT_TYPES,
    ENTITY_TYPES,
    get_dashboard_signals,
    get_feedback_for_signal,
    get_report,
    get_signal,
    get_signal_stats,
    list_agent_runs,
    list_reports,
    set_regulatory_status,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Radar",
    version="0.1.0",
    description=(
        "Market intelligence API for E2. Collects betting-market signals, scores them "
        "against the partnership rubric and compiles bi-weekly digest reports. "
        "Trigger routes accept an optional `Authorization: Bearer $CRON_SECRET`."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Pipeline", "description": "Collector, analyzer and reporter triggers. Require an LLM key."},
        {"name": "Signals", "description": "Dashboard listing, archive and feedback."},
        {"name": "Reports", "description": "Stored digest reports."},
        {"name": "Regulatory", "description": "Pending regulatory news awaiting review."},
        {"name": "Stats", "description": "Aggregate statistics and agent run history."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def require_cron_secret(authorization: str | None = Header(None)) -> None:
    """Open when CRON_SECRET is unset; otherwise a matching bearer token is required."""
    secret = os.environ.get("CRON_SECRET", "").strip()
    if secret and authorization != f"Bearer {secret}":
        raise HTTPException(401, "Unauthorized")


def _unwrap(result: dict[str, Any]) -> dict[str, Any]:
    if result["success"]:
        return result
    error = result["error"]
    status = 503 if error == services.LLM_NOT_CONFIGURED else 500
    raise HTTPException(status, error)


# ---------------------------------------------------------------------------
# Routes: Root
# ---------------------------------------------------------------------------


@app.get("/")
async def root():
    return {
        "name": "Radar",
        "status": "ready",
        "endpoints": [
            "POST /api/collect", "POST /api/collect-publishers", "POST /api/analyze",
            "GET /api/report", "POST /api/report", "GET /api/reports", "GET /api/dashboard",
            "POST /api/feedback", "GET /api/regulatory-news", "GET /api/stats", "GET /api/agent-runs",
        ],
    }


# ---------------------------------------------------------------------------
# Routes: Pipeline
# ---------------------------------------------------------------------------


@app.post("/api/collect", tags=["Pipeline"], summary="Run a collector (agent, lightweight or articles)",
          dependencies=[Depends(require_cron_secret)])
async def collect(body: CollectRequest | None = None, session: Session = Depends(db_session)):
    body = body or CollectRequest()
    log.info("Collect request: geo=%s daysBack=%d mode=%s", body.geo, body.days_back, body.mode)
    return _unwrap(await services.collect(session, geo=body.geo, days_back=body.days_back, mode=body.mode))


@app.post("/api/collect-publishers", tags=["Pipeline"], summary="Run the publisher collector",
          dependencies=[Depends(require_cron_secret)])
async def collect_publishers(session: Session = Depends(db_session)):
    return _unwrap(await services.collect_publishers(session))


@app.post("/api/analyze", tags=["Pipeline"], summary="Score unanalyzed signals",
          dependencies=[Depends(require_cron_secret)])
async def analyze(body: AnalyzeRequest | None = None, session: Session = Depends(db_session)):
    body = body or AnalyzeRequest()
    return _unwrap(await services.analyze(session, signal_ids=body.signal_ids, limit=body.limit))


@app.get("/api/report", tags=["Pipeline"], summary="Preview the report for a window without storing it")
async def preview_report(
    cycle_start: str | None = Query(None, alias="cycleStart"),
    cycle_end: str | None = Query(None, alias="cycleEnd"),
    session: Session = Depends(db_session),
):
    result = await services.report(session, cycle_start=cycle_start, cycle_end=cycle_end, preview=True)
    if not result["success"]:
        raise HTTPException(400, result["error"])
    return {"success": True, "preview": True, **result["data"]}


@app.post("/api/report", tags=["Pipeline"], summary="Generate, store and optionally e-mail a report",
          dependencies=[Depends(require_cron_secret)])
async def create_report(body: ReportRequest | None = None, session: Session = Depends(db_session)):
    body = body or ReportRequest()
    result = await services.report(
        session,
        cycle_start=body.cycle_start,
        cycle_end=body.cycle_end,
        send_email=body.send_email,
        recipients=body.recipient_emails,
        preview=body.preview,
    )
    if body.preview and result["success"]:
        return {"success": True, "preview": True, **result["data"]}
    return _unwrap(result)


# ---------------------------------------------------------------------------
# Routes: Reports
# ---------------------------------------------------------------------------


@app.get("/api/reports", response_model=list[ReportOut], tags=["Reports"], summary="List stored reports")
async def reports(limit: int = Query(20, ge=1, le=100), session: Session = Depends(db_session)):
    return [services.report_summary(r) for r in list_reports(session, limit)]


@app.get("/api/reports/{report_id}", response_model=ReportDetail, tags=["Reports"],
         summary="Get one report with its rendered content")
async def report_detail(report_id: str, session: Session = Depends(db_session)):
    report = get_report(session, report_id)
    if report is None:
        raise HTTPException(404, "Report not found")
    return services.report_summary(report, detail=True)


# ---------------------------------------------------------------------------
# Routes: Signals
# ---------------------------------------------------------------------------


@app.get("/api/dashboard", response_model=DashboardOut, tags=["Signals"],
         summary="Signals with analyses; archived and expired hidden by default")
async def dashboard(
    geo: str | None = None,
    entity_type: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    include_archived: bool = False,
    session: Session = Depends(db_session),
):
    if entity_type and entity_type not in ENTITY_TYPES:
        raise HTTPException(400, f"entity_type must be one of {', '.join(ENTITY_TYPES)}")
    signals = get_dashboard_signals(
        session, geo=geo, entity_type=entity_type, limit=limit, include_archived=include_archived,
    )
    return {
        "signals": [services.signal_summary(s) for s in signals],
        "stats": get_signal_stats(session, geo),
        "count": len(signals),
    }


@app.post("/api/signals/{signal_id}/archive", tags=["Signals"], summary="Hide a signal from the dashboard")
async def archive(signal_id: str, session: Session = Depends(db_session)):
    result = services.archive(session, signal_id)
    if not result["success"]:
        raise HTTPException(404, result["error"])
    session.commit()
    return result


@app.post("/api/feedback", tags=["Signals"], summary="Thumbs up/down on a signal")
async def feedback(body: FeedbackCreate, session: Session = Depends(db_session)):
    result = services.submit_feedback(
        session,
        signal_id=body.signal_id,
        is_useful=body.is_useful,
        comment=body.comment,
        action_taken=body.action_taken,
        user_email=body.user_email,
    )
    if not result["success"]:
        raise HTTPException(404, result["error"])
    session.commit()
    log.info("Feedback on %s: useful=%s", body.signal_id, body.is_useful)
    return result


@app.get("/api/feedback/{signal_id}", tags=["Signals"], summary="Feedback entries for a signal")
async def signal_feedback(signal_id: str, session: Session = Depends(db_session)):
    if get_signal(session, signal_id) is None:
        raise HTTPException(404, "Signal not found")
    return [services.feedback_summary(f) for f in get_feedback_for_signal(session, signal_id)]


# ---------------------------------------------------------------------------
# Routes: Regulatory news
# ---------------------------------------------------------------------------


@app.get("/api/regulatory-news", response_model=list[RegulatoryNewsOut], tags=["Regulatory"],
         summary="Regulatory news items (pending by default)")
async def regulatory_news(
    status: str | None = "pending", geo: str | None = None, session: Session = Depends(db_session),
):
    return services.list_regulatory_news(session, status=status, geo=geo)


@app.post("/api/regulatory-news", tags=["Regulatory"], summary="Apply or ignore a regulatory news item")
async def update_regulatory_news(body: RegulatoryAction, session: Session = Depends(db_session)):
    item = set_regulatory_status(session, body.id, body.action)
    if item is None:
        raise HTTPException(404, "News item not found")
    session.commit()
    return {"success": True, "message": f"News {item.status}"}


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/stats", response_model=StatsOut, tags=["Stats"], summary="Aggregate statistics")
async def stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


@app.get("/api/agent-runs", response_model=list[AgentRunOut], tags=["Stats"], summary="Recent agent runs")
async def agent_runs(
    agent_type: str | None = None,
    limit: int = Query(20, ge=1, le=100),
    session: Session = Depends(db_session),
):
    if agent_type and agent_type not in AGENT_TYPES:
        raise HTTPException(400, f"agent_type must be one of {', '.join(AGENT_TYPES)}")
    return [services.agent_run_summary(r) for r in list_agent_runs(session, agent_type, limit)]


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    uvicorn.run("radar.app:app", host="127.0.0.1", port=int(os.environ.get("PORT", "8001")))


if __name__ == "__main__":
    main()
