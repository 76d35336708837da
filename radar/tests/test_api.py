"""Integration tests for the FastAPI endpoints.

Uses TestClient with the db dependency pointed at the in-memory database.
"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from radar.models import AnalyzedSignal, Signal
from radar.store import add_regulatory_news, complete_agent_run, start_agent_run


@pytest.fixture()
def client(session_factory, tmp_path, monkeypatch, no_llm):
    """FastAPI TestClient using the in-memory database."""
    monkeypatch.setenv("RADAR_DB_PATH", str(tmp_path / "radar.db"))
    monkeypatch.delenv("CRON_SECRET", raising=False)
    from radar.app import app, db_session

    def override_db_session():
        session = session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def seeded(client, session, make_signal):
    """Client with one analyzed and one pending signal."""
    analyzed = make_signal(entity_name="Galera Bet")
    session.add(AnalyzedSignal(
        signal_id=analyzed.id, final_score=11, priority="HIGH",
        score_breakdown_json='{"marketEntryMomentum": 4}', recommended_actions_json='["Call BD"]',
    ))
    pending = make_signal(entity_name="Pixbet", geo="mx")
    session.commit()
    return client, analyzed.id, pending.id


class TestRoot:
    def test_root(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ready"


class TestDashboard:
    def test_lists_signals_with_analysis(self, seeded):
        c, analyzed_id, _ = seeded
        data = c.get("/api/dashboard").json()
        assert data["count"] == 2
        by_id = {s["id"]: s for s in data["signals"]}
        assert by_id[analyzed_id]["analysis"]["priority"] == "HIGH"
        assert by_id[analyzed_id]["evidence"][0]["source"] == "NewsAPI"
        assert data["stats"]["by_priority"]["UNANALYZED"] == 1

    def test_geo_filter(self, seeded):
        c, _, pending_id = seeded
        data = c.get("/api/dashboard", params={"geo": "MX"}).json()
        assert [s["id"] for s in data["signals"]] == [pending_id]

    def test_bad_entity_type(self, client):
        assert client.get("/api/dashboard", params={"entity_type": "casino"}).status_code == 400

    def test_archive_hides_signal(self, seeded):
        c, analyzed_id, _ = seeded
        assert c.post(f"/api/signals/{analyzed_id}/archive").status_code == 200
        assert c.get("/api/dashboard").json()["count"] == 1
        assert c.post("/api/signals/missing/archive").status_code == 404


class TestFeedback:
    def test_submit_and_list(self, seeded):
        c, analyzed_id, _ = seeded
        resp = c.post("/api/feedback", json={"signalId": analyzed_id, "isUseful": True, "comment": "on it"})
        assert resp.status_code == 200
        assert resp.json()["data"]["user_email"] == "anonymous@dashboard.local"
        entries = c.get(f"/api/feedback/{analyzed_id}").json()
        assert [e["comment"] for e in entries] == ["on it"]

    def test_unknown_signal(self, client):
        resp = client.post("/api/feedback", json={"signalId": "missing", "isUseful": False})
        assert resp.status_code == 404
        assert client.get("/api/feedback/missing").status_code == 404

    def test_missing_field(self, client):
        assert client.post("/api/feedback", json={"signalId": "x"}).status_code == 422


class TestRegulatoryNews:
    def test_list_and_apply(self, client, session):
        add_regulatory_news(session, [{"title": "SPA publica portaria", "url": "https://n.test/1"}])
        session.commit()
        items = client.get("/api/regulatory-news").json()
        assert len(items) == 1
        resp = client.post("/api/regulatory-news", json={"id": items[0]["id"], "action": "apply"})
        assert resp.json() == {"success": True, "message": "News applied"}
        assert client.get("/api/regulatory-news").json() == []
        assert len(client.get("/api/regulatory-news", params={"status": "applied"}).json()) == 1

    def test_unknown_id(self, client):
        resp = client.post("/api/regulatory-news", json={"id": "missing", "action": "ignore"})
        assert resp.status_code == 404

    def test_bad_action(self, client):
        resp = client.post("/api/regulatory-news", json={"id": "x", "action": "delete"})
        assert resp.status_code == 422


class TestPipelineTriggers:
    def test_cron_secret_required_when_set(self, client, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "s3cret")
        assert client.post("/api/analyze").status_code == 401
        assert client.post("/api/analyze", headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_cron_secret_accepted(self, client, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "s3cret")
        resp = client.post("/api/analyze", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 503

    def test_analyze_without_llm(self, client):
        resp = client.post("/api/analyze", json={"limit": 10})
        assert resp.status_code == 503
        assert "LLM not configured" in resp.json()["detail"]

    def test_collect_without_llm(self, client):
        assert client.post("/api/collect", json={"geo": "br", "daysBack": 7}).status_code == 503

    def test_collect_validation(self, client):
        assert client.post("/api/collect", json={"daysBack": 400}).status_code == 422
        assert client.post("/api/collect", json={"mode": "turbo"}).status_code == 422

    def test_empty_report(self, client):
        resp = client.post("/api/report", json={"cycleStart": "2026-01-01", "cycleEnd": "2026-01-15"})
        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "data": {"reportId": "", "signalsIncluded": 0, "emailSent": False},
        }

    def test_report_preview(self, seeded):
        c, _, _ = seeded
        resp = c.get("/api/report")
        assert resp.status_code == 200
        data = resp.json()
        assert data["preview"] is True
        assert data["stats"]["total"] == 1
        assert "Galera Bet" in data["markdown"]
        assert c.get("/api/reports").json() == []

    def test_report_preview_bad_window(self, client):
        resp = client.get("/api/report", params={"cycleStart": "2026-02-01", "cycleEnd": "2026-01-01"})
        assert resp.status_code == 400

    def test_commit_report_without_email(self, seeded, monkeypatch):
        monkeypatch.delenv("RESEND_API_KEY", raising=False)
        c, _, _ = seeded
        data = c.post("/api/report", json={"sendEmail": False}).json()["data"]
        assert data["signalsIncluded"] == 1
        assert data["emailSent"] is False
        reports = c.get("/api/reports").json()
        assert [r["id"] for r in reports] == [data["reportId"]]
        detail = c.get(f"/api/reports/{data['reportId']}").json()
        assert detail["content_markdown"].startswith("# 🎯 Market Intelligence Report")
        assert detail["sent_at"] is None
        assert c.get("/api/reports/missing").status_code == 404


class TestStats:
    def test_stats(self, seeded, session):
        c, _, _ = seeded
        run = start_agent_run(session, "collector", {"geo": "br"})
        complete_agent_run(session, run, output_summary={"signals_found": 2}, token_usage={"totalTokens": 40})
        session.commit()
        data = c.get("/api/stats").json()
        assert data["signals"]["total"] == 2
        assert data["agent_runs"]["total_runs"] == 1
        assert data["pending_regulatory_news"] == 0

    def test_agent_runs(self, client, session):
        run = start_agent_run(session, "analyzer")
        complete_agent_run(session, run, error="Model call failed")
        session.commit()
        runs = client.get("/api/agent-runs", params={"agent_type": "analyzer"}).json()
        assert runs[0]["error"] == "Model call failed"
        assert client.get("/api/agent-runs", params={"agent_type": "janitor"}).status_code == 400
