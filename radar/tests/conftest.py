from __future__ import annotations

import itertools
from datetime import datetime
from typing import Any, Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from radar.agent import ModelTurn, TextBlock, ToolCall, Usage
from radar.models import AnalyzedSignal, Base, Signal
from radar.partners import PartnershipResolver, RosterCache, RosterEntry
from radar.scoring import compute_score

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


# ---------------------------------------------------------------------------
# Fixtures: domain rows
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_signal(session: Session) -> Callable[..., Signal]:
    counter = itertools.count(1)

    def _make(**overrides: Any) -> Signal:
        n = next(counter)
        fields: dict[str, Any] = {
            "entity_name": f"Operator{n}bet",
            "entity_type": "bookmaker",
            "geo": "br",
            "signal_type": "MARKET_ENTRY",
            "evidence_json": '[{"source": "NewsAPI", "headline": "Launch", "confidence": 0.8}]',
            "preliminary_score": 7.0,
        }
        fields.update(overrides)
        signal = Signal(**fields)
        session.add(signal)
        session.commit()
        return signal

    return _make


@pytest.fixture()
def make_analysis(session: Session, make_signal) -> Callable[..., AnalyzedSignal]:
    def _make(analyzed_at: datetime, scores: tuple[int, int, int, int] = (3, 3, 2, 2), **signal_fields: Any) -> AnalyzedSignal:
        signal = make_signal(**signal_fields)
        result = compute_score(*scores)
        analysis = AnalyzedSignal(
            signal_id=signal.id,
            final_score=result.final_score,
            score_breakdown_json="{}",
            priority=result.priority,
            recommended_actions_json='["Contact BD lead"]',
            ai_reasoning="Strong launch momentum",
            analyzed_at=analyzed_at,
        )
        session.add(analysis)
        session.commit()
        return analysis

    return _make


# ---------------------------------------------------------------------------
# Fakes: model client and partner roster
# ---------------------------------------------------------------------------


def tool_turn(*calls: tuple[str, dict[str, Any]], text: str = "") -> ModelTurn:
    content: list[Any] = [TextBlock(text)] if text else []
    content += [ToolCall(id=f"call_{name}_{i}", name=name, input=args) for i, (name, args) in enumerate(calls)]
    return ModelTurn(content=content, usage=Usage(10, 5), stop_reason="tool_use")


def text_turn(text: str = "Done.") -> ModelTurn:
    return ModelTurn(content=[TextBlock(text)], usage=Usage(10, 5), stop_reason="end_turn")


class ScriptedClient:
    """Replays ModelTurns in order; an Exception entry is raised instead.

    Once the script is exhausted it answers with plain text, or calls
    *fallback* when given.
    """

    def __init__(self, turns: list[Any], fallback: Callable[[], ModelTurn] | None = None):
        self.turns = list(turns)
        self.fallback = fallback
        self.calls: list[dict[str, Any]] = []

    async def create_message(self, *, system, messages, tools, max_tokens) -> ModelTurn:
        self.calls.append({
            "system": system, "messages": list(messages),
            "tools": [t.name for t in tools], "max_tokens": max_tokens,
        })
        if self.turns:
            turn = self.turns.pop(0)
            if isinstance(turn, Exception):
                raise turn
            return turn
        return self.fallback() if self.fallback else text_turn()


@pytest.fixture()
def scripted():
    return ScriptedClient


@pytest.fixture()
def turns():
    return tool_turn, text_turn


class FakeRoster:
    def __init__(self, pages: list[list[RosterEntry]], promotions: dict[str, int] | None = None, fail_page: int | None = None):
        self.pages = pages
        self.promotions = promotions or {}
        self.fail_page = fail_page
        self.page_calls = 0

    async def fetch_page(self, page: int) -> tuple[list[RosterEntry], bool]:
        self.page_calls += 1
        if self.fail_page is not None and page >= self.fail_page:
            raise RuntimeError("roster unavailable")
        return self.pages[page - 1], page < len(self.pages)

    async def promotion_count(self, entry_id: str) -> int:
        return self.promotions.get(entry_id, 0)


@pytest.fixture()
def roster() -> FakeRoster:
    return FakeRoster(
        [[RosterEntry("1", "bet365", "bet365"), RosterEntry("2", "ExampleBet", "examplebet")]],
        promotions={"1": 3, "2": 0},
    )


@pytest.fixture()
def resolver(roster) -> PartnershipResolver:
    return PartnershipResolver(roster, RosterCache())


@pytest.fixture()
def fake_roster():
    return FakeRoster


@pytest.fixture()
def no_llm(monkeypatch):
    for var in ("LLM_PROVIDER", "ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OPENAI_BASE_URL"):
        monkeypatch.delenv(var, raising=False)
