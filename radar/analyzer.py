"""Analyzer stage: the model reads unscored signals and submits sub-scores
through ``score_signal``; the rubric arithmetic happens in :mod:`radar.scoring`.

Signals are sent in batches so the prompt stays small; each batch gets its
own bounded loop.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from sqlalchemy.orm import Session

from radar.agent import AgentAbortedError, AgentLoop, ModelClient, ToolSpec, Usage
from radar.context import ANALYZER_CONTEXT, geo_context_prompt
from radar.models import Signal
from radar.scoring import AlreadyAnalyzedError, SignalNotFoundError, score_signal
from radar.store import (
    agent_run_scope,
    complete_agent_run,
    get_pending_regulatory_news,
    get_unanalyzed_signals,
    start_agent_run,
)
from radar.utils import json_parse

log = logging.getLogger(__name__)

MAX_ITERATIONS = 5
MAX_TOKENS = 4096
BATCH_SIZE = 5
DEFAULT_LIMIT = 50

SYSTEM_PROMPT = """\
You are the Analyzer Agent for E2's Market Intelligence system.

## Your Mission
Score and prioritize signals discovered by the Collector Agent so the Sales/BD team can
focus on the most promising partnership opportunities.

## Scoring Framework (0-14 total points)

### 1. Market Entry Momentum (0-4)
- 4: Multiple strong signals (new office, major sponsorship, app launch)
- 3: Clear expansion activity (licensing, partnerships)
- 2: Moderate activity (job postings, minor news)
- 1: Weak signals (rumors, speculation)
- 0: No evidence of expansion

### 2. E2 Partnership Fit (0-4)
- 4: Perfect fit (target geo, target verticals, not a competitor)
- 3: Strong fit
- 2: Moderate fit
- 1: Weak fit
- 0: Poor fit or already E2 partner

### 3. Actionability (0-3)
- 3: Clear contact path, decision maker identified, good timing
- 2: Some contact info, reasonable timing
- 1: Limited info, significant research needed
- 0: No clear path to action

### 4. Data Confidence (0-3)
- 3: Multiple credible sources, recent data (< 7 days)
- 2: Single credible source, recent data
- 1: Single source, older data (7-30 days)
- 0: Unreliable source or very old data

## Risk Flags
- regulatory: grey markets, license issues
- reputational: negative press, fraud allegations
- financial: solvency concerns, unpaid debts

Priority is computed for you from the total: HIGH >= 10, MEDIUM 7-9, LOW < 7.
Call score_signal exactly once per signal with 1-3 recommended actions and brief reasoning.
Be objective and conservative. It is better to under-score than over-score.

{PRODUCTS}

{GEO_CONTEXT}"""

SCORE_SIGNAL_SCHEMA = {
    "type": "object",
    "properties": {
        "signal_id": {"type": "string", "description": "ID of the signal being analyzed"},
        "market_entry_momentum": {"type": "number", "description": "0-4 market expansion activity"},
        "e2_partnership_fit": {"type": "number", "description": "0-4 alignment with E2 target profile"},
        "actionability": {"type": "number", "description": "0-3 ease of taking action"},
        "data_confidence": {"type": "number", "description": "0-3 data quality and reliability"},
        "risk_regulatory": {"type": "boolean", "description": "Regulatory/compliance risk"},
        "risk_reputational": {"type": "boolean", "description": "Reputational risk"},
        "risk_financial": {"type": "boolean", "description": "Financial/solvency risk"},
        "risk_notes": {"type": "string", "description": "Additional notes on risks"},
        "recommended_actions": {"type": "array", "items": {"type": "string"}, "description": "1-3 actions"},
        "reasoning": {"type": "string", "description": "Brief explanation of the assessment"},
    },
    "required": [
        "signal_id", "market_entry_momentum", "e2_partnership_fit",
        "actionability", "data_confidence", "reasoning",
    ],
}


def describe_signal(index: int, signal: Signal) -> str:
    evidence = json_parse(signal.evidence_json, [])
    lines = [
        f"### Signal {index}: {signal.entity_name}",
        f"- ID: {signal.id}",
        f"- Type: {signal.entity_type}",
        f"- Geo: {signal.geo}",
        f"- Signal Type: {signal.signal_type}",
        f"- Preliminary Score: {signal.preliminary_score:g}/10",
        "- Evidence:",
    ]
    for e in evidence:
        when = f", {e['publishedAt'][:10]}" if e.get("publishedAt") else ""
        lines.append(f"  - {e.get('headline') or e.get('description') or 'No description'} ({e.get('source')}{when})")
    return "\n".join(lines)


def batch_message(signals: list[Signal]) -> str:
    body = "\n\n---\n\n".join(describe_signal(i, s) for i, s in enumerate(signals, start=1))
    return (
        f"Analyze and score the following {len(signals)} signal(s). "
        "Use the score_signal tool to submit your analysis for each one.\n\n"
        f"{body}\n\nRemember: score each signal using the 0-14 framework and provide clear reasoning."
    )


def build_system_prompt(session: Session, geos: list[str]) -> str:
    contexts = []
    for geo in dict.fromkeys(geos):
        headlines = [n.headline_en or n.headline for n in get_pending_regulatory_news(session, geo)]
        contexts.append(geo_context_prompt(geo, headlines))
    return (
        SYSTEM_PROMPT
        .replace("{PRODUCTS}", ANALYZER_CONTEXT)
        .replace("{GEO_CONTEXT}", "\n".join(contexts))
    )


class AnalyzerTools:
    """Tool handlers for one analyzer run; *allowed* holds the ids of the batch in flight."""

    def __init__(self, session: Session, allowed: set[str]):
        self.session = session
        self.allowed = allowed
        self.scored: list[tuple[str, int]] = []

    def score_signal(self, args: dict[str, Any]) -> dict[str, Any]:
        signal_id = str(args.get("signal_id") or "")
        if signal_id not in self.allowed:
            return {"success": False, "error": f"Signal {signal_id} is not part of this batch"}
        risk_flags = {
            "regulatory": bool(args.get("risk_regulatory")),
            "reputational": bool(args.get("risk_reputational")),
            "financial": bool(args.get("risk_financial")),
            "notes": args.get("risk_notes") or [],
        }
        try:
            analyzed = score_signal(
                self.session, signal_id,
                market_entry_momentum=args.get("market_entry_momentum"),
                e2_partnership_fit=args.get("e2_partnership_fit"),
                actionability=args.get("actionability"),
                data_confidence=args.get("data_confidence"),
                risk_flags=risk_flags,
                recommended_actions=args.get("recommended_actions"),
                reasoning=args.get("reasoning") or "",
            )
        except (AlreadyAnalyzedError, SignalNotFoundError) as exc:
            return {"success": False, "error": str(exc)}
        self.session.commit()
        self.scored.append((analyzed.priority, analyzed.final_score))
        return {
            "success": True,
            "analyzed_signal_id": analyzed.id,
            "final_score": analyzed.final_score,
            "priority": analyzed.priority,
        }

    def specs(self) -> list[ToolSpec]:
        return [ToolSpec("score_signal", "Submit your analysis and score for a signal", SCORE_SIGNAL_SCHEMA, self.score_signal)]


def summarize(scored: list[tuple[str, int]]) -> dict[str, Any]:
    by_priority = Counter({"HIGH": 0, "MEDIUM": 0, "LOW": 0})
    for priority, _ in scored:
        by_priority[priority] += 1
    total = sum(score for _, score in scored)
    return {
        "signals_analyzed": len(scored),
        "by_priority": dict(by_priority),
        "avg_score": round(total / len(scored), 2) if scored else 0,
    }


async def run_analyzer(
    session: Session,
    client: ModelClient,
    *,
    signal_ids: list[str] | None = None,
    limit: int = DEFAULT_LIMIT,
    batch_size: int = BATCH_SIZE,
    max_iterations: int = MAX_ITERATIONS,
) -> dict[str, Any]:
    """Score unanalyzed signals (optionally restricted to *signal_ids*)."""
    signals = get_unanalyzed_signals(session, limit=limit, signal_ids=signal_ids)
    if not signals:
        return summarize([])

    run = start_agent_run(session, "analyzer", {"signal_count": len(signals), "signal_ids": signal_ids})
    session.commit()

    tools = AnalyzerTools(session, set())
    usage = Usage()
    iterations = 0
    with agent_run_scope(session, run):
        for start in range(0, len(signals), batch_size):
            batch = signals[start:start + batch_size]
            tools.allowed = {s.id for s in batch}
            loop = AgentLoop(
                client,
                system=build_system_prompt(session, [s.geo for s in batch]),
                tools=tools.specs(),
                max_iterations=max_iterations,
                max_tokens=MAX_TOKENS,
            )
            try:
                result = await loop.run(batch_message(batch))
            except AgentAbortedError as exc:
                usage.add(exc.partial.usage)
                complete_agent_run(
                    session, run,
                    output_summary=summarize(tools.scored),
                    token_usage=usage.as_dict(),
                    error=str(exc),
                )
                session.commit()
                raise
            usage.add(result.usage)
            iterations += result.iterations

        output = summarize(tools.scored)
        complete_agent_run(session, run, output_summary={**output, "iterations": iterations}, token_usage=usage.as_dict())
        session.commit()
    log.info("Analyzer scored %d of %d signals", output["signals_analyzed"], len(signals))
    return {**output, "runId": run.id, "usage": usage.as_dict()}
