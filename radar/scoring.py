"""Scoring engine: clamp four rubric sub-scores, sum, classify priority.

Rubric
------
- **marketEntryMomentum** (0-4): how strongly the entity is entering or
  expanding in the market right now.
- **e2PartnershipFit** (0-4): fit with the affiliate product line.
- **actionability** (0-3): whether there is a concrete next step.
- **dataConfidence** (0-3): quality and corroboration of the evidence.

The model proposes the sub-scores; this module is the only authority on the
result.  Out-of-range inputs are clamped, never rejected, so the total is
always in 0-14.  Priority is a pure function of the total.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from radar.models import AnalyzedSignal, Signal
from radar.utils import utcnow

log = logging.getLogger(__name__)

HIGH_THRESHOLD = 10
MEDIUM_THRESHOLD = 7

MAX_MOMENTUM = 4
MAX_FIT = 4
MAX_ACTIONABILITY = 3
MAX_CONFIDENCE = 3
MAX_TOTAL = MAX_MOMENTUM + MAX_FIT + MAX_ACTIONABILITY + MAX_CONFIDENCE

PRIORITIES = ("HIGH", "MEDIUM", "LOW")


class AlreadyAnalyzedError(Exception):
    """An AnalyzedSignal already exists for the target signal."""
    def __init__(self, signal_id: str):
        super().__init__("Signal already analyzed")
        self.signal_id = signal_id


class SignalNotFoundError(LookupError):
    pass


# ---------------------------------------------------------------------------
# Deterministic rubric
# ---------------------------------------------------------------------------


def clamp(value: Any, low: int, high: int) -> int:
    """Clamp *value* to ``[low, high]`` and round to an int; junk and NaN become *low*."""
    try:
        num = float(value)
    except (TypeError, ValueError):
        return low
    if math.isnan(num):
        return low
    return round(max(low, min(high, num)))


def compute_priority(final_score: int) -> str:
    if final_score >= HIGH_THRESHOLD:
        return "HIGH"
    if final_score >= MEDIUM_THRESHOLD:
        return "MEDIUM"
    return "LOW"


@dataclass
class ScoreResult:
    breakdown: dict[str, int]
    final_score: int
    priority: str


def compute_score(
    market_entry_momentum: Any,
    e2_partnership_fit: Any,
    actionability: Any,
    data_confidence: Any,
) -> ScoreResult:
    """Clamp the four raw sub-scores and derive total and priority."""
    breakdown = {
        "marketEntryMomentum": clamp(market_entry_momentum, 0, MAX_MOMENTUM),
        "e2PartnershipFit": clamp(e2_partnership_fit, 0, MAX_FIT),
        "actionability": clamp(actionability, 0, MAX_ACTIONABILITY),
        "dataConfidence": clamp(data_confidence, 0, MAX_CONFIDENCE),
    }
    total = sum(breakdown.values())
    return ScoreResult(breakdown=breakdown, final_score=total, priority=compute_priority(total))


def normalize_risk_flags(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    flags: dict[str, Any] = {}
    for key in ("regulatory", "reputational", "financial"):
        if key in raw:
            flags[key] = bool(raw[key])
    notes = raw.get("notes")
    if isinstance(notes, list):
        flags["notes"] = [str(n) for n in notes]
    elif isinstance(notes, str) and notes:
        flags["notes"] = [notes]
    return flags


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------


def score_signal(
    session: Session,
    signal_id: str,
    *,
    market_entry_momentum: Any,
    e2_partnership_fit: Any,
    actionability: Any,
    data_confidence: Any,
    risk_flags: Any = None,
    recommended_actions: list[str] | None = None,
    reasoning: str = "",
) -> AnalyzedSignal:
    """Create the single AnalyzedSignal for *signal_id* (caller must commit).

    Raises SignalNotFoundError for an unknown signal and AlreadyAnalyzedError
    when an analysis exists.  The existence check runs before insert; it is
    sufficient under one writer per run.
    """
    signal = session.get(Signal, signal_id)
    if signal is None:
        raise SignalNotFoundError(f"Signal {signal_id} not found")
    existing = session.execute(
        select(AnalyzedSignal.id).where(AnalyzedSignal.signal_id == signal_id)
    ).first()
    if existing is not None:
        raise AlreadyAnalyzedError(signal_id)

    result = compute_score(market_entry_momentum, e2_partnership_fit, actionability, data_confidence)
    actions = [str(a) for a in (recommended_actions or []) if str(a).strip()]
    analyzed = AnalyzedSignal(
        signal_id=signal_id,
        final_score=result.final_score,
        score_breakdown_json=json.dumps(result.breakdown),
        priority=result.priority,
        risk_flags_json=json.dumps(normalize_risk_flags(risk_flags)),
        recommended_actions_json=json.dumps(actions),
        ai_reasoning=str(reasoning or ""),
        analyzed_at=utcnow(),
    )
    session.add(analyzed)
    session.flush()
    log.info("Scored %s: %d (%s)", signal.entity_name, result.final_score, result.priority)
    return analyzed
