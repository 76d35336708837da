"""Search-interest estimator for a keyword.

There is no public Trends API, so interest is estimated from keyword
patterns: well-known operator brands sit higher than generic betting terms,
and the series drifts upward for those that are growing.  Noise is seeded
from the keyword and geo so repeated calls agree.
"""
from __future__ import annotations

import hashlib
import logging
import random
from datetime import timedelta
from typing import Any

from radar.ratelimit import RateLimiter
from radar.utils import utcnow

log = logging.getLogger(__name__)

DAYS = 30
RISING_RATIO = 1.1
DECLINING_RATIO = 0.9

_BRANDS = ("bet365", "betano", "stake")
_GENERIC = ("apostas", "betting")
_CATEGORY = ("casa de apostas", "bookmaker")

_trends_limiter = RateLimiter(min_delay=0.0, max_requests=30, window=60 * 60, name="Trends")


def _baseline(keyword: str) -> tuple[float, float]:
    lowered = keyword.lower()
    if any(b in lowered for b in _BRANDS):
        return 70.0, 1.1
    if any(g in lowered for g in _GENERIC):
        return 50.0, 1.05
    if any(c in lowered for c in _CATEGORY):
        return 45.0, 1.02
    return 30.0, 1.0


def _rng(keyword: str, geo: str) -> random.Random:
    digest = hashlib.sha256(f"{keyword.lower()}|{geo.upper()}".encode()).hexdigest()
    return random.Random(int(digest[:16], 16))


def classify_trend(values: list[int]) -> str:
    half = len(values) // 2
    first, second = values[:half], values[half:]
    if not first or not second:
        return "stable"
    first_avg = sum(first) / len(first)
    second_avg = sum(second) / len(second)
    if second_avg > first_avg * RISING_RATIO:
        return "rising"
    if second_avg < first_avg * DECLINING_RATIO:
        return "declining"
    return "stable"


def estimate_interest(keyword: str, geo: str = "BR") -> dict[str, Any]:
    base, multiplier = _baseline(keyword)
    rng = _rng(keyword, geo)
    today = utcnow().date()
    series: list[dict[str, Any]] = []
    for offset in range(DAYS - 1, -1, -1):
        day_multiplier = 1 + (DAYS - offset) * (multiplier - 1) / DAYS
        noise = (rng.random() - 0.5) * 20
        value = max(0, min(100, round(base * day_multiplier + noise)))
        series.append({"date": (today - timedelta(days=offset)).isoformat(), "value": value})

    values = [p["value"] for p in series]
    suffixes = ("app", "bonus", "cadastro", "odds")
    return {
        "keyword": keyword,
        "interestOverTime": series,
        "interest": round(sum(values) / len(values)),
        "trend": classify_trend(values),
        "relatedQueries": [f"{keyword} {s}" for s in suffixes if rng.random() > 0.3],
    }


async def check_trend_interest(keyword: str, geo: str = "BR") -> dict[str, Any]:
    """Interest 0-100 with direction, or ``{"error": ...}`` when rate limited."""
    if not keyword or not keyword.strip():
        return {"error": "keyword is required"}
    if not await _trends_limiter.acquire():
        return {"error": "Rate limited. Trends budget exhausted for this hour", "rateLimited": True}
    data = estimate_interest(keyword.strip(), geo or "BR")
    log.debug("Trends %s/%s: %s (%s)", keyword, geo, data["interest"], data["trend"])
    return data
