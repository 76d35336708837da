"""Partnership resolver: match an entity name against the partner roster.

Tiers
-----
- ``NEW_PROSPECT``: no roster entry matches (best opportunity).
- ``KNOWN_BOOKIE``: matched, but zero active promotions.
- ``AFFILIATE_PARTNER``: matched with at least one promotion; still a
  cross-sell opportunity.

The roster is fetched page by page from the partner GraphQL API and kept in
a :class:`RosterCache` for an hour.  Any failure while fetching degrades to
``NEW_PROSPECT``: an entity we cannot verify is treated as not yet known.
"""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

log = logging.getLogger(__name__)

DEFAULT_GRAPHQL_URL = "https://e2api.odds.team/graphql"
DEFAULT_TTL = 60 * 60
DEFAULT_THRESHOLD = 0.7
DEFAULT_CONTAINMENT_SCORE = 0.9
DEFAULT_MAX_PAGES = 10
PAGE_SIZE = 100

_TIMEOUT = 15.0

NEW_PROSPECT = "NEW_PROSPECT"
KNOWN_BOOKIE = "KNOWN_BOOKIE"
AFFILIATE_PARTNER = "AFFILIATE_PARTNER"

RECOMMENDATIONS = {
    AFFILIATE_PARTNER: "CROSS-SELL - Existing affiliate, upsell E2 Ads/Widget Studio/SaaS",
    KNOWN_BOOKIE: "PURSUE - Known bookie without active deal",
    NEW_PROSPECT: "HIGH PRIORITY - New prospect not in E2 system",
}

_ROSTER_QUERY = """
query GetBookies($page: Int!) {
    bookies(first: %d, page: $page) {
        data { id name slug }
        paginatorInfo { hasMorePages }
    }
}
""" % PAGE_SIZE

_PROMOTIONS_QUERY = """
query GetBookiePromotions($id: ID!) {
    bookie(filter: { id: $id }) {
        promotions(first: 1) { paginatorInfo { total } }
    }
}
"""


class RosterFetchError(Exception):
    pass


@dataclass
class RosterEntry:
    id: str
    name: str
    slug: str


@dataclass
class PartnerCheck:
    tier: str
    match_score: float = 0.0
    promotion_count: int = 0
    matched_id: str | None = None
    matched_name: str | None = None
    details: str = ""
    error: str | None = None

    @property
    def is_opportunity(self) -> bool:
        # Every tier remains an opportunity; affiliates are cross-sell targets.
        return True

    @property
    def recommendation(self) -> str:
        return RECOMMENDATIONS[self.tier]

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "tier": self.tier,
            "isOpportunity": self.is_opportunity,
            "isExistingAffiliate": self.tier == AFFILIATE_PARTNER,
            "matchedName": self.matched_name,
            "matchScore": round(self.match_score, 3),
            "promotionCount": self.promotion_count,
            "recommendation": self.recommendation,
            "details": self.details,
        }
        if self.error:
            out["error"] = self.error
        return out


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str, containment_score: float = DEFAULT_CONTAINMENT_SCORE) -> float:
    """Normalized similarity in [0, 1]: exact 1.0, containment shortcut, else edit distance."""
    s1 = a.lower().strip()
    s2 = b.lower().strip()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 in s2 or s2 in s1:
        return containment_score
    return 1 - levenshtein(s1, s2) / max(len(s1), len(s2))


def slugify(name: str) -> str:
    return "-".join(name.lower().split())


# ---------------------------------------------------------------------------
# Roster source and cache
# ---------------------------------------------------------------------------


class RosterSource(Protocol):
    async def fetch_page(self, page: int) -> tuple[list[RosterEntry], bool]: ...

    async def promotion_count(self, entry_id: str) -> int: ...


class RosterClient:
    """GraphQL client for the partner roster (E2_GRAPHQL_URL / E2_GRAPHQL_TOKEN)."""

    def __init__(self, url: str | None = None, token: str | None = None, timeout: float = _TIMEOUT):
        self.url = url or os.environ.get("E2_GRAPHQL_URL") or DEFAULT_GRAPHQL_URL
        self._token = token if token is not None else os.environ.get("E2_GRAPHQL_TOKEN", "")
        self._timeout = timeout

    async def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout), headers=headers) as client:
            resp = await client.post(self.url, json={"query": query, "variables": variables})
        if resp.status_code >= 400:
            raise RosterFetchError(f"HTTP {resp.status_code}")
        body = resp.json()
        if body.get("errors"):
            raise RosterFetchError(f"GraphQL errors: {body['errors']}")
        return body.get("data") or {}

    async def fetch_page(self, page: int) -> tuple[list[RosterEntry], bool]:
        data = await self._query(_ROSTER_QUERY, {"page": page})
        bookies = data.get("bookies") or {}
        entries = [
            RosterEntry(id=str(b["id"]), name=b.get("name") or "", slug=b.get("slug") or "")
            for b in bookies.get("data") or []
        ]
        has_more = bool((bookies.get("paginatorInfo") or {}).get("hasMorePages"))
        return entries, has_more

    async def promotion_count(self, entry_id: str) -> int:
        data = await self._query(_PROMOTIONS_QUERY, {"id": entry_id})
        bookie = data.get("bookie") or {}
        return int(((bookie.get("promotions") or {}).get("paginatorInfo") or {}).get("total") or 0)


@dataclass
class RosterCache:
    entries: list[RosterEntry] = field(default_factory=list)
    last_refresh: float = 0.0
    ttl: float = DEFAULT_TTL

    def is_fresh(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return bool(self.entries) and now - self.last_refresh < self.ttl

    def store(self, entries: list[RosterEntry], now: float | None = None) -> None:
        self.entries = entries
        self.last_refresh = time.time() if now is None else now

    def invalidate(self) -> None:
        self.last_refresh = 0.0


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class PartnershipResolver:
    def __init__(
        self,
        source: RosterSource | None = None,
        cache: RosterCache | None = None,
        *,
        threshold: float = DEFAULT_THRESHOLD,
        containment_score: float = DEFAULT_CONTAINMENT_SCORE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        self.source = source or RosterClient()
        self.cache = cache if cache is not None else RosterCache()
        self.threshold = threshold
        self.containment_score = containment_score
        self.max_pages = max_pages

    async def _load_roster(self) -> list[RosterEntry]:
        """Full refetch, capped at ``max_pages``. A failing later page keeps earlier pages."""
        entries: list[RosterEntry] = []
        page = 1
        has_more = True
        while has_more and page <= self.max_pages:
            try:
                batch, has_more = await self.source.fetch_page(page)
            except Exception as exc:
                if not entries:
                    raise RosterFetchError(f"Roster fetch failed: {exc}") from exc
                log.warning("Roster page %d failed, keeping %d entries: %s", page, len(entries), exc)
                break
            entries.extend(batch)
            page += 1
        log.info("Cached %d roster entries", len(entries))
        return entries

    async def roster(self) -> list[RosterEntry]:
        if self.cache.is_fresh():
            return self.cache.entries
        entries = await self._load_roster()
        self.cache.store(entries)
        return entries

    def best_match(self, entity_name: str, entries: list[RosterEntry]) -> tuple[RosterEntry | None, float]:
        best: RosterEntry | None = None
        best_score = 0.0
        slug = slugify(entity_name)
        for entry in entries:
            score = max(
                similarity(entity_name, entry.name, self.containment_score),
                similarity(slug, entry.slug, self.containment_score) if entry.slug else 0.0,
            )
            if score > best_score:
                best, best_score = entry, score
        return best, best_score

    async def check(self, entity_name: str) -> PartnerCheck:
        """Classify *entity_name*. Never raises."""
        try:
            entries = await self.roster()
        except Exception as exc:
            log.warning("Partner roster unavailable, treating %r as new: %s", entity_name, exc)
            return PartnerCheck(
                tier=NEW_PROSPECT,
                details="Unable to check E2 partnership status",
                error=str(exc),
            )

        entry, score = self.best_match(entity_name, entries)
        if entry is None or score < self.threshold:
            return PartnerCheck(
                tier=NEW_PROSPECT,
                details=f'"{entity_name}" not found in E2 database - potential new partnership opportunity',
            )

        try:
            promotions = await self.source.promotion_count(entry.id)
        except Exception as exc:
            log.warning("Promotion lookup failed for %s: %s", entry.name, exc)
            promotions = 0

        if promotions > 0:
            return PartnerCheck(
                tier=AFFILIATE_PARTNER, match_score=score, promotion_count=promotions,
                matched_id=entry.id, matched_name=entry.name,
                details=(
                    f'"{entity_name}" matches E2 affiliate partner "{entry.name}" ({promotions} promotions). '
                    "Cross-sell opportunity for E2 Ads, Widget Studio, or SaaS."
                ),
            )
        return PartnerCheck(
            tier=KNOWN_BOOKIE, match_score=score, promotion_count=0,
            matched_id=entry.id, matched_name=entry.name,
            details=(
                f'"{entity_name}" matches E2 bookie "{entry.name}" but no active promotions '
                "- potential partnership opportunity"
            ),
        )

    async def batch_check(self, entity_names: list[str]) -> dict[str, PartnerCheck]:
        results: dict[str, PartnerCheck] = {}
        for name in entity_names:
            results[name] = await self.check(name)
        return results

    async def list_entries(self) -> list[RosterEntry]:
        return await self.roster()

    async def refresh(self) -> list[RosterEntry]:
        self.cache.invalidate()
        return await self.roster()

    def cache_stats(self) -> dict[str, float]:
        return {
            "entryCount": len(self.cache.entries),
            "cacheAge": time.time() - self.cache.last_refresh if self.cache.last_refresh else -1,
            "ttl": self.cache.ttl,
        }


_default_resolver: PartnershipResolver | None = None


def get_resolver() -> PartnershipResolver:
    """Process-wide resolver sharing one roster cache across stages."""
    global _default_resolver
    if _default_resolver is None:
        _default_resolver = PartnershipResolver()
    return _default_resolver
