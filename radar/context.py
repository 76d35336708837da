"""Prompt context: partner products and per-market regulatory background.

Kept short on purpose; all of it is pasted into model prompts.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

PRODUCTS = {
    "e2-ads": {
        "name": "E2 Ads",
        "pitch": "Contextual placements with deep links to prefilled betslips",
        "opportunities": [
            "Publisher wants to monetize sports content",
            "Operator seeking performance-oriented affiliate campaigns",
            "Brand seeking contextual sponsorship placements",
        ],
        "priority": "high",
    },
    "odds-sdk": {
        "name": "Odds SDK",
        "pitch": "Drop-in odds modules or full Odds tab (Web/JS + React Native)",
        "opportunities": [
            "Publisher with existing app wants to add odds",
            "Improve betting UX without rebuilding",
        ],
        "priority": "high",
    },
    "e2-game-engine": {
        "name": "E2 Game Engine",
        "pitch": "F2P prediction games: Streak, Jackpot, Tournament Predictor",
        "opportunities": [
            "When betting ads are restricted (compliant F2P alternative)",
            "Build first-party audience with email registration",
        ],
        "priority": "high",
    },
    "score-republic": {
        "name": "Score Republic",
        "pitch": "White-label live scores app for iOS/Android with plug-in support",
        "opportunities": ["Publisher needs app store presence quickly"],
        "priority": "medium",
    },
    "ai-predictions": {
        "name": "AI Predictions",
        "pitch": "AI-driven picks users can tip or submit",
        "opportunities": ["Lightweight engagement on match previews"],
        "priority": "medium",
    },
}

ANALYZER_CONTEXT = """\
## E2 PRODUCT OPPORTUNITIES

When analyzing signals, connect to these E2 products:

**New Operator / Market Entry:**
-> [Odds SDK] Add betting odds to their platform
-> [E2 Ads] Contextual placements with deep links

**Sponsorship / Partnership:**
-> [E2 Ads] Deep link integration to prefilled betslips
-> [E2 Game Engine] Sponsor-friendly F2P prediction games

**Ad Restrictions / Regulatory Changes:**
-> [E2 Game Engine] Compliant F2P alternative to betting ads
-> [Score Republic] App presence without betting UI

**Expansion / Growth:**
-> [Odds SDK] Quick odds integration for new markets
-> [E2 Ads] ScoreBoard strip for sponsorship"""

_RECOMMENDATIONS = {
    "MARKET_ENTRY": ["Odds SDK - quick odds integration", "E2 Ads - contextual monetization"],
    "PARTNERSHIP": ["E2 Ads - deep link integration", "E2 Game Engine - sponsor activation"],
    "SPONSORSHIP": ["E2 Ads - deep link integration", "E2 Game Engine - sponsor activation"],
    "EXPANSION": ["Odds SDK - new market support", "Score Republic - rapid market entry"],
    "REGULATORY": ["E2 Game Engine - compliant F2P games", "Score Republic - non-betting mode"],
}


def recommendations_for(signal_type: str) -> list[str]:
    return list(_RECOMMENDATIONS.get(signal_type.upper(), ["E2 Ads - contextual placements"]))


# ---------------------------------------------------------------------------
# Geo context
# ---------------------------------------------------------------------------


@dataclass
class GeoContext:
    geo: str
    name: str
    regulatory_status: str
    licensing: str
    ad_restrictions: str
    compliance_notes: list[str] = field(default_factory=list)
    when_ad_restricted: list[str] = field(default_factory=list)
    when_new_operator_enters: list[str] = field(default_factory=list)
    when_sponsorship_deal: list[str] = field(default_factory=list)


BRAZIL = GeoContext(
    geo="br",
    name="Brazil",
    regulatory_status="Newly regulated (Law 14,790/2023)",
    licensing="Active licensing - operators must be authorized under new framework",
    ad_restrictions="Emerging watershed norms; ban on misleading claims; 18+ required",
    compliance_notes=[
        "Age-gating: 18+ required, avoid youth content",
        "Affiliate links/ads: Only to authorized operators under Law 14,790/2023",
        "Ad tech: Age filters; geofence to Brazil as needed",
    ],
    when_ad_restricted=[
        "[e2-game-engine] F2P prediction games as compliant engagement alternative",
        "[score-republic] App presence without betting UI (sponsor-only mode)",
        "[e2-ads] ScoreBoard strip for non-betting sponsorship",
    ],
    when_new_operator_enters=[
        "[odds-sdk] Add odds modules to existing platforms quickly",
        "[e2-ads] Contextual monetization with deep links",
        "[score-republic] Rapid market entry with white-label app",
    ],
    when_sponsorship_deal=[
        "[e2-ads] Deep link integration to prefilled betslips",
        "[e2-game-engine] Sponsor-friendly tournament predictor",
    ],
)

GEO_CONTEXTS = {"br": BRAZIL}


def get_geo_context(geo: str) -> GeoContext | None:
    return GEO_CONTEXTS.get(geo.lower())


def geo_context_prompt(geo: str, pending_headlines: list[str] | None = None) -> str:
    """Market background for *geo*, with up to three pending regulatory headlines."""
    ctx = get_geo_context(geo)
    if ctx is None:
        return f"## MARKET CONTEXT\nNo specific context available for {geo.upper()}"

    def bullets(items: list[str]) -> str:
        return "\n".join(f"  - {i}" for i in items)

    prompt = (
        f"## {ctx.name.upper()} MARKET CONTEXT\n"
        f"Regulatory: {ctx.regulatory_status}\n"
        f"Licensing: {ctx.licensing}\n"
        f"Ad Restrictions: {ctx.ad_restrictions}\n\n"
        "## E2 PRODUCT OPPORTUNITIES BY SIGNAL TYPE\n"
        f"When ad restrictions apply:\n{bullets(ctx.when_ad_restricted)}\n\n"
        f"When new operator enters market:\n{bullets(ctx.when_new_operator_enters)}\n"
    )
    if pending_headlines:
        prompt += f"\n## RECENT REGULATORY NEWS (pending review)\n{bullets(pending_headlines[:3])}\n"
    return prompt


# ---------------------------------------------------------------------------
# Headline translation
# ---------------------------------------------------------------------------

_PT_MARKERS = ("pede", "para", "será", "fazenda", "apostas", "secretaria", "brasileiro", "brasil")

_TRANSLATIONS = {
    "secretaria de prêmios e apostas": "Betting and Prize Secretariat",
    "ministério da fazenda": "Ministry of Finance",
    "pede prerrogativa": "requests authority",
    "requisitar servidores": "requisition staff",
    "loteria estadual": "state lottery",
    "apostador brasileiro": "Brazilian bettor",
    "analisa perfil": "analyzes profile",
    "concessão": "concession",
    "financiará": "will fund",
    "construção": "construction",
    "hospitais": "hospitals",
}


def translate_headline(headline: str) -> str | None:
    """Keyword-level English gloss of a Portuguese headline; None when nothing changed."""
    if not any(m in headline.lower() for m in _PT_MARKERS):
        return None
    translated = headline
    for pt, en in _TRANSLATIONS.items():
        translated = re.sub(re.escape(pt), en, translated, flags=re.IGNORECASE)
    return translated if translated != headline else None
