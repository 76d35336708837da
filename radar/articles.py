"""Article-first collector: recent trade press becomes signals without a model.

Articles are sorted into categories by keyword rules.  Brazilian regulatory
pieces that name no company are queued as pending regulatory news for a
human to apply or ignore; company-specific articles become signals with
the article itself as evidence.
"""
from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy.orm import Session

from radar.context import translate_headline
from radar.extraction import KNOWN_OPERATORS, capitalize_words
from radar.news import get_recent_industry_news
from radar.store import (
    SignalValidationError,
    add_regulatory_news,
    agent_run_scope,
    complete_agent_run,
    create_signal,
    start_agent_run,
)

log = logging.getLogger(__name__)

REGULATORY = "REGULATORY"
MARKET_ENTRY = "MARKET_ENTRY"
PARTNERSHIP = "PARTNERSHIP"
EXPANSION = "EXPANSION"
INDUSTRY_NEWS = "INDUSTRY_NEWS"
SIGNAL_CATEGORIES = (MARKET_ENTRY, PARTNERSHIP, EXPANSION, INDUSTRY_NEWS)

ARTICLE_LIMIT = 50
REGULATORY_LIMIT = 5
PER_CATEGORY = 3

BRAZIL_KEYWORDS = (
    "brazil", "brasil", "brazilian", "brasileiro", "brasileira",
    "spa", "secretaria de prêmios", "ministério da fazenda", "fazenda",
    "loterj", "caixa", "são paulo", "rio de janeiro", "minas gerais",
    "lei 14.790", "14790", "bets", "apostas",
)
NON_BRAZIL_KEYWORDS = (
    "virginia", "new york", "california", "florida", "texas", "ohio",
    "uk", "united kingdom", "germany", "spain", "italy", "france",
    "ontario", "canada", "australia", "india", "africa",
)

_RULES = (
    (MARKET_ENTRY, ("launch", "lança", "debut", "enter", "estreia")),
    (PARTNERSHIP, ("partner", "sponsor", "patroci", "deal", "acordo", "agreement")),
    (EXPANSION, ("expan", "growth", "cresci", "internacional", "global", "novo mercado")),
)
_REGULATORY_WORDS = (
    "licen", "regul", "law", "lei", "secretaria", "ministry", "governo", "legisl", "tribunal",
)

INDUSTRY_COMPANIES = KNOWN_OPERATORS + (
    "playtech", "evolution", "microgaming", "pragmatic", "novomatic",
    "entain", "flutter", "mgm", "wynn", "polymarket", "kalshi", "fliff",
)
_COMPANY_RES = tuple((c, re.compile(rf"\b{re.escape(c)}\b")) for c in dict.fromkeys(INDUSTRY_COMPANIES))
_BRANDED = re.compile(r"\b([A-Z][a-z]+(?:bet|Bet|gaming|Gaming|poker|Poker))\b")


def _text(article: dict[str, Any]) -> str:
    return f"{article.get('title', '')} {article.get('description', '')}"


def company_names(article: dict[str, Any]) -> list[str]:
    text = _text(article)
    lowered = text.lower()
    names = [capitalize_words(c) for c, pattern in _COMPANY_RES if pattern.search(lowered)]
    for match in _BRANDED.finditer(text):
        if match.group(1).lower() not in (n.lower() for n in names):
            names.append(match.group(1))
    return names


def is_brazil_relevant(article: dict[str, Any]) -> bool:
    lowered = _text(article).lower()
    has_brazil = any(k in lowered for k in BRAZIL_KEYWORDS)
    has_other = any(re.search(rf"\b{re.escape(k)}\b", lowered) for k in NON_BRAZIL_KEYWORDS)
    source = str(article.get("source", "")).lower()
    if "brazil" in source or "brasil" in source:
        return not has_other
    return has_brazil and not has_other


def categorize(article: dict[str, Any], geo: str) -> str:
    """Category for one article. REGULATORY needs Brazil relevance and no named company."""
    lowered = _text(article).lower()
    if geo == "br" and any(w in lowered for w in _REGULATORY_WORDS):
        if is_brazil_relevant(article) and not company_names(article):
            return REGULATORY
    for category, words in _RULES:
        if any(w in lowered for w in words):
            return category
    return INDUSTRY_NEWS


def article_score(article: dict[str, Any], category: str, company_count: int) -> int:
    score = 5
    if article.get("quality", 0) >= 5:
        score += 2
    if category == MARKET_ENTRY:
        score += 2
    elif category == PARTNERSHIP:
        score += 1
    if company_count > 1:
        score += 1
    return min(10, score)


async def run_article_collector(session: Session, *, geo: str = "br", days_back: int = 14) -> dict[str, Any]:
    geo = geo.lower()
    run = start_agent_run(session, "collector", {"geo": geo, "daysBack": days_back, "mode": "articles"})
    session.commit()

    with agent_run_scope(session, run):
        news = await get_recent_industry_news("br" if geo == "br" else "latam", ARTICLE_LIMIT)
        articles = news["articles"]
        by_category: dict[str, list[dict[str, Any]]] = {c: [] for c in (REGULATORY, *SIGNAL_CATEGORIES)}
        for article in articles:
            by_category[categorize(article, geo)].append(article)
        log.info(
            "Articles: %s",
            ", ".join(f"{c}={len(items)}" for c, items in by_category.items()),
        )

        regulatory = [
            {**a, "headline": a["title"], "headline_en": translate_headline(a["title"])}
            for a in by_category[REGULATORY][:REGULATORY_LIMIT]
        ]
        regulatory_added = add_regulatory_news(session, regulatory, geo=geo)
        session.commit()

        stored: list[str] = []
        entities: list[str] = []
        for category in SIGNAL_CATEGORIES:
            for article in by_category[category][:PER_CATEGORY]:
                companies = company_names(article)
                if not companies:
                    continue
                name = ", ".join(companies)
                try:
                    signal = create_signal(
                        session,
                        entity_name=name,
                        entity_type="bookmaker",
                        geo=geo,
                        signal_type=category,
                        evidence=[{
                            "source": article["source"],
                            "headline": article["title"],
                            "url": article["url"],
                            "description": (article.get("description") or "")[:300],
                            "publishedAt": article.get("publishedAt"),
                            "confidence": 0.9 if article.get("quality", 0) >= 5 else 0.7,
                        }],
                        preliminary_score=article_score(article, category, len(companies)),
                        source_urls=[article["url"]],
                        agent_run_id=run.id,
                        signal_category=category.lower(),
                    )
                except SignalValidationError as exc:
                    log.warning("Skipping article %r: %s", article["title"][:60], exc)
                    continue
                session.commit()
                stored.append(signal.id)
                entities.append(name)

        output = {
            "signals_found": len(stored),
            "signals_stored": len(stored),
            "entities_discovered": entities,
            "articles_processed": len(articles),
            "regulatory_news_added": regulatory_added,
        }
        complete_agent_run(session, run, output_summary=output)
        session.commit()
    log.info("Article collector: %d signals from %d articles", len(stored), len(articles))
    return {**output, "runId": run.id}
