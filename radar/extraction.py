"""Local entity extraction: pull bookmaker/operator names out of article text.

Used by the lightweight collector so only candidate names, not whole
articles, are sent to the model.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

BOOKMAKER_SUFFIXES = (
    "bet", "bets", "betting", "apostas", "aposta",
    "gaming", "casino", "poker", "sports", "sport",
    "win", "play", "game", "odds", "lucky",
)

KNOWN_OPERATORS = (
    "bet365", "betfair", "betano", "betway", "bwin", "betclic",
    "pinnacle", "unibet", "william hill", "ladbrokes", "paddy power",
    "parimatch", "stake", "coolbet", "pokerstars", "draftkings",
    "fanduel", "caesars", "pointsbet", "betmgm", "barstool",
    "1xbet", "22bet", "melbet", "mostbet", "linebet",
    "superbet", "sportingbet", "novibet", "leovegas", "mrgreen",
    "pixbet", "galera bet", "estrelabet", "kto",
    "rivalo", "bodog", "betsson", "netbet", "betcris",
    "caliente", "codere", "luckia", "interapuestas",
)

INDUSTRY_PATTERNS = (
    re.compile(r"(\w+(?:bet|bets|betting|apostas|gaming|casino|poker|play))", re.IGNORECASE),
    re.compile(r"operator\s+(\w+)", re.IGNORECASE),
    re.compile(r"bookmaker\s+(\w+)", re.IGNORECASE),
    re.compile(r"(\w+)\s+(?:launches?|expands?|enters?|announced?)", re.IGNORECASE),
    re.compile(r"license\s+(?:to|for)\s+(\w+)", re.IGNORECASE),
)

_CAPITALIZED = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\b")
_KNOWN_RES = {op: re.compile(rf"\b{re.escape(op)}\b") for op in KNOWN_OPERATORS}

COMMON_WORDS = frozenset({
    "the", "and", "for", "with", "new", "latest", "top", "best",
    "brazil", "brasil", "latam", "america", "europe",
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "partners", "partnership", "launches", "launch", "announces", "expands",
    "news", "update", "report", "market", "industry", "sector",
})

_CONFIDENCE_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass
class ExtractedEntity:
    name: str
    confidence: str  # high | medium | low
    context: str
    source: str  # known_operator | pattern_match


@dataclass
class EntityMentions:
    entity: ExtractedEntity
    articles: list[dict[str, str]] = field(default_factory=list)


def capitalize_words(text: str) -> str:
    return " ".join(w[:1].upper() + w[1:].lower() for w in text.split(" "))


def is_common_word(word: str) -> bool:
    return word.lower() in COMMON_WORDS


def extract_entities(text: str) -> list[ExtractedEntity]:
    """Candidate entity names in *text*: known operators first, then patterns."""
    entities: list[ExtractedEntity] = []
    seen: set[str] = set()
    lowered = text.lower()

    for operator, pattern in _KNOWN_RES.items():
        if pattern.search(lowered):
            name = capitalize_words(operator)
            if name.lower() not in seen:
                seen.add(name.lower())
                entities.append(ExtractedEntity(name, "high", text, "known_operator"))

    for pattern in INDUSTRY_PATTERNS:
        for match in pattern.finditer(text):
            name = capitalize_words(match.group(1) or match.group(0))
            if len(name) >= 3 and name.lower() not in seen and not is_common_word(name):
                seen.add(name.lower())
                entities.append(ExtractedEntity(name, "medium", text, "pattern_match"))

    for match in _CAPITALIZED.finditer(text):
        name = match.group(1)
        lower = name.lower()
        if lower.endswith(BOOKMAKER_SUFFIXES) and lower not in seen and not is_common_word(name):
            seen.add(lower)
            entities.append(ExtractedEntity(name, "medium", text, "pattern_match"))

    return entities


def extract_entities_from_articles(articles: list[dict[str, Any]]) -> list[EntityMentions]:
    """Group entity mentions across articles.

    An entity seen in more than one article is promoted to high confidence.
    Sorted by confidence, then by number of articles.
    """
    grouped: dict[str, EntityMentions] = {}
    for article in articles:
        text = f"{article.get('title', '')} {article.get('description') or ''}"
        for entity in extract_entities(text):
            key = entity.name.lower()
            entry = grouped.setdefault(key, EntityMentions(entity=entity))
            if entity.confidence == "high" or entry.articles:
                entry.entity.confidence = "high"
            entry.articles.append({
                "title": str(article.get("title", "")),
                "url": str(article.get("url", "")),
                "source": str(article.get("source", "")),
            })
    return sorted(
        grouped.values(),
        key=lambda m: (_CONFIDENCE_ORDER[m.entity.confidence], -len(m.articles)),
    )
