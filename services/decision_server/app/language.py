"""Keyword baseline for intent, entities and sentiment.

Stands in for a trained language model; the decision core only consumes
the ``Intent`` / ``ExtractedEntities`` / sentiment score it returns.
"""

from __future__ import annotations

import re
from typing import Protocol

from pydantic import BaseModel, Field

from services.decision_server.app.schemas import ExtractedEntities, Intent, IssueType

INTENT_PATTERNS: list[tuple[IssueType, float, tuple[str, ...]]] = [
    (
        IssueType.ESCALATION_REQUEST,
        0.9,
        (
            r"speak (to|with) (a |the )?(manager|supervisor|human|person|someone)",
            r"talk (to|with) (a |the )?(manager|supervisor|human|person|someone)",
            r"\bescalate\b",
            r"\bhuman agent\b",
            r"\breal person\b",
            r"not satisfied with (this|your) (response|answer)",
        ),
    ),
    (
        IssueType.WRONG_ORDER,
        0.9,
        (
            r"\bwrong (order|food|item|items|dish)\b",
            r"\bincorrect (order|item|items)\b",
            r"not what i ordered",
            r"someone else'?s order",
            r"mixed up my order",
            r"\bwrong\b",
        ),
    ),
    (
        IssueType.MISSING_ITEM,
        0.9,
        (
            r"\bmissing\b",
            r"\bincomplete\b",
            r"didn'?t (receive|get) all",
            r"forgot to (include|send|pack)",
            r"\bnot in (the|my) bag\b",
        ),
    ),
    (
        IssueType.LATE_DELIVERY,
        0.85,
        (
            r"\blate\b",
            r"\bdelayed\b",
            r"\bdelay\b",
            r"taking (too|so) long",
            r"where is my food",
            r"supposed to (arrive|be here)",
            r"still waiting",
        ),
    ),
    (
        IssueType.REFUND_REQUEST,
        0.85,
        (
            r"\brefund",
            r"money back",
            r"return my payment",
        ),
    ),
    (
        IssueType.ORDER_STATUS,
        0.85,
        (
            r"where is my order",
            r"\btrack\b",
            r"\bstatus\b",
            r"picked up yet",
            r"when will (my|the) (food|order) arrive",
        ),
    ),
    (
        IssueType.GENERAL_QUERY,
        0.8,
        (
            r"^(hi|hello|hey)\b",
            r"\bthank(s| you)\b",
            r"\bhelp\b",
        ),
    ),
]
UNMATCHED_CONFIDENCE = 0.3

FOOD_WORDS = (
    "burger",
    "hamburger",
    "cheeseburger",
    "pizza",
    "pasta",
    "spaghetti",
    "noodles",
    "salad",
    "rice",
    "sandwich",
    "taco",
    "burrito",
    "quesadilla",
    "fries",
    "wings",
    "cake",
    "nachos",
    "breadsticks",
    "drink",
    "soda",
    "coke",
    "pepsi",
    "sprite",
    "coffee",
)
ISSUE_WORDS = {
    "cold": ("cold", "not hot", "lukewarm"),
    "spill": ("spill", "spilled", "leaked", "leaking"),
    "quality": ("poor quality", "not fresh", "stale", "bad"),
}
ITEM_NAME_STOPWORDS = {"large", "medium", "small", "regular", "with", "extra"}

SENTIMENT_WEIGHTS = {
    "terrible": -3,
    "awful": -3,
    "horrible": -3,
    "worst": -3,
    "disgusting": -3,
    "hate": -3,
    "angry": -3,
    "furious": -3,
    "bad": -2,
    "poor": -2,
    "disappointed": -2,
    "upset": -2,
    "stale": -2,
    "cold": -1,
    "late": -1,
    "missing": -1,
    "wrong": -1,
    "good": 2,
    "fine": 1,
    "thanks": 2,
    "thank": 2,
    "great": 3,
    "love": 3,
    "excellent": 3,
    "happy": 3,
    "awesome": 3,
}

ORDER_ID_PATTERNS = (
    re.compile(r"\b(ORD-[A-Z0-9]+)\b", re.IGNORECASE),
    re.compile(r"\border\s*#?\s*(\d{3,})\b", re.IGNORECASE),
)
TOKEN_RE = re.compile(r"[a-z']+")


class Sentiment(BaseModel):
    score: float = Field(ge=-1.0, le=1.0)
    positive: list[str] = Field(default_factory=list)
    negative: list[str] = Field(default_factory=list)


class LanguageProcessor(Protocol):
    def detect_intent(self, text: str) -> Intent: ...

    def extract_entities(self, text: str, intent: Intent, known_items: list[str] | None = None) -> ExtractedEntities: ...

    def analyze_sentiment(self, text: str) -> Sentiment: ...


def _contains_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


class KeywordLanguageProcessor:
    def detect_intent(self, text: str) -> Intent:
        lowered = text.lower().strip()
        for issue_type, confidence, patterns in INTENT_PATTERNS:
            if any(re.search(p, lowered) for p in patterns):
                return Intent(type=issue_type, confidence=confidence)
        return Intent(type=IssueType.GENERAL_QUERY, confidence=UNMATCHED_CONFIDENCE)

    def extract_items(self, text: str, known_items: list[str] | None = None) -> list[str]:
        lowered = text.lower()
        found: list[str] = []
        for name in known_items or []:
            full = name.lower()
            if full in lowered:
                found.append(full)
                continue
            for word in TOKEN_RE.findall(full):
                if len(word) >= 4 and word not in ITEM_NAME_STOPWORDS and _contains_word(lowered, word):
                    found.append(word)
        for word in FOOD_WORDS:
            if _contains_word(lowered, word) and not any(word in f for f in found):
                found.append(word)
        return list(dict.fromkeys(found))

    def extract_entities(self, text: str, intent: Intent, known_items: list[str] | None = None) -> ExtractedEntities:
        lowered = text.lower()
        entities = ExtractedEntities()

        for pattern in ORDER_ID_PATTERNS:
            match = pattern.search(text)
            if match:
                value = match.group(1)
                entities.order_id = value.upper() if value.upper().startswith("ORD-") else value
                break

        items = self.extract_items(text, known_items)
        if intent.type == IssueType.WRONG_ORDER:
            entities.wrong_items = items
        elif intent.type == IssueType.MISSING_ITEM:
            entities.missing_items = items

        entities.reported_issues = [
            issue for issue, words in ISSUE_WORDS.items() if any(_contains_word(lowered, w) for w in words)
        ]

        if intent.type == IssueType.REFUND_REQUEST and "because" in lowered:
            reason = text[lowered.index("because") + len("because"):].strip()
            entities.free_text_reason = reason or None
        return entities

    def analyze_sentiment(self, text: str) -> Sentiment:
        tokens = TOKEN_RE.findall(text.lower())
        positive = [t for t in tokens if SENTIMENT_WEIGHTS.get(t, 0) > 0]
        negative = [t for t in tokens if SENTIMENT_WEIGHTS.get(t, 0) < 0]
        total = sum(SENTIMENT_WEIGHTS.get(t, 0) for t in tokens)
        score = total / max(1, len(tokens))
        return Sentiment(score=max(-1.0, min(1.0, score)), positive=positive, negative=negative)
