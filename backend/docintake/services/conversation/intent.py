"""Rule-based intent detection, optionally upgraded by the AI intent service."""

from __future__ import annotations

import logging
import re
from typing import Optional

from sqlalchemy.orm import Session

from docintake.core.config import Settings
from docintake.schemas.conversation import DetectedIntent, IntentEntity, IntentType
from docintake.services.ai.intent.service import parse_intent

logger = logging.getLogger(__name__)

# Checked in order; the first intent with a keyword hit wins.
INTENT_KEYWORDS: tuple[tuple[IntentType, tuple[str, ...]], ...] = (
    (IntentType.PROCESS_DOCUMENT, ("process", "analyze", "analyse", "upload", "scan")),
    (IntentType.CREATE_EXPENSE, ("expense", "receipt", "bill", "payment", "cost", "spent", "paid")),
    (IntentType.ADD_CONTACT, ("contact", "person", "business card", "add person")),
    (IntentType.FIND_VENDOR, ("vendor", "supplier", "company", "business")),
    (IntentType.APPROVE_ACTION, ("approve", "yes", "confirm", "accept", "ok", "go ahead")),
    (IntentType.REJECT_ACTION, ("reject", "no", "cancel", "decline", "deny")),
    (IntentType.MODIFY_DATA, ("change", "modify", "update", "edit", "fix")),
    (IntentType.GET_HELP, ("help", "how", "what", "explain", "guide")),
    (IntentType.ASK_QUESTION, ("when", "where", "why", "which", "who")),
)

STRONG_PHRASES: dict[IntentType, tuple[str, ...]] = {
    IntentType.PROCESS_DOCUMENT: ("process this", "analyze this", "what is this"),
    IntentType.CREATE_EXPENSE: ("create expense", "add expense", "new expense", "create an expense", "add an expense"),
    IntentType.ADD_CONTACT: ("add contact", "create contact", "new contact"),
    IntentType.FIND_VENDOR: ("find vendor", "search vendor", "lookup vendor"),
    IntentType.APPROVE_ACTION: ("approve", "yes", "confirm"),
    IntentType.REJECT_ACTION: ("reject", "no", "cancel"),
    IntentType.MODIFY_DATA: ("change", "modify", "update"),
    IntentType.GET_HELP: ("help me", "how do", "what can"),
    IntentType.ASK_QUESTION: ("what is", "how much", "when did"),
}

CONTEXT_FALLBACKS = {
    "expense_creation": IntentType.CREATE_EXPENSE,
    "expense_workflow": IntentType.CREATE_EXPENSE,
    "contact_management": IntentType.ADD_CONTACT,
}

BASE_CONFIDENCE = 0.7
MAX_CONFIDENCE = 0.95

ENTITY_PATTERNS: tuple[tuple[str, re.Pattern, float], ...] = (
    ("email", re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}"), 0.95),
    ("date", re.compile(r"\b(?:\d{1,2}/\d{1,2}/\d{4}|\d{4}-\d{1,2}-\d{1,2}|today|yesterday|tomorrow)\b", re.IGNORECASE), 0.8),
    ("phone", re.compile(r"(?<!\d)(?:\+?1[\-.\s]?)?\(?\d{3}\)?[\-.\s]?\d{3}[\-.\s]?\d{4}(?!\d)"), 0.85),
    ("amount", re.compile(r"(?:[$€£]\s?)?\b\d+(?:,\d{3})*(?:\.\d{1,2})?\b"), 0.9),
)


def _contains(text: str, keyword: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", text) is not None


def extract_entities(message: str) -> list[IntentEntity]:
    """Amounts, dates, emails and phones with their character offsets.

    Spans are claimed in pattern order so a phone number or date is never
    also reported as an amount.
    """
    entities: list[IntentEntity] = []
    taken: list[tuple[int, int]] = []
    for kind, pattern, confidence in ENTITY_PATTERNS:
        for match in pattern.finditer(message):
            start, end = match.span()
            if any(start < other_end and other_start < end for other_start, other_end in taken):
                continue
            taken.append((start, end))
            value = match.group(0)
            if kind == "amount":
                value = re.sub(r"[^\d.]", "", value)
            entities.append(IntentEntity(type=kind, value=value, confidence=confidence, start=start, end=end))
    entities.sort(key=lambda item: item.start)
    return entities


def classify(message: str, context: Optional[str] = None) -> IntentType:
    lowered = message.lower().strip()
    for intent, keywords in INTENT_KEYWORDS:
        if any(_contains(lowered, keyword) for keyword in keywords):
            return intent
    if lowered.endswith("?"):
        return IntentType.ASK_QUESTION
    return CONTEXT_FALLBACKS.get(context or "", IntentType.GET_HELP)


def intent_confidence(message: str, intent: IntentType) -> float:
    lowered = message.lower().strip()
    confidence = BASE_CONFIDENCE
    if any(_contains(lowered, phrase) for phrase in STRONG_PHRASES.get(intent, ())):
        confidence = min(confidence + 0.2, MAX_CONFIDENCE)
    if len(lowered) < 5:
        confidence = max(confidence - 0.2, 0.3)
    if len(lowered) > 20:
        confidence = min(confidence + 0.1, MAX_CONFIDENCE)
    return round(confidence, 2)


def detect_intent(message: str, context: Optional[str] = None) -> DetectedIntent:
    primary = classify(message, context)
    return DetectedIntent(
        primary=primary,
        confidence=intent_confidence(message, primary),
        entities=extract_entities(message),
        context=context,
        source="rules",
    )


async def detect_intent_with_ai(
    message: str,
    db: Session,
    settings: Settings,
    *,
    context: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> DetectedIntent:
    """Rule-based intent, replaced by the AI classification when it is enabled and more confident."""
    detected = detect_intent(message, context)
    if not settings.enable_ai_intent:
        return detected
    try:
        result = await parse_intent(message, db, context=context, actor_id=actor_id)
    except Exception:
        logger.exception("AI intent classification failed - keeping rule-based intent")
        return detected

    ai = result.intent_result
    if ai.fallback or ai.confidence <= detected.confidence:
        return detected
    return detected.model_copy(update={"primary": IntentType(ai.intent), "confidence": ai.confidence, "source": "ai"})
