"""Reply text for document results and conversation turns."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Optional, assert_never

from sqlalchemy.orm import Session

from docintake.schemas.actions import ActionCard, ActionType
from docintake.schemas.conversation import DetectedIntent, IntentType
from docintake.schemas.documents import DocumentAnalysis, DocumentType
from docintake.services.ai.response.service import generate_reply
from docintake.services.documents.parser import parse_amount

from .guardrails import redact

logger = logging.getLogger(__name__)

GREETINGS = ("hello", "hi", "hey")

INTENT_TEMPLATES: dict[IntentType, str] = {
    IntentType.PROCESS_DOCUMENT: "Upload a receipt, invoice or business card and I will read it and suggest what to create.",
    IntentType.CREATE_EXPENSE: (
        "I'd be happy to help you create an expense! Upload a receipt or invoice, "
        "or tell me the amount, vendor and date."
    ),
    IntentType.ADD_CONTACT: "I can add contacts. Upload a business card or give me their name, email and phone.",
    IntentType.FIND_VENDOR: "Tell me the vendor name and I will check it against your vendor list.",
    IntentType.APPROVE_ACTION: "There is nothing waiting for your approval right now.",
    IntentType.REJECT_ACTION: "There is nothing waiting for your approval right now.",
    IntentType.MODIFY_DATA: "Tell me which field to change and the new value, and I will update the proposal.",
    IntentType.GET_HELP: (
        "I'm here to help! Upload receipts or invoices to create expenses, scan business cards to add contacts, "
        "and I will propose each change for your approval."
    ),
    IntentType.ASK_QUESTION: "Could you give me a bit more detail, or upload the document you are asking about?",
}


def _describe_document(analysis: DocumentAnalysis, cards: Sequence[ActionCard]) -> str:
    document_type = analysis.document_type
    label = document_type.value.replace("_", " ")
    parts = [f"I analyzed your {label} with {round(analysis.confidence * 100)}% confidence."]
    if analysis.degraded:
        parts = [f"I could not read this {label} reliably, so the details below need checking."]

    match document_type:
        case DocumentType.RECEIPT | DocumentType.INVOICE | DocumentType.UNKNOWN:
            vendor = analysis.value("vendor_name")
            amount = parse_amount(analysis.value("total_amount"))
            currency = analysis.value("currency") or ""
            if vendor and amount is not None:
                parts.append(f"I found an expense from {vendor} for {amount:.2f} {currency}.".replace(" .", "."))
            elif amount is not None:
                parts.append(f"The total is {amount:.2f} {currency}.".replace(" .", "."))
            if any(card.type == ActionType.CREATE_EXPENSE for card in cards):
                parts.append("I can create an expense entry for you. Would you like me to proceed?")
        case DocumentType.BUSINESS_CARD:
            name = analysis.value("contact_name")
            company = analysis.value("company_name")
            if name and company:
                parts.append(f"I found contact information for {name} from {company}.")
            elif name:
                parts.append(f"I found contact information for {name}.")
            if any(card.type == ActionType.CREATE_CONTACT for card in cards):
                parts.append("I can add this contact. Should I create the contact entry?")
        case DocumentType.QUOTE | DocumentType.CONTRACT:
            vendor = analysis.value("vendor_name")
            if vendor:
                parts.append(f"It comes from {vendor}.")
        case _:
            assert_never(document_type)

    if cards and not any(card.type in (ActionType.CREATE_EXPENSE, ActionType.CREATE_CONTACT) for card in cards):
        parts.append(f"I have {len(cards)} suggestion{'s' if len(cards) > 1 else ''} for you.")
    if not cards:
        parts.append("I'm not sure what you'd like me to do with this document. Could you tell me how I can help?")
    if analysis.warnings:
        parts.append("Please double-check: " + "; ".join(w["message"] for w in analysis.warnings[:3]) + ".")
    return " ".join(parts)


def respond(
    intent: Optional[DetectedIntent],
    analysis: Optional[DocumentAnalysis] = None,
    cards: Sequence[ActionCard] = (),
    *,
    message: str = "",
) -> str:
    """Template reply, already passed through the guardrails."""
    if analysis is not None:
        return redact(_describe_document(analysis, cards))

    lowered = message.lower()
    if intent is None or (intent.primary == IntentType.GET_HELP and any(lowered.startswith(g) for g in GREETINGS)):
        text = (
            "Hello! I can process documents, create expenses and add contacts. "
            "What would you like to do today?"
        )
    elif cards:
        titles = ", ".join(card.title for card in cards)
        text = f"Here is what I prepared: {titles}. Reply yes to approve or no to reject."
    else:
        text = INTENT_TEMPLATES[intent.primary]
    return redact(text)


def _facts(intent: Optional[DetectedIntent], analysis: Optional[DocumentAnalysis], cards: Sequence[ActionCard]) -> str:
    lines = []
    if intent is not None:
        lines.append(f"User intent: {intent.primary.value.replace('_', ' ')}")
    if analysis is not None:
        lines.append(f"Document type: {analysis.document_type.value} (confidence {analysis.confidence:.2f})")
        for name in ("vendor_name", "total_amount", "currency", "expense_date", "contact_name", "company_name"):
            value = analysis.value(name)
            if value is not None:
                lines.append(f"{name}: {value}")
    for card in cards:
        lines.append(f"Proposed action: {card.title} (approval required: {card.approval_required})")
    return "\n".join(lines)


async def compose_reply(
    intent: Optional[DetectedIntent],
    analysis: Optional[DocumentAnalysis],
    cards: Sequence[ActionCard],
    *,
    db: Session,
    use_ai: bool,
    message: str = "",
    history: Sequence[tuple[str, str]] = (),
    actor_id: Optional[str] = None,
) -> str:
    """AI reply when enabled and available, else the template; guardrails apply to both."""
    if use_ai:
        try:
            generated = await generate_reply(_facts(intent, analysis, cards), db, history=history, actor_id=actor_id)
        except Exception:
            logger.exception("Reply generation failed - using template")
            generated = None
        if generated:
            return redact(generated)
    return respond(intent, analysis, cards, message=message)
