"""Document type detection from the filename, refined from extracted text."""

from __future__ import annotations

import re
from typing import Optional

from docintake.schemas.documents import DocumentType

FILENAME_KEYWORDS: tuple[tuple[DocumentType, tuple[str, ...]], ...] = (
    (DocumentType.RECEIPT, ("receipt", "rcpt")),
    (DocumentType.INVOICE, ("invoice", "bill")),
    (DocumentType.BUSINESS_CARD, ("business_card", "businesscard", "card", "contact")),
    (DocumentType.QUOTE, ("quote", "estimate")),
    (DocumentType.CONTRACT, ("contract", "agreement")),
)

TEXT_CUES: tuple[tuple[DocumentType, tuple[str, ...]], ...] = (
    (DocumentType.INVOICE, ("invoice", "bill to", "invoice number", "due date", "amount due", "remit to")),
    (DocumentType.RECEIPT, ("receipt", "subtotal", "cashier", "change due", "thank you", "visa", "mastercard")),
    (DocumentType.QUOTE, ("quotation", "quote", "estimate", "valid until", "proposal")),
    (DocumentType.CONTRACT, ("agreement", "hereinafter", "terms and conditions", "party", "witness whereof")),
)

# Labels a model may return that do not map one-to-one.
MODEL_TYPE_ALIASES = {
    "bill": DocumentType.INVOICE,
    "businesscard": DocumentType.BUSINESS_CARD,
    "business card": DocumentType.BUSINESS_CARD,
    "estimate": DocumentType.QUOTE,
    "other": DocumentType.UNKNOWN,
}

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_PHONE_RE = re.compile(r"(?:\+?\d{1,3}[\s.-]?)?(?:\(\d{3}\)|\d{3})[\s.-]?\d{3}[\s.-]?\d{4}")
_MONEY_RE = re.compile(r"\d+\.\d{2}\b")


def classify_filename(filename: Optional[str]) -> DocumentType:
    name = (filename or "").lower()
    for document_type, keywords in FILENAME_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return document_type
    return DocumentType.UNKNOWN


def coerce_document_type(value: Optional[str]) -> DocumentType:
    label = (value or "").strip().lower().replace("-", "_")
    if label in MODEL_TYPE_ALIASES:
        return MODEL_TYPE_ALIASES[label]
    try:
        return DocumentType(label)
    except ValueError:
        return DocumentType.UNKNOWN


def _looks_like_business_card(text: str) -> bool:
    lines = [line for line in text.splitlines() if line.strip()]
    has_contact = bool(_EMAIL_RE.search(text) or _PHONE_RE.search(text))
    return has_contact and 0 < len(lines) <= 10 and not _MONEY_RE.search(text)


def classify_text(text: str) -> DocumentType:
    lowered = (text or "").lower()
    if not lowered.strip():
        return DocumentType.UNKNOWN
    if _looks_like_business_card(text):
        return DocumentType.BUSINESS_CARD

    best, best_score = DocumentType.UNKNOWN, 0
    for document_type, cues in TEXT_CUES:
        score = sum(1 for cue in cues if cue in lowered)
        if score > best_score:
            best, best_score = document_type, score
    if best == DocumentType.UNKNOWN and (" total" in lowered or lowered.startswith("total")):
        return DocumentType.RECEIPT
    return best


def refine_document_type(current: DocumentType, text: str, model_label: Optional[str] = None) -> DocumentType:
    """Keep a filename decision; otherwise trust the model label, then text cues."""
    if current != DocumentType.UNKNOWN:
        return current
    from_model = coerce_document_type(model_label)
    if from_model != DocumentType.UNKNOWN:
        return from_model
    return classify_text(text)
