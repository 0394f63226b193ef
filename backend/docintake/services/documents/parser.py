"""Field normalization: provider candidates first, text patterns for the rest.

Confidence follows provenance.  Structured candidates keep the provider's
score, pattern matches are capped at 0.9 and scored by how specific the
match was, and defaults never exceed 0.5.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional, assert_never

from docintake.schemas.documents import DocumentType, ExtractedField, FieldSource, RawExtraction
from docintake.services.ai.common.json_tools import coerce_number

from .currency import effective_rate, infer_currency, rate_band

logger = logging.getLogger(__name__)

AMOUNT_FIELDS = ("total_amount", "subtotal", "tax_amount", "tip_amount")
MONEY_FIELDS = AMOUNT_FIELDS + ("tax_rate",)
DATE_FIELDS = ("expense_date",)
TEXT_FIELDS = (
    "vendor_name",
    "vendor_address",
    "vendor_phone",
    "vendor_website",
    "currency",
    "invoice_number",
    "description",
    "category",
    "contact_name",
    "job_title",
    "company_name",
    "email",
    "phone",
    "website",
    "tax_id",
)

# Families parsed per document type.
MONEY = "money"
DATES = "dates"
VENDOR = "vendor"
REFERENCE = "reference"
CONTACT = "contact"

MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

_MONEY_RE = re.compile(r"(?<![\d.,])-?(?:[$€£¥₹]\s*)?(\d{1,3}(?:,\d{3})+|\d+)\.(\d{2})(?![\d%])")
_COMMA_MONEY_RE = re.compile(r"(?<![\d.,])-?(?:[$€£¥₹]\s*)?(\d{1,3}(?:\.\d{3})+|\d+),(\d{2})(?![\d%])")
_RATE_RE = re.compile(r"(\d{1,2}(?:\.\d{1,3})?)\s*%")
_SYMBOL_RE = re.compile(r"[$€£¥₹]")
_CURRENCY_CODE_RE = re.compile(r"[A-Z]{3}")

_SUBTOTAL_LABEL = re.compile(r"\b(?:sub\s*-?\s*total|net\s+amount|amount\s+before\s+tax|total\s+before\s+tax|total\s+excl)\b")
_TOTAL_LABEL = re.compile(
    r"^\s*(?:grand\s+total|total(?:\s+(?:due|amount|payable|paid|cad|usd|eur|gbp))?|amount\s+(?:due|paid)|balance\s+due)\b"
)
_TAX_LABEL = re.compile(r"\b(?:hst|gst|pst|qst|vat|iva|mwst|tva|btw|sales\s+tax|tax)\b")
_TAX_EXCLUDE = re.compile(r"\b(?:tax\s*(?:id|number|no|reg)|before\s+tax|excl)")
_TIP_LABEL = re.compile(r"\b(?:tip|gratuity)\b")

_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_SLASH_DATE_RE = re.compile(r"\b(\d{1,2})[/.-](\d{1,2})[/.-](\d{4}|\d{2})\b")
_DAY_MONTH_NAME_RE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)?\s+([a-z]{3})[a-z]*\.?,?\s+(\d{4})\b")
_MONTH_NAME_DAY_RE = re.compile(r"\b([a-z]{3})[a-z]*\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\b")

_INVOICE_NO_RE = re.compile(
    r"\b(?:invoice|inv|receipt|order|bill|reference|ref)\s*(?:no\.?|number|num|#|id)\s*[:#]?\s*([A-Z0-9][A-Z0-9\-/]{2,})",
    re.IGNORECASE,
)
_DESCRIPTION_RE = re.compile(r"^\s*(?:description|for|re|memo)\s*[:\-]\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_PHONE_RE = re.compile(r"(?:\+?\d{1,3}[\s.-]?)?(?:\(\d{3}\)|\d{3})[\s.-]?\d{3}[\s.-]?\d{4}")
_WEBSITE_RE = re.compile(r"\b(?:https?://)?www\.[\w-]+(?:\.[\w-]+)+[^\s]*|\bhttps?://[\w-]+(?:\.[\w-]+)+[^\s]*", re.IGNORECASE)

VENDOR_SKIP_WORDS = (
    "receipt",
    "invoice",
    "tel",
    "phone",
    "fax",
    "www",
    "http",
    "date",
    "cashier",
    "store #",
    "welcome",
    "bill to",
    "ship to",
)
TITLE_WORDS = (
    "ceo",
    "cto",
    "cfo",
    "coo",
    "president",
    "founder",
    "director",
    "manager",
    "engineer",
    "consultant",
    "officer",
    "partner",
    "owner",
    "analyst",
    "coordinator",
    "specialist",
    "vp",
    "vice president",
    "head of",
    "sales",
    "developer",
    "designer",
    "accountant",
)
COMPANY_HINTS = ("inc", "llc", "ltd", "corp", "corporation", "company", "group", "gmbh", "plc", "co.", "solutions", "services")

PATTERN_CEILING = 0.9


@dataclass(frozen=True)
class ParsedDate:
    value: date
    confidence: float
    ambiguous: bool = False


def _clamp(value: float, ceiling: float = PATTERN_CEILING) -> float:
    return round(max(0.0, min(ceiling, value)), 4)


def _pattern(name: str, value: Any, confidence: float) -> ExtractedField:
    return ExtractedField(name=name, value=value, confidence=_clamp(confidence), source=FieldSource.PATTERN)


def parse_amount(value: Any) -> Optional[float]:
    if isinstance(value, str):
        match = _MONEY_RE.search(value) or _COMMA_MONEY_RE.search(value)
        if match:
            return _money_from_match(match)
    number = coerce_number(value)
    return round(number, 2) if number is not None else None


def _money_from_match(match: re.Match) -> float:
    whole = match.group(1).replace(",", "").replace(".", "")
    amount = float(f"{whole}.{match.group(2)}")
    return -amount if match.group(0).lstrip().startswith("-") else amount


def _line_amounts(line: str) -> list[float]:
    found = [_money_from_match(m) for m in _MONEY_RE.finditer(line)]
    if not found:
        found = [_money_from_match(m) for m in _COMMA_MONEY_RE.finditer(line)]
    return found


def _build_date(year: int, month: int, day: int) -> Optional[date]:
    if year < 100:
        year += 2000
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date_value(text: str, *, day_first: bool = False) -> Optional[ParsedDate]:
    """Parse the first date in *text*.

    ``YYYY-MM-DD`` and month names are unambiguous.  For slashed dates the
    token above 12 decides day vs month; when neither is, *day_first* does
    and the result is marked ambiguous with lower confidence.
    """
    lowered = (text or "").lower()

    match = _ISO_DATE_RE.search(lowered)
    if match:
        parsed = _build_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed:
            return ParsedDate(parsed, 0.9)

    match = _DAY_MONTH_NAME_RE.search(lowered)
    if match and match.group(2) in MONTHS:
        parsed = _build_date(int(match.group(3)), MONTHS[match.group(2)], int(match.group(1)))
        if parsed:
            return ParsedDate(parsed, 0.85)

    match = _MONTH_NAME_DAY_RE.search(lowered)
    if match and match.group(1) in MONTHS:
        parsed = _build_date(int(match.group(3)), MONTHS[match.group(1)], int(match.group(2)))
        if parsed:
            return ParsedDate(parsed, 0.85)

    for match in _SLASH_DATE_RE.finditer(lowered):
        first, second, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
        if first > 12 and second <= 12:
            parsed, confidence, ambiguous = _build_date(year, second, first), 0.85, False
        elif second > 12 and first <= 12:
            parsed, confidence, ambiguous = _build_date(year, first, second), 0.85, False
        elif first == second:
            parsed, confidence, ambiguous = _build_date(year, first, second), 0.85, False
        elif day_first:
            parsed, confidence, ambiguous = _build_date(year, second, first), 0.6, True
        else:
            parsed, confidence, ambiguous = _build_date(year, first, second), 0.6, True
        if parsed:
            return ParsedDate(parsed, confidence, ambiguous)

    return None


def _families(document_type: DocumentType) -> tuple[str, ...]:
    match document_type:
        case DocumentType.RECEIPT | DocumentType.INVOICE:
            return (MONEY, DATES, VENDOR, REFERENCE)
        case DocumentType.BUSINESS_CARD:
            return (CONTACT,)
        case DocumentType.QUOTE | DocumentType.CONTRACT:
            return (MONEY, DATES, VENDOR, REFERENCE)
        case DocumentType.UNKNOWN:
            return (MONEY, DATES, VENDOR)
        case _:
            assert_never(document_type)


def _structured_fields(raw: RawExtraction, *, day_first: bool) -> dict[str, ExtractedField]:
    fields: dict[str, ExtractedField] = {}
    for candidate in raw.field_candidates:
        name = candidate.name
        if name in fields:
            continue
        if name in MONEY_FIELDS:
            value: Any = parse_amount(candidate.value)
        elif name in DATE_FIELDS:
            parsed = parse_date_value(str(candidate.value), day_first=day_first)
            value = parsed.value if parsed else None
        elif name in TEXT_FIELDS:
            value = str(candidate.value).strip() or None
            if name == "currency" and value:
                value = value.upper() if _CURRENCY_CODE_RE.fullmatch(value.upper()) else None
        else:
            continue
        if value is None:
            logger.debug("Structured candidate %s could not be coerced", name)
            continue
        fields[name] = ExtractedField(
            name=name,
            value=value,
            confidence=candidate.confidence,
            source=FieldSource.STRUCTURED,
        )
    return fields


def _money_fields(text: str, have: dict[str, ExtractedField]) -> dict[str, ExtractedField]:
    found: dict[str, ExtractedField] = {}
    tax_rate: Optional[float] = None
    tax_line_has_rate = False
    tax_amount_from_line: Optional[float] = None

    for line in text.splitlines():
        lowered = line.lower().strip()
        if not lowered:
            continue
        amounts = _line_amounts(lowered)
        symbol_bonus = 0.05 if _SYMBOL_RE.search(line) else 0.0

        if _SUBTOTAL_LABEL.search(lowered):
            if amounts and "subtotal" not in found:
                found["subtotal"] = _pattern("subtotal", amounts[-1], 0.8 + symbol_bonus)
            continue
        is_tax = bool(_TAX_LABEL.search(lowered)) and not _TAX_EXCLUDE.search(lowered)
        if _TOTAL_LABEL.search(lowered) and not (is_tax and "incl" not in lowered):
            if amounts and "total_amount" not in found:
                found["total_amount"] = _pattern("total_amount", amounts[-1], 0.85 + symbol_bonus)
            continue
        if _TIP_LABEL.search(lowered):
            if amounts and "tip_amount" not in found:
                found["tip_amount"] = _pattern("tip_amount", amounts[-1], 0.75)
            continue
        if is_tax:
            rate_match = _RATE_RE.search(lowered)
            if rate_match and tax_rate is None:
                tax_rate = float(rate_match.group(1))
                tax_line_has_rate = True
            if amounts and tax_amount_from_line is None:
                tax_amount_from_line = amounts[-1]

    if "total_amount" not in found and "total_amount" not in have:
        # Unlabeled: the largest money value is usually the total.
        every = [amount for line in text.splitlines() for amount in _line_amounts(line.lower())]
        if every:
            found["total_amount"] = _pattern("total_amount", max(every), 0.4)

    merged = {**found, **have}
    subtotal = _value(merged, "subtotal")
    total = _value(merged, "total_amount")
    structured_rate = _value(have, "tax_rate")
    if structured_rate is not None:
        tax_rate = structured_rate

    if tax_rate is not None and "tax_rate" not in have:
        found["tax_rate"] = _pattern("tax_rate", tax_rate, 0.85 if tax_line_has_rate else 0.7)

    if "tax_amount" not in have:
        if tax_amount_from_line is not None:
            confidence = 0.75
            if tax_line_has_rate:
                confidence += 0.05
            observed = effective_rate(tax_amount_from_line, subtotal, total)
            if observed is not None:
                # Plausibility of tax against the pre-tax amount.
                confidence = 0.9 if rate_band(observed) is not None else min(confidence, 0.6)
            found["tax_amount"] = _pattern("tax_amount", tax_amount_from_line, confidence)
        elif tax_rate is not None:
            derived = _derive_tax(tax_rate, subtotal, total)
            if derived is not None:
                found["tax_amount"] = derived
                if subtotal is None and total is not None and "subtotal" not in have:
                    found["subtotal"] = _pattern("subtotal", round(total - derived.value, 2), 0.7)

    return found


def _derive_tax(rate: float, subtotal: Optional[float], total: Optional[float]) -> Optional[ExtractedField]:
    """Tax computed from a printed rate, corroborated by ``total - subtotal``."""
    if subtotal is not None:
        derived = round(subtotal * rate / 100, 2)
        corroborated = total is not None and abs((total - subtotal) - derived) <= 0.01
        confidence = 0.9 if corroborated else 0.7
    elif total is not None:
        derived = round(total - total / (1 + rate / 100), 2)
        confidence = 0.75
    else:
        return None
    if rate_band(rate) is None:
        # Printed rate outside every known jurisdiction band.
        confidence = min(confidence, 0.6)
    return _pattern("tax_amount", derived, confidence)


def _value(fields: dict[str, ExtractedField], name: str) -> Any:
    field = fields.get(name)
    return field.value if field is not None else None


def _date_fields(text: str, *, day_first: bool) -> dict[str, ExtractedField]:
    labeled = [line for line in text.splitlines() if "date" in line.lower() and "due" not in line.lower()]
    for line in labeled:
        parsed = parse_date_value(line, day_first=day_first)
        if parsed:
            return {"expense_date": _pattern("expense_date", parsed.value, parsed.confidence + 0.05)}
    parsed = parse_date_value(text, day_first=day_first)
    if parsed:
        return {"expense_date": _pattern("expense_date", parsed.value, parsed.confidence)}
    return {}


def _is_vendor_line(line: str) -> bool:
    lowered = line.lower()
    letters = sum(ch.isalpha() for ch in line)
    if letters < 2 or letters < len(line.replace(" ", "")) / 2:
        return False
    if any(word in lowered for word in VENDOR_SKIP_WORDS):
        return False
    if _EMAIL_RE.search(line) or _PHONE_RE.search(line) or _line_amounts(lowered):
        return False
    if parse_date_value(line) is not None:
        return False
    return True


def _vendor_fields(text: str) -> dict[str, ExtractedField]:
    lines = [line.strip() for line in text.splitlines() if line.strip()][:5]
    for line in lines:
        if _is_vendor_line(line):
            return {"vendor_name": _pattern("vendor_name", line, 0.6)}
    return {}


def _reference_fields(text: str, raw: RawExtraction) -> dict[str, ExtractedField]:
    fields: dict[str, ExtractedField] = {}
    match = _INVOICE_NO_RE.search(text)
    if match:
        fields["invoice_number"] = _pattern("invoice_number", match.group(1).strip(), 0.8)
    match = _DESCRIPTION_RE.search(text)
    if match:
        fields["description"] = _pattern("description", match.group(1).strip()[:500], 0.7)
    elif raw.tables:
        first_rows = [str(row[0]) for table in raw.tables for row in table.rows[:3] if row and row[0]]
        if first_rows:
            fields["description"] = _pattern("description", ", ".join(first_rows)[:500], 0.6)
    return fields


def _contact_fields(text: str) -> dict[str, ExtractedField]:
    fields: dict[str, ExtractedField] = {}
    lines = [line.strip() for line in text.splitlines() if line.strip()]

    email = _EMAIL_RE.search(text)
    if email:
        fields["email"] = _pattern("email", email.group(0), 0.9)
    phone = _PHONE_RE.search(text)
    if phone:
        fields["phone"] = _pattern("phone", phone.group(0).strip(), 0.85)
    website = _WEBSITE_RE.search(text)
    if website:
        fields["website"] = _pattern("website", website.group(0).rstrip(".,;"), 0.85)

    name_line = title_line = company_line = None
    for line in lines:
        lowered = line.lower()
        if _EMAIL_RE.search(line) or _PHONE_RE.search(line) or _WEBSITE_RE.search(line):
            continue
        if any(ch.isdigit() for ch in line):
            continue
        if title_line is None and any(re.search(rf"\b{re.escape(word)}\b", lowered) for word in TITLE_WORDS):
            title_line = line
            continue
        if company_line is None and any(re.search(rf"\b{re.escape(hint)}(?!\w)", lowered) for hint in COMPANY_HINTS):
            company_line = line
            continue
        words = line.split()
        if name_line is None and 2 <= len(words) <= 4 and all(word[:1].isupper() for word in words):
            name_line = line

    if name_line:
        fields["contact_name"] = _pattern("contact_name", name_line, 0.7)
    if title_line:
        fields["job_title"] = _pattern("job_title", title_line, 0.7)
    if company_line:
        fields["company_name"] = _pattern("company_name", company_line, 0.65)
    elif email:
        domain = email.group(0).split("@", 1)[1].split(".")[0]
        if domain.lower() not in ("gmail", "outlook", "hotmail", "yahoo", "icloud", "proton"):
            fields["company_name"] = _pattern("company_name", domain.capitalize(), 0.4)
    return fields


def normalize(
    raw: RawExtraction,
    document_type: DocumentType,
    *,
    default_currency: str = "USD",
    day_first: bool = False,
) -> dict[str, ExtractedField]:
    """Turn a ``RawExtraction`` into typed fields for *document_type*."""
    fields = _structured_fields(raw, day_first=day_first)
    text = raw.text or ""
    families = _families(document_type)

    if MONEY in families:
        for name, field in _money_fields(text, fields).items():
            fields.setdefault(name, field)
    if DATES in families and "expense_date" not in fields:
        fields.update(_date_fields(text, day_first=day_first))
    if VENDOR in families and "vendor_name" not in fields:
        fields.update(_vendor_fields(text))
    if REFERENCE in families:
        for name, field in _reference_fields(text, raw).items():
            fields.setdefault(name, field)
    if CONTACT in families:
        for name, field in _contact_fields(text).items():
            fields.setdefault(name, field)

    if MONEY in families and "currency" not in fields:
        inference = infer_currency(
            text,
            tax_rate=_value(fields, "tax_rate"),
            tax=_value(fields, "tax_amount"),
            subtotal=_value(fields, "subtotal"),
            total=_value(fields, "total_amount"),
            vendor_name=_value(fields, "vendor_name"),
            default_currency=default_currency,
        )
        if inference.defaulted:
            fields["currency"] = ExtractedField(
                name="currency",
                value=inference.currency,
                confidence=inference.confidence,
                source=FieldSource.DEFAULT,
            )
        else:
            fields["currency"] = _pattern("currency", inference.currency, inference.confidence)

    return fields
