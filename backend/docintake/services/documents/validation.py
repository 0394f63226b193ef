"""Cross-field checks that adjust confidence and attach warnings.

Validation never drops a field or a value; it only lowers confidence.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from docintake.core.config import Settings
from docintake.core.errors import ValidationWarning
from docintake.schemas.documents import EntityKind, EntityMatch, ExtractedField

AMOUNT_MISMATCH_TAX_CAP = 0.6
DATE_OUT_OF_RANGE_CAP = 0.7
VENDOR_NAME_CAP = 0.5
VENDOR_NAME_MIN = 3
VENDOR_NAME_MAX = 50
DATE_PAST_WINDOW = timedelta(days=365)
DATE_FUTURE_WINDOW = timedelta(days=31)


@dataclass
class ValidationResult:
    fields: dict[str, ExtractedField]
    warnings: list[ValidationWarning] = field(default_factory=list)

    def has(self, code: str) -> bool:
        return any(w.code == code for w in self.warnings)


def _number(fields: dict[str, ExtractedField], name: str) -> Optional[float]:
    item = fields.get(name)
    if item is None or item.value is None:
        return None
    try:
        return float(item.value)
    except (TypeError, ValueError):
        return None


def _as_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def validate(
    fields: dict[str, ExtractedField],
    matches: Sequence[EntityMatch] = (),
    *,
    now: datetime,
    settings: Settings,
) -> ValidationResult:
    adjusted = dict(fields)
    warnings: list[ValidationWarning] = []

    def cap(name: str, ceiling: float) -> None:
        if name in adjusted:
            adjusted[name] = adjusted[name].capped(ceiling)

    subtotal = _number(adjusted, "subtotal")
    tax = _number(adjusted, "tax_amount")
    total = _number(adjusted, "total_amount")
    tip = _number(adjusted, "tip_amount") or 0.0
    currency = adjusted["currency"].value if "currency" in adjusted else ""

    if subtotal is not None and tax is not None and total is not None:
        expected = round(subtotal + tax + tip, 2)
        if abs(expected - total) > settings.amount_tolerance:
            cap("tax_amount", AMOUNT_MISMATCH_TAX_CAP)
            warnings.append(
                ValidationWarning(
                    "tax_amount",
                    "AMOUNT_MISMATCH",
                    f"Subtotal {subtotal:.2f} + tax {tax:.2f}"
                    + (f" + tip {tip:.2f}" if tip else "")
                    + f" = {expected:.2f}, but total is {total:.2f}",
                )
            )

    expense_date = _as_date(adjusted["expense_date"].value) if "expense_date" in adjusted else None
    if expense_date is not None:
        today = now.date()
        if expense_date < today - DATE_PAST_WINDOW or expense_date > today + DATE_FUTURE_WINDOW:
            cap("expense_date", DATE_OUT_OF_RANGE_CAP)
            warnings.append(
                ValidationWarning(
                    "expense_date",
                    "DATE_OUT_OF_RANGE",
                    f"Date {expense_date.isoformat()} is more than a year old or more than a month ahead",
                )
            )

    if total is not None and total > settings.large_amount_threshold:
        warnings.append(
            ValidationWarning(
                "total_amount",
                "LARGE_AMOUNT",
                f"Amount {total:,.2f} {currency} exceeds {settings.large_amount_threshold:,.0f}; review manually".replace("  ", " "),
            )
        )

    vendor = adjusted.get("vendor_name")
    if vendor is not None and isinstance(vendor.value, str):
        length = len(vendor.value.strip())
        if length < VENDOR_NAME_MIN or length > VENDOR_NAME_MAX:
            cap("vendor_name", VENDOR_NAME_CAP)
            warnings.append(
                ValidationWarning(
                    "vendor_name",
                    "VENDOR_NAME_LENGTH",
                    f"Vendor name has {length} characters (expected {VENDOR_NAME_MIN}-{VENDOR_NAME_MAX})",
                )
            )

    for match in matches:
        if match.is_proposal and match.entity_name:
            field_name = "vendor_name" if match.entity_kind == EntityKind.VENDOR else "category"
            warnings.append(
                ValidationWarning(
                    field_name,
                    "NEW_ENTITY",
                    f'{match.entity_kind.value.capitalize()} "{match.entity_name}" is not on file yet and needs approval',
                )
            )

    return ValidationResult(fields=adjusted, warnings=warnings)
