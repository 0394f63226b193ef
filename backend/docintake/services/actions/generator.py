"""Turns an analysed document plus its entity matches into action cards.

Cards are plain values here; persisting them is ``lifecycle.save_cards``.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Optional, assert_never

from docintake.core.auth import Capability, SecurityContext
from docintake.core.config import Settings
from docintake.schemas.actions import (
    ActionCard,
    ActionPriority,
    ActionType,
    ContactCardData,
    ExpenseCardData,
    VendorCardData,
)
from docintake.schemas.documents import DocumentAnalysis, DocumentType, EntityKind, EntityMatch
from docintake.services.documents.parser import parse_amount

logger = logging.getLogger(__name__)

ACTION_CAPABILITY: dict[ActionType, Capability] = {
    ActionType.CREATE_EXPENSE: Capability.CREATE_EXPENSE,
    ActionType.CREATE_VENDOR: Capability.CREATE_VENDOR,
    ActionType.CREATE_CONTACT: Capability.CREATE_CONTACT,
}


def _match_for(matches: Sequence[EntityMatch], kind: EntityKind) -> Optional[EntityMatch]:
    for match in matches:
        if match.entity_kind == kind:
            return match
    return None


def _date_value(analysis: DocumentAnalysis):
    value = analysis.value("expense_date")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return value[:10] or None
    return value


class ActionCardGenerator:
    def __init__(self, settings: Settings) -> None:
        self.approval_confidence = settings.action_approval_confidence
        self.ttl = timedelta(hours=settings.action_card_ttl_hours)
        self.sensitive = {item for item in settings.sensitive_action_types}
        self.large_amount = settings.large_amount_threshold
        self.default_currency = settings.default_currency

    def generate(
        self,
        analysis: DocumentAnalysis,
        matches: Sequence[EntityMatch],
        *,
        now: datetime,
        security: Optional[SecurityContext] = None,
        source_filename: Optional[str] = None,
    ) -> list[ActionCard]:
        """One card per plausible action, filtered to what *security* permits."""
        vendor_match = _match_for(matches, EntityKind.VENDOR)
        category_match = _match_for(matches, EntityKind.CATEGORY)

        cards: list[ActionCard] = []
        document_type = analysis.document_type
        match document_type:
            case DocumentType.RECEIPT | DocumentType.INVOICE:
                cards.extend(self._vendor_cards(analysis, vendor_match, now))
                cards.append(self._expense_card(analysis, vendor_match, category_match, now, source_filename))
            case DocumentType.BUSINESS_CARD:
                cards.extend(self._vendor_cards(analysis, vendor_match, now))
                contact = self._contact_card(analysis, vendor_match, now)
                if contact is not None:
                    cards.append(contact)
            case DocumentType.QUOTE | DocumentType.CONTRACT:
                cards.extend(self._vendor_cards(analysis, vendor_match, now))
            case DocumentType.UNKNOWN:
                if (parse_amount(analysis.value("total_amount")) or 0.0) > 0:
                    cards.append(self._expense_card(analysis, vendor_match, category_match, now, source_filename))
            case _:
                assert_never(document_type)

        if security is None:
            return cards
        permitted = [card for card in cards if security.can(ACTION_CAPABILITY[card.type])]
        if len(permitted) != len(cards):
            logger.info("Dropped %d action card(s) outside the caller's capabilities", len(cards) - len(permitted))
        return permitted

    def _approval(
        self,
        action: ActionType,
        confidence: float,
        contributing: Sequence[Optional[EntityMatch]],
    ) -> tuple[bool, list[str]]:
        reasons: list[str] = []
        for match in contributing:
            if match is not None and match.needs_approval:
                reasons.append(match.reason)
        if confidence < self.approval_confidence:
            reasons.append(f"Confidence {confidence:.2f} is below {self.approval_confidence:.2f}")
        if action.value in self.sensitive:
            reasons.append(f"{action.value} is a sensitive action")
        return bool(reasons), reasons

    def _card(
        self,
        action: ActionType,
        title: str,
        description: str,
        data,
        confidence: float,
        contributing: Sequence[Optional[EntityMatch]],
        now: datetime,
        priority: ActionPriority = ActionPriority.MEDIUM,
    ) -> ActionCard:
        confidence = round(max(0.0, min(confidence, 1.0)), 4)
        approval_required, reasons = self._approval(action, confidence, contributing)
        return ActionCard(
            id=str(uuid.uuid4()),
            type=action,
            title=title,
            description=description,
            data=data,
            confidence=confidence,
            priority=priority,
            approval_required=approval_required,
            reasons=reasons,
            expires_at=now + self.ttl,
        )

    def _expense_card(
        self,
        analysis: DocumentAnalysis,
        vendor: Optional[EntityMatch],
        category: Optional[EntityMatch],
        now: datetime,
        source_filename: Optional[str],
    ) -> ActionCard:
        amount = parse_amount(analysis.value("total_amount")) or 0.0
        vendor_name = (vendor.entity_name if vendor and vendor.entity_name else None) or analysis.value("vendor_name")
        data = ExpenseCardData(
            amount=amount,
            subtotal=parse_amount(analysis.value("subtotal")),
            tax_amount=parse_amount(analysis.value("tax_amount")),
            currency=analysis.value("currency") or self.default_currency,
            expense_date=_date_value(analysis),
            description=analysis.value("description"),
            invoice_number=analysis.value("invoice_number"),
            vendor_id=vendor.entity_id if vendor else None,
            vendor_name=vendor_name,
            category_id=category.entity_id if category else None,
            category_name=category.entity_name if category and category.entity_name else analysis.value("category"),
            gl_account=analysis.value("gl_account"),
            source_filename=source_filename or None,
        )
        confidence = analysis.confidence
        for match in (vendor, category):
            if match is not None and match.entity_id is not None:
                confidence = min(confidence, match.confidence)
        priority = ActionPriority.HIGH if amount > self.large_amount else ActionPriority.MEDIUM
        title = f"Create expense {amount:.2f} {data.currency}"
        if vendor_name:
            title += f" from {vendor_name}"
        return self._card(
            ActionType.CREATE_EXPENSE,
            title,
            data.description or f"{analysis.document_type.value.replace('_', ' ').capitalize()} expense",
            data,
            confidence,
            (vendor, category),
            now,
            priority,
        )

    def _vendor_cards(self, analysis: DocumentAnalysis, vendor: Optional[EntityMatch], now: datetime) -> list[ActionCard]:
        if vendor is None or not vendor.is_proposal or not vendor.entity_name:
            return []
        enrichment = vendor.enrichment or {}
        data = VendorCardData(
            name=vendor.entity_name,
            email=enrichment.get("email") or analysis.value("email"),
            phone=enrichment.get("phone") or analysis.value("phone"),
            website=enrichment.get("website") or analysis.value("website"),
            address=enrichment.get("address"),
            description=enrichment.get("description"),
            suggestion_id=vendor.suggestion_id,
        )
        return [
            self._card(
                ActionType.CREATE_VENDOR,
                f"Add vendor {vendor.entity_name}",
                vendor.reason,
                data,
                vendor.confidence,
                (vendor,),
                now,
            )
        ]

    def _contact_card(self, analysis: DocumentAnalysis, vendor: Optional[EntityMatch], now: datetime) -> Optional[ActionCard]:
        name = analysis.value("contact_name") or analysis.value("email")
        if not name:
            return None
        data = ContactCardData(
            name=name,
            email=analysis.value("email"),
            phone=analysis.value("phone"),
            title=analysis.value("job_title"),
            company_name=analysis.value("company_name") or (vendor.entity_name if vendor else None),
            website=analysis.value("website"),
            vendor_id=vendor.entity_id if vendor else None,
        )
        confidence = analysis.field_confidence("contact_name") or analysis.confidence
        return self._card(
            ActionType.CREATE_CONTACT,
            f"Add contact {name}",
            f"{data.title} at {data.company_name}" if data.title and data.company_name else "Business card contact",
            data,
            min(confidence, analysis.confidence) if analysis.confidence else confidence,
            (),
            now,
            ActionPriority.LOW,
        )
