"""Persistence and state machine for action cards.

``pending -> approved -> executing -> completed`` or ``pending -> rejected``.
Only the ``executing`` step writes to the system of record, and each step is
a compare-and-set on the current status so a retried approval cannot run the
write twice.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Optional, assert_never

from pydantic import TypeAdapter
from sqlalchemy.orm import Session

from docintake.core.auth import SecurityContext
from docintake.core.errors import EntityNotFound, StateTransitionError
from docintake.models.records import ActionCardRecord
from docintake.schemas.actions import (
    ActionCard,
    ActionCardStatus,
    ActionPriority,
    ActionType,
    CardData,
    ContactCardData,
    ExpenseCardData,
    VendorCardData,
)
from docintake.services.access import ensure_capability
from docintake.services.audit_log import create_audit_log
from docintake.services.reference_store import ReferenceDataStore
from docintake.services.suggestions import approve_suggestion
from docintake.utils.clock import as_aware, db_now, utc_now

from .generator import ACTION_CAPABILITY

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    ActionCardStatus.PENDING: [ActionCardStatus.APPROVED, ActionCardStatus.REJECTED],
    ActionCardStatus.APPROVED: [ActionCardStatus.EXECUTING],
    ActionCardStatus.EXECUTING: [ActionCardStatus.COMPLETED],
    ActionCardStatus.REJECTED: [],
    ActionCardStatus.COMPLETED: [],
}

_card_data = TypeAdapter(CardData)


def save_cards(
    db: Session,
    cards: Sequence[ActionCard],
    *,
    company_id: str,
    conversation_id: Optional[str] = None,
    created_by: Optional[str] = None,
) -> list[ActionCardRecord]:
    records = []
    for card in cards:
        record = ActionCardRecord(
            id=card.id,
            company_id=company_id,
            conversation_id=conversation_id,
            card_type=card.type.value,
            title=card.title,
            data=card.data.model_dump(mode="json"),
            confidence=card.confidence,
            priority=card.priority.value,
            status=card.status.value,
            approval_required=card.approval_required,
            reasons=list(card.reasons),
            expires_at=card.expires_at,
            created_by=created_by,
        )
        db.add(record)
        records.append(record)
    db.flush()
    return records


def get_card(db: Session, card_id: str, *, company_id: str) -> ActionCardRecord:
    record = (
        db.query(ActionCardRecord)
        .filter(ActionCardRecord.id == card_id, ActionCardRecord.company_id == company_id)
        .populate_existing()
        .one_or_none()
    )
    if record is None:
        raise EntityNotFound("action_card", card_id)
    return record


def to_action_card(record: ActionCardRecord) -> ActionCard:
    return ActionCard(
        id=str(record.id),
        type=ActionType(record.card_type),
        title=record.title,
        description="",
        data=_card_data.validate_python(record.data),
        confidence=record.confidence,
        priority=ActionPriority(record.priority),
        status=ActionCardStatus(record.status),
        approval_required=bool(record.approval_required),
        reasons=list(record.reasons or []),
        expires_at=as_aware(record.expires_at),
        result_entity_id=str(record.result_entity_id) if record.result_entity_id else None,
    )


def apply_card_transition(
    db: Session,
    record: ActionCardRecord,
    new_status: ActionCardStatus,
    *,
    actor_id: Optional[str],
    metadata: Optional[dict[str, Any]] = None,
    **updates: Any,
) -> None:
    current = ActionCardStatus(record.status)
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise StateTransitionError("action_card", current.value, new_status.value)

    result = (
        db.query(ActionCardRecord)
        .filter(ActionCardRecord.id == record.id, ActionCardRecord.status == current.value)
        .update(
            {
                ActionCardRecord.status: new_status.value,
                ActionCardRecord.decided_by: actor_id,
                ActionCardRecord.updated_at: db_now(db),
                **{getattr(ActionCardRecord, key): value for key, value in updates.items()},
            },
            synchronize_session=False,
        )
    )
    if not result:
        db.refresh(record)
        raise StateTransitionError("action_card", record.status, new_status.value)
    db.refresh(record)

    create_audit_log(
        db,
        entity_type="action_card",
        entity_id=str(record.id),
        action="ACTION_CARD_STATUS_CHANGE",
        old_value={"status": current.value},
        new_value={"status": new_status.value},
        actor_id=actor_id,
        metadata=metadata,
    )


def _execute(
    db: Session,
    card: ActionCard,
    *,
    company_id: str,
    store: ReferenceDataStore,
    actor_id: Optional[str],
    security: Optional[SecurityContext],
) -> str:
    data = card.data
    match data:
        case ExpenseCardData():
            details = data.model_dump(exclude={"kind", "amount", "category_name"}, exclude_none=True)
            return store.create_expense(company_id, amount=data.amount, created_by=actor_id, **details)
        case VendorCardData():
            if data.suggestion_id:
                overrides = data.model_dump(exclude={"kind", "suggestion_id"}, exclude_none=True)
                return approve_suggestion(
                    db,
                    data.suggestion_id,
                    actor_id,
                    company_id=company_id,
                    store=store,
                    overrides=overrides,
                    security=security,
                )
            details = data.model_dump(exclude={"kind", "name", "suggestion_id"}, exclude_none=True)
            return store.create_vendor(company_id, data.name, **details)
        case ContactCardData():
            details = data.model_dump(exclude={"kind", "name"}, exclude_none=True)
            return store.create_contact(company_id, data.name, **details)
        case _:
            assert_never(data)


def approve_card(
    db: Session,
    card_id: str,
    *,
    company_id: str,
    store: ReferenceDataStore,
    actor_id: Optional[str],
    security: Optional[SecurityContext] = None,
) -> ActionCard:
    """Approve and execute a card, returning it in its final state.

    Approving a completed card is a no-op that returns it unchanged.  The
    transitions and the write share one savepoint: when the write fails the
    card is back to pending, the failure is audited in the outer transaction
    and the error re-raised for the caller to commit or discard.
    """
    record = get_card(db, card_id, company_id=company_id)
    status = ActionCardStatus(record.status)
    if status == ActionCardStatus.COMPLETED:
        logger.info("Action card %s already completed - nothing to execute", card_id)
        return to_action_card(record)
    if status != ActionCardStatus.PENDING:
        raise StateTransitionError("action_card", status.value, ActionCardStatus.APPROVED.value)

    card = to_action_card(record)
    ensure_capability(
        db,
        security,
        ACTION_CAPABILITY[card.type],
        entity_type="action_card",
        entity_id=card_id,
        actor_id=actor_id,
    )
    if card.expires_at is not None and card.expires_at < utc_now():
        raise StateTransitionError("action_card", "expired", ActionCardStatus.APPROVED.value)

    try:
        with db.begin_nested():
            apply_card_transition(db, record, ActionCardStatus.APPROVED, actor_id=actor_id)
            apply_card_transition(db, record, ActionCardStatus.EXECUTING, actor_id=actor_id)
            entity_id = _execute(db, card, company_id=company_id, store=store, actor_id=actor_id, security=security)
            apply_card_transition(
                db,
                record,
                ActionCardStatus.COMPLETED,
                actor_id=actor_id,
                metadata={"result_entity_id": entity_id},
                result_entity_id=entity_id,
            )
    except Exception as exc:
        db.refresh(record)
        logger.warning("Action card %s execution failed: %s", card_id, exc)
        create_audit_log(
            db,
            entity_type="action_card",
            entity_id=card_id,
            action="ACTION_CARD_EXECUTION_FAILED",
            new_value={"card_type": card.type.value},
            actor_id=actor_id,
            metadata={"error": type(exc).__name__},
        )
        raise

    return to_action_card(record)


def reject_card(
    db: Session,
    card_id: str,
    *,
    company_id: str,
    actor_id: Optional[str],
    reason: Optional[str] = None,
) -> bool:
    """Reject a pending card.  Returns False when it was already rejected."""
    record = get_card(db, card_id, company_id=company_id)
    if record.status == ActionCardStatus.REJECTED.value:
        return False
    apply_card_transition(
        db,
        record,
        ActionCardStatus.REJECTED,
        actor_id=actor_id,
        metadata={"reason": reason} if reason else None,
    )
    return True
