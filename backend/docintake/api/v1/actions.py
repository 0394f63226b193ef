import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from docintake.core.auth import CurrentUser, get_current_user
from docintake.core.dependencies import get_db, get_reference_store
from docintake.schemas.actions import ActionCard, CardDecisionRequest
from docintake.services.actions.lifecycle import approve_card, get_card, reject_card, to_action_card
from docintake.services.reference_store import SqlReferenceStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/action-cards/{card_id}", response_model=ActionCard)
async def get_action_card(
    card_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return to_action_card(get_card(db, card_id, company_id=current_user.company_id))


@router.post("/action-cards/{card_id}/approve", response_model=ActionCard)
async def approve_action_card(
    card_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: SqlReferenceStore = Depends(get_reference_store),
):
    try:
        card = approve_card(
            db,
            card_id,
            company_id=current_user.company_id,
            store=store,
            actor_id=current_user.id,
            security=current_user.security,
        )
    except Exception:
        # The card work sits in a rolled-back savepoint; what is left is the audit trail.
        db.commit()
        raise
    db.commit()
    return card


@router.post("/action-cards/{card_id}/reject", response_model=ActionCard)
async def reject_action_card(
    card_id: str,
    payload: Optional[CardDecisionRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    reject_card(
        db,
        card_id,
        company_id=current_user.company_id,
        actor_id=current_user.id,
        reason=payload.reason if payload else None,
    )
    db.commit()
    return to_action_card(get_card(db, card_id, company_id=current_user.company_id))
