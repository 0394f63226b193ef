import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from docintake.core.auth import Capability, CurrentUser, get_current_user
from docintake.core.config import get_settings
from docintake.core.dependencies import get_db, get_reference_store
from docintake.core.errors import DocIntakeError
from docintake.schemas.documents import EntityKind
from docintake.schemas.suggestions import (
    ApproveSuggestionRequest,
    ApproveSuggestionResponse,
    MergeSuggestionsRequest,
    MergeSuggestionsResponse,
    RejectSuggestionRequest,
    RejectSuggestionResponse,
    SuggestedEntityOut,
    SuggestionListResponse,
    SuggestionStats,
)
from docintake.services.access import ensure_capability
from docintake.services.reference_store import SqlReferenceStore
from docintake.services.suggestions import (
    approve_suggestion,
    find_similar_suggestions,
    get_pending_suggestions,
    get_suggestion,
    get_suggestion_stats,
    merge_suggestions,
    reject_suggestion,
    to_out,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _ensure_review_enabled() -> None:
    if not get_settings().enable_suggestion_review:
        raise HTTPException(404, "Not found")


def _ensure_reviewer(db: Session, user: CurrentUser, entity_id: Optional[str] = None) -> None:
    try:
        ensure_capability(
            db,
            user.security,
            Capability.REVIEW_SUGGESTIONS,
            entity_type="suggested_entity",
            entity_id=entity_id,
            actor_id=user.id,
        )
    except DocIntakeError:
        db.commit()
        raise


@router.get("/suggestions", response_model=SuggestionListResponse)
async def list_pending_suggestions(
    kind: Optional[EntityKind] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_review_enabled()
    _ensure_reviewer(db, current_user)
    rows = get_pending_suggestions(db, current_user.company_id, kind=kind, limit=limit)
    return SuggestionListResponse(items=[to_out(row) for row in rows])


@router.get("/suggestions/stats", response_model=SuggestionStats)
async def suggestion_stats(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_review_enabled()
    _ensure_reviewer(db, current_user)
    return get_suggestion_stats(db, current_user.company_id)


@router.get("/suggestions/{suggestion_id}/similar", response_model=SuggestionListResponse)
async def similar_suggestions(
    suggestion_id: str,
    threshold: float = Query(0.8, ge=0.0, le=1.0),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_review_enabled()
    _ensure_reviewer(db, current_user, suggestion_id)
    similar = find_similar_suggestions(db, suggestion_id, company_id=current_user.company_id, threshold=threshold)
    return SuggestionListResponse(items=[to_out(row) for row, _score in similar])


@router.post("/suggestions/merge", response_model=MergeSuggestionsResponse)
async def merge(
    payload: MergeSuggestionsRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: SqlReferenceStore = Depends(get_reference_store),
):
    _ensure_review_enabled()
    _ensure_reviewer(db, current_user, payload.primary_id)
    try:
        entity_id = merge_suggestions(
            db,
            payload.primary_id,
            payload.merged_ids,
            current_user.id,
            company_id=current_user.company_id,
            store=store,
            overrides=payload.overrides,
            security=current_user.security,
        )
    except DocIntakeError:
        db.rollback()
        raise
    db.commit()
    return MergeSuggestionsResponse(primary_id=payload.primary_id, entity_id=entity_id, merged_ids=payload.merged_ids)


@router.post("/suggestions/{suggestion_id}/approve", response_model=ApproveSuggestionResponse)
async def approve(
    suggestion_id: str,
    payload: Optional[ApproveSuggestionRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: SqlReferenceStore = Depends(get_reference_store),
):
    _ensure_review_enabled()
    _ensure_reviewer(db, current_user, suggestion_id)
    try:
        entity_id = approve_suggestion(
            db,
            suggestion_id,
            current_user.id,
            company_id=current_user.company_id,
            store=store,
            overrides=payload.overrides if payload else None,
            security=current_user.security,
        )
    except DocIntakeError:
        # Nothing is claimed before these errors; keep the permission audit.
        db.commit()
        raise
    db.commit()
    return ApproveSuggestionResponse(suggestion_id=suggestion_id, entity_id=entity_id)


@router.post("/suggestions/{suggestion_id}/reject", response_model=RejectSuggestionResponse)
async def reject(
    suggestion_id: str,
    payload: Optional[RejectSuggestionRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_review_enabled()
    _ensure_reviewer(db, current_user, suggestion_id)
    rejected = reject_suggestion(
        db,
        suggestion_id,
        current_user.id,
        company_id=current_user.company_id,
        notes=payload.notes if payload else None,
    )
    db.commit()
    return RejectSuggestionResponse(suggestion_id=suggestion_id, rejected=rejected)


@router.get("/suggestions/{suggestion_id}", response_model=SuggestedEntityOut)
async def get_one(
    suggestion_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_review_enabled()
    _ensure_reviewer(db, current_user, suggestion_id)
    return to_out(get_suggestion(db, suggestion_id, company_id=current_user.company_id))
