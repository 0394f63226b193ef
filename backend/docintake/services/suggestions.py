"""Suggestion queue: deduplicated proposals for new vendors and categories."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Optional

from sqlalchemy import func, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from docintake.core.auth import Capability, SecurityContext
from docintake.core.errors import EntityNotFound, InputError, StateTransitionError, SuggestionConflict
from docintake.models.records import SuggestedEntity
from docintake.schemas.documents import EntityKind
from docintake.schemas.suggestions import SuggestedEntityOut, SuggestionStats, SuggestionStatus, TopSuggestion
from docintake.services.access import ensure_capability
from docintake.services.audit_log import create_audit_log
from docintake.services.reference_store import ReferenceDataStore
from docintake.services.resolution.normalize import normalize_name, normalize_vendor_name, similarity
from docintake.utils.clock import db_now

logger = logging.getLogger(__name__)

CREATE_CAPABILITY = {
    EntityKind.VENDOR: Capability.CREATE_VENDOR,
    EntityKind.CATEGORY: Capability.CREATE_CATEGORY,
}

VENDOR_OVERRIDE_FIELDS = ("email", "phone", "website", "address", "tax_id", "description")


def normalize_for_kind(kind: EntityKind | str, name: str) -> str:
    if EntityKind(kind) == EntityKind.VENDOR:
        return normalize_vendor_name(name)
    return normalize_name(name)


def dedupe_key(company_id: str, kind: EntityKind | str, normalized_name: str) -> str:
    return f"{company_id}:{EntityKind(kind).value}:{normalized_name}"


def _dialect_name(db: Session) -> str:
    dialect = getattr(getattr(db, "bind", None), "dialect", None)
    return getattr(dialect, "name", "") or ""


def propose_suggestion(
    db: Session,
    *,
    company_id: str,
    kind: EntityKind | str,
    name: str,
    confidence: float,
    context: Optional[dict[str, Any]] = None,
    enrichment: Optional[dict[str, Any]] = None,
    created_by: Optional[str] = None,
) -> str:
    """Create a pending suggestion or bump the open one with the same normalized name.

    The insert-or-increment is one ``ON CONFLICT`` statement on the unique
    ``dedupe_key`` so concurrent proposals cannot create two rows.
    """
    kind = EntityKind(kind)
    normalized = normalize_for_kind(kind, name)
    if not normalized:
        raise InputError("Suggestion name is empty after normalization")

    key = dedupe_key(company_id, kind, normalized)
    now = db_now(db)
    values = {
        "company_id": company_id,
        "entity_kind": kind.value,
        "suggested_name": name.strip(),
        "normalized_name": normalized,
        "dedupe_key": key,
        "confidence": float(confidence),
        "usage_count": 1,
        "status": SuggestionStatus.PENDING.value,
        "context": context,
        "enrichment": enrichment,
        "created_by": created_by,
        "first_suggested_at": now,
        "last_suggested_at": now,
    }
    # Leave JSON columns SQL NULL so the upsert can COALESCE them.
    for column in ("context", "enrichment"):
        if values[column] is None:
            values.pop(column)

    table = SuggestedEntity.__table__
    dialect_name = _dialect_name(db)

    if dialect_name in ("postgresql", "sqlite"):
        if dialect_name == "postgresql":
            stmt = pg_insert(table).values(**values)
            higher = func.greatest(table.c.confidence, stmt.excluded.confidence)
        else:
            stmt = sqlite_insert(table).values(**values)
            higher = func.max(table.c.confidence, stmt.excluded.confidence)
        stmt = stmt.on_conflict_do_update(
            index_elements=["dedupe_key"],
            set_={
                "usage_count": table.c.usage_count + 1,
                "last_suggested_at": stmt.excluded.last_suggested_at,
                "confidence": higher,
                "enrichment": func.coalesce(stmt.excluded.enrichment, table.c.enrichment),
            },
        )
        db.execute(stmt)
    else:
        # Fallback: check then insert (may still race).
        existing = db.execute(select(SuggestedEntity).where(SuggestedEntity.dedupe_key == key)).scalar_one_or_none()
        if existing is None:
            db.execute(insert(table).values(**values))
        else:
            existing.usage_count += 1
            existing.last_suggested_at = now
            existing.confidence = max(existing.confidence, float(confidence))
            if enrichment:
                existing.enrichment = enrichment

    row_id, usage_count = db.execute(
        select(SuggestedEntity.id, SuggestedEntity.usage_count).where(SuggestedEntity.dedupe_key == key)
    ).one()
    suggestion_id = str(row_id)

    create_audit_log(
        db,
        entity_type="suggested_entity",
        entity_id=suggestion_id,
        action="SUGGESTION_PROPOSED",
        new_value={"name": values["suggested_name"], "kind": kind.value, "usage_count": usage_count},
        actor_id=created_by,
        company_id=company_id,
    )
    logger.info("Suggestion %s (%s) usage_count=%d", suggestion_id, kind.value, usage_count)
    return suggestion_id


def get_suggestion(db: Session, suggestion_id: str, *, company_id: str) -> SuggestedEntity:
    row = (
        db.query(SuggestedEntity)
        .filter(SuggestedEntity.id == suggestion_id, SuggestedEntity.company_id == company_id)
        .populate_existing()
        .one_or_none()
    )
    if row is None:
        raise EntityNotFound("suggestion", suggestion_id)
    return row


def _claim(db: Session, row: SuggestedEntity, target: SuggestionStatus, reviewer_id: Optional[str], **updates: Any) -> None:
    """Compare-and-set pending -> *target*; raise if another reviewer got there first."""
    result = (
        db.query(SuggestedEntity)
        .filter(SuggestedEntity.id == row.id, SuggestedEntity.status == SuggestionStatus.PENDING.value)
        .update(
            {
                SuggestedEntity.status: target.value,
                SuggestedEntity.dedupe_key: None,
                SuggestedEntity.reviewed_by: reviewer_id,
                SuggestedEntity.reviewed_at: db_now(db),
                **{getattr(SuggestedEntity, key): value for key, value in updates.items()},
            },
            synchronize_session=False,
        )
    )
    if result:
        return
    db.refresh(row)
    if row.status in (SuggestionStatus.APPROVED.value, SuggestionStatus.MERGED.value):
        raise SuggestionConflict(str(row.id), str(row.created_entity_id) if row.created_entity_id else None)
    raise StateTransitionError("suggestion", row.status, target.value)


def _create_entity(
    store: ReferenceDataStore,
    row: SuggestedEntity,
    overrides: dict[str, Any],
) -> str:
    name = (overrides.get("name") or row.suggested_name).strip()
    context = row.context or {}
    if row.entity_kind == EntityKind.VENDOR.value:
        details = dict(row.enrichment or {})
        details.update({key: overrides[key] for key in VENDOR_OVERRIDE_FIELDS if key in overrides})
        return store.create_vendor(row.company_id, name, **{key: details.get(key) for key in VENDOR_OVERRIDE_FIELDS})
    return store.create_category(
        row.company_id,
        name,
        description=overrides.get("description") or context.get("description"),
        gl_account=overrides.get("gl_account") or context.get("gl_account"),
    )


def approve_suggestion(
    db: Session,
    suggestion_id: str,
    reviewer_id: Optional[str],
    *,
    company_id: str,
    store: ReferenceDataStore,
    overrides: Optional[dict[str, Any]] = None,
    security: Optional[SecurityContext] = None,
) -> str:
    """Approve and create the real reference entity; returns its id.

    Idempotent: a suggestion that is already approved (or merged) returns
    the entity created the first time.  A rejected one cannot be approved.
    """
    row = get_suggestion(db, suggestion_id, company_id=company_id)
    ensure_capability(
        db,
        security,
        CREATE_CAPABILITY[EntityKind(row.entity_kind)],
        entity_type="suggested_entity",
        entity_id=suggestion_id,
        actor_id=reviewer_id,
    )

    try:
        _claim(db, row, SuggestionStatus.APPROVED, reviewer_id)
    except SuggestionConflict as conflict:
        logger.info("Suggestion %s already approved - returning entity %s", suggestion_id, conflict.entity_id)
        return conflict.entity_id or ""

    entity_id = _create_entity(store, row, overrides or {})
    db.query(SuggestedEntity).filter(SuggestedEntity.id == row.id).update(
        {SuggestedEntity.created_entity_id: entity_id},
        synchronize_session=False,
    )
    create_audit_log(
        db,
        entity_type="suggested_entity",
        entity_id=suggestion_id,
        action="SUGGESTION_APPROVED",
        old_value={"status": SuggestionStatus.PENDING.value},
        new_value={"status": SuggestionStatus.APPROVED.value, "created_entity_id": entity_id},
        actor_id=reviewer_id,
        company_id=company_id,
        metadata={"overrides": sorted((overrides or {}).keys())},
    )
    return entity_id


def reject_suggestion(
    db: Session,
    suggestion_id: str,
    reviewer_id: Optional[str],
    *,
    company_id: str,
    notes: Optional[str] = None,
) -> bool:
    """Reject a pending suggestion.  Returns False when it was already rejected."""
    row = get_suggestion(db, suggestion_id, company_id=company_id)
    if row.status == SuggestionStatus.REJECTED.value:
        return False
    try:
        _claim(db, row, SuggestionStatus.REJECTED, reviewer_id, review_notes=notes)
    except SuggestionConflict:
        raise StateTransitionError("suggestion", row.status, SuggestionStatus.REJECTED.value) from None

    create_audit_log(
        db,
        entity_type="suggested_entity",
        entity_id=suggestion_id,
        action="SUGGESTION_REJECTED",
        old_value={"status": SuggestionStatus.PENDING.value},
        new_value={"status": SuggestionStatus.REJECTED.value},
        actor_id=reviewer_id,
        company_id=company_id,
        metadata={"notes": notes} if notes else None,
    )
    return True


def merge_suggestions(
    db: Session,
    primary_id: str,
    merged_ids: Sequence[str],
    reviewer_id: Optional[str],
    *,
    company_id: str,
    store: ReferenceDataStore,
    overrides: Optional[dict[str, Any]] = None,
    security: Optional[SecurityContext] = None,
) -> str:
    """Approve *primary_id* and fold *merged_ids* into it.

    Merged rows end ``merged`` with ``created_entity_id`` pointing at the
    primary's entity.  Every row is checked before anything changes.
    """
    primary = get_suggestion(db, primary_id, company_id=company_id)
    others: list[SuggestedEntity] = []
    for merged_id in dict.fromkeys(merged_ids):
        if merged_id == primary_id:
            continue
        row = get_suggestion(db, merged_id, company_id=company_id)
        if row.entity_kind != primary.entity_kind:
            raise InputError("Cannot merge suggestions of different kinds")
        already_folded = row.status == SuggestionStatus.MERGED.value and str(row.merged_into_id) == str(primary.id)
        if row.status != SuggestionStatus.PENDING.value and not already_folded:
            raise StateTransitionError("suggestion", row.status, SuggestionStatus.MERGED.value)
        if not already_folded:
            others.append(row)

    entity_id = approve_suggestion(
        db,
        primary_id,
        reviewer_id,
        company_id=company_id,
        store=store,
        overrides=overrides,
        security=security,
    )

    for row in others:
        _claim(
            db,
            row,
            SuggestionStatus.MERGED,
            reviewer_id,
            merged_into_id=primary.id,
            created_entity_id=entity_id,
        )

    create_audit_log(
        db,
        entity_type="suggested_entity",
        entity_id=primary_id,
        action="SUGGESTION_MERGED",
        new_value={"created_entity_id": entity_id, "merged_ids": [str(row.id) for row in others]},
        actor_id=reviewer_id,
        company_id=company_id,
    )
    return entity_id


def get_pending_suggestions(
    db: Session,
    company_id: str,
    *,
    kind: Optional[EntityKind | str] = None,
    limit: int = 100,
) -> list[SuggestedEntity]:
    query = db.query(SuggestedEntity).filter(
        SuggestedEntity.company_id == company_id,
        SuggestedEntity.status == SuggestionStatus.PENDING.value,
    )
    if kind:
        query = query.filter(SuggestedEntity.entity_kind == EntityKind(kind).value)
    return (
        query.order_by(
            SuggestedEntity.usage_count.desc(),
            SuggestedEntity.last_suggested_at.desc(),
            SuggestedEntity.id.asc(),
        )
        .limit(limit)
        .all()
    )


def get_suggestion_stats(db: Session, company_id: str, *, top: int = 5) -> SuggestionStats:
    counts = dict(
        db.query(SuggestedEntity.status, func.count(SuggestedEntity.id))
        .filter(SuggestedEntity.company_id == company_id)
        .group_by(SuggestedEntity.status)
        .all()
    )
    top_rows = get_pending_suggestions(db, company_id, limit=top)
    return SuggestionStats(
        total=sum(counts.values()),
        pending=counts.get(SuggestionStatus.PENDING.value, 0),
        approved=counts.get(SuggestionStatus.APPROVED.value, 0),
        rejected=counts.get(SuggestionStatus.REJECTED.value, 0),
        merged=counts.get(SuggestionStatus.MERGED.value, 0),
        top_pending=[
            TopSuggestion(id=str(row.id), name=row.suggested_name, entity_kind=row.entity_kind, count=row.usage_count)
            for row in top_rows
        ],
    )


def find_similar_suggestions(
    db: Session,
    suggestion_id: str,
    *,
    company_id: str,
    threshold: float = 0.8,
) -> list[tuple[SuggestedEntity, float]]:
    """Pending siblings of the same kind whose normalized names are close (merge candidates)."""
    target = get_suggestion(db, suggestion_id, company_id=company_id)
    candidates = (
        db.query(SuggestedEntity)
        .filter(
            SuggestedEntity.company_id == company_id,
            SuggestedEntity.entity_kind == target.entity_kind,
            SuggestedEntity.status == SuggestionStatus.PENDING.value,
            SuggestedEntity.id != target.id,
        )
        .order_by(SuggestedEntity.first_suggested_at.asc(), SuggestedEntity.id.asc())
        .all()
    )
    scored = [(row, similarity(target.normalized_name, row.normalized_name)) for row in candidates]
    similar = [(row, score) for row, score in scored if score >= threshold]
    # Stable sort keeps first-suggested order among equal scores.
    similar.sort(key=lambda item: -item[1])
    return similar


def to_out(row: SuggestedEntity) -> SuggestedEntityOut:
    return SuggestedEntityOut(
        id=str(row.id),
        company_id=row.company_id,
        entity_kind=row.entity_kind,
        suggested_name=row.suggested_name,
        confidence=row.confidence,
        usage_count=row.usage_count,
        status=row.status,
        created_by=row.created_by,
        created_entity_id=str(row.created_entity_id) if row.created_entity_id else None,
        enrichment=row.enrichment,
        context=row.context,
        first_suggested_at=row.first_suggested_at,
        last_suggested_at=row.last_suggested_at,
    )
