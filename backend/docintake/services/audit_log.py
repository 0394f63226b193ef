"""Audit trail writer.

Every audited action goes through ``create_audit_log``: configured PII keys
are masked at any depth of the value/metadata payloads, the owning company is
folded into the metadata, and the action is counted by the alert tracker.
The row is only added to the session; committing stays with the caller.
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.orm import Session

from docintake.core.config import Settings, get_settings
from docintake.models.records import AuditLog
from docintake.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)

SYSTEM_ENTITY_ID = "00000000-0000-0000-0000-000000000000"
REDACTED = "[REDACTED]"

PII_REDACTION_FALLBACK_FIELDS = frozenset(
    {"phone", "email", "address", "tax_id", "card_number", "iban", "account_number"}
)


def _redaction_keys(settings: Settings) -> frozenset[str]:
    if not settings.pii_redaction_enabled:
        return frozenset()
    configured = frozenset(item.lower() for item in settings.pii_redaction_fields)
    return configured or PII_REDACTION_FALLBACK_FIELDS


def _mask(value: Any, keys: frozenset[str]) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if isinstance(key, str) and key.lower() in keys else _mask(item, keys)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_mask(item, keys) for item in value]
    return value


def _entity_uuid(entity_id: Optional[str]) -> str:
    # Documents and AI runs have no row of their own; non-UUID ids map to a stable uuid5.
    if not entity_id:
        return SYSTEM_ENTITY_ID
    try:
        return str(uuid.UUID(str(entity_id)))
    except ValueError:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, str(entity_id)))


def create_audit_log(
    db: Session,
    *,
    entity_type: str,
    entity_id: Optional[str],
    action: str,
    old_value: Optional[dict[str, Any]] = None,
    new_value: Optional[dict[str, Any]] = None,
    actor_id: Optional[str] = None,
    actor_type: Optional[str] = None,
    company_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> None:
    """Add one audit row; ``actor_type`` defaults to USER when an actor is known, else SYSTEM."""
    if company_id is not None:
        metadata = {"company_id": company_id, **(metadata or {})}

    keys = _redaction_keys(get_settings())
    if keys:
        old_value, new_value, metadata = (_mask(item, keys) for item in (old_value, new_value, metadata))

    db.add(
        AuditLog(
            entity_type=entity_type,
            entity_id=_entity_uuid(entity_id),
            action=action,
            old_value=old_value,
            new_value=new_value,
            actor_type=actor_type or ("USER" if actor_id else "SYSTEM"),
            actor_id=actor_id,
            audit_meta=metadata,
        )
    )
    try:
        alert_tracker.record(action, metadata)
    except Exception:
        logger.exception("Alert tracker failed for action=%s", action)
