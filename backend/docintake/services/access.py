"""Capability checks shared by card execution and suggestion review."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from docintake.core.auth import SecurityContext
from docintake.core.errors import PermissionDenied
from docintake.services.audit_log import create_audit_log

logger = logging.getLogger(__name__)


def ensure_capability(
    db: Session,
    security: Optional[SecurityContext],
    capability: str,
    *,
    entity_type: str,
    entity_id: Optional[str],
    actor_id: Optional[str] = None,
) -> None:
    """Raise ``PermissionDenied`` (and audit it) unless *security* grants *capability*.

    ``None`` means a trusted internal caller and is allowed.
    """
    if security is None or security.can(capability):
        return
    logger.warning("Permission denied: actor=%s capability=%s %s=%s", actor_id, capability, entity_type, entity_id)
    create_audit_log(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        action="PERMISSION_DENIED",
        new_value={"capability": str(capability)},
        actor_id=actor_id,
    )
    raise PermissionDenied(str(capability))
