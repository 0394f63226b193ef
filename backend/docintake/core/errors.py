"""Domain error taxonomy.

Only ``InputError`` is meant to escape the document pipeline.  Everything else
is either converted into a degraded result by the stage that caught it or
mapped to an HTTP status by the exception handlers in ``docintake.main``.
"""

from __future__ import annotations

from typing import Any, Optional


class DocIntakeError(Exception):
    """Base class for all domain errors."""


class InputError(DocIntakeError):
    """Rejected before any pipeline stage runs (empty, oversize, unsupported type)."""

    def __init__(self, message: str, *, status_code: int = 400, code: str = "INVALID_INPUT") -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class ExtractionError(DocIntakeError):
    """Every configured extraction provider failed for a document."""

    def __init__(self, message: str, *, attempts: Optional[list[dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.attempts = attempts or []


class ValidationWarning(Warning):
    """Non-fatal finding attached to pipeline output; never raised."""

    def __init__(self, field: str, code: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.code = code
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "code": self.code, "message": self.message}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationWarning):
            return NotImplemented
        return (self.field, self.code, self.message) == (other.field, other.code, other.message)

    def __hash__(self) -> int:
        return hash((self.field, self.code, self.message))


class PermissionDenied(DocIntakeError):
    def __init__(self, capability: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Missing capability: {capability}")
        self.capability = capability


class SuggestionConflict(DocIntakeError):
    """A suggestion was already approved; carries the entity created the first time."""

    def __init__(self, suggestion_id: str, entity_id: Optional[str]) -> None:
        super().__init__(f"Suggestion {suggestion_id} already approved")
        self.suggestion_id = suggestion_id
        self.entity_id = entity_id


class StateTransitionError(DocIntakeError):
    def __init__(self, entity: str, current: str, requested: str) -> None:
        super().__init__(f"Illegal {entity} transition: {current} -> {requested}")
        self.entity = entity
        self.current = current
        self.requested = requested


class EntityNotFound(DocIntakeError):
    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id
