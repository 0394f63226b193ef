"""Audit entries for model calls, one action name per router scope."""

from __future__ import annotations

import hashlib
import uuid
from typing import Any

from sqlalchemy.orm import Session

from docintake.core.config import get_settings
from docintake.services.audit_log import create_audit_log

from .providers.base import ProviderResult

SCOPE_ACTIONS: dict[str, str] = {
    "intent": "AI_INTENT_CLASSIFIED",
    "response": "AI_RESPONSE_GENERATED",
    "extraction": "AI_DOCUMENT_EXTRACTED",
}
DEFAULT_ACTION = "AI_RUN"


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def run_metadata(scope: str, result: ProviderResult, prompt_text: str) -> dict[str, Any]:
    """Usage numbers plus hashes of both sides of the exchange.

    Raw prompt and answer text are added only with ``AI_DEBUG_STORE_RAW=true``.
    """
    meta: dict[str, Any] = {
        "scope": scope,
        "provider": result.provider,
        "model": result.model,
        "prompt_tokens": result.prompt_tokens,
        "completion_tokens": result.completion_tokens,
        "latency_ms": result.latency_ms,
        "prompt_hash": _sha256(prompt_text),
        "response_hash": _sha256(result.raw_text),
    }
    if get_settings().ai_debug_store_raw:
        meta.update(prompt_raw=prompt_text, response_raw=result.raw_text)
    return meta


def log_ai_run(
    db: Session,
    *,
    scope: str,
    provider_result: ProviderResult,
    prompt_text: str,
    parsed_output: dict[str, Any] | None,
    actor_id: str | None = None,
    entity_id: str | None = None,
    extra_meta: dict[str, Any] | None = None,
) -> None:
    metadata = {**run_metadata(scope, provider_result, prompt_text), **(extra_meta or {})}
    create_audit_log(
        db,
        entity_type="ai",
        entity_id=entity_id or str(uuid.uuid4()),
        action=SCOPE_ACTIONS.get(scope, DEFAULT_ACTION),
        new_value=parsed_output,
        actor_id=actor_id,
        actor_type="SYSTEM",
        metadata=metadata,
    )
