"""Per-scope choice of provider, model and timeout."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from docintake.core.config import Settings, get_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedConfig:
    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


def _scope_defaults(scope: str, settings: Settings) -> tuple[str, str, float]:
    """(provider, model, timeout) configured for *scope*."""
    if scope == "intent":
        return settings.ai_intent_provider, settings.ai_intent_model, settings.ai_intent_timeout_seconds
    if scope == "response":
        return settings.ai_response_provider, settings.ai_response_model, settings.ai_response_timeout_seconds
    if scope == "extraction":
        # Vision extraction is pinned to OpenAI; the allowlist still applies.
        return "openai", settings.extraction_vision_model, settings.extraction_timeout_seconds
    logger.warning("Unknown AI scope %r, using global defaults", scope)
    return "", "", settings.ai_timeout_seconds


def _first(*candidates: str | None) -> str:
    return next((value.strip() for value in candidates if value and value.strip()), "")


def _allowed_model(provider_name: str, model: str, settings: Settings) -> str:
    allowed = settings.ai_allowed_models.get(provider_name)
    if not allowed or model in allowed:
        return model
    if model:
        logger.warning("Model %r not allowed for %r, using %r", model, provider_name, allowed[0])
    return allowed[0]


def resolve(
    scope: str,
    *,
    override_provider: str | None = None,
    override_model: str | None = None,
) -> ResolvedConfig:
    """Resolve the provider and model for *scope*.

    Request overrides win only with ``ENABLE_AI_OVERRIDES=true``; then the
    scope settings (``AI_INTENT_PROVIDER`` and friends); then ``mock``.
    """
    settings = get_settings()
    scope_provider, scope_model, timeout = _scope_defaults(scope, settings)
    if not settings.enable_ai_overrides:
        override_provider = override_model = None

    provider_name = _first(override_provider, scope_provider, "mock").lower()
    model = _allowed_model(provider_name, _first(override_model, scope_model), settings)

    return ResolvedConfig(
        provider=get_provider(provider_name),
        model=model,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
        timeout_seconds=timeout,
    )
