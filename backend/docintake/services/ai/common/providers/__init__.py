"""Provider factory. Anything that cannot be built degrades to ``MockProvider``."""

from __future__ import annotations

import importlib
import logging

from docintake.core.config import get_settings

from .base import BaseProvider, ImageInput, ProviderResult
from .mock import MockProvider

logger = logging.getLogger(__name__)

__all__ = ["get_provider", "BaseProvider", "ImageInput", "ProviderResult", "MockProvider"]

# name -> (module, class, settings attribute holding the API key)
_REMOTE_PROVIDERS: dict[str, tuple[str, str, str]] = {
    "claude": (".claude", "ClaudeProvider", "anthropic_api_key"),
    "openai": (".openai", "OpenAIProvider", "openai_api_key"),
}


def get_provider(provider_name: str) -> BaseProvider:
    """Return a provider for *provider_name*.

    Names outside ``AI_ALLOWED_PROVIDERS``, unknown names and providers
    without an API key all yield ``MockProvider`` and a warning.
    """
    settings = get_settings()
    name = provider_name.lower().strip()

    if name not in settings.ai_allowed_providers:
        logger.warning("Provider %r not in allowlist, using mock", name)
        return MockProvider()
    if name == "mock":
        return MockProvider()

    entry = _REMOTE_PROVIDERS.get(name)
    if entry is None:
        logger.warning("Unknown provider %r, using mock", name)
        return MockProvider()

    module_name, class_name, key_attr = entry
    api_key = getattr(settings, key_attr)
    if not api_key:
        logger.warning("%s not set, using mock instead of %r", key_attr.upper(), name)
        return MockProvider()

    # Lazy import keeps the remote clients out of mock-only deployments.
    provider_cls = getattr(importlib.import_module(module_name, __name__), class_name)
    return provider_cls(api_key=api_key)
