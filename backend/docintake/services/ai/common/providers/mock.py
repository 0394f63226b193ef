"""Canned answers for tests and deployments without a configured model."""

from __future__ import annotations

from collections.abc import Sequence

from .base import BaseProvider, ImageInput, ProviderResult

DEFAULT_MOCK_RESPONSE = '{"intent": "get_help", "confidence": 0.5, "entities": []}'


class MockProvider(BaseProvider):
    name = "mock"

    def __init__(self, response_text: str = DEFAULT_MOCK_RESPONSE) -> None:
        self._response_text = response_text

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        images: Sequence[ImageInput] = (),
        model: str = "",
        temperature: float = 0.3,
        max_tokens: int = 1024,
        timeout_seconds: float = 8.0,
    ) -> ProviderResult:
        # Token counts are word counts; nothing is billed.
        return ProviderResult(
            raw_text=self._response_text,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=len(prompt.split()),
            completion_tokens=len(self._response_text.split()),
        )
