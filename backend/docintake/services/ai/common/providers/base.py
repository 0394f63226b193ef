"""Provider contract plus the shared HTTP round trip of the remote providers."""

from __future__ import annotations

import abc
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx


@dataclass(frozen=True)
class ProviderResult:
    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


@dataclass(frozen=True)
class ImageInput:
    """Base64 image attached to a prompt (vision extraction)."""

    mime_type: str
    data_base64: str


class BaseProvider(abc.ABC):
    name: str = "base"
    supports_images: bool = False

    @abc.abstractmethod
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
        """Send *prompt* (plus optional *images*) and return a ``ProviderResult``."""


class HTTPProvider(BaseProvider):
    """One JSON POST per call; subclasses shape the body and read the answer.

    HTTP and transport errors propagate so callers can retry or fall back.
    """

    endpoint: str = ""
    supports_images = True

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    @abc.abstractmethod
    def default_model(self, has_images: bool) -> str: ...

    @abc.abstractmethod
    def headers(self) -> dict[str, str]: ...

    @abc.abstractmethod
    def build_body(
        self,
        prompt: str,
        system_prompt: str | None,
        images: Sequence[ImageInput],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]: ...

    @abc.abstractmethod
    def read_answer(self, data: dict[str, Any]) -> tuple[str, int, int]:
        """Return (text, prompt_tokens, completion_tokens) from a decoded response."""

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
        model = model or self.default_model(bool(images))
        body = self.build_body(prompt, system_prompt, images, model, temperature, max_tokens)
        started = time.monotonic()

        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(self.endpoint, headers=self.headers(), json=body)
            resp.raise_for_status()
            data = resp.json()

        text, prompt_tokens, completion_tokens = self.read_answer(data)
        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=round((time.monotonic() - started) * 1000, 2),
        )
