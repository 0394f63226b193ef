"""Anthropic messages API (text and vision)."""

from __future__ import annotations

from typing import Any

from .base import HTTPProvider

ANTHROPIC_VERSION = "2023-06-01"


class ClaudeProvider(HTTPProvider):
    name = "claude"
    endpoint = "https://api.anthropic.com/v1/messages"

    def default_model(self, has_images: bool) -> str:
        return "claude-3-5-haiku-20241022"

    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def build_body(self, prompt, system_prompt, images, model, temperature, max_tokens):
        # Images go before the text block.
        content: list[dict[str, Any]] = [
            {"type": "image", "source": {"type": "base64", "media_type": image.mime_type, "data": image.data_base64}}
            for image in images
        ]
        content.append({"type": "text", "text": prompt})

        body: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if system_prompt:
            body["system"] = system_prompt
        return body

    def read_answer(self, data):
        blocks = data.get("content") or []
        text = "".join(block.get("text", "") for block in blocks if block.get("type") == "text")
        usage = data.get("usage") or {}
        return text, usage.get("input_tokens", 0), usage.get("output_tokens", 0)
