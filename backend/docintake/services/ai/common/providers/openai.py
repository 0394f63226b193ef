"""OpenAI chat completions (text and vision)."""

from __future__ import annotations

from typing import Any

from .base import HTTPProvider, ImageInput


def _image_part(image: ImageInput) -> dict[str, Any]:
    return {
        "type": "image_url",
        "image_url": {"url": f"data:{image.mime_type};base64,{image.data_base64}", "detail": "high"},
    }


class OpenAIProvider(HTTPProvider):
    name = "openai"
    endpoint = "https://api.openai.com/v1/chat/completions"

    def default_model(self, has_images: bool) -> str:
        return "gpt-4o" if has_images else "gpt-4o-mini"

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}

    def build_body(self, prompt, system_prompt, images, model, temperature, max_tokens):
        user_content: str | list[dict[str, Any]] = prompt
        if images:
            user_content = [{"type": "text", "text": prompt}, *(_image_part(image) for image in images)]

        messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
        messages.append({"role": "user", "content": user_content})
        return {"model": model, "max_tokens": max_tokens, "temperature": temperature, "messages": messages}

    def read_answer(self, data):
        usage = data.get("usage") or {}
        text = data["choices"][0]["message"]["content"] or ""
        return text, usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0)
