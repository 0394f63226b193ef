"""AI provider factory, scope router, JSON recovery and the intent/reply services."""

import os
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from docintake.core.config import get_settings
from docintake.models.records import AuditLog
from docintake.services.ai.common.json_tools import coerce_confidence, coerce_number, extract_json, extract_json_object
from docintake.services.ai.common.providers import BaseProvider, ImageInput, MockProvider, ProviderResult, get_provider
from docintake.services.ai.common.providers.openai import OpenAIProvider
from docintake.services.ai.common.router import ResolvedConfig, resolve
from docintake.services.ai.intent.service import parse_intent
from docintake.services.ai.response.service import build_prompt, generate_reply


class _ScriptedProvider(BaseProvider):
    name = "scripted"

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = 0

    async def generate(self, prompt, **kwargs):
        self.calls += 1
        answer = self.answers.pop(0) if self.answers else ""
        if isinstance(answer, Exception):
            raise answer
        return ProviderResult(raw_text=answer, model="scripted-1", provider=self.name)


def _config(provider, timeout=1.0):
    return ResolvedConfig(provider=provider, model="scripted-1", temperature=0.0, max_tokens=256, timeout_seconds=timeout)


def _env(**values):
    get_settings.cache_clear()
    return patch.dict(os.environ, {key.upper(): value for key, value in values.items()})


# ── json tools ───────────────────────────────────────────────────────


def test_extract_json_variants():
    assert extract_json('{"a": 1}') == {"a": 1}
    assert extract_json('```json\n{"a": 2}\n```') == {"a": 2}
    assert extract_json('Sure! Here it is: {"a": {"b": "}"}} hope that helps') == {"a": {"b": "}"}}
    assert extract_json("[1, 2]") == [1, 2]
    assert extract_json("no json here") is None
    assert extract_json_object("[1, 2]") is None


@pytest.mark.parametrize(
    "value, expected",
    [("$1,234.50", 1234.5), (12, 12.0), ("n/a", None), (None, None), (True, None)],
)
def test_coerce_number(value, expected):
    assert coerce_number(value) == expected


def test_coerce_confidence_accepts_percentages():
    assert coerce_confidence("85", 0.5) == pytest.approx(0.85)
    assert coerce_confidence(None, 0.5) == pytest.approx(0.5)
    assert coerce_confidence(-3, 0.5) == 0.0


# ── provider factory and router ──────────────────────────────────────


def test_provider_outside_allowlist_falls_back_to_mock():
    with _env(ai_allowed_providers="mock", openai_api_key="sk-test"):
        assert isinstance(get_provider("openai"), MockProvider)


def test_provider_without_key_falls_back_to_mock():
    with _env(ai_allowed_providers="openai,claude"):
        assert isinstance(get_provider("openai"), MockProvider)
        assert isinstance(get_provider("claude"), MockProvider)
        assert isinstance(get_provider("bogus"), MockProvider)


def test_configured_provider_is_returned():
    with _env(ai_allowed_providers="openai", openai_api_key="sk-test"):
        assert isinstance(get_provider("OpenAI"), OpenAIProvider)


def test_router_ignores_overrides_unless_enabled():
    with _env(ai_allowed_providers="openai", openai_api_key="sk-test"):
        config = resolve("intent", override_provider="openai", override_model="gpt-4o")
    assert config.provider.name == "mock"
    assert config.model == ""

    with _env(ai_allowed_providers="openai", openai_api_key="sk-test", enable_ai_overrides="true"):
        config = resolve("intent", override_provider="openai", override_model="gpt-4o")
    assert config.provider.name == "openai"
    assert config.model == "gpt-4o"


def test_router_enforces_model_allowlist():
    with _env(
        ai_allowed_providers="openai",
        openai_api_key="sk-test",
        ai_allowed_models='{"openai": ["gpt-4o-mini"]}',
        ai_response_provider="openai",
        ai_response_model="gpt-4-turbo",
    ):
        config = resolve("response")
    assert config.model == "gpt-4o-mini"
    assert config.timeout_seconds == pytest.approx(6.0)


def test_extraction_scope_uses_vision_model():
    with _env(ai_allowed_providers="openai", openai_api_key="sk-test", extraction_vision_model="gpt-4o"):
        config = resolve("extraction")
    assert config.provider.supports_images
    assert config.model == "gpt-4o"


@pytest.mark.asyncio
async def test_openai_provider_sends_images_as_data_urls():
    response = httpx.Response(
        200,
        json={"choices": [{"message": {"content": "ok"}}], "usage": {"prompt_tokens": 7, "completion_tokens": 1}},
        request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"),
    )
    with patch("httpx.AsyncClient.post", new=AsyncMock(return_value=response)) as post:
        result = await OpenAIProvider(api_key="sk-test").generate(
            "read this", system_prompt="be brief", images=[ImageInput(mime_type="image/png", data_base64="AAAA")]
        )

    body = post.call_args.kwargs["json"]
    assert body["model"] == "gpt-4o"
    assert body["messages"][0] == {"role": "system", "content": "be brief"}
    assert body["messages"][1]["content"][1]["image_url"]["url"] == "data:image/png;base64,AAAA"
    assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer sk-test"
    assert result.raw_text == "ok"
    assert result.prompt_tokens == 7


# ── intent service ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_mock_intent_is_parsed_and_audited(db):
    result = await parse_intent("hello", db, actor_id="user-1")
    db.commit()

    assert result.intent_result.intent == "get_help"
    assert result.intent_result.confidence == pytest.approx(0.5)
    assert result.attempts == 1
    log = db.query(AuditLog).filter(AuditLog.action == "AI_INTENT_CLASSIFIED").one()
    assert "prompt_raw" not in log.audit_meta
    assert len(log.audit_meta["prompt_hash"]) == 64


@pytest.mark.asyncio
async def test_invalid_answer_is_retried(db):
    provider = _ScriptedProvider('{"intent": "teleport", "confidence": 0.9}', '{"intent": "find_vendor", "confidence": 0.8}')
    with patch("docintake.services.ai.intent.service.ai_router.resolve", return_value=_config(provider)):
        result = await parse_intent("find staples", db)

    assert result.intent_result.intent == "find_vendor"
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_exhausted_attempts_return_fallback(db):
    provider = _ScriptedProvider(RuntimeError("down"), "not json")
    with patch("docintake.services.ai.intent.service.ai_router.resolve", return_value=_config(provider)):
        result = await parse_intent("hmm", db)
    db.commit()

    assert result.intent_result.fallback is True
    assert result.intent_result.intent == "get_help"
    assert provider.calls == 2
    log = db.query(AuditLog).filter(AuditLog.action == "AI_INTENT_CLASSIFIED").one()
    assert log.audit_meta["fallback"] is True


# ── reply service ────────────────────────────────────────────────────


def test_build_prompt_keeps_recent_history():
    history = [("user", f"message {i}") for i in range(8)]
    prompt = build_prompt("vendor_name: Staples", history)

    assert "message 2" not in prompt
    assert "user: message 7" in prompt
    assert prompt.endswith("Facts:\nvendor_name: Staples")


@pytest.mark.asyncio
async def test_reply_text_is_returned_and_audited(db):
    provider = _ScriptedProvider("  I found an expense from Staples.  ")
    with patch("docintake.services.ai.response.service.ai_router.resolve", return_value=_config(provider)):
        reply = await generate_reply("vendor_name: Staples", db)
    db.commit()

    assert reply == "I found an expense from Staples."
    assert db.query(AuditLog).filter(AuditLog.action == "AI_RESPONSE_GENERATED").count() == 1


@pytest.mark.asyncio
async def test_structured_or_failed_reply_means_template(db):
    assert await generate_reply("facts", db) is None

    provider = _ScriptedProvider(TimeoutError())
    with patch("docintake.services.ai.response.service.ai_router.resolve", return_value=_config(provider)):
        assert await generate_reply("facts", db) is None
