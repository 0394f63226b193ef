"""Intent classification through the AI router, retried within a time budget."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from sqlalchemy.orm import Session

from docintake.core.config import get_settings

from ..common import router as ai_router
from ..common.audit import log_ai_run
from ..common.json_tools import extract_json_object
from ..common.providers.base import ProviderResult
from ..common.router import ResolvedConfig
from .contracts import VALID_INTENTS, AIIntentResult

logger = logging.getLogger(__name__)

INTENT_SYSTEM_PROMPT = (
    "You classify messages sent to a bookkeeping assistant that turns receipts, invoices and "
    "business cards into expenses, vendors and contacts. "
    f"Classify the user's intent into one of: {', '.join(sorted(VALID_INTENTS))}. "
    "Return ONLY a JSON object with keys: intent, confidence (0.0-1.0), "
    "entities (list of {type, value} for amounts, dates, emails, phones, vendor names). "
    'Example: {"intent": "create_expense", "confidence": 0.85, '
    '"entities": [{"type": "amount", "value": "42.50"}]}'
)

# A retry is not started with less budget than this left.
MIN_RETRY_BUDGET_SECONDS = 0.5


@dataclass
class IntentServiceResult:
    intent_result: AIIntentResult
    provider_result: ProviderResult
    attempts: int
    total_latency_ms: float


async def _classify_once(config: ResolvedConfig, prompt: str) -> tuple[ProviderResult, AIIntentResult]:
    result = await config.provider.generate(
        prompt,
        system_prompt=INTENT_SYSTEM_PROMPT,
        model=config.model,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout_seconds=config.timeout_seconds,
    )
    parsed = extract_json_object(result.raw_text)
    if parsed is None:
        raise ValueError("no JSON object in model answer")
    # pydantic's ValidationError is a ValueError.
    return result, AIIntentResult.model_validate(parsed)


async def parse_intent(
    text: str,
    db: Session,
    *,
    context: str | None = None,
    override_provider: str | None = None,
    override_model: str | None = None,
    actor_id: str | None = None,
) -> IntentServiceResult:
    """Classify *text*.

    Up to ``AI_INTENT_MAX_RETRIES + 1`` calls are made while the
    ``AI_INTENT_BUDGET_SECONDS`` wall-clock budget lasts. If none yields a
    valid answer the result is ``get_help`` at confidence 0 with
    ``fallback=True``. Success and fallback are both audited.
    """
    settings = get_settings()
    config = ai_router.resolve("intent", override_provider=override_provider, override_model=override_model)
    prompt = f'Conversation context: {context or "none"}\nUser said: "{text}"'
    max_attempts = settings.ai_intent_max_retries + 1

    started = time.monotonic()
    attempts = 0
    last_result: ProviderResult | None = None
    last_error: Exception | None = None

    while attempts < max_attempts:
        remaining = settings.ai_intent_budget_seconds - (time.monotonic() - started)
        if attempts and remaining < MIN_RETRY_BUDGET_SECONDS:
            logger.info("Intent budget spent (%.2fs left), no more retries", remaining)
            break
        attempts += 1
        try:
            last_result, intent = await _classify_once(config, prompt)
        except ValueError as exc:
            logger.warning("Intent attempt %d gave an unusable answer: %s", attempts, exc)
            last_error = exc
            continue
        except Exception as exc:
            logger.warning("Intent attempt %d failed: %s", attempts, exc)
            last_error = exc
            continue

        log_ai_run(
            db,
            scope="intent",
            provider_result=last_result,
            prompt_text=prompt,
            parsed_output=intent.model_dump(),
            actor_id=actor_id,
            extra_meta={"attempts": attempts},
        )
        return IntentServiceResult(intent, last_result, attempts, _elapsed_ms(started))

    logger.warning("Intent classification gave up after %d attempts", attempts)
    provider_result = last_result or ProviderResult(raw_text="{}", model="fallback", provider="mock")
    fallback = AIIntentResult(intent="get_help", confidence=0.0, fallback=True)
    log_ai_run(
        db,
        scope="intent",
        provider_result=provider_result,
        prompt_text=prompt,
        parsed_output=fallback.model_dump(),
        actor_id=actor_id,
        extra_meta={"attempts": attempts, "fallback": True, "error": str(last_error or "unknown")},
    )
    return IntentServiceResult(fallback, provider_result, attempts, _elapsed_ms(started))


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)
