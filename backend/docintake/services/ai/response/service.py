"""Conversational reply generation through the AI router."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Optional

from sqlalchemy.orm import Session

from ..common import router as ai_router
from ..common.audit import log_ai_run
from ..common.json_tools import extract_json_object

logger = logging.getLogger(__name__)

RESPONSE_SYSTEM_PROMPT = (
    "You are a bookkeeping assistant that processes receipts, invoices and business cards into "
    "expenses, vendors and contacts. Be friendly and concise. Explain what was found, list the "
    "proposed actions, and ask for confirmation before anything is created. Never invent amounts, "
    "names or dates that are not in the facts you are given."
)

HISTORY_LIMIT = 5


def build_prompt(facts: str, history: Sequence[tuple[str, str]] = ()) -> str:
    lines = [f"{role}: {content}" for role, content in list(history)[-HISTORY_LIMIT:]]
    if lines:
        return "Recent conversation:\n" + "\n".join(lines) + f"\n\nFacts:\n{facts}"
    return f"Facts:\n{facts}"


async def generate_reply(
    facts: str,
    db: Session,
    *,
    history: Sequence[tuple[str, str]] = (),
    actor_id: Optional[str] = None,
) -> Optional[str]:
    """One bounded attempt; ``None`` tells the caller to use its template."""
    config = ai_router.resolve("response")
    prompt = build_prompt(facts, history)
    try:
        result = await asyncio.wait_for(
            config.provider.generate(
                prompt,
                system_prompt=RESPONSE_SYSTEM_PROMPT,
                model=config.model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout_seconds=config.timeout_seconds,
            ),
            timeout=config.timeout_seconds,
        )
    except Exception as exc:
        logger.warning("AI reply generation failed (%s) - using template", type(exc).__name__)
        return None

    text = result.raw_text.strip()
    log_ai_run(
        db,
        scope="response",
        provider_result=result,
        prompt_text=prompt,
        parsed_output={"length": len(text)},
        actor_id=actor_id,
    )
    if not text or extract_json_object(text) is not None:
        # Structured output (the mock provider answers with JSON) is not a reply.
        return None
    return text
