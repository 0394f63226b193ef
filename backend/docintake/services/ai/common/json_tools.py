"""JSON recovery from LLM responses: code-fence stripping plus brace balancing."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_NUMBER_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?")


def extract_json(text: str) -> dict | list | None:
    """Return the first valid JSON object or array found in *text*.

    Tries, in order: the whole text, the body of a fenced code block, then
    every ``{`` / ``[`` position with brace-balanced extraction.
    """
    if not text or not text.strip():
        return None

    stripped = text.strip()

    try:
        return json.loads(stripped)
    except ValueError:
        pass

    fence = _FENCE_RE.search(stripped)
    if fence:
        try:
            return json.loads(fence.group(1).strip())
        except ValueError:
            pass

    for i, ch in enumerate(stripped):
        if ch == "{":
            result = _extract_balanced(stripped, i, "{", "}")
        elif ch == "[":
            result = _extract_balanced(stripped, i, "[", "]")
        else:
            continue
        if result is not None:
            return result

    return None


def extract_json_object(text: str) -> dict | None:
    parsed = extract_json(text)
    return parsed if isinstance(parsed, dict) else None


def _extract_balanced(text: str, start: int, open_ch: str, close_ch: str) -> dict | list | None:
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]

        if escape:
            escape = False
            continue

        if ch == "\\":
            if in_string:
                escape = True
            continue

        if ch == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start : i + 1])
                except ValueError:
                    return None

    return None


def coerce_number(value: Any) -> float | None:
    """Best-effort float from model output such as ``"$1,234.50"`` or ``12``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMBER_RE.search(str(value))
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def coerce_confidence(value: Any, default: float) -> float:
    number = coerce_number(value)
    if number is None:
        return default
    if number > 1.0:
        # Some models answer in percent.
        number = number / 100.0
    return max(0.0, min(1.0, number))
