"""Output guardrails applied to every generated reply."""

import re

REDACTED_KEY = "[REDACTED_KEY]"
REDACTED_EMAIL = "[REDACTED_EMAIL]"
REDACTED_CARD = "[REDACTED_CARD]"

_API_KEY_PATTERNS = (
    re.compile(r"\bsk-(?:ant-|proj-)?[A-Za-z0-9_\-]{16,}"),
    re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b"),
    re.compile(r"\bAIza[0-9A-Za-z_\-]{35}\b"),
    re.compile(r"\b(?:ghp|gho|ghs|github_pat)_[A-Za-z0-9_]{20,}"),
    re.compile(r"\bxox[abprs]-[A-Za-z0-9\-]{10,}"),
    re.compile(r"\b(?:sk|pk|rk)_(?:live|test)_[A-Za-z0-9]{16,}"),
    re.compile(r"(?i)\bbearer\s+[A-Za-z0-9_\-\.=]{20,}"),
)
_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}")
# 13-19 digits, optionally grouped by single spaces or dashes.
_CARD_RE = re.compile(r"(?<![\d\-])\d(?:[ \-]?\d){12,18}(?![\d\-])")


def redact(text: str) -> str:
    if not text:
        return text
    for pattern in _API_KEY_PATTERNS:
        text = pattern.sub(REDACTED_KEY, text)
    text = _EMAIL_RE.sub(REDACTED_EMAIL, text)
    return _CARD_RE.sub(REDACTED_CARD, text)
