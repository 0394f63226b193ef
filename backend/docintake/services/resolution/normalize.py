"""Name normalization and similarity shared by every matcher."""

from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

LEGAL_SUFFIXES = (
    "incorporated",
    "corporation",
    "limited",
    "company",
    "corp",
    "inc",
    "llc",
    "llp",
    "ltd",
    "plc",
    "gmbh",
    "lp",
    "co",
)

_NON_ALNUM_RE = re.compile(r"[^\w\s]+|_+")
_SPACE_RE = re.compile(r"\s+")
_SUFFIX_RE = re.compile(r"(?:\s+(?:" + "|".join(LEGAL_SUFFIXES) + r"))+$")


def normalize_name(value: str | None, *, strip_legal_suffixes: bool = False) -> str:
    """Lowercase, trim, ``&`` -> ``and``, drop punctuation, collapse whitespace.

    With *strip_legal_suffixes* trailing company forms (``LLC``, ``Inc.``,
    ``Corp``...) are removed as well, unless nothing else would remain.
    """
    if not value:
        return ""
    text = value.lower().strip().replace("&", " and ")
    # Keep "amazon.com" as "amazon com" rather than "amazoncom".
    text = text.replace(".", " ").replace(",", " ").replace("-", " ")
    text = _NON_ALNUM_RE.sub("", text)
    text = _SPACE_RE.sub(" ", text).strip()
    if strip_legal_suffixes:
        stripped = _SUFFIX_RE.sub("", text).strip()
        if stripped:
            text = stripped
    return text


def normalize_vendor_name(value: str | None) -> str:
    return normalize_name(value, strip_legal_suffixes=True)


def similarity(left: str, right: str) -> float:
    """``1 - distance / max_len`` over already-normalized strings, 6 decimals."""
    if not left or not right:
        return 0.0
    return round(Levenshtein.normalized_similarity(left, right), 6)


def display_name(value: str) -> str:
    """Tidy a raw extracted name for presentation as a new entity."""
    text = _SPACE_RE.sub(" ", (value or "").strip())
    if text and (text.isupper() or text.islower()):
        return " ".join(word[:1].upper() + word[1:].lower() for word in text.split(" "))
    return text
