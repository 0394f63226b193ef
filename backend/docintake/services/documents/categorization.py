"""Keyword categorization of expenses into a category and GL account."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CategoryRule:
    category: str
    subcategory: str
    keywords: tuple[str, ...]
    gl_account: str
    gl_name: str


CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule("Office Supplies", "Stationery", ("staples", "office depot", "amazon", "paper", "pen", "ink"), "6010", "Office Supplies"),
    CategoryRule(
        "Travel & Entertainment",
        "Meals",
        ("restaurant", "food", "starbucks", "subway", "mcdonald", "cafe", "tim hortons"),
        "6020",
        "Meals & Entertainment",
    ),
    CategoryRule(
        "Travel & Entertainment",
        "Transportation",
        ("uber", "lyft", "taxi", "airline", "hotel", "rental car", "gas", "shell", "exxon", "petro canada"),
        "6025",
        "Travel Expenses",
    ),
    CategoryRule(
        "Technology",
        "Software",
        ("microsoft", "msft", "azure", "adobe", "google", "saas", "software", "subscription"),
        "6030",
        "Software & Technology",
    ),
    CategoryRule(
        "Technology",
        "Hardware",
        ("computer", "laptop", "monitor", "keyboard", "mouse", "electronics"),
        "6035",
        "Computer Equipment",
    ),
    CategoryRule(
        "Professional Services",
        "Consulting",
        ("consulting", "advisor", "legal", "accounting", "professional"),
        "6040",
        "Professional Services",
    ),
    CategoryRule(
        "Marketing & Advertising",
        "Digital Marketing",
        ("facebook", "google ads", "linkedin", "marketing", "advertising"),
        "6050",
        "Marketing & Advertising",
    ),
    CategoryRule(
        "Utilities",
        "Communications",
        ("phone", "internet", "cellular", "verizon", "att", "comcast"),
        "6060",
        "Communications",
    ),
    CategoryRule("Utilities", "Power", ("electric", "power", "utility", "gas company", "energy"), "6065", "Utilities"),
    CategoryRule(
        "Maintenance & Repairs",
        "Facility",
        ("repair", "maintenance", "cleaning", "janitor", "facility"),
        "6070",
        "Repairs & Maintenance",
    ),
)

VENDOR_KEYWORD_CONFIDENCE = 0.8
DESCRIPTION_KEYWORD_CONFIDENCE = 0.7


@dataclass(frozen=True)
class CategorySuggestion:
    category: str
    subcategory: str
    gl_account: str
    gl_name: str
    confidence: float
    keyword: str


def _contains(text: str, keyword: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}\b", text) is not None


def categorize(vendor_name: Optional[str], description: Optional[str] = None) -> Optional[CategorySuggestion]:
    """Best rule for the vendor and description; vendor hits outrank description hits.

    Among equal confidence the earlier rule wins.
    """
    vendor_text = (vendor_name or "").lower()
    description_text = (description or "").lower()
    best: Optional[CategorySuggestion] = None

    for rule in CATEGORY_RULES:
        for keyword in rule.keywords:
            if vendor_text and _contains(vendor_text, keyword):
                confidence = VENDOR_KEYWORD_CONFIDENCE
            elif description_text and _contains(description_text, keyword):
                confidence = DESCRIPTION_KEYWORD_CONFIDENCE
            else:
                continue
            if best is None or confidence > best.confidence:
                best = CategorySuggestion(
                    category=rule.category,
                    subcategory=rule.subcategory,
                    gl_account=rule.gl_account,
                    gl_name=rule.gl_name,
                    confidence=confidence,
                    keyword=keyword,
                )
            break
    return best
