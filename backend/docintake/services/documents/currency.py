"""Currency and tax-jurisdiction inference.

Priority: explicit currency code or symbol, then tax-type keyword, then a
tax-rate band, then a known vendor chain, then the company default.  A bare
``$`` is ambiguous between several dollar currencies and is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

EXPLICIT_CONFIDENCE = 0.98
KEYWORD_CONFIDENCE = 0.9
US_KEYWORD_CONFIDENCE = 0.85
RATE_BAND_CONFIDENCE = 0.85
VENDOR_CHAIN_CONFIDENCE = 0.7
DEFAULT_CONFIDENCE = 0.5

EXPLICIT_PATTERNS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("CAD", (r"\$\s*cad\b", r"\bcad\s*\$", r"\bcad\b", r"\bc\$", r"canadian\s+dollars?")),
    ("USD", (r"\$\s*usd\b", r"\busd\b", r"\bus\$", r"u\.s\.\s*dollars?", r"american\s+dollars?")),
    ("GBP", (r"£", r"\bgbp\b", r"pounds?\s+sterling", r"\bsterling\b")),
    ("EUR", (r"€", r"\beur\b", r"\beuros?\b")),
    ("AUD", (r"\baud\b", r"\ba\$", r"australian\s+dollars?")),
    ("JPY", (r"¥", r"\bjpy\b")),
    ("INR", (r"₹", r"\binr\b")),
)


@dataclass(frozen=True)
class Jurisdiction:
    code: str
    currency: str
    confidence: float
    patterns: tuple[str, ...]


# Order matters: "harmonized sales tax" must resolve to Canada before "sales tax".
TAX_JURISDICTIONS: tuple[Jurisdiction, ...] = (
    Jurisdiction(
        "CA",
        "CAD",
        KEYWORD_CONFIDENCE,
        (
            r"\bhst\b",
            r"\bgst\b",
            r"\bpst\b",
            r"\bqst\b",
            r"\btps\b",
            r"\btvq\b",
            r"harmonized\s+sales\s+tax",
            r"goods\s+and\s+services\s+tax",
            r"provincial\s+sales\s+tax",
            r"quebec\s+sales\s+tax",
        ),
    ),
    Jurisdiction("UK", "GBP", KEYWORD_CONFIDENCE, (r"\bvat\b", r"value\s+added\s+tax")),
    Jurisdiction(
        "EU",
        "EUR",
        KEYWORD_CONFIDENCE,
        (r"\biva\b", r"\bmwst\b", r"mehrwertsteuer", r"\bbtw\b", r"\btva\b", r"taxe\s+sur\s+la\s+valeur\s+ajout"),
    ),
    Jurisdiction(
        "US",
        "USD",
        US_KEYWORD_CONFIDENCE,
        (r"sales\s+tax", r"state\s+tax", r"county\s+tax", r"city\s+tax", r"\bsales\s+tx\b"),
    ),
)


@dataclass(frozen=True)
class TaxBand:
    low: float
    high: float
    label: str
    currency: Optional[str]


# Percent of the pre-tax amount.  The US band is plausibility only.
TAX_RATE_BANDS: tuple[TaxBand, ...] = (
    TaxBand(12.5, 15.5, "Canadian HST", "CAD"),
    TaxBand(4.5, 5.5, "Canadian GST", "CAD"),
    TaxBand(19.5, 20.5, "UK VAT", "GBP"),
    TaxBand(18.0, 27.0, "EU VAT", "EUR"),
    TaxBand(2.9, 10.5, "US sales tax", None),
)

KNOWN_VENDOR_CHAINS: dict[str, str] = {
    "tim hortons": "CAD",
    "canadian tire": "CAD",
    "shoppers drug mart": "CAD",
    "loblaws": "CAD",
    "petro canada": "CAD",
    "sobeys": "CAD",
    "walgreens": "USD",
    "wawa": "USD",
    "publix": "USD",
    "kroger": "USD",
    "tesco": "GBP",
    "sainsbury": "GBP",
    "waitrose": "GBP",
}


@dataclass(frozen=True)
class CurrencyInference:
    currency: str
    confidence: float
    reason: str
    jurisdiction: Optional[str] = None
    explicit: bool = False
    defaulted: bool = False


def rate_band(rate_percent: Optional[float]) -> Optional[TaxBand]:
    if rate_percent is None or rate_percent <= 0:
        return None
    for band in TAX_RATE_BANDS:
        if band.low <= rate_percent <= band.high:
            return band
    return None


def effective_rate(tax: Optional[float], subtotal: Optional[float], total: Optional[float]) -> Optional[float]:
    """Tax as a percent of the pre-tax amount, from whichever amounts are known."""
    if tax is None or tax <= 0:
        return None
    base = subtotal
    if base is None and total is not None:
        base = total - tax
    if base is None or base <= 0:
        return None
    return round(tax / base * 100, 3)


def detect_explicit_currency(text: str) -> Optional[str]:
    lowered = (text or "").lower()
    for currency, patterns in EXPLICIT_PATTERNS:
        if any(re.search(pattern, lowered) for pattern in patterns):
            return currency
    return None


def detect_tax_jurisdiction(text: str) -> Optional[Jurisdiction]:
    lowered = (text or "").lower()
    for jurisdiction in TAX_JURISDICTIONS:
        if any(re.search(pattern, lowered) for pattern in jurisdiction.patterns):
            return jurisdiction
    return None


def infer_currency(
    text: str,
    *,
    tax_rate: Optional[float] = None,
    tax: Optional[float] = None,
    subtotal: Optional[float] = None,
    total: Optional[float] = None,
    vendor_name: Optional[str] = None,
    default_currency: str = "USD",
) -> CurrencyInference:
    explicit = detect_explicit_currency(text)
    if explicit:
        return CurrencyInference(explicit, EXPLICIT_CONFIDENCE, f"Explicit {explicit} currency on document", explicit=True)

    jurisdiction = detect_tax_jurisdiction(text)
    if jurisdiction is not None:
        return CurrencyInference(
            jurisdiction.currency,
            jurisdiction.confidence,
            f"{jurisdiction.code} tax type detected",
            jurisdiction=jurisdiction.code,
        )

    rate = tax_rate if tax_rate is not None else effective_rate(tax, subtotal, total)
    band = rate_band(rate)
    if band is not None and band.currency is not None:
        return CurrencyInference(band.currency, RATE_BAND_CONFIDENCE, f"{rate:.1f}% tax rate matches {band.label}")

    if vendor_name:
        lowered_vendor = vendor_name.lower()
        for chain, currency in KNOWN_VENDOR_CHAINS.items():
            if chain in lowered_vendor:
                return CurrencyInference(currency, VENDOR_CHAIN_CONFIDENCE, f"Known {currency} vendor chain")

    return CurrencyInference(default_currency.upper(), DEFAULT_CONFIDENCE, "Company default currency", defaulted=True)
