"""Company enrichment strategies used when a vendor has no match."""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from docintake.core.config import Settings

from .aliases import VENDOR_ALIASES
from .normalize import normalize_vendor_name, similarity

logger = logging.getLogger(__name__)

CLEARBIT_SUGGEST_URL = "https://autocomplete.clearbit.com/v1/companies/suggest"
CLEARBIT_MIN_SIMILARITY = 0.8
CLEARBIT_CONFIDENCE = 0.75


class EnrichmentResult(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address: Optional[dict[str, str]] = None
    tax_id: Optional[str] = None
    description: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)
    provider: str = ""


class BaseEnricher(abc.ABC):
    name: str = "base"

    @abc.abstractmethod
    async def enrich(self, vendor_name: str) -> Optional[EnrichmentResult]:
        """Return company details for *vendor_name* or ``None`` when unknown."""


COMPANY_DIRECTORY: dict[str, dict[str, Any]] = {
    "microsoft": {
        "name": "Microsoft Corporation",
        "email": "info@microsoft.com",
        "phone": "+1-425-882-8080",
        "website": "https://www.microsoft.com",
        "address": {
            "line1": "One Microsoft Way",
            "city": "Redmond",
            "state": "WA",
            "country": "United States",
            "postal_code": "98052",
        },
        "tax_id": "91-1144442",
        "description": "Software, cloud services and consumer electronics.",
        "confidence": 0.95,
        "sources": ["microsoft.com", "sec.gov"],
    },
    "google": {
        "name": "Google LLC",
        "email": "support@google.com",
        "website": "https://www.google.com",
        "address": {
            "line1": "1600 Amphitheatre Parkway",
            "city": "Mountain View",
            "state": "CA",
            "country": "United States",
            "postal_code": "94043",
        },
        "description": "Internet services, advertising and cloud computing.",
        "confidence": 0.93,
        "sources": ["google.com", "sec.gov"],
    },
    "amazon": {
        "name": "Amazon.com, Inc.",
        "website": "https://www.amazon.com",
        "address": {
            "line1": "410 Terry Avenue North",
            "city": "Seattle",
            "state": "WA",
            "country": "United States",
            "postal_code": "98109",
        },
        "description": "E-commerce, cloud computing and digital streaming.",
        "confidence": 0.91,
        "sources": ["amazon.com", "sec.gov"],
    },
    "apple": {
        "name": "Apple Inc.",
        "website": "https://www.apple.com",
        "address": {
            "line1": "One Apple Park Way",
            "city": "Cupertino",
            "state": "CA",
            "country": "United States",
            "postal_code": "95014",
        },
        "description": "Consumer electronics, software and services.",
        "confidence": 0.92,
        "sources": ["apple.com", "sec.gov"],
    },
    "adobe": {
        "name": "Adobe Inc.",
        "website": "https://www.adobe.com",
        "address": {
            "line1": "345 Park Avenue",
            "city": "San Jose",
            "state": "CA",
            "country": "United States",
            "postal_code": "95110",
        },
        "description": "Creative, document and marketing software.",
        "confidence": 0.9,
        "sources": ["adobe.com", "sec.gov"],
    },
    "salesforce": {
        "name": "Salesforce, Inc.",
        "website": "https://www.salesforce.com",
        "address": {
            "line1": "415 Mission Street",
            "city": "San Francisco",
            "state": "CA",
            "country": "United States",
            "postal_code": "94105",
        },
        "description": "Customer relationship management software.",
        "confidence": 0.9,
        "sources": ["salesforce.com", "sec.gov"],
    },
}


def _directory_key(vendor_name: str) -> Optional[str]:
    normalized = normalize_vendor_name(vendor_name)
    if normalized in COMPANY_DIRECTORY:
        return normalized
    for canonical, aliases in VENDOR_ALIASES.items():
        key = normalize_vendor_name(canonical)
        if key not in COMPANY_DIRECTORY:
            continue
        if any(normalize_vendor_name(alias) == normalized for alias in aliases):
            return key
    return None


class CompanyDirectoryEnricher(BaseEnricher):
    """Built-in directory of well-known vendors; needs no network."""

    name = "directory"

    async def enrich(self, vendor_name: str) -> Optional[EnrichmentResult]:
        key = _directory_key(vendor_name)
        if key is None:
            return None
        return EnrichmentResult(provider=self.name, **COMPANY_DIRECTORY[key])


class ClearbitEnricher(BaseEnricher):
    """Clearbit company autocomplete; keyless, name and domain only."""

    name = "clearbit"

    def __init__(self, *, timeout_seconds: float = 5.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._timeout = timeout_seconds
        self._transport = transport

    async def enrich(self, vendor_name: str) -> Optional[EnrichmentResult]:
        query = (vendor_name or "").strip()
        if not query:
            return None
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.get(CLEARBIT_SUGGEST_URL, params={"query": query})
            resp.raise_for_status()
            suggestions = resp.json()

        if not isinstance(suggestions, list):
            return None
        target = normalize_vendor_name(query)
        for item in suggestions:
            if not isinstance(item, dict) or not item.get("name"):
                continue
            if similarity(target, normalize_vendor_name(item["name"])) < CLEARBIT_MIN_SIMILARITY:
                continue
            domain = item.get("domain")
            return EnrichmentResult(
                name=item["name"],
                website=f"https://{domain}" if domain else None,
                confidence=CLEARBIT_CONFIDENCE,
                sources=[domain or "clearbit.com"],
                provider=self.name,
            )
        return None


async def enrich_vendor(
    vendor_name: str,
    enrichers: Sequence[BaseEnricher],
    *,
    timeout_seconds: float,
) -> Optional[EnrichmentResult]:
    """First enricher with a result wins; failures and timeouts fall through."""
    for enricher in enrichers:
        try:
            result = await asyncio.wait_for(enricher.enrich(vendor_name), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Enricher %s timed out after %.1fs", enricher.name, timeout_seconds)
            continue
        except Exception as exc:
            logger.warning("Enricher %s failed: %s", enricher.name, exc)
            continue
        if result is not None:
            return result
    return None


def build_enrichers(settings: Settings) -> list[BaseEnricher]:
    if not settings.enable_web_enrichment:
        return []
    enrichers: list[BaseEnricher] = []
    for name in settings.web_enrichment_providers:
        if name == "directory":
            enrichers.append(CompanyDirectoryEnricher())
        elif name == "clearbit":
            enrichers.append(ClearbitEnricher(timeout_seconds=settings.web_enrichment_timeout_seconds))
        else:
            logger.warning("Unknown enrichment provider %r - skipped", name)
    return enrichers
