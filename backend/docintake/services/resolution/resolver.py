"""Entity resolver: exact -> fuzzy -> semantic -> new/web-enriched proposal."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Optional

from docintake.core.config import Settings
from docintake.schemas.documents import EntityKind, EntityMatch, MatchType

from .aliases import CATEGORY_SYNONYMS, VENDOR_ALIASES
from .enrichment import BaseEnricher, build_enrichers, enrich_vendor
from .matchers import (
    BaseMatcher,
    ExactMatcher,
    FuzzyMatcher,
    Normalizer,
    ReferenceEntity,
    SemanticMatcher,
)
from .normalize import display_name, normalize_name, normalize_vendor_name

logger = logging.getLogger(__name__)


class EntityResolver:
    """Runs an ordered list of matchers; the first one that answers wins.

    When none does, the candidate becomes a ``new`` proposal, or a
    ``web_enriched`` one when an enricher recognises the name.  Both always
    need approval; their confidence floors come from settings.
    """

    def __init__(
        self,
        kind: EntityKind,
        matchers: Sequence[BaseMatcher],
        *,
        normalizer: Normalizer,
        enrichers: Sequence[BaseEnricher] = (),
        new_confidence: float = 0.5,
        web_enriched_confidence: float = 0.7,
        enrichment_timeout_seconds: float = 5.0,
    ) -> None:
        self.kind = kind
        self.matchers = list(matchers)
        self.normalizer = normalizer
        self.enrichers = list(enrichers)
        self.new_confidence = new_confidence
        self.web_enriched_confidence = web_enriched_confidence
        self.enrichment_timeout_seconds = enrichment_timeout_seconds

    def match_existing(self, candidate: str, entities: Sequence[ReferenceEntity]) -> Optional[EntityMatch]:
        for matcher in self.matchers:
            result = matcher.match(candidate, entities)
            if result is not None:
                return result
        return None

    async def resolve(
        self,
        candidate_name: str,
        existing: Sequence[ReferenceEntity],
        company_id: str,
        context: Optional[dict[str, Any]] = None,
    ) -> EntityMatch:
        candidate = (candidate_name or "").strip()
        if candidate:
            found = self.match_existing(candidate, existing)
            if found is not None:
                logger.info(
                    "Resolved %s for company %s via %s (confidence %.2f)",
                    self.kind,
                    company_id,
                    found.match_type,
                    found.confidence,
                )
                return found

        enrichment = None
        if candidate and self.enrichers:
            enrichment = await enrich_vendor(
                candidate,
                self.enrichers,
                timeout_seconds=self.enrichment_timeout_seconds,
            )

        if enrichment is not None:
            confidence = max(self.web_enriched_confidence, min(enrichment.confidence, 1.0))
            return EntityMatch(
                entity_kind=self.kind,
                entity_id=None,
                entity_name=enrichment.name,
                confidence=confidence,
                match_type=MatchType.WEB_ENRICHED,
                reason=f'New {self.kind} "{enrichment.name}" enriched from {", ".join(enrichment.sources) or enrichment.provider}',
                needs_approval=True,
                candidate_name=candidate,
                enrichment=enrichment.model_dump(exclude_none=True),
            )

        name = display_name(candidate) if candidate else ""
        reason = f'New {self.kind} needed: "{name}"' if name else f"No {self.kind} name extracted"
        if context and context.get("category_hint") and self.kind == EntityKind.CATEGORY:
            reason += f' (suggested from {context["category_hint"]})'
        return EntityMatch(
            entity_kind=self.kind,
            entity_id=None,
            entity_name=name,
            confidence=self.new_confidence,
            match_type=MatchType.NEW,
            reason=reason,
            needs_approval=True,
            candidate_name=candidate,
        )


def _cascade(
    kind: EntityKind,
    normalizer: Normalizer,
    table: dict[str, tuple[str, ...]],
    settings: Settings,
) -> list[BaseMatcher]:
    return [
        ExactMatcher(kind, normalizer, confidence=settings.exact_match_confidence),
        FuzzyMatcher(
            kind,
            normalizer,
            threshold=settings.fuzzy_match_threshold,
            auto_accept=settings.fuzzy_auto_accept_threshold,
        ),
        SemanticMatcher(
            kind,
            normalizer,
            table,
            confidence=settings.semantic_match_confidence,
            alias_similarity=settings.semantic_alias_similarity,
        ),
    ]


def build_vendor_resolver(settings: Settings, *, enrichers: Sequence[BaseEnricher] | None = None) -> EntityResolver:
    return EntityResolver(
        EntityKind.VENDOR,
        _cascade(EntityKind.VENDOR, normalize_vendor_name, VENDOR_ALIASES, settings),
        normalizer=normalize_vendor_name,
        enrichers=build_enrichers(settings) if enrichers is None else enrichers,
        new_confidence=settings.new_entity_confidence,
        web_enriched_confidence=settings.web_enriched_confidence,
        enrichment_timeout_seconds=settings.web_enrichment_timeout_seconds,
    )


def build_category_resolver(settings: Settings) -> EntityResolver:
    return EntityResolver(
        EntityKind.CATEGORY,
        _cascade(EntityKind.CATEGORY, normalize_name, CATEGORY_SYNONYMS, settings),
        normalizer=normalize_name,
        new_confidence=settings.new_entity_confidence,
        web_enriched_confidence=settings.web_enriched_confidence,
        enrichment_timeout_seconds=settings.web_enrichment_timeout_seconds,
    )
