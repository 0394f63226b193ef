"""Match-cascade stages.

Each matcher is a strategy with one ``match`` method that either returns an
``EntityMatch`` or ``None`` so the resolver moves on to the next stage.
Candidates are compared by (similarity desc, position asc) which keeps the
outcome independent of anything but the order of the reference list.
"""

from __future__ import annotations

import abc
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional

from docintake.schemas.documents import EntityKind, EntityMatch, MatchType

from .normalize import similarity

SimilarityFn = Callable[[str, str], float]
Normalizer = Callable[[Optional[str]], str]


@dataclass(frozen=True)
class ReferenceEntity:
    """An existing category or vendor as seen by the resolver."""

    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    extra: Mapping[str, object] = field(default_factory=dict)


def best_candidate(scored: Sequence[tuple[float, int, ReferenceEntity]]) -> Optional[tuple[float, int, ReferenceEntity]]:
    if not scored:
        return None
    return min(scored, key=lambda item: (-item[0], item[1]))


class BaseMatcher(abc.ABC):
    match_type: MatchType

    def __init__(self, kind: EntityKind, normalizer: Normalizer) -> None:
        self.kind = kind
        self.normalizer = normalizer

    @abc.abstractmethod
    def match(self, candidate: str, entities: Sequence[ReferenceEntity]) -> Optional[EntityMatch]:
        ...


class ExactMatcher(BaseMatcher):
    match_type = MatchType.EXACT

    def __init__(self, kind: EntityKind, normalizer: Normalizer, *, confidence: float = 0.95) -> None:
        super().__init__(kind, normalizer)
        self.confidence = confidence

    def match(self, candidate: str, entities: Sequence[ReferenceEntity]) -> Optional[EntityMatch]:
        target = self.normalizer(candidate)
        if not target:
            return None
        for entity in entities:
            if self.normalizer(entity.name) == target:
                return EntityMatch(
                    entity_kind=self.kind,
                    entity_id=entity.id,
                    entity_name=entity.name,
                    confidence=self.confidence,
                    match_type=MatchType.EXACT,
                    reason=f'Exact match: "{entity.name}"',
                    needs_approval=False,
                    similarity=1.0,
                    candidate_name=candidate,
                )
        return None


class FuzzyMatcher(BaseMatcher):
    """Best edit-distance similarity at or above ``threshold``."""

    match_type = MatchType.FUZZY

    def __init__(
        self,
        kind: EntityKind,
        normalizer: Normalizer,
        *,
        threshold: float = 0.80,
        auto_accept: float = 0.90,
        similarity_fn: SimilarityFn = similarity,
    ) -> None:
        super().__init__(kind, normalizer)
        self.threshold = threshold
        self.auto_accept = auto_accept
        self.similarity_fn = similarity_fn

    def match(self, candidate: str, entities: Sequence[ReferenceEntity]) -> Optional[EntityMatch]:
        target = self.normalizer(candidate)
        if not target:
            return None
        scored = [
            (self.similarity_fn(target, self.normalizer(entity.name)), index, entity)
            for index, entity in enumerate(entities)
        ]
        best = best_candidate(scored)
        if best is None or best[0] < self.threshold:
            return None
        score, _index, entity = best
        return EntityMatch(
            entity_kind=self.kind,
            entity_id=entity.id,
            entity_name=entity.name,
            confidence=max(0.0, min(1.0, score)),
            match_type=MatchType.FUZZY,
            reason=f'Fuzzy match: "{candidate}" -> "{entity.name}" ({round(score * 100)}% similar)',
            needs_approval=score < self.auto_accept,
            similarity=score,
            candidate_name=candidate,
        )


class SemanticMatcher(BaseMatcher):
    """Alias/synonym table lookup; always requires approval."""

    match_type = MatchType.SEMANTIC

    def __init__(
        self,
        kind: EntityKind,
        normalizer: Normalizer,
        table: Mapping[str, Sequence[str]],
        *,
        confidence: float = 0.85,
        alias_similarity: float = 0.8,
        similarity_fn: SimilarityFn = similarity,
    ) -> None:
        super().__init__(kind, normalizer)
        self.confidence = confidence
        self.alias_similarity = alias_similarity
        self.similarity_fn = similarity_fn
        # Canonical name first, then aliases, all pre-normalized.
        self.groups: list[tuple[str, tuple[str, ...]]] = [
            (canonical, tuple(dict.fromkeys(self.normalizer(term) for term in (canonical, *aliases))))
            for canonical, aliases in table.items()
        ]

    def _term_hit(self, target: str, term: str) -> bool:
        return target == term or self.similarity_fn(target, term) > self.alias_similarity

    def match(self, candidate: str, entities: Sequence[ReferenceEntity]) -> Optional[EntityMatch]:
        target = self.normalizer(candidate)
        if not target:
            return None

        # (score, position, entity, canonical): the winning group names the alias.
        scored: list[tuple[float, int, ReferenceEntity, str]] = []
        for canonical, terms in self.groups:
            if not any(self._term_hit(target, term) for term in terms):
                continue
            for index, entity in enumerate(entities):
                name = self.normalizer(entity.name)
                score = max(1.0 if name == term else self.similarity_fn(name, term) for term in terms)
                if score > self.alias_similarity or score == 1.0:
                    scored.append((score, index, entity, canonical))

        if not scored:
            return None
        score, _, entity, canonical = min(scored, key=lambda item: (-item[0], item[1]))
        return EntityMatch(
            entity_kind=self.kind,
            entity_id=entity.id,
            entity_name=entity.name,
            confidence=self.confidence,
            match_type=MatchType.SEMANTIC,
            reason=f'Semantic match: "{candidate}" is an alias of "{canonical}" -> "{entity.name}"',
            needs_approval=True,
            similarity=score,
            candidate_name=candidate,
        )
