"""Entity resolution cascade: exact -> fuzzy -> semantic -> new / web-enriched."""

import asyncio
import random

import pytest

from docintake.schemas.documents import EntityKind, MatchType
from docintake.services.resolution.enrichment import BaseEnricher, CompanyDirectoryEnricher
from docintake.services.resolution.matchers import FuzzyMatcher, ReferenceEntity, SemanticMatcher
from docintake.services.resolution.normalize import display_name, normalize_name, normalize_vendor_name, similarity
from docintake.services.resolution.resolver import EntityResolver, build_category_resolver, build_vendor_resolver

from conftest import COMPANY_ID, make_settings


def _vendors(*names):
    return [ReferenceEntity(id=f"v{index}", name=name) for index, name in enumerate(names, start=1)]


def _fixed_similarity(value):
    return lambda _left, _right: value


class _FailingEnricher(BaseEnricher):
    name = "failing"

    async def enrich(self, vendor_name):
        raise RuntimeError("directory offline")


class _SlowEnricher(BaseEnricher):
    name = "slow"

    async def enrich(self, vendor_name):
        await asyncio.sleep(1)
        return None


# ── normalization ────────────────────────────────────────────────────


def test_normalize_name_drops_punctuation_and_ampersand():
    assert normalize_name("  Travel & Entertainment ") == "travel and entertainment"
    assert normalize_name("Office-Supplies!!") == "office supplies"
    assert normalize_name(None) == ""


def test_normalize_vendor_name_strips_legal_suffixes():
    assert normalize_vendor_name("Microsoft Corporation") == "microsoft"
    assert normalize_vendor_name("Amazon.com, Inc.") == "amazon com"
    # A suffix alone is kept rather than erased.
    assert normalize_vendor_name("LLC") == "llc"


def test_similarity_is_normalized_levenshtein():
    assert similarity("abc", "abc") == 1.0
    assert similarity("abc", "abd") == pytest.approx(0.666667)
    assert similarity("", "abc") == 0.0


def test_display_name_title_cases_shouting():
    assert display_name("JOE'S   BAKERY") == "Joe's Bakery"
    assert display_name("McDonald's") == "McDonald's"


# ── cascade stages ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_exact_match_needs_no_approval():
    resolver = build_vendor_resolver(make_settings(), enrichers=[])
    match = await resolver.resolve("Microsoft Corp.", _vendors("Microsoft Corporation"), COMPANY_ID)

    assert match.match_type == MatchType.EXACT
    assert match.entity_id == "v1"
    assert match.confidence == pytest.approx(0.95)
    assert match.needs_approval is False


@pytest.mark.asyncio
async def test_fuzzy_match_below_auto_accept_needs_approval():
    resolver = build_vendor_resolver(make_settings(), enrichers=[])
    match = await resolver.resolve("Starbuck", _vendors("Staples", "Starbucks"), COMPANY_ID)

    assert match.match_type == MatchType.FUZZY
    assert match.entity_id == "v2"
    assert match.similarity == pytest.approx(0.888889)
    assert match.needs_approval is True


def test_fuzzy_threshold_is_inclusive():
    matcher = FuzzyMatcher(EntityKind.VENDOR, normalize_vendor_name, threshold=0.80, similarity_fn=_fixed_similarity(0.80))
    match = matcher.match("Acme", _vendors("Acme Tools"))

    assert match is not None
    assert match.confidence == pytest.approx(0.80)
    assert match.needs_approval is True


def test_fuzzy_just_below_threshold_falls_through():
    matcher = FuzzyMatcher(EntityKind.VENDOR, normalize_vendor_name, threshold=0.80, similarity_fn=_fixed_similarity(0.7999))
    assert matcher.match("Acme", _vendors("Acme Tools")) is None


@pytest.mark.asyncio
async def test_below_threshold_resolves_as_new():
    fuzzy = FuzzyMatcher(EntityKind.VENDOR, normalize_vendor_name, threshold=0.80, similarity_fn=_fixed_similarity(0.7999))
    resolver = EntityResolver(EntityKind.VENDOR, [fuzzy], normalizer=normalize_vendor_name)
    match = await resolver.resolve("Acme", _vendors("Acme Tools"), COMPANY_ID)

    assert match.match_type == MatchType.NEW
    assert match.entity_id is None
    assert match.needs_approval is True


@pytest.mark.asyncio
async def test_msft_azure_resolves_to_microsoft():
    resolver = build_vendor_resolver(make_settings(), enrichers=[])
    existing = [ReferenceEntity(id="v1", name="Microsoft Corporation")]
    match = await resolver.resolve("MSFT AZURE", existing, COMPANY_ID)

    assert match.entity_id == "v1"
    assert match.match_type in (MatchType.SEMANTIC, MatchType.FUZZY)
    assert match.confidence >= 0.75
    if (match.similarity or 0.0) < 0.90 or match.match_type == MatchType.SEMANTIC:
        assert match.needs_approval is True


@pytest.mark.asyncio
async def test_category_synonym_resolves_semantically():
    resolver = build_category_resolver(make_settings())
    categories = [ReferenceEntity(id="c1", name="Office Supplies"), ReferenceEntity(id="c2", name="Travel & Entertainment")]
    match = await resolver.resolve("restaurant", categories, COMPANY_ID)

    assert match.match_type == MatchType.SEMANTIC
    assert match.entity_id == "c2"
    assert match.needs_approval is True


@pytest.mark.asyncio
async def test_unknown_vendor_becomes_new_proposal():
    settings = make_settings()
    resolver = build_vendor_resolver(settings, enrichers=[])
    match = await resolver.resolve("JOE'S BAKERY", _vendors("Staples"), COMPANY_ID)

    assert match.match_type == MatchType.NEW
    assert match.entity_name == "Joe's Bakery"
    assert match.confidence == pytest.approx(settings.new_entity_confidence)
    assert match.is_proposal


@pytest.mark.asyncio
async def test_directory_enrichment_produces_web_enriched_proposal():
    settings = make_settings()
    resolver = build_vendor_resolver(settings, enrichers=[CompanyDirectoryEnricher()])
    match = await resolver.resolve("Microsoft", [], COMPANY_ID)

    assert match.match_type == MatchType.WEB_ENRICHED
    assert match.entity_name == "Microsoft Corporation"
    assert match.confidence >= settings.web_enriched_confidence
    assert match.needs_approval is True
    assert match.enrichment["website"] == "https://www.microsoft.com"


@pytest.mark.asyncio
async def test_failing_and_slow_enrichers_fall_back_to_new():
    resolver = build_vendor_resolver(make_settings(), enrichers=[_FailingEnricher(), _SlowEnricher()])
    resolver.enrichment_timeout_seconds = 0.01
    match = await resolver.resolve("Corner Deli", [], COMPANY_ID)

    assert match.match_type == MatchType.NEW
    assert match.enrichment is None


@pytest.mark.asyncio
async def test_empty_candidate_is_new_without_name():
    resolver = build_vendor_resolver(make_settings(), enrichers=[])
    match = await resolver.resolve("   ", _vendors("Staples"), COMPANY_ID)

    assert match.match_type == MatchType.NEW
    assert match.entity_name == ""


# ── determinism ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_resolution_is_repeatable():
    resolver = build_vendor_resolver(make_settings(), enrichers=[])
    existing = _vendors("Staples", "Starbucks", "Shell", "Microsoft Corporation")

    results = {
        (match.match_type, match.entity_id)
        for match in [await resolver.resolve("Starbuck", existing, COMPANY_ID) for _ in range(5)]
    }
    assert results == {(MatchType.FUZZY, "v2")}


@pytest.mark.asyncio
async def test_unique_best_candidate_does_not_depend_on_list_order():
    resolver = build_vendor_resolver(make_settings(), enrichers=[])
    existing = _vendors("Staples", "Starbucks", "Shell", "Microsoft Corporation", "Stripe")
    rng = random.Random(7)

    for _ in range(5):
        shuffled = existing[:]
        rng.shuffle(shuffled)
        match = await resolver.resolve("Starbuck", shuffled, COMPANY_ID)
        assert (match.match_type, match.entity_id) == (MatchType.FUZZY, "v2")


def test_equal_scores_pick_first_in_reference_order():
    matcher = FuzzyMatcher(EntityKind.VENDOR, normalize_vendor_name, similarity_fn=_fixed_similarity(0.85))
    assert matcher.match("Acme", _vendors("Acme East", "Acme West")).entity_id == "v1"


def test_semantic_reason_names_the_group_with_the_best_score():
    # Both groups claim "nw"; the second one names the vendor exactly.
    table = {"Northwind Trader": ["nw"], "Northwind Traders": ["nw"]}
    matcher = SemanticMatcher(EntityKind.VENDOR, normalize_name, table)

    match = matcher.match("NW", _vendors("Northwind Traders"))

    assert match.entity_id == "v1"
    assert match.similarity == 1.0
    assert 'alias of "Northwind Traders"' in match.reason
