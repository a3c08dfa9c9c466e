"""
Tests for the payee match and category caches.
"""

import pytest

from payee_engine.cache import (
    CategoryCacheUpdate,
    MatchCacheUpdate,
    PayeeCategoryCacheRepository,
    PayeeMatchCacheRepository,
)
from payee_engine.models import CategoryCacheSource, MatchCacheSource


@pytest.fixture
def category_cache(db):
    return PayeeCategoryCacheRepository(db)


@pytest.fixture
def match_cache(db):
    return PayeeMatchCacheRepository(db)


def _category_update(payee_name="Starbucks Store #4521", category_id="cat-coffee",
                     category_name="Coffee Shops", budget_id="b1",
                     source=CategoryCacheSource.HIGH_CONFIDENCE_AI, confidence=0.9):
    return CategoryCacheUpdate(
        budget_id=budget_id,
        payee_name=payee_name,
        category_id=category_id,
        category_name=category_name,
        confidence=confidence,
        source=source,
    )


def test_category_round_trip_counts_each_hit(category_cache):
    category_cache.save(_category_update())

    first = category_cache.find_by_payee("b1", "starbucks store 4521")
    assert first.category_id == "cat-coffee"
    assert first.category_name == "Coffee Shops"
    assert first.confidence == 0.9
    assert first.hit_count == 1
    assert first.payee_name_original == "Starbucks Store #4521"

    # Lookup normalizes the same way the save did
    second = category_cache.find_by_payee("b1", "STARBUCKS  STORE #4521")
    assert second.hit_count == 2


def test_cache_is_scoped_per_budget(category_cache):
    category_cache.save(_category_update())
    assert category_cache.find_by_payee("b2", "Starbucks Store #4521") is None
    assert category_cache.find_by_payee("b1", "") is None


def test_save_replaces_existing_entry(category_cache):
    category_cache.save(_category_update())
    category_cache.save(_category_update(
        category_id="cat-dining",
        category_name="Restaurants",
        source=CategoryCacheSource.USER_APPROVED,
        confidence=1.0,
    ))

    entries = category_cache.all_entries("b1")
    assert len(entries) == 1
    assert entries[0].category_id == "cat-dining"
    assert entries[0].source == CategoryCacheSource.USER_APPROVED
    assert category_cache.stats("b1") == {"total_entries": 1, "total_hits": 0}


def test_batch_lookup_returns_hits_keyed_by_normalized_name(category_cache):
    saved = category_cache.save_batch([
        _category_update("Netflix", "cat-streaming", "Streaming"),
        _category_update("Spotify", "cat-streaming", "Streaming"),
        _category_update("Shell Oil", "cat-fuel", "Fuel"),
    ])
    assert saved == 3

    hits = category_cache.find_by_payees("b1", ["Netflix", "Unknown Merchant", "SPOTIFY", ""])

    assert set(hits) == {"netflix", "spotify"}
    assert hits["netflix"].hit_count == 1
    assert category_cache.find_by_payees("b1", []) == {}


def test_batch_save_later_duplicate_wins(category_cache):
    saved = category_cache.save_batch([
        _category_update("Costco", "cat-groceries", "Groceries"),
        _category_update("COSTCO", "cat-shopping", "Shopping"),
    ])

    assert saved == 1
    assert category_cache.find_by_payee("b1", "costco").category_id == "cat-shopping"


def test_stats_and_clear(category_cache):
    category_cache.save(_category_update("Netflix", "cat-streaming", "Streaming"))
    category_cache.save(_category_update("Hulu", "cat-streaming", "Streaming"))
    category_cache.save(_category_update("Hulu", "cat-streaming", "Streaming", budget_id="b2"))
    category_cache.find_by_payee("b1", "netflix")
    category_cache.find_by_payee("b1", "netflix")

    assert category_cache.stats("b1") == {"total_entries": 2, "total_hits": 2}
    assert category_cache.all_entries("b1")[0].payee_name == "netflix"

    assert category_cache.clear("b1") == 2
    assert category_cache.stats("b1") == {"total_entries": 0, "total_hits": 0}
    assert category_cache.stats("b2")["total_entries"] == 1


def test_match_cache_round_trip(match_cache):
    match_cache.save(MatchCacheUpdate(
        budget_id="b1",
        raw_payee_name="AMZN Mktp US*2K3",
        canonical_payee_name="Amazon",
        confidence=0.95,
        source=MatchCacheSource.FUZZY_MATCH,
        canonical_payee_id="payee-amazon",
    ))

    entry = match_cache.find_by_payee("b1", "amzn mktp us 2k3")
    assert entry.canonical_payee_name == "Amazon"
    assert entry.canonical_payee_id == "payee-amazon"
    assert entry.source == MatchCacheSource.FUZZY_MATCH
    assert entry.raw_payee_name_original == "AMZN Mktp US*2K3"
    assert entry.hit_count == 1

    match_cache.save(MatchCacheUpdate(
        budget_id="b1",
        raw_payee_name="AMZN MKTP US*2K3",
        canonical_payee_name="Amazon.com",
        confidence=1.0,
        source=MatchCacheSource.USER_APPROVED,
    ))
    entry = match_cache.find_by_payee("b1", "AMZN Mktp US*2K3")
    assert entry.canonical_payee_name == "Amazon.com"
    assert entry.hit_count == 2
    assert match_cache.stats("b1")["total_entries"] == 1


def test_blank_names_are_not_cached(match_cache):
    assert match_cache.save(MatchCacheUpdate(
        budget_id="b1",
        raw_payee_name="***",
        canonical_payee_name="Nothing",
        confidence=1.0,
        source=MatchCacheSource.USER_APPROVED,
    )) is None
    assert match_cache.stats("b1")["total_entries"] == 0
