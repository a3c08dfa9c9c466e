"""
Tests for suggestion generation, caching and review through SuggestionService.
"""

import pytest

from payee_engine.errors import ConfigError, InvalidOperationError, NotFoundError, OracleError
from payee_engine.ledger import Transaction
from payee_engine.models import CategoryCacheSource, ComponentStatus, MatchCacheSource
from payee_engine.resolution import SuggestionService
from payee_engine.suggestions import CombinedStatus, Correction
from tests.fakes import FakeLedger, FakeOracle

STARBUCKS_RAW = "Starbucks Store #4521"
MYSTERY_RAW = "Mystery Merchant LLC"


def _txn(id, payee_name, **kw):
    return Transaction(id=id, payee_name=payee_name, amount=-1250, date="2025-03-01", **kw)


@pytest.fixture
def ledger(categories):
    return FakeLedger(
        transactions=[
            _txn("t1", STARBUCKS_RAW),
            _txn("t2", STARBUCKS_RAW),
            _txn("t3", "Starbucks", category_id="cat-coffee"),
            _txn("t4", "Transfer : Savings", is_transfer=True),
            _txn("t5", MYSTERY_RAW),
        ],
        categories=categories,
    )


@pytest.fixture
def service(db, ledger, oracle):
    return SuggestionService(db, ledger, oracle)


def _queue_starbucks(oracle):
    oracle.queue("MatchVerification", {
        "is_same_merchant": True,
        "canonical_payee_name": "Starbucks",
        "payee_confidence": 0.95,
        "payee_reasoning": "Store number suffix",
        "category_id": "cat-coffee",
        "category_confidence": 0.92,
        "category_reasoning": "Coffee chain",
    })


def _queue_mystery(oracle, payee_confidence=0.6, category_confidence=0.5):
    oracle.queue("PayeeIdentification", {
        "canonical_payee_name": "Mystery Merchant",
        "confidence": payee_confidence,
        "reasoning": "Small online shop",
    })
    oracle.queue("CategoryProposal", {
        "category_id": "cat-shopping",
        "confidence": category_confidence,
        "reasoning": "Online retailer",
    })


def _by_transaction(suggestions):
    return {s.transaction.id: s for s in suggestions}


@pytest.fixture
def generated(service, oracle):
    _queue_starbucks(oracle)
    _queue_mystery(oracle)
    return _by_transaction(service.generate_suggestions("b1"))


# Generation

def test_one_suggestion_per_uncategorized_transaction(generated, oracle):
    assert set(generated) == {"t1", "t2", "t5"}
    # One resolution per unique raw payee
    assert oracle.schemas_called.count("MatchVerification") == 1

    starbucks = generated["t1"]
    assert starbucks.payee.proposed_name == "Starbucks"
    assert starbucks.payee.status == ComponentStatus.PENDING
    assert starbucks.category.proposed_id == "cat-coffee"
    assert starbucks.rationale == "[Payee] Store number suffix | [Category] Coffee chain"
    assert generated["t2"].category.proposed_id == "cat-coffee"

    mystery = generated["t5"]
    assert mystery.payee.proposed_name == "Mystery Merchant"
    assert mystery.category.proposed_id == "cat-shopping"
    assert not mystery.is_retryable


def test_confident_answers_are_cached(generated, service):
    matches = service.match_cache.all_entries("b1")
    assert [(e.raw_payee_name, e.canonical_payee_name, e.source) for e in matches] == [
        ("starbucks store 4521", "Starbucks", MatchCacheSource.FUZZY_MATCH),
    ]

    categories = service.category_cache.all_entries("b1")
    assert [(e.payee_name, e.category_id, e.source) for e in categories] == [
        ("starbucks", "cat-coffee", CategoryCacheSource.HIGH_CONFIDENCE_AI),
    ]


def test_second_run_is_served_from_cache(generated, service, ledger, oracle):
    calls_before = len(oracle.calls)
    ledger.transactions.append(_txn("t6", STARBUCKS_RAW))

    suggestions = service.generate_suggestions("b1")

    assert [s.transaction.id for s in suggestions] == ["t6"]
    assert suggestions[0].category.proposed_id == "cat-coffee"
    assert suggestions[0].category.rationale.startswith("Cached:")
    assert len(oracle.calls) == calls_before


def test_stale_suggestions_are_removed(generated, service, ledger):
    ledger.transactions = [t for t in ledger.transactions if t.id != "t5"]
    ledger.transactions[0].category_id = "cat-coffee"

    assert service.generate_suggestions("b1") == []
    assert [s.transaction.id for s in service.list_suggestions("b1")] == ["t2"]


def test_failed_payees_are_retried_on_next_run(service, oracle):
    _queue_starbucks(oracle)
    oracle.queue("PayeeIdentification", OracleError("overloaded"))
    oracle.queue("CategoryProposal", OracleError("overloaded"))

    first = _by_transaction(service.generate_suggestions("b1"))
    assert first["t5"].is_retryable
    assert first["t5"].payee.status == ComponentStatus.SKIPPED

    _queue_mystery(oracle)
    second = service.generate_suggestions("b1")

    assert [s.transaction.id for s in second] == ["t5"]
    stored = service.suggestions.list_by_payee("b1", MYSTERY_RAW)
    assert len(stored) == 1
    assert stored[0].category.proposed_id == "cat-shopping"


def test_rejected_suggestions_are_regenerated(generated, service, oracle):
    service.reject_suggestion(generated["t5"].id)
    _queue_mystery(oracle)

    second = service.generate_suggestions("b1")

    # Pending Starbucks suggestions are left for review
    assert [s.transaction.id for s in second] == ["t5"]
    stored = service.suggestions.list_by_payee("b1", MYSTERY_RAW)
    assert len(stored) == 1
    assert stored[0].status == CombinedStatus.PENDING


def test_resolving_again_replaces_the_unapplied_suggestion(service, oracle, categories):
    txn = _txn("t9", MYSTERY_RAW)
    _queue_mystery(oracle)
    first = service.resolve_suggestions("b1", [txn], categories)
    _queue_mystery(oracle, payee_confidence=0.7)
    second = service.resolve_suggestions("b1", [txn], categories)

    latest = service.suggestions.find_latest_for_transactions("b1", ["t9"])
    assert latest["t9"].id == second[0].id
    assert latest["t9"].id != first[0].id
    assert latest["t9"].payee.confidence == 0.7
    assert [s.id for s in service.suggestions.list_by_payee("b1", MYSTERY_RAW)] == [second[0].id]


def test_one_failing_payee_does_not_stop_the_batch(service, oracle):
    oracle.queue("MatchVerification", RuntimeError("boom"))
    _queue_mystery(oracle)

    suggestions = _by_transaction(service.generate_suggestions("b1"))

    assert suggestions["t1"].is_retryable
    assert suggestions["t1"].confidence == 0.0
    assert suggestions["t5"].category.proposed_id == "cat-shopping"


def test_unconfigured_oracle_fails_fast(db, ledger):
    service = SuggestionService(db, ledger, FakeOracle(configured=False))

    with pytest.raises(ConfigError):
        service.generate_suggestions("b1")
    assert service.list_suggestions("b1") == []


def test_generation_without_oracle(db, ledger):
    service = SuggestionService(db, ledger)

    suggestions = _by_transaction(service.generate_suggestions("b1", use_oracle=False))

    assert suggestions["t1"].payee.proposed_name == "Starbucks"
    assert suggestions["t1"].category.proposed_id == "cat-coffee"
    assert suggestions["t5"].is_retryable
    # Oracle-free runs never cache categories
    assert service.category_cache.stats("b1")["total_entries"] == 0


def test_missing_ledger_is_a_config_error(db, oracle):
    with pytest.raises(ConfigError):
        SuggestionService(db, oracle=oracle).generate_suggestions("b1")


# Review

def test_approve_suggestion_caches_both_halves(generated, service):
    approved = service.approve_suggestion(generated["t1"].id)

    assert approved.status == CombinedStatus.APPROVED
    match = service.match_cache.find_by_payee("b1", STARBUCKS_RAW)
    assert match.source == MatchCacheSource.USER_APPROVED
    assert match.confidence == 1.0

    raw_entry = service.category_cache.find_by_payee("b1", STARBUCKS_RAW)
    named_entry = service.category_cache.find_by_payee("b1", "Starbucks")
    assert raw_entry.source == named_entry.source == CategoryCacheSource.USER_APPROVED


def test_approving_twice_is_rejected(generated, service):
    service.approve_suggestion(generated["t5"].id)
    with pytest.raises(InvalidOperationError):
        service.approve_suggestion(generated["t5"].id)


def test_reject_category_with_correction_is_remembered(generated, service):
    suggestion = service.reject_category(
        generated["t5"].id,
        Correction(category_id="cat-groceries", category_name="Groceries"),
    )

    assert suggestion.category.status == ComponentStatus.REJECTED
    assert suggestion.correction.category_id == "cat-groceries"
    assert suggestion.payee.status == ComponentStatus.PENDING

    for name in ("Mystery Merchant", MYSTERY_RAW):
        entry = service.category_cache.find_by_payee("b1", name)
        assert entry.category_id == "cat-groceries"
        assert entry.source == CategoryCacheSource.USER_APPROVED


def test_approve_payee_writes_match_cache(generated, service):
    suggestion = service.approve_payee(generated["t5"].id)

    assert suggestion.payee.status == ComponentStatus.APPROVED
    assert suggestion.status == CombinedStatus.PENDING
    entry = service.match_cache.find_by_payee("b1", MYSTERY_RAW)
    assert entry.canonical_payee_name == "Mystery Merchant"


def test_correct_category_for_a_whole_payee_group(generated, service):
    corrected = service.correct_category_suggestions(
        "b1", STARBUCKS_RAW, "cat-groceries", "Groceries"
    )

    assert {s.transaction.id for s in corrected} == {"t1", "t2"}
    for s in service.suggestions.list_by_payee("b1", STARBUCKS_RAW):
        assert s.category.proposed_id == "cat-groceries"
        assert s.category.status == ComponentStatus.APPROVED
        assert s.category.rationale == "Corrected by user"
    assert service.category_cache.find_by_payee("b1", "Starbucks").category_id == "cat-groceries"


def test_correct_payee_for_a_whole_payee_group(generated, service):
    service.correct_payee_suggestions("b1", STARBUCKS_RAW, "Starbucks Coffee", "payee-sbux")

    for s in service.suggestions.list_by_payee("b1", STARBUCKS_RAW):
        assert s.payee.proposed_name == "Starbucks Coffee"
        assert s.payee.status == ComponentStatus.APPROVED
    entry = service.match_cache.find_by_payee("b1", STARBUCKS_RAW)
    assert entry.canonical_payee_id == "payee-sbux"


def test_reject_reset_and_apply(generated, service):
    suggestion_id = generated["t1"].id

    assert service.reject_suggestion(suggestion_id).status == CombinedStatus.REJECTED
    assert service.reset_suggestion(suggestion_id).status == CombinedStatus.PENDING

    service.approve_suggestion(suggestion_id)
    assert service.mark_applied(suggestion_id).status == CombinedStatus.APPLIED
    assert service.get_suggestion(suggestion_id).status == CombinedStatus.APPLIED


def test_retry_bypasses_cache_and_prefixes_rationale(generated, service, oracle):
    oracle.queue("PayeeIdentification", {
        "canonical_payee_name": "Mystery Goods",
        "confidence": 0.7,
        "reasoning": "Found their storefront",
    })
    oracle.queue("CategoryProposal", {
        "category_id": "cat-groceries",
        "confidence": 0.6,
        "reasoning": "Sells groceries",
    })

    retried = service.retry_suggestion(generated["t5"].id)

    assert len(retried) == 1
    assert retried[0].payee.proposed_name == "Mystery Goods"
    assert retried[0].payee.rationale == "Retry: Found their storefront"
    assert retried[0].category.rationale == "Retry: Sells groceries"
    assert service.get_suggestion(generated["t5"].id).category.proposed_id == "cat-groceries"
    assert oracle.schemas_called[-2:] == ["PayeeIdentification", "CategoryProposal"]


def test_unknown_suggestion_id(service):
    with pytest.raises(NotFoundError):
        service.get_suggestion("missing")
