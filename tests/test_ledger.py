"""
Tests for the JSON ledger export and categorized payee summaries.
"""

import json

import pytest

from payee_engine.errors import ConfigError
from payee_engine.ledger import (
    Category,
    JsonLedgerExport,
    Transaction,
    summarize_categorized_payees,
)


@pytest.fixture
def export_path(tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps({
        "budget_id": "b1",
        "categories": [
            {"id": "cat-coffee", "name": "Coffee Shops", "group": "Food"},
            {"id": "cat-salary", "name": "Salary", "group": "Income", "is_income": True},
        ],
        "payees": [{"id": "p1", "name": "Starbucks"}],
        "transactions": [
            {"id": "t1", "payee_id": "p1", "amount": -450, "category_id": "cat-coffee"},
            {"id": "t2", "payee_name": "SBUX 1234", "amount": -390},
            {"id": "t3", "payee_name": "Transfer : Savings", "transfer": True},
        ],
    }))
    return path


def test_json_export_loads_budget(export_path):
    ledger = JsonLedgerExport(export_path)

    transactions = ledger.get_transactions("b1")
    assert [t.id for t in transactions] == ["t1", "t2", "t3"]
    # Payee name filled in from the payee list
    assert transactions[0].payee_name == "Starbucks"
    assert transactions[1].is_uncategorized
    assert transactions[2].is_transfer

    categories = ledger.get_categories("b1")
    assert categories[0].group_name == "Food"
    assert categories[1].is_income

    assert [p.name for p in ledger.get_payees("b1")] == ["Starbucks"]
    summary = ledger.get_categorized_payees("b1")
    assert [(p.payee_name, p.category_name) for p in summary] == [("Starbucks", "Coffee Shops")]


def test_json_export_rejects_other_budgets(export_path):
    with pytest.raises(ConfigError):
        JsonLedgerExport(export_path).get_transactions("b2")


def test_json_export_unreadable_file(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError):
        JsonLedgerExport(path)


def test_summary_picks_most_frequent_category():
    categories = [Category("cat-a", "A"), Category("cat-b", "B")]
    transactions = [
        Transaction("1", "Costco", category_id="cat-b"),
        Transaction("2", "Costco", category_id="cat-a"),
        Transaction("3", "Costco", category_id="cat-b"),
        Transaction("4", "Hulu", category_id="cat-b"),
        Transaction("5", "Hulu", category_id="cat-a"),
        Transaction("6", "Hulu"),
        Transaction("7", "Savings", category_id="cat-a", is_transfer=True),
    ]

    summary = {p.payee_name: p for p in summarize_categorized_payees(transactions, categories)}

    assert set(summary) == {"Costco", "Hulu"}
    assert summary["Costco"].category_id == "cat-b"
    assert summary["Costco"].transaction_count == 3
    # Tie goes to the id that sorts first
    assert summary["Hulu"].category_id == "cat-a"
