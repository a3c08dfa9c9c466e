"""
Ledger provider interface and a JSON export implementation.

The engine never talks to the budgeting service directly; whatever syncs the
budget hands it transactions, categories and payees through LedgerProvider.
"""

import json
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from config.logging import logger
from payee_engine.errors import ConfigError


@dataclass
class Transaction:
    id: str
    payee_name: Optional[str] = None
    payee_id: Optional[str] = None
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    date: Optional[str] = None
    amount: Optional[int] = None     # Minor units, as the ledger stores them
    category_id: Optional[str] = None
    notes: Optional[str] = None
    is_transfer: bool = False

    @property
    def is_uncategorized(self) -> bool:
        return not self.category_id


@dataclass
class Category:
    id: str
    name: str
    group_name: str = ""
    hidden: bool = False
    is_income: bool = False


@dataclass
class Payee:
    id: str
    name: str


@dataclass
class CategorizedPayee:
    """A payee with the category it is most often filed under."""
    payee_id: Optional[str]
    payee_name: str
    category_id: str
    category_name: str
    transaction_count: int


class LedgerProvider(ABC):
    """Read access to one budget's ledger."""

    @abstractmethod
    def get_transactions(self, budget_id: str) -> list[Transaction]:
        ...

    @abstractmethod
    def get_categories(self, budget_id: str) -> list[Category]:
        ...

    @abstractmethod
    def get_payees(self, budget_id: str) -> list[Payee]:
        ...

    @abstractmethod
    def get_categorized_payees(self, budget_id: str) -> list[CategorizedPayee]:
        ...


def summarize_categorized_payees(
    transactions: list[Transaction], categories: list[Category]
) -> list[CategorizedPayee]:
    """
    Pick each payee's most frequent category from its categorized transactions.

    Transfers are ignored. Ties go to the category id that sorts first.
    """
    names = {c.id: c.name for c in categories}
    counts: dict[str, Counter] = defaultdict(Counter)
    payee_ids: dict[str, Optional[str]] = {}

    for txn in transactions:
        if txn.is_transfer or not txn.category_id or not txn.payee_name:
            continue
        counts[txn.payee_name][txn.category_id] += 1
        payee_ids.setdefault(txn.payee_name, txn.payee_id)

    result = []
    for payee_name in sorted(counts):
        category_counts = counts[payee_name]
        category_id = min(category_counts, key=lambda cid: (-category_counts[cid], cid))
        result.append(CategorizedPayee(
            payee_id=payee_ids.get(payee_name),
            payee_name=payee_name,
            category_id=category_id,
            category_name=names.get(category_id, category_id),
            transaction_count=sum(category_counts.values()),
        ))
    return result


class JsonLedgerExport(LedgerProvider):
    """
    Ledger backed by a JSON export file.

    Expected layout::

        {
          "budget_id": "...",
          "categories": [{"id", "name", "group", "hidden", "is_income"}],
          "payees": [{"id", "name"}],
          "transactions": [{"id", "payee_id", "payee_name", "account_id",
                            "account_name", "date", "amount", "category_id",
                            "notes", "transfer"}]
        }
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read ledger export {self.path}: {e}") from e

        self.budget_id = data.get("budget_id", "")
        self._categories = [
            Category(
                id=c["id"],
                name=c["name"],
                group_name=c.get("group", ""),
                hidden=bool(c.get("hidden", False)),
                is_income=bool(c.get("is_income", False)),
            )
            for c in data.get("categories", [])
        ]
        self._payees = [Payee(id=p["id"], name=p["name"]) for p in data.get("payees", [])]
        payee_names = {p.id: p.name for p in self._payees}
        self._transactions = [
            Transaction(
                id=t["id"],
                payee_id=t.get("payee_id"),
                payee_name=t.get("payee_name") or payee_names.get(t.get("payee_id")),
                account_id=t.get("account_id"),
                account_name=t.get("account_name"),
                date=t.get("date"),
                amount=t.get("amount"),
                category_id=t.get("category_id"),
                notes=t.get("notes"),
                is_transfer=bool(t.get("transfer", False)),
            )
            for t in data.get("transactions", [])
        ]
        logger.info(
            f"Loaded ledger export {self.path.name}: {len(self._transactions)} transactions, "
            f"{len(self._payees)} payees, {len(self._categories)} categories"
        )

    def _check_budget(self, budget_id: str):
        if self.budget_id and budget_id != self.budget_id:
            raise ConfigError(
                f"Ledger export {self.path.name} holds budget {self.budget_id}, not {budget_id}"
            )

    def get_transactions(self, budget_id: str) -> list[Transaction]:
        self._check_budget(budget_id)
        return list(self._transactions)

    def get_categories(self, budget_id: str) -> list[Category]:
        self._check_budget(budget_id)
        return list(self._categories)

    def get_payees(self, budget_id: str) -> list[Payee]:
        self._check_budget(budget_id)
        return list(self._payees)

    def get_categorized_payees(self, budget_id: str) -> list[CategorizedPayee]:
        self._check_budget(budget_id)
        return summarize_categorized_payees(self._transactions, self._categories)
