"""
Test doubles for the oracle and the ledger.
"""

from dataclasses import dataclass
from typing import Optional

from payee_engine.ledger import (
    CategorizedPayee,
    Category,
    LedgerProvider,
    Payee,
    Transaction,
    summarize_categorized_payees,
)
from payee_engine.oracle import OracleCapabilities, OracleClient


@dataclass
class OracleCall:
    schema: str
    prompt: str
    system: Optional[str]
    web_search: bool


class FakeOracle(OracleClient):
    """
    Oracle that replays queued replies per schema name.

    A queued Exception instance is raised instead of returned.
    """

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.replies: dict[str, list] = {}
        self.calls: list[OracleCall] = []

    def queue(self, schema_name: str, *replies):
        self.replies.setdefault(schema_name, []).extend(replies)
        return self

    @property
    def schemas_called(self) -> list[str]:
        return [call.schema for call in self.calls]

    def is_configured(self) -> bool:
        return self.configured

    def capabilities(self) -> OracleCapabilities:
        return OracleCapabilities(web_search=True, structured_output=True)

    def generate_text(self, prompt, system=None, web_search=False) -> str:
        raise AssertionError("FakeOracle only serves structured calls")

    def generate_object(self, prompt, schema, system=None, web_search=False):
        self.calls.append(OracleCall(schema.__name__, prompt, system, web_search))
        pending = self.replies.get(schema.__name__)
        if not pending:
            raise AssertionError(f"Unexpected oracle call for {schema.__name__}")
        reply = pending.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return schema.model_validate(reply)


class FakeLedger(LedgerProvider):
    def __init__(self, transactions=None, categories=None, payees=None):
        self.transactions: list[Transaction] = list(transactions or [])
        self.categories: list[Category] = list(categories or [])
        self.payees: list[Payee] = list(payees or [])

    def get_transactions(self, budget_id: str) -> list[Transaction]:
        return list(self.transactions)

    def get_categories(self, budget_id: str) -> list[Category]:
        return list(self.categories)

    def get_payees(self, budget_id: str) -> list[Payee]:
        return list(self.payees)

    def get_categorized_payees(self, budget_id: str) -> list[CategorizedPayee]:
        return summarize_categorized_payees(self.transactions, self.categories)
