"""
Persistence for transaction suggestions.
"""

from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.logging import logger
from payee_engine.errors import NotFoundError
from payee_engine.models import ComponentStatus, SuggestionRecord
from payee_engine.suggestions import (
    CategorySuggestion,
    Correction,
    PayeeSuggestion,
    Suggestion,
    TransactionSnapshot,
)


def to_suggestion(record: SuggestionRecord) -> Suggestion:
    return Suggestion(
        id=record.id,
        budget_id=record.budget_id,
        transaction=TransactionSnapshot(
            id=record.transaction_id,
            payee_name=record.transaction_payee_name,
            payee_id=record.transaction_payee_id,
            account_id=record.transaction_account_id,
            account_name=record.transaction_account_name,
            amount=record.transaction_amount,
            date=record.transaction_date,
            category_id=record.current_category_id,
        ),
        payee=PayeeSuggestion(
            proposed_id=record.proposed_payee_id,
            proposed_name=record.proposed_payee_name,
            confidence=record.payee_confidence,
            rationale=record.payee_rationale,
            status=record.payee_status,
        ),
        category=CategorySuggestion(
            proposed_id=record.proposed_category_id,
            proposed_name=record.proposed_category_name,
            confidence=record.category_confidence,
            rationale=record.category_rationale,
            status=record.category_status,
        ),
        correction=Correction(
            payee_id=record.corrected_payee_id,
            payee_name=record.corrected_payee_name,
            category_id=record.corrected_category_id,
            category_name=record.corrected_category_name,
        ),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _copy_onto(record: SuggestionRecord, suggestion: Suggestion):
    txn = suggestion.transaction
    record.budget_id = suggestion.budget_id
    record.transaction_id = txn.id
    record.transaction_payee_name = txn.payee_name
    record.transaction_payee_id = txn.payee_id
    record.transaction_account_id = txn.account_id
    record.transaction_account_name = txn.account_name
    record.transaction_amount = txn.amount
    record.transaction_date = txn.date
    record.current_category_id = txn.category_id

    record.proposed_payee_id = suggestion.payee.proposed_id
    record.proposed_payee_name = suggestion.payee.proposed_name
    record.payee_confidence = suggestion.payee.confidence
    record.payee_rationale = suggestion.payee.rationale
    record.payee_status = suggestion.payee.status

    record.proposed_category_id = suggestion.category.proposed_id
    record.proposed_category_name = suggestion.category.proposed_name
    record.category_confidence = suggestion.category.confidence
    record.category_rationale = suggestion.category.rationale
    record.category_status = suggestion.category.status

    record.corrected_payee_id = suggestion.correction.payee_id
    record.corrected_payee_name = suggestion.correction.payee_name
    record.corrected_category_id = suggestion.correction.category_id
    record.corrected_category_name = suggestion.correction.category_name


class SuggestionRepository:
    """Stores suggestions; the combined status is recomputed on every read."""

    def __init__(self, db: Session):
        self.db = db

    def save(self, suggestion: Suggestion) -> Suggestion:
        return self.save_all([suggestion])[0]

    def save_all(self, suggestions: list[Suggestion]) -> list[Suggestion]:
        try:
            for suggestion in suggestions:
                record = self.db.get(SuggestionRecord, suggestion.id)
                if record is None:
                    record = SuggestionRecord(id=suggestion.id)
                    self.db.add(record)
                _copy_onto(record, suggestion)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return suggestions

    def get(self, suggestion_id: str) -> Suggestion:
        record = self.db.get(SuggestionRecord, suggestion_id)
        if record is None:
            raise NotFoundError(f"Suggestion not found: {suggestion_id}")
        return to_suggestion(record)

    def list_by_budget(self, budget_id: str) -> list[Suggestion]:
        records = (
            self.db.query(SuggestionRecord)
            .filter(SuggestionRecord.budget_id == budget_id)
            .order_by(SuggestionRecord.transaction_payee_name, SuggestionRecord.transaction_id)
            .all()
        )
        return [to_suggestion(r) for r in records]

    def list_by_payee(self, budget_id: str, raw_payee_name: str) -> list[Suggestion]:
        """All suggestions that share a raw payee string."""
        records = (
            self.db.query(SuggestionRecord)
            .filter(
                SuggestionRecord.budget_id == budget_id,
                SuggestionRecord.transaction_payee_name == raw_payee_name,
            )
            .order_by(SuggestionRecord.transaction_id)
            .all()
        )
        return [to_suggestion(r) for r in records]

    def delete_orphaned(self, budget_id: str, existing_transaction_ids: Iterable[str]) -> int:
        """Drop unapplied suggestions whose transaction no longer exists."""
        existing = set(existing_transaction_ids)
        return self._delete_unapplied(
            budget_id, lambda record: record.transaction_id not in existing, "orphaned"
        )

    def delete_resolved(self, budget_id: str, categorized_transaction_ids: Iterable[str]) -> int:
        """Drop unapplied suggestions whose transaction got a category elsewhere."""
        categorized = set(categorized_transaction_ids)
        return self._delete_unapplied(
            budget_id, lambda record: record.transaction_id in categorized, "resolved"
        )

    def delete_for_transactions(self, budget_id: str, transaction_ids: Iterable[str]) -> int:
        ids = set(transaction_ids)
        return self._delete_unapplied(
            budget_id, lambda record: record.transaction_id in ids, "superseded"
        )

    def _delete_unapplied(self, budget_id: str, predicate, label: str) -> int:
        records = (
            self.db.query(SuggestionRecord)
            .filter(
                SuggestionRecord.budget_id == budget_id,
                SuggestionRecord.payee_status != ComponentStatus.APPLIED,
                SuggestionRecord.category_status != ComponentStatus.APPLIED,
            )
            .all()
        )
        doomed = [r for r in records if predicate(r)]
        if not doomed:
            return 0
        try:
            for record in doomed:
                self.db.delete(record)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        logger.info(f"Deleted {len(doomed)} {label} suggestions for budget {budget_id}")
        return len(doomed)

    def find_latest_for_transactions(
        self, budget_id: str, transaction_ids: Iterable[str]
    ) -> dict[str, Suggestion]:
        """Most recent suggestion per transaction id."""
        ids = set(transaction_ids)
        if not ids:
            return {}
        records = (
            self.db.query(SuggestionRecord)
            .filter(
                SuggestionRecord.budget_id == budget_id,
                SuggestionRecord.transaction_id.in_(ids),
            )
            .order_by(SuggestionRecord.created_at, SuggestionRecord.updated_at)
            .all()
        )
        return {record.transaction_id: to_suggestion(record) for record in records}
