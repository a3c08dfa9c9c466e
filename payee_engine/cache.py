"""
Match and category cache stores.

Both caches are keyed by (budget, normalized name). Every lookup that hits
increments the entry's hit count by one.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.logging import logger
from payee_engine.matching.normalizer import normalize
from payee_engine.models import (
    CategoryCacheSource,
    MatchCacheSource,
    PayeeCategoryCacheEntry,
    PayeeMatchCacheEntry,
)


@dataclass
class MatchCacheUpdate:
    """A raw payee -> canonical payee mapping to write back."""
    budget_id: str
    raw_payee_name: str
    canonical_payee_name: str
    confidence: float
    source: MatchCacheSource
    canonical_payee_id: Optional[str] = None


@dataclass
class CategoryCacheUpdate:
    """A payee -> category mapping to write back."""
    budget_id: str
    payee_name: str
    category_id: str
    category_name: str
    confidence: float
    source: CategoryCacheSource


class _CacheRepository:
    """Shared lookup/upsert plumbing; subclasses name the model and key column."""

    model = None
    key_attr = ""

    def __init__(self, db: Session):
        self.db = db

    @property
    def _key_column(self):
        return getattr(self.model, self.key_attr)

    def find_by_payee(self, budget_id: str, payee_name: str):
        """Look up one payee, counting the hit."""
        key = normalize(payee_name)
        if not key:
            return None

        entry = self._existing(budget_id, key)
        if entry is not None:
            entry.hit_count += 1
            self._commit()
            logger.debug(f"{self.model.__tablename__} hit for '{key}' (hits={entry.hit_count})")
        return entry

    def find_by_payees(self, budget_id: str, payee_names: list[str]) -> dict:
        """
        Look up many payees at once.

        Returns:
            Dict of normalized name -> entry, only for names that hit
        """
        keys = {normalize(name) for name in payee_names}
        keys.discard("")
        if not keys:
            return {}

        entries = self.db.query(self.model).filter(
            self.model.budget_id == budget_id,
            self._key_column.in_(keys),
        ).all()

        for entry in entries:
            entry.hit_count += 1
        if entries:
            self._commit()
        return {getattr(entry, self.key_attr): entry for entry in entries}

    def all_entries(self, budget_id: str) -> list:
        """All entries for a budget, most used first."""
        return (
            self.db.query(self.model)
            .filter(self.model.budget_id == budget_id)
            .order_by(self.model.hit_count.desc(), self._key_column)
            .all()
        )

    def stats(self, budget_id: str) -> dict:
        total_entries, total_hits = self.db.query(
            func.count(self.model.id),
            func.coalesce(func.sum(self.model.hit_count), 0),
        ).filter(self.model.budget_id == budget_id).one()
        return {"total_entries": total_entries, "total_hits": total_hits}

    def clear(self, budget_id: str) -> int:
        """Delete every entry for a budget. Returns the number removed."""
        count = self.db.query(self.model).filter(
            self.model.budget_id == budget_id
        ).delete()
        self._commit()
        logger.info(f"Cleared {count} {self.model.__tablename__} entries for budget {budget_id}")
        return count

    def _existing(self, budget_id: str, key: str):
        return self.db.query(self.model).filter(
            self.model.budget_id == budget_id,
            self._key_column == key,
        ).first()

    def _commit(self):
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


class PayeeMatchCacheRepository(_CacheRepository):
    """Raw payee string -> canonical payee."""

    model = PayeeMatchCacheEntry
    key_attr = "raw_payee_name"

    def save(self, update: MatchCacheUpdate) -> Optional[PayeeMatchCacheEntry]:
        entry = self._upsert(update)
        self._commit()
        return entry

    def save_batch(self, updates: list[MatchCacheUpdate]) -> int:
        """Upsert many mappings in one transaction. Later duplicates win."""
        latest = {}
        for update in updates:
            key = normalize(update.raw_payee_name)
            if key:
                latest[(update.budget_id, key)] = update
        for update in latest.values():
            self._upsert(update)
        self._commit()
        return len(latest)

    def _upsert(self, update: MatchCacheUpdate) -> Optional[PayeeMatchCacheEntry]:
        key = normalize(update.raw_payee_name)
        if not key:
            return None
        entry = self._existing(update.budget_id, key)
        if entry is None:
            entry = PayeeMatchCacheEntry(
                budget_id=update.budget_id,
                raw_payee_name=key,
                hit_count=0,
            )
            self.db.add(entry)
        entry.raw_payee_name_original = update.raw_payee_name
        entry.canonical_payee_id = update.canonical_payee_id
        entry.canonical_payee_name = update.canonical_payee_name
        entry.confidence = update.confidence
        entry.source = update.source
        return entry


class PayeeCategoryCacheRepository(_CacheRepository):
    """Payee name -> category."""

    model = PayeeCategoryCacheEntry
    key_attr = "payee_name"

    def save(self, update: CategoryCacheUpdate) -> Optional[PayeeCategoryCacheEntry]:
        entry = self._upsert(update)
        self._commit()
        return entry

    def save_batch(self, updates: list[CategoryCacheUpdate]) -> int:
        """Upsert many mappings in one transaction. Later duplicates win."""
        latest = {}
        for update in updates:
            key = normalize(update.payee_name)
            if key:
                latest[(update.budget_id, key)] = update
        for update in latest.values():
            self._upsert(update)
        self._commit()
        return len(latest)

    def _upsert(self, update: CategoryCacheUpdate) -> Optional[PayeeCategoryCacheEntry]:
        key = normalize(update.payee_name)
        if not key:
            return None
        entry = self._existing(update.budget_id, key)
        if entry is None:
            entry = PayeeCategoryCacheEntry(
                budget_id=update.budget_id,
                payee_name=key,
                hit_count=0,
            )
            self.db.add(entry)
        entry.payee_name_original = update.payee_name
        entry.category_id = update.category_id
        entry.category_name = update.category_name
        entry.confidence = update.confidence
        entry.source = update.source
        return entry
