"""
Payee Engine - Database Models

SQLAlchemy ORM models for resolution caches, transaction suggestions and
payee merge clusters.
"""

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# Enums
class ComponentStatus(PyEnum):
    """Lifecycle of one half (payee or category) of a suggestion."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"
    SKIPPED = "skipped"      # Nothing actionable to offer


class MatchCacheSource(PyEnum):
    USER_APPROVED = "user_approved"
    HIGH_CONFIDENCE_AI = "high_confidence_ai"
    FUZZY_MATCH = "fuzzy_match"


class CategoryCacheSource(PyEnum):
    USER_APPROVED = "user_approved"
    HIGH_CONFIDENCE_AI = "high_confidence_ai"


def generate_uuid() -> str:
    return str(uuid.uuid4())


class PayeeMatchCacheEntry(Base):
    """
    Learned mapping from a normalized raw payee string to its canonical payee.
    """

    __tablename__ = "payee_match_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    raw_payee_name: Mapped[str] = mapped_column(Text, nullable=False)
    raw_payee_name_original: Mapped[str] = mapped_column(Text, nullable=False)
    canonical_payee_id: Mapped[Optional[str]] = mapped_column(String(64))
    canonical_payee_name: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[MatchCacheSource] = mapped_column(
        Enum(MatchCacheSource), nullable=False
    )
    hit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("budget_id", "raw_payee_name", name="uq_match_cache_budget_payee"),
    )

    def __repr__(self) -> str:
        return f"<PayeeMatchCacheEntry({self.raw_payee_name!r} -> {self.canonical_payee_name!r}, hits={self.hit_count})>"


class PayeeCategoryCacheEntry(Base):
    """
    Learned mapping from a normalized payee name to its usual category.
    """

    __tablename__ = "payee_category_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payee_name: Mapped[str] = mapped_column(Text, nullable=False)
    payee_name_original: Mapped[str] = mapped_column(Text, nullable=False)
    category_id: Mapped[str] = mapped_column(String(64), nullable=False)
    category_name: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[CategoryCacheSource] = mapped_column(
        Enum(CategoryCacheSource), nullable=False
    )
    hit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("budget_id", "payee_name", name="uq_category_cache_budget_payee"),
    )

    def __repr__(self) -> str:
        return f"<PayeeCategoryCacheEntry({self.payee_name!r} -> {self.category_name!r}, hits={self.hit_count})>"


class SuggestionRecord(Base):
    """
    Resolution suggestion for one uncategorized transaction.

    Payee and category halves carry their own status; the combined status is
    derived on read and never stored.
    """

    __tablename__ = "suggestions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Transaction snapshot
    transaction_account_id: Mapped[Optional[str]] = mapped_column(String(64))
    transaction_account_name: Mapped[Optional[str]] = mapped_column(Text)
    transaction_payee_id: Mapped[Optional[str]] = mapped_column(String(64))
    transaction_payee_name: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_amount: Mapped[Optional[int]] = mapped_column(Integer)
    transaction_date: Mapped[Optional[str]] = mapped_column(String(10))
    current_category_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Payee half
    proposed_payee_id: Mapped[Optional[str]] = mapped_column(String(64))
    proposed_payee_name: Mapped[Optional[str]] = mapped_column(Text)
    payee_confidence: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    payee_rationale: Mapped[str] = mapped_column(Text, default="", nullable=False)
    payee_status: Mapped[ComponentStatus] = mapped_column(
        Enum(ComponentStatus), nullable=False
    )

    # Category half
    proposed_category_id: Mapped[Optional[str]] = mapped_column(String(64))
    proposed_category_name: Mapped[Optional[str]] = mapped_column(Text)
    category_confidence: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    category_rationale: Mapped[str] = mapped_column(Text, default="", nullable=False)
    category_status: Mapped[ComponentStatus] = mapped_column(
        Enum(ComponentStatus), nullable=False
    )

    # User correction recorded on rejection
    corrected_payee_id: Mapped[Optional[str]] = mapped_column(String(64))
    corrected_payee_name: Mapped[Optional[str]] = mapped_column(Text)
    corrected_category_id: Mapped[Optional[str]] = mapped_column(String(64))
    corrected_category_name: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_suggestions_budget_transaction", "budget_id", "transaction_id"),
        Index("ix_suggestions_budget_payee", "budget_id", "transaction_payee_name"),
    )

    def __repr__(self) -> str:
        return f"<SuggestionRecord(id={self.id}, payee={self.transaction_payee_name!r})>"


class PayeeMergeClusterMember(Base):
    """One payee inside a cached merge cluster."""

    __tablename__ = "payee_merge_clusters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cluster_id: Mapped[str] = mapped_column(Text, nullable=False)
    group_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    payee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payee_name: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_name: Mapped[str] = mapped_column(Text, nullable=False)
    token_set: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_merge_clusters_budget_cluster", "budget_id", "cluster_id"),
    )


class PayeeMergeClusterMeta(Base):
    """Which payee list (by content hash) the cached clusters were built from."""

    __tablename__ = "payee_merge_cluster_meta"

    budget_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    payee_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    min_score: Mapped[int] = mapped_column(Integer, nullable=False)
    used_oracle: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )


class PayeeMergePayeeSnapshot(Base):
    """Payee id/name as of the last cluster build, for stale-payee detection."""

    __tablename__ = "payee_merge_payee_snapshots"

    budget_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    payee_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    payee_name: Mapped[str] = mapped_column(Text, nullable=False)


class PayeeMergeHiddenGroup(Base):
    """A cluster the user dismissed, identified by its group hash."""

    __tablename__ = "payee_merge_hidden_groups"

    budget_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_hash: Mapped[str] = mapped_column(String(64), primary_key=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
