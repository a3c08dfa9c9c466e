"""
Transaction suggestions: independent payee and category halves.

Each half moves through its own ComponentStatus. The combined status seen by
older callers is derived from both halves by combined_status() and is never
stored.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from payee_engine.errors import InvalidOperationError
from payee_engine.models import ComponentStatus, generate_uuid

RESOLVED_STATUSES = {ComponentStatus.APPROVED, ComponentStatus.APPLIED, ComponentStatus.SKIPPED}


class CombinedStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"


def combined_status(payee: ComponentStatus, category: ComponentStatus) -> CombinedStatus:
    """
    Derive the legacy single status from the two component statuses.

    Both applied -> applied; both resolved (approved, applied or skipped)
    -> approved; either rejected -> rejected; anything else -> pending.
    """
    if payee == ComponentStatus.APPLIED and category == ComponentStatus.APPLIED:
        return CombinedStatus.APPLIED
    if payee in RESOLVED_STATUSES and category in RESOLVED_STATUSES:
        return CombinedStatus.APPROVED
    if ComponentStatus.REJECTED in (payee, category):
        return CombinedStatus.REJECTED
    return CombinedStatus.PENDING


def initial_payee_status(proposed_name: Optional[str], raw_name: Optional[str]) -> ComponentStatus:
    """Pending if there is a rename to offer, skipped otherwise."""
    proposed = (proposed_name or "").strip()
    if not proposed or proposed == (raw_name or "").strip():
        return ComponentStatus.SKIPPED
    return ComponentStatus.PENDING


def clamp_confidence(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    return max(0.0, min(1.0, float(value)))


@dataclass
class ComponentSuggestion:
    """One half of a suggestion: a proposed id/name with confidence and rationale."""
    proposed_id: Optional[str] = None
    proposed_name: Optional[str] = None
    confidence: float = 0.0
    rationale: str = ""
    status: ComponentStatus = ComponentStatus.PENDING

    def __post_init__(self):
        self.confidence = clamp_confidence(self.confidence)
        self.rationale = self.rationale or ""

    @property
    def is_actionable(self) -> bool:
        return bool(self.proposed_id or self.proposed_name)


class PayeeSuggestion(ComponentSuggestion):
    pass


class CategorySuggestion(ComponentSuggestion):
    pass


@dataclass
class Correction:
    """A user override recorded when a proposal is rejected."""
    payee_id: Optional[str] = None
    payee_name: Optional[str] = None
    category_id: Optional[str] = None
    category_name: Optional[str] = None

    @property
    def has_payee(self) -> bool:
        return bool(self.payee_name)

    @property
    def has_category(self) -> bool:
        return bool(self.category_id)


@dataclass
class TransactionSnapshot:
    """The parts of the transaction a suggestion needs to display and apply."""
    id: str
    payee_name: str
    payee_id: Optional[str] = None
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    amount: Optional[int] = None
    date: Optional[str] = None
    category_id: Optional[str] = None


@dataclass
class Suggestion:
    budget_id: str
    transaction: TransactionSnapshot
    payee: PayeeSuggestion
    category: CategorySuggestion
    correction: Correction = field(default_factory=Correction)
    id: str = field(default_factory=generate_uuid)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def raw_payee_name(self) -> str:
        return self.transaction.payee_name

    @property
    def status(self) -> CombinedStatus:
        return combined_status(self.payee.status, self.category.status)

    @property
    def confidence(self) -> float:
        """Average of both halves, or the non-skipped half alone."""
        if self.payee.status == ComponentStatus.SKIPPED:
            return self.category.confidence
        if self.category.status == ComponentStatus.SKIPPED:
            return self.payee.confidence
        return (self.payee.confidence + self.category.confidence) / 2

    @property
    def rationale(self) -> str:
        parts = []
        if self.payee.rationale:
            parts.append(f"[Payee] {self.payee.rationale}")
        if self.category.rationale:
            parts.append(f"[Category] {self.category.rationale}")
        return " | ".join(parts) or "No rationale provided"

    @property
    def is_retryable(self) -> bool:
        """Still pending but the category half came back empty or failed."""
        return self.status == CombinedStatus.PENDING and (
            not self.category.rationale or not self.category.proposed_id
        )

    # Transitions

    def approve_payee(self):
        self._ensure_mutable(self.payee, "payee")
        if not self.payee.is_actionable:
            raise InvalidOperationError(
                "No payee proposal to approve", {"suggestion_id": self.id}
            )
        self.payee.status = ComponentStatus.APPROVED

    def approve_category(self):
        self._ensure_mutable(self.category, "category")
        if not self.category.proposed_id:
            raise InvalidOperationError(
                "No category proposal to approve", {"suggestion_id": self.id}
            )
        self.category.status = ComponentStatus.APPROVED

    def reject_payee(self, correction: Optional[Correction] = None):
        self._ensure_mutable(self.payee, "payee")
        self.payee.status = ComponentStatus.REJECTED
        if correction and correction.has_payee:
            self.correction.payee_id = correction.payee_id
            self.correction.payee_name = correction.payee_name

    def reject_category(self, correction: Optional[Correction] = None):
        self._ensure_mutable(self.category, "category")
        self.category.status = ComponentStatus.REJECTED
        if correction and correction.has_category:
            self.correction.category_id = correction.category_id
            self.correction.category_name = correction.category_name

    def reset(self):
        """Back to pending, as if freshly generated. Corrections are dropped."""
        self._ensure_mutable(self.payee, "payee")
        self._ensure_mutable(self.category, "category")
        self.payee.status = initial_payee_status(self.payee.proposed_name, self.raw_payee_name)
        self.category.status = ComponentStatus.PENDING
        self.correction = Correction()

    def mark_applied(self):
        """Record that the approved halves were written to the ledger."""
        for component in (self.payee, self.category):
            if component.status == ComponentStatus.APPROVED:
                component.status = ComponentStatus.APPLIED

    def _ensure_mutable(self, component: ComponentSuggestion, label: str):
        if component.status == ComponentStatus.APPLIED:
            raise InvalidOperationError(
                f"The {label} half of suggestion {self.id} is already applied",
                {"suggestion_id": self.id},
            )


def create_suggestion(
    budget_id: str,
    transaction: TransactionSnapshot,
    payee: PayeeSuggestion,
    category: CategorySuggestion,
) -> Suggestion:
    """
    Build a fresh suggestion.

    The payee half is skipped when there is no proposal or the proposal is
    just the raw payee name again.
    """
    payee.status = initial_payee_status(payee.proposed_name, transaction.payee_name)
    category.status = ComponentStatus.PENDING
    return Suggestion(
        budget_id=budget_id,
        transaction=transaction,
        payee=payee,
        category=category,
    )
