"""
Suggestion generation and review for uncategorized transactions.
"""

from collections import OrderedDict
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.logging import logger
from config.settings import settings
from payee_engine.cache import (
    CategoryCacheUpdate,
    MatchCacheUpdate,
    PayeeCategoryCacheRepository,
    PayeeMatchCacheRepository,
)
from payee_engine.errors import ConfigError, InvalidOperationError
from payee_engine.ledger import CategorizedPayee, Category, LedgerProvider, Transaction
from payee_engine.matching.normalizer import normalize
from payee_engine.matching.ranker import CandidateRanker, PayeeCandidate
from payee_engine.models import CategoryCacheSource, ComponentStatus, MatchCacheSource
from payee_engine.oracle import OracleClient
from payee_engine.repository import SuggestionRepository
from payee_engine.resolution.waterfall import (
    ResolutionResult,
    ResolutionWaterfall,
    ResultSource,
    failed_result,
)
from payee_engine.suggestions import (
    CategorySuggestion,
    CombinedStatus,
    Correction,
    PayeeSuggestion,
    Suggestion,
    TransactionSnapshot,
    create_suggestion,
    initial_payee_status,
)

UNKNOWN_PAYEE = "Unknown"
RETRY_PREFIX = "Retry: "


def group_by_payee(transactions: list[Transaction]) -> "OrderedDict[str, list[Transaction]]":
    """Group transactions by raw payee text, keeping first-seen order."""
    groups: OrderedDict[str, list[Transaction]] = OrderedDict()
    for txn in transactions:
        groups.setdefault(txn.payee_name or UNKNOWN_PAYEE, []).append(txn)
    return groups


def snapshot(txn: Transaction) -> TransactionSnapshot:
    return TransactionSnapshot(
        id=txn.id,
        payee_name=txn.payee_name or UNKNOWN_PAYEE,
        payee_id=txn.payee_id,
        account_id=txn.account_id,
        account_name=txn.account_name,
        amount=txn.amount,
        date=txn.date,
        category_id=txn.category_id,
    )


class SuggestionService:
    """
    Generates payee/category suggestions and applies user decisions.

    Unique payees are resolved one after another; a failure on one payee
    turns into a zero-confidence placeholder and the batch carries on.
    High-confidence answers and user decisions are written back to the
    match and category caches.
    """

    def __init__(
        self,
        db: Session,
        ledger: Optional[LedgerProvider] = None,
        oracle: Optional[OracleClient] = None,
        ranker: Optional[CandidateRanker] = None,
        cache_threshold: Optional[float] = None,
    ):
        self.db = db
        self.ledger = ledger
        self.oracle = oracle
        self.match_cache = PayeeMatchCacheRepository(db)
        self.category_cache = PayeeCategoryCacheRepository(db)
        self.suggestions = SuggestionRepository(db)
        self.ranker = ranker or CandidateRanker()
        self.waterfall = ResolutionWaterfall(
            self.ranker, self.match_cache, self.category_cache, oracle
        )
        self.cache_threshold = (
            settings.CACHE_CONFIDENCE_THRESHOLD if cache_threshold is None else cache_threshold
        )

    # Generation

    def resolve_suggestions(
        self,
        budget_id: str,
        transactions: list[Transaction],
        categories: list[Category],
        use_oracle: bool = True,
        candidates: Optional[list[PayeeCandidate]] = None,
    ) -> list[Suggestion]:
        """
        Resolve and store one suggestion per transaction.

        Args:
            budget_id: Budget the transactions belong to
            transactions: Uncategorized, non-transfer transactions
            categories: The budget's categories
            use_oracle: False restricts resolution to caches and fuzzy matching
            candidates: Known payee pool; built from the caches when omitted

        Returns:
            The stored suggestions, in transaction order per payee group

        Raises:
            ConfigError: If use_oracle is set and no oracle is configured
        """
        if use_oracle:
            self._require_oracle()
        if candidates is None:
            candidates = self.build_candidates(budget_id)

        groups = group_by_payee(transactions)
        logger.info(
            f"Resolving {len(transactions)} transactions across {len(groups)} payees "
            f"(oracle={'on' if use_oracle else 'off'}, {len(candidates)} known payees)"
        )

        suggestions: list[Suggestion] = []
        match_updates: list[MatchCacheUpdate] = []
        category_updates: list[CategoryCacheUpdate] = []

        for i, (raw_payee_name, group) in enumerate(groups.items(), start=1):
            result = self._resolve_one(
                budget_id, raw_payee_name, categories, candidates, use_oracle
            )
            self._collect_cache_updates(
                budget_id, result, use_oracle, match_updates, category_updates
            )
            suggestions.extend(self._build_suggestions(budget_id, result, group))
            logger.debug(f"[{i}/{len(groups)}] {result!r}")

        if match_updates:
            self.match_cache.save_batch(match_updates)
        if category_updates:
            self.category_cache.save_batch(category_updates)
        # Keep one unapplied suggestion per transaction
        self.suggestions.delete_for_transactions(budget_id, [t.id for t in transactions])
        self.suggestions.save_all(suggestions)

        retryable = sum(1 for s in suggestions if s.is_retryable)
        logger.info(
            f"Created {len(suggestions)} suggestions ({retryable} retryable), cached "
            f"{len(match_updates)} payee matches and {len(category_updates)} categories"
        )
        return suggestions

    def generate_suggestions(self, budget_id: str, use_oracle: bool = True) -> list[Suggestion]:
        """
        Pull the budget from the ledger and suggest for whatever still needs it.

        Suggestions for deleted or since-categorized transactions are removed.
        Transactions whose latest suggestion is still pending review are
        skipped unless that suggestion is retryable. Rejected, approved or
        failed suggestions on still-uncategorized transactions are replaced.
        """
        if use_oracle:
            self._require_oracle()
        ledger = self._require_ledger()

        transactions = ledger.get_transactions(budget_id)
        categories = ledger.get_categories(budget_id)

        self.suggestions.delete_orphaned(budget_id, [t.id for t in transactions])
        self.suggestions.delete_resolved(
            budget_id, [t.id for t in transactions if not t.is_uncategorized]
        )

        uncategorized = [t for t in transactions if t.is_uncategorized and not t.is_transfer]
        existing = self.suggestions.find_latest_for_transactions(
            budget_id, [t.id for t in uncategorized]
        )
        todo = [t for t in uncategorized if not _awaiting_review(existing.get(t.id))]
        regenerated = sum(1 for t in todo if t.id in existing)
        if regenerated:
            logger.info(
                f"Regenerating {regenerated} transactions with failed or reviewed suggestions"
            )

        if not todo:
            logger.info(f"Nothing to suggest for budget {budget_id}")
            return []

        candidates = self.build_candidates(budget_id, ledger.get_categorized_payees(budget_id))
        return self.resolve_suggestions(budget_id, todo, categories, use_oracle, candidates)

    def build_candidates(
        self,
        budget_id: str,
        categorized_payees: Optional[list[CategorizedPayee]] = None,
    ) -> list[PayeeCandidate]:
        """Known payees from the category cache plus ledger history, one per normalized name."""
        candidates: list[PayeeCandidate] = []
        seen: set[str] = set()

        for entry in self.category_cache.all_entries(budget_id):
            if entry.payee_name not in seen:
                seen.add(entry.payee_name)
                candidates.append(PayeeCandidate(
                    payee_name=entry.payee_name,
                    payee_name_original=entry.payee_name_original,
                    category_id=entry.category_id,
                    category_name=entry.category_name,
                ))

        for payee in categorized_payees or []:
            key = normalize(payee.payee_name)
            if key and key not in seen:
                seen.add(key)
                candidates.append(PayeeCandidate(
                    payee_name=key,
                    payee_name_original=payee.payee_name,
                    category_id=payee.category_id,
                    category_name=payee.category_name,
                ))

        return candidates

    def _resolve_one(
        self,
        budget_id: str,
        raw_payee_name: str,
        categories: list[Category],
        candidates: list[PayeeCandidate],
        use_oracle: bool,
        bypass_cache: bool = False,
    ) -> ResolutionResult:
        try:
            return self.waterfall.resolve(
                budget_id,
                raw_payee_name,
                categories,
                candidates,
                use_oracle=use_oracle,
                bypass_cache=bypass_cache,
            )
        except SQLAlchemyError:
            raise
        except Exception as e:
            logger.error(f"Resolution failed for '{raw_payee_name}': {e}")
            return failed_result(raw_payee_name)

    def _collect_cache_updates(
        self,
        budget_id: str,
        result: ResolutionResult,
        use_oracle: bool,
        match_updates: list[MatchCacheUpdate],
        category_updates: list[CategoryCacheUpdate],
    ):
        payee, category = result.payee, result.category
        fresh = (ResultSource.CACHE, ResultSource.NONE)

        if (
            payee.canonical_payee_name
            and payee.cache_source is not None
            and payee.source not in fresh
            and payee.confidence >= self.cache_threshold
        ):
            match_updates.append(MatchCacheUpdate(
                budget_id=budget_id,
                raw_payee_name=result.raw_payee_name,
                canonical_payee_name=payee.canonical_payee_name,
                canonical_payee_id=payee.canonical_payee_id,
                confidence=payee.confidence,
                source=payee.cache_source,
            ))

        if (
            use_oracle
            and category.category_id
            and category.source not in fresh
            and category.confidence >= self.cache_threshold
        ):
            category_updates.append(CategoryCacheUpdate(
                budget_id=budget_id,
                payee_name=payee.canonical_payee_name or result.raw_payee_name,
                category_id=category.category_id,
                category_name=category.category_name or category.category_id,
                confidence=category.confidence,
                source=CategoryCacheSource.HIGH_CONFIDENCE_AI,
            ))

    @staticmethod
    def _build_suggestions(
        budget_id: str,
        result: ResolutionResult,
        transactions: list[Transaction],
        rationale_prefix: str = "",
    ) -> list[Suggestion]:
        suggestions = []
        for txn in transactions:
            suggestions.append(create_suggestion(
                budget_id,
                snapshot(txn),
                PayeeSuggestion(
                    proposed_id=result.payee.canonical_payee_id,
                    proposed_name=result.payee.canonical_payee_name,
                    confidence=result.payee.confidence,
                    rationale=_prefixed(rationale_prefix, result.payee.rationale),
                ),
                CategorySuggestion(
                    proposed_id=result.category.category_id,
                    proposed_name=result.category.category_name,
                    confidence=result.category.confidence,
                    rationale=_prefixed(rationale_prefix, result.category.rationale),
                ),
            ))
        return suggestions

    # Review

    def get_suggestion(self, suggestion_id: str) -> Suggestion:
        return self.suggestions.get(suggestion_id)

    def list_suggestions(self, budget_id: str) -> list[Suggestion]:
        return self.suggestions.list_by_budget(budget_id)

    def approve_suggestion(self, suggestion_id: str) -> Suggestion:
        """Approve every pending half that has something to approve."""
        suggestion = self.suggestions.get(suggestion_id)
        approved = False
        if suggestion.payee.status == ComponentStatus.PENDING and suggestion.payee.is_actionable:
            suggestion.approve_payee()
            self._remember_payee(suggestion, suggestion.payee.proposed_name, suggestion.payee.proposed_id)
            approved = True
        if suggestion.category.status == ComponentStatus.PENDING and suggestion.category.proposed_id:
            suggestion.approve_category()
            self._remember_category(
                suggestion, suggestion.category.proposed_id, suggestion.category.proposed_name
            )
            approved = True
        if not approved:
            raise InvalidOperationError(
                "Suggestion has no pending proposal to approve", {"suggestion_id": suggestion_id}
            )
        return self.suggestions.save(suggestion)

    def approve_payee(self, suggestion_id: str) -> Suggestion:
        suggestion = self.suggestions.get(suggestion_id)
        suggestion.approve_payee()
        self._remember_payee(suggestion, suggestion.payee.proposed_name, suggestion.payee.proposed_id)
        return self.suggestions.save(suggestion)

    def approve_category(self, suggestion_id: str) -> Suggestion:
        suggestion = self.suggestions.get(suggestion_id)
        suggestion.approve_category()
        self._remember_category(
            suggestion, suggestion.category.proposed_id, suggestion.category.proposed_name
        )
        return self.suggestions.save(suggestion)

    def reject_suggestion(self, suggestion_id: str) -> Suggestion:
        suggestion = self.suggestions.get(suggestion_id)
        if suggestion.payee.status != ComponentStatus.SKIPPED:
            suggestion.reject_payee()
        suggestion.reject_category()
        return self.suggestions.save(suggestion)

    def reject_payee(
        self, suggestion_id: str, correction: Optional[Correction] = None
    ) -> Suggestion:
        """Reject the payee half; a corrected payee is remembered as user-approved."""
        suggestion = self.suggestions.get(suggestion_id)
        suggestion.reject_payee(correction)
        if correction and correction.has_payee:
            self._remember_payee(suggestion, correction.payee_name, correction.payee_id)
        return self.suggestions.save(suggestion)

    def reject_category(
        self, suggestion_id: str, correction: Optional[Correction] = None
    ) -> Suggestion:
        """Reject the category half; a corrected category is remembered as user-approved."""
        suggestion = self.suggestions.get(suggestion_id)
        suggestion.reject_category(correction)
        if correction and correction.has_category:
            self._remember_category(suggestion, correction.category_id, correction.category_name)
        return self.suggestions.save(suggestion)

    def reset_suggestion(self, suggestion_id: str) -> Suggestion:
        suggestion = self.suggestions.get(suggestion_id)
        suggestion.reset()
        return self.suggestions.save(suggestion)

    def mark_applied(self, suggestion_id: str) -> Suggestion:
        suggestion = self.suggestions.get(suggestion_id)
        suggestion.mark_applied()
        return self.suggestions.save(suggestion)

    def correct_payee_suggestions(
        self,
        budget_id: str,
        raw_payee_name: str,
        payee_name: str,
        payee_id: Optional[str] = None,
    ) -> list[Suggestion]:
        """Set and approve a user-chosen payee on every open suggestion for a raw payee."""
        group = self._open_group(budget_id, raw_payee_name)
        for suggestion in group:
            if suggestion.payee.status == ComponentStatus.APPLIED:
                continue
            suggestion.payee = PayeeSuggestion(
                proposed_id=payee_id,
                proposed_name=payee_name,
                confidence=1.0,
                rationale="Corrected by user",
                status=ComponentStatus.APPROVED,
            )
        if group:
            self._remember_payee(group[0], payee_name, payee_id)
        logger.info(f"Corrected payee for {len(group)} suggestions of '{raw_payee_name}'")
        return self.suggestions.save_all(group)

    def correct_category_suggestions(
        self,
        budget_id: str,
        raw_payee_name: str,
        category_id: str,
        category_name: str,
    ) -> list[Suggestion]:
        """Set and approve a user-chosen category on every open suggestion for a raw payee."""
        group = self._open_group(budget_id, raw_payee_name)
        for suggestion in group:
            if suggestion.category.status == ComponentStatus.APPLIED:
                continue
            suggestion.category = CategorySuggestion(
                proposed_id=category_id,
                proposed_name=category_name,
                confidence=1.0,
                rationale="Corrected by user",
                status=ComponentStatus.APPROVED,
            )
        if group:
            self._remember_category(group[0], category_id, category_name)
        logger.info(f"Corrected category for {len(group)} suggestions of '{raw_payee_name}'")
        return self.suggestions.save_all(group)

    def retry_suggestion(self, suggestion_id: str, use_oracle: bool = True) -> list[Suggestion]:
        """
        Re-resolve a suggestion's whole raw-payee group, ignoring the caches.

        Only pending suggestions in the group are rewritten. Rationales are
        prefixed with "Retry: ".
        """
        if use_oracle:
            self._require_oracle()
        ledger = self._require_ledger()

        suggestion = self.suggestions.get(suggestion_id)
        budget_id = suggestion.budget_id
        raw_payee_name = suggestion.raw_payee_name
        group = [
            s for s in self.suggestions.list_by_payee(budget_id, raw_payee_name)
            if s.status == CombinedStatus.PENDING
        ]

        candidates = self.build_candidates(budget_id, ledger.get_categorized_payees(budget_id))
        result = self._resolve_one(
            budget_id,
            raw_payee_name,
            ledger.get_categories(budget_id),
            candidates,
            use_oracle,
            bypass_cache=True,
        )

        match_updates: list[MatchCacheUpdate] = []
        category_updates: list[CategoryCacheUpdate] = []
        self._collect_cache_updates(budget_id, result, use_oracle, match_updates, category_updates)
        if match_updates:
            self.match_cache.save_batch(match_updates)
        if category_updates:
            self.category_cache.save_batch(category_updates)

        for s in group:
            s.payee = PayeeSuggestion(
                proposed_id=result.payee.canonical_payee_id,
                proposed_name=result.payee.canonical_payee_name,
                confidence=result.payee.confidence,
                rationale=_prefixed(RETRY_PREFIX, result.payee.rationale),
                status=initial_payee_status(result.payee.canonical_payee_name, raw_payee_name),
            )
            s.category = CategorySuggestion(
                proposed_id=result.category.category_id,
                proposed_name=result.category.category_name,
                confidence=result.category.confidence,
                rationale=_prefixed(RETRY_PREFIX, result.category.rationale),
                status=ComponentStatus.PENDING,
            )
            s.correction = Correction()

        logger.info(f"Retried '{raw_payee_name}' for {len(group)} suggestions: {result!r}")
        return self.suggestions.save_all(group)

    # Helpers

    def _open_group(self, budget_id: str, raw_payee_name: str) -> list[Suggestion]:
        return [
            s for s in self.suggestions.list_by_payee(budget_id, raw_payee_name)
            if s.status != CombinedStatus.APPLIED
        ]

    def _remember_payee(
        self, suggestion: Suggestion, payee_name: Optional[str], payee_id: Optional[str]
    ):
        if not payee_name:
            return
        self.match_cache.save(MatchCacheUpdate(
            budget_id=suggestion.budget_id,
            raw_payee_name=suggestion.raw_payee_name,
            canonical_payee_name=payee_name,
            canonical_payee_id=payee_id,
            confidence=1.0,
            source=MatchCacheSource.USER_APPROVED,
        ))

    def _remember_category(
        self, suggestion: Suggestion, category_id: Optional[str], category_name: Optional[str]
    ):
        """Cache under the payee's best-known name, and the raw name when that differs."""
        if not category_id:
            return
        if suggestion.correction.payee_name:
            payee_name = suggestion.correction.payee_name
        elif suggestion.payee.proposed_name and suggestion.payee.status != ComponentStatus.REJECTED:
            payee_name = suggestion.payee.proposed_name
        else:
            payee_name = suggestion.raw_payee_name

        names = [payee_name]
        if normalize(payee_name) != normalize(suggestion.raw_payee_name):
            names.append(suggestion.raw_payee_name)

        self.category_cache.save_batch([
            CategoryCacheUpdate(
                budget_id=suggestion.budget_id,
                payee_name=name,
                category_id=category_id,
                category_name=category_name or category_id,
                confidence=1.0,
                source=CategoryCacheSource.USER_APPROVED,
            )
            for name in names
        ])

    def _require_oracle(self):
        if self.oracle is None or not self.oracle.is_configured():
            raise ConfigError("Oracle resolution requested but the oracle is not configured")

    def _require_ledger(self) -> LedgerProvider:
        if self.ledger is None:
            raise ConfigError("No ledger provider configured")
        return self.ledger


def _prefixed(prefix: str, rationale: str) -> str:
    """Prefix non-empty rationales; empty ones stay empty so retryability survives."""
    return f"{prefix}{rationale}" if rationale and prefix else rationale


def _awaiting_review(suggestion: Optional[Suggestion]) -> bool:
    return (
        suggestion is not None
        and suggestion.status == CombinedStatus.PENDING
        and not suggestion.is_retryable
    )
