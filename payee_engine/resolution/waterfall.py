"""
Resolution waterfall for one raw payee string.

Strategies run cheapest first and the first confident answer wins:

1. Match cache: the raw string was resolved before, canonical payee known
2. Category cache: the canonical (or raw) payee already has a category
3. High-confidence fuzzy match, verified by the oracle
4. Disambiguation: the oracle picks among several weaker fuzzy matches
5. Full identification: two oracle calls with web search allowed

With the oracle switched off only the cache and fuzzy steps run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from config.logging import logger
from config.settings import settings
from payee_engine.cache import PayeeCategoryCacheRepository, PayeeMatchCacheRepository
from payee_engine.errors import ConfigError, OracleError
from payee_engine.ledger import Category
from payee_engine.matching.ranker import CandidateRanker, FuzzyMatchResult, PayeeCandidate
from payee_engine.models import CategoryCacheSource, MatchCacheSource
from payee_engine.oracle import OracleClient
from payee_engine.payloads import (
    CategoryProposal,
    MatchDisambiguation,
    MatchVerification,
    PayeeIdentification,
)

SYSTEM_PROMPT = """You help categorize personal finance transactions.
Bank-supplied payee text is noisy: store numbers, processor prefixes (SQ *, TST*, PP*),
city names and truncation are common. Be accurate and say so when you are unsure;
a low confidence is better than a confident guess."""

VERIFY_PROMPT = """A bank transaction has the payee text: "{raw_payee}"

Fuzzy matching found a known payee: "{match_name}" ({score}% similar),
usually categorized as: {match_category}

Is "{raw_payee}" the same merchant as "{match_name}"?
If it is, give the clean merchant name and the best category for it.

Available categories (id|name|group):
{categories}

Use the exact category id from the list, or null if none fits."""

DISAMBIGUATE_PROMPT = """A bank transaction has the payee text: "{raw_payee}"

Fuzzy matching found these possible known payees:
{candidates}

If one of them is the same merchant, set match_index to its number (1-{count}).
If none is, set match_index to null; you may still propose a clean merchant
name and a category from general knowledge.

Available categories (id|name|group):
{categories}

Use the exact category id from the list, or null if none fits."""

IDENTIFY_PROMPT = """A bank transaction has the payee text: "{raw_payee}"

Identify the merchant or business behind it and give its clean, commonly used
name (e.g. "AMZN Mktp US*2K3" -> "Amazon"). Look it up if you are not sure."""

CATEGORY_PROMPT = """Suggest a budget category for transactions with the payee "{payee}".
{hints}
Available categories (id|name|group):
{categories}

Use the exact category id from the list, or null if none fits."""


class ResolutionStep(Enum):
    MATCH_CACHE = "match_cache"
    CATEGORY_CACHE = "category_cache"
    FUZZY_VERIFIED = "fuzzy_verified"
    DISAMBIGUATED = "disambiguated"
    IDENTIFIED = "identified"
    HEURISTIC = "heuristic"
    FAILED = "failed"


class ResultSource(Enum):
    NONE = "none"
    CACHE = "cache"
    FUZZY_MATCH = "fuzzy_match"
    ORACLE = "oracle"
    ORACLE_WEB_SEARCH = "oracle_web_search"


@dataclass
class PayeeResolution:
    canonical_payee_name: Optional[str] = None
    canonical_payee_id: Optional[str] = None
    confidence: float = 0.0
    rationale: str = ""
    source: ResultSource = ResultSource.NONE
    cache_source: Optional[MatchCacheSource] = None


@dataclass
class CategoryResolution:
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    confidence: float = 0.0
    rationale: str = ""
    source: ResultSource = ResultSource.NONE


@dataclass
class ResolutionResult:
    """Payee and category answers for one raw payee string. They need not agree."""
    raw_payee_name: str
    payee: PayeeResolution = field(default_factory=PayeeResolution)
    category: CategoryResolution = field(default_factory=CategoryResolution)
    step: ResolutionStep = ResolutionStep.FAILED

    @property
    def is_retryable(self) -> bool:
        return not self.category.rationale or not self.category.category_id

    def __repr__(self) -> str:
        return (
            f"<ResolutionResult({self.raw_payee_name!r} -> {self.payee.canonical_payee_name!r}"
            f" / {self.category.category_name!r}, step={self.step.value})>"
        )


def format_categories(categories: list[Category]) -> str:
    """One "id|name|group" line per category the oracle may pick."""
    usable = [c for c in categories if not c.hidden and not c.is_income]
    return "\n".join(f"{c.id}|{c.name}|{c.group_name}" for c in usable)


def failed_result(raw_payee_name: str) -> ResolutionResult:
    """Zero-confidence placeholder; its empty rationale makes it retryable."""
    return ResolutionResult(raw_payee_name=raw_payee_name, step=ResolutionStep.FAILED)


class ResolutionWaterfall:
    """
    Resolves one raw payee string at a time against the caches, the known
    payee pool and, when allowed, the oracle.
    """

    MATCH_CACHE_LABELS = {
        MatchCacheSource.USER_APPROVED: "Cached: Previously approved by user",
        MatchCacheSource.HIGH_CONFIDENCE_AI: "Cached: High-confidence AI suggestion",
        MatchCacheSource.FUZZY_MATCH: "Cached: High-confidence fuzzy match",
    }
    CATEGORY_CACHE_LABELS = {
        CategoryCacheSource.USER_APPROVED: "Cached: Previously approved by user",
        CategoryCacheSource.HIGH_CONFIDENCE_AI: "Cached: High-confidence AI suggestion",
    }

    def __init__(
        self,
        ranker: CandidateRanker,
        match_cache: PayeeMatchCacheRepository,
        category_cache: PayeeCategoryCacheRepository,
        oracle: Optional[OracleClient] = None,
        similar_payee_min_score: Optional[int] = None,
        similar_payee_limit: Optional[int] = None,
    ):
        self.ranker = ranker
        self.match_cache = match_cache
        self.category_cache = category_cache
        self.oracle = oracle
        self.similar_payee_min_score = (
            settings.SIMILAR_PAYEE_MIN_SCORE
            if similar_payee_min_score is None else similar_payee_min_score
        )
        self.similar_payee_limit = (
            settings.SIMILAR_PAYEE_LIMIT if similar_payee_limit is None else similar_payee_limit
        )

    def resolve(
        self,
        budget_id: str,
        raw_payee_name: str,
        categories: list[Category],
        candidates: list[PayeeCandidate],
        use_oracle: bool = True,
        bypass_cache: bool = False,
    ) -> ResolutionResult:
        """
        Walk the waterfall for one raw payee string.

        Oracle failures never escape: the affected half comes back with zero
        confidence and an empty rationale so the payee is retried next pass.

        Args:
            budget_id: Budget whose caches to use
            raw_payee_name: Payee text exactly as the bank supplied it
            categories: The budget's categories
            candidates: Known payees with their usual categories
            use_oracle: False limits resolution to caches and fuzzy matching
            bypass_cache: Skip steps 1 and 2 (used for retries)

        Returns:
            ResolutionResult
        """
        if use_oracle and self.oracle is None:
            raise ConfigError("Oracle resolution requested but no oracle client was provided")

        if not bypass_cache:
            cached = self._resolve_from_cache(
                budget_id, raw_payee_name, categories, candidates, use_oracle
            )
            if cached is not None:
                return cached

        if not use_oracle:
            return self._resolve_heuristically(raw_payee_name, candidates)

        ranked = self.ranker.rank(raw_payee_name, candidates)

        if ranked.high_confidence is not None:
            try:
                verified = self._verify_match(raw_payee_name, ranked.high_confidence, categories)
            except OracleError as e:
                logger.warning(f"Match verification failed for '{raw_payee_name}': {e}")
                return failed_result(raw_payee_name)
            if verified is not None:
                return verified

        if ranked.disambiguation:
            try:
                chosen = self._disambiguate(raw_payee_name, ranked.disambiguation, categories)
            except OracleError as e:
                logger.warning(f"Disambiguation failed for '{raw_payee_name}': {e}")
                return failed_result(raw_payee_name)
            if chosen is not None:
                return chosen

        return self.identify(raw_payee_name, categories)

    # Step 1 and 2

    def _resolve_from_cache(
        self,
        budget_id: str,
        raw_payee_name: str,
        categories: list[Category],
        candidates: list[PayeeCandidate],
        use_oracle: bool,
    ) -> Optional[ResolutionResult]:
        payee = None
        match = self.match_cache.find_by_payee(budget_id, raw_payee_name)
        if match is not None:
            payee = PayeeResolution(
                canonical_payee_name=match.canonical_payee_name,
                canonical_payee_id=match.canonical_payee_id,
                confidence=match.confidence,
                rationale=self.MATCH_CACHE_LABELS[match.source],
                source=ResultSource.CACHE,
            )

        lookup_name = payee.canonical_payee_name if payee else raw_payee_name
        cached_category = self.category_cache.find_by_payee(budget_id, lookup_name)
        if cached_category is not None:
            logger.debug(f"Category cache hit for '{raw_payee_name}' via '{lookup_name}'")
            return ResolutionResult(
                raw_payee_name=raw_payee_name,
                payee=payee or PayeeResolution(),
                category=CategoryResolution(
                    category_id=cached_category.category_id,
                    category_name=cached_category.category_name,
                    confidence=cached_category.confidence,
                    rationale=self.CATEGORY_CACHE_LABELS[cached_category.source],
                    source=ResultSource.CACHE,
                ),
                step=ResolutionStep.CATEGORY_CACHE,
            )

        if payee is None:
            return None

        logger.debug(f"Match cache hit for '{raw_payee_name}' -> '{payee.canonical_payee_name}'")
        if use_oracle:
            category = self._suggest_category_with_context(
                payee.canonical_payee_name, categories, candidates
            )
        else:
            best = self.ranker.best_match(payee.canonical_payee_name, candidates)
            category = self._category_from_match(best) if best else CategoryResolution()
        return ResolutionResult(
            raw_payee_name=raw_payee_name,
            payee=payee,
            category=category,
            step=ResolutionStep.MATCH_CACHE,
        )

    def _suggest_category_with_context(
        self,
        payee_name: str,
        categories: list[Category],
        candidates: list[PayeeCandidate],
    ) -> CategoryResolution:
        """Ask for a category, passing similar known payees as hints."""
        similar = self.ranker.find_matches(
            payee_name, candidates, min_score=self.similar_payee_min_score
        )[: self.similar_payee_limit]
        hints = ""
        if similar:
            lines = [
                f'- "{m.payee_name}" is categorized as {m.category_name}'
                for m in similar if m.category_name
            ]
            if lines:
                hints = "\nSimilar payees in this budget:\n" + "\n".join(lines) + "\n"

        try:
            return self._suggest_category(payee_name, categories, hints, web_search=False)
        except OracleError as e:
            logger.warning(f"Category suggestion failed for '{payee_name}': {e}")
            return CategoryResolution()

    # Step 3

    def _verify_match(
        self,
        raw_payee_name: str,
        match: FuzzyMatchResult,
        categories: list[Category],
    ) -> Optional[ResolutionResult]:
        """Returns None when the oracle says the match is a different merchant."""
        prompt = VERIFY_PROMPT.format(
            raw_payee=raw_payee_name,
            match_name=match.payee_name,
            score=match.score,
            match_category=match.category_name or "uncategorized",
            categories=format_categories(categories),
        )
        verdict = self.oracle.generate_object(prompt, MatchVerification, system=SYSTEM_PROMPT)

        if not verdict.is_same_merchant:
            logger.info(
                f"'{raw_payee_name}' is not the same merchant as '{match.payee_name}', "
                f"falling through"
            )
            return None

        category = self._category_from_proposal(
            verdict.category_id,
            verdict.category_name,
            verdict.category_confidence,
            verdict.category_reasoning,
            categories,
            ResultSource.ORACLE,
        )
        if not category.category_id and match.category_id:
            category = CategoryResolution(
                category_id=match.category_id,
                category_name=match.category_name,
                confidence=verdict.category_confidence,
                rationale=verdict.category_reasoning or f"Usual category of {match.payee_name}",
                source=ResultSource.FUZZY_MATCH,
            )

        return ResolutionResult(
            raw_payee_name=raw_payee_name,
            payee=PayeeResolution(
                canonical_payee_name=verdict.canonical_payee_name or match.payee_name,
                confidence=verdict.payee_confidence,
                rationale=verdict.payee_reasoning,
                source=ResultSource.FUZZY_MATCH,
                cache_source=MatchCacheSource.FUZZY_MATCH,
            ),
            category=category,
            step=ResolutionStep.FUZZY_VERIFIED,
        )

    # Step 4

    def _disambiguate(
        self,
        raw_payee_name: str,
        candidates: list[FuzzyMatchResult],
        categories: list[Category],
    ) -> Optional[ResolutionResult]:
        """Returns None when the oracle declines and has no category either."""
        listing = "\n".join(
            f'{i}. "{c.payee_name}" ({c.score}% similar) -> {c.category_name or "uncategorized"}'
            for i, c in enumerate(candidates, start=1)
        )
        prompt = DISAMBIGUATE_PROMPT.format(
            raw_payee=raw_payee_name,
            candidates=listing,
            count=len(candidates),
            categories=format_categories(categories),
        )
        answer = self.oracle.generate_object(prompt, MatchDisambiguation, system=SYSTEM_PROMPT)

        category = self._category_from_proposal(
            answer.category_id,
            answer.category_name,
            answer.category_confidence,
            answer.category_reasoning,
            categories,
            ResultSource.ORACLE,
        )

        index = answer.match_index
        if index is not None and not 1 <= index <= len(candidates):
            logger.warning(
                f"Disambiguation for '{raw_payee_name}' chose #{index} of {len(candidates)}, "
                f"treating as no match"
            )
            index = None

        if index is not None:
            chosen = candidates[index - 1]
            if not category.category_id and chosen.category_id:
                category = self._category_from_match(chosen, answer.category_confidence)
            return ResolutionResult(
                raw_payee_name=raw_payee_name,
                payee=PayeeResolution(
                    canonical_payee_name=answer.canonical_payee_name or chosen.payee_name,
                    confidence=answer.payee_confidence,
                    rationale=answer.payee_reasoning,
                    source=ResultSource.FUZZY_MATCH,
                    cache_source=MatchCacheSource.FUZZY_MATCH,
                ),
                category=category,
                step=ResolutionStep.DISAMBIGUATED,
            )

        if not category.category_id:
            return None

        return ResolutionResult(
            raw_payee_name=raw_payee_name,
            payee=PayeeResolution(
                canonical_payee_name=answer.canonical_payee_name,
                confidence=answer.payee_confidence if answer.canonical_payee_name else 0.0,
                rationale=answer.payee_reasoning or "No match found among candidates",
                source=ResultSource.ORACLE,
                cache_source=MatchCacheSource.HIGH_CONFIDENCE_AI,
            ),
            category=category,
            step=ResolutionStep.DISAMBIGUATED,
        )

    # Step 5

    def identify(self, raw_payee_name: str, categories: list[Category]) -> ResolutionResult:
        """
        Identify the merchant, then categorize it. Both calls may search the web.

        Each half fails independently; the category call falls back to the raw
        name when identification failed.
        """
        payee = PayeeResolution()
        try:
            identification = self.oracle.generate_object(
                IDENTIFY_PROMPT.format(raw_payee=raw_payee_name),
                PayeeIdentification,
                system=SYSTEM_PROMPT,
                web_search=True,
            )
            payee = PayeeResolution(
                canonical_payee_name=identification.canonical_payee_name,
                confidence=identification.confidence,
                rationale=identification.reasoning,
                source=ResultSource.ORACLE_WEB_SEARCH,
                cache_source=MatchCacheSource.HIGH_CONFIDENCE_AI,
            )
        except OracleError as e:
            logger.warning(f"Payee identification failed for '{raw_payee_name}': {e}")

        try:
            category = self._suggest_category(
                payee.canonical_payee_name or raw_payee_name, categories, "", web_search=True
            )
        except OracleError as e:
            logger.warning(f"Category suggestion failed for '{raw_payee_name}': {e}")
            category = CategoryResolution()

        failed = not payee.rationale and not category.rationale
        return ResolutionResult(
            raw_payee_name=raw_payee_name,
            payee=payee,
            category=category,
            step=ResolutionStep.FAILED if failed else ResolutionStep.IDENTIFIED,
        )

    # Oracle-free resolution

    def _resolve_heuristically(
        self, raw_payee_name: str, candidates: list[PayeeCandidate]
    ) -> ResolutionResult:
        best = self.ranker.best_match(raw_payee_name, candidates)
        if best is None:
            return ResolutionResult(raw_payee_name=raw_payee_name, step=ResolutionStep.HEURISTIC)

        return ResolutionResult(
            raw_payee_name=raw_payee_name,
            payee=PayeeResolution(
                canonical_payee_name=best.payee_name,
                confidence=best.score / 100,
                rationale=f'Fuzzy match: "{best.payee_name}" ({best.score}% similar)',
                source=ResultSource.FUZZY_MATCH,
                cache_source=MatchCacheSource.FUZZY_MATCH,
            ),
            category=self._category_from_match(best),
            step=ResolutionStep.HEURISTIC,
        )

    # Helpers

    def _suggest_category(
        self,
        payee_name: str,
        categories: list[Category],
        hints: str,
        web_search: bool,
    ) -> CategoryResolution:
        prompt = CATEGORY_PROMPT.format(
            payee=payee_name,
            hints=hints,
            categories=format_categories(categories),
        )
        proposal = self.oracle.generate_object(
            prompt, CategoryProposal, system=SYSTEM_PROMPT, web_search=web_search
        )
        return self._category_from_proposal(
            proposal.category_id,
            proposal.category_name,
            proposal.confidence,
            proposal.reasoning,
            categories,
            ResultSource.ORACLE_WEB_SEARCH if web_search else ResultSource.ORACLE,
        )

    def _category_from_proposal(
        self,
        category_id: Optional[str],
        category_name: Optional[str],
        confidence: float,
        rationale: str,
        categories: list[Category],
        source: ResultSource,
    ) -> CategoryResolution:
        """Resolve an oracle proposal against the budget's real categories."""
        by_id = {c.id: c for c in categories}
        category = by_id.get(category_id) if category_id else None
        if category is None and category_name:
            wanted = category_name.strip().lower()
            category = next((c for c in categories if c.name.lower() == wanted), None)

        if category is None:
            if category_id or category_name:
                logger.warning(
                    f"Oracle proposed unknown category {category_id!r}/{category_name!r}, ignoring"
                )
            return CategoryResolution(confidence=0.0, rationale=rationale or "", source=source)

        return CategoryResolution(
            category_id=category.id,
            category_name=category.name,
            confidence=confidence,
            rationale=rationale,
            source=source,
        )

    @staticmethod
    def _category_from_match(
        match: FuzzyMatchResult, confidence: Optional[float] = None
    ) -> CategoryResolution:
        if not match.category_id:
            return CategoryResolution()
        return CategoryResolution(
            category_id=match.category_id,
            category_name=match.category_name,
            confidence=match.score / 100 if confidence is None else confidence,
            rationale=f'Same category as "{match.payee_name}" ({match.score}% similar)',
            source=ResultSource.FUZZY_MATCH,
        )
