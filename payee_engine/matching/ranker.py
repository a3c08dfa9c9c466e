"""
Ranks known (payee, category) pairs against a raw payee name.
"""

from dataclasses import dataclass, field
from typing import Optional

from config.logging import logger
from config.settings import settings
from payee_engine.matching.normalizer import PayeeAliasResolver, normalize
from payee_engine.matching.scorer import FuzzyScorer, ScoreBreakdown


@dataclass(frozen=True)
class PayeeCandidate:
    """A known payee with its usual category, from the cache or ledger history."""
    payee_name: str
    payee_name_original: str
    category_id: Optional[str] = None
    category_name: Optional[str] = None


@dataclass
class FuzzyMatchResult:
    """A candidate that scored at or above the ranking floor."""
    payee_name: str
    category_id: Optional[str]
    category_name: Optional[str]
    score: int
    sub_scores: ScoreBreakdown
    normalized_query: str
    normalized_match: str

    def __repr__(self) -> str:
        return f"<FuzzyMatchResult({self.payee_name!r}, score={self.score})>"


@dataclass
class RankedCandidates:
    """All matches for a query, split into the high-confidence and disambiguation bands."""
    matches: list[FuzzyMatchResult] = field(default_factory=list)
    high_confidence: Optional[FuzzyMatchResult] = None
    disambiguation: list[FuzzyMatchResult] = field(default_factory=list)


class CandidateRanker:
    """
    Scores a query against a candidate pool.

    Each candidate is scored on both its normalized and canonical (alias
    resolved) form and the better score is kept. When the canonical forms
    agree only because of an alias hit, the score gets ALIAS_BONUS, capped
    at 100.
    """

    ALIAS_BONUS = 10

    def __init__(
        self,
        alias_resolver: Optional[PayeeAliasResolver] = None,
        scorer: Optional[FuzzyScorer] = None,
        high_confidence: Optional[int] = None,
        minimum_candidate: Optional[int] = None,
        max_disambiguation: Optional[int] = None,
    ):
        self.alias_resolver = alias_resolver or PayeeAliasResolver()
        self.scorer = scorer or FuzzyScorer()
        self.high_confidence = (
            settings.FUZZY_HIGH_CONFIDENCE if high_confidence is None else high_confidence
        )
        self.minimum_candidate = (
            settings.FUZZY_MINIMUM_CANDIDATE if minimum_candidate is None else minimum_candidate
        )
        self.max_disambiguation = (
            settings.FUZZY_MAX_DISAMBIGUATION if max_disambiguation is None else max_disambiguation
        )

    def find_matches(
        self,
        query: str,
        candidates: list[PayeeCandidate],
        min_score: Optional[int] = None,
    ) -> list[FuzzyMatchResult]:
        """
        Score the query against every candidate.

        Args:
            query: Raw payee name
            candidates: Known payees to compare against
            min_score: Floor score, defaults to the minimum candidate score

        Returns:
            Matches with score >= min_score, best first. Ties keep pool order.
        """
        floor = self.minimum_candidate if min_score is None else min_score
        normalized_query = normalize(query)
        if not normalized_query:
            return []
        canonical_query = self.alias_resolver.canonicalize(query)

        results = []
        for candidate in candidates:
            normalized_candidate = normalize(candidate.payee_name)
            canonical_candidate = self.alias_resolver.canonicalize(candidate.payee_name)

            direct = self.scorer.score(normalized_query, normalized_candidate)
            via_alias = self.scorer.score(canonical_query, canonical_candidate)
            best = via_alias if via_alias.combined > direct.combined else direct
            score = best.combined

            if (
                canonical_query
                and canonical_query == canonical_candidate
                and canonical_query != normalized_query
            ):
                score = min(100, score + self.ALIAS_BONUS)

            if score >= floor:
                results.append(FuzzyMatchResult(
                    payee_name=candidate.payee_name_original or candidate.payee_name,
                    category_id=candidate.category_id,
                    category_name=candidate.category_name,
                    score=score,
                    sub_scores=best,
                    normalized_query=normalized_query,
                    normalized_match=normalized_candidate,
                ))

        results.sort(key=lambda r: r.score, reverse=True)
        logger.debug(f"'{query}': {len(results)} of {len(candidates)} candidates >= {floor}")
        return results

    def best_match(
        self,
        query: str,
        candidates: list[PayeeCandidate],
        min_score: Optional[int] = None,
    ) -> Optional[FuzzyMatchResult]:
        matches = self.find_matches(query, candidates, min_score)
        return matches[0] if matches else None

    def high_confidence_match(
        self, query: str, candidates: list[PayeeCandidate]
    ) -> Optional[FuzzyMatchResult]:
        return self.rank(query, candidates).high_confidence

    def disambiguation_candidates(
        self, query: str, candidates: list[PayeeCandidate]
    ) -> list[FuzzyMatchResult]:
        return self.rank(query, candidates).disambiguation

    def rank(self, query: str, candidates: list[PayeeCandidate]) -> RankedCandidates:
        """Score once and split the matches into both bands."""
        matches = self.find_matches(query, candidates)
        high = matches[0] if matches and matches[0].score >= self.high_confidence else None
        disambiguation = [m for m in matches if m.score < self.high_confidence]
        return RankedCandidates(
            matches=matches,
            high_confidence=high,
            disambiguation=disambiguation[: self.max_disambiguation],
        )
