"""
Payee Matching Module

Deterministic building blocks shared by suggestion resolution and merge
clustering:
- Normalization and merchant alias resolution
- Weighted fuzzy scoring (rapidfuzz)
- Candidate ranking into high-confidence and disambiguation bands
"""

from payee_engine.matching.normalizer import (
    PayeeAliasResolver,
    load_alias_table,
    normalize,
)
from payee_engine.matching.ranker import (
    CandidateRanker,
    FuzzyMatchResult,
    PayeeCandidate,
    RankedCandidates,
)
from payee_engine.matching.scorer import FuzzyScorer, ScoreBreakdown, round_score

__all__ = [
    "CandidateRanker",
    "FuzzyMatchResult",
    "FuzzyScorer",
    "PayeeAliasResolver",
    "PayeeCandidate",
    "RankedCandidates",
    "ScoreBreakdown",
    "load_alias_table",
    "normalize",
    "round_score",
]
