"""
Weighted fuzzy similarity between two payee names.
"""

import math
from dataclasses import dataclass

from rapidfuzz import fuzz


def round_score(value: float) -> int:
    """Round half up and clamp to the 0-100 score range."""
    return max(0, min(100, int(math.floor(value + 0.5))))


@dataclass(frozen=True)
class ScoreBreakdown:
    """Combined score plus the three metrics it was blended from (all 0-100)."""
    combined: int = 0
    w_ratio: float = 0.0
    token_set: float = 0.0
    prefix_proxy: float = 0.0


class FuzzyScorer:
    """
    Blends three rapidfuzz metrics into a single 0-100 score.

    - WRatio: full-string similarity that tolerates length differences
    - Token set ratio: ignores word order and repeated words
    - Partial ratio: best aligned substring, stands in for a prefix-weighted
      metric ("starbucks" vs "starbucks store 4521")

    The weighted sum is rounded half up to an integer.
    """

    W_RATIO_WEIGHT = 0.4
    TOKEN_SET_WEIGHT = 0.3
    PREFIX_WEIGHT = 0.3

    def __init__(
        self,
        w_ratio_weight: float = W_RATIO_WEIGHT,
        token_set_weight: float = TOKEN_SET_WEIGHT,
        prefix_weight: float = PREFIX_WEIGHT,
    ):
        total = w_ratio_weight + token_set_weight + prefix_weight
        if not math.isclose(total, 1.0):
            raise ValueError(f"Scorer weights must sum to 1.0, got {total}")
        self.w_ratio_weight = w_ratio_weight
        self.token_set_weight = token_set_weight
        self.prefix_weight = prefix_weight

    def score(self, a: str, b: str) -> ScoreBreakdown:
        """
        Score two already-normalized names.

        Returns:
            ScoreBreakdown, all zeros if either name is empty
        """
        if not a or not b:
            return ScoreBreakdown()

        w_ratio = fuzz.WRatio(a, b)
        token_set = fuzz.token_set_ratio(a, b)
        prefix_proxy = fuzz.partial_ratio(a, b)

        combined = round_score(
            self.w_ratio_weight * w_ratio
            + self.token_set_weight * token_set
            + self.prefix_weight * prefix_proxy
        )
        return ScoreBreakdown(
            combined=combined,
            w_ratio=w_ratio,
            token_set=token_set,
            prefix_proxy=prefix_proxy,
        )

    def token_set_similarity(self, a: str, b: str) -> int:
        """Word-order-insensitive similarity on its own, rounded."""
        if not a or not b:
            return 0
        return round_score(fuzz.token_set_ratio(a, b))
