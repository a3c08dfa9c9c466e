"""
Payee deduplication clustering.

Partitions a budget's payee list into groups of likely duplicates ("Starbucks",
"STARBUCKS #1234", "Starbucks Store") using three union passes:

1. Identical normalized names
2. Identical token sets (word order and repeats ignored)
3. Pairs sharing their rarest token, joined when the rarity-weighted token
   overlap or the raw token-set ratio reaches the threshold
"""

import hashlib
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import combinations
from typing import Optional

from config.logging import logger
from config.settings import settings
from payee_engine.clustering.union_find import UnionFind
from payee_engine.ledger import Payee
from payee_engine.matching.normalizer import normalize
from payee_engine.matching.scorer import FuzzyScorer, round_score

_HAS_DIGIT = re.compile(r"\d")
_HAS_ALPHA = re.compile(r"[^\W\d_]")


@dataclass
class ClusterPayee:
    id: str
    name: str
    normalized_name: str
    token_set: str


@dataclass
class PayeeMergeCluster:
    """Two or more payees that look like the same merchant."""
    cluster_id: str
    group_hash: str
    budget_id: str
    payees: list[ClusterPayee]
    created_at: datetime
    hidden: bool = False

    @property
    def size(self) -> int:
        return len(self.payees)

    @property
    def payee_ids(self) -> list[str]:
        return [p.id for p in self.payees]

    def __repr__(self) -> str:
        names = ", ".join(p.name for p in self.payees[:3])
        more = f", +{self.size - 3}" if self.size > 3 else ""
        return f"<PayeeMergeCluster({names}{more})>"


def _hash_pairs(pairs: list[tuple[str, str]]) -> str:
    joined = "|".join(f"{pid}:{name}" for pid, name in sorted(pairs))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def compute_payee_hash(payees: list[Payee]) -> str:
    """Content hash of a payee list; changes when any id or name changes."""
    return _hash_pairs([(p.id, p.name) for p in payees])


def compute_group_hash(payees: list[ClusterPayee]) -> str:
    return _hash_pairs([(p.id, p.name) for p in payees])


def build_cluster(
    budget_id: str, payees: list[ClusterPayee], created_at: Optional[datetime] = None
) -> PayeeMergeCluster:
    """Cluster whose id and hash depend only on its members."""
    members = sorted(payees, key=lambda p: p.id)
    return PayeeMergeCluster(
        cluster_id="|".join(p.id for p in members),
        group_hash=compute_group_hash(members),
        budget_id=budget_id,
        payees=members,
        created_at=created_at or datetime.now(timezone.utc),
    )


def sort_clusters(clusters: list[PayeeMergeCluster]) -> list[PayeeMergeCluster]:
    """Largest first, then by cluster id so the order is stable."""
    return sorted(clusters, key=lambda c: (-c.size, c.cluster_id))


class PayeeClusterEngine:
    """
    Groups duplicate payees with union-find.

    Tokens that mix letters and digits ("2k3", "n12") or are long digit runs
    (store numbers) are ignored for the token passes, unless a name has
    nothing else.
    """

    def __init__(
        self,
        scorer: Optional[FuzzyScorer] = None,
        noise_digit_run: Optional[int] = None,
    ):
        self.scorer = scorer or FuzzyScorer()
        self.noise_digit_run = (
            settings.CLUSTER_NOISE_DIGIT_RUN if noise_digit_run is None else noise_digit_run
        )

    def is_noise(self, token: str) -> bool:
        if token.isdigit():
            return len(token) >= self.noise_digit_run
        return bool(_HAS_DIGIT.search(token) and _HAS_ALPHA.search(token))

    def tokenize(self, normalized_name: str) -> list[str]:
        """Distinct tokens in first-seen order, noise removed unless that empties the list."""
        tokens = list(dict.fromkeys(normalized_name.split()))
        meaningful = [t for t in tokens if not self.is_noise(t)]
        return meaningful or tokens

    def describe(self, payee: Payee) -> ClusterPayee:
        normalized_name = normalize(payee.name)
        return ClusterPayee(
            id=payee.id,
            name=payee.name,
            normalized_name=normalized_name,
            token_set=" ".join(sorted(self.tokenize(normalized_name))),
        )

    @staticmethod
    def token_weights(frequency: Counter) -> dict[str, float]:
        """Rarer tokens weigh more: 1 / log2(freq + 1)."""
        return {token: 1 / math.log2(count + 1) for token, count in frequency.items()}

    @staticmethod
    def weighted_similarity(
        left: set[str], right: set[str], weights: dict[str, float]
    ) -> int:
        """Rarity-weighted Jaccard similarity of two token sets, 0-100."""
        union = left | right
        total = sum(weights.get(t, 0.0) for t in union)
        if total <= 0:
            return 0
        shared = sum(weights.get(t, 0.0) for t in left & right)
        return round_score(shared / total * 100)

    @staticmethod
    def rarest_token(tokens: list[str], frequency: Counter) -> Optional[str]:
        """
        Least frequent token shared with at least one other payee, else the
        least frequent token overall. Ties break alphabetically.
        """
        if not tokens:
            return None
        shared = [t for t in tokens if frequency[t] >= 2]
        pool = shared or tokens
        return min(pool, key=lambda t: (frequency[t], t))

    def cluster(
        self, budget_id: str, payees: list[Payee], min_score: int
    ) -> list[PayeeMergeCluster]:
        """
        Partition payees into merge clusters.

        Args:
            budget_id: Budget the payees belong to
            payees: Every payee in the budget
            min_score: Threshold (0-100) for the rare-token pass

        Returns:
            Clusters of two or more payees, largest first
        """
        described: dict[str, ClusterPayee] = {}
        for payee in payees:
            if payee.id in described:
                logger.warning(f"Duplicate payee id {payee.id} ignored")
                continue
            described[payee.id] = self.describe(payee)

        # Sort so bucket contents and union order don't depend on input order
        ordered = sorted(described.values(), key=lambda p: p.id)
        union_find = UnionFind(p.id for p in ordered)
        token_lists = {p.id: p.token_set.split() for p in ordered}
        frequency = Counter(t for tokens in token_lists.values() for t in tokens)

        exact_buckets: dict[str, list[str]] = {}
        token_buckets: dict[str, list[str]] = {}
        rare_buckets: dict[str, list[str]] = {}
        for p in ordered:
            if p.normalized_name:
                exact_buckets.setdefault(p.normalized_name, []).append(p.id)
            if p.token_set:
                token_buckets.setdefault(p.token_set, []).append(p.id)
            rare = self.rarest_token(token_lists[p.id], frequency)
            if rare:
                rare_buckets.setdefault(rare, []).append(p.id)

        for bucket in list(exact_buckets.values()) + list(token_buckets.values()):
            first, *rest = bucket
            for other in rest:
                union_find.union(first, other)

        weights = self.token_weights(frequency)
        pair_unions = 0
        for bucket in rare_buckets.values():
            for a, b in combinations(bucket, 2):
                if union_find.connected(a, b):
                    continue
                if self._similar_enough(described[a], described[b], token_lists, weights, min_score):
                    union_find.union(a, b)
                    pair_unions += 1

        created_at = datetime.now(timezone.utc)
        clusters = [
            build_cluster(budget_id, [described[pid] for pid in members], created_at)
            for members in union_find.groups().values()
            if len(members) >= 2
        ]

        logger.info(
            f"Clustered {len(ordered)} payees into {len(clusters)} merge groups "
            f"(min_score={min_score}, {pair_unions} rare-token unions)"
        )
        return sort_clusters(clusters)

    def _similar_enough(
        self,
        left: ClusterPayee,
        right: ClusterPayee,
        token_lists: dict[str, list[str]],
        weights: dict[str, float],
        min_score: int,
    ) -> bool:
        left_tokens, right_tokens = token_lists[left.id], token_lists[right.id]
        if not left_tokens or not right_tokens:
            return False
        weighted = self.weighted_similarity(set(left_tokens), set(right_tokens), weights)
        if weighted >= min_score:
            return True
        raw = self.scorer.token_set_similarity(left.normalized_name, right.normalized_name)
        return raw >= min_score
