"""
Payee merge suggestions: build, cache and review duplicate-payee clusters.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from config.logging import logger
from config.settings import settings
from payee_engine.clustering.engine import PayeeClusterEngine, PayeeMergeCluster, compute_payee_hash
from payee_engine.clustering.refiner import AIClusterRefiner
from payee_engine.clustering.repository import ClusterCacheRepository
from payee_engine.errors import ConfigError
from payee_engine.ledger import LedgerProvider, Payee
from payee_engine.oracle import OracleClient


@dataclass
class ClusterCacheStatus:
    """How the cached clusters relate to the ledger's current payee list."""
    stale: bool
    stale_payee_ids: list[str] = field(default_factory=list)
    payee_hash: Optional[str] = None
    current_payee_hash: str = ""


@dataclass
class CachedClusters:
    clusters: list[PayeeMergeCluster]
    cache: ClusterCacheStatus


def stale_payee_ids(snapshot: dict[str, str], payees: list[Payee]) -> list[str]:
    """Ids added, removed or renamed since the snapshot was taken, sorted."""
    current = {p.id: p.name for p in payees}
    changed = {pid for pid, name in current.items() if snapshot.get(pid) != name}
    changed |= set(snapshot) - set(current)
    return sorted(changed)


class PayeeMergeService:
    """
    Builds merge clusters for a budget's payees and caches them by the
    payee list's content hash, so unchanged budgets are not re-clustered.
    """

    def __init__(
        self,
        db: Session,
        ledger: LedgerProvider,
        oracle: Optional[OracleClient] = None,
        engine: Optional[PayeeClusterEngine] = None,
        refiner: Optional[AIClusterRefiner] = None,
    ):
        self.db = db
        self.ledger = ledger
        self.oracle = oracle
        self.engine = engine or PayeeClusterEngine()
        self.refiner = refiner or (AIClusterRefiner(oracle) if oracle is not None else None)
        self.repository = ClusterCacheRepository(db)

    def build_clusters(
        self,
        budget_id: str,
        min_score: Optional[int] = None,
        use_oracle: bool = False,
        force_rebuild: bool = False,
    ) -> list[PayeeMergeCluster]:
        """
        Cluster the budget's payees, reusing the cache when nothing changed.

        Args:
            budget_id: Budget to cluster
            min_score: Rare-token threshold; defaults to 92, or 80 with oracle refinement
            use_oracle: Let the oracle split large clusters
            force_rebuild: Ignore the cache and forget hidden groups

        Returns:
            Clusters, largest first

        Raises:
            ConfigError: If use_oracle is set and no oracle is configured
            ClusterSplitError: If the oracle returns an invalid split
        """
        if use_oracle and (
            self.oracle is None or self.refiner is None or not self.oracle.is_configured()
        ):
            raise ConfigError("Oracle cluster refinement requested but the oracle is not configured")

        if min_score is None:
            min_score = settings.CLUSTER_ORACLE_MIN_SCORE if use_oracle else settings.CLUSTER_MIN_SCORE

        try:
            if force_rebuild:
                self.repository.clear(budget_id, include_hidden=True)

            payees = self.ledger.get_payees(budget_id)
            payee_hash = compute_payee_hash(payees)

            meta = self.repository.get_meta(budget_id)
            if (
                meta is not None
                and meta.payee_hash == payee_hash
                and meta.min_score == min_score
                and meta.used_oracle == use_oracle
            ):
                logger.info(f"Payee list unchanged for budget {budget_id}, using cached clusters")
                return self._mark_hidden(budget_id, self.repository.list_clusters(budget_id))

            clusters = self.engine.cluster(budget_id, payees, min_score)
            if use_oracle and clusters:
                clusters = self.refiner.refine(clusters)

            self.repository.replace(budget_id, clusters, payees, payee_hash, min_score, use_oracle)
            logger.info(
                f"Built {len(clusters)} merge clusters for budget {budget_id} "
                f"from {len(payees)} payees"
            )
            return self._mark_hidden(budget_id, clusters)
        except Exception as e:
            logger.error(f"Merge cluster build failed for budget {budget_id} (min_score={min_score}): {e}")
            raise

    def get_cached_clusters(self, budget_id: str) -> CachedClusters:
        """Cached clusters with hidden flags and staleness, without re-clustering."""
        clusters = self._mark_hidden(budget_id, self.repository.list_clusters(budget_id))

        meta = self.repository.get_meta(budget_id)
        payees = self.ledger.get_payees(budget_id)
        current_hash = compute_payee_hash(payees)
        cached_hash = meta.payee_hash if meta else None

        if meta is None:
            changed = sorted({p.id for p in payees})
        else:
            changed = stale_payee_ids(self.repository.list_snapshot(budget_id), payees)

        return CachedClusters(
            clusters=clusters,
            cache=ClusterCacheStatus(
                stale=cached_hash != current_hash,
                stale_payee_ids=changed,
                payee_hash=cached_hash,
                current_payee_hash=current_hash,
            ),
        )

    def hide_cluster(self, budget_id: str, group_hash: str) -> None:
        self.repository.hide(budget_id, group_hash)
        logger.info(f"Hid merge group {group_hash[:12]} for budget {budget_id}")

    def unhide_cluster(self, budget_id: str, group_hash: str) -> bool:
        return self.repository.unhide(budget_id, group_hash)

    def clear_cached_clusters(self, budget_id: str) -> None:
        """Drop cached clusters and metadata; hidden groups are kept."""
        self.repository.clear(budget_id)

    def _mark_hidden(
        self, budget_id: str, clusters: list[PayeeMergeCluster]
    ) -> list[PayeeMergeCluster]:
        hidden = self.repository.hidden_group_hashes(budget_id)
        for cluster in clusters:
            cluster.hidden = cluster.group_hash in hidden
        return clusters
