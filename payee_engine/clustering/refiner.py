"""
Oracle refinement of large merge clusters.

Token overlap happily lumps "Joe's Pizza", "Joe's Auto Repair" and "Joe's Pizza
Brooklyn" together. Clusters at or above a size threshold are sent to the
oracle, which splits them into groups of genuinely identical entities.
"""

from typing import Optional

from config.logging import logger
from config.settings import settings
from payee_engine.clustering.engine import PayeeMergeCluster, build_cluster, sort_clusters
from payee_engine.errors import ClusterSplitError
from payee_engine.oracle import OracleClient
from payee_engine.payloads import ClusterSplit

SPLIT_PROMPT = """You are splitting a group of payee names into sub-groups that refer to the same merchant or entity.
Return JSON with a single key "groups": an array of arrays of integers.
Each integer is the 0-based index of a payee in the list, and every index must appear exactly once across all groups.

Be conservative:
- The same brand with a location, store number or processor prefix is the same entity ("Starbucks #123", "SQ *STARBUCKS").
- Names that only share a generic word are different entities ("Joe's Pizza", "Joe's Auto Repair").
- If they are all the same entity, return one group with all indexes."""


def validate_partition(groups: list[list[int]], size: int) -> None:
    """
    Check that groups partition range(size).

    Raises:
        ClusterSplitError: On empty groups, out-of-range, repeated or missing indexes
    """
    seen: set[int] = set()
    for group in groups:
        if not group:
            raise ClusterSplitError("Cluster split contains an empty group")
        for index in group:
            if not 0 <= index < size:
                raise ClusterSplitError(
                    f"Cluster split references index {index} for a {size}-member cluster",
                    {"index": index, "size": size},
                )
            if index in seen:
                raise ClusterSplitError(
                    f"Cluster split uses index {index} more than once", {"index": index}
                )
            seen.add(index)

    missing = sorted(set(range(size)) - seen)
    if missing:
        raise ClusterSplitError(
            f"Cluster split leaves out indexes {missing}", {"missing": missing}
        )


class AIClusterRefiner:
    """Splits large clusters with the oracle, one cluster (one call) at a time."""

    def __init__(self, oracle: OracleClient, min_cluster_size: Optional[int] = None):
        self.oracle = oracle
        self.min_cluster_size = (
            settings.CLUSTER_REFINE_MIN_SIZE if min_cluster_size is None else min_cluster_size
        )

    def refine(self, clusters: list[PayeeMergeCluster]) -> list[PayeeMergeCluster]:
        """
        Replace each large cluster with its oracle-approved sub-clusters.

        Oracle and validation errors propagate: a half-refined run is worse
        than none.
        """
        refined: list[PayeeMergeCluster] = []
        split_count = 0
        for cluster in clusters:
            if cluster.size < self.min_cluster_size:
                refined.append(cluster)
                continue
            parts = self.split_cluster(cluster)
            if len(parts) != 1 or parts[0].cluster_id != cluster.cluster_id:
                split_count += 1
            refined.extend(parts)

        logger.info(f"Oracle refinement changed {split_count} of {len(clusters)} clusters")
        return sort_clusters(refined)

    def split_cluster(self, cluster: PayeeMergeCluster) -> list[PayeeMergeCluster]:
        """Ask the oracle to split one cluster. Singleton groups are dropped."""
        listing = "\n".join(f"{i}. {p.name}" for i, p in enumerate(cluster.payees))
        split = self.oracle.generate_object(
            f"Payee list:\n{listing}", ClusterSplit, system=SPLIT_PROMPT
        )
        validate_partition(split.groups, cluster.size)

        parts = [
            build_cluster(cluster.budget_id, [cluster.payees[i] for i in group], cluster.created_at)
            for group in split.groups
            if len(group) >= 2
        ]
        logger.debug(f"Split {cluster!r} into {len(parts)} clusters")
        return parts
