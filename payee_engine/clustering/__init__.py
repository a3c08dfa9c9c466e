"""
Payee Merge Clustering Module

Finds duplicate payees in a budget:
- Union-find over exact, token-set and rare-token buckets
- Optional oracle splitting of large clusters
- Hash-keyed cluster cache with staleness reporting
"""

from payee_engine.clustering.engine import (
    ClusterPayee,
    PayeeClusterEngine,
    PayeeMergeCluster,
    build_cluster,
    compute_group_hash,
    compute_payee_hash,
)
from payee_engine.clustering.refiner import AIClusterRefiner, validate_partition
from payee_engine.clustering.service import CachedClusters, ClusterCacheStatus, PayeeMergeService
from payee_engine.clustering.union_find import UnionFind

__all__ = [
    "AIClusterRefiner",
    "CachedClusters",
    "ClusterCacheStatus",
    "ClusterPayee",
    "PayeeClusterEngine",
    "PayeeMergeCluster",
    "PayeeMergeService",
    "UnionFind",
    "build_cluster",
    "compute_group_hash",
    "compute_payee_hash",
    "validate_partition",
]
