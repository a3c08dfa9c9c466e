"""
Cached merge clusters, build metadata, payee snapshots and hidden groups.
"""

from collections import OrderedDict
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payee_engine.clustering.engine import ClusterPayee, PayeeMergeCluster, sort_clusters
from payee_engine.ledger import Payee
from payee_engine.models import (
    PayeeMergeClusterMember,
    PayeeMergeClusterMeta,
    PayeeMergeHiddenGroup,
    PayeeMergePayeeSnapshot,
)


class ClusterCacheRepository:
    """Everything the merge tool keeps between cluster builds, per budget."""

    def __init__(self, db: Session):
        self.db = db

    # Clusters

    def list_clusters(self, budget_id: str) -> list[PayeeMergeCluster]:
        rows = (
            self.db.query(PayeeMergeClusterMember)
            .filter(PayeeMergeClusterMember.budget_id == budget_id)
            .order_by(PayeeMergeClusterMember.cluster_id, PayeeMergeClusterMember.payee_id)
            .all()
        )
        grouped: OrderedDict[str, list[PayeeMergeClusterMember]] = OrderedDict()
        for row in rows:
            grouped.setdefault(row.cluster_id, []).append(row)

        clusters = [
            PayeeMergeCluster(
                cluster_id=cluster_id,
                group_hash=members[0].group_hash,
                budget_id=budget_id,
                payees=[
                    ClusterPayee(
                        id=m.payee_id,
                        name=m.payee_name,
                        normalized_name=m.normalized_name,
                        token_set=m.token_set,
                    )
                    for m in members
                ],
                created_at=members[0].created_at,
            )
            for cluster_id, members in grouped.items()
        ]
        return sort_clusters(clusters)

    def get_meta(self, budget_id: str) -> Optional[PayeeMergeClusterMeta]:
        return self.db.get(PayeeMergeClusterMeta, budget_id)

    def list_snapshot(self, budget_id: str) -> dict[str, str]:
        """Payee id -> name as of the last build."""
        rows = (
            self.db.query(PayeeMergePayeeSnapshot)
            .filter(PayeeMergePayeeSnapshot.budget_id == budget_id)
            .all()
        )
        return {row.payee_id: row.payee_name for row in rows}

    def replace(
        self,
        budget_id: str,
        clusters: list[PayeeMergeCluster],
        payees: list[Payee],
        payee_hash: str,
        min_score: int,
        used_oracle: bool,
    ) -> None:
        """Swap in a fresh build: clusters, snapshot and meta in one transaction."""
        try:
            self._delete_build(budget_id)
            for cluster in clusters:
                for payee in cluster.payees:
                    self.db.add(PayeeMergeClusterMember(
                        budget_id=budget_id,
                        cluster_id=cluster.cluster_id,
                        group_hash=cluster.group_hash,
                        payee_id=payee.id,
                        payee_name=payee.name,
                        normalized_name=payee.normalized_name,
                        token_set=payee.token_set,
                        created_at=cluster.created_at,
                    ))
            seen = set()
            for payee in payees:
                if payee.id not in seen:
                    seen.add(payee.id)
                    self.db.add(PayeeMergePayeeSnapshot(
                        budget_id=budget_id, payee_id=payee.id, payee_name=payee.name
                    ))
            self.db.add(PayeeMergeClusterMeta(
                budget_id=budget_id,
                payee_hash=payee_hash,
                min_score=min_score,
                used_oracle=used_oracle,
            ))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def clear(self, budget_id: str, include_hidden: bool = False) -> None:
        try:
            self._delete_build(budget_id)
            if include_hidden:
                self.db.query(PayeeMergeHiddenGroup).filter(
                    PayeeMergeHiddenGroup.budget_id == budget_id
                ).delete()
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def _delete_build(self, budget_id: str) -> None:
        for model in (PayeeMergeClusterMember, PayeeMergePayeeSnapshot, PayeeMergeClusterMeta):
            for row in self.db.query(model).filter(model.budget_id == budget_id).all():
                self.db.delete(row)
        # Deletes must reach the database before the same keys are re-inserted
        self.db.flush()

    # Hidden groups

    def hidden_group_hashes(self, budget_id: str) -> set[str]:
        rows = (
            self.db.query(PayeeMergeHiddenGroup.group_hash)
            .filter(PayeeMergeHiddenGroup.budget_id == budget_id)
            .all()
        )
        return {row.group_hash for row in rows}

    def hide(self, budget_id: str, group_hash: str) -> None:
        if self.db.get(PayeeMergeHiddenGroup, (budget_id, group_hash)) is not None:
            return
        self.db.add(PayeeMergeHiddenGroup(budget_id=budget_id, group_hash=group_hash))
        self._commit()

    def unhide(self, budget_id: str, group_hash: str) -> bool:
        row = self.db.get(PayeeMergeHiddenGroup, (budget_id, group_hash))
        if row is None:
            return False
        self.db.delete(row)
        self._commit()
        return True

    def _commit(self):
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
