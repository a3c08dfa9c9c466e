#!/usr/bin/env python3
"""
Find duplicate payees and print merge suggestions.

Usage:
    python scripts/build_payee_clusters.py --ledger export.json --budget-id my-budget
    python scripts/build_payee_clusters.py --ledger export.json --budget-id my-budget --min-score 88
    python scripts/build_payee_clusters.py --ledger export.json --budget-id my-budget --use-oracle --force
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from payee_engine.clustering import PayeeMergeService
from payee_engine.database import SessionLocal, init_db
from payee_engine.errors import PayeeEngineError
from payee_engine.ledger import JsonLedgerExport
from payee_engine.oracle import AnthropicOracle


def main():
    parser = argparse.ArgumentParser(description="Suggest payee merges for a budget")
    parser.add_argument("--ledger", required=True, help="Path to a JSON ledger export")
    parser.add_argument("--budget-id", required=True, help="Budget to process")
    parser.add_argument(
        "--min-score",
        type=int,
        default=None,
        help="Similarity threshold 0-100 (default: 92, or 80 with --use-oracle)",
    )
    parser.add_argument(
        "--use-oracle",
        action="store_true",
        help="Let the LLM split large clusters",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Rebuild even if the payee list is unchanged, and unhide all groups",
    )
    parser.add_argument(
        "--cached",
        action="store_true",
        help="Only show cached clusters and whether they are stale",
    )

    args = parser.parse_args()

    init_db()
    db = SessionLocal()

    try:
        ledger = JsonLedgerExport(args.ledger)
        oracle = AnthropicOracle() if args.use_oracle else None
        service = PayeeMergeService(db, ledger=ledger, oracle=oracle)

        print("=" * 60)
        print("PAYEE MERGE SUGGESTIONS")
        print("=" * 60)

        if args.cached:
            cached = service.get_cached_clusters(args.budget_id)
            clusters = cached.clusters
            print(f"Cache: {'STALE' if cached.cache.stale else 'current'}")
            if cached.cache.stale_payee_ids:
                print(f"Changed payees since last build: {len(cached.cache.stale_payee_ids)}")
        else:
            clusters = service.build_clusters(
                args.budget_id,
                min_score=args.min_score,
                use_oracle=args.use_oracle,
                force_rebuild=args.force,
            )

        for i, cluster in enumerate(clusters, start=1):
            flag = " (hidden)" if cluster.hidden else ""
            print(f"\n{i}. {cluster.size} payees{flag} [{cluster.group_hash[:12]}]")
            for payee in cluster.payees:
                print(f"   - {payee.name}")

        print(f"\nClusters: {len(clusters)}")
        print(f"Payees in clusters: {sum(c.size for c in clusters)}")

    except PayeeEngineError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
