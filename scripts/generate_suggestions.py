#!/usr/bin/env python3
"""
Generate payee and category suggestions for uncategorized transactions.

Usage:
    python scripts/generate_suggestions.py --ledger export.json --budget-id my-budget
    python scripts/generate_suggestions.py --ledger export.json --budget-id my-budget --no-oracle
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from payee_engine.database import SessionLocal, init_db
from payee_engine.errors import PayeeEngineError
from payee_engine.ledger import JsonLedgerExport
from payee_engine.oracle import AnthropicOracle
from payee_engine.resolution import SuggestionService


def main():
    parser = argparse.ArgumentParser(
        description="Suggest canonical payees and categories for uncategorized transactions"
    )
    parser.add_argument("--ledger", required=True, help="Path to a JSON ledger export")
    parser.add_argument("--budget-id", required=True, help="Budget to process")
    parser.add_argument(
        "--no-oracle",
        action="store_true",
        help="Only use caches and fuzzy matching, never call the LLM",
    )

    args = parser.parse_args()

    init_db()
    db = SessionLocal()

    try:
        ledger = JsonLedgerExport(args.ledger)
        oracle = None if args.no_oracle else AnthropicOracle()
        service = SuggestionService(db, ledger=ledger, oracle=oracle)

        print("=" * 60)
        print("PAYEE SUGGESTIONS")
        print("=" * 60)
        print(f"Budget: {args.budget_id}")
        print(f"Mode: {'HEURISTIC' if args.no_oracle else 'ORACLE'}")
        print("=" * 60)

        suggestions = service.generate_suggestions(args.budget_id, use_oracle=not args.no_oracle)

        for s in suggestions:
            payee = s.payee.proposed_name or "-"
            category = s.category.proposed_name or "-"
            print(
                f"{s.raw_payee_name[:32]:<32} -> {payee[:24]:<24} | {category[:20]:<20} "
                f"{s.confidence:.2f} {s.status.value}"
            )

        retryable = sum(1 for s in suggestions if s.is_retryable)
        print(f"\nSuggestions created: {len(suggestions)}")
        print(f"Retryable next run: {retryable}")
        for name, repo in (("Match cache", service.match_cache), ("Category cache", service.category_cache)):
            stats = repo.stats(args.budget_id)
            print(f"{name}: {stats['total_entries']} entries, {stats['total_hits']} hits")

    except PayeeEngineError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
