#!/usr/bin/env python3
"""
Stock Audit Script

Reconciles every product's cached stock_quantity against the fold of its
stock adjustment ledger and prints a report. Exits with status 1 when any
product has drifted, so it can run from cron or CI.

Usage:
    python audit_stock.py
    python audit_stock.py --product-id 123e4567-e89b-12d3-a456-426614174000
    python audit_stock.py --low-stock
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional
from uuid import UUID

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.product import Product
from services.event_bus import EventBus
from services.stock_ledger_service import StockAudit, StockLedger


def audit_products(ledger: StockLedger, products: Iterable[Product]) -> List[StockAudit]:
    """Audit each product; drift is logged by the ledger itself."""
    return [ledger.audit(product.product_id) for product in products]


def print_report(products: List[Product], audits: List[StockAudit]) -> None:
    by_id = {product.product_id: product for product in products}
    drifted = [a for a in audits if not a.is_consistent]

    print("=" * 60)
    print("STOCK AUDIT")
    print("=" * 60)
    for audit in audits:
        product = by_id[audit.product_id]
        marker = "OK   " if audit.is_consistent else "DRIFT"
        print(
            f"[{marker}] {product.name:<30} cached={audit.cached_stock:<6} "
            f"ledger={audit.ledger_stock:<6} entries={audit.adjustment_count}"
        )
    print("-" * 60)
    print(f"Products audited: {len(audits)}")
    print(f"Drifted:          {len(drifted)}")
    print("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Reconcile cached product stock against the adjustment ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Audit the whole catalog
  python audit_stock.py

  # Audit one product
  python audit_stock.py --product-id 123e4567-e89b-12d3-a456-426614174000

  # Audit only products at or below their low-stock threshold
  python audit_stock.py --low-stock
        """
    )

    parser.add_argument(
        "--product-id",
        "-p",
        type=UUID,
        help="Only audit this product"
    )

    parser.add_argument(
        "--low-stock",
        action="store_true",
        help="Only audit products at or below their low-stock threshold"
    )

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        from repositories.stock_repository import SupabaseStockRepository

        repository = SupabaseStockRepository()
        ledger = StockLedger(repository, EventBus())

        if args.product_id is not None:
            products = [ledger.product(args.product_id)]
        elif args.low_stock:
            products = repository.list_low_stock()
        else:
            products = repository.list_products()

        if not products:
            print("No products to audit")
            return 0

        audits = audit_products(ledger, products)
        print_report(products, audits)
        return 0 if all(a.is_consistent for a in audits) else 1

    except KeyboardInterrupt:
        print("\n\nAudit interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
