#!/usr/bin/env python3
"""
Detect and repair drift between cached inventory quantities and the stock
ledger.

Usage:
    python scripts/reconcile_stock.py [--config FILE] [--item ID] [--dry-run]

For every inventory item (or just ``--item``) the ledger is folded in
sequence order and compared with ``quantity_in_stock``.  Mismatches are
printed and, unless ``--dry-run`` is given, the cached value is replaced by
the ledger value.  The ledger itself is never modified.

Exit code is 0 when everything is in sync (or was repaired) and 2 when drift
was found in dry-run mode.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from fulfillment_kernel.exceptions import FulfillmentError
from fulfillment_services.bootstrap import build_fulfillment_service


def main() -> int:
    parser = argparse.ArgumentParser(description="Reconcile cached stock against the ledger")
    parser.add_argument("--config", type=Path, help="YAML config layered over the defaults")
    parser.add_argument("--item", help="Reconcile a single inventory item id")
    parser.add_argument("--dry-run", action="store_true", help="Report drift without repairing it")
    args = parser.parse_args()

    try:
        service = build_fulfillment_service(config_path=args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    repair = not args.dry_run
    try:
        if args.item:
            results = [service.reconcile_stock(args.item, repair=repair)]
        else:
            results = service.reconcile_all_stock(repair=repair)
    except FulfillmentError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    drifted = [r for r in results if not r.in_sync]
    print(f"Checked {len(results)} item(s), {len(drifted)} with drift.")
    for r in drifted:
        action = "repaired" if r.repaired else "not repaired"
        print(
            f"  {r.item_id}: cached={r.cached_before} ledger={r.ledger_quantity} "
            f"drift={r.drift:+d} ({action})"
        )

    if drifted and args.dry_run:
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
