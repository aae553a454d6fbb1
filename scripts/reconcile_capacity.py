"""
Compare warehouse_capacity.bins_used with the sum of its ledger deltas.

Exits non-zero when any warehouse has drifted, so it can run from cron.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from app.db.session import SessionLocal
from app.services.capacity_ledger import CapacityLedger


def main() -> int:
    parser = argparse.ArgumentParser(description="Reconcile warehouse capacity against its history.")
    parser.add_argument("warehouses", nargs="*", help="Warehouse names (default: all)")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        ledger = CapacityLedger(db)
        names = args.warehouses or [snapshot.warehouse_name for snapshot in ledger.list_statuses()]
        has_drift = False
        for name in names:
            report = ledger.reconcile(name)
            state = "OK" if report.consistent else f"DRIFT {report.drift:+d}"
            print(
                f"{report.warehouse_name}: bins_used={report.bins_used} "
                f"history_total={report.history_total} entries={report.history_entries} "
                f"reserved_shipments={report.reserved_shipments} {state}"
            )
            has_drift = has_drift or not report.consistent
        return 1 if has_drift else 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
