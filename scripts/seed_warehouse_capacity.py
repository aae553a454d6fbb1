"""
Seed warehouse_capacity from DEFAULT_WAREHOUSES and an optional admin user.

Warehouses are registered through CapacityLedger so every row starts at
bins_used=0 with a consistent (empty) history. Existing warehouses are left
untouched. Pass --initial NAME=USED to bring a fresh warehouse to a known
occupancy; that goes through a manual adjustment and is written to the ledger.

    python scripts/seed_warehouse_capacity.py --admin-email ops-admin@example.com
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from app.core.config import settings
from app.db.session import SessionLocal
from app.models.enums import UserRole
from app.models.users import User
from app.models.warehouse_capacity import WarehouseCapacity
from app.services.capacity_ledger import CapacityLedger


def parse_warehouses(raw: str) -> list[tuple[str, int]]:
    rows: list[tuple[str, int]] = []
    for token in (raw or "").split(","):
        token = token.strip()
        if not token:
            continue
        if ":" not in token:
            raise ValueError(f"Expected NAME:TOTAL_BINS, got '{token}'.")
        name, total = token.split(":", 1)
        rows.append((name.strip().upper(), int(total.strip())))
    return rows


def _parse_initial(values: list[str]) -> dict[str, int]:
    initial: dict[str, int] = {}
    for value in values:
        name, _, used = value.partition("=")
        initial[name.strip().upper()] = int(used.strip())
    return initial


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed warehouse capacity rows.")
    parser.add_argument("--warehouses", default=settings.DEFAULT_WAREHOUSES, help="NAME:TOTAL_BINS,...")
    parser.add_argument("--initial", action="append", default=[], help="NAME=BINS_USED for new warehouses")
    parser.add_argument("--admin-email", default=None, help="Create this admin user if missing")
    args = parser.parse_args()

    actor = settings.SYSTEM_ACTOR_EMAIL
    initial = _parse_initial(args.initial)
    db = SessionLocal()
    try:
        ledger = CapacityLedger(db)
        created = 0
        for name, total in parse_warehouses(args.warehouses):
            if db.get(WarehouseCapacity, name) is not None:
                print(f"{name}: exists, skipped")
                continue
            ledger.register_warehouse(name, total, actor=actor)
            if initial.get(name):
                ledger.adjust_manually(name, initial[name], actor=actor, reason="initial occupancy")
            created += 1
            print(f"{name}: registered total={total} used={initial.get(name, 0)}")

        if args.admin_email:
            email = args.admin_email.strip().lower()
            if db.query(User).filter(User.email == email).first() is None:
                db.add(User(email=email, full_name="Administrator", role=UserRole.ADMIN, is_active=True))
                print(f"admin user created: {email}")

        db.commit()
        print(f"Seed completed. warehouses_created={created}")
        return 0
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
