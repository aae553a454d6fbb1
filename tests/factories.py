from __future__ import annotations

from decimal import Decimal

from app.models.enums import ShipmentStatus, UserRole
from app.models.shipment import Shipment
from app.models.supplier import Supplier
from app.models.users import User
from app.services.authorization_service import Actor
from app.services.capacity_ledger import CapacityLedger

ADMIN = Actor(email="admin@example.com", role=UserRole.ADMIN)
OPERATOR = Actor(email="operator@example.com", role=UserRole.OPERATOR)


def make_supplier(db, code: str = "SUP-001", name: str = "Acme Components") -> Supplier:
    supplier = Supplier(code=code, name=name, email=f"{code.lower()}@example.com", country="ZA")
    db.add(supplier)
    db.flush()
    return supplier


def make_user(db, email: str, role: UserRole, supplier_id: int | None = None) -> User:
    user = User(email=email, full_name=email.split("@")[0], role=role, supplier_id=supplier_id)
    db.add(user)
    db.flush()
    return user


def make_warehouse(db, name: str = "PRETORIA", total: int = 650, used: int = 0) -> None:
    """Register through the ledger so bins_used always equals the sum of history deltas."""
    ledger = CapacityLedger(db)
    ledger.register_warehouse(name, total, actor="seed@example.com")
    if used:
        ledger.adjust_manually(name, used, actor="seed@example.com", reason="seed")
    db.flush()


def make_shipment(
    db,
    supplier: Supplier,
    order_ref: str = "PO-1001",
    status: ShipmentStatus = ShipmentStatus.INTAKE,
    **values,
) -> Shipment:
    values.setdefault("expected_quantity", Decimal("100"))
    if status == ShipmentStatus.REJECTED:
        values.setdefault("rejection_reason", "damaged on arrival")
    shipment = Shipment(order_ref=order_ref, supplier_id=supplier.id, status=status, **values)
    db.add(shipment)
    db.flush()
    return shipment
