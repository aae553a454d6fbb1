from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from app.core.errors import Busy, CapacityExceeded, WorkflowFailure
from app.models.enums import ShipmentStatus as S
from app.models.shipment import Shipment
from app.models.warehouse_capacity import WarehouseCapacity
from app.services.capacity_ledger import CapacityLedger
from app.services.workflow_orchestrator import ShipmentWorkflowService
from tests.factories import OPERATOR, make_shipment, make_supplier, make_warehouse


def _seed(SessionFactory, *, total: int, shipments: int) -> list[int]:
    db = SessionFactory()
    try:
        supplier = make_supplier(db)
        make_warehouse(db, "KLAPMUTS", total=total)
        ids = [
            make_shipment(
                db,
                supplier,
                f"PO-{index:04d}",
                status=S.RECEIVING_GOODS,
                receiving_warehouse="KLAPMUTS",
                received_quantity=Decimal("10"),
            ).id
            for index in range(shipments)
        ]
        db.commit()
        return ids
    finally:
        db.close()


def test_parallel_store_requests_never_overbook(file_engine_factory):
    engine = file_engine_factory()
    SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    ids = _seed(SessionFactory, total=3, shipments=5)

    def _store(shipment_id: int) -> str:
        db = SessionFactory()
        try:
            ShipmentWorkflowService(db).request_transition(shipment_id, S.STORED, OPERATOR)
            return "stored"
        except WorkflowFailure as exc:
            return exc.kind
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=5) as pool:
        outcomes = list(pool.map(_store, ids))

    assert outcomes.count("stored") == 3
    assert outcomes.count(CapacityExceeded.kind) == 2

    db = SessionFactory()
    try:
        warehouse = db.get(WarehouseCapacity, "KLAPMUTS")
        assert warehouse.bins_used == 3
        stored = db.query(Shipment).filter(Shipment.status == S.STORED).count()
        assert stored == 3
        report = CapacityLedger(db).reconcile("KLAPMUTS")
        assert report.consistent
        assert report.reserved_shipments == 3
    finally:
        db.close()


def test_transition_reports_busy_while_another_writer_holds_the_lock(file_engine_factory):
    engine = file_engine_factory(timeout=0.2)
    SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    [shipment_id] = _seed(SessionFactory, total=3, shipments=1)

    blocker = engine.connect()
    transaction = blocker.begin()
    db = SessionFactory()
    try:
        with pytest.raises(Busy) as exc_info:
            ShipmentWorkflowService(db).request_transition(shipment_id, S.STORED, OPERATOR)
        assert exc_info.value.retryable is True
    finally:
        transaction.rollback()
        blocker.close()
        db.close()

    db = SessionFactory()
    try:
        assert db.get(Shipment, shipment_id).status == S.RECEIVING_GOODS
        assert db.get(WarehouseCapacity, "KLAPMUTS").bins_used == 0
    finally:
        db.close()
