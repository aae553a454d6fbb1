from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import CapacityExceeded, CapacityUnderflow, InvalidField, NotFound
from app.core.flow_logging import flow_info
from app.models.shipment import Shipment
from app.models.warehouse_capacity import WarehouseCapacity, WarehouseCapacityHistory

logger = logging.getLogger(__name__)


@dataclass
class CapacitySnapshot:
    warehouse_name: str
    total: int
    used: int
    available: int
    utilization_percent: float

    @classmethod
    def of(cls, record: WarehouseCapacity) -> "CapacitySnapshot":
        return cls(
            warehouse_name=record.warehouse_name,
            total=int(record.total_capacity),
            used=int(record.bins_used),
            available=record.available_bins,
            utilization_percent=record.utilization_percent,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ReconciliationReport:
    warehouse_name: str
    bins_used: int
    history_total: int
    history_entries: int
    reserved_shipments: int

    @property
    def consistent(self) -> bool:
        return self.bins_used == self.history_total

    @property
    def drift(self) -> int:
        return self.bins_used - self.history_total


@dataclass
class CapacityStatistics:
    warehouses: int
    total_capacity: int
    bins_used: int
    available: int
    utilization_percent: float
    full_warehouses: list[str]


class CapacityLedger:
    """
    Owns warehouse_capacity.bins_used.

    Every change takes a row lock on the warehouse, checks the bounds, writes the
    new value and appends exactly one warehouse_capacity_history row in the
    caller's transaction. Nothing here commits.
    """

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _now() -> datetime:
        return datetime.utcnow()

    @staticmethod
    def normalize_name(value: str | None) -> str:
        normalized = (value or "").strip().upper()
        if not normalized:
            raise InvalidField(message="warehouse_name is required.", details={"field": "warehouse_name"})
        return normalized

    @staticmethod
    def _system_actor(actor: str | None) -> str:
        return (actor or "").strip() or settings.SYSTEM_ACTOR_EMAIL

    def _get(self, warehouse_name: str, *, for_update: bool) -> WarehouseCapacity:
        name = self.normalize_name(warehouse_name)
        query = self.db.query(WarehouseCapacity).filter(WarehouseCapacity.warehouse_name == name)
        if for_update:
            query = query.populate_existing().with_for_update()
        record = query.first()
        if record is None:
            raise NotFound(
                message=f"Warehouse '{name}' is not configured.",
                details={"warehouse_name": name},
            )
        return record

    def require_warehouse(self, warehouse_name: str) -> str:
        return self._get(warehouse_name, for_update=False).warehouse_name

    def _write(
        self,
        record: WarehouseCapacity,
        new_used: int,
        *,
        actor: str,
        reason: str | None,
        shipment_id: int | None,
    ) -> WarehouseCapacityHistory:
        previous = int(record.bins_used)
        now = self._now()
        record.bins_used = new_used
        record.updated_by = actor
        record.updated_at = now
        entry = WarehouseCapacityHistory(
            warehouse_name=record.warehouse_name,
            previous_used=previous,
            new_used=new_used,
            delta=new_used - previous,
            actor=actor,
            reason=reason,
            shipment_id=shipment_id,
            changed_at=now,
        )
        self.db.add(entry)
        self.db.flush()
        flow_info(
            logger,
            "capacity_change warehouse=%s previous=%s new=%s delta=%s actor=%s shipment=%s reason=%s",
            record.warehouse_name,
            previous,
            new_used,
            new_used - previous,
            actor,
            shipment_id,
            reason,
            category="capacity",
        )
        return entry

    @staticmethod
    def _check_count(count: int) -> int:
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise InvalidField(message="count must be a positive integer.", details={"field": "count"})
        return count

    def reserve(
        self,
        warehouse_name: str,
        count: int = 1,
        *,
        actor: str | None = None,
        reason: str | None = None,
        shipment_id: int | None = None,
    ) -> int:
        """Take `count` bins. Returns the bins left available afterwards."""
        count = self._check_count(count)
        record = self._get(warehouse_name, for_update=True)
        if record.available_bins < count:
            raise CapacityExceeded(
                message=(
                    f"Warehouse {record.warehouse_name} has {record.available_bins} bin(s) available; "
                    f"{count} requested."
                ),
                details={
                    "warehouse_name": record.warehouse_name,
                    "available": record.available_bins,
                    "requested": count,
                },
            )
        self._write(
            record,
            int(record.bins_used) + count,
            actor=self._system_actor(actor),
            reason=reason or "reserve",
            shipment_id=shipment_id,
        )
        return record.available_bins

    def release(
        self,
        warehouse_name: str,
        count: int = 1,
        *,
        actor: str | None = None,
        reason: str | None = None,
        shipment_id: int | None = None,
    ) -> int:
        """Give back `count` bins. Returns the bins available afterwards."""
        count = self._check_count(count)
        record = self._get(warehouse_name, for_update=True)
        if int(record.bins_used) < count:
            raise CapacityUnderflow(
                message=(
                    f"Warehouse {record.warehouse_name} has {record.bins_used} bin(s) in use; "
                    f"cannot release {count}."
                ),
                details={
                    "warehouse_name": record.warehouse_name,
                    "used": int(record.bins_used),
                    "requested": count,
                },
            )
        self._write(
            record,
            int(record.bins_used) - count,
            actor=self._system_actor(actor),
            reason=reason or "release",
            shipment_id=shipment_id,
        )
        return record.available_bins

    def get_status(self, warehouse_name: str) -> CapacitySnapshot:
        return CapacitySnapshot.of(self._get(warehouse_name, for_update=False))

    def list_statuses(self) -> list[CapacitySnapshot]:
        records = self.db.query(WarehouseCapacity).order_by(WarehouseCapacity.warehouse_name.asc()).all()
        return [CapacitySnapshot.of(record) for record in records]

    def adjust_manually(
        self,
        warehouse_name: str,
        new_bins_used: int,
        *,
        actor: str,
        reason: str | None = None,
    ) -> CapacitySnapshot:
        record = self._get(warehouse_name, for_update=True)
        new_bins_used = int(new_bins_used)
        if new_bins_used < 0:
            raise CapacityUnderflow(
                message="bins_used cannot be negative.",
                details={"warehouse_name": record.warehouse_name, "requested": new_bins_used},
            )
        if new_bins_used > int(record.total_capacity):
            raise CapacityExceeded(
                message=(
                    f"bins_used {new_bins_used} exceeds total capacity "
                    f"{record.total_capacity} for {record.warehouse_name}."
                ),
                details={
                    "warehouse_name": record.warehouse_name,
                    "total": int(record.total_capacity),
                    "requested": new_bins_used,
                },
            )
        self._write(
            record,
            new_bins_used,
            actor=self._system_actor(actor),
            reason=(reason or "").strip() or "manual adjustment",
            shipment_id=None,
        )
        logger.info(
            "capacity_manual_adjustment warehouse=%s bins_used=%s actor=%s",
            record.warehouse_name,
            new_bins_used,
            actor,
        )
        return CapacitySnapshot.of(record)

    def register_warehouse(self, warehouse_name: str, total_capacity: int, *, actor: str) -> CapacitySnapshot:
        name = self.normalize_name(warehouse_name)
        total_capacity = int(total_capacity)
        if total_capacity < 0:
            raise InvalidField(
                message="total_capacity must be zero or greater.",
                details={"field": "total_capacity"},
            )
        existing = self.db.get(WarehouseCapacity, name)
        if existing is not None:
            raise InvalidField(
                message=f"Warehouse '{name}' already exists.",
                details={"field": "warehouse_name", "warehouse_name": name},
            )
        now = self._now()
        record = WarehouseCapacity(
            warehouse_name=name,
            total_capacity=total_capacity,
            bins_used=0,
            updated_by=self._system_actor(actor),
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        self.db.flush()
        logger.info("capacity_warehouse_registered warehouse=%s total=%s actor=%s", name, total_capacity, actor)
        return CapacitySnapshot.of(record)

    def set_total_capacity(self, warehouse_name: str, total_capacity: int, *, actor: str) -> CapacitySnapshot:
        """Resize a warehouse. bins_used is unchanged, so no history row is written."""
        record = self._get(warehouse_name, for_update=True)
        total_capacity = int(total_capacity)
        if total_capacity < int(record.bins_used):
            raise CapacityExceeded(
                message=(
                    f"Total capacity {total_capacity} is below the {record.bins_used} bin(s) "
                    f"already in use at {record.warehouse_name}."
                ),
                details={
                    "warehouse_name": record.warehouse_name,
                    "used": int(record.bins_used),
                    "requested": total_capacity,
                },
            )
        record.total_capacity = total_capacity
        record.updated_by = self._system_actor(actor)
        record.updated_at = self._now()
        self.db.flush()
        logger.info(
            "capacity_total_changed warehouse=%s total=%s actor=%s",
            record.warehouse_name,
            total_capacity,
            actor,
        )
        return CapacitySnapshot.of(record)

    def history(self, warehouse_name: str | None = None, *, limit: int = 50) -> list[WarehouseCapacityHistory]:
        query = self.db.query(WarehouseCapacityHistory)
        if warehouse_name is not None:
            name = self._get(warehouse_name, for_update=False).warehouse_name
            query = query.filter(WarehouseCapacityHistory.warehouse_name == name)
        limit = max(1, min(int(limit), 500))
        return (
            query.order_by(WarehouseCapacityHistory.changed_at.desc(), WarehouseCapacityHistory.id.desc())
            .limit(limit)
            .all()
        )

    def reconcile(self, warehouse_name: str) -> ReconciliationReport:
        """Compare bins_used with the sum of its history deltas and with shipments holding a bin."""
        record = self._get(warehouse_name, for_update=False)
        history_total, history_entries = (
            self.db.query(
                func.coalesce(func.sum(WarehouseCapacityHistory.delta), 0),
                func.count(WarehouseCapacityHistory.id),
            )
            .filter(WarehouseCapacityHistory.warehouse_name == record.warehouse_name)
            .one()
        )
        reserved_shipments = (
            self.db.query(func.count(Shipment.id))
            .filter(Shipment.receiving_warehouse == record.warehouse_name)
            .filter(Shipment.bin_reserved.is_(True))
            .scalar()
        )
        report = ReconciliationReport(
            warehouse_name=record.warehouse_name,
            bins_used=int(record.bins_used),
            history_total=int(history_total or 0),
            history_entries=int(history_entries or 0),
            reserved_shipments=int(reserved_shipments or 0),
        )
        if not report.consistent:
            logger.warning(
                "capacity_reconciliation_drift warehouse=%s bins_used=%s history_total=%s",
                report.warehouse_name,
                report.bins_used,
                report.history_total,
            )
        return report

    def statistics(self) -> CapacityStatistics:
        snapshots = self.list_statuses()
        total = sum(item.total for item in snapshots)
        used = sum(item.used for item in snapshots)
        return CapacityStatistics(
            warehouses=len(snapshots),
            total_capacity=total,
            bins_used=used,
            available=total - used,
            utilization_percent=round(used / total * 100, 2) if total else 0.0,
            full_warehouses=[item.warehouse_name for item in snapshots if item.total and item.available == 0],
        )
