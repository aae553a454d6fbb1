from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
    func,
)
from sqlalchemy.orm import Mapped, Session, mapped_column

from app.db.base import Base


class WarehouseCapacity(Base):
    """Bin capacity of one physical warehouse. bins_used moves only through the ledger."""
    __tablename__ = "warehouse_capacity"

    __table_args__ = (
        CheckConstraint("total_capacity >= 0", name="ck_warehouse_capacity_total"),
        CheckConstraint("bins_used >= 0", name="ck_warehouse_capacity_used_floor"),
        CheckConstraint("bins_used <= total_capacity", name="ck_warehouse_capacity_used_ceiling"),
    )

    warehouse_name: Mapped[str] = mapped_column(String(60), primary_key=True)
    total_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bins_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def available_bins(self) -> int:
        return int(self.total_capacity) - int(self.bins_used)

    @property
    def utilization_percent(self) -> float:
        if not self.total_capacity:
            return 0.0
        return round(int(self.bins_used) / int(self.total_capacity) * 100, 2)

    def __repr__(self) -> str:
        return f"<WarehouseCapacity({self.warehouse_name} used={self.bins_used}/{self.total_capacity})>"


class WarehouseCapacityHistory(Base):
    """Append-only capacity ledger. No UPDATE or DELETE."""
    __tablename__ = "warehouse_capacity_history"

    __table_args__ = (
        Index("ix_warehouse_capacity_history_name_changed", "warehouse_name", "changed_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    warehouse_name: Mapped[str] = mapped_column(
        ForeignKey("warehouse_capacity.warehouse_name", ondelete="RESTRICT"),
        nullable=False,
    )
    previous_used: Mapped[int] = mapped_column(Integer, nullable=False)
    new_used: Mapped[int] = mapped_column(Integer, nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    shipment_id: Mapped[int | None] = mapped_column(
        ForeignKey("shipments.id", ondelete="RESTRICT"),
        nullable=True,
    )
    changed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())


class AppendOnlyViolation(RuntimeError):
    pass


@event.listens_for(Session, "before_flush")
def _guard_capacity_history(session: Session, _flush_context, _instances) -> None:
    for obj in session.dirty:
        if isinstance(obj, WarehouseCapacityHistory) and session.is_modified(obj):
            raise AppendOnlyViolation("warehouse_capacity_history rows cannot be updated.")
    for obj in session.deleted:
        if isinstance(obj, WarehouseCapacityHistory):
            raise AppendOnlyViolation("warehouse_capacity_history rows cannot be deleted.")
