from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import InspectionResult, ShipmentStatus, enum_values
from app.models.mixins import AuditMixin


def _status_type(name: str) -> Enum:
    return Enum(
        ShipmentStatus,
        name=name,
        native_enum=False,
        create_constraint=True,
        values_callable=enum_values,
        length=40,
    )


class Shipment(AuditMixin, Base):
    """
    One inbound order line, from intake to storage (or rejection).
    Mutated only through ShipmentWorkflowService.
    """
    __tablename__ = "shipments"

    __table_args__ = (
        CheckConstraint("week_number IS NULL OR (week_number BETWEEN 1 AND 53)", name="ck_shipments_week_number"),
        CheckConstraint("expected_quantity >= 0", name="ck_shipments_expected_quantity"),
        CheckConstraint(
            "received_quantity IS NULL OR received_quantity >= 0",
            name="ck_shipments_received_quantity",
        ),
        CheckConstraint(
            "(status = 'rejected' AND rejection_reason IS NOT NULL)"
            " OR (status = 'archived' AND archived_from_status = 'rejected' AND rejection_reason IS NOT NULL)"
            " OR (status = 'archived' AND (archived_from_status IS NULL OR archived_from_status <> 'rejected')"
            " AND rejection_reason IS NULL)"
            " OR (status NOT IN ('rejected', 'archived') AND rejection_reason IS NULL)",
            name="ck_shipments_rejection_reason",
        ),
        CheckConstraint(
            "bin_reserved = false OR receiving_warehouse IS NOT NULL",
            name="ck_shipments_bin_warehouse",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_ref: Mapped[str] = mapped_column(String(60), unique=True, index=True, nullable=False)
    supplier_id: Mapped[int] = mapped_column(
        ForeignKey("suppliers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    product_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expected_quantity: Mapped[float] = mapped_column(Numeric(15, 3), nullable=False, default=0)

    # Lifecycle
    status: Mapped[ShipmentStatus] = mapped_column(
        _status_type("shipment_status"),
        nullable=False,
        default=ShipmentStatus.INTAKE,
        index=True,
    )
    week_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    receiving_warehouse: Mapped[str | None] = mapped_column(
        ForeignKey("warehouse_capacity.warehouse_name", ondelete="RESTRICT"),
        nullable=True,
    )
    # True while this shipment holds one bin in receiving_warehouse.
    bin_reserved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Post-arrival workflow
    unloading_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    unloading_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    inspection_actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    inspection_result: Mapped[InspectionResult | None] = mapped_column(
        Enum(
            InspectionResult,
            name="inspection_result",
            native_enum=False,
            create_constraint=True,
            values_callable=enum_values,
            length=10,
        ),
        nullable=True,
    )
    inspection_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    inspected_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reinspection_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    receiving_actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    receiving_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    received_quantity: Mapped[float | None] = mapped_column(Numeric(15, 3), nullable=True)
    discrepancy_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    stored_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Rejection / archival
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    archived_from_status: Mapped[ShipmentStatus | None] = mapped_column(
        _status_type("shipment_archived_from_status"),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    supplier = relationship("Supplier", back_populates="shipments")
    status_history: Mapped[list["ShipmentStatusHistory"]] = relationship(
        "ShipmentStatusHistory",
        back_populates="shipment",
        order_by="ShipmentStatusHistory.id",
        cascade="all, delete-orphan",
    )

    @property
    def supplier_name(self) -> str | None:
        return self.supplier.name if self.supplier is not None else None

    @property
    def quantity_variance(self) -> float | None:
        if self.received_quantity is None:
            return None
        return float(self.received_quantity) - float(self.expected_quantity or 0)

    def __repr__(self) -> str:
        return f"<Shipment(order_ref={self.order_ref}, status={self.status})>"


class ShipmentStatusHistory(Base):
    """One line per accepted status transition."""
    __tablename__ = "shipment_status_history"

    __table_args__ = (
        Index("ix_shipment_status_history_shipment_changed", "shipment_id", "changed_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shipment_id: Mapped[int] = mapped_column(
        ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_status: Mapped[ShipmentStatus | None] = mapped_column(
        _status_type("shipment_history_from_status"),
        nullable=True,
    )
    to_status: Mapped[ShipmentStatus] = mapped_column(
        _status_type("shipment_history_to_status"),
        nullable=False,
    )
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())

    shipment: Mapped["Shipment"] = relationship("Shipment", back_populates="status_history")
