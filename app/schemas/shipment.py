from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.enums import InspectionResult, ShipmentStatus
from .base import BaseSchema
from .warehouse_capacity import CapacitySnapshotView


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = value.strip()
    return text or None


class ShipmentCreate(BaseModel):
    order_ref: str = Field(min_length=1, max_length=60)
    supplier_id: int = Field(ge=1)
    product_name: Optional[str] = Field(default=None, max_length=255)
    expected_quantity: Decimal = Field(default=Decimal("0"), ge=0, max_digits=15, decimal_places=3)
    week_number: Optional[int] = Field(default=None, ge=1, le=53)
    receiving_warehouse: Optional[str] = Field(default=None, max_length=60)

    @field_validator("order_ref")
    @classmethod
    def strip_order_ref(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("order_ref is required.")
        return value


class TransitionFields(BaseModel):
    """Stage-specific values sent along with a status change."""

    model_config = ConfigDict(extra="forbid")

    inspection_actor: Optional[str] = Field(default=None, max_length=255)
    inspection_result: Optional[InspectionResult] = None
    inspection_notes: Optional[str] = None
    receiving_actor: Optional[str] = Field(default=None, max_length=255)
    received_quantity: Optional[Decimal] = Field(default=None, ge=0, max_digits=15, decimal_places=3)
    discrepancy_notes: Optional[str] = None
    receiving_warehouse: Optional[str] = Field(default=None, max_length=60)
    rejection_reason: Optional[str] = None
    note: Optional[str] = None

    @field_validator(
        "inspection_actor",
        "inspection_notes",
        "receiving_actor",
        "discrepancy_notes",
        "receiving_warehouse",
        "rejection_reason",
        "note",
    )
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip_or_none(value)


class TransitionRequest(BaseModel):
    target_status: str = Field(min_length=1, max_length=40)
    fields: TransitionFields = Field(default_factory=TransitionFields)
    expected_version: Optional[int] = Field(default=None, ge=1)


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1)
    auto_archive: bool = False
    expected_version: Optional[int] = Field(default=None, ge=1)

    @field_validator("reason")
    @classmethod
    def require_reason(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("reason is required.")
        return value


class DiscrepancyRequest(BaseModel):
    received_quantity: Decimal = Field(ge=0, max_digits=15, decimal_places=3)
    note: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


class ShipmentView(BaseSchema):
    id: int
    order_ref: str
    supplier_id: int
    supplier_name: Optional[str] = None
    product_name: Optional[str] = None
    expected_quantity: Decimal
    status: ShipmentStatus
    week_number: Optional[int] = None
    receiving_warehouse: Optional[str] = None
    bin_reserved: bool
    unloading_started_at: Optional[datetime] = None
    unloading_completed_at: Optional[datetime] = None
    inspection_actor: Optional[str] = None
    inspection_result: Optional[InspectionResult] = None
    inspection_notes: Optional[str] = None
    inspected_at: Optional[datetime] = None
    reinspection_count: int = 0
    receiving_actor: Optional[str] = None
    receiving_started_at: Optional[datetime] = None
    received_quantity: Optional[Decimal] = None
    quantity_variance: Optional[float] = None
    discrepancy_notes: Optional[str] = None
    stored_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    rejection_actor: Optional[str] = None
    rejected_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    archived_from_status: Optional[ShipmentStatus] = None
    version: int
    created_by: str
    last_changed_by: str
    created_at: datetime
    updated_at: datetime


class StatusHistoryView(BaseSchema):
    id: int
    from_status: Optional[ShipmentStatus] = None
    to_status: ShipmentStatus
    actor: str
    note: Optional[str] = None
    changed_at: datetime


class TransitionResponse(BaseModel):
    success: bool = True
    status: ShipmentStatus
    shipment: ShipmentView
    capacity: Optional[CapacitySnapshotView] = None


class DiscrepancyResponse(BaseModel):
    shipment: ShipmentView
    received_quantity: Decimal
    variance: Decimal


class ShipmentStatisticsView(BaseSchema):
    total: int
    by_status: dict[str, int]
    in_transit: int
    arrived: int
    post_arrival: int
    stored: int
    rejected: int
    archived: int
