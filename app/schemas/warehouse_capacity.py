from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .base import BaseSchema


class CapacitySnapshotView(BaseSchema):
    warehouse_name: str
    total: int
    used: int
    available: int
    utilization_percent: float


class WarehouseCreate(BaseModel):
    warehouse_name: str = Field(min_length=1, max_length=60)
    total_capacity: int = Field(ge=0)


class CapacityAdjustRequest(BaseModel):
    bins_used: int
    reason: Optional[str] = Field(default=None, max_length=500)


class TotalCapacityRequest(BaseModel):
    total_capacity: int = Field(ge=0)


class CapacityHistoryView(BaseSchema):
    id: int
    warehouse_name: str
    previous_used: int
    new_used: int
    delta: int
    actor: str
    reason: Optional[str] = None
    shipment_id: Optional[int] = None
    changed_at: datetime


class ReconciliationView(BaseSchema):
    warehouse_name: str
    bins_used: int
    history_total: int
    history_entries: int
    reserved_shipments: int
    consistent: bool
    drift: int


class CapacityStatisticsView(BaseSchema):
    warehouses: int
    total_capacity: int
    bins_used: int
    available: int
    utilization_percent: float
    full_warehouses: list[str]
