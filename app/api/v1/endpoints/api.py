from fastapi import APIRouter

from app.api.v1.endpoints import shipments, warehouse_capacity

api_router = APIRouter()

api_router.include_router(shipments.router, prefix="/shipments", tags=["Shipments"])
api_router.include_router(warehouse_capacity.router, prefix="/capacity", tags=["Warehouse Capacity"])
