from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status

from app.api.deps.request_identity import get_request_actor
from app.api.deps.workflow import get_workflow_service, raise_workflow_failure
from app.core.errors import WorkflowFailure
from app.schemas.warehouse_capacity import (
    CapacityAdjustRequest,
    CapacityHistoryView,
    CapacitySnapshotView,
    CapacityStatisticsView,
    ReconciliationView,
    TotalCapacityRequest,
    WarehouseCreate,
)
from app.services.authorization_service import Action, Actor, authorize
from app.services.workflow_orchestrator import ShipmentWorkflowService

router = APIRouter()


@router.get("", response_model=List[CapacitySnapshotView])
def list_capacity(
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        authorize(actor, Action.VIEW)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return [CapacitySnapshotView.model_validate(item) for item in service.ledger.list_statuses()]


@router.post("", response_model=CapacitySnapshotView, status_code=status.HTTP_201_CREATED)
def register_warehouse(
    payload: WarehouseCreate,
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        snapshot = service.register_warehouse(payload.warehouse_name, payload.total_capacity, actor)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return CapacitySnapshotView.model_validate(snapshot)


@router.get("/statistics", response_model=CapacityStatisticsView)
def capacity_statistics(
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        authorize(actor, Action.VIEW)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return CapacityStatisticsView.model_validate(service.ledger.statistics())


@router.get("/history/all", response_model=List[CapacityHistoryView])
def list_all_capacity_history(
    limit: int = Query(default=50, ge=1, le=500),
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        authorize(actor, Action.VIEW)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return [CapacityHistoryView.model_validate(row) for row in service.ledger.history(limit=limit)]


@router.get("/{warehouse_name}", response_model=CapacitySnapshotView)
def get_capacity(
    warehouse_name: str,
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        snapshot = service.capacity_status(warehouse_name, actor)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return CapacitySnapshotView.model_validate(snapshot)


@router.put("/{warehouse_name}", response_model=CapacitySnapshotView)
def adjust_capacity(
    warehouse_name: str,
    payload: CapacityAdjustRequest,
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        snapshot = service.adjust_capacity(warehouse_name, payload.bins_used, actor, reason=payload.reason)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return CapacitySnapshotView.model_validate(snapshot)


@router.put("/{warehouse_name}/total-capacity", response_model=CapacitySnapshotView)
def set_total_capacity(
    warehouse_name: str,
    payload: TotalCapacityRequest,
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        snapshot = service.set_total_capacity(warehouse_name, payload.total_capacity, actor)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return CapacitySnapshotView.model_validate(snapshot)


@router.get("/{warehouse_name}/history", response_model=List[CapacityHistoryView])
def get_capacity_history(
    warehouse_name: str,
    limit: int = Query(default=50, ge=1, le=500),
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        authorize(actor, Action.VIEW)
        rows = service.ledger.history(warehouse_name, limit=limit)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return [CapacityHistoryView.model_validate(row) for row in rows]


@router.get("/{warehouse_name}/reconciliation", response_model=ReconciliationView)
def reconcile_capacity(
    warehouse_name: str,
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        authorize(actor, Action.ADJUST_CAPACITY)
        report = service.ledger.reconcile(warehouse_name)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return ReconciliationView.model_validate(report)
