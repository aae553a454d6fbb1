from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps.request_identity import get_request_actor
from app.api.deps.workflow import get_workflow_service, raise_workflow_failure
from app.core.errors import WorkflowFailure
from app.models.enums import ShipmentStatus
from app.schemas.shipment import (
    DiscrepancyRequest,
    DiscrepancyResponse,
    RejectRequest,
    ShipmentCreate,
    ShipmentStatisticsView,
    ShipmentView,
    StatusHistoryView,
    TransitionRequest,
    TransitionResponse,
)
from app.schemas.warehouse_capacity import CapacitySnapshotView
from app.services.authorization_service import Actor
from app.services.shipment_state_machine import POST_ARRIVAL_STATUSES
from app.services.workflow_orchestrator import ShipmentWorkflowService, TransitionResult

router = APIRouter()


def _transition_response(result: TransitionResult) -> TransitionResponse:
    capacity = None
    if result.capacity_snapshot is not None:
        capacity = CapacitySnapshotView.model_validate(result.capacity_snapshot)
    return TransitionResponse(
        success=result.success,
        status=result.new_status,
        shipment=ShipmentView.model_validate(result.shipment),
        capacity=capacity,
    )


@router.post("", response_model=ShipmentView, status_code=status.HTTP_201_CREATED)
def create_shipment(
    payload: ShipmentCreate,
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        shipment = service.create_shipment(
            order_ref=payload.order_ref,
            supplier_id=payload.supplier_id,
            actor=actor,
            product_name=payload.product_name,
            expected_quantity=payload.expected_quantity,
            week_number=payload.week_number,
            receiving_warehouse=payload.receiving_warehouse,
        )
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return ShipmentView.model_validate(shipment)


@router.get("", response_model=List[ShipmentView])
def list_shipments(
    status_filter: Optional[List[ShipmentStatus]] = Query(default=None, alias="status"),
    supplier_id: Optional[int] = Query(default=None),
    week_number: Optional[int] = Query(default=None, ge=1, le=53),
    warehouse: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        shipments = service.list_shipments(
            actor,
            statuses=status_filter or None,
            supplier_id=supplier_id,
            week_number=week_number,
            warehouse_name=warehouse,
            limit=limit,
            offset=offset,
        )
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return [ShipmentView.model_validate(item) for item in shipments]


@router.get("/statistics", response_model=ShipmentStatisticsView)
def shipment_statistics(
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        stats = service.shipment_statistics(actor)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return ShipmentStatisticsView.model_validate(stats)


@router.get("/archives", response_model=List[ShipmentView])
def list_archived_shipments(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        shipments = service.list_shipments(
            actor,
            statuses=[ShipmentStatus.ARCHIVED],
            limit=limit,
            offset=offset,
        )
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return [ShipmentView.model_validate(item) for item in shipments]


@router.get("/post-arrival", response_model=List[ShipmentView])
def list_post_arrival_shipments(
    warehouse: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        shipments = service.list_shipments(
            actor,
            statuses=POST_ARRIVAL_STATUSES,
            warehouse_name=warehouse,
            limit=limit,
            offset=offset,
        )
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return [ShipmentView.model_validate(item) for item in shipments]


@router.get("/{shipment_id}", response_model=ShipmentView)
def get_shipment(
    shipment_id: int,
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        shipment = service.get_shipment(shipment_id, actor)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return ShipmentView.model_validate(shipment)


@router.get("/{shipment_id}/history", response_model=List[StatusHistoryView])
def get_shipment_history(
    shipment_id: int,
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        rows = service.status_history(shipment_id, actor)
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return [StatusHistoryView.model_validate(row) for row in rows]


@router.post("/{shipment_id}/transition", response_model=TransitionResponse)
def transition_shipment(
    shipment_id: int,
    payload: TransitionRequest,
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        result = service.request_transition(
            shipment_id,
            payload.target_status,
            actor,
            fields=payload.fields.model_dump(exclude_none=True),
            expected_version=payload.expected_version,
        )
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return _transition_response(result)


@router.post("/{shipment_id}/reject", response_model=TransitionResponse)
def reject_shipment(
    shipment_id: int,
    payload: RejectRequest,
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        result = service.reject(
            shipment_id,
            payload.reason,
            actor,
            auto_archive=payload.auto_archive,
            expected_version=payload.expected_version,
        )
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return _transition_response(result)


@router.post("/{shipment_id}/discrepancy", response_model=DiscrepancyResponse)
def record_discrepancy(
    shipment_id: int,
    payload: DiscrepancyRequest,
    service: ShipmentWorkflowService = Depends(get_workflow_service),
    actor: Actor = Depends(get_request_actor),
):
    try:
        result = service.record_discrepancy(
            shipment_id,
            payload.received_quantity,
            actor,
            note=payload.note,
            expected_version=payload.expected_version,
        )
    except WorkflowFailure as exc:
        raise_workflow_failure(exc)
    return DiscrepancyResponse(
        shipment=ShipmentView.model_validate(result.shipment),
        received_quantity=result.received_quantity,
        variance=result.variance,
    )
