from __future__ import annotations

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.errors import WorkflowFailure
from app.db.session import get_db
from app.services.workflow_orchestrator import ShipmentWorkflowService


def get_workflow_service(db: Session = Depends(get_db)) -> ShipmentWorkflowService:
    return ShipmentWorkflowService(db)


def raise_workflow_failure(exc: WorkflowFailure) -> None:
    headers = {"Retry-After": "1"} if exc.retryable else None
    raise HTTPException(status_code=exc.status_code, detail=exc.to_detail(), headers=headers) from exc
