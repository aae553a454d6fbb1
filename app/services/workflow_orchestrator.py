from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Iterator, Mapping

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import Busy, InvalidField, InvalidTransition, NotFound, Stale, WorkflowFailure
from app.core.flow_logging import flow_info
from app.db.session import apply_lock_timeout
from app.models.enums import ShipmentStatus, UserRole
from app.models.shipment import Shipment, ShipmentStatusHistory
from app.models.supplier import Supplier
from app.services.authorization_service import Action, Actor, authorize
from app.services.capacity_ledger import CapacityLedger, CapacitySnapshot
from app.services.shipment_state_machine import (
    POST_ARRIVAL_STATUSES,
    REJECTABLE_STATUSES,
    ShipmentStateMachine,
    coerce_status,
)

logger = logging.getLogger(__name__)

_LOCK_TIMEOUT_PGCODES = {"55P03", "40P01"}
_LOCK_TIMEOUT_MARKERS = ("database is locked", "lock timeout", "could not obtain lock", "deadlock detected")


def is_lock_timeout(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in _LOCK_TIMEOUT_PGCODES:
        return True
    message = str(orig or exc).lower()
    return any(marker in message for marker in _LOCK_TIMEOUT_MARKERS)


@dataclass
class TransitionResult:
    success: bool
    new_status: ShipmentStatus
    shipment: Shipment
    capacity_snapshot: CapacitySnapshot | None = None


@dataclass
class DiscrepancyResult:
    shipment: Shipment
    received_quantity: Decimal
    variance: Decimal


_IN_TRANSIT = frozenset({ShipmentStatus.IN_TRANSIT_AIRFREIGHT, ShipmentStatus.IN_TRANSIT_SEAFREIGHT})
_ARRIVED = frozenset({ShipmentStatus.ARRIVED_KLM, ShipmentStatus.ARRIVED_PTA})


@dataclass
class ShipmentStatistics:
    total: int
    by_status: dict[str, int]
    in_transit: int
    arrived: int
    post_arrival: int
    stored: int
    rejected: int
    archived: int

    @classmethod
    def from_counts(cls, counts: Mapping[ShipmentStatus, int]) -> "ShipmentStatistics":
        def _sum(statuses: Iterable[ShipmentStatus]) -> int:
            return sum(counts.get(status, 0) for status in statuses)

        return cls(
            total=sum(counts.values()),
            by_status={status.value: counts.get(status, 0) for status in ShipmentStatus},
            in_transit=_sum(_IN_TRANSIT),
            arrived=_sum(_ARRIVED),
            post_arrival=_sum(POST_ARRIVAL_STATUSES),
            stored=counts.get(ShipmentStatus.STORED, 0),
            rejected=counts.get(ShipmentStatus.REJECTED, 0),
            archived=counts.get(ShipmentStatus.ARCHIVED, 0),
        )


class ShipmentWorkflowService:
    """
    Single entry point for every shipment and capacity mutation.

    Each public method is one transaction: lock the shipment row, then (through
    the state machine and ledger) the warehouse row, apply the change, commit.
    Any failure rolls everything back and surfaces as a WorkflowFailure.
    """

    def __init__(self, db: Session):
        self.db = db
        self.ledger = CapacityLedger(db)
        self.state_machine = ShipmentStateMachine(self.ledger)

    @contextmanager
    def _transaction(self, operation: str, **context: Any) -> Iterator[None]:
        try:
            apply_lock_timeout(self.db)
            yield
            self.db.commit()
        except WorkflowFailure as exc:
            self.db.rollback()
            logger.warning(
                "workflow_rejected operation=%s kind=%s context=%s message=%s",
                operation,
                exc.kind,
                context,
                exc.message,
            )
            raise
        except StaleDataError as exc:
            self.db.rollback()
            logger.warning("workflow_stale operation=%s context=%s", operation, context)
            raise Stale(
                message="The record was changed by another request. Reload and retry.",
                details=context or {},
            ) from exc
        except OperationalError as exc:
            self.db.rollback()
            if is_lock_timeout(exc):
                logger.warning("workflow_busy operation=%s context=%s", operation, context)
                raise Busy(
                    message="The record is locked by another request. Retry shortly.",
                    details=context or {},
                ) from exc
            logger.exception("workflow_failed operation=%s context=%s", operation, context)
            raise
        except Exception:
            self.db.rollback()
            logger.exception("workflow_failed operation=%s context=%s", operation, context)
            raise

    def _lock_shipment(self, shipment_id: int) -> Shipment:
        shipment = (
            self.db.query(Shipment)
            .filter(Shipment.id == shipment_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if shipment is None:
            raise NotFound(message=f"Shipment {shipment_id} not found.", details={"shipment_id": shipment_id})
        return shipment

    @staticmethod
    def _check_version(shipment: Shipment, expected_version: int | None) -> None:
        if expected_version is None:
            return
        if int(expected_version) != int(shipment.version):
            raise Stale(
                message=(
                    f"Shipment {shipment.id} is at version {shipment.version}; "
                    f"request was based on version {expected_version}."
                ),
                details={
                    "shipment_id": shipment.id,
                    "current_version": int(shipment.version),
                    "expected_version": int(expected_version),
                },
            )

    def _snapshot(self, warehouse_name: str | None) -> CapacitySnapshot | None:
        if not warehouse_name:
            return None
        return self.ledger.get_status(warehouse_name)

    # --- reads ------------------------------------------------------------

    def get_shipment(self, shipment_id: int, actor: Actor) -> Shipment:
        authorize(actor, Action.VIEW)
        shipment = self.db.get(Shipment, shipment_id)
        if shipment is None:
            raise NotFound(message=f"Shipment {shipment_id} not found.", details={"shipment_id": shipment_id})
        if actor.role is UserRole.SUPPLIER and shipment.supplier_id != actor.supplier_id:
            # Supplier users only see their own shipments.
            raise NotFound(message=f"Shipment {shipment_id} not found.", details={"shipment_id": shipment_id})
        return shipment

    def list_shipments(
        self,
        actor: Actor,
        *,
        statuses: Iterable[ShipmentStatus] | None = None,
        warehouse_name: str | None = None,
        supplier_id: int | None = None,
        week_number: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Shipment]:
        authorize(actor, Action.VIEW)
        query = self._visible_shipments(actor)
        if statuses is not None:
            query = query.filter(Shipment.status.in_(list(statuses)))
        if warehouse_name:
            query = query.filter(Shipment.receiving_warehouse == self.ledger.normalize_name(warehouse_name))
        if supplier_id is not None:
            query = query.filter(Shipment.supplier_id == supplier_id)
        if week_number is not None:
            query = query.filter(Shipment.week_number == week_number)
        return query.order_by(Shipment.updated_at.desc(), Shipment.id.desc()).offset(offset).limit(limit).all()

    def shipment_statistics(self, actor: Actor) -> ShipmentStatistics:
        authorize(actor, Action.VIEW)
        rows = (
            self._visible_shipments(actor)
            .with_entities(Shipment.status, func.count(Shipment.id))
            .group_by(Shipment.status)
            .all()
        )
        return ShipmentStatistics.from_counts({status: count for status, count in rows})

    def _visible_shipments(self, actor: Actor):
        query = self.db.query(Shipment)
        if actor.role is UserRole.SUPPLIER:
            # Supplier users only see their own shipments.
            query = query.filter(Shipment.supplier_id == actor.supplier_id)
        return query

    def status_history(self, shipment_id: int, actor: Actor) -> list[ShipmentStatusHistory]:
        shipment = self.get_shipment(shipment_id, actor)
        return (
            self.db.query(ShipmentStatusHistory)
            .filter(ShipmentStatusHistory.shipment_id == shipment.id)
            .order_by(ShipmentStatusHistory.changed_at.asc(), ShipmentStatusHistory.id.asc())
            .all()
        )

    def capacity_status(self, warehouse_name: str, actor: Actor) -> CapacitySnapshot:
        authorize(actor, Action.VIEW)
        return self.ledger.get_status(warehouse_name)

    # --- shipment mutations ----------------------------------------------

    def create_shipment(
        self,
        *,
        order_ref: str,
        supplier_id: int,
        actor: Actor,
        product_name: str | None = None,
        expected_quantity: Decimal | float | int = 0,
        week_number: int | None = None,
        receiving_warehouse: str | None = None,
    ) -> Shipment:
        authorize(actor, Action.CREATE_SHIPMENT)
        order_ref = (order_ref or "").strip()
        with self._transaction("create_shipment", order_ref=order_ref):
            if not order_ref:
                raise InvalidField(message="order_ref is required.", details={"field": "order_ref"})
            if self.db.query(Shipment.id).filter(Shipment.order_ref == order_ref).first() is not None:
                raise InvalidField(
                    message=f"Shipment with order_ref '{order_ref}' already exists.",
                    details={"field": "order_ref"},
                )
            supplier = self.db.get(Supplier, supplier_id)
            if supplier is None or not supplier.is_active:
                raise NotFound(message=f"Supplier {supplier_id} not found.", details={"supplier_id": supplier_id})
            if week_number is not None and not 1 <= int(week_number) <= 53:
                raise InvalidField(message="week_number must be between 1 and 53.", details={"field": "week_number"})
            if Decimal(str(expected_quantity)) < 0:
                raise InvalidField(
                    message="expected_quantity must be zero or greater.",
                    details={"field": "expected_quantity"},
                )
            warehouse = self.ledger.require_warehouse(receiving_warehouse) if receiving_warehouse else None

            shipment = Shipment(
                order_ref=order_ref,
                supplier_id=supplier.id,
                product_name=(product_name or "").strip() or None,
                expected_quantity=expected_quantity,
                week_number=week_number,
                receiving_warehouse=warehouse,
                status=ShipmentStatus.INTAKE,
                created_by=actor.email,
                last_changed_by=actor.email,
            )
            self.db.add(shipment)
            try:
                self.db.flush()
            except IntegrityError as exc:
                raise InvalidField(
                    message=f"Shipment with order_ref '{order_ref}' already exists.",
                    details={"field": "order_ref"},
                ) from exc
            self.state_machine.append_history(shipment, None, ShipmentStatus.INTAKE, actor.email, "created")
        logger.info("shipment_created id=%s order_ref=%s actor=%s", shipment.id, order_ref, actor.email)
        return shipment

    def request_transition(
        self,
        shipment_id: int,
        target_status: ShipmentStatus | str,
        actor: Actor,
        fields: Mapping[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        authorize(actor, Action.TRANSITION)
        target = coerce_status(target_status)
        with self._transaction("transition", shipment_id=shipment_id, target=target.value):
            shipment = self._lock_shipment(shipment_id)
            self._check_version(shipment, expected_version)
            outcome = self.state_machine.transition(shipment, target, fields, actor.email)
            shipment.touch(actor.email)
            self.db.flush()
            snapshot = self._snapshot(outcome.warehouse_name)
        return TransitionResult(
            success=True,
            new_status=outcome.new_status,
            shipment=shipment,
            capacity_snapshot=snapshot,
        )

    def reject(
        self,
        shipment_id: int,
        reason: str,
        actor: Actor,
        *,
        auto_archive: bool = False,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """Reject (releasing any held bin) and optionally archive in the same transaction."""
        authorize(actor, Action.REJECT)
        with self._transaction("reject", shipment_id=shipment_id, auto_archive=auto_archive):
            shipment = self._lock_shipment(shipment_id)
            self._check_version(shipment, expected_version)
            if shipment.status not in REJECTABLE_STATUSES:
                allowed = ", ".join(sorted(status.value for status in REJECTABLE_STATUSES))
                raise InvalidTransition.between(
                    shipment.status.value,
                    ShipmentStatus.REJECTED.value,
                    f"Only shipments in {allowed} can be rejected.",
                )
            outcome = self.state_machine.transition(
                shipment,
                ShipmentStatus.REJECTED,
                {"rejection_reason": reason},
                actor.email,
            )
            warehouse_name = outcome.warehouse_name
            if auto_archive:
                archived = self.state_machine.transition(
                    shipment,
                    ShipmentStatus.ARCHIVED,
                    {"note": "archived on rejection"},
                    actor.email,
                )
                warehouse_name = warehouse_name or archived.warehouse_name
            shipment.touch(actor.email)
            self.db.flush()
            snapshot = self._snapshot(warehouse_name)
        flow_info(
            logger,
            "shipment_rejected shipment=%s actor=%s auto_archive=%s",
            shipment_id,
            actor.email,
            auto_archive,
            category="workflow",
        )
        return TransitionResult(
            success=True,
            new_status=shipment.status,
            shipment=shipment,
            capacity_snapshot=snapshot,
        )

    def record_discrepancy(
        self,
        shipment_id: int,
        received_quantity: Decimal | float | int,
        actor: Actor,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> DiscrepancyResult:
        authorize(actor, Action.RECORD_DISCREPANCY)
        with self._transaction("record_discrepancy", shipment_id=shipment_id):
            shipment = self._lock_shipment(shipment_id)
            self._check_version(shipment, expected_version)
            variance = self.state_machine.record_discrepancy(shipment, received_quantity, note, actor.email)
            quantity = Decimal(str(shipment.received_quantity))
            shipment.touch(actor.email)
            self.db.flush()
        return DiscrepancyResult(shipment=shipment, received_quantity=quantity, variance=variance)

    # --- capacity administration -----------------------------------------

    def adjust_capacity(
        self,
        warehouse_name: str,
        bins_used: int,
        actor: Actor,
        reason: str | None = None,
    ) -> CapacitySnapshot:
        authorize(actor, Action.ADJUST_CAPACITY)
        with self._transaction("adjust_capacity", warehouse_name=warehouse_name):
            snapshot = self.ledger.adjust_manually(warehouse_name, bins_used, actor=actor.email, reason=reason)
        return snapshot

    def set_total_capacity(self, warehouse_name: str, total_capacity: int, actor: Actor) -> CapacitySnapshot:
        authorize(actor, Action.CONFIGURE_WAREHOUSE)
        with self._transaction("set_total_capacity", warehouse_name=warehouse_name):
            snapshot = self.ledger.set_total_capacity(warehouse_name, total_capacity, actor=actor.email)
        return snapshot

    def register_warehouse(self, warehouse_name: str, total_capacity: int, actor: Actor) -> CapacitySnapshot:
        authorize(actor, Action.CONFIGURE_WAREHOUSE)
        with self._transaction("register_warehouse", warehouse_name=warehouse_name):
            snapshot = self.ledger.register_warehouse(warehouse_name, total_capacity, actor=actor.email)
        return snapshot
