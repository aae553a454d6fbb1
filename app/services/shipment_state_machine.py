"""
Shipment lifecycle rules.

The TRANSITIONS table is the only place that decides whether a
(current_status, requested_status) pair is legal. Everything else in this
module deals with the stage-specific fields a transition needs and with the
bin reservation/release a transition implies.

Nothing here commits: callers (ShipmentWorkflowService) own the transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from app.core.config import settings
from app.core.errors import InvalidField, InvalidTransition, MissingRequiredField
from app.core.flow_logging import flow_info
from app.models.enums import InspectionResult, ShipmentStatus
from app.models.shipment import Shipment, ShipmentStatusHistory
from app.services.capacity_ledger import CapacityLedger

logger = logging.getLogger(__name__)

S = ShipmentStatus

TRANSITIONS: dict[ShipmentStatus, frozenset[ShipmentStatus]] = {
    S.INTAKE: frozenset({S.PLANNED_AIRFREIGHT, S.PLANNED_SEAFREIGHT}),
    S.PLANNED_AIRFREIGHT: frozenset({S.IN_TRANSIT_AIRFREIGHT}),
    S.PLANNED_SEAFREIGHT: frozenset({S.IN_TRANSIT_SEAFREIGHT}),
    S.IN_TRANSIT_AIRFREIGHT: frozenset({S.ARRIVED_KLM, S.ARRIVED_PTA}),
    S.IN_TRANSIT_SEAFREIGHT: frozenset({S.ARRIVED_KLM, S.ARRIVED_PTA}),
    S.ARRIVED_KLM: frozenset({S.CLEARING_CUSTOMS}),
    S.ARRIVED_PTA: frozenset({S.CLEARING_CUSTOMS}),
    S.CLEARING_CUSTOMS: frozenset({S.IN_WAREHOUSE}),
    S.IN_WAREHOUSE: frozenset({S.UNLOADING}),
    S.UNLOADING: frozenset({S.INSPECTION_IN_PROGRESS}),
    S.INSPECTION_IN_PROGRESS: frozenset({S.INSPECTION_PASSED, S.INSPECTION_FAILED}),
    S.INSPECTION_PASSED: frozenset({S.RECEIVING_GOODS}),
    # inspection_failed -> unloading is the only backward edge (re-inspection).
    S.INSPECTION_FAILED: frozenset({S.UNLOADING, S.REJECTED}),
    S.RECEIVING_GOODS: frozenset({S.STORED, S.REJECTED}),
    S.STORED: frozenset({S.ARCHIVED}),
    S.REJECTED: frozenset({S.ARCHIVED}),
    S.ARCHIVED: frozenset(),
}

REJECTABLE_STATUSES = frozenset({S.INSPECTION_FAILED, S.RECEIVING_GOODS})
POST_ARRIVAL_STATUSES = frozenset(
    {
        S.ARRIVED_KLM,
        S.ARRIVED_PTA,
        S.CLEARING_CUSTOMS,
        S.IN_WAREHOUSE,
        S.UNLOADING,
        S.INSPECTION_IN_PROGRESS,
        S.INSPECTION_PASSED,
        S.INSPECTION_FAILED,
        S.RECEIVING_GOODS,
    }
)

_INSPECTION_OUTCOMES = frozenset({S.INSPECTION_PASSED, S.INSPECTION_FAILED})
_RECEIVING_TARGETS = frozenset({S.RECEIVING_GOODS, S.STORED})
_RESULTS_BY_TARGET = {
    S.INSPECTION_PASSED: frozenset({InspectionResult.PASS}),
    S.INSPECTION_FAILED: frozenset({InspectionResult.FAIL, InspectionResult.HOLD}),
}

# Field name -> targets that accept it. None means any target.
FIELD_TARGETS: dict[str, frozenset[ShipmentStatus] | None] = {
    "inspection_actor": _INSPECTION_OUTCOMES | {S.INSPECTION_IN_PROGRESS},
    "inspection_result": _INSPECTION_OUTCOMES,
    "inspection_notes": _INSPECTION_OUTCOMES | {S.INSPECTION_IN_PROGRESS},
    "receiving_actor": _RECEIVING_TARGETS,
    "received_quantity": _RECEIVING_TARGETS,
    "discrepancy_notes": _RECEIVING_TARGETS,
    "receiving_warehouse": frozenset(set(S) - {S.ARCHIVED, S.REJECTED}),
    "rejection_reason": frozenset({S.REJECTED}),
    "note": None,
}


def coerce_status(value: ShipmentStatus | str) -> ShipmentStatus:
    if isinstance(value, ShipmentStatus):
        return value
    normalized = (value or "").strip().lower()
    try:
        return ShipmentStatus(normalized)
    except ValueError:
        raise InvalidField(
            message=f"'{value}' is not a known shipment status.",
            details={"field": "target_status"},
        ) from None


def allowed_targets(status: ShipmentStatus) -> frozenset[ShipmentStatus]:
    return TRANSITIONS.get(status, frozenset())


def is_transition_allowed(current: ShipmentStatus, requested: ShipmentStatus) -> bool:
    return requested in allowed_targets(current)


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_quantity(value: Any, field_name: str) -> Decimal:
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidField(
            message=f"'{field_name}' must be a number.",
            details={"field": field_name},
        ) from None
    if not quantity.is_finite() or quantity < 0:
        raise InvalidField(
            message=f"'{field_name}' must be zero or greater.",
            details={"field": field_name},
        )
    return quantity


@dataclass
class TransitionOutcome:
    previous_status: ShipmentStatus
    new_status: ShipmentStatus
    reserved_in: str | None = None
    released_from: str | None = None
    available_bins: int | None = None

    @property
    def capacity_changed(self) -> bool:
        return self.reserved_in is not None or self.released_from is not None

    @property
    def warehouse_name(self) -> str | None:
        return self.reserved_in or self.released_from


class ShipmentStateMachine:
    def __init__(self, ledger: CapacityLedger, *, max_reinspection_cycles: int | None = None):
        self.ledger = ledger
        self._max_reinspection_cycles = max_reinspection_cycles

    @property
    def db(self):
        return self.ledger.db

    @staticmethod
    def _now() -> datetime:
        return datetime.utcnow()

    def max_reinspection_cycles(self) -> int:
        if self._max_reinspection_cycles is not None:
            return max(0, int(self._max_reinspection_cycles))
        return max(0, int(settings.REINSPECTION_MAX_CYCLES))

    def check_transition(self, shipment: Shipment, requested: ShipmentStatus) -> None:
        current = shipment.status
        if not is_transition_allowed(current, requested):
            raise InvalidTransition.between(current.value, requested.value)
        if current == S.INSPECTION_FAILED and requested == S.UNLOADING:
            limit = self.max_reinspection_cycles()
            if limit and shipment.reinspection_count >= limit:
                raise InvalidTransition.between(
                    current.value,
                    requested.value,
                    f"Re-inspection limit of {limit} cycle(s) reached; the shipment must be rejected.",
                )

    def _check_fields(self, fields: Mapping[str, Any], target: ShipmentStatus) -> None:
        for name in fields:
            if name not in FIELD_TARGETS:
                raise InvalidField(
                    message=f"'{name}' is not a recognised transition field.",
                    details={"field": name},
                )
            accepted = FIELD_TARGETS[name]
            if accepted is not None and target not in accepted:
                raise InvalidField(
                    message=f"'{name}' cannot be set when moving a shipment to '{target.value}'.",
                    details={"field": name, "requested_status": target.value},
                )

    def transition(
        self,
        shipment: Shipment,
        requested: ShipmentStatus,
        fields: Mapping[str, Any] | None,
        actor: str,
    ) -> TransitionOutcome:
        """
        Validate and apply one status change on an already-locked shipment row.

        Order matters: every check runs before the ledger is touched, and the
        ledger runs before any shipment attribute is written.
        """
        fields = {k: v for k, v in (fields or {}).items() if v is not None}
        self.check_transition(shipment, requested)
        self._check_fields(fields, requested)
        if "receiving_warehouse" in fields and shipment.bin_reserved:
            raise InvalidField(
                message="receiving_warehouse cannot change while the shipment holds a bin.",
                details={"field": "receiving_warehouse"},
            )

        current = shipment.status
        outcome = TransitionOutcome(previous_status=current, new_status=requested)
        now = self._now()
        apply = getattr(self, f"_enter_{requested.value}", None)
        if apply is not None:
            apply(shipment, fields, actor, now, outcome)
        elif "receiving_warehouse" in fields:
            shipment.receiving_warehouse = self.ledger.require_warehouse(fields["receiving_warehouse"])

        shipment.status = requested
        self.append_history(shipment, current, requested, actor, _clean_text(fields.get("note")), now)
        flow_info(
            logger,
            "shipment_transition shipment=%s order_ref=%s from=%s to=%s actor=%s",
            shipment.id,
            shipment.order_ref,
            current.value,
            requested.value,
            actor,
            category="workflow",
        )
        return outcome

    def append_history(
        self,
        shipment: Shipment,
        from_status: ShipmentStatus | None,
        to_status: ShipmentStatus,
        actor: str,
        note: str | None,
        changed_at: datetime | None = None,
    ) -> ShipmentStatusHistory:
        line = ShipmentStatusHistory(
            shipment_id=shipment.id,
            from_status=from_status,
            to_status=to_status,
            actor=actor,
            note=note,
            changed_at=changed_at or self._now(),
        )
        self.db.add(line)
        return line

    # --- stage handlers -------------------------------------------------

    def _enter_unloading(self, shipment, fields, actor, now, outcome) -> None:
        if "receiving_warehouse" in fields:
            shipment.receiving_warehouse = self.ledger.require_warehouse(fields["receiving_warehouse"])
        if outcome.previous_status == S.INSPECTION_FAILED:
            shipment.reinspection_count = (shipment.reinspection_count or 0) + 1
            shipment.inspection_result = None
            shipment.inspected_at = None
        shipment.unloading_started_at = now
        shipment.unloading_completed_at = None

    def _enter_inspection_in_progress(self, shipment, fields, actor, now, outcome) -> None:
        if "receiving_warehouse" in fields:
            shipment.receiving_warehouse = self.ledger.require_warehouse(fields["receiving_warehouse"])
        shipment.unloading_completed_at = now
        inspection_actor = _clean_text(fields.get("inspection_actor"))
        if inspection_actor:
            shipment.inspection_actor = inspection_actor
        notes = _clean_text(fields.get("inspection_notes"))
        if notes:
            shipment.inspection_notes = notes

    def _enter_inspection_outcome(self, shipment, fields, actor, now, outcome) -> None:
        target = outcome.new_status
        inspection_actor = _clean_text(fields.get("inspection_actor")) or shipment.inspection_actor
        if not inspection_actor:
            raise MissingRequiredField.for_field("inspection_actor", target.value)
        raw_result = fields.get("inspection_result")
        if raw_result is None or raw_result == "":
            raise MissingRequiredField.for_field("inspection_result", target.value)
        try:
            result = InspectionResult(getattr(raw_result, "value", raw_result))
        except ValueError:
            raise InvalidField(
                message=f"'{raw_result}' is not a valid inspection result (pass, fail or hold).",
                details={"field": "inspection_result"},
            ) from None
        if result not in _RESULTS_BY_TARGET[target]:
            raise InvalidField(
                message=f"Inspection result '{result.value}' does not match '{target.value}'.",
                details={"field": "inspection_result", "requested_status": target.value},
            )
        if "receiving_warehouse" in fields:
            shipment.receiving_warehouse = self.ledger.require_warehouse(fields["receiving_warehouse"])
        shipment.inspection_actor = inspection_actor
        shipment.inspection_result = result
        shipment.inspected_at = now
        notes = _clean_text(fields.get("inspection_notes"))
        if notes is not None:
            shipment.inspection_notes = notes

    _enter_inspection_passed = _enter_inspection_outcome
    _enter_inspection_failed = _enter_inspection_outcome

    def _enter_receiving_goods(self, shipment, fields, actor, now, outcome) -> None:
        quantity = None
        if "received_quantity" in fields:
            quantity = _as_quantity(fields["received_quantity"], "received_quantity")
        if "receiving_warehouse" in fields:
            shipment.receiving_warehouse = self.ledger.require_warehouse(fields["receiving_warehouse"])
        shipment.receiving_actor = _clean_text(fields.get("receiving_actor")) or actor
        shipment.receiving_started_at = now
        if quantity is not None:
            shipment.received_quantity = quantity
        notes = _clean_text(fields.get("discrepancy_notes"))
        if notes is not None:
            shipment.discrepancy_notes = notes

    def _enter_stored(self, shipment, fields, actor, now, outcome) -> None:
        if "received_quantity" in fields:
            quantity = _as_quantity(fields["received_quantity"], "received_quantity")
        elif shipment.received_quantity is not None:
            quantity = Decimal(str(shipment.received_quantity))
        else:
            raise MissingRequiredField.for_field("received_quantity", S.STORED.value)

        warehouse_value = fields.get("receiving_warehouse") or shipment.receiving_warehouse
        if not _clean_text(warehouse_value):
            raise MissingRequiredField.for_field("receiving_warehouse", S.STORED.value)

        warehouse_name = self.ledger.normalize_name(warehouse_value)
        outcome.available_bins = self.ledger.reserve(
            warehouse_name,
            1,
            actor=actor,
            reason=f"shipment {shipment.order_ref} stored",
            shipment_id=shipment.id,
        )
        outcome.reserved_in = warehouse_name

        shipment.receiving_warehouse = warehouse_name
        shipment.bin_reserved = True
        shipment.received_quantity = quantity
        if fields.get("receiving_actor"):
            shipment.receiving_actor = _clean_text(fields["receiving_actor"])
        notes = _clean_text(fields.get("discrepancy_notes"))
        if notes is not None:
            shipment.discrepancy_notes = notes
        shipment.stored_at = now

    def _release_held_bin(self, shipment: Shipment, actor: str, verb: str, outcome: TransitionOutcome) -> None:
        if not shipment.bin_reserved:
            return
        warehouse_name = shipment.receiving_warehouse
        outcome.available_bins = self.ledger.release(
            warehouse_name,
            1,
            actor=actor,
            reason=f"shipment {shipment.order_ref} {verb}",
            shipment_id=shipment.id,
        )
        outcome.released_from = warehouse_name
        shipment.bin_reserved = False

    def _enter_rejected(self, shipment, fields, actor, now, outcome) -> None:
        reason = _clean_text(fields.get("rejection_reason"))
        if not reason:
            raise MissingRequiredField.for_field("rejection_reason", S.REJECTED.value)
        self._release_held_bin(shipment, actor, "rejected", outcome)
        shipment.rejection_reason = reason
        shipment.rejection_actor = actor
        shipment.rejected_at = now

    def _enter_archived(self, shipment, fields, actor, now, outcome) -> None:
        self._release_held_bin(shipment, actor, "archived", outcome)
        shipment.archived_from_status = outcome.previous_status
        shipment.archived_at = now

    # --- non-transition stage updates ------------------------------------

    def record_discrepancy(
        self,
        shipment: Shipment,
        received_quantity: Any,
        note: str | None,
        actor: str,
    ) -> Decimal:
        """Store the counted quantity while receiving; status and capacity are untouched."""
        if shipment.status != S.RECEIVING_GOODS:
            raise InvalidTransition(
                message=(
                    f"Discrepancies can only be recorded while receiving goods; "
                    f"shipment is '{shipment.status.value}'."
                ),
                details={"current_status": shipment.status.value, "operation": "record_discrepancy"},
            )
        quantity = _as_quantity(received_quantity, "received_quantity")
        shipment.received_quantity = quantity
        cleaned = _clean_text(note)
        if cleaned is not None:
            shipment.discrepancy_notes = cleaned
        if not shipment.receiving_actor:
            shipment.receiving_actor = actor
        variance = quantity - Decimal(str(shipment.expected_quantity or 0))
        flow_info(
            logger,
            "shipment_discrepancy shipment=%s order_ref=%s received=%s variance=%s actor=%s",
            shipment.id,
            shipment.order_ref,
            quantity,
            variance,
            actor,
            category="workflow",
        )
        return variance
