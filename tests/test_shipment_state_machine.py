from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.core.errors import InvalidField, InvalidTransition, MissingRequiredField
from app.models.enums import InspectionResult, ShipmentStatus as S
from app.models.warehouse_capacity import WarehouseCapacity
from app.services.capacity_ledger import CapacityLedger
from app.services.shipment_state_machine import (
    TRANSITIONS,
    ShipmentStateMachine,
    coerce_status,
    is_transition_allowed,
)
from tests.factories import make_shipment, make_supplier, make_warehouse


@pytest.fixture
def machine(db_session):
    return ShipmentStateMachine(CapacityLedger(db_session))


@pytest.fixture
def supplier(db_session):
    return make_supplier(db_session)


def test_every_status_has_a_transition_entry():
    assert set(TRANSITIONS) == set(S)
    assert TRANSITIONS[S.ARCHIVED] == frozenset()


@pytest.mark.parametrize(
    "current,requested",
    [
        (S.INTAKE, S.PLANNED_SEAFREIGHT),
        (S.PLANNED_AIRFREIGHT, S.IN_TRANSIT_AIRFREIGHT),
        (S.IN_TRANSIT_SEAFREIGHT, S.ARRIVED_KLM),
        (S.ARRIVED_PTA, S.CLEARING_CUSTOMS),
        (S.IN_WAREHOUSE, S.UNLOADING),
        (S.INSPECTION_FAILED, S.UNLOADING),
        (S.INSPECTION_FAILED, S.REJECTED),
        (S.RECEIVING_GOODS, S.REJECTED),
        (S.STORED, S.ARCHIVED),
        (S.REJECTED, S.ARCHIVED),
    ],
)
def test_allowed_pairs(current, requested):
    assert is_transition_allowed(current, requested)


@pytest.mark.parametrize(
    "current,requested",
    [
        (S.INTAKE, S.STORED),
        (S.PLANNED_AIRFREIGHT, S.IN_TRANSIT_SEAFREIGHT),
        (S.INSPECTION_PASSED, S.UNLOADING),
        (S.STORED, S.REJECTED),
        (S.STORED, S.STORED),
        (S.REJECTED, S.REJECTED),
        (S.ARCHIVED, S.INTAKE),
        (S.IN_WAREHOUSE, S.INSPECTION_IN_PROGRESS),
    ],
)
def test_disallowed_pairs_raise_invalid_transition(db_session, machine, supplier, current, requested):
    shipment = make_shipment(db_session, supplier, status=current)

    with pytest.raises(InvalidTransition) as exc_info:
        machine.transition(shipment, requested, {}, "operator@example.com")

    assert exc_info.value.details["current_status"] == current.value
    assert exc_info.value.details["requested_status"] == requested.value
    assert shipment.status == current


def test_coerce_status_accepts_case_and_whitespace():
    assert coerce_status("  Inspection_Passed ") is S.INSPECTION_PASSED


def test_coerce_status_rejects_unknown_name():
    with pytest.raises(InvalidField):
        coerce_status("teleported")


def test_transition_appends_status_history(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.INTAKE)

    machine.transition(shipment, S.PLANNED_AIRFREIGHT, {"note": "booked on ET 845"}, "ops@example.com")
    db_session.flush()

    history = shipment.status_history
    assert len(history) == 1
    assert history[0].from_status == S.INTAKE
    assert history[0].to_status == S.PLANNED_AIRFREIGHT
    assert history[0].actor == "ops@example.com"
    assert history[0].note == "booked on ET 845"


def test_unloading_and_inspection_timestamps(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.IN_WAREHOUSE)

    machine.transition(shipment, S.UNLOADING, {}, "ops@example.com")
    assert shipment.unloading_started_at is not None
    assert shipment.unloading_completed_at is None

    machine.transition(shipment, S.INSPECTION_IN_PROGRESS, {"inspection_actor": "qa@example.com"}, "ops@example.com")
    assert shipment.unloading_completed_at is not None
    assert shipment.inspection_actor == "qa@example.com"


@pytest.mark.parametrize("missing", ["inspection_actor", "inspection_result"])
def test_inspection_outcome_requires_actor_and_result(db_session, machine, supplier, missing):
    shipment = make_shipment(db_session, supplier, status=S.INSPECTION_IN_PROGRESS)
    fields = {"inspection_actor": "qa@example.com", "inspection_result": "pass"}
    fields.pop(missing)

    with pytest.raises(MissingRequiredField) as exc_info:
        machine.transition(shipment, S.INSPECTION_PASSED, fields, "ops@example.com")

    assert exc_info.value.details["field"] == missing
    assert shipment.status == S.INSPECTION_IN_PROGRESS


def test_inspection_outcome_keeps_inspector_named_at_start(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.UNLOADING)
    machine.transition(shipment, S.INSPECTION_IN_PROGRESS, {"inspection_actor": "qa@example.com"}, "ops@example.com")

    machine.transition(shipment, S.INSPECTION_PASSED, {"inspection_result": "pass"}, "ops@example.com")

    assert shipment.status == S.INSPECTION_PASSED
    assert shipment.inspection_actor == "qa@example.com"
    assert shipment.inspection_result == InspectionResult.PASS


def test_inspection_outcome_can_name_a_different_inspector(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.INSPECTION_IN_PROGRESS, inspection_actor="qa@example.com")

    machine.transition(
        shipment,
        S.INSPECTION_FAILED,
        {"inspection_actor": "lead-qa@example.com", "inspection_result": "fail"},
        "ops@example.com",
    )

    assert shipment.inspection_actor == "lead-qa@example.com"


def test_inspection_result_must_match_target(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.INSPECTION_IN_PROGRESS)

    with pytest.raises(InvalidField):
        machine.transition(
            shipment,
            S.INSPECTION_PASSED,
            {"inspection_actor": "qa@example.com", "inspection_result": "fail"},
            "ops@example.com",
        )


def test_hold_result_moves_to_inspection_failed(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.INSPECTION_IN_PROGRESS)

    machine.transition(
        shipment,
        S.INSPECTION_FAILED,
        {"inspection_actor": "qa@example.com", "inspection_result": InspectionResult.HOLD, "inspection_notes": "seal"},
        "ops@example.com",
    )

    assert shipment.status == S.INSPECTION_FAILED
    assert shipment.inspection_result == InspectionResult.HOLD
    assert shipment.inspection_notes == "seal"
    assert shipment.inspected_at is not None


def test_received_quantity_rejected_outside_receiving(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.CLEARING_CUSTOMS)

    with pytest.raises(InvalidField) as exc_info:
        machine.transition(shipment, S.IN_WAREHOUSE, {"received_quantity": 10}, "ops@example.com")

    assert exc_info.value.details["field"] == "received_quantity"


def test_unknown_field_is_rejected(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.INTAKE)

    with pytest.raises(InvalidField):
        machine.transition(shipment, S.PLANNED_AIRFREIGHT, {"colour": "blue"}, "ops@example.com")


def test_reinspection_resets_result_and_counts_cycles(db_session, machine, supplier):
    shipment = make_shipment(
        db_session,
        supplier,
        status=S.INSPECTION_FAILED,
        inspection_actor="qa@example.com",
        inspection_result=InspectionResult.FAIL,
    )

    machine.transition(shipment, S.UNLOADING, {}, "ops@example.com")

    assert shipment.status == S.UNLOADING
    assert shipment.reinspection_count == 1
    assert shipment.inspection_result is None


def test_reinspection_cap_forces_rejection(db_session, machine, supplier, monkeypatch):
    monkeypatch.setattr(settings, "REINSPECTION_MAX_CYCLES", 1)
    shipment = make_shipment(db_session, supplier, status=S.INSPECTION_FAILED, reinspection_count=1)

    with pytest.raises(InvalidTransition) as exc_info:
        machine.transition(shipment, S.UNLOADING, {}, "ops@example.com")

    assert "limit" in exc_info.value.message
    machine.transition(shipment, S.REJECTED, {"rejection_reason": "failed twice"}, "ops@example.com")
    assert shipment.status == S.REJECTED


def test_receiving_defaults_actor_to_caller(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.INSPECTION_PASSED)

    machine.transition(shipment, S.RECEIVING_GOODS, {"received_quantity": "98.5"}, "ops@example.com")

    assert shipment.receiving_actor == "ops@example.com"
    assert shipment.receiving_started_at is not None
    assert shipment.received_quantity == Decimal("98.5")


def test_stored_requires_received_quantity(db_session, machine, supplier):
    make_warehouse(db_session, "PRETORIA", total=10)
    shipment = make_shipment(db_session, supplier, status=S.RECEIVING_GOODS, receiving_warehouse="PRETORIA")

    with pytest.raises(MissingRequiredField) as exc_info:
        machine.transition(shipment, S.STORED, {}, "ops@example.com")

    assert exc_info.value.details["field"] == "received_quantity"
    assert db_session.get(WarehouseCapacity, "PRETORIA").bins_used == 0


def test_stored_requires_a_warehouse(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.RECEIVING_GOODS)

    with pytest.raises(MissingRequiredField) as exc_info:
        machine.transition(shipment, S.STORED, {"received_quantity": 5}, "ops@example.com")

    assert exc_info.value.details["field"] == "receiving_warehouse"


def test_stored_reserves_one_bin(db_session, machine, supplier):
    make_warehouse(db_session, "KLAPMUTS", total=10, used=4)
    shipment = make_shipment(db_session, supplier, status=S.RECEIVING_GOODS, received_quantity=Decimal("100"))

    outcome = machine.transition(shipment, S.STORED, {"receiving_warehouse": " klapmuts "}, "ops@example.com")
    db_session.flush()

    assert outcome.reserved_in == "KLAPMUTS"
    assert outcome.available_bins == 5
    assert shipment.bin_reserved is True
    assert shipment.receiving_warehouse == "KLAPMUTS"
    assert shipment.stored_at is not None
    assert db_session.get(WarehouseCapacity, "KLAPMUTS").bins_used == 5


def test_archiving_stored_shipment_releases_its_bin(db_session, machine, supplier):
    make_warehouse(db_session, "OFFSITE", total=3, used=1)
    shipment = make_shipment(
        db_session,
        supplier,
        status=S.STORED,
        receiving_warehouse="OFFSITE",
        bin_reserved=True,
        received_quantity=Decimal("1"),
    )

    outcome = machine.transition(shipment, S.ARCHIVED, {}, "ops@example.com")

    assert outcome.released_from == "OFFSITE"
    assert shipment.bin_reserved is False
    assert shipment.archived_from_status == S.STORED
    assert db_session.get(WarehouseCapacity, "OFFSITE").bins_used == 0


def test_rejection_requires_reason(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.INSPECTION_FAILED)

    with pytest.raises(MissingRequiredField):
        machine.transition(shipment, S.REJECTED, {"rejection_reason": "   "}, "ops@example.com")


@pytest.mark.parametrize(
    "status,values",
    [
        (S.REJECTED, {"rejection_reason": None}),
        (S.RECEIVING_GOODS, {"rejection_reason": "not rejected yet"}),
        (S.ARCHIVED, {"archived_from_status": S.STORED, "rejection_reason": "stale note"}),
        (S.ARCHIVED, {"archived_from_status": S.REJECTED}),
    ],
)
def test_rejection_reason_is_set_only_on_rejected_rows(db_session, supplier, status, values):
    with pytest.raises(IntegrityError):
        make_shipment(db_session, supplier, status=status, **values)
    db_session.rollback()


def test_archived_rejection_keeps_its_reason(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.REJECTED, rejection_reason="wet cartons")

    machine.transition(shipment, S.ARCHIVED, {}, "ops@example.com")
    db_session.flush()

    assert shipment.archived_from_status == S.REJECTED
    assert shipment.rejection_reason == "wet cartons"


def test_discrepancy_only_while_receiving(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.INSPECTION_PASSED)

    with pytest.raises(InvalidTransition):
        machine.record_discrepancy(shipment, 5, "short", "ops@example.com")


def test_discrepancy_reports_variance(db_session, machine, supplier):
    shipment = make_shipment(db_session, supplier, status=S.RECEIVING_GOODS, expected_quantity=Decimal("100"))

    variance = machine.record_discrepancy(shipment, Decimal("96"), "4 cartons crushed", "ops@example.com")

    assert variance == Decimal("-4")
    assert shipment.received_quantity == Decimal("96")
    assert shipment.discrepancy_notes == "4 cartons crushed"
    assert shipment.status == S.RECEIVING_GOODS
