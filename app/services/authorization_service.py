from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import assert_never

from app.core.errors import Forbidden
from app.models.enums import UserRole


class Action(str, enum.Enum):
    VIEW = "view"
    CREATE_SHIPMENT = "create_shipment"
    TRANSITION = "transition"
    REJECT = "reject"
    RECORD_DISCREPANCY = "record_discrepancy"
    ADJUST_CAPACITY = "adjust_capacity"
    CONFIGURE_WAREHOUSE = "configure_warehouse"


OPERATOR_ACTIONS = frozenset(
    {
        Action.VIEW,
        Action.CREATE_SHIPMENT,
        Action.TRANSITION,
        Action.REJECT,
        Action.RECORD_DISCREPANCY,
    }
)


@dataclass(frozen=True)
class Actor:
    email: str
    role: UserRole | None = None
    supplier_id: int | None = None


def is_allowed(role: UserRole | None, action: Action) -> bool:
    if role is None:
        return False
    if role is UserRole.ADMIN:
        return True
    if role is UserRole.OPERATOR:
        return action in OPERATOR_ACTIONS
    if role is UserRole.SUPPLIER:
        return action is Action.VIEW
    assert_never(role)


def authorize(actor: Actor, action: Action) -> None:
    if not is_allowed(actor.role, action):
        role = actor.role.value if actor.role is not None else "unknown"
        raise Forbidden(
            message=f"Role '{role}' is not allowed to {action.value.replace('_', ' ')}.",
            details={"actor": actor.email, "role": role, "action": action.value},
        )
