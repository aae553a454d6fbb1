from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class WorkflowFailure(Exception):
    """Base for every typed failure raised inside a workflow transaction."""

    message: str
    details: dict = field(default_factory=dict)

    kind = "WorkflowFailure"
    status_code = 400
    retryable = False

    def __str__(self) -> str:
        return self.message

    def to_detail(self) -> dict:
        detail = {"kind": self.kind, "message": self.message}
        if self.retryable:
            detail["retryable"] = True
        for key, value in self.details.items():
            if value is not None:
                detail[key] = value
        return detail


class InvalidTransition(WorkflowFailure):
    kind = "InvalidTransition"
    status_code = 409

    @classmethod
    def between(cls, current: str, requested: str, reason: str | None = None) -> "InvalidTransition":
        message = f"Cannot move shipment from '{current}' to '{requested}'."
        if reason:
            message = f"{message} {reason}"
        return cls(
            message=message,
            details={"current_status": current, "requested_status": requested},
        )


class CapacityExceeded(WorkflowFailure):
    kind = "CapacityExceeded"
    status_code = 409


class CapacityUnderflow(WorkflowFailure):
    kind = "CapacityUnderflow"
    status_code = 409


class MissingRequiredField(WorkflowFailure):
    kind = "MissingRequiredField"
    status_code = 422

    @classmethod
    def for_field(cls, field_name: str, target_status: str) -> "MissingRequiredField":
        return cls(
            message=f"'{field_name}' is required to move a shipment to '{target_status}'.",
            details={"field": field_name, "requested_status": target_status},
        )


class InvalidField(WorkflowFailure):
    kind = "InvalidField"
    status_code = 422


class Stale(WorkflowFailure):
    kind = "Stale"
    status_code = 409


class Busy(WorkflowFailure):
    kind = "Busy"
    status_code = 503
    retryable = True


class NotFound(WorkflowFailure):
    kind = "NotFound"
    status_code = 404


class Forbidden(WorkflowFailure):
    kind = "Forbidden"
    status_code = 403
