import enum


class ShipmentStatus(str, enum.Enum):
    INTAKE = "intake"
    PLANNED_AIRFREIGHT = "planned_airfreight"
    PLANNED_SEAFREIGHT = "planned_seafreight"
    IN_TRANSIT_AIRFREIGHT = "in_transit_airfreight"
    IN_TRANSIT_SEAFREIGHT = "in_transit_seafreight"
    ARRIVED_KLM = "arrived_klm"
    ARRIVED_PTA = "arrived_pta"
    CLEARING_CUSTOMS = "clearing_customs"
    IN_WAREHOUSE = "in_warehouse"
    UNLOADING = "unloading"
    INSPECTION_IN_PROGRESS = "inspection_in_progress"
    INSPECTION_PASSED = "inspection_passed"
    INSPECTION_FAILED = "inspection_failed"
    RECEIVING_GOODS = "receiving_goods"
    STORED = "stored"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class InspectionResult(str, enum.Enum):
    PASS = "pass"
    FAIL = "fail"
    HOLD = "hold"


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    OPERATOR = "operator"
    SUPPLIER = "supplier"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]
