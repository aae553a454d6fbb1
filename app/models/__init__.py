# Import all models so they register themselves on Base.metadata
# (Alembic autogenerate and the test fixtures rely on this).
from .supplier import Supplier  # noqa: F401
from .users import User  # noqa: F401
from .warehouse_capacity import WarehouseCapacity, WarehouseCapacityHistory  # noqa: F401
from .shipment import Shipment, ShipmentStatusHistory  # noqa: F401
