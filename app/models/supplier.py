from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import AuditMixin


class Supplier(AuditMixin, Base):
    """
    Stable supplier identity.
    Shipments reference suppliers by id; the display name is resolved by join.
    """
    __tablename__ = "suppliers"

    __table_args__ = (
        UniqueConstraint("code", name="uq_suppliers_code"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    shipments = relationship("Shipment", back_populates="supplier")

    def __repr__(self) -> str:
        return f"<Supplier(code={self.code}, name={self.name})>"
