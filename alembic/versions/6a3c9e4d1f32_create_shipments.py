"""create shipments and status history

Revision ID: 6a3c9e4d1f32
Revises: 5f2b8d3c0e21
Create Date: 2026-03-02 10:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "6a3c9e4d1f32"
down_revision: Union[str, None] = "5f2b8d3c0e21"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SHIPMENT_STATUSES = (
    "intake",
    "planned_airfreight",
    "planned_seafreight",
    "in_transit_airfreight",
    "in_transit_seafreight",
    "arrived_klm",
    "arrived_pta",
    "clearing_customs",
    "in_warehouse",
    "unloading",
    "inspection_in_progress",
    "inspection_passed",
    "inspection_failed",
    "receiving_goods",
    "stored",
    "rejected",
    "archived",
)


def _status_type(name: str) -> sa.Enum:
    return sa.Enum(*SHIPMENT_STATUSES, name=name, native_enum=False, create_constraint=True, length=40)


def upgrade() -> None:
    op.create_table(
        "shipments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_ref", sa.String(length=60), nullable=False),
        sa.Column(
            "supplier_id",
            sa.Integer(),
            sa.ForeignKey("suppliers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("product_name", sa.String(length=255), nullable=True),
        sa.Column("expected_quantity", sa.Numeric(15, 3), nullable=False, server_default=sa.text("0")),
        sa.Column("status", _status_type("shipment_status"), nullable=False, server_default=sa.text("'intake'")),
        sa.Column("week_number", sa.Integer(), nullable=True),
        sa.Column(
            "receiving_warehouse",
            sa.String(length=60),
            sa.ForeignKey("warehouse_capacity.warehouse_name", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("bin_reserved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("unloading_started_at", sa.DateTime(), nullable=True),
        sa.Column("unloading_completed_at", sa.DateTime(), nullable=True),
        sa.Column("inspection_actor", sa.String(length=255), nullable=True),
        sa.Column(
            "inspection_result",
            sa.Enum("pass", "fail", "hold", name="inspection_result", native_enum=False, create_constraint=True, length=10),
            nullable=True,
        ),
        sa.Column("inspection_notes", sa.Text(), nullable=True),
        sa.Column("inspected_at", sa.DateTime(), nullable=True),
        sa.Column("reinspection_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("receiving_actor", sa.String(length=255), nullable=True),
        sa.Column("receiving_started_at", sa.DateTime(), nullable=True),
        sa.Column("received_quantity", sa.Numeric(15, 3), nullable=True),
        sa.Column("discrepancy_notes", sa.Text(), nullable=True),
        sa.Column("stored_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("rejection_actor", sa.String(length=255), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("archived_at", sa.DateTime(), nullable=True),
        sa.Column("archived_from_status", _status_type("shipment_archived_from_status"), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("created_by", sa.String(length=255), nullable=False, server_default=sa.text("'system@local'")),
        sa.Column(
            "last_changed_by",
            sa.String(length=255),
            nullable=False,
            server_default=sa.text("'system@local'"),
        ),
        sa.CheckConstraint("week_number IS NULL OR (week_number BETWEEN 1 AND 53)", name="ck_shipments_week_number"),
        sa.CheckConstraint("expected_quantity >= 0", name="ck_shipments_expected_quantity"),
        sa.CheckConstraint(
            "received_quantity IS NULL OR received_quantity >= 0",
            name="ck_shipments_received_quantity",
        ),
        sa.CheckConstraint(
            "(status = 'rejected' AND rejection_reason IS NOT NULL)"
            " OR (status = 'archived' AND archived_from_status = 'rejected' AND rejection_reason IS NOT NULL)"
            " OR (status = 'archived' AND (archived_from_status IS NULL OR archived_from_status <> 'rejected')"
            " AND rejection_reason IS NULL)"
            " OR (status NOT IN ('rejected', 'archived') AND rejection_reason IS NULL)",
            name="ck_shipments_rejection_reason",
        ),
        sa.CheckConstraint(
            "bin_reserved = false OR receiving_warehouse IS NOT NULL",
            name="ck_shipments_bin_warehouse",
        ),
    )
    op.create_index("ix_shipments_order_ref", "shipments", ["order_ref"], unique=True)
    op.create_index("ix_shipments_supplier_id", "shipments", ["supplier_id"], unique=False)
    op.create_index("ix_shipments_status", "shipments", ["status"], unique=False)

    op.create_table(
        "shipment_status_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "shipment_id",
            sa.Integer(),
            sa.ForeignKey("shipments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("from_status", _status_type("shipment_history_from_status"), nullable=True),
        sa.Column("to_status", _status_type("shipment_history_to_status"), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("changed_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index(
        "ix_shipment_status_history_shipment_changed",
        "shipment_status_history",
        ["shipment_id", "changed_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_shipment_status_history_shipment_changed", table_name="shipment_status_history")
    op.drop_table("shipment_status_history")
    op.drop_index("ix_shipments_status", table_name="shipments")
    op.drop_index("ix_shipments_supplier_id", table_name="shipments")
    op.drop_index("ix_shipments_order_ref", table_name="shipments")
    op.drop_table("shipments")
