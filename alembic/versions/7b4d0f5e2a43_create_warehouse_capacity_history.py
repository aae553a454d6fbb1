"""create append-only warehouse capacity history

Revision ID: 7b4d0f5e2a43
Revises: 6a3c9e4d1f32
Create Date: 2026-03-02 10:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "7b4d0f5e2a43"
down_revision: Union[str, None] = "6a3c9e4d1f32"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "warehouse_capacity_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "warehouse_name",
            sa.String(length=60),
            sa.ForeignKey("warehouse_capacity.warehouse_name", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("previous_used", sa.Integer(), nullable=False),
        sa.Column("new_used", sa.Integer(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "shipment_id",
            sa.Integer(),
            sa.ForeignKey("shipments.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("changed_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index(
        "ix_warehouse_capacity_history_name_changed",
        "warehouse_capacity_history",
        ["warehouse_name", "changed_at"],
        unique=False,
    )

    # Ledger rows are insert-only.
    op.execute("""
        CREATE OR REPLACE FUNCTION reject_capacity_history_change()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'warehouse_capacity_history is append-only (% blocked on id=%)',
                TG_OP, OLD.id;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_capacity_history_append_only
        BEFORE UPDATE OR DELETE ON warehouse_capacity_history
        FOR EACH ROW EXECUTE FUNCTION reject_capacity_history_change();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_capacity_history_append_only ON warehouse_capacity_history")
    op.execute("DROP FUNCTION IF EXISTS reject_capacity_history_change()")
    op.drop_index("ix_warehouse_capacity_history_name_changed", table_name="warehouse_capacity_history")
    op.drop_table("warehouse_capacity_history")
