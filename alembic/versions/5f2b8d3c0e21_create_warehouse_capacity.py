"""create warehouse capacity table

Revision ID: 5f2b8d3c0e21
Revises: 4e1a7c2b9d10
Create Date: 2026-03-02 09:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5f2b8d3c0e21"
down_revision: Union[str, None] = "4e1a7c2b9d10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "warehouse_capacity",
        sa.Column("warehouse_name", sa.String(length=60), primary_key=True),
        sa.Column("total_capacity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("bins_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("total_capacity >= 0", name="ck_warehouse_capacity_total"),
        sa.CheckConstraint("bins_used >= 0", name="ck_warehouse_capacity_used_floor"),
        sa.CheckConstraint("bins_used <= total_capacity", name="ck_warehouse_capacity_used_ceiling"),
    )


def downgrade() -> None:
    op.drop_table("warehouse_capacity")
