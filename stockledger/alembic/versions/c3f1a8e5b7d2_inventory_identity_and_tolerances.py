"""unique inventory identity + cycle count tolerances

Revision ID: c3f1a8e5b7d2
Revises: 9d2c6e1f8a47
Create Date: 2026-10-17
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "c3f1a8e5b7d2"
down_revision: Union[str, Sequence[str], None] = "9d2c6e1f8a47"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TABLE_NAME = "inventory"
UX_IDENTITY = "ux_inventory_identity"
OLD_POSITION_INDEX = "ix_inventory_position"

# NULL lot / serial / lpn doivent compter comme une valeur pour l'unicité
IDENTITY_COLUMNS = [
    "product_id",
    "location_id",
    sa.text("coalesce(lot_number, '')"),
    sa.text("coalesce(serial_number, '')"),
    sa.text("coalesce(lpn, '')"),
]


def upgrade() -> None:
    # échoue si des doublons existent déjà: à fusionner à la main avant
    op.drop_index(OLD_POSITION_INDEX, table_name=TABLE_NAME)
    op.create_index(UX_IDENTITY, TABLE_NAME, IDENTITY_COLUMNS, unique=True)

    op.create_table(
        "cycle_count_tolerances",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("warehouse_id", sa.BigInteger(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("tolerance_qty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tolerance_pct", sa.Numeric(7, 2), nullable=False, server_default="0"),
        sa.Column("tolerance_value", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("cycle_classes", sa.JSON(), nullable=False),
        sa.Column("velocity_codes", sa.JSON(), nullable=False),
        sa.Column("auto_approve", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("require_recount", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recount_threshold", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("tolerance_qty >= 0", name="ck_cc_tolerance_qty_nonneg"),
        sa.CheckConstraint("tolerance_pct >= 0", name="ck_cc_tolerance_pct_nonneg"),
        sa.CheckConstraint("tolerance_value >= 0", name="ck_cc_tolerance_value_nonneg"),
    )
    op.create_index("ix_cc_tolerances_warehouse", "cycle_count_tolerances", ["warehouse_id", "is_active"])


def downgrade() -> None:
    op.drop_index("ix_cc_tolerances_warehouse", table_name="cycle_count_tolerances")
    op.drop_table("cycle_count_tolerances")

    op.drop_index(UX_IDENTITY, table_name=TABLE_NAME)
    op.create_index(OLD_POSITION_INDEX, TABLE_NAME, ["product_id", "location_id", "lot_number"])
