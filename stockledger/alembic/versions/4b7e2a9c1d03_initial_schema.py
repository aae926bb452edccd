"""initial schema

Revision ID: 4b7e2a9c1d03
Revises:
Create Date: 2026-10-12
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4b7e2a9c1d03"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# enums persist member names
location_type = sa.Enum("bulk", "pick", "reserve", "dock", "staging", "quarantine", name="location_type")
inventory_status = sa.Enum(
    "available", "allocated", "on_hold", "damaged", "qc_hold", "quarantine", name="inventory_status"
)
transaction_type = sa.Enum(
    "receive", "adjust_in", "adjust_out", "transfer", "move", "consume", "produce",
    "cycle_count", "physical_inventory", "status_change", "scrap", "allocate", "deallocate",
    name="transaction_type",
)
cycle_count_type = sa.Enum("standard", "blind", "criteria", "scheduled", name="cycle_count_type")
cycle_count_status = sa.Enum(
    "new", "in_progress", "pending_approval", "completed", "cancelled", name="cycle_count_status"
)
cycle_count_line_status = sa.Enum("pending", "counted", "adjusted", "approved", name="cycle_count_line_status")
pi_count_type = sa.Enum("full", "partial", name="pi_count_type")
pi_status = sa.Enum("setup", "scheduled", "in_progress", "completed", "cancelled", name="pi_status")
count_book_status = sa.Enum("new", "assigned", "in_progress", "completed", name="count_book_status")
count_book_line_status = sa.Enum(
    "pending", "counted", "recount_required", "approved", "adjusted", name="count_book_line_status"
)


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    # ---------- MASTER DATA ----------
    op.create_table(
        "warehouses",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "zones",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("warehouse_id", sa.BigInteger(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.UniqueConstraint("warehouse_id", "code", name="uq_zone_warehouse_code"),
    )
    op.create_table(
        "locations",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("warehouse_id", sa.BigInteger(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("zone_id", sa.BigInteger(), sa.ForeignKey("zones.id", ondelete="SET NULL")),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("type", location_type, nullable=False),
        sa.Column("aisle", sa.String(16)),
        sa.Column("bay", sa.String(16)),
        sa.Column("level", sa.String(16)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("last_count_date"),
        sa.UniqueConstraint("warehouse_id", "code", name="uq_location_warehouse_code"),
    )
    op.create_index("ix_locations_zone_id", "locations", ["zone_id"])
    op.create_table(
        "products",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("uom", sa.String(32), nullable=False, server_default="EA"),
        sa.Column("barcode", sa.String(64), unique=True),
        sa.Column("cost", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("velocity_code", sa.String(4)),
        sa.Column("reorder_point", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint("cost >= 0", name="ck_product_cost_nonneg"),
    )
    op.create_index("ix_products_velocity_code", "products", ["velocity_code"])

    # ---------- INVENTORY ----------
    op.create_table(
        "inventory",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("location_id", sa.BigInteger(), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("warehouse_id", sa.BigInteger(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("lot_number", sa.String(64)),
        sa.Column("serial_number", sa.String(64)),
        sa.Column("lpn", sa.String(64)),
        sa.Column("expiration_date", sa.Date()),
        sa.Column("quantity_on_hand", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity_allocated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity_available", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", inventory_status, nullable=False),
        _ts("last_counted_at"),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )
    op.create_index("ix_inventory_lpn", "inventory", ["lpn"])
    op.create_index("ix_inventory_position", "inventory", ["product_id", "location_id", "lot_number"])
    op.create_index("ix_inventory_warehouse_location", "inventory", ["warehouse_id", "location_id"])

    # ---------- LEDGER ----------
    op.create_table(
        "inventory_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("transaction_type", transaction_type, nullable=False),
        sa.Column("inventory_id", sa.BigInteger(), sa.ForeignKey("inventory.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("location_id", sa.BigInteger(), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("from_location_id", sa.BigInteger(), sa.ForeignKey("locations.id", ondelete="RESTRICT")),
        sa.Column("to_location_id", sa.BigInteger(), sa.ForeignKey("locations.id", ondelete="RESTRICT")),
        sa.Column("lot_number", sa.String(64)),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("quantity_before", sa.Integer(), nullable=False),
        sa.Column("quantity_after", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(32), nullable=False),
        sa.Column("reference_id", sa.String(64)),
        sa.Column("reference_number", sa.String(64)),
        sa.Column("correlation_id", sa.String(64), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("reason", sa.String(255)),
        sa.Column("notes", sa.Text()),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_inventory_transactions_inventory_id", "inventory_transactions", ["inventory_id"])
    op.create_index("ix_inventory_transactions_correlation_id", "inventory_transactions", ["correlation_id"])
    op.create_index("ix_inv_txn_reference", "inventory_transactions", ["reference_type", "reference_id"])
    op.create_index("ix_inv_txn_product_time", "inventory_transactions", ["product_id", "created_at"])

    op.create_table(
        "operation_keys",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("idempotency_key", sa.String(64), nullable=False, unique=True),
        sa.Column("operation", sa.String(32), nullable=False),
        sa.Column("correlation_id", sa.String(64), nullable=False),
        sa.Column("result", sa.JSON()),
        _ts("created_at", nullable=False),
    )

    # ---------- CYCLE COUNTS ----------
    op.create_table(
        "cycle_count_criteria",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("warehouse_id", sa.BigInteger(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("cycle_class", sa.String(8), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("count_frequency_days", sa.Integer(), nullable=False),
        sa.Column("velocity_codes", sa.JSON(), nullable=False),
        sa.Column("location_types", sa.JSON(), nullable=False),
        sa.Column("min_cost", sa.Numeric(12, 4)),
        sa.Column("max_cost", sa.Numeric(12, 4)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("warehouse_id", "cycle_class", name="uq_cc_criteria_class"),
        sa.CheckConstraint("count_frequency_days > 0", name="ck_cc_criteria_frequency_pos"),
    )
    op.create_table(
        "cycle_counts",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("count_number", sa.String(32), nullable=False, unique=True),
        sa.Column("warehouse_id", sa.BigInteger(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("type", cycle_count_type, nullable=False),
        sa.Column("cycle_class", sa.String(8)),
        sa.Column("status", cycle_count_status, nullable=False),
        sa.Column("variance_threshold_qty", sa.Integer()),
        sa.Column("variance_threshold_pct", sa.Numeric(7, 2)),
        sa.Column("variance_threshold_value", sa.Numeric(14, 2)),
        sa.Column("total_locations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("counted_locations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discrepancies", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scheduled_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column("approved_by", sa.String(64)),
        _ts("created_at", nullable=False),
        _ts("started_at"),
        _ts("submitted_at"),
        _ts("completed_at"),
        _ts("cancelled_at"),
    )
    op.create_index("ix_cycle_counts_warehouse_status", "cycle_counts", ["warehouse_id", "status"])
    op.create_table(
        "cycle_count_lines",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("cycle_count_id", sa.BigInteger(), sa.ForeignKey("cycle_counts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("inventory_id", sa.BigInteger(), sa.ForeignKey("inventory.id", ondelete="SET NULL")),
        sa.Column("location_id", sa.BigInteger(), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("lot_number", sa.String(64)),
        sa.Column("lpn", sa.String(64)),
        sa.Column("system_quantity", sa.Integer(), nullable=False),
        sa.Column("counted_quantity", sa.Integer()),
        sa.Column("variance", sa.Integer()),
        sa.Column("variance_pct", sa.Numeric(9, 2)),
        sa.Column("recount_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recount_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", cycle_count_line_status, nullable=False),
        _ts("counted_at"),
        sa.Column("counted_by", sa.String(64)),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("system_quantity >= 0", name="ck_cc_line_system_nonneg"),
        sa.CheckConstraint("counted_quantity IS NULL OR counted_quantity >= 0", name="ck_cc_line_counted_nonneg"),
    )
    op.create_index("ix_cycle_count_lines_cycle_count_id", "cycle_count_lines", ["cycle_count_id"])

    # ---------- PHYSICAL INVENTORY ----------
    op.create_table(
        "physical_inventories",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("pi_number", sa.String(32), nullable=False, unique=True),
        sa.Column("warehouse_id", sa.BigInteger(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("count_type", pi_count_type, nullable=False),
        sa.Column("status", pi_status, nullable=False),
        sa.Column("blind_count", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("locations_per_book", sa.Integer(), nullable=False),
        sa.Column("variance_threshold_qty", sa.Integer(), nullable=False),
        sa.Column("variance_threshold_pct", sa.Numeric(7, 2), nullable=False),
        sa.Column("variance_threshold_value", sa.Numeric(14, 2), nullable=False),
        sa.Column("zone_ids", sa.JSON(), nullable=False),
        sa.Column("total_books", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_locations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("adjustments_posted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_adjustment_value", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column("approved_by", sa.String(64)),
        sa.Column("cancelled_by", sa.String(64)),
        sa.Column("cancel_reason", sa.String(255)),
        _ts("created_at", nullable=False),
        _ts("started_at"),
        _ts("completed_at"),
        _ts("cancelled_at"),
        sa.CheckConstraint("locations_per_book > 0", name="ck_pi_locations_per_book_pos"),
    )
    op.create_table(
        "count_books",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "physical_inventory_id",
            sa.BigInteger(),
            sa.ForeignKey("physical_inventories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("book_number", sa.String(32), nullable=False),
        sa.Column("zone_id", sa.BigInteger(), sa.ForeignKey("zones.id", ondelete="SET NULL")),
        sa.Column("status", count_book_status, nullable=False),
        sa.Column("assigned_to", sa.String(64)),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("total_locations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("counted_locations", sa.Integer(), nullable=False, server_default="0"),
        _ts("assigned_at"),
        _ts("started_at"),
        _ts("completed_at"),
        sa.Column("completed_by", sa.String(64)),
        sa.UniqueConstraint("physical_inventory_id", "book_number", name="uq_count_book_number"),
    )
    op.create_index("ix_count_books_physical_inventory_id", "count_books", ["physical_inventory_id"])
    op.create_table(
        "count_book_lines",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("count_book_id", sa.BigInteger(), sa.ForeignKey("count_books.id", ondelete="CASCADE"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.BigInteger(), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT")),
        sa.Column("inventory_id", sa.BigInteger(), sa.ForeignKey("inventory.id", ondelete="SET NULL")),
        sa.Column("lot_number", sa.String(64)),
        sa.Column("lpn", sa.String(64)),
        sa.Column("system_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expected_quantity", sa.Integer()),
        sa.Column("counted_quantity", sa.Integer()),
        sa.Column("recount_quantity", sa.Integer()),
        sa.Column("variance", sa.Integer()),
        sa.Column("variance_pct", sa.Numeric(9, 2)),
        sa.Column("variance_value", sa.Numeric(14, 2)),
        sa.Column("out_of_book", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", count_book_line_status, nullable=False),
        sa.Column("counted_by", sa.String(64)),
        _ts("counted_at"),
        sa.Column("recounted_by", sa.String(64)),
        _ts("recounted_at"),
        sa.Column("approved_by", sa.String(64)),
        _ts("approved_at"),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("system_quantity >= 0", name="ck_cb_line_system_nonneg"),
        sa.CheckConstraint("counted_quantity IS NULL OR counted_quantity >= 0", name="ck_cb_line_counted_nonneg"),
        sa.CheckConstraint("recount_quantity IS NULL OR recount_quantity >= 0", name="ck_cb_line_recount_nonneg"),
    )
    op.create_index("ix_count_book_lines_count_book_id", "count_book_lines", ["count_book_id"])


def downgrade() -> None:
    op.drop_table("count_book_lines")
    op.drop_table("count_books")
    op.drop_table("physical_inventories")
    op.drop_table("cycle_count_lines")
    op.drop_table("cycle_counts")
    op.drop_table("cycle_count_criteria")
    op.drop_table("operation_keys")
    op.drop_table("inventory_transactions")
    op.drop_table("inventory")
    op.drop_table("products")
    op.drop_table("locations")
    op.drop_table("zones")
    op.drop_table("warehouses")

    bind = op.get_bind()
    for enum_type in (
        count_book_line_status,
        count_book_status,
        pi_status,
        pi_count_type,
        cycle_count_line_status,
        cycle_count_status,
        cycle_count_type,
        transaction_type,
        inventory_status,
        location_type,
    ):
        enum_type.drop(bind, checkfirst=True)
