"""add inventory quantity constraints

Revision ID: 9d2c6e1f8a47
Revises: 4b7e2a9c1d03
Create Date: 2026-10-13
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "9d2c6e1f8a47"
down_revision: Union[str, Sequence[str], None] = "4b7e2a9c1d03"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TABLE_NAME = "inventory"
LEDGER_TABLE = "inventory_transactions"

CK_ON_HAND = "ck_inventory_on_hand_nonneg"
CK_ALLOCATED = "ck_inventory_allocated_nonneg"
CK_AVAILABLE = "ck_inventory_available_nonneg"
CK_BALANCED = "ck_inventory_on_hand_balanced"

CK_TXN_BEFORE = "ck_inv_txn_before_nonneg"
CK_TXN_AFTER = "ck_inv_txn_after_nonneg"
CK_TXN_DELTA = "ck_inv_txn_delta_consistent"


INVENTORY_CHECKS = (
    (CK_ON_HAND, "quantity_on_hand >= 0"),
    (CK_ALLOCATED, "quantity_allocated >= 0"),
    (CK_AVAILABLE, "quantity_available >= 0"),
    (CK_BALANCED, "quantity_on_hand = quantity_allocated + quantity_available"),
)
LEDGER_CHECKS = (
    (CK_TXN_BEFORE, "quantity_before >= 0"),
    (CK_TXN_AFTER, "quantity_after >= 0"),
    (CK_TXN_DELTA, "quantity_after - quantity_before = quantity"),
)


def _add_check_if_missing(table: str, constraint_name: str, check_sql: str) -> None:
    # Idempotent Postgres
    op.execute(
        f"""
        DO $$
        BEGIN
            IF NOT EXISTS (
                SELECT 1
                FROM pg_constraint c
                JOIN pg_class t ON t.oid = c.conrelid
                WHERE t.relname = '{table}'
                  AND c.conname = '{constraint_name}'
            ) THEN
                ALTER TABLE {table}
                ADD CONSTRAINT {constraint_name}
                CHECK ({check_sql});
            END IF;
        END $$;
        """
    )


def upgrade() -> None:
    # rows written before the checks existed make this fail; no clamping,
    # a clamp would break the ledger replay of that record
    if op.get_bind().dialect.name == "postgresql":
        for name, sql in INVENTORY_CHECKS:
            _add_check_if_missing(TABLE_NAME, name, sql)
        for name, sql in LEDGER_CHECKS:
            _add_check_if_missing(LEDGER_TABLE, name, sql)
        return

    # sqlite cannot ALTER a constraint in place
    with op.batch_alter_table(TABLE_NAME) as batch:
        for name, sql in INVENTORY_CHECKS:
            batch.create_check_constraint(name, sql)
    with op.batch_alter_table(LEDGER_TABLE) as batch:
        for name, sql in LEDGER_CHECKS:
            batch.create_check_constraint(name, sql)


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        for name, _ in reversed(LEDGER_CHECKS):
            op.execute(f"ALTER TABLE {LEDGER_TABLE} DROP CONSTRAINT IF EXISTS {name};")
        for name, _ in reversed(INVENTORY_CHECKS):
            op.execute(f"ALTER TABLE {TABLE_NAME} DROP CONSTRAINT IF EXISTS {name};")
        return

    with op.batch_alter_table(LEDGER_TABLE) as batch:
        for name, _ in reversed(LEDGER_CHECKS):
            batch.drop_constraint(name, type_="check")
    with op.batch_alter_table(TABLE_NAME) as batch:
        for name, _ in reversed(INVENTORY_CHECKS):
            batch.drop_constraint(name, type_="check")
