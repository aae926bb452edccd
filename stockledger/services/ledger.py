"""
Ledger des transactions d'inventaire, en ajout seul.

L'operator écrit chaque entrée dans la même transaction que le mouvement
qu'elle décrit. Une fois flushée, une entrée n'est jamais modifiée ni
supprimée; les listeners ORM en bas de ce module refusent les deux.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator

from sqlalchemy import event, func, select
from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import TransactionType
from stockledger.app.db.models.models_v1 import InventoryTransaction
from stockledger.services.errors import InvalidQuantityError, LedgerImmutableError

log = logging.getLogger(__name__)

YIELD_PER = 500


@dataclass
class LedgerFilter:
    inventory_id: int | None = None
    product_id: int | None = None
    location_id: int | None = None
    transaction_type: TransactionType | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    correlation_id: str | None = None
    actor_id: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int | None = None


def append_entry(db: Session, **fields) -> int:
    """Écrit une entrée de ledger et renvoie son id."""
    before = fields["quantity_before"]
    after = fields["quantity_after"]
    if after - before != fields["quantity"]:
        raise InvalidQuantityError(
            f"Ledger entry delta {fields['quantity']} does not match {before} -> {after}"
        )

    entry = InventoryTransaction(**fields)
    db.add(entry)
    db.flush()
    return int(entry.id)


def _apply_filter(stmt, f: LedgerFilter):
    if f.inventory_id is not None:
        stmt = stmt.where(InventoryTransaction.inventory_id == f.inventory_id)
    if f.product_id is not None:
        stmt = stmt.where(InventoryTransaction.product_id == f.product_id)
    if f.location_id is not None:
        stmt = stmt.where(InventoryTransaction.location_id == f.location_id)
    if f.transaction_type is not None:
        stmt = stmt.where(InventoryTransaction.transaction_type == f.transaction_type)
    if f.reference_type is not None:
        stmt = stmt.where(InventoryTransaction.reference_type == f.reference_type)
    if f.reference_id is not None:
        stmt = stmt.where(InventoryTransaction.reference_id == f.reference_id)
    if f.correlation_id is not None:
        stmt = stmt.where(InventoryTransaction.correlation_id == f.correlation_id)
    if f.actor_id is not None:
        stmt = stmt.where(InventoryTransaction.actor_id == f.actor_id)
    if f.since is not None:
        stmt = stmt.where(InventoryTransaction.created_at >= f.since)
    if f.until is not None:
        stmt = stmt.where(InventoryTransaction.created_at < f.until)
    if f.limit is not None:
        stmt = stmt.limit(f.limit)
    return stmt


def query_entries(db: Session, filters: LedgerFilter | None = None) -> Iterator[InventoryTransaction]:
    """
    Parcourt les entrées, les plus récentes d'abord.

    Lecture par lots: un long historique n'est jamais chargé en mémoire
    d'un coup.
    """
    stmt = select(InventoryTransaction).order_by(
        InventoryTransaction.created_at.desc(),
        InventoryTransaction.id.desc(),
    )
    if filters is not None:
        stmt = _apply_filter(stmt, filters)

    result = db.execute(stmt.execution_options(yield_per=YIELD_PER))
    for entry in result.scalars():
        yield entry


def entries_for_correlation(db: Session, correlation_id: str) -> list[InventoryTransaction]:
    return list(
        db.execute(
            select(InventoryTransaction)
            .where(InventoryTransaction.correlation_id == correlation_id)
            .order_by(InventoryTransaction.id.asc())
        )
        .scalars()
        .all()
    )


def net_quantity(db: Session, inventory_id: int) -> int:
    """Somme des deltas d'un record; égale son on-hand quand le ledger est complet."""
    total = db.execute(
        select(func.coalesce(func.sum(InventoryTransaction.quantity), 0)).where(
            InventoryTransaction.inventory_id == inventory_id
        )
    ).scalar_one()
    return int(total)


# ---------- write-once guards ----------
@event.listens_for(InventoryTransaction, "before_update")
def _refuse_update(mapper, connection, target: InventoryTransaction) -> None:
    log.error("refused update of ledger entry id=%s", target.id)
    raise LedgerImmutableError(target.id, "updated")


@event.listens_for(InventoryTransaction, "before_delete")
def _refuse_delete(mapper, connection, target: InventoryTransaction) -> None:
    log.error("refused delete of ledger entry id=%s", target.id)
    raise LedgerImmutableError(target.id, "deleted")
