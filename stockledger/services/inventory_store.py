from __future__ import annotations

import logging
from datetime import date
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.app.db.models.models_v1 import InventoryRecord, Product
from stockledger.app.db.models.core_types import InventoryStatus
from stockledger.app.settings import settings
from stockledger.services import catalog
from stockledger.services.errors import InvalidQuantityError, RecordNotFoundError

log = logging.getLogger(__name__)


def _same(column, value):
    # NULL lot / serial / lpn font aussi partie de l'identité
    if value is None:
        return column.is_(None)
    return column == value


def _identity_stmt(
    product_id: int,
    location_id: int,
    lot_number: str | None,
    serial_number: str | None,
    lpn: str | None,
):
    return (
        select(InventoryRecord)
        .where(InventoryRecord.product_id == product_id)
        .where(InventoryRecord.location_id == location_id)
        .where(_same(InventoryRecord.lot_number, lot_number))
        .where(_same(InventoryRecord.serial_number, serial_number))
        .where(_same(InventoryRecord.lpn, lpn))
        .order_by(InventoryRecord.id.asc())
    )


def get_record(
    db: Session,
    product_id: int,
    location_id: int,
    lot_number: str | None = None,
    *,
    serial_number: str | None = None,
    lpn: str | None = None,
) -> InventoryRecord | None:
    return (
        db.execute(_identity_stmt(product_id, location_id, lot_number, serial_number, lpn))
        .scalars()
        .first()
    )


def get_record_by_id(db: Session, record_id: int, *, for_update: bool = False) -> InventoryRecord:
    stmt = select(InventoryRecord).where(InventoryRecord.id == record_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)

    record = db.execute(stmt).scalar_one_or_none()
    if record is None:
        raise RecordNotFoundError("InventoryRecord", record_id)
    return record


def find_or_create_record(
    db: Session,
    *,
    product_id: int,
    location_id: int,
    warehouse_id: int | None = None,
    lot_number: str | None = None,
    serial_number: str | None = None,
    lpn: str | None = None,
    expiration_date: date | None = None,
) -> InventoryRecord:
    """
    Record verrouillé pour une position, créé à zéro s'il n'existe pas.

    La ligne existante est lue en SELECT ... FOR UPDATE: l'appelant la garde
    jusqu'à la fin de sa transaction. L'insert passe par un SAVEPOINT; si une
    transaction concurrente a créé la même position entre-temps, l'index
    unique ux_inventory_identity rejette l'insert et on relit sa ligne.
    """
    record = _lock_position(db, product_id, location_id, lot_number, serial_number, lpn)
    if record:
        return record

    catalog.get_product(db, product_id)
    location = catalog.get_location(db, location_id)

    try:
        with db.begin_nested():
            record = _new_record(
                product_id=product_id,
                location_id=location_id,
                warehouse_id=warehouse_id if warehouse_id is not None else location.warehouse_id,
                lot_number=lot_number,
                serial_number=serial_number,
                lpn=lpn,
                expiration_date=expiration_date,
            )
            db.add(record)
            db.flush()
    except IntegrityError:
        log.info(
            "position product=%s location=%s lot=%s created concurrently, re-reading",
            product_id, location_id, lot_number,
        )
        record = _lock_position(db, product_id, location_id, lot_number, serial_number, lpn)
        if record is None:
            raise
    return record


def _lock_position(
    db: Session,
    product_id: int,
    location_id: int,
    lot_number: str | None,
    serial_number: str | None,
    lpn: str | None,
) -> InventoryRecord | None:
    return (
        db.execute(
            _identity_stmt(product_id, location_id, lot_number, serial_number, lpn)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .first()
    )


def _new_record(
    *,
    product_id: int,
    location_id: int,
    warehouse_id: int,
    lot_number: str | None,
    serial_number: str | None,
    lpn: str | None,
    expiration_date: date | None,
) -> InventoryRecord:
    return InventoryRecord(
        product_id=product_id,
        location_id=location_id,
        warehouse_id=warehouse_id,
        lot_number=lot_number,
        serial_number=serial_number,
        lpn=lpn,
        expiration_date=expiration_date,
        quantity_on_hand=0,
        quantity_allocated=0,
        quantity_available=0,
        status=InventoryStatus.available,
    )


def set_quantities(record: InventoryRecord, on_hand: int, allocated: int, available: int) -> None:
    """Écrit le triplet de quantités. Seul l'operator l'appelle."""
    if on_hand < 0 or allocated < 0 or available < 0:
        raise InvalidQuantityError(
            f"Negative quantity for record {record.id} "
            f"(on_hand={on_hand}, allocated={allocated}, available={available})"
        )
    if on_hand != allocated + available:
        raise InvalidQuantityError(
            f"Unbalanced quantities for record {record.id}: {on_hand} != {allocated} + {available}"
        )

    record.quantity_on_hand = on_hand
    record.quantity_allocated = allocated
    record.quantity_available = available


def list_records(
    db: Session,
    *,
    warehouse_id: int | None = None,
    location_ids: Iterable[int] | None = None,
    product_ids: Iterable[int] | None = None,
    status: InventoryStatus | None = None,
    include_zero: bool = False,
) -> list[InventoryRecord]:
    """
    Positions d'inventaire selon les filtres.

    Les lignes à zéro restent en table comme ancrage de l'historique du
    ledger; elles sont exclues ici sauf avec include_zero.
    """
    stmt = select(InventoryRecord).order_by(
        InventoryRecord.location_id,
        InventoryRecord.product_id,
        InventoryRecord.id,
    )

    if warehouse_id is not None:
        stmt = stmt.where(InventoryRecord.warehouse_id == warehouse_id)
    if location_ids is not None:
        stmt = stmt.where(InventoryRecord.location_id.in_(list(location_ids)))
    if product_ids is not None:
        stmt = stmt.where(InventoryRecord.product_id.in_(list(product_ids)))
    if status is not None:
        stmt = stmt.where(InventoryRecord.status == status)
    if not include_zero:
        stmt = stmt.where(InventoryRecord.quantity_on_hand > 0)

    return list(db.execute(stmt).scalars().all())


def lock_records(db: Session, ids: Iterable[int]) -> dict[int, InventoryRecord]:
    """Verrouille plusieurs records, toujours par id croissant."""
    wanted = sorted({int(i) for i in ids})
    if not wanted:
        return {}

    rows = (
        db.execute(
            select(InventoryRecord)
            .where(InventoryRecord.id.in_(wanted))
            .order_by(InventoryRecord.id.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )
    found = {int(r.id): r for r in rows}

    for rid in wanted:
        if rid not in found:
            raise RecordNotFoundError("InventoryRecord", rid)
    return found


def summary(db: Session, *, warehouse_id: int | None = None, low_stock_threshold: int | None = None) -> dict:
    """
    Totaux sur les records non nuls.

    Un record est en stock bas sous le reorder point de son produit, ou
    sous low_stock_threshold si le produit n'en a pas.
    """
    threshold = low_stock_threshold if low_stock_threshold is not None else settings.LOW_STOCK_THRESHOLD
    base = select(InventoryRecord).where(InventoryRecord.quantity_on_hand > 0)
    if warehouse_id is not None:
        base = base.where(InventoryRecord.warehouse_id == warehouse_id)
    sub = base.subquery()

    records, products, locations, on_hand, allocated, available = db.execute(
        select(
            func.count(sub.c.id),
            func.count(func.distinct(sub.c.product_id)),
            func.count(func.distinct(sub.c.location_id)),
            func.coalesce(func.sum(sub.c.quantity_on_hand), 0),
            func.coalesce(func.sum(sub.c.quantity_allocated), 0),
            func.coalesce(func.sum(sub.c.quantity_available), 0),
        )
    ).one()

    low_stock = db.execute(
        select(func.count(sub.c.id))
        .select_from(sub)
        .join(Product, Product.id == sub.c.product_id)
        .where(sub.c.quantity_on_hand < func.coalesce(Product.reorder_point, threshold))
    ).scalar_one()

    by_status = {
        status.value: int(n)
        for status, n in db.execute(
            select(sub.c.status, func.count(sub.c.id)).group_by(sub.c.status)
        ).all()
    }

    return {
        "warehouse_id": warehouse_id,
        "total_records": int(records),
        "total_products": int(products),
        "total_locations": int(locations),
        "quantity_on_hand": int(on_hand),
        "quantity_allocated": int(allocated),
        "quantity_available": int(available),
        "low_stock": int(low_stock),
        "by_status": by_status,
    }
