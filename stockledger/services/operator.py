"""
Operator d'ajustements et de transferts.

Seul code qui écrit les champs de quantité. Chaque opération:
    - tourne dans son propre SAVEPOINT (Session.begin_nested())
    - relit les lignes touchées en SELECT ... FOR UPDATE
    - valide, écrit les nouvelles quantités et ajoute les entrées de ledger

En cas d'échec le savepoint est annulé: aucune ligne ni entrée de ledger
de l'opération ne subsiste et la transaction de l'appelant reste utilisable.
Le commit reste à l'appelant.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import (
    EventKind,
    InventoryStatus,
    ReferenceType,
    TransactionType,
)
from stockledger.app.db.models.models_v1 import InventoryRecord, OperationKey
from stockledger.app.settings import settings
from stockledger.services import catalog, events, ledger
from stockledger.services import inventory_store as store
from stockledger.services.errors import (
    HasAllocationError,
    IdempotencyConflictError,
    InsufficientAvailableError,
    InvalidQuantityError,
    InvalidTransitionError,
    InventoryEngineError,
    NegativeInventoryError,
    PositionOccupiedError,
)

log = logging.getLogger(__name__)

R = TypeVar("R")


# ---------- Results ----------
@dataclass
class AdjustmentResult:
    record_id: int
    transaction_id: int
    correlation_id: str
    delta: int
    quantity_before: int
    quantity_after: int
    replayed: bool = False


@dataclass
class TransferResult:
    from_record_id: int
    to_record_id: int
    quantity: int
    correlation_id: str
    transaction_ids: list[int] = field(default_factory=list)
    from_quantity_after: int = 0
    to_quantity_after: int = 0
    replayed: bool = False


@dataclass
class MoveResult:
    record_id: int
    from_location_id: int
    to_location_id: int
    quantity: int
    correlation_id: str
    transaction_ids: list[int] = field(default_factory=list)
    # record qui porte les unités après le move (différent si fusion)
    to_record_id: int | None = None
    replayed: bool = False


@dataclass
class StatusResult:
    record_id: int
    previous_status: str
    new_status: str
    transaction_id: int
    correlation_id: str
    replayed: bool = False


@dataclass
class AllocationResult:
    record_id: int
    transaction_id: int
    correlation_id: str
    quantity: int
    quantity_allocated: int
    quantity_available: int
    replayed: bool = False


# ---------- Helpers ----------
def _value(v) -> str | None:
    if v is None:
        return None
    return getattr(v, "value", v)


def _find_key(db: Session, idempotency_key: str) -> OperationKey | None:
    return db.execute(
        select(OperationKey).where(OperationKey.idempotency_key == idempotency_key)
    ).scalar_one_or_none()


def _replay(row: OperationKey, operation: str, result_cls: type[R]) -> R:
    if row.operation != operation:
        raise IdempotencyConflictError(row.idempotency_key, operation, row.operation)
    log.info("replaying %s for Idempotency-Key=%s", operation, row.idempotency_key)
    data = dict(row.result or {})
    data["replayed"] = True
    return result_cls(**data)


def _claim(
    db: Session, idempotency_key: str, operation: str, correlation_id: str
) -> tuple[OperationKey | None, OperationKey | None]:
    """
    Insère la ligne de clé. Renvoie (claimed_row, None) si elle est prise,
    (None, existing_row) si un autre appelant tient déjà la clé.
    """
    row = OperationKey(
        idempotency_key=idempotency_key,
        operation=operation,
        correlation_id=correlation_id,
    )
    try:
        with db.begin_nested():
            db.add(row)
    except IntegrityError:
        existing = _find_key(db, idempotency_key)
        if existing is None:
            raise
        return None, existing
    return row, None


def _execute(
    db: Session,
    operation: str,
    result_cls: type[R],
    idempotency_key: str | None,
    body: Callable[[str], R],
) -> R:
    key = idempotency_key.strip() if idempotency_key and idempotency_key.strip() else None

    # idempotent replay
    if key:
        previous = _find_key(db, key)
        if previous is not None:
            return _replay(previous, operation, result_cls)

    correlation_id = uuid.uuid4().hex
    try:
        with db.begin_nested():
            claimed = None
            if key:
                claimed, previous = _claim(db, key, operation, correlation_id)
                if previous is not None:
                    return _replay(previous, operation, result_cls)

            result = body(correlation_id)

            if claimed is not None:
                claimed.result = asdict(result)
    except InventoryEngineError as exc:
        log.warning("%s rejected: %s (%s)", operation, exc, exc.code)
        raise
    return result


def _low_stock_threshold(record: InventoryRecord) -> int:
    product = record.product
    if product is not None and product.reorder_point is not None:
        return int(product.reorder_point)
    return settings.LOW_STOCK_THRESHOLD


def _queue_events(
    db: Session,
    kind: EventKind,
    record: InventoryRecord,
    location_id: int,
    before: int,
    after: int,
    reference_type: str,
    reference_id: str | None,
    correlation_id: str,
) -> None:
    evt = dict(
        inventory_id=int(record.id),
        product_id=int(record.product_id),
        location_id=int(location_id),
        quantity_before=before,
        quantity_after=after,
        reference_type=reference_type,
        reference_id=reference_id,
        correlation_id=correlation_id,
    )
    events.queue(db, events.InventoryEvent(kind=kind, **evt))

    threshold = _low_stock_threshold(record)
    if before >= threshold > after:
        events.queue(db, events.InventoryEvent(kind=EventKind.low_stock, **evt))


def _lock_pair(
    db: Session, record_id: int, to_location_id: int
) -> tuple[InventoryRecord, InventoryRecord | None]:
    """
    Verrouille la source et, si elle existe, la même position à destination.

    La destination est résolue sans verrou, puis les deux lignes sont prises
    en un seul SELECT ... FOR UPDATE, toujours dans l'ordre des ids.
    """
    ref = store.get_record_by_id(db, record_id)
    if ref.location_id == to_location_id:
        raise InvalidQuantityError("from and to locations must differ")

    existing = store.get_record(
        db, ref.product_id, to_location_id, ref.lot_number,
        serial_number=ref.serial_number, lpn=ref.lpn,
    )
    ids = [ref.id] if existing is None else [ref.id, existing.id]
    locked = store.lock_records(db, ids)

    src = locked[int(ref.id)]
    # la source a pu bouger avant le verrou
    if src.location_id == to_location_id:
        raise InvalidQuantityError("from and to locations must differ")
    dst = locked[int(existing.id)] if existing is not None else None
    return src, dst


# ---------- Operations ----------
def adjust(
    db: Session,
    record_id: int,
    delta: int,
    reason: str,
    *,
    actor_id: str,
    reference_type: ReferenceType | str = ReferenceType.adjustment,
    reference_id: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> AdjustmentResult:
    """
    Modifie le on-hand d'un delta signé.

    after = on_hand + delta, doit rester >= allocated; c'est available qui
    absorbe le changement. Écrit une entrée ADJUST_IN / ADJUST_OUT.
    """
    ref_type = _value(reference_type)

    def body(correlation_id: str) -> AdjustmentResult:
        if delta == 0:
            raise InvalidQuantityError("Adjustment delta must not be zero")

        record = store.get_record_by_id(db, record_id, for_update=True)
        before = record.quantity_on_hand
        after = before + delta
        if after < 0:
            raise NegativeInventoryError(record.id, before, delta)
        if after < record.quantity_allocated:
            raise InvalidQuantityError(
                f"Adjustment would leave on_hand={after} below allocated={record.quantity_allocated}"
            )

        store.set_quantities(record, after, record.quantity_allocated, after - record.quantity_allocated)
        txn_id = ledger.append_entry(
            db,
            transaction_type=TransactionType.adjust_in if delta > 0 else TransactionType.adjust_out,
            inventory_id=record.id,
            product_id=record.product_id,
            location_id=record.location_id,
            lot_number=record.lot_number,
            quantity=delta,
            quantity_before=before,
            quantity_after=after,
            reference_type=ref_type,
            reference_id=reference_id,
            reference_number=reference_number,
            correlation_id=correlation_id,
            actor_id=actor_id,
            reason=reason,
            notes=notes,
        )
        _queue_events(
            db, EventKind.adjustment_posted, record, record.location_id,
            before, after, ref_type, reference_id, correlation_id,
        )
        log.info(
            "adjust record=%s delta=%s on_hand %s -> %s ref=%s/%s actor=%s",
            record.id, delta, before, after, ref_type, reference_id, actor_id,
        )
        return AdjustmentResult(
            record_id=int(record.id),
            transaction_id=txn_id,
            correlation_id=correlation_id,
            delta=delta,
            quantity_before=before,
            quantity_after=after,
        )

    return _execute(db, "adjust", AdjustmentResult, idempotency_key, body)


def transfer(
    db: Session,
    from_record_id: int,
    to_location_id: int,
    quantity: int,
    *,
    actor_id: str,
    reason: str | None = None,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> TransferResult:
    """
    Déplace des unités disponibles d'un record vers une autre location.

    Le record destination (même produit, lot, serial, lpn) est créé à zéro
    s'il manque. Les deux côtés sont écrits, ou aucun.
    """

    def body(correlation_id: str) -> TransferResult:
        if quantity <= 0:
            raise InvalidQuantityError("Transfer quantity must be positive")

        src, existing = _lock_pair(db, from_record_id, to_location_id)

        if src.quantity_available < quantity:
            raise InsufficientAvailableError(src.quantity_available, quantity)

        src_before = src.quantity_on_hand
        src_after = src_before - quantity
        store.set_quantities(src, src_after, src.quantity_allocated, src.quantity_available - quantity)
        out_id = ledger.append_entry(
            db,
            transaction_type=TransactionType.transfer,
            inventory_id=src.id,
            product_id=src.product_id,
            location_id=src.location_id,
            from_location_id=src.location_id,
            to_location_id=to_location_id,
            lot_number=src.lot_number,
            quantity=-quantity,
            quantity_before=src_before,
            quantity_after=src_after,
            reference_type=ReferenceType.transfer.value,
            correlation_id=correlation_id,
            actor_id=actor_id,
            reason=reason,
            notes=notes,
        )

        dst = existing
        if dst is None:
            dst = store.find_or_create_record(
                db,
                product_id=src.product_id,
                location_id=to_location_id,
                lot_number=src.lot_number,
                serial_number=src.serial_number,
                lpn=src.lpn,
                expiration_date=src.expiration_date,
            )
        dst_before = dst.quantity_on_hand
        dst_after = dst_before + quantity
        store.set_quantities(dst, dst_after, dst.quantity_allocated, dst.quantity_available + quantity)
        in_id = ledger.append_entry(
            db,
            transaction_type=TransactionType.transfer,
            inventory_id=dst.id,
            product_id=dst.product_id,
            location_id=to_location_id,
            from_location_id=src.location_id,
            to_location_id=to_location_id,
            lot_number=dst.lot_number,
            quantity=quantity,
            quantity_before=dst_before,
            quantity_after=dst_after,
            reference_type=ReferenceType.transfer.value,
            correlation_id=correlation_id,
            actor_id=actor_id,
            reason=reason,
            notes=notes,
        )

        ref = ReferenceType.transfer.value
        _queue_events(db, EventKind.transfer_posted, src, src.location_id, src_before, src_after, ref, None, correlation_id)
        _queue_events(db, EventKind.transfer_posted, dst, to_location_id, dst_before, dst_after, ref, None, correlation_id)
        log.info(
            "transfer qty=%s record=%s -> record=%s (location %s -> %s) actor=%s",
            quantity, src.id, dst.id, src.location_id, to_location_id, actor_id,
        )
        return TransferResult(
            from_record_id=int(src.id),
            to_record_id=int(dst.id),
            quantity=quantity,
            correlation_id=correlation_id,
            transaction_ids=[out_id, in_id],
            from_quantity_after=src_after,
            to_quantity_after=dst_after,
        )

    return _execute(db, "transfer", TransferResult, idempotency_key, body)


def move(
    db: Session,
    record_id: int,
    to_location_id: int,
    *,
    actor_id: str,
    reason: str | None = None,
    idempotency_key: str | None = None,
) -> MoveResult:
    """
    Déplace un record entier (palette / LPN) sans le découper.

    Si la destination n'a pas encore cette position, le record change de
    location_id: -on_hand à l'ancienne location et +on_hand à la nouvelle,
    sur le même record. Si la position existe déjà avec le même status, les
    unités sont fusionnées dans ce record et la source reste à zéro; avec un
    autre status, le move est refusé (PositionOccupiedError).
    """

    def body(correlation_id: str) -> MoveResult:
        record, existing = _lock_pair(db, record_id, to_location_id)
        if record.quantity_allocated > 0:
            raise HasAllocationError(record.id, record.quantity_allocated)
        if existing is not None and existing.status != record.status:
            raise PositionOccupiedError(record.id, to_location_id, existing.id)

        destination = catalog.get_location(db, to_location_id)
        from_location_id = record.location_id
        qty = record.quantity_on_hand

        out_id = ledger.append_entry(
            db,
            transaction_type=TransactionType.move,
            inventory_id=record.id,
            product_id=record.product_id,
            location_id=from_location_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            lot_number=record.lot_number,
            quantity=-qty,
            quantity_before=qty,
            quantity_after=0,
            reference_type=ReferenceType.move.value,
            correlation_id=correlation_id,
            actor_id=actor_id,
            reason=reason,
        )

        ref = ReferenceType.move.value
        if existing is None:
            target = record
            target_before = 0
            record.location_id = to_location_id
            record.warehouse_id = destination.warehouse_id
        else:
            # fusion: la source reste à l'ancienne location, vide
            target = existing
            target_before = existing.quantity_on_hand
            store.set_quantities(record, 0, 0, 0)
            store.set_quantities(
                existing,
                target_before + qty,
                existing.quantity_allocated,
                existing.quantity_available + qty,
            )
        target_after = target_before + qty

        in_id = ledger.append_entry(
            db,
            transaction_type=TransactionType.move,
            inventory_id=target.id,
            product_id=target.product_id,
            location_id=to_location_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            lot_number=target.lot_number,
            quantity=qty,
            quantity_before=target_before,
            quantity_after=target_after,
            reference_type=ref,
            correlation_id=correlation_id,
            actor_id=actor_id,
            reason=reason,
        )

        if existing is None:
            events.queue(
                db,
                events.InventoryEvent(
                    kind=EventKind.move_posted,
                    inventory_id=int(record.id),
                    product_id=int(record.product_id),
                    location_id=int(to_location_id),
                    quantity_before=qty,
                    quantity_after=qty,
                    reference_type=ref,
                    correlation_id=correlation_id,
                ),
            )
        else:
            _queue_events(db, EventKind.move_posted, record, from_location_id, qty, 0, ref, None, correlation_id)
            _queue_events(
                db, EventKind.move_posted, target, to_location_id, target_before, target_after,
                ref, None, correlation_id,
            )
        log.info(
            "move record=%s qty=%s location %s -> %s (into record=%s) actor=%s",
            record.id, qty, from_location_id, to_location_id, target.id, actor_id,
        )
        return MoveResult(
            record_id=int(record.id),
            from_location_id=int(from_location_id),
            to_location_id=int(to_location_id),
            quantity=qty,
            correlation_id=correlation_id,
            transaction_ids=[out_id, in_id],
            to_record_id=int(target.id),
        )

    return _execute(db, "move", MoveResult, idempotency_key, body)


def set_status(
    db: Session,
    record_id: int,
    new_status: InventoryStatus | str,
    reason: str,
    *,
    actor_id: str,
    idempotency_key: str | None = None,
) -> StatusResult:
    def body(correlation_id: str) -> StatusResult:
        record = store.get_record_by_id(db, record_id, for_update=True)
        previous = record.status
        try:
            target = InventoryStatus(new_status)
        except ValueError:
            raise InvalidTransitionError("InventoryRecord", previous.value, str(new_status)) from None
        if target == previous:
            raise InvalidTransitionError("InventoryRecord", previous.value, target.value)

        record.status = target
        on_hand = record.quantity_on_hand
        txn_id = ledger.append_entry(
            db,
            transaction_type=TransactionType.status_change,
            inventory_id=record.id,
            product_id=record.product_id,
            location_id=record.location_id,
            lot_number=record.lot_number,
            quantity=0,
            quantity_before=on_hand,
            quantity_after=on_hand,
            reference_type=ReferenceType.status_change.value,
            correlation_id=correlation_id,
            actor_id=actor_id,
            reason=reason,
            notes=f"{previous.value} -> {target.value}",
        )
        log.info("status record=%s %s -> %s actor=%s", record.id, previous.value, target.value, actor_id)
        return StatusResult(
            record_id=int(record.id),
            previous_status=previous.value,
            new_status=target.value,
            transaction_id=txn_id,
            correlation_id=correlation_id,
        )

    return _execute(db, "set_status", StatusResult, idempotency_key, body)


def receive(
    db: Session,
    *,
    product_id: int,
    location_id: int,
    quantity: int,
    actor_id: str,
    lot_number: str | None = None,
    serial_number: str | None = None,
    lpn: str | None = None,
    expiration_date: date | None = None,
    reference_type: ReferenceType | str = ReferenceType.receipt,
    reference_id: str | None = None,
    reference_number: str | None = None,
    reason: str | None = None,
    idempotency_key: str | None = None,
) -> AdjustmentResult:
    """Met en stock des unités reçues (réception et fin de kitting)."""
    ref_type = _value(reference_type)

    def body(correlation_id: str) -> AdjustmentResult:
        if quantity <= 0:
            raise InvalidQuantityError("Received quantity must be positive")

        record = store.find_or_create_record(
            db,
            product_id=product_id,
            location_id=location_id,
            lot_number=lot_number,
            serial_number=serial_number,
            lpn=lpn,
            expiration_date=expiration_date,
        )
        before = record.quantity_on_hand
        after = before + quantity
        store.set_quantities(record, after, record.quantity_allocated, record.quantity_available + quantity)
        txn_id = ledger.append_entry(
            db,
            transaction_type=TransactionType.receive,
            inventory_id=record.id,
            product_id=record.product_id,
            location_id=record.location_id,
            to_location_id=record.location_id,
            lot_number=record.lot_number,
            quantity=quantity,
            quantity_before=before,
            quantity_after=after,
            reference_type=ref_type,
            reference_id=reference_id,
            reference_number=reference_number,
            correlation_id=correlation_id,
            actor_id=actor_id,
            reason=reason,
        )
        _queue_events(
            db, EventKind.receipt_posted, record, record.location_id,
            before, after, ref_type, reference_id, correlation_id,
        )
        log.info("receive record=%s qty=%s on_hand %s -> %s actor=%s", record.id, quantity, before, after, actor_id)
        return AdjustmentResult(
            record_id=int(record.id),
            transaction_id=txn_id,
            correlation_id=correlation_id,
            delta=quantity,
            quantity_before=before,
            quantity_after=after,
        )

    return _execute(db, "receive", AdjustmentResult, idempotency_key, body)


def _allocation(
    db: Session,
    operation: str,
    record_id: int,
    quantity: int,
    *,
    actor_id: str,
    reference_id: str | None,
    reference_number: str | None,
    reason: str | None,
    idempotency_key: str | None,
) -> AllocationResult:
    def body(correlation_id: str) -> AllocationResult:
        if quantity <= 0:
            raise InvalidQuantityError(f"{operation} quantity must be positive")

        record = store.get_record_by_id(db, record_id, for_update=True)
        if operation == "allocate":
            if record.quantity_available < quantity:
                raise InsufficientAvailableError(record.quantity_available, quantity)
            allocated = record.quantity_allocated + quantity
            txn_type = TransactionType.allocate
        else:
            if record.quantity_allocated < quantity:
                raise InvalidQuantityError(
                    f"Cannot deallocate {quantity}, only {record.quantity_allocated} allocated"
                )
            allocated = record.quantity_allocated - quantity
            txn_type = TransactionType.deallocate

        on_hand = record.quantity_on_hand
        store.set_quantities(record, on_hand, allocated, on_hand - allocated)
        txn_id = ledger.append_entry(
            db,
            transaction_type=txn_type,
            inventory_id=record.id,
            product_id=record.product_id,
            location_id=record.location_id,
            lot_number=record.lot_number,
            quantity=0,
            quantity_before=on_hand,
            quantity_after=on_hand,
            reference_type=ReferenceType.allocation.value,
            reference_id=reference_id,
            reference_number=reference_number,
            correlation_id=correlation_id,
            actor_id=actor_id,
            reason=reason,
            notes=f"{operation} {quantity}",
        )
        log.info("%s record=%s qty=%s allocated=%s actor=%s", operation, record.id, quantity, allocated, actor_id)
        return AllocationResult(
            record_id=int(record.id),
            transaction_id=txn_id,
            correlation_id=correlation_id,
            quantity=quantity,
            quantity_allocated=allocated,
            quantity_available=on_hand - allocated,
        )

    return _execute(db, operation, AllocationResult, idempotency_key, body)


def allocate(
    db: Session,
    record_id: int,
    quantity: int,
    *,
    actor_id: str,
    reference_id: str | None = None,
    reference_number: str | None = None,
    reason: str | None = None,
    idempotency_key: str | None = None,
) -> AllocationResult:
    return _allocation(
        db, "allocate", record_id, quantity,
        actor_id=actor_id, reference_id=reference_id, reference_number=reference_number,
        reason=reason, idempotency_key=idempotency_key,
    )


def deallocate(
    db: Session,
    record_id: int,
    quantity: int,
    *,
    actor_id: str,
    reference_id: str | None = None,
    reference_number: str | None = None,
    reason: str | None = None,
    idempotency_key: str | None = None,
) -> AllocationResult:
    return _allocation(
        db, "deallocate", record_id, quantity,
        actor_id=actor_id, reference_id=reference_id, reference_number=reference_number,
        reason=reason, idempotency_key=idempotency_key,
    )
