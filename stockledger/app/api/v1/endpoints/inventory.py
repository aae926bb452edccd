from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_actor, get_db
from stockledger.app.db.models.core_types import InventoryStatus, TransactionType
from stockledger.app.schemas.inventory import InventoryRecordRead, InventoryTransactionRead
from stockledger.services import cycle_count, inventory_store, ledger, operator

router = APIRouter(prefix="/inventory")


# ---------- Schemas ----------
class AdjustCreate(BaseModel):
    quantity: int  # delta signé
    reason: str = Field(min_length=1, max_length=255)
    notes: str | None = None


class TransferCreate(BaseModel):
    inventory_id: int
    to_location_id: int
    quantity: int
    reason: str | None = None
    notes: str | None = None


class MoveCreate(BaseModel):
    to_location_id: int
    reason: str | None = None


class StatusChange(BaseModel):
    status: InventoryStatus
    reason: str = Field(min_length=1, max_length=255)


class ReceiveCreate(BaseModel):
    product_id: int
    location_id: int
    quantity: int
    lot_number: str | None = None
    serial_number: str | None = None
    lpn: str | None = None
    expiration_date: date | None = None
    reference_id: str | None = None
    reference_number: str | None = None
    reason: str | None = None


class AllocationCreate(BaseModel):
    quantity: int
    reference_id: str | None = None
    reference_number: str | None = None
    reason: str | None = None


# ---------- Reads ----------
@router.get(
    "",
    response_model=list[InventoryRecordRead],
)
def list_inventory(
    warehouse_id: int | None = None,
    location_id: int | None = None,
    product_id: int | None = None,
    status: InventoryStatus | None = None,
    include_zero: bool = False,
    db: Session = Depends(get_db),
):
    """
    Inventory (LECTURE SEULE)
    - les quantités ne changent que via les endpoints operator ci-dessous
    - les lignes à zéro sont masquées sauf include_zero=true
    """
    return inventory_store.list_records(
        db,
        warehouse_id=warehouse_id,
        location_ids=[location_id] if location_id is not None else None,
        product_ids=[product_id] if product_id is not None else None,
        status=status,
        include_zero=include_zero,
    )


@router.get("/summary")
def inventory_summary(warehouse_id: int | None = None, db: Session = Depends(get_db)):
    return inventory_store.summary(db, warehouse_id=warehouse_id)


@router.get("/transactions", response_model=list[InventoryTransactionRead])
def list_transactions(
    inventory_id: int | None = None,
    product_id: int | None = None,
    location_id: int | None = None,
    transaction_type: TransactionType | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    correlation_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    filters = ledger.LedgerFilter(
        inventory_id=inventory_id,
        product_id=product_id,
        location_id=location_id,
        transaction_type=transaction_type,
        reference_type=reference_type,
        reference_id=reference_id,
        correlation_id=correlation_id,
        since=since,
        until=until,
        limit=limit,
    )
    return list(ledger.query_entries(db, filters))


@router.get("/discrepancies/list")
def list_discrepancies(warehouse_id: int | None = None, db: Session = Depends(get_db)):
    lines = cycle_count.open_discrepancies(db, warehouse_id)
    return [
        {
            "cycle_count_id": line.cycle_count_id,
            "line_id": line.id,
            "location_id": line.location_id,
            "product_id": line.product_id,
            "system_quantity": line.system_quantity,
            "counted_quantity": line.counted_quantity,
            "variance": line.variance,
            "variance_pct": line.variance_pct,
            "status": line.status,
        }
        for line in lines
    ]


@router.get("/{inventory_id}", response_model=InventoryRecordRead)
def get_inventory(inventory_id: int, db: Session = Depends(get_db)):
    return inventory_store.get_record_by_id(db, inventory_id)


@router.get("/{inventory_id}/transactions", response_model=list[InventoryTransactionRead])
def record_transactions(inventory_id: int, limit: int = 100, db: Session = Depends(get_db)):
    inventory_store.get_record_by_id(db, inventory_id)
    return list(ledger.query_entries(db, ledger.LedgerFilter(inventory_id=inventory_id, limit=limit)))


# ---------- Mutations ----------
@router.post("/{inventory_id}/adjust")
def adjust_inventory(
    inventory_id: int,
    payload: AdjustCreate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    result = operator.adjust(
        db,
        inventory_id,
        payload.quantity,
        payload.reason,
        actor_id=actor_id,
        notes=payload.notes,
        idempotency_key=idempotency_key,
    )
    db.commit()
    return asdict(result)


@router.post("/transfer")
def transfer_inventory(
    payload: TransferCreate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    result = operator.transfer(
        db,
        payload.inventory_id,
        payload.to_location_id,
        payload.quantity,
        actor_id=actor_id,
        reason=payload.reason,
        notes=payload.notes,
        idempotency_key=idempotency_key,
    )
    db.commit()
    return asdict(result)


@router.post("/receive")
def receive_inventory(
    payload: ReceiveCreate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    result = operator.receive(
        db,
        product_id=payload.product_id,
        location_id=payload.location_id,
        quantity=payload.quantity,
        actor_id=actor_id,
        lot_number=payload.lot_number,
        serial_number=payload.serial_number,
        lpn=payload.lpn,
        expiration_date=payload.expiration_date,
        reference_id=payload.reference_id,
        reference_number=payload.reference_number,
        reason=payload.reason,
        idempotency_key=idempotency_key,
    )
    db.commit()
    return asdict(result)


@router.post("/{inventory_id}/move")
def move_inventory(
    inventory_id: int,
    payload: MoveCreate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    result = operator.move(
        db,
        inventory_id,
        payload.to_location_id,
        actor_id=actor_id,
        reason=payload.reason,
        idempotency_key=idempotency_key,
    )
    db.commit()
    return asdict(result)


@router.post("/{inventory_id}/status")
def change_status(
    inventory_id: int,
    payload: StatusChange,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    result = operator.set_status(
        db,
        inventory_id,
        payload.status,
        payload.reason,
        actor_id=actor_id,
        idempotency_key=idempotency_key,
    )
    db.commit()
    return asdict(result)


@router.post("/{inventory_id}/allocate")
def allocate_inventory(
    inventory_id: int,
    payload: AllocationCreate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    result = operator.allocate(
        db,
        inventory_id,
        payload.quantity,
        actor_id=actor_id,
        reference_id=payload.reference_id,
        reference_number=payload.reference_number,
        reason=payload.reason,
        idempotency_key=idempotency_key,
    )
    db.commit()
    return asdict(result)


@router.post("/{inventory_id}/deallocate")
def deallocate_inventory(
    inventory_id: int,
    payload: AllocationCreate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    result = operator.deallocate(
        db,
        inventory_id,
        payload.quantity,
        actor_id=actor_id,
        reference_id=payload.reference_id,
        reference_number=payload.reference_number,
        reason=payload.reason,
        idempotency_key=idempotency_key,
    )
    db.commit()
    return asdict(result)
