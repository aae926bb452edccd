from datetime import date, datetime

from pydantic import BaseModel

from stockledger.app.db.models.core_types import InventoryStatus, TransactionType


class InventoryRecordRead(BaseModel):
    id: int
    product_id: int
    location_id: int
    warehouse_id: int

    lot_number: str | None = None
    serial_number: str | None = None
    lpn: str | None = None
    expiration_date: date | None = None

    quantity_on_hand: int
    quantity_allocated: int
    quantity_available: int  # READ ONLY, écrit uniquement par l'operator

    status: InventoryStatus
    last_counted_at: datetime | None = None
    updated_at: datetime

    class Config:
        from_attributes = True


class InventoryTransactionRead(BaseModel):
    id: int
    transaction_type: TransactionType
    inventory_id: int
    product_id: int
    location_id: int
    from_location_id: int | None = None
    to_location_id: int | None = None
    lot_number: str | None = None

    quantity: int
    quantity_before: int
    quantity_after: int

    reference_type: str
    reference_id: str | None = None
    reference_number: str | None = None
    correlation_id: str
    actor_id: str
    reason: str | None = None
    notes: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True
