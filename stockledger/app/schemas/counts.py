from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel

from stockledger.app.db.models.core_types import (
    CountBookLineStatus,
    CountBookStatus,
    CycleCountLineStatus,
    CycleCountStatus,
    CycleCountType,
    PICountType,
    PIStatus,
)


# ---------- Cycle counts ----------
class CycleCountLineRead(BaseModel):
    id: int
    inventory_id: int | None = None
    location_id: int
    product_id: int
    lot_number: str | None = None
    lpn: str | None = None

    system_quantity: int | None = None  # masqué tant qu'un comptage aveugle est ouvert
    counted_quantity: int | None = None
    variance: int | None = None
    variance_pct: Decimal | None = None
    recount_required: bool
    recount_count: int

    status: CycleCountLineStatus
    counted_at: datetime | None = None
    counted_by: str | None = None
    notes: str | None = None

    class Config:
        from_attributes = True


class CycleCountRead(BaseModel):
    id: int
    count_number: str
    warehouse_id: int
    type: CycleCountType
    cycle_class: str | None = None
    status: CycleCountStatus

    variance_threshold_qty: int | None = None
    variance_threshold_pct: Decimal | None = None
    variance_threshold_value: Decimal | None = None

    total_locations: int
    counted_locations: int
    discrepancies: int

    scheduled_date: date | None = None
    notes: str | None = None
    created_by: str
    approved_by: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    class Config:
        from_attributes = True


class CycleCountDetail(CycleCountRead):
    lines: list[CycleCountLineRead] = []


class CycleCountCriteriaRead(BaseModel):
    id: int
    warehouse_id: int
    cycle_class: str
    name: str
    description: str | None = None
    count_frequency_days: int
    velocity_codes: list[str]
    location_types: list[str]
    min_cost: Decimal | None = None
    max_cost: Decimal | None = None
    is_active: bool

    class Config:
        from_attributes = True


class CycleCountToleranceRead(BaseModel):
    id: int
    warehouse_id: int
    category: str
    name: str
    description: str | None = None
    tolerance_qty: int
    tolerance_pct: Decimal
    tolerance_value: Decimal
    cycle_classes: list[str]
    velocity_codes: list[str]
    auto_approve: bool
    require_recount: bool
    recount_threshold: int | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ---------- Physical inventory ----------
class CountBookLineRead(BaseModel):
    """Vue compteur: la quantité système n'est jamais exposée ici."""

    id: int
    line_number: int
    location_id: int
    product_id: int | None = None
    lot_number: str | None = None
    lpn: str | None = None

    expected_quantity: int | None = None
    counted_quantity: int | None = None
    recount_quantity: int | None = None
    variance: int | None = None
    variance_pct: Decimal | None = None
    out_of_book: bool

    status: CountBookLineStatus
    counted_by: str | None = None
    counted_at: datetime | None = None
    notes: str | None = None

    class Config:
        from_attributes = True


class CountBookRead(BaseModel):
    id: int
    physical_inventory_id: int
    book_number: str
    zone_id: int | None = None
    status: CountBookStatus
    assigned_to: str | None = None
    priority: int
    total_locations: int
    counted_locations: int
    assigned_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


class CountBookDetail(CountBookRead):
    lines: list[CountBookLineRead] = []


class PhysicalInventoryRead(BaseModel):
    id: int
    pi_number: str
    warehouse_id: int
    name: str
    description: str | None = None
    scheduled_date: date
    count_type: PICountType
    status: PIStatus
    blind_count: bool
    locations_per_book: int
    variance_threshold_qty: int
    variance_threshold_pct: Decimal
    variance_threshold_value: Decimal
    zone_ids: list[int]

    total_books: int
    total_locations: int
    adjustments_posted: int
    total_adjustment_value: Decimal

    created_by: str
    approved_by: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    class Config:
        from_attributes = True


class PhysicalInventoryDetail(PhysicalInventoryRead):
    books: list[CountBookRead] = []
