from __future__ import annotations

from dataclasses import asdict
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_actor, get_db
from stockledger.app.db.models.core_types import PICountType, PIStatus
from stockledger.app.schemas.counts import (
    CountBookDetail,
    CountBookLineRead,
    CountBookRead,
    PhysicalInventoryDetail,
    PhysicalInventoryRead,
)
from stockledger.services import physical_inventory

router = APIRouter(prefix="/physical-inventories")


# ---------- Schemas ----------
class PhysicalInventoryCreate(BaseModel):
    warehouse_id: int
    scheduled_date: date
    name: str | None = Field(default=None, max_length=200)
    description: str | None = None
    count_type: PICountType | None = None
    zone_ids: list[int] = Field(default_factory=list)
    blind_count: bool = False
    locations_per_book: int | None = Field(default=None, gt=0)
    variance_threshold_qty: int | None = Field(default=None, ge=0)
    variance_threshold_pct: Decimal | None = Field(default=None, ge=0)
    variance_threshold_value: Decimal | None = Field(default=None, ge=0)


class PhysicalInventoryUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    description: str | None = None
    scheduled_date: date | None = None
    zone_ids: list[int] | None = None
    blind_count: bool | None = None
    locations_per_book: int | None = Field(default=None, gt=0)
    variance_threshold_qty: int | None = Field(default=None, ge=0)
    variance_threshold_pct: Decimal | None = Field(default=None, ge=0)
    variance_threshold_value: Decimal | None = Field(default=None, ge=0)


class BookAssign(BaseModel):
    assigned_to: str = Field(min_length=1, max_length=64)
    priority: int | None = Field(default=None, gt=0)


class BookPriority(BaseModel):
    priority: int = Field(gt=0)


class BatchAssignItem(BaseModel):
    book_id: int
    assigned_to: str = Field(min_length=1, max_length=64)
    priority: int | None = Field(default=None, gt=0)


class BatchAssign(BaseModel):
    assignments: list[BatchAssignItem]


class LineCount(BaseModel):
    counted_quantity: int = Field(ge=0)
    notes: str | None = None


class DataEntryItem(BaseModel):
    line_id: int
    counted_quantity: int = Field(ge=0)
    notes: str | None = None


class DataEntrySubmit(BaseModel):
    entries: list[DataEntryItem]


class VarianceApproval(BaseModel):
    notes: str | None = None


class CompleteRequest(BaseModel):
    post_adjustments: bool = True


class CancelRequest(BaseModel):
    reason: str | None = None


class OutOfBookCount(BaseModel):
    location_id: int
    product_id: int
    counted_quantity: int = Field(ge=0)
    lot_number: str | None = None
    lpn: str | None = None
    notes: str | None = None


# ---------- Physical inventories ----------
@router.get("")
def list_physical_inventories(
    warehouse_id: int | None = None,
    status: PIStatus | None = None,
    year: int | None = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    rows, total = physical_inventory.list_physical_inventories(
        db, warehouse_id=warehouse_id, status=status, year=year, page=page, limit=limit
    )
    return {
        "items": [PhysicalInventoryRead.model_validate(pi) for pi in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


# déclaré avant /{pi_id}
@router.get("/summary/stats")
def physical_inventory_stats(
    warehouse_id: int | None = None,
    year: int | None = None,
    db: Session = Depends(get_db),
):
    return physical_inventory.physical_inventory_stats(db, warehouse_id=warehouse_id, year=year)


@router.post("", response_model=PhysicalInventoryRead)
def create_physical_inventory(
    payload: PhysicalInventoryCreate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    pi = physical_inventory.create_physical_inventory(
        db,
        payload.warehouse_id,
        scheduled_date=payload.scheduled_date,
        actor_id=actor_id,
        name=payload.name,
        description=payload.description,
        count_type=payload.count_type,
        zone_ids=payload.zone_ids,
        blind_count=payload.blind_count,
        locations_per_book=payload.locations_per_book,
        variance_threshold_qty=payload.variance_threshold_qty,
        variance_threshold_pct=payload.variance_threshold_pct,
        variance_threshold_value=payload.variance_threshold_value,
    )
    db.commit()
    db.refresh(pi)
    return pi


@router.get("/{pi_id}", response_model=PhysicalInventoryDetail)
def get_physical_inventory(pi_id: int, db: Session = Depends(get_db)):
    return physical_inventory.get_physical_inventory(db, pi_id)


@router.patch("/{pi_id}", response_model=PhysicalInventoryRead)
def update_physical_inventory(
    pi_id: int,
    payload: PhysicalInventoryUpdate,
    db: Session = Depends(get_db),
):
    pi = physical_inventory.update_setup(db, pi_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(pi)
    return pi


@router.post("/{pi_id}/generate-books", response_model=PhysicalInventoryDetail)
def generate_count_books(pi_id: int, db: Session = Depends(get_db)):
    pi = physical_inventory.generate_count_books(db, pi_id)
    db.commit()
    db.refresh(pi)
    return pi


@router.get("/{pi_id}/books/summary")
def book_summary(pi_id: int, db: Session = Depends(get_db)):
    return physical_inventory.book_summary(db, pi_id)


@router.post("/{pi_id}/books/batch-assign", response_model=list[CountBookRead])
def batch_assign(pi_id: int, payload: BatchAssign, db: Session = Depends(get_db)):
    books = physical_inventory.batch_assign(
        db, pi_id, [(a.book_id, a.assigned_to, a.priority) for a in payload.assignments]
    )
    db.commit()
    for book in books:
        db.refresh(book)
    return books


@router.get("/{pi_id}/assignment-status")
def assignment_status(pi_id: int, show_all: bool = False, db: Session = Depends(get_db)):
    return physical_inventory.assignment_status(db, pi_id, show_all=show_all)


@router.get("/{pi_id}/variances")
def variance_report(pi_id: int, db: Session = Depends(get_db)):
    return asdict(physical_inventory.variance_review(db, pi_id))


@router.post("/{pi_id}/complete", response_model=PhysicalInventoryRead)
def complete_physical_inventory(
    pi_id: int,
    payload: CompleteRequest | None = None,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    pi = physical_inventory.complete_physical_inventory(
        db,
        pi_id,
        actor_id=actor_id,
        post_adjustments=payload.post_adjustments if payload else True,
    )
    db.commit()
    db.refresh(pi)
    return pi


@router.post("/{pi_id}/cancel", response_model=PhysicalInventoryRead)
def cancel_physical_inventory(
    pi_id: int,
    payload: CancelRequest | None = None,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    pi = physical_inventory.cancel_physical_inventory(
        db, pi_id, actor_id=actor_id, reason=payload.reason if payload else None
    )
    db.commit()
    db.refresh(pi)
    return pi


@router.post("/{pi_id}/out-of-book", response_model=CountBookLineRead)
def out_of_book_count(
    pi_id: int,
    payload: OutOfBookCount,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    line = physical_inventory.record_out_of_book(
        db,
        pi_id,
        location_id=payload.location_id,
        product_id=payload.product_id,
        counted_quantity=payload.counted_quantity,
        actor_id=actor_id,
        lot_number=payload.lot_number,
        lpn=payload.lpn,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(line)
    return line


# ---------- Count books ----------
@router.get("/books/{book_id}", response_model=CountBookDetail)
def get_count_book(book_id: int, db: Session = Depends(get_db)):
    return physical_inventory.get_count_book(db, book_id)


@router.post("/books/{book_id}/assign", response_model=CountBookRead)
def assign_book(book_id: int, payload: BookAssign, db: Session = Depends(get_db)):
    book = physical_inventory.assign_book(db, book_id, payload.assigned_to, priority=payload.priority)
    db.commit()
    db.refresh(book)
    return book


@router.post("/books/{book_id}/start", response_model=CountBookRead)
def start_book(book_id: int, db: Session = Depends(get_db), actor_id: str = Depends(get_actor)):
    book = physical_inventory.start_book(db, book_id, actor_id=actor_id)
    db.commit()
    db.refresh(book)
    return book


@router.post("/books/{book_id}/complete", response_model=CountBookRead)
def complete_book(book_id: int, db: Session = Depends(get_db), actor_id: str = Depends(get_actor)):
    book = physical_inventory.complete_book(db, book_id, actor_id=actor_id)
    db.commit()
    db.refresh(book)
    return book


@router.patch("/books/{book_id}/priority", response_model=CountBookRead)
def set_book_priority(book_id: int, payload: BookPriority, db: Session = Depends(get_db)):
    book = physical_inventory.set_book_priority(db, book_id, payload.priority)
    db.commit()
    db.refresh(book)
    return book


@router.get("/books/{book_id}/data-entry")
def data_entry_page(
    book_id: int,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    return physical_inventory.data_entry_page(db, book_id, page=page, page_size=page_size)


@router.post("/books/{book_id}/data-entry")
def submit_data_entry(
    book_id: int,
    payload: DataEntrySubmit,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    result = physical_inventory.submit_data_entry(
        db,
        book_id,
        [(e.line_id, e.counted_quantity, e.notes) for e in payload.entries],
        actor_id=actor_id,
    )
    db.commit()
    return result


# ---------- Lines ----------
@router.post("/lines/{line_id}/count", response_model=CountBookLineRead)
def count_line(
    line_id: int,
    payload: LineCount,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    line = physical_inventory.record_count_line(
        db, line_id, payload.counted_quantity, actor_id=actor_id, notes=payload.notes
    )
    db.commit()
    db.refresh(line)
    return line


@router.post("/lines/{line_id}/recount", response_model=CountBookLineRead)
def recount_line(
    line_id: int,
    payload: LineCount,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    line = physical_inventory.record_recount_line(
        db, line_id, payload.counted_quantity, actor_id=actor_id, notes=payload.notes
    )
    db.commit()
    db.refresh(line)
    return line


@router.post("/lines/{line_id}/approve", response_model=CountBookLineRead)
def approve_variance(
    line_id: int,
    payload: VarianceApproval | None = None,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    line = physical_inventory.approve_variance_line(
        db, line_id, actor_id=actor_id, notes=payload.notes if payload else None
    )
    db.commit()
    db.refresh(line)
    return line
