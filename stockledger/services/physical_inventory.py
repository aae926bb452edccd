"""
Workflow d'inventaire physique (wall-to-wall).

    SETUP -> SCHEDULED -> IN_PROGRESS -> COMPLETED
    (CANCELLED depuis tout état sauf COMPLETED)

Les locations du périmètre sont réparties en count books. Les compteurs
remplissent les books, le superviseur revoit les écarts; la clôture poste
tous les écarts via l'operator dans un seul savepoint.

Chaque ligne garde la quantité système. expected_quantity est ce que voit
le compteur, vide en comptage aveugle.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, NamedTuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import (
    CountBookLineStatus,
    CountBookStatus,
    PICountType,
    PIStatus,
    ReferenceType,
)
from stockledger.app.db.models.models_v1 import (
    CountBook,
    CountBookLine,
    InventoryRecord,
    Location,
    PhysicalInventory,
    Zone,
    utcnow,
)
from stockledger.app.settings import settings
from stockledger.services import catalog, operator
from stockledger.services import inventory_store as store
from stockledger.services.errors import (
    BatchPostingError,
    IncompleteBooksError,
    InvalidQuantityError,
    InvalidTransitionError,
    InventoryEngineError,
    NoLocationsError,
    RecordNotFoundError,
    RecountRequiredError,
    UncountedLinesError,
)
from stockledger.services.numbering import next_document_number
from stockledger.services.variance import CENT, Thresholds, evaluate

log = logging.getLogger(__name__)

OOB_PREFIX = "OOB-"

SETUP_STATUSES = {PIStatus.setup, PIStatus.scheduled}
COUNTED_STATUSES = {
    CountBookLineStatus.counted,
    CountBookLineStatus.recount_required,
    CountBookLineStatus.approved,
    CountBookLineStatus.adjusted,
}
SETUP_FIELDS = {
    "name",
    "description",
    "scheduled_date",
    "blind_count",
    "locations_per_book",
    "zone_ids",
    "variance_threshold_qty",
    "variance_threshold_pct",
    "variance_threshold_value",
}


@dataclass
class VarianceLine:
    line_id: int
    book_number: str
    line_number: int
    location_id: int
    product_id: int | None
    system_quantity: int
    counted_quantity: int | None
    recount_quantity: int | None
    final_quantity: int | None
    variance: int
    variance_pct: Decimal
    variance_value: Decimal
    exceeds_threshold: bool
    status: str


@dataclass
class VarianceReview:
    physical_inventory_id: int
    lines: list[VarianceLine] = field(default_factory=list)
    total_positive: int = 0
    total_negative: int = 0
    net_variance: int = 0
    total_value: Decimal = Decimal("0.00")
    lines_exceeding: int = 0


# ---------- Helpers ----------
def _require_status(pi: PhysicalInventory, allowed: set[PIStatus], target: str) -> None:
    if pi.status not in allowed:
        raise InvalidTransitionError("PhysicalInventory", pi.status.value, target)


def _thresholds(pi: PhysicalInventory) -> Thresholds:
    return Thresholds(
        qty=pi.variance_threshold_qty,
        pct=pi.variance_threshold_pct,
        value=pi.variance_threshold_value,
    )


def _evaluate_line(pi: PhysicalInventory, line: CountBookLine, quantity: int):
    return evaluate(
        line.system_quantity,
        quantity,
        _thresholds(pi),
        unit_cost=catalog.unit_cost(line.product),
    )


def _apply_variance(line: CountBookLine, result) -> None:
    line.variance = result.variance
    line.variance_pct = result.variance_pct
    line.variance_value = result.variance_value


def _refresh_book(book: CountBook) -> None:
    pending_locations = {
        line.location_id for line in book.lines if line.status == CountBookLineStatus.pending
    }
    all_locations = {line.location_id for line in book.lines}
    book.total_locations = len(all_locations)
    book.counted_locations = len(all_locations - pending_locations)


def _location_order():
    # ordre de passage dans l'entrepôt
    return (
        func.coalesce(Zone.code, ""),
        func.coalesce(Location.aisle, ""),
        func.coalesce(Location.bay, ""),
        func.coalesce(Location.level, ""),
        Location.code,
    )


# ---------- Reads ----------
def get_physical_inventory(db: Session, pi_id: int) -> PhysicalInventory:
    pi = db.get(PhysicalInventory, pi_id)
    if pi is None:
        raise RecordNotFoundError("PhysicalInventory", pi_id)
    return pi


def get_count_book(db: Session, book_id: int) -> CountBook:
    book = db.get(CountBook, book_id)
    if book is None:
        raise RecordNotFoundError("CountBook", book_id)
    return book


def get_count_book_line(db: Session, line_id: int) -> CountBookLine:
    line = db.get(CountBookLine, line_id)
    if line is None:
        raise RecordNotFoundError("CountBookLine", line_id)
    return line


def list_physical_inventories(
    db: Session,
    *,
    warehouse_id: int | None = None,
    status: PIStatus | None = None,
    year: int | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[PhysicalInventory], int]:
    stmt = select(PhysicalInventory)
    if warehouse_id is not None:
        stmt = stmt.where(PhysicalInventory.warehouse_id == warehouse_id)
    if status is not None:
        stmt = stmt.where(PhysicalInventory.status == status)
    if year is not None:
        stmt = stmt.where(PhysicalInventory.scheduled_date.between(date(year, 1, 1), date(year, 12, 31)))

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = (
        db.execute(
            stmt.order_by(PhysicalInventory.scheduled_date.desc(), PhysicalInventory.id.desc())
            .offset(max(page - 1, 0) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)


# ---------- Setup ----------
def create_physical_inventory(
    db: Session,
    warehouse_id: int,
    *,
    scheduled_date: date,
    actor_id: str,
    name: str | None = None,
    description: str | None = None,
    count_type: PICountType | str | None = None,
    zone_ids: Iterable[int] = (),
    blind_count: bool = False,
    locations_per_book: int | None = None,
    variance_threshold_qty: int | None = None,
    variance_threshold_pct: Decimal | None = None,
    variance_threshold_value: Decimal | None = None,
) -> PhysicalInventory:
    catalog.get_warehouse(db, warehouse_id)
    zone_ids = [int(z) for z in zone_ids]
    per_book = locations_per_book if locations_per_book is not None else settings.DEFAULT_LOCATIONS_PER_BOOK
    if per_book <= 0:
        raise InvalidQuantityError("locations_per_book must be positive")

    if count_type is None:
        count_type = PICountType.partial if zone_ids else PICountType.full

    pi = PhysicalInventory(
        pi_number=next_document_number(db, PhysicalInventory.pi_number, "PI", 4),
        warehouse_id=warehouse_id,
        name=name or f"Physical inventory {scheduled_date.isoformat()}",
        description=description,
        scheduled_date=scheduled_date,
        count_type=PICountType(count_type),
        status=PIStatus.setup,
        blind_count=blind_count,
        locations_per_book=per_book,
        variance_threshold_qty=(
            variance_threshold_qty
            if variance_threshold_qty is not None
            else settings.DEFAULT_VARIANCE_THRESHOLD_QTY
        ),
        variance_threshold_pct=(
            variance_threshold_pct
            if variance_threshold_pct is not None
            else settings.DEFAULT_VARIANCE_THRESHOLD_PCT
        ),
        variance_threshold_value=(
            variance_threshold_value
            if variance_threshold_value is not None
            else settings.DEFAULT_VARIANCE_THRESHOLD_VALUE
        ),
        zone_ids=zone_ids,
        created_by=actor_id,
    )
    db.add(pi)
    db.flush()
    log.info("physical inventory %s created for warehouse %s", pi.pi_number, warehouse_id)
    return pi


def update_setup(db: Session, pi_id: int, **changes) -> PhysicalInventory:
    pi = get_physical_inventory(db, pi_id)
    _require_status(pi, SETUP_STATUSES, "UPDATE")

    unknown = set(changes) - SETUP_FIELDS
    if unknown:
        raise InvalidQuantityError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if "locations_per_book" in changes and (changes["locations_per_book"] or 0) <= 0:
        raise InvalidQuantityError("locations_per_book must be positive")

    for key, value in changes.items():
        if value is None and key not in ("description",):
            continue
        if key == "zone_ids":
            value = [int(z) for z in value]
        setattr(pi, key, value)

    db.flush()
    return pi


def generate_count_books(db: Session, pi_id: int) -> PhysicalInventory:
    """
    Répartit les locations du périmètre en count books.

    Les locations sont prises dans l'ordre de parcours et coupées en books
    de locations_per_book (le dernier peut être plus petit). Chaque
    location reçoit une ligne par record non nul, ou une ligne vide si elle
    est vide. Les numéros de ligne partent de 1 dans chaque book, dans
    l'ordre de parcours.
    """
    pi = get_physical_inventory(db, pi_id)
    _require_status(pi, SETUP_STATUSES, PIStatus.scheduled.value)

    stmt = (
        select(Location)
        .outerjoin(Zone, Zone.id == Location.zone_id)
        .where(Location.warehouse_id == pi.warehouse_id)
        .where(Location.is_active.is_(True))
        .order_by(*_location_order())
    )
    if pi.zone_ids:
        stmt = stmt.where(Location.zone_id.in_(pi.zone_ids))
    locations = list(db.execute(stmt).scalars().all())
    if not locations:
        raise NoLocationsError()

    if pi.books:
        started = [b.book_number for b in pi.books if b.status not in (CountBookStatus.new, CountBookStatus.assigned)]
        if started:
            raise InvalidTransitionError("PhysicalInventory", "BOOKS_STARTED", PIStatus.scheduled.value)
        pi.books.clear()
        db.flush()

    by_location: dict[int, list[InventoryRecord]] = {}
    for record in store.list_records(db, location_ids=[loc.id for loc in locations]):
        by_location.setdefault(record.location_id, []).append(record)

    per_book = pi.locations_per_book
    for book_idx, start in enumerate(range(0, len(locations), per_book), start=1):
        chunk = locations[start:start + per_book]
        zones = {loc.zone_id for loc in chunk}
        book = CountBook(
            book_number=f"BOOK-{book_idx:03d}",
            zone_id=zones.pop() if len(zones) == 1 else None,
            status=CountBookStatus.new,
            total_locations=len(chunk),
            counted_locations=0,
        )
        line_number = 0
        for loc in chunk:
            records = by_location.get(loc.id)
            if not records:
                line_number += 1
                book.lines.append(
                    CountBookLine(
                        line_number=line_number,
                        location_id=loc.id,
                        system_quantity=0,
                        expected_quantity=None if pi.blind_count else 0,
                    )
                )
                continue
            for record in records:
                line_number += 1
                book.lines.append(
                    CountBookLine(
                        line_number=line_number,
                        location_id=loc.id,
                        product_id=record.product_id,
                        inventory_id=record.id,
                        lot_number=record.lot_number,
                        lpn=record.lpn,
                        system_quantity=record.quantity_on_hand,
                        expected_quantity=None if pi.blind_count else record.quantity_on_hand,
                    )
                )
        pi.books.append(book)

    pi.total_books = len(pi.books)
    pi.total_locations = len(locations)
    pi.status = PIStatus.scheduled
    db.flush()

    log.info(
        "physical inventory %s: %s books over %s locations",
        pi.pi_number, pi.total_books, pi.total_locations,
    )
    return pi


# ---------- Books ----------
def _book_for_work(db: Session, book_id: int) -> tuple[CountBook, PhysicalInventory]:
    book = get_count_book(db, book_id)
    pi = book.physical_inventory
    if pi.status in (PIStatus.completed, PIStatus.cancelled):
        raise InvalidTransitionError("PhysicalInventory", pi.status.value, "COUNT")
    return book, pi


def assign_book(db: Session, book_id: int, assigned_to: str, *, priority: int | None = None) -> CountBook:
    book, _ = _book_for_work(db, book_id)
    if book.status not in (CountBookStatus.new, CountBookStatus.assigned):
        raise InvalidTransitionError("CountBook", book.status.value, CountBookStatus.assigned.value)

    book.status = CountBookStatus.assigned
    book.assigned_to = assigned_to
    book.assigned_at = utcnow()
    if priority is not None:
        book.priority = priority
    db.flush()
    return book


class BookAssignment(NamedTuple):
    book_id: int
    assigned_to: str
    priority: int | None = None


def batch_assign(
    db: Session,
    pi_id: int,
    assignments: Iterable[BookAssignment | tuple],
) -> list[CountBook]:
    """
    Assigne plusieurs books d'un coup, tous ou aucun.

    Chaque entrée est (book_id, assigned_to) ou (book_id, assigned_to, priority);
    une priorité absente laisse celle du book.
    """
    pi = get_physical_inventory(db, pi_id)
    book_ids = {b.id for b in pi.books}

    books = []
    with db.begin_nested():
        for item in assignments:
            assignment = BookAssignment(*item)
            if assignment.book_id not in book_ids:
                raise RecordNotFoundError("CountBook", assignment.book_id)
            books.append(
                assign_book(db, assignment.book_id, assignment.assigned_to, priority=assignment.priority)
            )
    log.info("physical inventory %s: %s books assigned", pi.pi_number, len(books))
    return books


def set_book_priority(db: Session, book_id: int, priority: int) -> CountBook:
    book, _ = _book_for_work(db, book_id)
    if priority <= 0:
        raise InvalidQuantityError("priority must be positive")
    book.priority = priority
    db.flush()
    return book


def start_book(db: Session, book_id: int, *, actor_id: str) -> CountBook:
    book, pi = _book_for_work(db, book_id)
    _require_status(pi, {PIStatus.scheduled, PIStatus.in_progress}, PIStatus.in_progress.value)
    if book.status not in (CountBookStatus.new, CountBookStatus.assigned):
        raise InvalidTransitionError("CountBook", book.status.value, CountBookStatus.in_progress.value)

    now = utcnow()
    book.status = CountBookStatus.in_progress
    book.started_at = now
    if not book.assigned_to:
        book.assigned_to = actor_id
        book.assigned_at = now

    if pi.status == PIStatus.scheduled:
        pi.status = PIStatus.in_progress
        pi.started_at = now
        log.info("physical inventory %s in progress", pi.pi_number)

    db.flush()
    return book


def record_count_line(
    db: Session,
    line_id: int,
    counted_quantity: int,
    *,
    actor_id: str,
    notes: str | None = None,
) -> CountBookLine:
    line = get_count_book_line(db, line_id)
    book, pi = _book_for_work(db, line.count_book_id)
    if book.status != CountBookStatus.in_progress:
        raise InvalidTransitionError("CountBook", book.status.value, "COUNT")
    if line.status != CountBookLineStatus.pending:
        raise InvalidTransitionError("CountBookLine", line.status.value, CountBookLineStatus.counted.value)
    if counted_quantity < 0:
        raise InvalidQuantityError("Counted quantity must not be negative")

    result = _evaluate_line(pi, line, counted_quantity)
    line.counted_quantity = counted_quantity
    line.counted_by = actor_id
    line.counted_at = utcnow()
    if notes:
        line.notes = notes
    _apply_variance(line, result)
    line.status = (
        CountBookLineStatus.recount_required if result.exceeds_threshold else CountBookLineStatus.counted
    )

    _refresh_book(book)
    db.flush()
    return line


def record_recount_line(
    db: Session,
    line_id: int,
    recount_quantity: int,
    *,
    actor_id: str,
    notes: str | None = None,
) -> CountBookLine:
    """Enregistre un recomptage. Le premier comptage est gardé; l'écart suit le recomptage."""
    line = get_count_book_line(db, line_id)
    book, pi = _book_for_work(db, line.count_book_id)
    _require_status(pi, {PIStatus.in_progress}, "RECOUNT")
    if book.status != CountBookStatus.in_progress:
        raise InvalidTransitionError("CountBook", book.status.value, "RECOUNT")
    if line.status not in (CountBookLineStatus.counted, CountBookLineStatus.recount_required):
        raise InvalidTransitionError("CountBookLine", line.status.value, "RECOUNT")
    if recount_quantity < 0:
        raise InvalidQuantityError("Recount quantity must not be negative")

    result = _evaluate_line(pi, line, recount_quantity)
    line.recount_quantity = recount_quantity
    line.recounted_by = actor_id
    line.recounted_at = utcnow()
    if notes:
        line.notes = notes
    _apply_variance(line, result)
    line.status = CountBookLineStatus.counted

    _refresh_book(book)
    db.flush()
    return line


def complete_book(db: Session, book_id: int, *, actor_id: str) -> CountBook:
    book, _ = _book_for_work(db, book_id)
    if book.status != CountBookStatus.in_progress:
        raise InvalidTransitionError("CountBook", book.status.value, CountBookStatus.completed.value)

    uncounted = sum(1 for line in book.lines if line.status == CountBookLineStatus.pending)
    if uncounted:
        raise UncountedLinesError(uncounted)

    book.status = CountBookStatus.completed
    book.completed_at = utcnow()
    book.completed_by = actor_id
    _refresh_book(book)
    db.flush()
    log.info("count book %s completed by %s", book.book_number, actor_id)
    return book


def record_out_of_book(
    db: Session,
    pi_id: int,
    *,
    location_id: int,
    product_id: int,
    counted_quantity: int,
    actor_id: str,
    lot_number: str | None = None,
    lpn: str | None = None,
    notes: str | None = None,
) -> CountBookLine:
    """
    Compte du stock trouvé hors de tout book.

    Va dans le book OOB- ouvert de l'inventaire, créé à la demande.
    """
    pi = get_physical_inventory(db, pi_id)
    _require_status(pi, {PIStatus.in_progress}, "COUNT")
    if counted_quantity < 0:
        raise InvalidQuantityError("Counted quantity must not be negative")

    location = catalog.get_location(db, location_id)
    if location.warehouse_id != pi.warehouse_id:
        raise RecordNotFoundError("Location", location_id)
    catalog.get_product(db, product_id)

    oob_books = [b for b in pi.books if b.book_number.startswith(OOB_PREFIX)]
    book = next((b for b in oob_books if b.status == CountBookStatus.in_progress), None)
    if book is None:
        now = utcnow()
        book = CountBook(
            book_number=f"{OOB_PREFIX}{len(oob_books) + 1:03d}",
            status=CountBookStatus.in_progress,
            assigned_to=actor_id,
            assigned_at=now,
            started_at=now,
        )
        pi.books.append(book)
        pi.total_books = len(pi.books)

    record = store.get_record(db, product_id, location_id, lot_number, lpn=lpn)
    system_qty = record.quantity_on_hand if record is not None else 0

    line = CountBookLine(
        line_number=max((l.line_number for l in book.lines), default=0) + 1,
        location_id=location_id,
        product_id=product_id,
        inventory_id=record.id if record is not None else None,
        lot_number=lot_number,
        lpn=lpn,
        system_quantity=system_qty,
        expected_quantity=None if pi.blind_count else system_qty,
        out_of_book=True,
        notes=notes,
    )
    book.lines.append(line)
    db.flush()

    result = _evaluate_line(pi, line, counted_quantity)
    line.counted_quantity = counted_quantity
    line.counted_by = actor_id
    line.counted_at = utcnow()
    _apply_variance(line, result)
    line.status = (
        CountBookLineStatus.recount_required if result.exceeds_threshold else CountBookLineStatus.counted
    )

    _refresh_book(book)
    db.flush()
    log.info("out-of-book count in %s: location=%s product=%s qty=%s", book.book_number, location_id, product_id, counted_quantity)
    return line


# ---------- Data entry ----------
class DataEntry(NamedTuple):
    line_id: int
    counted_quantity: int
    notes: str | None = None


DATA_ENTRY_STATUSES = (CountBookStatus.assigned, CountBookStatus.in_progress)


def _percent(part: int, whole: int) -> Decimal:
    if not whole:
        return Decimal("0.00")
    return (Decimal(part) * 100 / Decimal(whole)).quantize(CENT)


def data_entry_page(db: Session, book_id: int, *, page: int = 1, page_size: int = 20) -> dict:
    """
    Une page de saisie du book, dans l'ordre des lignes.

    Vue compteur: system_quantity n'y figure jamais et expected_quantity
    reste vide en comptage aveugle.
    """
    book = get_count_book(db, book_id)
    if book.status not in DATA_ENTRY_STATUSES:
        raise InvalidTransitionError("CountBook", book.status.value, "DATA_ENTRY")
    if page < 1 or page_size < 1:
        raise InvalidQuantityError("page and page_size must be positive")

    pi = book.physical_inventory
    total = db.execute(
        select(func.count(CountBookLine.id)).where(CountBookLine.count_book_id == book.id)
    ).scalar_one()
    lines = (
        db.execute(
            select(CountBookLine)
            .where(CountBookLine.count_book_id == book.id)
            .order_by(CountBookLine.line_number)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        .scalars()
        .all()
    )
    total_pages = -(-int(total) // page_size)

    return {
        "book": {
            "id": book.id,
            "book_number": book.book_number,
            "status": book.status.value,
            "assigned_to": book.assigned_to,
            "pi_number": pi.pi_number,
            "blind_count": pi.blind_count,
        },
        "page": page,
        "page_size": page_size,
        "total_pages": total_pages,
        "total_lines": int(total),
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
        "lines": [
            {
                "id": line.id,
                "line_number": line.line_number,
                "location_id": line.location_id,
                "location_code": line.location.code if line.location is not None else None,
                "product_id": line.product_id,
                "sku": line.product.sku if line.product is not None else None,
                "product_name": line.product.name if line.product is not None else None,
                "uom": line.product.uom if line.product is not None else "EA",
                "lot_number": line.lot_number,
                "lpn": line.lpn,
                "expected_quantity": None if pi.blind_count else line.expected_quantity,
                "counted_quantity": line.counted_quantity,
                "status": line.status.value,
            }
            for line in lines
        ],
    }


def submit_data_entry(
    db: Session,
    book_id: int,
    entries: Iterable[DataEntry | tuple],
    *,
    actor_id: str,
) -> dict:
    """
    Saisie d'une page de comptages en une seule transaction.

    Un book ASSIGNED est démarré au passage. Une ligne hors du book est
    signalée dans le résultat sans bloquer la page; toute autre erreur
    annule la page entière (BatchPostingError).
    """
    book, _ = _book_for_work(db, book_id)
    if book.status not in DATA_ENTRY_STATUSES:
        raise InvalidTransitionError("CountBook", book.status.value, "DATA_ENTRY")

    line_ids = {line.id for line in book.lines}
    processed = []
    with db.begin_nested():
        if book.status == CountBookStatus.assigned:
            start_book(db, book.id, actor_id=actor_id)

        for item in entries:
            entry = DataEntry(*item)
            if entry.line_id not in line_ids:
                processed.append({"line_id": entry.line_id, "error": "Line not found"})
                continue
            try:
                line = record_count_line(
                    db, entry.line_id, entry.counted_quantity, actor_id=actor_id, notes=entry.notes
                )
            except InventoryEngineError as exc:
                log.warning("book %s data entry rejected at line %s: %s", book.book_number, entry.line_id, exc)
                raise BatchPostingError(entry.line_id, exc) from exc
            processed.append(
                {
                    "line_id": line.id,
                    "counted_quantity": line.counted_quantity,
                    "variance": line.variance,
                    "status": line.status.value,
                    "needs_recount": line.status == CountBookLineStatus.recount_required,
                }
            )

    counted = sum(1 for line in book.lines if line.status != CountBookLineStatus.pending)
    total = len(book.lines)
    log.info("book %s: %s entries by %s, %s/%s lines counted", book.book_number, len(processed), actor_id, counted, total)
    return {
        "book_id": book.id,
        "entries_processed": len(processed),
        "counted_lines": counted,
        "total_lines": total,
        "percent_complete": _percent(counted, total),
        "entries": processed,
    }


# ---------- Review & completion ----------
def variance_review(db: Session, pi_id: int) -> VarianceReview:
    pi = get_physical_inventory(db, pi_id)
    review = VarianceReview(physical_inventory_id=pi.id)
    total_value = Decimal("0")

    for book in pi.books:
        for line in book.lines:
            if not line.variance:
                continue
            result = _evaluate_line(pi, line, line.final_quantity)
            review.lines.append(
                VarianceLine(
                    line_id=line.id,
                    book_number=book.book_number,
                    line_number=line.line_number,
                    location_id=line.location_id,
                    product_id=line.product_id,
                    system_quantity=line.system_quantity,
                    counted_quantity=line.counted_quantity,
                    recount_quantity=line.recount_quantity,
                    final_quantity=line.final_quantity,
                    variance=result.variance,
                    variance_pct=result.variance_pct,
                    variance_value=result.variance_value,
                    exceeds_threshold=result.exceeds_threshold,
                    status=line.status.value,
                )
            )
            if result.variance > 0:
                review.total_positive += result.variance
            else:
                review.total_negative += result.variance
            total_value += result.variance_value
            if result.exceeds_threshold:
                review.lines_exceeding += 1

    review.net_variance = review.total_positive + review.total_negative
    review.total_value = total_value.quantize(CENT)
    return review


def approve_variance_line(
    db: Session,
    line_id: int,
    *,
    actor_id: str,
    notes: str | None = None,
) -> CountBookLine:
    line = get_count_book_line(db, line_id)
    _, pi = _book_for_work(db, line.count_book_id)
    if line.status == CountBookLineStatus.recount_required:
        raise RecountRequiredError(line.id)
    if line.status != CountBookLineStatus.counted:
        raise InvalidTransitionError("CountBookLine", line.status.value, CountBookLineStatus.approved.value)

    line.status = CountBookLineStatus.approved
    line.approved_by = actor_id
    line.approved_at = utcnow()
    if notes:
        line.notes = notes
    db.flush()
    log.info("physical inventory %s line %s approved by %s", pi.pi_number, line.id, actor_id)
    return line


def _resolve_record(db: Session, line: CountBookLine) -> InventoryRecord:
    if line.inventory_id is not None:
        return store.get_record_by_id(db, line.inventory_id, for_update=True)
    return store.find_or_create_record(
        db,
        product_id=line.product_id,
        location_id=line.location_id,
        lot_number=line.lot_number,
        lpn=line.lpn,
    )


def complete_physical_inventory(
    db: Session,
    pi_id: int,
    *,
    actor_id: str,
    post_adjustments: bool = True,
) -> PhysicalInventory:
    pi = get_physical_inventory(db, pi_id)
    _require_status(pi, {PIStatus.in_progress}, PIStatus.completed.value)

    incomplete = [b.book_number for b in pi.books if b.status != CountBookStatus.completed]
    if incomplete:
        raise IncompleteBooksError(incomplete)

    now = utcnow()
    posted = 0
    total_value = Decimal("0")
    with db.begin_nested():
        if post_adjustments:
            for book in pi.books:
                for line in book.lines:
                    if not line.variance:
                        continue
                    if line.product_id is None:
                        log.warning(
                            "physical inventory %s: %s line %s counted %s on an empty location without a product, not posted",
                            pi.pi_number, book.book_number, line.line_number, line.final_quantity,
                        )
                        continue
                    try:
                        record = _resolve_record(db, line)
                        delta = line.final_quantity - record.quantity_on_hand
                        if delta != 0:
                            operator.adjust(
                                db,
                                record.id,
                                delta,
                                "Physical inventory adjustment",
                                actor_id=actor_id,
                                reference_type=ReferenceType.physical_inventory,
                                reference_id=str(pi.id),
                                reference_number=pi.pi_number,
                                notes=f"{book.book_number} line {line.line_number}",
                            )
                            posted += 1
                            total_value += Decimal(delta) * catalog.unit_cost(line.product)
                        record.last_counted_at = now
                        line.status = CountBookLineStatus.adjusted
                    except (InventoryEngineError, SQLAlchemyError) as exc:
                        log.error("physical inventory %s posting failed at line %s: %s", pi.pi_number, line.id, exc)
                        raise BatchPostingError(line.id, exc) from exc

        for location_id in {line.location_id for book in pi.books for line in book.lines}:
            catalog.get_location(db, location_id).last_count_date = now

        pi.adjustments_posted = posted
        pi.total_adjustment_value = total_value.quantize(CENT)
        pi.status = PIStatus.completed
        pi.completed_at = now
        pi.approved_by = actor_id

    log.info(
        "physical inventory %s completed by %s: %s adjustments, value %s",
        pi.pi_number, actor_id, posted, pi.total_adjustment_value,
    )
    return pi


def cancel_physical_inventory(
    db: Session,
    pi_id: int,
    *,
    actor_id: str,
    reason: str | None = None,
) -> PhysicalInventory:
    pi = get_physical_inventory(db, pi_id)
    if pi.status in (PIStatus.completed, PIStatus.cancelled):
        raise InvalidTransitionError("PhysicalInventory", pi.status.value, PIStatus.cancelled.value)

    pi.status = PIStatus.cancelled
    pi.cancelled_at = utcnow()
    pi.cancelled_by = actor_id
    pi.cancel_reason = reason
    db.flush()
    log.info("physical inventory %s cancelled by %s", pi.pi_number, actor_id)
    return pi


def book_summary(db: Session, pi_id: int) -> dict:
    pi = get_physical_inventory(db, pi_id)
    books = []
    line_status = Counter()
    for book in pi.books:
        line_status.update(line.status.value for line in book.lines)
        pct = Decimal("0")
        if book.total_locations:
            pct = (Decimal(book.counted_locations) * 100 / Decimal(book.total_locations)).quantize(CENT)
        books.append(
            {
                "id": book.id,
                "book_number": book.book_number,
                "status": book.status.value,
                "assigned_to": book.assigned_to,
                "zone_id": book.zone_id,
                "total_locations": book.total_locations,
                "counted_locations": book.counted_locations,
                "percent_complete": pct,
            }
        )

    return {
        "physical_inventory_id": pi.id,
        "pi_number": pi.pi_number,
        "status": pi.status.value,
        "total_books": pi.total_books,
        "total_locations": pi.total_locations,
        "books_by_status": dict(Counter(b["status"] for b in books)),
        "lines_by_status": dict(line_status),
        "books": books,
    }


def assignment_status(db: Session, pi_id: int, *, show_all: bool = False) -> dict:
    """
    Books par priorité puis numéro, et charge de chaque compteur.

    Sans show_all, seuls les books encore ouverts (NEW, ASSIGNED,
    IN_PROGRESS) sont listés. La charge ne compte que ASSIGNED et IN_PROGRESS.
    """
    pi = get_physical_inventory(db, pi_id)
    open_statuses = (CountBookStatus.new, CountBookStatus.assigned, CountBookStatus.in_progress)

    stmt = select(CountBook).where(CountBook.physical_inventory_id == pi.id)
    if not show_all:
        stmt = stmt.where(CountBook.status.in_(open_statuses))
    books = db.execute(stmt.order_by(CountBook.priority, CountBook.book_number)).scalars().all()

    workload = db.execute(
        select(
            CountBook.assigned_to,
            func.count(CountBook.id),
            func.coalesce(func.sum(CountBook.total_locations), 0),
            func.coalesce(func.sum(CountBook.counted_locations), 0),
        )
        .where(CountBook.physical_inventory_id == pi.id)
        .where(CountBook.assigned_to.is_not(None))
        .where(CountBook.status.in_((CountBookStatus.assigned, CountBookStatus.in_progress)))
        .group_by(CountBook.assigned_to)
        .order_by(CountBook.assigned_to)
    ).all()

    return {
        "physical_inventory_id": pi.id,
        "pi_number": pi.pi_number,
        "books": [
            {
                "id": book.id,
                "book_number": book.book_number,
                "zone_id": book.zone_id,
                "status": book.status.value,
                "priority": book.priority,
                "assigned_to": book.assigned_to,
                "total_locations": book.total_locations,
                "counted_locations": book.counted_locations,
                "percent_complete": _percent(book.counted_locations, book.total_locations),
            }
            for book in books
        ],
        "counter_workload": [
            {
                "counter": counter,
                "books_assigned": int(n),
                "total_locations": int(total),
                "counted_locations": int(counted),
            }
            for counter, n, total, counted in workload
        ],
    }


def physical_inventory_stats(
    db: Session,
    *,
    warehouse_id: int | None = None,
    year: int | None = None,
) -> dict:
    conditions = []
    if warehouse_id is not None:
        conditions.append(PhysicalInventory.warehouse_id == warehouse_id)
    if year is not None:
        conditions.append(PhysicalInventory.scheduled_date.between(date(year, 1, 1), date(year, 12, 31)))

    total = db.execute(select(func.count(PhysicalInventory.id)).where(*conditions)).scalar_one()
    by_status = {
        status.value: int(n)
        for status, n in db.execute(
            select(PhysicalInventory.status, func.count(PhysicalInventory.id))
            .where(*conditions)
            .group_by(PhysicalInventory.status)
        ).all()
    }
    recent = (
        db.execute(
            select(PhysicalInventory)
            .where(*conditions)
            .order_by(PhysicalInventory.scheduled_date.desc(), PhysicalInventory.id.desc())
            .limit(5)
        )
        .scalars()
        .all()
    )

    return {
        "warehouse_id": warehouse_id,
        "year": year,
        "total": int(total),
        "by_status": by_status,
        "recent": [
            {
                "id": pi.id,
                "pi_number": pi.pi_number,
                "name": pi.name,
                "status": pi.status.value,
                "scheduled_date": pi.scheduled_date,
                "total_locations": pi.total_locations,
            }
            for pi in recent
        ],
    }
