"""
Workflow des cycle counts.

    NEW -> IN_PROGRESS -> PENDING_APPROVAL -> COMPLETED
    (CANCELLED depuis tout état non terminal)

La création fige le on-hand de chaque record non nul concerné dans les
lignes du comptage. L'approbation poste les écarts via l'operator en un
seul batch, tout ou rien.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Sequence, Union

from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import (
    CycleCountLineStatus,
    CycleCountStatus,
    CycleCountType,
    LocationType,
    ReferenceType,
)
from stockledger.app.db.models.models_v1 import (
    CycleCount,
    CycleCountCriteria,
    CycleCountLine,
    CycleCountTolerance,
    InventoryRecord,
    Location,
    Product,
    utcnow,
)
from stockledger.app.settings import settings
from stockledger.services import catalog, operator
from stockledger.services import inventory_store as store
from stockledger.services.errors import (
    BatchPostingError,
    EmptyScopeError,
    InvalidQuantityError,
    InvalidTransitionError,
    InventoryEngineError,
    LinesPendingError,
    RecordNotFoundError,
)
from stockledger.services.numbering import next_document_number
from stockledger.services.variance import Thresholds, ToleranceCheck, evaluate, match_tolerance

log = logging.getLogger(__name__)

OPEN_STATUSES = {
    CycleCountStatus.new,
    CycleCountStatus.in_progress,
    CycleCountStatus.pending_approval,
}


# ---------- Scope selectors ----------
@dataclass(frozen=True)
class ByLocations:
    location_ids: tuple[int, ...]


@dataclass(frozen=True)
class ByZone:
    zone_id: int


@dataclass(frozen=True)
class ByProducts:
    product_ids: tuple[int, ...]


@dataclass(frozen=True)
class ByVelocityCode:
    code: str


Scope = Union[ByLocations, ByZone, ByProducts, ByVelocityCode]


def _scope_condition(selector: Scope):
    if isinstance(selector, ByLocations):
        return InventoryRecord.location_id.in_(list(selector.location_ids))
    if isinstance(selector, ByZone):
        return Location.zone_id == selector.zone_id
    if isinstance(selector, ByProducts):
        return InventoryRecord.product_id.in_(list(selector.product_ids))
    if isinstance(selector, ByVelocityCode):
        return Product.velocity_code == selector.code
    raise TypeError(f"Unknown scope selector: {selector!r}")


def _selectors(scope: Scope | Sequence[Scope]) -> list[Scope]:
    if isinstance(scope, (list, tuple)):
        return list(scope)
    return [scope]


def _records_in_scope(db: Session, warehouse_id: int, scope: Scope | Sequence[Scope]) -> list[InventoryRecord]:
    stmt = (
        select(InventoryRecord)
        .join(Location, Location.id == InventoryRecord.location_id)
        .join(Product, Product.id == InventoryRecord.product_id)
        .where(InventoryRecord.warehouse_id == warehouse_id)
        .where(InventoryRecord.quantity_on_hand > 0)
        .order_by(Location.code, Product.sku, InventoryRecord.id)
    )
    # plusieurs sélecteurs se combinent (intersection)
    for selector in _selectors(scope):
        stmt = stmt.where(_scope_condition(selector))
    return list(db.execute(stmt).scalars().all())


def _snapshot(cc: CycleCount, records: Iterable[InventoryRecord]) -> None:
    locations = set()
    for r in records:
        cc.lines.append(
            CycleCountLine(
                inventory_id=r.id,
                location_id=r.location_id,
                product_id=r.product_id,
                lot_number=r.lot_number,
                lpn=r.lpn,
                system_quantity=r.quantity_on_hand,
                status=CycleCountLineStatus.pending,
            )
        )
        locations.add(r.location_id)
    cc.total_locations = len(locations)


def _thresholds(cc: CycleCount) -> Thresholds:
    return Thresholds(
        qty=cc.variance_threshold_qty,
        pct=cc.variance_threshold_pct,
        value=cc.variance_threshold_value,
    )


def _refresh_totals(cc: CycleCount) -> None:
    counted_locations = {
        line.location_id for line in cc.lines if line.status != CycleCountLineStatus.pending
    }
    cc.counted_locations = len(counted_locations)
    cc.discrepancies = sum(
        1 for line in cc.lines if line.counted_quantity is not None and line.variance
    )


def _require_status(cc: CycleCount, allowed: set[CycleCountStatus], target: str) -> None:
    if cc.status not in allowed:
        raise InvalidTransitionError("CycleCount", cc.status.value, target)


def _append_note(current: str | None, note: str | None) -> str | None:
    if not note:
        return current
    return f"{current}\n{note}" if current else note


# ---------- Reads ----------
def get_cycle_count(db: Session, cycle_count_id: int) -> CycleCount:
    cc = db.get(CycleCount, cycle_count_id)
    if cc is None:
        raise RecordNotFoundError("CycleCount", cycle_count_id)
    return cc


def get_line(db: Session, line_id: int) -> CycleCountLine:
    line = db.get(CycleCountLine, line_id)
    if line is None:
        raise RecordNotFoundError("CycleCountLine", line_id)
    return line


def list_cycle_counts(
    db: Session,
    *,
    warehouse_id: int | None = None,
    status: CycleCountStatus | None = None,
    count_type: CycleCountType | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[CycleCount], int]:
    stmt = select(CycleCount)
    if warehouse_id is not None:
        stmt = stmt.where(CycleCount.warehouse_id == warehouse_id)
    if status is not None:
        stmt = stmt.where(CycleCount.status == status)
    if count_type is not None:
        stmt = stmt.where(CycleCount.type == count_type)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = (
        db.execute(
            stmt.order_by(CycleCount.created_at.desc(), CycleCount.id.desc())
            .offset(max(page - 1, 0) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)


# ---------- Workflow ----------
def create_cycle_count(
    db: Session,
    warehouse_id: int,
    scope: Scope | Sequence[Scope],
    *,
    actor_id: str,
    count_type: CycleCountType | str = CycleCountType.standard,
    thresholds: Thresholds | None = None,
    scheduled_date: date | None = None,
    notes: str | None = None,
) -> CycleCount:
    catalog.get_warehouse(db, warehouse_id)
    records = _records_in_scope(db, warehouse_id, scope)
    if not records:
        raise EmptyScopeError()

    cc = CycleCount(
        count_number=next_document_number(db, CycleCount.count_number, "CC", 6),
        warehouse_id=warehouse_id,
        type=CycleCountType(count_type),
        status=CycleCountStatus.new,
        variance_threshold_qty=thresholds.qty if thresholds else None,
        variance_threshold_pct=thresholds.pct if thresholds else None,
        variance_threshold_value=thresholds.value if thresholds else None,
        scheduled_date=scheduled_date,
        notes=notes,
        created_by=actor_id,
    )
    _snapshot(cc, records)
    db.add(cc)
    db.flush()

    log.info(
        "cycle count %s created: %s lines, %s locations",
        cc.count_number, len(cc.lines), cc.total_locations,
    )
    return cc


def start_cycle_count(db: Session, cycle_count_id: int, *, actor_id: str | None = None) -> CycleCount:
    cc = get_cycle_count(db, cycle_count_id)
    _require_status(cc, {CycleCountStatus.new}, CycleCountStatus.in_progress.value)

    cc.status = CycleCountStatus.in_progress
    cc.started_at = utcnow()
    db.flush()
    log.info("cycle count %s started by %s", cc.count_number, actor_id)
    return cc


def record_count(
    db: Session,
    line_id: int,
    counted_quantity: int,
    *,
    actor_id: str,
    lot_number: str | None = None,
    notes: str | None = None,
) -> CycleCountLine:
    """
    Enregistre le comptage d'une ligne.

    Hors seuils, la ligne reste PENDING avec recount_required; le comptage
    suivant de cette ligne est pris comme recomptage et accepté.
    """
    line = get_line(db, line_id)
    cc = line.cycle_count
    _require_status(cc, {CycleCountStatus.in_progress}, "COUNT")
    if line.status not in (CycleCountLineStatus.pending, CycleCountLineStatus.counted):
        raise InvalidTransitionError("CycleCountLine", line.status.value, CycleCountLineStatus.counted.value)
    if counted_quantity < 0:
        raise InvalidQuantityError("Counted quantity must not be negative")

    result = evaluate(
        line.system_quantity,
        counted_quantity,
        _thresholds(cc),
        unit_cost=catalog.unit_cost(line.product),
    )
    is_recount = line.recount_required

    line.counted_quantity = counted_quantity
    line.variance = result.variance
    line.variance_pct = result.variance_pct
    line.counted_at = utcnow()
    line.counted_by = actor_id
    if lot_number is not None:
        line.lot_number = lot_number
    line.notes = _append_note(line.notes, notes)

    if is_recount:
        line.recount_required = False
        line.recount_count += 1
        line.status = CycleCountLineStatus.counted
    elif result.exceeds_threshold:
        line.recount_required = True
        line.status = CycleCountLineStatus.pending
        log.info(
            "cycle count %s line %s exceeds threshold (variance=%s, %s%%), recount required",
            cc.count_number, line.id, result.variance, result.variance_pct,
        )
    else:
        line.status = CycleCountLineStatus.counted

    _refresh_totals(cc)
    db.flush()
    return line


def request_recount(db: Session, line_id: int, reason: str | None = None) -> CycleCountLine:
    line = get_line(db, line_id)
    cc = line.cycle_count
    _require_status(cc, {CycleCountStatus.in_progress}, "RECOUNT")
    if line.status not in (CycleCountLineStatus.pending, CycleCountLineStatus.counted):
        raise InvalidTransitionError("CycleCountLine", line.status.value, CycleCountLineStatus.pending.value)

    line.status = CycleCountLineStatus.pending
    line.counted_quantity = None
    line.variance = None
    line.variance_pct = None
    line.recount_required = True
    line.notes = _append_note(line.notes, f"Recount requested: {reason}" if reason else None)

    _refresh_totals(cc)
    db.flush()
    return line


def submit_cycle_count(db: Session, cycle_count_id: int, *, actor_id: str | None = None) -> CycleCount:
    cc = get_cycle_count(db, cycle_count_id)
    _require_status(cc, {CycleCountStatus.in_progress}, CycleCountStatus.pending_approval.value)

    pending = sum(1 for line in cc.lines if line.status == CycleCountLineStatus.pending)
    if pending:
        raise LinesPendingError(pending)

    cc.status = CycleCountStatus.pending_approval
    cc.submitted_at = utcnow()
    db.flush()
    log.info("cycle count %s submitted by %s", cc.count_number, actor_id)
    return cc


def _resolve_record(db: Session, line: CycleCountLine) -> InventoryRecord:
    if line.inventory_id is not None:
        return store.get_record_by_id(db, line.inventory_id, for_update=True)
    return store.find_or_create_record(
        db,
        product_id=line.product_id,
        location_id=line.location_id,
        lot_number=line.lot_number,
        lpn=line.lpn,
    )


def approve_cycle_count(
    db: Session,
    cycle_count_id: int,
    *,
    actor_id: str,
    adjust_all: bool = False,
) -> CycleCount:
    """
    Poste les écarts et termine le comptage.

    L'ajustement vaut compté moins le on-hand du record au moment de
    l'approbation, pas l'écart du snapshot: un stock bougé depuis n'est pas
    compté deux fois. Tout passe dans un seul savepoint; une ligne en
    échec annule le batch entier.
    """
    cc = get_cycle_count(db, cycle_count_id)
    _require_status(cc, {CycleCountStatus.pending_approval}, CycleCountStatus.completed.value)

    now = utcnow()
    posted = 0
    with db.begin_nested():
        for line in cc.lines:
            try:
                if not line.variance and not adjust_all:
                    line.status = CycleCountLineStatus.approved
                    if line.inventory_id is not None:
                        store.get_record_by_id(db, line.inventory_id).last_counted_at = now
                    continue

                record = _resolve_record(db, line)
                delta = line.counted_quantity - record.quantity_on_hand
                if delta != 0:
                    operator.adjust(
                        db,
                        record.id,
                        delta,
                        "Cycle count adjustment",
                        actor_id=actor_id,
                        reference_type=ReferenceType.cycle_count,
                        reference_id=str(cc.id),
                        reference_number=cc.count_number,
                        notes=f"line {line.id}",
                    )
                    posted += 1
                    line.status = CycleCountLineStatus.adjusted
                else:
                    # rien à poster: la ligne est juste approuvée
                    line.status = CycleCountLineStatus.approved
                record.last_counted_at = now
            except (InventoryEngineError, SQLAlchemyError) as exc:
                log.error("cycle count %s approval failed at line %s: %s", cc.count_number, line.id, exc)
                raise BatchPostingError(line.id, exc) from exc

        for location_id in {line.location_id for line in cc.lines}:
            catalog.get_location(db, location_id).last_count_date = now

        cc.status = CycleCountStatus.completed
        cc.completed_at = now
        cc.approved_by = actor_id

    log.info("cycle count %s approved by %s, %s adjustments posted", cc.count_number, actor_id, posted)
    return cc


def cancel_cycle_count(
    db: Session,
    cycle_count_id: int,
    reason: str | None = None,
    *,
    actor_id: str | None = None,
) -> CycleCount:
    cc = get_cycle_count(db, cycle_count_id)
    _require_status(cc, OPEN_STATUSES, CycleCountStatus.cancelled.value)

    cc.status = CycleCountStatus.cancelled
    cc.cancelled_at = utcnow()
    cc.notes = _append_note(cc.notes, f"Cancelled: {reason}" if reason else None)
    db.flush()
    log.info("cycle count %s cancelled by %s", cc.count_number, actor_id)
    return cc


# ---------- Discrepancies & stats ----------
def _discrepancy_totals(lines: list[CycleCountLine]) -> dict:
    total_value = Decimal("0")
    for line in lines:
        total_value += Decimal(line.variance) * catalog.unit_cost(line.product)
    return {
        "count": len(lines),
        "net_variance": sum(line.variance for line in lines),
        "total_value": total_value.quantize(Decimal("0.01")),
        "positive": sum(1 for line in lines if line.variance > 0),
        "negative": sum(1 for line in lines if line.variance < 0),
    }


def cycle_count_discrepancies(db: Session, cycle_count_id: int) -> dict:
    cc = get_cycle_count(db, cycle_count_id)
    lines = [line for line in cc.lines if line.counted_quantity is not None and line.variance]
    return {"cycle_count": cc, "lines": lines, "totals": _discrepancy_totals(lines)}


def open_discrepancies(db: Session, warehouse_id: int | None = None) -> list[CycleCountLine]:
    stmt = (
        select(CycleCountLine)
        .join(CycleCount, CycleCount.id == CycleCountLine.cycle_count_id)
        .where(CycleCount.status.in_([CycleCountStatus.in_progress, CycleCountStatus.pending_approval]))
        .where(CycleCountLine.counted_quantity.is_not(None))
        .where(CycleCountLine.variance != 0)
        .order_by(CycleCount.id, CycleCountLine.id)
    )
    if warehouse_id is not None:
        stmt = stmt.where(CycleCount.warehouse_id == warehouse_id)
    return list(db.execute(stmt).scalars().all())


def cycle_count_stats(db: Session, warehouse_id: int) -> dict:
    by_status = {
        status.value: int(n)
        for status, n in db.execute(
            select(CycleCount.status, func.count(CycleCount.id))
            .where(CycleCount.warehouse_id == warehouse_id)
            .group_by(CycleCount.status)
        ).all()
    }

    counted, exact = db.execute(
        select(
            func.count(CycleCountLine.id),
            func.coalesce(func.sum(case((CycleCountLine.variance == 0, 1), else_=0)), 0),
        )
        .join(CycleCount, CycleCount.id == CycleCountLine.cycle_count_id)
        .where(CycleCount.warehouse_id == warehouse_id)
        .where(CycleCount.status == CycleCountStatus.completed)
        .where(CycleCountLine.counted_quantity.is_not(None))
    ).one()

    accuracy = None
    if counted:
        accuracy = (Decimal(int(exact)) * 100 / Decimal(int(counted))).quantize(Decimal("0.01"))

    return {
        "warehouse_id": warehouse_id,
        "by_status": by_status,
        "open": sum(by_status.get(s.value, 0) for s in OPEN_STATUSES),
        "pending_approval": by_status.get(CycleCountStatus.pending_approval.value, 0),
        "completed": by_status.get(CycleCountStatus.completed.value, 0),
        "lines_counted": int(counted),
        "accuracy_pct": accuracy,
        "open_discrepancies": len(open_discrepancies(db, warehouse_id)),
    }


# ---------- Criteria-driven generation ----------
def create_criteria(
    db: Session,
    *,
    warehouse_id: int,
    cycle_class: str,
    name: str,
    count_frequency_days: int,
    velocity_codes: Iterable[str] = (),
    location_types: Iterable[LocationType | str] = (),
    min_cost: Decimal | None = None,
    max_cost: Decimal | None = None,
    description: str | None = None,
) -> CycleCountCriteria:
    catalog.get_warehouse(db, warehouse_id)
    if count_frequency_days <= 0:
        raise InvalidQuantityError("count_frequency_days must be positive")

    criteria = CycleCountCriteria(
        warehouse_id=warehouse_id,
        cycle_class=cycle_class,
        name=name,
        description=description,
        count_frequency_days=count_frequency_days,
        velocity_codes=list(velocity_codes),
        location_types=[LocationType(t).value for t in location_types],
        min_cost=min_cost,
        max_cost=max_cost,
        is_active=True,
    )
    db.add(criteria)
    db.flush()
    return criteria


def get_criteria(db: Session, criteria_id: int) -> CycleCountCriteria:
    criteria = db.get(CycleCountCriteria, criteria_id)
    if criteria is None:
        raise RecordNotFoundError("CycleCountCriteria", criteria_id)
    return criteria


def list_criteria(db: Session, warehouse_id: int | None = None) -> list[CycleCountCriteria]:
    stmt = select(CycleCountCriteria).order_by(CycleCountCriteria.cycle_class)
    if warehouse_id is not None:
        stmt = stmt.where(CycleCountCriteria.warehouse_id == warehouse_id)
    return list(db.execute(stmt).scalars().all())


def deactivate_criteria(db: Session, criteria_id: int) -> CycleCountCriteria:
    criteria = get_criteria(db, criteria_id)
    criteria.is_active = False
    db.flush()
    return criteria


def generate_from_criteria(
    db: Session,
    criteria_id: int,
    *,
    actor_id: str,
    max_records: int | None = None,
) -> CycleCount | None:
    """
    Crée un comptage CRITERIA à partir des records à compter.

    À compter = non nul, dans une location active, jamais compté ou compté
    avant la fenêtre de fréquence. Renvoie None si rien n'est dû.
    """
    criteria = get_criteria(db, criteria_id)
    if not criteria.is_active:
        raise InvalidTransitionError("CycleCountCriteria", "INACTIVE", "GENERATE")

    cutoff = utcnow() - timedelta(days=criteria.count_frequency_days)
    limit = max_records or settings.CRITERIA_MAX_RECORDS

    stmt = (
        select(InventoryRecord)
        .join(Location, Location.id == InventoryRecord.location_id)
        .join(Product, Product.id == InventoryRecord.product_id)
        .where(InventoryRecord.warehouse_id == criteria.warehouse_id)
        .where(InventoryRecord.quantity_on_hand > 0)
        .where(Location.is_active.is_(True))
        .where(
            or_(
                InventoryRecord.last_counted_at.is_(None),
                InventoryRecord.last_counted_at < cutoff,
            )
        )
    )
    if criteria.velocity_codes:
        stmt = stmt.where(Product.velocity_code.in_(criteria.velocity_codes))
    if criteria.location_types:
        stmt = stmt.where(Location.type.in_([LocationType(t) for t in criteria.location_types]))
    if criteria.min_cost is not None:
        stmt = stmt.where(Product.cost >= criteria.min_cost)
    if criteria.max_cost is not None:
        stmt = stmt.where(Product.cost <= criteria.max_cost)

    records = list(
        db.execute(
            stmt.order_by(InventoryRecord.last_counted_at.asc().nulls_first(), InventoryRecord.id)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    if not records:
        log.info("criteria %s (%s): nothing due for counting", criteria.id, criteria.cycle_class)
        return None

    cc = CycleCount(
        count_number=next_document_number(db, CycleCount.count_number, "CC", 6),
        warehouse_id=criteria.warehouse_id,
        type=CycleCountType.criteria,
        cycle_class=criteria.cycle_class,
        status=CycleCountStatus.new,
        notes=f"Generated from criteria {criteria.name}",
        created_by=actor_id,
    )
    _snapshot(cc, records)
    db.add(cc)
    db.flush()

    log.info(
        "cycle count %s generated from criteria %s: %s lines",
        cc.count_number, criteria.cycle_class, len(cc.lines),
    )
    return cc


# ---------- Tolerances ----------
TOLERANCE_FIELDS = {
    "category",
    "name",
    "description",
    "tolerance_qty",
    "tolerance_pct",
    "tolerance_value",
    "cycle_classes",
    "velocity_codes",
    "auto_approve",
    "require_recount",
    "recount_threshold",
    "is_active",
}


def _check_limits(tolerance_qty, tolerance_pct, tolerance_value, recount_threshold) -> None:
    for label, limit in (
        ("tolerance_qty", tolerance_qty),
        ("tolerance_pct", tolerance_pct),
        ("tolerance_value", tolerance_value),
        ("recount_threshold", recount_threshold),
    ):
        if limit is not None and limit < 0:
            raise InvalidQuantityError(f"{label} must not be negative")


def create_tolerance(
    db: Session,
    *,
    warehouse_id: int,
    category: str,
    name: str | None = None,
    description: str | None = None,
    tolerance_qty: int = 0,
    tolerance_pct: Decimal = Decimal("0"),
    tolerance_value: Decimal = Decimal("0"),
    cycle_classes: Iterable[str] = (),
    velocity_codes: Iterable[str] = (),
    auto_approve: bool = False,
    require_recount: bool = False,
    recount_threshold: int | None = None,
) -> CycleCountTolerance:
    catalog.get_warehouse(db, warehouse_id)
    if not category or not category.strip():
        raise InvalidQuantityError("category is required")
    _check_limits(tolerance_qty, tolerance_pct, tolerance_value, recount_threshold)

    category = category.strip().upper()
    tolerance = CycleCountTolerance(
        warehouse_id=warehouse_id,
        category=category,
        name=name or f"Tolerance {category}",
        description=description,
        tolerance_qty=tolerance_qty or 0,
        tolerance_pct=tolerance_pct or Decimal("0"),
        tolerance_value=tolerance_value or Decimal("0"),
        cycle_classes=list(cycle_classes),
        velocity_codes=list(velocity_codes),
        auto_approve=auto_approve,
        require_recount=require_recount,
        recount_threshold=recount_threshold or None,
        is_active=True,
    )
    db.add(tolerance)
    db.flush()
    log.info("tolerance %s (%s) created for warehouse %s", tolerance.id, category, warehouse_id)
    return tolerance


def get_tolerance(db: Session, tolerance_id: int) -> CycleCountTolerance:
    tolerance = db.get(CycleCountTolerance, tolerance_id)
    if tolerance is None:
        raise RecordNotFoundError("CycleCountTolerance", tolerance_id)
    return tolerance


def list_tolerances(
    db: Session,
    warehouse_id: int | None = None,
    *,
    active_only: bool = False,
) -> list[CycleCountTolerance]:
    stmt = select(CycleCountTolerance).order_by(
        CycleCountTolerance.category,
        CycleCountTolerance.tolerance_qty,
        CycleCountTolerance.id,
    )
    if warehouse_id is not None:
        stmt = stmt.where(CycleCountTolerance.warehouse_id == warehouse_id)
    if active_only:
        stmt = stmt.where(CycleCountTolerance.is_active.is_(True))
    return list(db.execute(stmt).scalars().all())


def update_tolerance(db: Session, tolerance_id: int, **changes) -> CycleCountTolerance:
    """Modifie une règle. warehouse_id n'est pas modifiable; None laisse le champ tel quel."""
    tolerance = get_tolerance(db, tolerance_id)

    unknown = set(changes) - TOLERANCE_FIELDS
    if unknown:
        raise InvalidQuantityError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    _check_limits(
        changes.get("tolerance_qty"),
        changes.get("tolerance_pct"),
        changes.get("tolerance_value"),
        changes.get("recount_threshold"),
    )

    for key, value in changes.items():
        if value is None and key not in ("description", "recount_threshold"):
            continue
        if key == "category":
            value = value.strip().upper()
        elif key in ("cycle_classes", "velocity_codes"):
            value = list(value)
        elif key == "recount_threshold":
            value = value or None
        setattr(tolerance, key, value)

    db.flush()
    return tolerance


def delete_tolerance(db: Session, tolerance_id: int) -> None:
    tolerance = get_tolerance(db, tolerance_id)
    db.delete(tolerance)
    db.flush()
    log.info("tolerance %s (%s) deleted", tolerance_id, tolerance.category)


def check_tolerance(
    db: Session,
    warehouse_id: int,
    *,
    variance: int,
    variance_pct: Decimal | int = 0,
    variance_value: Decimal | int = 0,
    cycle_class: str | None = None,
    velocity_code: str | None = None,
) -> ToleranceCheck:
    """Écart confronté aux règles actives de l'entrepôt."""
    catalog.get_warehouse(db, warehouse_id)
    return match_tolerance(
        list_tolerances(db, warehouse_id, active_only=True),
        variance=variance,
        variance_pct=variance_pct,
        variance_value=variance_value,
        cycle_class=cycle_class,
        velocity_code=velocity_code,
    )


def check_line_tolerance(db: Session, line_id: int) -> ToleranceCheck:
    """
    Même contrôle pour une ligne comptée: classe du comptage, code vélocité
    du produit, valeur au coût unitaire.
    """
    line = get_line(db, line_id)
    if line.counted_quantity is None:
        raise InvalidTransitionError("CycleCountLine", line.status.value, "CHECK_TOLERANCE")

    cc = line.cycle_count
    result = evaluate(line.system_quantity, line.counted_quantity, unit_cost=catalog.unit_cost(line.product))
    return check_tolerance(
        db,
        cc.warehouse_id,
        variance=result.variance,
        variance_pct=result.variance_pct,
        variance_value=result.variance_value,
        cycle_class=cc.cycle_class,
        velocity_code=line.product.velocity_code if line.product is not None else None,
    )
