from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_actor, get_db
from stockledger.app.db.models.core_types import (
    CycleCountStatus,
    CycleCountType,
    LocationType,
)
from stockledger.app.schemas.counts import (
    CycleCountCriteriaRead,
    CycleCountDetail,
    CycleCountLineRead,
    CycleCountRead,
    CycleCountToleranceRead,
)
from stockledger.services import cycle_count
from stockledger.services.variance import Thresholds

router = APIRouter(prefix="/cycle-counts")

# le compteur ne doit pas voir la quantité système d'un comptage aveugle
BLIND_OPEN = {CycleCountStatus.new, CycleCountStatus.in_progress}


# ---------- Schemas ----------
class CycleCountCreate(BaseModel):
    warehouse_id: int
    location_ids: list[int] | None = None
    zone_id: int | None = None
    product_ids: list[int] | None = None
    velocity_code: str | None = None
    type: CycleCountType = CycleCountType.standard
    variance_threshold_qty: int | None = Field(default=None, ge=0)
    variance_threshold_pct: Decimal | None = Field(default=None, ge=0)
    variance_threshold_value: Decimal | None = Field(default=None, ge=0)
    scheduled_date: date | None = None
    notes: str | None = None


class CountEntry(BaseModel):
    counted_quantity: int = Field(ge=0)
    lot_number: str | None = None
    notes: str | None = None


class RecountRequest(BaseModel):
    reason: str | None = None


class ApproveRequest(BaseModel):
    adjust_all: bool = False


class CancelRequest(BaseModel):
    reason: str | None = None


class CriteriaCreate(BaseModel):
    warehouse_id: int
    cycle_class: str = Field(min_length=1, max_length=8)
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    count_frequency_days: int = Field(gt=0)
    velocity_codes: list[str] = Field(default_factory=list)
    location_types: list[LocationType] = Field(default_factory=list)
    min_cost: Decimal | None = None
    max_cost: Decimal | None = None


class GenerateRequest(BaseModel):
    max_records: int | None = Field(default=None, gt=0)


class ToleranceCreate(BaseModel):
    warehouse_id: int
    category: str = Field(min_length=1, max_length=32)
    name: str | None = Field(default=None, max_length=200)
    description: str | None = None
    tolerance_qty: int = Field(default=0, ge=0)
    tolerance_pct: Decimal = Field(default=Decimal("0"), ge=0)
    tolerance_value: Decimal = Field(default=Decimal("0"), ge=0)
    cycle_classes: list[str] = Field(default_factory=list)
    velocity_codes: list[str] = Field(default_factory=list)
    auto_approve: bool = False
    require_recount: bool = False
    recount_threshold: int | None = Field(default=None, ge=0)


class ToleranceUpdate(BaseModel):
    category: str | None = Field(default=None, min_length=1, max_length=32)
    name: str | None = Field(default=None, max_length=200)
    description: str | None = None
    tolerance_qty: int | None = Field(default=None, ge=0)
    tolerance_pct: Decimal | None = Field(default=None, ge=0)
    tolerance_value: Decimal | None = Field(default=None, ge=0)
    cycle_classes: list[str] | None = None
    velocity_codes: list[str] | None = None
    auto_approve: bool | None = None
    require_recount: bool | None = None
    recount_threshold: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class ToleranceCheckRequest(BaseModel):
    warehouse_id: int
    variance: int
    variance_pct: Decimal = Decimal("0")
    variance_value: Decimal = Decimal("0")
    cycle_class: str | None = None
    velocity_code: str | None = None


# ---------- Helpers ----------
def _scope(payload: CycleCountCreate) -> list[cycle_count.Scope]:
    scope: list[cycle_count.Scope] = []
    if payload.location_ids:
        scope.append(cycle_count.ByLocations(tuple(payload.location_ids)))
    if payload.zone_id is not None:
        scope.append(cycle_count.ByZone(payload.zone_id))
    if payload.product_ids:
        scope.append(cycle_count.ByProducts(tuple(payload.product_ids)))
    if payload.velocity_code:
        scope.append(cycle_count.ByVelocityCode(payload.velocity_code))
    return scope


def _detail(cc) -> CycleCountDetail:
    detail = CycleCountDetail.model_validate(cc)
    if cc.type == CycleCountType.blind and cc.status in BLIND_OPEN:
        for line in detail.lines:
            line.system_quantity = None
    return detail


# ---------- Criteria ----------
@router.get("/criteria", response_model=list[CycleCountCriteriaRead])
def list_criteria(warehouse_id: int | None = None, db: Session = Depends(get_db)):
    return cycle_count.list_criteria(db, warehouse_id)


@router.post("/criteria", response_model=CycleCountCriteriaRead)
def create_criteria(payload: CriteriaCreate, db: Session = Depends(get_db)):
    criteria = cycle_count.create_criteria(
        db,
        warehouse_id=payload.warehouse_id,
        cycle_class=payload.cycle_class,
        name=payload.name,
        description=payload.description,
        count_frequency_days=payload.count_frequency_days,
        velocity_codes=payload.velocity_codes,
        location_types=payload.location_types,
        min_cost=payload.min_cost,
        max_cost=payload.max_cost,
    )
    db.commit()
    db.refresh(criteria)
    return criteria


@router.get("/criteria/{criteria_id}", response_model=CycleCountCriteriaRead)
def get_criteria(criteria_id: int, db: Session = Depends(get_db)):
    return cycle_count.get_criteria(db, criteria_id)


@router.delete("/criteria/{criteria_id}", response_model=CycleCountCriteriaRead)
def deactivate_criteria(criteria_id: int, db: Session = Depends(get_db)):
    criteria = cycle_count.deactivate_criteria(db, criteria_id)
    db.commit()
    db.refresh(criteria)
    return criteria


@router.post("/criteria/{criteria_id}/generate")
def generate_from_criteria(
    criteria_id: int,
    payload: GenerateRequest | None = None,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    cc = cycle_count.generate_from_criteria(
        db,
        criteria_id,
        actor_id=actor_id,
        max_records=payload.max_records if payload else None,
    )
    if cc is None:
        db.rollback()
        return {"generated": False, "cycle_count": None}

    db.commit()
    db.refresh(cc)
    return {"generated": True, "cycle_count": CycleCountRead.model_validate(cc)}


# ---------- Tolerances ----------
def _tolerance_check(check) -> dict:
    return {
        "variance": check.variance,
        "variance_pct": check.variance_pct,
        "variance_value": check.variance_value,
        "matched_tolerance": (
            {"id": check.matched_id, "category": check.matched_category, "name": check.matched_name}
            if check.matched_id is not None
            else None
        ),
        "within_tolerance": check.within_tolerance,
        "auto_approve": check.auto_approve,
        "requires_recount": check.requires_recount,
        "recommendation": check.recommendation,
    }


@router.get("/tolerances", response_model=list[CycleCountToleranceRead])
def list_tolerances(warehouse_id: int | None = None, db: Session = Depends(get_db)):
    return cycle_count.list_tolerances(db, warehouse_id)


@router.post("/tolerances", response_model=CycleCountToleranceRead, status_code=201)
def create_tolerance(payload: ToleranceCreate, db: Session = Depends(get_db)):
    tolerance = cycle_count.create_tolerance(db, **payload.model_dump())
    db.commit()
    db.refresh(tolerance)
    return tolerance


@router.post("/tolerances/check")
def check_tolerance(payload: ToleranceCheckRequest, db: Session = Depends(get_db)):
    check = cycle_count.check_tolerance(db, **payload.model_dump())
    return _tolerance_check(check)


@router.get("/tolerances/{tolerance_id}", response_model=CycleCountToleranceRead)
def get_tolerance(tolerance_id: int, db: Session = Depends(get_db)):
    return cycle_count.get_tolerance(db, tolerance_id)


@router.patch("/tolerances/{tolerance_id}", response_model=CycleCountToleranceRead)
def update_tolerance(tolerance_id: int, payload: ToleranceUpdate, db: Session = Depends(get_db)):
    tolerance = cycle_count.update_tolerance(db, tolerance_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(tolerance)
    return tolerance


@router.delete("/tolerances/{tolerance_id}")
def delete_tolerance(tolerance_id: int, db: Session = Depends(get_db)):
    cycle_count.delete_tolerance(db, tolerance_id)
    db.commit()
    return {"deleted": True, "id": tolerance_id}


@router.get("/lines/{line_id}/tolerance")
def check_line_tolerance(line_id: int, db: Session = Depends(get_db)):
    return _tolerance_check(cycle_count.check_line_tolerance(db, line_id))


# ---------- Reads ----------
@router.get("")
def list_cycle_counts(
    warehouse_id: int | None = None,
    status: CycleCountStatus | None = None,
    type: CycleCountType | None = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    rows, total = cycle_count.list_cycle_counts(
        db, warehouse_id=warehouse_id, status=status, count_type=type, page=page, limit=limit
    )
    return {
        "items": [CycleCountRead.model_validate(cc) for cc in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/stats/{warehouse_id}")
def cycle_count_stats(warehouse_id: int, db: Session = Depends(get_db)):
    return cycle_count.cycle_count_stats(db, warehouse_id)


@router.get("/{cycle_count_id}", response_model=CycleCountDetail)
def get_cycle_count(cycle_count_id: int, db: Session = Depends(get_db)):
    return _detail(cycle_count.get_cycle_count(db, cycle_count_id))


@router.get("/{cycle_count_id}/discrepancies")
def get_discrepancies(cycle_count_id: int, db: Session = Depends(get_db)):
    data = cycle_count.cycle_count_discrepancies(db, cycle_count_id)
    return {
        "cycle_count_id": data["cycle_count"].id,
        "count_number": data["cycle_count"].count_number,
        "lines": [CycleCountLineRead.model_validate(line) for line in data["lines"]],
        "totals": data["totals"],
    }


# ---------- Workflow ----------
@router.post("", response_model=CycleCountDetail)
def create_cycle_count(
    payload: CycleCountCreate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    thresholds = None
    if any(
        v is not None
        for v in (payload.variance_threshold_qty, payload.variance_threshold_pct, payload.variance_threshold_value)
    ):
        thresholds = Thresholds(
            qty=payload.variance_threshold_qty,
            pct=payload.variance_threshold_pct,
            value=payload.variance_threshold_value,
        )

    cc = cycle_count.create_cycle_count(
        db,
        payload.warehouse_id,
        _scope(payload),
        actor_id=actor_id,
        count_type=payload.type,
        thresholds=thresholds,
        scheduled_date=payload.scheduled_date,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(cc)
    return _detail(cc)


@router.post("/{cycle_count_id}/start", response_model=CycleCountRead)
def start_cycle_count(
    cycle_count_id: int,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    cc = cycle_count.start_cycle_count(db, cycle_count_id, actor_id=actor_id)
    db.commit()
    db.refresh(cc)
    return cc


@router.post("/lines/{line_id}/count", response_model=CycleCountLineRead)
def record_count(
    line_id: int,
    payload: CountEntry,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    line = cycle_count.record_count(
        db,
        line_id,
        payload.counted_quantity,
        actor_id=actor_id,
        lot_number=payload.lot_number,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(line)
    out = CycleCountLineRead.model_validate(line)
    if line.cycle_count.type == CycleCountType.blind:
        out.system_quantity = None
    return out


@router.post("/lines/{line_id}/recount", response_model=CycleCountLineRead)
def request_recount(
    line_id: int,
    payload: RecountRequest | None = None,
    db: Session = Depends(get_db),
):
    line = cycle_count.request_recount(db, line_id, payload.reason if payload else None)
    db.commit()
    db.refresh(line)
    out = CycleCountLineRead.model_validate(line)
    if line.cycle_count.type == CycleCountType.blind:
        out.system_quantity = None
    return out


@router.post("/{cycle_count_id}/submit", response_model=CycleCountRead)
def submit_cycle_count(
    cycle_count_id: int,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    cc = cycle_count.submit_cycle_count(db, cycle_count_id, actor_id=actor_id)
    db.commit()
    db.refresh(cc)
    return cc


@router.post("/{cycle_count_id}/approve", response_model=CycleCountRead)
def approve_cycle_count(
    cycle_count_id: int,
    payload: ApproveRequest | None = None,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    cc = cycle_count.approve_cycle_count(
        db,
        cycle_count_id,
        actor_id=actor_id,
        adjust_all=payload.adjust_all if payload else False,
    )
    db.commit()
    db.refresh(cc)
    return cc


@router.post("/{cycle_count_id}/cancel", response_model=CycleCountRead)
def cancel_cycle_count(
    cycle_count_id: int,
    payload: CancelRequest | None = None,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor),
):
    cc = cycle_count.cancel_cycle_count(
        db, cycle_count_id, payload.reason if payload else None, actor_id=actor_id
    )
    db.commit()
    db.refresh(cc)
    return cc
