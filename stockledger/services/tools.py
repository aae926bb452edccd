"""
Exécuteurs de tools pour l'assistant.

Chaque tool prend un dict de params (validé par un modèle pydantic) et
renvoie un dict sérialisable en JSON. execute_tool commit si le tool
réussit et rollback si le moteur refuse l'appel.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from stockledger.app.settings import settings
from stockledger.services import cycle_count, inventory_store, operator, physical_inventory
from stockledger.services.errors import InventoryEngineError
from stockledger.services.variance import Thresholds

log = logging.getLogger(__name__)


# ---------- Params ----------
class AdjustParams(BaseModel):
    inventory_id: int
    quantity: int
    reason: str = Field(min_length=1)
    notes: str | None = None
    actor_id: str | None = None
    idempotency_key: str | None = None


class TransferParams(BaseModel):
    inventory_id: int
    to_location_id: int
    quantity: int
    reason: str | None = None
    actor_id: str | None = None
    idempotency_key: str | None = None


class MoveParams(BaseModel):
    inventory_id: int
    to_location_id: int
    reason: str | None = None
    actor_id: str | None = None
    idempotency_key: str | None = None


class CreateCycleCountParams(BaseModel):
    warehouse_id: int
    location_ids: list[int] | None = None
    zone_id: int | None = None
    product_ids: list[int] | None = None
    velocity_code: str | None = None
    count_type: str = "STANDARD"
    variance_threshold_qty: int | None = None
    variance_threshold_pct: Decimal | None = None
    variance_threshold_value: Decimal | None = None
    notes: str | None = None
    actor_id: str | None = None


class RecordCycleCountParams(BaseModel):
    line_id: int
    counted_quantity: int
    notes: str | None = None
    actor_id: str | None = None


class ApproveCycleCountParams(BaseModel):
    cycle_count_id: int
    adjust_all: bool = False
    actor_id: str | None = None


class CreatePhysicalInventoryParams(BaseModel):
    warehouse_id: int
    scheduled_date: date
    name: str | None = None
    zone_ids: list[int] = Field(default_factory=list)
    blind_count: bool = False
    locations_per_book: int | None = None
    actor_id: str | None = None


class GenerateCountBooksParams(BaseModel):
    physical_inventory_id: int


class RecordCountLineParams(BaseModel):
    line_id: int
    counted_quantity: int
    recount: bool = False
    notes: str | None = None
    actor_id: str | None = None


class CompletePhysicalInventoryParams(BaseModel):
    physical_inventory_id: int
    post_adjustments: bool = True
    actor_id: str | None = None


class WarehouseParams(BaseModel):
    warehouse_id: int | None = None


class VarianceReportParams(BaseModel):
    physical_inventory_id: int


def _actor(params) -> str:
    return params.actor_id or settings.SYSTEM_ACTOR_ID


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


# ---------- Tools ----------
def adjust_inventory(db: Session, raw: dict) -> dict:
    p = AdjustParams(**raw)
    result = operator.adjust(
        db, p.inventory_id, p.quantity, p.reason,
        actor_id=_actor(p), notes=p.notes, idempotency_key=p.idempotency_key,
    )
    return {"adjustment": asdict(result)}


def transfer_inventory(db: Session, raw: dict) -> dict:
    p = TransferParams(**raw)
    result = operator.transfer(
        db, p.inventory_id, p.to_location_id, p.quantity,
        actor_id=_actor(p), reason=p.reason, idempotency_key=p.idempotency_key,
    )
    return {"transfer": asdict(result)}


def move_inventory(db: Session, raw: dict) -> dict:
    p = MoveParams(**raw)
    result = operator.move(
        db, p.inventory_id, p.to_location_id,
        actor_id=_actor(p), reason=p.reason, idempotency_key=p.idempotency_key,
    )
    return {"move": asdict(result)}


def create_cycle_count(db: Session, raw: dict) -> dict:
    p = CreateCycleCountParams(**raw)
    scope = []
    if p.location_ids:
        scope.append(cycle_count.ByLocations(tuple(p.location_ids)))
    if p.zone_id is not None:
        scope.append(cycle_count.ByZone(p.zone_id))
    if p.product_ids:
        scope.append(cycle_count.ByProducts(tuple(p.product_ids)))
    if p.velocity_code:
        scope.append(cycle_count.ByVelocityCode(p.velocity_code))

    thresholds = None
    if any(v is not None for v in (p.variance_threshold_qty, p.variance_threshold_pct, p.variance_threshold_value)):
        thresholds = Thresholds(
            qty=p.variance_threshold_qty,
            pct=p.variance_threshold_pct,
            value=p.variance_threshold_value,
        )

    cc = cycle_count.create_cycle_count(
        db, p.warehouse_id, scope,
        actor_id=_actor(p), count_type=p.count_type, thresholds=thresholds, notes=p.notes,
    )
    return {
        "cycle_count_id": cc.id,
        "count_number": cc.count_number,
        "lines": len(cc.lines),
        "total_locations": cc.total_locations,
    }


def record_cycle_count(db: Session, raw: dict) -> dict:
    p = RecordCycleCountParams(**raw)
    line = cycle_count.record_count(db, p.line_id, p.counted_quantity, actor_id=_actor(p), notes=p.notes)
    return {
        "line_id": line.id,
        "status": line.status.value,
        "variance": line.variance,
        "variance_pct": line.variance_pct,
        "recount_required": line.recount_required,
    }


def approve_cycle_count(db: Session, raw: dict) -> dict:
    p = ApproveCycleCountParams(**raw)
    cc = cycle_count.approve_cycle_count(db, p.cycle_count_id, actor_id=_actor(p), adjust_all=p.adjust_all)
    return {"cycle_count_id": cc.id, "count_number": cc.count_number, "status": cc.status.value}


def create_physical_inventory(db: Session, raw: dict) -> dict:
    p = CreatePhysicalInventoryParams(**raw)
    pi = physical_inventory.create_physical_inventory(
        db, p.warehouse_id,
        scheduled_date=p.scheduled_date,
        actor_id=_actor(p),
        name=p.name,
        zone_ids=p.zone_ids,
        blind_count=p.blind_count,
        locations_per_book=p.locations_per_book,
    )
    return {"physical_inventory_id": pi.id, "pi_number": pi.pi_number, "status": pi.status.value}


def generate_count_books(db: Session, raw: dict) -> dict:
    p = GenerateCountBooksParams(**raw)
    pi = physical_inventory.generate_count_books(db, p.physical_inventory_id)
    return {
        "physical_inventory_id": pi.id,
        "total_books": pi.total_books,
        "total_locations": pi.total_locations,
        "books": [{"book_number": b.book_number, "total_locations": b.total_locations} for b in pi.books],
    }


def record_count_line(db: Session, raw: dict) -> dict:
    p = RecordCountLineParams(**raw)
    if p.recount:
        line = physical_inventory.record_recount_line(
            db, p.line_id, p.counted_quantity, actor_id=_actor(p), notes=p.notes
        )
    else:
        line = physical_inventory.record_count_line(
            db, p.line_id, p.counted_quantity, actor_id=_actor(p), notes=p.notes
        )
    return {"line_id": line.id, "status": line.status.value, "variance": line.variance}


def complete_physical_inventory(db: Session, raw: dict) -> dict:
    p = CompletePhysicalInventoryParams(**raw)
    pi = physical_inventory.complete_physical_inventory(
        db, p.physical_inventory_id, actor_id=_actor(p), post_adjustments=p.post_adjustments
    )
    return {
        "physical_inventory_id": pi.id,
        "status": pi.status.value,
        "adjustments_posted": pi.adjustments_posted,
        "total_adjustment_value": pi.total_adjustment_value,
    }


def get_inventory_summary(db: Session, raw: dict) -> dict:
    p = WarehouseParams(**raw)
    return {"summary": inventory_store.summary(db, warehouse_id=p.warehouse_id)}


def get_discrepancies(db: Session, raw: dict) -> dict:
    p = WarehouseParams(**raw)
    lines = cycle_count.open_discrepancies(db, p.warehouse_id)
    return {
        "count": len(lines),
        "discrepancies": [
            {
                "cycle_count_id": line.cycle_count_id,
                "line_id": line.id,
                "location_id": line.location_id,
                "product_id": line.product_id,
                "system_quantity": line.system_quantity,
                "counted_quantity": line.counted_quantity,
                "variance": line.variance,
                "variance_pct": line.variance_pct,
            }
            for line in lines
        ],
    }


def get_variance_report(db: Session, raw: dict) -> dict:
    p = VarianceReportParams(**raw)
    return {"report": asdict(physical_inventory.variance_review(db, p.physical_inventory_id))}


TOOLS: dict[str, Callable[[Session, dict], dict]] = {
    "adjustInventory": adjust_inventory,
    "transferInventory": transfer_inventory,
    "moveInventory": move_inventory,
    "createCycleCount": create_cycle_count,
    "recordCycleCount": record_cycle_count,
    "approveCycleCount": approve_cycle_count,
    "createPhysicalInventory": create_physical_inventory,
    "generateCountBooks": generate_count_books,
    "recordCountLine": record_count_line,
    "completePhysicalInventory": complete_physical_inventory,
    "getInventorySummary": get_inventory_summary,
    "getDiscrepancies": get_discrepancies,
    "getVarianceReport": get_variance_report,
}


def execute_tool(db: Session, name: str, params: dict | None = None) -> dict:
    tool = TOOLS.get(name)
    if tool is None:
        return {"success": False, "error": "UNKNOWN_TOOL", "message": f"Unknown tool: {name}"}

    try:
        result = tool(db, params or {})
        db.commit()
    except ValidationError as exc:
        db.rollback()
        log.warning("tool %s called with invalid params: %s", name, exc.errors())
        return {"success": False, "error": "INVALID_PARAMS", "message": str(exc)}
    except InventoryEngineError as exc:
        db.rollback()
        log.warning("tool %s rejected: %s (%s)", name, exc, exc.code)
        return {"success": False, "error": exc.code, "message": str(exc), **_plain(exc.details())}

    log.info("tool %s executed", name)
    return {"success": True, **_plain(result)}
