from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_db
from stockledger.services import catalog

router = APIRouter(prefix="/locations")


@router.get("")
def list_locations(
    warehouse_id: int | None = None,
    zone_id: int | None = None,
    active_only: bool = False,
    db: Session = Depends(get_db),
):
    rows = catalog.list_locations(
        db,
        warehouse_id=warehouse_id,
        zone_ids=[zone_id] if zone_id is not None else None,
        active_only=active_only,
    )
    return [
        {
            "id": l.id,
            "warehouse_id": l.warehouse_id,
            "zone_id": l.zone_id,
            "code": l.code,
            "type": l.type,
            "aisle": l.aisle,
            "bay": l.bay,
            "level": l.level,
            "is_active": l.is_active,
            "last_count_date": l.last_count_date,
        }
        for l in rows
    ]


@router.get("/{location_id}")
def get_location(location_id: int, db: Session = Depends(get_db)):
    l = catalog.get_location(db, location_id)
    return {
        "id": l.id,
        "warehouse_id": l.warehouse_id,
        "zone_id": l.zone_id,
        "code": l.code,
        "type": l.type,
        "is_active": l.is_active,
        "last_count_date": l.last_count_date,
    }
