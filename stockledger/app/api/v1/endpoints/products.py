from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_db
from stockledger.services import catalog

router = APIRouter(prefix="/products")


def _product_dict(p) -> dict:
    return {
        "id": p.id,
        "sku": p.sku,
        "name": p.name,
        "uom": p.uom,
        "barcode": p.barcode,
        "cost": p.cost,
        "velocity_code": p.velocity_code,
        "reorder_point": p.reorder_point,
        "is_active": p.is_active,
    }


@router.get("")
def list_products(active_only: bool = False, db: Session = Depends(get_db)):
    return [_product_dict(p) for p in catalog.list_products(db, active_only=active_only)]


@router.get("/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    return _product_dict(catalog.get_product(db, product_id))
