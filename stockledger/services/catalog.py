from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.db.models.models_v1 import Location, Product, Warehouse, Zone
from stockledger.services.errors import RecordNotFoundError


def get_warehouse(db: Session, warehouse_id: int) -> Warehouse:
    wh = db.get(Warehouse, warehouse_id)
    if wh is None:
        raise RecordNotFoundError("Warehouse", warehouse_id)
    return wh


def get_zone(db: Session, zone_id: int) -> Zone:
    zone = db.get(Zone, zone_id)
    if zone is None:
        raise RecordNotFoundError("Zone", zone_id)
    return zone


def get_location(db: Session, location_id: int) -> Location:
    loc = db.get(Location, location_id)
    if loc is None:
        raise RecordNotFoundError("Location", location_id)
    return loc


def get_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise RecordNotFoundError("Product", product_id)
    return product


def unit_cost(product: Product | None) -> Decimal:
    if product is None or product.cost is None:
        return Decimal("0")
    return Decimal(product.cost)


def list_locations(
    db: Session,
    *,
    warehouse_id: int | None = None,
    zone_ids: Iterable[int] | None = None,
    active_only: bool = False,
) -> list[Location]:
    stmt = select(Location).order_by(Location.warehouse_id, Location.code)
    if warehouse_id is not None:
        stmt = stmt.where(Location.warehouse_id == warehouse_id)
    if zone_ids:
        stmt = stmt.where(Location.zone_id.in_(list(zone_ids)))
    if active_only:
        stmt = stmt.where(Location.is_active.is_(True))
    return list(db.execute(stmt).scalars().all())


def list_products(db: Session, *, active_only: bool = False) -> list[Product]:
    stmt = select(Product).order_by(Product.sku)
    if active_only:
        stmt = stmt.where(Product.is_active.is_(True))
    return list(db.execute(stmt).scalars().all())
