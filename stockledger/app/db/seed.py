from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from stockledger.app.db.session import SessionLocal
from stockledger.app.db.models.models_v1 import Location, Product, Warehouse, Zone
from stockledger.app.db.models.core_types import LocationType
from stockledger.app.settings import settings
from stockledger.services import operator


def run_seed():
    db = SessionLocal()
    try:
        # 1) Warehouse "MAIN"
        wh = db.scalar(select(Warehouse).where(Warehouse.code == "MAIN"))
        if not wh:
            wh = Warehouse(code="MAIN", name="Main warehouse", timezone="UTC", active=True)
            db.add(wh)
            db.commit()

        # 2) Zones + locations (allées A/B, 4 bays, 2 niveaux)
        for zone_code, aisle in (("Z1", "A"), ("Z2", "B")):
            zone = db.scalar(select(Zone).where(Zone.warehouse_id == wh.id, Zone.code == zone_code))
            if not zone:
                zone = Zone(warehouse_id=wh.id, code=zone_code, name=f"Zone {zone_code}")
                db.add(zone)
                db.flush()
            for bay in range(1, 5):
                for level in ("1", "2"):
                    code = f"{aisle}-{bay:02d}-{level}"
                    if db.scalar(select(Location).where(Location.warehouse_id == wh.id, Location.code == code)):
                        continue
                    db.add(
                        Location(
                            warehouse_id=wh.id,
                            zone_id=zone.id,
                            code=code,
                            type=LocationType.pick if level == "1" else LocationType.reserve,
                            aisle=aisle,
                            bay=f"{bay:02d}",
                            level=level,
                        )
                    )
        db.commit()

        # 3) Produits
        demo = [
            ("SKU-1001", "Widget", Decimal("2.50"), "A", 20),
            ("SKU-1002", "Gadget", Decimal("12.00"), "B", 10),
            ("SKU-1003", "Gizmo", Decimal("48.75"), "C", None),
        ]
        for sku, name, cost, velocity, reorder in demo:
            if not db.scalar(select(Product).where(Product.sku == sku)):
                db.add(Product(sku=sku, name=name, cost=cost, velocity_code=velocity, reorder_point=reorder))
        db.commit()

        # 4) Stock initial, posté via l'operator pour que le ledger soit complet
        locations = db.scalars(
            select(Location).where(Location.warehouse_id == wh.id).order_by(Location.code)
        ).all()
        products = db.scalars(select(Product).order_by(Product.sku)).all()
        for i, product in enumerate(products):
            loc = locations[i]
            operator.receive(
                db,
                product_id=product.id,
                location_id=loc.id,
                quantity=100,
                actor_id=settings.SYSTEM_ACTOR_ID,
                reference_number="OPENING",
                idempotency_key=f"seed-opening-{product.sku}",
            )
        db.commit()

        print(f"SEED OK: warehouse={wh.code}, locations={len(locations)}, products={len(products)}")
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()
