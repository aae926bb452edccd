import os

# settings lus à l'import: les tests ne touchent jamais une vraie DB
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from stockledger.app.api.deps import get_db  # noqa: E402
from stockledger.app.db.base import Base  # noqa: E402
from stockledger.app.db.models.core_types import LocationType  # noqa: E402
from stockledger.app.db.models.models_v1 import (  # noqa: E402
    InventoryRecord,
    Location,
    Product,
    Warehouse,
    Zone,
)
from stockledger.app.db.session import enable_sqlite_savepoints  # noqa: E402
from stockledger.app.main import app  # noqa: E402
from stockledger.services import events, operator  # noqa: E402

TEST_ACTOR = "tester"


@pytest.fixture(scope="function")
def engine():
    """
    Une base SQLite en mémoire par test.

    StaticPool garde l'unique connexion ouverte: chaque session du test voit
    le même schéma et les mêmes données.
    """
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------- catalog factories ----------
@pytest.fixture
def warehouse(db_session):
    wh = Warehouse(code="WH1", name="Test warehouse", timezone="UTC", active=True)
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture
def zone(db_session, warehouse):
    z = Zone(warehouse_id=warehouse.id, code="Z1", name="Zone 1")
    db_session.add(z)
    db_session.commit()
    return z


@pytest.fixture
def make_location(db_session, warehouse):
    def _make(
        code: str,
        *,
        zone=None,
        type: LocationType = LocationType.pick,
        aisle: str | None = None,
        bay: str | None = None,
        level: str | None = None,
        is_active: bool = True,
        commit: bool = True,
    ) -> Location:
        loc = Location(
            warehouse_id=warehouse.id,
            zone_id=zone.id if zone is not None else None,
            code=code,
            type=type,
            aisle=aisle,
            bay=bay,
            level=level,
            is_active=is_active,
        )
        db_session.add(loc)
        if commit:
            db_session.commit()
        else:
            db_session.flush()
        return loc

    return _make


@pytest.fixture
def make_product(db_session):
    def _make(
        sku: str,
        *,
        cost: Decimal = Decimal("2.00"),
        velocity_code: str | None = None,
        reorder_point: int | None = None,
    ) -> Product:
        product = Product(
            sku=sku,
            name=f"Product {sku}",
            cost=cost,
            velocity_code=velocity_code,
            reorder_point=reorder_point,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def stock(db_session):
    """Met des unités en stock via l'operator et renvoie le record."""

    def _stock(product, location, quantity: int, *, lot_number: str | None = None) -> InventoryRecord:
        result = operator.receive(
            db_session,
            product_id=product.id,
            location_id=location.id,
            quantity=quantity,
            actor_id=TEST_ACTOR,
            lot_number=lot_number,
        )
        db_session.commit()
        return db_session.get(InventoryRecord, result.record_id)

    return _stock


@pytest.fixture
def published():
    """Événements remis aux abonnés, dans l'ordre."""
    seen = []
    events.subscribe(seen.append)
    try:
        yield seen
    finally:
        events.unsubscribe(seen.append)


# ---------- API ----------
@pytest.fixture
def seeded(session_factory):
    """
    Petit jeu de données commité pour les tests API, renvoyé en ids.

    La session est fermée avant le test: les sessions de l'API ne partagent
    jamais une transaction ouverte avec elle.
    """
    db = session_factory()
    try:
        wh = Warehouse(code="WH1", name="Test warehouse")
        db.add(wh)
        db.flush()
        z = Zone(warehouse_id=wh.id, code="Z1", name="Zone 1")
        db.add(z)
        db.flush()
        locs = [
            Location(warehouse_id=wh.id, zone_id=z.id, code=code, type=LocationType.pick, aisle="A", bay=bay, level="1")
            for code, bay in (("A-01-1", "01"), ("A-02-1", "02"), ("A-03-1", "03"))
        ]
        db.add_all(locs)
        widget = Product(sku="SKU-1", name="Widget", cost=Decimal("2.00"), velocity_code="A")
        gadget = Product(sku="SKU-2", name="Gadget", cost=Decimal("10.00"), velocity_code="B")
        db.add_all([widget, gadget])
        db.flush()

        r1 = operator.receive(
            db, product_id=widget.id, location_id=locs[0].id, quantity=50, actor_id=TEST_ACTOR
        )
        r2 = operator.receive(
            db, product_id=gadget.id, location_id=locs[1].id, quantity=20, actor_id=TEST_ACTOR
        )
        db.commit()

        return SimpleNamespace(
            warehouse_id=wh.id,
            zone_id=z.id,
            location_ids=[loc.id for loc in locs],
            widget_id=widget.id,
            gadget_id=gadget.id,
            widget_record_id=r1.record_id,
            gadget_record_id=r2.record_id,
        )
    finally:
        db.close()


@pytest.fixture
def client(session_factory):
    def _get_test_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_test_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
