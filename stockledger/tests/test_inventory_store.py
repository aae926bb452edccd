import pytest

from stockledger.app.db.models.core_types import InventoryStatus
from stockledger.services import inventory_store as store
from stockledger.services import operator
from stockledger.services.errors import InvalidQuantityError, RecordNotFoundError

TEST_ACTOR = "tester"


def test_find_or_create_record_starts_at_zero(db_session, make_location, make_product, warehouse):
    # ---------- ARRANGE ----------
    loc = make_location("A-01")
    product = make_product("SKU-1")

    # ---------- ACT ----------
    record = store.find_or_create_record(db_session, product_id=product.id, location_id=loc.id, lot_number="L1")
    again = store.find_or_create_record(db_session, product_id=product.id, location_id=loc.id, lot_number="L1")

    # ---------- ASSERT ----------
    assert again.id == record.id
    assert record.warehouse_id == warehouse.id
    assert (record.quantity_on_hand, record.quantity_allocated, record.quantity_available) == (0, 0, 0)
    assert record.status == InventoryStatus.available


def test_lot_is_part_of_the_identity(db_session, make_location, make_product, stock):
    loc = make_location("A-01")
    product = make_product("SKU-1")
    plain = stock(product, loc, 5)
    lotted = stock(product, loc, 7, lot_number="L1")

    assert plain.id != lotted.id
    assert store.get_record(db_session, product.id, loc.id).id == plain.id
    assert store.get_record(db_session, product.id, loc.id, "L1").id == lotted.id
    assert store.get_record(db_session, product.id, loc.id, "L2") is None


def test_find_or_create_record_rejects_unknown_location(db_session, make_product):
    product = make_product("SKU-1")

    with pytest.raises(RecordNotFoundError) as exc:
        store.find_or_create_record(db_session, product_id=product.id, location_id=999)

    assert exc.value.entity == "Location"


def test_set_quantities_keeps_the_record_balanced(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 10)

    with pytest.raises(InvalidQuantityError):
        store.set_quantities(record, 10, 3, 6)
    with pytest.raises(InvalidQuantityError):
        store.set_quantities(record, -1, 0, -1)

    store.set_quantities(record, 10, 4, 6)
    assert (record.quantity_on_hand, record.quantity_allocated, record.quantity_available) == (10, 4, 6)


def test_zero_records_are_kept_but_hidden(db_session, make_location, make_product, stock, warehouse):
    """
    GIVEN
    - un record ramené à zéro par un ajustement

    THEN
    - la ligne existe toujours (son historique de ledger y est rattaché)
    - list_records l'exclut sauf avec include_zero
    """
    record = stock(make_product("SKU-1"), make_location("A-01"), 3)
    operator.adjust(db_session, record.id, -3, "shrink", actor_id=TEST_ACTOR)
    db_session.commit()

    assert store.get_record_by_id(db_session, record.id).quantity_on_hand == 0
    assert store.list_records(db_session, warehouse_id=warehouse.id) == []
    assert [r.id for r in store.list_records(db_session, warehouse_id=warehouse.id, include_zero=True)] == [record.id]


def test_lock_records_reports_missing_ids(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 3)

    locked = store.lock_records(db_session, [record.id, record.id])
    assert list(locked) == [record.id]

    with pytest.raises(RecordNotFoundError):
        store.lock_records(db_session, [record.id, 12345])


def test_summary_counts_low_stock(db_session, make_location, make_product, stock, warehouse):
    # ---------- ARRANGE ----------
    loc_a = make_location("A-01")
    loc_b = make_location("A-02")
    reordered = make_product("SKU-1", reorder_point=20)
    plain = make_product("SKU-2")
    stock(reordered, loc_a, 15)  # sous son reorder point
    stock(plain, loc_a, 8)  # sous le seuil par défaut de 10
    stock(plain, loc_b, 40)

    # ---------- ACT ----------
    summary = store.summary(db_session, warehouse_id=warehouse.id)

    # ---------- ASSERT ----------
    assert summary["total_records"] == 3
    assert summary["total_products"] == 2
    assert summary["total_locations"] == 2
    assert summary["quantity_on_hand"] == 63
    assert summary["quantity_available"] == 63
    assert summary["low_stock"] == 2
    assert summary["by_status"] == {"AVAILABLE": 3}
