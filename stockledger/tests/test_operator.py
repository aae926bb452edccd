import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from stockledger.app.db.models.core_types import EventKind, InventoryStatus, TransactionType
from stockledger.app.db.models.models_v1 import InventoryRecord, InventoryTransaction, OperationKey
from stockledger.services import events, ledger, operator
from stockledger.services import inventory_store as store
from stockledger.services.errors import (
    HasAllocationError,
    IdempotencyConflictError,
    InsufficientAvailableError,
    InvalidQuantityError,
    InvalidTransitionError,
    NegativeInventoryError,
    PositionOccupiedError,
    RecordNotFoundError,
)

TEST_ACTOR = "tester"


def _entry_count(db) -> int:
    return db.execute(select(func.count(InventoryTransaction.id))).scalar_one()


# ---------- adjust ----------
def test_adjust_writes_quantities_and_one_entry(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 50)

    result = operator.adjust(db_session, record.id, -5, "damaged", actor_id=TEST_ACTOR)
    db_session.commit()

    db_session.refresh(record)
    assert (record.quantity_on_hand, record.quantity_allocated, record.quantity_available) == (45, 0, 45)
    assert (result.quantity_before, result.quantity_after, result.delta) == (50, 45, -5)

    entry = db_session.get(InventoryTransaction, result.transaction_id)
    assert entry.transaction_type == TransactionType.adjust_out
    assert (entry.quantity, entry.quantity_before, entry.quantity_after) == (-5, 50, 45)
    assert entry.reason == "damaged"
    assert entry.actor_id == TEST_ACTOR
    assert entry.correlation_id == result.correlation_id


def test_adjust_below_zero_is_rejected(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 3)
    before = _entry_count(db_session)

    with pytest.raises(NegativeInventoryError) as exc:
        operator.adjust(db_session, record.id, -4, "shrink", actor_id=TEST_ACTOR)

    assert (exc.value.on_hand, exc.value.delta) == (3, -4)
    assert store.get_record_by_id(db_session, record.id).quantity_on_hand == 3
    assert _entry_count(db_session) == before


def test_adjust_cannot_eat_into_allocated_stock(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 10)
    operator.allocate(db_session, record.id, 8, actor_id=TEST_ACTOR)
    db_session.commit()

    with pytest.raises(InvalidQuantityError):
        operator.adjust(db_session, record.id, -3, "shrink", actor_id=TEST_ACTOR)

    operator.adjust(db_session, record.id, -2, "shrink", actor_id=TEST_ACTOR)
    db_session.commit()
    db_session.refresh(record)
    assert (record.quantity_on_hand, record.quantity_allocated, record.quantity_available) == (8, 8, 0)


def test_zero_adjustment_is_rejected(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 3)

    with pytest.raises(InvalidQuantityError):
        operator.adjust(db_session, record.id, 0, "nothing", actor_id=TEST_ACTOR)


def test_adjust_unknown_record(db_session):
    with pytest.raises(RecordNotFoundError):
        operator.adjust(db_session, 404, 1, "found", actor_id=TEST_ACTOR)


# ---------- transfer ----------
def test_transfer_creates_destination_and_balances(db_session, make_location, make_product, stock):
    # ---------- ARRANGE ----------
    a = make_location("A-01")
    b = make_location("A-02")
    src = stock(make_product("SKU-1"), a, 30, lot_number="L1")

    # ---------- ACT ----------
    result = operator.transfer(db_session, src.id, b.id, 12, actor_id=TEST_ACTOR, reason="replenish")
    db_session.commit()

    # ---------- ASSERT ----------
    dst = store.get_record_by_id(db_session, result.to_record_id)
    db_session.refresh(src)
    assert src.quantity_on_hand == 18
    assert dst.quantity_on_hand == 12
    assert dst.location_id == b.id
    assert dst.lot_number == "L1"
    assert (result.from_quantity_after, result.to_quantity_after) == (18, 12)


def test_transfer_into_existing_record(db_session, make_location, make_product, stock):
    a = make_location("A-01")
    b = make_location("A-02")
    product = make_product("SKU-1")
    src = stock(product, a, 10)
    dst = stock(product, b, 5)

    result = operator.transfer(db_session, src.id, b.id, 10, actor_id=TEST_ACTOR)
    db_session.commit()

    assert result.to_record_id == dst.id
    db_session.refresh(dst)
    assert dst.quantity_on_hand == 15


def test_transfer_needs_available_stock(db_session, make_location, make_product, stock):
    a = make_location("A-01")
    b = make_location("A-02")
    src = stock(make_product("SKU-1"), a, 10)
    operator.allocate(db_session, src.id, 6, actor_id=TEST_ACTOR)
    db_session.commit()

    with pytest.raises(InsufficientAvailableError) as exc:
        operator.transfer(db_session, src.id, b.id, 5, actor_id=TEST_ACTOR)

    assert (exc.value.available, exc.value.requested) == (4, 5)


def test_transfer_to_same_location_is_rejected(db_session, make_location, make_product, stock):
    a = make_location("A-01")
    src = stock(make_product("SKU-1"), a, 10)

    with pytest.raises(InvalidQuantityError):
        operator.transfer(db_session, src.id, a.id, 1, actor_id=TEST_ACTOR)


def test_transfer_is_all_or_nothing(db_session, make_location, make_product, stock, monkeypatch):
    """
    GIVEN
    - le côté destination échoue après la décrémentation de la source

    THEN
    - la quantité source et le ledger sont exactement comme avant
    - la session reste utilisable
    """
    # ---------- ARRANGE ----------
    a = make_location("A-01")
    b = make_location("A-02")
    src = stock(make_product("SKU-1"), a, 20)
    entries_before = _entry_count(db_session)

    def broken_destination(*args, **kwargs):
        raise RuntimeError("destination write failed")

    monkeypatch.setattr(store, "find_or_create_record", broken_destination)

    # ---------- ACT ----------
    with pytest.raises(RuntimeError):
        operator.transfer(db_session, src.id, b.id, 5, actor_id=TEST_ACTOR)
    db_session.commit()

    # ---------- ASSERT ----------
    db_session.refresh(src)
    assert src.quantity_on_hand == 20
    assert src.quantity_available == 20
    assert _entry_count(db_session) == entries_before
    assert store.get_record(db_session, src.product_id, b.id) is None


# ---------- move ----------
def test_move_relocates_the_whole_record(db_session, make_location, make_product, stock):
    a = make_location("A-01")
    b = make_location("B-01")
    record = stock(make_product("SKU-1"), a, 24)

    result = operator.move(db_session, record.id, b.id, actor_id=TEST_ACTOR)
    db_session.commit()

    db_session.refresh(record)
    assert record.location_id == b.id
    assert record.quantity_on_hand == 24
    entries = ledger.entries_for_correlation(db_session, result.correlation_id)
    assert [(e.location_id, e.quantity) for e in entries] == [(a.id, -24), (b.id, 24)]
    assert ledger.net_quantity(db_session, record.id) == 24


def test_move_refuses_allocated_records(db_session, make_location, make_product, stock):
    a = make_location("A-01")
    b = make_location("B-01")
    record = stock(make_product("SKU-1"), a, 24)
    operator.allocate(db_session, record.id, 1, actor_id=TEST_ACTOR)
    db_session.commit()

    with pytest.raises(HasAllocationError):
        operator.move(db_session, record.id, b.id, actor_id=TEST_ACTOR)

    db_session.refresh(record)
    assert record.location_id == a.id



def test_move_merges_into_the_position_already_at_destination(db_session, make_location, make_product, stock):
    """
    GIVEN le même produit à A (10) et à B (5), même status
    WHEN on move le record de A vers B
    THEN les unités rejoignent le record de B, la source reste vide à A
    """
    a = make_location("A-01")
    b = make_location("B-01")
    product = make_product("SKU-1")
    source = stock(product, a, 10)
    target = stock(product, b, 5)

    result = operator.move(db_session, source.id, b.id, actor_id=TEST_ACTOR)
    db_session.commit()

    db_session.refresh(source)
    db_session.refresh(target)
    assert result.to_record_id == target.id
    assert (source.location_id, source.quantity_on_hand) == (a.id, 0)
    assert (target.quantity_on_hand, target.quantity_available) == (15, 15)
    assert [r.id for r in store.list_records(db_session, location_ids=[b.id], include_zero=True)] == [target.id]

    entries = ledger.entries_for_correlation(db_session, result.correlation_id)
    assert [(e.inventory_id, e.quantity, e.quantity_before, e.quantity_after) for e in entries] == [
        (source.id, -10, 10, 0),
        (target.id, 10, 5, 15),
    ]
    assert ledger.net_quantity(db_session, source.id) == 0
    assert ledger.net_quantity(db_session, target.id) == 15


def test_move_refuses_a_position_held_with_another_status(db_session, make_location, make_product, stock):
    a = make_location("A-01")
    b = make_location("B-01")
    product = make_product("SKU-1")
    source = stock(product, a, 10)
    held = stock(product, b, 5)
    operator.set_status(db_session, held.id, InventoryStatus.qc_hold, "inspection", actor_id=TEST_ACTOR)
    db_session.commit()
    entries_before = _entry_count(db_session)

    with pytest.raises(PositionOccupiedError) as exc:
        operator.move(db_session, source.id, b.id, actor_id=TEST_ACTOR)

    assert exc.value.existing_id == held.id
    db_session.refresh(source)
    assert (source.location_id, source.quantity_on_hand) == (a.id, 10)
    assert _entry_count(db_session) == entries_before


# ---------- position identity ----------
def test_identity_index_rejects_a_second_row_for_the_same_position(db_session, make_location, make_product, stock):
    loc = make_location("A-01")
    product = make_product("SKU-1")
    stock(product, loc, 3)

    db_session.add(
        InventoryRecord(
            product_id=product.id,
            location_id=loc.id,
            warehouse_id=loc.warehouse_id,
            quantity_on_hand=0,
            quantity_allocated=0,
            quantity_available=0,
            status=InventoryStatus.available,
        )
    )
    with pytest.raises(IntegrityError):
        db_session.flush()
    db_session.rollback()


def test_find_or_create_rereads_a_position_inserted_concurrently(
    db_session, make_location, make_product, stock, monkeypatch
):
    """
    GIVEN une position créée par une autre transaction après notre lecture
    WHEN find_or_create_record tente l'insert
    THEN l'index unique le rejette et la ligne existante est renvoyée
    """
    loc = make_location("A-01")
    product = make_product("SKU-1")
    existing = stock(product, loc, 4)

    real_lock_position = store._lock_position
    calls = []

    def stale_first_read(*args):
        calls.append(args)
        if len(calls) == 1:
            return None
        return real_lock_position(*args)

    monkeypatch.setattr(store, "_lock_position", stale_first_read)

    record = store.find_or_create_record(db_session, product_id=product.id, location_id=loc.id)
    db_session.commit()

    assert record.id == existing.id
    assert len(calls) == 2
    assert [r.id for r in store.list_records(db_session, location_ids=[loc.id], include_zero=True)] == [existing.id]


def test_transfer_locks_source_and_destination_in_one_statement(
    db_session, make_location, make_product, stock, monkeypatch
):
    a = make_location("A-01")
    b = make_location("B-01")
    product = make_product("SKU-1")
    src = stock(product, a, 20)
    dst = stock(product, b, 5)

    real_lock_records = store.lock_records
    locked = []

    def spy(db, ids):
        ids = sorted(ids)
        locked.append(ids)
        return real_lock_records(db, ids)

    monkeypatch.setattr(store, "lock_records", spy)

    result = operator.transfer(db_session, src.id, b.id, 5, actor_id=TEST_ACTOR)
    db_session.commit()

    assert locked == [sorted([src.id, dst.id])]
    assert result.to_record_id == dst.id
    assert (result.from_quantity_after, result.to_quantity_after) == (15, 10)


# ---------- status & allocation ----------
def test_set_status_records_a_zero_quantity_entry(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 7)

    result = operator.set_status(db_session, record.id, InventoryStatus.qc_hold, "inspection", actor_id=TEST_ACTOR)
    db_session.commit()

    assert (result.previous_status, result.new_status) == ("AVAILABLE", "QC_HOLD")
    entry = db_session.get(InventoryTransaction, result.transaction_id)
    assert entry.transaction_type == TransactionType.status_change
    assert entry.quantity == 0
    assert entry.notes == "AVAILABLE -> QC_HOLD"

    with pytest.raises(InvalidTransitionError):
        operator.set_status(db_session, record.id, "QC_HOLD", "again", actor_id=TEST_ACTOR)


def test_allocate_and_deallocate(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 10)

    allocated = operator.allocate(db_session, record.id, 7, actor_id=TEST_ACTOR, reference_id="SO-1")
    released = operator.deallocate(db_session, record.id, 3, actor_id=TEST_ACTOR, reference_id="SO-1")
    db_session.commit()

    assert (allocated.quantity_allocated, allocated.quantity_available) == (7, 3)
    assert (released.quantity_allocated, released.quantity_available) == (4, 6)
    with pytest.raises(InsufficientAvailableError):
        operator.allocate(db_session, record.id, 7, actor_id=TEST_ACTOR)
    with pytest.raises(InvalidQuantityError):
        operator.deallocate(db_session, record.id, 5, actor_id=TEST_ACTOR)
    assert ledger.net_quantity(db_session, record.id) == 10


# ---------- idempotency ----------
def test_same_key_replays_the_first_result(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 50)

    first = operator.adjust(db_session, record.id, -5, "damaged", actor_id=TEST_ACTOR, idempotency_key="key-1")
    db_session.commit()
    second = operator.adjust(db_session, record.id, -5, "damaged", actor_id=TEST_ACTOR, idempotency_key="key-1")
    db_session.commit()

    assert first.replayed is False
    assert second.replayed is True
    assert second.transaction_id == first.transaction_id
    assert second.correlation_id == first.correlation_id
    db_session.refresh(record)
    assert record.quantity_on_hand == 45
    assert ledger.net_quantity(db_session, record.id) == 45


def test_key_reused_for_another_operation_conflicts(db_session, make_location, make_product, stock):
    a = make_location("A-01")
    b = make_location("A-02")
    record = stock(make_product("SKU-1"), a, 50)
    operator.adjust(db_session, record.id, 1, "found", actor_id=TEST_ACTOR, idempotency_key="key-1")
    db_session.commit()

    with pytest.raises(IdempotencyConflictError) as exc:
        operator.transfer(db_session, record.id, b.id, 5, actor_id=TEST_ACTOR, idempotency_key="key-1")

    assert exc.value.existing_operation == "adjust"


def test_failed_operation_does_not_burn_the_key(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 2)

    with pytest.raises(NegativeInventoryError):
        operator.adjust(db_session, record.id, -5, "shrink", actor_id=TEST_ACTOR, idempotency_key="key-2")
    db_session.commit()

    assert db_session.execute(select(OperationKey).where(OperationKey.idempotency_key == "key-2")).first() is None
    result = operator.adjust(db_session, record.id, -2, "shrink", actor_id=TEST_ACTOR, idempotency_key="key-2")
    assert result.replayed is False


# ---------- events ----------
def test_events_are_published_after_commit(db_session, make_location, make_product, stock, published):
    record = stock(make_product("SKU-1"), make_location("A-01"), 50)
    published.clear()

    operator.adjust(db_session, record.id, -5, "damaged", actor_id=TEST_ACTOR)
    assert published == []
    assert [e.kind for e in events.pending(db_session)] == [EventKind.adjustment_posted]

    db_session.commit()

    assert [e.kind for e in published] == [EventKind.adjustment_posted]
    evt = published[0]
    assert (evt.inventory_id, evt.quantity_before, evt.quantity_after) == (record.id, 50, 45)
    assert evt.reference_type == "ADJUSTMENT"


def test_events_are_dropped_on_rollback(db_session, make_location, make_product, stock, published):
    record = stock(make_product("SKU-1"), make_location("A-01"), 50)
    published.clear()

    operator.adjust(db_session, record.id, -5, "damaged", actor_id=TEST_ACTOR)
    db_session.rollback()
    db_session.commit()

    assert published == []
    assert events.pending(db_session) == []


def test_failed_operation_queues_nothing(db_session, make_location, make_product, stock, published):
    record = stock(make_product("SKU-1"), make_location("A-01"), 5)
    published.clear()

    operator.adjust(db_session, record.id, 1, "found", actor_id=TEST_ACTOR)
    with pytest.raises(NegativeInventoryError):
        operator.adjust(db_session, record.id, -10, "shrink", actor_id=TEST_ACTOR)
    db_session.commit()

    assert [e.quantity_after for e in published] == [6]


def test_low_stock_fires_when_crossing_the_reorder_point(db_session, make_location, make_product, stock, published):
    record = stock(make_product("SKU-1", reorder_point=10), make_location("A-01"), 12)
    published.clear()

    operator.adjust(db_session, record.id, -3, "pick", actor_id=TEST_ACTOR)  # 12 -> 9 franchit le seuil
    operator.adjust(db_session, record.id, -1, "pick", actor_id=TEST_ACTOR)  # 9 -> 8 déjà dessous
    db_session.commit()

    kinds = [e.kind for e in published]
    assert kinds.count(EventKind.low_stock) == 1
    assert kinds.count(EventKind.adjustment_posted) == 2
