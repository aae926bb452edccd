import pytest

from stockledger.app.db.models.core_types import TransactionType
from stockledger.app.db.models.models_v1 import InventoryTransaction
from stockledger.services import ledger, operator
from stockledger.services.errors import InvalidQuantityError, LedgerImmutableError

TEST_ACTOR = "tester"


def test_net_quantity_replays_to_on_hand(db_session, make_location, make_product, stock):
    """
    GIVEN
    - une réception, deux ajustements, une allocation et un transfert sortant

    THEN
    - la somme des deltas du ledger pour le record égale son on-hand
    """
    # ---------- ARRANGE ----------
    a = make_location("A-01")
    b = make_location("A-02")
    record = stock(make_product("SKU-1"), a, 40)

    # ---------- ACT ----------
    operator.adjust(db_session, record.id, -4, "damaged", actor_id=TEST_ACTOR)
    operator.adjust(db_session, record.id, 9, "found", actor_id=TEST_ACTOR)
    operator.allocate(db_session, record.id, 5, actor_id=TEST_ACTOR)
    result = operator.transfer(db_session, record.id, b.id, 10, actor_id=TEST_ACTOR)
    db_session.commit()

    # ---------- ASSERT ----------
    db_session.refresh(record)
    assert record.quantity_on_hand == 35
    assert ledger.net_quantity(db_session, record.id) == 35
    assert ledger.net_quantity(db_session, result.to_record_id) == 10


def test_append_entry_rejects_inconsistent_delta(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 5)

    with pytest.raises(InvalidQuantityError):
        ledger.append_entry(
            db_session,
            transaction_type=TransactionType.adjust_in,
            inventory_id=record.id,
            product_id=record.product_id,
            location_id=record.location_id,
            quantity=3,
            quantity_before=5,
            quantity_after=9,
            reference_type="ADJUSTMENT",
            correlation_id="x",
            actor_id=TEST_ACTOR,
        )


def test_entries_cannot_be_updated(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 5)
    entry = next(ledger.query_entries(db_session, ledger.LedgerFilter(inventory_id=record.id)))

    entry.reason = "rewritten"
    with pytest.raises(LedgerImmutableError) as exc:
        db_session.flush()
    db_session.rollback()

    assert exc.value.action == "updated"
    assert db_session.get(InventoryTransaction, entry.id).reason is None


def test_entries_cannot_be_deleted(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 5)
    entry = next(ledger.query_entries(db_session, ledger.LedgerFilter(inventory_id=record.id)))

    db_session.delete(entry)
    with pytest.raises(LedgerImmutableError):
        db_session.flush()
    db_session.rollback()

    assert ledger.net_quantity(db_session, record.id) == 5


def test_query_entries_filters_and_orders_newest_first(db_session, make_location, make_product, stock):
    # ---------- ARRANGE ----------
    loc = make_location("A-01")
    first = stock(make_product("SKU-1"), loc, 10)
    second = stock(make_product("SKU-2"), loc, 20)
    operator.adjust(db_session, first.id, -1, "count", actor_id="alice")
    db_session.commit()

    # ---------- ACT ----------
    everything = list(ledger.query_entries(db_session))
    for_first = list(ledger.query_entries(db_session, ledger.LedgerFilter(inventory_id=first.id)))
    by_alice = list(ledger.query_entries(db_session, ledger.LedgerFilter(actor_id="alice")))
    receipts = list(
        ledger.query_entries(db_session, ledger.LedgerFilter(transaction_type=TransactionType.receive, limit=1))
    )

    # ---------- ASSERT ----------
    assert len(everything) == 3
    assert [e.inventory_id for e in for_first] == [first.id, first.id]
    assert for_first[0].transaction_type == TransactionType.adjust_out
    assert [e.quantity for e in by_alice] == [-1]
    assert len(receipts) == 1
    assert receipts[0].inventory_id == second.id


def test_transfer_entries_share_a_correlation_id(db_session, make_location, make_product, stock):
    a = make_location("A-01")
    b = make_location("A-02")
    record = stock(make_product("SKU-1"), a, 10)

    result = operator.transfer(db_session, record.id, b.id, 4, actor_id=TEST_ACTOR)
    db_session.commit()

    entries = ledger.entries_for_correlation(db_session, result.correlation_id)
    assert [e.id for e in entries] == result.transaction_ids
    assert [e.quantity for e in entries] == [-4, 4]
    assert [e.location_id for e in entries] == [a.id, b.id]
    assert all(e.transaction_type == TransactionType.transfer for e in entries)
