from stockledger.services import cycle_count, ledger
from stockledger.services.tools import execute_tool


def test_unknown_tool(db_session):
    result = execute_tool(db_session, "dropTables", {})

    assert result == {"success": False, "error": "UNKNOWN_TOOL", "message": "Unknown tool: dropTables"}


def test_invalid_params_are_reported(db_session):
    result = execute_tool(db_session, "adjustInventory", {"inventory_id": "abc"})

    assert result["success"] is False
    assert result["error"] == "INVALID_PARAMS"


def test_adjust_tool_commits(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 10)

    result = execute_tool(
        db_session,
        "adjustInventory",
        {"inventory_id": record.id, "quantity": -2, "reason": "damaged", "actor_id": "assistant"},
    )

    assert result["success"] is True
    assert result["adjustment"]["quantity_after"] == 8
    assert ledger.net_quantity(db_session, record.id) == 8
    entry = next(ledger.query_entries(db_session, ledger.LedgerFilter(inventory_id=record.id)))
    assert entry.actor_id == "assistant"


def test_engine_errors_come_back_as_data(db_session, make_location, make_product, stock):
    record = stock(make_product("SKU-1"), make_location("A-01"), 1)

    result = execute_tool(db_session, "adjustInventory", {"inventory_id": record.id, "quantity": -5, "reason": "x"})

    assert result["success"] is False
    assert result["error"] == "NEGATIVE_INVENTORY"
    assert (result["record_id"], result["on_hand"], result["delta"]) == (record.id, 1, -5)


def test_cycle_count_round_through_tools(db_session, warehouse, make_location, make_product, stock):
    """
    GIVEN
    - un record de 20

    THEN
    - create, count puis approve via les tools postent l'écart de -2
    """
    # ---------- ARRANGE ----------
    loc = make_location("A-01")
    record = stock(make_product("SKU-1"), loc, 20)

    # ---------- ACT ----------
    created = execute_tool(
        db_session, "createCycleCount", {"warehouse_id": warehouse.id, "location_ids": [loc.id]}
    )

    cc = cycle_count.get_cycle_count(db_session, created["cycle_count_id"])
    cycle_count.start_cycle_count(db_session, cc.id)
    db_session.commit()
    counted = execute_tool(db_session, "recordCycleCount", {"line_id": cc.lines[0].id, "counted_quantity": 18})
    cycle_count.submit_cycle_count(db_session, cc.id)
    db_session.commit()
    approved = execute_tool(db_session, "approveCycleCount", {"cycle_count_id": cc.id})
    summary = execute_tool(db_session, "getInventorySummary", {"warehouse_id": warehouse.id})

    # ---------- ASSERT ----------
    assert created["success"] is True
    assert created["lines"] == 1
    assert counted["variance"] == -2
    assert counted["variance_pct"] == "10.00"
    assert approved["status"] == "COMPLETED"
    assert ledger.net_quantity(db_session, record.id) == 18
    assert summary["summary"]["quantity_on_hand"] == 18
