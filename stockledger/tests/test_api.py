from datetime import date


def test_list_inventory_hides_zero_rows(client, seeded):
    rows = client.get("/v1/inventory", params={"warehouse_id": seeded.warehouse_id}).json()

    assert {r["id"] for r in rows} == {seeded.widget_record_id, seeded.gadget_record_id}
    assert all(r["quantity_on_hand"] == r["quantity_allocated"] + r["quantity_available"] for r in rows)


def test_unknown_record_is_404(client, seeded):
    resp = client.get("/v1/inventory/99999")

    assert resp.status_code == 404
    body = resp.json()
    assert body["error"] == "NOT_FOUND"
    assert body["entity"] == "InventoryRecord"


def test_adjust_and_read_back_the_ledger(client, seeded):
    # ---------- ACT ----------
    resp = client.post(
        f"/v1/inventory/{seeded.widget_record_id}/adjust",
        json={"quantity": -5, "reason": "damaged"},
        headers={"X-Actor-Id": "alice"},
    )

    # ---------- ASSERT ----------
    assert resp.status_code == 200
    assert resp.json()["quantity_after"] == 45

    history = client.get(f"/v1/inventory/{seeded.widget_record_id}/transactions").json()
    assert [e["quantity"] for e in history] == [-5, 50]
    assert history[0]["actor_id"] == "alice"


def test_negative_adjustment_is_400(client, seeded):
    resp = client.post(
        f"/v1/inventory/{seeded.gadget_record_id}/adjust",
        json={"quantity": -21, "reason": "shrink"},
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "NEGATIVE_INVENTORY"
    assert (body["on_hand"], body["delta"]) == (20, -21)


def test_idempotency_key_header(client, seeded):
    """
    GIVEN
    - la même Idempotency-Key envoyée deux fois pour un ajustement, puis pour un transfert

    THEN
    - le second ajustement rejoue le premier résultat
    - le transfert est un conflit 409
    """
    url = f"/v1/inventory/{seeded.widget_record_id}/adjust"
    headers = {"Idempotency-Key": "req-1"}

    first = client.post(url, json={"quantity": 3, "reason": "found"}, headers=headers).json()
    second = client.post(url, json={"quantity": 3, "reason": "found"}, headers=headers).json()
    conflict = client.post(
        "/v1/inventory/transfer",
        json={"inventory_id": seeded.widget_record_id, "to_location_id": seeded.location_ids[2], "quantity": 1},
        headers=headers,
    )

    assert second["replayed"] is True
    assert second["transaction_id"] == first["transaction_id"]
    assert client.get(f"/v1/inventory/{seeded.widget_record_id}").json()["quantity_on_hand"] == 53
    assert conflict.status_code == 409
    assert conflict.json()["error"] == "IDEMPOTENCY_CONFLICT"


def test_transfer_endpoint(client, seeded):
    resp = client.post(
        "/v1/inventory/transfer",
        json={"inventory_id": seeded.widget_record_id, "to_location_id": seeded.location_ids[2], "quantity": 20},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert (body["from_quantity_after"], body["to_quantity_after"]) == (30, 20)
    summary = client.get("/v1/inventory/summary", params={"warehouse_id": seeded.warehouse_id}).json()
    assert summary["quantity_on_hand"] == 70


def test_blind_cycle_count_hides_system_quantity(client, seeded):
    """
    GIVEN
    - un cycle count BLIND

    THEN
    - ses lignes reviennent sans system_quantity tant que le comptage est ouvert
    - la quantité système réapparaît une fois le comptage terminé
    """
    # ---------- ARRANGE ----------
    created = client.post(
        "/v1/cycle-counts",
        json={"warehouse_id": seeded.warehouse_id, "location_ids": [seeded.location_ids[0]], "type": "BLIND"},
    )
    assert created.status_code == 200
    cc = created.json()
    line_id = cc["lines"][0]["id"]

    # ---------- ACT / ASSERT ----------
    assert cc["lines"][0]["system_quantity"] is None
    assert client.post(f"/v1/cycle-counts/{cc['id']}/start").status_code == 200

    counted = client.post(f"/v1/cycle-counts/lines/{line_id}/count", json={"counted_quantity": 48}).json()
    assert counted["system_quantity"] is None
    assert counted["variance"] == -2

    assert client.post(f"/v1/cycle-counts/{cc['id']}/submit").status_code == 200
    approved = client.post(f"/v1/cycle-counts/{cc['id']}/approve", headers={"X-Actor-Id": "supervisor"})
    assert approved.json()["status"] == "COMPLETED"

    detail = client.get(f"/v1/cycle-counts/{cc['id']}").json()
    assert detail["lines"][0]["system_quantity"] == 50
    record = client.get(f"/v1/inventory/{seeded.widget_record_id}").json()
    assert record["quantity_on_hand"] == 48


def test_invalid_transition_is_409(client, seeded):
    cc = client.post(
        "/v1/cycle-counts",
        json={"warehouse_id": seeded.warehouse_id, "location_ids": [seeded.location_ids[0]]},
    ).json()

    resp = client.post(f"/v1/cycle-counts/{cc['id']}/approve")

    assert resp.status_code == 409
    assert resp.json()["error"] == "INVALID_TRANSITION"


def test_empty_scope_is_400(client, seeded):
    resp = client.post(
        "/v1/cycle-counts",
        json={"warehouse_id": seeded.warehouse_id, "location_ids": [seeded.location_ids[2]]},
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "EMPTY_SCOPE"


def test_physical_inventory_counter_view(client, seeded):
    # ---------- ARRANGE ----------
    pi = client.post(
        "/v1/physical-inventories",
        json={"warehouse_id": seeded.warehouse_id, "scheduled_date": date(2026, 10, 31).isoformat(), "blind_count": True},
    ).json()

    # ---------- ACT ----------
    generated = client.post(f"/v1/physical-inventories/{pi['id']}/generate-books").json()
    book = client.get(f"/v1/physical-inventories/books/{generated['books'][0]['id']}").json()

    # ---------- ASSERT ----------
    assert generated["status"] == "SCHEDULED"
    assert generated["total_locations"] == 3
    assert len(book["lines"]) == 3
    for line in book["lines"]:
        assert "system_quantity" not in line
        assert line["expected_quantity"] is None


def test_physical_inventory_completion_over_http(client, seeded):
    # ---------- ARRANGE ----------
    pi = client.post(
        "/v1/physical-inventories",
        json={
            "warehouse_id": seeded.warehouse_id,
            "scheduled_date": "2026-10-31",
            "variance_threshold_qty": 100,
            "variance_threshold_pct": "100",
            "variance_threshold_value": "10000",
        },
    ).json()
    generated = client.post(f"/v1/physical-inventories/{pi['id']}/generate-books").json()
    book_id = generated["books"][0]["id"]
    client.post(f"/v1/physical-inventories/books/{book_id}/assign", json={"assigned_to": "counter-1"})
    assert client.post(f"/v1/physical-inventories/books/{book_id}/start").status_code == 200

    # ---------- ACT ----------
    book = client.get(f"/v1/physical-inventories/books/{book_id}").json()
    for line in book["lines"]:
        qty = line["expected_quantity"]
        if line["product_id"] == seeded.gadget_id:
            qty = 18
        resp = client.post(f"/v1/physical-inventories/lines/{line['id']}/count", json={"counted_quantity": qty})
        assert resp.status_code == 200
    assert client.post(f"/v1/physical-inventories/books/{book_id}/complete").status_code == 200
    completed = client.post(f"/v1/physical-inventories/{pi['id']}/complete")

    # ---------- ASSERT ----------
    assert completed.status_code == 200
    assert completed.json()["adjustments_posted"] == 1
    assert client.get(f"/v1/inventory/{seeded.gadget_record_id}").json()["quantity_on_hand"] == 18
    variances = client.get(f"/v1/physical-inventories/{pi['id']}/variances").json()
    assert [v["variance"] for v in variances["lines"]] == [-2]


def test_move_into_a_held_position_is_409(client, seeded):
    """
    GIVEN
    - une partie du widget transférée en A-03 puis mise en QC_HOLD

    THEN
    - déplacer le reste du widget en A-03 est refusé (POSITION_OCCUPIED)
    - après levée du hold, le move fusionne dans le record de A-03
    """
    # ---------- ARRANGE ----------
    target = seeded.location_ids[2]
    moved = client.post(
        "/v1/inventory/transfer",
        json={"inventory_id": seeded.widget_record_id, "to_location_id": target, "quantity": 10},
    ).json()
    held_id = moved["to_record_id"]
    client.post(f"/v1/inventory/{held_id}/status", json={"status": "QC_HOLD", "reason": "inspection"})

    # ---------- ACT ----------
    refused = client.post(f"/v1/inventory/{seeded.widget_record_id}/move", json={"to_location_id": target})
    client.post(f"/v1/inventory/{held_id}/status", json={"status": "AVAILABLE", "reason": "released"})
    merged = client.post(f"/v1/inventory/{seeded.widget_record_id}/move", json={"to_location_id": target})

    # ---------- ASSERT ----------
    assert refused.status_code == 409
    assert refused.json()["error"] == "POSITION_OCCUPIED"
    assert refused.json()["existing_id"] == held_id
    assert merged.status_code == 200
    assert merged.json()["to_record_id"] == held_id
    assert client.get(f"/v1/inventory/{held_id}").json()["quantity_on_hand"] == 50


def test_tolerance_endpoints(client, seeded):
    created = client.post(
        "/v1/cycle-counts/tolerances",
        json={"warehouse_id": seeded.warehouse_id, "category": "fast", "tolerance_qty": 3, "auto_approve": True},
    )
    assert created.status_code == 201
    tolerance = created.json()
    assert tolerance["category"] == "FAST"

    check = client.post(
        "/v1/cycle-counts/tolerances/check",
        json={"warehouse_id": seeded.warehouse_id, "variance": -2, "velocity_code": "A"},
    ).json()
    assert check["matched_tolerance"]["id"] == tolerance["id"]
    assert check["recommendation"] == "AUTO_APPROVE"

    updated = client.patch(f"/v1/cycle-counts/tolerances/{tolerance['id']}", json={"tolerance_qty": 1}).json()
    assert updated["tolerance_qty"] == 1
    assert client.post(
        "/v1/cycle-counts/tolerances/check", json={"warehouse_id": seeded.warehouse_id, "variance": -2}
    ).json()["recommendation"] == "REVIEW"

    assert client.delete(f"/v1/cycle-counts/tolerances/{tolerance['id']}").status_code == 200
    assert client.get(f"/v1/cycle-counts/tolerances/{tolerance['id']}").status_code == 404
    assert client.get("/v1/cycle-counts/tolerances", params={"warehouse_id": seeded.warehouse_id}).json() == []


def test_physical_inventory_data_entry_over_http(client, seeded):
    # ---------- ARRANGE ----------
    pi = client.post(
        "/v1/physical-inventories",
        json={"warehouse_id": seeded.warehouse_id, "scheduled_date": "2026-10-31", "variance_threshold_qty": 100},
    ).json()
    book_id = client.post(f"/v1/physical-inventories/{pi['id']}/generate-books").json()["books"][0]["id"]
    client.post(
        f"/v1/physical-inventories/{pi['id']}/books/batch-assign",
        json={"assignments": [{"book_id": book_id, "assigned_to": "counter-1", "priority": 2}]},
    )

    # ---------- ACT ----------
    page = client.get(f"/v1/physical-inventories/books/{book_id}/data-entry", params={"page_size": 10}).json()
    entries = [{"line_id": line["id"], "counted_quantity": 0} for line in page["lines"]]
    submitted = client.post(
        f"/v1/physical-inventories/books/{book_id}/data-entry",
        json={"entries": entries},
        headers={"X-Actor-Id": "counter-1"},
    )
    status = client.get(f"/v1/physical-inventories/{pi['id']}/assignment-status").json()
    bumped = client.patch(f"/v1/physical-inventories/books/{book_id}/priority", json={"priority": 1})

    # ---------- ASSERT ----------
    assert page["total_lines"] == 3
    assert submitted.status_code == 200
    assert submitted.json()["counted_lines"] == 3
    assert status["books"][0]["priority"] == 2
    assert status["counter_workload"][0]["counter"] == "counter-1"
    assert bumped.json()["priority"] == 1

    stats = client.get("/v1/physical-inventories/summary/stats", params={"warehouse_id": seeded.warehouse_id}).json()
    assert stats["total"] == 1
    assert stats["by_status"] == {"IN_PROGRESS": 1}
