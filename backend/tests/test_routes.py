"""
HTTP surface tests: identity headers, role checks, drawer gate and the
status codes of the settlement endpoints.
"""

from conftest import CASHIER_ID, MANAGER_ID, RIDER_ID, actor_headers


def test_health(client, db_session):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json["status"] in ("healthy", "degraded")
    assert "database" in response.json["checks"]


def test_missing_identity_is_401(client, db_session, products):
    response = client.post("/api/orders", json={"lines": []})
    assert response.status_code == 401

    response = client.post("/api/orders", json={"lines": []}, headers={"X-Actor-Id": "2", "X-Actor-Role": "GUEST"})
    assert response.status_code == 401


def test_wrong_role_is_403(client, db_session):
    response = client.post(
        "/api/shifts",
        json={"cashier_id": CASHIER_ID, "opening_float": "1000.00"},
        headers=actor_headers(CASHIER_ID, "CASHIER"),
    )
    assert response.status_code == 403
    assert response.json["required_roles"] == ["STORE_MANAGER"]


def test_admin_passes_role_checks(client, db_session):
    response = client.post(
        "/api/shifts",
        json={"cashier_id": CASHIER_ID, "opening_float": "1000.00"},
        headers=actor_headers(MANAGER_ID, "ADMIN"),
    )
    assert response.status_code == 201
    assert response.json["created"] is True


def test_create_and_settle_order_over_http(client, db_session, products, open_shift):
    headers = actor_headers(CASHIER_ID, "CASHIER", open_shift.id)
    created = client.post(
        "/api/orders",
        json={"lines": [{"product_id": products["rice"].id, "qty": "1", "unit_kind": "PACK"}]},
        headers=headers,
    )
    assert created.status_code == 201
    order_id = created.json["order"]["id"]

    settled = client.post(
        f"/api/orders/{order_id}/settle",
        json={"cash_given": "1000.00", "print_receipt": True},
        headers=headers,
    )
    assert settled.status_code == 200
    body = settled.json
    assert body["order"]["status"] == "PAID"
    assert body["change"] == "500.00"
    assert body["route"] == "OFFICIAL_RECEIPT"
    assert body["receipt_no"].endswith("-000001")

    again = client.post(f"/api/orders/{order_id}/settle", json={"cash_given": "1.00"}, headers=headers)
    assert again.status_code == 409


def test_settle_without_open_drawer_is_409(client, db_session, products, make_order):
    order = make_order((products["rice"], 1, "PACK"))
    response = client.post(
        f"/api/orders/{order.id}/settle",
        json={"cash_given": "500.00"},
        headers=actor_headers(CASHIER_ID, "CASHIER"),
    )
    assert response.status_code == 409


def test_partial_without_customer_is_400(client, db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))
    response = client.post(
        f"/api/orders/{order.id}/settle",
        json={"cash_given": "200.00"},
        headers=actor_headers(CASHIER_ID, "CASHIER", open_shift.id),
    )
    assert response.status_code == 400
    assert "customer" in response.json["error"]


def test_bad_cash_is_400(client, db_session, products, make_order, open_shift):
    order = make_order((products["rice"], 1, "PACK"))
    response = client.post(
        f"/api/orders/{order.id}/settle",
        json={"cash_given": "lots"},
        headers=actor_headers(CASHIER_ID, "CASHIER", open_shift.id),
    )
    assert response.status_code == 400


def test_claim_conflict_is_423(client, db_session, products, make_order):
    order = make_order((products["rice"], 1, "PACK"))
    first = client.post(f"/api/orders/{order.id}/claim", headers=actor_headers(CASHIER_ID, "CASHIER"))
    assert first.status_code == 200

    second = client.post(f"/api/orders/{order.id}/claim", headers=actor_headers(CASHIER_ID + 1, "CASHIER"))
    assert second.status_code == 423
    assert second.json["details"]["locked_by"] == str(CASHIER_ID)


def test_remit_and_variance_workflow_over_http(client, db_session, delivery_order, open_shift):
    order, receipt = delivery_order("300.00")

    remit = client.post(
        f"/api/delivery/orders/{order.id}/remit",
        json={"cash_given": "250.00"},
        headers=actor_headers(CASHIER_ID, "CASHIER", open_shift.id),
    )
    assert remit.status_code == 200
    assert remit.json["bridge_payment"]["ref_no"] == f"RIDER-SHORTAGE:RR:{receipt.id}"
    variance_id = remit.json["variance"]["id"]

    mine = client.get("/api/rider-variances", headers=actor_headers(RIDER_ID, "RIDER"))
    assert [v["id"] for v in mine.json["variances"]] == [variance_id]

    fetched = client.get(f"/api/rider-variances/{variance_id}", headers=actor_headers(RIDER_ID, "RIDER"))
    assert fetched.status_code == 200
    assert fetched.json["variance"]["actual"] == "250.00"

    someone_else = client.get(f"/api/rider-variances/{variance_id}", headers=actor_headers(RIDER_ID + 1, "RIDER"))
    assert someone_else.status_code == 404
    missing = client.get("/api/rider-variances/9999", headers=actor_headers(MANAGER_ID, "STORE_MANAGER"))
    assert missing.status_code == 404

    forbidden = client.post(
        f"/api/rider-variances/{variance_id}/decide",
        json={"resolution": "CHARGE_RIDER"},
        headers=actor_headers(CASHIER_ID, "CASHIER"),
    )
    assert forbidden.status_code == 403

    decided = client.post(
        f"/api/rider-variances/{variance_id}/decide",
        json={"resolution": "CHARGE_RIDER"},
        headers=actor_headers(MANAGER_ID, "STORE_MANAGER"),
    )
    assert decided.status_code == 200
    assert decided.json["variance"]["charge"]["amount"] == "50.00"

    early_close = client.post(
        f"/api/rider-variances/{variance_id}/close", headers=actor_headers(CASHIER_ID, "CASHIER")
    )
    assert early_close.status_code == 409

    accepted = client.post(
        f"/api/rider-variances/{variance_id}/accept", headers=actor_headers(RIDER_ID, "RIDER")
    )
    assert accepted.status_code == 200
    assert accepted.json["variance"]["status"] == "RIDER_ACCEPTED"

    closed = client.post(
        f"/api/rider-variances/{variance_id}/close", headers=actor_headers(CASHIER_ID, "CASHIER")
    )
    assert closed.status_code == 200
    assert closed.json["variance"]["status"] == "CLOSED"


def test_current_shift_reports_writability(client, db_session):
    created = client.post(
        "/api/shifts",
        json={"cashier_id": CASHIER_ID, "opening_float": "1000.00"},
        headers=actor_headers(MANAGER_ID, "STORE_MANAGER"),
    )
    shift_id = created.json["shift"]["id"]
    headers = actor_headers(CASHIER_ID, "CASHIER")

    pending = client.get("/api/shifts/current", headers=headers)
    assert pending.status_code == 200
    assert pending.json["writable"] is False

    client.post(f"/api/shifts/{shift_id}/accept", json={"counted": "1000.00"}, headers=headers)
    accepted = client.get("/api/shifts/current", headers=headers)
    assert accepted.json["writable"] is True
