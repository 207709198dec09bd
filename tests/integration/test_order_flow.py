def _create_event(client, capacity=10, max_tickets_per_order=None):
    payload = {
        "title": "Arena Night",
        "location": "City Arena",
        "starts_at": "2030-04-01T18:00:00Z",
        "ends_at": "2030-04-01T23:00:00Z",
        "max_tickets_per_order": max_tickets_per_order,
        "ticket_types": [
            {"name": "General", "price": 1500, "total_quantity": capacity},
            {"name": "VIP", "price": 6000, "total_quantity": 2},
        ],
    }
    response = client.post("/events", json=payload)
    assert response.status_code == 201
    event = response.json()
    types = {ticket_type["name"]: ticket_type["id"] for ticket_type in event["ticket_types"]}
    return event["id"], types


def _create_order(client, customer_id, event_id, items):
    return client.post(
        "/orders",
        json={
            "event_id": event_id,
            "items": [
                {"ticket_type_id": ticket_type_id, "quantity": quantity}
                for ticket_type_id, quantity in items
            ],
        },
        headers={"X-Customer-Id": customer_id},
    )


def _available(client, event_id, name):
    event = client.get(f"/events/{event_id}").json()
    for ticket_type in event["ticket_types"]:
        if ticket_type["name"] == name:
            return ticket_type["available_quantity"]
    raise AssertionError(f"no ticket type {name}")


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200


def test_order_flow_from_hold_to_tickets(client, clock):
    event_id, types = _create_event(client)

    response = _create_order(client, "alice", event_id, [(types["General"], 2), (types["VIP"], 1)])

    assert response.status_code == 201
    order = response.json()
    order_id = order["order_id"]
    assert order["status"] == "PENDING_PAYMENT"
    assert order["total_amount"] == 2 * 1500 + 6000
    assert order["remaining_seconds"] == 900
    assert _available(client, event_id, "General") == 8
    assert _available(client, event_id, "VIP") == 1

    pending = client.get("/orders/pending", headers={"X-Customer-Id": "alice"}).json()
    assert pending["order"]["order_id"] == order_id

    clock.advance(minutes=5)
    handle = client.post(f"/orders/{order_id}/payment", headers={"X-Customer-Id": "alice"})
    assert handle.status_code == 200
    assert handle.json()["amount"] == order["total_amount"]

    confirm = client.post(
        f"/orders/{order_id}/confirm",
        json={
            "razorpay_order_id": handle.json()["provider_order_id"],
            "razorpay_payment_id": "pay_abc",
            "razorpay_signature": "good-signature",
        },
    )

    assert confirm.status_code == 200
    body = confirm.json()
    assert body["status"] == "CONFIRMED"
    assert body["remaining_seconds"] is None
    assert len(body["tickets"]) == 3
    assert all(ticket["check_in_code"].startswith("TKT-") for ticket in body["tickets"])
    assert _available(client, event_id, "General") == 8

    pending = client.get("/orders/pending", headers={"X-Customer-Id": "alice"}).json()
    assert pending["order"] is None


def test_second_order_is_rejected_with_existing_order_id(client):
    event_id, types = _create_event(client)
    first = _create_order(client, "alice", event_id, [(types["General"], 1)]).json()

    response = _create_order(client, "alice", event_id, [(types["General"], 1)])

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "DUPLICATE_PENDING_ORDER"
    assert response.json()["detail"]["order_id"] == first["order_id"]
    assert _available(client, event_id, "General") == 9


def test_sold_out_returns_conflict(client):
    event_id, types = _create_event(client, capacity=1)
    assert _create_order(client, "alice", event_id, [(types["General"], 1)]).status_code == 201

    response = _create_order(client, "bob", event_id, [(types["General"], 1)])

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "INSUFFICIENT_INVENTORY"
    assert response.json()["detail"]["available"] == 0


def test_cancel_frees_capacity_and_customer(client, clock):
    event_id, types = _create_event(client)
    order_id = _create_order(client, "alice", event_id, [(types["General"], 3)]).json()["order_id"]

    clock.advance(minutes=5)
    response = client.delete(f"/orders/{order_id}", headers={"X-Customer-Id": "alice"})

    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"
    assert _available(client, event_id, "General") == 10
    assert _create_order(client, "alice", event_id, [(types["General"], 1)]).status_code == 201


def test_other_customer_cannot_touch_order(client):
    event_id, types = _create_event(client)
    order_id = _create_order(client, "alice", event_id, [(types["General"], 1)]).json()["order_id"]

    headers = {"X-Customer-Id": "mallory"}
    assert client.get(f"/orders/{order_id}", headers=headers).status_code == 403
    assert client.delete(f"/orders/{order_id}", headers=headers).status_code == 403


def test_confirm_after_deadline_is_gone(client, clock):
    event_id, types = _create_event(client)
    order_id = _create_order(client, "alice", event_id, [(types["General"], 1)]).json()["order_id"]
    handle = client.post(f"/orders/{order_id}/payment", headers={"X-Customer-Id": "alice"}).json()

    clock.advance(minutes=16)
    response = client.post(
        f"/orders/{order_id}/confirm",
        json={
            "razorpay_order_id": handle["provider_order_id"],
            "razorpay_payment_id": "pay_late",
            "razorpay_signature": "good-signature",
        },
    )

    assert response.status_code == 410
    assert response.json()["detail"]["code"] == "RESERVATION_EXPIRED"


def test_bad_signature_keeps_hold(client):
    event_id, types = _create_event(client)
    order_id = _create_order(client, "alice", event_id, [(types["General"], 1)]).json()["order_id"]
    handle = client.post(f"/orders/{order_id}/payment", headers={"X-Customer-Id": "alice"}).json()

    response = client.post(
        f"/orders/{order_id}/confirm",
        json={
            "razorpay_order_id": handle["provider_order_id"],
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": "forged",
        },
    )

    assert response.status_code == 400
    order = client.get(f"/orders/{order_id}", headers={"X-Customer-Id": "alice"}).json()
    assert order["status"] == "PENDING_PAYMENT"


def test_extend_resets_countdown(client, clock):
    event_id, types = _create_event(client)
    order_id = _create_order(client, "alice", event_id, [(types["General"], 1)]).json()["order_id"]

    clock.advance(minutes=12)
    response = client.post(f"/orders/{order_id}/extend", headers={"X-Customer-Id": "alice"})

    assert response.status_code == 200
    assert response.json()["remaining_seconds"] == 900


def test_request_errors(client):
    event_id, types = _create_event(client, max_tickets_per_order=2)
    headers = {"X-Customer-Id": "alice"}

    assert client.get("/orders/missing", headers=headers).status_code == 404
    assert _create_order(client, "alice", "missing", [(types["General"], 1)]).status_code == 404
    assert _create_order(client, "alice", event_id, [(types["General"], 3)]).status_code == 400
    assert client.get("/orders", headers={}).status_code == 422
    assert _create_order(client, "alice", event_id, [(types["General"], 0)]).status_code == 422


def test_outbox_lists_and_marks_published(client):
    event_id, types = _create_event(client)
    order_id = _create_order(client, "alice", event_id, [(types["General"], 1)]).json()["order_id"]
    client.delete(f"/orders/{order_id}", headers={"X-Customer-Id": "alice"})

    pending = client.get("/outbox/events").json()
    assert [item["event_type"] for item in pending] == ["ORDER_CANCELLED"]
    assert pending[0]["aggregate_id"] == order_id

    published = client.post(f"/outbox/events/{pending[0]['id']}/mark-published")
    assert published.status_code == 200
    assert published.json()["status"] == "PUBLISHED"
    assert published.json()["attempts"] == 1

    assert client.get("/outbox/events").json() == []
    assert client.post("/outbox/events/missing/mark-published").status_code == 404


def test_list_orders_for_customer(client):
    event_id, types = _create_event(client)
    first = _create_order(client, "alice", event_id, [(types["General"], 1)]).json()["order_id"]
    client.delete(f"/orders/{first}", headers={"X-Customer-Id": "alice"})
    second = _create_order(client, "alice", event_id, [(types["VIP"], 1)]).json()["order_id"]

    orders = client.get("/orders", headers={"X-Customer-Id": "alice"}).json()

    assert {order["order_id"] for order in orders} == {first, second}
    assert client.get("/orders", headers={"X-Customer-Id": "bob"}).json() == []


def test_extend_cannot_exceed_hold_length(client, clock):
    event_id, types = _create_event(client, capacity=1)
    order_id = _create_order(client, "alice", event_id, [(types["General"], 1)]).json()["order_id"]
    headers = {"X-Customer-Id": "alice"}

    for minutes in (16, 5000000, 100000000000):
        response = client.post(f"/orders/{order_id}/extend?minutes={minutes}", headers=headers)
        assert response.status_code == 422

    clock.advance(minutes=10)
    response = client.post(f"/orders/{order_id}/extend?minutes=15", headers=headers)
    assert response.status_code == 200
    assert response.json()["expires_at"] == "2030-03-01T12:25:00+00:00"


def test_duplicate_ticket_type_names_are_rejected(client):
    payload = {
        "title": "Arena Night",
        "starts_at": "2030-04-01T18:00:00Z",
        "ends_at": "2030-04-01T23:00:00Z",
        "ticket_types": [
            {"name": "General", "price": 1500, "total_quantity": 10},
            {"name": "General", "price": 2000, "total_quantity": 5},
        ],
    }

    response = client.post("/events", json=payload)

    assert response.status_code == 422
    assert client.get("/events").json() == []
