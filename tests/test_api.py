import pytest
from fastapi.testclient import TestClient

from tableside.core.permissions import get_current_user
from tableside.main import create_app, wire_services

from conftest import add_table


def staff_user(role):
    return {"id": "11111111-1111-1111-1111-111111111111", "role": role, "email": f"{role}@example.com"}


@pytest.fixture
def app(db, cache):
    app = create_app()
    wire_services(app, db, cache=cache)
    app.dependency_overrides[get_current_user] = lambda: staff_user("manager")
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def order_body(restaurant, name="Asha"):
    menu = restaurant["menu"]
    return {
        "tableId": restaurant["table"],
        "customerName": name,
        "items": [{"menuItem": menu["momo"], "quantity": 2}, {"menuItem": menu["tea"], "quantity": 1}],
        "discount": 30,
    }


def place_order(client, restaurant, name="Asha"):
    response = client.post("/orders/public", json=order_body(restaurant, name))
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_public_order_creation(client, restaurant):
    response = client.post("/orders/public", json=order_body(restaurant))

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["totalAmount"] == 250.0
    assert body["data"]["finalAmount"] == 220.0
    assert body["data"]["status"] == "Pending"
    assert body["data"]["orderStats"]["totalQuantity"] == 3
    assert "X-Process-Time" in response.headers


def test_missing_fields_are_400_with_errors(client, restaurant):
    body = order_body(restaurant)
    del body["customerName"]
    response = client.post("/orders/public", json=body)

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["errors"]


def test_duplicate_order_is_409(client, restaurant):
    place_order(client, restaurant)
    response = client.post("/orders/public", json=order_body(restaurant))

    assert response.status_code == 409
    assert response.json()["success"] is False
    assert response.json()["data"]["customerName"] == "Asha"


def test_capacity_signal_is_503(app, client, restaurant):
    app.state.orders.max_kitchen_orders = 1
    place_order(client, restaurant, "A")
    response = client.post("/orders/public", json=order_body(restaurant, "B"))

    assert response.status_code == 503
    assert response.json()["data"] == {"activeOrders": 1, "maxCapacity": 1, "utilizationPercent": 100}

    capacity = client.get("/orders/kitchen/capacity").json()["data"]
    assert capacity["canAcceptOrder"] is False
    assert capacity["status"] == "at_capacity"


def test_unknown_order_is_404(client):
    response = client.get("/orders/9f0c2a4e-0000-4000-8000-000000000000")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Order not found"}


@pytest.mark.parametrize("method, path", [
    ("get", "/orders/not-a-uuid"),
    ("patch", "/orders/not-a-uuid/cancel"),
    ("patch", "/orders/not-a-uuid/complete"),
    ("get", "/payments/not-a-uuid"),
    ("get", "/payments/order/not-a-uuid"),
    ("get", "/tables/public/42"),
    ("get", "/tables/not-a-uuid/availability"),
])
def test_malformed_ids_are_400(client, method, path):
    response = getattr(client, method)(path)
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["errors"]


def test_malformed_item_and_payment_ids_with_body_are_400(client, restaurant):
    order = place_order(client, restaurant)

    item = client.patch(f"/orders/{order['id']}/items/abc/status", json={"status": "Cooking"})
    assert item.status_code == 400

    payment = client.patch("/payments/not-a-uuid/status", json={"paymentStatus": "Paid"})
    assert payment.status_code == 400


def test_staff_routes_require_token(app, client):
    app.dependency_overrides.clear()
    response = client.get("/orders/kitchen/queue")
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_kitchen_flow(client, restaurant):
    order = place_order(client, restaurant)
    item_id = order["items"][0]["id"]

    response = client.patch(f"/orders/{order['id']}/items/{item_id}/status", json={"status": "Cooking"})
    assert response.status_code == 200
    assert response.json()["data"]["order"]["status"] == "InKitchen"
    assert response.json()["data"]["updatedItem"]["status"] == "Cooking"

    queue = client.get("/orders/kitchen/queue").json()["data"]
    assert [o["id"] for o in queue] == [order["id"]]

    assert client.get("/orders/kitchen/queue", params={"status": "Served"}).status_code == 400


def test_status_update_rejects_unknown_value(client, restaurant):
    order = place_order(client, restaurant)
    response = client.patch(f"/orders/{order['id']}/status", json={"status": "Delivered"})
    assert response.status_code == 400


def test_cancel_then_table_free(client, restaurant):
    order = place_order(client, restaurant)

    response = client.patch(f"/orders/{order['id']}/cancel", json={"reason": "left"})
    assert response.status_code == 200
    assert response.json()["data"]["note"] == "Cancelled: left"

    availability = client.get(f"/tables/{restaurant['table']}/availability").json()["data"]
    assert availability["isAvailable"] is True
    assert availability["currentOrder"] is None


def test_payment_and_completion(client, restaurant):
    order = place_order(client, restaurant)

    wrong = client.post("/payments/", json={"orderId": order["id"], "paymentMethod": "Cash", "amount": 221})
    assert wrong.status_code == 400

    paid = client.post("/payments/", json={"orderId": order["id"], "paymentMethod": "Cash", "amount": 220})
    assert paid.status_code == 201
    assert paid.json()["data"]["paymentStatus"] == "Paid"

    completed = client.patch(f"/orders/{order['id']}/complete")
    assert completed.status_code == 200
    assert completed.json()["data"]["status"] == "Completed"

    payments = client.get(f"/payments/order/{order['id']}").json()["data"]
    assert len(payments) == 1


def test_refund_needs_finance_role(app, client, restaurant):
    order = place_order(client, restaurant)
    payment = client.post(
        "/payments/", json={"orderId": order["id"], "paymentMethod": "Cash", "amount": 220}
    ).json()["data"]

    app.dependency_overrides[get_current_user] = lambda: staff_user("waiter")
    assert client.post(f"/payments/{payment['id']}/refund", json={}).status_code == 403

    app.dependency_overrides[get_current_user] = lambda: staff_user("accountant")
    response = client.post(f"/payments/{payment['id']}/refund", json={"refundAmount": 100})
    assert response.status_code == 201
    assert response.json()["data"]["refund"]["amount"] == -100.0


def test_order_listing_is_paginated(client, restaurant):
    for name in ("A", "B", "C"):
        place_order(client, restaurant, name)

    body = client.get("/orders/", params={"limit": 2, "sortOrder": "asc"}).json()
    assert len(body["data"]) == 2
    assert body["pagination"]["totalItems"] == 3
    assert body["pagination"]["hasNext"] is True


def test_public_table_lookup_and_orders(client, restaurant):
    place_order(client, restaurant)

    table = client.get(f"/tables/public/{restaurant['table']}").json()["data"]
    assert table["tableNumber"] == 7
    assert table["status"] == "Occupied"

    orders = client.get(f"/orders/public/table/{restaurant['table']}").json()["data"]
    assert [o["customerName"] for o in orders] == ["Asha"]


def test_reset_refuses_active_order(client, restaurant):
    place_order(client, restaurant)
    assert client.patch(f"/tables/{restaurant['table']}/reset").status_code == 400
    assert client.patch(f"/tables/{restaurant['table']}/clear").status_code == 200


def test_active_timeouts_listed(client, restaurant):
    order = place_order(client, restaurant)
    data = client.get("/orders/timeouts/active").json()["data"]
    assert data["orderIds"] == [order["id"]]


def test_audit_log_written_for_staff_actions(client, restaurant, db):
    order = place_order(client, restaurant)
    client.patch(f"/orders/{order['id']}/cancel", json={})

    [entry] = db.rows("activity_logs").values()
    assert entry["action"] == "cancel"
    assert entry["resource_id"] == order["id"]
    assert entry["user_role"] == "manager"


def test_table_listing_with_floor_stats(client, restaurant, db):
    add_table(db, 3)
    place_order(client, restaurant)

    body = client.get("/tables/").json()
    assert [t["tableNumber"] for t in body["data"]] == [3, 7]
    assert body["pagination"]["totalItems"] == 2
    assert body["stats"] == {"total": 2, "totalCapacity": 6, "available": 1, "occupied": 1, "reserved": 0}

    occupied = client.get("/tables/", params={"status": "Occupied"}).json()["data"]
    assert [t["id"] for t in occupied] == [restaurant["table"]]
