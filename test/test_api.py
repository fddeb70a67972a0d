from fastapi.testclient import TestClient
from sqlmodel import select

from hospitality.db import get_session
from hospitality.main import app
from hospitality.models import Role, RolePermission
from hospitality.permissions import Permissions
from hospitality.room_models import ReservationStatus
from hospitality.seeds.roles import DEFAULT_ROLES, assign_admin_role_to_existing_users, seed_roles


def staff_headers(seed, department=None, section=None, permissions=None, email="staff@example.com"):
    role = seed.role(name=f"Role for {email}", permissions=permissions)
    user = seed.user(email, department=department, section=section, role=role)
    return seed.headers(user)


def order_body(hotel, quantity=3, **extra):
    body = {
        "items": [
            {
                "product_id": hotel.item.id,
                "quantity": quantity,
                "department_code": "restaurant:main",
                "unit_price": 500,
            }
        ]
    }
    body.update(extra)
    return body


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] in ("ok", "degraded")


def test_create_order(client, seed, hotel):
    response = client.post("/orders", json=order_body(hotel), headers=staff_headers(seed))

    assert response.status_code == 201
    data = response.json()
    assert data["subtotal"] == 1500
    assert data["tax"] == 150
    assert data["total"] == 1650
    assert data["status"] == "pending"
    assert data["payment_status"] == "unpaid"
    assert data["lines"][0]["product_name"] == "Club Sandwich"
    assert data["departments"] == [{"department_code": "restaurant:main", "status": "pending"}]

    balance = client.get(
        "/inventory/balance",
        params={"department_code": "restaurant:main", "item_id": hotel.item.id},
        headers=staff_headers(seed, email="reader@example.com"),
    )
    assert balance.json()["reserved"] == 3
    assert balance.json()["available"] == 7


def test_create_order_with_payment(client, seed, hotel):
    response = client.post(
        "/orders",
        json=order_body(hotel, payment={"amount": 1650, "payment_method": "card"}),
        headers=staff_headers(seed),
    )

    data = response.json()
    assert data["status"] == "processing"
    assert data["payment_status"] == "paid"
    assert data["payments"][0]["amount"] == 1650
    assert [line["status"] for line in data["lines"]] == ["processing"]
    assert data["departments"] == [{"department_code": "restaurant:main", "status": "processing"}]


def test_insufficient_stock_error_shape(client, seed, hotel):
    response = client.post("/orders", json=order_body(hotel, quantity=11), headers=staff_headers(seed))

    assert response.status_code == 409
    data = response.json()
    assert data["success"] is False
    assert data["code"] == "INSUFFICIENT_STOCK"
    assert "Club Sandwich" in data["message"]


def test_malformed_body_is_validation_error(client, seed, hotel):
    headers = staff_headers(seed)
    body = order_body(hotel)
    del body["items"][0]["department_code"]
    response = client.post("/orders", json=body, headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"

    body = order_body(hotel)
    body["items"][0]["unit_price"] = 5.5
    response = client.post("/orders", json=body, headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"

    response = client.post("/orders", json=order_body(hotel, quantity=0), headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_unknown_department_is_not_found(client, seed, hotel):
    body = order_body(hotel)
    body["items"][0]["department_code"] = "spa"
    response = client.post("/orders", json=body, headers=staff_headers(seed))

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_idempotency_key_header(client, seed, hotel):
    headers = {**staff_headers(seed), "Idempotency-Key": "till-7-0001"}
    first = client.post("/orders", json=order_body(hotel), headers=headers)
    second = client.post("/orders", json=order_body(hotel), headers=headers)

    assert first.json()["id"] == second.json()["id"]
    orders = client.get("/orders", headers=headers).json()
    assert len(orders) == 1


def test_cancel_and_line_status_endpoints(client, seed, hotel):
    headers = staff_headers(seed)
    order = client.post("/orders", json=order_body(hotel), headers=headers).json()
    line_id = order["lines"][0]["id"]

    response = client.put(
        f"/orders/{order['id']}/lines/{line_id}/status", json={"status": "processing"}, headers=headers
    )
    assert response.json()["status"] == "processing"

    response = client.post(f"/orders/{order['id']}/cancel", json={"reason": "Guest left"}, headers=headers)
    assert response.status_code == 409
    assert response.json()["code"] == "CONFLICT"

    other = client.post("/orders", json=order_body(hotel, quantity=1), headers=headers).json()
    response = client.post(f"/orders/{other['id']}/cancel", json={"reason": "Guest left"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancel_reason"] == "Guest left"


def test_department_dashboard(client, seed, hotel):
    headers = staff_headers(seed)
    client.post("/orders", json=order_body(hotel), headers=headers)

    assert len(client.get("/departments/restaurant:main/orders", headers=headers).json()) == 1
    assert client.get("/departments/bar/orders", headers=headers).json() == []


def test_discount_rules(client, seed, hotel):
    headers = staff_headers(seed)
    response = client.post(
        "/discount-rules",
        json={"code": "welcome10", "name": "Welcome", "discount_type": "percentage", "value": 10},
        headers=headers,
    )
    assert response.status_code == 201
    assert response.json()["code"] == "WELCOME10"

    duplicate = client.post(
        "/discount-rules",
        json={"code": "WELCOME10", "name": "Again", "discount_type": "fixed", "value": 100},
        headers=headers,
    )
    assert duplicate.status_code == 409

    invalid = client.post(
        "/discount-rules",
        json={"code": "HALFOFF", "name": "Too much", "discount_type": "percentage", "value": 150},
        headers=headers,
    )
    assert invalid.status_code == 400

    order = client.post("/orders", json=order_body(hotel, discounts=["WELCOME10"]), headers=headers).json()
    assert order["total"] == 1485


def test_transfer_approval_requires_destination_principal(client, seed, hotel):
    restaurant_headers = staff_headers(seed, hotel.restaurant, hotel.main, email="chef@example.com")
    response = client.post(
        "/transfers/items",
        json={"from_code": "restaurant:main", "to_code": "bar:pool", "item_id": hotel.item.id, "quantity": 4},
        headers=restaurant_headers,
    )
    assert response.status_code == 201
    transfer = response.json()
    assert transfer["status"] == "pending"
    assert transfer["items"] == [{"product_type": "inventory_item", "product_id": hotel.item.id, "quantity": 4}]

    denied = client.post(f"/departments/bar:pool/transfers/{transfer['id']}/approve", headers=restaurant_headers)
    assert denied.status_code == 403
    assert denied.json()["code"] == "FORBIDDEN"

    bar_headers = staff_headers(seed, hotel.bar, hotel.pool, email="bartender@example.com")
    approved = client.post(f"/departments/bar:pool/transfers/{transfer['id']}/approve", headers=bar_headers)
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"


def test_room_status_conflict(client, seed):
    unit = seed.unit()
    headers = staff_headers(seed)

    response = client.put(f"/rooms/{unit.id}/status", json={"status": "OCCUPIED"}, headers=headers)
    assert response.status_code == 409
    assert response.json()["code"] == "CONFLICT"

    seed.reservation(unit, ReservationStatus.CHECKED_IN)
    response = client.put(f"/rooms/{unit.id}/status", json={"status": "OCCUPIED"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "OCCUPIED"

    history = client.get(f"/rooms/{unit.id}/status-history", headers=headers).json()
    assert [h["new_status"] for h in history] == ["OCCUPIED"]


def test_maintenance_endpoints(client, seed):
    unit = seed.unit()
    headers = staff_headers(seed)

    request = client.post(
        "/maintenance/requests",
        json={"unit_id": unit.id, "category": "hvac", "description": "No heating"},
        headers=headers,
    ).json()
    assert request["status"] == "OPEN"

    client.post(f"/maintenance/requests/{request['id']}/start", headers=headers)
    client.post(f"/maintenance/requests/{request['id']}/complete", headers=headers)
    response = client.post(
        f"/maintenance/requests/{request['id']}/verify", json={"approved": True}, headers=headers
    )
    assert response.json()["status"] == "CLOSED"

    bad = client.post(f"/maintenance/requests/{request['id']}/teleport", headers=headers)
    assert bad.status_code == 400


def test_service_quote(client, seed, hotel):
    massage = seed.service("Massage", hotel.restaurant, price_per_count=3000)
    headers = staff_headers(seed)

    response = client.get(f"/services/{massage.id}/quote", params={"units": 2}, headers=headers)

    assert response.status_code == 200
    assert response.json()["amount"] == 6000


def test_requires_authentication(client, hotel):
    response = client.get("/orders")
    assert response.status_code == 401


def test_requires_permission(client, seed, hotel):
    headers = staff_headers(seed, permissions=[Permissions.ORDERS_READ])

    assert client.get("/orders", headers=headers).status_code == 200
    response = client.post("/orders", json=order_body(hotel), headers=headers)
    assert response.status_code == 403


def test_login_sets_token(session, seed):
    seed.user("frontdesk@example.com", password="letmein")

    app.dependency_overrides[get_session] = lambda: session
    try:
        with_cookie = TestClient(app)
        bad = with_cookie.post("/token", data={"username": "frontdesk@example.com", "password": "nope"})
        assert bad.status_code == 401

        response = with_cookie.post("/token", data={"username": "frontdesk@example.com", "password": "letmein"})
        assert response.status_code == 200
        assert response.json()["token_type"] == "bearer"
        assert "access_token" in with_cookie.cookies

        me = with_cookie.get("/users/me")
        assert me.status_code == 200
        assert me.json()["email"] == "frontdesk@example.com"
    finally:
        app.dependency_overrides.clear()


def test_password_change_revokes_tokens(client, seed):
    admin_role = seed.role("Admin")
    admin = seed.user("admin@example.com", role=admin_role)
    headers = seed.headers(admin)

    response = client.put(f"/users/{admin.id}", json={"password": "rotated"}, headers=headers)
    assert response.status_code == 200

    assert client.get("/users/me", headers=headers).status_code == 401


def test_seed_roles(session, seed):
    orphan = seed.user("orphan@example.com")

    roles = seed_roles(session)
    seed_roles(session)
    assign_admin_role_to_existing_users(session)

    assert set(roles) == set(DEFAULT_ROLES)
    assert len(session.exec(select(Role)).all()) == len(DEFAULT_ROLES)
    admin_perms = session.exec(
        select(RolePermission.permission).where(RolePermission.role_id == roles["Admin"].id)
    ).all()
    assert set(admin_perms) == {p.value for p in Permissions}
    session.refresh(orphan)
    assert orphan.role_id == roles["Admin"].id


def test_inventory_endpoints(client, seed, hotel):
    headers = staff_headers(seed)

    item = client.post(
        "/inventory/items",
        json={"sku": "GIN-1", "name": "Gin", "unit_price": 800, "reorder_level": 5},
        headers=headers,
    )
    assert item.status_code == 201
    item_id = item.json()["id"]
    assert client.post("/inventory/items", json={"sku": "GIN-1", "name": "Gin"}, headers=headers).status_code == 409

    received = client.post(
        "/inventory/stock",
        json={"department_code": "bar:pool", "inventory_item_id": item_id, "quantity": 4},
        headers=headers,
    )
    assert received.status_code == 201
    assert received.json() == {
        "department_code": "bar:pool",
        "product_id": item_id,
        "quantity": 4,
        "reserved": 0,
        "available": 4,
    }

    low = client.get("/inventory/low-stock", params={"department_code": "bar:pool"}, headers=headers).json()
    assert [row["sku"] for row in low] == ["GIN-1"]

    movements = client.get(
        "/inventory/movements", params={"department_code": "bar:pool"}, headers=headers
    ).json()
    assert [(m["movement_type"], m["quantity"]) for m in movements] == [("receipt", 4)]

    missing = client.get(
        "/inventory/balance", params={"department_code": "bar", "item_id": item_id}, headers=headers
    )
    assert missing.status_code == 404


def test_roles_endpoints(client, seed):
    headers = staff_headers(seed, permissions=[Permissions.ROLES_MANAGE])

    created = client.post(
        "/roles",
        json={"name": "Night Audit", "permissions": ["orders:read", "orders:refund"]},
        headers=headers,
    )
    assert created.status_code == 200
    role = created.json()
    assert sorted(role["permissions"]) == ["orders:read", "orders:refund"]

    unknown = client.post("/roles", json={"name": "Bad", "permissions": ["orders:everything"]}, headers=headers)
    assert unknown.status_code == 400

    updated = client.put(f"/roles/{role['id']}", json={"permissions": ["orders:read"]}, headers=headers)
    assert updated.json()["permissions"] == ["orders:read"]

    names = [r["name"] for r in client.get("/roles", headers=headers).json()]
    assert "Night Audit" in names
    assert "transfers:approve" in client.get("/permissions", headers=headers).json()

    assert client.delete(f"/roles/{role['id']}", headers=headers).json() == {"status": "deleted"}
