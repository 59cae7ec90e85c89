# tests/test_api.py
# Сквозные сценарии через HTTP: корзина → заказ → UTR → подтверждение → скачивание.
from sqlalchemy import select

from digistore.models.admin_log import AdminLog
from digistore.services.cart_store import SESSION_HEADER


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_anonymous_cart_gets_own_session(client, make_product):
    product = await make_product("75.00")

    first = await client.post("/api/cart/add", json={"productId": product.id})
    assert first.status_code == 200
    assert first.json()["count"] == 1
    session_id = first.headers[SESSION_HEADER]
    assert session_id and session_id != "anonymous"

    # другой анонимный клиент без идентификатора не видит чужую корзину
    client.cookies.clear()
    stranger = await client.get("/api/cart")
    assert stranger.json()["items"] == []
    assert stranger.headers[SESSION_HEADER] != session_id

    mine = await client.get("/api/cart", headers={SESSION_HEADER: session_id})
    body = mine.json()
    assert [item["id"] for item in body["items"]] == [product.id]
    assert body["total"] == "75.00"


async def test_cart_duplicate_and_unknown_product(client, auth_headers, customer, make_product):
    product = await make_product()
    headers = auth_headers(customer)

    assert (await client.post("/api/cart/add", json={"productId": product.id}, headers=headers)).status_code == 200
    duplicate = await client.post("/api/cart/add", json={"productId": product.id}, headers=headers)
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "Product already in cart"

    missing = await client.post("/api/cart/add", json={"productId": "nope"}, headers=headers)
    assert missing.status_code == 404

    removed = await client.delete(f"/api/cart/remove/{product.id}", headers=headers)
    assert removed.json()["count"] == 0
    cleared = await client.delete("/api/cart/clear", headers=headers)
    assert cleared.status_code == 200


async def test_full_purchase_flow(client, auth_headers, customer, admin_user, make_product, session_factory):
    a = await make_product("100.00", title="Course A")
    b = await make_product("50.00", title="Template B")
    user_headers = auth_headers(customer)
    for p in (a, b):
        await client.post("/api/cart/add", json={"productId": p.id}, headers=user_headers)

    created = await client.post("/api/orders", headers=user_headers)
    assert created.status_code == 201
    order = created.json()["order"]
    payment = created.json()["payment"]
    assert order["totalAmount"] == "150.00"
    assert order["paymentStatus"] == "PENDING"
    assert payment["qrCode"].startswith("data:image/png;base64,")
    assert "am=150.00" in payment["link"]

    assert (await client.get("/api/cart", headers=user_headers)).json()["items"] == []

    detail = (await client.get(f"/api/orders/{order['id']}", headers=user_headers)).json()
    assert detail["payment"]["note"] == f"Order: {order['orderNumber']}"

    submitted = await client.post(
        f"/api/orders/{order['id']}/submit-utr", json={"utrNumber": "UTR123456"}, headers=user_headers
    )
    assert submitted.status_code == 200
    assert submitted.json()["orderNumber"] == order["orderNumber"]

    again = await client.post(
        f"/api/orders/{order['id']}/submit-utr", json={"utrNumber": "UTR123456"}, headers=user_headers
    )
    assert again.status_code == 404

    item_id = order["items"][0]["id"]
    not_yet = await client.get(f"/api/orders/download/{item_id}", headers=user_headers)
    assert not_yet.status_code == 404

    verified = await client.post(f"/api/admin/orders/{order['id']}/verify", headers=auth_headers(admin_user))
    assert verified.status_code == 200
    assert verified.json()["order"]["paymentStatus"] == "VERIFIED"
    assert verified.json()["order"]["orderStatus"] == "COMPLETED"
    assert len(verified.json()["activation"]["activated"]) == 2

    twice = await client.post(f"/api/admin/orders/{order['id']}/verify", headers=auth_headers(admin_user))
    assert twice.status_code == 400
    assert twice.json()["error"] == "Order already verified"

    download = await client.get(
        f"/api/orders/download/{item_id}", headers={**user_headers, "User-Agent": "flow-test"}
    )
    assert download.status_code == 200
    assert download.json()["remainingDownloads"] == 4
    assert download.json()["downloadUrl"]

    detail = (await client.get(f"/api/orders/{order['id']}", headers=user_headers)).json()
    assert detail["payment"] is None

    my = (await client.get("/api/orders/my", headers=user_headers)).json()["orders"]
    assert [o["id"] for o in my] == [order["id"]]

    async with session_factory() as session:
        actions = (await session.execute(select(AdminLog.action))).scalars().all()
    assert actions == ["verified_payment"]


async def test_submit_utr_validation_is_400(client, auth_headers, customer):
    response = await client.post(
        "/api/orders/some-id/submit-utr", json={"utrNumber": "123"}, headers=auth_headers(customer)
    )
    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "utrNumber"


async def test_checkout_with_empty_cart(client, auth_headers, customer):
    response = await client.post("/api/orders", headers=auth_headers(customer))
    assert response.status_code == 400
    assert response.json()["error"] == "Cart is empty"


async def test_foreign_order_looks_missing(client, auth_headers, customer, other_customer, make_product):
    product = await make_product()
    await client.post("/api/cart/add", json={"productId": product.id}, headers=auth_headers(customer))
    order = (await client.post("/api/orders", headers=auth_headers(customer))).json()["order"]

    response = await client.get(f"/api/orders/{order['id']}", headers=auth_headers(other_customer))
    assert response.status_code == 404
    assert response.json()["error"] == "Order not found"


async def test_admin_routes_require_admin(client, auth_headers, customer, make_product):
    product = await make_product()
    await client.post("/api/cart/add", json={"productId": product.id}, headers=auth_headers(customer))
    order = (await client.post("/api/orders", headers=auth_headers(customer))).json()["order"]

    forbidden = await client.post(f"/api/admin/orders/{order['id']}/verify", headers=auth_headers(customer))
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "Admin access required"
    unauthenticated = await client.post(f"/api/admin/orders/{order['id']}/reject")
    assert unauthenticated.status_code == 401

    detail = (await client.get(f"/api/orders/{order['id']}", headers=auth_headers(customer))).json()
    assert detail["order"]["paymentStatus"] == "PENDING"


async def test_admin_reject_and_list(client, auth_headers, customer, admin_user, make_product):
    product = await make_product()
    await client.post("/api/cart/add", json={"productId": product.id}, headers=auth_headers(customer))
    order = (await client.post("/api/orders", headers=auth_headers(customer))).json()["order"]
    admin = auth_headers(admin_user)

    rejected = await client.post(
        f"/api/admin/orders/{order['id']}/reject", json={"reason": "UTR not found"}, headers=admin
    )
    assert rejected.status_code == 200
    assert rejected.json()["order"]["paymentStatus"] == "FAILED"
    assert rejected.json()["order"]["orderStatus"] == "CANCELLED"

    listing = (await client.get("/api/admin/orders", params={"status": "FAILED"}, headers=admin)).json()
    assert listing["pagination"]["total"] == 1
    assert listing["orders"][0]["userEmail"] == "buyer@example.com"


async def test_product_catalog_counts_views(client, make_product):
    product = await make_product(title="Kids Worksheets")

    listing = (await client.get("/api/products")).json()["products"]
    assert [p["slug"] for p in listing] == [product.slug]

    detail = await client.get(f"/api/products/{product.slug}")
    assert detail.status_code == 200
    assert detail.json()["product"]["title"] == "Kids Worksheets"

    assert (await client.get("/api/products/missing")).status_code == 404


async def test_register_and_login(client):
    registered = await client.post(
        "/api/auth/register", json={"email": "New@Example.com", "password": "s3cret-pass", "name": "New"}
    )
    assert registered.status_code == 201
    assert registered.json()["email"] == "new@example.com"
    assert registered.json()["role"] == "customer"

    duplicate = await client.post("/api/auth/register", json={"email": "new@example.com", "password": "s3cret-pass"})
    assert duplicate.status_code == 400

    bad = await client.post("/api/auth/token", data={"username": "new@example.com", "password": "wrong-pass"})
    assert bad.status_code == 400

    token = await client.post("/api/auth/token", data={"username": "new@example.com", "password": "s3cret-pass"})
    assert token.status_code == 200
    headers = {"Authorization": f"Bearer {token.json()['access_token']}"}
    assert (await client.get("/api/orders/my", headers=headers)).json() == {"orders": []}


async def test_cart_keeps_insertion_order(client, auth_headers, customer, make_product):
    first, second, third = await make_product("10.00"), await make_product("20.00"), await make_product("30.00")
    headers = auth_headers(customer)
    for product in (third, first, second):
        await client.post("/api/cart/add", json={"productId": product.id}, headers=headers)

    body = (await client.get("/api/cart", headers=headers)).json()
    assert [item["id"] for item in body["items"]] == [third.id, first.id, second.id]
    assert body["total"] == "60.00"
