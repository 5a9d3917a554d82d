import pytest
from starlette.websockets import WebSocketDisconnect

from tests.conftest import register, seed_product

SHIPPING = {"address": "Bole Road", "city": "Addis Ababa"}


def test_root_and_health_without_database(client):
    assert client.get("/").json() == {"message": "Marketplace API ready"}
    health = client.get("/test").json()
    assert health["backend"] == "✅ Running"
    assert health["connection_status"] == "Not Connected"


def test_register_and_login(client, customer):
    profile, headers = customer
    assert profile["role"] == "customer"
    assert "password" not in profile

    me = client.get("/profile", headers=headers).json()
    assert me["email"] == "abebe@example.com"

    duplicate = client.post("/auth/register", json={"name": "Abebe Kebede", "email": "ABEBE@example.com",
                                                     "password": "secret123"})
    assert duplicate.status_code == 400

    wrong = client.post("/auth/login", json={"email": "abebe@example.com", "password": "nope123"})
    assert wrong.status_code == 401
    assert wrong.json()["title"] == "Login Failed"


def test_pending_and_blocked_accounts_cannot_sign_in(client, db):
    register(client, email="sara@example.com", name="Sara Supplies", role="supplier",
             trade_license="https://media.test/license.jpg")
    pending = client.post("/auth/login", json={"email": "sara@example.com", "password": "secret123"})
    assert pending.status_code == 403
    assert pending.json()["title"] == "Account Pending"

    profile = register(client)
    db["userprofile"].update_one({"_id": profile["uid"]}, {"$set": {"status": "blocked"}})
    blocked = client.post("/auth/login", json={"email": "abebe@example.com", "password": "secret123"})
    assert blocked.json()["title"] == "Account Blocked"


def test_supplier_registration_needs_license(client):
    response = client.post("/auth/register", json={"name": "Sara Supplies", "email": "sara@example.com",
                                                   "password": "secret123", "role": "supplier"})
    assert response.status_code == 400


def test_invalid_token_is_rejected(client):
    response = client.get("/profile", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_profile_update(client, customer):
    _profile, headers = customer
    updated = client.patch("/profile", json={"phone": "0912345678", "location": "Bole"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["location"] == "Bole"
    bad = client.patch("/profile", json={"phone": "12345"}, headers=headers)
    assert bad.status_code == 400


def test_catalog_shows_verified_products_only(client, db):
    product_id, _ = seed_product(db, name="Widget")
    seed_product(db, name="Hidden", status="unverified")

    products = client.get("/products").json()
    assert [p["name"] for p in products] == ["Widget"]
    assert products[0]["minPrice"] == 10.0
    assert client.get("/products", params={"q": "wid"}).json()[0]["id"] == product_id
    assert client.get("/products/categories").json() == ["Gadgets"]
    assert client.get(f"/products/{product_id}").json()["totalStock"] == 5
    assert client.get("/products/not-an-id").status_code == 400


def test_cart_merges_and_caps_at_stock(client, db, customer):
    _profile, headers = customer
    product_id, variant_id = seed_product(db, stock=3)
    body = {"product_id": product_id, "variant_id": variant_id, "quantity": 2}

    cart = client.post("/cart/items", json=body, headers=headers).json()
    assert cart["total"] == 20.0
    assert cart["items"][0]["id"] == f"{product_id}_{variant_id}"
    assert cart["items"][0]["variantDetails"] == {"Color": "Red"}

    over = client.post("/cart/items", json=body, headers=headers)
    assert over.status_code == 400
    assert over.json()["title"] == "Out of Stock"

    item_id = f"{product_id}_{variant_id}"
    cart = client.patch(f"/cart/items/{item_id}", json={"quantity": 3}, headers=headers).json()
    assert cart["items"][0]["quantity"] == 3
    cart = client.delete(f"/cart/items/{item_id}", headers=headers).json()
    assert cart["items"] == []


def fill_cart(client, db, headers, quantity=2):
    product_id, variant_id = seed_product(db, stock=5)
    client.post("/cart/items", json={"product_id": product_id, "variant_id": variant_id, "quantity": quantity},
                headers=headers)
    return product_id, variant_id


def test_hosted_checkout_end_to_end(client, db, customer):
    _profile, headers = customer
    product_id, _variant_id = fill_cart(client, db, headers)

    checkout = client.post("/checkout", json={"shipping_address": SHIPPING, "payment_method": "Chapa",
                                              "agreed_to_refund_policy": True}, headers=headers)
    assert checkout.status_code == 200, checkout.text
    started = checkout.json()
    assert started["totalAmount"] == 20.0
    session = started["session"]
    assert session["state"] == "pending"

    form = client.get(started["formUrl"])
    assert form.headers["content-type"].startswith("text/html")
    assert started["txRef"] in form.text

    done = client.get(f"/payments/return/{session['id']}",
                      params={"status": "success", "tx_ref": started["txRef"]})
    assert done.status_code == 200, done.text
    order = done.json()["order"]
    assert order["transactionRef"] == started["txRef"]
    assert order["totalAmount"] == 20.0

    orders = client.get("/orders", headers=headers).json()
    assert [o["id"] for o in orders] == [order["id"]]
    assert client.get("/cart", headers=headers).json()["items"] == []
    assert db["variants"].find_one({"productId": product_id})["stock"] == 3
    assert client.get(f"/payments/sessions/{session['id']}", headers=headers).json()["state"] == "completed"


def test_checkout_mismatched_return_writes_nothing(client, db, customer):
    _profile, headers = customer
    fill_cart(client, db, headers)
    started = client.post("/checkout", json={"shipping_address": SHIPPING, "payment_method": "Chapa",
                                             "agreed_to_refund_policy": True}, headers=headers).json()

    response = client.get(f"/payments/return/{started['session']['id']}",
                          params={"status": "success", "tx_ref": "TX-0-forged"})
    assert response.status_code == 409
    assert response.json()["title"] == "Payment Reference Mismatch"
    assert db["orders"].count_documents({}) == 0


def test_checkout_without_address_is_rejected(client, db, customer):
    _profile, headers = customer
    fill_cart(client, db, headers)
    response = client.post("/checkout", json={"shipping_address": {"address": ""}, "payment_method": "Chapa",
                                              "agreed_to_refund_policy": True}, headers=headers)
    assert response.status_code == 400
    assert response.json()["title"] == "Address Required"
    assert db["paymentsessions"].count_documents({}) == 0
    assert db["orders"].count_documents({}) == 0


def test_checkout_rejects_lines_without_a_real_variant(client, db, customer):
    _profile, headers = customer
    response = client.post("/checkout", json={
        "shipping_address": SHIPPING, "payment_method": "Chapa", "agreed_to_refund_policy": True,
        "items": [{"id": "p1_v1", "name": "Widget", "price": 10.0, "quantity": 1}],
    }, headers=headers)
    assert response.status_code == 400
    assert db["paymentsessions"].count_documents({}) == 0
    assert db["orders"].count_documents({}) == 0


def test_cash_on_delivery_then_review(client, db, customer):
    _profile, headers = customer
    fill_cart(client, db, headers, quantity=1)
    placed = client.post("/checkout", json={"shipping_address": SHIPPING, "payment_method": "COD",
                                            "agreed_to_refund_policy": True}, headers=headers).json()
    order = placed["order"]
    assert order["paymentStatus"] == "unpaid"

    assert client.get(f"/orders/{order['id']}/reviews/next", headers=headers).status_code == 400
    client.post(f"/orders/{order['id']}/accept", headers=headers)
    pending = client.get(f"/orders/{order['id']}/reviews/next", headers=headers).json()
    assert pending["next"]["item"]["name"] == "Widget"

    missing = client.post(f"/orders/{order['id']}/reviews", json={"rating": 0}, headers=headers)
    assert missing.status_code == 400
    result = client.post(f"/orders/{order['id']}/reviews", json={"rating": 5, "review_text": "Great"},
                         headers=headers).json()
    assert result["next"] is None
    assert client.get(f"/orders/{order['id']}/reviews/next", headers=headers).json()["done"] is True
    assert len(client.get("/reviews", headers=headers).json()) == 1


def test_payment_qr(client, db, customer):
    _profile, headers = customer
    fill_cart(client, db, headers)
    started = client.post("/checkout", json={"shipping_address": SHIPPING, "payment_method": "Chapa",
                                             "agreed_to_refund_policy": True}, headers=headers).json()
    qr = client.get(f"/payments/sessions/{started['session']['id']}/qr", headers=headers).json()
    assert qr["qr"].startswith("data:image/png;base64,")
    assert qr["pay_url"].endswith(started["formUrl"])


def test_supplier_routes(client, db, customer, supplier, media):
    _profile, customer_headers = customer
    supplier_profile, headers = supplier
    body = {
        "name": "T-Shirt",
        "description": "Cotton tee",
        "category": "Clothing",
        "attributes": ["Size"],
        "images": ["data:image/jpeg;base64,aGVsbG8="],
        "variants": [{"values": {"Size": "M"}, "price": 250, "stock": 4,
                      "image": "data:image/jpeg;base64,aGVsbG8="}],
    }
    assert client.post("/supplier/products", json=body, headers=customer_headers).status_code == 403

    created = client.post("/supplier/products", json=body, headers=headers)
    assert created.status_code == 200, created.text
    assert created.json()["status"] == "unverified"
    assert created.json()["progress"] == 100
    mine = client.get("/supplier/products", headers=headers).json()
    assert [p["name"] for p in mine] == ["T-Shirt"]
    assert client.get("/products").json() == []

    sent = client.post("/supplier/chat", json={"text": "Hello admin"}, headers=headers).json()
    assert sent["senderId"] == supplier_profile["uid"]
    assert client.get("/supplier/chat", headers=headers).json()[0]["text"] == "Hello admin"
    assert db["chat"].find_one({"text": "Hello admin"})["path"] == f"chats/admin_{supplier_profile['uid']}/messages"
    assert client.get("/supplier/products", params={"status": "lost"}, headers=headers).status_code == 400
    assert client.get("/supplier/notifications", headers=headers).json()["unread"] == 0


def test_support_chat(client, customer):
    _profile, headers = customer
    sent = client.post("/chat/support", json={"text": "TX-12345-unknown"}, headers=headers).json()
    assert [m["sender"] for m in sent] == ["customer", "service", "service"]
    assert len(client.get("/chat/support", headers=headers).json()) == 3


def test_customer_chat_with_admin(client, db, customer):
    profile, headers = customer
    token = headers["Authorization"].split()[1]
    assert client.post("/chat/messages", json={"text": "  "}, headers=headers).status_code == 400

    first = client.post("/chat/messages", json={"text": "Hello"}, headers=headers).json()
    assert first["sender"] == "user"
    with client.websocket_connect(f"/ws/chat?token={token}") as ws:
        assert ws.receive_json()["text"] == "Hello"
        client.post("/chat/messages", json={"text": "Do you deliver to Hawassa?"}, headers=headers)
        assert ws.receive_json()["text"] == "Do you deliver to Hawassa?"

    path = f"chats/user_{profile['uid']}/messages"
    db["chat"].insert_one({"path": path, "text": "Yes", "sender": "admin", "timestamp": 1, "isRead": False})
    history = client.get("/chat/messages", headers=headers).json()
    assert [m["text"] for m in history] == ["Yes", "Hello", "Do you deliver to Hawassa?"]
    assert db["chat"].count_documents({"path": path, "sender": "admin", "isRead": False}) == 0


def test_feedback_requires_rating(client, customer):
    _profile, headers = customer
    body = {"title": "Slow delivery", "feedback": "Took a week"}
    missing = client.post("/feedback", json=body, headers=headers)
    assert missing.status_code == 400
    assert missing.json()["title"] == "Rating Required"

    created = client.post("/feedback", json={**body, "rating": 3, "category": "delivery",
                                             "image": "data:image/png;base64,aGVsbG8="}, headers=headers)
    assert created.status_code == 200
    listed = client.get("/feedback", headers=headers).json()
    assert listed[0]["imageUrl"] == "https://media.test/feedback_image/feedback.jpg"


def test_settings_promotions_and_media(client, db, customer):
    _profile, headers = customer
    assert client.get("/settings/refund_policy").status_code == 404
    db["settings"].insert_one({"_id": "refund_policy", "text": "30 days"})
    assert client.get("/settings/refund_policy").json()["text"] == "30 days"

    db["promotions"].insert_one({"type": "text", "text": "Sale", "active": True})
    assert client.get("/promotions").json()[0]["text"] == "Sale"

    assert client.post("/media/unknown", json={"data": "aGVsbG8="}, headers=headers).status_code == 404
    uploaded = client.post("/media/profile_picture", json={"data": "aGVsbG8=", "filename": "me.jpg"},
                           headers=headers)
    assert uploaded.json()["url"] == "https://media.test/profile_picture/me.jpg"


def test_profile_stream_pushes_updates(client, customer):
    profile, headers = customer
    token = headers["Authorization"].split()[1]
    with client.websocket_connect(f"/ws/profile?token={token}") as ws:
        assert ws.receive_json()["email"] == profile["email"]
        client.patch("/profile", json={"location": "Piassa"}, headers=headers)
        assert ws.receive_json()["location"] == "Piassa"


def test_stream_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/profile?token=bad") as ws:
            ws.receive_json()
