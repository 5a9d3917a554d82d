import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import main
from database import ensure_indexes, utcnow
from errors import MediaUploadError
from realtime import SubscriptionManager


class FakeMedia:
    """Stands in for the media host; records every upload it is asked for."""

    def __init__(self, fail_on=None):
        self.uploads = []
        self.fail_on = fail_on

    async def store(self, category, value, filename="upload"):
        if value.startswith(("http://", "https://")):
            return value
        return await self.upload(category, value.encode(), filename)

    async def upload(self, category, data, filename="upload", content_type="application/octet-stream"):
        if self.fail_on and self.fail_on in filename:
            raise MediaUploadError("Failed to upload file")
        self.uploads.append((category, filename))
        return f"https://media.test/{category}/{filename}"


@pytest.fixture
def db():
    database = mongomock.MongoClient()["marketplace_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def subscriptions():
    return SubscriptionManager()


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def client(db, media):
    main.app.dependency_overrides[main.get_db] = lambda: db
    main.app.dependency_overrides[main.get_media] = lambda: media
    main.app.dependency_overrides[main.get_gateway] = lambda: None
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def seed_product(db, name="Widget", price=10.0, stock=5, status="verified", supplier_id="supplier-1",
                 attributes=("Color",), values=None):
    product_id = ObjectId()
    db["products"].insert_one({
        "_id": product_id,
        "name": name,
        "description": f"A {name.lower()}",
        "category": "Gadgets",
        "images": [f"https://media.test/{name}.jpg"],
        "attributes": list(attributes),
        "status": status,
        "supplierId": supplier_id,
        "createdAt": utcnow(),
    })
    variant_id = ObjectId()
    db["variants"].insert_one({
        "_id": variant_id,
        "productId": str(product_id),
        "values": values or {attr: "Red" for attr in attributes},
        "price": price,
        "stock": stock,
        "image": f"https://media.test/{name}-variant.jpg",
        "createdAt": utcnow(),
    })
    return str(product_id), str(variant_id)


def register(client, email="abebe@example.com", name="Abebe Kebede", password="secret123", **extra):
    response = client.post("/auth/register", json={"name": name, "email": email, "password": password, **extra})
    assert response.status_code == 200, response.text
    return response.json()


def auth_headers(client, email="abebe@example.com", password="secret123"):
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def customer(client):
    profile = register(client)
    return profile, auth_headers(client)


@pytest.fixture
def supplier(client, db):
    profile = register(client, email="supplier@example.com", name="Sara Supplies", role="supplier",
                       trade_license="https://media.test/license.jpg")
    db["userprofile"].update_one({"_id": profile["uid"]}, {"$set": {"status": "active"}})
    return profile, auth_headers(client, email="supplier@example.com")
