import os

os.environ["DATABASE_NAME"] = "marketplace_test"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ENVIRONMENT"] = "development"

import mongomock
import pytest
from fastapi.testclient import TestClient

import database

# swap the handle before any module binds it with `from database import db`
database.db = mongomock.MongoClient()[os.environ["DATABASE_NAME"]]

import ratelimit
from database import db
from main import app
from media import get_media_host

PASSWORD = "Password123"


class FakeMediaHost:
    def __init__(self):
        self.uploaded = []
        self.deleted = []
        self.fail_on = set()

    def upload(self, content, folder, transformation=None):
        public_id = f"{folder}/img{len(self.uploaded) + 1}"
        self.uploaded.append(public_id)
        return {"url": f"https://media.example.com/{public_id}.jpg", "public_id": public_id}

    def delete(self, public_id):
        if public_id in self.fail_on:
            raise RuntimeError("media host unavailable")
        self.deleted.append(public_id)
        return {"result": "ok"}


@pytest.fixture(autouse=True)
def clean_state():
    for name in ("user", "product", "order"):
        db[name].delete_many({})
    ratelimit.default_store.clear()
    yield


@pytest.fixture
def media():
    return FakeMediaHost()


@pytest.fixture
def client(media):
    app.dependency_overrides[get_media_host] = lambda: media
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(client):
    def _make(role="buyer", email=None, business_name="Pizza Roma", first_name="Jamie"):
        body = {
            "first_name": first_name,
            "last_name": "Tester",
            "email": email or f"{role}{db['user'].count_documents({}) + 1}@market.com",
            "password": PASSWORD,
            "role": role,
        }
        if role == "seller":
            body["business_info"] = {"business_name": business_name, "business_type": "restaurant"}
        res = client.post("/api/auth/register", json=body)
        assert res.status_code == 201, res.json()
        data = res.json()["data"]
        return {"token": data["token"], "user": data["user"], "headers": auth_header(data["token"])}

    return _make


@pytest.fixture
def make_product(client):
    def _make(seller, name="Margherita Pizza", price=18.99, quantity=50, category="bakery", **extra):
        form = {
            "name": name,
            "description": "Tomato, mozzarella and basil on a thin crust.",
            "category": category,
            "price": str(price),
            "unit": "per_piece",
            "stock.quantity": str(quantity),
            "stock.unit": "pieces",
        }
        form.update(extra)
        files = [("images", ("photo.jpg", b"\xff\xd8\xff fake jpeg", "image/jpeg"))]
        res = client.post("/api/products", data=form, files=files, headers=seller["headers"])
        assert res.status_code == 201, res.json()
        return res.json()["data"]["product"]

    return _make
