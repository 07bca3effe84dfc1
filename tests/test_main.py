from fastapi.testclient import TestClient

import config
from database import db
from main import app


def test_health(client):
    res = client.get("/api/health")
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["database"] == "Connected"
    assert body["environment"] == "development"


def test_seed_loads_demo_data_once(client):
    res = client.post("/api/seed")
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["seeded"] is True
    assert data["products"] == 4
    assert db["user"].count_documents({"role": "seller"}) == 2

    pizza = db["product"].find_one({"name": "Margherita Pizza"})
    assert pizza["price"] == 18.99
    assert pizza["stock"]["quantity"] == 50
    assert pizza["images"][0]["is_primary"] is True

    again = client.post("/api/seed")
    assert again.json()["data"]["seeded"] is False


def test_seed_hidden_outside_development(client, monkeypatch):
    monkeypatch.setattr(config, "ENVIRONMENT", "production")
    res = client.post("/api/seed")
    assert res.status_code == 404
    assert db["product"].count_documents({}) == 0


def test_unhandled_errors_are_wrapped(monkeypatch):
    import directory

    def boom(limit):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(directory, "featured_vendors", boom)
    with TestClient(app, raise_server_exceptions=False) as client:
        res = client.get("/api/users/featured/vendors")
    assert res.status_code == 500
    assert res.json() == {"success": False, "message": "Something went wrong!", "error": "kaboom"}
