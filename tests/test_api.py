from datetime import date
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from conftest import make_term
from roomspots.main import create_app

ALWAYS = make_term(9, date(2000, 1, 1), date(2100, 12, 31))


@pytest.fixture
def client(gateway, store, settings):
    gateway.terms.append(ALWAYS)
    with TestClient(create_app(gateway=gateway, store=store, settings=settings)) as client:
        yield client


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_buildings_empty_before_refresh(client):
    data = client.get("/api/buildings").json()
    assert data["count"] == 0
    assert data["lastError"] is None


def test_refresh_then_list(client):
    resp = client.post("/api/refresh")
    assert resp.status_code == 200
    data = resp.json()
    assert data["count"] == 3
    assert sorted(data["report"]["refreshed"]) == [1, 2, 3]
    assert data["lastError"] is None

    listed = client.get("/api/buildings").json()
    assert [item["building"]["id"] for item in listed["items"]] == [1, 2, 3]
    first = listed["items"][0]
    assert first["totalRooms"] == 2
    assert set(first) >= {"isOpen", "changesAt", "availableRooms", "images", "ratings", "isFavorited"}
    assert listed["lastRefreshAt"] is not None


def test_failed_refresh_serves_cached_data(client, gateway):
    client.post("/api/refresh")
    gateway.fail_listing = True

    data = client.post("/api/refresh").json()
    assert data["count"] == 3
    assert data["lastError"].startswith("REFRESH_ERROR")
    assert data["report"] is None
    assert client.get("/api/buildings").json()["lastError"] is not None


def test_failed_forced_refresh_keeps_cached_data(client, gateway):
    client.post("/api/refresh")
    gateway.fail_listing = True

    data = client.post("/api/refresh", params={"force": True}).json()
    assert data["count"] == 3
    assert data["lastError"] is not None


def test_single_building_and_rooms(client):
    client.post("/api/refresh")
    snapshot = client.get("/api/buildings/1").json()
    assert snapshot["building"]["name"] == "Building 1"

    rooms = client.get("/api/buildings/1/rooms").json()
    assert [r["roomNumber"] for r in rooms] == ["101", "102"]
    assert {r["status"] for r in rooms} <= {"available", "occupied", "closed"}


def test_unknown_building_is_404(client):
    assert client.get("/api/buildings/99").status_code == 404
    assert client.get("/api/buildings/99/rooms").status_code == 404


def test_clear_cache(client):
    client.post("/api/refresh")
    assert client.delete("/api/cache").json() == {"cleared": 3}
    assert client.get("/api/buildings").json()["count"] == 0


def test_catalog_page(client):
    data = client.get("/api/catalog").json()
    assert data["total"] == 3
    assert len(data["items"]) == 2
    assert data["hasMore"] is True


def test_catalog_gateway_failure_is_502(client, gateway):
    gateway.fail_listing = True
    assert client.get("/api/catalog").status_code == 502


def test_current_terms(client):
    terms = client.get("/api/terms/current").json()
    assert [t["id"] for t in terms] == [9]


def test_toggle_favorite(client):
    user = str(uuid4())
    resp = client.post("/api/favorites/2", params={"user_id": user})
    assert resp.status_code == 200
    assert resp.json() == {"buildingId": 2, "isFavorited": True, "favorites": 1}

    client.post("/api/refresh")
    items = client.get("/api/buildings", params={"user_id": user}).json()["items"]
    assert [i["isFavorited"] for i in items] == [False, True, False]

    assert client.post("/api/favorites/99", params={"user_id": user}).status_code == 404
