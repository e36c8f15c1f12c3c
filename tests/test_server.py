from datetime import datetime, timezone

import pytest

from macrofit.jobs import server
from macrofit.jobs.menu_import import ServiceUnavailableError
from macrofit.jobs.rank import SearchResult
from macrofit.models import DiscoveryResult, ImportResult, PriceReport, RankResult, RefreshResult


@pytest.fixture
def client():
    return server.app.test_client()


@pytest.fixture
def recorded(monkeypatch):
    calls = {}

    def fake_refresh(lat, lng, radius_km, include_brands=None):
        calls["refresh"] = (lat, lng, radius_km, include_brands)
        return RefreshResult(places_found=1)

    def fake_search(rank_request):
        calls["search"] = rank_request
        row = RankResult(
            rank=1,
            place_id="p1",
            place_name="Chipotle",
            brand_key="chipotle",
            item_id="i1",
            item_name="Chicken Bowl",
            calories=655,
            protein=53,
            price=9.99,
            score=2.1,
        )
        return SearchResult(rows=[row], debug={"brand_count": 1, "place_count": 1, "item_count": 1} if rank_request.debug else None)

    monkeypatch.setattr(server, "refresh_brand_menus", fake_refresh)
    monkeypatch.setattr(server, "search", fake_search)
    return calls


def test_health_endpoint(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_search_refreshes_then_ranks(client, recorded):
    payload = {
        "lat": 40.0,
        "lng": -74.0,
        "radius_km": 3,
        "mode": "Cutting",
        "target_protein": 40,
        "include_brands": ["Chipotle"],
        "debug": True,
    }

    response = client.post("/search", json=payload)

    assert response.status_code == 200
    body = response.get_json()
    assert body["data"][0]["item_name"] == "Chicken Bowl"
    assert body["debug"]["place_count"] == 1
    assert recorded["refresh"] == (40.0, -74.0, 3.0, ["chipotle"])
    assert recorded["search"].mode == "cutting"
    assert recorded["search"].target_protein == 40.0


def test_search_without_point_skips_refresh(client, recorded):
    response = client.post("/search", json={})

    assert response.status_code == 200
    assert "refresh" not in recorded
    assert "debug" not in response.get_json()


def test_search_survives_refresh_failure(client, recorded, monkeypatch):
    def broken_refresh(*args):
        raise RuntimeError("overpass down")

    monkeypatch.setattr(server, "refresh_brand_menus", broken_refresh)

    response = client.post("/search", json={"lat": 40.0, "lng": -74.0})

    assert response.status_code == 200
    assert len(response.get_json()["data"]) == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"mode": "maintaining"},
        {"lat": 40.0},
        {"lat": 100, "lng": 0},
        {"w_p": -1},
        {"limit": "bad"},
        {"radius_km": 0},
        {"exclude_brands": "kfc"},
    ],
)
def test_search_rejects_invalid_payload(client, recorded, payload):
    response = client.post("/search", json=payload)

    assert response.status_code == 400
    assert "error" in response.get_json()


def test_submit_price(client, monkeypatch):
    stamp = datetime(2026, 10, 1, tzinfo=timezone.utc)
    monkeypatch.setattr(server, "report_price", lambda place_id, item_id, price: PriceReport(place_id, item_id, price, stamp))

    response = client.post("/prices", json={"place_id": "p1", "item_id": "i1", "price": 9.99})

    assert response.status_code == 200
    assert response.get_json()["data"] == {"place_id": "p1", "item_id": "i1", "price": 9.99, "updated_at": stamp.isoformat()}


def test_submit_price_errors(client, monkeypatch):
    def fake_report(place_id, item_id, price):
        if price == "bad":
            raise ValueError("price must be a number")
        raise LookupError("unknown place")

    monkeypatch.setattr(server, "report_price", fake_report)

    assert client.post("/prices", json={"place_id": "p1"}).status_code == 400
    assert client.post("/prices", json={"place_id": "p1", "item_id": "i1", "price": "bad"}).status_code == 400
    assert client.post("/prices", json={"place_id": "p1", "item_id": "i1", "price": 5}).status_code == 404


def test_discover_requires_point(client, monkeypatch):
    captured = {}

    def fake_discover(lat, lng, radius_km, brand_keys=None):
        captured["args"] = (lat, lng, radius_km, brand_keys)
        return DiscoveryResult(message="No restaurants found nearby")

    monkeypatch.setattr(server, "discover_places", fake_discover)

    assert client.post("/discover", json={}).status_code == 400
    response = client.post("/discover", json={"lat": 1, "lng": 2, "brand_keys": ["KFC"]})

    assert response.status_code == 200
    assert response.get_json()["data"]["count"] == 0
    assert captured["args"][3] == ["kfc"]


def test_refresh_endpoint_returns_outcomes(client, recorded):
    response = client.post("/refresh", json={"lat": 1, "lng": 2, "radius_km": 4})

    assert response.status_code == 200
    assert response.get_json()["data"]["places_found"] == 1
    assert recorded["refresh"] == (1.0, 2.0, 4.0, None)


def test_import_brand_status_codes(client, monkeypatch):
    def fake_import(brand_key):
        if brand_key == "nope":
            raise LookupError("Brand not found: nope")
        if brand_key == "kfc":
            raise ServiceUnavailableError("No nutrition source is configured or reachable")
        return ImportResult(brand_key=brand_key, source="usda", inserted=2, updated=1)

    monkeypatch.setattr(server, "import_brand_menu", fake_import)

    assert client.post("/brands/nope/import").status_code == 404
    assert client.post("/brands/kfc/import").status_code == 503
    response = client.post("/brands/Wingstop/import")
    assert response.status_code == 200
    assert response.get_json()["data"]["total"] == 3


def test_bulk_menu_items_requires_list(client):
    assert client.post("/menu-items/bulk", json={"items": "nope"}).status_code == 400


def test_seed_enqueue_and_status(client, monkeypatch):
    monkeypatch.setattr(server, "start_seed_job", lambda metros, radius_km: "job-1")
    monkeypatch.setattr(server, "seed_job_status", lambda job_id: {"id": job_id, "status": "queued"} if job_id == "job-1" else None)

    response = client.post("/seed", json={"metros": ["Austin, TX"]})
    assert response.status_code == 202
    assert response.get_json()["data"]["job_id"] == "job-1"

    assert client.get("/seed/job-1").get_json()["data"]["status"] == "queued"
    assert client.get("/seed/missing").status_code == 404


def test_status_reports_table_counts(client, monkeypatch):
    monkeypatch.setattr(server, "table_counts", lambda: {"brand_count": 3})

    assert client.get("/status").get_json()["data"] == {"brand_count": 3}


@pytest.mark.parametrize("payload", [{"debug": "false"}, {"debug": 1}, {"lat": 1, "lng": 2, "refresh": "no"}])
def test_search_flags_must_be_booleans(client, recorded, payload):
    response = client.post("/search", json=payload)

    assert response.status_code == 400
    assert "refresh" not in recorded


def test_search_refresh_false_skips_refresh(client, recorded):
    response = client.post("/search", json={"lat": 1, "lng": 2, "refresh": False, "debug": False})

    assert response.status_code == 200
    assert "refresh" not in recorded
    assert recorded["search"].debug is False
