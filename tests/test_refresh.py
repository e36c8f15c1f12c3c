from datetime import datetime, timedelta, timezone

import pytest

from macrofit.jobs import refresh
from macrofit.jobs.menu_import import RateLimitedError, ServiceUnavailableError
from macrofit.models import Brand, DiscoveryResult, ImportResult, Place

NOW = datetime(2026, 10, 1, tzinfo=timezone.utc)


def _brand(key, last_imported_at=None):
    return Brand(id=f"b-{key}", brand_key=key, display_name=key.title(), last_imported_at=last_imported_at)


def _place(key):
    return Place(id=f"p-{key}", external_id=f"osm:node:{key}", brand_id=f"b-{key}", name=key, brand_key=key, lat=1.0, lng=1.0)


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr(refresh.time, "sleep", recorded.append)
    return recorded


def test_is_stale_threshold():
    week = timedelta(days=7)

    assert refresh.is_stale(_brand("kfc"), NOW, week) is True
    assert refresh.is_stale(_brand("kfc", NOW - timedelta(days=8)), NOW, week) is True
    assert refresh.is_stale(_brand("kfc", NOW - timedelta(days=2)), NOW, week) is False
    assert refresh.is_stale(_brand("kfc", datetime(2026, 9, 30)), NOW, week) is False


def test_import_with_retry_backs_off_on_rate_limit(sleeps):
    calls = []

    def importer(brand_key):
        calls.append(brand_key)
        if len(calls) < 3:
            raise RateLimitedError("429")
        return ImportResult(brand_key=brand_key, source="usda", inserted=2, updated=1)

    outcome = refresh.import_with_retry(_brand("kfc"), importer=importer)

    assert outcome.success is True
    assert outcome.attempts == 3
    assert (outcome.inserted, outcome.updated, outcome.source) == (2, 1, "usda")
    assert sleeps == [2.0, 4.0]


def test_import_with_retry_gives_up_after_max_attempts(sleeps):
    def importer(brand_key):
        raise RateLimitedError("429")

    outcome = refresh.import_with_retry(_brand("kfc"), importer=importer)

    assert outcome.success is False
    assert outcome.attempts == refresh.MAX_IMPORT_ATTEMPTS
    assert sleeps == [2.0, 4.0, 8.0]


def test_import_with_retry_fails_fast_on_other_errors(sleeps):
    def importer(brand_key):
        raise ServiceUnavailableError("no source configured")

    outcome = refresh.import_with_retry(_brand("kfc"), importer=importer)

    assert outcome.success is False
    assert outcome.attempts == 1
    assert outcome.error == "no source configured"
    assert sleeps == []


def test_refresh_imports_only_stale_brands(monkeypatch, sleeps):
    fresh = _brand("kfc", datetime.now(timezone.utc))
    stale = _brand("wingstop")
    failing = _brand("subway", datetime.now(timezone.utc) - timedelta(days=30))
    imported = []

    def fake_import(brand_key):
        imported.append(brand_key)
        if brand_key == "subway":
            raise ServiceUnavailableError("down")
        return ImportResult(brand_key=brand_key, source="nutritionix", inserted=3)

    monkeypatch.setattr(refresh, "places_in_bbox", lambda bbox, keys: [_place("kfc"), _place("wingstop"), _place("subway")])
    monkeypatch.setattr(refresh, "brands_by_ids", lambda ids: [fresh, failing, stale])
    monkeypatch.setattr(refresh, "import_brand_menu", fake_import)

    result = refresh.refresh_brand_menus(40.0, -74.0, 5.0)

    assert result.places_found == 3
    assert result.brands_checked == 3
    assert result.brands_needing_import == 2
    assert result.brands_imported == 1
    assert sorted(imported) == ["subway", "wingstop"]
    by_key = {outcome.brand_key: outcome for outcome in result.outcomes}
    assert by_key["wingstop"].success is True
    assert by_key["subway"].error == "down"


def test_refresh_widens_discovery_radius(monkeypatch):
    radii = []
    bbox_calls = []

    def fake_bbox(bbox, keys):
        bbox_calls.append(keys)
        return [] if len(bbox_calls) == 1 else [_place("kfc")]

    def fake_discover(lat, lng, radius_km, brand_keys):
        radii.append(radius_km)
        places = [_place("kfc")] if len(radii) == 3 else []
        return DiscoveryResult(places=places)

    monkeypatch.setattr(refresh, "places_in_bbox", fake_bbox)
    monkeypatch.setattr(refresh, "discover_places", fake_discover)
    monkeypatch.setattr(refresh, "brands_by_ids", lambda ids: [_brand("kfc", datetime.now(timezone.utc))])

    result = refresh.refresh_brand_menus(40.0, -74.0, 4.0, ["KFC"])

    assert radii == [4.0, 6.0, 9.0]
    assert bbox_calls == [["kfc"], ["kfc"]]
    assert result.places_found == 1
    assert result.brands_needing_import == 0


def test_refresh_reports_none_found(monkeypatch):
    monkeypatch.setattr(refresh, "places_in_bbox", lambda bbox, keys: [])
    monkeypatch.setattr(refresh, "discover_places", lambda *args: DiscoveryResult())

    result = refresh.refresh_brand_menus(40.0, -74.0, 4.0)

    assert result.places_found == 0
    assert result.message == "No restaurants found nearby"
    assert result.outcomes == []


def test_refresh_propagates_invalid_point(monkeypatch):
    def fake_discover(*args):
        raise ValueError("lat/lng out of range")

    monkeypatch.setattr(refresh, "places_in_bbox", lambda bbox, keys: [])
    monkeypatch.setattr(refresh, "discover_places", fake_discover)

    with pytest.raises(ValueError):
        refresh.refresh_brand_menus(95.0, 0.0, 4.0)
