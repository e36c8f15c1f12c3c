import pytest
import requests

from macrofit.core.fallback import TransientFetchError
from macrofit.jobs import menu_import
from macrofit.models import Brand
from macrofit.vendors import nutritionix, usda


class FakeSource:
    def __init__(self, name, answer):
        self.name = name
        self.answer = answer
        self.calls = 0

    def try_fetch(self, query):
        self.calls += 1
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer


class FakeMenuStore:
    """Menu rows keyed by (brand_id, item_name), preserving default prices like the SQL upsert."""

    def __init__(self):
        self.brands = {"mcdonalds": Brand(id="b1", brand_key="mcdonalds", display_name="McDonald's")}
        self.items = {}
        self.touched = []

    def get_brand(self, brand_key):
        return self.brands.get(brand_key)

    def touch_brand_import(self, brand_id):
        self.touched.append(brand_id)

    def upsert_imported_item(self, brand_id, row, source):
        key = (brand_id, row["item_name"])
        existing = self.items.get(key)
        stored = dict(row, data_source=source)
        if existing is not None:
            stored["default_price"] = existing.get("default_price") or row.get("default_price")
        self.items[key] = stored
        return existing is None

    def upsert_manual_item(self, row):
        key = (row["brand_id"], row["item_name"])
        existing = self.items.get(key)
        stored = dict(row, data_source="manual")
        if existing is not None and row.get("default_price") is None:
            stored["default_price"] = existing.get("default_price")
        self.items[key] = stored
        return existing is None


@pytest.fixture
def store(monkeypatch):
    fake = FakeMenuStore()
    monkeypatch.setattr(menu_import, "get_brand", fake.get_brand)
    monkeypatch.setattr(menu_import, "touch_brand_import", fake.touch_brand_import)
    monkeypatch.setattr(menu_import, "upsert_imported_item", fake.upsert_imported_item)
    monkeypatch.setattr(menu_import, "upsert_manual_item", fake.upsert_manual_item)
    return fake


def _nix(name, calories=500, protein=30, brand="McDonald's"):
    return {"food_name": name, "brand_name": brand, "nf_calories": calories, "nf_protein": protein}


def _usda(fdc_id, description, calories=400, protein=20, owner="McDonald's"):
    return {
        "fdcId": fdc_id,
        "description": description,
        "brandOwner": owner,
        "labelNutrients": {"calories": {"value": calories}, "protein": {"value": protein}},
    }


def test_import_filters_to_brand_and_upserts(store):
    source = FakeSource(
        "nutritionix",
        ([_nix("Big Mac"), _nix("Whopper", brand="Burger King"), _nix("big mac")], False),
    )

    result = menu_import.import_brand_menu("mcdonalds", sources=[source])

    assert result.source == "nutritionix"
    assert result.inserted == 1
    assert result.total_raw == 3
    assert result.total_matched == 2
    assert list(store.items) == [("b1", "Big Mac")]
    assert store.touched == ["b1"]


def test_reimport_updates_macros_but_keeps_default_price(store):
    store.items[("b1", "Big Mac")] = {"item_name": "Big Mac", "calories": 550, "protein_g": 25, "default_price": 5.69}
    source = FakeSource("nutritionix", ([_nix("Big Mac", calories=590, protein=25), _nix("McChicken")], False))

    result = menu_import.import_brand_menu("mcdonalds", sources=[source])

    assert (result.inserted, result.updated, result.total) == (1, 1, 2)
    assert store.items[("b1", "Big Mac")]["calories"] == 590
    assert store.items[("b1", "Big Mac")]["default_price"] == 5.69


def test_falls_back_to_usda_when_primary_rate_limited(store):
    primary = FakeSource("nutritionix", TransientFetchError("429", status_code=429))
    secondary = FakeSource("usda", ([_usda(1, "McDonald's Hamburger"), _usda(2, "McDonald's Water", calories=0)], False))

    result = menu_import.import_brand_menu("mcdonalds", sources=[primary, secondary])

    assert primary.calls == 1
    assert result.source == "usda"
    assert result.inserted == 1
    assert store.items[("b1", "McDonald's Hamburger")]["external_ref"] == "usda:1"


def test_all_sources_rate_limited_raises(store):
    primary = FakeSource("nutritionix", TransientFetchError("429", status_code=429))
    secondary = FakeSource("usda", TransientFetchError("429", status_code=429))

    with pytest.raises(menu_import.RateLimitedError):
        menu_import.import_brand_menu("mcdonalds", sources=[primary, secondary])
    assert store.touched == []


def test_no_configured_source_is_service_unavailable(store):
    sources = [FakeSource("nutritionix", (None, True)), FakeSource("usda", (None, True))]

    with pytest.raises(menu_import.ServiceUnavailableError) as excinfo:
        menu_import.import_brand_menu("mcdonalds", sources=sources)
    assert not isinstance(excinfo.value, menu_import.RateLimitedError)


def test_zero_matches_is_a_valid_result(store):
    sources = [
        FakeSource("nutritionix", ([_nix("Whopper", brand="Burger King")], False)),
        FakeSource("usda", ([], False)),
    ]

    result = menu_import.import_brand_menu("mcdonalds", sources=sources)

    assert result.total == 0
    assert result.reason == "Filtered out all 1 items - brand name mismatch"
    assert store.touched == ["b1"]


def test_empty_answer_reason(store):
    result = menu_import.import_brand_menu("mcdonalds", sources=[FakeSource("nutritionix", ([], False))])

    assert result.reason == "No items returned from API"


def test_unknown_brand_raises_lookup_error(store):
    with pytest.raises(LookupError):
        menu_import.import_brand_menu("nope", sources=[])


def test_bulk_upsert_validates_rows(store):
    items = [
        {"brand_id": "b1", "item_name": "Big Mac", "calories": 590, "protein_g": 25, "default_price": "5.99"},
        {"brand_id": "b1", "item_name": "McFlurry", "calories": -1, "protein_g": 8},
        {"item_name": "Orphan", "calories": 1, "protein_g": 1},
        "junk",
    ]

    result = menu_import.bulk_upsert_menu_items(items)

    assert result.inserted == 1
    assert result.skipped == 3
    assert result.errors[0] == {"item_name": "McFlurry", "reason": "calories must be non-negative"}
    assert store.items[("b1", "Big Mac")]["default_price"] == 5.99


def test_bulk_upsert_without_price_keeps_stored_price(store):
    store.items[("b1", "Big Mac")] = {"item_name": "Big Mac", "default_price": 5.69}

    result = menu_import.bulk_upsert_menu_items(
        [{"brand_id": "b1", "item_name": "Big Mac", "calories": 590, "protein_g": 25}]
    )

    assert result.updated == 1
    assert store.items[("b1", "Big Mac")]["default_price"] == 5.69


def test_bulk_upsert_requires_items(store):
    with pytest.raises(ValueError):
        menu_import.bulk_upsert_menu_items([])


def test_html_body_from_primary_falls_through_to_usda(store, monkeypatch):
    class HtmlResponse:
        status_code = 200

        def json(self):
            raise requests.exceptions.JSONDecodeError("Expecting value", "<html></html>", 0)

    class FoodsResponse:
        status_code = 200

        def json(self):
            return {"foods": [_usda(7, "McDonald's Cheeseburger")]}

    class Session:
        def __init__(self, response):
            self.response = response

        def get(self, url, **kwargs):
            return self.response

    monkeypatch.setattr(nutritionix, "_SESSION", Session(HtmlResponse()))
    monkeypatch.setattr(usda, "_SESSION", Session(FoodsResponse()))
    sources = [nutritionix.NutritionixSource("app", "key"), usda.UsdaSource("usda-key")]

    result = menu_import.import_brand_menu("mcdonalds", sources=sources)

    assert result.source == "usda"
    assert result.inserted == 1
