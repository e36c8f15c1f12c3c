"""Utilities for transforming provider payloads into database rows."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from macrofit.core.brands import BrandEntry, normalize

logger = logging.getLogger(__name__)


def element_coordinates(element: Dict[str, Any]) -> Optional[tuple]:
    """``(lat, lng)`` of a node, or of a way's ``center``."""
    center = element.get("center") or {}
    lat = element.get("lat", center.get("lat"))
    lng = element.get("lon", center.get("lon"))
    if lat is None or lng is None:
        return None
    try:
        return float(lat), float(lng)
    except (TypeError, ValueError):
        return None


def external_place_id(element: Dict[str, Any]) -> Optional[str]:
    element_type = element.get("type")
    element_id = element.get("id")
    if not element_type or element_id is None:
        return None
    return f"osm:{element_type}:{element_id}"


def to_place_row(element: Dict[str, Any], brand: BrandEntry) -> Optional[Dict[str, Any]]:
    tags = element.get("tags") or {}
    external_id = external_place_id(element)
    coords = element_coordinates(element)
    if not external_id or not coords:
        logger.debug("Skipping element without id or coordinates: %s", external_id)
        return None

    return {
        "external_id": external_id,
        "name": tags.get("name") or brand.display_name,
        "lat": coords[0],
        "lng": coords[1],
        "address": tags.get("addr:street"),
        "city": tags.get("addr:city"),
        "state": tags.get("addr:state"),
        "postal_code": tags.get("addr:postcode"),
    }


def _round_int(value: Any) -> int:
    try:
        return max(0, int(round(float(value or 0))))
    except (TypeError, ValueError):
        return 0


def matches_nutritionix_brand(item: Dict[str, Any], brand_key: str, display_name: str, brand_id: Optional[str]) -> bool:
    if brand_id and item.get("nix_brand_id") == brand_id:
        return True
    item_brand = normalize(item.get("brand_name"))
    if not item_brand:
        return False
    return item_brand == normalize(display_name) or normalize(brand_key) in item_brand


def nutritionix_item_to_row(item: Dict[str, Any], brand_id: Optional[str]) -> Dict[str, Any]:
    name = (item.get("food_name") or "").strip()
    return {
        "item_name": name,
        "calories": _round_int(item.get("nf_calories")),
        "protein_g": _round_int(item.get("nf_protein")),
        "external_ref": f"nutritionix:{item.get('nix_brand_id') or brand_id or 'unknown'}:{name}",
    }


def matches_usda_brand(food: Dict[str, Any], brand_key: str, display_name: str) -> bool:
    needles = {normalize(brand_key), normalize(display_name)} - {""}
    owner = normalize(food.get("brandOwner"))
    description = normalize(food.get("description"))
    return any(needle in owner or needle in description for needle in needles)


def _label_value(food: Dict[str, Any], nutrient: str) -> Any:
    label = food.get("labelNutrients") or {}
    return (label.get(nutrient) or {}).get("value")


def usda_food_to_row(food: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "item_name": (food.get("description") or "").strip(),
        "calories": _round_int(_label_value(food, "calories")),
        "protein_g": _round_int(_label_value(food, "protein")),
        "external_ref": f"usda:{food.get('fdcId')}",
    }


def dedupe_by_name(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop rows whose normalized item name was already seen; first occurrence wins."""
    seen = set()
    unique: List[Dict[str, Any]] = []
    for row in rows:
        key = normalize(row.get("item_name"))
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(row)
    return unique
