"""Resolve prices and rank menu items against macro targets."""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from macrofit.core import db
from macrofit.core.geo import bounding_box, haversine_km
from macrofit.models import (
    FALLBACK_PRICE,
    MAX_WEIGHT,
    MODES,
    MenuItem,
    Place,
    PriceReport,
    RankRequest,
    RankResult,
)

logger = logging.getLogger(__name__)

CUTTING_PENALTY_PER_1000_KCAL = 0.15
MIN_REPORTED_PRICE = 0.0
MAX_REPORTED_PRICE = 1000.0


@dataclass
class SearchResult:
    rows: List[RankResult] = field(default_factory=list)
    debug: Optional[Dict[str, int]] = None


def clamp_weight(value: Any) -> float:
    return max(0.0, min(MAX_WEIGHT, float(value or 0)))


def resolve_price(item: MenuItem, report: Optional[PriceReport]) -> Tuple[float, Optional[Any]]:
    """Local report, else catalog default, else the fallback constant."""
    if report is not None:
        return float(report.price), report.updated_at
    if item.default_price is not None:
        return float(item.default_price), None
    return FALLBACK_PRICE, None


def score_item(request: RankRequest, protein: float, calories: float, price: float) -> float:
    score = 0.0
    if request.target_protein is not None:
        score += request.w_p * abs(protein - request.target_protein) / max(1.0, request.target_protein)
    if request.target_calories is not None:
        score += request.w_c * abs(calories - request.target_calories) / max(1.0, request.target_calories)
    score += request.w_r * price
    if request.mode == "cutting":
        score += CUTTING_PENALTY_PER_1000_KCAL * calories / 1000.0
    return round(score, 4)


def normalize_request(request: RankRequest) -> RankRequest:
    if request.mode not in MODES:
        raise ValueError(f"mode must be one of {', '.join(MODES)}")
    if request.limit is None or int(request.limit) <= 0:
        raise ValueError("limit must be positive")
    if request.has_point and (request.radius_km is None or request.radius_km <= 0):
        raise ValueError("radius_km must be positive")
    request.w_p = clamp_weight(request.w_p)
    request.w_c = clamp_weight(request.w_c)
    request.w_r = clamp_weight(request.w_r)
    request.limit = int(request.limit)
    request.include_brands = [key.lower() for key in request.include_brands or []]
    request.exclude_brands = [key.lower() for key in request.exclude_brands or []]
    return request


def _sort_key(result: RankResult) -> Tuple[float, float, str, str]:
    distance = result.distance if result.distance is not None else math.inf
    return result.score, distance, result.item_id, result.place_id


def rank_candidates(
    request: RankRequest,
    places: Iterable[Place],
    items: Iterable[MenuItem],
    reports: Iterable[PriceReport],
) -> List[RankResult]:
    """Score every (place, brand item) pair that survives the filters."""
    items_by_brand: Dict[str, List[MenuItem]] = {}
    for item in items:
        items_by_brand.setdefault(item.brand_id, []).append(item)
    report_by_pair = {(report.place_id, report.item_id): report for report in reports}
    include = set(request.include_brands)
    exclude = set(request.exclude_brands)

    results: List[RankResult] = []
    for place in places:
        distance = None
        if request.has_point:
            if place.lat is None or place.lng is None:
                continue
            distance = haversine_km(request.lat, request.lng, place.lat, place.lng)
            if distance > request.radius_km:
                continue

        brand_key = (place.brand_key or "").lower()
        if brand_key in exclude or (include and brand_key not in include):
            continue

        for item in items_by_brand.get(place.brand_id, []):
            if request.min_protein is not None and item.protein_g < request.min_protein:
                continue

            price, price_updated_at = resolve_price(item, report_by_pair.get((place.id, item.id)))
            if request.price_cap is not None and price > request.price_cap:
                continue

            results.append(
                RankResult(
                    rank=0,
                    place_id=place.id,
                    place_name=place.name,
                    brand_key=place.brand_key or "",
                    item_id=item.id,
                    item_name=item.item_name,
                    calories=item.calories,
                    protein=item.protein_g,
                    price=price,
                    score=score_item(request, item.protein_g, item.calories, price),
                    lat=place.lat,
                    lng=place.lng,
                    distance=round(distance, 2) if distance is not None else None,
                    price_updated_at=price_updated_at,
                )
            )

    results.sort(key=_sort_key)
    for index, result in enumerate(results, start=1):
        result.rank = index
    return results[: request.limit]


def search(request: RankRequest) -> SearchResult:
    """Load current places, items and price reports, then rank them."""
    request = normalize_request(request)
    if request.has_point:
        places = db.places_in_bbox(bounding_box(request.lat, request.lng, request.radius_km))
    else:
        places = db.list_places()

    brand_ids = sorted({place.brand_id for place in places})
    items = db.menu_items_for_brands(brand_ids)
    reports = db.price_reports_for_places([place.id for place in places])

    rows = rank_candidates(request, places, items, reports)
    logger.info("Ranked %d rows from %d places and %d items", len(rows), len(places), len(items))

    debug = None
    if request.debug:
        debug = {"brand_count": len(brand_ids), "place_count": len(places), "item_count": len(items)}
    return SearchResult(rows=rows, debug=debug)


def report_price(place_id: str, item_id: str, price: Any) -> PriceReport:
    """Validate and store a user price report, replacing any previous one."""
    if not place_id or not item_id:
        raise ValueError("place_id and item_id are required")
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        raise ValueError("price must be a number")
    price = float(price)
    if not math.isfinite(price) or price <= MIN_REPORTED_PRICE or price > MAX_REPORTED_PRICE:
        raise ValueError("price must be a positive number between 0 and 1000")
    report = db.upsert_price_report(place_id, item_id, round(price, 2))
    logger.info("Stored price %.2f for place %s item %s", report.price, place_id, item_id)
    return report
