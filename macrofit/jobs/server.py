"""HTTP entrypoint for search, price reports, discovery, refresh and seeding."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request

from macrofit.core.config import get_settings
from macrofit.core.db import table_counts
from macrofit.jobs.discovery import discover_places
from macrofit.jobs.menu_import import ServiceUnavailableError, bulk_upsert_menu_items, import_brand_menu
from macrofit.jobs.rank import report_price, search
from macrofit.jobs.refresh import refresh_brand_menus
from macrofit.jobs.seed import DEFAULT_SEED_RADIUS_KM, seed_job_status, start_seed_job
from macrofit.models import RankRequest

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App ----------
app = Flask(__name__)


# ---------- Payload helpers ----------


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _optional_float(payload: Dict[str, Any], name: str, default: Optional[float] = None) -> Optional[float]:
    raw = payload.get(name)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise ValueError(f"{name} must be numeric")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be numeric") from None
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite")
    return value


def _required_float(payload: Dict[str, Any], name: str) -> float:
    value = _optional_float(payload, name)
    if value is None:
        raise ValueError(f"{name} is required")
    return value


def _optional_int(payload: Dict[str, Any], name: str, default: int) -> int:
    raw = payload.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def _optional_bool(payload: Dict[str, Any], name: str, default: bool) -> bool:
    raw = payload.get(name)
    if raw is None:
        return default
    if not isinstance(raw, bool):
        raise ValueError(f"{name} must be a boolean")
    return raw


def _string_list(payload: Dict[str, Any], name: str) -> List[str]:
    raw = payload.get(name)
    if raw is None:
        return []
    if not isinstance(raw, list) or not all(isinstance(value, str) for value in raw):
        raise ValueError(f"{name} must be a list of strings")
    return [value.strip().lower() for value in raw if value.strip()]


def _point(payload: Dict[str, Any], required: bool) -> tuple:
    lat = _optional_float(payload, "lat")
    lng = _optional_float(payload, "lng")
    if (lat is None) != (lng is None):
        raise ValueError("lat and lng must be supplied together")
    if required and lat is None:
        raise ValueError("lat and lng are required")
    if lat is not None and (not -90 <= lat <= 90 or not -180 <= lng <= 180):
        raise ValueError("lat/lng out of range")
    return lat, lng


def _radius(payload: Dict[str, Any]) -> float:
    radius_km = _optional_float(payload, "radius_km", get_settings().default_radius_km)
    if radius_km <= 0:
        raise ValueError("radius_km must be positive")
    return radius_km


def parse_rank_request(payload: Dict[str, Any]) -> RankRequest:
    lat, lng = _point(payload, required=False)
    mode = str(payload.get("mode") or "bulking").lower()
    if mode not in ("bulking", "cutting"):
        raise ValueError("mode must be bulking or cutting")
    weights = {}
    for name, default in (("w_p", 0.5), ("w_c", 0.3), ("w_r", 0.2)):
        value = _optional_float(payload, name, default)
        if value < 0:
            raise ValueError(f"{name} must be non-negative")
        weights[name] = value

    return RankRequest(
        mode=mode,
        target_protein=_optional_float(payload, "target_protein"),
        target_calories=_optional_float(payload, "target_calories"),
        lat=lat,
        lng=lng,
        radius_km=_radius(payload),
        price_cap=_optional_float(payload, "price_cap"),
        min_protein=_optional_float(payload, "min_protein"),
        include_brands=_string_list(payload, "include_brands"),
        exclude_brands=_string_list(payload, "exclude_brands"),
        limit=_optional_int(payload, "limit", 30),
        debug=_optional_bool(payload, "debug", False),
        **weights,
    )


# ---------- Routes ----------


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, never the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "nutritionix_configured": settings.nutritionix_configured,
                "usda_configured": bool(settings.usda_api_key),
                "overpass_providers": len(settings.overpass_urls),
            }
        ),
        200,
    )


@app.post("/search")
def search_items() -> Any:
    payload = _payload()
    try:
        rank_request = parse_rank_request(payload)
        refresh_first = _optional_bool(payload, "refresh", True)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    if rank_request.has_point and refresh_first:
        try:
            refresh_brand_menus(
                rank_request.lat,
                rank_request.lng,
                rank_request.radius_km,
                rank_request.include_brands or None,
            )
        except Exception as exc:  # noqa: BLE001
            # Stale or missing menus only reduce what the ranking can see.
            logger.exception("Refresh before search failed: %s", exc)

    try:
        result = search(rank_request)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    body: Dict[str, Any] = {"data": [row.to_dict() for row in result.rows]}
    if result.debug is not None:
        body["debug"] = result.debug
    return jsonify(body), 200


@app.post("/prices")
def submit_price() -> Any:
    payload = _payload()
    place_id = payload.get("place_id")
    item_id = payload.get("item_id")
    if not place_id or not item_id:
        return jsonify({"error": "place_id and item_id are required"}), 400

    try:
        report = report_price(str(place_id), str(item_id), payload.get("price"))
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    except LookupError as exc:
        return jsonify({"error": str(exc)}), 404

    return jsonify({"data": report.to_dict()}), 200


@app.post("/discover")
def discover() -> Any:
    payload = _payload()
    try:
        lat, lng = _point(payload, required=True)
        radius_km = _radius(payload)
        brand_keys = _string_list(payload, "brand_keys")
        result = discover_places(lat, lng, radius_km, brand_keys or None)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify({"data": result.to_dict()}), 200


@app.post("/refresh")
def refresh() -> Any:
    payload = _payload()
    try:
        lat, lng = _point(payload, required=True)
        radius_km = _radius(payload)
        include_brands = _string_list(payload, "include_brands")
        result = refresh_brand_menus(lat, lng, radius_km, include_brands or None)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify({"data": asdict(result)}), 200


@app.post("/brands/<brand_key>/import")
def import_brand(brand_key: str) -> Any:
    try:
        result = import_brand_menu(brand_key.lower())
    except LookupError as exc:
        return jsonify({"error": str(exc)}), 404
    except ServiceUnavailableError as exc:
        return jsonify({"error": str(exc)}), 503

    return jsonify({"data": {**asdict(result), "total": result.total}}), 200


@app.post("/menu-items/bulk")
def bulk_menu_items() -> Any:
    items = _payload().get("items")
    if not isinstance(items, list):
        return jsonify({"error": "items array is required and must not be empty"}), 400
    try:
        result = bulk_upsert_menu_items(items)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify({"data": asdict(result)}), 200


@app.post("/seed")
def enqueue_seed() -> Any:
    payload = _payload()
    try:
        metros = _string_list(payload, "metros")
        radius_km = _optional_float(payload, "radius_km", DEFAULT_SEED_RADIUS_KM)
        job_id = start_seed_job(metros, radius_km)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify({"data": {"job_id": job_id, "status": "queued"}}), 202


@app.get("/seed/<job_id>")
def seed_status(job_id: str) -> Any:
    job = seed_job_status(job_id)
    if job is None:
        return jsonify({"error": "seed job not found"}), 404
    return jsonify({"data": job}), 200


@app.get("/status")
def status() -> Any:
    return jsonify({"data": table_counts()}), 200


def main() -> None:
    port = int(os.getenv("PORT") or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
