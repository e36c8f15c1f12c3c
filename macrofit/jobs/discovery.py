"""Discover chain restaurant locations around a point and persist them."""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from macrofit.core.brands import BrandResolver, get_resolver
from macrofit.core.config import get_settings
from macrofit.core.db import upsert_brand, upsert_place
from macrofit.core.fallback import run_chain
from macrofit.etl.transform import to_place_row
from macrofit.models import Brand, DiscoveryResult, Place
from macrofit.vendors import overpass

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_DELAY_SECONDS = 1.5
NONE_FOUND_MESSAGE = "No restaurants found nearby"


def build_providers() -> List[overpass.OverpassProvider]:
    settings = get_settings()
    return [
        overpass.OverpassProvider(url, timeout=settings.http_timeout, user_agent=settings.user_agent)
        for url in settings.overpass_urls
    ]


def _validate_point(lat: float, lng: float, radius_km: float) -> None:
    if lat is None or lng is None:
        raise ValueError("lat and lng are required")
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ValueError("lat/lng out of range")
    if radius_km is None or radius_km <= 0:
        raise ValueError("radius_km must be positive")


def discover_places(
    lat: float,
    lng: float,
    radius_km: float,
    brand_keys: Optional[Iterable[str]] = None,
    *,
    resolver: Optional[BrandResolver] = None,
    providers: Optional[Sequence[overpass.OverpassProvider]] = None,
) -> DiscoveryResult:
    """Find places of the requested brands within ``radius_km`` and upsert them.

    Provider failures never propagate: when every provider and both query
    shapes come back empty the result is an empty, "none found" result.
    """
    _validate_point(lat, lng, radius_km)
    resolver = resolver or get_resolver()
    providers = list(providers) if providers is not None else build_providers()
    settings = get_settings()

    wanted = resolver.select(brand_keys)
    if not wanted:
        logger.info("No known brands requested (%s); nothing to discover", brand_keys)
        return DiscoveryResult(message=NONE_FOUND_MESSAGE)
    wanted_keys = {entry.key for entry in wanted}

    queries = [
        ("brand", overpass.build_brand_query(lat, lng, radius_km, resolver.name_patterns(wanted_keys), settings.http_timeout)),
        ("fallback", overpass.build_fallback_query(lat, lng, radius_km, settings.http_timeout)),
    ]

    logger.info("Discovering %d brands near (%s, %s) within %.1fkm", len(wanted_keys), lat, lng, radius_km)
    for shape, query in queries:
        chain = run_chain(providers, query, max_retries=MAX_RETRIES, base_delay=BASE_DELAY_SECONDS)
        if not chain.items:
            logger.info("Query shape %s returned nothing (failures=%s)", shape, chain.failures)
            continue

        places = _persist_elements(chain.items, resolver, wanted_keys)
        if places:
            logger.info("Upserted %d places from %s (%s query)", len(places), chain.source, shape)
            return DiscoveryResult(
                places=places,
                provider=chain.source,
                query_shape=shape,
                message=f"Successfully upserted {len(places)} restaurants",
            )
        logger.info("No %s elements resolved to requested brands", shape)

    return DiscoveryResult(message=NONE_FOUND_MESSAGE)


def _persist_elements(elements: List[Dict], resolver: BrandResolver, wanted_keys: set) -> List[Place]:
    brands: Dict[str, Brand] = {}
    places: Dict[str, Place] = {}

    for element in elements:
        tags = element.get("tags") or {}
        name = tags.get("name")
        brand_tag = tags.get("brand")
        if not name and not brand_tag:
            continue

        entry = resolver.resolve(name, brand_tag)
        if entry is None or entry.key not in wanted_keys:
            continue

        row = to_place_row(element, entry)
        if row is None:
            continue

        try:
            brand = brands.get(entry.key)
            if brand is None:
                brand = upsert_brand(entry.key, entry.display_name)
                brands[entry.key] = brand
            place = upsert_place(brand.id, row)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to persist %s: %s", row["external_id"], exc)
            continue

        places[place.external_id] = place

    return list(places.values())
