"""Keep menu data fresh for every brand with a location inside an area."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from macrofit.core.config import get_settings
from macrofit.core.db import brands_by_ids, places_in_bbox
from macrofit.core.geo import bounding_box
from macrofit.jobs.discovery import discover_places
from macrofit.jobs.menu_import import RateLimitedError, import_brand_menu
from macrofit.models import Brand, BrandOutcome, Place, RefreshResult

logger = logging.getLogger(__name__)

DISCOVERY_ATTEMPTS = 3
RADIUS_GROWTH = 1.5
MAX_IMPORT_ATTEMPTS = 4
IMPORT_BACKOFF_BASE_SECONDS = 2.0


def is_stale(brand: Brand, now: datetime, staleness: timedelta) -> bool:
    if brand.last_imported_at is None:
        return True
    last = brand.last_imported_at
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    return last < now - staleness


def _places_with_discovery(lat: float, lng: float, radius_km: float, brand_keys: Optional[List[str]]) -> List[Place]:
    places = places_in_bbox(bounding_box(lat, lng, radius_km), brand_keys)
    if places:
        return places

    logger.info("No stored places near (%s, %s); running discovery", lat, lng)
    current_radius = radius_km
    for attempt in range(1, DISCOVERY_ATTEMPTS + 1):
        try:
            discovered = discover_places(lat, lng, current_radius, brand_keys)
        except ValueError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error("Discovery failed at %.1fkm: %s", current_radius, exc)
            break

        logger.info("Discovery attempt %d found %d places at %.1fkm", attempt, discovered.count, current_radius)
        if discovered.count > 0:
            return places_in_bbox(bounding_box(lat, lng, current_radius), brand_keys)
        current_radius *= RADIUS_GROWTH
    return []


def import_with_retry(
    brand: Brand,
    importer: Optional[Callable] = None,
    max_attempts: int = MAX_IMPORT_ATTEMPTS,
) -> BrandOutcome:
    """Import one brand; rate limits back off 2s, 4s, 8s, other errors fail at once."""
    importer = importer or import_brand_menu
    outcome = BrandOutcome(brand_key=brand.brand_key, success=False)
    for attempt in range(1, max_attempts + 1):
        outcome.attempts = attempt
        try:
            result = importer(brand.brand_key)
        except RateLimitedError as exc:
            outcome.error = str(exc)
            if attempt < max_attempts:
                delay = IMPORT_BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
                logger.info("Rate limited importing %s, waiting %.0fs", brand.brand_key, delay)
                time.sleep(delay)
                continue
            logger.error("Giving up on %s after %d attempts", brand.brand_key, attempt)
            return outcome
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to import %s: %s", brand.brand_key, exc)
            outcome.error = str(exc)
            return outcome

        outcome.success = True
        outcome.error = None
        outcome.inserted = result.inserted
        outcome.updated = result.updated
        outcome.source = result.source
        return outcome
    return outcome


def refresh_brand_menus(
    lat: float,
    lng: float,
    radius_km: float,
    include_brands: Optional[Iterable[str]] = None,
) -> RefreshResult:
    """Import every stale brand found around the point; failures stay per brand."""
    started = time.monotonic()
    settings = get_settings()
    brand_keys = [key.lower() for key in include_brands or [] if key] or None

    places = _places_with_discovery(lat, lng, radius_km, brand_keys)
    result = RefreshResult(places_found=len(places))
    if not places:
        result.message = "No restaurants found nearby"
        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    brands = brands_by_ids(sorted({place.brand_id for place in places}))
    now = datetime.now(timezone.utc)
    staleness = timedelta(days=settings.staleness_days)
    stale = [brand for brand in brands if is_stale(brand, now, staleness)]
    result.brands_checked = len(brands)
    result.brands_needing_import = len(stale)
    logger.info("Brands to import: %d of %d", len(stale), len(brands))

    if stale:
        workers = min(settings.import_workers, len(stale))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            result.outcomes = list(executor.map(import_with_retry, stale))

    result.brands_imported = sum(1 for outcome in result.outcomes if outcome.success)
    result.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Refresh complete: %d/%d imported in %dms",
        result.brands_imported,
        result.brands_needing_import,
        result.duration_ms,
    )
    return result
