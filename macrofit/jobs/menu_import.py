"""Import brand menus from nutrition APIs and accept manual curation uploads."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from macrofit.core.config import get_settings
from macrofit.core.db import get_brand, touch_brand_import, upsert_imported_item, upsert_manual_item
from macrofit.core.fallback import Source, run_chain
from macrofit.etl.transform import (
    dedupe_by_name,
    matches_nutritionix_brand,
    matches_usda_brand,
    nutritionix_item_to_row,
    usda_food_to_row,
)
from macrofit.models import Brand, BulkUpsertResult, ImportResult
from macrofit.vendors import nutritionix, usda

logger = logging.getLogger(__name__)

BULK_CHUNK_SIZE = 100


class ServiceUnavailableError(RuntimeError):
    """No nutrition source is configured or every configured source failed."""


class RateLimitedError(ServiceUnavailableError):
    """Every usable nutrition source answered with a rate limit."""


def build_sources() -> List[Source]:
    settings = get_settings()
    return [
        nutritionix.NutritionixSource(
            settings.nutritionix_app_id, settings.nutritionix_api_key, timeout=settings.http_timeout
        ),
        usda.UsdaSource(settings.usda_api_key, timeout=settings.http_timeout),
    ]


def _accept_for(brand: Brand, stats: Dict[str, int]):
    nix_brand_id = nutritionix.BRAND_IDS.get(brand.brand_key)

    def accept(source_name: str, raw: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if source_name == nutritionix.SOURCE_NAME:
            matched = [
                item for item in raw
                if matches_nutritionix_brand(item, brand.brand_key, brand.display_name, nix_brand_id)
            ]
            rows = [nutritionix_item_to_row(item, nix_brand_id) for item in matched]
        else:
            matched = [food for food in raw if matches_usda_brand(food, brand.brand_key, brand.display_name)]
            rows = [row for row in (usda_food_to_row(food) for food in matched) if row["calories"] > 0]
        stats["matched"] = max(stats.get("matched", 0), len(matched))
        return dedupe_by_name(rows)

    return accept


def import_brand_menu(brand_key: str, *, sources: Optional[Sequence[Source]] = None) -> ImportResult:
    """Fetch, filter and upsert the menu of ``brand_key``.

    Raises ``LookupError`` for unknown brands and ``ServiceUnavailableError``
    when no source could be queried. Zero usable items is a valid result.
    """
    brand = get_brand(brand_key)
    if brand is None:
        raise LookupError(f"Brand not found: {brand_key}")

    sources = list(sources) if sources is not None else build_sources()
    stats: Dict[str, int] = {}
    logger.info("Importing menu for %s (%s)", brand.brand_key, brand.display_name)
    # Rate limits fall straight through to the next source; callers own the retry budget.
    chain = run_chain(sources, brand.display_name, accept=_accept_for(brand, stats), max_retries=0)

    if not chain.answered:
        logger.error("No nutrition source usable for %s: %s", brand_key, chain.failures)
        if chain.rate_limited:
            raise RateLimitedError(f"Nutrition sources rate limited for {brand_key}")
        raise ServiceUnavailableError("No nutrition source is configured or reachable")

    result = ImportResult(
        brand_key=brand.brand_key,
        source=chain.source,
        total_raw=chain.raw_count,
        total_matched=stats.get("matched", 0),
    )

    if not chain.items:
        result.reason = (
            "No items returned from API"
            if chain.raw_count == 0
            else f"Filtered out all {chain.raw_count} items - brand name mismatch"
        )
        touch_brand_import(brand.id)
        logger.info("No menu items found for %s: %s", brand_key, result.reason)
        return result

    for row in chain.items:
        try:
            if upsert_imported_item(brand.id, row, chain.source):
                result.inserted += 1
            else:
                result.updated += 1
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to upsert %s / %s: %s", brand_key, row.get("item_name"), exc)

    touch_brand_import(brand.id)
    logger.info(
        "Import complete for %s: %d inserted, %d updated from %s",
        brand_key,
        result.inserted,
        result.updated,
        chain.source,
    )
    return result


def _validate_manual_row(item: Dict[str, Any]) -> Optional[str]:
    for name in ("brand_id", "item_name", "calories", "protein_g"):
        if item.get(name) in (None, ""):
            return "Missing required fields (brand_id, item_name, calories, or protein_g)"
    for name in ("calories", "protein_g"):
        try:
            if int(item[name]) < 0:
                return f"{name} must be non-negative"
        except (TypeError, ValueError):
            return f"{name} must be an integer"
    price = item.get("default_price")
    if price not in (None, ""):
        try:
            if float(price) <= 0:
                return "default_price must be positive"
        except (TypeError, ValueError):
            return "default_price must be numeric"
    return None


def bulk_upsert_menu_items(items: Iterable[Dict[str, Any]]) -> BulkUpsertResult:
    """Manual catalog curation. A supplied default price replaces the stored one."""
    items = list(items)
    if not items:
        raise ValueError("items array is required and must not be empty")

    result = BulkUpsertResult()
    for start in range(0, len(items), BULK_CHUNK_SIZE):
        chunk = items[start:start + BULK_CHUNK_SIZE]
        for item in chunk:
            item = item if isinstance(item, dict) else {}
            name = str(item.get("item_name") or "unknown")
            reason = _validate_manual_row(item)
            if reason:
                result.errors.append({"item_name": name, "reason": reason})
                result.skipped += 1
                continue

            price = item.get("default_price")
            row = {
                "brand_id": item["brand_id"],
                "item_name": str(item["item_name"]).strip(),
                "calories": int(item["calories"]),
                "protein_g": int(item["protein_g"]),
                "default_price": float(price) if price not in (None, "") else None,
                "notes": item.get("notes"),
            }
            try:
                if upsert_manual_item(row):
                    result.inserted += 1
                else:
                    result.updated += 1
            except Exception as exc:  # noqa: BLE001
                result.errors.append({"item_name": name, "reason": f"Upsert failed: {exc}"})
                result.skipped += 1

    logger.info(
        "Bulk upsert complete: %d inserted, %d updated, %d skipped",
        result.inserted,
        result.updated,
        result.skipped,
    )
    return result
