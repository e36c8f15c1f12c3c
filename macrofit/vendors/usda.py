"""Client utilities for USDA FoodData Central."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from macrofit.core.fallback import TransientFetchError
from macrofit.vendors.nutritionix import NutritionSourceError

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://api.nal.usda.gov/fdc/v1"

SOURCE_NAME = "usda"
PAGE_SIZE = 50


def foods_search(query: str, api_key: str, timeout: int = 25, page_size: int = PAGE_SIZE) -> Dict[str, Any]:
    params = {"query": query, "dataType": "Branded", "pageSize": page_size, "api_key": api_key}
    try:
        response = _SESSION.get(f"{_BASE_URL}/foods/search", params=params, timeout=timeout)
    except (requests.Timeout, requests.ConnectionError) as exc:
        raise TransientFetchError(f"USDA request failed: {exc}") from exc

    if response.status_code in {429, 504}:
        raise TransientFetchError(f"USDA returned {response.status_code}", status_code=response.status_code)
    if response.status_code >= 400:
        logger.error("foods_search failed: status=%s", response.status_code)
        raise NutritionSourceError(f"USDA returned {response.status_code}", status_code=response.status_code)
    try:
        return response.json()
    except ValueError as exc:
        raise NutritionSourceError("USDA returned a non-JSON body", status_code=response.status_code) from exc


class UsdaSource:
    name = SOURCE_NAME

    def __init__(self, api_key: str, timeout: int = 25) -> None:
        self.api_key = api_key
        self.timeout = timeout

    def try_fetch(self, query: str) -> Tuple[Optional[List[Dict[str, Any]]], bool]:
        if not self.api_key:
            return None, True
        try:
            payload = foods_search(query, self.api_key, timeout=self.timeout)
        except NutritionSourceError as exc:
            logger.warning("USDA unavailable: %s", exc)
            return None, True
        return list(payload.get("foods") or []), False
