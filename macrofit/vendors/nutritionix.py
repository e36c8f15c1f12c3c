"""Client utilities for the Nutritionix v2 API."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from macrofit.core.fallback import TransientFetchError

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://trackapi.nutritionix.com/v2"

SOURCE_NAME = "nutritionix"

# Nutritionix brand ids for chains where the brand_name tag is unreliable.
BRAND_IDS: Dict[str, str] = {
    "mcdonalds": "513fbc1283aa2dc80c000053",
    "chipotle": "513fbc1283aa2dc80c00001b",
    "wingstop": "52fe814da0ad47e13000000c",
    "tacobell": "513fbc1283aa2dc80c00003e",
    "subway": "513fbc1283aa2dc80c00003c",
    "kfc": "513fbc1283aa2dc80c000026",
    "pizzahut": "513fbc1283aa2dc80c000033",
    "wendys": "513fbc1283aa2dc80c000046",
    "burgerking": "513fbc1283aa2dc80c000011",
    "chickfila": "513fbc1283aa2dc80c00001c",
    "panerabread": "513fbc1283aa2dc80c000031",
    "pandaexpress": "513fbc1283aa2dc80c000030",
    "dominos": "513fbc1283aa2dc80c00001d",
    "jimmyjohns": "513fbc1283aa2dc80c000025",
    "popeyes": "513fbc1283aa2dc80c000035",
    "fiveguys": "513fbc1283aa2dc80c000020",
    "jackinthebox": "513fbc1283aa2dc80c000024",
    "whataburger": "513fbc1283aa2dc80c000045",
    "innout": "513fbc1283aa2dc80c000023",
    "qdoba": "513fbc1283aa2dc80c000036",
    "jerseymikes": "55df891acc4bf65128004d82",
    "raisingcanes": "55e0ae39cc4bf6512801b274",
    "shakeshack": "55e0af62cc4bf6512801b27a",
}


class NutritionSourceError(RuntimeError):
    """Raised when a nutrition API returns a non-retryable failure."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def search_instant(query: str, app_id: str, api_key: str, timeout: int = 25) -> Dict[str, Any]:
    headers = {"x-app-id": app_id, "x-app-key": api_key}
    try:
        response = _SESSION.get(
            f"{_BASE_URL}/search/instant",
            params={"query": query, "branded": "true", "common": "false"},
            headers=headers,
            timeout=timeout,
        )
    except (requests.Timeout, requests.ConnectionError) as exc:
        raise TransientFetchError(f"Nutritionix request failed: {exc}") from exc

    if response.status_code in {429, 504}:
        raise TransientFetchError(f"Nutritionix returned {response.status_code}", status_code=response.status_code)
    if response.status_code >= 400:
        logger.error("search_instant failed: status=%s", response.status_code)
        raise NutritionSourceError(f"Nutritionix returned {response.status_code}", status_code=response.status_code)
    try:
        return response.json()
    except ValueError as exc:
        raise NutritionSourceError("Nutritionix returned a non-JSON body", status_code=response.status_code) from exc


class NutritionixSource:
    name = SOURCE_NAME

    def __init__(self, app_id: str, api_key: str, timeout: int = 25) -> None:
        self.app_id = app_id
        self.api_key = api_key
        self.timeout = timeout

    def try_fetch(self, query: str) -> Tuple[Optional[List[Dict[str, Any]]], bool]:
        if not (self.app_id and self.api_key):
            return None, True
        try:
            payload = search_instant(query, self.app_id, self.api_key, timeout=self.timeout)
        except NutritionSourceError as exc:
            logger.warning("Nutritionix unavailable: %s", exc)
            return None, True
        return list(payload.get("branded") or []), False
