"""Client utilities for the OpenStreetMap Overpass API."""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from macrofit.core.fallback import TransientFetchError

logger = logging.getLogger(__name__)
_SESSION = requests.Session()

_TRANSIENT_STATUSES = {429, 504}
_AMENITIES = "^(fast_food|restaurant)$"
_FALLBACK_CUISINES = "^(burger|pizza|chicken|sandwich|mexican|fried_chicken)$"


class OverpassError(RuntimeError):
    """Raised when an Overpass endpoint returns a non-retryable failure."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _around(lat: float, lng: float, radius_km: float) -> str:
    return f"(around:{int(round(radius_km * 1000))},{lat},{lng})"


def build_brand_query(lat: float, lng: float, radius_km: float, patterns: Sequence[str], timeout: int = 25) -> str:
    """Overpass QL for food venues whose name or brand tag matches ``patterns``."""
    if not patterns:
        raise ValueError("At least one brand pattern is required")
    regex = "|".join(patterns)
    around = _around(lat, lng, radius_km)
    clauses = []
    for element_type in ("node", "way"):
        for tag in ("brand", "name"):
            clauses.append(f'  {element_type}["amenity"~"{_AMENITIES}"]["{tag}"~"({regex})",i]{around};')
    body = "\n".join(clauses)
    return f"[out:json][timeout:{timeout}];\n(\n{body}\n);\nout center tags;"


def build_fallback_query(lat: float, lng: float, radius_km: float, timeout: int = 25) -> str:
    """Broad query: any branded fast-food venue or a restaurant with a chain-style cuisine."""
    around = _around(lat, lng, radius_km)
    clauses = []
    for element_type in ("node", "way"):
        clauses.append(f'  {element_type}["amenity"="fast_food"]["brand"]{around};')
        clauses.append(f'  {element_type}["amenity"="restaurant"]["cuisine"~"{_FALLBACK_CUISINES}",i]{around};')
    body = "\n".join(clauses)
    return f"[out:json][timeout:{timeout}];\n(\n{body}\n);\nout center tags;"


def interpreter(url: str, query: str, timeout: int = 25, user_agent: Optional[str] = None) -> Dict[str, Any]:
    headers = {"Accept": "application/json"}
    if user_agent:
        headers["User-Agent"] = user_agent
    try:
        response = _SESSION.post(url, data={"data": query}, headers=headers, timeout=timeout)
    except (requests.Timeout, requests.ConnectionError) as exc:
        raise TransientFetchError(f"Overpass request to {url} failed: {exc}") from exc

    if response.status_code in _TRANSIENT_STATUSES:
        raise TransientFetchError(f"Overpass returned {response.status_code}", status_code=response.status_code)
    if response.status_code >= 400:
        logger.error("Overpass query failed: url=%s status=%s", url, response.status_code)
        raise OverpassError(f"Overpass returned {response.status_code}", status_code=response.status_code)
    try:
        return response.json()
    except ValueError as exc:
        raise OverpassError(f"Overpass returned a non-JSON body from {url}") from exc


class OverpassProvider:
    """One Overpass endpoint as a fallback-chain source."""

    def __init__(self, url: str, timeout: int = 25, user_agent: Optional[str] = None) -> None:
        self.url = url
        self.name = f"overpass:{url}"
        self.timeout = timeout
        self.user_agent = user_agent

    def try_fetch(self, query: str) -> Tuple[Optional[List[Dict[str, Any]]], bool]:
        try:
            payload = interpreter(self.url, query, timeout=self.timeout, user_agent=self.user_agent)
        except OverpassError as exc:
            logger.warning("Skipping %s: %s", self.name, exc)
            return None, True
        elements = payload.get("elements") or []
        return [element for element in elements if isinstance(element, dict)], False
