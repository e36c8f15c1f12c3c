"""Core data models shared by discovery, import and ranking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

FALLBACK_PRICE = 9.99
MAX_WEIGHT = 5.0
MODES = ("bulking", "cutting")


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


@dataclass(slots=True)
class Brand:
    id: str
    brand_key: str
    display_name: str
    last_imported_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Brand":
        return cls(
            id=str(row["id"]),
            brand_key=row["brand_key"],
            display_name=row["display_name"],
            last_imported_at=row.get("last_imported_at"),
        )


@dataclass(slots=True)
class Place:
    """One physical restaurant location, keyed externally by its provider id."""

    id: str
    external_id: str
    brand_id: str
    name: str
    brand_key: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Place":
        return cls(
            id=str(row["id"]),
            external_id=row["external_id"],
            brand_id=str(row["brand_id"]),
            name=row["name"],
            brand_key=row.get("brand_key"),
            lat=_as_float(row.get("lat")),
            lng=_as_float(row.get("lng")),
            address=row.get("address"),
            city=row.get("city"),
            state=row.get("state"),
            postal_code=row.get("postal_code"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "brand_id": self.brand_id,
            "brand_key": self.brand_key,
            "name": self.name,
            "lat": self.lat,
            "lng": self.lng,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
        }


@dataclass(slots=True)
class MenuItem:
    id: str
    brand_id: str
    item_name: str
    calories: int
    protein_g: int
    default_price: Optional[float] = None
    data_source: Optional[str] = None
    verification_status: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MenuItem":
        return cls(
            id=str(row["id"]),
            brand_id=str(row["brand_id"]),
            item_name=row["item_name"],
            calories=int(row["calories"]),
            protein_g=int(row["protein_g"]),
            default_price=_as_float(row.get("default_price")),
            data_source=row.get("data_source"),
            verification_status=row.get("verification_status"),
        )


@dataclass(slots=True)
class PriceReport:
    """User-submitted price override for a (place, item) pair."""

    place_id: str
    item_id: str
    price: float
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PriceReport":
        return cls(
            place_id=str(row["place_id"]),
            item_id=str(row["item_id"]),
            price=float(row["price"]),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "place_id": self.place_id,
            "item_id": self.item_id,
            "price": self.price,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(slots=True)
class RankRequest:
    w_p: float = 0.5
    w_c: float = 0.3
    w_r: float = 0.2
    mode: str = "bulking"
    target_protein: Optional[float] = None
    target_calories: Optional[float] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_km: float = 8.0
    price_cap: Optional[float] = None
    min_protein: Optional[float] = None
    include_brands: List[str] = field(default_factory=list)
    exclude_brands: List[str] = field(default_factory=list)
    limit: int = 30
    debug: bool = False

    @property
    def has_point(self) -> bool:
        return self.lat is not None and self.lng is not None


@dataclass(slots=True)
class RankResult:
    rank: int
    place_id: str
    place_name: str
    brand_key: str
    item_id: str
    item_name: str
    calories: int
    protein: int
    price: float
    score: float
    lat: Optional[float] = None
    lng: Optional[float] = None
    distance: Optional[float] = None
    price_updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "place_id": self.place_id,
            "place_name": self.place_name,
            "brand_key": self.brand_key,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "calories": self.calories,
            "protein": self.protein,
            "price": self.price,
            "score": self.score,
            "lat": self.lat,
            "lng": self.lng,
            "distance": self.distance,
            "price_updated_at": self.price_updated_at.isoformat() if self.price_updated_at else None,
        }


@dataclass(slots=True)
class DiscoveryResult:
    places: List[Place] = field(default_factory=list)
    provider: Optional[str] = None
    query_shape: Optional[str] = None
    message: str = ""

    @property
    def count(self) -> int:
        return len(self.places)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "places": [place.to_dict() for place in self.places],
            "provider": self.provider,
            "query_shape": self.query_shape,
            "message": self.message,
        }


@dataclass(slots=True)
class ImportResult:
    brand_key: str
    source: Optional[str]
    inserted: int = 0
    updated: int = 0
    total_raw: int = 0
    total_matched: int = 0
    reason: Optional[str] = None

    @property
    def total(self) -> int:
        return self.inserted + self.updated


@dataclass(slots=True)
class BrandOutcome:
    brand_key: str
    success: bool
    attempts: int = 0
    inserted: int = 0
    updated: int = 0
    source: Optional[str] = None
    error: Optional[str] = None


@dataclass(slots=True)
class RefreshResult:
    places_found: int = 0
    brands_checked: int = 0
    brands_needing_import: int = 0
    brands_imported: int = 0
    duration_ms: int = 0
    outcomes: List[BrandOutcome] = field(default_factory=list)
    message: str = ""


@dataclass(slots=True)
class BulkUpsertResult:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
