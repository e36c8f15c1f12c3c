"""Database helpers for brands, places, menu items, price reports and seed jobs."""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from psycopg2 import errors, extras, pool

from macrofit.core.config import get_settings
from macrofit.models import Brand, MenuItem, Place, PriceReport

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None

SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS pgcrypto;

CREATE TABLE IF NOT EXISTS brands (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    brand_key text NOT NULL UNIQUE,
    display_name text NOT NULL,
    last_imported_at timestamptz,
    created_at timestamptz NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS places (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    external_id text NOT NULL UNIQUE,
    brand_id uuid NOT NULL REFERENCES brands (id),
    name text NOT NULL,
    lat double precision,
    lng double precision,
    address text,
    city text,
    state text,
    postal_code text,
    updated_at timestamptz NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS places_lat_lng_idx ON places (lat, lng);

CREATE TABLE IF NOT EXISTS menu_items (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    brand_id uuid NOT NULL REFERENCES brands (id),
    item_name text NOT NULL,
    calories integer NOT NULL CHECK (calories >= 0),
    protein_g integer NOT NULL CHECK (protein_g >= 0),
    default_price numeric(8, 2),
    external_ref text,
    data_source text NOT NULL,
    verification_status text NOT NULL DEFAULT 'unverified',
    last_verified_at timestamptz,
    notes text,
    updated_at timestamptz NOT NULL DEFAULT NOW(),
    UNIQUE (brand_id, item_name)
);

CREATE TABLE IF NOT EXISTS local_prices (
    place_id uuid NOT NULL REFERENCES places (id),
    item_id uuid NOT NULL REFERENCES menu_items (id),
    price numeric(8, 2) NOT NULL CHECK (price > 0),
    updated_at timestamptz NOT NULL DEFAULT NOW(),
    PRIMARY KEY (place_id, item_id)
);

CREATE TABLE IF NOT EXISTS seed_jobs (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    status text NOT NULL DEFAULT 'queued',
    total integer NOT NULL DEFAULT 0,
    completed integer NOT NULL DEFAULT 0,
    failed integer NOT NULL DEFAULT 0,
    params jsonb NOT NULL DEFAULT '{}'::jsonb,
    results jsonb NOT NULL DEFAULT '[]'::jsonb,
    error text,
    created_at timestamptz NOT NULL DEFAULT NOW(),
    updated_at timestamptz NOT NULL DEFAULT NOW()
);
"""


# Concurrent refreshes (two seed workers plus request threads) each hold up to
# import_workers connections; ThreadedConnectionPool raises instead of waiting.
CONCURRENT_REFRESHES = 3
REQUEST_CONNECTIONS = 4


def pool_size(import_workers: int) -> int:
    return max(10, CONCURRENT_REFRESHES * import_workers + REQUEST_CONNECTIONS)


def init_pool(minconn: int = 1, maxconn: Optional[int] = None) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.ThreadedConnectionPool(
            minconn,
            maxconn or pool_size(settings.import_workers),
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


def _fetch_one(sql: str, params: Any = None, commit: bool = False) -> Optional[Dict[str, Any]]:
    with get_connection() as conn:
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            if commit:
                conn.commit()
            else:
                conn.rollback()
        except Exception:
            conn.rollback()
            raise
    return row


def _fetch_all(sql: str, params: Any = None) -> List[Dict[str, Any]]:
    with get_connection() as conn:
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        finally:
            # Release the snapshot so pooled connections are not left idle in transaction.
            conn.rollback()
    return list(rows)


def _execute(sql: str, params: Any = None) -> None:
    with get_connection() as conn:
        try:
            with conn.cursor() as cur:
                cur.execute(sql, params)
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def ensure_schema() -> None:
    _execute(SCHEMA_SQL)
    logger.info("Database schema ensured")


# ---------- Brands ----------

_UPSERT_BRAND = """
INSERT INTO brands (brand_key, display_name)
VALUES (%(brand_key)s, %(display_name)s)
ON CONFLICT (brand_key) DO UPDATE SET
    brand_key = EXCLUDED.brand_key
RETURNING id, brand_key, display_name, last_imported_at;
"""


def upsert_brand(brand_key: str, display_name: str) -> Brand:
    """Return the brand for ``brand_key``, creating it on first sight."""
    if not brand_key or not display_name:
        raise ValueError("brand_key and display_name are required")
    row = _fetch_one(_UPSERT_BRAND, {"brand_key": brand_key, "display_name": display_name}, commit=True)
    return Brand.from_row(row)


def get_brand(brand_key: str) -> Optional[Brand]:
    row = _fetch_one(
        "SELECT id, brand_key, display_name, last_imported_at FROM brands WHERE brand_key = %s;",
        (brand_key,),
    )
    return Brand.from_row(row) if row else None


def brands_by_ids(brand_ids: Sequence[str]) -> List[Brand]:
    if not brand_ids:
        return []
    rows = _fetch_all(
        "SELECT id, brand_key, display_name, last_imported_at FROM brands WHERE id = ANY(%s::uuid[]) ORDER BY brand_key;",
        (list(brand_ids),),
    )
    return [Brand.from_row(row) for row in rows]


def touch_brand_import(brand_id: str, at: Optional[datetime] = None) -> None:
    _execute(
        "UPDATE brands SET last_imported_at = %s WHERE id = %s;",
        (at or datetime.now(timezone.utc), brand_id),
    )


# ---------- Places ----------

_PLACE_COLUMNS = "p.id, p.external_id, p.brand_id, b.brand_key, p.name, p.lat, p.lng, p.address, p.city, p.state, p.postal_code"

_UPSERT_PLACE = """
WITH upserted AS (
    INSERT INTO places (
        external_id,
        brand_id,
        name,
        lat,
        lng,
        address,
        city,
        state,
        postal_code,
        updated_at
    ) VALUES (
        %(external_id)s,
        %(brand_id)s,
        %(name)s,
        %(lat)s,
        %(lng)s,
        %(address)s,
        %(city)s,
        %(state)s,
        %(postal_code)s,
        NOW()
    )
    ON CONFLICT (external_id) DO UPDATE SET
        brand_id = EXCLUDED.brand_id,
        name = EXCLUDED.name,
        lat = EXCLUDED.lat,
        lng = EXCLUDED.lng,
        address = COALESCE(EXCLUDED.address, places.address),
        city = COALESCE(EXCLUDED.city, places.city),
        state = COALESCE(EXCLUDED.state, places.state),
        postal_code = COALESCE(EXCLUDED.postal_code, places.postal_code),
        updated_at = NOW()
    RETURNING *
)
SELECT p.id, p.external_id, p.brand_id, b.brand_key, p.name, p.lat, p.lng, p.address, p.city, p.state, p.postal_code
FROM upserted p JOIN brands b ON b.id = p.brand_id;
"""


def _prepare_place_params(brand_id: str, row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "external_id": row.get("external_id"),
        "brand_id": brand_id,
        "name": row.get("name"),
        "lat": row.get("lat"),
        "lng": row.get("lng"),
        "address": row.get("address"),
        "city": row.get("city"),
        "state": row.get("state"),
        "postal_code": row.get("postal_code"),
    }


def upsert_place(brand_id: str, row: Dict[str, Any]) -> Place:
    """Persist a place keyed by its provider-derived external id."""
    params = _prepare_place_params(brand_id, row)
    if not params["external_id"] or not params["name"]:
        raise ValueError("external_id and name are required for upsert")
    result = _fetch_one(_UPSERT_PLACE, params, commit=True)
    logger.debug("Upserted place %s", params["external_id"])
    return Place.from_row(result)


def places_in_bbox(bbox: Tuple[float, float, float, float], brand_keys: Optional[Iterable[str]] = None) -> List[Place]:
    min_lat, max_lat, min_lng, max_lng = bbox
    sql = f"""
        SELECT {_PLACE_COLUMNS}
        FROM places p JOIN brands b ON b.id = p.brand_id
        WHERE p.lat BETWEEN %(min_lat)s AND %(max_lat)s
          AND p.lng BETWEEN %(min_lng)s AND %(max_lng)s
    """
    params: Dict[str, Any] = {"min_lat": min_lat, "max_lat": max_lat, "min_lng": min_lng, "max_lng": max_lng}
    keys = [key for key in brand_keys or [] if key]
    if keys:
        sql += " AND b.brand_key = ANY(%(brand_keys)s)"
        params["brand_keys"] = keys
    return [Place.from_row(row) for row in _fetch_all(sql + " ORDER BY p.external_id;", params)]


def list_places() -> List[Place]:
    rows = _fetch_all(f"SELECT {_PLACE_COLUMNS} FROM places p JOIN brands b ON b.id = p.brand_id ORDER BY p.external_id;")
    return [Place.from_row(row) for row in rows]


# ---------- Menu items ----------

# default_price is only ever filled in by an import, never replaced.
_UPSERT_IMPORTED_ITEM = """
INSERT INTO menu_items (
    brand_id,
    item_name,
    calories,
    protein_g,
    default_price,
    external_ref,
    data_source,
    verification_status,
    updated_at
) VALUES (
    %(brand_id)s,
    %(item_name)s,
    %(calories)s,
    %(protein_g)s,
    %(default_price)s,
    %(external_ref)s,
    %(data_source)s,
    'unverified',
    NOW()
)
ON CONFLICT (brand_id, item_name) DO UPDATE SET
    calories = EXCLUDED.calories,
    protein_g = EXCLUDED.protein_g,
    external_ref = EXCLUDED.external_ref,
    data_source = EXCLUDED.data_source,
    verification_status = EXCLUDED.verification_status,
    default_price = COALESCE(menu_items.default_price, EXCLUDED.default_price),
    updated_at = NOW()
RETURNING (xmax = 0) AS inserted;
"""

# Manual curation may replace a price, but an omitted price keeps the stored one.
_UPSERT_MANUAL_ITEM = """
INSERT INTO menu_items (
    brand_id,
    item_name,
    calories,
    protein_g,
    default_price,
    data_source,
    verification_status,
    last_verified_at,
    notes,
    updated_at
) VALUES (
    %(brand_id)s,
    %(item_name)s,
    %(calories)s,
    %(protein_g)s,
    %(default_price)s,
    'manual',
    'verified',
    NOW(),
    %(notes)s,
    NOW()
)
ON CONFLICT (brand_id, item_name) DO UPDATE SET
    calories = EXCLUDED.calories,
    protein_g = EXCLUDED.protein_g,
    data_source = 'manual',
    verification_status = 'verified',
    last_verified_at = NOW(),
    default_price = COALESCE(EXCLUDED.default_price, menu_items.default_price),
    notes = COALESCE(EXCLUDED.notes, menu_items.notes),
    updated_at = NOW()
RETURNING (xmax = 0) AS inserted;
"""


def upsert_imported_item(brand_id: str, row: Dict[str, Any], source: str) -> bool:
    """Upsert an imported item; returns True when a new row was inserted."""
    params = {
        "brand_id": brand_id,
        "item_name": row.get("item_name"),
        "calories": row.get("calories"),
        "protein_g": row.get("protein_g"),
        "default_price": row.get("default_price"),
        "external_ref": row.get("external_ref"),
        "data_source": source,
    }
    if not params["item_name"]:
        raise ValueError("item_name is required for upsert")
    result = _fetch_one(_UPSERT_IMPORTED_ITEM, params, commit=True)
    return bool(result and result["inserted"])


def upsert_manual_item(row: Dict[str, Any]) -> bool:
    params = {
        "brand_id": row.get("brand_id"),
        "item_name": row.get("item_name"),
        "calories": row.get("calories"),
        "protein_g": row.get("protein_g"),
        "default_price": row.get("default_price"),
        "notes": row.get("notes") or None,
    }
    result = _fetch_one(_UPSERT_MANUAL_ITEM, params, commit=True)
    return bool(result and result["inserted"])


def menu_items_for_brands(brand_ids: Sequence[str]) -> List[MenuItem]:
    if not brand_ids:
        return []
    rows = _fetch_all(
        """
        SELECT id, brand_id, item_name, calories, protein_g, default_price, data_source, verification_status
        FROM menu_items
        WHERE brand_id = ANY(%s::uuid[])
        ORDER BY brand_id, item_name;
        """,
        (list(brand_ids),),
    )
    return [MenuItem.from_row(row) for row in rows]


# ---------- Local price reports ----------

_UPSERT_PRICE = """
INSERT INTO local_prices (place_id, item_id, price, updated_at)
VALUES (%(place_id)s, %(item_id)s, %(price)s, NOW())
ON CONFLICT (place_id, item_id) DO UPDATE SET
    price = EXCLUDED.price,
    updated_at = NOW()
RETURNING place_id, item_id, price, updated_at;
"""


def upsert_price_report(place_id: str, item_id: str, price: float) -> PriceReport:
    """Store or replace the single active report for a place/item pair."""
    try:
        row = _fetch_one(_UPSERT_PRICE, {"place_id": place_id, "item_id": item_id, "price": price}, commit=True)
    except (errors.ForeignKeyViolation, errors.InvalidTextRepresentation) as exc:
        raise LookupError(f"unknown place {place_id} or item {item_id}") from exc
    return PriceReport.from_row(row)


def price_reports_for_places(place_ids: Sequence[str]) -> List[PriceReport]:
    if not place_ids:
        return []
    rows = _fetch_all(
        "SELECT place_id, item_id, price, updated_at FROM local_prices WHERE place_id = ANY(%s::uuid[]);",
        (list(place_ids),),
    )
    return [PriceReport.from_row(row) for row in rows]


# ---------- Status ----------

def table_counts() -> Dict[str, int]:
    row = _fetch_one(
        """
        SELECT
            (SELECT COUNT(*) FROM brands) AS brand_count,
            (SELECT COUNT(*) FROM places) AS place_count,
            (SELECT COUNT(*) FROM menu_items) AS item_count,
            (SELECT COUNT(*) FROM local_prices) AS local_price_count;
        """
    )
    return {key: int(value) for key, value in (row or {}).items()}


# ---------- Seed jobs ----------

_SEED_JOB_COLUMNS = "id, status, total, completed, failed, params, results, error, created_at, updated_at"


def create_seed_job(total: int, params: Dict[str, Any]) -> str:
    row = _fetch_one(
        "INSERT INTO seed_jobs (total, params) VALUES (%s, %s) RETURNING id;",
        (total, extras.Json(params)),
        commit=True,
    )
    return str(row["id"])


def update_seed_job(job_id: str, **fields: Any) -> None:
    allowed = {"status", "completed", "failed", "results", "error"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"unknown seed job fields: {', '.join(sorted(unknown))}")
    if not fields:
        return
    assignments = []
    params: Dict[str, Any] = {"job_id": job_id}
    for name in sorted(fields):
        value = fields[name]
        params[name] = extras.Json(value) if name == "results" else value
        assignments.append(f"{name} = %({name})s")
    sql = f"UPDATE seed_jobs SET {', '.join(assignments)}, updated_at = NOW() WHERE id = %(job_id)s;"
    _execute(sql, params)


def get_seed_job(job_id: str) -> Optional[Dict[str, Any]]:
    try:
        return _fetch_one(f"SELECT {_SEED_JOB_COLUMNS} FROM seed_jobs WHERE id = %s;", (job_id,))
    except errors.InvalidTextRepresentation:
        return None
