"""Background seeding of metro areas with a persisted, pollable job record."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from macrofit.core.db import create_seed_job, get_seed_job, update_seed_job
from macrofit.jobs.refresh import refresh_brand_menus

logger = logging.getLogger(__name__)

DEFAULT_SEED_RADIUS_KM = 10.0
METRO_DELAY_SECONDS = 2.0

_executor = ThreadPoolExecutor(max_workers=2)


class Metro(NamedTuple):
    name: str
    lat: float
    lng: float


TOP_METROS = (
    Metro("New York, NY", 40.7128, -74.0060),
    Metro("Los Angeles, CA", 34.0522, -118.2437),
    Metro("Chicago, IL", 41.8781, -87.6298),
    Metro("Houston, TX", 29.7604, -95.3698),
    Metro("Phoenix, AZ", 33.4484, -112.0740),
    Metro("Philadelphia, PA", 39.9526, -75.1652),
    Metro("San Antonio, TX", 29.4241, -98.4936),
    Metro("San Diego, CA", 32.7157, -117.1611),
    Metro("Dallas, TX", 32.7767, -96.7970),
    Metro("San Jose, CA", 37.3382, -121.8863),
    Metro("Austin, TX", 30.2672, -97.7431),
    Metro("Jacksonville, FL", 30.3322, -81.6557),
    Metro("Columbus, OH", 39.9612, -82.9988),
    Metro("Charlotte, NC", 35.2271, -80.8431),
    Metro("San Francisco, CA", 37.7749, -122.4194),
    Metro("Indianapolis, IN", 39.7684, -86.1581),
    Metro("Seattle, WA", 47.6062, -122.3321),
    Metro("Denver, CO", 39.7392, -104.9903),
    Metro("Washington, DC", 38.9072, -77.0369),
    Metro("Boston, MA", 42.3601, -71.0589),
    Metro("Nashville, TN", 36.1627, -86.7816),
    Metro("Detroit, MI", 42.3314, -83.0458),
    Metro("Portland, OR", 45.5152, -122.6784),
    Metro("Las Vegas, NV", 36.1699, -115.1398),
    Metro("Atlanta, GA", 33.7490, -84.3880),
    Metro("Miami, FL", 25.7617, -80.1918),
    Metro("Minneapolis, MN", 44.9778, -93.2650),
    Metro("New Orleans, LA", 29.9511, -90.0715),
)


def select_metros(names: Optional[Iterable[str]] = None) -> List[Metro]:
    wanted = {name.strip().lower() for name in names or [] if name and name.strip()}
    if not wanted:
        return list(TOP_METROS)
    selected = [metro for metro in TOP_METROS if metro.name.lower() in wanted]
    if not selected:
        raise ValueError("none of the requested metros are known")
    return selected


def run_seed_job(job_id: str, metros: List[Metro], radius_km: float) -> None:
    """Refresh each metro in turn, recording progress after every metro."""
    update_seed_job(job_id, status="running")
    completed = 0
    failed = 0
    results: List[Dict[str, Any]] = []

    try:
        for index, metro in enumerate(metros):
            logger.info("Seeding %s (job %s)", metro.name, job_id)
            try:
                refreshed = refresh_brand_menus(metro.lat, metro.lng, radius_km)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error seeding %s: %s", metro.name, exc)
                failed += 1
                results.append({"metro": metro.name, "status": "error", "error": str(exc)})
            else:
                completed += 1
                results.append(
                    {
                        "metro": metro.name,
                        "status": "success",
                        "places_found": refreshed.places_found,
                        "brands_imported": refreshed.brands_imported,
                    }
                )
            update_seed_job(job_id, completed=completed, failed=failed, results=results)
            if index < len(metros) - 1:
                time.sleep(METRO_DELAY_SECONDS)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Seed job %s aborted: %s", job_id, exc)
        update_seed_job(job_id, status="failed", error=str(exc))
        return

    update_seed_job(job_id, status="completed")
    logger.info("Seed job %s complete: %d success, %d errors", job_id, completed, failed)


def start_seed_job(metro_names: Optional[Iterable[str]] = None, radius_km: float = DEFAULT_SEED_RADIUS_KM) -> str:
    """Create the job record, queue the work and return the job id."""
    if radius_km is None or radius_km <= 0:
        raise ValueError("radius_km must be positive")
    metros = select_metros(metro_names)
    job_id = create_seed_job(
        total=len(metros),
        params={"metros": [metro.name for metro in metros], "radius_km": radius_km},
    )
    logger.info("Queueing seed job %s for %d metros", job_id, len(metros))
    _executor.submit(run_seed_job, job_id, metros, radius_km)
    return job_id


def seed_job_status(job_id: str) -> Optional[Dict[str, Any]]:
    job = get_seed_job(job_id)
    if job is None:
        return None
    return {
        "id": str(job["id"]),
        "status": job["status"],
        "total": job["total"],
        "completed": job["completed"],
        "failed": job["failed"],
        "results": job.get("results") or [],
        "error": job.get("error"),
        "created_at": job["created_at"].isoformat() if job.get("created_at") else None,
        "updated_at": job["updated_at"].isoformat() if job.get("updated_at") else None,
    }
