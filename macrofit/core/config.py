"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_OVERPASS_URLS = (
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
)
DEFAULT_USER_AGENT = "MacroFit/1.0 (+https://macrofit.app/contact)"


@dataclass(frozen=True)
class Settings:
    database_url: str
    nutritionix_app_id: str = ""
    nutritionix_api_key: str = ""
    usda_api_key: str = ""
    overpass_urls: Tuple[str, ...] = field(default=DEFAULT_OVERPASS_URLS)
    worker_port: int = 9000
    http_timeout: int = 25
    staleness_days: int = 7
    import_workers: int = 4
    default_radius_km: float = 8.0
    user_agent: str = DEFAULT_USER_AGENT

    @property
    def nutritionix_configured(self) -> bool:
        return bool(self.nutritionix_app_id and self.nutritionix_api_key)


def _split_urls(raw: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    nutritionix_app_id = os.getenv("NUTRITIONIX_APP_ID", "")
    nutritionix_api_key = os.getenv("NUTRITIONIX_API_KEY", "")
    usda_api_key = os.getenv("USDA_FDC_API_KEY", "")
    overpass_urls = _split_urls(os.getenv("OVERPASS_URLS", "")) or DEFAULT_OVERPASS_URLS
    worker_port = int(os.getenv("WORKER_PORT", "9000"))
    http_timeout = int(os.getenv("HTTP_TIMEOUT_SECONDS", "25"))
    staleness_days = int(os.getenv("STALENESS_DAYS", "7"))
    import_workers = max(1, int(os.getenv("IMPORT_WORKERS", "4")))
    default_radius_km = float(os.getenv("DEFAULT_RADIUS_KM", "8"))
    user_agent = os.getenv("USER_AGENT") or DEFAULT_USER_AGENT

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not (nutritionix_app_id and nutritionix_api_key):
        logger.warning("Nutritionix credentials are not configured; imports will use USDA only.")
    if not usda_api_key:
        logger.warning("USDA_FDC_API_KEY is not configured; the USDA fallback is disabled.")

    return Settings(
        database_url=database_url,
        nutritionix_app_id=nutritionix_app_id,
        nutritionix_api_key=nutritionix_api_key,
        usda_api_key=usda_api_key,
        overpass_urls=overpass_urls,
        worker_port=worker_port,
        http_timeout=http_timeout,
        staleness_days=staleness_days,
        import_workers=import_workers,
        default_radius_km=default_radius_km,
        user_agent=user_agent,
    )
