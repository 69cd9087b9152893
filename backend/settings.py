import os
from pathlib import Path

from dotenv import load_dotenv

# Basic settings helper to read environment configuration.
# backend/.env (optional) is loaded before anything reads the environment.

BACKEND_ROOT = Path(__file__).resolve().parent
load_dotenv(BACKEND_ROOT / ".env")


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    return int(val)


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    return float(val)


class Settings:
    def __init__(self) -> None:
        self.TARGET_COUNTRY_CODE: str = os.getenv("TARGET_COUNTRY_CODE", "VN").upper()

        # Regional provider (Goong Maps)
        self.GOONG_API_KEY: str | None = os.getenv("GOONG_API_KEY") or None
        self.GOONG_BASE_URL: str = os.getenv("GOONG_BASE_URL", "https://rsapi.goong.io")
        self.GOONG_TIMEOUT_SEC: float = _as_float(os.getenv("GOONG_TIMEOUT_SEC"), 8.0)
        self.GOONG_HOURLY_LIMIT: int = _as_int(os.getenv("GOONG_HOURLY_LIMIT"), 100)
        self.GOONG_DAILY_LIMIT: int = _as_int(os.getenv("GOONG_DAILY_LIMIT"), 1000)

        # International provider (OpenStreetMap Nominatim)
        self.NOMINATIM_BASE_URL: str = os.getenv(
            "NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org"
        )
        self.NOMINATIM_USER_AGENT: str | None = os.getenv("NOMINATIM_USER_AGENT") or None
        self.NOMINATIM_REFERER: str | None = os.getenv("NOMINATIM_REFERER") or None
        self.NOMINATIM_TIMEOUT_SEC: float = _as_float(os.getenv("NOMINATIM_TIMEOUT_SEC"), 5.0)
        self.NOMINATIM_MIN_INTERVAL: float = _as_float(os.getenv("NOMINATIM_MIN_INTERVAL"), 1.1)
        self.NOMINATIM_HOURLY_LIMIT: int = _as_int(os.getenv("NOMINATIM_HOURLY_LIMIT"), 1000)
        self.NOMINATIM_DAILY_LIMIT: int = _as_int(os.getenv("NOMINATIM_DAILY_LIMIT"), 10000)

        # Local administrative dataset
        self.LOCATION_DATABASE_URL: str = os.getenv(
            "LOCATION_DATABASE_URL", f"sqlite:///{BACKEND_ROOT / 'locations.db'}"
        )

        # Caching
        self.LOCATION_CACHE_MAX_ENTRIES: int = _as_int(os.getenv("LOCATION_CACHE_MAX_ENTRIES"), 1000)
        self.LOCATION_CACHE_SQLITE_PATH: str | None = os.getenv("LOCATION_CACHE_SQLITE_PATH") or None

        # Search behaviour
        self.LOCATION_MIN_IMPORTANCE_FILTER: bool = _as_bool(
            os.getenv("LOCATION_MIN_IMPORTANCE_FILTER"), True
        )
        self.LOCATION_BULK_MAX_QUERIES: int = _as_int(os.getenv("LOCATION_BULK_MAX_QUERIES"), 20)


settings = Settings()
