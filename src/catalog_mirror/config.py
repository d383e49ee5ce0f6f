"""Application configuration — loads .env, then overrides from settings.json."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

# Find the project root (where .env lives)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# Runtime settings file for in-app configuration
_SETTINGS_FILE = _PROJECT_ROOT / "data" / "settings.json"


def _load_settings() -> dict:
    """Load saved runtime settings from JSON file."""
    if _SETTINGS_FILE.exists():
        try:
            return json.loads(_SETTINGS_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _save_settings(settings: dict):
    """Persist runtime settings to JSON file."""
    _SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    _SETTINGS_FILE.write_text(
        json.dumps(settings, indent=2), encoding="utf-8"
    )


# Load saved settings once at import time
_runtime = _load_settings()


class Config:
    """Central configuration: .env defaults, settings.json overrides."""

    # Paths
    PROJECT_ROOT: Path = _PROJECT_ROOT
    DATABASE_PATH: Path = Path(
        os.getenv("DATABASE_PATH",
                  str(_PROJECT_ROOT / "data" / "catalog_mirror.db"))
    )

    # Remote catalog backend (settings.json overrides .env)
    REMOTE_URL: str = _runtime.get(
        "remote_url",
        os.getenv("REMOTE_URL", "http://localhost:54321"),
    )
    REMOTE_API_KEY: str = _runtime.get(
        "remote_api_key",
        os.getenv("REMOTE_API_KEY", ""),
    )
    REMOTE_ACCESS_TOKEN: str = _runtime.get(
        "remote_access_token",
        os.getenv("REMOTE_ACCESS_TOKEN", ""),
    )
    REMOTE_TIMEOUT: float = float(_runtime.get(
        "remote_timeout",
        os.getenv("REMOTE_TIMEOUT", "30"),
    ))
    RECORDS_TABLE: str = os.getenv("RECORDS_TABLE", "restaurants")
    FAVORITES_TABLE: str = os.getenv(
        "FAVORITES_TABLE", "restaurant_device_favorites"
    )

    # Reverse geocoding
    GEOCODER_PRIMARY_URL: str = os.getenv(
        "GEOCODER_PRIMARY_URL",
        "https://api.bigdatacloud.net/data/reverse-geocode-client",
    )
    GEOCODER_FALLBACK_URL: str = os.getenv(
        "GEOCODER_FALLBACK_URL",
        "https://nominatim.openstreetmap.org/reverse",
    )
    GEOCODER_USER_AGENT: str = os.getenv(
        "GEOCODER_USER_AGENT", "catalog-mirror/1.0"
    )

    # Bulk cache download
    DOWNLOAD_BATCH_SIZE: int = int(_runtime.get(
        "download_batch_size",
        os.getenv("DOWNLOAD_BATCH_SIZE", "20"),
    ))
    DOWNLOAD_ITEM_DELAY: float = float(_runtime.get(
        "download_item_delay",
        os.getenv("DOWNLOAD_ITEM_DELAY", "0.05"),
    ))

    # Address enrichment and paging
    ENRICHMENT_CONCURRENCY: int = int(os.getenv("ENRICHMENT_CONCURRENCY", "3"))
    PAGE_SIZE: int = int(os.getenv("PAGE_SIZE", "20"))
    PREFETCH_DELAY: float = float(os.getenv("PREFETCH_DELAY", "0.5"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def update_remote_settings(cls, url: str, api_key: str,
                               access_token: str, timeout: float):
        """Update remote backend settings at runtime and persist to disk."""
        cls.REMOTE_URL = url
        cls.REMOTE_API_KEY = api_key
        cls.REMOTE_ACCESS_TOKEN = access_token
        cls.REMOTE_TIMEOUT = timeout

        settings = _load_settings()
        settings["remote_url"] = url
        settings["remote_api_key"] = api_key
        settings["remote_access_token"] = access_token
        settings["remote_timeout"] = timeout
        _save_settings(settings)

    @classmethod
    def update_download_settings(cls, batch_size: int, item_delay: float):
        """Update bulk download tuning and persist."""
        cls.DOWNLOAD_BATCH_SIZE = batch_size
        cls.DOWNLOAD_ITEM_DELAY = item_delay

        settings = _load_settings()
        settings["download_batch_size"] = batch_size
        settings["download_item_delay"] = item_delay
        _save_settings(settings)
