import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

APP_DIR_NAME = "ChuhuivWeather"
CACHE_FILE_NAME = "cache.json"


def _user_data_dir() -> Path:
    local_app_data = os.getenv("LOCALAPPDATA")
    if local_app_data:
        return Path(local_app_data)
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg)
    return Path.home() / ".local" / "share"


def default_cache_path() -> Path:
    return _user_data_dir() / APP_DIR_NAME / CACHE_FILE_NAME


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    api_url: str
    cache_path: Path
    cache_ttl_minutes: float
    refresh_interval_seconds: float
    auto_refresh: bool
    log_level: str
    log_dir: Optional[str]


def get_settings() -> Settings:
    cache_path = os.getenv("WEATHER_CACHE_PATH")
    return Settings(
        api_url=os.getenv("WEATHER_API_URL", "https://api.open-meteo.com/v1/forecast"),
        cache_path=Path(cache_path) if cache_path else default_cache_path(),
        cache_ttl_minutes=float(os.getenv("WEATHER_CACHE_TTL_MINUTES", "30")),
        # Open-Meteo обновляет модели раз в час
        refresh_interval_seconds=float(os.getenv("WEATHER_REFRESH_INTERVAL_SECONDS", "3600")),
        auto_refresh=_env_bool("WEATHER_AUTO_REFRESH", True),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_dir=os.getenv("LOG_DIR", "logs") or None,
    )

settings = get_settings()
