import argparse
import asyncio
import logging
import os
from datetime import timedelta

from .cache import CacheStore
from .config import settings
from .http_client import HTTPClient
from .refresh import WeatherRefresher, WeatherView
from .weather_client import WeatherFetcher

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def setup_logging(level: str = settings.log_level, log_dir=settings.log_dir):
    handlers = [logging.StreamHandler()]
    if log_dir:
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(os.path.join(log_dir, "app.log"), encoding="utf-8"))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)


def describe(view: WeatherView) -> str:
    parts = [f"[{view.state.value}] {view.location}"]
    snapshot = view.snapshot
    if snapshot is not None and snapshot.current is not None:
        cur = snapshot.current
        parts.append(
            f"{cur.temperature_c:.1f}°C (feels {cur.apparent_temperature_c:.1f}°C), "
            f"code {cur.weather_code}, wind {cur.wind_speed_kmh:.0f} km/h"
        )
    if snapshot is not None and snapshot.daily:
        days = ", ".join(
            f"{d.date_local.isoformat()} {d.tmin_c:.0f}..{d.tmax_c:.0f}°C" for d in snapshot.daily
        )
        parts.append(f"forecast: {days}")
    if view.last_updated is not None:
        parts.append(f"updated {view.last_updated.isoformat(timespec='seconds')}")
    if view.error:
        parts.append(f"error: {view.error}")
    return " | ".join(parts)


def build_refresher() -> WeatherRefresher:
    fetcher = WeatherFetcher(HTTPClient(), url=settings.api_url)
    cache = CacheStore(settings.cache_path, lifetime=timedelta(minutes=settings.cache_ttl_minutes))
    return WeatherRefresher(
        fetcher,
        cache,
        auto_refresh=settings.auto_refresh,
        interval_seconds=settings.refresh_interval_seconds,
    )


async def run(once: bool = False):
    refresher = build_refresher()
    refresher.add_listener(lambda view: logger.info(describe(view)))

    try:
        if once:
            refresher.refresh(force=True)
            await refresher.wait()
            return refresher.view
        await refresher.start()
        # работаем до Ctrl+C / отмены
        await asyncio.Event().wait()
    finally:
        await refresher.close()


def main():
    parser = argparse.ArgumentParser(description="Chuhuiv weather fetcher with offline cache")
    parser.add_argument("--once", action="store_true", help="fetch a single snapshot and exit")
    args = parser.parse_args()

    setup_logging()
    logger.info("Cache file: %s", settings.cache_path)
    try:
        asyncio.run(run(once=args.once))
    except KeyboardInterrupt:
        logger.info("Stopped by user")


if __name__ == "__main__":
    main()
