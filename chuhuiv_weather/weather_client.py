import asyncio
import enum
import json
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from aiohttp import ClientError

from .http_client import HTTPClient
from .models import CurrentConditions, DailyForecast, WeatherSnapshot

logger = logging.getLogger(__name__)

FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

LOCATION_NAME = "Chuhuiv, Kharkiv Oblast"
LATITUDE = 49.836626
LONGITUDE = 36.689939
TIMEZONE = "Europe/Kyiv"
FORECAST_DAYS = 3

CURRENT_FIELDS = (
    "temperature_2m",
    "apparent_temperature",
    "relative_humidity_2m",
    "weather_code",
    "cloud_cover",
    "pressure_msl",
    "wind_speed_10m",
    "wind_direction_10m",
    "wind_gusts_10m",
)

DAILY_FIELDS = (
    "weather_code",
    "temperature_2m_max",
    "temperature_2m_min",
    "precipitation_sum",
    "wind_gusts_10m_max",
)


class ErrorKind(str, enum.Enum):
    NETWORK = "network"
    PARSE = "parse"
    CACHE = "cache"


class WeatherClientError(Exception):
    kind: ErrorKind = ErrorKind.NETWORK


class TransientNetworkError(WeatherClientError):
    kind = ErrorKind.NETWORK

    def __init__(self, message: str, *, timed_out: bool = False, status: Optional[int] = None):
        super().__init__(message)
        self.timed_out = timed_out
        self.status = status


class ParseError(WeatherClientError):
    kind = ErrorKind.PARSE


def build_params() -> Dict[str, Any]:
    return {
        "latitude": LATITUDE,
        "longitude": LONGITUDE,
        "timezone": TIMEZONE,
        "forecast_days": FORECAST_DAYS,
        "current": ",".join(CURRENT_FIELDS),
        "daily": ",".join(DAILY_FIELDS),
    }


def _parse_current(current: Dict[str, Any]) -> CurrentConditions:
    try:
        return CurrentConditions(
            time_local=datetime.fromisoformat(current["time"]),
            temperature_c=float(current["temperature_2m"]),
            apparent_temperature_c=float(current["apparent_temperature"]),
            relative_humidity_pct=int(current["relative_humidity_2m"]),
            weather_code=int(current["weather_code"]),
            cloud_cover_pct=int(current["cloud_cover"]),
            pressure_msl_hpa=float(current["pressure_msl"]),
            wind_speed_kmh=float(current["wind_speed_10m"]),
            wind_direction_deg=int(current["wind_direction_10m"]),
            wind_gust_kmh=float(current["wind_gusts_10m"]),
        )
    except KeyError as e:
        raise ParseError(f"Current conditions are missing field {e}") from e
    except (TypeError, ValueError) as e:
        raise ParseError(f"Current conditions contain an invalid value: {e}") from e


def _parse_daily(daily: Dict[str, Any]) -> List[DailyForecast]:
    try:
        times = daily["time"]
        codes = daily["weather_code"]
        t_min = daily["temperature_2m_min"]
        t_max = daily["temperature_2m_max"]
        precipitation = daily["precipitation_sum"]
        gusts = daily["wind_gusts_10m_max"]
    except KeyError as e:
        raise ParseError(f"Daily forecast is missing field {e}") from e

    result = []
    try:
        for i in range(min(len(times), FORECAST_DAYS)):
            result.append(DailyForecast(
                date_local=date.fromisoformat(times[i]),
                weather_code=int(codes[i]),
                tmin_c=float(t_min[i]),
                tmax_c=float(t_max[i]),
                precipitation_sum_mm=float(precipitation[i]),
                wind_gust_max_kmh=float(gusts[i]),
            ))
    except IndexError as e:
        raise ParseError("Daily forecast arrays have different lengths") from e
    except (TypeError, ValueError) as e:
        raise ParseError(f"Daily forecast contains an invalid value: {e}") from e
    return result


def parse_snapshot(payload: Any) -> WeatherSnapshot:
    if not isinstance(payload, dict):
        raise ParseError(f"Expected a JSON object, got {type(payload).__name__}")

    current = payload.get("current")
    if current is not None and not isinstance(current, dict):
        raise ParseError("'current' must be an object")
    daily = payload.get("daily")
    if daily is not None and not isinstance(daily, dict):
        raise ParseError("'daily' must be an object")

    return WeatherSnapshot(
        location_name=LOCATION_NAME,
        current=_parse_current(current) if current is not None else None,
        daily=tuple(_parse_daily(daily)) if daily is not None else (),
    )


def parse_response(body: Union[str, bytes]) -> WeatherSnapshot:
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise ParseError(f"Weather API returned malformed JSON: {e}") from e
    return parse_snapshot(payload)


class WeatherFetcher:
    """Fetches the current + 3-day forecast snapshot for Chuhuiv.

    Calls are serialized: a second ``fetch`` waits for the first one to finish
    instead of issuing a parallel request. Cancelling the calling task aborts the
    lock wait, the request or the backoff sleep, whichever is pending.
    """

    def __init__(self, http_client: Optional[HTTPClient] = None, url: str = FORECAST_URL):
        self._http = http_client or HTTPClient()
        self._url = url
        self._lock = asyncio.Lock()

    async def fetch(self) -> WeatherSnapshot:
        async with self._lock:
            params = build_params()
            logger.info("Fetching weather for %s", LOCATION_NAME)
            try:
                body = await self._http.fetch_body(self._url, params=params)
            except asyncio.TimeoutError as e:
                raise TransientNetworkError(
                    f"Timed out while fetching weather for '{LOCATION_NAME}'", timed_out=True) from e
            except ClientError as e:
                status = getattr(e, "status", None)
                raise TransientNetworkError(
                    f"Network error while fetching weather for '{LOCATION_NAME}': {e}", status=status) from e

            snapshot = parse_response(body)
            logger.info("Weather for %s fetched: current=%s, days=%s",
                        LOCATION_NAME, snapshot.current is not None, len(snapshot.daily))
            return snapshot

    async def close(self):
        await self._http.close()
