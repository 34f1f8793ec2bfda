from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Tuple


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class CurrentConditions:
    time_local: datetime
    temperature_c: float
    apparent_temperature_c: float
    relative_humidity_pct: int
    weather_code: int
    cloud_cover_pct: int
    pressure_msl_hpa: float
    wind_speed_kmh: float
    wind_direction_deg: int
    wind_gust_kmh: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_local": self.time_local.isoformat(),
            "temperature_c": self.temperature_c,
            "apparent_temperature_c": self.apparent_temperature_c,
            "relative_humidity_pct": self.relative_humidity_pct,
            "weather_code": self.weather_code,
            "cloud_cover_pct": self.cloud_cover_pct,
            "pressure_msl_hpa": self.pressure_msl_hpa,
            "wind_speed_kmh": self.wind_speed_kmh,
            "wind_direction_deg": self.wind_direction_deg,
            "wind_gust_kmh": self.wind_gust_kmh,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CurrentConditions":
        return cls(
            time_local=datetime.fromisoformat(data["time_local"]),
            temperature_c=float(data["temperature_c"]),
            apparent_temperature_c=float(data["apparent_temperature_c"]),
            relative_humidity_pct=int(data["relative_humidity_pct"]),
            weather_code=int(data["weather_code"]),
            cloud_cover_pct=int(data["cloud_cover_pct"]),
            pressure_msl_hpa=float(data["pressure_msl_hpa"]),
            wind_speed_kmh=float(data["wind_speed_kmh"]),
            wind_direction_deg=int(data["wind_direction_deg"]),
            wind_gust_kmh=float(data["wind_gust_kmh"]),
        )


@dataclass(frozen=True)
class DailyForecast:
    date_local: date
    weather_code: int
    tmin_c: float
    tmax_c: float
    precipitation_sum_mm: float
    wind_gust_max_kmh: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date_local": self.date_local.isoformat(),
            "weather_code": self.weather_code,
            "tmin_c": self.tmin_c,
            "tmax_c": self.tmax_c,
            "precipitation_sum_mm": self.precipitation_sum_mm,
            "wind_gust_max_kmh": self.wind_gust_max_kmh,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DailyForecast":
        return cls(
            date_local=date.fromisoformat(data["date_local"]),
            weather_code=int(data["weather_code"]),
            tmin_c=float(data["tmin_c"]),
            tmax_c=float(data["tmax_c"]),
            precipitation_sum_mm=float(data["precipitation_sum_mm"]),
            wind_gust_max_kmh=float(data["wind_gust_max_kmh"]),
        )


@dataclass(frozen=True)
class WeatherSnapshot:
    """One complete current + forecast reading for the fixed location."""

    location_name: str
    current: Optional[CurrentConditions] = None
    daily: Tuple[DailyForecast, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.location_name:
            raise ValueError("location_name must not be empty")
        # lists from callers are frozen into a tuple
        object.__setattr__(self, "daily", tuple(self.daily))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location_name": self.location_name,
            "current": self.current.to_dict() if self.current is not None else None,
            "daily": [d.to_dict() for d in self.daily],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeatherSnapshot":
        current = data.get("current")
        return cls(
            location_name=data["location_name"],
            current=CurrentConditions.from_dict(current) if current is not None else None,
            daily=tuple(DailyForecast.from_dict(d) for d in data.get("daily") or []),
        )


@dataclass(frozen=True)
class CachedRecord:
    snapshot: Optional[WeatherSnapshot]
    timestamp: datetime
    expires_at: datetime

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = _utc(now) if now is not None else datetime.now(timezone.utc)
        return now < _utc(self.expires_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot": self.snapshot.to_dict() if self.snapshot is not None else None,
            "timestamp": _utc(self.timestamp).isoformat(),
            "expires_at": _utc(self.expires_at).isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedRecord":
        snapshot = data.get("snapshot")
        return cls(
            snapshot=WeatherSnapshot.from_dict(snapshot) if snapshot is not None else None,
            timestamp=_utc(datetime.fromisoformat(data["timestamp"])),
            expires_at=_utc(datetime.fromisoformat(data["expires_at"])),
        )
