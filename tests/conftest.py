import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(autouse=True)
def _test_env(monkeypatch, tmp_path):
    monkeypatch.setenv("WEATHER_CACHE_PATH", str(tmp_path / "env-cache.json"))
    monkeypatch.setenv("LOG_DIR", "")


@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    if request.node.get_closest_marker("integration") or request.node.get_closest_marker("network"):
        return

    import aiohttp

    def _boom(*args, **kwargs):
        raise RuntimeError(
            "Network is blocked in unit tests. "
            "Use a fake session or mark the test with @pytest.mark.network"
        )

    monkeypatch.setattr(aiohttp.ClientSession, "_request", _boom, raising=True)


class FakeResponse:
    def __init__(self, status: int = 200, body=b"", url: str = "https://api.open-meteo.com/v1/forecast"):
        self.status = status
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        self.request_info = SimpleNamespace(real_url=url, url=url, method="GET", headers={})
        self.history = ()
        self.headers = {}

    async def read(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Replays a script of responses/exceptions, one item per GET."""

    def __init__(self, script):
        self._script = list(script)
        self.calls = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params})
        item = self._script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


SAMPLE_PAYLOAD = {
    "latitude": 49.84,
    "longitude": 36.69,
    "timezone": "Europe/Kyiv",
    "current": {
        "time": "2026-10-17T14:15",
        "interval": 900,
        "temperature_2m": 12.4,
        "apparent_temperature": 10.1,
        "relative_humidity_2m": 71,
        "weather_code": 3,
        "cloud_cover": 88,
        "pressure_msl": 1016.2,
        "wind_speed_10m": 14.8,
        "wind_direction_10m": 245,
        "wind_gusts_10m": 31.7,
    },
    "daily": {
        "time": ["2026-10-17", "2026-10-18", "2026-10-19"],
        "weather_code": [3, 61, 1],
        "temperature_2m_max": [13.9, 11.2, 15.0],
        "temperature_2m_min": [6.1, 7.4, 4.8],
        "precipitation_sum": [0.0, 4.6, 0.1],
        "wind_gusts_10m_max": [35.3, 42.1, 20.9],
    },
}
