import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Union

from .models import CachedRecord, WeatherSnapshot
from .weather_client import ErrorKind, WeatherClientError

logger = logging.getLogger(__name__)

# One TTL covers the whole record: current conditions and the forecast expire together.
DEFAULT_LIFETIME = timedelta(minutes=30)


class CacheError(WeatherClientError):
    kind = ErrorKind.CACHE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheStore:
    """Single-record JSON cache on disk.

    Cache problems never leave this class: reads degrade to "no cache" and
    failed writes are only logged.
    """

    def __init__(self, path: Union[str, Path], lifetime: timedelta = DEFAULT_LIFETIME,
                 clock: Callable[[], datetime] = _utcnow):
        self.path = Path(path)
        self.lifetime = lifetime
        self._clock = clock
        self._lock = asyncio.Lock()

    def _read_record(self) -> Optional[CachedRecord]:
        if not self.path.exists():
            return None
        try:
            raw = self.path.read_text(encoding="utf-8")
            return CachedRecord.from_dict(json.loads(raw))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise CacheError(f"Cannot read cache file {self.path}: {e}") from e

    def _write_record(self, record: CachedRecord):
        data = json.dumps(record.to_dict(), ensure_ascii=False, indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".cache-", suffix=".tmp", dir=str(self.path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(data)
                os.replace(tmp_name, self.path)
            except BaseException:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise
        except OSError as e:
            raise CacheError(f"Cannot write cache file {self.path}: {e}") from e

    def _delete(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Cache: failed to delete %s: %s", self.path, e)

    async def save(self, snapshot: Optional[WeatherSnapshot]):
        now = self._clock()
        record = CachedRecord(snapshot=snapshot, timestamp=now, expires_at=now + self.lifetime)
        async with self._lock:
            try:
                await asyncio.to_thread(self._write_record, record)
                logger.debug("Cache: saved record to %s (expires %s)", self.path, record.expires_at.isoformat())
            except CacheError as e:
                logger.warning("Cache: %s", e)

    async def load(self) -> Optional[WeatherSnapshot]:
        async with self._lock:
            try:
                record = await asyncio.to_thread(self._read_record)
            except CacheError as e:
                logger.warning("Cache: %s; treating as empty", e)
                return None
            if record is None:
                return None
            if record.is_valid(self._clock()):
                return record.snapshot
            logger.info("Cache: record expired at %s, removing", record.expires_at.isoformat())
            await asyncio.to_thread(self._delete)
            return None

    async def info(self) -> Optional[CachedRecord]:
        async with self._lock:
            try:
                return await asyncio.to_thread(self._read_record)
            except CacheError as e:
                logger.warning("Cache: %s", e)
                return None

    async def has_valid(self) -> bool:
        return await self.load() is not None

    async def clear(self):
        async with self._lock:
            await asyncio.to_thread(self._delete)

    def size_bytes(self) -> int:
        try:
            return self.path.stat().st_size
        except OSError:
            return 0
