import asyncio
import enum
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .cache import CacheStore
from .models import WeatherSnapshot
from .weather_client import LOCATION_NAME, TransientNetworkError, WeatherFetcher

logger = logging.getLogger(__name__)

AUTO_REFRESH_INTERVAL_SECONDS = 60 * 60  # 1 hour
AUTO_REFRESH_JOB_ID = "weather_auto_refresh"

TIMEOUT_MESSAGE = "Соединение прервано по таймауту. Проверьте подключение к интернету."
NETWORK_MESSAGE = "Ошибка сети. Проверьте подключение к интернету и повторите попытку."
GENERIC_MESSAGE = "Произошла ошибка при загрузке данных о погоде. Повторите попытку."


class RefreshState(str, enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    ERROR = "error"


@dataclass(frozen=True)
class WeatherView:
    """Read-only state published to the consumer."""

    state: RefreshState = RefreshState.IDLE
    busy: bool = False
    location: str = LOCATION_NAME
    snapshot: Optional[WeatherSnapshot] = None
    error: Optional[str] = None
    last_updated: Optional[datetime] = None
    auto_refresh_enabled: bool = True


def user_error_message(exc: BaseException) -> str:
    if isinstance(exc, TransientNetworkError):
        return TIMEOUT_MESSAGE if exc.timed_out else NETWORK_MESSAGE
    return GENERIC_MESSAGE


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WeatherRefresher:
    """Coordinates cache, fetcher and the auto-refresh timer.

    Must be driven from a single event loop; every state change happens on it and
    is published as a new ``WeatherView``. Each refresh cycle runs in its own task
    and starting a new cycle cancels the previous one, so only the latest cycle
    may publish its outcome.
    """

    def __init__(self, fetcher: WeatherFetcher, cache: CacheStore, *,
                 auto_refresh: bool = True,
                 interval_seconds: float = AUTO_REFRESH_INTERVAL_SECONDS,
                 scheduler: Optional[AsyncIOScheduler] = None,
                 clock: Callable[[], datetime] = _now):
        self._fetcher = fetcher
        self._cache = cache
        self._interval = interval_seconds
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._clock = clock
        self._view = WeatherView(auto_refresh_enabled=auto_refresh)
        self._listeners: List[Callable[[WeatherView], None]] = []
        self._cycle: Optional[asyncio.Task] = None
        self._pending_writes: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def view(self) -> WeatherView:
        return self._view

    def add_listener(self, callback: Callable[[WeatherView], None]):
        self._listeners.append(callback)

    def _publish(self, **changes):
        self._view = replace(self._view, **changes)
        for callback in list(self._listeners):
            try:
                callback(self._view)
            except Exception:
                logger.exception("State listener %r failed", callback)

    async def _load_cached(self):
        snapshot = await self._cache.load()
        if snapshot is None:
            return
        record = await self._cache.info()
        if self._view.snapshot is not None:
            # a newer cycle published while the cache was being read
            return
        changes = {"snapshot": snapshot}
        if record is not None:
            changes["last_updated"] = record.timestamp
        logger.info("Loaded cached weather (last updated %s)", changes.get("last_updated"))
        self._publish(**changes)

    async def start(self) -> Optional[asyncio.Task]:
        await self._load_cached()
        task = self.refresh(force=True)
        if self._view.auto_refresh_enabled:
            self._arm_timer()
        if not self._scheduler.running:
            self._scheduler.start()
        return task

    def refresh(self, *, force: bool = False) -> Optional[asyncio.Task]:
        """Start a refresh cycle.

        Rejected (returns None) while a cycle is running unless ``force`` is set,
        in which case the running cycle is cancelled and superseded.
        """
        if self._closed:
            return None
        if self._view.busy and not force:
            logger.debug("Refresh rejected: a refresh is already running")
            return None

        previous = self._cycle
        if previous is not None and not previous.done():
            logger.info("Cancelling the previous refresh cycle")
            previous.cancel()

        self._publish(state=RefreshState.REFRESHING, busy=True, error=None)
        self._cycle = asyncio.ensure_future(self._run_cycle())
        return self._cycle

    def _is_current(self) -> bool:
        return self._cycle is asyncio.current_task()

    async def _run_cycle(self):
        try:
            snapshot = await self._fetcher.fetch()
        except asyncio.CancelledError:
            if self._is_current():
                self._publish(state=RefreshState.IDLE, busy=False)
            raise
        except Exception as e:
            if not self._is_current():
                return
            logger.warning("Weather refresh failed: %s", e)
            self._publish(state=RefreshState.ERROR, busy=False, error=user_error_message(e))
            if self._view.snapshot is None:
                await self._load_cached()
            return

        if not self._is_current():
            return
        self._publish(snapshot=snapshot, last_updated=self._clock(), state=RefreshState.IDLE, busy=False)
        write = asyncio.ensure_future(self._cache.save(snapshot))
        self._pending_writes.add(write)
        write.add_done_callback(self._pending_writes.discard)

    def toggle_auto_refresh(self) -> bool:
        enabled = not self._view.auto_refresh_enabled
        self._publish(auto_refresh_enabled=enabled)
        if not self._closed:
            if enabled:
                self._arm_timer()
            else:
                self._disarm_timer()
        logger.info("Auto-refresh %s", "enabled" if enabled else "disabled")
        return enabled

    def _arm_timer(self):
        self._scheduler.add_job(
            self._on_timer_tick,
            "interval",
            seconds=self._interval,
            id=AUTO_REFRESH_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def _disarm_timer(self):
        if self._scheduler.get_job(AUTO_REFRESH_JOB_ID) is not None:
            self._scheduler.remove_job(AUTO_REFRESH_JOB_ID)

    async def _on_timer_tick(self):
        if self._view.busy or not self._view.auto_refresh_enabled:
            logger.debug("Auto-refresh tick dropped (busy=%s, enabled=%s)",
                         self._view.busy, self._view.auto_refresh_enabled)
            return
        task = self.refresh()
        if task is not None:
            await asyncio.wait({task})

    async def wait(self):
        """Wait for the latest refresh cycle and pending cache writes."""
        while self._cycle is not None and not self._cycle.done():
            await asyncio.wait({self._cycle})
        if self._pending_writes:
            await asyncio.wait(set(self._pending_writes))

    async def close(self):
        if self._closed:
            return
        self._closed = True
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            # AsyncIOScheduler stops on the next loop iteration
            await asyncio.sleep(0)
        cycle = self._cycle
        if cycle is not None and not cycle.done():
            cycle.cancel()
            await asyncio.wait({cycle})
        if self._pending_writes:
            await asyncio.wait(set(self._pending_writes))
        await self._fetcher.close()
        logger.info("Weather refresher closed")
