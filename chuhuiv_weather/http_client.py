import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
from aiohttp import ClientError

logger = logging.getLogger(__name__)

_MAX_ATTEMPTS = int(os.getenv("HTTPCLIENT_MAX_ATTEMPTS", "3"))
_BACKOFF_INITIAL = float(os.getenv("HTTPCLIENT_BACKOFF_INITIAL", "1.0"))  # seconds
_BACKOFF_FACTOR = float(os.getenv("HTTPCLIENT_BACKOFF_FACTOR", "2.0"))
_TIMEOUT = float(os.getenv("HTTPCLIENT_TIMEOUT", "10"))  # seconds

USER_AGENT = "ChuhuivWeather/1.0"

DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept-Encoding": "gzip, deflate",
    "Accept": "application/json",
}


class HTTPClient:
    """Owns one aiohttp session and retries transient GET failures.

    Transient means a transport error, a timeout or a non-2xx status. Anything
    else, including task cancellation, propagates on the first attempt.
    """

    def __init__(self, *, session: Optional[aiohttp.ClientSession] = None,
                 timeout: float = _TIMEOUT, max_attempts: int = _MAX_ATTEMPTS,
                 backoff_initial: float = _BACKOFF_INITIAL, backoff_factor: float = _BACKOFF_FACTOR,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session = session
        self._owns_session = session is None
        self._lock = asyncio.Lock()
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_initial = backoff_initial
        self.backoff_factor = backoff_factor
        self._sleep = sleep

    async def get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            async with self._lock:
                if self._session is None or self._session.closed:
                    timeout = aiohttp.ClientTimeout(total=self.timeout)
                    self._session = aiohttp.ClientSession(timeout=timeout, headers=DEFAULT_HEADERS)
                    self._owns_session = True
                    logger.debug("HTTPClient: created new aiohttp ClientSession")
        return self._session

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_initial * (self.backoff_factor ** (attempt - 1))

    async def _get_once(self, sess, url: str, params: Optional[Dict[str, Any]]) -> bytes:
        async with sess.get(url, params=params, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
            if not 200 <= resp.status < 300:
                text = (await resp.read()).decode("utf-8", errors="replace")
                logger.warning("HTTPClient request got %s for %s; response: %s",
                               resp.status, url, (text[:200] + "..." if len(text) > 200 else text))
                raise aiohttp.ClientResponseError(
                    request_info=resp.request_info,
                    history=resp.history,
                    status=resp.status,
                    message=f"HTTP error {resp.status}",
                    headers=resp.headers,
                )
            # decoding is left to the JSON parser
            return await resp.read()

    async def fetch_body(self, url: str, params: Optional[Dict[str, Any]] = None) -> bytes:
        sess = await self.get_session()

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._get_once(sess, url, params)
            except (asyncio.TimeoutError, ClientError) as exc:
                if attempt >= self.max_attempts:
                    logger.error("HTTPClient exhausted %s attempts for url=%s; last_exc=%r",
                                 self.max_attempts, url, exc)
                    raise
                sleep_for = self.backoff_delay(attempt)
                logger.info("HTTPClient retry %s/%s for %s after %.2fs (error=%r)",
                            attempt, self.max_attempts - 1, url, sleep_for, exc)
                await self._sleep(sleep_for)
            except Exception as exc:
                logger.exception("HTTPClient unexpected error for url=%s: %s", url, exc)
                raise
        raise RuntimeError("HTTPClient.fetch_body failed unexpectedly")

    async def close(self):
        if self._session is not None and not self._session.closed and self._owns_session:
            await self._session.close()
            logger.debug("HTTPClient: ClientSession closed")
        self._session = None
