"""Retrying HTTP fetches and a stale-on-error cache for third-party data.

Retry policy:
- 429 sleeps ``attempt * rate_limit_delay`` (linear backoff) and retries.
- 5xx and transport failures (timeouts, resets) sleep a fixed ``network_delay``.
- Other non-2xx responses are final.
The attempt ceiling is hard; there are no unbounded loops.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import httpx

from familyhub.utils.timezone import Clock, utcnow

logger = logging.getLogger(__name__)

RATE_LIMIT_DELAY_SECONDS = 1.0
NETWORK_RETRY_DELAY_SECONDS = 0.5
DEFAULT_MAX_ATTEMPTS = 3

SleepFn = Callable[[float], Awaitable[Any]]


class ExternalFetchError(Exception):
    """Raised when a third-party request fails for good."""

    def __init__(self, message: str, status_code: Optional[int] = None, rate_limited: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.rate_limited = rate_limited


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    rate_limit_delay: float = RATE_LIMIT_DELAY_SECONDS,
    network_delay: float = NETWORK_RETRY_DELAY_SECONDS,
    sleep: SleepFn = asyncio.sleep,
    **request_kwargs: Any,
) -> httpx.Response:
    """Sends a request, retrying 429/5xx/transport failures.

    Returns the last response received, whatever its status. Raises
    ExternalFetchError only when the final attempt produced no response.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_exc: Optional[Exception] = None
    response: Optional[httpx.Response] = None

    for attempt in range(1, max_attempts + 1):
        try:
            response = await client.request(method, url, **request_kwargs)
            last_exc = None
        except httpx.TransportError as exc:
            response = None
            last_exc = exc
            logger.warning(
                "External request failed",
                extra={"url": url, "attempt": attempt, "error": type(exc).__name__},
            )
            if attempt < max_attempts:
                await sleep(network_delay)
            continue

        if not _is_retryable_status(response.status_code):
            return response

        if attempt < max_attempts:
            delay = attempt * rate_limit_delay if response.status_code == 429 else network_delay
            logger.info(
                f"HTTP {response.status_code} from {url}, retrying in {delay:.1f}s "
                f"(attempt {attempt}/{max_attempts})"
            )
            await sleep(delay)

    if response is not None:
        return response
    raise ExternalFetchError(f"Request to {url} failed after {max_attempts} attempts: {last_exc}") from last_exc


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    **kwargs: Any,
) -> httpx.Response:
    """GET with retry. Any final non-2xx status raises ExternalFetchError."""
    response = await request_with_retry(client, "GET", url, max_attempts=max_attempts, **kwargs)
    if response.is_success:
        return response
    if response.status_code == 429:
        raise ExternalFetchError(
            f"Rate limited by {url} after {max_attempts} attempts", status_code=429, rate_limited=True
        )
    raise ExternalFetchError(f"{url} returned HTTP {response.status_code}", status_code=response.status_code)


@dataclass
class CacheEntry:
    key: str
    payload: Any
    fetched_at: datetime


@dataclass(frozen=True)
class CachedResult:
    payload: Any
    stale: bool
    fetched_at: datetime
    cached: bool


class ExternalFetchCache:
    """Process-local TTL cache with stale-on-error fallback.

    Constructed explicitly (one per app) with an injectable clock so tests
    control time and never share state.
    """

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def peek(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def _age_seconds(self, entry: CacheEntry) -> float:
        return (self._clock() - entry.fetched_at).total_seconds()

    async def get_or_fetch(
        self,
        key: str,
        ttl_seconds: float,
        fetch_fn: Callable[[], Awaitable[Any]],
        deadline: Optional[float] = None,
        force_refresh: bool = False,
    ) -> CachedResult:
        entry = self._entries.get(key)
        if entry and not force_refresh and self._age_seconds(entry) < ttl_seconds:
            return CachedResult(payload=entry.payload, stale=False, fetched_at=entry.fetched_at, cached=True)

        try:
            if deadline is not None:
                payload = await asyncio.wait_for(fetch_fn(), timeout=deadline)
            else:
                payload = await fetch_fn()
        except Exception as exc:
            if entry is None:
                raise
            logger.warning(
                f"Fetch for '{key}' failed, serving stale copy from {entry.fetched_at.isoformat()}: {exc}"
            )
            return CachedResult(payload=entry.payload, stale=True, fetched_at=entry.fetched_at, cached=True)

        fetched_at = self._clock()
        self._entries[key] = CacheEntry(key=key, payload=payload, fetched_at=fetched_at)
        return CachedResult(payload=payload, stale=False, fetched_at=fetched_at, cached=False)
