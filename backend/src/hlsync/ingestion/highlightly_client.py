"""HTTP client for the Highlightly football API."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hlsync.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeagueConfig:
    id: int
    name: str
    country: str


# Highlightly league ids, in sync priority order
PRIORITY_LEAGUES: list[LeagueConfig] = [
    LeagueConfig(33973, "Premier League", "England"),
    LeagueConfig(119924, "La Liga", "Spain"),
    LeagueConfig(115669, "Serie A", "Italy"),
    LeagueConfig(67162, "Bundesliga", "Germany"),
    LeagueConfig(52695, "Ligue 1", "France"),
    LeagueConfig(2486, "UEFA Champions League", "Europe"),
    LeagueConfig(3337, "UEFA Europa League", "Europe"),
    LeagueConfig(34824, "Championship", "England"),
]


class RateLimitedError(Exception):
    """Raised on HTTP 429 so the retry loop can back off."""

    def __init__(self, retry_after: float | None = None) -> None:
        super().__init__("rate limited (HTTP 429)")
        self.retry_after = retry_after


class RateLimiter:
    """Rolling-window call limiter with a minimum gap between calls.

    ``clock`` and ``sleep`` are injectable so tests can drive time by hand.
    """

    def __init__(
        self,
        max_calls: int,
        window_s: float = 60.0,
        min_interval_s: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_calls = max_calls
        self.window_s = window_s
        self.min_interval_s = min_interval_s
        self.clock = clock
        self.sleep = sleep
        self._calls: deque[float] = deque()
        self._last: float | None = None

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_s
        while self._calls and self._calls[0] <= cutoff:
            self._calls.popleft()

    def acquire(self) -> None:
        """Block until one more call is allowed, then record it."""
        now = self.clock()

        if self._last is not None and self.min_interval_s > 0:
            gap = now - self._last
            if gap < self.min_interval_s:
                self.sleep(self.min_interval_s - gap)
                now = self.clock()

        self._prune(now)
        if len(self._calls) >= self.max_calls:
            wait = self._calls[0] + self.window_s - now
            if wait > 0:
                logger.info(
                    "Rate limit reached (%d calls / %.0fs), waiting %.1fs",
                    self.max_calls, self.window_s, wait,
                )
                self.sleep(wait)
                now = self.clock()
            self._prune(now)

        self._calls.append(now)
        self._last = now


def unwrap(payload: Any) -> Any:
    """Strip the provider's ``{"data": ...}`` envelope when present."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def as_list(payload: Any) -> list:
    """Coerce an (unwrapped) payload to a list of records."""
    payload = unwrap(payload)
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    return [payload]


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class HighlightlyClient:
    """Rate-limited Highlightly API client.

    ``fetch`` returns the raw JSON body (pagination envelopes included),
    ``call`` the unwrapped payload. Both return ``None`` on failure, callers
    treat that as "no data" and carry on.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session: requests.Session | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        s = settings or get_settings()
        self.base_url = s.highlightly_base_url.rstrip("/")
        self.timeout = s.request_timeout_s
        self.max_retries = s.max_retries
        self.rate_limit_backoff_s = s.rate_limit_backoff_s
        self.limiter = limiter or RateLimiter(
            max_calls=s.max_calls_per_minute,
            window_s=60.0,
            min_interval_s=s.min_call_interval_s,
        )
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "x-api-key": s.highlightly_api_key,
            "x-rapidapi-key": s.highlightly_api_key,
        })
        if not s.highlightly_api_key:
            logger.warning("No Highlightly API key configured; requests will likely be rejected")

    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitedError):
            return exc.retry_after or self.rate_limit_backoff_s
        return wait_exponential(multiplier=1, min=2, max=10)(retry_state)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Retrying %s after %s (attempt %d/%d, sleeping %.1fs)",
            retry_state.args[0] if retry_state.args else "?",
            exc,
            retry_state.attempt_number,
            self.max_retries + 1,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    def _get(self, endpoint: str, params: dict[str, Any] | None) -> Any:
        self.limiter.acquire()
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        query = {k: v for k, v in (params or {}).items() if v is not None}
        resp = self.session.get(url, params=query, timeout=self.timeout)
        if resp.status_code == 429:
            raise RateLimitedError(_parse_retry_after(resp.headers.get("Retry-After")))
        resp.raise_for_status()
        return resp.json()

    def fetch(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET an endpoint and return the raw JSON body, or ``None`` on failure."""
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception_type((RateLimitedError, ConnectionError, Timeout)),
            sleep=self.limiter.sleep,
            before_sleep=self._before_sleep,
            reraise=True,
        )
        logger.debug("GET %s %s", endpoint, params or {})
        try:
            return retrying(self._get, endpoint, params)
        except RateLimitedError:
            logger.error("Still rate limited after %d attempts: %s", self.max_retries + 1, endpoint)
        except RequestException as e:
            logger.error("API call failed for %s: %s", endpoint, e)
        except ValueError as e:
            logger.error("Invalid JSON from %s: %s", endpoint, e)
        return None

    def call(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET an endpoint and return its payload with the envelope removed."""
        return unwrap(self.fetch(endpoint, params))
