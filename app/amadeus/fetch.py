"""Authenticated HTTP to Amadeus with retry/backoff.

HTTP-level failures come back as responses; only exhausted network-level
retries raise. Auth failures (401/403) and plain 4xx are never retried.
"""

import random
import time
from typing import Any, Callable, Dict, Optional

import httpx

from app.amadeus.auth import TokenCache
from app.errors import UpstreamTransientError, RequestDeadlineExceeded
from app.obs.logger import log_event
from app.obs.metrics import inc_counter

BACKOFF_BASE_MS = 400
BACKOFF_JITTER_MS = 150
BACKOFF_MIN_MS = 500  # lower clamp for server-supplied Retry-After
BACKOFF_MAX_MS = 5000


def is_auth_error(status: int) -> bool:
    return status in (401, 403)


def is_retriable_status(status: int) -> bool:
    return status >= 500 or status in (408, 429)


def compute_backoff_ms(attempt: int, retry_after: Optional[str] = None,
                       rand: Callable[[], float] = random.random) -> int:
    """400, 800, 1600 ... (+0-149ms jitter), capped at 5s. Retry-After wins when usable."""
    if retry_after is not None:
        try:
            secs = float(retry_after)
        except ValueError:
            secs = -1.0
        if secs >= 0:
            return int(min(BACKOFF_MAX_MS, max(BACKOFF_MIN_MS, secs * 1000)))
    jitter = int(rand() * BACKOFF_JITTER_MS)
    return int(min(BACKOFF_MAX_MS, BACKOFF_BASE_MS * (2 ** attempt) + jitter))


class AmadeusFetchClient:
    def __init__(
        self,
        token_cache: TokenCache,
        http: httpx.Client,
        base_url: str,
        max_retries: int = 3,
        deadline_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rand: Callable[[], float] = random.random,
    ):
        self.token_cache = token_cache
        self._http = http
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.deadline_seconds = deadline_seconds
        self._sleep = sleep
        self._clock = clock
        self._rand = rand

    def request(
        self,
        path: str,
        method: str = "POST",
        headers: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        max_retries: Optional[int] = None,
    ) -> httpx.Response:
        """path should start with '/v1' or '/v2'. Total attempts = 1 + max_retries."""
        retries = self.max_retries if max_retries is None else max_retries
        url = f"{self.base_url}{path}"
        started = self._clock()
        attempt = 0

        while True:
            # Token is fetched inside the loop so a refresh mid-sequence is picked up.
            token = self.token_cache.get_token()
            req_headers = dict(headers or {})
            if json_body is not None:
                req_headers.setdefault("Content-Type", "application/json")
            req_headers["Authorization"] = f"Bearer {token}"

            try:
                resp = self._http.request(method, url, headers=req_headers, json=json_body)
            except httpx.TransportError as e:
                if attempt < retries:
                    delay_ms = compute_backoff_ms(attempt, rand=self._rand)
                    if self._past_deadline(started, delay_ms):
                        raise RequestDeadlineExceeded(
                            f"Flight API unreachable before deadline: {type(e).__name__}"
                        ) from e
                    inc_counter("amadeus_retries_total", {"reason": "network"})
                    log_event("amadeus_retry", level="WARNING", reason=type(e).__name__,
                              attempt=attempt + 1, delay_ms=delay_ms, path=path)
                    self._sleep(delay_ms / 1000.0)
                    attempt += 1
                    continue
                log_event("amadeus_network_failure", level="ERROR", error=f"{type(e).__name__}: {e}",
                          attempts=attempt + 1, path=path)
                raise UpstreamTransientError(f"Flight API unreachable: {type(e).__name__}") from e

            if resp.is_success or is_auth_error(resp.status_code):
                return resp

            if is_retriable_status(resp.status_code) and attempt < retries:
                delay_ms = compute_backoff_ms(attempt, resp.headers.get("Retry-After"), rand=self._rand)
                if self._past_deadline(started, delay_ms):
                    log_event("amadeus_deadline_reached", level="WARNING",
                              status=resp.status_code, attempts=attempt + 1, path=path)
                    return resp
                inc_counter("amadeus_retries_total", {"reason": str(resp.status_code)})
                log_event("amadeus_retry", level="WARNING", reason=resp.status_code,
                          attempt=attempt + 1, delay_ms=delay_ms, path=path)
                self._sleep(delay_ms / 1000.0)
                attempt += 1
                continue

            return resp

    def _past_deadline(self, started: float, delay_ms: int) -> bool:
        if self.deadline_seconds is None:
            return False
        return (self._clock() - started) + delay_ms / 1000.0 > self.deadline_seconds

    def close(self) -> None:
        self._http.close()
