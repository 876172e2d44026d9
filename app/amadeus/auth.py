import threading
import time
from typing import Callable, Optional

import httpx

from app.errors import AuthError
from app.obs.logger import log_event
from app.obs.metrics import inc_counter

TOKEN_PATH = "/v1/security/oauth2/token"


class TokenCache:
    """
    Single bearer token for the flight API, refreshed before it expires.

    The cached token is reused only while more than `refresh_buffer_seconds`
    of its life remain, so a token never expires mid-request.
    """

    def __init__(
        self,
        http: httpx.Client,
        base_url: str,
        client_id: str,
        client_secret: str,
        refresh_buffer_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        self._http = http
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def get_token(self) -> str:
        # Held across the exchange so concurrent callers share one refresh.
        with self._lock:
            now = self._clock()
            if self._token and self._expires_at > now + self.refresh_buffer_seconds:
                return self._token
            self._token, self._expires_at = self._exchange(now)
            return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    def _exchange(self, now: float) -> tuple[str, float]:
        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        try:
            r = self._http.post(
                f"{self.base_url}{TOKEN_PATH}",
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            inc_counter("amadeus_token_refresh_total", {"status": "error"})
            log_event("amadeus_auth_failed", level="ERROR", error=f"{type(e).__name__}: {e}")
            raise AuthError(f"Amadeus auth failed: {type(e).__name__}") from e

        if not r.is_success:
            inc_counter("amadeus_token_refresh_total", {"status": "error"})
            log_event("amadeus_auth_failed", level="ERROR", status=r.status_code, body=r.text[:500])
            raise AuthError(f"Amadeus auth failed: {r.status_code} {r.text[:200]}", r.status_code)

        try:
            j = r.json()
            token = j["access_token"]
            expires_in = int(j.get("expires_in", 1799))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            inc_counter("amadeus_token_refresh_total", {"status": "error"})
            log_event("amadeus_auth_failed", level="ERROR", error="unusable token response")
            raise AuthError("Amadeus auth response carried no usable access_token") from e

        inc_counter("amadeus_token_refresh_total", {"status": "ok"})
        log_event("amadeus_token_refreshed", expires_in=expires_in)
        return token, now + expires_in
