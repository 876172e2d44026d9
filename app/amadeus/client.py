import httpx
from typing import Dict, Any, Optional

from app.amadeus.auth import TokenCache
from app.amadeus.fetch import AmadeusFetchClient, is_auth_error, is_retriable_status
from app.config import Settings, settings as default_settings
from app.errors import AuthError, UpstreamError, UpstreamRejectedError, UpstreamTransientError
from app.obs.logger import log_event
from app.obs.metrics import timed

FLIGHT_OFFERS_PATH = "/v2/shopping/flight-offers"


def error_detail(resp: httpx.Response) -> str:
    """Flatten Amadeus `errors[]` into '[code] title - detail' lines; raw text otherwise."""
    try:
        errors = resp.json().get("errors", [])
    except (ValueError, AttributeError):
        return resp.text[:500]
    lines = []
    for e in errors:
        if not isinstance(e, dict):
            continue
        line = f"[{e.get('code')}] {e.get('title', '')}"
        if e.get("detail"):
            line += f" - {e['detail']}"
        lines.append(line)
    return "; ".join(lines) or resp.text[:500]


class AmadeusClient:
    def __init__(self, fetch: AmadeusFetchClient):
        self.fetch = fetch

    def search_flight_offers(self, search_request: Dict[str, Any],
                             method_override: Optional[str] = None) -> Dict[str, Any]:
        """POST a Flight Offers Search body; return the provider JSON or raise a named error."""
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if method_override:
            headers["X-HTTP-Method-Override"] = method_override

        with timed("amadeus_search_latency_ms"):
            resp = self.fetch.request(FLIGHT_OFFERS_PATH, "POST", headers=headers, json_body=search_request)

        if resp.is_success:
            try:
                payload = resp.json()
            except ValueError as e:
                log_event("amadeus_invalid_json", level="ERROR", body=resp.text[:500])
                raise UpstreamError("Invalid response from flight search API", resp.status_code) from e
            if not isinstance(payload, dict):
                raise UpstreamError("Invalid response from flight search API", resp.status_code)
            log_event("amadeus_search_ok", offers=len(payload.get("data") or []))
            return payload

        detail = error_detail(resp)
        log_event("amadeus_search_failed", level="ERROR", status=resp.status_code, detail=detail)
        if is_auth_error(resp.status_code):
            # a revoked token must not be served again from the cache
            self.fetch.token_cache.invalidate()
            raise AuthError(f"Flight API refused credentials: {resp.status_code}", resp.status_code)
        if is_retriable_status(resp.status_code):
            raise UpstreamTransientError("Flight search temporarily unavailable", resp.status_code, detail)
        raise UpstreamRejectedError("Failed to fetch flight offers", resp.status_code, detail)

    def close(self) -> None:
        self.fetch.close()


def create_amadeus_client(cfg: Settings = default_settings) -> AmadeusClient:
    # Persistent HTTP client with HTTP/2 and sensible timeouts
    http = httpx.Client(
        http2=True,
        timeout=httpx.Timeout(
            connect=cfg.AMADEUS_CONNECT_TIMEOUT,
            read=cfg.AMADEUS_READ_TIMEOUT,
            write=cfg.AMADEUS_READ_TIMEOUT,
            pool=12.0,
        ),
    )
    token_cache = TokenCache(
        http=http,
        base_url=cfg.AMADEUS_BASE_URL,
        client_id=cfg.AMADEUS_CLIENT_ID,
        client_secret=cfg.AMADEUS_CLIENT_SECRET,
        refresh_buffer_seconds=cfg.AMADEUS_TOKEN_REFRESH_BUFFER_SECONDS,
    )
    fetch = AmadeusFetchClient(
        token_cache=token_cache,
        http=http,
        base_url=cfg.AMADEUS_BASE_URL,
        max_retries=cfg.AMADEUS_MAX_RETRIES,
        deadline_seconds=cfg.REQUEST_DEADLINE_SECONDS,
    )
    return AmadeusClient(fetch)
