import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import redis

from app.config import settings
from app.errors import CachePersistenceError, NotFoundOrExpired
from app.obs.logger import log_event
from app.obs.metrics import inc_counter
from app.types import CacheMetadata, CachedSearch
from app.utils.dates import parse_timestamp, to_utc_iso


class FlightOffersCache:
    """
    Search payloads stored under random handles with a hard Redis TTL.

    Entries are immutable: a new search writes a new key and earlier handles
    keep working until their own expiry.
    """

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: int = None,
        key_prefix: str = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds or settings.FLIGHT_OFFERS_TTL_SECONDS
        self.prefix = key_prefix or settings.FLIGHT_OFFERS_KEY_PREFIX
        self._clock = clock

    def _get_key(self, handle: str) -> str:
        return f"{self.prefix}{handle}"

    @staticmethod
    def _valid_handle(handle: Optional[str]) -> bool:
        if not handle:
            return False
        try:
            return str(uuid.UUID(handle)) == handle
        except (ValueError, AttributeError, TypeError):
            return False

    def store(self, payload: Dict[str, Any], search_request: Optional[Dict[str, Any]] = None) -> CachedSearch:
        """Persist payload, return it with its fresh handle and metadata."""
        handle = str(uuid.uuid4())
        now = self._clock()
        metadata = CacheMetadata(
            created_at=to_utc_iso(now),
            expires_at=to_utc_iso(now + self.ttl_seconds),
            ttl_seconds=self.ttl_seconds,
            search_request=search_request,
        )
        envelope = {
            "createdAt": metadata.created_at,
            "expiresAt": metadata.expires_at,
            "ttlSeconds": metadata.ttl_seconds,
            "searchRequest": search_request,
            "data": json.dumps(payload),
        }
        try:
            self.client.set(self._get_key(handle), json.dumps(envelope), ex=self.ttl_seconds)
        except (redis.RedisError, TypeError, ValueError) as e:
            inc_counter("flight_cache_writes_total", {"status": "error"})
            raise CachePersistenceError(f"Failed to persist flight offers: {e}") from e

        inc_counter("flight_cache_writes_total", {"status": "ok"})
        log_event("flight_offers_cached", handle=handle, ttl_seconds=self.ttl_seconds,
                  offers=len(payload.get("data") or []))
        return CachedSearch(handle=handle, payload=payload, metadata=metadata)

    def fetch(self, handle: Optional[str]) -> CachedSearch:
        if not self._valid_handle(handle):
            inc_counter("flight_cache_reads_total", {"status": "miss"})
            raise NotFoundOrExpired()

        raw = self.client.get(self._get_key(handle))
        if not raw:
            inc_counter("flight_cache_reads_total", {"status": "miss"})
            raise NotFoundOrExpired()

        try:
            parsed = json.loads(raw)
            if isinstance(parsed, dict) and parsed.get("createdAt") and "data" in parsed:
                payload = json.loads(parsed["data"]) if isinstance(parsed["data"], str) else parsed["data"]
                metadata = CacheMetadata(
                    created_at=parsed["createdAt"],
                    expires_at=parsed.get("expiresAt", ""),
                    ttl_seconds=int(parsed.get("ttlSeconds", self.ttl_seconds)),
                    search_request=parsed.get("searchRequest"),
                )
            else:
                # entry written before the metadata wrapper existed
                payload, metadata = parsed, None
        except (ValueError, TypeError) as e:
            inc_counter("flight_cache_reads_total", {"status": "corrupt"})
            log_event("flight_cache_corrupt", level="ERROR", handle=handle, error=str(e))
            raise NotFoundOrExpired() from e

        if not isinstance(payload, dict):
            inc_counter("flight_cache_reads_total", {"status": "corrupt"})
            raise NotFoundOrExpired()

        inc_counter("flight_cache_reads_total", {"status": "hit"})
        return CachedSearch(handle=handle, payload=payload, metadata=metadata)

    def is_stale(self, created_at: Optional[str], now: Optional[float] = None) -> bool:
        """
        Application-level freshness: stale once the entry is ttl_seconds old,
        whatever Redis still holds. An unreadable timestamp counts as stale.
        """
        created = parse_timestamp(created_at)
        if created is None:
            return True
        now_dt = datetime.fromtimestamp(self._clock() if now is None else now, tz=timezone.utc)
        age = (now_dt.replace(tzinfo=None) - created).total_seconds()
        return age >= self.ttl_seconds

    def is_entry_stale(self, cached: CachedSearch, now: Optional[float] = None) -> bool:
        # entries without metadata only have the Redis TTL to go on
        if cached.metadata is None:
            return False
        return self.is_stale(cached.metadata.created_at, now)
