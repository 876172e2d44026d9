import redis

from app.config import settings
from app.obs.logger import log_event


def create_redis_client(redis_url: str = None) -> redis.Redis:
    """
    Shared Redis connection. Redis being down at startup is logged, not fatal:
    searches still work, they just cannot issue handles until it comes back.
    """
    client = redis.from_url(
        redis_url or settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=3,
        socket_timeout=3,
        retry_on_timeout=True,
    )
    try:
        client.ping()
        log_event("redis_connected")
    except redis.RedisError as e:
        log_event("redis_unavailable", level="WARNING", error=str(e))
    return client
