import asyncio
import json
import time
import uuid
from collections import defaultdict, deque
from datetime import datetime
from typing import Callable, Dict, Optional

import redis

from app.config import settings
from app.obs.logger import log_event
from app.obs.metrics import inc_counter

# Responses on these paths stream for longer than the deadline on purpose
STREAMING_PATHS = {"/api/chat"}


class RateLimiter:
    """Sliding-window limiter; Redis sorted set when available, in-process deque otherwise."""

    def __init__(self, redis_client: redis.Redis = None, clock: Callable[[], float] = time.time):
        self.redis_client = redis_client
        self.local_cache = defaultdict(lambda: deque(maxlen=1000))
        self._clock = clock

    def check_rate_limit(
        self,
        key: str,
        max_requests: int,
        window_seconds: int
    ) -> tuple[bool, Dict]:
        if self.redis_client:
            try:
                return self._check_redis_rate_limit(key, max_requests, window_seconds)
            except redis.RedisError as e:
                log_event("rate_limit_redis_failed", level="WARNING", error=str(e))
        return self._check_local_rate_limit(key, max_requests, window_seconds)

    def _check_redis_rate_limit(
        self,
        key: str,
        max_requests: int,
        window_seconds: int
    ) -> tuple[bool, Dict]:
        redis_key = f"rate_limit:{key}"
        now = self._clock()
        pipeline = self.redis_client.pipeline()

        pipeline.zremrangebyscore(redis_key, 0, now - window_seconds)
        pipeline.zadd(redis_key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        pipeline.zcard(redis_key)
        pipeline.expire(redis_key, window_seconds + 1)

        # every attempt is recorded, so a client that keeps hammering stays blocked
        count = pipeline.execute()[2]
        return _window_info(count <= max_requests, count, max_requests, window_seconds)

    def _check_local_rate_limit(
        self,
        key: str,
        max_requests: int,
        window_seconds: int
    ) -> tuple[bool, Dict]:
        now = self._clock()
        hits = self.local_cache[key]
        while hits and hits[0] < now - window_seconds:
            hits.popleft()

        allowed = len(hits) < max_requests
        if allowed:
            hits.append(now)
        return _window_info(allowed, len(hits), max_requests, window_seconds)


def _window_info(allowed: bool, current: int, limit: int, window_seconds: int) -> tuple[bool, Dict]:
    return allowed, {
        "allowed": allowed,
        "current": current,
        "limit": limit,
        "window_seconds": window_seconds,
        "retry_after": None if allowed else window_seconds,
    }


class HealthChecker:
    def __init__(self):
        self.checks = {}
        self.last_check_time = {}
        self.check_results = {}

    def register_check(self, name: str, check_func: Callable, interval_seconds: int = 30):
        self.checks[name] = {
            "func": check_func,
            "interval": interval_seconds
        }

    async def run_checks(self) -> Dict:
        results = {}
        tasks = []

        for name, check_info in self.checks.items():
            last_time = self.last_check_time.get(name, 0)
            if time.time() - last_time >= check_info["interval"]:
                tasks.append(self._run_single_check(name, check_info["func"]))

        if tasks:
            for name, result in await asyncio.gather(*tasks):
                results[name] = result
                self.check_results[name] = result
                self.last_check_time[name] = time.time()

        # cached results for checks still inside their interval
        for name in self.checks:
            if name not in results:
                results[name] = self.check_results.get(name, {"status": "unknown"})

        all_healthy = all(
            r.get("status") == "healthy"
            for r in results.values()
            if r.get("status") != "unknown"
        )

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": results,
            "timestamp": datetime.now().isoformat()
        }

    async def _run_single_check(self, name: str, check_func: Callable) -> tuple[str, Dict]:
        start = time.time()
        try:
            # pings block, keep them off the event loop
            result = await asyncio.to_thread(check_func)
        except Exception as e:
            return name, {
                "status": "unhealthy",
                "error": str(e),
                "timestamp": datetime.now().isoformat()
            }
        return name, {
            "status": "healthy" if result else "unhealthy",
            "duration_ms": int((time.time() - start) * 1000),
            "timestamp": datetime.now().isoformat()
        }


class ProductionMiddleware:
    """
    Outermost ASGI layer: /health/detailed, per-IP rate limiting of API
    POSTs, and a wall-clock ceiling on API requests.
    """

    def __init__(
        self,
        app,
        redis_client: redis.Redis = None,
        mongo_ping: Optional[Callable[[], bool]] = None,
        max_requests_per_minute: int = None,
        deadline_seconds: float = None,
    ):
        self.app = app
        self.redis_client = redis_client
        self.rate_limiter = RateLimiter(redis_client)
        self.health_checker = HealthChecker()
        self.max_requests_per_minute = max_requests_per_minute or settings.RATE_LIMIT_PER_MINUTE
        self.deadline_seconds = deadline_seconds or settings.REQUEST_DEADLINE_SECONDS
        self.mongo_ping = mongo_ping

        self._register_health_checks()

    def _register_health_checks(self):
        if self.redis_client is not None:
            self.health_checker.register_check("redis", self.redis_client.ping, 30)
        if self.mongo_ping is not None:
            self.health_checker.register_check("mongodb", self.mongo_ping, 30)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope["path"]

        if path == "/health/detailed":
            health_status = await self.health_checker.run_checks()
            status = 200 if health_status["status"] == "healthy" else 503
            await self._send_json_response(send, health_status, status)
            return

        if not path.startswith("/api/"):
            await self.app(scope, receive, send)
            return

        if scope.get("method") == "POST":
            client_ip = (scope.get("client") or ["unknown", None])[0]
            allowed, limit_info = self.rate_limiter.check_rate_limit(
                f"ip:{client_ip}",
                max_requests=self.max_requests_per_minute,
                window_seconds=60
            )
            if not allowed:
                inc_counter("rate_limited_total", {"route": path})
                log_event("rate_limited", route=path, client_ip=client_ip)
                await self._send_rate_limit_response(send, limit_info)
                return

        if path in STREAMING_PATHS:
            await self.app(scope, receive, send)
            return

        await self._call_with_deadline(scope, receive, send)

    async def _call_with_deadline(self, scope, receive, send):
        started = False

        async def send_wrapper(message):
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        try:
            await asyncio.wait_for(self.app(scope, receive, send_wrapper), timeout=self.deadline_seconds)
        except asyncio.TimeoutError:
            inc_counter("request_deadline_exceeded_total", {"route": scope["path"]})
            log_event("request_deadline_exceeded", level="ERROR", route=scope["path"],
                      deadline_seconds=self.deadline_seconds)
            if not started:
                await self._send_json_response(
                    send, {"error": "Request took too long, please try again"}, 504)

    async def _send_json_response(self, send, data: Dict, status: int = 200):
        body = json.dumps(data).encode()
        await send({
            "type": "http.response.start",
            "status": status,
            "headers": [[b"content-type", b"application/json"]],
        })
        await send({
            "type": "http.response.body",
            "body": body,
        })

    async def _send_rate_limit_response(self, send, limit_info: Dict):
        await send({
            "type": "http.response.start",
            "status": 429,
            "headers": [
                [b"content-type", b"application/json"],
                [b"retry-after", str(limit_info["retry_after"]).encode()],
            ],
        })
        await send({
            "type": "http.response.body",
            "body": b'{"error": "Rate limit exceeded"}',
        })
