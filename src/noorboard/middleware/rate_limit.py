"""Per-IP rate limiting middleware.

Counters live in process memory by default, so limits are per instance and
reset on restart. When Redis is configured the counters are shared through
it instead (fixed window buckets keyed by IP).
"""

import time
from typing import Any

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from noorboard.redis_client import get_redis, redis_enabled

logger = structlog.get_logger()

# Paths exempt from rate limiting
_EXEMPT_PATHS = frozenset({"/health", "/ready"})


def client_key(request: Request) -> str:
    """Best guess at the caller's IP, honouring common proxy headers."""
    forwarded = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    if forwarded:
        return forwarded
    for header in ("cf-connecting-ip", "x-real-ip"):
        value = request.headers.get(header, "").strip()
        if value:
            return value
    return request.client.host if request.client else "unknown"


class InMemoryWindowLimiter:
    """N hits per window per key; a key's window starts at its first hit."""

    def __init__(self, limit: int, window_seconds: float, max_keys: int = 10_000) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self._windows: dict[str, tuple[float, int]] = {}

    def hit(self, key: str, now: float | None = None) -> tuple[bool, int]:
        """Record a hit. Returns (allowed, remaining)."""
        now = time.monotonic() if now is None else now
        started, count = self._windows.get(key, (0.0, 0))
        if count == 0 or now - started > self.window_seconds:
            self._prune(now)
            self._windows[key] = (now, 1)
            return True, self.limit - 1
        if count >= self.limit:
            return False, 0
        self._windows[key] = (started, count + 1)
        return True, self.limit - count - 1

    def _prune(self, now: float) -> None:
        if len(self._windows) < self.max_keys:
            return
        cutoff = now - self.window_seconds
        for key in [k for k, (started, _) in self._windows.items() if started < cutoff]:
            del self._windows[key]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limit requests per client IP; 429 with reason 'rate-limited' when exceeded."""

    def __init__(self, app: Any, requests_per_window: int = 60, window_seconds: int = 60) -> None:  # noqa: ANN401
        super().__init__(app)
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds
        self.local = InMemoryWindowLimiter(requests_per_window, window_seconds)

    async def _hit_redis(self, key: str) -> tuple[bool, int]:
        window = int(time.time()) // self.window_seconds
        rate_key = f"ratelimit:{key}:{window}"
        pipe = get_redis().pipeline()
        pipe.incr(rate_key)
        pipe.expire(rate_key, self.window_seconds + 1)
        results: list[Any] = await pipe.execute()
        current_count: int = results[0]
        return current_count <= self.requests_per_window, max(0, self.requests_per_window - current_count)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Check rate limit, return 429 if exceeded."""
        if request.method == "OPTIONS" or request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        key = client_key(request)
        if redis_enabled():
            allowed, remaining = await self._hit_redis(key)
        else:
            allowed, remaining = self.local.hit(key)

        if not allowed:
            logger.info("rate_limited", client=key, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={"ok": False, "error": "rate-limited"},
                headers={
                    "Retry-After": str(self.window_seconds),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Limit": str(self.requests_per_window),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_window)
        return response
