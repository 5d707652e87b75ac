"""Optional Redis pool for the shared rate-limit counters.

Redis is not required: with no URL configured the limiter keeps its
counters in process memory instead.
"""

import redis.asyncio as redis

_pool: redis.Redis | None = None


async def init_redis(url: str) -> bool:
    """Open the pool if a URL is configured. Returns whether Redis is in use."""
    global _pool  # noqa: PLW0603
    if not url:
        _pool = None
        return False
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    return True


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def redis_enabled() -> bool:
    return _pool is not None


def get_redis() -> redis.Redis:
    """Get the Redis client; raises RuntimeError when Redis is not configured."""
    if _pool is None:
        msg = "Redis not initialized. Set NOOR_REDIS_URL to enable it."
        raise RuntimeError(msg)
    return _pool
