"""Redis connection management (ARQ job pool)."""

from __future__ import annotations

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from boardfeed.core.config import get_settings

settings = get_settings()

_redis_pool: ArqRedis | None = None


def redis_settings() -> RedisSettings:
    return RedisSettings.from_dsn(settings.redis_url)


async def get_redis() -> ArqRedis:
    """Get or create the Redis connection used to enqueue jobs."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = await create_pool(redis_settings())
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.close()
        _redis_pool = None
