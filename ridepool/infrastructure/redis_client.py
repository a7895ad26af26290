"""Redis async connection pool."""

import redis.asyncio as aioredis


def create_redis(redis_url: str) -> aioredis.Redis:
    """Return a Redis client backed by its own connection pool."""
    pool = aioredis.ConnectionPool.from_url(redis_url, decode_responses=True)
    return aioredis.Redis(connection_pool=pool)
