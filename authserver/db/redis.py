"""Redis connection management.

When REDIS_URL is configured we create a real connection pool; when it's
None (local dev, tests) the challenge store and refresh-token registry
fall back to in-memory implementations and no Redis server is needed.

Both consumers hold short-lived, shared, hot-path state: PKCE records
live for minutes and superseded refresh tokens only until they would
have expired anyway.  Redis key TTLs clean both up without a job, and
its single-threaded command execution gives the atomic compare-and-set
both rely on across API instances.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from authserver.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # return str instead of bytes
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Verify the connection on startup and release the pool on shutdown."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured — OAuth state uses in-memory stores")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        # The stores were bound to Redis at import time, so there is no
        # in-memory fallback to degrade to: refuse to start.
        logger.exception("Redis connection failed on startup")
        await redis_pool.aclose()
        raise

    try:
        yield
    finally:
        await redis_pool.aclose()
        logger.info("Redis connection pool closed")
