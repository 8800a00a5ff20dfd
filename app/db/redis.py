"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured we create a connection
pool; when it's None (local dev, tests) the task queue falls back to its
in-memory implementation and no Redis server is needed.

Redis only carries the welcome-email queue.  Nothing the purchase
pipeline's idempotency depends on lives here: losing Redis loses queued
emails, never accounts, enrollments or ledger entries.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # return str instead of bytes
        max_connections=20,
    )
else:
    redis_pool = None


async def ping() -> bool:
    if redis_pool is None:
        return False
    await redis_pool.ping()  # type: ignore[misc]
    return True


@asynccontextmanager
async def lifespan_redis() -> AsyncIterator[None]:
    """Startup/shutdown hook for Redis, mirrors lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, task queue is in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected")
    except aioredis.RedisError:
        # Start anyway: purchases do not depend on Redis, only welcome
        # emails do, and those failures are logged per purchase.
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
