"""
Redis client wrapper.

Redis is the TTL key-value store shared by two components:
  • Recommendation cache  — STRING (JSON) keyed by
                             {prefix}recommendations:{list_type}:{subject}
  • Experiment tracking   — STRING / counters / capped LIST keyed by
                             {prefix}experiment:...

Both components take a zero-argument provider (``get_redis``) rather than a
client instance, so a missing connection surfaces as CacheUnavailable at call
time and is handled as a miss.
"""
import logging
from typing import Optional

import redis.asyncio as aioredis

from discovery_service.config import settings
from discovery_service.errors import CacheUnavailable

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    global _redis
    _redis = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        decode_responses=True,
    )
    try:
        await _redis.ping()
        logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)
    except aioredis.RedisError as exc:
        # The engine fails open on cache errors, so start anyway.
        logger.warning("Redis ping failed (%s) — caching degraded to misses", exc)


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise CacheUnavailable("Redis not initialised — call init_redis() at startup")
    return _redis
