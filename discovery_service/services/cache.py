"""
Recommendation cache — TTL key/value wrapper over Redis.

Keys:
  {prefix}recommendations:{list_type}:{subject}:{limit}    STRING (JSON array)

`subject` is a user id, or GLOBAL_SUBJECT for lists shared by every user.
Each requested `limit` is its own entry, so a short list computed for a small
limit is never served to a larger request.

The cache fails open: any store error (connection refused, timeout, not
initialised, corrupt payload) is logged and reported as a miss, so callers
never need their own try/except around it.
"""
import json
import logging
from typing import Any, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from discovery_service.errors import CacheUnavailable
from discovery_service.telemetry import CACHE_LOOKUPS_TOTAL

logger = logging.getLogger(__name__)

GLOBAL_SUBJECT = "global"

# List types
PERSONALIZED = "personalized"
TRENDING = "trending"
NETWORK_TRENDING = "network-trending"
PEOPLE_SUGGESTIONS = "people-suggestions"

_STORE_ERRORS = (RedisError, CacheUnavailable, OSError)


class RecommendationCache:
    def __init__(
        self,
        redis_provider: Callable[[], aioredis.Redis],
        key_prefix: str = "",
    ) -> None:
        self._redis = redis_provider
        self._prefix = key_prefix

    def key(self, subject: str, list_type: str, limit: int | str) -> str:
        return f"{self._prefix}recommendations:{list_type}:{subject}:{limit}"

    async def get(
        self, subject: str, list_type: str, limit: int
    ) -> Optional[list[dict[str, Any]]]:
        """Return the entries cached for this `limit`, or None on miss/error."""
        key = self.key(subject, list_type, limit)
        try:
            raw = await self._redis().get(key)
        except _STORE_ERRORS as exc:
            logger.error(
                "Cache read failed (%s/%s): %s — treating as miss", list_type, subject, exc
            )
            CACHE_LOOKUPS_TOTAL.labels(list_type=list_type, outcome="error").inc()
            return None

        if raw is None:
            CACHE_LOOKUPS_TOTAL.labels(list_type=list_type, outcome="miss").inc()
            return None

        try:
            items = json.loads(raw)
        except ValueError as exc:
            logger.error("Corrupt cache entry %s: %s", key, exc)
            CACHE_LOOKUPS_TOTAL.labels(list_type=list_type, outcome="error").inc()
            return None
        if not isinstance(items, list):
            CACHE_LOOKUPS_TOTAL.labels(list_type=list_type, outcome="error").inc()
            return None

        CACHE_LOOKUPS_TOTAL.labels(list_type=list_type, outcome="hit").inc()
        return items[:limit]

    async def set(
        self,
        subject: str,
        list_type: str,
        limit: int,
        items: list[dict[str, Any]],
        ttl_seconds: int,
    ) -> None:
        try:
            await self._redis().set(
                self.key(subject, list_type, limit), json.dumps(items), ex=ttl_seconds
            )
        except _STORE_ERRORS as exc:
            logger.error("Cache write failed (%s/%s): %s", list_type, subject, exc)

    async def invalidate(self, subject: str, list_type: Optional[str] = None) -> None:
        """Drop every limit of one list type for `subject`, or of all types when omitted."""
        try:
            r = self._redis()
            pattern = self.key(subject, list_type or "*", "*")
            keys = [k async for k in r.scan_iter(match=pattern)]
            if keys:
                await r.delete(*keys)
            logger.debug("Invalidated %d cached lists for %s", len(keys), subject)
        except _STORE_ERRORS as exc:
            logger.error("Cache invalidation failed for %s: %s", subject, exc)
