"""
Redis client wrapper.

Responsibilities:
  • Popular-review ranking — STRING (JSON list of review_ids) keyed by
                             popular_reviews:{timeframe}:{limit}, short TTL

Only the *order* is cached. Rows and their counters are always re-read from
the database, so a cached ranking never serves stale upvote counts.
Every call is best effort: a Redis error is logged and reported as a miss.
"""
import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from needledrop.config import settings
from needledrop.telemetry import POPULAR_REVIEWS_CACHE_TOTAL

logger = logging.getLogger(__name__)

POPULAR_REVIEWS_KEY = "popular_reviews:{timeframe}:{limit}"


async def connect_redis() -> aioredis.Redis:
    client = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        decode_responses=True,
    )
    try:
        await client.ping()
        logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)
    except RedisError as exc:
        # The cache is optional; requests fall through to the database
        logger.warning("Redis unavailable at %s:%s: %s", settings.redis_host, settings.redis_port, exc)
    return client


class ReviewRankCache:
    def __init__(self, redis: Optional[aioredis.Redis], ttl: int = 300) -> None:
        self._redis = redis
        self._ttl = ttl

    async def get_ranking(self, timeframe: str, limit: int) -> Optional[list[str]]:
        if self._redis is None:
            return None
        key = POPULAR_REVIEWS_KEY.format(timeframe=timeframe, limit=limit)
        try:
            raw = await self._redis.get(key)
        except RedisError as exc:
            POPULAR_REVIEWS_CACHE_TOTAL.labels(result="error").inc()
            logger.warning("Popular review cache read failed (%s): %s", key, exc)
            return None
        if raw is None:
            POPULAR_REVIEWS_CACHE_TOTAL.labels(result="miss").inc()
            return None
        POPULAR_REVIEWS_CACHE_TOTAL.labels(result="hit").inc()
        return json.loads(raw)

    async def set_ranking(self, timeframe: str, limit: int, review_ids: list[str]) -> None:
        if self._redis is None:
            return
        key = POPULAR_REVIEWS_KEY.format(timeframe=timeframe, limit=limit)
        try:
            await self._redis.set(key, json.dumps(review_ids), ex=self._ttl)
        except RedisError as exc:
            POPULAR_REVIEWS_CACHE_TOTAL.labels(result="error").inc()
            logger.warning("Popular review cache write failed (%s): %s", key, exc)
