"""Redis-based idempotency key guard for client retries of money-bearing calls."""

import logging

import redis.asyncio as aioredis

from marketplace.core.config import settings

logger = logging.getLogger(__name__)

_redis: aioredis.Redis | None = None


async def _get_redis() -> aioredis.Redis:
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def check_idempotency(key: str, ttl: int = 300) -> bool:
    """Return True if this is the first call with this key (proceed).

    Return False for a duplicate. The store's own uniqueness constraints
    remain the real guard, so a Redis outage lets the call through.
    """
    try:
        r = await _get_redis()
        was_set = await r.set(f"idempotent:{key}", "1", nx=True, ex=ttl)
        return bool(was_set)
    except Exception:
        logger.exception("Idempotency check failed for key=%s, allowing through", key)
        return True


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
