# =============================================================================
# Chat Rate Limiter — Per-Fan Sliding Window in Redis
# =============================================================================
#
# Every chat message costs one Bing call and one model call, so POST /chat
# is capped at settings.rate_limit_rpm messages per fan per minute.
#
# One sorted set per (scope, user): members are request timestamps. A
# request prunes members older than the window, counts what is left, then
# records itself. All four commands go out in one pipeline round trip.
#
# DESIGN DECISION: Fail open.
# Redis is an optional dependency of the chat path. If it cannot be
# reached the message is let through and a warning is logged; a broken
# limiter must not take the assistant offline.
# =============================================================================

from __future__ import annotations

import logging
import time

from fastapi import HTTPException

from app.config import settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

_redis_client = None


def _get_rate_limit_redis():
    """Shared async Redis client, created on first use."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        _redis_client = aioredis.from_url(
            settings.rate_limit_redis_url,
            decode_responses=True,
        )
    return _redis_client


async def _count_and_record(key: str, now: float) -> int:
    """Return how many requests `key` made in the last window, then add this one."""
    pipe = _get_rate_limit_redis().pipeline()
    pipe.zremrangebyscore(key, 0, now - WINDOW_SECONDS)
    pipe.zcard(key)
    pipe.zadd(key, {str(now): now})
    pipe.expire(key, WINDOW_SECONDS + 10)
    _, seen, _, _ = await pipe.execute()
    return seen


async def check_rate_limit(user_id: str, scope: str = "chat") -> None:
    """
    Reject the request with 429 if this fan is over the per-minute limit.

    Does nothing when rate_limit_enabled is False or Redis is unreachable.
    """
    if not settings.rate_limit_enabled:
        return

    key = f"ratelimit:{scope}:{user_id}"
    try:
        seen = await _count_and_record(key, time.time())
    except Exception as e:
        logger.warning(
            "Rate limiter skipped for %s (Redis error: %s)", user_id, e,
        )
        return

    if seen >= settings.rate_limit_rpm:
        logger.info("Rate limit hit: user=%s scope=%s", user_id, scope)
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Limit: "
            f"{settings.rate_limit_rpm} messages/minute.",
            headers={"Retry-After": str(WINDOW_SECONDS)},
        )
