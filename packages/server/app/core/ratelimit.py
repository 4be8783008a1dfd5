"""Fixed-window rate limiting for API keys, backed by Redis counters."""

from __future__ import annotations

import time
from typing import Optional

import structlog
from redis.exceptions import RedisError

from app.core.errors import RateLimitedError
from app.core.redis import get_redis

log = structlog.get_logger()


def window_key(api_key_id: str, window_seconds: int, now: Optional[float] = None) -> str:
    bucket = int((now if now is not None else time.time()) // window_seconds)
    return f"ratelimit:api_key:{api_key_id}:{bucket}"


async def enforce_api_key_limit(
    api_key_id: str,
    limit: int,
    window_seconds: int,
    *,
    now: Optional[float] = None,
) -> int:
    """Count one request against the key's current window.

    Returns the count so far. Raises RateLimitedError once the limit is
    exceeded. If Redis is unavailable the request is allowed.
    """
    now = now if now is not None else time.time()
    key = window_key(api_key_id, window_seconds, now)
    try:
        redis = await get_redis()
        count = await redis.incr(key)
        if count == 1:
            await redis.expire(key, window_seconds)
    except RedisError as exc:
        log.warning("ratelimit.unavailable", api_key_id=api_key_id, error=str(exc))
        return 0

    if count > limit:
        log.info("ratelimit.exceeded", api_key_id=api_key_id, limit=limit)
        retry_after = window_seconds - int(now % window_seconds)
        raise RateLimitedError(headers={"Retry-After": str(retry_after)})
    return count
