"""
Fixed-window rate limiting for sensitive endpoints
Windows are counted in Redis when it is available and in process memory otherwise
"""

import logging
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import HTTPException, Request

from .redis_client import get_redis_client

logger = logging.getLogger(__name__)

# {key: {"count": int, "reset_time": int}}
memory_cache: dict[str, dict] = {}
cache_lock = Lock()

MEMORY_CACHE_CLEANUP_INTERVAL = 60
last_cleanup_time = 0


def cleanup_expired_windows(now: int) -> None:
    global last_cleanup_time
    if now - last_cleanup_time < MEMORY_CACHE_CLEANUP_INTERVAL:
        return

    with cache_lock:
        expired = [key for key, entry in memory_cache.items() if now >= entry["reset_time"]]
        for key in expired:
            del memory_cache[key]
    if expired:
        logger.debug(f"🧹 Dropped {len(expired)} expired rate limit windows")
    last_cleanup_time = now


def _hit_memory(key: str, window_seconds: int, now: int) -> tuple[int, int]:
    with cache_lock:
        entry = memory_cache.get(key)
        if entry is None or now >= entry["reset_time"]:
            entry = {"count": 0, "reset_time": now + window_seconds}
            memory_cache[key] = entry
        entry["count"] += 1
        return entry["count"], entry["reset_time"] - now


def _hit_redis(client: redis.Redis, key: str, window_seconds: int) -> tuple[int, int]:
    count = int(client.incr(key))
    if count == 1:
        client.expire(key, window_seconds)
    ttl = client.ttl(key)
    return count, ttl if ttl > 0 else window_seconds


def check_rate_limit(
    key: str, limit: int, window_seconds: int, client: Optional[redis.Redis] = None
) -> tuple[bool, int, int]:
    """
    Count one hit against ``key``.

    Returns:
        Tuple of (is_allowed, hits_in_window, seconds_until_reset)
    """
    now = int(time.time())
    cleanup_expired_windows(now)

    if client is not None:
        try:
            count, ttl = _hit_redis(client, key, window_seconds)
            return count <= limit, count, ttl
        except redis.RedisError as e:
            logger.warning(f"⚠️ Redis rate limit failed for {key}, counting in memory: {e}")

    count, ttl = _hit_memory(key, window_seconds, now)
    return count <= limit, count, max(0, ttl)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str = "rate_limit"):
    """
    Per-IP rate limit dependency; raises 429 with Retry-After once the
    window is used up

        login_rate_limit = create_rate_limiter(limit=10, window_seconds=300, key_prefix="admin_login")
    """

    async def rate_limiter(request: Request):
        key = f"{key_prefix}:{client_ip(request)}"
        is_allowed, count, ttl = check_rate_limit(key, limit, window_seconds, get_redis_client())
        if not is_allowed:
            logger.warning(f"🚫 Rate limit exceeded for {key} ({count}/{limit})")
            raise HTTPException(
                status_code=429,
                detail=f"Too many attempts. Try again in {ttl} seconds.",
                headers={"Retry-After": str(ttl)},
            )

    return rate_limiter
