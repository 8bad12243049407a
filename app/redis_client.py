"""
Shared Redis connection
None when Redis is not configured or unreachable; callers then keep their
state in process memory
"""

import logging
from typing import Optional

import redis

from . import config

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None
_unavailable = False


def redis_configured() -> bool:
    return bool(config.REDIS_URL or config.REDIS_HOST)


def _mask_url(url: str) -> str:
    if "@" not in url:
        return "****"
    scheme = url.split(":", 1)[0]
    return f"{scheme}://****@{url.rsplit('@', 1)[1]}"


def _connect() -> redis.Redis:
    options = dict(
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    if config.REDIS_URL:
        logger.info(f"📡 Connecting to Redis at {_mask_url(config.REDIS_URL)}")
        return redis.from_url(config.REDIS_URL, **options)

    logger.info(f"📡 Connecting to Redis at {config.REDIS_HOST}:{config.REDIS_PORT} (SSL: {config.REDIS_SSL})")
    return redis.Redis(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        password=config.REDIS_PASSWORD,
        db=config.REDIS_DB,
        ssl=config.REDIS_SSL,
        **options,
    )


def get_redis_client() -> Optional[redis.Redis]:
    """Connect once; a failed ping is remembered so later calls skip Redis"""
    global _client, _unavailable

    if _client is not None or _unavailable:
        return _client
    if not redis_configured():
        return None

    client = _connect()
    try:
        client.ping()
    except redis.RedisError as e:
        logger.error(f"❌ Failed to connect to Redis, using process memory: {e}")
        _unavailable = True
        return None

    logger.info("✅ Redis connected")
    _client = client
    return _client
