"""
JSON cache for Square data that rarely changes
Backed by Redis when available, otherwise by a process-local TTL map
"""
import json
import logging
import time
from threading import Lock
from typing import Any, Optional

import redis

from .redis_client import get_redis_client

logger = logging.getLogger(__name__)

CATALOG_CACHE_KEY = "square:catalog:objects"


class Cache:
    """Key/value cache with per-entry TTL and JSON serialization"""

    def __init__(self):
        self._local: dict[str, tuple[float, str]] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[Any]:
        client = get_redis_client()
        if client is not None:
            try:
                raw = client.get(key)
            except redis.RedisError as e:
                logger.error(f"❌ Cache get error for {key}: {e}")
                raw = None
        else:
            with self._lock:
                expires_at, raw = self._local.get(key, (0.0, None))
                if raw is not None and expires_at <= time.time():
                    del self._local[key]
                    raw = None

        if raw is None:
            logger.debug(f"Cache MISS: {key}")
            return None
        logger.debug(f"Cache HIT: {key}")
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        raw = json.dumps(value)
        client = get_redis_client()
        if client is None:
            with self._lock:
                self._local[key] = (time.time() + ttl, raw)
            return True

        try:
            client.setex(key, ttl, raw)
            return True
        except redis.RedisError as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        with self._lock:
            self._local.pop(key, None)
        client = get_redis_client()
        if client is None:
            return True

        try:
            client.delete(key)
            return True
        except redis.RedisError as e:
            logger.error(f"❌ Cache delete error for {key}: {e}")
            return False


cache = Cache()


def get_catalog_cached() -> Optional[list]:
    return cache.get(CATALOG_CACHE_KEY)


def set_catalog_cached(objects: list, ttl: int = 300) -> bool:
    return cache.set(CATALOG_CACHE_KEY, objects, ttl)


def invalidate_catalog_cache() -> bool:
    return cache.delete(CATALOG_CACHE_KEY)
