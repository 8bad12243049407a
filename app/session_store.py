"""
Admin session stores
Tokens are kept with an explicit expiry, in Redis when configured and in
process memory otherwise
"""

import logging
import secrets
import time
from threading import Lock

from . import config
from .redis_client import get_redis_client

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "admin_session"


def generate_session_token() -> str:
    """32 random bytes, hex encoded"""
    return secrets.token_hex(32)


class MemorySessionStore:
    """Process-local sessions with TTL; at capacity the soonest-expiring entry is evicted"""

    def __init__(self, max_sessions: int = 100):
        self.max_sessions = max_sessions
        self._sessions: dict[str, float] = {}
        self._lock = Lock()

    def _purge_expired(self, now: float) -> None:
        expired = [token for token, expires_at in self._sessions.items() if expires_at <= now]
        for token in expired:
            del self._sessions[token]

    def create(self, ttl_seconds: int) -> str:
        token = generate_session_token()
        now = time.time()
        with self._lock:
            self._purge_expired(now)
            while len(self._sessions) >= self.max_sessions:
                oldest = min(self._sessions, key=self._sessions.get)
                del self._sessions[oldest]
            self._sessions[token] = now + ttl_seconds
        return token

    def exists(self, token: str) -> bool:
        with self._lock:
            expires_at = self._sessions.get(token)
            if expires_at is None:
                return False
            if expires_at <= time.time():
                del self._sessions[token]
                return False
            return True

    def revoke(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(time.time())
            return len(self._sessions)


class RedisSessionStore:
    """Sessions as Redis keys with SETEX expiry"""

    def __init__(self, client):
        self.client = client

    def _key(self, token: str) -> str:
        return f"{SESSION_KEY_PREFIX}:{token}"

    def create(self, ttl_seconds: int) -> str:
        token = generate_session_token()
        self.client.setex(self._key(token), ttl_seconds, "1")
        return token

    def exists(self, token: str) -> bool:
        return bool(self.client.exists(self._key(token)))

    def revoke(self, token: str) -> None:
        self.client.delete(self._key(token))


_session_store = None


def get_session_store():
    """FastAPI dependency returning the process-wide session store"""
    global _session_store
    if _session_store is None:
        client = get_redis_client()
        if client is not None:
            _session_store = RedisSessionStore(client)
            logger.info("Admin sessions stored in Redis")
        else:
            _session_store = MemorySessionStore(max_sessions=config.MAX_MEMORY_SESSIONS)
            logger.info("Admin sessions stored in process memory")
    return _session_store
