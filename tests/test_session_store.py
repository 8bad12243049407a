from app.session_store import MemorySessionStore, RedisSessionStore


def test_created_session_exists_until_revoked():
    store = MemorySessionStore(max_sessions=5)
    token = store.create(60)

    assert len(token) == 64
    assert store.exists(token)

    store.revoke(token)
    assert not store.exists(token)


def test_expired_session_is_gone():
    store = MemorySessionStore(max_sessions=5)
    token = store.create(0)

    assert not store.exists(token)
    assert len(store) == 0


def test_full_store_evicts_soonest_expiring():
    store = MemorySessionStore(max_sessions=2)
    long_lived = store.create(600)
    short_lived = store.create(60)

    newest = store.create(300)

    assert store.exists(long_lived)
    assert not store.exists(short_lived)
    assert store.exists(newest)
    assert len(store) == 2


def test_unknown_token():
    assert not MemorySessionStore().exists("nope")


class RecordingRedis:
    def __init__(self):
        self.values = {}
        self.ttls = {}

    def setex(self, key, ttl, value):
        self.values[key] = value
        self.ttls[key] = ttl

    def exists(self, key):
        return int(key in self.values)

    def delete(self, key):
        self.values.pop(key, None)


def test_redis_store_uses_prefixed_keys_with_expiry():
    redis_client = RecordingRedis()
    store = RedisSessionStore(redis_client)

    token = store.create(86400)

    assert redis_client.ttls == {f"admin_session:{token}": 86400}
    assert store.exists(token)
    store.revoke(token)
    assert not store.exists(token)
