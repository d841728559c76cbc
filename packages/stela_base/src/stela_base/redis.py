"""
Redis client utilities.

Provides a lazily initialized Redis client and a minimal lease lock used to
keep a single liquidation bot replica dispatching per tick.
"""

import functools
import uuid

import redis

from stela_base.settings import get_settings

# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


@functools.lru_cache()
def get_redis_client() -> redis.Redis:
    """Get Redis client (cached)."""
    return redis.from_url(get_settings().redis_url, decode_responses=True)


class RedisLease:
    """
    Time-bounded exclusive lease on a Redis key.

    acquire() uses SET NX PX, so a crashed holder loses the lease after
    ttl_ms. release() only deletes the key if this instance still owns it.
    """

    def __init__(self, client: redis.Redis, name: str, ttl_ms: int):
        self.client = client
        self.name = name
        self.ttl_ms = ttl_ms
        self.token: str | None = None

    def acquire(self) -> bool:
        token = uuid.uuid4().hex
        acquired = self.client.set(self.name, token, nx=True, px=self.ttl_ms)
        if acquired:
            self.token = token
            return True
        return False

    def release(self) -> bool:
        if self.token is None:
            return False
        released = self.client.eval(_RELEASE_SCRIPT, 1, self.name, self.token)
        self.token = None
        return bool(released)
