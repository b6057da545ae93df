from __future__ import annotations

from redis import Redis


_TRY_INCREMENT_LUA = r"""
local max_count = tonumber(ARGV[1])
local current = tonumber(redis.call("GET", KEYS[1]) or "0")
if current >= max_count then
  return -1
end
return redis.call("INCR", KEYS[1])
"""

_DECREMENT_LUA = r"""
local current = tonumber(redis.call("GET", KEYS[1]) or "0")
if current <= 0 then
  return 0
end
return redis.call("DECR", KEYS[1])
"""


class RedisQuotaCounterStore:
    # Lua scripts run atomically on the server, so check-and-increment needs no client lock.
    def __init__(self, client: Redis, *, prefix: str = "tenantgate:quota") -> None:
        self._client = client
        self._prefix = prefix.rstrip(":")
        self._try_increment = client.register_script(_TRY_INCREMENT_LUA)
        self._decrement = client.register_script(_DECREMENT_LUA)

    @classmethod
    def from_url(cls, redis_url: str, *, prefix: str = "tenantgate:quota") -> "RedisQuotaCounterStore":
        return cls(Redis.from_url(redis_url, decode_responses=True), prefix=prefix)

    def _key(self, scope_id: str) -> str:
        return f"{self._prefix}:{scope_id}"

    def get(self, scope_id: str) -> int:
        value = self._client.get(self._key(scope_id))
        return int(value or 0)

    def try_increment(self, scope_id: str, max_count: int) -> int | None:
        result = int(self._try_increment(keys=[self._key(scope_id)], args=[int(max_count)]))
        if result < 0:
            return None
        return result

    def decrement(self, scope_id: str) -> int:
        return int(self._decrement(keys=[self._key(scope_id)]))

    def reset(self, scope_id: str) -> None:
        self._client.delete(self._key(scope_id))
