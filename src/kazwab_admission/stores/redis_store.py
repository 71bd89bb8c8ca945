"""Redis window store for deployments running several worker processes."""

from typing import Any
from urllib.parse import quote

import redis
import structlog
from redis.exceptions import NoScriptError

from kazwab_admission.config import Settings
from kazwab_admission.models import Decision, Policy, WindowCounter
from kazwab_admission.stores.base import WindowStore

logger = structlog.get_logger()

# Times are integer milliseconds. Returns {admitted, count, window_start, window_end}.
CHECK_AND_INCREMENT_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

local data = redis.call('HMGET', key, 'count', 'window_start', 'window_end')
local count = tonumber(data[1])
local window_end = tonumber(data[3])

if count == nil or window_end == nil or now >= window_end then
    redis.call('HSET', key, 'count', 1, 'window_start', now, 'window_end', now + window)
    redis.call('PEXPIRE', key, window)
    return {1, 1, now, now + window}
end

local window_start = tonumber(data[2])
if count < limit then
    count = redis.call('HINCRBY', key, 'count', 1)
    return {1, count, window_start, window_end}
end

return {0, count, window_start, window_end}
"""

DECREMENT_SCRIPT = """
local count = tonumber(redis.call('HGET', KEYS[1], 'count'))
if count ~= nil and count > 0 then
    return redis.call('HINCRBY', KEYS[1], 'count', -1)
end
return count
"""

SCRIPTS = {
    "check_and_increment": CHECK_AND_INCREMENT_SCRIPT,
    "decrement": DECREMENT_SCRIPT,
}


def _ms(seconds: float) -> int:
    return int(round(seconds * 1000))


class RedisWindowStore(WindowStore):
    """Window store keeping counters as Redis hashes.

    Each counter is a hash ``{count, window_start, window_end}`` that also
    carries a TTL of one window, so Redis drops abandoned counters on its
    own. ``now`` must come from a wall clock shared by every process.
    """

    blocking_io = True

    def __init__(self, client: redis.Redis, key_prefix: str = "kazwab:ratelimit") -> None:
        self._client: redis.Redis | None = client
        self._key_prefix = key_prefix
        self._script_shas: dict[str, str] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisWindowStore":
        client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password or None,
            db=settings.redis_db,
            decode_responses=True,
            max_connections=settings.redis_pool_size,
        )
        return cls(client, key_prefix=settings.redis_key_prefix)

    def open(self) -> None:
        """Check the connection and load the Lua scripts."""
        client = self._require_client()
        client.ping()
        self._load_scripts()
        logger.info("redis_store_connected", key_prefix=self._key_prefix)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("redis_store_disconnected")

    def health_check(self) -> bool:
        try:
            if self._client is not None:
                self._client.ping()
                return True
        except redis.RedisError as e:
            logger.error("redis_health_check_failed", error=str(e))
        return False

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis not connected")
        return self._client

    def _load_scripts(self) -> None:
        client = self._require_client()
        for name, source in SCRIPTS.items():
            self._script_shas[name] = client.script_load(source)
        logger.info("lua_scripts_loaded", scripts=list(SCRIPTS))

    def _key(self, key: str, scope: str) -> str:
        # The encoded scope never contains ":", so the first ":" after the prefix ends it
        return f"{self._key_prefix}:{quote(scope, safe='')}:{key}"

    def _run_script(self, name: str, key: str, *args: str) -> Any:
        client = self._require_client()
        if name not in self._script_shas:
            self._load_scripts()
        try:
            return client.evalsha(self._script_shas[name], 1, key, *args)
        except NoScriptError:
            # Script cache was flushed, reload it
            self._load_scripts()
            return client.evalsha(self._script_shas[name], 1, key, *args)

    def check_and_increment(self, key: str, policy: Policy, now: float) -> Decision:
        result = self._run_script(
            "check_and_increment",
            self._key(key, policy.scope),
            str(policy.max_requests),
            str(max(1, _ms(policy.window_seconds))),
            str(_ms(now)),
        )
        admitted, count, window_start, window_end = (int(value) for value in result)
        counter = WindowCounter(
            key=key,
            scope=policy.scope,
            count=count,
            window_start=window_start / 1000,
            window_end=window_end / 1000,
        )
        return Decision.for_counter(counter, policy, now, admitted=admitted == 1)

    def decrement(self, key: str, policy: Policy) -> None:
        self._run_script("decrement", self._key(key, policy.scope))

    def reset(self, key: str, policy: Policy) -> None:
        self._require_client().delete(self._key(key, policy.scope))

    def sweep(self, now: float) -> int:
        """Delete expired counters that Redis has not evicted yet."""
        client = self._require_client()
        now_ms = _ms(now)
        removed = 0
        for name in client.scan_iter(match=f"{self._key_prefix}:*", count=500):
            window_end = client.hget(name, "window_end")
            if window_end is not None and int(window_end) <= now_ms:
                removed += client.delete(name)
        return removed

    def peek(self, key: str, policy: Policy, now: float) -> WindowCounter | None:
        count, window_start, window_end = self._require_client().hmget(
            self._key(key, policy.scope), "count", "window_start", "window_end"
        )
        if count is None or window_start is None or window_end is None:
            return None
        counter = WindowCounter(
            key=key,
            scope=policy.scope,
            count=int(count),
            window_start=int(window_start) / 1000,
            window_end=int(window_end) / 1000,
        )
        return None if counter.expired(now) else counter
