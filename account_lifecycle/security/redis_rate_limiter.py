"""Attempt limiter whose window lives in Redis, so every replica sees the same count."""

from __future__ import annotations

import secrets
import time
from typing import Final

from redis import Redis
from redis.exceptions import ResponseError

# KEYS[1] attempt set; ARGV: window_ms, limit, now_ms, member.
# Returns the attempts left after recording this one, or -1 when refused.
_RECORD_ATTEMPT: Final[str] = """
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', tonumber(ARGV[3]) - tonumber(ARGV[1]))
local used = redis.call('ZCARD', KEYS[1])
if used >= tonumber(ARGV[2]) then
    return -1
end
redis.call('ZADD', KEYS[1], ARGV[3], ARGV[4])
redis.call('PEXPIRE', KEYS[1], ARGV[1])
return tonumber(ARGV[2]) - used - 1
"""


def _scripting_unsupported(exc: ResponseError) -> bool:
    message = str(exc).lower()
    return "unknown command" in message and "eval" in message


class RedisSlidingWindowRateLimiter:
    """Sign-in and reset attempts per key, kept as timestamped members of a sorted set.

    Each attempt is stored under a random member so two attempts in the same
    millisecond both count. Servers that refuse Lua get a pipelined version of
    the same steps, which is not atomic across replicas.
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "rate",
    ) -> None:
        self._client = client
        self._limit = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._record_attempt = client.register_script(_RECORD_ATTEMPT)

    def allow(self, key: str) -> bool:
        """Record an attempt for ``key``; ``False`` once the shared window is full."""
        return self._record(self._attempts_key(key)) >= 0

    def reset(self, key: str) -> None:
        """Forget every recorded attempt for ``key``."""
        self._client.delete(self._attempts_key(key))

    def _attempts_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    def _record(self, attempts_key: str) -> int:
        now_ms = int(time.time() * 1000)
        member = f"{now_ms}-{secrets.token_hex(4)}"
        try:
            return int(
                self._record_attempt(
                    keys=[attempts_key], args=[self._window_ms, self._limit, now_ms, member]
                )
            )
        except ResponseError as exc:
            if not _scripting_unsupported(exc):
                raise
        return self._record_pipelined(attempts_key, now_ms, member)

    def _record_pipelined(self, attempts_key: str, now_ms: int, member: str) -> int:
        with self._client.pipeline() as pipe:
            pipe.zremrangebyscore(attempts_key, "-inf", now_ms - self._window_ms)
            pipe.zcard(attempts_key)
            _, used = pipe.execute()
        if used >= self._limit:
            return -1
        with self._client.pipeline() as pipe:
            pipe.zadd(attempts_key, {member: now_ms})
            pipe.pexpire(attempts_key, self._window_ms)
            pipe.execute()
        return self._limit - used - 1
