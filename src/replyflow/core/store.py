"""
Ephemeral counter store - sorted-set windows and expiring counters.

The rate limiter and the action tracker need two primitives that are
shared, mutable and keyed by account id:

- **Sliding windows**: time-ordered sets of event timestamps that are
  pruned of old entries on every read.
- **Expiring counters**: small hashes of integer fields (daily counts)
  that disappear after a TTL.

Admission (prune → count → append) must be atomic per key so that two
concurrent runs for the same account cannot both pass a stale check.

Architecture:
    ::

        EphemeralStore (Protocol)
        ├── InMemoryStore  - single process, one lock around every op
        └── RedisStore     - multi process, Lua script for admission

        Windows:  window_admit / window_add / window_count / window_oldest / window_entries
        Counters: incr_counters / get_counters
        Keys:     delete

Guardrails:
    ❌ DON'T: Use InMemoryStore when several processes share an account
    ✅ DO: Point ``REPLYFLOW_REDIS_URL`` at a shared Redis in production

    Every RedisStore method raises :class:`StoreUnavailableError` on
    connection/protocol failures; callers decide whether to fail open.

Tags:
    cache, redis, sorted-set, sliding-window, in-memory, replyflow

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import bisect
import heapq
import math
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Protocol

import redis

from replyflow.core.errors import StoreUnavailableError


class EphemeralStore(Protocol):
    """Protocol for ephemeral store implementations.

    Scores are epoch milliseconds. An entry belongs to the window when its
    score is strictly greater than ``now_ms - window_ms``.
    """

    def window_admit(self, key: str, now_ms: int, window_ms: int, limit: int, member: str) -> bool:
        """Prune, count and append atomically.

        Returns:
            ``False`` (without recording) when the window already holds
            ``limit`` entries, else ``True`` after appending ``member``.
        """
        ...

    def window_add(self, key: str, now_ms: int, window_ms: int, member: str) -> None:
        """Prune the window and append ``member`` unconditionally."""
        ...

    def window_count(self, key: str, now_ms: int, window_ms: int) -> int:
        """Prune the window and return the number of remaining entries."""
        ...

    def window_oldest(self, key: str, now_ms: int, window_ms: int) -> int | None:
        """Prune the window and return the oldest remaining score."""
        ...

    def window_entries(self, key: str, now_ms: int, window_ms: int) -> list[tuple[int, str]]:
        """Return ``(score, member)`` pairs inside the window, oldest first.

        Read-only: nothing is pruned, so a short lookback never trims a
        key that is kept for a longer one.
        """
        ...

    def incr_counters(self, key: str, increments: dict[str, int], ttl_seconds: int) -> None:
        """Increment hash fields and (re)set the key's expiry."""
        ...

    def get_counters(self, key: str) -> dict[str, int]:
        """Return all hash fields as integers (empty if missing/expired)."""
        ...

    def delete(self, key: str) -> None:
        """Remove a key. No-op if missing."""
        ...


# ------------------------------------------------------------------ #
# In-Memory Store
# ------------------------------------------------------------------ #


class InMemoryStore:
    """Thread-safe in-process store.

    A single re-entrant lock serialises every operation, which makes each
    window operation atomic per key (and across keys).

    Example:
        store = InMemoryStore()
        store.window_admit("rate_limit:dm_send:acct-1", now_ms, 3_600_000, 20, "m1")
    """

    def __init__(self, *, clock: Callable[[], float] = time.time):
        """Initialize the store.

        Args:
            clock: Returns epoch seconds; used only for counter expiry.
        """
        self._clock = clock
        self._windows: dict[str, list[tuple[int, str]]] = {}
        self._counters: dict[str, dict[str, int]] = {}
        self._expires_at: dict[str, float] = {}
        # (deadline, key); entries go stale when a key is touched again
        self._deadlines: list[tuple[float, str]] = []
        self._lock = threading.RLock()

    def _drop(self, key: str) -> None:
        self._windows.pop(key, None)
        self._counters.pop(key, None)
        self._expires_at.pop(key, None)

    def _expire(self, key: str) -> None:
        deadline = self._expires_at.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._drop(key)

    def _sweep(self) -> None:
        """Drop every key whose deadline has passed, not only the one in hand."""
        now = self._clock()
        while self._deadlines and self._deadlines[0][0] <= now:
            deadline, key = heapq.heappop(self._deadlines)
            if self._expires_at.get(key) == deadline:
                self._drop(key)

    def _prune(self, key: str, now_ms: int, window_ms: int) -> list[tuple[int, str]]:
        self._expire(key)
        cutoff = now_ms - window_ms
        entries = [entry for entry in self._windows.get(key, []) if entry[0] > cutoff]
        if entries:
            self._windows[key] = entries
        else:
            self._windows.pop(key, None)
        return entries

    def _touch(self, key: str, ttl_seconds: float) -> None:
        deadline = self._clock() + ttl_seconds
        self._expires_at[key] = deadline
        heapq.heappush(self._deadlines, (deadline, key))
        self._sweep()

    def window_admit(self, key: str, now_ms: int, window_ms: int, limit: int, member: str) -> bool:
        with self._lock:
            entries = self._prune(key, now_ms, window_ms)
            if len(entries) >= limit:
                return False
            bisect.insort(entries, (now_ms, member))
            self._windows[key] = entries
            self._touch(key, window_ms / 1000)
            return True

    def window_add(self, key: str, now_ms: int, window_ms: int, member: str) -> None:
        with self._lock:
            entries = self._prune(key, now_ms, window_ms)
            bisect.insort(entries, (now_ms, member))
            self._windows[key] = entries
            self._touch(key, window_ms / 1000)

    def window_count(self, key: str, now_ms: int, window_ms: int) -> int:
        with self._lock:
            return len(self._prune(key, now_ms, window_ms))

    def window_oldest(self, key: str, now_ms: int, window_ms: int) -> int | None:
        with self._lock:
            entries = self._prune(key, now_ms, window_ms)
            return entries[0][0] if entries else None

    def window_entries(self, key: str, now_ms: int, window_ms: int) -> list[tuple[int, str]]:
        with self._lock:
            self._expire(key)
            cutoff = now_ms - window_ms
            return [entry for entry in self._windows.get(key, []) if entry[0] > cutoff]

    def incr_counters(self, key: str, increments: dict[str, int], ttl_seconds: int) -> None:
        with self._lock:
            self._expire(key)
            counters = self._counters.setdefault(key, {})
            for name, amount in increments.items():
                counters[name] = counters.get(name, 0) + amount
            self._touch(key, ttl_seconds)

    def get_counters(self, key: str) -> dict[str, int]:
        with self._lock:
            self._expire(key)
            return dict(self._counters.get(key, {}))

    def delete(self, key: str) -> None:
        with self._lock:
            self._drop(key)

    def __len__(self) -> int:
        """Number of keys held, counting expired keys not yet swept."""
        with self._lock:
            return len(self._windows.keys() | self._counters.keys())

    def clear(self) -> None:
        """Remove all keys (testing only)."""
        with self._lock:
            self._windows.clear()
            self._counters.clear()
            self._expires_at.clear()
            self._deadlines.clear()


# ------------------------------------------------------------------ #
# Redis Store
# ------------------------------------------------------------------ #

# KEYS[1] = window key
# ARGV = now_ms, window_ms, limit, member
_ADMIT_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
if redis.call('ZCARD', key) >= limit then
    return 0
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, window)
return 1
"""


class RedisStore:
    """Redis-backed store shared by every engine process.

    Admission runs as a Lua script, so prune/count/append is a single
    atomic step on the server. Other multi-command operations use a
    MULTI/EXEC pipeline.

    Example:
        store = RedisStore("redis://localhost:6379/0")
        store.incr_counters("daily_actions:acct-1:2026-01-10", {"total": 1}, 172800)
    """

    def __init__(self, url: str = "redis://localhost:6379/0", *, client: redis.Redis | None = None):
        """Initialize the Redis store.

        Args:
            url: Redis connection URL (ignored when ``client`` is given).
            client: Pre-built client, mainly for tests.
        """
        self._client = client if client is not None else redis.from_url(url, decode_responses=True)
        self._admit = self._client.register_script(_ADMIT_SCRIPT)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as exc:
            raise StoreUnavailableError(f"Redis {operation} failed: {exc}", cause=exc) from exc

    def window_admit(self, key: str, now_ms: int, window_ms: int, limit: int, member: str) -> bool:
        with self._guard("window_admit"):
            return bool(self._admit(keys=[key], args=[now_ms, window_ms, limit, member]))

    def window_add(self, key: str, now_ms: int, window_ms: int, member: str) -> None:
        with self._guard("window_add"):
            pipe = self._client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, "-inf", now_ms - window_ms)
            pipe.zadd(key, {member: now_ms})
            pipe.expire(key, math.ceil(window_ms / 1000))
            pipe.execute()

    def window_count(self, key: str, now_ms: int, window_ms: int) -> int:
        with self._guard("window_count"):
            pipe = self._client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, "-inf", now_ms - window_ms)
            pipe.zcard(key)
            _, count = pipe.execute()
            return int(count)

    def window_oldest(self, key: str, now_ms: int, window_ms: int) -> int | None:
        with self._guard("window_oldest"):
            pipe = self._client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, "-inf", now_ms - window_ms)
            pipe.zrange(key, 0, 0, withscores=True)
            _, oldest = pipe.execute()
            if not oldest:
                return None
            return int(oldest[0][1])

    def window_entries(self, key: str, now_ms: int, window_ms: int) -> list[tuple[int, str]]:
        with self._guard("window_entries"):
            raw = self._client.zrangebyscore(key, f"({now_ms - window_ms}", "+inf", withscores=True)
            return [(int(score), str(member)) for member, score in raw]

    def incr_counters(self, key: str, increments: dict[str, int], ttl_seconds: int) -> None:
        with self._guard("incr_counters"):
            pipe = self._client.pipeline(transaction=True)
            for name, amount in increments.items():
                pipe.hincrby(key, name, amount)
            pipe.expire(key, ttl_seconds)
            pipe.execute()

    def get_counters(self, key: str) -> dict[str, int]:
        with self._guard("get_counters"):
            raw = self._client.hgetall(key) or {}
            return {str(name): int(value) for name, value in raw.items()}

    def delete(self, key: str) -> None:
        with self._guard("delete"):
            self._client.delete(key)


__all__ = [
    "EphemeralStore",
    "InMemoryStore",
    "RedisStore",
]
