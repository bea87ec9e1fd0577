"""Tests for the ephemeral stores (in-memory and Redis)."""

from unittest.mock import MagicMock

import pytest
import redis

from replyflow.core.errors import StoreUnavailableError
from replyflow.core.store import InMemoryStore, RedisStore


pytestmark = pytest.mark.unit


class TestInMemoryWindows:
    """Tests for sliding-window primitives."""

    def test_admit_until_limit(self):
        store = InMemoryStore()
        results = [store.window_admit("k", 1000, 500, 2, f"m{i}") for i in range(3)]
        assert results == [True, True, False]
        assert store.window_count("k", 1000, 500) == 2

    def test_refused_admission_is_not_recorded(self):
        store = InMemoryStore()
        store.window_admit("k", 1000, 500, 1, "a")
        store.window_admit("k", 1001, 500, 1, "b")
        assert store.window_count("k", 1001, 500) == 1

    def test_prune_boundary_is_exclusive(self):
        """Entries with score <= now - window are pruned."""
        store = InMemoryStore()
        store.window_add("k", 1000, 500, "a")
        assert store.window_count("k", 1499, 500) == 1
        assert store.window_count("k", 1500, 500) == 0

    def test_oldest(self):
        store = InMemoryStore()
        assert store.window_oldest("k", 1000, 500) is None
        store.window_add("k", 1200, 500, "b")
        store.window_add("k", 1100, 500, "a")
        assert store.window_oldest("k", 1300, 500) == 1100

    def test_entries_read_is_not_destructive(self):
        store = InMemoryStore()
        store.window_add("k", 1000, 10_000, "a")
        store.window_add("k", 5000, 10_000, "b")
        assert store.window_entries("k", 6000, 2000) == [(5000, "b")]
        assert store.window_entries("k", 6000, 10_000) == [(1000, "a"), (5000, "b")]

    def test_same_millisecond_members_are_distinct(self):
        store = InMemoryStore()
        store.window_add("k", 1000, 500, "1000:aaaa")
        store.window_add("k", 1000, 500, "1000:bbbb")
        assert store.window_count("k", 1000, 500) == 2


class TestInMemoryCounters:
    """Tests for expiring counters."""

    def test_increment_and_read(self):
        store = InMemoryStore()
        store.incr_counters("d", {"comment_reply": 1, "total": 1}, 60)
        store.incr_counters("d", {"dm_send": 1, "total": 1}, 60)
        assert store.get_counters("d") == {"comment_reply": 1, "dm_send": 1, "total": 2}

    def test_counters_expire(self):
        now = [0.0]
        store = InMemoryStore(clock=lambda: now[0])
        store.incr_counters("d", {"total": 3}, 10)
        now[0] = 9.9
        assert store.get_counters("d") == {"total": 3}
        now[0] = 10.0
        assert store.get_counters("d") == {}

    def test_delete_and_clear(self):
        store = InMemoryStore()
        store.incr_counters("a", {"total": 1}, 60)
        store.window_add("b", 1, 100, "m")
        store.delete("a")
        assert store.get_counters("a") == {}
        store.clear()
        assert store.window_count("b", 1, 100) == 0

    def test_expired_keys_swept_on_other_writes(self):
        now = [0.0]
        store = InMemoryStore(clock=lambda: now[0])
        store.incr_counters("daily:day1", {"total": 1}, 10)
        store.incr_counters("daily:day2", {"total": 1}, 100)
        assert len(store) == 2

        now[0] = 50.0
        store.incr_counters("daily:day3", {"total": 1}, 100)
        assert len(store) == 2
        assert store.get_counters("daily:day2") == {"total": 1}

    def test_retouched_key_survives_its_old_deadline(self):
        now = [0.0]
        store = InMemoryStore(clock=lambda: now[0])
        store.incr_counters("d", {"total": 1}, 10)
        now[0] = 5.0
        store.incr_counters("d", {"total": 1}, 10)
        now[0] = 12.0
        store.incr_counters("other", {"total": 1}, 10)
        assert store.get_counters("d") == {"total": 2}

    def test_reads_do_not_create_keys(self):
        store = InMemoryStore()
        store.window_count("never-written", 1000, 500)
        store.window_oldest("never-written", 1000, 500)
        store.get_counters("never-written")
        assert len(store) == 0


@pytest.fixture
def redis_client():
    client = MagicMock()
    script = MagicMock(return_value=1)
    client.register_script.return_value = script
    pipe = MagicMock()
    client.pipeline.return_value = pipe
    return client


class TestRedisStore:
    """Tests for RedisStore against a mocked client."""

    def test_admit_runs_lua_script(self, redis_client):
        store = RedisStore(client=redis_client)
        assert store.window_admit("rate_limit:dm_send:ig1", 5000, 1000, 3, "5000:abcd") is True
        script = redis_client.register_script.return_value
        script.assert_called_once_with(keys=["rate_limit:dm_send:ig1"], args=[5000, 1000, 3, "5000:abcd"])

    def test_admit_refused(self, redis_client):
        redis_client.register_script.return_value.return_value = 0
        store = RedisStore(client=redis_client)
        assert store.window_admit("k", 5000, 1000, 3, "m") is False

    def test_window_count_prunes_then_counts(self, redis_client):
        pipe = redis_client.pipeline.return_value
        pipe.execute.return_value = [2, 4]
        store = RedisStore(client=redis_client)
        assert store.window_count("k", 5000, 1000) == 4
        pipe.zremrangebyscore.assert_called_once_with("k", "-inf", 4000)
        pipe.zcard.assert_called_once_with("k")

    def test_window_oldest(self, redis_client):
        pipe = redis_client.pipeline.return_value
        pipe.execute.return_value = [0, [("m", 4200.0)]]
        store = RedisStore(client=redis_client)
        assert store.window_oldest("k", 5000, 1000) == 4200

    def test_window_entries_reads_without_pruning(self, redis_client):
        redis_client.zrangebyscore.return_value = [("4200:ab:dm_send", 4200.0)]
        store = RedisStore(client=redis_client)
        assert store.window_entries("k", 5000, 1000) == [(4200, "4200:ab:dm_send")]
        redis_client.zrangebyscore.assert_called_once_with("k", "(4000", "+inf", withscores=True)
        redis_client.zremrangebyscore.assert_not_called()

    def test_incr_counters_sets_expiry(self, redis_client):
        pipe = redis_client.pipeline.return_value
        store = RedisStore(client=redis_client)
        store.incr_counters("daily_actions:ig1:2026-01-10", {"dm_send": 1, "total": 1}, 172800)
        pipe.hincrby.assert_any_call("daily_actions:ig1:2026-01-10", "dm_send", 1)
        pipe.hincrby.assert_any_call("daily_actions:ig1:2026-01-10", "total", 1)
        pipe.expire.assert_called_once_with("daily_actions:ig1:2026-01-10", 172800)
        pipe.execute.assert_called_once()

    def test_get_counters_converts_to_int(self, redis_client):
        redis_client.hgetall.return_value = {"total": "7", "comment_reply": "7"}
        store = RedisStore(client=redis_client)
        assert store.get_counters("d") == {"total": 7, "comment_reply": 7}

    def test_redis_errors_become_store_unavailable(self, redis_client):
        redis_client.hgetall.side_effect = redis.ConnectionError("connection refused")
        store = RedisStore(client=redis_client)
        with pytest.raises(StoreUnavailableError) as exc_info:
            store.get_counters("d")
        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.cause, redis.ConnectionError)
