"""Tests for the ActionTracker."""

import datetime
from unittest.mock import MagicMock

import pytest

from replyflow.core.errors import StoreUnavailableError
from replyflow.core.store import InMemoryStore
from replyflow.execution.action_tracker import (
    PLATFORM_LIMITS,
    ActionTracker,
    ActionType,
    DailyStats,
    daily_key,
)


def _track(tracker, action, times, clock=None, step_seconds=0):
    for _ in range(times):
        tracker.track_action("ig1", action)
        if clock is not None and step_seconds:
            clock.advance(seconds=step_seconds)


class TestTrackAction:
    """Tests for recording actions."""

    def test_daily_stats_after_five_comments(self, tracker):
        _track(tracker, "comment_reply", 5)
        assert tracker.get_daily_stats("ig1") == DailyStats(comments=5, dms=0, total=5)

    def test_dm_and_comment_fields(self, tracker, store, clock):
        tracker.track_action("ig1", ActionType.COMMENT_REPLY)
        tracker.track_action("ig1", ActionType.DM_SEND)
        counters = store.get_counters(daily_key("ig1", clock().date()))
        assert counters == {"comment_reply": 1, "dm_send": 1, "total": 2}

    def test_durable_row_upserted(self, tracker, usage, clock):
        _track(tracker, "comment_reply", 2)
        tracker.track_action("ig1", "dm_send")
        row = usage.get_day("ig1", clock().date())
        assert (row.comments, row.dms) == (2, 1)

    def test_unknown_action_rejected(self, tracker):
        with pytest.raises(ValueError):
            tracker.track_action("ig1", "like")

    def test_ephemeral_outage_still_writes_durable(self, usage, clock):
        store = MagicMock()
        store.incr_counters.side_effect = StoreUnavailableError("down")
        tracker = ActionTracker(store, usage, clock=clock)
        tracker.track_action("ig1", "dm_send")
        assert usage.get_day("ig1", clock().date()).dms == 1

    def test_new_day_starts_from_zero(self, tracker, clock):
        _track(tracker, "comment_reply", 3)
        clock.advance(days=1)
        assert tracker.get_daily_stats("ig1") == DailyStats()


class TestActionHistory:
    """Tests for the short-term action history."""

    def test_newest_first_with_types(self, tracker, clock):
        start = clock()
        tracker.track_action("ig1", "comment_reply")
        clock.advance(minutes=10)
        tracker.track_action("ig1", "dm_send")

        history = tracker.get_action_history("ig1")
        assert [record.action for record in history] == [ActionType.DM_SEND, ActionType.COMMENT_REPLY]
        assert history[0].timestamp == start + datetime.timedelta(minutes=10)
        assert history[1].timestamp == start

    def test_lookback_window(self, tracker, clock):
        tracker.track_action("ig1", "comment_reply")
        clock.advance(hours=3)
        tracker.track_action("ig1", "dm_send")

        assert [r.action for r in tracker.get_action_history("ig1", hours=1)] == [ActionType.DM_SEND]
        assert len(tracker.get_action_history("ig1", hours=24)) == 2

    def test_survives_burst_window_reads(self, tracker, clock):
        tracker.track_action("ig1", "comment_reply")
        clock.advance(hours=2)
        assert tracker.get_recent_action_count("ig1") == 0
        tracker.get_action_history("ig1", hours=1)
        assert len(tracker.get_action_history("ig1")) == 1

    def test_older_than_retention_is_dropped(self, tracker, clock):
        tracker.track_action("ig1", "comment_reply")
        clock.advance(hours=25)
        tracker.track_action("ig1", "dm_send")
        assert [r.action for r in tracker.get_action_history("ig1", hours=48)] == [ActionType.DM_SEND]

    def test_store_unavailable_returns_empty(self, usage, clock):
        store = MagicMock()
        store.window_entries.side_effect = StoreUnavailableError("redis down")
        tracker = ActionTracker(store, usage, clock=clock)
        assert tracker.get_action_history("ig1") == []


def test_daily_keys_do_not_accumulate(tracker, store, clock):
    for _ in range(10):
        tracker.track_action("ig1", "comment_reply")
        clock.advance(days=1)
    tracker.track_action("ig1", "comment_reply")
    # yesterday's and today's daily hash, plus the hourly, burst and history sets
    assert len(store) <= 5


class TestDailyStatsFallback:
    """Tests for the durable fallback."""

    def test_reads_durable_row_when_store_unavailable(self, usage, clock):
        usage.increment("ig1", clock().date(), comments=4, dms=2)
        store = MagicMock()
        store.get_counters.side_effect = StoreUnavailableError("down")
        tracker = ActionTracker(store, usage, clock=clock)
        assert tracker.get_daily_stats("ig1") == DailyStats(comments=4, dms=2, total=6)


class TestRecentActions:
    """Tests for burst detection."""

    def test_counts_within_window(self, tracker, clock):
        _track(tracker, "comment_reply", 3, clock, step_seconds=60)
        assert tracker.get_recent_action_count("ig1", window_minutes=5) == 3

    def test_old_actions_pruned(self, tracker, clock):
        _track(tracker, "comment_reply", 2)
        clock.advance(minutes=6)
        tracker.track_action("ig1", "dm_send")
        assert tracker.get_recent_action_count("ig1", window_minutes=5) == 1


class TestCanPerformAction:
    """Tests for platform ceilings."""

    def test_allowed_when_fresh(self, tracker):
        decision = tracker.can_perform_action("ig1", "comment_reply")
        assert decision.allowed is True
        assert decision.reason is None

    def test_daily_comment_limit(self, store, tracker, clock):
        store.incr_counters(daily_key("ig1", clock().date()), {"comment_reply": 200, "total": 200}, 3600)
        decision = tracker.can_perform_action("ig1", "comment_reply")
        assert decision.allowed is False
        assert decision.reason == "Daily comment limit reached (200)"

    def test_daily_dm_limit(self, store, tracker, clock):
        store.incr_counters(daily_key("ig1", clock().date()), {"dm_send": 100, "total": 100}, 3600)
        decision = tracker.can_perform_action("ig1", "dm_send")
        assert decision.reason == "Daily DM limit reached (100)"
        # comments are still fine
        assert tracker.can_perform_action("ig1", "comment_reply").allowed is True

    def test_hourly_limit_with_low_daily_count(self, tracker, clock):
        _track(tracker, "comment_reply", 25, clock, step_seconds=1)
        decision = tracker.can_perform_action("ig1", "comment_reply")
        assert decision.allowed is False
        assert decision.reason == "Hourly comment limit reached (25)"
        assert tracker.get_daily_stats("ig1").comments == 25

    def test_hourly_limit_resets(self, tracker, clock):
        _track(tracker, "dm_send", 20)
        assert tracker.can_perform_action("ig1", "dm_send").reason == "Hourly DM limit reached (20)"
        clock.advance(hours=1, seconds=1)
        assert tracker.can_perform_action("ig1", "dm_send").allowed is True


class TestTimeUntilNextAction:
    """Tests for wait-time estimation."""

    def test_none_when_allowed(self, tracker):
        assert tracker.get_time_until_next_action("ig1", "comment_reply") is None

    def test_until_midnight_on_daily_limit(self, store, tracker, clock):
        store.incr_counters(daily_key("ig1", clock().date()), {"comment_reply": 200, "total": 200}, 3600)
        # clock is 12:00 UTC
        assert tracker.get_time_until_next_action("ig1", "comment_reply") == 12 * 3600 * 1000

    def test_until_oldest_ages_out_on_hourly_limit(self, tracker, clock):
        tracker.track_action("ig1", "dm_send")
        clock.advance(minutes=10)
        _track(tracker, "dm_send", 19)
        assert tracker.get_time_until_next_action("ig1", "dm_send") == 50 * 60 * 1000


class TestWeeklyAndHealth:
    """Tests for durable analytics."""

    def test_weekly_zero_filled_oldest_first(self, tracker, usage, clock):
        today = clock().date()
        usage.increment("ig1", today - datetime.timedelta(days=2), comments=10, dms=4)
        usage.increment("ig1", today, comments=1)
        weekly = tracker.get_weekly_stats("ig1")
        assert len(weekly.days) == 7
        assert weekly.days[0].date == today - datetime.timedelta(days=6)
        assert weekly.days[-1].date == today
        assert weekly.days[4].total == 14
        assert weekly.total_comments == 11
        assert weekly.total_dms == 4
        assert weekly.average_per_day == pytest.approx(15 / 7)

    def test_excludes_days_outside_window(self, tracker, usage, clock):
        usage.increment("ig1", clock().date() - datetime.timedelta(days=7), comments=50)
        assert tracker.get_weekly_stats("ig1").total_comments == 0

    def test_healthy(self, tracker):
        health = tracker.get_account_health("ig1")
        assert health.score == 100
        assert health.status == "healthy"
        assert health.recommendations == ["Account activity is within safe limits"]

    def test_warning_from_comment_usage(self, tracker, usage, clock):
        usage.increment("ig1", clock().date(), comments=140)  # 70%
        health = tracker.get_account_health("ig1")
        assert health.comment_usage_percent == 70.0
        assert health.score == 30
        assert health.status == "warning"
        assert any("comment" in r for r in health.recommendations)

    def test_critical_uses_worst_of_comment_and_dm(self, tracker, usage, clock):
        usage.increment("ig1", clock().date(), comments=20, dms=90)  # 10% / 90%
        health = tracker.get_account_health("ig1")
        assert health.dm_usage_percent == 90.0
        assert health.score == 10
        assert health.status == "critical"

    def test_score_clamped(self, tracker, usage, clock):
        usage.increment("ig1", clock().date(), dms=150)
        assert tracker.get_account_health("ig1").score == 0

    def test_burst_recommendation(self, tracker):
        _track(tracker, "comment_reply", 10)
        health = tracker.get_account_health("ig1")
        assert any("actions in the last 5 minutes" in r for r in health.recommendations)


class TestReset:
    def test_reset_daily_stats(self, tracker):
        _track(tracker, "comment_reply", 3)
        tracker.reset_daily_stats("ig1")
        assert tracker.get_daily_stats("ig1") == DailyStats()


def test_platform_limits():
    assert PLATFORM_LIMITS.comments_per_day == 200
    assert PLATFORM_LIMITS.dms_per_day == 100
    assert PLATFORM_LIMITS.comments_per_hour == 25
    assert PLATFORM_LIMITS.dms_per_hour == 20
