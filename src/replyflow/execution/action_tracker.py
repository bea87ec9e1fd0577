"""Action Tracker - per-account usage accounting and health scoring.

Manifesto:
Every externally visible action (comment reply, direct message) is
counted twice: once in the ephemeral store, which answers "may this
account act *right now*?", and once in the durable ``daily_usage``
table, which is the record of what actually happened.  The two are
updated without a spanning transaction; the ephemeral side may lag or
be evicted, the durable side is authoritative for history.

ARCHITECTURE
────────────
::

    ActionTracker(store, usage)
      ├── .track_action()                ─ ephemeral hash + zsets, durable upsert
      ├── .get_daily_stats()             ─ ephemeral, durable fallback
      ├── .get_recent_action_count()     ─ burst window
      ├── .get_action_history()          ─ recent actions, newest first
      ├── .can_perform_action()          ─ platform ceilings (daily, then hourly)
      ├── .get_time_until_next_action()  ─ ms until a ceiling frees up
      ├── .get_weekly_stats()            ─ 7 zero-filled durable days
      ├── .get_account_health()          ─ 0-100 score + recommendations
      └── .reset_daily_stats()

    Ephemeral keys:
      daily_actions:{account}:{YYYY-MM-DD}   hash  comment_reply / dm_send / total
      hourly_actions:{account}:{action}      zset  1 hour window
      recent_actions:{account}               zset  burst window
      action_history:{account}               zset  24 hour history

Related modules:
    rate_limit.py  - per-workflow hourly limits (configured, not platform)
    repository.py  - durable daily_usage aggregate

Tags:
    replyflow, execution, usage, quota, health

Doc-Types:
    api-reference
"""

from __future__ import annotations

import datetime
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from replyflow.core.errors import StoreUnavailableError
from replyflow.core.logging import get_logger
from replyflow.core.store import EphemeralStore
from replyflow.execution.rate_limit import HOUR_MS, unique_member
from replyflow.execution.repository import UsageRepository, utcnow

logger = get_logger(__name__)

DAY_MS = 24 * HOUR_MS
DEFAULT_TTL_SECONDS = 2 * 24 * 60 * 60
BURST_THRESHOLD = 10
HISTORY_RETENTION_HOURS = 24


class ActionType(str, Enum):
    """Externally visible action classes."""

    COMMENT_REPLY = "comment_reply"
    DM_SEND = "dm_send"


@dataclass(frozen=True)
class PlatformLimits:
    """Hard ceilings imposed by the messaging platform.

    Distinct from (and looser than or equal to) a workflow's own
    configured limits.
    """

    comments_per_day: int = 200
    dms_per_day: int = 100
    comments_per_hour: int = 25
    dms_per_hour: int = 20

    def daily(self, action: ActionType) -> int:
        return self.comments_per_day if action is ActionType.COMMENT_REPLY else self.dms_per_day

    def hourly(self, action: ActionType) -> int:
        return self.comments_per_hour if action is ActionType.COMMENT_REPLY else self.dms_per_hour


PLATFORM_LIMITS = PlatformLimits()
_ACTION_VALUES = frozenset(action.value for action in ActionType)


@dataclass(frozen=True)
class DailyStats:
    comments: int = 0
    dms: int = 0
    total: int = 0

    def count(self, action: ActionType) -> int:
        return self.comments if action is ActionType.COMMENT_REPLY else self.dms


@dataclass(frozen=True)
class ActionDecision:
    allowed: bool
    reason: str | None = None


@dataclass(frozen=True)
class ActionRecord:
    """One performed action, as kept in the short-term history."""

    timestamp: datetime.datetime
    action: ActionType


@dataclass(frozen=True)
class DayStats:
    date: datetime.date
    comments: int = 0
    dms: int = 0

    @property
    def total(self) -> int:
        return self.comments + self.dms


@dataclass(frozen=True)
class WeeklyStats:
    """Trailing seven days, oldest first."""

    days: list[DayStats]
    total_comments: int
    total_dms: int
    average_per_day: float


@dataclass
class AccountHealth:
    """Derived health of an account relative to its daily ceilings.

    Attributes:
        score: ``100 - max(comment_usage_percent, dm_usage_percent)``, 0-100
        status: ``healthy`` (<60%), ``warning`` (60-80%), ``critical`` (>80%)
    """

    score: int
    status: str
    comment_usage_percent: float
    dm_usage_percent: float
    weekly: WeeklyStats
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "status": self.status,
            "comment_usage_percent": self.comment_usage_percent,
            "dm_usage_percent": self.dm_usage_percent,
            "weekly_total": self.weekly.total_comments + self.weekly.total_dms,
            "recommendations": list(self.recommendations),
        }


def daily_key(account_id: str, day: datetime.date) -> str:
    return f"daily_actions:{account_id}:{day.isoformat()}"


def hourly_key(account_id: str, action: ActionType) -> str:
    return f"hourly_actions:{account_id}:{action.value}"


def recent_key(account_id: str) -> str:
    return f"recent_actions:{account_id}"


def history_key(account_id: str) -> str:
    return f"action_history:{account_id}"


class ActionTracker:
    """Dual-tier usage counters for one or many accounts.

    Example:
        tracker = ActionTracker(InMemoryStore(), UsageRepository(sessions))
        tracker.track_action("acct-1", "comment_reply")
        tracker.can_perform_action("acct-1", "dm_send")
    """

    def __init__(
        self,
        store: EphemeralStore,
        usage: UsageRepository,
        *,
        limits: PlatformLimits = PLATFORM_LIMITS,
        clock: Callable[[], datetime.datetime] = utcnow,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        burst_window_minutes: int = 5,
    ):
        self._store = store
        self._usage = usage
        self._limits = limits
        self._clock = clock
        self._ttl_seconds = ttl_seconds
        self._burst_window_minutes = burst_window_minutes

    def _now(self) -> tuple[datetime.datetime, int]:
        now = self._clock()
        return now, int(now.timestamp() * 1000)

    # -- recording ------------------------------------------------------

    def track_action(self, account_id: str, action: ActionType | str) -> None:
        """Record one performed action in both tiers.

        An unreachable ephemeral store is logged and skipped; the durable
        row is still written.
        """
        action = ActionType(action)
        now, now_ms = self._now()
        try:
            self._store.incr_counters(
                daily_key(account_id, now.date()),
                {action.value: 1, "total": 1},
                self._ttl_seconds,
            )
            self._store.window_add(hourly_key(account_id, action), now_ms, HOUR_MS, unique_member(now_ms))
            self._store.window_add(
                recent_key(account_id),
                now_ms,
                self._burst_window_minutes * 60 * 1000,
                f"{unique_member(now_ms)}:{action.value}",
            )
            self._store.window_add(
                history_key(account_id),
                now_ms,
                HISTORY_RETENTION_HOURS * HOUR_MS,
                f"{unique_member(now_ms)}:{action.value}",
            )
        except StoreUnavailableError as exc:
            logger.warning("usage.ephemeral_write_failed", account_id=account_id, action=action.value, error=str(exc))

        self._usage.increment(
            account_id,
            now.date(),
            comments=1 if action is ActionType.COMMENT_REPLY else 0,
            dms=1 if action is ActionType.DM_SEND else 0,
        )
        logger.debug("usage.tracked", account_id=account_id, action=action.value)

    def reset_daily_stats(self, account_id: str) -> None:
        """Drop today's ephemeral counters (durable history is kept)."""
        now, _ = self._now()
        self._store.delete(daily_key(account_id, now.date()))

    # -- reads ----------------------------------------------------------

    def get_daily_stats(self, account_id: str) -> DailyStats:
        now, _ = self._now()
        try:
            counters = self._store.get_counters(daily_key(account_id, now.date()))
        except StoreUnavailableError as exc:
            logger.warning("usage.ephemeral_read_failed", account_id=account_id, error=str(exc))
            row = self._usage.get_day(account_id, now.date())
            return DailyStats(comments=row.comments, dms=row.dms, total=row.total)
        return DailyStats(
            comments=counters.get(ActionType.COMMENT_REPLY.value, 0),
            dms=counters.get(ActionType.DM_SEND.value, 0),
            total=counters.get("total", 0),
        )

    def get_hourly_count(self, account_id: str, action: ActionType | str) -> int:
        action = ActionType(action)
        _, now_ms = self._now()
        try:
            return self._store.window_count(hourly_key(account_id, action), now_ms, HOUR_MS)
        except StoreUnavailableError as exc:
            logger.warning("usage.hourly_read_failed", account_id=account_id, error=str(exc))
            return 0

    def get_recent_action_count(self, account_id: str, window_minutes: int = 5) -> int:
        """Actions in the trailing ``window_minutes`` (burst detection)."""
        _, now_ms = self._now()
        try:
            return self._store.window_count(recent_key(account_id), now_ms, window_minutes * 60 * 1000)
        except StoreUnavailableError as exc:
            logger.warning("usage.recent_read_failed", account_id=account_id, error=str(exc))
            return 0

    def get_action_history(self, account_id: str, hours: int = 24) -> list[ActionRecord]:
        """Actions performed in the trailing ``hours``, newest first.

        Only the last ``HISTORY_RETENTION_HOURS`` are kept, so a longer
        lookback returns no more than that.
        """
        _, now_ms = self._now()
        try:
            entries = self._store.window_entries(history_key(account_id), now_ms, hours * HOUR_MS)
        except StoreUnavailableError as exc:
            logger.warning("usage.history_read_failed", account_id=account_id, error=str(exc))
            return []

        records = []
        for score, member in reversed(entries):
            action = member.rsplit(":", 1)[-1]
            if action not in _ACTION_VALUES:
                continue
            timestamp = datetime.datetime.fromtimestamp(score / 1000, tz=datetime.UTC)
            records.append(ActionRecord(timestamp=timestamp, action=ActionType(action)))
        return records

    # -- decisions ------------------------------------------------------

    def can_perform_action(self, account_id: str, action: ActionType | str) -> ActionDecision:
        """Check platform ceilings: daily first, then hourly."""
        action = ActionType(action)
        label = "comment" if action is ActionType.COMMENT_REPLY else "DM"

        daily_limit = self._limits.daily(action)
        if self.get_daily_stats(account_id).count(action) >= daily_limit:
            return ActionDecision(False, f"Daily {label} limit reached ({daily_limit})")

        hourly_limit = self._limits.hourly(action)
        if self.get_hourly_count(account_id, action) >= hourly_limit:
            return ActionDecision(False, f"Hourly {label} limit reached ({hourly_limit})")

        return ActionDecision(True)

    def get_time_until_next_action(self, account_id: str, action: ActionType | str) -> int | None:
        """Milliseconds until ``action`` is allowed again, or None if allowed now.

        A daily ceiling frees up at the next UTC midnight; an hourly one
        when the oldest event in the hour window ages out.
        """
        action = ActionType(action)
        now, now_ms = self._now()

        if self.get_daily_stats(account_id).count(action) >= self._limits.daily(action):
            tomorrow = datetime.datetime.combine(
                now.date() + datetime.timedelta(days=1), datetime.time(), tzinfo=datetime.UTC
            )
            return int((tomorrow - now).total_seconds() * 1000)

        if self.get_hourly_count(account_id, action) >= self._limits.hourly(action):
            oldest = self._store.window_oldest(hourly_key(account_id, action), now_ms, HOUR_MS)
            if oldest is not None:
                return max(0, oldest + HOUR_MS - now_ms)

        return None

    # -- analytics ------------------------------------------------------

    def get_weekly_stats(self, account_id: str) -> WeeklyStats:
        today = self._clock().date()
        start = today - datetime.timedelta(days=6)
        rows = {row.day: row for row in self._usage.get_range(account_id, start, today)}

        days = []
        for offset in range(7):
            day = start + datetime.timedelta(days=offset)
            row = rows.get(day)
            days.append(DayStats(date=day, comments=row.comments, dms=row.dms) if row else DayStats(date=day))

        total_comments = sum(d.comments for d in days)
        total_dms = sum(d.dms for d in days)
        return WeeklyStats(
            days=days,
            total_comments=total_comments,
            total_dms=total_dms,
            average_per_day=(total_comments + total_dms) / 7,
        )

    def get_account_health(self, account_id: str) -> AccountHealth:
        weekly = self.get_weekly_stats(account_id)
        today = weekly.days[-1]

        comment_pct = today.comments / self._limits.comments_per_day * 100
        dm_pct = today.dms / self._limits.dms_per_day * 100
        peak = max(comment_pct, dm_pct)
        score = int(round(min(100.0, max(0.0, 100 - peak))))

        if peak > 80:
            status = "critical"
        elif peak >= 60:
            status = "warning"
        else:
            status = "healthy"

        recommendations: list[str] = []
        for label, pct in (("comment", comment_pct), ("DM", dm_pct)):
            if pct > 80:
                recommendations.append(f"Daily {label} usage at {pct:.0f}%: pause {label} actions until tomorrow")
            elif pct >= 60:
                recommendations.append(f"Daily {label} usage at {pct:.0f}%: lower the per-hour {label} limit")

        burst = self.get_recent_action_count(account_id, self._burst_window_minutes)
        if burst >= BURST_THRESHOLD:
            recommendations.append(
                f"{burst} actions in the last {self._burst_window_minutes} minutes: enable delays between actions"
            )

        daily_ceiling = self._limits.comments_per_day + self._limits.dms_per_day
        if weekly.average_per_day > daily_ceiling * 0.6:
            recommendations.append("Sustained high weekly volume: consider spreading actions with active hours")

        if not recommendations:
            recommendations.append("Account activity is within safe limits")

        return AccountHealth(
            score=score,
            status=status,
            comment_usage_percent=round(comment_pct, 1),
            dm_usage_percent=round(dm_pct, 1),
            weekly=weekly,
            recommendations=recommendations,
        )


__all__ = [
    "PLATFORM_LIMITS",
    "AccountHealth",
    "ActionDecision",
    "ActionRecord",
    "ActionTracker",
    "ActionType",
    "DailyStats",
    "DayStats",
    "PlatformLimits",
    "WeeklyStats",
]
