"""Usage accounting, rate limiting and durable run records."""

from replyflow.execution.action_tracker import (
    PLATFORM_LIMITS,
    AccountHealth,
    ActionDecision,
    ActionRecord,
    ActionTracker,
    ActionType,
    DailyStats,
    WeeklyStats,
)
from replyflow.execution.rate_limit import RateLimitOptions, SlidingWindowRateLimiter
from replyflow.execution.repository import ExecutionRepository, UsageRepository, WorkflowMetrics

__all__ = [
    "PLATFORM_LIMITS",
    "AccountHealth",
    "ActionDecision",
    "ActionRecord",
    "ActionTracker",
    "ActionType",
    "DailyStats",
    "WeeklyStats",
    "RateLimitOptions",
    "SlidingWindowRateLimiter",
    "ExecutionRepository",
    "UsageRepository",
    "WorkflowMetrics",
]
