"""Rate Limiting - per-account sliding windows over the ephemeral store.

The messaging provider bans accounts that act too fast.  The limiter
caps how many actions of a class (``comment_reply``, ``dm_send``) one
account may take inside a rolling window, and it does so *before* the
external call is made.

ARCHITECTURE
────────────
::

    SlidingWindowRateLimiter
      ├── check_limit()             ─ atomic prune → count → append
      └── get_remaining_requests()  ─ prune → count (read-only)

    Window key:  rate_limit:{action}:{identifier}
    Score:       epoch milliseconds
    Member:      "{now_ms}:{8 hex chars}" (unique per event)

BEST PRACTICES
──────────────
- Share one ``EphemeralStore`` between every engine process so the
  window is global per account.
- A store outage fails open: the request is admitted and a warning is
  logged.  Hard daily ceilings in ``ActionTracker`` still apply.

Example::

    limiter = SlidingWindowRateLimiter(InMemoryStore())
    options = RateLimitOptions(max_requests=25, window_ms=3_600_000)
    if not limiter.check_limit("acct-1", "comment_reply", options):
        raise RateLimitExceededError("comment_reply", limit=25)

Tags:
    replyflow, execution, rate-limit, sliding-window, redis

Doc-Types:
    api-reference
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from replyflow.core.errors import StoreUnavailableError
from replyflow.core.logging import get_logger
from replyflow.core.store import EphemeralStore

logger = get_logger(__name__)

HOUR_MS = 60 * 60 * 1000


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def rate_limit_key(action: str, identifier: str) -> str:
    return f"rate_limit:{action}:{identifier}"


def unique_member(now_ms: int) -> str:
    """Sorted-set member that cannot collide for events in the same millisecond."""
    return f"{now_ms}:{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class RateLimitOptions:
    """Window configuration.

    Attributes:
        max_requests: Maximum admitted events per window
        window_ms: Window length in milliseconds
    """

    max_requests: int
    window_ms: int = HOUR_MS

    def __post_init__(self):
        if self.max_requests < 0:
            raise ValueError("max_requests must be >= 0")
        if self.window_ms <= 0:
            raise ValueError("window_ms must be > 0")


class SlidingWindowRateLimiter:
    """Sliding window limiter keyed by (action, identifier).

    Counts events in a rolling window; an event is admitted only if fewer
    than ``max_requests`` events have a timestamp strictly greater than
    ``now - window_ms``.
    """

    def __init__(self, store: EphemeralStore, *, clock_ms: Callable[[], int] = epoch_ms):
        self._store = store
        self._clock_ms = clock_ms

    def check_limit(self, identifier: str, action: str, options: RateLimitOptions) -> bool:
        """Admit and record one event, or refuse without recording.

        Returns:
            True if admitted (or the store is unreachable), False if the
            window is full.
        """
        now = self._clock_ms()
        key = rate_limit_key(action, identifier)
        try:
            allowed = self._store.window_admit(
                key, now, options.window_ms, options.max_requests, unique_member(now)
            )
        except StoreUnavailableError as exc:
            logger.warning(
                "rate_limit.fail_open",
                identifier=identifier,
                action=action,
                error=str(exc),
            )
            return True

        if not allowed:
            logger.info(
                "rate_limit.exceeded",
                identifier=identifier,
                action=action,
                max_requests=options.max_requests,
                window_ms=options.window_ms,
            )
        return allowed

    def get_remaining_requests(self, identifier: str, action: str, options: RateLimitOptions) -> int:
        """Events still admissible in the current window (never negative)."""
        now = self._clock_ms()
        try:
            used = self._store.window_count(rate_limit_key(action, identifier), now, options.window_ms)
        except StoreUnavailableError as exc:
            logger.warning(
                "rate_limit.remaining_unavailable",
                identifier=identifier,
                action=action,
                error=str(exc),
            )
            return options.max_requests
        return max(0, options.max_requests - used)


__all__ = [
    "HOUR_MS",
    "RateLimitOptions",
    "SlidingWindowRateLimiter",
    "epoch_ms",
    "rate_limit_key",
    "unique_member",
]
