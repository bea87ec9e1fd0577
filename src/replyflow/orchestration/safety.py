"""Safety Policy Resolver - declared safety settings to concrete gates.

A workflow declares *how careful* it wants to be (disabled, recommended,
or custom limits plus active hours, delays and content rules).  The
resolver turns that declaration into numbers and yes/no answers; it
holds no state and performs no I/O.

ARCHITECTURE
────────────
::

    SafetyPolicyResolver
      ├── .resolve(settings, account_age_days)  → EffectiveLimits | UNGATED
      ├── .is_within_active_hours(settings, now) → bool
      ├── .check_content(message, rules)         → ContentCheck
      └── .random_delay_ms(delays)               → int

    RECOMMENDED_LIMITS   25 comments/h, 200/day, 20 DMs/h, 100/day
    BANNED_PHRASES       spam-trigger phrases (case-insensitive)

Tags:
    replyflow, orchestration, safety, rate-limit, content-filter

Doc-Types:
    api-reference
"""

from __future__ import annotations

import datetime
import random
import re
from dataclasses import dataclass, replace
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from replyflow.core.errors import DefinitionError
from replyflow.execution.action_tracker import ActionType
from replyflow.orchestration.definition import ContentSafetyRules, DelaySettings, SafetySettings

MENTION_PATTERN = re.compile(r"@[\w.]+")
HASHTAG_PATTERN = re.compile(r"#\w+")
URL_PATTERN = re.compile(r"https?://[^\s]+")

BANNED_PHRASES: tuple[str, ...] = (
    "click link",
    "dm for info",
    "check bio",
    "follow back",
    "f4f",
    "l4l",
    "buy now",
    "limited offer",
    "act now",
    "earn money",
    "work from home",
)


@dataclass(frozen=True)
class EffectiveLimits:
    """Concrete per-account limits for one run.

    ``gated=False`` (the :data:`UNGATED` sentinel) means safety is off and
    no limit applies; the numeric fields are then ``None``.
    """

    comments_per_hour: int | None
    comments_per_day: int | None
    dms_per_hour: int | None
    dms_per_day: int | None
    gated: bool = True

    def hourly(self, action: ActionType) -> int | None:
        return self.comments_per_hour if action is ActionType.COMMENT_REPLY else self.dms_per_hour

    def daily(self, action: ActionType) -> int | None:
        return self.comments_per_day if action is ActionType.COMMENT_REPLY else self.dms_per_day


RECOMMENDED_LIMITS = EffectiveLimits(
    comments_per_hour=25,
    comments_per_day=200,
    dms_per_hour=20,
    dms_per_day=100,
)

UNGATED = EffectiveLimits(None, None, None, None, gated=False)


@dataclass(frozen=True)
class ContentCheck:
    safe: bool
    reason: str | None = None


class SafetyPolicyResolver:
    """Stateless policy evaluation.

    Args:
        rng: Source of randomness for delays (inject a seeded
            ``random.Random`` in tests)
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    def resolve(self, settings: SafetySettings, account_age_days: int | None = None) -> EffectiveLimits:
        """Effective limits for a run.

        Custom limits fall back field by field to the recommended values.
        While warm-up applies, daily limits are capped at
        ``warmup.actions_per_day``.
        """
        if not settings.enabled:
            return UNGATED

        if settings.use_recommended_limits or settings.custom_limits is None:
            limits = RECOMMENDED_LIMITS
        else:
            custom = settings.custom_limits
            limits = EffectiveLimits(
                comments_per_hour=_or_default(custom.comments_per_hour, RECOMMENDED_LIMITS.comments_per_hour),
                comments_per_day=_or_default(custom.comments_per_day, RECOMMENDED_LIMITS.comments_per_day),
                dms_per_hour=_or_default(custom.dms_per_hour, RECOMMENDED_LIMITS.dms_per_hour),
                dms_per_day=_or_default(custom.dms_per_day, RECOMMENDED_LIMITS.dms_per_day),
            )

        warmup = settings.warmup
        if warmup.enabled and account_age_days is not None and account_age_days < warmup.days:
            limits = replace(
                limits,
                comments_per_day=min(limits.comments_per_day, warmup.actions_per_day),
                dms_per_day=min(limits.dms_per_day, warmup.actions_per_day),
            )
        return limits

    def is_within_active_hours(self, settings: SafetySettings, now: datetime.datetime) -> bool:
        """True unless active hours are enabled and ``now`` falls outside them.

        ``now`` is converted to the configured timezone when one is set;
        otherwise an aware ``now`` is read on the host's local clock.
        """
        hours = settings.active_hours
        if not settings.enabled or not hours.enabled:
            return True

        if hours.timezone:
            try:
                zone = ZoneInfo(hours.timezone)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise DefinitionError(f"Unknown timezone: {hours.timezone}", cause=exc) from exc
            local = now.astimezone(zone) if now.tzinfo else now.replace(tzinfo=datetime.UTC).astimezone(zone)
        else:
            local = now.astimezone() if now.tzinfo else now

        hour = local.hour
        start, end = hours.start_hour, hours.end_hour
        if start == end:
            return True
        if start < end:
            return start <= hour < end
        # window wraps midnight, e.g. 22 -> 6
        return hour >= start or hour < end

    def check_content(self, message: str, rules: ContentSafetyRules) -> ContentCheck:
        """Evaluate a message; the first violated rule wins."""
        if rules.check_banned_phrases:
            lowered = message.lower()
            for phrase in BANNED_PHRASES:
                if phrase in lowered:
                    return ContentCheck(False, f"Contains banned phrase: {phrase}")

        if rules.max_mentions is not None:
            mentions = len(MENTION_PATTERN.findall(message))
            if mentions > rules.max_mentions:
                return ContentCheck(False, f"Too many mentions ({mentions})")

        if rules.max_hashtags is not None:
            hashtags = len(HASHTAG_PATTERN.findall(message))
            if hashtags > rules.max_hashtags:
                return ContentCheck(False, f"Too many hashtags ({hashtags})")

        if rules.max_urls is not None:
            urls = len(URL_PATTERN.findall(message))
            if urls > rules.max_urls:
                return ContentCheck(False, f"Too many URLs ({urls})")

        return ContentCheck(True)

    def random_delay_ms(self, delays: DelaySettings, rng: random.Random | None = None) -> int:
        """Uniform integer in ``[min_delay_ms, max_delay_ms]``."""
        low, high = sorted((delays.min_delay_ms, delays.max_delay_ms))
        return (rng or self._rng).randint(low, high)


def _or_default(value: int | None, default: int | None) -> int | None:
    return default if value is None else value


__all__ = [
    "BANNED_PHRASES",
    "RECOMMENDED_LIMITS",
    "UNGATED",
    "ContentCheck",
    "EffectiveLimits",
    "SafetyPolicyResolver",
]
