"""
Factory functions that wire engine components from settings.

Every collaborator is built once here and injected downward; nothing in
the engine holds a module-level singleton.

Features:
    - ``create_database_engine()`` - SQLAlchemy engine (+ schema)
    - ``create_store()`` - InMemory / Redis ephemeral store
    - ``build_coordinator()`` - fully wired :class:`ExecutionCoordinator`

Tags:
    replyflow, configuration, factory-pattern, sqlalchemy, redis

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from replyflow.core.errors import ConfigError
from replyflow.core.logging import configure_logging
from replyflow.core.orm import ReplyflowBase, create_replyflow_engine, session_factory
from replyflow.core.settings import ReplyflowSettings, get_settings
from replyflow.core.store import EphemeralStore, InMemoryStore, RedisStore

if TYPE_CHECKING:
    from replyflow.orchestration.coordinator import ExecutionCoordinator


def create_database_engine(settings: ReplyflowSettings, *, create_schema: bool = True) -> Any:
    """Create the durable-store engine, creating missing tables by default."""
    engine = create_replyflow_engine(settings.database_url, echo=settings.database_echo)
    if create_schema:
        ReplyflowBase.metadata.create_all(engine)
    return engine


def create_store(settings: ReplyflowSettings) -> EphemeralStore:
    """Redis when ``redis_url`` is set, otherwise the in-process store.

    Raises:
        ConfigError: If ``redis_url`` is not a valid Redis URL
    """
    if settings.uses_redis:
        try:
            return RedisStore(settings.redis_url)
        except ValueError as exc:
            raise ConfigError(f"Invalid REPLYFLOW_REDIS_URL: {exc}", cause=exc) from exc
    return InMemoryStore()


def build_coordinator(settings: ReplyflowSettings | None = None, **overrides: Any) -> ExecutionCoordinator:
    """Build an :class:`ExecutionCoordinator` and all its collaborators.

    Keyword overrides replace individual components by name: ``engine``,
    ``store``, ``adapter_factory``, ``sleep``, ``rng``, ``clock``.
    Pass ``configure_logging=False`` to leave structlog as it is.
    """
    from replyflow.adapters.instagram import instagram_adapter_factory
    from replyflow.execution.action_tracker import ActionTracker
    from replyflow.execution.rate_limit import SlidingWindowRateLimiter
    from replyflow.execution.repository import ExecutionRepository, UsageRepository
    from replyflow.orchestration.coordinator import ExecutionCoordinator
    from replyflow.orchestration.handlers import SendMessageNodeHandler, default_registry
    from replyflow.orchestration.safety import SafetyPolicyResolver

    settings = settings or get_settings()
    if overrides.get("configure_logging", True):
        configure_logging(settings.log_level, settings.log_json)
    engine = overrides.get("engine") or create_database_engine(settings)
    sessions = session_factory(engine)
    store = overrides.get("store") or create_store(settings)
    clock_kwargs = {"clock": overrides["clock"]} if "clock" in overrides else {}

    repository = ExecutionRepository(sessions, **clock_kwargs)
    tracker = ActionTracker(
        store,
        UsageRepository(sessions),
        ttl_seconds=settings.ephemeral_ttl_seconds,
        burst_window_minutes=settings.burst_window_minutes,
        **clock_kwargs,
    )
    limiter_kwargs = {}
    if "clock" in overrides:
        limiter_kwargs["clock_ms"] = lambda: int(overrides["clock"]().timestamp() * 1000)
    limiter = SlidingWindowRateLimiter(store, **limiter_kwargs)
    resolver = SafetyPolicyResolver(overrides.get("rng"))

    send_kwargs: dict[str, Any] = {"rng": overrides.get("rng")}
    if "sleep" in overrides:
        send_kwargs["sleep"] = overrides["sleep"]
    send_handler = SendMessageNodeHandler(limiter, tracker, repository, resolver, **send_kwargs)

    adapter_factory = overrides.get("adapter_factory") or instagram_adapter_factory(
        settings.graph_api_base_url, settings.graph_api_timeout_seconds
    )
    return ExecutionCoordinator(
        repository,
        tracker,
        default_registry(send_handler),
        adapter_factory,
        resolver=resolver,
        **clock_kwargs,
    )


__all__ = ["build_coordinator", "create_database_engine", "create_store"]
