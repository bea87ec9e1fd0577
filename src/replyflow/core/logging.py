"""
structlog setup shared by every replyflow module.

Modules log events, not sentences::

    logger = get_logger(__name__)
    logger.info("run.start", workflow_id="wf-1", nodes=2)

Run-scoped keys (``workflow_id``, ``run_id``) are bound once by the
coordinator through :class:`LogContext` and merged into every event
emitted while the run is in progress, including events from the rate
limiter, tracker and adapter.

Output is JSON with ECS field names (``@timestamp``, ``log.level``,
``service.name``) when stdout is not a terminal, and structlog's console
renderer otherwise.

Tags:
    logging, structlog, contextvars, replyflow

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from contextvars import Token
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# structlog key -> ECS key
_ECS_FIELDS = {"timestamp": "@timestamp", "level": "log.level"}


class _ServiceTag:
    """Processor stamping ``service.name`` on events that lack one."""

    def __init__(self, service: str):
        self.service = service

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", self.service)
        return event_dict


def rename_ecs_fields(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for source, target in _ECS_FIELDS.items():
        if source in event_dict:
            event_dict[target] = event_dict.pop(source)
    return event_dict


def _resolve_level(level: str) -> int:
    levels = logging.getLevelNamesMapping()
    try:
        return levels[level.upper()]
    except KeyError:
        raise ValueError(f"Invalid log level: {level}") from None


def configure_logging(level: str = "INFO", json_format: bool | None = None, service: str = "replyflow") -> None:
    """Install the replyflow processor chain.

    Args:
        level: Minimum level name, e.g. ``"DEBUG"``
        json_format: Force JSON (True) or console (False); None picks JSON
            unless stdout is a TTY
        service: Value for the ``service.name`` field
    """
    numeric_level = _resolve_level(level)
    as_json = (not sys.stdout.isatty()) if json_format is None else json_format

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _ServiceTag(service),
    ]
    if as_json:
        processors += [rename_ecs_fields, structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # SQLAlchemy and httpx log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> Mapping[str, Token[Any]]:
    """Bind keys for all later events in this context; returns reset tokens."""
    return structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Bind keys for the duration of a ``with`` block.

    Leaving the block restores whatever the keys held before, so nested
    contexts do not clobber an outer run's ``run_id``.

    Example:
        with LogContext(workflow_id="wf-1", run_id="abc123"):
            logger.info("phase.start")
    """

    def __init__(self, **kwargs: Any):
        self.values = kwargs
        self._tokens: Mapping[str, Token[Any]] = {}

    def __enter__(self) -> LogContext:
        self._tokens = bind_context(**self.values)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)


__all__ = [
    "LogContext",
    "bind_context",
    "configure_logging",
    "get_logger",
    "rename_ecs_fields",
    "unbind_context",
]
