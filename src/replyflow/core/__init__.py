"""Core primitives: errors, logging, settings, stores and the ORM."""

from replyflow.core.errors import (
    ErrorCategory,
    ErrorContext,
    PolicyRejection,
    ReplyflowError,
    StructuralError,
)
from replyflow.core.logging import LogContext, configure_logging, get_logger
from replyflow.core.settings import ReplyflowSettings, get_settings
from replyflow.core.store import EphemeralStore, InMemoryStore, RedisStore

__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "PolicyRejection",
    "ReplyflowError",
    "StructuralError",
    "LogContext",
    "configure_logging",
    "get_logger",
    "ReplyflowSettings",
    "get_settings",
    "EphemeralStore",
    "InMemoryStore",
    "RedisStore",
]
