"""
Error types raised while running a workflow.

The coordinator reacts to the *family* of an error, not to the concrete
class:

- Structural errors (cyclic graph, unknown node type, dangling edge)
  fail the run before any external call.
- Policy rejections (hourly rate limit, content safety, filter non-match)
  stop the run on purpose. Nothing external was sent for that step.
- External-action errors (provider API failure) are caught around the
  single call and logged. The remaining steps still run.
- Store errors (ephemeral store unreachable) make the limiter fail open.

Hierarchy::

    ReplyflowError
    ├── StructuralError
    │   ├── DefinitionError
    │   ├── GraphCycleError
    │   ├── UnknownNodeTypeError
    │   ├── MissingNodeError
    │   ├── DuplicateNodeError
    │   └── IntegrationNotFoundError
    ├── PolicyRejection
    │   ├── RateLimitExceededError
    │   ├── ContentSafetyError
    │   └── FilterNotMatchedError
    ├── ExternalActionError
    ├── StoreUnavailableError      (retryable)
    └── ConfigError

Examples:
    >>> error = RateLimitExceededError("comment_reply", limit=25)
    >>> error.category
    <ErrorCategory.POLICY: 'POLICY'>
    >>> error.with_context(account_id="acct-1").context.account_id
    'acct-1'

Tags:
    error-handling, exception-hierarchy, replyflow

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Coarse error family, written to logs and run records."""

    STRUCTURE = "STRUCTURE"
    POLICY = "POLICY"
    EXTERNAL = "EXTERNAL"
    STORAGE = "STORAGE"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Where an error happened; unset fields are left out of logs."""

    workflow_id: str | None = None
    run_id: str | None = None
    node_id: str | None = None
    account_id: str | None = None
    action: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        known = {key: value for key, value in asdict(self).items() if key != "metadata" and value is not None}
        return {**known, **self.metadata}


_CONTEXT_FIELDS = frozenset(f.name for f in fields(ErrorContext)) - {"metadata"}


class ReplyflowError(Exception):
    """Base class for every error the engine raises on purpose.

    Subclasses pick their family through ``default_category`` and
    ``default_retryable``; both can be overridden per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = self.default_category if category is None else category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.context = ErrorContext() if context is None else context
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ReplyflowError:
        """Attach location fields; unknown keys go to ``context.metadata``.

        Returns ``self`` so it can be chained onto ``raise``::

            raise ContentSafetyError("Too many URLs (3)").with_context(node_id="send-1")
        """
        for key, value in kwargs.items():
            if key in _CONTEXT_FIELDS:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Flat fields for ``logger.error(..., **error.to_dict())`` and run records."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            data["context"] = context
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STRUCTURAL ERRORS
# =============================================================================


class StructuralError(ReplyflowError):
    """
    The workflow definition cannot be executed as declared.

    Never retryable: the definition must be fixed.
    """

    default_category = ErrorCategory.STRUCTURE


class DefinitionError(StructuralError):
    """Serialized definition is malformed (bad JSON, missing keys)."""

    pass


class GraphCycleError(StructuralError):
    """The node/edge graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cycle detected in workflow graph: {' -> '.join(cycle)}")


class UnknownNodeTypeError(StructuralError):
    """No handler is registered for a node's type tag."""

    def __init__(self, node_type: str, available: list[str] | None = None):
        self.node_type = node_type
        self.available = available or []
        super().__init__(
            f"Unknown node type: {node_type}. Registered types: {', '.join(self.available) or 'none'}"
        )


class MissingNodeError(StructuralError):
    """An edge references a node id that is not declared."""

    def __init__(self, node_id: str, edge: tuple[str, str] | None = None):
        self.node_id = node_id
        self.edge = edge
        where = f" (edge {edge[0]} -> {edge[1]})" if edge else ""
        super().__init__(f"Edge references unknown node: {node_id}{where}")


class DuplicateNodeError(StructuralError):
    """Two nodes share the same id."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Duplicate node id: {node_id}")


class IntegrationNotFoundError(StructuralError):
    """The workflow's integration (external account) does not exist."""

    def __init__(self, integration_id: str):
        self.integration_id = integration_id
        super().__init__(f"Integration not found: {integration_id}")


# =============================================================================
# POLICY REJECTIONS
# =============================================================================


class PolicyRejection(ReplyflowError):
    """
    A safety or filter policy refused to let the run continue.

    No send occurred, so no external state needs compensating.
    """

    default_category = ErrorCategory.POLICY


class RateLimitExceededError(PolicyRejection):
    """The hourly sliding-window limit for an action class is exhausted."""

    def __init__(self, action: str, *, limit: int | None = None, message: str | None = None):
        self.action = action
        self.limit = limit
        if message is None:
            label = "Comment" if action == "comment_reply" else "DM"
            message = f"{label} rate limit exceeded"
            if limit is not None:
                message += f" ({limit}/hour)"
        super().__init__(message)


class ContentSafetyError(PolicyRejection):
    """A rendered message failed the content-safety rules."""

    def __init__(self, reason: str, *, message: str | None = None):
        self.reason = reason
        super().__init__(message or f"Content safety: {reason}")


class FilterNotMatchedError(PolicyRejection):
    """The trigger did not satisfy a filter node.

    Expected traffic rather than a fault: the coordinator records it and
    returns normally.
    """

    pass


# =============================================================================
# EXTERNAL / STORAGE / CONFIG
# =============================================================================


class ExternalActionError(ReplyflowError):
    """The social-messaging provider rejected or failed a call.

    ``message`` carries the provider's own error text when available.
    """

    default_category = ErrorCategory.EXTERNAL

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class StoreUnavailableError(ReplyflowError):
    """The ephemeral counter store could not be reached."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


class ConfigError(ReplyflowError):
    """Configuration is missing or invalid."""

    default_category = ErrorCategory.CONFIG


def categorize_error(error: Exception) -> ErrorCategory:
    """Family of any exception; foreign exceptions count as INTERNAL."""
    if isinstance(error, ReplyflowError):
        return error.category
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ReplyflowError",
    # Structural
    "StructuralError",
    "DefinitionError",
    "GraphCycleError",
    "UnknownNodeTypeError",
    "MissingNodeError",
    "DuplicateNodeError",
    "IntegrationNotFoundError",
    # Policy
    "PolicyRejection",
    "RateLimitExceededError",
    "ContentSafetyError",
    "FilterNotMatchedError",
    # Other
    "ExternalActionError",
    "StoreUnavailableError",
    "ConfigError",
    "categorize_error",
]
