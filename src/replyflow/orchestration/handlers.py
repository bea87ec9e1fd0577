"""Node handlers - polymorphic dispatch by node-type tag.

Each node type owns a handler.  The coordinator resolves every node of a
definition against the :class:`HandlerRegistry` *before* the first node
runs, so an unknown type fails the run before any external call.

ARCHITECTURE
────────────
::

    HandlerRegistry
      ├── .register(node_type, handler)
      ├── .get(node_type)            ─ UnknownNodeTypeError if missing
      └── .list_types()

    NodeHandler (Protocol)
      ├── FilterNodeHandler          IG_USER_COMMENT  keyword include/exclude
      └── SendMessageNodeHandler     IG_SEND_MSG      comment reply + DM

    Send steps (gated run):
      (a) hourly rate limit per action class   → RateLimitExceededError
      (b) random delay unless opted out
      (c) content check of reply and DM text   → ContentSafetyError
          (both run before the first send)
      (d) adapter call                         (ExternalActionError logged)
      (e) ActionTracker.track_action
      (f) side-effect flags on the comment row

Tags:
    replyflow, orchestration, handlers, registry, dispatch

Doc-Types:
    api-reference
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from replyflow.adapters.instagram import ExternalActionAdapter
from replyflow.core.errors import (
    ContentSafetyError,
    ExternalActionError,
    FilterNotMatchedError,
    RateLimitExceededError,
    UnknownNodeTypeError,
)
from replyflow.core.logging import get_logger
from replyflow.execution.action_tracker import ActionTracker, ActionType
from replyflow.execution.rate_limit import HOUR_MS, RateLimitOptions, SlidingWindowRateLimiter
from replyflow.execution.repository import ExecutionRepository
from replyflow.orchestration.definition import (
    FILTER_NODE,
    SEND_NODE,
    Node,
    SafetyOverride,
    SafetySettings,
    TriggerEvent,
)
from replyflow.orchestration.safety import EffectiveLimits, SafetyPolicyResolver

logger = get_logger(__name__)


@dataclass
class NodeContext:
    """Everything a handler may consult while running one node."""

    workflow_id: str
    run_id: str
    user_id: str
    account_id: str
    trigger: TriggerEvent
    settings: SafetySettings
    limits: EffectiveLimits
    adapter: ExternalActionAdapter

    @property
    def gated(self) -> bool:
        return self.limits.gated


class NodeHandler(Protocol):
    """Executes one node type."""

    def actions(self, node: Node) -> set[ActionType]:
        """Externally visible action classes this node would perform."""
        ...

    def execute(self, node: Node, data: dict[str, Any], context: NodeContext) -> dict[str, Any]:
        """Run the node on the previous node's output and return this node's output."""
        ...


class HandlerRegistry:
    """Injectable node-type → handler lookup.

    Example:
        >>> registry = HandlerRegistry()
        >>> registry.register("IG_USER_COMMENT", FilterNodeHandler())
        >>> registry.get("IG_USER_COMMENT")
    """

    def __init__(self):
        self._handlers: dict[str, NodeHandler] = {}

    def register(self, node_type: str, handler: NodeHandler) -> None:
        self._handlers[node_type] = handler

    def get(self, node_type: str) -> NodeHandler:
        """Get the handler for a node type.

        Raises:
            UnknownNodeTypeError: If nothing is registered for ``node_type``
        """
        try:
            return self._handlers[node_type]
        except KeyError:
            raise UnknownNodeTypeError(node_type, self.list_types()) from None

    def has(self, node_type: str) -> bool:
        return node_type in self._handlers

    def list_types(self) -> list[str]:
        return sorted(self._handlers)


# =============================================================================
# Filter
# =============================================================================


class FilterNodeHandler:
    """Case-insensitive keyword gate on the trigger text.

    Passes when any include keyword occurs (or none are configured) and no
    exclude keyword occurs.  The input flows through unchanged.
    """

    def actions(self, node: Node) -> set[ActionType]:
        return set()

    def execute(self, node: Node, data: dict[str, Any], context: NodeContext) -> dict[str, Any]:
        config = node.config.get("igUserCommentData") or {}
        text = str(data.get("text") or context.trigger.text).lower()

        include = [k for k in config.get("includeKeywords") or [] if k]
        if include and not any(keyword.lower() in text for keyword in include):
            raise FilterNotMatchedError("Comment does not match include keywords")

        exclude = [k for k in config.get("excludeKeywords") or [] if k]
        if any(keyword.lower() in text for keyword in exclude):
            raise FilterNotMatchedError("Comment matches exclude keywords")

        return dict(data)


# =============================================================================
# Send
# =============================================================================


@dataclass(frozen=True)
class _SendConfig:
    replies: list[str]
    dm_message: str | None
    buttons: list[dict[str, Any]]
    override: SafetyOverride

    @classmethod
    def from_node(cls, node: Node) -> _SendConfig:
        config = node.config.get("igReplyData") or {}
        buttons = [
            {key: value for key, value in button.items() if key != "enabled"}
            for button in config.get("buttons") or []
            if button.get("enabled")
        ]
        return cls(
            replies=[reply for reply in config.get("publicReplies") or [] if reply],
            dm_message=config.get("dmMessage") or None,
            buttons=buttons,
            override=SafetyOverride.from_dict(config.get("safetyOverride")),
        )


class SendMessageNodeHandler:
    """Public comment reply and/or follow-up direct message.

    Args:
        limiter: Hourly per-action-class windows
        tracker: Usage accounting after each successful send
        repository: Writes the side-effect flags on the comment row
        resolver: Content checks and delay sampling
        sleep: Blocking wait in seconds (tests inject a recorder)
        rng: Picks the reply template on gated runs
    """

    def __init__(
        self,
        limiter: SlidingWindowRateLimiter,
        tracker: ActionTracker,
        repository: ExecutionRepository,
        resolver: SafetyPolicyResolver,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ):
        self._limiter = limiter
        self._tracker = tracker
        self._repository = repository
        self._resolver = resolver
        self._sleep = sleep
        self._rng = rng or random.Random()

    def actions(self, node: Node) -> set[ActionType]:
        config = _SendConfig.from_node(node)
        performed = set()
        if config.replies:
            performed.add(ActionType.COMMENT_REPLY)
        if config.dm_message:
            performed.add(ActionType.DM_SEND)
        return performed

    def execute(self, node: Node, data: dict[str, Any], context: NodeContext) -> dict[str, Any]:
        config = _SendConfig.from_node(node)
        trigger = context.trigger.data
        comment_id = trigger.get("commentId")
        recipient = trigger.get("userId")
        results: dict[str, Any] = {"commentReplied": False, "dmSent": False}

        reply_text = None
        if config.replies:
            if comment_id:
                reply_text = self._rng.choice(config.replies) if context.gated else config.replies[0]
            else:
                logger.info("send.reply_skipped", node_id=node.id, reason="trigger has no commentId")
        dm_text = None
        if config.dm_message:
            if recipient:
                dm_text = config.dm_message
            else:
                logger.info("send.dm_skipped", node_id=node.id, reason="trigger has no userId")

        if context.gated:
            planned = set()
            if reply_text is not None:
                planned.add(ActionType.COMMENT_REPLY)
            if dm_text is not None:
                planned.add(ActionType.DM_SEND)
            for action in sorted(planned, key=lambda a: a.value):
                self._check_rate(context, action)
            if planned and context.settings.delays.enabled and not config.override.skip_delay:
                delay_ms = config.override.custom_delay_ms
                if delay_ms is None:
                    delay_ms = self._resolver.random_delay_ms(context.settings.delays, self._rng)
                self._wait(delay_ms, node, "before_send")

        # both texts are checked before anything is sent
        if reply_text is not None:
            self._check_content(context, config, reply_text, "Content safety")
        if dm_text is not None:
            self._check_content(context, config, dm_text, "DM content safety")

        if reply_text is not None:
            try:
                context.adapter.reply_to_comment(str(comment_id), reply_text)
            except ExternalActionError as exc:
                logger.error("send.comment_reply_failed", node_id=node.id, run_id=context.run_id, error=exc.message)
            else:
                self._tracker.track_action(context.account_id, ActionType.COMMENT_REPLY)
                if trigger.get("id"):
                    self._repository.mark_comment_replied(
                        str(trigger["id"]), execution_id=context.run_id, reply_text=reply_text
                    )
                results["commentReplied"] = True
                results["replyText"] = reply_text

        if dm_text is not None:
            if (
                reply_text is not None
                and context.gated
                and context.settings.delays.enabled
                and not config.override.skip_delay
            ):
                self._wait(context.settings.delays.between_comment_and_dm_ms, node, "before_dm")
            try:
                context.adapter.send_direct_message(str(recipient), dm_text, buttons=config.buttons or None)
            except ExternalActionError as exc:
                logger.error("send.dm_failed", node_id=node.id, run_id=context.run_id, error=exc.message)
            else:
                self._tracker.track_action(context.account_id, ActionType.DM_SEND)
                if trigger.get("id"):
                    self._repository.mark_dm_sent(str(trigger["id"]), execution_id=context.run_id)
                results["dmSent"] = True

        return results

    def _check_rate(self, context: NodeContext, action: ActionType) -> None:
        limit = context.limits.hourly(action)
        options = RateLimitOptions(max_requests=limit, window_ms=HOUR_MS)
        if not self._limiter.check_limit(context.account_id, action.value, options):
            raise RateLimitExceededError(action.value, limit=limit).with_context(
                workflow_id=context.workflow_id,
                run_id=context.run_id,
                account_id=context.account_id,
                action=action.value,
            )

    def _check_content(self, context: NodeContext, config: _SendConfig, text: str, label: str) -> None:
        rules = context.settings.content_safety
        if not context.gated or not rules.enabled or config.override.skip_content_check:
            return
        check = self._resolver.check_content(text, rules)
        if not check.safe:
            raise ContentSafetyError(check.reason or "unsafe content", message=f"{label}: {check.reason}")

    def _wait(self, delay_ms: int, node: Node, reason: str) -> None:
        logger.debug("send.delay", node_id=node.id, delay_ms=delay_ms, reason=reason)
        self._sleep(delay_ms / 1000)


def default_registry(send_handler: SendMessageNodeHandler) -> HandlerRegistry:
    """Registry with the built-in filter and send handlers."""
    registry = HandlerRegistry()
    registry.register(FILTER_NODE, FilterNodeHandler())
    registry.register(SEND_NODE, send_handler)
    return registry


__all__ = [
    "FilterNodeHandler",
    "HandlerRegistry",
    "NodeContext",
    "NodeHandler",
    "SendMessageNodeHandler",
    "default_registry",
]
