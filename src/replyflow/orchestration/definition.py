"""Workflow definition: the node/edge graph and its safety settings.

A definition is the JSON document the flow editor saves on a workflow
row.  It is parsed once per run and never mutated afterwards::

    {
      "safetySettings": {"enabled": true, "useRecommendedLimits": true, ...},
      "nodes": [{"id": "n1", "type": "FlowScrapeNode",
                 "data": {"type": "IG_USER_COMMENT", "igUserCommentData": {...}}}],
      "edges": [{"source": "n1", "target": "n2"}]
    }

Parsing validates what can be validated without the handler registry:
node ids are unique and every edge points at a declared node.  Cycles
are detected by :func:`replyflow.orchestration.scheduler.execution_order`.

Tags:
    replyflow, orchestration, workflow, definition, serialization

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from replyflow.core.errors import DefinitionError, DuplicateNodeError, MissingNodeError

FILTER_NODE = "IG_USER_COMMENT"
SEND_NODE = "IG_SEND_MSG"


def _int_or_none(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise DefinitionError(f"Expected an integer, got {value!r}", cause=exc) from exc


# =============================================================================
# Safety settings
# =============================================================================


@dataclass(frozen=True)
class CustomLimits:
    """Per-workflow limits; ``None`` means "use the recommended value"."""

    comments_per_hour: int | None = None
    comments_per_day: int | None = None
    dms_per_hour: int | None = None
    dms_per_day: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CustomLimits:
        return cls(
            comments_per_hour=_int_or_none(data.get("commentsPerHour")),
            comments_per_day=_int_or_none(data.get("commentsPerDay")),
            dms_per_hour=_int_or_none(data.get("dmsPerHour")),
            dms_per_day=_int_or_none(data.get("dmsPerDay")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "commentsPerHour": self.comments_per_hour,
            "commentsPerDay": self.comments_per_day,
            "dmsPerHour": self.dms_per_hour,
            "dmsPerDay": self.dms_per_day,
        }


@dataclass(frozen=True)
class ActiveHours:
    """Local-clock window ``[start_hour, end_hour)``; wraps midnight when start > end."""

    enabled: bool = False
    start_hour: int = 9
    end_hour: int = 22
    timezone: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActiveHours:
        start = _int_or_none(data.get("startHour"))
        end = _int_or_none(data.get("endHour"))
        return cls(
            enabled=bool(data.get("enabled", False)),
            start_hour=9 if start is None else start,
            end_hour=22 if end is None else end,
            timezone=data.get("timezone") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "startHour": self.start_hour,
            "endHour": self.end_hour,
            "timezone": self.timezone,
        }


@dataclass(frozen=True)
class DelaySettings:
    enabled: bool = False
    min_delay_ms: int = 5000
    max_delay_ms: int = 15000
    between_comment_and_dm_ms: int = 5000

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DelaySettings:
        min_delay = _int_or_none(data.get("minDelay"))
        max_delay = _int_or_none(data.get("maxDelay"))
        between = _int_or_none(data.get("betweenCommentAndDm"))
        return cls(
            enabled=bool(data.get("enabled", False)),
            min_delay_ms=min_delay or 5000,
            max_delay_ms=max_delay or 15000,
            between_comment_and_dm_ms=5000 if between is None else between,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "minDelay": self.min_delay_ms,
            "maxDelay": self.max_delay_ms,
            "betweenCommentAndDm": self.between_comment_and_dm_ms,
        }


@dataclass(frozen=True)
class ContentSafetyRules:
    """Content rules; a ``None`` maximum disables that rule."""

    enabled: bool = False
    check_banned_phrases: bool = False
    max_mentions: int | None = None
    max_hashtags: int | None = None
    max_urls: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentSafetyRules:
        return cls(
            enabled=bool(data.get("enabled", False)),
            check_banned_phrases=bool(data.get("checkBannedPhrases", False)),
            max_mentions=_int_or_none(data.get("maxMentions")),
            max_hashtags=_int_or_none(data.get("maxHashtags")),
            max_urls=_int_or_none(data.get("maxUrls")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "checkBannedPhrases": self.check_banned_phrases,
            "maxMentions": self.max_mentions,
            "maxHashtags": self.max_hashtags,
            "maxUrls": self.max_urls,
        }


@dataclass(frozen=True)
class WarmupSettings:
    """Caps daily limits while the integration is younger than ``days``."""

    enabled: bool = False
    days: int = 3
    actions_per_day: int = 10

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WarmupSettings:
        days = _int_or_none(data.get("days"))
        per_day = _int_or_none(data.get("actionsPerDay"))
        return cls(
            enabled=bool(data.get("enabled", False)),
            days=3 if days is None else days,
            actions_per_day=10 if per_day is None else per_day,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "days": self.days, "actionsPerDay": self.actions_per_day}


@dataclass(frozen=True)
class SafetySettings:
    """Declared safety mode of a workflow.

    When ``enabled`` is False every sub-policy is ignored and no action is
    gated.
    """

    enabled: bool = False
    use_recommended_limits: bool = True
    custom_limits: CustomLimits | None = None
    active_hours: ActiveHours = field(default_factory=ActiveHours)
    delays: DelaySettings = field(default_factory=DelaySettings)
    content_safety: ContentSafetyRules = field(default_factory=ContentSafetyRules)
    warmup: WarmupSettings = field(default_factory=WarmupSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SafetySettings:
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise DefinitionError("safetySettings must be an object")
        custom = data.get("customLimits")
        return cls(
            enabled=bool(data.get("enabled", False)),
            use_recommended_limits=bool(data.get("useRecommendedLimits", custom is None)),
            custom_limits=CustomLimits.from_dict(custom) if custom else None,
            active_hours=ActiveHours.from_dict(data.get("activeHours") or {}),
            delays=DelaySettings.from_dict(data.get("delays") or {}),
            content_safety=ContentSafetyRules.from_dict(data.get("contentSafety") or {}),
            warmup=WarmupSettings.from_dict(data.get("warmupMode") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "enabled": self.enabled,
            "useRecommendedLimits": self.use_recommended_limits,
            "activeHours": self.active_hours.to_dict(),
            "delays": self.delays.to_dict(),
            "contentSafety": self.content_safety.to_dict(),
            "warmupMode": self.warmup.to_dict(),
        }
        if self.custom_limits is not None:
            result["customLimits"] = self.custom_limits.to_dict()
        return result


@dataclass(frozen=True)
class SafetyOverride:
    """Per-send-node opt-outs."""

    skip_delay: bool = False
    skip_content_check: bool = False
    custom_delay_ms: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SafetyOverride:
        data = data or {}
        return cls(
            skip_delay=bool(data.get("skipDelay", False)),
            skip_content_check=bool(data.get("skipContentCheck", False)),
            custom_delay_ms=_int_or_none(data.get("customDelay")),
        )


# =============================================================================
# Graph
# =============================================================================


@dataclass(frozen=True)
class Node:
    """A unit of work.

    Attributes:
        id: Unique within the definition
        type: Node-type tag used for handler dispatch (``data.type``)
        config: The node's ``data`` object, read-only
        kind: Editor component name (``FlowScrapeNode``), informational
    """

    id: str
    type: str
    config: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    kind: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        if not isinstance(data, dict) or "id" not in data:
            raise DefinitionError(f"Node must be an object with an 'id': {data!r}")
        config = data.get("data") or {}
        node_type = config.get("type")
        if not node_type:
            raise DefinitionError(f"Node {data['id']} has no data.type")
        return cls(id=str(data["id"]), type=node_type, config=MappingProxyType(dict(config)), kind=data.get("type"))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"id": self.id, "data": dict(self.config)}
        if self.kind is not None:
            result["type"] = self.kind
        return result


@dataclass(frozen=True)
class Edge:
    """Directed dependency: ``target`` runs after ``source``."""

    source: str
    target: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        try:
            return cls(source=str(data["source"]), target=str(data["target"]))
        except (KeyError, TypeError) as exc:
            raise DefinitionError(f"Edge must have 'source' and 'target': {data!r}", cause=exc) from exc

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "target": self.target}


@dataclass(frozen=True)
class WorkflowDefinition:
    """Immutable node/edge graph plus safety settings."""

    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()
    safety: SafetySettings = field(default_factory=SafetySettings)

    def __post_init__(self):
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise DuplicateNodeError(node.id)
            seen.add(node.id)
        for edge in self.edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in seen:
                    raise MissingNodeError(endpoint, (edge.source, edge.target))

    def node(self, node_id: str) -> Node:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise MissingNodeError(node_id)

    def nodes_of_type(self, node_type: str) -> list[Node]:
        return [node for node in self.nodes if node.type == node_type]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowDefinition:
        if not isinstance(data, dict):
            raise DefinitionError("Workflow definition must be an object")
        nodes = data.get("nodes") or []
        edges = data.get("edges") or []
        if not isinstance(nodes, list) or not isinstance(edges, list):
            raise DefinitionError("'nodes' and 'edges' must be lists")
        return cls(
            nodes=tuple(Node.from_dict(n) for n in nodes),
            edges=tuple(Edge.from_dict(e) for e in edges),
            safety=SafetySettings.from_dict(data.get("safetySettings")),
        )

    @classmethod
    def from_json(cls, text: str) -> WorkflowDefinition:
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise DefinitionError(f"Workflow definition is not valid JSON: {exc}", cause=exc) from exc
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "safetySettings": self.safety.to_dict(),
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


# =============================================================================
# Trigger
# =============================================================================


@dataclass(frozen=True)
class TriggerEvent:
    """Inbound event that starts a run.

    ``data`` carries at least ``id`` (comment row id), ``text``,
    ``userId`` (commenter) and ``commentId`` (provider comment id).
    """

    type: str
    data: dict[str, Any]

    @property
    def text(self) -> str:
        return str(self.data.get("text") or "")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TriggerEvent:
        return cls(type=str(data.get("type", "comment")), data=dict(data.get("data") or {}))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": dict(self.data)}


__all__ = [
    "FILTER_NODE",
    "SEND_NODE",
    "ActiveHours",
    "ContentSafetyRules",
    "CustomLimits",
    "DelaySettings",
    "Edge",
    "Node",
    "SafetyOverride",
    "SafetySettings",
    "TriggerEvent",
    "WarmupSettings",
    "WorkflowDefinition",
]
