"""Workflow graph, safety policy, node handlers and the run coordinator."""

from replyflow.orchestration.coordinator import ExecutionCoordinator, ExecutionResult, PhaseResult, RunStatus
from replyflow.orchestration.definition import (
    Edge,
    Node,
    SafetyOverride,
    SafetySettings,
    TriggerEvent,
    WorkflowDefinition,
)
from replyflow.orchestration.handlers import (
    FilterNodeHandler,
    HandlerRegistry,
    NodeContext,
    NodeHandler,
    SendMessageNodeHandler,
)
from replyflow.orchestration.safety import RECOMMENDED_LIMITS, UNGATED, EffectiveLimits, SafetyPolicyResolver
from replyflow.orchestration.scheduler import execution_order

__all__ = [
    "ExecutionCoordinator",
    "ExecutionResult",
    "PhaseResult",
    "RunStatus",
    "Edge",
    "Node",
    "SafetyOverride",
    "SafetySettings",
    "TriggerEvent",
    "WorkflowDefinition",
    "FilterNodeHandler",
    "HandlerRegistry",
    "NodeContext",
    "NodeHandler",
    "SendMessageNodeHandler",
    "RECOMMENDED_LIMITS",
    "UNGATED",
    "EffectiveLimits",
    "SafetyPolicyResolver",
    "execution_order",
]
