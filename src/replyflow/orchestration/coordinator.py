"""Execution Coordinator - drives one workflow run end to end.

The coordinator is the only writer of run and phase records.  For one
trigger it parses the definition, computes the node order, resolves
every handler, applies the run-level safety gates, then executes nodes
strictly in order, recording a phase per node and a single terminal
status for the run.

ARCHITECTURE
────────────
::

    execute(workflow, trigger)
      │
      ├─ parse definition ───────────── StructuralError (no record)
      ├─ execution_order + resolve handlers ─ StructuralError (no record)
      │
      ├─ safety disabled ──► UNGATED: no rate check, no delay, no content check
      └─ safety enabled
            ├─ outside active hours ──► DEFERRED (no record)
            ├─ daily ceiling reached ─► SKIPPED  (no record)
            └─ EffectiveLimits
      │
      ├─ create run (RUNNING)
      ├─ for node in order: phase RUNNING → SUCCESS | FAILED
      └─ finalize run exactly once: SUCCESS | FAILED
             FilterNotMatchedError → FAILED, returned with filtered=True
             other errors          → FAILED, re-raised

Tags:
    replyflow, orchestration, coordinator, workflow, execution

Doc-Types:
    api-reference
"""

from __future__ import annotations

import datetime
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from replyflow.adapters.instagram import AdapterFactory
from replyflow.core.errors import FilterNotMatchedError, IntegrationNotFoundError
from replyflow.core.logging import LogContext, get_logger
from replyflow.execution.action_tracker import ActionTracker, ActionType
from replyflow.execution.repository import ExecutionRepository, utcnow
from replyflow.orchestration.definition import TriggerEvent, WorkflowDefinition
from replyflow.orchestration.handlers import HandlerRegistry, NodeContext, NodeHandler
from replyflow.orchestration.safety import UNGATED, EffectiveLimits, SafetyPolicyResolver
from replyflow.orchestration.scheduler import execution_order

logger = get_logger(__name__)


class RunStatus(str, Enum):
    """Outcome of :meth:`ExecutionCoordinator.execute`.

    ``DEFERRED`` and ``SKIPPED`` are returned without creating a run record.
    """

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    DEFERRED = "DEFERRED"
    SKIPPED = "SKIPPED"


@dataclass
class PhaseResult:
    number: int
    node_id: str
    node_type: str
    status: RunStatus
    output: dict[str, Any] | None = None
    error: str | None = None


@dataclass
class ExecutionResult:
    """What happened to one trigger."""

    status: RunStatus
    run_id: str | None = None
    phases: list[PhaseResult] = field(default_factory=list)
    output: dict[str, Any] | None = None
    error: str | None = None
    filtered: bool = False
    reason: str | None = None

    @property
    def recorded(self) -> bool:
        return self.run_id is not None


class ExecutionCoordinator:
    """Runs workflows against injected collaborators.

    Args:
        repository: Run/phase persistence and integration lookup
        tracker: Daily ceiling check for the pre-run skip decision
        registry: Node-type → handler
        adapter_factory: Builds the external adapter for an integration
        resolver: Safety policy evaluation
        clock: Aware UTC ``now`` (active hours, warm-up age)
    """

    def __init__(
        self,
        repository: ExecutionRepository,
        tracker: ActionTracker,
        registry: HandlerRegistry,
        adapter_factory: AdapterFactory,
        *,
        resolver: SafetyPolicyResolver | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        self._repository = repository
        self._tracker = tracker
        self._registry = registry
        self._adapter_factory = adapter_factory
        self._resolver = resolver or SafetyPolicyResolver()
        self._clock = clock

    def execute(self, workflow: Any, trigger: TriggerEvent | dict[str, Any]) -> ExecutionResult:
        """Run ``workflow`` (a workflow row) for one trigger event.

        Raises:
            StructuralError: Definition cannot be executed as declared
            PolicyRejection: Rate limit or content safety aborted the run
                (the run is recorded FAILED first)
        """
        if isinstance(trigger, dict):
            trigger = TriggerEvent.from_dict(trigger)

        if isinstance(workflow.definition, str):
            definition = WorkflowDefinition.from_json(workflow.definition)
        else:
            definition = WorkflowDefinition.from_dict(workflow.definition)

        order = execution_order(definition)
        handlers = {node_id: self._registry.get(definition.node(node_id).type) for node_id in order}

        account_id = workflow.integration_id
        integration = self._repository.get_integration(account_id)
        settings = definition.safety

        if settings.enabled:
            now = self._clock()
            if not self._resolver.is_within_active_hours(settings, now):
                logger.info("run.deferred", workflow_id=workflow.id, reason="outside active hours")
                return ExecutionResult(status=RunStatus.DEFERRED, reason="Outside active hours")

            limits = self._resolver.resolve(settings, _account_age_days(integration, now))
            reason = self._daily_ceiling_reason(account_id, definition, handlers, limits)
            if reason is not None:
                logger.info("run.skipped", workflow_id=workflow.id, account_id=account_id, reason=reason)
                return ExecutionResult(status=RunStatus.SKIPPED, reason=reason)
        else:
            logger.warning("run.unsafe_mode", workflow_id=workflow.id)
            limits = UNGATED

        run_id = self._repository.create_execution(
            workflow_id=workflow.id,
            user_id=workflow.user_id,
            trigger=trigger.to_dict(),
            definition=definition.to_dict(),
        )
        result = ExecutionResult(status=RunStatus.RUNNING, run_id=run_id)

        with LogContext(workflow_id=workflow.id, run_id=run_id):
            logger.info("run.start", nodes=len(order), gated=limits.gated)
            adapter = None
            try:
                if integration is None:
                    raise IntegrationNotFoundError(account_id)
                adapter = self._adapter_factory(integration)
                context = NodeContext(
                    workflow_id=workflow.id,
                    run_id=run_id,
                    user_id=workflow.user_id,
                    account_id=account_id,
                    trigger=trigger,
                    settings=settings,
                    limits=limits,
                    adapter=adapter,
                )

                data = dict(trigger.data)
                for number, node_id in enumerate(order, start=1):
                    data = self._run_phase(number, definition.node(node_id), handlers[node_id], data, context, result)
                result.output = data

            except FilterNotMatchedError as exc:
                self._finish(result, RunStatus.FAILED, exc.message)
                result.filtered = True
                result.reason = exc.message
                logger.info("run.filtered", reason=exc.message)
                return result

            except Exception as exc:
                self._finish(result, RunStatus.FAILED, str(exc))
                logger.error("run.failed", error=str(exc), error_type=type(exc).__name__)
                raise

            finally:
                close = getattr(adapter, "close", None)
                if callable(close):
                    close()

            self._finish(result, RunStatus.SUCCESS, None)
            logger.info("run.complete", phases=len(result.phases))
            return result

    def _run_phase(
        self,
        number: int,
        node: Any,
        handler: NodeHandler,
        data: dict[str, Any],
        context: NodeContext,
        result: ExecutionResult,
    ) -> dict[str, Any]:
        phase_id = self._repository.start_phase(
            execution_id=context.run_id,
            user_id=context.user_id,
            number=number,
            node=node.id,
            name=node.type,
            inputs=data,
        )
        logger.debug("phase.start", node_id=node.id, node_type=node.type, number=number)
        try:
            output = handler.execute(node, data, context)
        except Exception as exc:
            self._repository.fail_phase(phase_id, str(exc))
            result.phases.append(PhaseResult(number, node.id, node.type, RunStatus.FAILED, error=str(exc)))
            logger.info("phase.failed", node_id=node.id, error=str(exc))
            raise

        self._repository.complete_phase(phase_id, output)
        result.phases.append(PhaseResult(number, node.id, node.type, RunStatus.SUCCESS, output=output))
        return output

    def _finish(self, result: ExecutionResult, status: RunStatus, error: str | None) -> None:
        self._repository.finalize_execution(result.run_id, status.value, error)
        result.status = status
        result.error = error

    def _daily_ceiling_reason(
        self,
        account_id: str,
        definition: WorkflowDefinition,
        handlers: dict[str, NodeHandler],
        limits: EffectiveLimits,
    ) -> str | None:
        """Reason to skip when today's count for a performed action is at its daily limit."""
        performed: set[ActionType] = set()
        for node_id, handler in handlers.items():
            performed |= handler.actions(definition.node(node_id))
        if not performed:
            return None

        stats = self._tracker.get_daily_stats(account_id)
        for action in sorted(performed, key=lambda a: a.value):
            limit = limits.daily(action)
            if limit is not None and stats.count(action) >= limit:
                label = "comment" if action is ActionType.COMMENT_REPLY else "DM"
                return f"Daily {label} limit reached ({limit})"
        return None


def _account_age_days(integration: Any, now: datetime.datetime) -> int | None:
    created = getattr(integration, "created_at", None)
    if created is None:
        return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=datetime.UTC)
    return (now - created).days


__all__ = [
    "ExecutionCoordinator",
    "ExecutionResult",
    "PhaseResult",
    "RunStatus",
]
