"""Execution Repository - durable records for workflow runs.

Manifesto:
The coordinator is the only writer of run and phase records.  It never
touches the ORM directly; every write goes through this repository so
that the "terminal status is written exactly once" rule lives in one
place.

ARCHITECTURE
────────────
::

    ExecutionRepository(sessions)
      ├── .get_integration              ─ lookup
      ├── .create_execution()                  ─ RUNNING row
      ├── .start_phase / .complete_phase / .fail_phase
      ├── .finalize_execution()                ─ conditional terminal write
      │        └── workflow stats + daily_usage.workflow_runs
      ├── .mark_comment_replied / .mark_dm_sent
      └── .get_workflow_metrics(limit)         ─ analytics

    UsageRepository(sessions)
      ├── .increment(account, day, ...)        ─ upsert + increment
      ├── .get_day(account, day)
      └── .get_range(account, start, end)

Related modules:
    action_tracker.py     - writes the durable daily aggregate
    orchestration/coordinator.py - sole caller of the run/phase writes

Example::

    repo = ExecutionRepository(session_factory(engine))
    run_id = repo.create_execution(workflow_id="wf-1", user_id="u-1",
                                   trigger={...}, definition={...})
    repo.finalize_execution(run_id, "SUCCESS")

Tags:
    replyflow, execution, repository, persistence, sqlalchemy

Doc-Types:
    api-reference
"""

from __future__ import annotations

import datetime
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from replyflow.core.logging import get_logger
from replyflow.core.orm import (
    CommentTable,
    DailyUsageTable,
    ExecutionPhaseTable,
    IntegrationTable,
    WorkflowExecutionTable,
    WorkflowTable,
    session_scope,
)

logger = get_logger(__name__)

RUNNING = "RUNNING"
SUCCESS = "SUCCESS"
FAILED = "FAILED"


def utcnow() -> datetime.datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.UTC)


# ------------------------------------------------------------------ #
# Daily usage upsert
# ------------------------------------------------------------------ #


def upsert_daily_usage(
    session: Session,
    account_id: str,
    day: datetime.date,
    *,
    comments: int = 0,
    dms: int = 0,
    workflow_runs: int = 0,
) -> None:
    """Insert the (account, day) row or increment its counters in place.

    Uses ``INSERT ... ON CONFLICT DO UPDATE`` on SQLite and PostgreSQL so
    concurrent writers never lose an increment.  Other dialects fall back
    to a locked read-modify-write inside the caller's transaction.
    """
    values = {
        "account_id": account_id,
        "day": day,
        "comments": comments,
        "dms": dms,
        "workflow_runs": workflow_runs,
        "updated_at": utcnow(),
    }
    dialect = session.get_bind().dialect.name
    if dialect in ("sqlite", "postgresql"):
        insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
        stmt = insert(DailyUsageTable).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DailyUsageTable.account_id, DailyUsageTable.day],
            set_={
                "comments": DailyUsageTable.comments + stmt.excluded.comments,
                "dms": DailyUsageTable.dms + stmt.excluded.dms,
                "workflow_runs": DailyUsageTable.workflow_runs + stmt.excluded.workflow_runs,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        session.execute(stmt)
        return

    row = session.execute(
        select(DailyUsageTable)
        .where(DailyUsageTable.account_id == account_id, DailyUsageTable.day == day)
        .with_for_update()
    ).scalar_one_or_none()
    if row is None:
        session.add(DailyUsageTable(**values))
    else:
        row.comments += comments
        row.dms += dms
        row.workflow_runs += workflow_runs
        row.updated_at = values["updated_at"]


@dataclass(frozen=True)
class DailyUsage:
    """Durable per-day counters for one account."""

    account_id: str
    day: datetime.date
    comments: int = 0
    dms: int = 0
    workflow_runs: int = 0

    @property
    def total(self) -> int:
        return self.comments + self.dms


class UsageRepository:
    """Read/write access to the ``daily_usage`` aggregate."""

    def __init__(self, sessions: sessionmaker):
        self._sessions = sessions

    def increment(
        self,
        account_id: str,
        day: datetime.date,
        *,
        comments: int = 0,
        dms: int = 0,
        workflow_runs: int = 0,
    ) -> None:
        with session_scope(self._sessions) as session:
            upsert_daily_usage(
                session,
                account_id,
                day,
                comments=comments,
                dms=dms,
                workflow_runs=workflow_runs,
            )

    def get_day(self, account_id: str, day: datetime.date) -> DailyUsage:
        """Counters for one day (zeros when no row exists)."""
        with session_scope(self._sessions) as session:
            row = session.get(DailyUsageTable, (account_id, day))
            if row is None:
                return DailyUsage(account_id=account_id, day=day)
            return _to_usage(row)

    def get_range(self, account_id: str, start: datetime.date, end: datetime.date) -> list[DailyUsage]:
        """Rows with ``start <= day <= end``, oldest first. Missing days are omitted."""
        with session_scope(self._sessions) as session:
            rows = session.execute(
                select(DailyUsageTable)
                .where(
                    DailyUsageTable.account_id == account_id,
                    DailyUsageTable.day >= start,
                    DailyUsageTable.day <= end,
                )
                .order_by(DailyUsageTable.day)
            ).scalars()
            return [_to_usage(row) for row in rows]


def _to_usage(row: DailyUsageTable) -> DailyUsage:
    return DailyUsage(
        account_id=row.account_id,
        day=row.day,
        comments=row.comments,
        dms=row.dms,
        workflow_runs=row.workflow_runs,
    )


# ------------------------------------------------------------------ #
# Execution records
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class WorkflowMetrics:
    """Aggregate outcome of a workflow's most recent runs."""

    workflow_id: str
    total_executions: int
    successful_executions: int
    failed_executions: int
    success_rate: float
    average_duration_ms: float
    last_executed: datetime.datetime | None
    last_success: datetime.datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "total_executions": self.total_executions,
            "successful_executions": self.successful_executions,
            "failed_executions": self.failed_executions,
            "success_rate": self.success_rate,
            "average_duration_ms": self.average_duration_ms,
            "last_executed": self.last_executed.isoformat() if self.last_executed else None,
            "last_success": self.last_success.isoformat() if self.last_success else None,
        }


class ExecutionRepository:
    """Run, phase and side-effect persistence for the coordinator."""

    def __init__(self, sessions: sessionmaker, *, clock: Callable[[], datetime.datetime] = utcnow):
        """Initialize with a session factory.

        Args:
            sessions: ``sessionmaker`` bound to the durable store
            clock: Returns the current aware UTC datetime (tests inject one)
        """
        self._sessions = sessions
        self._clock = clock

    # -- lookups --------------------------------------------------------

    def get_integration(self, integration_id: str) -> IntegrationTable | None:
        with session_scope(self._sessions) as session:
            return session.get(IntegrationTable, integration_id)

    def get_execution(self, execution_id: str) -> WorkflowExecutionTable | None:
        with session_scope(self._sessions) as session:
            execution = session.get(WorkflowExecutionTable, execution_id)
            if execution is not None:
                # load while the session is open
                list(execution.phases)
            return execution

    def list_phases(self, execution_id: str) -> list[ExecutionPhaseTable]:
        with session_scope(self._sessions) as session:
            return list(
                session.execute(
                    select(ExecutionPhaseTable)
                    .where(ExecutionPhaseTable.workflow_execution_id == execution_id)
                    .order_by(ExecutionPhaseTable.number)
                ).scalars()
            )

    # -- runs -----------------------------------------------------------

    def create_execution(
        self,
        *,
        workflow_id: str,
        user_id: str,
        trigger: dict[str, Any],
        definition: dict[str, Any],
    ) -> str:
        """Insert a RUNNING execution row and return its id."""
        with session_scope(self._sessions) as session:
            execution = WorkflowExecutionTable(
                workflow_id=workflow_id,
                user_id=user_id,
                trigger=trigger,
                definition=definition,
                status=RUNNING,
                started_at=self._clock(),
            )
            session.add(execution)
            session.flush()
            return execution.id

    def finalize_execution(self, execution_id: str, status: str, error: str | None = None) -> bool:
        """Write the terminal status if the run is still RUNNING.

        Workflow statistics and the durable ``workflow_runs`` counter are
        bumped in the same transaction, and only when this call is the one
        that moved the run out of RUNNING.

        Returns:
            True if this call finalized the run, False if it was already
            terminal (no changes made).
        """
        if status not in (SUCCESS, FAILED):
            raise ValueError(f"Not a terminal status: {status}")

        now = self._clock()
        with session_scope(self._sessions) as session:
            result = session.execute(
                update(WorkflowExecutionTable)
                .where(
                    WorkflowExecutionTable.id == execution_id,
                    WorkflowExecutionTable.status == RUNNING,
                )
                .values(status=status, completed_at=now, error=error)
            )
            if result.rowcount != 1:
                logger.warning("run.already_finalized", run_id=execution_id, status=status)
                return False

            workflow_id = session.execute(
                select(WorkflowExecutionTable.workflow_id).where(WorkflowExecutionTable.id == execution_id)
            ).scalar_one()
            session.execute(
                update(WorkflowTable)
                .where(WorkflowTable.id == workflow_id)
                .values(
                    last_run_at=now,
                    last_run_status=status,
                    total_runs=WorkflowTable.total_runs + 1,
                    successful_runs=WorkflowTable.successful_runs + (1 if status == SUCCESS else 0),
                )
            )
            account_id = session.execute(
                select(WorkflowTable.integration_id).where(WorkflowTable.id == workflow_id)
            ).scalar_one_or_none()
            if account_id is not None:
                upsert_daily_usage(session, account_id, now.date(), workflow_runs=1)
            return True

    # -- phases ---------------------------------------------------------

    def start_phase(
        self,
        *,
        execution_id: str,
        user_id: str,
        number: int,
        node: str,
        name: str,
        inputs: dict[str, Any] | None,
    ) -> str:
        with session_scope(self._sessions) as session:
            phase = ExecutionPhaseTable(
                workflow_execution_id=execution_id,
                user_id=user_id,
                number=number,
                node=node,
                name=name,
                status=RUNNING,
                inputs=inputs,
                started_at=self._clock(),
            )
            session.add(phase)
            session.flush()
            return phase.id

    def complete_phase(self, phase_id: str, outputs: dict[str, Any] | None) -> None:
        self._close_phase(phase_id, SUCCESS, outputs=outputs)

    def fail_phase(self, phase_id: str, error_message: str) -> None:
        self._close_phase(phase_id, FAILED, error_message=error_message)

    def _close_phase(self, phase_id: str, status: str, **values: Any) -> None:
        with session_scope(self._sessions) as session:
            session.execute(
                update(ExecutionPhaseTable)
                .where(ExecutionPhaseTable.id == phase_id, ExecutionPhaseTable.status == RUNNING)
                .values(status=status, completed_at=self._clock(), **values)
            )

    # -- side effects on the triggering comment -------------------------

    def mark_comment_replied(self, comment_id: str, *, execution_id: str | None, reply_text: str) -> bool:
        """Flag the comment row as replied. False when no such row exists."""
        return self._update_comment(
            comment_id,
            is_replied=True,
            replied_at=self._clock(),
            reply_text=reply_text,
            reply_status=SUCCESS,
            workflow_execution_id=execution_id,
        )

    def mark_dm_sent(self, comment_id: str, *, execution_id: str | None) -> bool:
        return self._update_comment(
            comment_id,
            dm_sent=True,
            dm_sent_at=self._clock(),
            workflow_execution_id=execution_id,
        )

    def _update_comment(self, comment_id: str, **values: Any) -> bool:
        with session_scope(self._sessions) as session:
            result = session.execute(
                update(CommentTable).where(CommentTable.id == comment_id).values(**values)
            )
            if result.rowcount == 0:
                logger.warning("comment.not_found", comment_id=comment_id)
                return False
            return True

    # -- analytics ------------------------------------------------------

    def get_workflow_metrics(self, workflow_id: str, limit: int = 100) -> WorkflowMetrics:
        """Outcome statistics over the ``limit`` most recent runs."""
        with session_scope(self._sessions) as session:
            rows = session.execute(
                select(
                    WorkflowExecutionTable.status,
                    WorkflowExecutionTable.started_at,
                    WorkflowExecutionTable.completed_at,
                )
                .where(WorkflowExecutionTable.workflow_id == workflow_id)
                .order_by(WorkflowExecutionTable.started_at.desc())
                .limit(limit)
            ).all()

        total = len(rows)
        successful = sum(1 for row in rows if row.status == SUCCESS)
        failed = sum(1 for row in rows if row.status == FAILED)
        durations = [
            (row.completed_at - row.started_at).total_seconds() * 1000
            for row in rows
            if row.completed_at is not None
        ]
        last_success = next((row.started_at for row in rows if row.status == SUCCESS), None)

        return WorkflowMetrics(
            workflow_id=workflow_id,
            total_executions=total,
            successful_executions=successful,
            failed_executions=failed,
            success_rate=(successful / total * 100) if total else 0.0,
            average_duration_ms=(sum(durations) / len(durations)) if durations else 0.0,
            last_executed=rows[0].started_at if rows else None,
            last_success=last_success,
        )

    def count_executions(self, workflow_id: str) -> int:
        with session_scope(self._sessions) as session:
            return session.execute(
                select(func.count())
                .select_from(WorkflowExecutionTable)
                .where(WorkflowExecutionTable.workflow_id == workflow_id)
            ).scalar_one()


__all__ = [
    "RUNNING",
    "SUCCESS",
    "FAILED",
    "DailyUsage",
    "ExecutionRepository",
    "UsageRepository",
    "WorkflowMetrics",
    "upsert_daily_usage",
]
