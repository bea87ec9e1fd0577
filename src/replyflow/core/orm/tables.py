"""SQLAlchemy 2.0 ORM table definitions for replyflow.

Column conventions:

* ``*_at`` columns -> timezone-aware ``DateTime``
* ``definition`` / ``trigger`` / ``inputs`` / ``outputs`` -> ``JSON``
* ``is_*`` / ``dm_sent`` -> ``Boolean``
* ``ForeignKey`` declared wherever a row belongs to another row

Tables
------
* ``integrations``         -- connected social accounts (API credential)
* ``workflows``            -- workflow definitions + run statistics
* ``workflow_executions``  -- one row per trigger firing
* ``execution_phases``     -- one row per executed node within a run
* ``comments``             -- triggering items and their side-effect flags
* ``daily_usage``          -- durable per-account per-day action aggregate

Usage::

    from replyflow.core.orm import ReplyflowBase, create_replyflow_engine

    engine = create_replyflow_engine("sqlite:///replyflow.db")
    ReplyflowBase.metadata.create_all(engine)
"""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import JSON, Date, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from replyflow.core.orm.base import ReplyflowBase


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


class IntegrationTable(ReplyflowBase):
    __tablename__ = "integrations"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    platform: Mapped[str] = mapped_column(Text, default="instagram", nullable=False)
    access_token: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(default=_utc_now, nullable=False)


class WorkflowTable(ReplyflowBase):
    __tablename__ = "workflows"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    integration_id: Mapped[str] = mapped_column(
        Text, ForeignKey("integrations.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, default="", nullable=False)
    definition: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    last_run_at: Mapped[datetime.datetime | None] = mapped_column()
    last_run_status: Mapped[str | None] = mapped_column(Text)
    total_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(default=_utc_now, nullable=False)

    # --- relationships ---
    executions: Mapped[list[WorkflowExecutionTable]] = relationship(
        "WorkflowExecutionTable", back_populates="workflow"
    )


class WorkflowExecutionTable(ReplyflowBase):
    __tablename__ = "workflow_executions"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    workflow_id: Mapped[str] = mapped_column(Text, ForeignKey("workflows.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    trigger: Mapped[dict] = mapped_column(JSON, nullable=False)
    definition: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(Text, default="RUNNING", nullable=False)
    error: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime.datetime] = mapped_column(default=_utc_now, nullable=False)
    completed_at: Mapped[datetime.datetime | None] = mapped_column()

    # --- relationships ---
    workflow: Mapped[WorkflowTable] = relationship("WorkflowTable", back_populates="executions")
    phases: Mapped[list[ExecutionPhaseTable]] = relationship(
        "ExecutionPhaseTable",
        back_populates="execution",
        order_by="ExecutionPhaseTable.number",
    )


class ExecutionPhaseTable(ReplyflowBase):
    __tablename__ = "execution_phases"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    workflow_execution_id: Mapped[str] = mapped_column(
        Text, ForeignKey("workflow_executions.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    node: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, default="RUNNING", nullable=False)
    inputs: Mapped[dict | None] = mapped_column(JSON)
    outputs: Mapped[dict | None] = mapped_column(JSON)
    error_message: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime.datetime] = mapped_column(default=_utc_now, nullable=False)
    completed_at: Mapped[datetime.datetime | None] = mapped_column()

    # --- relationships ---
    execution: Mapped[WorkflowExecutionTable] = relationship(
        "WorkflowExecutionTable", back_populates="phases"
    )


class CommentTable(ReplyflowBase):
    __tablename__ = "comments"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    integration_id: Mapped[str | None] = mapped_column(Text, ForeignKey("integrations.id"))
    comment_id: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[str | None] = mapped_column(Text)
    text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_replied: Mapped[bool] = mapped_column(default=False, nullable=False)
    replied_at: Mapped[datetime.datetime | None] = mapped_column()
    reply_text: Mapped[str | None] = mapped_column(Text)
    reply_status: Mapped[str | None] = mapped_column(Text)
    dm_sent: Mapped[bool] = mapped_column(default=False, nullable=False)
    dm_sent_at: Mapped[datetime.datetime | None] = mapped_column()
    workflow_execution_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("workflow_executions.id")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(default=_utc_now, nullable=False)


class DailyUsageTable(ReplyflowBase):
    __tablename__ = "daily_usage"

    account_id: Mapped[str] = mapped_column(Text, primary_key=True)
    day: Mapped[datetime.date] = mapped_column(Date, primary_key=True)
    comments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    dms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    workflow_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        default=_utc_now, onupdate=_utc_now, nullable=False
    )


__all__ = [
    "IntegrationTable",
    "WorkflowTable",
    "WorkflowExecutionTable",
    "ExecutionPhaseTable",
    "CommentTable",
    "DailyUsageTable",
]
