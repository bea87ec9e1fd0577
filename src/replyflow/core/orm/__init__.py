"""SQLAlchemy ORM layer for the durable store."""

from replyflow.core.orm.base import ReplyflowBase
from replyflow.core.orm.session import (
    ReplyflowSession,
    create_replyflow_engine,
    session_factory,
    session_scope,
)
from replyflow.core.orm.tables import (
    CommentTable,
    DailyUsageTable,
    ExecutionPhaseTable,
    IntegrationTable,
    WorkflowExecutionTable,
    WorkflowTable,
)

__all__ = [
    "ReplyflowBase",
    "ReplyflowSession",
    "create_replyflow_engine",
    "session_factory",
    "session_scope",
    "CommentTable",
    "DailyUsageTable",
    "ExecutionPhaseTable",
    "IntegrationTable",
    "WorkflowExecutionTable",
    "WorkflowTable",
]
