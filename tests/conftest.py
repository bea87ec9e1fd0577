"""
Shared pytest fixtures for replyflow tests.

This module provides:
- A controllable clock shared by the stores, tracker and repository
- An in-memory SQLite durable store with the schema created
- Seeded integration / workflow / comment rows
- A fully wired coordinator with a mocked external adapter

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(coordinator, make_workflow, adapter):
            ...
"""

from __future__ import annotations

import datetime
import json
import random
from unittest.mock import MagicMock

import pytest

from replyflow.core.orm import (
    CommentTable,
    IntegrationTable,
    ReplyflowBase,
    WorkflowTable,
    create_replyflow_engine,
    session_factory,
    session_scope,
)
from replyflow.core.store import InMemoryStore
from replyflow.execution.action_tracker import ActionTracker
from replyflow.execution.rate_limit import SlidingWindowRateLimiter
from replyflow.execution.repository import ExecutionRepository, UsageRepository
from replyflow.orchestration.coordinator import ExecutionCoordinator
from replyflow.orchestration.handlers import SendMessageNodeHandler, default_registry
from replyflow.orchestration.safety import SafetyPolicyResolver
from tests._support.builders import ACCOUNT_ID, USER_ID, FakeClock

# =============================================================================
# Clock and stores
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime.datetime(2026, 1, 10, 12, 0, tzinfo=datetime.UTC))


@pytest.fixture
def store(clock) -> InMemoryStore:
    return InMemoryStore(clock=clock.epoch_s)


@pytest.fixture
def engine():
    eng = create_replyflow_engine("sqlite:///:memory:")
    ReplyflowBase.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sessions(engine):
    return session_factory(engine)


@pytest.fixture
def repository(sessions, clock) -> ExecutionRepository:
    return ExecutionRepository(sessions, clock=clock)


@pytest.fixture
def usage(sessions) -> UsageRepository:
    return UsageRepository(sessions)


@pytest.fixture
def tracker(store, usage, clock) -> ActionTracker:
    return ActionTracker(store, usage, clock=clock)


@pytest.fixture
def limiter(store, clock) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(store, clock_ms=clock.epoch_ms)


# =============================================================================
# Seeded rows
# =============================================================================


@pytest.fixture
def integration(sessions, clock) -> IntegrationTable:
    with session_scope(sessions) as session:
        row = IntegrationTable(
            id=ACCOUNT_ID,
            user_id=USER_ID,
            access_token="token-abc",
            created_at=clock() - datetime.timedelta(days=30),
        )
        session.add(row)
    return row


@pytest.fixture
def comment(sessions, integration) -> CommentTable:
    with session_scope(sessions) as session:
        row = CommentTable(
            id="c1",
            integration_id=integration.id,
            comment_id="ig-comment-1",
            user_id="u1",
            text="What is the price?",
        )
        session.add(row)
    return row


@pytest.fixture
def make_workflow(sessions, integration):
    """Factory: persist a workflow row for a definition dict."""
    counter = {"n": 0}

    def _make(definition: dict, workflow_id: str | None = None) -> WorkflowTable:
        counter["n"] += 1
        with session_scope(sessions) as session:
            row = WorkflowTable(
                id=workflow_id or f"wf-{counter['n']}",
                user_id=USER_ID,
                integration_id=integration.id,
                name="Price replies",
                definition=json.dumps(definition),
            )
            session.add(row)
        return row

    return _make


@pytest.fixture
def trigger() -> dict:
    return {
        "type": "comment",
        "data": {"id": "c1", "text": "What is the price?", "userId": "u1", "commentId": "ig-comment-1"},
    }


# =============================================================================
# Engine wiring
# =============================================================================


@pytest.fixture
def adapter() -> MagicMock:
    mock = MagicMock()
    mock.reply_to_comment.return_value = {"id": "reply-1"}
    mock.send_direct_message.return_value = {"message_id": "m-1"}
    return mock


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def send_handler(limiter, tracker, repository, sleeps) -> SendMessageNodeHandler:
    return SendMessageNodeHandler(
        limiter,
        tracker,
        repository,
        SafetyPolicyResolver(random.Random(7)),
        sleep=sleeps.append,
        rng=random.Random(7),
    )


@pytest.fixture
def coordinator(repository, tracker, send_handler, adapter, clock) -> ExecutionCoordinator:
    return ExecutionCoordinator(
        repository,
        tracker,
        default_registry(send_handler),
        lambda integration: adapter,
        resolver=SafetyPolicyResolver(random.Random(7)),
        clock=clock,
    )
