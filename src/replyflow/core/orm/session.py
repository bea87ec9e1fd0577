"""SQLAlchemy engine factory and session helpers.

This module provides:

* ``create_replyflow_engine`` -- Create a SA engine from a URL.
* ``ReplyflowSession``        -- A pre-configured ``Session`` subclass.
* ``session_factory``         -- ``sessionmaker`` producing ``ReplyflowSession``.
* ``session_scope``           -- Commit-or-rollback context manager.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def create_replyflow_engine(
    url: str = "sqlite:///replyflow.db",
    *,
    echo: bool = False,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    SQLite gets ``check_same_thread=False`` and foreign keys switched on;
    an in-memory SQLite URL shares one connection (``StaticPool``) so every
    session sees the same database.
    """
    if not url.startswith("sqlite"):
        return _sa_create_engine(url, echo=echo, **kwargs)

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
        kwargs.setdefault("poolclass", StaticPool)

    engine = _sa_create_engine(url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


class ReplyflowSession(Session):
    """Pre-configured session with ``expire_on_commit=False``.

    Prevents lazy-load surprises after commit.
    """

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def session_factory(engine: Engine) -> sessionmaker[ReplyflowSession]:
    """Return a ``sessionmaker`` bound to *engine*."""
    # sessionmaker passes its own expire_on_commit, so it must be set here too
    return sessionmaker(bind=engine, class_=ReplyflowSession, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[ReplyflowSession]) -> Iterator[ReplyflowSession]:
    """Provide a transactional scope: commit on success, rollback on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
