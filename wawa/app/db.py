from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings

from .errors import PersistenceFailure
from .models import Base


def _sqlite_transactional(engine: Engine) -> Engine:
    """Let SQLAlchemy own BEGIN so SAVEPOINTs nest inside the outer transaction."""

    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(url: str) -> Engine:
    """Return an engine for ``url``; SQLite connections may cross threads."""

    if url.startswith("sqlite"):
        return _sqlite_transactional(
            create_engine(url, connect_args={"check_same_thread": False})
        )
    return create_engine(url)


def create_test_session() -> tuple[sessionmaker, Engine]:
    """Return a session factory and engine for tests.

    The database uses an in-memory SQLite engine with a static pool so that
    multiple connections share the same data.
    """

    engine = _sqlite_transactional(
        create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    )
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(
        bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
    )
    return session_factory, engine


def init_db(url: str | None = None) -> tuple[sessionmaker, Engine]:
    """Create the schema at ``url`` (settings default) and return a factory."""

    engine = build_engine(url or get_settings().database_url)
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(
        bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
    )
    return session_factory, engine


@contextmanager
def unit_of_work(session_factory: sessionmaker) -> Iterator[Session]:
    """Yield a session whose work commits on exit or rolls back on error.

    Driver errors surface as :class:`PersistenceFailure` so callers never
    need to know which store backs the ledger.
    """

    session: Session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceFailure(str(exc)) from exc
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()


# Populated by ``main`` at startup and by tests via ``create_test_session``.
SessionLocal: sessionmaker | None = None
engine: Engine | None = None

__all__ = [
    "SessionLocal",
    "engine",
    "build_engine",
    "create_test_session",
    "init_db",
    "unit_of_work",
]
