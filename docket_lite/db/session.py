"""
Database Session Management
===========================

SQLAlchemy engine/session handling plus two session-level hooks:

- Soft delete filtering: every ORM SELECT against a `SoftDeleteMixin`
  entity gets `deleted_at IS NULL` appended. Opt out per query with
  `.execution_options(include_deleted=True)`, or invert the filter with
  `.execution_options(only_deleted=True)`.
- Post-commit side effects: `after_commit(session, fn, ...)` queues work
  (emails, notifications) that must only happen once data is durable.
"""

import logging
import os
from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session, with_loader_criteria
from sqlalchemy.pool import QueuePool

from .models import Base, SoftDeleteMixin

logger = logging.getLogger(__name__)

_engine = None
_engine_url = None

# Session factory is configured lazily (important for tests that set DATABASE_URL at runtime).
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

AFTER_COMMIT_KEY = "after_commit_callbacks"


def _current_database_url() -> str:
    # Default to SQLite for development/testing, use DATABASE_URL for production PostgreSQL
    return os.environ.get("DATABASE_URL", "sqlite:///./dev.db")


def _create_engine_for_url(database_url: str):
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=os.environ.get("SQL_ECHO", "false").lower() == "true",
        )

        # pysqlite defers BEGIN on its own; take control so SAVEPOINT
        # (Session.begin_nested) nests inside a real transaction.
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        connect_args={
            "connect_timeout": int(os.environ.get("DB_CONNECT_TIMEOUT", "5")),
        },
        echo=os.environ.get("SQL_ECHO", "false").lower() == "true",
    )


def get_engine():
    """Get the SQLAlchemy engine"""
    global _engine, _engine_url
    database_url = _current_database_url()
    if _engine is None or _engine_url != database_url:
        _engine = _create_engine_for_url(database_url)
        _engine_url = database_url
        SessionLocal.configure(bind=_engine)
    return _engine


def reset_engine():
    """Reset engine/sessionmaker (primarily for tests)."""
    global _engine, _engine_url
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _engine_url = None
    SessionLocal.configure(bind=None)


def init_db():
    """Initialize database tables"""
    engine = get_engine()
    Base.metadata.create_all(bind=engine)


def drop_db():
    """Drop all database tables (use with caution!)"""
    engine = get_engine()
    Base.metadata.drop_all(bind=engine)


def new_session() -> Session:
    """Open a session bound to the current DATABASE_URL."""
    get_engine()
    return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI to get database session.

    Usage:
        @app.get("/items")
        def read_items(db: Session = Depends(get_db)):
            ...
    """
    db = new_session()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database session.

    Usage:
        with get_db_session() as db:
            db.query(User).all()
    """
    db = new_session()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# =============================================================================
# SOFT DELETE FILTER
# =============================================================================

@event.listens_for(Session, "do_orm_execute")
def _apply_soft_delete_filter(execute_state):
    if not execute_state.is_select or execute_state.is_column_load:
        return

    options = execute_state.execution_options
    if options.get("include_deleted", False):
        return

    if options.get("only_deleted", False):
        criteria = with_loader_criteria(
            SoftDeleteMixin,
            lambda cls: cls.deleted_at.isnot(None),
            include_aliases=True,
        )
    else:
        criteria = with_loader_criteria(
            SoftDeleteMixin,
            lambda cls: cls.deleted_at.is_(None),
            include_aliases=True,
        )
    execute_state.statement = execute_state.statement.options(criteria)


# =============================================================================
# POST-COMMIT SIDE EFFECTS
# =============================================================================

def after_commit(session: Session, fn: Callable, *args, **kwargs) -> None:
    """Run `fn(*args, **kwargs)` once the session's outer transaction commits."""
    session.info.setdefault(AFTER_COMMIT_KEY, []).append((fn, args, kwargs))


@event.listens_for(Session, "after_commit")
def _run_after_commit_callbacks(session):
    callbacks = session.info.pop(AFTER_COMMIT_KEY, [])
    for fn, args, kwargs in callbacks:
        try:
            fn(*args, **kwargs)
        except Exception as e:
            name = getattr(fn, "__name__", repr(fn))
            logger.warning(f"Post-commit side effect {name} failed: {e}")


@event.listens_for(Session, "after_soft_rollback")
def _discard_after_commit_callbacks(session, previous_transaction):
    if previous_transaction.parent is None:
        session.info.pop(AFTER_COMMIT_KEY, None)
