# core/db.py
"""
Engine and session plumbing for the lifecycle engine.

One database holds members, histories, applications and the side effect
outbox, so every state change and its outbox rows commit together.

On SQLite, row locks (SELECT ... FOR UPDATE) are no-ops; concurrent writers are
serialized by the database file lock instead, so connections wait on it rather
than failing immediately.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, List

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from config import Config
from models.base import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///lifecycle.db"
SQLITE_BUSY_TIMEOUT_MS = 5000

_engine = None
_SessionFactory = None


def _enable_sqlite_pragmas(engine: Engine) -> None:
    """Enforce foreign keys and wait on the write lock for every new SQLite connection."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.close()


def get_engine() -> Engine:
    """Create the engine from DATABASE_URL on first use."""
    global _engine
    if _engine is None:
        database_url = Config.get(Config.DATABASE_URL, DEFAULT_DATABASE_URL)
        _engine = create_engine(database_url, echo=False, pool_pre_ping=True)
        if _engine.dialect.name == "sqlite":
            _enable_sqlite_pragmas(_engine)
        logger.info(f"Database engine created: dialect={_engine.dialect.name}")
    return _engine


def get_session_factory():
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine())
        logger.info("Session factory created")
    return _SessionFactory


def bind_engine(engine: Engine) -> None:
    """
    Replace the lazily created engine with an existing one.

    Used by tests and by embedding applications that own their engine; the
    caller is responsible for that engine's connection settings.
    """
    global _engine, _SessionFactory
    _engine = engine
    _SessionFactory = sessionmaker(bind=engine)
    logger.debug(f"Engine bound: dialect={engine.dialect.name}")


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def get_db_session_ctx() -> Iterator[Session]:
    """
    Session scope for jobs and request handlers.

    Commits on success, rolls back and re-raises on any error. Services
    commit their own transactions; the final commit here only flushes
    leftovers such as outbox status updates.

    Usage:
        with get_db_session_ctx() as session:
            service = MembershipService(session)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database session rolled back: {e}")
        raise
    finally:
        session.close()


def setup_database() -> List[str]:
    """Create all lifecycle tables that do not exist yet; returns the table names."""
    import models  # noqa: F401  (registers every mapped table)

    engine = get_engine()
    Base.metadata.create_all(engine)
    tables = sorted(Base.metadata.tables)
    logger.info(f"Database ready: {len(tables)} tables ({', '.join(tables)})")
    return tables
