"""Database configuration for the action ledger using SQLAlchemy ORM."""

import os
from contextlib import contextmanager
from typing import Dict, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from notesgit.database.models import Base

SQLITE_BUSY_TIMEOUT_MS = 5000


def _create_sqlite_engine(database_url: str) -> Engine:
    """Create a SQLite engine for the ledger file.

    Ledger calls run in worker threads, each on its own pooled connection.
    Transactions start with ``BEGIN IMMEDIATE`` so a read-then-write never
    has to upgrade its lock, and writers wait on a locked database instead
    of failing immediately.

    Args:
        database_url: SQLite URL (e.g., 'sqlite:///data/action_ledger.db')

    Returns:
        SQLAlchemy Engine configured for SQLite
    """
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _configure_connection(dbapi_conn, connection_record):
        # Let the begin listener below emit BEGIN instead of pysqlite
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def _normalize_db_url(db_path: str) -> tuple[str, bool]:
    """Turn a ledger location into a SQLAlchemy URL.

    Anything containing ``://`` is taken as a URL; everything else is a
    SQLite file path, made absolute.

    Returns:
        ``(url, is_sqlite)``
    """
    if "://" in db_path:
        return db_path, db_path.lower().startswith("sqlite://")
    return f"sqlite:///{os.path.abspath(db_path)}", True


# One engine and session factory per resolved URL
_engines: Dict[str, Engine] = {}
_session_factories: Dict[str, sessionmaker] = {}


def is_postgres_backend() -> bool:
    """Check whether the DATABASE environment variable selects PostgreSQL."""
    return os.getenv("DATABASE", "sqlite").strip().lower() == "postgres"


def get_database_path(db_path: Optional[str] = None) -> str:
    """
    Resolve and return the effective database path or connection string.

    Resolution order:
      1. If the explicit ``db_path`` argument is provided, return it directly.
      2. If ``DATABASE`` is ``postgres``, return ``DATABASE_URL``.
      3. If ``DATABASE_URL`` starts with ``sqlite://``, return it.
      4. Otherwise, return the default SQLite path ``data/action_ledger.db``
         under the project root.
    """
    # Explicitly specified database path
    if db_path:
        return db_path

    db_url = (os.getenv("DATABASE_URL") or "").strip()

    # PostgreSQL connection string via environment/config
    if is_postgres_backend():
        if not db_url:
            raise RuntimeError(
                "PostgreSQL DSN not configured. Set DATABASE_URL in the environment."
            )
        return db_url

    if db_url and db_url.lower().startswith("sqlite://"):
        return db_url

    # Default SQLite path under project root's 'data' directory
    data_dir = os.path.join(
        os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(__file__)))),
        "data",
    )
    os.makedirs(data_dir, exist_ok=True)

    return os.path.join(data_dir, "action_ledger.db")


def get_engine(db_path: Optional[str] = None) -> Engine:
    """Get or create the engine for a database path or URL.

    Engines are cached per URL so every repository pointing at the same
    database shares one connection pool.
    """
    url, is_sqlite = _normalize_db_url(get_database_path(db_path))
    engine = _engines.get(url)
    if engine is None:
        if is_sqlite:
            engine = _create_sqlite_engine(url)
        else:
            engine = create_engine(url, echo=False, pool_pre_ping=True)
        _engines[url] = engine
        _session_factories[url] = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=engine,
        )
    return engine


def _get_session_factory(db_path: Optional[str] = None) -> sessionmaker:
    get_engine(db_path)
    url, _ = _normalize_db_url(get_database_path(db_path))
    return _session_factories[url]


@contextmanager
def get_db_connection(db_path: Optional[str] = None):
    """Yield a SQLAlchemy database session.

    Args:
        db_path: Optional database path or URL. A plain filesystem path is
          treated as a SQLite file; a URL with '://' is used as is. If not
          provided, the DATABASE / DATABASE_URL environment is used.

    Yields:
        SQLAlchemy Session object

    Automatically commits on success, rolls back on exception, and closes
    the session in finally block.
    """
    SessionLocal = _get_session_factory(db_path)
    session = SessionLocal()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(db_path: Optional[str] = None):
    """Create the ledger tables if they do not exist."""
    Base.metadata.create_all(bind=get_engine(db_path))


def dispose_engines():
    """Dispose every cached engine (used on shutdown and in tests)."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
    _session_factories.clear()
