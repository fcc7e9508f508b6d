"""Database engine and session management."""

import os
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

# Default database path (can be overridden via environment variable)
DEFAULT_DB_PATH = Path.home() / ".catalog_worker" / "catalog.db"


def get_database_url(db_path: Path | str | None = None) -> str:
    """
    Get the database URL.

    Args:
        db_path: Optional SQLite file path or full database URL. If None,
                 uses DATABASE_URL env var or default path.

    Returns:
        SQLAlchemy connection URL.
    """
    if db_path is not None:
        if "://" in str(db_path):
            return str(db_path)
        path = Path(db_path)
    elif os.environ.get("DATABASE_URL"):
        # Support full URL or just path
        url = os.environ["DATABASE_URL"]
        if "://" in url:
            return url
        path = Path(url)
    else:
        path = DEFAULT_DB_PATH

    # Ensure parent directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    return f"sqlite:///{path}"


def create_db_engine(db_path: Path | str | None = None, echo: bool = False):
    """
    Create a SQLAlchemy engine.

    Args:
        db_path: Optional path to the database file.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = get_database_url(db_path)
    connect_args = {}
    if url.startswith("sqlite"):
        # Pipeline writes run in asyncio.to_thread() workers
        connect_args["check_same_thread"] = False
    engine = create_engine(url, echo=echo, connect_args=connect_args)
    if url.startswith("sqlite"):
        enable_sqlite_savepoints(engine)
    return engine


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly on pysqlite.

    Author and work creation run inside begin_nested(); without this the
    driver's implicit transaction handling releases the outer transaction
    along with the savepoint.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


# Global engine and session factory (initialized lazily)
_engine = None
_SessionLocal = None


def get_engine(db_path: Path | str | None = None, echo: bool = False):
    """Get or create the global database engine."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(db_path, echo)
    return _engine


def get_session_factory(db_path: Path | str | None = None):
    """Get or create the global session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        engine = get_engine(db_path)
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return _SessionLocal


def reset_engine() -> None:
    """Reset the global engine and session factory (useful for testing)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


@contextmanager
def get_session(db_path: Path | str | None = None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_session() as session:
            # use session
            session.commit()

    Args:
        db_path: Optional path to the database file.

    Yields:
        SQLAlchemy Session instance.
    """
    session_factory = get_session_factory(db_path)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def init_db(db_path: Path | str | None = None) -> None:
    """
    Initialize the database by creating all tables.

    Args:
        db_path: Optional path to the database file.
    """
    from catalog_worker.db.models import Base

    engine = get_engine(db_path)
    Base.metadata.create_all(bind=engine)
