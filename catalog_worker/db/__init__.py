"""Database initialization and persistence layer."""

from catalog_worker.db.engine import (
    create_db_engine,
    enable_sqlite_savepoints,
    get_database_url,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    reset_engine,
)
from catalog_worker.db.models import (
    AuthorDB,
    Base,
    EditionDB,
    IngestionJobDB,
    IngestionJobEventDB,
    SourceDB,
    WorkDB,
)
from catalog_worker.db.repositories import (
    MAX_EVENTS_PER_JOB,
    AuthorRepository,
    EditionRepository,
    IngestionJobEventRepository,
    IngestionJobRepository,
    SourceRepository,
    WorkRepository,
)

__all__ = [
    # Engine
    "create_db_engine",
    "enable_sqlite_savepoints",
    "get_database_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "reset_engine",
    # Models
    "Base",
    "AuthorDB",
    "WorkDB",
    "EditionDB",
    "SourceDB",
    "IngestionJobDB",
    "IngestionJobEventDB",
    # Repositories
    "MAX_EVENTS_PER_JOB",
    "AuthorRepository",
    "WorkRepository",
    "EditionRepository",
    "SourceRepository",
    "IngestionJobRepository",
    "IngestionJobEventRepository",
]
