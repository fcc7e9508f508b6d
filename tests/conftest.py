"""Shared fixtures for catalog-worker tests."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from catalog_worker.core.enums import ConnectorType
from catalog_worker.core.schema import Source
from catalog_worker.db.engine import enable_sqlite_savepoints
from catalog_worker.db.models import Base
from catalog_worker.db.repositories import SourceRepository
from catalog_worker.ingestion.connectors.base import RawRecord


@pytest.fixture
def engine():
    """Create an in-memory test database engine."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine) -> Session:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def source(session: Session) -> Source:
    """An enabled Gutenberg source."""
    created = SourceRepository(session).create(
        Source(
            name="Project Gutenberg",
            base_url="https://www.gutenberg.org",
            connector_type=ConnectorType.GUTENBERG,
        )
    )
    session.commit()
    return created


@pytest.fixture
def make_raw(source: Source):
    """Factory for raw records stamped with the test source id."""

    def _make(title: str = "Moby-Dick", **fields) -> RawRecord:
        defaults = {
            "external_id": fields.pop("external_id", title.lower().replace(" ", "-")),
            "authors": ["Herman Melville"],
            "language": "eng",
            "license": "Public Domain",
            "download_url": f"http://x/{title.lower().replace(' ', '-')}.epub",
        }
        defaults.update(fields)
        return RawRecord(source_id=str(source.id), title=title, **defaults)

    return _make
