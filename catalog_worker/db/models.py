"""SQLAlchemy ORM models for the catalog worker.

These models define the database tables written by the ingestion core:
- AuthorDB, WorkDB, EditionDB (canonical catalog)
- SourceDB (source configuration)
- IngestionJobDB, IngestionJobEventDB (job bookkeeping)
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ============================================================================
# Canonical Catalog
# ============================================================================


class AuthorDB(Base):
    """
    Database model for canonical authors.

    canonical_name is unique so that two writers racing to create the
    same author collide on insert instead of producing duplicates.
    """

    __tablename__ = "authors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    canonical_name: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    aliases_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    # Relationships
    works: Mapped[list["WorkDB"]] = relationship("WorkDB", back_populates="author")

    def __repr__(self) -> str:
        return f"<AuthorDB(id={self.id}, name='{self.canonical_name}')>"


class WorkDB(Base):
    """
    Database model for canonical works.

    A work belongs to exactly one author.
    """

    __tablename__ = "works"
    __table_args__ = (
        UniqueConstraint(
            "canonical_title", "author_id", "language", name="uq_works_title_author_language"
        ),
        Index("ix_works_author_language", "author_id", "language"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    canonical_title: Mapped[str] = mapped_column(String(1000), nullable=False)
    author_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("authors.id"), nullable=False, index=True
    )
    language: Mapped[str] = mapped_column(String(20), nullable=False, default="en")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    subjects_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    popularity_score: Mapped[float] = mapped_column(Float, default=0.0)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    # Relationships
    author: Mapped["AuthorDB"] = relationship("AuthorDB", back_populates="works")
    editions: Mapped[list["EditionDB"]] = relationship(
        "EditionDB", back_populates="work", order_by="EditionDB.created_at"
    )

    def __repr__(self) -> str:
        return f"<WorkDB(id={self.id}, title='{self.canonical_title}')>"


class EditionDB(Base):
    """
    Database model for editions.

    One downloadable instance of a work from one source.
    """

    __tablename__ = "editions"
    __table_args__ = (
        UniqueConstraint(
            "work_id", "source_id", "download_url", name="uq_editions_work_source_url"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    work_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("works.id"), nullable=False, index=True
    )
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sources.id"), nullable=False, index=True
    )
    license: Mapped[str] = mapped_column(String(50), nullable=False)
    download_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    cover_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quality_score: Mapped[float] = mapped_column(Float, default=1.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    # Relationships
    work: Mapped["WorkDB"] = relationship("WorkDB", back_populates="editions")

    def __repr__(self) -> str:
        return f"<EditionDB(id={self.id}, work_id={self.work_id}, url='{self.download_url}')>"


# ============================================================================
# Ingestion Bookkeeping
# ============================================================================


class SourceDB(Base):
    """
    Database model for catalog sources.

    Owned by the admin surface; the runner only reads it.
    """

    __tablename__ = "sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    base_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    connector_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    trust_score: Mapped[float] = mapped_column(Float, default=1.0)
    license_type: Mapped[str] = mapped_column(String(50), default="public-domain")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    # Relationships
    jobs: Mapped[list["IngestionJobDB"]] = relationship("IngestionJobDB", back_populates="source")

    def __repr__(self) -> str:
        return f"<SourceDB(id={self.id}, name='{self.name}')>"


class IngestionJobDB(Base):
    """Database model for ingestion jobs."""

    __tablename__ = "ingestion_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sources.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    # Relationships
    source: Mapped["SourceDB"] = relationship("SourceDB", back_populates="jobs")

    def __repr__(self) -> str:
        return f"<IngestionJobDB(id={self.id}, status='{self.status}')>"


class IngestionJobEventDB(Base):
    """
    Database model for job events.

    Integer primary key breaks created_at ties when pruning oldest first.
    """

    __tablename__ = "ingestion_job_events"
    __table_args__ = (Index("ix_job_events_job_created", "job_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ingestion_jobs.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    detail_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON object
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    def __repr__(self) -> str:
        return f"<IngestionJobEventDB(id={self.id}, job_id={self.job_id}, type='{self.event_type}')>"
