"""Pydantic v2 models for the canonical catalog and ingestion bookkeeping.

These models define the entities written by the ingestion core:
- Author, Work, Edition (canonical catalog entities)
- Source (external configuration, read-only to the runner)
- IngestionJob, IngestionJobEvent (operational entities)
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from catalog_worker.core.enums import ConnectorType, JobEventType, JobStatus


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


# ============================================================================
# Canonical Catalog Entities
# ============================================================================


class Author(BaseModel):
    """
    Canonical author entity.

    Created when no exact-name or alias match exists. Never deleted
    by the ingestion core.
    """

    id: UUID = Field(default_factory=uuid4)
    canonical_name: str
    aliases: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @field_validator("canonical_name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("canonical_name cannot be empty")
        return v.strip()


class Work(BaseModel):
    """
    Canonical literary work.

    One row per distinct (title, author, language) identity.
    """

    id: UUID = Field(default_factory=uuid4)
    canonical_title: str
    author_id: UUID
    language: str = "en"
    description: str | None = None
    subjects: list[str] = Field(default_factory=list)
    popularity_score: float = 0.0
    view_count: int = 0
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Edition(BaseModel):
    """
    One downloadable instance of a work, sourced from one source.

    Unique per (work_id, source_id, download_url). quality_score holds
    the match confidence of the most recent sighting.
    """

    id: UUID = Field(default_factory=uuid4)
    work_id: UUID
    source_id: UUID
    license: str
    download_url: str
    cover_url: str | None = None
    file_size: int | None = None
    quality_score: float = Field(default=1.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


# ============================================================================
# Ingestion Entities
# ============================================================================


class Source(BaseModel):
    """External catalog source configuration."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    base_url: str
    connector_type: ConnectorType | None = None
    enabled: bool = True
    trust_score: float = 1.0
    license_type: str = "public-domain"
    created_at: datetime = Field(default_factory=_utc_now)


class IngestionJob(BaseModel):
    """One execution of a full catalog scan for one source."""

    id: UUID = Field(default_factory=uuid4)
    source_id: UUID
    status: JobStatus = JobStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class IngestionJobEvent(BaseModel):
    """Append-only entry in a job's event timeline."""

    id: int | None = None
    job_id: UUID
    event_type: JobEventType
    message: str
    detail: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=_utc_now)
