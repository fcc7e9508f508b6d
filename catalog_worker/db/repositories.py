"""Repository classes for catalog and ingestion database operations."""

import json
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from catalog_worker.core.enums import (
    NON_TERMINAL_STATUSES,
    ConnectorType,
    JobEventType,
    JobStatus,
)
from catalog_worker.core.schema import (
    Author,
    Edition,
    IngestionJob,
    IngestionJobEvent,
    Source,
    Work,
)
from catalog_worker.db.models import (
    AuthorDB,
    EditionDB,
    IngestionJobDB,
    IngestionJobEventDB,
    SourceDB,
    WorkDB,
)

# Maximum number of events retained per job; oldest are pruned first
MAX_EVENTS_PER_JOB = 500


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _parse_connector_type(value: str | None) -> ConnectorType | None:
    """Map a stored connector tag to the enum; unknown tags read as unset."""
    if not value:
        return None
    try:
        return ConnectorType(value)
    except ValueError:
        return None


# ============================================================================
# Canonical Catalog Repositories
# ============================================================================


class AuthorRepository:
    """Repository for Author lookups and creation."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, author_id: UUID | str) -> AuthorDB | None:
        """Get an author row by ID."""
        return self.session.get(AuthorDB, str(author_id))

    def get_by_name(self, name: str) -> AuthorDB | None:
        """Get an author by exact canonical name."""
        stmt = select(AuthorDB).where(AuthorDB.canonical_name == name)
        return self.session.execute(stmt).scalar_one_or_none()

    def find_by_alias(self, name: str) -> AuthorDB | None:
        """Find the first author whose alias list contains the name."""
        needle = json.dumps(name)
        stmt = (
            select(AuthorDB)
            .where(AuthorDB.aliases_json.contains(needle, autoescape=True))
            .order_by(AuthorDB.created_at)
        )
        for db_item in self.session.execute(stmt).scalars():
            # The LIKE prefilter can match inside a longer alias; confirm on the list
            if name in json.loads(db_item.aliases_json or "[]"):
                return db_item
        return None

    def create(self, name: str, aliases: list[str] | None = None) -> AuthorDB:
        """Create a new author and flush it."""
        db_item = AuthorDB(canonical_name=name, aliases_json=json.dumps(aliases or []))
        self.session.add(db_item)
        self.session.flush()
        return db_item

    def count(self) -> int:
        """Get total count of authors."""
        stmt = select(func.count()).select_from(AuthorDB)
        return self.session.execute(stmt).scalar() or 0

    def to_domain(self, db_item: AuthorDB) -> Author:
        """Convert DB model to domain model."""
        return Author(
            id=UUID(db_item.id),
            canonical_name=db_item.canonical_name,
            aliases=json.loads(db_item.aliases_json or "[]"),
            created_at=db_item.created_at,
            updated_at=db_item.updated_at,
        )


class WorkRepository:
    """Repository for Work lookups, creation and refresh."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, work_id: UUID | str) -> WorkDB | None:
        """Get a work row by ID."""
        return self.session.get(WorkDB, str(work_id))

    def find_exact(self, title: str, author_id: str, language: str) -> WorkDB | None:
        """Find a work by its exact (title, author, language) identity."""
        stmt = select(WorkDB).where(
            WorkDB.canonical_title == title,
            WorkDB.author_id == author_id,
            WorkDB.language == language,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_candidates(self, author_id: str, language: str, limit: int = 50) -> list[WorkDB]:
        """List works sharing an author and language, oldest first."""
        stmt = (
            select(WorkDB)
            .where(WorkDB.author_id == author_id, WorkDB.language == language)
            .order_by(WorkDB.created_at, WorkDB.id)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def create(
        self,
        title: str,
        author_id: str,
        language: str,
        description: str | None = None,
        subjects: list[str] | None = None,
    ) -> WorkDB:
        """Create a new work and flush it."""
        db_item = WorkDB(
            canonical_title=title,
            author_id=author_id,
            language=language,
            description=description,
            subjects_json=json.dumps(subjects or []),
            popularity_score=0.0,
        )
        self.session.add(db_item)
        self.session.flush()
        return db_item

    def refresh_metadata(
        self,
        work: WorkDB,
        title: str | None,
        description: str | None,
        subjects: list[str],
    ) -> None:
        """Overwrite title/description/subjects only with non-empty values."""
        if title:
            work.canonical_title = title
        if description:
            work.description = description
        if subjects:
            work.subjects_json = json.dumps(subjects)
        work.updated_at = _utc_now()
        self.session.flush()

    def count(self) -> int:
        """Get total count of works."""
        stmt = select(func.count()).select_from(WorkDB)
        return self.session.execute(stmt).scalar() or 0

    def to_domain(self, db_item: WorkDB) -> Work:
        """Convert DB model to domain model."""
        return Work(
            id=UUID(db_item.id),
            canonical_title=db_item.canonical_title,
            author_id=UUID(db_item.author_id),
            language=db_item.language,
            description=db_item.description,
            subjects=json.loads(db_item.subjects_json or "[]"),
            popularity_score=db_item.popularity_score or 0.0,
            view_count=db_item.view_count or 0,
            created_at=db_item.created_at,
            updated_at=db_item.updated_at,
        )


class EditionRepository:
    """Repository for Edition upserts."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_key(self, work_id: str, source_id: str, download_url: str) -> EditionDB | None:
        """Get an edition by its (work_id, source_id, download_url) key."""
        stmt = select(EditionDB).where(
            EditionDB.work_id == work_id,
            EditionDB.source_id == source_id,
            EditionDB.download_url == download_url,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def upsert(
        self,
        work_id: str,
        source_id: str,
        download_url: str,
        license: str,
        quality_score: float,
        cover_url: str | None = None,
        file_size: int | None = None,
    ) -> tuple[EditionDB, bool]:
        """
        Insert an edition or refresh the existing one.

        Returns:
            Tuple of (edition row, created flag)
        """
        db_item = self.get_by_key(work_id, source_id, download_url)
        if db_item is not None:
            if cover_url is not None:
                db_item.cover_url = cover_url
            if file_size is not None:
                db_item.file_size = file_size
            db_item.quality_score = quality_score
            db_item.updated_at = _utc_now()
            self.session.flush()
            return db_item, False

        db_item = EditionDB(
            work_id=work_id,
            source_id=source_id,
            download_url=download_url,
            license=license,
            quality_score=quality_score,
            cover_url=cover_url,
            file_size=file_size,
        )
        self.session.add(db_item)
        self.session.flush()
        return db_item, True

    def list_for_work(self, work_id: str) -> list[EditionDB]:
        """List a work's editions in creation order."""
        stmt = (
            select(EditionDB)
            .where(EditionDB.work_id == work_id)
            .order_by(EditionDB.created_at, EditionDB.id)
        )
        return list(self.session.execute(stmt).scalars().all())

    def count(self) -> int:
        """Get total count of editions."""
        stmt = select(func.count()).select_from(EditionDB)
        return self.session.execute(stmt).scalar() or 0

    def to_domain(self, db_item: EditionDB) -> Edition:
        """Convert DB model to domain model."""
        return Edition(
            id=UUID(db_item.id),
            work_id=UUID(db_item.work_id),
            source_id=UUID(db_item.source_id),
            license=db_item.license,
            download_url=db_item.download_url,
            cover_url=db_item.cover_url,
            file_size=db_item.file_size,
            quality_score=db_item.quality_score,
            created_at=db_item.created_at,
            updated_at=db_item.updated_at,
        )


# ============================================================================
# Ingestion Repositories
# ============================================================================


class SourceRepository:
    """Repository for Source reads (and seeding from configuration)."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, source: Source) -> Source:
        """Create a new source."""
        db_item = SourceDB(
            id=str(source.id),
            name=source.name,
            base_url=source.base_url,
            connector_type=source.connector_type.value if source.connector_type else None,
            enabled=source.enabled,
            trust_score=source.trust_score,
            license_type=source.license_type,
            created_at=source.created_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, source_id: UUID | str) -> Source | None:
        """Get a source by ID."""
        db_item = self.session.get(SourceDB, str(source_id))
        return self._to_domain(db_item) if db_item else None

    def get_by_name(self, name: str) -> Source | None:
        """Get a source by name."""
        stmt = select(SourceDB).where(SourceDB.name == name)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def list_all(self) -> list[Source]:
        """List all sources by name."""
        stmt = select(SourceDB).order_by(SourceDB.name)
        return [self._to_domain(s) for s in self.session.execute(stmt).scalars().all()]

    def _to_domain(self, db_item: SourceDB) -> Source:
        """Convert DB model to domain model."""
        return Source(
            id=UUID(db_item.id),
            name=db_item.name,
            base_url=db_item.base_url,
            connector_type=_parse_connector_type(db_item.connector_type),
            enabled=db_item.enabled,
            trust_score=db_item.trust_score,
            license_type=db_item.license_type,
            created_at=db_item.created_at,
        )


class IngestionJobRepository:
    """Repository for ingestion job state transitions."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, source_id: UUID | str) -> IngestionJob:
        """Create a pending job for a source."""
        db_item = IngestionJobDB(source_id=str(source_id), status=JobStatus.PENDING.value)
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, job_id: UUID | str) -> IngestionJob | None:
        """Get a job by ID, bypassing any stale identity-map copy."""
        stmt = (
            select(IngestionJobDB)
            .where(IngestionJobDB.id == str(job_id))
            .execution_options(populate_existing=True)
        )
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def get_status(self, job_id: UUID | str) -> JobStatus | None:
        """Read the current status column straight from the database."""
        stmt = select(IngestionJobDB.status).where(IngestionJobDB.id == str(job_id))
        value = self.session.execute(stmt).scalar_one_or_none()
        return JobStatus(value) if value is not None else None

    def has_active_job(self, source_id: UUID | str) -> bool:
        """Check whether a source has a pending or running job."""
        stmt = (
            select(func.count())
            .select_from(IngestionJobDB)
            .where(
                IngestionJobDB.source_id == str(source_id),
                IngestionJobDB.status.in_([s.value for s in NON_TERMINAL_STATUSES]),
            )
        )
        return (self.session.execute(stmt).scalar() or 0) > 0

    def list_pending_ids(self, limit: int = 10) -> list[str]:
        """List pending job IDs whose source is enabled, oldest first."""
        stmt = (
            select(IngestionJobDB.id)
            .join(SourceDB, SourceDB.id == IngestionJobDB.source_id)
            .where(
                IngestionJobDB.status == JobStatus.PENDING.value,
                SourceDB.enabled.is_(True),
            )
            .order_by(IngestionJobDB.created_at)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def list_recent(
        self, source_id: UUID | str | None = None, limit: int = 20
    ) -> list[IngestionJob]:
        """List the most recent jobs, optionally for one source."""
        stmt = select(IngestionJobDB).order_by(IngestionJobDB.created_at.desc()).limit(limit)
        if source_id is not None:
            stmt = stmt.where(IngestionJobDB.source_id == str(source_id))
        return [self._to_domain(j) for j in self.session.execute(stmt).scalars().all()]

    def _transition(
        self,
        job_id: UUID | str,
        from_statuses: tuple[JobStatus, ...],
        values: dict[str, Any],
    ) -> bool:
        """Conditionally update a job; returns False when no row matched."""
        stmt = (
            update(IngestionJobDB)
            .where(
                IngestionJobDB.id == str(job_id),
                IngestionJobDB.status.in_([s.value for s in from_statuses]),
            )
            .values(updated_at=_utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount == 1

    def claim(self, job_id: UUID | str) -> bool:
        """
        Atomically move a job from pending to running.

        Returns:
            True if this caller won the claim, False if zero rows matched
        """
        return self._transition(
            job_id,
            (JobStatus.PENDING,),
            {"status": JobStatus.RUNNING.value, "started_at": _utc_now()},
        )

    def finish(
        self,
        job_id: UUID | str,
        status: JobStatus,
        error_message: str | None = None,
    ) -> bool:
        """Move a running job to a terminal status."""
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        values: dict[str, Any] = {"status": status.value, "completed_at": _utc_now()}
        if error_message is not None:
            values["error_message"] = error_message
        return self._transition(job_id, (JobStatus.RUNNING,), values)

    def fail_pending(self, job_id: UUID | str, error_message: str) -> bool:
        """Fail a job that could not be started."""
        return self._transition(
            job_id,
            (JobStatus.PENDING,),
            {
                "status": JobStatus.FAILED.value,
                "completed_at": _utc_now(),
                "error_message": error_message,
            },
        )

    def cancel(self, job_id: UUID | str) -> bool:
        """Request cancellation of a pending or running job."""
        return self._transition(
            job_id,
            NON_TERMINAL_STATUSES,
            {"status": JobStatus.CANCELLED.value, "completed_at": _utc_now()},
        )

    def _to_domain(self, db_item: IngestionJobDB) -> IngestionJob:
        """Convert DB model to domain model."""
        return IngestionJob(
            id=UUID(db_item.id),
            source_id=UUID(db_item.source_id),
            status=JobStatus(db_item.status),
            started_at=db_item.started_at,
            completed_at=db_item.completed_at,
            error_message=db_item.error_message,
            created_at=db_item.created_at,
            updated_at=db_item.updated_at,
        )


class IngestionJobEventRepository:
    """Repository for the bounded, append-only job event log."""

    def __init__(self, session: Session, max_events: int = MAX_EVENTS_PER_JOB):
        self.session = session
        self.max_events = max_events

    def emit(
        self,
        job_id: UUID | str,
        event_type: JobEventType,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> IngestionJobEvent:
        """Append an event, prune the oldest beyond the cap, and commit."""
        db_item = IngestionJobEventDB(
            job_id=str(job_id),
            event_type=event_type.value,
            message=message,
            detail_json=json.dumps(detail) if detail is not None else None,
        )
        self.session.add(db_item)
        self.session.flush()
        event = self._to_domain(db_item)
        self.prune(job_id)
        self.session.commit()
        return event

    def count(self, job_id: UUID | str) -> int:
        """Count events for a job."""
        stmt = (
            select(func.count())
            .select_from(IngestionJobEventDB)
            .where(IngestionJobEventDB.job_id == str(job_id))
        )
        return self.session.execute(stmt).scalar() or 0

    def prune(self, job_id: UUID | str) -> int:
        """
        Delete the oldest events beyond the retention cap.

        Returns:
            Number of rows deleted
        """
        excess = self.count(job_id) - self.max_events
        if excess <= 0:
            return 0
        oldest = (
            select(IngestionJobEventDB.id)
            .where(IngestionJobEventDB.job_id == str(job_id))
            .order_by(IngestionJobEventDB.created_at, IngestionJobEventDB.id)
            .limit(excess)
        )
        ids = list(self.session.execute(oldest).scalars().all())
        stmt = (
            delete(IngestionJobEventDB)
            .where(IngestionJobEventDB.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)
        return len(ids)

    def list_for_job(self, job_id: UUID | str, limit: int | None = None) -> list[IngestionJobEvent]:
        """List a job's events in emission order."""
        stmt = (
            select(IngestionJobEventDB)
            .where(IngestionJobEventDB.job_id == str(job_id))
            .order_by(IngestionJobEventDB.created_at, IngestionJobEventDB.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [self._to_domain(e) for e in self.session.execute(stmt).scalars().all()]

    def _to_domain(self, db_item: IngestionJobEventDB) -> IngestionJobEvent:
        """Convert DB model to domain model."""
        return IngestionJobEvent(
            id=db_item.id,
            job_id=UUID(db_item.job_id),
            event_type=JobEventType(db_item.event_type),
            message=db_item.message,
            detail=json.loads(db_item.detail_json) if db_item.detail_json else None,
            created_at=db_item.created_at,
        )
