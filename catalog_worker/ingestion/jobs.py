"""
Ingestion Jobs Module
=====================

Runs one ingestion job: claims it, drains the source connector through
the pipeline, records progress in the job event log and finalizes the
job status. Record-level failures are counted and skipped; a connector
failure fails the job.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from catalog_worker.config import HttpSettings, WorkerSettings
from catalog_worker.core.enums import JobEventType, JobStatus
from catalog_worker.core.schema import IngestionJob, Source
from catalog_worker.db.repositories import (
    IngestionJobEventRepository,
    IngestionJobRepository,
    SourceRepository,
)
from catalog_worker.ingestion.connectors import (
    BaseConnector,
    HttpFetcher,
    UnknownConnectorError,
    create_connector,
)
from catalog_worker.ingestion.pipeline import Pipeline
from catalog_worker.services.search_index import SearchIndexService

logger = logging.getLogger(__name__)

# Structured lifecycle lines go to the package logger
lifecycle_logger = logging.getLogger("catalog_worker.ingestion")

ConnectorFactory = Callable[..., BaseConnector]


class JobNotFoundError(Exception):
    """Raised when run_job() is given an id with no job row."""


def _log_lifecycle(event: str, level: int = logging.INFO, **fields: Any) -> None:
    """Emit a one-line JSON record for a job lifecycle event."""
    payload = {"event": event, **fields, "timestamp": datetime.now(UTC).isoformat()}
    lifecycle_logger.log(level, json.dumps(payload))


@dataclass
class DrainState:
    """Counters shared by the drain loop and the heartbeat."""

    count: int = 0
    index_failures: int = 0
    last_index_error: str | None = None
    last_title: str | None = None
    cancelled: bool = False


class IngestionRunner:
    """
    Creates and executes ingestion jobs.

    The runner's session carries job state and events; the heartbeat task
    shares it with the drain loop on the event loop thread. Catalog writes
    go through the pipeline, which stores records from a worker thread on
    a session of its own.
    """

    def __init__(
        self,
        session: Session,
        search_index: SearchIndexService | None = None,
        settings: WorkerSettings | None = None,
        http_settings: HttpSettings | None = None,
        connector_factory: ConnectorFactory = create_connector,
        pipeline: Pipeline | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or WorkerSettings()
        self.http_settings = http_settings or HttpSettings()
        self.connector_factory = connector_factory
        if pipeline is None:
            pipeline = Pipeline(
                Session(bind=session.get_bind(), autoflush=False), search_index=search_index
            )
        self.pipeline = pipeline
        self.jobs = IngestionJobRepository(session)
        self.events = IngestionJobEventRepository(
            session, max_events=self.settings.max_events_per_job
        )
        self.sources = SourceRepository(session)

    # =========================================================================
    # Job creation and discovery
    # =========================================================================

    def create_job_for_source(self, source_id: UUID | str) -> IngestionJob | None:
        """
        Create a pending job for a source.

        Returns:
            The new job, or None if the source already has a pending or
            running job
        """
        if self.jobs.has_active_job(source_id):
            logger.info(f"Source {source_id} already has an active job")
            return None
        job = self.jobs.create(source_id)
        self.session.commit()
        return job

    def get_pending_job_ids(self, limit: int = 10) -> list[str]:
        """Get pending job ids whose source is enabled, oldest first."""
        return self.jobs.list_pending_ids(limit=limit)

    def cancel_job(self, job_id: UUID | str) -> bool:
        """
        Request cancellation of a pending or running job.

        A running job stops at its next cancellation check.
        """
        return self.jobs.cancel(job_id)

    # =========================================================================
    # Job execution
    # =========================================================================

    async def run_job(self, job_id: UUID | str) -> None:
        """
        Execute a pending job to completion.

        Raises:
            JobNotFoundError: If no job has this id
            Exception: Any connector error, after the job is marked failed
        """
        job_id = str(job_id)
        job = self.jobs.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if job.status != JobStatus.PENDING:
            logger.info(f"Job {job_id} is {job.status.value}; not running it")
            return

        source = self.sources.get_by_id(job.source_id)
        if source is None or source.connector_type is None:
            logger.warning(f"Job {job_id}: source has no connector type")
            self.jobs.fail_pending(job_id, "Source has no connector_type")
            return

        try:
            connector = self.connector_factory(
                source.connector_type, str(source.id), fetcher=self._make_fetcher()
            )
        except UnknownConnectorError as e:
            self.jobs.fail_pending(job_id, str(e))
            return

        if not self.jobs.claim(job_id):
            logger.info(f"Job {job_id} was claimed by another runner")
            await connector.aclose()
            return

        started = time.monotonic()
        _log_lifecycle("job_start", job_id=job_id, source_id=str(source.id))
        self.events.emit(
            job_id,
            JobEventType.STARTED,
            f"Ingestion started for source {source.name}",
            {"source_name": source.name},
        )

        state = DrainState()
        heartbeat = asyncio.create_task(self._heartbeat(job_id, state))
        try:
            try:
                await self._drain(job_id, connector, state)
            finally:
                heartbeat.cancel()
                await asyncio.gather(heartbeat, return_exceptions=True)
                await connector.aclose()
        except asyncio.CancelledError:
            self._finalize_interrupted(job_id, source, state)
            raise
        except Exception as e:
            self._finalize_failed(job_id, source, e)
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        self._finalize(job_id, source, state, duration_ms)

    async def _drain(self, job_id: str, connector: BaseConnector, state: DrainState) -> None:
        """Run every connector record through the pipeline."""
        check_every = self.settings.cancel_check_interval
        progress_every = self.settings.progress_interval

        async for record in connector.fetch_catalog():
            if state.count > 0 and state.count % check_every == 0:
                if self._current_status(job_id) == JobStatus.CANCELLED:
                    state.cancelled = True
                    break

            try:
                result = await asyncio.wait_for(
                    self.pipeline.process(record),
                    timeout=self.settings.record_timeout_seconds,
                )
            except TimeoutError:
                logger.warning(f"Job {job_id}: record {record.external_id} timed out")
                state.index_failures += 1
                state.last_index_error = "Pipeline process timeout"
            except Exception as e:
                logger.warning(f"Job {job_id}: record {record.external_id} failed: {e}")
                state.index_failures += 1
                state.last_index_error = str(e)
            else:
                if result is not None and result.index_error is not None:
                    state.index_failures += 1
                    state.last_index_error = str(result.index_error)

            state.count += 1
            state.last_title = record.title or None
            if state.count == 1 or state.count % progress_every == 0:
                title = state.last_title or "-"
                message = (
                    f"Scraped: {title}"
                    if state.count == 1
                    else f"{state.count} records, last: {title}"
                )
                self.events.emit(
                    job_id,
                    JobEventType.PROGRESS,
                    message,
                    {"count": state.count, "last_title": state.last_title},
                )

    async def _heartbeat(self, job_id: str, state: DrainState) -> None:
        """Emit a progress event periodically while the job is running."""
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval_seconds)
            if self._current_status(job_id) != JobStatus.RUNNING:
                continue
            if state.count > 0:
                message = (
                    f"Still scanning… {state.count} records so far, "
                    f"last: {state.last_title or '-'}"
                )
            else:
                message = "Still scanning…"
            self.events.emit(
                job_id,
                JobEventType.PROGRESS,
                message,
                {"count": state.count, "last_title": state.last_title},
            )

    def _current_status(self, job_id: str) -> JobStatus | None:
        """Read the job status and end the read transaction."""
        status = self.jobs.get_status(job_id)
        # An open read would hold SQLite's shared lock against the pipeline's commit
        self.session.commit()
        return status

    def _finalize(self, job_id: str, source: Source, state: DrainState, duration_ms: int) -> None:
        """Record the outcome of a drain that ended without a connector error."""
        if state.cancelled:
            self._record_cancelled(job_id, state.count)
            return

        # Conditional on running: an external cancel after the last check wins
        if not self.jobs.finish(job_id, JobStatus.COMPLETED):
            logger.info(f"Job {job_id} was cancelled before it could complete")
            self._record_cancelled(job_id, state.count)
            return

        if state.index_failures > 0:
            message = (
                f"Completed: {state.count} records processed, "
                f"{state.index_failures} failed to index to search"
            )
        else:
            message = f"Completed: {state.count} records indexed"
        detail: dict[str, Any] = {
            "count": state.count,
            "index_failures": state.index_failures,
            "duration_ms": duration_ms,
        }
        if state.last_index_error is not None:
            detail["index_error_sample"] = state.last_index_error
        self.events.emit(job_id, JobEventType.COMPLETED, message, detail)
        _log_lifecycle(
            "job_complete",
            job_id=job_id,
            source_id=str(source.id),
            record_count=state.count,
            duration_ms=duration_ms,
        )

    def _record_cancelled(self, job_id: str, count: int) -> None:
        self.jobs.finish(job_id, JobStatus.CANCELLED)
        self.events.emit(
            job_id, JobEventType.CANCELLED, f"Cancelled after {count} records", {"count": count}
        )

    def _finalize_interrupted(self, job_id: str, source: Source, state: DrainState) -> None:
        """Close out a job whose task was cancelled, e.g. at worker shutdown."""
        self.session.rollback()
        if self.jobs.finish(job_id, JobStatus.CANCELLED, error_message="Worker shutdown"):
            self.events.emit(
                job_id,
                JobEventType.CANCELLED,
                f"Cancelled after {state.count} records: worker shutdown",
                {"count": state.count, "reason": "shutdown"},
            )
        _log_lifecycle(
            "job_cancelled",
            level=logging.WARNING,
            job_id=job_id,
            source_id=str(source.id),
            record_count=state.count,
        )

    def _finalize_failed(self, job_id: str, source: Source, error: Exception) -> None:
        """Mark a job failed after a connector error."""
        message = str(error) or error.__class__.__name__
        self.session.rollback()
        if self.jobs.finish(job_id, JobStatus.FAILED, error_message=message):
            self.events.emit(job_id, JobEventType.FAILED, message, {"error": message})
        else:
            logger.info(f"Job {job_id} left running state before failure was recorded")
        _log_lifecycle(
            "job_failed",
            level=logging.ERROR,
            job_id=job_id,
            source_id=str(source.id),
            error_message=message,
        )

    def _make_fetcher(self) -> HttpFetcher:
        kwargs: dict[str, Any] = {
            "timeout": self.http_settings.timeout,
            "max_retries": self.http_settings.max_retries,
            "pacing": self.http_settings.pacing,
        }
        if self.http_settings.user_agent:
            kwargs["user_agent"] = self.http_settings.user_agent
        return HttpFetcher(**kwargs)
