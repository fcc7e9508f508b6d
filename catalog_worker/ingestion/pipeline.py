"""
Record Pipeline Module
======================

Processes one raw record end to end:
1. Normalize
2. Drop records with an unsupported license
3. Resolve author and work
4. Upsert the edition and refresh the work, then commit
5. Push the work's search document (best-effort)
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass

from sqlalchemy.orm import Session

from catalog_worker.core.enums import SUPPORTED_LICENSES
from catalog_worker.db.repositories import (
    AuthorRepository,
    EditionRepository,
    WorkRepository,
)
from catalog_worker.ingestion.connectors.base import RawRecord
from catalog_worker.ingestion.deduplicator import Deduplicator
from catalog_worker.ingestion.normalizer import NormalizedRecord, Normalizer
from catalog_worker.services.search_index import SearchIndexService, build_work_document

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Outcome of processing one record."""

    work_id: str
    confidence: float = 1.0
    edition_created: bool = False
    # Set when the catalog write succeeded but the search push did not
    index_error: Exception | None = None


class Pipeline:
    """
    Runs records through normalization, deduplication and storage.

    Catalog writes are committed per record; the search push happens
    after the commit and never rolls it back. Storage runs in a worker
    thread, so the session must not be shared with event loop code.
    """

    def __init__(
        self,
        session: Session,
        search_index: SearchIndexService | None = None,
        normalizer: Normalizer | None = None,
        deduplicator: Deduplicator | None = None,
    ) -> None:
        self.session = session
        self.search_index = search_index
        self.normalizer = normalizer or Normalizer()
        self.deduplicator = deduplicator or Deduplicator(session)
        self.authors = AuthorRepository(session)
        self.works = WorkRepository(session)
        self.editions = EditionRepository(session)
        self._lock = threading.Lock()

    async def process(self, raw: RawRecord) -> ProcessResult | None:
        """
        Process one raw record.

        Returns:
            ProcessResult, or None if the record was dropped for its license

        Raises:
            Exception: Any storage error, after the session is rolled back
        """
        record = self.normalizer.normalize(raw)
        if record.license not in SUPPORTED_LICENSES:
            logger.debug(f"Dropping {record.external_id}: unsupported license {record.license!r}")
            return None

        # Off the event loop so a caller's wait_for() can time out a blocked write
        result, document = await asyncio.to_thread(self._store_and_commit, record)

        if document is not None:
            try:
                await asyncio.to_thread(self.search_index.index_document, document)
            except Exception as e:
                logger.warning(
                    f"Failed to index work to search: {result.work_id}: {e}. "
                    "Check MEILISEARCH_URL and MEILISEARCH_API_KEY."
                )
                result.index_error = e
        return result

    def _store_and_commit(self, record: NormalizedRecord) -> tuple[ProcessResult, dict | None]:
        """
        Store one record and build its search document in one transaction.

        Runs in a worker thread. The lock holds the next record back until
        a timed-out predecessor has released the session.
        """
        with self._lock:
            try:
                result = self._store(record)
                document = None
                if self.search_index is not None:
                    self.session.flush()
                    document = self._build_document(result.work_id)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        return result, document

    def _store(self, record: NormalizedRecord) -> ProcessResult:
        """Resolve entities and upsert the edition without committing."""
        _, work_id, confidence = self.deduplicator.resolve(record)

        _, created = self.editions.upsert(
            work_id=work_id,
            source_id=record.source_id,
            download_url=record.download_url,
            license=record.license,
            quality_score=confidence,
            cover_url=record.cover_url,
            file_size=record.file_size,
        )

        work = self.works.get_by_id(work_id)
        self.works.refresh_metadata(
            work,
            title=record.title,
            description=record.description,
            subjects=record.subjects,
        )
        return ProcessResult(work_id=work_id, confidence=confidence, edition_created=created)

    def _build_document(self, work_id: str) -> dict:
        work_db = self.works.get_by_id(work_id)
        author_db = self.authors.get_by_id(work_db.author_id)
        editions = [self.editions.to_domain(e) for e in self.editions.list_for_work(work_id)]
        return build_work_document(
            self.works.to_domain(work_db),
            self.authors.to_domain(author_db) if author_db else None,
            editions,
        )
