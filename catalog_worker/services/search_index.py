"""Meilisearch service for catalog search indexing.

This service maintains one composite document per Work in the Meilisearch
index, combining the work, its author and a summary of its editions.
"""

import logging
import os
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from meilisearch import Client
from meilisearch.errors import MeilisearchApiError, MeilisearchError

from catalog_worker.core.schema import Author, Edition, Work

logger = logging.getLogger(__name__)

# Index name
WORKS_INDEX = "works"

# How long index_document() waits for Meilisearch to apply a write
TASK_TIMEOUT_MS = 10_000

INDEX_SETTINGS: dict[str, Any] = {
    "searchableAttributes": [
        "canonical_title",
        "author_name",
        "subjects",
        "description",
    ],
    "filterableAttributes": [
        "author_id",
        "language",
        "licenses",
        "source_ids",
    ],
    "sortableAttributes": [
        "popularity_score",
        "updated_at",
        "canonical_title",
    ],
}


class SearchIndexError(Exception):
    """Raised when a document could not be written to the search index."""


def _epoch_ms(value: datetime) -> int:
    # SQLite hands back naive datetimes; they are stored as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def build_work_document(
    work: Work,
    author: Author | None,
    editions: list[Edition],
) -> dict[str, Any]:
    """
    Build the composite search document for a work.

    Licenses and source ids are distinct in edition order; the cover is
    the first edition cover that is set.
    """
    licenses: list[str] = []
    source_ids: list[str] = []
    cover_url = None
    for edition in editions:
        if edition.license not in licenses:
            licenses.append(edition.license)
        source_id = str(edition.source_id)
        if source_id not in source_ids:
            source_ids.append(source_id)
        if cover_url is None and edition.cover_url:
            cover_url = edition.cover_url

    return {
        "id": str(work.id),
        "canonical_title": work.canonical_title,
        "author_name": author.canonical_name if author else "Unknown",
        "author_id": str(work.author_id),
        "language": work.language,
        "description": work.description,
        "subjects": work.subjects,
        "licenses": licenses,
        "source_ids": source_ids,
        "cover_url": cover_url,
        "popularity_score": float(work.popularity_score or 0.0),
        "updated_at": _epoch_ms(work.updated_at),
    }


class SearchIndexService:
    """Service for writing work documents to Meilisearch."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        index_name: str | None = None,
        client: Client | None = None,
    ):
        """
        Initialize the search index service.

        Args:
            url: Meilisearch server URL (default: MEILISEARCH_URL env or localhost:7700)
            api_key: Meilisearch API key (default: MEILISEARCH_API_KEY env or None)
            index_name: Index uid (default: MEILISEARCH_INDEX env or "works")
            client: Pre-built client, mainly for tests
        """
        self.url = url or os.getenv("MEILISEARCH_URL", "http://localhost:7700")
        self.api_key = api_key or os.getenv("MEILISEARCH_API_KEY")
        self.index_name = index_name or os.getenv("MEILISEARCH_INDEX", WORKS_INDEX)
        self.client = client or Client(self.url, self.api_key)
        self._index_ready = False

    @classmethod
    def from_config(cls, config) -> "SearchIndexService":
        """Create the service from SearchSettings."""
        return cls(url=config.url, api_key=config.api_key, index_name=config.index_name)

    def is_available(self) -> bool:
        """Check if Meilisearch is reachable."""
        try:
            self.client.health()
            return True
        except Exception:
            return False

    def ensure_index(self) -> None:
        """Create and configure the index on first use if it does not exist."""
        if self._index_ready:
            return
        try:
            self.client.get_index(self.index_name)
        except MeilisearchApiError:
            logger.info(f"Creating Meilisearch index {self.index_name!r}")
            task = self.client.create_index(self.index_name, {"primaryKey": "id"})
            self._wait(task.task_uid)
            settings_task = self.client.index(self.index_name).update_settings(INDEX_SETTINGS)
            self._wait(settings_task.task_uid)
        self._index_ready = True

    def index_document(self, document: dict[str, Any]) -> None:
        """
        Add or replace a work document and wait for Meilisearch to apply it.

        Raises:
            SearchIndexError: If the write fails or does not finish in time
        """
        try:
            self.ensure_index()
            task = self.client.index(self.index_name).add_documents([document], primary_key="id")
            self._wait(task.task_uid)
        except MeilisearchError as e:
            raise SearchIndexError(f"Failed to index work {document.get('id')}: {e}") from e
        logger.debug(f"Indexed work {document.get('id')}")

    def delete_work(self, work_id: UUID | str) -> None:
        """Remove a work document from the index."""
        try:
            task = self.client.index(self.index_name).delete_document(str(work_id))
            self._wait(task.task_uid)
        except MeilisearchError as e:
            raise SearchIndexError(f"Failed to delete work {work_id}: {e}") from e

    def _wait(self, task_uid: int) -> None:
        """Wait for a task; a failed task raises SearchIndexError."""
        task = self.client.wait_for_task(task_uid, timeout_in_ms=TASK_TIMEOUT_MS)
        if task.status == "failed":
            raise SearchIndexError(f"Meilisearch task {task_uid} failed: {task.error}")
