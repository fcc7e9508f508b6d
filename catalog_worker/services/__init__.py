"""Application services for catalog-worker."""

from catalog_worker.services.search_index import (
    SearchIndexError,
    SearchIndexService,
    build_work_document,
)

__all__ = [
    "SearchIndexError",
    "SearchIndexService",
    "build_work_document",
]
