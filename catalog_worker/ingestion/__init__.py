"""
Catalog Ingestion Framework
===========================

This package provides the ingestion pipeline that pulls bibliographic
records from external sources into the canonical catalog.

Pipeline Stages:
1. Fetch - Connectors paginate a source catalog into raw records
2. Normalize - Clean titles, authors, languages, licenses and descriptions
3. Deduplicate - Match records to canonical authors and works
4. Persist - Upsert editions and refresh works
5. Index - Push one document per work to Meilisearch

Jobs wrap a full scan of one source and record progress in an event log;
the scheduler polls for pending jobs.
"""

from catalog_worker.ingestion.connectors import (
    BaseConnector,
    ConnectorError,
    RawRecord,
    create_connector,
)
from catalog_worker.ingestion.deduplicator import Deduplicator, title_similarity
from catalog_worker.ingestion.jobs import IngestionRunner, JobNotFoundError
from catalog_worker.ingestion.normalizer import NormalizedRecord, Normalizer
from catalog_worker.ingestion.pipeline import Pipeline, ProcessResult
from catalog_worker.ingestion.scheduler import Scheduler

__all__ = [
    # Connectors
    "BaseConnector",
    "ConnectorError",
    "RawRecord",
    "create_connector",
    # Normalizer
    "Normalizer",
    "NormalizedRecord",
    # Deduplicator
    "Deduplicator",
    "title_similarity",
    # Pipeline
    "Pipeline",
    "ProcessResult",
    # Jobs
    "IngestionRunner",
    "JobNotFoundError",
    "Scheduler",
]
