"""Enums for catalog ingestion fields."""

from enum import Enum


class JobStatus(str, Enum):
    """Status of an ingestion job.

    Transitions are monotonic: pending -> running -> one of the terminal
    states. A retry always creates a fresh job.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


NON_TERMINAL_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)


class JobEventType(str, Enum):
    """Type of an ingestion job event."""

    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ConnectorType(str, Enum):
    """Closed set of source connector implementations."""

    GUTENBERG = "gutenberg"
    STANDARD_EBOOKS = "standard_ebooks"
    OPEN_LIBRARY = "open_library"
    EPUB_GRATIS = "epub_gratis"
    EPUBLIBRE = "epublibre"
    EPUBBOOKS = "epubbooks"


# Licenses an edition may carry to be accepted into the catalog
SUPPORTED_LICENSES: frozenset[str] = frozenset(
    {
        "public-domain",
        "cc0",
        "cc-by",
        "cc-by-sa",
        "cc-by-nc",
        "cc-by-nc-sa",
        "pd",
        "gutenberg",
    }
)
