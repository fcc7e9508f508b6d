"""
Connector Base Module
=====================

Defines the raw record type and the abstract base class for source
connectors. Connectors are responsible for:
1. Paginating an external catalog (HTML listing, OPDS feed, JSON API)
2. Turning each catalog entry into a RawRecord stamped with the source id
3. Detecting end-of-catalog (404 on the next page, empty page, no "next" link)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from catalog_worker.ingestion.connectors.http import HttpFetcher

logger = logging.getLogger(__name__)


@dataclass
class RawRecord:
    """
    One catalog entry exactly as a connector found it.

    Ephemeral: records are normalized and never persisted directly.
    """

    source_id: str
    external_id: str
    title: str
    authors: list[str] = field(default_factory=list)
    language: str | None = None
    description: str | None = None
    subjects: list[str] = field(default_factory=list)
    license: str | None = None
    download_url: str = ""
    file_size: int | None = None
    published_date: str | None = None
    cover_url: str | None = None


class BaseConnector(ABC):
    """
    Abstract base class for source connectors.

    Each connector is bound to one source id. fetch_catalog() returns a
    lazy, single-pass async generator; calling it again starts a new scan.
    """

    # Connector identification (override in subclasses)
    name: str = "base"
    version: str = "1.0.0"
    base_url: str = ""

    # Default request used by health_check()
    health_url: str = ""

    def __init__(self, source_id: str, fetcher: HttpFetcher | None = None) -> None:
        """
        Initialize the connector.

        Args:
            source_id: Id of the source every record is stamped with
            fetcher: Shared HTTP fetcher; a default one is created if omitted
        """
        self.source_id = str(source_id)
        self.fetcher = fetcher or HttpFetcher()

    @abstractmethod
    def fetch_catalog(self) -> AsyncIterator[RawRecord]:
        """
        Scan the source catalog.

        Yields:
            RawRecord for every catalog entry, in discovery order

        Raises:
            ConnectorError: If the catalog cannot be read to the end
        """
        ...

    async def health_check(self) -> bool:
        """Check whether the source answers. Never raises."""
        try:
            response = await self.fetcher.get(self.health_url)
            return response.is_success
        except Exception as e:
            logger.warning(f"Health check failed for {self.name}: {e}")
            return False

    async def aclose(self) -> None:
        """Release the underlying HTTP client."""
        await self.fetcher.aclose()

    async def __aenter__(self) -> BaseConnector:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def make_record(self, external_id: str, title: str, **fields) -> RawRecord:
        """Build a RawRecord stamped with this connector's source id."""
        return RawRecord(
            source_id=self.source_id,
            external_id=external_id,
            title=title,
            **fields,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(source_id={self.source_id})>"
