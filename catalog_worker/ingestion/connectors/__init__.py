"""
Connector Registry Module
=========================

Central registry mapping each ConnectorType to its implementation.
Provides a factory for creating a connector bound to one source.
"""

from __future__ import annotations

from catalog_worker.core.enums import ConnectorType
from catalog_worker.ingestion.connectors.base import BaseConnector, RawRecord
from catalog_worker.ingestion.connectors.epub_gratis import EpubGratisConnector
from catalog_worker.ingestion.connectors.epubbooks import EpubbooksConnector
from catalog_worker.ingestion.connectors.epublibre import EpublibreConnector
from catalog_worker.ingestion.connectors.errors import (
    ConnectorError,
    ConnectorFetchError,
    UnknownConnectorError,
)
from catalog_worker.ingestion.connectors.gutenberg import GutenbergConnector
from catalog_worker.ingestion.connectors.http import HttpFetcher
from catalog_worker.ingestion.connectors.open_library import OpenLibraryConnector
from catalog_worker.ingestion.connectors.standard_ebooks import StandardEbooksConnector

# Registry mapping connector types to their classes
CONNECTOR_REGISTRY: dict[ConnectorType, type[BaseConnector]] = {
    ConnectorType.GUTENBERG: GutenbergConnector,
    ConnectorType.STANDARD_EBOOKS: StandardEbooksConnector,
    ConnectorType.OPEN_LIBRARY: OpenLibraryConnector,
    ConnectorType.EPUB_GRATIS: EpubGratisConnector,
    ConnectorType.EPUBLIBRE: EpublibreConnector,
    ConnectorType.EPUBBOOKS: EpubbooksConnector,
}


def resolve_connector_type(connector_type: ConnectorType | str) -> ConnectorType:
    """
    Validate a connector type tag.

    Raises:
        UnknownConnectorError: If the tag names no registered connector
    """
    try:
        tag = ConnectorType(connector_type)
    except ValueError as e:
        raise UnknownConnectorError(f"Unknown connector type: {connector_type!r}") from e
    if tag not in CONNECTOR_REGISTRY:
        raise UnknownConnectorError(f"No connector registered for {tag.value!r}")
    return tag


def create_connector(
    connector_type: ConnectorType | str,
    source_id: str,
    fetcher: HttpFetcher | None = None,
) -> BaseConnector:
    """
    Create a connector bound to a source.

    Args:
        connector_type: Connector type tag (e.g., "gutenberg")
        source_id: Id stamped on every record the connector yields
        fetcher: Optional shared HTTP fetcher

    Returns:
        Connector instance

    Raises:
        UnknownConnectorError: If the type is not registered
    """
    connector_class = CONNECTOR_REGISTRY[resolve_connector_type(connector_type)]
    return connector_class(source_id, fetcher=fetcher)


def list_connectors() -> list[str]:
    """
    List all registered connector type names.

    Returns:
        List of connector type names
    """
    return [tag.value for tag in CONNECTOR_REGISTRY]


def get_connector_info(connector_type: ConnectorType | str) -> dict[str, str] | None:
    """
    Get information about a connector type.

    Args:
        connector_type: Connector type tag

    Returns:
        Dict with connector info, or None if not found
    """
    try:
        connector_class = CONNECTOR_REGISTRY[resolve_connector_type(connector_type)]
    except UnknownConnectorError:
        return None

    return {
        "name": connector_class.name,
        "version": connector_class.version,
        "class": connector_class.__name__,
        "base_url": connector_class.base_url,
    }


__all__ = [
    "BaseConnector",
    "RawRecord",
    "HttpFetcher",
    "ConnectorError",
    "ConnectorFetchError",
    "UnknownConnectorError",
    "CONNECTOR_REGISTRY",
    "create_connector",
    "get_connector_info",
    "list_connectors",
    "resolve_connector_type",
]
