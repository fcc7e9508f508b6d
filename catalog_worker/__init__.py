"""Catalog Worker - bibliographic catalog ingestion pipeline."""

__version__ = "0.1.0"
