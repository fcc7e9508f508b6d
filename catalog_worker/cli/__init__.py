"""Command-line interface for catalog-worker."""
