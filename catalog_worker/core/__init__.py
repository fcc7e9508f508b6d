"""Core domain types shared across the worker."""
