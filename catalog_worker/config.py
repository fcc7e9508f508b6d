"""
Worker Configuration Module
===========================

Loads worker settings from YAML, with environment variables taking
precedence over the file. Also reads the default source list used to
seed the sources table.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Project root: config/ sits next to the catalog_worker package
PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "worker.yaml"
DEFAULT_SOURCES_PATH = PROJECT_ROOT / "config" / "sources.yaml"


@dataclass
class WorkerSettings:
    """Scheduler and job runner settings."""

    poll_interval_seconds: float = 120.0
    batch_size: int = 10
    record_timeout_seconds: float = 60.0
    heartbeat_interval_seconds: float = 20.0
    cancel_check_interval: int = 50
    progress_interval: int = 10
    max_events_per_job: int = 500

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> WorkerSettings:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            poll_interval_seconds=float(data.get("poll_interval_seconds", 120.0)),
            batch_size=int(data.get("batch_size", 10)),
            record_timeout_seconds=float(data.get("record_timeout_seconds", 60.0)),
            heartbeat_interval_seconds=float(data.get("heartbeat_interval_seconds", 20.0)),
            cancel_check_interval=int(data.get("cancel_check_interval", 50)),
            progress_interval=int(data.get("progress_interval", 10)),
            max_events_per_job=int(data.get("max_events_per_job", 500)),
        )


@dataclass
class HttpSettings:
    """Connector HTTP settings."""

    # None keeps the fetcher default "catalog-worker/<version>"
    user_agent: str | None = None
    timeout: float = 30.0
    max_retries: int = 3
    pacing: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> HttpSettings:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            user_agent=data.get("user_agent"),
            timeout=float(data.get("timeout", 30.0)),
            max_retries=int(data.get("max_retries", 3)),
            pacing=bool(data.get("pacing", True)),
        )


@dataclass
class SearchSettings:
    """Meilisearch connection settings."""

    url: str = "http://localhost:7700"
    api_key: str | None = None
    index_name: str = "works"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SearchSettings:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            url=data.get("url", "http://localhost:7700"),
            api_key=data.get("api_key"),
            index_name=data.get("index_name", "works"),
        )


@dataclass
class Settings:
    """Top-level worker configuration."""

    database_url: str | None = None
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    search: SearchSettings = field(default_factory=SearchSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Settings:
        """Create from dictionary."""
        data = data or {}
        return cls(
            database_url=data.get("database_url"),
            worker=WorkerSettings.from_dict(data.get("worker")),
            http=HttpSettings.from_dict(data.get("http")),
            search=SearchSettings.from_dict(data.get("search")),
        )

    def apply_env(self, environ: dict[str, str] | None = None) -> Settings:
        """Override file values with environment variables."""
        env = os.environ if environ is None else environ
        if env.get("DATABASE_URL"):
            self.database_url = env["DATABASE_URL"]
        if env.get("MEILISEARCH_URL"):
            self.search.url = env["MEILISEARCH_URL"]
        if env.get("MEILISEARCH_API_KEY"):
            self.search.api_key = env["MEILISEARCH_API_KEY"]
        if env.get("MEILISEARCH_INDEX"):
            self.search.index_name = env["MEILISEARCH_INDEX"]
        if env.get("POLL_INTERVAL_SECONDS"):
            self.worker.poll_interval_seconds = float(env["POLL_INTERVAL_SECONDS"])
        return self


@dataclass
class SourceSeed:
    """A default source definition from sources.yaml."""

    name: str
    base_url: str
    connector_type: str
    enabled: bool = True
    trust_score: float = 0.5
    license_type: str = "public-domain"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceSeed:
        """Create from dictionary."""
        return cls(
            name=data["name"],
            base_url=data["base_url"],
            connector_type=data["connector_type"],
            enabled=data.get("enabled", True),
            trust_score=float(data.get("trust_score", 0.5)),
            license_type=data.get("license_type", "public-domain"),
        )


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_settings(config_path: Path | str | None = None) -> Settings:
    """
    Load worker settings.

    The file is taken from config_path, then WORKER_CONFIG_PATH, then
    config/worker.yaml. A missing default file yields built-in defaults;
    an explicitly named file must exist.

    Raises:
        FileNotFoundError: If an explicitly requested file is missing
    """
    explicit = config_path or os.environ.get("WORKER_CONFIG_PATH")
    path = Path(explicit).expanduser() if explicit else DEFAULT_CONFIG_PATH

    if path.exists():
        settings = Settings.from_dict(_read_yaml(path))
    elif explicit:
        raise FileNotFoundError(f"Configuration file not found: {path}")
    else:
        settings = Settings()

    return settings.apply_env()


def load_source_seeds(path: Path | str | None = None) -> list[SourceSeed]:
    """
    Load default source definitions.

    Args:
        path: Path to a sources YAML file (default: config/sources.yaml)

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(path).expanduser() if path else DEFAULT_SOURCES_PATH
    if not path.exists():
        raise FileNotFoundError(f"Sources file not found: {path}")
    return [SourceSeed.from_dict(s) for s in _read_yaml(path).get("sources", [])]
