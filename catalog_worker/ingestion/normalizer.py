"""
Record Normalizer Module
========================

Cleans and standardizes raw connector records for consistent storage
and matching. Pure transformation: no I/O and no persisted state.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field

from catalog_worker.core.enums import SUPPORTED_LICENSES
from catalog_worker.ingestion.connectors.base import RawRecord

# Column limits
MAX_TITLE_LENGTH = 1000
MAX_AUTHOR_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 10000
MAX_SUBJECT_LENGTH = 200
MAX_URL_LENGTH = 2048
MAX_PUBLISHED_DATE_LENGTH = 50

DEFAULT_LANGUAGE = "en"
DEFAULT_LICENSE = "public-domain"


@dataclass
class NormalizedRecord:
    """
    Cleaned and length-bounded catalog record.

    Same shape as RawRecord; all fields are in canonical form ready for
    deduplication.
    """

    source_id: str
    external_id: str
    title: str
    authors: list[str] = field(default_factory=list)
    language: str = DEFAULT_LANGUAGE
    description: str | None = None
    subjects: list[str] = field(default_factory=list)
    license: str = DEFAULT_LICENSE
    download_url: str = ""
    file_size: int | None = None
    published_date: str | None = None
    cover_url: str | None = None


class Normalizer:
    """
    Normalizes raw records into canonical forms.

    Handles:
    - Whitespace cleanup and column length caps
    - Language codes (e.g., "eng" -> "en")
    - License tags (e.g., "Public Domain" -> "public-domain")
    - HTML descriptions to plain text
    """

    # Language aliases: maps common spellings to ISO 639-1 codes
    LANGUAGE_MAP: dict[str, str] = {
        "en": "en",
        "eng": "en",
        "english": "en",
        "fr": "fr",
        "fra": "fr",
        "french": "fr",
        "de": "de",
        "ger": "de",
        "german": "de",
        "es": "es",
        "spa": "es",
        "spanish": "es",
        "it": "it",
        "ita": "it",
        "italian": "it",
        "pt": "pt",
        "por": "pt",
        "portuguese": "pt",
    }

    # License aliases, keyed after hyphens are turned into spaces
    LICENSE_MAP: dict[str, str] = {
        "public domain": "public-domain",
        "pd": "public-domain",
        "cc0": "cc0",
        "cc 0": "cc0",
        "cc by": "cc-by",
        "cc by sa": "cc-by-sa",
        "cc by nc": "cc-by-nc",
        "cc by nc sa": "cc-by-nc-sa",
        "gutenberg": "gutenberg",
    }

    # Block-level closing tags that become line breaks in descriptions
    BLOCK_BREAK_PATTERN = re.compile(r"</p\s*>|<br\s*/?>|</div\s*>|</li\s*>", re.I)
    ANCHOR_PATTERN = re.compile(
        r"<a\s[^>]*href=[\"']([^\"']+)[\"'][^>]*>(.*?)</a\s*>", re.I | re.S
    )
    TAG_PATTERN = re.compile(r"<[^>]+>")

    def normalize(self, raw: RawRecord) -> NormalizedRecord:
        """
        Normalize a raw record.

        Args:
            raw: Record as produced by a connector

        Returns:
            NormalizedRecord with cleaned and standardized data
        """
        return NormalizedRecord(
            source_id=raw.source_id,
            external_id=raw.external_id,
            title=self.normalize_title(raw.title),
            authors=[self.normalize_author(a) for a in raw.authors],
            language=self.normalize_language(raw.language),
            description=self.normalize_description(raw.description),
            subjects=self.normalize_subjects(raw.subjects),
            license=self.normalize_license(raw.license),
            download_url=self._cap(raw.download_url.strip(), MAX_URL_LENGTH),
            file_size=raw.file_size,
            published_date=self._clean_optional(raw.published_date, MAX_PUBLISHED_DATE_LENGTH),
            cover_url=self._clean_optional(raw.cover_url, MAX_URL_LENGTH),
        )

    @staticmethod
    def _collapse(value: str) -> str:
        """Trim and collapse runs of whitespace to single spaces."""
        return re.sub(r"\s+", " ", value).strip()

    @staticmethod
    def _cap(value: str, limit: int) -> str:
        """Truncate to a column limit without leaving trailing whitespace."""
        return value[:limit].rstrip()

    def _clean_optional(self, value: str | None, limit: int) -> str | None:
        if value is None:
            return None
        return self._cap(value.strip(), limit)

    def normalize_title(self, title: str | None) -> str:
        """Collapse whitespace and cap the title."""
        return self._cap(self._collapse(title or ""), MAX_TITLE_LENGTH)

    def normalize_author(self, name: str) -> str:
        """Drop commas, collapse whitespace and cap the author name."""
        return self._cap(self._collapse(name.replace(",", "")), MAX_AUTHOR_LENGTH)

    def normalize_subjects(self, subjects: list[str]) -> list[str]:
        """Trim and cap subjects, dropping empty ones."""
        cleaned = (self._cap(s.strip(), MAX_SUBJECT_LENGTH) for s in subjects)
        return [s for s in cleaned if s]

    def normalize_language(self, language: str | None) -> str:
        """
        Map a language string to a two-letter code.

        Unknown values fall back to their first two characters.
        """
        key = (language or "").strip().lower()[:20]
        return self.LANGUAGE_MAP.get(key) or key[:2] or DEFAULT_LANGUAGE

    def normalize_license(self, license: str | None) -> str:
        """
        Map a license string to a supported license tag.

        Unmapped values are kept only if already a supported tag.
        """
        raw = (license or "").strip().lower()
        mapped = self.LICENSE_MAP.get(raw.replace("-", " "))
        if mapped:
            return mapped
        lower = raw[:100]
        return lower if lower in SUPPORTED_LICENSES else DEFAULT_LICENSE

    def normalize_description(self, description: str | None) -> str | None:
        """
        Convert an HTML description to plain text.

        Entities are decoded first, block tags become line breaks, anchors
        render as "text (href)", remaining tags are removed, and all
        whitespace is collapsed.
        """
        if not description:
            return None
        text = html.unescape(description)
        text = self.BLOCK_BREAK_PATTERN.sub("\n", text)
        text = self.ANCHOR_PATTERN.sub(lambda m: f"{m.group(2)} ({m.group(1)})", text)
        text = self.TAG_PATTERN.sub("", text)
        text = self._cap(self._collapse(text), MAX_DESCRIPTION_LENGTH)
        return text or None
