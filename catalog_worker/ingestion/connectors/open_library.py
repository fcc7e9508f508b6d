"""
Open Library Connector
======================

Discovers subject keys from the Open Library subjects page, then pages
through the JSON search API per subject. Only works with a full-text
download (Project Gutenberg or Internet Archive) are yielded, once each
across all subjects.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import unquote, urlencode

from bs4 import BeautifulSoup

from catalog_worker.ingestion.connectors.base import BaseConnector, RawRecord
from catalog_worker.ingestion.connectors.errors import ConnectorFetchError

logger = logging.getLogger(__name__)

OPEN_LIBRARY_API = "https://openlibrary.org"
SUBJECTS_URL = f"{OPEN_LIBRARY_API}/subjects"
COVER_URL_TEMPLATE = "https://covers.openlibrary.org/b/id/{cover_id}-M.jpg"
ARCHIVE_EPUB_TEMPLATE = "https://archive.org/download/{ia}/{ia}.epub"
GUTENBERG_EPUB_TEMPLATE = "https://www.gutenberg.org/ebooks/{pg}.epub.images"

REQUEST_DELAY = 0.2
SEARCH_PAGE_SIZE = 100
MAX_PAGES_PER_SUBJECT = 100

_SUBJECT_PATH = re.compile(r"^/subjects/([^?#]+)$")
_SUBJECT_QUERY = re.compile(r"^/search\?q=subject_key%3A%22([^\"&]+)%22$")


def build_search_url(subject_key: str, offset: int, limit: int = SEARCH_PAGE_SIZE) -> str:
    """Build a search API URL for one page of a subject."""
    params = {"q": f"subject_key:{subject_key}", "offset": str(offset), "limit": str(limit)}
    return f"{OPEN_LIBRARY_API}/search.json?{urlencode(params)}"


def parse_subject_keys(html: str) -> list[str]:
    """
    Extract subject keys from the subjects page.

    The "languages" index is skipped: it lists languages, not subjects.
    """
    soup = BeautifulSoup(html, "html.parser")
    keys: dict[str, None] = {}
    for link in soup.find_all("a", href=True):
        href = link["href"].strip()
        match = _SUBJECT_PATH.match(href) or _SUBJECT_QUERY.match(href)
        if not match:
            continue
        key = unquote(match.group(1).strip())
        if key and key != "languages":
            keys.setdefault(key, None)
    return list(keys)


def doc_to_record_fields(doc: dict[str, Any], subject_key: str) -> dict[str, Any] | None:
    """
    Map a search doc to record fields.

    Returns:
        Field dict, or None if the work has no downloadable full text
    """
    ia_ids = doc.get("ia") or []
    pg_ids = doc.get("id_project_gutenberg") or []
    if not doc.get("has_fulltext") or not (ia_ids or pg_ids):
        return None

    if pg_ids:
        download_url = GUTENBERG_EPUB_TEMPLATE.format(pg=pg_ids[0])
    else:
        download_url = ARCHIVE_EPUB_TEMPLATE.format(ia=ia_ids[0])

    cover_id = doc.get("cover_i")
    first_year = doc.get("first_publish_year")
    languages = doc.get("language") or []
    return {
        "external_id": doc["key"].removeprefix("/works/"),
        "title": doc.get("title") or "Unknown",
        "authors": list(doc.get("author_name") or []) or ["Unknown"],
        "language": languages[0] if languages else "en",
        "subjects": [subject_key],
        "license": "public-domain",
        "download_url": download_url,
        "published_date": str(first_year) if first_year is not None else None,
        "cover_url": COVER_URL_TEMPLATE.format(cover_id=cover_id) if cover_id is not None else None,
    }


class OpenLibraryConnector(BaseConnector):
    """Connector for the Open Library search API."""

    name = "open_library"
    base_url = OPEN_LIBRARY_API
    health_url = f"{OPEN_LIBRARY_API}/search.json?q=subject_key:architecture&limit=1"

    async def _fetch_json(self, url: str) -> dict[str, Any] | None:
        """Fetch a search page; any failure reads as an empty page."""
        await self.fetcher.throttle(REQUEST_DELAY)
        try:
            response = await self.fetcher.get(url, headers={"Accept": "application/json"})
        except ConnectorFetchError as e:
            logger.warning(f"Open Library search failed: {e}")
            return None
        if not response.is_success:
            logger.warning(f"Open Library search returned {response.status_code} for {url}")
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"Open Library returned invalid JSON for {url}: {e}")
            return None

    async def fetch_catalog(self) -> AsyncIterator[RawRecord]:
        await self.fetcher.throttle(REQUEST_DELAY)
        response = await self.fetcher.get(SUBJECTS_URL, headers={"Accept": "text/html"})
        if not response.is_success:
            logger.warning(f"Open Library subjects page returned {response.status_code}")
            return
        subject_keys = parse_subject_keys(response.text)
        logger.info(f"Open Library: {len(subject_keys)} subjects discovered")
        seen_work_keys: set[str] = set()

        for subject_key in subject_keys:
            for page in range(MAX_PAGES_PER_SUBJECT):
                data = await self._fetch_json(
                    build_search_url(subject_key, offset=page * SEARCH_PAGE_SIZE)
                )
                docs = (data or {}).get("docs") or []
                if not docs:
                    break

                for doc in docs:
                    work_key = doc.get("key")
                    if not work_key or work_key in seen_work_keys:
                        continue
                    fields = doc_to_record_fields(doc, subject_key)
                    if fields is None:
                        continue
                    seen_work_keys.add(work_key)
                    yield self.make_record(**fields)

                if len(docs) < SEARCH_PAGE_SIZE:
                    break

    async def health_check(self) -> bool:
        try:
            response = await self.fetcher.get(self.health_url)
            if not response.is_success:
                return False
            return isinstance(response.json().get("docs"), list)
        except Exception as e:
            logger.warning(f"Health check failed for {self.name}: {e}")
            return False
