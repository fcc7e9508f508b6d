"""
Project Gutenberg Connector
===========================

Scrapes the Gutenberg search results (sorted by downloads) page by page.
EPUB and cover URLs are derived from the numeric book id.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from catalog_worker.ingestion.connectors.base import BaseConnector, RawRecord
from catalog_worker.ingestion.connectors.errors import ConnectorError
from catalog_worker.ingestion.connectors.http import DELAY_BETWEEN_PAGES

logger = logging.getLogger(__name__)

SEARCH_BASE = "https://www.gutenberg.org/ebooks/search/"
PAGE_SIZE = 25
EPUB_URL_TEMPLATE = "https://www.gutenberg.org/cache/epub/{id}/pg{id}-images.epub"
COVER_URL_TEMPLATE = "https://www.gutenberg.org/cache/epub/{id}/pg{id}.cover.medium.jpg"

_BOOK_HREF = re.compile(r"^(?:https?://[^/]+)?/ebooks/(\d+)/?(?:\?.*)?$")
_DOWNLOADS_SUFFIX = re.compile(r"\s+\d+\s*downloads?\s*$", re.IGNORECASE)


@dataclass
class ScrapedBook:
    """A book row from a search results page."""

    id: str
    title: str
    authors: list[str]


def build_search_url(start_index: int) -> str:
    """Build the search URL for one results page."""
    params = {"query": "", "sort_order": "downloads", "start_index": str(start_index)}
    return f"{SEARCH_BASE}?{urlencode(params)}"


def _clean_link_title(raw_title: str, author: str | None) -> str:
    """Strip a trailing 'NNN downloads' and author name from link text."""
    title = _DOWNLOADS_SUFFIX.sub("", raw_title).strip()
    if not title:
        return raw_title or "Unknown"
    if author and author != "Unknown":
        without_author = re.sub(rf"\s*{re.escape(author)}\s*$", "", title, flags=re.IGNORECASE)
        return without_author.strip() or title
    return title


def parse_search_results(html: str) -> list[ScrapedBook]:
    """
    Parse a search results page.

    Each result links to /ebooks/<id>; the title and author live in
    span.title and span.subtitle inside the link when present.
    """
    soup = BeautifulSoup(html, "html.parser")
    books: list[ScrapedBook] = []
    seen: set[str] = set()

    for link in soup.find_all("a", href=True):
        match = _BOOK_HREF.match(link["href"])
        if not match:
            continue
        book_id = match.group(1)
        if book_id in seen:
            continue
        seen.add(book_id)

        author_el = link.select_one(".subtitle")
        author = author_el.get_text(" ", strip=True) if author_el else ""
        author = author.strip(" ,;|") or "Unknown"

        title_el = link.select_one(".title")
        if title_el:
            title = title_el.get_text(" ", strip=True) or "Unknown"
        else:
            title = _clean_link_title(link.get_text(" ", strip=True), author)

        books.append(ScrapedBook(id=book_id, title=title, authors=[author]))

    return books


class GutenbergConnector(BaseConnector):
    """Connector for Project Gutenberg's search listing."""

    name = "gutenberg"
    base_url = "https://www.gutenberg.org"
    health_url = build_search_url(0)

    async def fetch_catalog(self) -> AsyncIterator[RawRecord]:
        start_index = 0
        first_page = True

        while True:
            if not first_page:
                await self.fetcher.throttle(DELAY_BETWEEN_PAGES)
            first_page = False

            url = build_search_url(start_index)
            response = await self.fetcher.get(url)
            if response.status_code in (400, 404):
                logger.info(f"Gutenberg catalog ended at start_index={start_index}")
                break
            if not response.is_success:
                raise ConnectorError(f"Gutenberg search error: {response.status_code}")

            books = parse_search_results(response.text)
            if not books:
                break

            for book in books:
                yield self.make_record(
                    external_id=book.id,
                    title=book.title,
                    authors=book.authors,
                    language="en",
                    license="public-domain",
                    download_url=EPUB_URL_TEMPLATE.format(id=book.id),
                    cover_url=COVER_URL_TEMPLATE.format(id=book.id),
                )

            if len(books) < PAGE_SIZE:
                break
            start_index += PAGE_SIZE
