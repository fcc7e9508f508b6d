"""
epubBooks Connector
===================

Walks the epubBooks subject index, following each subject listing's
rel="next" pagination. Listing rows already carry title, author, cover
and a short description, so no detail pages are fetched.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from catalog_worker.ingestion.connectors.base import BaseConnector, RawRecord
from catalog_worker.ingestion.connectors.errors import ConnectorError
from catalog_worker.ingestion.connectors.http import DELAY_BETWEEN_PAGES

logger = logging.getLogger(__name__)

BASE = "https://www.epubbooks.com"
SUBJECTS_URL = f"{BASE}/subjects"
DESCRIPTION_SNIPPET_LENGTH = 500

_SUBJECT_HREF = re.compile(r"^(?:https?://www\.epubbooks\.com)?(/subject/[^?#]+)$")
_BOOK_HREF = re.compile(r"/book/(\d+)-([^/?#\"']+)")


@dataclass
class ListingBook:
    """A book row from a subject listing."""

    id: str
    slug: str
    title: str
    author: str
    book_url: str
    cover_url: str | None = None
    description: str | None = None


def parse_subject_paths(html: str) -> list[str]:
    """Extract unique /subject/<name> paths from the subjects index."""
    soup = BeautifulSoup(html, "html.parser")
    paths: dict[str, None] = {}
    for link in soup.find_all("a", href=True):
        match = _SUBJECT_HREF.match(link["href"].strip())
        if match:
            paths.setdefault(match.group(1).rstrip("/"), None)
    return list(paths)


def parse_subject_listing(html: str) -> list[ListingBook]:
    """Parse li.media rows of a subject listing page."""
    soup = BeautifulSoup(html, "html.parser")
    books: list[ListingBook] = []

    for row in soup.select("li.media"):
        link = next((a for a in row.find_all("a", href=True) if _BOOK_HREF.search(a["href"])), None)
        if link is None:
            continue
        match = _BOOK_HREF.search(link["href"])
        book_id, slug = match.group(1), match.group(2)

        heading = row.select_one("h2.media-heading a") or row.select_one(".media-heading a")
        title = heading.get_text(" ", strip=True) if heading else ""
        author_el = row.select_one("span.small")
        author = author_el.get_text(" ", strip=True) if author_el else ""

        img = row.find("img", src=True)
        cover_url = urljoin(BASE, img["src"]) if img else None

        description = None
        paragraph = row.find("p")
        if paragraph is not None:
            for anchor in paragraph.find_all("a"):
                if "read more" in anchor.get_text(strip=True).lower():
                    anchor.decompose()
            text = " ".join(paragraph.get_text(" ").split())
            description = text[:DESCRIPTION_SNIPPET_LENGTH] or None

        books.append(
            ListingBook(
                id=book_id,
                slug=slug,
                title=title or slug,
                author=author or "Unknown",
                book_url=urljoin(BASE, f"/book/{book_id}-{slug}"),
                cover_url=cover_url,
                description=description,
            )
        )
    return books


def parse_next_page_url(html: str) -> str | None:
    """Return the absolute rel="next" pagination URL, if any."""
    soup = BeautifulSoup(html, "html.parser")
    link = soup.select_one('a[rel~="next"][href]')
    return urljoin(BASE, link["href"]) if link else None


class EpubbooksConnector(BaseConnector):
    """Connector for epubbooks.com."""

    name = "epubbooks"
    base_url = BASE
    health_url = SUBJECTS_URL

    async def fetch_catalog(self) -> AsyncIterator[RawRecord]:
        response = await self.fetcher.get(SUBJECTS_URL)
        if not response.is_success:
            raise ConnectorError(f"Epubbooks subjects error: {response.status_code}")
        subject_paths = parse_subject_paths(response.text)
        if not subject_paths:
            logger.warning("Epubbooks subjects page listed no subjects")
            return

        seen_ids: set[str] = set()
        first_page = True
        for subject_path in subject_paths:
            current_url: str | None = f"{BASE}{subject_path}"
            visited: set[str] = set()

            while current_url and current_url not in visited:
                visited.add(current_url)
                if not first_page:
                    await self.fetcher.throttle(DELAY_BETWEEN_PAGES)
                first_page = False

                page = await self.fetcher.get(current_url)
                if page.status_code == 404:
                    break
                if not page.is_success:
                    raise ConnectorError(
                        f"Epubbooks listing error: {page.status_code} {current_url}"
                    )

                for book in parse_subject_listing(page.text):
                    if book.id in seen_ids:
                        continue
                    seen_ids.add(book.id)
                    yield self.make_record(
                        external_id=book.id,
                        title=book.title,
                        authors=[book.author],
                        language="en",
                        description=book.description,
                        license="public-domain",
                        download_url=book.book_url,
                        cover_url=book.cover_url,
                    )

                current_url = parse_next_page_url(page.text)
