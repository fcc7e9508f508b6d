"""
Elementor Listing Connector
===========================

Shared scraping for WordPress/Elementor ebook sites: paginated search
listings of article.elementor-post cards, followed by one detail-page
fetch per book for its authors and download link.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from catalog_worker.ingestion.connectors.base import BaseConnector, RawRecord
from catalog_worker.ingestion.connectors.errors import ConnectorError
from catalog_worker.ingestion.connectors.http import (
    DELAY_BETWEEN_BOOK_PAGES,
    DELAY_BETWEEN_PAGES,
)

logger = logging.getLogger(__name__)

MAX_PAGES = 100


@dataclass
class ListingItem:
    """A book card from a listing page."""

    url: str
    slug: str
    title: str
    author: str = "Unknown"
    cover_url: str | None = None


@dataclass
class BookDetails:
    """Fields scraped from a book detail page."""

    authors: list[str]
    download_url: str


def _slug_from_url(url: str) -> str:
    segments = [s for s in urlparse(url).path.split("/") if s]
    return segments[-1] if segments else urlparse(url).path.replace("/", "-")


class ElementorConnector(BaseConnector):
    """
    Base class for Elementor-based listing sites.

    Subclasses set base_url and may override is_book_link(),
    parse_listing() or parse_book_page() for site quirks.
    """

    language = "es"
    label = "Elementor"
    # Listing cards also carry an author line on some sites
    listing_author_selectors: tuple[str, ...] = ()
    # Extra detail-page selectors for author links
    detail_author_selectors: tuple[str, ...] = ()

    @property
    def health_url(self) -> str:
        return self.listing_url(1)

    def listing_url(self, page: int) -> str:
        """Search listing URL for a 1-based page number."""
        if page <= 1:
            return f"{self.base_url}/?s="
        return f"{self.base_url}/page/{page}/?s="

    def is_book_link(self, href: str) -> bool:
        """Whether a card link points at a same-origin book page."""
        return href.startswith(f"{self.base_url}/")

    def _parse_card(self, card: Tag) -> ListingItem | None:
        link = next(
            (a for a in card.find_all("a", href=True) if self.is_book_link(a["href"].strip())),
            None,
        )
        if link is None:
            return None
        url = link["href"].strip().split("#")[0].split("?")[0].rstrip("/") + "/"
        slug = _slug_from_url(url)

        title_el = card.select_one(".elementor-post__title a") or card.select_one(
            "h2 a, h3 a"
        )
        title = title_el.get_text(" ", strip=True) if title_el else ""

        author = "Unknown"
        for selector in self.listing_author_selectors:
            author_el = card.select_one(selector)
            if author_el and author_el.get_text(strip=True):
                author = author_el.get_text(" ", strip=True)
                break

        img = card.find("img", src=True)
        cover_url = urljoin(self.base_url, img["src"]) if img else None
        return ListingItem(url=url, slug=slug, title=title or slug, author=author, cover_url=cover_url)

    def parse_listing(self, html: str) -> list[ListingItem]:
        """Parse listing cards, skipping slugs repeated on the page."""
        soup = BeautifulSoup(html, "html.parser")
        items: list[ListingItem] = []
        seen: set[str] = set()
        for card in soup.select("article.elementor-post"):
            item = self._parse_card(card)
            if item is None or item.slug in seen:
                continue
            seen.add(item.slug)
            items.append(item)
        return items

    def parse_book_page(self, html: str, book_url: str) -> BookDetails:
        """Extract author links and the preferred download link."""
        soup = BeautifulSoup(html, "html.parser")

        authors: list[str] = []
        selectors = (".mbm-book-details-editors-data a",) + self.detail_author_selectors
        for selector in selectors:
            for link in soup.select(selector):
                name = link.get_text(" ", strip=True)
                if name and name not in authors:
                    authors.append(name)

        hrefs = [
            a["href"].strip()
            for a in soup.select("a.mbm-book-download-links-link[href]")
            if a["href"].strip()
        ]
        # Match on the path only: some hostnames contain "epub"
        download_url = next((h for h in hrefs if "epub" in urlparse(h).path.lower()), None)
        if download_url is None:
            download_url = hrefs[0] if hrefs else book_url
        return BookDetails(authors=authors, download_url=urljoin(book_url, download_url))

    async def fetch_catalog(self) -> AsyncIterator[RawRecord]:
        seen_slugs: set[str] = set()

        for page in range(1, MAX_PAGES + 1):
            if page > 1:
                await self.fetcher.throttle(DELAY_BETWEEN_PAGES)

            response = await self.fetcher.get(self.listing_url(page))
            if response.status_code == 404:
                logger.info(f"{self.label} catalog ended at page {page}")
                break
            if not response.is_success:
                raise ConnectorError(f"{self.label} listing error: {response.status_code}")

            items = self.parse_listing(response.text)
            if not items:
                break

            for item in items:
                if item.slug in seen_slugs:
                    continue
                seen_slugs.add(item.slug)

                await self.fetcher.throttle(DELAY_BETWEEN_BOOK_PAGES)
                authors = [item.author]
                download_url = item.url
                book_response = await self.fetcher.get(item.url)
                if book_response.is_success:
                    details = self.parse_book_page(book_response.text, item.url)
                    authors = details.authors or authors
                    download_url = details.download_url
                else:
                    logger.debug(f"Detail page {item.url} returned {book_response.status_code}")

                yield self.make_record(
                    external_id=item.slug,
                    title=item.title,
                    authors=authors,
                    language=self.language,
                    license="public-domain",
                    download_url=download_url,
                    cover_url=item.cover_url,
                )
