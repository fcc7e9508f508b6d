"""
ePubLibre Connector
===================

Elementor catalog at epublibre.bid. Cards carry an author line, and some
archive pages render cards as div.elementor-post instead of articles.
"""

from __future__ import annotations

from urllib.parse import urljoin

from bs4 import BeautifulSoup

from catalog_worker.ingestion.connectors.elementor import (
    BookDetails,
    ElementorConnector,
    ListingItem,
)


class EpublibreConnector(ElementorConnector):
    """Connector for epublibre.bid."""

    name = "epublibre"
    label = "ePubLibre"
    base_url = "https://epublibre.bid"
    listing_author_selectors = (
        ".elementor-post-author a",
        ".elementor-post-author",
        "[class*=author] a",
    )
    detail_author_selectors = ("a[class*=author]",)

    def parse_listing(self, html: str) -> list[ListingItem]:
        items = super().parse_listing(html)
        if items:
            return items

        soup = BeautifulSoup(html, "html.parser")
        seen: set[str] = set()
        for card in soup.select("div.elementor-post"):
            item = self._parse_card(card)
            if item is None or item.slug in seen:
                continue
            seen.add(item.slug)
            items.append(item)
        return items

    def parse_book_page(self, html: str, book_url: str) -> BookDetails:
        details = super().parse_book_page(html, book_url)
        if details.download_url == book_url:
            # No download buttons; fall back to any direct .epub link
            soup = BeautifulSoup(html, "html.parser")
            epub_link = next(
                (a["href"] for a in soup.find_all("a", href=True) if a["href"].lower().endswith(".epub")),
                None,
            )
            if epub_link:
                details.download_url = urljoin(book_url, epub_link)
        return details
