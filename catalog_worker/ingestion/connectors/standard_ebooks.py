"""
Standard Ebooks Connector
=========================

Reads the Standard Ebooks OPDS catalog. The full OPDS feed requires a
patron account; on 401/403 the connector reads the public new-releases
Atom feed and then walks the paginated HTML browse pages for the rest of
the catalog.
"""

from __future__ import annotations

import asyncio
import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from catalog_worker.ingestion.connectors.base import BaseConnector, RawRecord
from catalog_worker.ingestion.connectors.errors import ConnectorError, ConnectorFetchError
from catalog_worker.ingestion.connectors.http import DELAY_BETWEEN_BOOK_PAGES

logger = logging.getLogger(__name__)

SE_BASE = "https://standardebooks.org"
OPDS_FEED = f"{SE_BASE}/feeds/opds"
ATOM_NEW_RELEASES = f"{SE_BASE}/feeds/atom/new-releases"
BROWSE_URL = f"{SE_BASE}/ebooks"
BROWSE_PER_PAGE = 48

# Browse page limits
BROWSE_PAGE_TIMEOUT = 15.0
BROWSE_PAGE_OUTER_TIMEOUT = 20.0
BROWSE_MAX_CONSECUTIVE_FAILURES = 3
BROWSE_MAX_PAGES = 80

NS = {"atom": "http://www.w3.org/2005/Atom"}
EPUB_MIME = "application/epub+zip"
IMAGE_RELS = (
    "http://opds-spec.org/image",
    "http://opds-spec.org/image/thumbnail",
    "x-stanza-cover-image",
    "thumbnail",
)

_BROWSE_HREF = re.compile(r"^(?:https://standardebooks\.org)?/ebooks/([^?#]+)$")


@dataclass
class FeedEntry:
    """A book entry from an Atom/OPDS feed."""

    id: str
    title: str
    epub_url: str
    authors: list[str] = field(default_factory=list)
    summary: str | None = None
    subjects: list[str] = field(default_factory=list)
    cover_url: str | None = None
    updated: str | None = None


def slug_to_title(slug: str) -> str:
    """Slug to title case: "the-cheyne-mystery" -> "The Cheyne Mystery"."""
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), slug.replace("-", " "))


def cover_url_from_epub_url(epub_url: str) -> str:
    """Derive the book's cover.svg URL from its EPUB download URL."""
    parsed = urlparse(epub_url)
    path = re.sub(r"/downloads/[^/]+$", "", parsed.path)
    return f"{parsed.scheme}://{parsed.netloc}{path}/images/cover.svg"


def epub_url_to_book_path(epub_url: str) -> str | None:
    """Extract "author/title[/translator]" from an EPUB URL."""
    match = re.match(r"^/ebooks/(.+)/downloads/", urlparse(epub_url).path)
    return match.group(1) if match else None


def path_to_record_fields(path: str) -> dict:
    """Build EPUB/cover URLs and title/author from a book path."""
    segments = [s for s in path.split("/") if s]
    epub_slug = "_".join(segments)
    title_slug = segments[-1] if len(segments) >= 2 else (segments[0] if segments else path)
    return {
        "download_url": f"{SE_BASE}/ebooks/{path}/downloads/{epub_slug}.epub",
        "cover_url": f"{SE_BASE}/ebooks/{path}/images/cover.svg",
        "title": slug_to_title(title_slug),
        "authors": [slug_to_title(segments[0])] if segments else ["Unknown"],
    }


def _element_text(node: ET.Element | None) -> str | None:
    if node is None:
        return None
    text = "".join(node.itertext()).strip()
    return text or None


def _cover_from_links(links: list[ET.Element], base_url: str) -> str | None:
    for link in links:
        href = link.get("href")
        if not href:
            continue
        rel = (link.get("rel") or "").lower()
        link_type = link.get("type") or ""
        is_image_rel = "image" in rel or "cover" in rel or any(r in rel for r in IMAGE_RELS)
        if is_image_rel or link_type.startswith("image/"):
            return urljoin(base_url, href)
    return None


def parse_feed_entries(xml_payload: str, base_url: str) -> list[FeedEntry]:
    """
    Parse Atom/OPDS entries that carry an EPUB acquisition link.

    Raises:
        ConnectorError: If the payload is not well-formed XML
    """
    try:
        root = ET.fromstring(xml_payload)
    except ET.ParseError as exc:
        raise ConnectorError(f"Unable to parse Standard Ebooks feed: {exc}") from exc

    entries: list[FeedEntry] = []
    for node in root.findall("atom:entry", NS):
        links = node.findall("atom:link", NS)
        epub_href = next(
            (link.get("href") for link in links if link.get("type") == EPUB_MIME and link.get("href")),
            None,
        )
        if not epub_href:
            continue
        epub_url = urljoin(base_url, epub_href)

        authors = []
        for author_node in node.findall("atom:author", NS):
            name = author_node.findtext("atom:name", default="", namespaces=NS).strip()
            if name:
                authors.append(name)

        entry_id = node.findtext("atom:id", default="", namespaces=NS).strip()
        updated = node.findtext("atom:updated", default="", namespaces=NS).strip()
        entries.append(
            FeedEntry(
                id=entry_id or urlparse(epub_url).path.rstrip("/"),
                title=node.findtext("atom:title", default="", namespaces=NS).strip(),
                epub_url=epub_url,
                authors=authors or ["Unknown"],
                summary=_element_text(node.find("atom:content", NS))
                or _element_text(node.find("atom:summary", NS)),
                subjects=[c.get("term") for c in node.findall("atom:category", NS) if c.get("term")],
                cover_url=_cover_from_links(links, base_url) or cover_url_from_epub_url(epub_url),
                updated=updated or None,
            )
        )
    return entries


def parse_browse_links(html: str) -> list[str]:
    """Collect unique "author/title" book paths from a browse page."""
    soup = BeautifulSoup(html, "html.parser")
    paths: dict[str, None] = {}
    for link in soup.find_all("a", href=True):
        match = _BROWSE_HREF.match(link["href"].strip())
        if not match:
            continue
        path = match.group(1).strip().strip("/")
        segments = path.split("/")
        # Author pages have one segment; asset links live under downloads/ or images/
        if len(segments) < 2 or "downloads" in segments or "images" in segments:
            continue
        paths.setdefault(path, None)
    return list(paths)


class StandardEbooksConnector(BaseConnector):
    """Connector for standardebooks.org."""

    name = "standard_ebooks"
    base_url = SE_BASE
    health_url = OPDS_FEED

    async def fetch_catalog(self) -> AsyncIterator[RawRecord]:
        seen_paths: set[str] = set()
        browse_fallback = False

        response = await self.fetcher.get(OPDS_FEED)
        if response.is_success:
            entries = parse_feed_entries(response.text, OPDS_FEED)
        elif response.status_code in (401, 403):
            logger.info(
                f"Standard Ebooks OPDS returned {response.status_code}; "
                "using public Atom feed and browse pages"
            )
            atom = await self.fetcher.get(ATOM_NEW_RELEASES)
            if not atom.is_success:
                raise ConnectorError(
                    f"Standard Ebooks error: OPDS {response.status_code}, "
                    f"public Atom feed {atom.status_code}"
                )
            entries = parse_feed_entries(atom.text, ATOM_NEW_RELEASES)
            browse_fallback = True
        else:
            raise ConnectorError(f"Standard Ebooks OPDS error: {response.status_code}")

        for entry in entries:
            path = epub_url_to_book_path(entry.epub_url)
            if path:
                seen_paths.add(path)
            yield self.make_record(
                external_id=entry.id,
                title=entry.title,
                authors=entry.authors,
                language="en",
                description=entry.summary,
                subjects=entry.subjects,
                license="public-domain",
                download_url=entry.epub_url,
                published_date=entry.updated,
                cover_url=entry.cover_url,
            )

        if browse_fallback:
            async for record in self._fetch_from_browse(seen_paths):
                yield record

    async def _load_browse_page(self, url: str) -> str | None:
        response = await self.fetcher.get(url, timeout=BROWSE_PAGE_TIMEOUT, max_retries=0)
        if not response.is_success:
            return None
        return response.text

    async def _fetch_from_browse(self, seen_paths: set[str]) -> AsyncIterator[RawRecord]:
        """Walk the public browse pages when the OPDS feed is behind auth."""
        consecutive_failures = 0
        page = 1

        while page <= BROWSE_MAX_PAGES:
            await self.fetcher.throttle(DELAY_BETWEEN_BOOK_PAGES)
            url = f"{BROWSE_URL}?page={page}&per_page={BROWSE_PER_PAGE}"
            try:
                # Outer bound in case the transport ignores its own timeout
                html = await asyncio.wait_for(
                    self._load_browse_page(url), timeout=BROWSE_PAGE_OUTER_TIMEOUT
                )
            except (asyncio.TimeoutError, ConnectorFetchError) as e:
                consecutive_failures += 1
                logger.warning(
                    f"Browse page {page} failed ({consecutive_failures} in a row): {e!r}"
                )
                if consecutive_failures >= BROWSE_MAX_CONSECUTIVE_FAILURES:
                    break
                page += 1
                continue

            consecutive_failures = 0
            if html is None:
                break
            paths = parse_browse_links(html)
            if not paths:
                break

            for path in paths:
                if path in seen_paths:
                    continue
                seen_paths.add(path)
                fields = path_to_record_fields(path)
                yield self.make_record(
                    external_id=path,
                    language="en",
                    license="public-domain",
                    **fields,
                )
            page += 1

    async def health_check(self) -> bool:
        try:
            response = await self.fetcher.get(OPDS_FEED)
            if response.is_success:
                return True
            if response.status_code in (401, 403):
                return (await self.fetcher.get(ATOM_NEW_RELEASES)).is_success
            return False
        except Exception as e:
            logger.warning(f"Health check failed for {self.name}: {e}")
            return False
