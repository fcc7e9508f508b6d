"""Tests for the source connectors against canned HTTP responses."""

import asyncio

import httpx
import pytest

from catalog_worker.core.enums import ConnectorType
from catalog_worker.ingestion.connectors import (
    ConnectorError,
    HttpFetcher,
    RawRecord,
    UnknownConnectorError,
    create_connector,
    get_connector_info,
    list_connectors,
    standard_ebooks,
)
from catalog_worker.ingestion.connectors.epub_gratis import EpubGratisConnector
from catalog_worker.ingestion.connectors.epubbooks import (
    EpubbooksConnector,
    parse_subject_paths,
)
from catalog_worker.ingestion.connectors.epublibre import EpublibreConnector
from catalog_worker.ingestion.connectors.gutenberg import (
    GutenbergConnector,
    parse_search_results,
)
from catalog_worker.ingestion.connectors.open_library import (
    OpenLibraryConnector,
    parse_subject_keys,
)
from catalog_worker.ingestion.connectors.standard_ebooks import (
    StandardEbooksConnector,
    parse_feed_entries,
    slug_to_title,
)

SOURCE_ID = "8d7f2c1e-0000-4000-8000-000000000001"


def _fetcher(handler) -> HttpFetcher:
    return HttpFetcher(transport=httpx.MockTransport(handler), pacing=False, max_retries=0)


async def _collect(connector) -> list[RawRecord]:
    try:
        return [record async for record in connector.fetch_catalog()]
    finally:
        await connector.aclose()


class TestRegistry:
    """Tests for the connector registry."""

    def test_every_type_is_registered(self) -> None:
        """Test that each connector type tag resolves to an implementation."""
        assert sorted(list_connectors()) == sorted(t.value for t in ConnectorType)

    def test_create_binds_source_id(self) -> None:
        """Test that created connectors stamp the given source id."""
        connector = create_connector("gutenberg", SOURCE_ID)
        assert isinstance(connector, GutenbergConnector)
        assert connector.source_id == SOURCE_ID

    def test_unknown_type(self) -> None:
        """Test that an unknown tag raises UnknownConnectorError."""
        with pytest.raises(UnknownConnectorError):
            create_connector("calibre", SOURCE_ID)
        assert get_connector_info("calibre") is None

    def test_connector_info(self) -> None:
        """Test the info dict for a registered type."""
        info = get_connector_info(ConnectorType.EPUBBOOKS)
        assert info["class"] == "EpubbooksConnector"
        assert info["base_url"] == "https://www.epubbooks.com"


GUTENBERG_PAGE = """
<ul class="results">
  <li class="booklink"><a class="link" href="/ebooks/2701">
    <span class="title">Moby Dick; Or, The Whale</span>
    <span class="subtitle">Herman Melville</span>
    <span class="extra">4321 downloads</span></a></li>
  <li class="booklink"><a class="link" href="/ebooks/1342">Pride and Prejudice 5000 downloads</a></li>
  <li><a href="/ebooks/2701">duplicate</a></li>
  <li><a href="/ebooks/search/?sort_order=title">Sort</a></li>
</ul>
"""


class TestGutenbergConnector:
    """Tests for the Project Gutenberg listing scraper."""

    def test_parse_results(self) -> None:
        """Test span-based and link-text rows, with duplicates skipped."""
        books = parse_search_results(GUTENBERG_PAGE)

        assert [b.id for b in books] == ["2701", "1342"]
        assert books[0].title == "Moby Dick; Or, The Whale"
        assert books[0].authors == ["Herman Melville"]
        assert books[1].title == "Pride and Prejudice"
        assert books[1].authors == ["Unknown"]

    @pytest.mark.asyncio
    async def test_fetch_catalog(self) -> None:
        """Test that a short page ends the scan and URLs derive from the id."""
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.params["start_index"])
            return httpx.Response(200, text=GUTENBERG_PAGE)

        records = await _collect(GutenbergConnector(SOURCE_ID, fetcher=_fetcher(handler)))

        assert requested == ["0"]
        assert [r.external_id for r in records] == ["2701", "1342"]
        moby = records[0]
        assert moby.source_id == SOURCE_ID
        assert moby.license == "public-domain"
        assert moby.download_url == "https://www.gutenberg.org/cache/epub/2701/pg2701-images.epub"
        assert moby.cover_url == "https://www.gutenberg.org/cache/epub/2701/pg2701.cover.medium.jpg"

    @pytest.mark.asyncio
    async def test_404_ends_catalog(self) -> None:
        """Test that a missing page is a normal end of catalog."""
        connector = GutenbergConnector(
            SOURCE_ID, fetcher=_fetcher(lambda request: httpx.Response(404))
        )
        assert await _collect(connector) == []

    @pytest.mark.asyncio
    async def test_server_error_fails(self) -> None:
        """Test that a 5xx listing page fails the scan."""
        connector = GutenbergConnector(
            SOURCE_ID, fetcher=_fetcher(lambda request: httpx.Response(503))
        )
        with pytest.raises(ConnectorError, match="503"):
            await _collect(connector)

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        """Test that health_check() never raises."""

        def broken(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        healthy = GutenbergConnector(SOURCE_ID, fetcher=_fetcher(lambda r: httpx.Response(200)))
        unhealthy = GutenbergConnector(SOURCE_ID, fetcher=_fetcher(broken))

        assert await healthy.health_check() is True
        assert await unhealthy.health_check() is False


ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <entry>
    <id>https://standardebooks.org/ebooks/herman-melville/moby-dick</id>
    <title>Moby-Dick</title>
    <author><name>Herman Melville</name></author>
    <updated>2024-01-02T00:00:00Z</updated>
    <summary>An epic of the whaling trade.</summary>
    <category term="Fiction"/>
    <link rel="enclosure" type="application/epub+zip"
          href="/ebooks/herman-melville/moby-dick/downloads/herman-melville_moby-dick.epub"/>
  </entry>
  <entry>
    <id>no-epub</id>
    <title>Audio only</title>
    <link rel="enclosure" type="audio/mpeg" href="/audio.mp3"/>
  </entry>
</feed>
"""

BROWSE_PAGE = """
<ol>
  <li><a href="/ebooks/herman-melville/moby-dick">Moby-Dick</a></li>
  <li><a href="/ebooks/jane-austen/pride-and-prejudice">Pride and Prejudice</a></li>
  <li><a href="/ebooks/jane-austen">Jane Austen</a></li>
  <li><a href="/ebooks/jane-austen/pride-and-prejudice/downloads/x.epub">EPUB</a></li>
</ol>
"""


class TestStandardEbooksConnector:
    """Tests for the Standard Ebooks feed and browse fallback."""

    def test_parse_feed(self) -> None:
        """Test that only entries with an EPUB link are kept."""
        entries = parse_feed_entries(ATOM_FEED, "https://standardebooks.org/feeds/atom/new-releases")

        assert len(entries) == 1
        entry = entries[0]
        assert entry.authors == ["Herman Melville"]
        assert entry.summary == "An epic of the whaling trade."
        assert entry.subjects == ["Fiction"]
        assert entry.cover_url == (
            "https://standardebooks.org/ebooks/herman-melville/moby-dick/images/cover.svg"
        )

    def test_malformed_feed(self) -> None:
        """Test that unparsable XML raises ConnectorError."""
        with pytest.raises(ConnectorError):
            parse_feed_entries("<feed><entry>", "https://standardebooks.org/feeds/opds")

    def test_slug_to_title(self) -> None:
        assert slug_to_title("the-cheyne-mystery") == "The Cheyne Mystery"

    @pytest.mark.asyncio
    async def test_opds_feed(self) -> None:
        """Test that a readable OPDS feed is used without browsing."""
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            return httpx.Response(200, text=ATOM_FEED)

        records = await _collect(StandardEbooksConnector(SOURCE_ID, fetcher=_fetcher(handler)))

        assert requested == ["/feeds/opds"]
        assert [r.title for r in records] == ["Moby-Dick"]
        assert records[0].published_date == "2024-01-02T00:00:00Z"

    @pytest.mark.asyncio
    async def test_auth_fallback_to_atom_and_browse(self) -> None:
        """Test the public feed plus browse pages when OPDS needs a login."""

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/feeds/opds":
                return httpx.Response(401)
            if path == "/feeds/atom/new-releases":
                return httpx.Response(200, text=ATOM_FEED)
            if path == "/ebooks" and request.url.params["page"] == "1":
                return httpx.Response(200, text=BROWSE_PAGE)
            return httpx.Response(404)

        records = await _collect(StandardEbooksConnector(SOURCE_ID, fetcher=_fetcher(handler)))

        assert [r.title for r in records] == ["Moby-Dick", "Pride And Prejudice"]
        browsed = records[1]
        assert browsed.external_id == "jane-austen/pride-and-prejudice"
        assert browsed.authors == ["Jane Austen"]
        assert browsed.download_url == (
            "https://standardebooks.org/ebooks/jane-austen/pride-and-prejudice/"
            "downloads/jane-austen_pride-and-prejudice.epub"
        )

    @pytest.mark.asyncio
    async def test_opds_server_error(self) -> None:
        """Test that a non-auth OPDS failure fails the scan."""
        connector = StandardEbooksConnector(
            SOURCE_ID, fetcher=_fetcher(lambda request: httpx.Response(500))
        )
        with pytest.raises(ConnectorError):
            await _collect(connector)

    @pytest.mark.asyncio
    async def test_hung_browse_page_is_skipped(self, monkeypatch) -> None:
        """Test that a browse page exceeding the hard timeout counts as a failed page."""
        monkeypatch.setattr(standard_ebooks, "BROWSE_PAGE_OUTER_TIMEOUT", 0.05)
        pages = []

        async def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/feeds/opds":
                return httpx.Response(401)
            if path == "/feeds/atom/new-releases":
                return httpx.Response(200, text=ATOM_FEED)
            page = int(request.url.params["page"])
            pages.append(page)
            if page == 1:
                await asyncio.sleep(5)
            if page == 2:
                return httpx.Response(200, text=BROWSE_PAGE)
            return httpx.Response(404)

        records = await _collect(StandardEbooksConnector(SOURCE_ID, fetcher=_fetcher(handler)))

        assert pages == [1, 2, 3]
        assert [r.title for r in records] == ["Moby-Dick", "Pride And Prejudice"]

    @pytest.mark.asyncio
    async def test_browse_stops_after_three_failures_in_a_row(self) -> None:
        """Test that a good page resets the failure streak and three in a row end the walk."""
        pages = []

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/feeds/opds":
                return httpx.Response(403)
            if path == "/feeds/atom/new-releases":
                return httpx.Response(200, text=ATOM_FEED)
            page = int(request.url.params["page"])
            pages.append(page)
            if page == 3:
                return httpx.Response(200, text=BROWSE_PAGE)
            raise httpx.ConnectError("connection reset", request=request)

        records = await _collect(StandardEbooksConnector(SOURCE_ID, fetcher=_fetcher(handler)))

        assert pages == [1, 2, 3, 4, 5, 6]
        assert [r.external_id for r in records][1:] == ["jane-austen/pride-and-prejudice"]

    @pytest.mark.asyncio
    async def test_browse_page_cap(self) -> None:
        """Test that the walk ends after 80 pages even if more keep coming."""
        pages = []

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/feeds/opds":
                return httpx.Response(401)
            if path == "/feeds/atom/new-releases":
                return httpx.Response(200, text=ATOM_FEED)
            page = int(request.url.params["page"])
            pages.append(page)
            return httpx.Response(200, text=f'<a href="/ebooks/author-{page}/book-{page}">B</a>')

        records = await _collect(StandardEbooksConnector(SOURCE_ID, fetcher=_fetcher(handler)))

        assert pages == list(range(1, 81))
        assert len(records) == 81
        assert records[-1].external_id == "author-80/book-80"


OPEN_LIBRARY_SUBJECTS = """
<ul>
  <li><a href="/subjects/science_fiction">Science Fiction</a></li>
  <li><a href="/subjects/languages">Languages</a></li>
  <li><a href="/search?q=subject_key%3A%22fantasy%22">Fantasy</a></li>
</ul>
"""

FRANKENSTEIN = {
    "key": "/works/OL1W",
    "title": "Frankenstein",
    "author_name": ["Mary Shelley"],
    "has_fulltext": True,
    "id_project_gutenberg": ["84"],
    "cover_i": 123,
    "first_publish_year": 1818,
    "language": ["eng"],
}


class TestOpenLibraryConnector:
    """Tests for the Open Library subject search connector."""

    def test_parse_subject_keys(self) -> None:
        """Test both link shapes and the languages exclusion."""
        assert parse_subject_keys(OPEN_LIBRARY_SUBJECTS) == ["science_fiction", "fantasy"]

    @pytest.mark.asyncio
    async def test_fetch_catalog(self) -> None:
        """Test full-text filtering and cross-subject deduplication."""
        search = {
            "subject_key:science_fiction": [
                FRANKENSTEIN,
                {"key": "/works/OL2W", "title": "No text", "has_fulltext": False},
            ],
            "subject_key:fantasy": [
                FRANKENSTEIN,
                {
                    "key": "/works/OL3W",
                    "title": "The Hobbit",
                    "author_name": ["J. R. R. Tolkien"],
                    "has_fulltext": True,
                    "ia": ["hobbit00"],
                },
            ],
        }

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/subjects":
                return httpx.Response(200, text=OPEN_LIBRARY_SUBJECTS)
            docs = search[request.url.params["q"]]
            return httpx.Response(200, json={"docs": docs})

        records = await _collect(OpenLibraryConnector(SOURCE_ID, fetcher=_fetcher(handler)))

        assert [r.external_id for r in records] == ["OL1W", "OL3W"]
        frankenstein, hobbit = records
        assert frankenstein.download_url == "https://www.gutenberg.org/ebooks/84.epub.images"
        assert frankenstein.cover_url == "https://covers.openlibrary.org/b/id/123-M.jpg"
        assert frankenstein.published_date == "1818"
        assert frankenstein.subjects == ["science_fiction"]
        assert hobbit.download_url == "https://archive.org/download/hobbit00/hobbit00.epub"
        assert hobbit.cover_url is None
        assert hobbit.language == "en"

    @pytest.mark.asyncio
    async def test_search_failure_reads_as_empty(self) -> None:
        """Test that a failing search page skips the subject."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/subjects":
                return httpx.Response(200, text=OPEN_LIBRARY_SUBJECTS)
            return httpx.Response(500)

        assert await _collect(OpenLibraryConnector(SOURCE_ID, fetcher=_fetcher(handler))) == []

    @pytest.mark.asyncio
    async def test_subjects_page_failure(self) -> None:
        """Test that an unreachable subjects page yields nothing."""
        connector = OpenLibraryConnector(
            SOURCE_ID, fetcher=_fetcher(lambda request: httpx.Response(502))
        )
        assert await _collect(connector) == []


EPUB_GRATIS_LISTING = """
<div class="elementor-posts">
  <article class="elementor-post">
    <a href="https://epub.gratis/book/don-quijote/"><img src="/wp/cover.jpg"></a>
    <h3 class="elementor-post__title"><a href="https://epub.gratis/book/don-quijote/">Don Quijote</a></h3>
  </article>
  <article class="elementor-post">
    <a href="https://epub.gratis/category/novela/">Novela</a>
  </article>
  <article class="elementor-post">
    <h3 class="elementor-post__title"><a href="https://epub.gratis/book/don-quijote/">Don Quijote</a></h3>
  </article>
</div>
"""

EPUB_GRATIS_BOOK = """
<div class="mbm-book-details-editors-data"><a href="/autor/cervantes">Miguel de Cervantes</a></div>
<a class="mbm-book-download-links-link" href="https://epub.gratis/dl/don-quijote.pdf">PDF</a>
<a class="mbm-book-download-links-link" href="https://epub.gratis/dl/don-quijote.epub">EPUB</a>
"""


class TestElementorConnectors:
    """Tests for the Elementor listing connectors."""

    @pytest.mark.asyncio
    async def test_epub_gratis_catalog(self) -> None:
        """Test listing cards followed by detail pages."""

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/":
                return httpx.Response(200, text=EPUB_GRATIS_LISTING)
            if path == "/book/don-quijote/":
                return httpx.Response(200, text=EPUB_GRATIS_BOOK)
            return httpx.Response(404)

        records = await _collect(EpubGratisConnector(SOURCE_ID, fetcher=_fetcher(handler)))

        assert len(records) == 1
        record = records[0]
        assert record.external_id == "don-quijote"
        assert record.title == "Don Quijote"
        assert record.authors == ["Miguel de Cervantes"]
        assert record.language == "es"
        assert record.download_url == "https://epub.gratis/dl/don-quijote.epub"
        assert record.cover_url == "https://epub.gratis/wp/cover.jpg"

    @pytest.mark.asyncio
    async def test_detail_failure_keeps_listing_fields(self) -> None:
        """Test that an unreachable detail page still yields the card."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/":
                return httpx.Response(200, text=EPUB_GRATIS_LISTING)
            return httpx.Response(404)

        records = await _collect(EpubGratisConnector(SOURCE_ID, fetcher=_fetcher(handler)))

        assert records[0].authors == ["Unknown"]
        assert records[0].download_url == "https://epub.gratis/book/don-quijote/"

    @pytest.mark.asyncio
    async def test_listing_error_fails(self) -> None:
        """Test that a 5xx listing page fails the scan."""
        connector = EpubGratisConnector(
            SOURCE_ID, fetcher=_fetcher(lambda request: httpx.Response(500))
        )
        with pytest.raises(ConnectorError, match="Epub.gratis listing error"):
            await _collect(connector)

    def test_epublibre_div_cards_and_author(self) -> None:
        """Test the div card fallback and the listing author line."""
        html = """
        <div class="elementor-post">
          <a href="https://epublibre.bid/libro/la-regenta/">cover</a>
          <h3 class="elementor-post__title"><a href="https://epublibre.bid/libro/la-regenta/">La Regenta</a></h3>
          <span class="elementor-post-author">Leopoldo Alas</span>
        </div>
        """
        items = EpublibreConnector(SOURCE_ID).parse_listing(html)

        assert len(items) == 1
        assert items[0].title == "La Regenta"
        assert items[0].author == "Leopoldo Alas"

    def test_epublibre_direct_epub_link(self) -> None:
        """Test the direct .epub link fallback on detail pages."""
        connector = EpublibreConnector(SOURCE_ID)
        details = connector.parse_book_page(
            '<a class="author-link" href="/a/clarin">Clarín</a><a href="/files/la-regenta.EPUB">Bajar</a>',
            "https://epublibre.bid/libro/la-regenta/",
        )

        assert details.authors == ["Clarín"]
        assert details.download_url == "https://epublibre.bid/files/la-regenta.EPUB"


EPUBBOOKS_SUBJECTS = """
<a href="/subject/fiction">Fiction</a>
<a href="https://www.epubbooks.com/subject/history">History</a>
<a href="/book/1-something">Not a subject</a>
"""


def _epubbooks_row(book_id: str, slug: str, title: str, author: str) -> str:
    return f"""
    <li class="media">
      <a href="/book/{book_id}-{slug}"><img src="/covers/{book_id}.jpg"></a>
      <div class="media-body">
        <h2 class="media-heading"><a href="/book/{book_id}-{slug}">{title}</a></h2>
        <span class="small">{author}</span>
        <p>A   short  blurb. <a href="/book/{book_id}-{slug}">Read more</a></p>
      </div>
    </li>
    """


class TestEpubbooksConnector:
    """Tests for the epubBooks subject walker."""

    def test_parse_subject_paths(self) -> None:
        assert parse_subject_paths(EPUBBOOKS_SUBJECTS) == ["/subject/fiction", "/subject/history"]

    @pytest.mark.asyncio
    async def test_fetch_catalog_follows_next(self) -> None:
        """Test rel=next pagination and cross-page deduplication."""
        page_one = (
            "<ul>" + _epubbooks_row("123", "moby-dick", "Moby Dick", "Herman Melville") + "</ul>"
            '<a rel="next" href="/subject/fiction?page=2">Next</a>'
        )
        page_two = (
            "<ul>"
            + _epubbooks_row("123", "moby-dick", "Moby Dick", "Herman Melville")
            + _epubbooks_row("456", "emma", "Emma", "Jane Austen")
            + "</ul>"
        )

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/subjects":
                return httpx.Response(200, text=EPUBBOOKS_SUBJECTS)
            if path == "/subject/fiction":
                page = request.url.params.get("page")
                return httpx.Response(200, text=page_two if page == "2" else page_one)
            return httpx.Response(404)

        records = await _collect(EpubbooksConnector(SOURCE_ID, fetcher=_fetcher(handler)))

        assert [r.external_id for r in records] == ["123", "456"]
        moby = records[0]
        assert moby.title == "Moby Dick"
        assert moby.authors == ["Herman Melville"]
        assert moby.description == "A short blurb."
        assert moby.download_url == "https://www.epubbooks.com/book/123-moby-dick"
        assert moby.cover_url == "https://www.epubbooks.com/covers/123.jpg"

    @pytest.mark.asyncio
    async def test_subjects_error_fails(self) -> None:
        """Test that an unreadable subjects index fails the scan."""
        connector = EpubbooksConnector(
            SOURCE_ID, fetcher=_fetcher(lambda request: httpx.Response(500))
        )
        with pytest.raises(ConnectorError):
            await _collect(connector)
