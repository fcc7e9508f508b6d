"""epub.gratis connector (Spanish-language Elementor catalog)."""

from __future__ import annotations

import re

from catalog_worker.ingestion.connectors.elementor import ElementorConnector

_BOOK_HREF = re.compile(r"^https://epub\.gratis/book/[^/?#]+/?$")


class EpubGratisConnector(ElementorConnector):
    """Connector for epub.gratis; book pages live under /book/<slug>/."""

    name = "epub_gratis"
    label = "Epub.gratis"
    base_url = "https://epub.gratis"

    def is_book_link(self, href: str) -> bool:
        return bool(_BOOK_HREF.match(href))
