"""Tests for the record normalizer."""

from dataclasses import asdict

import pytest

from catalog_worker.core.enums import SUPPORTED_LICENSES
from catalog_worker.ingestion.connectors.base import RawRecord
from catalog_worker.ingestion.normalizer import (
    MAX_AUTHOR_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MAX_SUBJECT_LENGTH,
    MAX_TITLE_LENGTH,
    MAX_URL_LENGTH,
    Normalizer,
)


@pytest.fixture
def normalizer() -> Normalizer:
    return Normalizer()


def _raw(**fields) -> RawRecord:
    defaults = {
        "source_id": "S1",
        "external_id": "E1",
        "title": "Moby-Dick",
        "authors": ["Herman Melville"],
        "language": "eng",
        "license": "Public Domain",
        "download_url": "http://x/1.epub",
    }
    defaults.update(fields)
    return RawRecord(**defaults)


class TestLanguageNormalization:
    """Tests for language code mapping."""

    @pytest.mark.parametrize("key", list(Normalizer.LANGUAGE_MAP))
    def test_every_table_key_maps_exactly(self, normalizer: Normalizer, key: str) -> None:
        """Test that every lookup key yields its mapped code."""
        assert normalizer.normalize_language(key) == Normalizer.LANGUAGE_MAP[key]

    def test_case_and_whitespace_ignored(self, normalizer: Normalizer) -> None:
        """Test that lookups trim and lower-case."""
        assert normalizer.normalize_language("  English ") == "en"
        assert normalizer.normalize_language("SPA") == "es"

    def test_unknown_falls_back_to_two_letters(self, normalizer: Normalizer) -> None:
        """Test fallback to the first two characters."""
        assert normalizer.normalize_language("Nederlands") == "ne"
        assert normalizer.normalize_language("ja-JP") == "ja"

    def test_missing_defaults_to_english(self, normalizer: Normalizer) -> None:
        """Test that empty or missing language defaults to en."""
        assert normalizer.normalize_language(None) == "en"
        assert normalizer.normalize_language("   ") == "en"


class TestLicenseNormalization:
    """Tests for license tag mapping."""

    @pytest.mark.parametrize("key", list(Normalizer.LICENSE_MAP))
    def test_every_table_key_maps_exactly(self, normalizer: Normalizer, key: str) -> None:
        """Test that every lookup key yields its mapped tag."""
        assert normalizer.normalize_license(key) == Normalizer.LICENSE_MAP[key]

    def test_hyphenated_forms(self, normalizer: Normalizer) -> None:
        """Test that hyphens and spaces are interchangeable."""
        assert normalizer.normalize_license("CC-BY-SA") == "cc-by-sa"
        assert normalizer.normalize_license("Public-Domain") == "public-domain"
        assert normalizer.normalize_license("cc-by-nc-sa") == "cc-by-nc-sa"

    def test_case_insensitive(self, normalizer: Normalizer) -> None:
        """Test that upper-case tags map like lower-case ones."""
        assert normalizer.normalize_license("PD") == "public-domain"
        assert normalizer.normalize_license("cc-by-nc") == "cc-by-nc"

    def test_unsupported_falls_back(self, normalizer: Normalizer) -> None:
        """Test that unknown licenses become public-domain."""
        assert normalizer.normalize_license("All rights reserved") == "public-domain"
        assert normalizer.normalize_license(None) == "public-domain"

    def test_results_are_always_supported(self, normalizer: Normalizer) -> None:
        """Test that normalization only yields supported licenses."""
        for value in ["GPL", "cc by", "Gutenberg", "", "cc0"]:
            assert normalizer.normalize_license(value) in SUPPORTED_LICENSES


class TestDescriptionNormalization:
    """Tests for HTML description cleanup."""

    def test_paragraphs_become_spaces(self, normalizer: Normalizer) -> None:
        """Test that block tags break text and whitespace collapses."""
        html = "<p>Call me Ishmael.</p><p>Some years ago&hellip;</p>"
        assert normalizer.normalize_description(html) == "Call me Ishmael. Some years ago…"

    def test_anchor_rendered_with_href(self, normalizer: Normalizer) -> None:
        """Test that links keep their target."""
        html = 'Read it at <a href="https://www.gutenberg.org/ebooks/2701">Gutenberg</a>.'
        assert (
            normalizer.normalize_description(html)
            == "Read it at Gutenberg (https://www.gutenberg.org/ebooks/2701)."
        )

    def test_entities_decoded_before_tags_stripped(self, normalizer: Normalizer) -> None:
        """Test that encoded markup is decoded and then removed."""
        assert normalizer.normalize_description("&lt;b&gt;Bold&lt;/b&gt; &amp; brave") == "Bold & brave"

    def test_list_items_and_breaks(self, normalizer: Normalizer) -> None:
        """Test list items and line breaks."""
        html = "<ul><li>One</li><li>Two</li></ul>Three<br/>Four"
        assert normalizer.normalize_description(html) == "One Two Three Four"

    def test_empty_descriptions_are_none(self, normalizer: Normalizer) -> None:
        """Test that empty input or markup-only input yields None."""
        assert normalizer.normalize_description(None) is None
        assert normalizer.normalize_description("") is None
        assert normalizer.normalize_description("<p> </p>") is None

    def test_capped(self, normalizer: Normalizer) -> None:
        """Test the description length cap."""
        result = normalizer.normalize_description("word " * 5000)
        assert len(result) <= MAX_DESCRIPTION_LENGTH


class TestRecordNormalization:
    """Tests for full record normalization."""

    def test_moby_dick(self, normalizer: Normalizer) -> None:
        """Test the canonical example record."""
        result = normalizer.normalize(_raw())

        assert result.language == "en"
        assert result.license == "public-domain"
        assert result.title == "Moby-Dick"
        assert result.authors == ["Herman Melville"]
        assert result.description is None
        assert result.source_id == "S1"
        assert result.external_id == "E1"

    def test_whitespace_and_commas(self, normalizer: Normalizer) -> None:
        """Test title collapsing and author comma removal."""
        result = normalizer.normalize(
            _raw(title="  The   Scarlet\n Letter ", authors=["Hawthorne,  Nathaniel"])
        )
        assert result.title == "The Scarlet Letter"
        assert result.authors == ["Hawthorne Nathaniel"]

    def test_empty_subjects_dropped(self, normalizer: Normalizer) -> None:
        """Test that blank subjects are removed."""
        result = normalizer.normalize(_raw(subjects=["Whaling", "  ", "", " Sea stories "]))
        assert result.subjects == ["Whaling", "Sea stories"]

    def test_lengths_never_exceed_caps(self, normalizer: Normalizer) -> None:
        """Test every capped field on oversized input."""
        result = normalizer.normalize(
            _raw(
                title="T" * 3000,
                authors=["A" * 900],
                subjects=["S" * 400],
                download_url="http://x/" + "u" * 5000,
                cover_url="http://x/" + "c" * 5000,
                description="<p>" + "d" * 20000 + "</p>",
            )
        )
        assert len(result.title) <= MAX_TITLE_LENGTH
        assert len(result.authors[0]) <= MAX_AUTHOR_LENGTH
        assert len(result.subjects[0]) <= MAX_SUBJECT_LENGTH
        assert len(result.download_url) <= MAX_URL_LENGTH
        assert len(result.cover_url) <= MAX_URL_LENGTH
        assert len(result.description) <= MAX_DESCRIPTION_LENGTH

    def test_idempotent_on_clean_input(self, normalizer: Normalizer) -> None:
        """Test that normalizing normalized output changes nothing."""
        first = normalizer.normalize(
            _raw(
                title=" War  and Peace ",
                authors=["Tolstoy, Leo"],
                language="Russian",
                license="CC-BY",
                description='<p>A novel.</p><a href="http://x">more</a>',
                subjects=["History", ""],
            )
        )
        second = normalizer.normalize(RawRecord(**asdict(first)))
        assert second == first
