"""
Deduplicator Module
===================

Resolves normalized records to canonical Authors and Works, creating
them when no existing entity matches. Matching is exact name, then alias
containment for authors, and exact identity, then fuzzy title
similarity for works.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from catalog_worker.db.repositories import AuthorRepository, WorkRepository
from catalog_worker.ingestion.normalizer import NormalizedRecord

logger = logging.getLogger(__name__)

UNKNOWN_AUTHOR = "Unknown"

EXACT_CONFIDENCE = 1.0
ALIAS_CONFIDENCE = 0.9
FUZZY_CONFIDENCE = 0.85

# Minimum title similarity for a fuzzy work match
FUZZY_TITLE_THRESHOLD = 0.85
MAX_FUZZY_CANDIDATES = 50

LEADING_ARTICLES = frozenset(
    {"the", "a", "an", "el", "la", "los", "las", "le", "les", "der", "die", "das"}
)

_PUNCTUATION = re.compile(r"[^\w\s]")

T = TypeVar("T")


def title_tokens(title: str) -> set[str]:
    """
    Tokenize a title for similarity comparison.

    Lower-cases, strips punctuation and drops one leading article.
    """
    tokens = _PUNCTUATION.sub(" ", title.lower()).split()
    if len(tokens) > 1 and tokens[0] in LEADING_ARTICLES:
        tokens = tokens[1:]
    return set(tokens)


def title_similarity(a: str, b: str) -> float:
    """
    Token-set Jaccard similarity between two titles.

    Returns:
        Similarity score between 0.0 and 1.0
    """
    tokens_a = title_tokens(a)
    tokens_b = title_tokens(b)
    if not tokens_a and not tokens_b:
        return 1.0 if a.strip().lower() == b.strip().lower() else 0.0
    union = tokens_a | tokens_b
    return len(tokens_a & tokens_b) / len(union)


class Deduplicator:
    """
    Matches records to canonical entities within one session.

    New rows are flushed, not committed; the caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        fuzzy_threshold: float = FUZZY_TITLE_THRESHOLD,
        max_candidates: int = MAX_FUZZY_CANDIDATES,
    ) -> None:
        self.session = session
        self.fuzzy_threshold = fuzzy_threshold
        self.max_candidates = max_candidates
        self.authors = AuthorRepository(session)
        self.works = WorkRepository(session)

    def resolve_author(self, names: list[str]) -> tuple[str, float]:
        """
        Resolve the primary author name to an author id.

        Args:
            names: Normalized author names; only the first is used

        Returns:
            Tuple of (author_id, confidence)
        """
        name = names[0] if names and names[0] else UNKNOWN_AUTHOR

        author = self.authors.get_by_name(name)
        if author is not None:
            return author.id, EXACT_CONFIDENCE

        author = self.authors.find_by_alias(name)
        if author is not None:
            logger.debug(f"Author {name!r} matched alias of {author.canonical_name!r}")
            return author.id, ALIAS_CONFIDENCE

        author = self._create_or_reread(
            lambda: self.authors.create(name),
            lambda: self.authors.get_by_name(name),
        )
        return author.id, EXACT_CONFIDENCE

    def resolve_work(self, record: NormalizedRecord, author_id: str) -> tuple[str, float]:
        """
        Resolve a record to a work by the given author.

        Args:
            record: Normalized record
            author_id: Id of the already-resolved author

        Returns:
            Tuple of (work_id, confidence)
        """
        work = self.works.find_exact(record.title, author_id, record.language)
        if work is not None:
            return work.id, EXACT_CONFIDENCE

        for candidate in self.works.list_candidates(
            author_id, record.language, limit=self.max_candidates
        ):
            if title_similarity(record.title, candidate.canonical_title) >= self.fuzzy_threshold:
                logger.debug(
                    f"Fuzzy title match {record.title!r} -> {candidate.canonical_title!r}"
                )
                return candidate.id, FUZZY_CONFIDENCE

        work = self._create_or_reread(
            lambda: self.works.create(
                title=record.title,
                author_id=author_id,
                language=record.language,
                description=record.description,
                subjects=record.subjects,
            ),
            lambda: self.works.find_exact(record.title, author_id, record.language),
        )
        return work.id, EXACT_CONFIDENCE

    def resolve(self, record: NormalizedRecord) -> tuple[str, str, float]:
        """
        Resolve author then work.

        Returns:
            Tuple of (author_id, work_id, combined confidence)
        """
        author_id, author_confidence = self.resolve_author(record.authors)
        work_id, work_confidence = self.resolve_work(record, author_id)
        return author_id, work_id, min(author_confidence, work_confidence)

    def _create_or_reread(self, create: Callable[[], T], reread: Callable[[], T | None]) -> T:
        """
        Create a row inside a savepoint.

        A concurrent writer inserting the same unique key first makes the
        insert fail; the savepoint is rolled back and that writer's row is
        returned instead.
        """
        try:
            with self.session.begin_nested():
                return create()
        except IntegrityError:
            existing = reread()
            if existing is None:
                raise
            logger.debug("Lost creation race; using the existing row")
            return existing
