"""In-memory SQLite FTS5 index over bean slug, title and body.

The index is a pure derived cache: BeanStore replaces its contents wholesale
on every reload and patches single entries on save/delete.

Entry points:
    idx.index_batch(docs)            # full replace (reload)
    idx.index_one(id, slug, title, body)
    idx.delete(id)
    idx.search("login redirect")     # -> ranked bean IDs
"""

from __future__ import annotations

import re
import sqlite3
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from collections.abc import Iterable

    from beans.models import Bean

DEFAULT_SEARCH_LIMIT = 1000


class SearchDoc(NamedTuple):
    id: str
    slug: str
    title: str
    body: str

    @classmethod
    def from_bean(cls, bean: Bean) -> SearchDoc:
        return cls(bean.id, bean.slug, bean.title, bean.body)


_STOPWORDS = frozenset({
    "a", "about", "above", "after", "again", "against", "all", "am", "an",
    "and", "any", "are", "as", "at", "be", "because", "been", "before",
    "being", "below", "between", "both", "but", "by", "can", "did", "do",
    "does", "doing", "down", "during", "each", "few", "for", "from", "further",
    "had", "has", "have", "having", "he", "her", "here", "hers", "him", "his",
    "how", "i", "if", "in", "into", "is", "it", "its", "itself", "just", "me",
    "more", "most", "my", "no", "nor", "not", "now", "of", "off", "on", "once",
    "only", "or", "other", "our", "out", "over", "own", "same", "she", "should",
    "so", "some", "such", "than", "that", "the", "their", "them", "then",
    "there", "these", "they", "this", "those", "through", "to", "too", "under",
    "until", "up", "very", "was", "we", "were", "what", "when", "where", "which",
    "while", "who", "whom", "why", "will", "with", "you", "your",
})


def build_fts_query(query: str) -> str | None:
    """Split query into OR-joined prefix terms, filtering stopwords. Returns None if empty."""
    terms = [w for w in re.split(r"[\s\W]+", query.lower()) if w and w not in _STOPWORDS]
    if not terms:
        return None
    return " OR ".join(f'"{t}"*' for t in terms)


class SearchIndex:
    """FTS5 index held in a private in-memory database.

    Not synchronised: the owning store serialises access under its lock.
    """

    def __init__(self) -> None:
        self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        self._conn.execute(
            "CREATE VIRTUAL TABLE beans_fts USING fts5("
            "bean_id UNINDEXED, slug, title, body)"
        )

    def index_one(self, bean_id: str, slug: str, title: str, body: str) -> None:
        """Add or replace the entry for bean_id."""
        with self._conn:
            self._conn.execute("DELETE FROM beans_fts WHERE bean_id = ?", (bean_id,))
            self._conn.execute(
                "INSERT INTO beans_fts(bean_id, slug, title, body) VALUES (?, ?, ?, ?)",
                (bean_id, slug, title, body),
            )

    def index_batch(self, docs: Iterable[SearchDoc]) -> None:
        """Replace the whole index with docs in one transaction."""
        with self._conn:
            self._conn.execute("DELETE FROM beans_fts")
            self._conn.executemany(
                "INSERT INTO beans_fts(bean_id, slug, title, body) VALUES (?, ?, ?, ?)",
                [tuple(d) for d in docs],
            )

    def delete(self, bean_id: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM beans_fts WHERE bean_id = ?", (bean_id,))

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[str]:
        """Return matching bean IDs, best match first."""
        if limit <= 0:
            limit = DEFAULT_SEARCH_LIMIT
        fts_query = build_fts_query(query)
        if fts_query is None:
            return []
        rows = self._conn.execute(
            """SELECT bean_id FROM beans_fts
               WHERE beans_fts MATCH ?
               ORDER BY bm25(beans_fts)
               LIMIT ?""",
            (fts_query, limit),
        ).fetchall()
        return [r[0] for r in rows]

    def __len__(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM beans_fts").fetchone()[0]

    def close(self) -> None:
        self._conn.close()
