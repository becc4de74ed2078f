"""CRUD operations for the ``articles`` table.

Articles are keyed by URL: writing an article whose URL already exists
updates the stored row instead of adding a second one.
"""

from __future__ import annotations

import json
import sqlite3
from time import time
from typing import Optional

from kbcrawler.db.models import Article


def _row_to_article(row: sqlite3.Row) -> Article:
    return Article(
        id=row["id"],
        category_id=row["category_id"],
        title=row["title"],
        body=row["body"] or "",
        url=row["url"],
        tags=json.loads(row["tags"] or "[]"),
        author=row["author"] or "",
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def upsert_article(conn: sqlite3.Connection, article: Article) -> Article:
    """Insert *article* or overwrite the existing row with the same URL.

    On conflict the category, title, body, tags, author, metadata and
    ``updated_at`` are replaced; the stored ``id`` and ``created_at`` are kept.

    Returns:
        The stored :class:`~kbcrawler.db.models.Article` as read back.
    """
    with conn:
        conn.execute(
            """
            INSERT INTO articles
                (id, category_id, title, body, url, tags, author, metadata, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(url) DO UPDATE SET
                category_id = excluded.category_id,
                title = excluded.title,
                body = excluded.body,
                tags = excluded.tags,
                author = excluded.author,
                metadata = excluded.metadata,
                updated_at = ?
            """,
            (
                article.id,
                article.category_id,
                article.title,
                article.body,
                article.url,
                article.tags_json(),
                article.author,
                article.metadata_json(),
                article.created_at,
                article.updated_at,
                int(time()),
            ),
        )

    return get_article_by_url(conn, article.url)  # type: ignore[return-value]


def get_article(conn: sqlite3.Connection, article_id: str) -> Optional[Article]:
    """Fetch a single article by id.  Returns ``None`` if not found."""
    row = conn.execute(
        "SELECT * FROM articles WHERE id = ?", (article_id,)
    ).fetchone()
    return _row_to_article(row) if row else None


def get_article_by_url(conn: sqlite3.Connection, url: str) -> Optional[Article]:
    row = conn.execute(
        "SELECT * FROM articles WHERE url = ?", (url,)
    ).fetchone()
    return _row_to_article(row) if row else None


def list_articles(
    conn: sqlite3.Connection,
    category_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Article]:
    """Return articles newest first, optionally filtered by category."""
    if category_id:
        rows = conn.execute(
            "SELECT * FROM articles WHERE category_id = ? "
            "ORDER BY updated_at DESC LIMIT ? OFFSET ?",
            (category_id, limit, offset),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM articles ORDER BY updated_at DESC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
    return [_row_to_article(r) for r in rows]


def count_articles(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM articles").fetchone()[0]
