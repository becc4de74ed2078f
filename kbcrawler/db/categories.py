"""CRUD operations for the ``categories`` table."""

from __future__ import annotations

import sqlite3
from time import time
from typing import Optional

from kbcrawler.db.models import Category


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        parent_id=row["parent_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def upsert_category(conn: sqlite3.Connection, category: Category) -> None:
    """Insert *category* or, if its id already exists, update it in place.

    ``created_at`` of an existing row is preserved.
    """
    with conn:
        conn.execute(
            """
            INSERT INTO categories (id, name, description, parent_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                parent_id = excluded.parent_id,
                updated_at = ?
            """,
            (
                category.id,
                category.name,
                category.description,
                category.parent_id,
                category.created_at,
                category.updated_at,
                int(time()),
            ),
        )


def get_category(conn: sqlite3.Connection, category_id: str) -> Optional[Category]:
    """Fetch a single category by id.  Returns ``None`` if not found."""
    row = conn.execute(
        "SELECT * FROM categories WHERE id = ?", (category_id,)
    ).fetchone()
    return _row_to_category(row) if row else None


def list_categories(
    conn: sqlite3.Connection,
    parent_id: Optional[str] = None,
) -> list[Category]:
    """Return all categories, optionally only the children of *parent_id*."""
    if parent_id:
        rows = conn.execute(
            "SELECT * FROM categories WHERE parent_id = ? ORDER BY name",
            (parent_id,),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM categories ORDER BY created_at, name"
        ).fetchall()
    return [_row_to_category(r) for r in rows]
