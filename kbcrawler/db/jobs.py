"""CRUD operations for the ``crawl_jobs`` table (CrawlerConfig records)."""

from __future__ import annotations

import json
import sqlite3
from time import time
from typing import Optional

from kbcrawler.db.models import CrawlerConfig, JobStatus


def _row_to_job(row: sqlite3.Row) -> CrawlerConfig:
    return CrawlerConfig(
        id=row["id"],
        product=row["product"],
        sitemap_url=row["sitemap_url"],
        map_url=row["map_url"] or "",
        user_agent=row["user_agent"],
        allowed_domains=json.loads(row["allowed_domains"] or "[]"),
        max_depth=row["max_depth"],
        default_category=row["default_category"],
        crawl_interval=row["crawl_interval"],
        status=JobStatus(row["status"]),
        is_first_run=bool(row["is_first_run"]),
        last_run=row["last_run"],
        next_run=row["next_run"],
        errors=json.loads(row["errors"] or "[]"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def create_job(conn: sqlite3.Connection, job: CrawlerConfig) -> CrawlerConfig:
    """Insert a new job record and return it as stored."""
    with conn:
        conn.execute(
            """
            INSERT INTO crawl_jobs
                (id, product, sitemap_url, map_url, user_agent, allowed_domains,
                 max_depth, default_category, crawl_interval, status, is_first_run,
                 last_run, next_run, errors, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.product,
                job.sitemap_url,
                job.map_url,
                job.user_agent,
                json.dumps(job.allowed_domains),
                job.max_depth,
                job.default_category,
                job.crawl_interval,
                JobStatus(job.status).value,
                int(job.is_first_run),
                job.last_run,
                job.next_run,
                json.dumps(job.errors),
                job.created_at,
                job.updated_at,
            ),
        )
    return get_job(conn, job.id)  # type: ignore[return-value]


def get_job(conn: sqlite3.Connection, job_id: str) -> Optional[CrawlerConfig]:
    """Fetch a single job by id.  Returns ``None`` if not found."""
    row = conn.execute(
        "SELECT * FROM crawl_jobs WHERE id = ?", (job_id,)
    ).fetchone()
    return _row_to_job(row) if row else None


def list_jobs(
    conn: sqlite3.Connection,
    status: Optional[JobStatus] = None,
) -> list[CrawlerConfig]:
    """Return all jobs, optionally filtered by ``status``."""
    if status:
        rows = conn.execute(
            "SELECT * FROM crawl_jobs WHERE status = ? ORDER BY created_at",
            (JobStatus(status).value,),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM crawl_jobs ORDER BY created_at"
        ).fetchall()
    return [_row_to_job(r) for r in rows]


def save_job(conn: sqlite3.Connection, job: CrawlerConfig) -> CrawlerConfig:
    """Persist every mutable field of *job*; ``updated_at`` is refreshed.

    Raises:
        ValueError: If the job does not exist.
    """
    job.updated_at = int(time())
    with conn:
        cursor = conn.execute(
            """
            UPDATE crawl_jobs SET
                product = ?, sitemap_url = ?, map_url = ?, user_agent = ?,
                allowed_domains = ?, max_depth = ?, default_category = ?,
                crawl_interval = ?, status = ?, is_first_run = ?, last_run = ?,
                next_run = ?, errors = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                job.product,
                job.sitemap_url,
                job.map_url,
                job.user_agent,
                json.dumps(job.allowed_domains),
                job.max_depth,
                job.default_category,
                job.crawl_interval,
                JobStatus(job.status).value,
                int(job.is_first_run),
                job.last_run,
                job.next_run,
                json.dumps(job.errors),
                job.updated_at,
                job.id,
            ),
        )
    if cursor.rowcount == 0:
        raise ValueError(f"Job not found: {job.id!r}")
    return job


def claim_job(conn: sqlite3.Connection, job_id: str) -> bool:
    """Atomically move a job to ``Running``.

    Returns ``False`` when the job is already ``Running`` (or missing), in
    which case the caller must not start another run for it.
    """
    with conn:
        cursor = conn.execute(
            "UPDATE crawl_jobs SET status = ?, updated_at = ? "
            "WHERE id = ? AND status != ?",
            (JobStatus.RUNNING.value, int(time()), job_id, JobStatus.RUNNING.value),
        )
    return cursor.rowcount == 1


def delete_job(conn: sqlite3.Connection, job_id: str) -> None:
    """Delete a job.  No-op if it does not exist."""
    with conn:
        conn.execute("DELETE FROM crawl_jobs WHERE id = ?", (job_id,))
