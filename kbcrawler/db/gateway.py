"""Persistence gateway used by the crawler.

The crawler only ever needs two writes: upsert a category by id and upsert
an article by URL.  :class:`SQLiteGateway` implements them on top of a
shared connection, serialising access so crawl worker threads can call it
concurrently.
"""

from __future__ import annotations

import sqlite3
import threading
from typing import Optional, Protocol

from kbcrawler.db.articles import upsert_article
from kbcrawler.db.categories import upsert_category
from kbcrawler.db.jobs import claim_job, get_job, list_jobs, save_job
from kbcrawler.db.models import Article, Category, CrawlerConfig
from kbcrawler.errors import StorageError


class PersistenceGateway(Protocol):
    def create_or_update_category(self, category: Category) -> None: ...

    def create_or_update_article(self, article: Article) -> Article: ...


class SQLiteGateway:
    """Thread-safe :class:`PersistenceGateway` over one SQLite connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.Lock()

    def create_or_update_category(self, category: Category) -> None:
        try:
            with self._lock:
                upsert_category(self.conn, category)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save category {category.name!r}: {exc}") from exc

    def create_or_update_article(self, article: Article) -> Article:
        try:
            with self._lock:
                return upsert_article(self.conn, article)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save article: {exc}", article.url) from exc

    # ------------------------------------------------------------------
    # Job bookkeeping (used by the runner, not by the crawl pipeline)
    # ------------------------------------------------------------------
    def get_job(self, job_id: str) -> Optional[CrawlerConfig]:
        with self._lock:
            return get_job(self.conn, job_id)

    def list_jobs(self) -> list[CrawlerConfig]:
        with self._lock:
            return list_jobs(self.conn)

    def claim_job(self, job_id: str) -> bool:
        with self._lock:
            return claim_job(self.conn, job_id)

    def save_job(self, job: CrawlerConfig) -> CrawlerConfig:
        try:
            with self._lock:
                return save_job(self.conn, job)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save job {job.id!r}: {exc}") from exc
