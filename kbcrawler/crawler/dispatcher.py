"""Crawl dispatcher: fetch, extract, categorise and persist every sitemap URL.

Pages are processed by a bounded ``ThreadPoolExecutor`` so that at most
``max_parallel`` fetches are ever in flight.  Every task checks the
cancellation signal (and the run deadline) before it fetches; once either
fires no new fetch starts, while fetches already under way run to completion.

A failure on one page never aborts the run.  It is logged and returned as a
diagnostic string in :class:`DispatchResult`.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Callable, Iterable, Optional, Sequence
from urllib.parse import urlsplit

from kbcrawler.config import settings
from kbcrawler.crawler.index import CategoryIndex, join_path
from kbcrawler.db.gateway import PersistenceGateway
from kbcrawler.db.models import Article, Category, CrawlerConfig
from kbcrawler.errors import CategoryResolutionError, CrawlError
from kbcrawler.scraper.extractor import extract_content, require_complete
from kbcrawler.scraper.fetcher import fetch_url, make_client
from kbcrawler.scraper.models import RawPage
from kbcrawler.scraper.navigation import page_category_trail

logger = logging.getLogger(__name__)

Fetch = Callable[[str], RawPage]


class Outcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class DispatchResult:
    outcome: Outcome
    pages_total: int = 0
    pages_saved: int = 0
    diagnostics: list[str] = field(default_factory=list)


@dataclass
class _PageResult:
    url: str
    started: bool = True
    saved: bool = False
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Politeness helpers
# ---------------------------------------------------------------------------

def domain_allowed(url: str, allowed_domains: Sequence[str]) -> bool:
    """``True`` if *url*'s host is in *allowed_domains* (or the list is empty)."""
    if not allowed_domains:
        return True
    host = (urlsplit(url).hostname or "").lower()
    return host in {d.strip().lower() for d in allowed_domains}


class DomainThrottle:
    """Spaces request starts to the same domain by a random delay.

    Each call to :meth:`wait` reserves the next start slot for the URL's
    domain, then pushes that domain's following slot back by
    ``uniform(0, max_delay)`` seconds.  The first request to a domain never
    waits.
    """

    def __init__(
        self,
        max_delay: float,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        jitter: Callable[[float, float], float] = random.uniform,
    ):
        self.max_delay = max_delay
        self._sleep = sleep
        self._clock = clock
        self._jitter = jitter
        self._next_slot: dict[str, float] = {}
        self._lock = threading.Lock()

    def wait(self, url: str) -> float:
        """Block until *url*'s domain may be requested; return seconds slept."""
        if self.max_delay <= 0:
            return 0.0
        domain = (urlsplit(url).hostname or "").lower()
        with self._lock:
            now = self._clock()
            start = max(now, self._next_slot.get(domain, now))
            self._next_slot[domain] = start + self._jitter(0, self.max_delay)
        delay = start - now
        if delay > 0:
            self._sleep(delay)
        return max(delay, 0.0)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class CrawlDispatcher:
    """Drives one crawl run over a list of URLs.

    Args:
        gateway: Receives one article upsert per successfully processed page.
        fetch: ``url -> RawPage``.  Defaults to :func:`fetch_url` over a
            client built for the job's user agent.
        max_parallel: Maximum simultaneous fetches.
        random_delay: Upper bound of the random per-domain spacing (seconds).
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        fetch: Optional[Fetch] = None,
        max_parallel: Optional[int] = None,
        random_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.fetch = fetch
        self.max_parallel = settings.max_parallel_fetches if max_parallel is None else max_parallel
        if self.max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        self.random_delay = settings.random_delay if random_delay is None else random_delay
        self._sleep = sleep
        self._clock = clock

    def run(
        self,
        urls: Iterable[str],
        index: CategoryIndex,
        job: CrawlerConfig,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> DispatchResult:
        """Process every URL and report how the run ended.

        Args:
            urls: Page URLs, typically the sitemap locations.
            index: The mapped category index; frozen here if it is not yet.
            job: Supplies the default category, user agent and allow-list.
            cancel: Once set, no further fetch starts.
            deadline: ``clock()`` value after which the run behaves as if
                *cancel* had been set.
        """
        urls = list(urls)
        index.freeze()
        cancel = cancel or threading.Event()

        def stopping() -> bool:
            if cancel.is_set():
                return True
            return deadline is not None and self._clock() >= deadline

        throttle = DomainThrottle(self.random_delay, sleep=self._sleep, clock=self._clock)
        client = None
        fetch = self.fetch
        if fetch is None:
            client = make_client(job.user_agent)
            fetch = partial(fetch_url, client=client)

        result = DispatchResult(outcome=Outcome.COMPLETED, pages_total=len(urls))
        not_started = 0
        try:
            with ThreadPoolExecutor(max_workers=self.max_parallel) as pool:
                future_to_url = {
                    pool.submit(self._process, url, index, job, fetch, throttle, stopping): url
                    for url in urls
                }
                for future in as_completed(future_to_url):
                    url = future_to_url[future]
                    try:
                        page = future.result()
                    except Exception as exc:  # noqa: BLE001
                        logger.exception("Unexpected failure processing %s", url)
                        result.diagnostics.append(f"{url}: {exc}")
                        continue
                    if not page.started:
                        not_started += 1
                    elif page.saved:
                        result.pages_saved += 1
                    elif page.error:
                        result.diagnostics.append(f"{url}: {page.error}")
        finally:
            if client is not None:
                client.close()

        if not_started or cancel.is_set():
            result.outcome = Outcome.CANCELLED
            logger.info("Crawl cancelled; %d URL(s) not started", not_started)
        logger.info(
            "Dispatch finished: %d/%d page(s) saved, %d problem(s)",
            result.pages_saved, result.pages_total, len(result.diagnostics),
        )
        return result

    # ------------------------------------------------------------------
    # Per-page pipeline
    # ------------------------------------------------------------------
    def _process(
        self,
        url: str,
        index: CategoryIndex,
        job: CrawlerConfig,
        fetch: Fetch,
        throttle: DomainThrottle,
        stopping: Callable[[], bool],
    ) -> _PageResult:
        if stopping():
            return _PageResult(url, started=False)
        if not domain_allowed(url, job.allowed_domains):
            logger.info("Skipping %s: domain not allowed", url)
            return _PageResult(url, error="domain not allowed")

        throttle.wait(url)
        if stopping():
            return _PageResult(url, started=False)

        logger.info("Visiting: %s", url)
        try:
            raw = fetch(url)
            article = self.build_article(raw, index, job)
            self.gateway.create_or_update_article(article)
        except CrawlError as exc:
            logger.error("Error processing %s: %s", url, exc)
            return _PageResult(url, error=str(exc))

        logger.info("Saved article %r (%s)", article.title, article.metadata["full_category_string"])
        return _PageResult(url, saved=True)

    def build_article(self, raw: RawPage, index: CategoryIndex, job: CrawlerConfig) -> Article:
        """Turn one fetched page into an :class:`Article` ready for upsert.

        Raises:
            ParseError: The markup could not be parsed.
            IncompleteContentError: No title or no body.
            CategoryResolutionError: Neither the page path nor the root is indexed.
        """
        parsed = require_complete(extract_content(raw.html), raw.url)

        parts = [job.default_category, *page_category_trail(raw.html)]
        path = join_path(parts)
        category = resolve_category(index, path)

        metadata = {
            "category_path": parts,
            "full_category_string": path,
            "url": raw.url,
            "meta_tags": parsed.meta,
            "tags": parsed.tags,
        }
        if parsed.category_hint:
            metadata["category_hint"] = parsed.category_hint

        return Article(
            category_id=category.id,
            title=parsed.title,
            body=parsed.body,
            url=raw.url,
            tags=parsed.tags,
            author=parsed.author,
            metadata=metadata,
        )


def resolve_category(index: CategoryIndex, path: str) -> Category:
    """Look *path* up, falling back to the index root.

    Raises:
        CategoryResolutionError: Neither *path* nor the root is indexed.
    """
    category = index.get(path)
    if category is not None:
        return category
    logger.info("Category not found for path: %s, using default", path)
    root = index.root()
    if root is None:
        raise CategoryResolutionError(f"Default category {index.root_name!r} not found")
    return root
