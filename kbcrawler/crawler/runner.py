"""High-level runner: one crawl run for one job record.

``run_job`` owns the job's lifecycle around the pipeline:

    claim (skip if Running) → map categories → read sitemap → dispatch
    → record status / errors / last & next run

At most one run per job is active at a time (the claim is an atomic status
update), and at most ``settings.max_concurrent_crawls`` runs are active in the
whole process.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional

from kbcrawler.config import settings
from kbcrawler.crawler.dispatcher import CrawlDispatcher, DispatchResult, Outcome
from kbcrawler.crawler.mapper import CategoryMapper, default_map_url
from kbcrawler.db.gateway import SQLiteGateway
from kbcrawler.db.models import CrawlerConfig, JobStatus
from kbcrawler.errors import FetchError, MappingError, ParseError, StorageError
from kbcrawler.log import job_log_handler
from kbcrawler.scraper.fetcher import make_client
from kbcrawler.scraper.models import SitemapEntry
from kbcrawler.scraper.sitemap import fetch_sitemap

logger = logging.getLogger(__name__)

# Process-wide cap on simultaneous crawl runs across all jobs.
_run_slots = threading.BoundedSemaphore(settings.max_concurrent_crawls)


@dataclass
class RunOutcome:
    job_id: str
    outcome: Outcome
    status: JobStatus
    pages_total: int = 0
    pages_saved: int = 0
    diagnostics: list[str] = field(default_factory=list)
    error: Optional[str] = None
    log_path: Optional[Path] = None


# ---------------------------------------------------------------------------
# Intervals
# ---------------------------------------------------------------------------

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_NUMBER = r"(?:\d+(?:\.\d*)?|\.\d+)"
_UNIT = r"(?:ns|us|µs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"(?:{_NUMBER}{_UNIT})+")
_PART_RE = re.compile(rf"({_NUMBER})({_UNIT})")


def parse_interval(text: str) -> Optional[timedelta]:
    """Parse a Go-style duration (``"24h"``, ``"1h30m"``, ``"90s"``).

    ``"0"`` is a zero interval.  Returns ``None`` for anything unparsable,
    including negative durations.
    """
    text = (text or "").strip()
    if text == "0":
        return timedelta(0)
    if not _DURATION_RE.fullmatch(text):
        return None
    seconds = sum(float(n) * _UNIT_SECONDS[u] for n, u in _PART_RE.findall(text))
    return timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Single run
# ---------------------------------------------------------------------------

def _read_sitemap(job: CrawlerConfig) -> list[SitemapEntry]:
    with make_client(job.user_agent) as client:
        return fetch_sitemap(job.sitemap_url, client)


def run_job(
    gateway: SQLiteGateway,
    job_id: str,
    cancel: Optional[threading.Event] = None,
    *,
    mapper: Optional[CategoryMapper] = None,
    dispatcher: Optional[CrawlDispatcher] = None,
    read_sitemap: Callable[[CrawlerConfig], list[SitemapEntry]] = _read_sitemap,
    run_timeout: Optional[float] = None,
    slots: Optional[threading.BoundedSemaphore] = None,
    log_to_file: bool = True,
) -> RunOutcome:
    """Run one crawl for *job_id* and record the result on the job.

    A job that is already ``Running`` is left alone and a ``skipped``
    outcome is returned.

    Args:
        gateway: Storage for categories, articles and the job record.
        job_id: Id of the job to run.
        cancel: Setting it stops new page fetches; the run ends ``Stopped``.
        mapper / dispatcher / read_sitemap: Pipeline stages, overridable.
        run_timeout: Seconds before the run is treated as cancelled.
            Defaults to ``settings.run_timeout``.
        slots: Semaphore bounding concurrent runs; defaults to the process one.
        log_to_file: Tee this run's log records into a per-job log file.

    Raises:
        ValueError: If the job does not exist.
    """
    if not gateway.claim_job(job_id):
        job = gateway.get_job(job_id)
        if job is None:
            raise ValueError(f"Job not found: {job_id!r}")
        logger.info("Job %s (%s) is already running; skipping", job_id, job.product)
        return RunOutcome(job_id=job_id, outcome=Outcome.SKIPPED, status=job.status)

    try:
        job = gateway.get_job(job_id)
        if job is None:
            raise ValueError(f"Job not found after claim: {job_id!r}")

        with slots or _run_slots:
            if not log_to_file:
                return _execute(gateway, job, cancel, mapper, dispatcher, read_sitemap, run_timeout)
            with job_log_handler(job.product or job.default_category) as log_path:
                outcome = _execute(gateway, job, cancel, mapper, dispatcher, read_sitemap, run_timeout)
            outcome.log_path = log_path
            return outcome
    except BaseException as exc:
        _abandon(gateway, job_id, exc)
        raise


def _abandon(gateway: SQLiteGateway, job_id: str, exc: BaseException) -> None:
    """Move a job still marked ``Running`` after a crashed run to ``Error``.

    Without this the claim would never be released and the job could not
    run again.
    """
    logger.error("Run for job %s aborted: %r", job_id, exc)
    try:
        job = gateway.get_job(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            return
        job.status = JobStatus.ERROR
        job.errors.append(f"run aborted: {type(exc).__name__}: {exc}")
        job.last_run = int(time.time())
        job.is_first_run = False
        gateway.save_job(job)
    except (StorageError, sqlite3.Error):
        logger.exception("Could not release crashed job %s", job_id)


def release_job(gateway: SQLiteGateway, job_id: str) -> bool:
    """Return a job stuck in ``Running`` to ``Scheduled``.

    Returns ``False`` if the job is not currently ``Running``.

    Raises:
        ValueError: If the job does not exist.
    """
    job = gateway.get_job(job_id)
    if job is None:
        raise ValueError(f"Job not found: {job_id!r}")
    if job.status != JobStatus.RUNNING:
        return False
    job.status = JobStatus.SCHEDULED
    gateway.save_job(job)
    logger.info("Released job %s (%s)", job_id, job.product)
    return True


def _execute(
    gateway: SQLiteGateway,
    job: CrawlerConfig,
    cancel: Optional[threading.Event],
    mapper: Optional[CategoryMapper],
    dispatcher: Optional[CrawlDispatcher],
    read_sitemap: Callable[[CrawlerConfig], list[SitemapEntry]],
    run_timeout: Optional[float],
) -> RunOutcome:
    logger.info("Starting crawler for %s (ID: %s)", job.product, job.id)
    logger.info("  Sitemap URL: %s", job.sitemap_url)
    logger.info("  Default Category: %s", job.default_category)
    logger.info("  Allowed Domains: %s", job.allowed_domains)

    if not job.map_url:
        job.map_url = default_map_url(job.sitemap_url)
        logger.info("Set default Map URL to: %s", job.map_url)

    mapper = mapper or CategoryMapper(gateway)
    dispatcher = dispatcher or CrawlDispatcher(gateway)
    timeout = settings.run_timeout if run_timeout is None else run_timeout
    deadline = time.monotonic() + timeout

    try:
        index = mapper.map(job)
        entries = read_sitemap(job)
        logger.info("Successfully parsed sitemap, found %d URLs", len(entries))
        result = dispatcher.run(
            [entry.loc for entry in entries], index, job, cancel=cancel, deadline=deadline,
        )
    except (MappingError, FetchError, ParseError) as exc:
        logger.error("Crawl failed: %s", exc)
        return _finish(gateway, job, None, str(exc))
    except Exception as exc:
        _finish(gateway, job, None, f"unexpected error: {exc}")
        raise

    return _finish(gateway, job, result, None)


def _finish(
    gateway: SQLiteGateway,
    job: CrawlerConfig,
    result: Optional[DispatchResult],
    error: Optional[str],
) -> RunOutcome:
    end = int(time.time())

    if error is not None:
        job.status = JobStatus.ERROR
        job.errors.append(error)
        outcome = Outcome.FAILED
    elif result is not None and result.outcome == Outcome.CANCELLED:
        job.status = JobStatus.STOPPED
        outcome = Outcome.CANCELLED
    else:
        job.status = JobStatus.COMPLETED
        outcome = Outcome.COMPLETED

    if result is not None:
        job.errors.extend(result.diagnostics)

    job.last_run = end
    interval = parse_interval(job.crawl_interval)
    if interval is not None:
        job.next_run = end + int(interval.total_seconds())
        logger.info("Next scheduled run: %s", job.next_run)
    job.is_first_run = False
    gateway.save_job(job)

    logger.info("Crawler execution finished. Status: %s", job.status.value)
    if result is not None and result.diagnostics:
        logger.warning("%d page(s) failed during crawl", len(result.diagnostics))

    return RunOutcome(
        job_id=job.id,
        outcome=outcome,
        status=job.status,
        pages_total=result.pages_total if result else 0,
        pages_saved=result.pages_saved if result else 0,
        diagnostics=list(result.diagnostics) if result else [],
        error=error,
    )


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

def due_jobs(gateway: SQLiteGateway, now: Optional[int] = None) -> list[CrawlerConfig]:
    """Jobs that are not running and have never run or whose next run is due."""
    now = int(time.time()) if now is None else now
    return [
        job
        for job in gateway.list_jobs()
        if job.status != JobStatus.RUNNING
        and (job.is_first_run or job.next_run is None or job.next_run <= now)
    ]


def run_due_jobs(
    gateway: SQLiteGateway,
    now: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
    **run_kwargs,
) -> list[RunOutcome]:
    """Run every due job concurrently, bounded by the process run semaphore.

    An interrupt while waiting sets *cancel* so the runs in flight stop
    fetching, then propagates once they have wound down.
    """
    jobs = due_jobs(gateway, now)
    if not jobs:
        return []
    logger.info("%d job(s) due", len(jobs))

    cancel = cancel or threading.Event()
    outcomes: list[RunOutcome] = []
    with ThreadPoolExecutor(max_workers=min(len(jobs), settings.max_concurrent_crawls)) as pool:
        futures = [pool.submit(run_job, gateway, job.id, cancel, **run_kwargs) for job in jobs]
        try:
            for future, job in zip(futures, jobs):
                try:
                    outcomes.append(future.result())
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Run for job %s crashed: %s", job.id, exc)
        except KeyboardInterrupt:
            logger.warning("Interrupted; cancelling %d run(s)", len(jobs))
            cancel.set()
            for future in futures:
                future.cancel()
            raise
    return outcomes


def serve(
    gateway: SQLiteGateway,
    stop: threading.Event,
    poll_interval: float = 60.0,
) -> None:
    """Run due jobs every *poll_interval* seconds until *stop* is set.

    Setting *stop* also cancels the runs in progress.
    """
    logger.info("Scheduler started (poll every %.0fs)", poll_interval)
    while not stop.is_set():
        run_due_jobs(gateway, cancel=stop)
        stop.wait(poll_interval)
    logger.info("Scheduler stopped")
