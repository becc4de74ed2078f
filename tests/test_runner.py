"""Tests for the job runner: lifecycle, status recording and scheduling."""

from __future__ import annotations

import sqlite3
import threading
from datetime import timedelta
from typing import Dict, Generator, List
from unittest.mock import MagicMock

import httpx
import pytest
import respx

from kbcrawler.crawler.dispatcher import CrawlDispatcher, Outcome
from kbcrawler.crawler.index import CategoryIndex
from kbcrawler.crawler.mapper import CategoryMapper
from kbcrawler.crawler.runner import due_jobs, parse_interval, release_job, run_due_jobs, run_job
from kbcrawler.db.articles import count_articles
from kbcrawler.db.connection import get_connection
from kbcrawler.db.gateway import SQLiteGateway
from kbcrawler.db.jobs import claim_job, create_job, get_job
from kbcrawler.db.migrations import init_db
from kbcrawler.db.models import Category, CrawlerConfig, JobStatus
from kbcrawler.errors import FetchError, StorageError
from kbcrawler.scraper.models import RawPage, SitemapEntry

SITEMAP_URL = "https://docs.example.com/help/Sitemap.xml"
MAP_URL = "https://docs.example.com/help/0HOME/Home.htm"
NAV_PAGE = '<nav class="sidebarNav"><ul><li>Devices</li></ul></nav>'


def _page(title: str) -> str:
    return f"<html><head><title>{title}</title></head><body><p>{title} body</p></body></html>"


# ---------------------------------------------------------------------------
# Fixtures / fakes
# ---------------------------------------------------------------------------

@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    connection = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture()
def gateway(conn: sqlite3.Connection) -> SQLiteGateway:
    return SQLiteGateway(conn)


def _new_job(conn: sqlite3.Connection, **overrides) -> CrawlerConfig:
    fields = dict(
        product="Datto RMM",
        sitemap_url=SITEMAP_URL,
        default_category="Docs",
        user_agent="TestBot/1.0",
        allowed_domains=["docs.example.com"],
        crawl_interval="24h",
    )
    fields.update(overrides)
    return create_job(conn, CrawlerConfig(**fields))


class StubMapper:
    """Persists only the root category; no network access."""

    def __init__(self, gateway):
        self.gateway = gateway

    def map(self, job: CrawlerConfig) -> CategoryIndex:
        root = Category(name=job.default_category)
        self.gateway.create_or_update_category(root)
        index = CategoryIndex(job.default_category)
        index.add(job.default_category, root)
        return index.freeze()


def _fetch_from(pages: Dict[str, str]):
    def fetch(url: str) -> RawPage:
        if url not in pages:
            raise FetchError("HTTP 404", url, status_code=404)
        return RawPage(url=url, html=pages[url], status_code=200)

    return fetch


def _sitemap(*urls: str):
    return lambda job: [SitemapEntry(loc=u) for u in urls]


def _run(gateway, job_id, pages: Dict[str, str], urls: List[str], **kwargs):
    kwargs.setdefault("mapper", StubMapper(gateway))
    kwargs.setdefault(
        "dispatcher", CrawlDispatcher(gateway, fetch=_fetch_from(pages), max_parallel=2, random_delay=0)
    )
    kwargs.setdefault("read_sitemap", _sitemap(*urls))
    kwargs.setdefault("slots", threading.BoundedSemaphore(2))
    kwargs.setdefault("log_to_file", False)
    return run_job(gateway, job_id, **kwargs)


# ---------------------------------------------------------------------------
# parse_interval
# ---------------------------------------------------------------------------

class TestParseInterval:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("24h", timedelta(hours=24)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("90s", timedelta(seconds=90)),
            ("1.5h", timedelta(minutes=90)),
            ("500ms", timedelta(milliseconds=500)),
            ("0", timedelta(0)),
        ],
    )
    def test_valid(self, text: str, expected: timedelta) -> None:
        assert parse_interval(text) == expected

    @pytest.mark.parametrize("text", ["", "24", "1d", "-1h", "h", "abc"])
    def test_invalid_returns_none(self, text: str) -> None:
        assert parse_interval(text) is None


# ---------------------------------------------------------------------------
# run_job
# ---------------------------------------------------------------------------

class TestRunJob:
    @respx.mock
    def test_successful_run_records_completion(self, gateway, conn) -> None:
        respx.get(MAP_URL).mock(return_value=httpx.Response(200, text=NAV_PAGE))
        job = _new_job(conn)
        good = "https://docs.example.com/help/good.htm"
        gone = "https://docs.example.com/help/gone.htm"

        outcome = _run(
            gateway, job.id, {good: _page("Good")}, [good, gone],
            mapper=CategoryMapper(gateway),
        )

        assert outcome.outcome == Outcome.COMPLETED
        assert outcome.status == JobStatus.COMPLETED
        assert (outcome.pages_total, outcome.pages_saved) == (2, 1)
        assert outcome.error is None

        stored = get_job(conn, job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.is_first_run is False
        assert stored.map_url == MAP_URL
        assert stored.next_run == stored.last_run + 24 * 3600
        assert len(stored.errors) == 1 and gone in stored.errors[0]
        assert count_articles(conn) == 1

    def test_sitemap_failure_marks_error(self, gateway, conn) -> None:
        job = _new_job(conn)

        def broken_sitemap(job):
            raise FetchError("HTTP 500", SITEMAP_URL, status_code=500)

        outcome = _run(gateway, job.id, {}, [], read_sitemap=broken_sitemap)

        assert outcome.outcome == Outcome.FAILED
        assert outcome.status == JobStatus.ERROR
        stored = get_job(conn, job.id)
        assert stored.status == JobStatus.ERROR
        assert "HTTP 500" in stored.errors[0]
        assert stored.last_run is not None
        assert stored.next_run is not None

    @respx.mock
    def test_mapping_failure_marks_error(self, gateway, conn) -> None:
        respx.get(MAP_URL).mock(return_value=httpx.Response(404))
        job = _new_job(conn)
        read_sitemap = MagicMock()

        outcome = _run(
            gateway, job.id, {}, [], mapper=CategoryMapper(gateway), read_sitemap=read_sitemap
        )

        assert outcome.status == JobStatus.ERROR
        assert "failed to map structure" in outcome.error
        read_sitemap.assert_not_called()

    def test_cancelled_run_is_stopped(self, gateway, conn) -> None:
        job = _new_job(conn)
        url = "https://docs.example.com/help/a.htm"
        cancel = threading.Event()
        cancel.set()

        outcome = _run(gateway, job.id, {url: _page("A")}, [url], cancel=cancel)

        assert outcome.outcome == Outcome.CANCELLED
        assert get_job(conn, job.id).status == JobStatus.STOPPED
        assert count_articles(conn) == 0

    def test_run_timeout_stops_new_fetches(self, gateway, conn) -> None:
        job = _new_job(conn)
        url = "https://docs.example.com/help/a.htm"

        outcome = _run(gateway, job.id, {url: _page("A")}, [url], run_timeout=0)

        assert outcome.outcome == Outcome.CANCELLED
        assert outcome.status == JobStatus.STOPPED

    def test_running_job_is_skipped(self, gateway, conn) -> None:
        job = _new_job(conn, status=JobStatus.RUNNING)
        mapper = MagicMock()

        outcome = _run(gateway, job.id, {}, [], mapper=mapper)

        assert outcome.outcome == Outcome.SKIPPED
        mapper.map.assert_not_called()
        assert get_job(conn, job.id).status == JobStatus.RUNNING

    def test_missing_job_raises(self, gateway) -> None:
        with pytest.raises(ValueError, match="Job not found"):
            _run(gateway, "no-such-job", {}, [])

    def test_unexpected_error_is_recorded_then_raised(self, gateway, conn) -> None:
        job = _new_job(conn)
        mapper = MagicMock()
        mapper.map.side_effect = RuntimeError("kaboom")

        with pytest.raises(RuntimeError, match="kaboom"):
            _run(gateway, job.id, {}, [], mapper=mapper)

        stored = get_job(conn, job.id)
        assert stored.status == JobStatus.ERROR
        assert "kaboom" in stored.errors[-1]

    def test_storage_failure_on_root_is_fatal(self, gateway, conn) -> None:
        job = _new_job(conn)
        broken = MagicMock()
        broken.create_or_update_category.side_effect = StorageError("disk full")

        outcome = _run(gateway, job.id, {}, [], mapper=CategoryMapper(broken))

        assert outcome.status == JobStatus.ERROR
        assert "root category" in outcome.error

    def test_invalid_interval_leaves_next_run_unset(self, gateway, conn) -> None:
        job = _new_job(conn, crawl_interval="whenever")

        _run(gateway, job.id, {}, [])

        stored = get_job(conn, job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.last_run is not None
        assert stored.next_run is None

    def test_rerun_after_completion(self, gateway, conn) -> None:
        job = _new_job(conn)
        url = "https://docs.example.com/help/a.htm"

        _run(gateway, job.id, {url: _page("A")}, [url])
        second = _run(gateway, job.id, {url: _page("A")}, [url])

        assert second.outcome == Outcome.COMPLETED
        assert count_articles(conn) == 1

    def test_writes_per_job_log_file(self, gateway, conn, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr("kbcrawler.config.settings.workspace_dir", tmp_path)
        job = _new_job(conn)

        outcome = _run(gateway, job.id, {}, [], log_to_file=True)

        assert outcome.log_path is not None
        assert outcome.log_path.parent == tmp_path / "logs" / "datto_rmm"
        assert outcome.log_path.name.startswith("crawl_datto_rmm_")
        assert "Starting crawler for Datto RMM" in outcome.log_path.read_text(encoding="utf-8")

    def test_crash_before_pipeline_releases_claim(self, gateway, conn, tmp_path, monkeypatch) -> None:
        # The log directory cannot be created under a regular file.
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x", encoding="utf-8")
        monkeypatch.setattr("kbcrawler.config.settings.workspace_dir", blocker)
        job = _new_job(conn)

        with pytest.raises(OSError):
            _run(gateway, job.id, {}, [], log_to_file=True)

        stored = get_job(conn, job.id)
        assert stored.status == JobStatus.ERROR
        assert "run aborted" in stored.errors[-1]
        assert stored.last_run is not None
        assert job.id in {j.id for j in due_jobs(gateway)}
        assert claim_job(conn, job.id) is True

    def test_interrupt_mid_run_releases_claim(self, gateway, conn) -> None:
        job = _new_job(conn)
        mapper = MagicMock()
        mapper.map.side_effect = KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            _run(gateway, job.id, {}, [], mapper=mapper)

        stored = get_job(conn, job.id)
        assert stored.status == JobStatus.ERROR
        assert "KeyboardInterrupt" in stored.errors[-1]

    def test_job_deleted_after_claim_raises(self, gateway, conn, monkeypatch) -> None:
        job = _new_job(conn)
        monkeypatch.setattr(gateway, "get_job", lambda job_id: None)

        with pytest.raises(ValueError, match="Job not found after claim"):
            _run(gateway, job.id, {}, [])


class TestReleaseJob:
    def test_running_job_back_to_scheduled(self, gateway, conn) -> None:
        job = _new_job(conn, status=JobStatus.RUNNING)

        assert release_job(gateway, job.id) is True
        assert get_job(conn, job.id).status == JobStatus.SCHEDULED
        assert _run(gateway, job.id, {}, []).outcome == Outcome.COMPLETED

    def test_idle_job_untouched(self, gateway, conn) -> None:
        job = _new_job(conn, status=JobStatus.COMPLETED)

        assert release_job(gateway, job.id) is False
        assert get_job(conn, job.id).status == JobStatus.COMPLETED

    def test_missing_job_raises(self, gateway) -> None:
        with pytest.raises(ValueError, match="Job not found"):
            release_job(gateway, "no-such-job")


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

class TestScheduling:
    def test_due_jobs(self, gateway, conn) -> None:
        first = _new_job(conn, product="first")
        overdue = _new_job(conn, product="overdue", is_first_run=False, next_run=500)
        _new_job(conn, product="later", is_first_run=False, next_run=5000)
        _new_job(conn, product="busy", status=JobStatus.RUNNING)

        due = {j.id for j in due_jobs(gateway, now=1000)}
        assert due == {first.id, overdue.id}

    def test_run_due_jobs(self, gateway, conn) -> None:
        a = _new_job(conn, product="A")
        b = _new_job(conn, product="B", default_category="Other")
        _new_job(conn, product="later", is_first_run=False, next_run=10**12)

        outcomes = run_due_jobs(
            gateway,
            mapper=StubMapper(gateway),
            dispatcher=CrawlDispatcher(gateway, fetch=_fetch_from({}), random_delay=0),
            read_sitemap=_sitemap(),
            slots=threading.BoundedSemaphore(2),
            log_to_file=False,
        )

        assert {o.job_id for o in outcomes} == {a.id, b.id}
        assert all(o.status == JobStatus.COMPLETED for o in outcomes)

    def test_interrupt_cancels_runs_in_flight(self, gateway, conn) -> None:
        job = _new_job(conn)
        mapper = MagicMock()
        mapper.map.side_effect = KeyboardInterrupt
        cancel = threading.Event()

        with pytest.raises(KeyboardInterrupt):
            run_due_jobs(
                gateway,
                cancel=cancel,
                mapper=mapper,
                dispatcher=CrawlDispatcher(gateway, fetch=_fetch_from({}), random_delay=0),
                read_sitemap=_sitemap(),
                slots=threading.BoundedSemaphore(2),
                log_to_file=False,
            )

        assert cancel.is_set()
        assert get_job(conn, job.id).status == JobStatus.ERROR

    def test_nothing_due(self, gateway) -> None:
        assert run_due_jobs(gateway) == []
