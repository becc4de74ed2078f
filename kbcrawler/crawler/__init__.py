"""Crawl orchestration: category mapping, dispatch and job runs."""

from kbcrawler.crawler.dispatcher import CrawlDispatcher, DispatchResult, Outcome
from kbcrawler.crawler.index import CategoryIndex, join_path
from kbcrawler.crawler.mapper import CategoryMapper
from kbcrawler.crawler.runner import RunOutcome, parse_interval, run_due_jobs, run_job

__all__ = [
    "CategoryIndex",
    "CategoryMapper",
    "CrawlDispatcher",
    "DispatchResult",
    "Outcome",
    "RunOutcome",
    "join_path",
    "parse_interval",
    "run_job",
    "run_due_jobs",
]
