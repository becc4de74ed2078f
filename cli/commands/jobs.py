"""Crawl job commands: create, inspect and run jobs."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import List, Optional

import typer

from kbcrawler.config import settings
from kbcrawler.crawler.runner import release_job, run_due_jobs, run_job, serve
from kbcrawler.db import SQLiteGateway, get_connection, init_db
from kbcrawler.db.jobs import create_job, get_job, list_jobs
from kbcrawler.db.models import CrawlerConfig

jobs_app = typer.Typer(help="Manage and run crawl jobs.", no_args_is_help=True)


def _fmt_ts(ts: Optional[int]) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S") if ts else "-"


@jobs_app.command("add")
def jobs_add(
    sitemap_url: str = typer.Option(..., "--sitemap", help="Sitemap URL."),
    product: str = typer.Option(..., help="Product name (used for log file names)."),
    category: Optional[str] = typer.Option(None, "--category", help="Default (root) category name."),
    map_url: str = typer.Option("", "--map-url", help="Navigation page URL."),
    domain: List[str] = typer.Option([], "--domain", help="Allowed domain (repeatable)."),
    interval: Optional[str] = typer.Option(None, help="Crawl interval, e.g. 24h."),
    user_agent: Optional[str] = typer.Option(None, "--user-agent", help="User-Agent header."),
    max_depth: Optional[int] = typer.Option(None, "--max-depth", help="Maximum link depth."),
) -> None:
    """Register a new crawl job."""
    conn = get_connection()
    init_db(conn)
    try:
        job = create_job(
            conn,
            CrawlerConfig(
                product=product,
                sitemap_url=sitemap_url,
                map_url=map_url,
                default_category=category or settings.default_category,
                user_agent=user_agent or settings.user_agent,
                allowed_domains=list(domain),
                max_depth=max_depth if max_depth is not None else settings.max_depth,
                crawl_interval=interval or settings.crawl_interval,
            ),
        )
    finally:
        conn.close()
    typer.echo(f"[jobs add] Created job: {job.id}  product={job.product!r}")


@jobs_app.command("list")
def jobs_list() -> None:
    """List all jobs with their status."""
    conn = get_connection()
    init_db(conn)
    try:
        jobs = list_jobs(conn)
    finally:
        conn.close()
    if not jobs:
        typer.echo("[jobs list] No jobs found.")
        return
    for job in jobs:
        typer.echo(
            f"  {job.id}  [{job.status.value}]  {job.product!r}  "
            f"last={_fmt_ts(job.last_run)}  next={_fmt_ts(job.next_run)}"
        )


@jobs_app.command("show")
def jobs_show(job_id: str = typer.Argument(..., help="Job id.")) -> None:
    """Show one job, including its accumulated errors."""
    conn = get_connection()
    init_db(conn)
    try:
        job = get_job(conn, job_id)
    finally:
        conn.close()
    if job is None:
        typer.echo(f"[jobs show] Job not found: {job_id}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Job       : {job.id}")
    typer.echo(f"Product   : {job.product}")
    typer.echo(f"Status    : {job.status.value}")
    typer.echo(f"Sitemap   : {job.sitemap_url}")
    typer.echo(f"Map URL   : {job.map_url or '(derived from sitemap)'}")
    typer.echo(f"Category  : {job.default_category}")
    typer.echo(f"Domains   : {', '.join(job.allowed_domains) or '(any)'}")
    typer.echo(f"Interval  : {job.crawl_interval}")
    typer.echo(f"Last run  : {_fmt_ts(job.last_run)}")
    typer.echo(f"Next run  : {_fmt_ts(job.next_run)}")
    typer.echo(f"Errors    : {len(job.errors)}")
    for err in job.errors:
        typer.echo(f"  - {err}")


@jobs_app.command("run")
def jobs_run(job_id: str = typer.Argument(..., help="Job id.")) -> None:
    """Run one crawl for a job now."""
    conn = get_connection()
    init_db(conn)
    try:
        outcome = run_job(SQLiteGateway(conn), job_id)
    except ValueError as exc:
        typer.echo(f"[jobs run] {exc}", err=True)
        raise typer.Exit(1)
    finally:
        conn.close()

    typer.echo(
        f"[jobs run] {outcome.outcome.value}: status={outcome.status.value}  "
        f"saved={outcome.pages_saved}/{outcome.pages_total}  problems={len(outcome.diagnostics)}"
    )
    if outcome.error:
        typer.echo(f"[jobs run] Error: {outcome.error}", err=True)
        raise typer.Exit(1)


@jobs_app.command("run-due")
def jobs_run_due() -> None:
    """Run every job whose next run is due (or that never ran)."""
    conn = get_connection()
    init_db(conn)
    try:
        outcomes = run_due_jobs(SQLiteGateway(conn))
    finally:
        conn.close()
    if not outcomes:
        typer.echo("[jobs run-due] Nothing due.")
        return
    for outcome in outcomes:
        typer.echo(f"  {outcome.job_id}  {outcome.outcome.value}  saved={outcome.pages_saved}")


@jobs_app.command("serve")
def jobs_serve(
    poll: float = typer.Option(60.0, help="Seconds between due-job checks."),
) -> None:
    """Keep running due jobs until interrupted."""
    conn = get_connection()
    init_db(conn)
    stop = threading.Event()
    try:
        serve(SQLiteGateway(conn), stop, poll_interval=poll)
    except KeyboardInterrupt:
        stop.set()
        typer.echo("[jobs serve] Shutting down …")
    finally:
        conn.close()


@jobs_app.command("release")
def jobs_release(job_id: str = typer.Argument(..., help="Job id.")) -> None:
    """Return a job left Running by a killed process to Scheduled."""
    conn = get_connection()
    init_db(conn)
    try:
        released = release_job(SQLiteGateway(conn), job_id)
    except ValueError as exc:
        typer.echo(f"[jobs release] {exc}", err=True)
        raise typer.Exit(1)
    finally:
        conn.close()
    if not released:
        typer.echo(f"[jobs release] Job {job_id} is not running; nothing to do.")
        return
    typer.echo(f"[jobs release] Job {job_id} is Scheduled again.")
