"""KB crawler CLI: entry-point for all crawler operations.

Usage:
    python cli/main.py --help

Command groups:
    db        → database setup
    sitemap   → inspect a sitemap
    extract   → fetch one page and show what would be stored
    jobs      → manage and run crawl jobs
    library   → browse stored categories and articles
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from kbcrawler.xxx import ...`
# works when the CLI is invoked as `python cli/main.py` from any directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from typing import Optional

import typer

from cli.commands.jobs import jobs_app
from cli.commands.library import library_app
from kbcrawler.config import settings
from kbcrawler.db import get_connection, init_db
from kbcrawler.errors import CrawlError
from kbcrawler.log import setup_logging

app = typer.Typer(
    name="kbcrawl",
    help="KB crawler CLI.",
    no_args_is_help=True,
)
app.add_typer(jobs_app, name="jobs")
app.add_typer(library_app, name="library")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL."),
) -> None:
    setup_logging(log_level)


# ---------------------------------------------------------------------------
# DB commands
# ---------------------------------------------------------------------------
db_app = typer.Typer(help="Database operations.", no_args_is_help=True)
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """Initialise the SQLite database (create tables if they do not exist)."""
    conn = get_connection()
    init_db(conn)
    conn.close()
    typer.echo(f"[db init] Database ready at {settings.db_path}")


# ---------------------------------------------------------------------------
# Sitemap / extraction
# ---------------------------------------------------------------------------
@app.command("sitemap")
def sitemap(
    url: str = typer.Option(..., help="Sitemap URL."),
) -> None:
    """Fetch a sitemap and list its URLs in document order."""
    from kbcrawler.scraper import fetch_sitemap

    try:
        entries = fetch_sitemap(url)
    except CrawlError as exc:
        typer.echo(f"[sitemap] {exc}", err=True)
        raise typer.Exit(1)

    typer.echo(f"[sitemap] {len(entries)} URL(s)")
    for entry in entries:
        typer.echo(f"  {entry.loc}  lastmod={entry.lastmod or '-'}  priority={entry.priority or '-'}")


@app.command("extract")
def extract(
    url: str = typer.Option(..., help="Page URL to fetch and extract."),
) -> None:
    """Fetch one page and print the normalised content."""
    from kbcrawler.scraper import extract_content, fetch_url, page_category_trail

    typer.echo(f"[extract] Fetching {url!r} …")
    try:
        raw = fetch_url(url)
        parsed = extract_content(raw.html)
    except CrawlError as exc:
        typer.echo(f"[extract] {exc}", err=True)
        raise typer.Exit(1)

    typer.echo(f"[extract] Title   : {parsed.title or '(none)'}")
    typer.echo(f"[extract] Author  : {parsed.author or '(none)'}")
    typer.echo(f"[extract] Tags    : {', '.join(parsed.tags) or '(none)'}")
    typer.echo(f"[extract] Trail   : {' > '.join(page_category_trail(raw.html)) or '(none)'}")
    typer.echo(f"[extract] Complete: {parsed.is_complete}")
    typer.echo("")
    typer.echo(parsed.body)


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
