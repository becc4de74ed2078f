"""Library commands for browsing stored categories and articles."""

from typing import Optional

import typer

from kbcrawler.db import get_connection, init_db
from kbcrawler.db.articles import get_article, get_article_by_url, list_articles
from kbcrawler.db.categories import list_categories

library_app = typer.Typer(help="Browse crawled categories and articles.")


@library_app.command("categories")
def library_categories() -> None:
    """List all categories, children indented under their parent."""
    conn = get_connection()
    init_db(conn)
    try:
        categories = list_categories(conn)
    finally:
        conn.close()

    if not categories:
        typer.echo("No categories found.")
        return

    children: dict = {}
    for cat in categories:
        children.setdefault(cat.parent_id, []).append(cat)

    def _show(parent_id, depth: int) -> None:
        for cat in children.get(parent_id, []):
            typer.echo(f"{'  ' * depth}- {cat.name}  ({cat.id})")
            _show(cat.id, depth + 1)

    _show(None, 0)


@library_app.command("articles")
def library_articles(
    category_id: Optional[str] = typer.Option(None, "--category", help="Filter by category id."),
    limit: int = typer.Option(20, help="Maximum number of articles."),
    offset: int = typer.Option(0, help="Number of articles to skip."),
) -> None:
    """List stored articles, newest first."""
    conn = get_connection()
    init_db(conn)
    try:
        articles = list_articles(conn, category_id=category_id, limit=limit, offset=offset)
    finally:
        conn.close()

    if not articles:
        typer.echo("No articles found.")
        return
    for a in articles:
        typer.echo(f"  {a.id}  {a.title!r}  {a.url}")


@library_app.command("article")
def library_article(
    target: str = typer.Argument(..., help="Article id or URL."),
) -> None:
    """Show a single article."""
    conn = get_connection()
    init_db(conn)
    try:
        if target.startswith("http"):
            article = get_article_by_url(conn, target)
        else:
            article = get_article(conn, target)
    finally:
        conn.close()

    if article is None:
        typer.echo(f"Article not found: {target}")
        raise typer.Exit(code=1)

    typer.echo(f"# {article.title}")
    typer.echo(f"URL     : {article.url}")
    typer.echo(f"Author  : {article.author or '-'}")
    typer.echo(f"Tags    : {', '.join(article.tags) or '-'}")
    typer.echo(f"Category: {article.metadata.get('full_category_string', article.category_id)}")
    typer.echo("")
    typer.echo(article.body)
