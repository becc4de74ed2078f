"""Content extraction: turns a page's markup into a :class:`ParsedContent`.

Everything here is a pure function of the input markup: no network access
and no crawl state.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Union

from bs4 import BeautifulSoup, Comment
from bs4.builder import ParserRejectedMarkup
from bs4.element import Tag

from kbcrawler.errors import IncompleteContentError, ParseError
from kbcrawler.scraper.models import ParsedContent

Markup = Union[str, bytes]

# Meta tags whose comma-separated content becomes article tags, in order.
TAG_META_NAMES = ("keywords", "ProductFeatureTags")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def parse_html(markup: Markup, url: Optional[str] = None) -> BeautifulSoup:
    """Parse *markup* with the stdlib-backed ``html.parser`` builder.

    Raises:
        ParseError: If the input is not markup or the parser rejects it.
    """
    if not isinstance(markup, (str, bytes)):
        raise ParseError(f"Cannot parse markup of type {type(markup).__name__}", url)
    try:
        return BeautifulSoup(markup, "html.parser")
    except (ParserRejectedMarkup, AssertionError) as exc:
        raise ParseError(f"Unparsable markup: {exc}", url) from exc


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


def _meta_tags(soup: BeautifulSoup) -> Dict[str, str]:
    """Return ``{name: content}`` for every ``<meta name=… content=…>``.

    Later duplicates win, matching the behaviour of the single-valued lookups.
    """
    meta: Dict[str, str] = {}
    for tag in soup.find_all("meta"):
        name = tag.get("name")
        content = tag.get("content")
        if name and content is not None:
            meta[name.strip()] = content.strip()
    return meta


def _meta_values(soup: BeautifulSoup, name: str) -> List[str]:
    """All ``content`` values of meta tags called *name* (case-insensitive)."""
    wanted = name.lower()
    values = []
    for tag in soup.find_all("meta"):
        tag_name = tag.get("name")
        content = tag.get("content")
        if tag_name and tag_name.strip().lower() == wanted and content is not None:
            values.append(content)
    return values


def _extract_title(soup: BeautifulSoup) -> str:
    """Text of the first non-empty ``<title>``, or empty string."""
    for tag in soup.find_all("title"):
        text = collapse_whitespace(tag.get_text())
        if text:
            return text
    return ""


def _extract_tags(soup: BeautifulSoup) -> List[str]:
    """Split the tag-bearing meta tags on commas; trim, lower-case, drop empties.

    Duplicates across (or within) the sources are kept.
    """
    tags: List[str] = []
    for name in TAG_META_NAMES:
        for content in _meta_values(soup, name):
            for part in content.split(","):
                part = part.strip()
                if part:
                    tags.append(part.lower())
    return tags


def _sanitize(fragment: Tag) -> str:
    """Strip scripts, styles and comments from *fragment* and flatten it.

    Returns the fragment's inner markup with whitespace runs collapsed, or an
    empty string when nothing visible is left.
    """
    for tag in fragment.find_all(["script", "style"]):
        tag.decompose()
    for comment in fragment.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    if not fragment.get_text(strip=True):
        return ""
    return collapse_whitespace(fragment.decode_contents())


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_content(markup: Markup) -> ParsedContent:
    """Extract title, body, tags, author and category hint from *markup*.

    The body comes from the first ``<article>`` element when there is one,
    otherwise from ``<body>`` (or, for body-less documents, everything outside the head).

    Raises:
        ParseError: If the markup cannot be parsed at all.
    """
    soup = parse_html(markup)

    authors = _meta_values(soup, "author")
    hints = _meta_values(soup, "category-id")

    title = _extract_title(soup)
    tags = _extract_tags(soup)
    meta = _meta_tags(soup)

    fragment = soup.find("article") or soup.find("body")
    if fragment is None:
        # Body-less document: whatever is outside the head is the body.
        for tag in soup.find_all(["head", "title", "meta"]):
            tag.decompose()
        fragment = soup
    body = _sanitize(fragment)

    return ParsedContent(
        title=title,
        body=body,
        tags=tags,
        author=authors[-1].strip() if authors else "",
        category_hint=hints[-1].strip() if hints else "",
        meta=meta,
    )


def require_complete(parsed: ParsedContent, url: Optional[str] = None) -> ParsedContent:
    """Return *parsed* unchanged, or raise if it has no title or no body.

    Raises:
        IncompleteContentError: Title or body is empty.
    """
    if not parsed.is_complete:
        raise IncompleteContentError(
            f"Missing required content - title found: {bool(parsed.title)}, "
            f"body found: {bool(parsed.body)}",
            url,
        )
    return parsed
