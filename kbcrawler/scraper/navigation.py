"""Navigation parsing: category paths from list-based site navigation.

Two independent lookups live here:

* :func:`walk_navigation` is used once per run by the category mapper.  It
  descends the navigation tree and yields, for every labelled ``<li>``, the
  labels of its enclosing ``<li>`` items (outermost first) followed by its
  own label.
* :func:`page_category_trail` is used per content page and reads the
  breadcrumb / selected-navigation text present on that page.

Both return plain lists of names; joining them into an index key is the
caller's business.
"""

from __future__ import annotations

from typing import List, Sequence, Union

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag

from kbcrawler.scraper.extractor import Markup, collapse_whitespace, parse_html

# Elements whose text never belongs to an item's own label.
_EXCLUDED = {"ul", "ol", "script", "style"}

# Per-page trail selectors, read in this order.
TRAIL_SELECTORS = (
    ".sidenav li.is-selected",
    ".breadcrumbs li",
    ".navigation .selected",
    "nav .mc-breadcrumb li",
)


def _own_text(node: Tag) -> List[str]:
    parts: List[str] = []
    for child in node.children:
        if isinstance(child, Tag):
            if child.name not in _EXCLUDED:
                parts.extend(_own_text(child))
        elif isinstance(child, NavigableString) and not isinstance(child, PreformattedString):
            parts.append(str(child))
    return parts


def node_label(node: Tag) -> str:
    """Visible text of *node* excluding nested lists, whitespace-collapsed."""
    return collapse_whitespace(" ".join(_own_text(node)))


def _walk(node: Tag, trail: List[str], paths: List[List[str]]) -> None:
    for child in node.children:
        if not isinstance(child, Tag):
            continue
        if child.name == "li":
            label = node_label(child)
            if label:
                path = trail + [label]
                paths.append(path)
                _walk(child, path, paths)
                continue
        _walk(child, trail, paths)


def _as_soup(markup: Union[Markup, BeautifulSoup]) -> BeautifulSoup:
    return markup if isinstance(markup, BeautifulSoup) else parse_html(markup)


def walk_navigation(
    markup: Union[Markup, BeautifulSoup],
    selector: str,
) -> List[List[str]]:
    """Return one path per labelled ``<li>`` inside the *selector* containers.

    Paths come out in document order, so every item's enclosing items are
    emitted before it.  Containers nested inside another matching container
    are only walked once, through their outer container.
    """
    soup = _as_soup(markup)
    containers = soup.select(selector)
    seen = {id(c) for c in containers}
    paths: List[List[str]] = []
    for container in containers:
        if any(id(parent) in seen for parent in container.parents):
            continue
        _walk(container, [], paths)
    return paths


def page_category_trail(
    markup: Union[Markup, BeautifulSoup],
    selectors: Sequence[str] = TRAIL_SELECTORS,
) -> List[str]:
    """Breadcrumb / selected-navigation labels found on a single page."""
    soup = _as_soup(markup)
    trail: List[str] = []
    for selector in selectors:
        for element in soup.select(selector):
            label = node_label(element)
            if label:
                trail.append(label)
    return trail
