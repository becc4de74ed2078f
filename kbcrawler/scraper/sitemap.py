"""Sitemap reader: turns a ``urlset`` document into ordered :class:`SitemapEntry` items.

Only the standard ``<urlset>`` format is supported.  The sitemap namespace is
optional; element names are matched on their local part.
"""

from __future__ import annotations

import logging
from typing import Optional, Union
from xml.etree import ElementTree as ET

import httpx

from kbcrawler.errors import ParseError
from kbcrawler.scraper.fetcher import fetch_url
from kbcrawler.scraper.models import SitemapEntry

logger = logging.getLogger(__name__)


def _local(tag: str) -> str:
    """``{http://www.sitemaps.org/schemas/sitemap/0.9}loc`` → ``loc``."""
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element:
        if _local(child.tag) == name:
            text = (child.text or "").strip()
            return text or None
    return None


def _parse_priority(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def parse_sitemap(content: Union[bytes, str], url: Optional[str] = None) -> list[SitemapEntry]:
    """Parse sitemap XML into entries, preserving document order.

    ``<url>`` elements without a ``<loc>`` are ignored.

    Raises:
        ParseError: If the XML is malformed or the root is not ``urlset``.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")

    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise ParseError(f"Malformed sitemap XML: {exc}", url) from exc

    if _local(root.tag) != "urlset":
        raise ParseError(f"Expected <urlset> root, found <{_local(root.tag)}>", url)

    entries: list[SitemapEntry] = []
    for element in root:
        if _local(element.tag) != "url":
            continue
        loc = _child_text(element, "loc")
        if not loc:
            logger.debug("Skipping <url> without <loc>")
            continue
        entries.append(
            SitemapEntry(
                loc=loc,
                lastmod=_child_text(element, "lastmod"),
                changefreq=_child_text(element, "changefreq"),
                priority=_parse_priority(_child_text(element, "priority")),
            )
        )
    return entries


def fetch_sitemap(url: str, client: Optional[httpx.Client] = None) -> list[SitemapEntry]:
    """Fetch and parse the sitemap at *url*.

    No retries; the caller decides whether a failure aborts the run.

    Raises:
        FetchError: On a non-2xx status or transport failure.
        ParseError: On malformed XML.
    """
    raw = fetch_url(url, client)
    entries = parse_sitemap(raw.content or raw.html, url)
    logger.info("Parsed sitemap %s: %d URL(s)", url, len(entries))
    return entries
