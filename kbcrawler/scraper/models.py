"""Data models for the scraper pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class RawPage:
    """The raw HTTP response for a single URL fetch."""

    url: str
    html: str
    status_code: int
    content: bytes = b""


@dataclass
class SitemapEntry:
    """One ``<url>`` element of a sitemap, in document order."""

    loc: str
    lastmod: Optional[str] = None
    changefreq: Optional[str] = None
    priority: Optional[float] = None


@dataclass
class ParsedContent:
    """Normalised content extracted from one page's markup."""

    title: str = ""
    body: str = ""
    tags: List[str] = field(default_factory=list)
    author: str = ""
    category_hint: str = ""
    meta: Dict[str, str] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        """``True`` when both a title and a body were found."""
        return bool(self.title) and bool(self.body)
