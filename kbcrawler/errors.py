"""Exception taxonomy for the crawl pipeline.

Fatal for a run: a ``FetchError``/``ParseError`` on the sitemap, and any
``MappingError``.  Everything raised while processing a single content page
is non-fatal and ends up as a per-page diagnostic.
"""

from __future__ import annotations


class CrawlError(Exception):
    """Base class for every error raised by the crawler."""

    def __init__(self, message: str, url: str | None = None):
        self.message = message
        self.url = url
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.url:
            return f"{self.message} ({self.url})"
        return self.message


class FetchError(CrawlError):
    """Transport failure or non-2xx HTTP status."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, url)


class ParseError(CrawlError):
    """Malformed sitemap XML or markup that cannot be parsed at all."""


class IncompleteContentError(CrawlError):
    """Page parsed but has no usable title or body."""


class CategoryResolutionError(CrawlError):
    """Neither the page's category path nor the default root is indexed."""


class StorageError(CrawlError):
    """Any failure of the persistence backend."""


class MappingError(CrawlError):
    """Category mapping could not run; fatal for the crawl run."""
