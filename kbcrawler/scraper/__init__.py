"""Scraper package: fetching, sitemap parsing, content and navigation extraction."""

from kbcrawler.scraper.extractor import extract_content, require_complete
from kbcrawler.scraper.fetcher import fetch_url, make_client
from kbcrawler.scraper.models import ParsedContent, RawPage, SitemapEntry
from kbcrawler.scraper.navigation import page_category_trail, walk_navigation
from kbcrawler.scraper.sitemap import fetch_sitemap, parse_sitemap

__all__ = [
    "fetch_url",
    "make_client",
    "fetch_sitemap",
    "parse_sitemap",
    "extract_content",
    "require_complete",
    "page_category_trail",
    "walk_navigation",
    "RawPage",
    "ParsedContent",
    "SitemapEntry",
]
