"""Category mapping: builds a run's :class:`CategoryIndex` from site navigation.

``CategoryMapper.map`` runs once per crawl, before any content page is
fetched:

    create root category → fetch navigation page → walk nav lists
    → persist one category per labelled item → freeze the index
"""

from __future__ import annotations

import logging
from typing import Callable, Optional
from urllib.parse import urljoin

import httpx

from kbcrawler.config import settings
from kbcrawler.crawler.dispatcher import domain_allowed
from kbcrawler.crawler.index import CategoryIndex, join_path
from kbcrawler.db.gateway import PersistenceGateway
from kbcrawler.db.models import Category, CrawlerConfig
from kbcrawler.errors import FetchError, MappingError, ParseError, StorageError
from kbcrawler.scraper.fetcher import fetch_url, make_client
from kbcrawler.scraper.navigation import walk_navigation

logger = logging.getLogger(__name__)

# Navigation page relative to the sitemap when a job has no map URL.
DEFAULT_MAP_PAGE = "0HOME/Home.htm"


def default_map_url(sitemap_url: str) -> str:
    """``https://h/help/Sitemap.xml`` → ``https://h/help/0HOME/Home.htm``."""
    return urljoin(sitemap_url, DEFAULT_MAP_PAGE)


class CategoryMapper:
    """Builds the category tree for one crawl run.

    Args:
        gateway: Where discovered categories are persisted.
        nav_selector: CSS selector of the navigation container(s).
        flat: When ``True`` every discovered category is parented to the root
            instead of to its enclosing navigation item.
        client_factory: Builds the HTTP client used for the navigation page;
            never shared with the content dispatcher.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        nav_selector: Optional[str] = None,
        flat: Optional[bool] = None,
        client_factory: Callable[..., httpx.Client] = make_client,
    ):
        self.gateway = gateway
        self.nav_selector = nav_selector or settings.nav_selector
        self.flat = settings.flat_categories if flat is None else flat
        self.client_factory = client_factory

    def map(self, job: CrawlerConfig) -> CategoryIndex:
        """Return a frozen index populated from *job*'s navigation page.

        Raises:
            MappingError: The root category could not be saved or the
                navigation page is outside the allowed domains or could not
                be fetched.  All are fatal.
        """
        map_url = job.map_url or default_map_url(job.sitemap_url)
        if not domain_allowed(map_url, job.allowed_domains):
            logger.error("Map URL %s is outside the allowed domains %s", map_url, job.allowed_domains)
            raise MappingError("map URL domain not allowed", map_url)

        root_name = job.default_category
        index = CategoryIndex(root_name)

        root = Category(name=root_name, description="Root category")
        try:
            self.gateway.create_or_update_category(root)
        except StorageError as exc:
            logger.error("Failed to create root category: %s", exc)
            raise MappingError(f"failed to create root category: {exc}") from exc
        index.add(root_name, root)

        logger.info("Visiting map URL: %s", map_url)
        try:
            with self.client_factory(job.user_agent) as client:
                page = fetch_url(map_url, client)
            paths = walk_navigation(page.html, self.nav_selector)
        except (FetchError, ParseError) as exc:
            logger.error("Failed to map structure: %s", exc)
            raise MappingError(f"failed to map structure: {exc}", map_url) from exc

        if not paths:
            logger.warning("No navigation items matched %r on %s", self.nav_selector, map_url)

        for path in paths:
            self._register(index, root, [root_name, *path])

        logger.info("Category mapping completed. Total categories: %d", len(index))
        return index.freeze()

    def _register(self, index: CategoryIndex, root: Category, parts: list[str]) -> None:
        full_path = join_path(parts)
        parent = root
        if not self.flat:
            parent = index.get(join_path(parts[:-1])) or root

        category = Category(
            name=parts[-1],
            description=f"Category: {full_path}",
            parent_id=parent.id,
        )
        try:
            self.gateway.create_or_update_category(category)
        except StorageError as exc:
            logger.error("Error creating category %s: %s", full_path, exc)
            return

        index.add(full_path, category)
        logger.debug("Added category to structure: %s", full_path)
