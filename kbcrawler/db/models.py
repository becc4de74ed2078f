"""Dataclass models representing DB rows.

These are plain Python objects, not ORM models.  The DB layer serialises /
deserialises to and from these types.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from time import time
from typing import Any, Optional


def new_id() -> str:
    return str(uuid.uuid4())


def now_ts() -> int:
    return int(time())


class JobStatus(str, Enum):
    RUNNING = "Running"
    STOPPED = "Stopped"
    ERROR = "Error"
    COMPLETED = "Completed"
    SCHEDULED = "Scheduled"


@dataclass
class Category:
    name: str
    description: str = ""
    parent_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: int = field(default_factory=now_ts)
    updated_at: int = field(default_factory=now_ts)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


@dataclass
class Article:
    category_id: str
    title: str
    body: str
    url: str
    tags: list[str] = field(default_factory=list)
    author: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: int = field(default_factory=now_ts)
    updated_at: int = field(default_factory=now_ts)

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------
    def metadata_json(self) -> str:
        """Serialise metadata dict to a JSON string for storage."""
        return json.dumps(self.metadata)

    def tags_json(self) -> str:
        return json.dumps(self.tags)


@dataclass
class CrawlerConfig:
    """One crawl job: target site parameters plus run bookkeeping."""

    product: str
    sitemap_url: str
    default_category: str
    user_agent: str
    map_url: str = ""
    allowed_domains: list[str] = field(default_factory=list)
    max_depth: int = 10
    crawl_interval: str = "24h"
    status: JobStatus = JobStatus.SCHEDULED
    is_first_run: bool = True
    last_run: Optional[int] = None
    next_run: Optional[int] = None
    errors: list[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: int = field(default_factory=now_ts)
    updated_at: int = field(default_factory=now_ts)
