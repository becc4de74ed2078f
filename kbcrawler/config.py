"""Centralised settings for the KB crawler.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (two levels up from this file)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("KBCRAWL_WORKSPACE", Path.home() / ".kb_crawler")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite database file."""
        return self.workspace_dir / "kb.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    @property
    def log_dir(self) -> Path:
        """Directory holding the per-job crawl logs."""
        return self.workspace_dir / "logs"

    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO")
    )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------
    user_agent: str = field(
        default_factory=lambda: os.environ.get("KBCRAWL_USER_AGENT", "KB Crawler Bot v1.0")
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "30.0"))
    )
    verify_tls: bool = field(
        default_factory=lambda: _env_bool("VERIFY_TLS", "true")
    )

    # ------------------------------------------------------------------
    # Politeness / concurrency
    # ------------------------------------------------------------------
    max_parallel_fetches: int = field(
        default_factory=lambda: int(os.environ.get("MAX_PARALLEL_FETCHES", "2"))
    )
    random_delay: float = field(
        default_factory=lambda: float(os.environ.get("RANDOM_DELAY", "2.0"))
    )
    max_concurrent_crawls: int = field(
        default_factory=lambda: int(os.environ.get("MAX_CONCURRENT_CRAWLS", "5"))
    )
    run_timeout: float = field(
        default_factory=lambda: float(os.environ.get("RUN_TIMEOUT", "3600"))
    )

    # ------------------------------------------------------------------
    # Job defaults
    # ------------------------------------------------------------------
    default_category: str = field(
        default_factory=lambda: os.environ.get("DEFAULT_CATEGORY", "Datto RMM")
    )
    crawl_interval: str = field(
        default_factory=lambda: os.environ.get("CRAWL_INTERVAL", "24h")
    )
    max_depth: int = field(
        default_factory=lambda: int(os.environ.get("MAX_DEPTH", "10"))
    )

    # ------------------------------------------------------------------
    # Category mapping
    # ------------------------------------------------------------------
    nav_selector: str = field(
        default_factory=lambda: os.environ.get("NAV_SELECTOR", "nav.sidebarNav")
    )
    flat_categories: bool = field(
        default_factory=lambda: _env_bool("FLAT_CATEGORIES", "false")
    )

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)


# Module-level singleton; import this everywhere:
#   from kbcrawler.config import settings
settings = Settings()
