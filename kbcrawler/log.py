"""Logging setup.

``setup_logging`` configures the root logger once for console output.
``job_log_handler`` additionally tees everything logged during one crawl run
into a per-job file under ``settings.log_dir``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from kbcrawler.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> logging.Logger:
    """Configure console logging for the ``kbcrawler`` loggers.

    Safe to call more than once; ``basicConfig`` is a no-op when the root
    logger already has handlers.
    """
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format=LOG_FORMAT,
    )
    return logging.getLogger("kbcrawler")


def product_slug(product: str) -> str:
    """``"Datto RMM"`` → ``"datto_rmm"``."""
    return product.strip().lower().replace(" ", "_") or "default"


def job_log_path(product: str, when: datetime | None = None) -> Path:
    """Return ``log_dir/<slug>/crawl_<slug>_<timestamp>.log``."""
    slug = product_slug(product)
    stamp = (when or datetime.now()).strftime("%Y-%m-%d_%H-%M-%S")
    return settings.log_dir / slug / f"crawl_{slug}_{stamp}.log"


@contextmanager
def job_log_handler(product: str) -> Iterator[Path]:
    """Attach a file handler to the ``kbcrawler`` logger for one run.

    Yields the log file path.  The handler is removed and closed on exit, and
    the logger's level is restored.
    """
    path = job_log_path(product)
    path.parent.mkdir(parents=True, exist_ok=True)

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(level)

    pkg_logger = logging.getLogger("kbcrawler")
    previous = pkg_logger.level
    if pkg_logger.getEffectiveLevel() > level:
        pkg_logger.setLevel(level)
    pkg_logger.addHandler(handler)
    try:
        yield path
    finally:
        pkg_logger.removeHandler(handler)
        pkg_logger.setLevel(previous)
        handler.close()
