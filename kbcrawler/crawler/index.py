"""Run-scoped category index: category path → persisted :class:`Category`.

The mapper is the only writer and finishes before dispatch begins; after
:meth:`CategoryIndex.freeze` the index is read-only and any number of crawl
workers may look paths up concurrently.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

from kbcrawler.db.models import Category

logger = logging.getLogger(__name__)

PATH_SEPARATOR = ":"


def join_path(parts: Sequence[str]) -> str:
    """``["Datto RMM", "Devices"]`` → ``"Datto RMM:Devices"``."""
    return PATH_SEPARATOR.join(parts)


class ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class CategoryIndex:
    """Mapping from joined category path to category, owned by one crawl run.

    Args:
        root_name: The default-category name; ``root()`` looks it up.
    """

    def __init__(self, root_name: str):
        self.root_name = root_name
        self._categories: dict[str, Category] = {}
        self._lock = ReadWriteLock()
        self._frozen = False

    def add(self, path: str, category: Category) -> None:
        """Register *category* under *path*.  An existing entry is replaced.

        Raises:
            RuntimeError: If the index has been frozen.
        """
        with self._lock.write():
            if self._frozen:
                raise RuntimeError("CategoryIndex is frozen; no writes after dispatch starts")
            if path in self._categories:
                logger.debug("Category path %r registered twice; keeping the later one", path)
            self._categories[path] = category

    def get(self, path: str) -> Optional[Category]:
        with self._lock.read():
            return self._categories.get(path)

    def root(self) -> Optional[Category]:
        return self.get(self.root_name)

    def freeze(self) -> "CategoryIndex":
        with self._lock.write():
            self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def paths(self) -> list[str]:
        with self._lock.read():
            return list(self._categories)

    def __contains__(self, path: object) -> bool:
        with self._lock.read():
            return path in self._categories

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._categories)
