"""Database layer package.

Public re-exports so callers can write::

    from kbcrawler.db import get_connection, init_db
    from kbcrawler.db import SQLiteGateway
"""

from kbcrawler.db.connection import get_connection
from kbcrawler.db.gateway import PersistenceGateway, SQLiteGateway
from kbcrawler.db.migrations import init_db

__all__ = ["get_connection", "init_db", "PersistenceGateway", "SQLiteGateway"]
