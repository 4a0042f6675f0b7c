"""
Base repository with common database operations.
"""

import logging
import sqlite3
import time
from abc import ABC
from contextlib import contextmanager

from database import Database

logger = logging.getLogger("wager_bot.repositories")


class BaseRepository(ABC):
    """
    Shared SQLite plumbing for the wager repositories.

    Every public method opens its own short-lived connection, so repositories
    are safe to call from asyncio.to_thread workers.
    """

    # Paths whose schema has been checked in this process
    _schema_initialized_paths = set()

    def __init__(self, db_path: str):
        self.db_path = db_path
        if db_path not in BaseRepository._schema_initialized_paths:
            Database(db_path)
            BaseRepository._schema_initialized_paths.add(db_path)

    @staticmethod
    def now(now: int | None = None) -> int:
        """Epoch seconds; callers may pin the clock for deterministic tests."""
        return int(time.time()) if now is None else int(now)

    def get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextmanager
    def connection(self):
        """Plain connection for reads and single-statement writes. Commits on success."""
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def atomic_transaction(self):
        """
        Transaction holding the write lock from its first statement.

        BEGIN IMMEDIATE serializes writers, so a balance check and the update
        that depends on it cannot interleave with another reservation or
        capture on the same database.
        """
        conn = self.get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def unit_of_work(self, conn: sqlite3.Connection | None = None):
        """
        Join the caller's transaction when one is passed, else open a new one.

        Lets a repository method run standalone or as one step of a larger
        atomic operation (e.g. reserve inside a match join).
        """
        if conn is not None:
            yield conn
            return
        with self.atomic_transaction() as own:
            yield own
