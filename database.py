"""
Database bootstrap.

Constructing a Database ensures the schema and all migrations are applied to
the given SQLite file. Repositories do this lazily on first use.
"""

import logging

from infrastructure.schema_manager import SchemaManager

logger = logging.getLogger("wager_bot.database")


class Database:
    """Owns schema initialization for a SQLite database path."""

    def __init__(self, db_path: str = "wager.db"):
        self.db_path = db_path
        SchemaManager(db_path).initialize()
        logger.debug(f"Database ready at {db_path}")
