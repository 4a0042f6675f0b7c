"""
SQLite schema for wallets, matches, settlements and rematch offers.
"""

import logging
import sqlite3

logger = logging.getLogger("wager_bot.schema")


class SchemaManager:
    """
    Creates the base tables, then applies named migrations exactly once.

    Applied migration names are recorded in schema_migrations.
    """

    def __init__(self, db_path: str, use_uri: bool = False):
        self.db_path = db_path
        self.use_uri = use_uri

    def initialize(self) -> None:
        """Idempotent; safe to call on every startup."""
        logger.info(f"Initializing database schema: {self.db_path}")
        with self._connect() as conn:
            cursor = conn.cursor()
            self._create_base_schema(cursor)
            self._create_schema_migrations_table(cursor)
            self._run_migrations(cursor)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, uri=self.use_uri)
        conn.row_factory = sqlite3.Row
        if not self.use_uri:  # Skip WAL for in-memory databases
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def _create_base_schema(self, cursor) -> None:
        # One ledger account per user
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS ledger_accounts (
                user_id INTEGER PRIMARY KEY,
                available INTEGER NOT NULL DEFAULT 0 CHECK (available >= 0),
                reserved INTEGER NOT NULL DEFAULT 0 CHECK (reserved >= 0),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        # Escrowed entry fees
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS reservations (
                reservation_id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                amount INTEGER NOT NULL CHECK (amount >= 0),
                status TEXT NOT NULL DEFAULT 'held',
                captured_amount INTEGER,
                created_at INTEGER NOT NULL,
                resolved_at INTEGER,
                FOREIGN KEY (user_id) REFERENCES ledger_accounts(user_id)
            )
            """
        )

        # Matches / rooms
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS matches (
                match_id INTEGER PRIMARY KEY AUTOINCREMENT,
                kind TEXT NOT NULL,
                capacity INTEGER NOT NULL CHECK (capacity >= 2),
                entry_fee INTEGER NOT NULL CHECK (entry_fee >= 0),
                prize_config TEXT NOT NULL,
                state TEXT NOT NULL DEFAULT 'open',
                filled_count INTEGER NOT NULL DEFAULT 0,
                created_by INTEGER NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                CHECK (filled_count >= 0 AND filled_count <= capacity)
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS participants (
                participant_id INTEGER PRIMARY KEY AUTOINCREMENT,
                match_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                joined_at INTEGER NOT NULL,
                reservation_id INTEGER,
                slot_index INTEGER NOT NULL,
                outcome TEXT,
                settled_amount INTEGER,
                settlement_id INTEGER,
                FOREIGN KEY (match_id) REFERENCES matches(match_id),
                FOREIGN KEY (reservation_id) REFERENCES reservations(reservation_id),
                UNIQUE (match_id, user_id)
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS settlement_records (
                settlement_id INTEGER PRIMARY KEY AUTOINCREMENT,
                match_id INTEGER NOT NULL,
                participant_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                amount INTEGER NOT NULL,
                reason TEXT NOT NULL,
                applied_at INTEGER NOT NULL,
                note TEXT,
                FOREIGN KEY (match_id) REFERENCES matches(match_id),
                FOREIGN KEY (participant_id) REFERENCES participants(participant_id)
            )
            """
        )

    # --- Migration helpers ---

    def _add_column_if_not_exists(self, cursor, table: str, column: str, column_type: str) -> None:
        try:
            cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
        except sqlite3.OperationalError:
            pass

    def _create_schema_migrations_table(self, cursor) -> None:
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                name TEXT PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

    def _run_migrations(self, cursor) -> None:
        applied = {row["name"] for row in cursor.execute("SELECT name FROM schema_migrations")}
        for name, action in self._get_migrations():
            if name in applied:
                continue
            logger.info(f"Applying migration: {name}")
            action(cursor)
            cursor.execute(
                "INSERT INTO schema_migrations (name) VALUES (?)",
                (name,),
            )

    def _get_migrations(self):
        return [
            ("add_settlement_indexes", self._migration_add_settlement_indexes),
            ("create_ledger_adjustments_table", self._migration_create_ledger_adjustments_table),
            ("create_wallet_transactions_table", self._migration_create_wallet_transactions_table),
            ("add_room_columns_to_matches", self._migration_add_room_columns_to_matches),
            ("add_participant_status_column", self._migration_add_participant_status_column),
            ("create_rematch_offers_table", self._migration_create_rematch_offers_table),
            ("create_match_events_table", self._migration_create_match_events_table),
            ("add_lifecycle_indexes", self._migration_add_lifecycle_indexes),
            ("add_active_room_code_index", self._migration_add_active_room_code_index),
            ("add_cancel_requested_column", self._migration_add_cancel_requested_column),
        ]

    # --- Migrations ---

    def _migration_add_settlement_indexes(self, cursor) -> None:
        # At most one initial settlement per participant
        cursor.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_settlement_initial_unique
            ON settlement_records(participant_id)
            WHERE reason = 'initial'
            """
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_settlement_match ON settlement_records(match_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_participants_match ON participants(match_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_reservations_user ON reservations(user_id, status)"
        )

    def _migration_create_ledger_adjustments_table(self, cursor) -> None:
        # correlation_id is the idempotency key for adjust()
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS ledger_adjustments (
                correlation_id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                delta INTEGER NOT NULL,
                reason TEXT,
                applied_at INTEGER NOT NULL,
                FOREIGN KEY (user_id) REFERENCES ledger_accounts(user_id)
            )
            """
        )

    def _migration_create_wallet_transactions_table(self, cursor) -> None:
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS wallet_transactions (
                transaction_id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                amount INTEGER NOT NULL,
                kind TEXT NOT NULL,
                reference TEXT,
                description TEXT,
                created_at INTEGER NOT NULL
            )
            """
        )
        cursor.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_wallet_transactions_user
            ON wallet_transactions(user_id, created_at DESC)
            """
        )

    def _migration_add_room_columns_to_matches(self, cursor) -> None:
        self._add_column_if_not_exists(cursor, "matches", "room_code", "TEXT")
        self._add_column_if_not_exists(cursor, "matches", "title", "TEXT")
        self._add_column_if_not_exists(cursor, "matches", "starts_at", "INTEGER")
        self._add_column_if_not_exists(cursor, "matches", "auto_activate", "INTEGER DEFAULT 0")
        self._add_column_if_not_exists(cursor, "matches", "source_match_id", "INTEGER")
        self._add_column_if_not_exists(cursor, "matches", "cancel_reason", "TEXT")

    def _migration_add_participant_status_column(self, cursor) -> None:
        self._add_column_if_not_exists(
            cursor, "participants", "status", "TEXT NOT NULL DEFAULT 'active'"
        )

    def _migration_create_rematch_offers_table(self, cursor) -> None:
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS rematch_offers (
                offer_id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_match_id INTEGER NOT NULL,
                requester_id INTEGER NOT NULL,
                responder_id INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                expires_at INTEGER NOT NULL,
                created_at INTEGER NOT NULL,
                responded_at INTEGER,
                decline_reason TEXT,
                new_match_id INTEGER,
                FOREIGN KEY (source_match_id) REFERENCES matches(match_id)
            )
            """
        )
        # One pending offer per source match
        cursor.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_rematch_one_pending
            ON rematch_offers(source_match_id)
            WHERE status = 'pending'
            """
        )

    def _migration_create_match_events_table(self, cursor) -> None:
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS match_events (
                event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                match_id INTEGER NOT NULL,
                event_type TEXT NOT NULL,
                payload TEXT,
                created_at INTEGER NOT NULL
            )
            """
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_match_events_match ON match_events(match_id, event_id)"
        )

    def _migration_add_lifecycle_indexes(self, cursor) -> None:
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_matches_state ON matches(state)")
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_matches_room_code ON matches(room_code, state)"
        )

    def _migration_add_active_room_code_index(self, cursor) -> None:
        # Room codes are reusable once a room is finished
        cursor.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_matches_live_room_code
            ON matches(room_code)
            WHERE room_code IS NOT NULL AND state IN ('open', 'filled', 'active')
            """
        )

    def _migration_add_cancel_requested_column(self, cursor) -> None:
        self._add_column_if_not_exists(cursor, "matches", "cancel_requested_at", "INTEGER")
