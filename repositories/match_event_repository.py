"""
Repository for the durable per-match change feed.
"""

import json

from repositories.base_repository import BaseRepository
from repositories.interfaces import IMatchEventRepository


class MatchEventRepository(BaseRepository, IMatchEventRepository):
    """
    Append-only match_events table. Readers poll with the last event_id they saw.
    """

    def append(
        self, match_id: int, event_type: str, payload: dict | None = None, *, now: int | None = None
    ) -> int:
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO match_events (match_id, event_type, payload, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (match_id, event_type, json.dumps(payload or {}, sort_keys=True), self.now(now)),
            )
            return cursor.lastrowid

    def get_since(self, match_id: int, since_id: int = 0, limit: int = 100) -> list[dict]:
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT event_id, match_id, event_type, payload, created_at
                FROM match_events
                WHERE match_id = ? AND event_id > ?
                ORDER BY event_id ASC
                LIMIT ?
                """,
                (match_id, since_id, limit),
            )
            return [
                {
                    "event_id": row["event_id"],
                    "match_id": row["match_id"],
                    "event_type": row["event_type"],
                    "payload": json.loads(row["payload"]) if row["payload"] else {},
                    "created_at": row["created_at"],
                }
                for row in cursor.fetchall()
            ]
