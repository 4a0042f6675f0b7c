"""
Repository for rematch offers.
"""

from __future__ import annotations

import logging
import sqlite3

from domain.models.rematch import RematchOffer, RematchStatus
from repositories.base_repository import BaseRepository
from repositories.interfaces import IRematchRepository
from services.errors import InvalidState

logger = logging.getLogger("wager_bot.repositories.rematch")

OFFER_COLUMNS = """
    offer_id, source_match_id, requester_id, responder_id, status, expires_at,
    created_at, responded_at, decline_reason, new_match_id
"""


class RematchRepository(BaseRepository, IRematchRepository):
    """
    Handles rematch offers. Every status change is a compare-and-set from pending.
    """

    def create(
        self,
        source_match_id: int,
        requester_id: int,
        responder_id: int,
        expires_at: int,
        *,
        now: int | None = None,
    ) -> RematchOffer:
        ts = self.now(now)
        with self.atomic_transaction() as conn:
            cursor = conn.cursor()
            # A pending offer that has run out of time must not block a new one
            cursor.execute(
                """
                UPDATE rematch_offers
                SET status = 'expired', responded_at = ?
                WHERE source_match_id = ? AND status = 'pending' AND expires_at <= ?
                """,
                (ts, source_match_id, ts),
            )
            try:
                cursor.execute(
                    """
                    INSERT INTO rematch_offers (
                        source_match_id, requester_id, responder_id, status, expires_at, created_at
                    )
                    VALUES (?, ?, ?, 'pending', ?, ?)
                    """,
                    (source_match_id, requester_id, responder_id, expires_at, ts),
                )
            except sqlite3.IntegrityError:
                raise InvalidState(
                    f"A rematch offer for match {source_match_id} is already pending."
                ) from None
            return self._get(cursor, cursor.lastrowid)

    def get(self, offer_id: int) -> RematchOffer | None:
        with self.connection() as conn:
            return self._get(conn.cursor(), offer_id)

    def get_pending_for_user(self, user_id: int) -> list[RematchOffer]:
        """Pending offers awaiting this user's answer."""
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {OFFER_COLUMNS}
                FROM rematch_offers
                WHERE responder_id = ? AND status = 'pending'
                ORDER BY offer_id DESC
                """,
                (user_id,),
            )
            return [self._row_to_offer(row) for row in cursor.fetchall()]

    def resolve(
        self,
        offer_id: int,
        target: RematchStatus,
        *,
        now: int,
        require_unexpired: bool = False,
        reason: str | None = None,
        new_match_id: int | None = None,
    ) -> bool:
        """
        Move a pending offer to `target`. Returns False if it was no longer pending
        (or, with require_unexpired, if its deadline has passed).
        """
        query = """
            UPDATE rematch_offers
            SET status = ?, responded_at = ?, decline_reason = ?, new_match_id = COALESCE(?, new_match_id)
            WHERE offer_id = ? AND status = 'pending'
        """
        params: list = [target.value, now, reason, new_match_id, offer_id]
        if require_unexpired:
            query += " AND expires_at > ?"
            params.append(now)
        with self.atomic_transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.rowcount == 1

    def mark_expired(self, offer_id: int, now: int) -> bool:
        with self.atomic_transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE rematch_offers
                SET status = 'expired', responded_at = ?
                WHERE offer_id = ? AND status = 'pending' AND expires_at <= ?
                """,
                (now, offer_id, now),
            )
            return cursor.rowcount == 1

    def set_declined_after_accept(self, offer_id: int, reason: str, *, now: int) -> None:
        """Revert an accepted offer whose rematch could not be set up."""
        with self.atomic_transaction() as conn:
            conn.execute(
                """
                UPDATE rematch_offers
                SET status = 'declined', decline_reason = ?, responded_at = ?
                WHERE offer_id = ? AND status = 'accepted'
                """,
                (reason, now, offer_id),
            )

    def set_new_match(self, offer_id: int, new_match_id: int) -> None:
        with self.connection() as conn:
            conn.execute(
                "UPDATE rematch_offers SET new_match_id = ? WHERE offer_id = ?",
                (new_match_id, offer_id),
            )

    def expire_stale(self, now: int) -> list[RematchOffer]:
        """Expire every pending offer past its deadline and return them."""
        with self.atomic_transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {OFFER_COLUMNS}
                FROM rematch_offers
                WHERE status = 'pending' AND expires_at <= ?
                """,
                (now,),
            )
            stale = [self._row_to_offer(row) for row in cursor.fetchall()]
            if stale:
                cursor.execute(
                    """
                    UPDATE rematch_offers
                    SET status = 'expired', responded_at = ?
                    WHERE status = 'pending' AND expires_at <= ?
                    """,
                    (now, now),
                )
            for offer in stale:
                offer.status = RematchStatus.EXPIRED
                offer.responded_at = now
            return stale

    @staticmethod
    def _row_to_offer(row) -> RematchOffer:
        return RematchOffer(
            offer_id=row["offer_id"],
            source_match_id=row["source_match_id"],
            requester_id=row["requester_id"],
            responder_id=row["responder_id"],
            status=RematchStatus(row["status"]),
            expires_at=row["expires_at"],
            created_at=row["created_at"],
            responded_at=row["responded_at"],
            decline_reason=row["decline_reason"],
            new_match_id=row["new_match_id"],
        )

    def _get(self, cursor, offer_id: int) -> RematchOffer | None:
        cursor.execute(f"SELECT {OFFER_COLUMNS} FROM rematch_offers WHERE offer_id = ?", (offer_id,))
        row = cursor.fetchone()
        return self._row_to_offer(row) if row else None
