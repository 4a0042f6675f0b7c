"""
Repository for matches (rooms) and their participants.
"""

from __future__ import annotations

import json
import logging
import sqlite3

from domain.models.match import (
    Match,
    MatchState,
    Participant,
    ParticipantStatus,
    can_transition,
)
from domain.models.outcome import Outcome
from domain.models.prize_config import MatchKind, PrizeConfig, prize_config_from_json, prize_config_to_json
from repositories.base_repository import BaseRepository
from repositories.interfaces import IMatchRepository
from repositories.ledger_repository import LedgerRepository
from services.errors import (
    AlreadyJoined,
    Full,
    InvalidCode,
    InvalidState,
    MatchNotFound,
    NotParticipant,
)

logger = logging.getLogger("wager_bot.repositories.match")

MATCH_COLUMNS = """
    match_id, kind, capacity, entry_fee, prize_config, state, filled_count,
    created_by, created_at, updated_at, room_code, title, starts_at,
    auto_activate, source_match_id, cancel_reason
"""

PARTICIPANT_COLUMNS = """
    participant_id, match_id, user_id, joined_at, reservation_id, slot_index,
    outcome, settled_amount, settlement_id, status
"""


def row_to_match(row) -> Match:
    return Match(
        match_id=row["match_id"],
        kind=MatchKind(row["kind"]),
        capacity=row["capacity"],
        entry_fee=row["entry_fee"],
        prize_config=prize_config_from_json(row["prize_config"]),
        state=MatchState(row["state"]),
        filled_count=row["filled_count"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        room_code=row["room_code"],
        title=row["title"],
        starts_at=row["starts_at"],
        auto_activate=bool(row["auto_activate"]),
        source_match_id=row["source_match_id"],
        cancel_reason=row["cancel_reason"],
    )


def outcome_to_json(outcome: Outcome) -> str:
    return json.dumps(outcome.to_dict(), sort_keys=True)


def is_cancel_requested(cursor, match_id: int) -> bool:
    cursor.execute("SELECT cancel_requested_at FROM matches WHERE match_id = ?", (match_id,))
    row = cursor.fetchone()
    return row is not None and row["cancel_requested_at"] is not None


def row_to_participant(row) -> Participant:
    raw_outcome = row["outcome"]
    return Participant(
        participant_id=row["participant_id"],
        match_id=row["match_id"],
        user_id=row["user_id"],
        joined_at=row["joined_at"],
        reservation_id=row["reservation_id"],
        slot_index=row["slot_index"],
        outcome=Outcome.from_dict(json.loads(raw_outcome)) if raw_outcome else None,
        settled_amount=row["settled_amount"],
        settlement_id=row["settlement_id"],
        status=ParticipantStatus(row["status"]),
    )


class MatchRepository(BaseRepository, IMatchRepository):
    """
    Handles matches and participants.

    Admission (join/leave) reserves or releases the entry fee through the
    ledger inside the same transaction as the slot grant.
    """

    def __init__(self, db_path: str, ledger_repo: LedgerRepository | None = None):
        super().__init__(db_path)
        self.ledger_repo = ledger_repo or LedgerRepository(db_path)

    def create(
        self,
        *,
        kind: MatchKind,
        capacity: int,
        entry_fee: int,
        prize_config: PrizeConfig,
        created_by: int,
        room_code: str | None = None,
        title: str | None = None,
        starts_at: int | None = None,
        auto_activate: bool = False,
        source_match_id: int | None = None,
        now: int | None = None,
    ) -> Match:
        ts = self.now(now)
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO matches (
                    kind, capacity, entry_fee, prize_config, state, filled_count,
                    created_by, created_at, updated_at, room_code, title, starts_at,
                    auto_activate, source_match_id
                )
                VALUES (?, ?, ?, ?, 'open', 0, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    MatchKind(kind).value,
                    capacity,
                    entry_fee,
                    prize_config_to_json(prize_config),
                    created_by,
                    ts,
                    ts,
                    room_code,
                    title,
                    starts_at,
                    1 if auto_activate else 0,
                    source_match_id,
                ),
            )
            match_id = cursor.lastrowid
            return self._get(cursor, match_id)

    def get(self, match_id: int, conn: sqlite3.Connection | None = None) -> Match | None:
        if conn is not None:
            return self._get(conn.cursor(), match_id)
        with self.connection() as own:
            return self._get(own.cursor(), match_id)

    def get_by_room_code(self, room_code: str) -> Match | None:
        """Latest non-terminal match using this code."""
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {MATCH_COLUMNS}
                FROM matches
                WHERE room_code = ? AND state NOT IN ('completed', 'cancelled')
                ORDER BY match_id DESC
                LIMIT 1
                """,
                (room_code,),
            )
            row = cursor.fetchone()
            return row_to_match(row) if row else None

    def room_code_in_use(self, room_code: str) -> bool:
        return self.get_by_room_code(room_code) is not None

    def list_by_state(self, states: list[MatchState], limit: int = 25) -> list[Match]:
        if not states:
            return []
        placeholders = ",".join("?" * len(states))
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {MATCH_COLUMNS}
                FROM matches
                WHERE state IN ({placeholders})
                ORDER BY match_id DESC
                LIMIT ?
                """,
                (*[MatchState(s).value for s in states], limit),
            )
            return [row_to_match(row) for row in cursor.fetchall()]

    def get_overdue_open_matches(self, now: int) -> list[Match]:
        """Open matches whose scheduled start has passed without filling."""
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {MATCH_COLUMNS}
                FROM matches
                WHERE state = 'open' AND starts_at IS NOT NULL AND starts_at <= ?
                ORDER BY starts_at ASC
                """,
                (now,),
            )
            return [row_to_match(row) for row in cursor.fetchall()]

    def get_user_matches(self, user_id: int, limit: int = 10) -> list[Match]:
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT m.match_id, m.kind, m.capacity, m.entry_fee, m.prize_config, m.state,
                       m.filled_count, m.created_by, m.created_at, m.updated_at, m.room_code,
                       m.title, m.starts_at, m.auto_activate, m.source_match_id, m.cancel_reason
                FROM matches m
                JOIN participants p ON p.match_id = m.match_id
                WHERE p.user_id = ?
                ORDER BY m.match_id DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            return [row_to_match(row) for row in cursor.fetchall()]

    # --------------------------------------------------------------- admission

    def join_atomic(
        self,
        match_id: int,
        user_id: int,
        *,
        room_code: str | None = None,
        now: int | None = None,
    ) -> tuple[Match, Participant]:
        """
        Atomically admit a user:
        - validate state, duplicate membership, capacity and room code
        - reserve the entry fee
        - insert the participant and bump filled_count
        - move to filled at capacity (and straight to active for auto_activate)

        Any failure rolls back the whole admission, reservation included.
        """
        ts = self.now(now)
        with self.atomic_transaction() as conn:
            cursor = conn.cursor()
            match = self._get(cursor, match_id)
            if match is None:
                raise MatchNotFound(match_id)
            # A match that closed by filling up reports Full, not a state error
            if match.state != MatchState.OPEN and (match.is_terminal or not match.is_full):
                raise InvalidState(f"Match {match_id} is {match.state.value}; joins are closed.")

            cursor.execute(
                "SELECT 1 FROM participants WHERE match_id = ? AND user_id = ?",
                (match_id, user_id),
            )
            if cursor.fetchone():
                raise AlreadyJoined(match_id, user_id)
            if match.is_full:
                raise Full(match_id)
            if is_cancel_requested(cursor, match_id):
                raise InvalidState(f"Match {match_id} is being cancelled; joins are closed.")
            # Only the host may take a room slot without the code
            if match.room_code and user_id != match.created_by and room_code != match.room_code:
                raise InvalidCode(match_id)

            reservation = self.ledger_repo.reserve(
                user_id,
                match.entry_fee,
                reference=f"match:{match_id}",
                now=ts,
                conn=conn,
            )

            cursor.execute(
                """
                UPDATE matches
                SET filled_count = filled_count + 1, updated_at = ?
                WHERE match_id = ? AND state = 'open' AND filled_count < capacity
                """,
                (ts, match_id),
            )
            if cursor.rowcount == 0:
                raise Full(match_id)

            cursor.execute(
                """
                INSERT INTO participants (match_id, user_id, joined_at, reservation_id, slot_index, status)
                VALUES (?, ?, ?, ?, ?, 'active')
                """,
                (
                    match_id,
                    user_id,
                    ts,
                    reservation.reservation_id,
                    self._next_free_slot(cursor, match_id, match.capacity),
                ),
            )
            participant_id = cursor.lastrowid

            if match.filled_count + 1 == match.capacity:
                self._set_state(cursor, match_id, MatchState.OPEN, MatchState.FILLED, now=ts)
                if match.auto_activate:
                    self._set_state(cursor, match_id, MatchState.FILLED, MatchState.ACTIVE, now=ts)

            return self._get(cursor, match_id), self._get_participant_by_id(cursor, participant_id)

    def leave_atomic(self, match_id: int, user_id: int, *, now: int | None = None) -> Match:
        """
        Atomically give up a slot while the match is still open, refunding the entry fee.
        """
        ts = self.now(now)
        with self.atomic_transaction() as conn:
            cursor = conn.cursor()
            match = self._get(cursor, match_id)
            if match is None:
                raise MatchNotFound(match_id)
            if match.state != MatchState.OPEN:
                raise InvalidState(f"Match {match_id} is {match.state.value}; slots are locked.")
            participant = self.get_participant(match_id, user_id, conn=conn)
            if participant is None:
                raise NotParticipant(match_id, user_id)

            if participant.reservation_id is not None:
                self.ledger_repo.release(
                    participant.reservation_id, reference=f"match:{match_id}", now=ts, conn=conn
                )
            cursor.execute("DELETE FROM participants WHERE participant_id = ?", (participant.participant_id,))
            cursor.execute(
                """
                UPDATE matches
                SET filled_count = filled_count - 1, updated_at = ?
                WHERE match_id = ? AND state = 'open' AND filled_count > 0
                """,
                (ts, match_id),
            )
            return self._get(cursor, match_id)

    # ------------------------------------------------------------- transitions

    def transition(
        self,
        match_id: int,
        expected: MatchState,
        target: MatchState,
        *,
        reason: str | None = None,
        now: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """
        Compare-and-set the match state. Returns False when the match was not in `expected`.

        Raises:
            InvalidState: expected -> target is not a legal lifecycle edge
        """
        if not can_transition(expected, target):
            raise InvalidState(f"Cannot move a match from {expected.value} to {target.value}.")
        ts = self.now(now)
        with self.unit_of_work(conn) as tx:
            return self._set_state(tx.cursor(), match_id, expected, target, reason=reason, now=ts)

    def claim_for_cancel(self, match_id: int, *, now: int | None = None) -> Match:
        """
        Mark a live match as being cancelled before any entry fee is released.

        A claimed match takes no joins, outcomes or payouts, and a match with
        payouts on record cannot be claimed, so a cancel and a settle never
        work on the same reservations. The claim outlives a partial cancel;
        the retry finds it in place. A cancelled match is returned unchanged.

        Raises:
            InvalidState: match is completed or already has settlement records
        """
        ts = self.now(now)
        with self.atomic_transaction() as conn:
            cursor = conn.cursor()
            match = self._get(cursor, match_id)
            if match is None:
                raise MatchNotFound(match_id)
            if match.state == MatchState.CANCELLED:
                return match
            if match.state == MatchState.COMPLETED:
                raise InvalidState(f"Match {match_id} is already completed; it cannot be cancelled.")
            cursor.execute(
                "SELECT 1 FROM settlement_records WHERE match_id = ? AND reason = 'initial' LIMIT 1",
                (match_id,),
            )
            if cursor.fetchone():
                raise InvalidState(
                    f"Match {match_id} has settlement records; finish the settlement instead of cancelling."
                )
            cursor.execute(
                """
                UPDATE matches
                SET cancel_requested_at = COALESCE(cancel_requested_at, ?), updated_at = ?
                WHERE match_id = ? AND state = ?
                """,
                (ts, ts, match_id, match.state.value),
            )
            if cursor.rowcount == 0:
                raise InvalidState(f"Match {match_id} changed state during cancellation; retry.")
            return match

    # ------------------------------------------------------------ participants

    def get_participants(
        self, match_id: int, conn: sqlite3.Connection | None = None
    ) -> list[Participant]:
        query = f"""
            SELECT {PARTICIPANT_COLUMNS}
            FROM participants
            WHERE match_id = ?
            ORDER BY slot_index ASC, participant_id ASC
        """
        if conn is not None:
            cursor = conn.cursor()
            cursor.execute(query, (match_id,))
            return [row_to_participant(row) for row in cursor.fetchall()]
        with self.connection() as own:
            cursor = own.cursor()
            cursor.execute(query, (match_id,))
            return [row_to_participant(row) for row in cursor.fetchall()]

    def get_participant(
        self, match_id: int, user_id: int, conn: sqlite3.Connection | None = None
    ) -> Participant | None:
        query = f"SELECT {PARTICIPANT_COLUMNS} FROM participants WHERE match_id = ? AND user_id = ?"
        if conn is not None:
            cursor = conn.cursor()
            cursor.execute(query, (match_id, user_id))
            row = cursor.fetchone()
            return row_to_participant(row) if row else None
        with self.connection() as own:
            cursor = own.cursor()
            cursor.execute(query, (match_id, user_id))
            row = cursor.fetchone()
            return row_to_participant(row) if row else None

    def record_outcomes(self, match_id: int, outcomes: dict[int, Outcome]) -> None:
        """
        Store reported outcomes keyed by participant_id.

        First report wins. A retry must carry the same outcomes, so a retried
        settlement can never pay against a different result than the first try.
        """
        with self.atomic_transaction() as conn:
            cursor = conn.cursor()
            match = self._get(cursor, match_id)
            if match is None:
                raise MatchNotFound(match_id)
            if match.state != MatchState.ACTIVE:
                raise InvalidState(f"Match {match_id} is {match.state.value}; outcomes are locked.")
            if is_cancel_requested(cursor, match_id):
                raise InvalidState(f"Match {match_id} is being cancelled; it cannot be settled.")
            for participant in self.get_participants(match_id, conn=conn):
                new_outcome = outcomes[participant.participant_id]
                if participant.outcome is None:
                    cursor.execute(
                        "UPDATE participants SET outcome = ? WHERE participant_id = ? AND outcome IS NULL",
                        (outcome_to_json(new_outcome), participant.participant_id),
                    )
                elif participant.outcome != new_outcome:
                    raise InvalidState(
                        f"Match {match_id} already has a different outcome reported for user "
                        f"{participant.user_id}. Finish the pending settlement or cancel the match."
                    )

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _get(cursor, match_id: int) -> Match | None:
        cursor.execute(f"SELECT {MATCH_COLUMNS} FROM matches WHERE match_id = ?", (match_id,))
        row = cursor.fetchone()
        return row_to_match(row) if row else None

    @staticmethod
    def _get_participant_by_id(cursor, participant_id: int) -> Participant | None:
        cursor.execute(
            f"SELECT {PARTICIPANT_COLUMNS} FROM participants WHERE participant_id = ?",
            (participant_id,),
        )
        row = cursor.fetchone()
        return row_to_participant(row) if row else None

    @staticmethod
    def _next_free_slot(cursor, match_id: int, capacity: int) -> int:
        cursor.execute("SELECT slot_index FROM participants WHERE match_id = ?", (match_id,))
        taken = {row["slot_index"] for row in cursor.fetchall()}
        for slot in range(capacity):
            if slot not in taken:
                return slot
        return len(taken)

    @staticmethod
    def _set_state(
        cursor,
        match_id: int,
        expected: MatchState,
        target: MatchState,
        *,
        reason: str | None = None,
        now: int,
    ) -> bool:
        cursor.execute(
            """
            UPDATE matches
            SET state = ?, updated_at = ?, cancel_reason = COALESCE(?, cancel_reason)
            WHERE match_id = ? AND state = ?
            """,
            (target.value, now, reason, match_id, expected.value),
        )
        changed = cursor.rowcount == 1
        if changed:
            logger.info(f"Match {match_id}: {expected.value} -> {target.value}")
        return changed
