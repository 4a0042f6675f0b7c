"""
Repository for settlement records: initial payouts, corrections and refunds.
"""

from __future__ import annotations

import logging

from domain.models.ledger import ReservationStatus, SettlementReason, SettlementRecord, TransactionKind
from domain.models.match import Match, MatchState, Participant, ParticipantStatus
from domain.models.outcome import Outcome
from domain.services.prize_rule_engine import PrizeInput, compute_prizes
from repositories.base_repository import BaseRepository
from repositories.interfaces import ISettlementRepository
from repositories.ledger_repository import LedgerRepository
from repositories.match_repository import (
    MATCH_COLUMNS,
    PARTICIPANT_COLUMNS,
    is_cancel_requested,
    outcome_to_json,
    row_to_match,
    row_to_participant,
)
from services.errors import (
    AlreadySettled,
    InvalidState,
    MatchNotFound,
    NotParticipant,
    WagerError,
)

logger = logging.getLogger("wager_bot.repositories.settlement")

RECORD_COLUMNS = "settlement_id, match_id, participant_id, user_id, amount, reason, applied_at, note"


def correlation_id_for(settlement_id: int) -> str:
    return f"settlement:{settlement_id}"


class SettlementRepository(BaseRepository, ISettlementRepository):
    """
    Writes settlement records together with the ledger effect they describe.

    A record and its balance change always commit in the same transaction.
    """

    def __init__(self, db_path: str, ledger_repo: LedgerRepository | None = None):
        super().__init__(db_path)
        self.ledger_repo = ledger_repo or LedgerRepository(db_path)

    def settle_participant_atomic(
        self, participant_id: int, amount: int, *, now: int | None = None
    ) -> tuple[SettlementRecord, bool]:
        """
        Capture one participant's reservation at `amount` and write the initial record.

        Returns (record, created). A participant that already has an initial
        record is returned as-is with created=False, so retries are safe.
        """
        ts = self.now(now)
        with self.atomic_transaction() as conn:
            cursor = conn.cursor()
            participant = self._get_participant(cursor, participant_id)
            if participant is None:
                raise WagerError(f"Participant {participant_id} not found.")
            if participant.settlement_id is not None:
                return self._get_record(cursor, participant.settlement_id), False
            if participant.reservation_id is None:
                raise WagerError(f"Participant {participant_id} has no reservation to settle.")
            if is_cancel_requested(cursor, participant.match_id):
                raise InvalidState(f"Match {participant.match_id} is being cancelled; payouts are closed.")

            try:
                self.ledger_repo.capture(
                    participant.reservation_id,
                    amount,
                    reference=f"match:{participant.match_id}",
                    now=ts,
                    conn=conn,
                )
            except AlreadySettled:
                reservation = self.ledger_repo.get_reservation(participant.reservation_id, conn=conn)
                if reservation.status != ReservationStatus.CAPTURED:
                    raise
                logger.warning(
                    f"Reservation {reservation.reservation_id} was already captured; "
                    f"recording settlement at captured amount {reservation.captured_amount}"
                )
                amount = reservation.captured_amount or 0

            cursor.execute(
                """
                INSERT INTO settlement_records (match_id, participant_id, user_id, amount, reason, applied_at)
                VALUES (?, ?, ?, ?, 'initial', ?)
                """,
                (participant.match_id, participant.participant_id, participant.user_id, amount, ts),
            )
            settlement_id = cursor.lastrowid
            cursor.execute(
                """
                UPDATE participants
                SET settled_amount = ?, settlement_id = ?
                WHERE participant_id = ? AND settlement_id IS NULL
                """,
                (amount, settlement_id, participant.participant_id),
            )
            return self._get_record(cursor, settlement_id), True

    def correct_participant_atomic(
        self,
        match_id: int,
        user_id: int,
        new_outcome: Outcome,
        *,
        note: str | None = None,
        now: int | None = None,
    ) -> tuple[SettlementRecord, Participant]:
        """
        Re-price one participant against the full current outcome set and apply only the delta.
        The other rows are not checked against the new outcome, so a swap of
        two positions is two corrections.

        The read of settled_amount, the new record and the ledger adjustment
        share one BEGIN IMMEDIATE transaction, so concurrent corrections of the
        same participant are strictly ordered.
        """
        ts = self.now(now)
        with self.atomic_transaction() as conn:
            cursor = conn.cursor()
            match = self._get_match(cursor, match_id)
            if match is None:
                raise MatchNotFound(match_id)
            if match.state != MatchState.COMPLETED:
                raise InvalidState(
                    f"Match {match_id} is {match.state.value}; only completed matches can be corrected."
                )

            participants = self._get_participants(cursor, match_id)
            target = next((p for p in participants if p.user_id == user_id), None)
            if target is None:
                raise NotParticipant(match_id, user_id)

            prizes = compute_prizes(
                match.prize_config,
                [
                    PrizeInput(p.participant_id, new_outcome if p is target else p.outcome)
                    for p in participants
                ],
                independent=True,
            )
            new_amount = prizes[target.participant_id]
            delta = new_amount - (target.settled_amount or 0)

            if delta == 0:
                cursor.execute(
                    "UPDATE participants SET outcome = ? WHERE participant_id = ?",
                    (outcome_to_json(new_outcome), target.participant_id),
                )
                record = SettlementRecord(
                    settlement_id=None,
                    match_id=match_id,
                    participant_id=target.participant_id,
                    user_id=user_id,
                    amount=0,
                    reason=SettlementReason.CORRECTION,
                    applied_at=ts,
                    note=note,
                )
                return record, self._get_participant(cursor, target.participant_id)

            cursor.execute(
                """
                INSERT INTO settlement_records (match_id, participant_id, user_id, amount, reason, applied_at, note)
                VALUES (?, ?, ?, ?, 'correction', ?, ?)
                """,
                (match_id, target.participant_id, user_id, delta, ts, note),
            )
            settlement_id = cursor.lastrowid
            self.ledger_repo.adjust(
                user_id,
                delta,
                correlation_id_for(settlement_id),
                reason=f"Result correction for match {match_id}",
                kind=TransactionKind.CORRECTION,
                now=ts,
                conn=conn,
            )
            cursor.execute(
                """
                UPDATE participants
                SET outcome = ?, settled_amount = ?
                WHERE participant_id = ?
                """,
                (outcome_to_json(new_outcome), new_amount, target.participant_id),
            )
            return self._get_record(cursor, settlement_id), self._get_participant(cursor, target.participant_id)

    def refund_match_atomic(
        self, match_id: int, *, reason: str | None = None, now: int | None = None
    ) -> list[SettlementRecord]:
        """
        Finish a cancellation: release anything still held, write one refund
        record per participant and move the match to cancelled.

        Returns [] when the match was already cancelled.
        """
        ts = self.now(now)
        with self.atomic_transaction() as conn:
            cursor = conn.cursor()
            match = self._get_match(cursor, match_id)
            if match is None:
                raise MatchNotFound(match_id)
            if match.state == MatchState.CANCELLED:
                return []
            if match.state == MatchState.COMPLETED:
                raise InvalidState(f"Match {match_id} is already completed; it cannot be cancelled.")
            if self._count_initial(cursor, match_id):
                raise InvalidState(
                    f"Match {match_id} has settlement records; finish the settlement instead of cancelling."
                )

            records: list[SettlementRecord] = []
            for participant in self._get_participants(cursor, match_id):
                if participant.status != ParticipantStatus.ACTIVE:
                    continue
                refunded = 0
                if participant.reservation_id is not None:
                    reservation = self.ledger_repo.release(
                        participant.reservation_id,
                        reference=f"match:{match_id}",
                        now=ts,
                        conn=conn,
                    )
                    refunded = reservation.amount
                cursor.execute(
                    """
                    INSERT INTO settlement_records (match_id, participant_id, user_id, amount, reason, applied_at, note)
                    VALUES (?, ?, ?, ?, 'refund', ?, ?)
                    """,
                    (match_id, participant.participant_id, participant.user_id, refunded, ts, reason),
                )
                records.append(self._get_record(cursor, cursor.lastrowid))
                cursor.execute(
                    "UPDATE participants SET status = 'refunded' WHERE participant_id = ?",
                    (participant.participant_id,),
                )

            cursor.execute(
                """
                UPDATE matches
                SET state = 'cancelled', cancel_reason = ?, updated_at = ?
                WHERE match_id = ? AND state = ?
                """,
                (reason, ts, match_id, match.state.value),
            )
            if cursor.rowcount == 0:
                raise InvalidState(f"Match {match_id} changed state during cancellation; retry.")
            logger.info(f"Match {match_id}: {match.state.value} -> cancelled ({len(records)} refunds)")
            return records

    # ------------------------------------------------------------------ reads

    def get_for_match(self, match_id: int) -> list[SettlementRecord]:
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {RECORD_COLUMNS} FROM settlement_records WHERE match_id = ? ORDER BY settlement_id ASC",
                (match_id,),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _count_initial(cursor, match_id: int) -> int:
        cursor.execute(
            "SELECT COUNT(*) AS n FROM settlement_records WHERE match_id = ? AND reason = 'initial'",
            (match_id,),
        )
        return int(cursor.fetchone()["n"])

    @staticmethod
    def _row_to_record(row) -> SettlementRecord:
        return SettlementRecord(
            settlement_id=row["settlement_id"],
            match_id=row["match_id"],
            participant_id=row["participant_id"],
            user_id=row["user_id"],
            amount=row["amount"],
            reason=SettlementReason(row["reason"]),
            applied_at=row["applied_at"],
            note=row["note"],
        )

    def _get_record(self, cursor, settlement_id: int) -> SettlementRecord:
        cursor.execute(f"SELECT {RECORD_COLUMNS} FROM settlement_records WHERE settlement_id = ?", (settlement_id,))
        return self._row_to_record(cursor.fetchone())

    @staticmethod
    def _get_match(cursor, match_id: int) -> Match | None:
        cursor.execute(f"SELECT {MATCH_COLUMNS} FROM matches WHERE match_id = ?", (match_id,))
        row = cursor.fetchone()
        return row_to_match(row) if row else None

    @staticmethod
    def _get_participant(cursor, participant_id: int) -> Participant | None:
        cursor.execute(
            f"SELECT {PARTICIPANT_COLUMNS} FROM participants WHERE participant_id = ?",
            (participant_id,),
        )
        row = cursor.fetchone()
        return row_to_participant(row) if row else None

    @staticmethod
    def _get_participants(cursor, match_id: int) -> list[Participant]:
        cursor.execute(
            f"""
            SELECT {PARTICIPANT_COLUMNS}
            FROM participants
            WHERE match_id = ?
            ORDER BY slot_index ASC, participant_id ASC
            """,
            (match_id,),
        )
        return [row_to_participant(row) for row in cursor.fetchall()]
