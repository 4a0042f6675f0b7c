"""
Settlement processor: exactly-once payouts for a finished match and
delta-only corrections afterwards.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Mapping
from dataclasses import dataclass, field

from config import SETTLEMENT_CAPTURE_ATTEMPTS
from domain.models.ledger import SettlementReason, SettlementRecord
from domain.models.match import MatchState, ParticipantStatus
from domain.models.outcome import Outcome
from domain.services.prize_rule_engine import PrizeInput, compute_prizes
from repositories.interfaces import IMatchRepository, ISettlementRepository
from services.errors import (
    InvalidOutcome,
    InvalidState,
    MatchNotFound,
    PartialSettlementFailure,
    WagerError,
)
from services.interfaces import ISettlementService
from services.notification_service import (
    EVENT_CORRECTED,
    EVENT_SETTLED,
    EVENT_STATE_CHANGED,
    NotificationService,
)
from utils.formatting import format_amount

logger = logging.getLogger("wager_bot.services.settlement")


@dataclass
class ParticipantSettlement:
    """Net effect of all settlement records for one participant."""

    user_id: int
    participant_id: int
    initial: int = 0
    corrections: int = 0
    refunded: int = 0
    correction_count: int = 0

    @property
    def paid(self) -> int:
        return self.initial + self.corrections


@dataclass
class SettlementSummary:
    match_id: int
    state: MatchState
    participants: list[ParticipantSettlement] = field(default_factory=list)

    @property
    def total_paid(self) -> int:
        return sum(p.paid for p in self.participants)

    @property
    def total_refunded(self) -> int:
        return sum(p.refunded for p in self.participants)


class SettlementService(ISettlementService):
    """
    Orchestrates prize computation and ledger capture for a match.

    The prize engine runs once per match. Each participant's capture and
    initial record commit together, so a failed participant can be retried
    without touching the others.
    """

    def __init__(
        self,
        match_repo: IMatchRepository,
        settlement_repo: ISettlementRepository,
        notification_service: NotificationService | None = None,
        capture_attempts: int | None = None,
    ):
        self.match_repo = match_repo
        self.settlement_repo = settlement_repo
        self.notifications = notification_service or NotificationService()
        self.capture_attempts = max(
            1, capture_attempts if capture_attempts is not None else SETTLEMENT_CAPTURE_ATTEMPTS
        )

    def settle(
        self, match_id: int, outcomes: Mapping[int, Outcome | None], *, now: int | None = None
    ) -> list[SettlementRecord]:
        """
        Pay out an active match.

        Args:
            match_id: Match to settle
            outcomes: user_id -> Outcome for every participant; None means
                explicitly unset

        Returns:
            The initial settlement record of every participant.

        Raises:
            InvalidState: match is not active, or a retry reports different outcomes
            InvalidOutcome: outcome map does not cover the participants exactly
            InvalidConfig: prize config cannot price these outcomes
            PartialSettlementFailure: some payouts failed; the match stays active
        """
        ts = int(time.time()) if now is None else now
        match = self.match_repo.get(match_id)
        if match is None:
            raise MatchNotFound(match_id)
        if match.state != MatchState.ACTIVE:
            raise InvalidState(f"Match {match_id} is {match.state.value}; only active matches can be settled.")

        participants = [
            p for p in self.match_repo.get_participants(match_id) if p.status == ParticipantStatus.ACTIVE
        ]
        by_user = {p.user_id: p for p in participants}
        missing = sorted(set(by_user) - set(outcomes))
        unknown = sorted(set(outcomes) - set(by_user))
        if missing:
            raise InvalidOutcome(f"No outcome reported for participant(s) {missing}.")
        if unknown:
            raise InvalidOutcome(f"User(s) {unknown} are not participants of match {match_id}.")

        resolved = {
            by_user[user_id].participant_id: (outcome if outcome is not None else Outcome.unset())
            for user_id, outcome in outcomes.items()
        }
        prizes = compute_prizes(
            match.prize_config,
            [PrizeInput(pid, outcome) for pid, outcome in resolved.items()],
        )
        self.match_repo.record_outcomes(match_id, resolved)

        records: list[SettlementRecord] = []
        failed: dict[int, str] = {}
        for participant in participants:
            pid = participant.participant_id
            last_error: Exception | None = None
            for attempt in range(1, self.capture_attempts + 1):
                try:
                    record, created = self.settlement_repo.settle_participant_atomic(pid, prizes[pid], now=ts)
                except sqlite3.OperationalError as e:
                    last_error = e
                    logger.warning(
                        f"Payout for participant {pid} in match {match_id} failed "
                        f"(attempt {attempt}/{self.capture_attempts}): {e}"
                    )
                    continue
                except WagerError as e:
                    last_error = e
                    logger.warning(f"Payout for participant {pid} in match {match_id} rejected: {e}")
                    break
                records.append(record)
                last_error = None
                if created:
                    self.notifications.notify_user(
                        record.user_id,
                        "Match settled",
                        f"Match #{match_id} settled. You received {format_amount(record.amount)}.",
                    )
                break
            if last_error is not None:
                failed[pid] = str(last_error)

        if failed:
            raise PartialSettlementFailure(match_id, [r.participant_id for r in records], failed)

        if not self.match_repo.transition(match_id, MatchState.ACTIVE, MatchState.COMPLETED, now=ts):
            current = self.match_repo.get(match_id)
            if current is None or current.state != MatchState.COMPLETED:
                raise InvalidState(f"Match {match_id} changed state during settlement.")
            # A concurrent settle finished first; our records are the same rows
            return records

        total = sum(r.amount for r in records)
        logger.info(f"Match {match_id} settled: {len(records)} payouts totalling {total}")
        self.notifications.publish(
            match_id,
            EVENT_STATE_CHANGED,
            {"from": MatchState.ACTIVE.value, "to": MatchState.COMPLETED.value},
        )
        self.notifications.publish(
            match_id,
            EVENT_SETTLED,
            {"payouts": {str(r.user_id): r.amount for r in records}, "total": total},
        )
        return records

    def correct(
        self,
        match_id: int,
        user_id: int,
        new_outcome: Outcome,
        corrected_by: int | None = None,
        *,
        now: int | None = None,
    ) -> SettlementRecord:
        """
        Re-price one participant of a completed match and apply only the difference.

        Returns an unsaved record (settlement_id None, amount 0) when the
        prize does not change.
        """
        note = f"corrected by {corrected_by}" if corrected_by is not None else None
        record, participant = self.settlement_repo.correct_participant_atomic(
            match_id, user_id, new_outcome, note=note, now=now
        )
        if record.is_noop:
            logger.info(f"Correction for user {user_id} in match {match_id} changed no prize")
            return record

        logger.info(
            f"Corrected user {user_id} in match {match_id}: delta {record.amount}, "
            f"settled amount now {participant.settled_amount}"
        )
        self.notifications.publish(
            match_id,
            EVENT_CORRECTED,
            {
                "user_id": user_id,
                "delta": record.amount,
                "settled_amount": participant.settled_amount,
                "settlement_id": record.settlement_id,
            },
        )
        self.notifications.notify_user(
            user_id,
            "Result corrected",
            f"Your result in match #{match_id} was corrected. "
            f"Wallet adjusted by {format_amount(record.amount, signed=True)}.",
        )
        return record

    def get_settlements(self, match_id: int) -> list[SettlementRecord]:
        return self.settlement_repo.get_for_match(match_id)

    def settlement_summary(self, match_id: int) -> SettlementSummary:
        match = self.match_repo.get(match_id)
        if match is None:
            raise MatchNotFound(match_id)
        summary = SettlementSummary(match_id=match_id, state=match.state)
        by_participant: dict[int, ParticipantSettlement] = {}
        for participant in self.match_repo.get_participants(match_id):
            entry = ParticipantSettlement(user_id=participant.user_id, participant_id=participant.participant_id)
            by_participant[participant.participant_id] = entry
            summary.participants.append(entry)
        for record in self.settlement_repo.get_for_match(match_id):
            entry = by_participant.get(record.participant_id)
            if entry is None:
                continue
            if record.reason == SettlementReason.INITIAL:
                entry.initial += record.amount
            elif record.reason == SettlementReason.CORRECTION:
                entry.corrections += record.amount
                entry.correction_count += 1
            else:
                entry.refunded += record.amount
        return summary
