"""
Match/room lifecycle: creation, admission, start, cancellation and the
unfilled-match sweep.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from config import AUTO_ACTIVATE_TWO_PARTY, DEFAULT_FEE_FRACTION, MAX_MATCH_CAPACITY
from domain.models.ledger import SettlementRecord
from domain.models.match import Match, MatchState, MatchTerms, Participant, ParticipantStatus
from domain.models.outcome import Outcome
from domain.models.prize_config import (
    MatchKind,
    PrizeConfig,
    WinLoseConfig,
    WinnerTakeMostConfig,
    parse_prize_config,
)
from domain.services.prize_rule_engine import winner_take_most_prize
from repositories.interfaces import ILedgerRepository, IMatchRepository, ISettlementRepository
from services.errors import (
    InvalidConfig,
    InvalidState,
    MatchNotFound,
    PartialCancelFailure,
    WagerError,
)
from services.interfaces import IMatchLifecycleService
from services.notification_service import (
    EVENT_PARTICIPANT_JOINED,
    EVENT_PARTICIPANT_LEFT,
    EVENT_STATE_CHANGED,
    NotificationService,
)
from services.result import Result
from utils.formatting import format_amount
from utils.room_codes import generate_unique_room_code

if TYPE_CHECKING:
    from services.settlement_service import SettlementService

logger = logging.getLogger("wager_bot.services.lifecycle")

ROOM_CODE_ATTEMPTS = 5


class MatchLifecycleService(IMatchLifecycleService):
    """
    Owns the match state machine. Balance effects go through the ledger
    repository; settlement is delegated to the settlement service.
    """

    def __init__(
        self,
        match_repo: IMatchRepository,
        ledger_repo: ILedgerRepository,
        settlement_repo: ISettlementRepository,
        notification_service: NotificationService | None = None,
        settlement_service: SettlementService | None = None,
        max_capacity: int | None = None,
        fee_fraction: str | None = None,
        auto_activate_two_party: bool | None = None,
    ):
        self.match_repo = match_repo
        self.ledger_repo = ledger_repo
        self.settlement_repo = settlement_repo
        self.notifications = notification_service or NotificationService()
        self.settlement_service = settlement_service
        self.max_capacity = max_capacity if max_capacity is not None else MAX_MATCH_CAPACITY
        self.fee_fraction = fee_fraction if fee_fraction is not None else DEFAULT_FEE_FRACTION
        self.auto_activate_two_party = (
            auto_activate_two_party if auto_activate_two_party is not None else AUTO_ACTIVATE_TWO_PARTY
        )

    # ---------------------------------------------------------------- create

    def create_match(
        self,
        created_by: int,
        kind: MatchKind | str,
        capacity: int,
        entry_fee: int,
        prize_config: PrizeConfig | Mapping[str, Any],
        *,
        title: str | None = None,
        starts_at: int | None = None,
        room_code: str | None = None,
        auto_activate: bool | None = None,
        source_match_id: int | None = None,
        now: int | None = None,
    ) -> Match:
        """
        Validate terms and store an open match. Terms never change afterwards.

        Raises:
            InvalidConfig: bad capacity, fee or prize configuration
        """
        try:
            kind = MatchKind(kind)
        except ValueError:
            raise InvalidConfig(f"Unknown match kind: {kind!r}") from None
        if not 2 <= capacity <= self.max_capacity:
            raise InvalidConfig(f"Capacity must be between 2 and {self.max_capacity}.")
        if isinstance(entry_fee, bool) or not isinstance(entry_fee, int) or entry_fee < 0:
            raise InvalidConfig("Entry fee must be a non-negative integer amount.")

        config = self._resolve_prize_config(kind, entry_fee, prize_config)
        if auto_activate is None:
            auto_activate = capacity == 2 and self.auto_activate_two_party

        match = self.match_repo.create(
            kind=kind,
            capacity=capacity,
            entry_fee=entry_fee,
            prize_config=config,
            created_by=created_by,
            room_code=room_code,
            title=title,
            starts_at=starts_at,
            auto_activate=auto_activate,
            source_match_id=source_match_id,
            now=now,
        )
        logger.info(
            f"Match {match.match_id} created by {created_by}: {kind.value}, "
            f"{capacity} slots, entry {entry_fee}"
        )
        self.notifications.publish(
            match.match_id, EVENT_STATE_CHANGED, {"from": None, "to": MatchState.OPEN.value}
        )
        return match

    def create_room(
        self,
        host_id: int,
        entry_fee: int,
        winner_prize: int | None = None,
        *,
        title: str | None = None,
        now: int | None = None,
    ) -> Match:
        """
        Private two-player win/lose room behind a generated numeric code.
        The host takes the first slot; the match is cancelled if that fails.
        """
        if winner_prize is None:
            winner_prize = winner_take_most_prize(entry_fee, 2, self.fee_fraction)
        config = WinLoseConfig(winner_prize=winner_prize, kind=MatchKind.WIN_LOSE)

        match = None
        for attempt in range(ROOM_CODE_ATTEMPTS):
            code = generate_unique_room_code(self.match_repo.room_code_in_use)
            try:
                match = self.create_match(
                    host_id,
                    MatchKind.WIN_LOSE,
                    2,
                    entry_fee,
                    config,
                    title=title,
                    room_code=code,
                    now=now,
                )
                break
            except sqlite3.IntegrityError:
                logger.warning(f"Room code collision on attempt {attempt + 1}, retrying")
        if match is None:
            raise InvalidState("Could not allocate a room code. Try again.")

        try:
            self.join(match.match_id, host_id, now=now)
        except WagerError:
            self.cancel(match.match_id, reason="host_join_failed", now=now)
            raise
        return self.get_match(match.match_id)

    # ------------------------------------------------------------- admission

    def join(
        self, match_id: int, user_id: int, room_code: str | None = None, *, now: int | None = None
    ) -> Participant:
        """
        Reserve the entry fee and take a slot.

        Raises:
            Full, AlreadyJoined, InvalidCode, InsufficientFunds, InvalidState
        """
        match, participant = self.match_repo.join_atomic(match_id, user_id, room_code=room_code, now=now)
        logger.info(
            f"User {user_id} joined match {match_id} (slot {participant.slot_index}, "
            f"{match.filled_count}/{match.capacity})"
        )
        self.notifications.publish(
            match_id,
            EVENT_PARTICIPANT_JOINED,
            {"user_id": user_id, "slot_index": participant.slot_index, "filled_count": match.filled_count},
        )
        if match.state != MatchState.OPEN:
            self.notifications.publish(
                match_id, EVENT_STATE_CHANGED, {"from": MatchState.OPEN.value, "to": MatchState.FILLED.value}
            )
        if match.state == MatchState.ACTIVE:
            self.notifications.publish(
                match_id, EVENT_STATE_CHANGED, {"from": MatchState.FILLED.value, "to": MatchState.ACTIVE.value}
            )
        return participant

    def join_by_code(self, room_code: str, user_id: int, *, now: int | None = None) -> Participant:
        match = self.match_repo.get_by_room_code(room_code)
        if match is None:
            raise MatchNotFound(room_code)
        return self.join(match.match_id, user_id, room_code=room_code, now=now)

    def leave(self, match_id: int, user_id: int, *, now: int | None = None) -> Match:
        """Give up a slot while the match is open; the entry fee is returned."""
        match = self.match_repo.leave_atomic(match_id, user_id, now=now)
        logger.info(f"User {user_id} left match {match_id}")
        self.notifications.publish(
            match_id, EVENT_PARTICIPANT_LEFT, {"user_id": user_id, "filled_count": match.filled_count}
        )
        return match

    # ----------------------------------------------------------- transitions

    def start(self, match_id: int, *, now: int | None = None) -> Match:
        """Filled -> Active."""
        match = self.get_match(match_id)
        if not self.match_repo.transition(match_id, MatchState.FILLED, MatchState.ACTIVE, now=now):
            current = self.get_match(match_id)
            raise InvalidState(f"Match {match_id} is {current.state.value}; only filled matches can start.")
        self.notifications.publish(
            match_id, EVENT_STATE_CHANGED, {"from": match.state.value, "to": MatchState.ACTIVE.value}
        )
        return self.get_match(match_id)

    def complete(
        self, match_id: int, outcomes: Mapping[int, Outcome | None], *, now: int | None = None
    ) -> list[SettlementRecord]:
        """Active -> Completed through the settlement processor."""
        if self.settlement_service is None:
            raise InvalidState("Settlement is not configured.")
        return self.settlement_service.settle(match_id, outcomes, now=now)

    def cancel(
        self, match_id: int, reason: str | None = None, *, now: int | None = None
    ) -> list[SettlementRecord]:
        """
        Refund every participant and mark the match cancelled.

        Already cancelled is a no-op returning []. Completed matches raise
        InvalidState. If any reservation cannot be released, nothing is marked
        cancelled and PartialCancelFailure names the failures; calling cancel
        again retries only what is still held.
        """
        ts = int(time.time()) if now is None else now
        # Settlement refuses a claimed match from here on
        match = self.match_repo.claim_for_cancel(match_id, now=ts)
        if match.state == MatchState.CANCELLED:
            return []

        released: list[int] = []
        failed: dict[int, str] = {}
        for participant in self.match_repo.get_participants(match_id):
            if participant.status != ParticipantStatus.ACTIVE or participant.reservation_id is None:
                continue
            try:
                self.ledger_repo.release(
                    participant.reservation_id, reference=f"match:{match_id}", now=ts
                )
                released.append(participant.participant_id)
            except (WagerError, sqlite3.Error) as e:
                logger.warning(
                    f"Refund failed for participant {participant.participant_id} "
                    f"in match {match_id}: {e}"
                )
                failed[participant.participant_id] = str(e)
        if failed:
            raise PartialCancelFailure(match_id, released, failed)

        records = self.settlement_repo.refund_match_atomic(match_id, reason=reason, now=ts)
        logger.info(f"Match {match_id} cancelled ({reason or 'no reason'}), {len(records)} refunds")
        self.notifications.publish(
            match_id,
            EVENT_STATE_CHANGED,
            {"from": match.state.value, "to": MatchState.CANCELLED.value, "reason": reason},
        )
        for record in records:
            self.notifications.notify_user(
                record.user_id,
                "Match cancelled",
                f"Match #{match_id} was cancelled. {format_amount(record.amount)} returned to your wallet.",
            )
        return records

    def cancel_unfilled(self, now: int | None = None) -> list[int]:
        """Cancel open matches whose scheduled start passed. Returns cancelled match ids."""
        ts = int(time.time()) if now is None else now
        cancelled = []
        for match in self.match_repo.get_overdue_open_matches(ts):
            result = Result.capture(lambda: self.cancel(match.match_id, reason="unfilled", now=ts))
            if result:
                cancelled.append(match.match_id)
            else:
                # Retried on the next sweep
                logger.warning(
                    f"Auto-cancel of unfilled match {match.match_id} failed ({result.error_code}): {result.error}"
                )
        if cancelled:
            logger.info(f"Auto-cancelled unfilled matches: {cancelled}")
        return cancelled

    # ----------------------------------------------------------------- reads

    def clone_terms(self, match_id: int) -> MatchTerms:
        """Entry terms for a rematch; the only way terms leave a match."""
        return self.get_match(match_id).terms()

    def get_match(self, match_id: int) -> Match:
        match = self.match_repo.get(match_id)
        if match is None:
            raise MatchNotFound(match_id)
        return match

    def get_match_by_code(self, room_code: str) -> Match | None:
        return self.match_repo.get_by_room_code(room_code)

    def get_participants(self, match_id: int) -> list[Participant]:
        return self.match_repo.get_participants(match_id)

    def list_open_matches(self, limit: int = 25) -> list[Match]:
        return self.match_repo.list_by_state([MatchState.OPEN], limit)

    def list_live_matches(self, limit: int = 25) -> list[Match]:
        return self.match_repo.list_by_state([MatchState.OPEN, MatchState.FILLED, MatchState.ACTIVE], limit)

    def get_user_matches(self, user_id: int, limit: int = 10) -> list[Match]:
        return self.match_repo.get_user_matches(user_id, limit)

    # --------------------------------------------------------------- helpers

    @staticmethod
    def _resolve_prize_config(
        kind: MatchKind, entry_fee: int, prize_config: PrizeConfig | Mapping[str, Any]
    ) -> PrizeConfig:
        if isinstance(prize_config, Mapping):
            return parse_prize_config(kind, dict(prize_config), entry_fee=entry_fee)
        if prize_config.kind != kind:
            raise InvalidConfig(f"Prize config is for {prize_config.kind.value}, match is {kind.value}.")
        if isinstance(prize_config, WinnerTakeMostConfig) and prize_config.entry_fee != entry_fee:
            raise InvalidConfig("Prize config entry_fee differs from the match entry fee.")
        prize_config.validate()
        return prize_config
