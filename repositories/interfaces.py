"""
Abstract repository interfaces for data access.

These interfaces define the contracts implemented by concrete repositories.
Mutating methods accept an optional open connection so a service can compose
several of them into one atomic unit of work.
"""

import sqlite3
from abc import ABC, abstractmethod

from domain.models.ledger import (
    Adjustment,
    LedgerAccount,
    Reservation,
    SettlementRecord,
    TransactionKind,
    WalletTransaction,
)
from domain.models.match import Match, MatchState, Participant
from domain.models.outcome import Outcome
from domain.models.prize_config import MatchKind, PrizeConfig
from domain.models.rematch import RematchOffer, RematchStatus


class ILedgerRepository(ABC):
    @abstractmethod
    def open_account(
        self, user_id: int, initial_balance: int = 0, *, now: int | None = None
    ) -> LedgerAccount: ...

    @abstractmethod
    def get_account(
        self, user_id: int, conn: sqlite3.Connection | None = None
    ) -> LedgerAccount | None: ...

    @abstractmethod
    def reserve(
        self,
        user_id: int,
        amount: int,
        *,
        reference: str | None = None,
        now: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Reservation: ...

    @abstractmethod
    def capture(
        self,
        reservation_id: int,
        final_amount: int,
        *,
        reference: str | None = None,
        now: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Reservation: ...

    @abstractmethod
    def release(
        self,
        reservation_id: int,
        *,
        reference: str | None = None,
        now: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Reservation: ...

    @abstractmethod
    def adjust(
        self,
        user_id: int,
        delta: int,
        correlation_id: str,
        *,
        reason: str | None = None,
        kind: TransactionKind = TransactionKind.CORRECTION,
        now: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Adjustment: ...

    @abstractmethod
    def get_reservation(
        self, reservation_id: int, conn: sqlite3.Connection | None = None
    ) -> Reservation | None: ...

    @abstractmethod
    def get_transactions(self, user_id: int, limit: int = 20) -> list[WalletTransaction]: ...


class IMatchRepository(ABC):
    @abstractmethod
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
    ) -> Match: ...

    @abstractmethod
    def get(self, match_id: int, conn: sqlite3.Connection | None = None) -> Match | None: ...

    @abstractmethod
    def get_by_room_code(self, room_code: str) -> Match | None: ...

    @abstractmethod
    def list_by_state(self, states: list[MatchState], limit: int = 25) -> list[Match]: ...

    @abstractmethod
    def room_code_in_use(self, room_code: str) -> bool: ...

    @abstractmethod
    def join_atomic(
        self,
        match_id: int,
        user_id: int,
        *,
        room_code: str | None = None,
        now: int | None = None,
    ) -> tuple[Match, Participant]: ...

    @abstractmethod
    def leave_atomic(self, match_id: int, user_id: int, *, now: int | None = None) -> Match: ...

    @abstractmethod
    def transition(
        self,
        match_id: int,
        expected: MatchState,
        target: MatchState,
        *,
        reason: str | None = None,
        now: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> bool: ...

    @abstractmethod
    def claim_for_cancel(self, match_id: int, *, now: int | None = None) -> Match: ...

    @abstractmethod
    def get_participants(
        self, match_id: int, conn: sqlite3.Connection | None = None
    ) -> list[Participant]: ...

    @abstractmethod
    def get_participant(
        self, match_id: int, user_id: int, conn: sqlite3.Connection | None = None
    ) -> Participant | None: ...

    @abstractmethod
    def record_outcomes(self, match_id: int, outcomes: dict[int, Outcome]) -> None: ...

    @abstractmethod
    def get_overdue_open_matches(self, now: int) -> list[Match]: ...

    @abstractmethod
    def get_user_matches(self, user_id: int, limit: int = 10) -> list[Match]: ...


class ISettlementRepository(ABC):
    @abstractmethod
    def settle_participant_atomic(
        self, participant_id: int, amount: int, *, now: int | None = None
    ) -> tuple[SettlementRecord, bool]: ...

    @abstractmethod
    def correct_participant_atomic(
        self,
        match_id: int,
        user_id: int,
        new_outcome: Outcome,
        *,
        note: str | None = None,
        now: int | None = None,
    ) -> tuple[SettlementRecord, Participant]: ...

    @abstractmethod
    def refund_match_atomic(
        self, match_id: int, *, reason: str | None = None, now: int | None = None
    ) -> list[SettlementRecord]: ...

    @abstractmethod
    def get_for_match(self, match_id: int) -> list[SettlementRecord]: ...


class IRematchRepository(ABC):
    @abstractmethod
    def create(
        self,
        source_match_id: int,
        requester_id: int,
        responder_id: int,
        expires_at: int,
        *,
        now: int | None = None,
    ) -> RematchOffer: ...

    @abstractmethod
    def get(self, offer_id: int) -> RematchOffer | None: ...

    @abstractmethod
    def resolve(
        self,
        offer_id: int,
        target: RematchStatus,
        *,
        now: int,
        require_unexpired: bool = False,
        reason: str | None = None,
        new_match_id: int | None = None,
    ) -> bool: ...

    @abstractmethod
    def mark_expired(self, offer_id: int, now: int) -> bool: ...

    @abstractmethod
    def set_declined_after_accept(self, offer_id: int, reason: str, *, now: int) -> None: ...

    @abstractmethod
    def set_new_match(self, offer_id: int, new_match_id: int) -> None: ...

    @abstractmethod
    def expire_stale(self, now: int) -> list[RematchOffer]: ...


class IMatchEventRepository(ABC):
    @abstractmethod
    def append(
        self, match_id: int, event_type: str, payload: dict | None = None, *, now: int | None = None
    ) -> int: ...

    @abstractmethod
    def get_since(self, match_id: int, since_id: int = 0, limit: int = 100) -> list[dict]: ...
