"""
Service layer interfaces (ABCs).

These abstract base classes define the contracts for the engine's services.
Services inherit from their corresponding interface to keep APIs consistent
and to make mocking in tests straightforward.

The cog and tests depend on these contracts, so a service can be swapped
for a MagicMock(spec=IMatchLifecycleService) without touching callers.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from domain.models.ledger import (
        Adjustment,
        LedgerAccount,
        Reservation,
        SettlementRecord,
        WalletTransaction,
    )
    from domain.models.match import Match, MatchTerms, Participant
    from domain.models.outcome import Outcome
    from domain.models.rematch import RematchOffer


class ILedgerService(ABC):
    """Interface for wallet balance operations."""

    @abstractmethod
    def ensure_account(self, user_id: int) -> "LedgerAccount": ...

    @abstractmethod
    def get_balance(self, user_id: int) -> int: ...

    @abstractmethod
    def reserve(self, user_id: int, amount: int, reference: str | None = None) -> "Reservation": ...

    @abstractmethod
    def capture(self, reservation_id: int, final_amount: int) -> "Reservation": ...

    @abstractmethod
    def release(self, reservation_id: int) -> "Reservation": ...

    @abstractmethod
    def adjust(
        self, user_id: int, delta: int, correlation_id: str, reason: str | None = None
    ) -> "Adjustment": ...

    @abstractmethod
    def get_history(self, user_id: int, limit: int = 20) -> list["WalletTransaction"]: ...


class IMatchLifecycleService(ABC):
    """Interface for the match/room state machine."""

    @abstractmethod
    def create_match(
        self,
        created_by: int,
        kind: Any,
        capacity: int,
        entry_fee: int,
        prize_config: Any,
        **kwargs: Any,
    ) -> "Match": ...

    @abstractmethod
    def join(self, match_id: int, user_id: int, room_code: str | None = None, **kwargs: Any) -> "Participant":
        """Reserve the entry fee and take a slot."""
        ...

    @abstractmethod
    def start(self, match_id: int, **kwargs: Any) -> "Match": ...

    @abstractmethod
    def cancel(self, match_id: int, reason: str | None = None, **kwargs: Any) -> list["SettlementRecord"]:
        """Refund everyone and mark the match cancelled (all or nothing)."""
        ...

    @abstractmethod
    def complete(
        self, match_id: int, outcomes: Mapping[int, "Outcome | None"], **kwargs: Any
    ) -> list["SettlementRecord"]: ...

    @abstractmethod
    def clone_terms(self, match_id: int) -> "MatchTerms": ...

    @abstractmethod
    def get_match(self, match_id: int) -> "Match": ...


class ISettlementService(ABC):
    """Interface for payouts and corrections."""

    @abstractmethod
    def settle(
        self, match_id: int, outcomes: Mapping[int, "Outcome | None"], **kwargs: Any
    ) -> list["SettlementRecord"]: ...

    @abstractmethod
    def correct(
        self,
        match_id: int,
        user_id: int,
        new_outcome: "Outcome",
        corrected_by: int | None = None,
        **kwargs: Any,
    ) -> "SettlementRecord":
        """Apply only the prize difference caused by a new outcome."""
        ...

    @abstractmethod
    def get_settlements(self, match_id: int) -> list["SettlementRecord"]: ...


class IRematchService(ABC):
    """Interface for the two-party rematch offer protocol."""

    @abstractmethod
    def request(
        self,
        source_match_id: int,
        requester_id: int,
        responder_id: int,
        ttl_seconds: int | None = None,
        **kwargs: Any,
    ) -> "RematchOffer": ...

    @abstractmethod
    def accept(self, offer_id: int, user_id: int, **kwargs: Any) -> "Match": ...

    @abstractmethod
    def decline(self, offer_id: int, user_id: int, reason: str | None = None, **kwargs: Any) -> "RematchOffer": ...

    @abstractmethod
    def cancel(self, offer_id: int, user_id: int, **kwargs: Any) -> "RematchOffer": ...

    @abstractmethod
    def get_offer(self, offer_id: int, **kwargs: Any) -> "RematchOffer": ...

    @abstractmethod
    def expire_stale(self, now: int | None = None) -> list["RematchOffer"]: ...
