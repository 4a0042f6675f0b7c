"""
Domain models - pure data structures representing business entities.
"""

from domain.models.ledger import (
    LedgerAccount,
    Reservation,
    ReservationStatus,
    SettlementReason,
    SettlementRecord,
    TransactionKind,
    WalletTransaction,
)
from domain.models.match import Match, MatchState, MatchTerms, Participant, ParticipantStatus
from domain.models.outcome import Outcome, OutcomeResult
from domain.models.prize_config import (
    MatchKind,
    PositionRankedConfig,
    WinLoseConfig,
    WinnerTakeMostConfig,
)
from domain.models.rematch import RematchOffer, RematchStatus

__all__ = [
    "LedgerAccount",
    "Reservation",
    "ReservationStatus",
    "SettlementReason",
    "SettlementRecord",
    "TransactionKind",
    "WalletTransaction",
    "Match",
    "MatchState",
    "MatchTerms",
    "Participant",
    "ParticipantStatus",
    "Outcome",
    "OutcomeResult",
    "MatchKind",
    "PositionRankedConfig",
    "WinLoseConfig",
    "WinnerTakeMostConfig",
    "RematchOffer",
    "RematchStatus",
]
