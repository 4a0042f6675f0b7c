"""
Repository layer for data access abstraction.
"""

from repositories.base_repository import BaseRepository
from repositories.interfaces import (
    ILedgerRepository,
    IMatchEventRepository,
    IMatchRepository,
    IRematchRepository,
    ISettlementRepository,
)
from repositories.ledger_repository import LedgerRepository
from repositories.match_event_repository import MatchEventRepository
from repositories.match_repository import MatchRepository
from repositories.rematch_repository import RematchRepository
from repositories.settlement_repository import SettlementRepository

__all__ = [
    "BaseRepository",
    "LedgerRepository",
    "MatchRepository",
    "SettlementRepository",
    "RematchRepository",
    "MatchEventRepository",
    "ILedgerRepository",
    "IMatchRepository",
    "ISettlementRepository",
    "IRematchRepository",
    "IMatchEventRepository",
]
