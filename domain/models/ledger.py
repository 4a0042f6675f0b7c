"""
Ledger domain models: accounts, reservations, settlement records and the
wallet transaction history.
"""

from dataclasses import dataclass
from enum import Enum


class ReservationStatus(str, Enum):
    HELD = "held"
    CAPTURED = "captured"
    RELEASED = "released"


class SettlementReason(str, Enum):
    INITIAL = "initial"
    CORRECTION = "correction"
    REFUND = "refund"


class TransactionKind(str, Enum):
    ENTRY_FEE = "entry_fee"
    PRIZE = "prize"
    REFUND = "refund"
    CORRECTION = "correction"
    CREDIT = "credit"


@dataclass
class LedgerAccount:
    user_id: int
    available: int
    reserved: int

    @property
    def total(self) -> int:
        return self.available + self.reserved


@dataclass
class Reservation:
    reservation_id: int
    user_id: int
    amount: int
    status: ReservationStatus
    created_at: int
    captured_amount: int | None = None
    resolved_at: int | None = None

    @property
    def is_held(self) -> bool:
        return self.status == ReservationStatus.HELD


@dataclass
class SettlementRecord:
    """
    One balance effect of a settlement.

    settlement_id is None for no-op corrections that were not persisted.
    """

    settlement_id: int | None
    match_id: int
    participant_id: int
    user_id: int
    amount: int
    reason: SettlementReason
    applied_at: int
    note: str | None = None

    @property
    def is_noop(self) -> bool:
        return self.settlement_id is None and self.amount == 0


@dataclass
class Adjustment:
    correlation_id: str
    user_id: int
    delta: int
    reason: str | None
    applied_at: int


@dataclass
class WalletTransaction:
    transaction_id: int
    user_id: int
    amount: int
    kind: TransactionKind
    reference: str | None
    description: str | None
    created_at: int
