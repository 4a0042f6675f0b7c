"""
Wallet operations exposed to the rest of the application.

Balances change only through LedgerRepository; this service adds account
onboarding, staff credits and history reads on top of it.
"""

import logging

from config import STARTING_BALANCE
from domain.models.ledger import (
    Adjustment,
    LedgerAccount,
    Reservation,
    TransactionKind,
    WalletTransaction,
)
from repositories.interfaces import ILedgerRepository
from services.errors import AccountNotFound, WagerError
from services.interfaces import ILedgerService

logger = logging.getLogger("wager_bot.services.ledger")


class LedgerService(ILedgerService):
    def __init__(self, ledger_repo: ILedgerRepository, starting_balance: int | None = None):
        self.ledger_repo = ledger_repo
        self.starting_balance = starting_balance if starting_balance is not None else STARTING_BALANCE

    def ensure_account(self, user_id: int) -> LedgerAccount:
        """Open the user's wallet on first contact with the starting balance."""
        return self.ledger_repo.open_account(user_id, self.starting_balance)

    def get_account(self, user_id: int) -> LedgerAccount:
        account = self.ledger_repo.get_account(user_id)
        if account is None:
            raise AccountNotFound(user_id)
        return account

    def get_balance(self, user_id: int) -> int:
        account = self.ledger_repo.get_account(user_id)
        return account.available if account else 0

    def reserve(self, user_id: int, amount: int, reference: str | None = None) -> Reservation:
        return self.ledger_repo.reserve(user_id, amount, reference=reference)

    def capture(self, reservation_id: int, final_amount: int) -> Reservation:
        return self.ledger_repo.capture(reservation_id, final_amount)

    def release(self, reservation_id: int) -> Reservation:
        return self.ledger_repo.release(reservation_id)

    def adjust(
        self, user_id: int, delta: int, correlation_id: str, reason: str | None = None
    ) -> Adjustment:
        return self.ledger_repo.adjust(user_id, delta, correlation_id, reason=reason)

    def credit(
        self,
        user_id: int,
        amount: int,
        correlation_id: str,
        *,
        granted_by: int | None = None,
        reason: str | None = None,
    ) -> Adjustment:
        """
        Staff wallet credit (negative amounts debit). Replays of correlation_id are no-ops.
        """
        if amount == 0:
            raise WagerError("Credit amount cannot be zero.")
        self.ensure_account(user_id)
        description = reason or ("Staff credit" if amount > 0 else "Staff debit")
        if granted_by is not None:
            description = f"{description} (by {granted_by})"
        adjustment = self.ledger_repo.adjust(
            user_id,
            amount,
            correlation_id,
            reason=description,
            kind=TransactionKind.CREDIT,
        )
        logger.info(f"Credit {correlation_id}: {amount} to {user_id} by {granted_by}")
        return adjustment

    def get_history(self, user_id: int, limit: int = 20) -> list[WalletTransaction]:
        return self.ledger_repo.get_transactions(user_id, limit)
