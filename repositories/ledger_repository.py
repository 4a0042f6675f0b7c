"""
Repository for ledger accounts, reservations and balance adjustments.

This is the only code that writes ledger_accounts. Every mutation is a
conditional UPDATE inside a BEGIN IMMEDIATE transaction so concurrent callers
can never read-modify-write a stale balance.
"""

from __future__ import annotations

import logging
import sqlite3

from domain.models.ledger import (
    Adjustment,
    LedgerAccount,
    Reservation,
    ReservationStatus,
    TransactionKind,
    WalletTransaction,
)
from repositories.base_repository import BaseRepository
from repositories.interfaces import ILedgerRepository
from services.errors import AccountNotFound, AlreadySettled, InsufficientFunds, WagerError

logger = logging.getLogger("wager_bot.repositories.ledger")


class LedgerRepository(BaseRepository, ILedgerRepository):
    """
    Handles balance state: accounts, escrow reservations and adjustments.
    """

    # ---------------------------------------------------------------- accounts

    def open_account(
        self,
        user_id: int,
        initial_balance: int = 0,
        *,
        now: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> LedgerAccount:
        """
        Create the user's account if missing. Existing accounts are returned unchanged.
        """
        if initial_balance < 0:
            raise WagerError("Initial balance cannot be negative.")
        ts = self.now(now)
        with self.unit_of_work(conn) as tx:
            cursor = tx.cursor()
            cursor.execute(
                "INSERT OR IGNORE INTO ledger_accounts (user_id, available, reserved) VALUES (?, ?, 0)",
                (user_id, initial_balance),
            )
            if cursor.rowcount == 1:
                logger.info(f"Opened ledger account for {user_id} with balance {initial_balance}")
                if initial_balance > 0:
                    self._record_transaction(
                        cursor,
                        user_id,
                        initial_balance,
                        TransactionKind.CREDIT,
                        reference=f"account:{user_id}",
                        description="Opening balance",
                        now=ts,
                    )
            return self._get_account(cursor, user_id)

    def get_account(
        self, user_id: int, conn: sqlite3.Connection | None = None
    ) -> LedgerAccount | None:
        if conn is not None:
            return self._get_account(conn.cursor(), user_id)
        with self.connection() as own:
            return self._get_account(own.cursor(), user_id)

    def get_balance(self, user_id: int) -> int:
        """Available balance; 0 when the user has no account."""
        account = self.get_account(user_id)
        return account.available if account else 0

    # ------------------------------------------------------------ reservations

    def reserve(
        self,
        user_id: int,
        amount: int,
        *,
        reference: str | None = None,
        now: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Reservation:
        """
        Move amount from available to reserved and return a held reservation.

        Raises:
            InsufficientFunds: available < amount
            AccountNotFound: user has no ledger account
        """
        if amount < 0:
            raise WagerError("Reservation amount cannot be negative.")
        ts = self.now(now)
        with self.unit_of_work(conn) as tx:
            cursor = tx.cursor()
            cursor.execute(
                """
                UPDATE ledger_accounts
                SET available = available - ?, reserved = reserved + ?, updated_at = CURRENT_TIMESTAMP
                WHERE user_id = ? AND available >= ?
                """,
                (amount, amount, user_id, amount),
            )
            if cursor.rowcount == 0:
                account = self._get_account(cursor, user_id)
                if account is None:
                    raise AccountNotFound(user_id)
                raise InsufficientFunds(user_id, account.available, amount)

            cursor.execute(
                """
                INSERT INTO reservations (user_id, amount, status, created_at)
                VALUES (?, ?, 'held', ?)
                """,
                (user_id, amount, ts),
            )
            reservation_id = cursor.lastrowid
            if amount > 0:
                self._record_transaction(
                    cursor,
                    user_id,
                    -amount,
                    TransactionKind.ENTRY_FEE,
                    reference=reference,
                    description="Entry fee held",
                    now=ts,
                )
            return self._get_reservation(cursor, reservation_id)

    def capture(
        self,
        reservation_id: int,
        final_amount: int,
        *,
        reference: str | None = None,
        now: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Reservation:
        """
        Consume a held reservation and credit final_amount to available.

        final_amount is new credit and may exceed the stake.

        Raises:
            AlreadySettled: reservation is not held; no balance changed
        """
        if final_amount < 0:
            raise WagerError("Captured amount cannot be negative.")
        ts = self.now(now)
        with self.unit_of_work(conn) as tx:
            cursor = tx.cursor()
            reservation = self._require_reservation(cursor, reservation_id)
            cursor.execute(
                """
                UPDATE reservations
                SET status = 'captured', captured_amount = ?, resolved_at = ?
                WHERE reservation_id = ? AND status = 'held'
                """,
                (final_amount, ts, reservation_id),
            )
            if cursor.rowcount == 0:
                current = self._get_reservation(cursor, reservation_id)
                raise AlreadySettled(reservation_id, current.status.value)

            cursor.execute(
                """
                UPDATE ledger_accounts
                SET reserved = reserved - ?, available = available + ?, updated_at = CURRENT_TIMESTAMP
                WHERE user_id = ?
                """,
                (reservation.amount, final_amount, reservation.user_id),
            )
            if final_amount > 0:
                self._record_transaction(
                    cursor,
                    reservation.user_id,
                    final_amount,
                    TransactionKind.PRIZE,
                    reference=reference,
                    description="Prize paid",
                    now=ts,
                )
            return self._get_reservation(cursor, reservation_id)

    def release(
        self,
        reservation_id: int,
        *,
        reference: str | None = None,
        now: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Reservation:
        """
        Return a held reservation to available. Already released is a no-op.

        Raises:
            AlreadySettled: reservation was captured
        """
        ts = self.now(now)
        with self.unit_of_work(conn) as tx:
            cursor = tx.cursor()
            reservation = self._require_reservation(cursor, reservation_id)
            cursor.execute(
                """
                UPDATE reservations
                SET status = 'released', resolved_at = ?
                WHERE reservation_id = ? AND status = 'held'
                """,
                (ts, reservation_id),
            )
            if cursor.rowcount == 0:
                current = self._get_reservation(cursor, reservation_id)
                if current.status == ReservationStatus.RELEASED:
                    return current
                raise AlreadySettled(reservation_id, current.status.value)

            cursor.execute(
                """
                UPDATE ledger_accounts
                SET reserved = reserved - ?, available = available + ?, updated_at = CURRENT_TIMESTAMP
                WHERE user_id = ?
                """,
                (reservation.amount, reservation.amount, reservation.user_id),
            )
            if reservation.amount > 0:
                self._record_transaction(
                    cursor,
                    reservation.user_id,
                    reservation.amount,
                    TransactionKind.REFUND,
                    reference=reference,
                    description="Entry fee refunded",
                    now=ts,
                )
            return self._get_reservation(cursor, reservation_id)

    def get_reservation(
        self, reservation_id: int, conn: sqlite3.Connection | None = None
    ) -> Reservation | None:
        if conn is not None:
            return self._get_reservation(conn.cursor(), reservation_id)
        with self.connection() as own:
            return self._get_reservation(own.cursor(), reservation_id)

    def get_held_total(self, user_id: int) -> int:
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT COALESCE(SUM(amount), 0) AS total FROM reservations WHERE user_id = ? AND status = 'held'",
                (user_id,),
            )
            return int(cursor.fetchone()["total"])

    # ------------------------------------------------------------- adjustments

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
    ) -> Adjustment:
        """
        Apply a signed delta to available, at most once per correlation_id.

        A replayed correlation_id returns the original adjustment untouched.

        Raises:
            InsufficientFunds: a debit would take available below zero
            AccountNotFound: user has no ledger account
        """
        ts = self.now(now)
        with self.unit_of_work(conn) as tx:
            cursor = tx.cursor()
            existing = self._get_adjustment(cursor, correlation_id)
            if existing is not None:
                logger.info(f"Adjustment {correlation_id} already applied, skipping replay")
                return existing

            cursor.execute(
                """
                UPDATE ledger_accounts
                SET available = available + ?, updated_at = CURRENT_TIMESTAMP
                WHERE user_id = ? AND available + ? >= 0
                """,
                (delta, user_id, delta),
            )
            if cursor.rowcount == 0:
                account = self._get_account(cursor, user_id)
                if account is None:
                    raise AccountNotFound(user_id)
                raise InsufficientFunds(user_id, account.available, -delta)

            cursor.execute(
                """
                INSERT INTO ledger_adjustments (correlation_id, user_id, delta, reason, applied_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (correlation_id, user_id, delta, reason, ts),
            )
            if delta != 0:
                self._record_transaction(
                    cursor,
                    user_id,
                    delta,
                    kind,
                    reference=correlation_id,
                    description=reason,
                    now=ts,
                )
            return self._get_adjustment(cursor, correlation_id)

    def get_adjustment(self, correlation_id: str) -> Adjustment | None:
        with self.connection() as conn:
            return self._get_adjustment(conn.cursor(), correlation_id)

    # ---------------------------------------------------------------- history

    def get_transactions(self, user_id: int, limit: int = 20) -> list[WalletTransaction]:
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT transaction_id, user_id, amount, kind, reference, description, created_at
                FROM wallet_transactions
                WHERE user_id = ?
                ORDER BY created_at DESC, transaction_id DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            return [
                WalletTransaction(
                    transaction_id=row["transaction_id"],
                    user_id=row["user_id"],
                    amount=row["amount"],
                    kind=TransactionKind(row["kind"]),
                    reference=row["reference"],
                    description=row["description"],
                    created_at=row["created_at"],
                )
                for row in cursor.fetchall()
            ]

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _record_transaction(
        cursor,
        user_id: int,
        amount: int,
        kind: TransactionKind,
        *,
        reference: str | None,
        description: str | None,
        now: int,
    ) -> None:
        cursor.execute(
            """
            INSERT INTO wallet_transactions (user_id, amount, kind, reference, description, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, amount, kind.value, reference, description, now),
        )

    @staticmethod
    def _get_account(cursor, user_id: int) -> LedgerAccount | None:
        cursor.execute(
            "SELECT user_id, available, reserved FROM ledger_accounts WHERE user_id = ?",
            (user_id,),
        )
        row = cursor.fetchone()
        if not row:
            return None
        return LedgerAccount(user_id=row["user_id"], available=row["available"], reserved=row["reserved"])

    @staticmethod
    def _get_reservation(cursor, reservation_id: int) -> Reservation | None:
        cursor.execute(
            """
            SELECT reservation_id, user_id, amount, status, captured_amount, created_at, resolved_at
            FROM reservations
            WHERE reservation_id = ?
            """,
            (reservation_id,),
        )
        row = cursor.fetchone()
        if not row:
            return None
        return Reservation(
            reservation_id=row["reservation_id"],
            user_id=row["user_id"],
            amount=row["amount"],
            status=ReservationStatus(row["status"]),
            created_at=row["created_at"],
            captured_amount=row["captured_amount"],
            resolved_at=row["resolved_at"],
        )

    def _require_reservation(self, cursor, reservation_id: int) -> Reservation:
        reservation = self._get_reservation(cursor, reservation_id)
        if reservation is None:
            raise WagerError(f"Reservation {reservation_id} not found.")
        return reservation

    @staticmethod
    def _get_adjustment(cursor, correlation_id: str) -> Adjustment | None:
        cursor.execute(
            """
            SELECT correlation_id, user_id, delta, reason, applied_at
            FROM ledger_adjustments
            WHERE correlation_id = ?
            """,
            (correlation_id,),
        )
        row = cursor.fetchone()
        if not row:
            return None
        return Adjustment(
            correlation_id=row["correlation_id"],
            user_id=row["user_id"],
            delta=row["delta"],
            reason=row["reason"],
            applied_at=row["applied_at"],
        )
