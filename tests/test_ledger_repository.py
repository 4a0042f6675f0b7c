"""
Tests for LedgerRepository: reservations, adjustments and balance invariants.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from domain.models.ledger import ReservationStatus, TransactionKind
from services.errors import AccountNotFound, AlreadySettled, InsufficientFunds
from tests.conftest import NOW


def test_open_account_is_idempotent(ledger_repo):
    ledger_repo.open_account(1, 100, now=NOW)
    account = ledger_repo.open_account(1, 500, now=NOW)

    assert account.available == 100
    assert account.reserved == 0
    assert len(ledger_repo.get_transactions(1)) == 1


def test_reserve_moves_available_to_reserved(ledger_repo):
    ledger_repo.open_account(1, 100, now=NOW)

    reservation = ledger_repo.reserve(1, 30, reference="match:1", now=NOW)

    account = ledger_repo.get_account(1)
    assert reservation.status == ReservationStatus.HELD
    assert account.available == 70
    assert account.reserved == 30
    assert ledger_repo.get_held_total(1) == 30


def test_reserve_insufficient_funds_changes_nothing(ledger_repo):
    ledger_repo.open_account(1, 20, now=NOW)

    with pytest.raises(InsufficientFunds) as exc_info:
        ledger_repo.reserve(1, 30, now=NOW)

    assert exc_info.value.available == 20
    account = ledger_repo.get_account(1)
    assert (account.available, account.reserved) == (20, 0)


def test_reserve_without_account(ledger_repo):
    with pytest.raises(AccountNotFound):
        ledger_repo.reserve(99, 10, now=NOW)


def test_capture_credits_final_amount(ledger_repo):
    ledger_repo.open_account(1, 100, now=NOW)
    reservation = ledger_repo.reserve(1, 30, now=NOW)

    captured = ledger_repo.capture(reservation.reservation_id, 55, now=NOW)

    account = ledger_repo.get_account(1)
    assert captured.status == ReservationStatus.CAPTURED
    assert captured.captured_amount == 55
    assert account.available == 125
    assert account.reserved == 0


def test_second_capture_leaves_balance_unchanged(ledger_repo):
    ledger_repo.open_account(1, 100, now=NOW)
    reservation = ledger_repo.reserve(1, 30, now=NOW)
    ledger_repo.capture(reservation.reservation_id, 55, now=NOW)
    before = ledger_repo.get_account(1)

    with pytest.raises(AlreadySettled):
        ledger_repo.capture(reservation.reservation_id, 55, now=NOW)

    assert ledger_repo.get_account(1) == before


def test_release_returns_stake_and_is_idempotent(ledger_repo):
    ledger_repo.open_account(1, 100, now=NOW)
    reservation = ledger_repo.reserve(1, 30, now=NOW)

    ledger_repo.release(reservation.reservation_id, now=NOW)
    again = ledger_repo.release(reservation.reservation_id, now=NOW)

    account = ledger_repo.get_account(1)
    assert again.status == ReservationStatus.RELEASED
    assert (account.available, account.reserved) == (100, 0)
    refunds = [t for t in ledger_repo.get_transactions(1) if t.kind == TransactionKind.REFUND]
    assert len(refunds) == 1


def test_release_after_capture_is_rejected(ledger_repo):
    ledger_repo.open_account(1, 100, now=NOW)
    reservation = ledger_repo.reserve(1, 30, now=NOW)
    ledger_repo.capture(reservation.reservation_id, 0, now=NOW)

    with pytest.raises(AlreadySettled):
        ledger_repo.release(reservation.reservation_id, now=NOW)
    assert ledger_repo.get_account(1).available == 70


def test_adjust_applies_once_per_correlation_id(ledger_repo):
    ledger_repo.open_account(1, 100, now=NOW)

    first = ledger_repo.adjust(1, 25, "settlement:7", reason="fix", now=NOW)
    replay = ledger_repo.adjust(1, 25, "settlement:7", reason="fix", now=NOW + 5)

    assert replay == first
    assert ledger_repo.get_balance(1) == 125


def test_adjust_cannot_go_negative(ledger_repo):
    ledger_repo.open_account(1, 10, now=NOW)

    with pytest.raises(InsufficientFunds):
        ledger_repo.adjust(1, -11, "settlement:8", now=NOW)

    assert ledger_repo.get_balance(1) == 10
    assert ledger_repo.get_adjustment("settlement:8") is None


def test_zero_amount_reservation_for_free_matches(ledger_repo):
    ledger_repo.open_account(1, 0, now=NOW)

    reservation = ledger_repo.reserve(1, 0, now=NOW)
    ledger_repo.capture(reservation.reservation_id, 40, now=NOW)

    assert ledger_repo.get_balance(1) == 40


def test_concurrent_reserves_never_overdraw(ledger_repo):
    ledger_repo.open_account(1, 100, now=NOW)
    workers = 8
    barrier = Barrier(workers)

    def attempt():
        barrier.wait()
        try:
            ledger_repo.reserve(1, 30, now=NOW)
            return True
        except InsufficientFunds:
            return False

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda _: attempt(), range(workers)))

    account = ledger_repo.get_account(1)
    assert results.count(True) == 3
    assert account.available == 10
    assert account.reserved == 90
    assert account.available >= 0
