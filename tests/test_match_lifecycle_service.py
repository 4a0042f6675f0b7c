"""
Tests for the match/room lifecycle: admission, transitions and cancellation.
"""

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from threading import Barrier
from unittest import mock

import pytest

from domain.models.match import MatchState, ParticipantStatus
from domain.models.outcome import Outcome
from domain.models.prize_config import MatchKind, WinLoseConfig
from services.errors import (
    AlreadyJoined,
    Full,
    InsufficientFunds,
    InvalidCode,
    InvalidConfig,
    InvalidState,
    MatchNotFound,
    NotParticipant,
    PartialCancelFailure,
    PartialSettlementFailure,
)
from services.notification_service import EVENT_PARTICIPANT_JOINED, EVENT_STATE_CHANGED
from tests.conftest import NOW, fund


def _ranked_match(lifecycle, capacity=4, entry_fee=10, **kwargs):
    return lifecycle.create_match(
        1,
        MatchKind.POSITION_RANKED,
        capacity,
        entry_fee,
        {"position_prizes": {"1": 25}, "per_kill": 1},
        now=NOW,
        **kwargs,
    )


class TestCreate:
    def test_create_open_match(self, services):
        match = _ranked_match(services["lifecycle_service"])

        assert match.state == MatchState.OPEN
        assert match.filled_count == 0
        assert match.capacity == 4

    def test_capacity_bounds(self, services):
        with pytest.raises(InvalidConfig):
            _ranked_match(services["lifecycle_service"], capacity=1)

    def test_negative_entry_fee_rejected(self, services):
        with pytest.raises(InvalidConfig):
            _ranked_match(services["lifecycle_service"], entry_fee=-1)

    def test_prize_config_must_match_kind(self, services):
        with pytest.raises(InvalidConfig):
            services["lifecycle_service"].create_match(
                1, MatchKind.POSITION_RANKED, 2, 10, WinLoseConfig(winner_prize=10), now=NOW
            )


class TestJoin:
    def test_join_reserves_entry_fee(self, services):
        lifecycle = services["lifecycle_service"]
        ledger_repo = services["ledger_repo"]
        fund(ledger_repo, [100])
        match = _ranked_match(lifecycle)

        participant = lifecycle.join(match.match_id, 100, now=NOW)

        account = ledger_repo.get_account(100)
        assert participant.slot_index == 0
        assert (account.available, account.reserved) == (90, 10)
        assert lifecycle.get_match(match.match_id).filled_count == 1

    def test_duplicate_join_rejected(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100])
        match = _ranked_match(lifecycle)
        lifecycle.join(match.match_id, 100, now=NOW)

        with pytest.raises(AlreadyJoined):
            lifecycle.join(match.match_id, 100, now=NOW)
        assert services["ledger_repo"].get_account(100).reserved == 10

    def test_insufficient_funds_changes_nothing(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100], balance=5)
        match = _ranked_match(lifecycle)

        with pytest.raises(InsufficientFunds):
            lifecycle.join(match.match_id, 100, now=NOW)

        assert lifecycle.get_match(match.match_id).filled_count == 0
        assert lifecycle.get_participants(match.match_id) == []

    def test_fills_at_capacity(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], range(100, 104))
        match = _ranked_match(lifecycle)

        for user_id in range(100, 104):
            lifecycle.join(match.match_id, user_id, now=NOW)

        assert lifecycle.get_match(match.match_id).state == MatchState.FILLED
        fund(services["ledger_repo"], [200])
        with pytest.raises(Full):
            lifecycle.join(match.match_id, 200, now=NOW)

    def test_two_party_match_goes_live_on_fill(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100, 101])
        match = _ranked_match(lifecycle, capacity=2)

        lifecycle.join(match.match_id, 100, now=NOW)
        lifecycle.join(match.match_id, 101, now=NOW)

        assert lifecycle.get_match(match.match_id).state == MatchState.ACTIVE
        states = [
            e["payload"]["to"]
            for e in services["notifications"].get_events(match.match_id)
            if e["event_type"] == EVENT_STATE_CHANGED
        ]
        assert states == ["open", "filled", "active"]

    def test_join_unknown_match(self, services):
        fund(services["ledger_repo"], [100])
        with pytest.raises(MatchNotFound):
            services["lifecycle_service"].join(999, 100, now=NOW)

    def test_concurrent_joins_never_exceed_capacity(self, services):
        lifecycle = services["lifecycle_service"]
        capacity = 4
        contenders = list(range(100, 110))
        fund(services["ledger_repo"], contenders)
        match = _ranked_match(lifecycle, capacity=capacity)
        barrier = Barrier(len(contenders))

        def attempt(user_id):
            barrier.wait()
            try:
                lifecycle.join(match.match_id, user_id, now=NOW)
                return "joined"
            except Full:
                return "full"

        with ThreadPoolExecutor(max_workers=len(contenders)) as pool:
            results = list(pool.map(attempt, contenders))

        stored = lifecycle.get_match(match.match_id)
        assert results.count("joined") == capacity
        assert results.count("full") == len(contenders) - capacity
        assert stored.filled_count == capacity
        assert len(lifecycle.get_participants(match.match_id)) == capacity
        slots = sorted(p.slot_index for p in lifecycle.get_participants(match.match_id))
        assert slots == list(range(capacity))
        # Losers got their money back untouched
        held = sum(services["ledger_repo"].get_account(u).reserved for u in contenders)
        assert held == capacity * 10


class TestRooms:
    def test_room_requires_code_for_guest(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100, 101])

        room = lifecycle.create_room(100, 20, now=NOW)

        assert room.room_code is not None
        assert room.filled_count == 1
        with pytest.raises(InvalidCode):
            lifecycle.join(room.match_id, 101, room_code="nope", now=NOW)
        lifecycle.join_by_code(room.room_code, 101, now=NOW)
        assert lifecycle.get_match(room.match_id).state == MatchState.ACTIVE

    def test_empty_room_still_requires_code(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100, 101])
        room = lifecycle.create_room(100, 20, now=NOW)
        lifecycle.leave(room.match_id, 100, now=NOW)
        assert lifecycle.get_match(room.match_id).filled_count == 0

        with pytest.raises(InvalidCode):
            lifecycle.join(room.match_id, 101, now=NOW)
        assert services["ledger_repo"].get_account(101).reserved == 0

        # The host can come back without the code
        lifecycle.join(room.match_id, 100, now=NOW)
        lifecycle.join_by_code(room.room_code, 101, now=NOW)
        assert lifecycle.get_match(room.match_id).state == MatchState.ACTIVE

    def test_default_room_prize_keeps_platform_fee(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100])

        room = lifecycle.create_room(100, 50, now=NOW)

        assert room.kind == MatchKind.WIN_LOSE
        assert room.prize_config.winner_prize == 90

    def test_room_is_cancelled_when_host_cannot_pay(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100], balance=5)

        with pytest.raises(InsufficientFunds):
            lifecycle.create_room(100, 50, now=NOW)

        assert lifecycle.list_open_matches() == []

    def test_lookup_by_code(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100])
        room = lifecycle.create_room(100, 0, now=NOW)

        assert lifecycle.get_match_by_code(room.room_code).match_id == room.match_id


class TestLeave:
    def test_leave_refunds_and_frees_slot(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100, 101])
        match = _ranked_match(lifecycle)
        lifecycle.join(match.match_id, 100, now=NOW)

        updated = lifecycle.leave(match.match_id, 100, now=NOW)

        assert updated.filled_count == 0
        assert services["ledger_repo"].get_balance(100) == 100
        assert lifecycle.join(match.match_id, 101, now=NOW).slot_index == 0

    def test_leave_requires_membership(self, services):
        lifecycle = services["lifecycle_service"]
        match = _ranked_match(lifecycle)
        with pytest.raises(NotParticipant):
            lifecycle.leave(match.match_id, 100, now=NOW)

    def test_leave_after_fill_rejected(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100, 101])
        match = _ranked_match(lifecycle, capacity=2)
        lifecycle.join(match.match_id, 100, now=NOW)
        lifecycle.join(match.match_id, 101, now=NOW)

        with pytest.raises(InvalidState):
            lifecycle.leave(match.match_id, 100, now=NOW)


class TestStart:
    def test_start_filled_match(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], range(100, 104))
        match = _ranked_match(lifecycle)
        for user_id in range(100, 104):
            lifecycle.join(match.match_id, user_id, now=NOW)

        assert lifecycle.start(match.match_id, now=NOW).state == MatchState.ACTIVE

    def test_start_open_match_rejected(self, services):
        lifecycle = services["lifecycle_service"]
        match = _ranked_match(lifecycle)
        with pytest.raises(InvalidState):
            lifecycle.start(match.match_id, now=NOW)


class TestCancel:
    def test_refunds_equal_reserved(self, services):
        lifecycle = services["lifecycle_service"]
        ledger_repo = services["ledger_repo"]
        players = [100, 101, 102]
        fund(ledger_repo, players)
        match = _ranked_match(lifecycle)
        for user_id in players:
            lifecycle.join(match.match_id, user_id, now=NOW)

        records = lifecycle.cancel(match.match_id, reason="test", now=NOW)

        assert sum(r.amount for r in records) == 30
        assert lifecycle.get_match(match.match_id).state == MatchState.CANCELLED
        for user_id in players:
            account = ledger_repo.get_account(user_id)
            assert (account.available, account.reserved) == (100, 0)
        statuses = {p.status for p in lifecycle.get_participants(match.match_id)}
        assert statuses == {ParticipantStatus.REFUNDED}

    def test_cancel_twice_is_noop(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100])
        match = _ranked_match(lifecycle)
        lifecycle.join(match.match_id, 100, now=NOW)
        lifecycle.cancel(match.match_id, now=NOW)

        assert lifecycle.cancel(match.match_id, now=NOW) == []
        assert services["ledger_repo"].get_balance(100) == 100

    def test_cancel_completed_rejected(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100, 101])
        match = _ranked_match(lifecycle, capacity=2)
        lifecycle.join(match.match_id, 100, now=NOW)
        lifecycle.join(match.match_id, 101, now=NOW)
        lifecycle.complete(match.match_id, {100: Outcome.ranked(1), 101: Outcome.ranked(2)}, now=NOW)

        with pytest.raises(InvalidState):
            lifecycle.cancel(match.match_id, now=NOW)

    def test_partial_failure_keeps_state_and_retry_finishes(self, services):
        lifecycle = services["lifecycle_service"]
        ledger_repo = services["ledger_repo"]
        players = [100, 101, 102]
        fund(ledger_repo, players)
        match = _ranked_match(lifecycle)
        for user_id in players:
            lifecycle.join(match.match_id, user_id, now=NOW)
        stuck = lifecycle.get_participants(match.match_id)[1]
        real_release = ledger_repo.release

        def flaky_release(reservation_id, **kwargs):
            if reservation_id == stuck.reservation_id:
                raise sqlite3.OperationalError("database is locked")
            return real_release(reservation_id, **kwargs)

        with mock.patch.object(ledger_repo, "release", side_effect=flaky_release):
            with pytest.raises(PartialCancelFailure) as exc_info:
                lifecycle.cancel(match.match_id, now=NOW)

        assert list(exc_info.value.failed) == [stuck.participant_id]
        assert lifecycle.get_match(match.match_id).state == MatchState.OPEN
        assert ledger_repo.get_account(stuck.user_id).reserved == 10

        records = lifecycle.cancel(match.match_id, now=NOW)

        assert sum(r.amount for r in records) == 30
        for user_id in players:
            assert ledger_repo.get_balance(user_id) == 100

    def test_settle_during_cancel_is_refused(self, services):
        lifecycle = services["lifecycle_service"]
        ledger_repo = services["ledger_repo"]
        fund(ledger_repo, [100, 101])
        match = _ranked_match(lifecycle, capacity=2)
        lifecycle.join(match.match_id, 100, now=NOW)
        lifecycle.join(match.match_id, 101, now=NOW)
        assert lifecycle.get_match(match.match_id).state == MatchState.ACTIVE
        outcomes = {100: Outcome.ranked(1), 101: Outcome.ranked(2)}
        real_release = ledger_repo.release
        refused = []

        def release_after_settle(reservation_id, **kwargs):
            # A settle lands between the cancel's first check and its first refund
            if not refused:
                with pytest.raises(InvalidState) as exc_info:
                    services["settlement_service"].settle(match.match_id, outcomes, now=NOW)
                refused.append(exc_info.value)
            return real_release(reservation_id, **kwargs)

        with mock.patch.object(ledger_repo, "release", side_effect=release_after_settle):
            records = lifecycle.cancel(match.match_id, now=NOW)

        assert len(refused) == 1
        assert sum(r.amount for r in records) == 20
        assert lifecycle.get_match(match.match_id).state == MatchState.CANCELLED
        assert services["settlement_repo"].get_for_match(match.match_id) == records
        for user_id in (100, 101):
            assert ledger_repo.get_balance(user_id) == 100
            assert ledger_repo.get_account(user_id).reserved == 0

    def test_partial_cancel_keeps_settlement_out(self, services):
        lifecycle = services["lifecycle_service"]
        ledger_repo = services["ledger_repo"]
        fund(ledger_repo, [100, 101])
        match = _ranked_match(lifecycle, capacity=2)
        lifecycle.join(match.match_id, 100, now=NOW)
        lifecycle.join(match.match_id, 101, now=NOW)
        stuck = lifecycle.get_participants(match.match_id)[1]
        real_release = ledger_repo.release

        def flaky_release(reservation_id, **kwargs):
            if reservation_id == stuck.reservation_id:
                raise sqlite3.OperationalError("database is locked")
            return real_release(reservation_id, **kwargs)

        with mock.patch.object(ledger_repo, "release", side_effect=flaky_release):
            with pytest.raises(PartialCancelFailure):
                lifecycle.cancel(match.match_id, now=NOW)

        assert lifecycle.get_match(match.match_id).state == MatchState.ACTIVE
        with pytest.raises(InvalidState):
            services["settlement_service"].settle(
                match.match_id, {100: Outcome.ranked(1), 101: Outcome.ranked(2)}, now=NOW
            )
        assert ledger_repo.get_account(stuck.user_id).reserved == 10

        lifecycle.cancel(match.match_id, now=NOW)

        assert lifecycle.get_match(match.match_id).state == MatchState.CANCELLED
        assert ledger_repo.get_balance(100) == 100
        assert ledger_repo.get_balance(101) == 100

    def test_cancel_refused_once_payouts_started(self, services):
        lifecycle = services["lifecycle_service"]
        settlement_repo = services["settlement_repo"]
        fund(services["ledger_repo"], [100, 101])
        match = _ranked_match(lifecycle, capacity=2)
        lifecycle.join(match.match_id, 100, now=NOW)
        lifecycle.join(match.match_id, 101, now=NOW)
        stuck = lifecycle.get_participants(match.match_id)[1]
        outcomes = {100: Outcome.ranked(1), 101: Outcome.ranked(2)}
        real_settle = settlement_repo.settle_participant_atomic

        def flaky(participant_id, amount, **kwargs):
            if participant_id == stuck.participant_id:
                raise sqlite3.OperationalError("database is locked")
            return real_settle(participant_id, amount, **kwargs)

        with mock.patch.object(settlement_repo, "settle_participant_atomic", side_effect=flaky):
            with pytest.raises(PartialSettlementFailure):
                lifecycle.complete(match.match_id, outcomes, now=NOW)

        with pytest.raises(InvalidState):
            lifecycle.cancel(match.match_id, now=NOW)

        lifecycle.complete(match.match_id, outcomes, now=NOW)

        assert lifecycle.get_match(match.match_id).state == MatchState.COMPLETED
        assert services["ledger_repo"].get_balance(100) == 90 + 25

    def test_unfilled_scheduled_match_is_cancelled(self, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100])
        match = _ranked_match(lifecycle, starts_at=NOW + 60)
        lifecycle.join(match.match_id, 100, now=NOW)

        assert lifecycle.cancel_unfilled(now=NOW + 30) == []
        assert lifecycle.cancel_unfilled(now=NOW + 60) == [match.match_id]
        assert services["ledger_repo"].get_balance(100) == 100


def test_join_publishes_event(services):
    lifecycle = services["lifecycle_service"]
    fund(services["ledger_repo"], [100])
    match = _ranked_match(lifecycle)
    lifecycle.join(match.match_id, 100, now=NOW)

    events = services["notifications"].get_events(match.match_id)
    joined = [e for e in events if e["event_type"] == EVENT_PARTICIPANT_JOINED]
    assert joined[0]["payload"]["user_id"] == 100
