"""
Tests for the wager cog and the Discord DM notifier.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

import commands.wager as wager_module
from commands.wager import WagerCommands, build_outcome, parse_outcomes_json
from domain.models.match import MatchState
from domain.models.outcome import Outcome, OutcomeResult
from domain.models.prize_config import MatchKind
from services.errors import InvalidOutcome
from tests.conftest import NOW, fund
from utils.discord_notifier import DiscordUserNotifier


def _interaction(user_id=100, admin=True):
    interaction = MagicMock()
    interaction.id = 555
    interaction.user.id = user_id
    interaction.response.is_done = MagicMock(return_value=False)
    interaction.response.defer = AsyncMock()
    interaction.followup.send = AsyncMock()
    if not admin:
        interaction.guild = None
        interaction.user.guild_permissions.administrator = False
        interaction.user.guild_permissions.manage_guild = False
    return interaction


@pytest.fixture
def cog(services, monkeypatch):
    monkeypatch.setattr(wager_module, "SWEEP_ENABLED", False)
    return WagerCommands(
        MagicMock(),
        services["ledger_service"],
        services["lifecycle_service"],
        services["settlement_service"],
        services["rematch_service"],
    )


def _last_content(interaction):
    return interaction.followup.send.call_args.kwargs.get("content", "")


class TestParsing:
    def test_outcomes_json(self):
        parsed = parse_outcomes_json('{"100": {"position": 1, "kills": 4}, "101": null}')
        assert parsed == {100: Outcome.ranked(1, kills=4), 101: None}

    def test_outcomes_json_rejects_bad_keys(self):
        with pytest.raises(InvalidOutcome):
            parse_outcomes_json('{"abc": {"result": "win"}}')

    def test_outcomes_json_rejects_garbage(self):
        with pytest.raises(InvalidOutcome):
            parse_outcomes_json("not json")

    def test_build_outcome(self):
        assert build_outcome("win", None, 2) == Outcome(result=OutcomeResult.WIN, kills=2)
        with pytest.raises(InvalidOutcome):
            build_outcome("draw", None, 0)


class TestMatchLocks:
    @pytest.mark.asyncio
    async def test_locks_are_per_match(self, cog):
        lock_1 = cog.get_match_lock(1)
        lock_2 = cog.get_match_lock(2)

        assert lock_1 is cog.get_match_lock(1)
        assert lock_1 is not lock_2

        await lock_1.acquire()
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(cog.get_match_lock(1).acquire(), timeout=0.1)
        await asyncio.wait_for(lock_2.acquire(), timeout=0.1)
        lock_1.release()
        lock_2.release()

    @pytest.mark.asyncio
    async def test_release_keeps_held_lock(self, cog):
        lock = cog.get_match_lock(1)
        await lock.acquire()

        cog.release_match_lock(1)
        assert cog.get_match_lock(1) is lock

        lock.release()
        cog.release_match_lock(1)
        assert cog.get_match_lock(1) is not lock


class TestCommands:
    @pytest.mark.asyncio
    async def test_balance_opens_wallet(self, cog, services):
        interaction = _interaction(user_id=100)

        await cog.balance.callback(cog, interaction)

        interaction.followup.send.assert_awaited_once()
        embed = interaction.followup.send.call_args.kwargs["embed"]
        assert "Wallet" in embed.title
        assert services["ledger_repo"].get_account(100) is not None

    @pytest.mark.asyncio
    async def test_join_and_leave(self, cog, services):
        fund(services["ledger_repo"], [100])
        match = services["lifecycle_service"].create_match(
            1, MatchKind.POSITION_RANKED, 4, 10, {"position_prizes": {"1": 30}}, now=NOW
        )
        interaction = _interaction(user_id=100)

        await cog.joinmatch.callback(cog, interaction, match_id=match.match_id)

        assert _last_content(interaction).startswith("✅ Joined match")
        assert services["ledger_repo"].get_account(100).reserved == 10

        interaction = _interaction(user_id=100)
        await cog.leavematch.callback(cog, interaction, match_id=match.match_id)

        assert services["ledger_repo"].get_balance(100) == 100

    @pytest.mark.asyncio
    async def test_mymatches_lists_joined_matches(self, cog, services):
        fund(services["ledger_repo"], [100])
        match = services["lifecycle_service"].create_match(
            1, MatchKind.POSITION_RANKED, 4, 10, {"position_prizes": {"1": 30}}, title="Cup", now=NOW
        )
        services["lifecycle_service"].join(match.match_id, 100, now=NOW)
        interaction = _interaction(user_id=100)

        await cog.mymatches.callback(cog, interaction)

        embed = interaction.followup.send.call_args.kwargs["embed"]
        assert "Cup" in embed.fields[0].value
        assert len(embed.fields) == 1

    @pytest.mark.asyncio
    async def test_join_reports_engine_error(self, cog, services):
        fund(services["ledger_repo"], [100], balance=0)
        match = services["lifecycle_service"].create_match(
            1, MatchKind.POSITION_RANKED, 4, 10, {"position_prizes": {"1": 30}}, now=NOW
        )
        interaction = _interaction(user_id=100)

        await cog.joinmatch.callback(cog, interaction, match_id=match.match_id)

        assert _last_content(interaction).startswith("❌ Insufficient balance")

    @pytest.mark.asyncio
    async def test_join_by_unknown_code(self, cog):
        interaction = _interaction(user_id=100)

        await cog.joinmatch.callback(cog, interaction, code="000000")

        assert "No open room" in _last_content(interaction)

    @pytest.mark.asyncio
    async def test_settle_requires_admin(self, cog, services):
        interaction = _interaction(user_id=100, admin=False)

        await cog.settlematch.callback(cog, interaction, match_id=1, outcomes="{}")

        assert "Admin only" in _last_content(interaction)

    @pytest.mark.asyncio
    async def test_report_winner_settles_room(self, cog, services):
        lifecycle = services["lifecycle_service"]
        fund(services["ledger_repo"], [100, 101])
        room = lifecycle.create_room(100, 50, now=NOW)
        lifecycle.join_by_code(room.room_code, 101, now=NOW)
        winner = MagicMock()
        winner.id = 101

        interaction = _interaction(user_id=1)
        await cog.reportwinner.callback(cog, interaction, match_id=room.match_id, winner=winner)

        assert lifecycle.get_match(room.match_id).state == MatchState.COMPLETED
        assert services["ledger_repo"].get_balance(101) == 50 + 90
        embed = interaction.followup.send.call_args.kwargs["embed"]
        assert "settled" in embed.title

    @pytest.mark.asyncio
    async def test_sweep_expires_and_cancels(self, cog, services):
        cog.rematch_service = MagicMock()
        cog.lifecycle_service = MagicMock()
        cog.lifecycle_service.cancel_unfilled.return_value = [7]
        cog.get_match_lock(7)

        await cog.sweep_stale.coro(cog)

        cog.rematch_service.expire_stale.assert_called_once()
        assert 7 not in cog._match_locks


class TestDiscordUserNotifier:
    @pytest.mark.asyncio
    async def test_schedules_dm_without_waiting(self):
        user = MagicMock()
        user.send = AsyncMock()
        client = MagicMock()
        client.get_user.return_value = user
        notifier = DiscordUserNotifier(client)

        notifier.notify(100, "Match settled", "You received 90.")
        user.send.assert_not_awaited()
        await asyncio.sleep(0.05)

        user.send.assert_awaited_once()
        assert user.send.call_args.kwargs["embed"].title == "Match settled"

    @pytest.mark.asyncio
    async def test_worker_thread_hands_off_to_loop(self):
        user = MagicMock()
        user.send = AsyncMock()
        client = MagicMock()
        client.get_user.return_value = user
        notifier = DiscordUserNotifier(client, loop=asyncio.get_running_loop())

        await asyncio.to_thread(notifier.notify, 100, "Rematch offer", "Accept within 30s")
        await asyncio.sleep(0.05)

        user.send.assert_awaited_once()

    def test_without_loop_drops_quietly(self):
        notifier = DiscordUserNotifier(MagicMock())
        notifier.notify(100, "title", "message")
