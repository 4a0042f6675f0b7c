"""
Wager commands: wallets, matches, private rooms, settlement and rematches.
"""

import asyncio
import json
import logging
import time

import discord
from discord import app_commands
from discord.ext import commands, tasks

from config import SWEEP_ENABLED, SWEEP_INTERVAL_SECONDS
from domain.models.match import MatchState
from domain.models.outcome import Outcome, OutcomeResult
from domain.models.prize_config import MatchKind
from services.errors import InvalidOutcome, PartialCancelFailure, PartialSettlementFailure, WagerError
from services.permissions import has_admin_permission
from utils.formatting import (
    KIND_NAMES,
    describe_prizes,
    format_amount,
    format_match_line,
    format_outcome,
    format_user_mentions,
)
from utils.interaction_safety import safe_defer, safe_followup
from utils.room_codes import normalize_room_code

logger = logging.getLogger("wager_bot.commands.wager")

ADMIN_ONLY_MESSAGE = "❌ Admin only! You need Administrator or Manage Server permission."


def parse_outcomes_json(raw: str) -> dict[int, Outcome | None]:
    """
    Parse `{"<user_id>": {"result": "win", "position": 1, "kills": 2}, ...}`.

    A null value means the participant's outcome is explicitly unset.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidOutcome(f"Outcomes are not valid JSON: {e.msg}") from None
    if not isinstance(data, dict):
        raise InvalidOutcome("Outcomes must be a JSON object keyed by user id.")

    outcomes: dict[int, Outcome | None] = {}
    for key, value in data.items():
        try:
            user_id = int(key)
        except ValueError:
            raise InvalidOutcome(f"Not a user id: {key!r}") from None
        if value is not None and not isinstance(value, dict):
            raise InvalidOutcome(f"Outcome for {user_id} must be an object or null.")
        outcomes[user_id] = Outcome.from_dict(value) if value is not None else None
    return outcomes


def build_outcome(result: str | None, position: int | None, kills: int) -> Outcome:
    try:
        tag = OutcomeResult(result) if result else None
    except ValueError:
        raise InvalidOutcome(f"Unknown result {result!r}. Use win, lose or tie.") from None
    return Outcome(result=tag, position=position, kills=kills)


class WagerCommands(commands.Cog):
    """Slash commands over the wager engine."""

    def __init__(
        self,
        bot: commands.Bot,
        ledger_service,
        lifecycle_service,
        settlement_service,
        rematch_service,
    ):
        self.bot = bot
        self.ledger_service = ledger_service
        self.lifecycle_service = lifecycle_service
        self.settlement_service = settlement_service
        self.rematch_service = rematch_service
        # Serializes state-changing commands per match inside this process
        self._match_locks: dict[int, asyncio.Lock] = {}

        if SWEEP_ENABLED:
            self.sweep_stale.change_interval(seconds=max(1, SWEEP_INTERVAL_SECONDS))
            self.sweep_stale.start()

    def cog_unload(self):
        self.sweep_stale.cancel()

    def get_match_lock(self, match_id: int) -> asyncio.Lock:
        lock = self._match_locks.get(match_id)
        if lock is None:
            lock = asyncio.Lock()
            self._match_locks[match_id] = lock
        return lock

    def release_match_lock(self, match_id: int) -> None:
        """Forget the lock of a finished match once nobody holds it."""
        lock = self._match_locks.get(match_id)
        if lock is not None and not lock.locked():
            del self._match_locks[match_id]

    async def _run_locked(self, match_id: int, fn, *args, **kwargs):
        async with self.get_match_lock(match_id):
            return await asyncio.to_thread(fn, *args, **kwargs)

    async def _reply_error(self, interaction: discord.Interaction, error: WagerError) -> None:
        await safe_followup(interaction, content=f"❌ {error}", ephemeral=True)

    async def _reply_unexpected(self, interaction: discord.Interaction, command: str, error: Exception) -> None:
        logger.error(f"Error in /{command} for user {interaction.user.id}: {error}", exc_info=True)
        await safe_followup(
            interaction, content="❌ Something went wrong. Please try again later.", ephemeral=True
        )

    async def _require_admin(self, interaction: discord.Interaction) -> bool:
        if has_admin_permission(interaction):
            return True
        await safe_followup(interaction, content=ADMIN_ONLY_MESSAGE, ephemeral=True)
        return False

    # =========================================================================
    # Wallet
    # =========================================================================

    @app_commands.command(name="balance", description="Show your wallet balance")
    @app_commands.describe(user="Player to inspect (admins only, defaults to you)")
    async def balance(self, interaction: discord.Interaction, user: discord.Member | None = None):
        if not await safe_defer(interaction, ephemeral=True):
            return
        target = user or interaction.user
        if target.id != interaction.user.id and not await self._require_admin(interaction):
            return
        try:
            account = await asyncio.to_thread(self.ledger_service.ensure_account, target.id)
        except Exception as e:
            await self._reply_unexpected(interaction, "balance", e)
            return

        embed = discord.Embed(title=f"💰 Wallet of {target.display_name}", color=discord.Color.gold())
        embed.add_field(name="Available", value=format_amount(account.available), inline=True)
        embed.add_field(name="Held in matches", value=format_amount(account.reserved), inline=True)
        embed.add_field(name="Total", value=format_amount(account.total), inline=True)
        await safe_followup(interaction, embed=embed, ephemeral=True)

    @app_commands.command(name="history", description="Show your recent wallet transactions")
    @app_commands.describe(limit="How many transactions to show (max 25)")
    async def history(self, interaction: discord.Interaction, limit: app_commands.Range[int, 1, 25] = 10):
        if not await safe_defer(interaction, ephemeral=True):
            return
        try:
            entries = await asyncio.to_thread(self.ledger_service.get_history, interaction.user.id, limit)
        except Exception as e:
            await self._reply_unexpected(interaction, "history", e)
            return

        if not entries:
            await safe_followup(interaction, content="No transactions yet.", ephemeral=True)
            return
        lines = []
        for entry in entries:
            ref = f" ({entry.reference})" if entry.reference else ""
            lines.append(
                f"<t:{entry.created_at}:R> `{entry.kind.value}` "
                f"**{format_amount(entry.amount, signed=True)}**{ref}"
            )
        embed = discord.Embed(title="📜 Wallet history", description="\n".join(lines), color=discord.Color.blue())
        await safe_followup(interaction, embed=embed, ephemeral=True)

    @app_commands.command(name="credit", description="Credit or debit a player's wallet (Admin only)")
    @app_commands.describe(
        user="Player to credit",
        amount="Amount in minor units (negative to debit)",
        reason="Shown in the player's history",
    )
    async def credit(
        self,
        interaction: discord.Interaction,
        user: discord.Member,
        amount: int,
        reason: str | None = None,
    ):
        if not await safe_defer(interaction, ephemeral=True):
            return
        if not await self._require_admin(interaction):
            return
        correlation_id = f"credit:{interaction.id}"
        try:
            await asyncio.to_thread(
                self.ledger_service.credit,
                user.id,
                amount,
                correlation_id,
                granted_by=interaction.user.id,
                reason=reason,
            )
            balance = await asyncio.to_thread(self.ledger_service.get_balance, user.id)
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "credit", e)
            return
        await safe_followup(
            interaction,
            content=(
                f"✅ {format_amount(amount, signed=True)} for {user.mention}. "
                f"Available: {format_amount(balance)}"
            ),
            ephemeral=True,
        )

    # =========================================================================
    # Matches
    # =========================================================================

    @app_commands.command(name="matches", description="List open and live matches")
    async def matches(self, interaction: discord.Interaction):
        if not await safe_defer(interaction, ephemeral=True):
            return
        try:
            open_matches = await asyncio.to_thread(self.lifecycle_service.list_open_matches)
            live_matches = await asyncio.to_thread(self.lifecycle_service.list_live_matches)
        except Exception as e:
            await self._reply_unexpected(interaction, "matches", e)
            return

        embed = discord.Embed(title="🎯 Matches", color=discord.Color.green())
        public_open = [m for m in open_matches if not m.room_code]
        embed.add_field(
            name="Open",
            value="\n".join(format_match_line(m) for m in public_open[:10]) or "No open matches.",
            inline=False,
        )
        embed.add_field(
            name="Live",
            value="\n".join(format_match_line(m) for m in live_matches[:10]) or "Nothing running.",
            inline=False,
        )
        await safe_followup(interaction, embed=embed, ephemeral=True)

    @app_commands.command(name="matchinfo", description="Show a match with its players and payouts")
    @app_commands.describe(match_id="Match number")
    async def matchinfo(self, interaction: discord.Interaction, match_id: int):
        if not await safe_defer(interaction, ephemeral=True):
            return
        try:
            match = await asyncio.to_thread(self.lifecycle_service.get_match, match_id)
            participants = await asyncio.to_thread(self.lifecycle_service.get_participants, match_id)
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "matchinfo", e)
            return

        embed = discord.Embed(
            title=f"Match #{match.match_id}" + (f" - {match.title}" if match.title else ""),
            description=format_match_line(match),
            color=discord.Color.blurple(),
        )
        embed.add_field(name="Prizes", value=describe_prizes(match), inline=False)
        if participants:
            lines = []
            for p in participants:
                paid = f" - paid {format_amount(p.settled_amount)}" if p.settled_amount is not None else ""
                lines.append(f"<@{p.user_id}> - {format_outcome(p.outcome)}{paid}")
            embed.add_field(name="Players", value="\n".join(lines), inline=False)
        await safe_followup(interaction, embed=embed, ephemeral=True)

    @app_commands.command(name="mymatches", description="Your recent matches and rematch offers waiting for you")
    async def mymatches(self, interaction: discord.Interaction):
        if not await safe_defer(interaction, ephemeral=True):
            return
        user_id = interaction.user.id
        try:
            recent = await asyncio.to_thread(self.lifecycle_service.get_user_matches, user_id, 10)
            offers = await asyncio.to_thread(self.rematch_service.get_pending_for_user, user_id)
        except Exception as e:
            await self._reply_unexpected(interaction, "mymatches", e)
            return

        embed = discord.Embed(title="🎯 Your matches", color=discord.Color.blurple())
        embed.add_field(
            name="Recent",
            value="\n".join(format_match_line(m) for m in recent) or "You have not joined any match yet.",
            inline=False,
        )
        if offers:
            embed.add_field(
                name="Rematch offers",
                value="\n".join(
                    f"#{o.offer_id} from <@{o.requester_id}> (match #{o.source_match_id}), "
                    f"expires <t:{o.expires_at}:R>"
                    for o in offers
                ),
                inline=False,
            )
        await safe_followup(interaction, embed=embed, ephemeral=True)

    @app_commands.command(name="creatematch", description="Create a public match (Admin only)")
    @app_commands.describe(
        kind="Prize rule",
        capacity="Number of player slots",
        entry_fee="Entry fee in minor units (0 for free)",
        prizes='Prize config JSON, e.g. {"position_prizes": {"1": 100}, "per_kill": 5}',
        title="Optional display title",
        starts_in_minutes="Cancel with refunds if not full by then",
    )
    @app_commands.choices(
        kind=[app_commands.Choice(name=KIND_NAMES[k], value=k.value) for k in MatchKind]
    )
    async def creatematch(
        self,
        interaction: discord.Interaction,
        kind: app_commands.Choice[str],
        capacity: app_commands.Range[int, 2, 128],
        entry_fee: app_commands.Range[int, 0],
        prizes: str = "{}",
        title: str | None = None,
        starts_in_minutes: app_commands.Range[int, 1] | None = None,
    ):
        if not await safe_defer(interaction, ephemeral=True):
            return
        if not await self._require_admin(interaction):
            return
        try:
            prize_data = json.loads(prizes)
        except json.JSONDecodeError as e:
            await safe_followup(interaction, content=f"❌ Prize config is not valid JSON: {e.msg}", ephemeral=True)
            return
        if not isinstance(prize_data, dict):
            await safe_followup(interaction, content="❌ Prize config must be a JSON object.", ephemeral=True)
            return

        starts_at = int(time.time()) + starts_in_minutes * 60 if starts_in_minutes else None
        try:
            match = await asyncio.to_thread(
                self.lifecycle_service.create_match,
                interaction.user.id,
                kind.value,
                capacity,
                entry_fee,
                prize_data,
                title=title,
                starts_at=starts_at,
            )
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "creatematch", e)
            return

        logger.info(f"Admin {interaction.user.id} created match {match.match_id}")
        await safe_followup(
            interaction,
            content=f"✅ Created match #{match.match_id}\n{format_match_line(match)}\n{describe_prizes(match)}",
            ephemeral=False,
        )

    @app_commands.command(name="createroom", description="Open a private 1v1 room with a join code")
    @app_commands.describe(entry_fee="Entry fee each player puts in (minor units)", title="Optional display title")
    async def createroom(
        self,
        interaction: discord.Interaction,
        entry_fee: app_commands.Range[int, 0],
        title: str | None = None,
    ):
        if not await safe_defer(interaction, ephemeral=True):
            return
        try:
            await asyncio.to_thread(self.ledger_service.ensure_account, interaction.user.id)
            match = await asyncio.to_thread(
                self.lifecycle_service.create_room, interaction.user.id, entry_fee, title=title
            )
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "createroom", e)
            return

        await safe_followup(
            interaction,
            content=(
                f"✅ Room #{match.match_id} is ready. Share code **{match.room_code}** with your opponent.\n"
                f"{describe_prizes(match)}"
            ),
            ephemeral=True,
        )

    @app_commands.command(name="joinmatch", description="Join a match by number or room code")
    @app_commands.describe(match_id="Public match number", code="Private room code")
    async def joinmatch(
        self,
        interaction: discord.Interaction,
        match_id: int | None = None,
        code: str | None = None,
    ):
        if not await safe_defer(interaction, ephemeral=True):
            return
        code = normalize_room_code(code)
        if match_id is None and code is None:
            await safe_followup(interaction, content="❌ Give a match number or a room code.", ephemeral=True)
            return

        user_id = interaction.user.id
        try:
            await asyncio.to_thread(self.ledger_service.ensure_account, user_id)
            if match_id is None:
                match = await asyncio.to_thread(self.lifecycle_service.get_match_by_code, code)
                if match is None:
                    await safe_followup(interaction, content="❌ No open room with that code.", ephemeral=True)
                    return
                match_id = match.match_id
            await self._run_locked(
                match_id, self.lifecycle_service.join, match_id, user_id, room_code=code
            )
            match = await asyncio.to_thread(self.lifecycle_service.get_match, match_id)
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "joinmatch", e)
            return

        held = f" {format_amount(match.entry_fee)} is held until the match ends." if not match.is_free else ""
        await safe_followup(
            interaction,
            content=f"✅ Joined match #{match_id} ({match.filled_count}/{match.capacity}).{held}",
            ephemeral=True,
        )
        if match.state == MatchState.ACTIVE:
            participants = await asyncio.to_thread(self.lifecycle_service.get_participants, match_id)
            await safe_followup(
                interaction,
                content=f"🎮 Match #{match_id} is live: {format_user_mentions(p.user_id for p in participants)}",
            )

    @app_commands.command(name="leavematch", description="Leave an open match and get your entry fee back")
    @app_commands.describe(match_id="Match number")
    async def leavematch(self, interaction: discord.Interaction, match_id: int):
        if not await safe_defer(interaction, ephemeral=True):
            return
        try:
            await self._run_locked(match_id, self.lifecycle_service.leave, match_id, interaction.user.id)
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "leavematch", e)
            return
        await safe_followup(interaction, content=f"✅ You left match #{match_id}. Entry fee returned.", ephemeral=True)

    @app_commands.command(name="startmatch", description="Start a filled match (Admin only)")
    @app_commands.describe(match_id="Match number")
    async def startmatch(self, interaction: discord.Interaction, match_id: int):
        if not await safe_defer(interaction, ephemeral=True):
            return
        if not await self._require_admin(interaction):
            return
        try:
            await self._run_locked(match_id, self.lifecycle_service.start, match_id)
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "startmatch", e)
            return
        await safe_followup(interaction, content=f"🎮 Match #{match_id} started.", ephemeral=False)

    @app_commands.command(name="cancelmatch", description="Cancel a match and refund every player (Admin only)")
    @app_commands.describe(match_id="Match number", reason="Reason shown to players")
    async def cancelmatch(self, interaction: discord.Interaction, match_id: int, reason: str | None = None):
        if not await safe_defer(interaction, ephemeral=True):
            return
        if not await self._require_admin(interaction):
            return
        try:
            records = await self._run_locked(
                match_id, self.lifecycle_service.cancel, match_id, reason or "cancelled_by_admin"
            )
        except PartialCancelFailure as e:
            logger.error(f"Partial cancel of match {match_id}: {e.failed}")
            await safe_followup(
                interaction,
                content=f"⚠️ {e}\nThe match was not cancelled. Run /cancelmatch again to retry.",
                ephemeral=True,
            )
            return
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "cancelmatch", e)
            return

        self.release_match_lock(match_id)
        refunded = sum(r.amount for r in records)
        await safe_followup(
            interaction,
            content=f"✅ Match #{match_id} cancelled. Refunded {format_amount(refunded)} to {len(records)} player(s).",
            ephemeral=False,
        )

    # =========================================================================
    # Settlement
    # =========================================================================

    @app_commands.command(name="reportwinner", description="Settle a win/lose match by naming the winner (Admin only)")
    @app_commands.describe(match_id="Match number", winner="The winning player")
    async def reportwinner(self, interaction: discord.Interaction, match_id: int, winner: discord.Member):
        if not await safe_defer(interaction, ephemeral=True):
            return
        if not await self._require_admin(interaction):
            return
        try:
            match = await asyncio.to_thread(self.lifecycle_service.get_match, match_id)
            if match.kind == MatchKind.POSITION_RANKED:
                raise InvalidOutcome("Position-ranked matches need /settlematch with placements.")
            participants = await asyncio.to_thread(self.lifecycle_service.get_participants, match_id)
            outcomes = {
                p.user_id: Outcome.win() if p.user_id == winner.id else Outcome.lose() for p in participants
            }
            if winner.id not in outcomes:
                raise InvalidOutcome(f"{winner.display_name} is not playing in match #{match_id}.")
            records = await self._run_locked(match_id, self.lifecycle_service.complete, match_id, outcomes)
        except PartialSettlementFailure as e:
            await self._report_partial_settlement(interaction, e)
            return
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "reportwinner", e)
            return

        self.release_match_lock(match_id)
        await self._announce_settlement(interaction, match_id, records)

    @app_commands.command(name="settlematch", description="Settle a match with full outcomes (Admin only)")
    @app_commands.describe(
        match_id="Match number",
        outcomes='JSON keyed by user id, e.g. {"123": {"position": 1, "kills": 4}, "456": null}',
    )
    async def settlematch(self, interaction: discord.Interaction, match_id: int, outcomes: str):
        if not await safe_defer(interaction, ephemeral=True):
            return
        if not await self._require_admin(interaction):
            return
        try:
            parsed = parse_outcomes_json(outcomes)
            records = await self._run_locked(match_id, self.lifecycle_service.complete, match_id, parsed)
        except PartialSettlementFailure as e:
            await self._report_partial_settlement(interaction, e)
            return
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "settlematch", e)
            return

        self.release_match_lock(match_id)
        await self._announce_settlement(interaction, match_id, records)

    @app_commands.command(name="correctresult", description="Correct one player's result after payout (Admin only)")
    @app_commands.describe(
        match_id="Match number",
        user="Player whose result changes",
        result="win, lose or tie (leave empty for placement matches)",
        position="Final placement",
        kills="Kill count",
    )
    async def correctresult(
        self,
        interaction: discord.Interaction,
        match_id: int,
        user: discord.Member,
        result: str | None = None,
        position: int | None = None,
        kills: app_commands.Range[int, 0] = 0,
    ):
        if not await safe_defer(interaction, ephemeral=True):
            return
        if not await self._require_admin(interaction):
            return
        try:
            outcome = build_outcome(result, position, kills)
            record = await self._run_locked(
                match_id,
                self.settlement_service.correct,
                match_id,
                user.id,
                outcome,
                corrected_by=interaction.user.id,
            )
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "correctresult", e)
            return

        if record.is_noop:
            await safe_followup(
                interaction,
                content=f"ℹ️ Result updated to {format_outcome(outcome)}; prize unchanged.",
                ephemeral=True,
            )
            return
        await safe_followup(
            interaction,
            content=(
                f"✅ {user.mention} is now {format_outcome(outcome)} in match #{match_id}. "
                f"Wallet adjusted by {format_amount(record.amount, signed=True)}."
            ),
            ephemeral=False,
        )

    async def _announce_settlement(self, interaction: discord.Interaction, match_id: int, records) -> None:
        lines = [f"<@{r.user_id}>: {format_amount(r.amount)}" for r in records if r.amount]
        embed = discord.Embed(
            title=f"🏁 Match #{match_id} settled",
            description="\n".join(lines) or "No prizes this time.",
            color=discord.Color.green(),
        )
        embed.set_footer(text=f"Paid out {format_amount(sum(r.amount for r in records))}")
        await safe_followup(interaction, embed=embed)

    async def _report_partial_settlement(self, interaction: discord.Interaction, error: PartialSettlementFailure):
        logger.error(f"Partial settlement of match {error.match_id}: {error.failed}")
        await safe_followup(
            interaction,
            content=f"⚠️ {error}\nPaid players keep their payout. Run the same command again to retry the rest.",
            ephemeral=True,
        )

    # =========================================================================
    # Rematch
    # =========================================================================

    @app_commands.command(name="rematch", description="Offer your opponent a rematch on the same terms")
    @app_commands.describe(match_id="The finished match", opponent="Who you want to play again")
    async def rematch(self, interaction: discord.Interaction, match_id: int, opponent: discord.Member):
        if not await safe_defer(interaction, ephemeral=True):
            return
        try:
            offer = await asyncio.to_thread(
                self.rematch_service.request, match_id, interaction.user.id, opponent.id
            )
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "rematch", e)
            return

        await safe_followup(
            interaction,
            content=(
                f"🔁 {interaction.user.mention} offers {opponent.mention} a rematch of #{match_id}. "
                f"Use `/rematchaccept {offer.offer_id}` before <t:{offer.expires_at}:T>."
            ),
        )

    @app_commands.command(name="rematchaccept", description="Accept a rematch offer")
    @app_commands.describe(offer_id="Offer number")
    async def rematchaccept(self, interaction: discord.Interaction, offer_id: int):
        if not await safe_defer(interaction, ephemeral=True):
            return
        try:
            await asyncio.to_thread(self.ledger_service.ensure_account, interaction.user.id)
            match = await asyncio.to_thread(self.rematch_service.accept, offer_id, interaction.user.id)
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "rematchaccept", e)
            return

        await safe_followup(
            interaction,
            content=f"🎮 Rematch on! Match #{match.match_id} is {match.state.value}.",
        )

    @app_commands.command(name="rematchdecline", description="Decline a rematch offer, or withdraw your own")
    @app_commands.describe(offer_id="Offer number")
    async def rematchdecline(self, interaction: discord.Interaction, offer_id: int):
        if not await safe_defer(interaction, ephemeral=True):
            return
        user_id = interaction.user.id
        try:
            offer = await asyncio.to_thread(self.rematch_service.get_offer, offer_id)
            if offer.requester_id == user_id:
                await asyncio.to_thread(self.rematch_service.cancel, offer_id, user_id)
                message = f"✅ Withdrew rematch offer #{offer_id}."
            else:
                await asyncio.to_thread(self.rematch_service.decline, offer_id, user_id)
                message = f"✅ Declined rematch offer #{offer_id}."
        except WagerError as e:
            await self._reply_error(interaction, e)
            return
        except Exception as e:
            await self._reply_unexpected(interaction, "rematchdecline", e)
            return
        await safe_followup(interaction, content=message, ephemeral=True)

    # =========================================================================
    # Background sweep
    # =========================================================================

    @tasks.loop(seconds=30)
    async def sweep_stale(self):
        """Expire old rematch offers and cancel scheduled matches that never filled."""
        try:
            await asyncio.to_thread(self.rematch_service.expire_stale)
            cancelled = await asyncio.to_thread(self.lifecycle_service.cancel_unfilled)
            for match_id in cancelled:
                self.release_match_lock(match_id)
        except Exception as e:
            logger.error(f"Sweep failed: {e}", exc_info=True)

    @sweep_stale.before_loop
    async def before_sweep(self):
        await self.bot.wait_until_ready()
        logger.info(f"Sweep running every {SWEEP_INTERVAL_SECONDS}s")


async def setup(bot: commands.Bot):
    ledger_service = getattr(bot, "ledger_service", None)
    lifecycle_service = getattr(bot, "lifecycle_service", None)
    settlement_service = getattr(bot, "settlement_service", None)
    rematch_service = getattr(bot, "rematch_service", None)

    await bot.add_cog(
        WagerCommands(bot, ledger_service, lifecycle_service, settlement_service, rematch_service)
    )
