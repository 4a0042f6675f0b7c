"""
Shared formatting helpers for amounts, matches and outcomes.
"""

from collections.abc import Iterable

from config import CURRENCY_SYMBOL, MINOR_UNITS_PER_MAJOR
from domain.models.match import Match, MatchState
from domain.models.outcome import Outcome
from domain.models.prize_config import (
    MatchKind,
    PositionRankedConfig,
    WinLoseConfig,
    WinnerTakeMostConfig,
)

STATE_EMOJIS = {
    MatchState.OPEN: "🟢",
    MatchState.FILLED: "🟡",
    MatchState.ACTIVE: "🎮",
    MatchState.COMPLETED: "🏁",
    MatchState.CANCELLED: "❌",
}

KIND_NAMES = {
    MatchKind.POSITION_RANKED: "Position ranked",
    MatchKind.KILL_BONUS: "Win/lose + kill bonus",
    MatchKind.WIN_LOSE: "Win/lose",
    MatchKind.WINNER_TAKE_MOST: "Winner takes most",
}


def format_amount(amount: int, signed: bool = False) -> str:
    """Render minor units, e.g. 1250 -> '₹12.50' with 100 minor units per major."""
    sign = ""
    if amount < 0:
        sign = "-"
    elif signed and amount > 0:
        sign = "+"
    value = abs(amount)
    if MINOR_UNITS_PER_MAJOR == 1:
        return f"{sign}{CURRENCY_SYMBOL}{value}"
    major, minor = divmod(value, MINOR_UNITS_PER_MAJOR)
    width = len(str(MINOR_UNITS_PER_MAJOR - 1))
    return f"{sign}{CURRENCY_SYMBOL}{major}.{minor:0{width}d}"


def format_outcome(outcome: Outcome | None) -> str:
    if outcome is None or (outcome.is_unset and not outcome.kills):
        return "unset"
    parts = []
    if outcome.position is not None:
        parts.append(f"#{outcome.position}")
    if outcome.result is not None:
        parts.append(outcome.result.value)
    if outcome.kills:
        parts.append(f"{outcome.kills} kills")
    return ", ".join(parts) if parts else "unset"


def describe_prizes(match: Match) -> str:
    """One-line human summary of a match's prize rule."""
    config = match.prize_config
    if isinstance(config, PositionRankedConfig):
        places = ", ".join(
            f"#{pos}: {format_amount(prize)}" for pos, prize in sorted(config.position_prizes.items())
        )
        text = places or "no placement prizes"
        if config.per_kill is not None:
            text += f" | {format_amount(config.per_kill)}/kill"
        return text
    if isinstance(config, WinLoseConfig):
        text = f"Winner: {format_amount(config.winner_prize)}"
        if config.per_kill is not None:
            text += f" | {format_amount(config.per_kill)}/kill"
        return text
    if isinstance(config, WinnerTakeMostConfig):
        return f"Pool to winner, {float(config.fee) * 100:g}% platform fee"
    return "-"


def format_match_line(match: Match) -> str:
    emoji = STATE_EMOJIS.get(match.state, "")
    title = f" {match.title}" if match.title else ""
    fee = "Free" if match.is_free else format_amount(match.entry_fee)
    return (
        f"{emoji} **#{match.match_id}**{title} - {KIND_NAMES.get(match.kind, match.kind.value)} - "
        f"{fee} entry - {match.filled_count}/{match.capacity} - {match.state.value}"
    )


def format_user_mentions(user_ids: Iterable[int]) -> str:
    return ", ".join(f"<@{uid}>" for uid in user_ids) or "-"
