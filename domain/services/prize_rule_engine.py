"""
Prize rule engine.

Pure domain logic: (prize config, participant outcomes) -> prize per
participant. No I/O and no side effects. All amounts are integer minor units
and every division floors; nothing is ever rounded up.
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass

from domain.models.outcome import Outcome, OutcomeResult
from domain.models.prize_config import (
    MatchKind,
    PositionRankedConfig,
    PrizeConfig,
    WinLoseConfig,
    WinnerTakeMostConfig,
)
from services.errors import InvalidConfig, InvalidOutcome


@dataclass(frozen=True)
class PrizeInput:
    """One participant as seen by the engine. outcome=None means unset."""

    participant_id: int
    outcome: Outcome | None = None


def compute_prizes(
    config: PrizeConfig, participants: Iterable[PrizeInput], *, independent: bool = False
) -> dict[int, int]:
    """
    Compute every participant's prize in one pass.

    Rules that depend on co-participants (tie split, winner-take-most pool)
    need the whole field, so callers always pass every participant.

    With independent=True each row is priced on its own outcome and the
    checks that compare participants (shared positions, a winner next to a
    tie, several winners) are skipped. Corrections move one row at a time,
    so the field is briefly inconsistent while, say, 1st and 2nd are swapped.

    Raises:
        InvalidConfig: config missing fields required by the outcomes given
        InvalidOutcome: ambiguous or malformed outcome set
    """
    entries = list(participants)
    seen: set[int] = set()
    for entry in entries:
        if entry.participant_id in seen:
            raise InvalidOutcome(f"Participant {entry.participant_id} reported twice.")
        seen.add(entry.participant_id)
        outcome = entry.outcome
        if outcome is not None and outcome.kills < 0:
            raise InvalidOutcome(f"Participant {entry.participant_id} has negative kills.")

    config.validate()

    if isinstance(config, PositionRankedConfig):
        return _position_ranked(config, entries, independent)
    if isinstance(config, WinLoseConfig):
        return _win_lose(config, entries, independent)
    if isinstance(config, WinnerTakeMostConfig):
        return _winner_take_most(config, entries, independent)
    raise InvalidConfig(f"Unsupported prize config: {type(config).__name__}")


def _kills(entry: PrizeInput) -> int:
    return entry.outcome.kills if entry.outcome is not None else 0


def _kill_bonus(per_kill: int | None, kills: int) -> int:
    if kills == 0:
        return 0
    if per_kill is None:
        raise InvalidConfig("per_kill is not configured but kills were reported.")
    return per_kill * kills


def _position_ranked(
    config: PositionRankedConfig, entries: list[PrizeInput], independent: bool
) -> dict[int, int]:
    field_size = len(entries)
    taken: dict[int, int] = {}
    for entry in entries:
        outcome = entry.outcome
        if outcome is None:
            continue
        if outcome.result is not None:
            raise InvalidOutcome(
                f"Participant {entry.participant_id}: position-ranked matches report positions, "
                "not win/lose/tie."
            )
        if outcome.position is None:
            continue
        if not 1 <= outcome.position <= field_size:
            raise InvalidOutcome(
                f"Participant {entry.participant_id}: position {outcome.position} "
                f"is outside 1..{field_size}."
            )
        if outcome.position in taken and not independent:
            raise InvalidOutcome(
                f"Position {outcome.position} reported for participants "
                f"{taken[outcome.position]} and {entry.participant_id}."
            )
        taken[outcome.position] = entry.participant_id

    prizes: dict[int, int] = {}
    for entry in entries:
        position = entry.outcome.position if entry.outcome is not None else None
        # DNF / unranked still earns kill bonus
        placement = config.position_prizes.get(position, 0) if position is not None else 0
        prizes[entry.participant_id] = placement + _kill_bonus(config.per_kill, _kills(entry))
    return prizes


def _win_lose(
    config: WinLoseConfig, entries: list[PrizeInput], independent: bool
) -> dict[int, int]:
    results: dict[int, OutcomeResult | None] = {}
    for entry in entries:
        outcome = entry.outcome
        if outcome is not None and outcome.position is not None:
            raise InvalidOutcome(
                f"Participant {entry.participant_id}: {config.kind.value} matches report "
                "win/lose/tie, not positions."
            )
        results[entry.participant_id] = outcome.result if outcome is not None else None

    reported = set(results.values())
    if OutcomeResult.WIN in reported and OutcomeResult.TIE in reported and not independent:
        raise InvalidOutcome("A match cannot have both a winner and tied participants.")

    tied = [pid for pid, result in results.items() if result == OutcomeResult.TIE]
    tie_share = config.winner_prize // len(tied) if tied else 0

    prizes: dict[int, int] = {}
    for entry in entries:
        result = results[entry.participant_id]
        if result is None:
            prizes[entry.participant_id] = 0
            continue
        bonus = _kill_bonus(config.per_kill, _kills(entry))
        if result == OutcomeResult.WIN:
            prizes[entry.participant_id] = config.winner_prize + bonus
        elif result == OutcomeResult.TIE:
            prizes[entry.participant_id] = tie_share + bonus
        else:
            prizes[entry.participant_id] = bonus
    return prizes


def _winner_take_most(
    config: WinnerTakeMostConfig, entries: list[PrizeInput], independent: bool
) -> dict[int, int]:
    winners = []
    for entry in entries:
        outcome = entry.outcome
        if outcome is None:
            continue
        if outcome.kills:
            raise InvalidConfig("Winner-take-most matches have no per-kill prize.")
        if outcome.position is not None or outcome.result == OutcomeResult.TIE:
            raise InvalidOutcome(
                f"Participant {entry.participant_id}: winner-take-most matches report win or lose only."
            )
        if outcome.result == OutcomeResult.WIN:
            winners.append(entry.participant_id)

    if len(winners) > 1 and not independent:
        raise InvalidOutcome(f"Winner-take-most allows a single winner, got {sorted(winners)}.")

    prizes = {entry.participant_id: 0 for entry in entries}
    pool = config.entry_fee * len(entries)
    for winner in winners:
        prizes[winner] = math.floor(pool * (1 - config.fee))
    return prizes


def winner_take_most_prize(entry_fee: int, player_count: int, fee_fraction: str) -> int:
    """Prize for the winner of an N-player pool, also the default prize of a private room."""
    config = WinnerTakeMostConfig(entry_fee=entry_fee, fee_fraction=fee_fraction)
    config.validate()
    return math.floor(entry_fee * player_count * (1 - config.fee))
