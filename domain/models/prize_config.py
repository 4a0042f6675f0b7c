"""
Prize configuration variants, one per match kind.

Configurations are tagged by `kind` and serialized as JSON on the match row.
validate() raises InvalidConfig for anything the prize engine could not
evaluate deterministically.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Any, Union

from services.errors import InvalidConfig


class MatchKind(str, Enum):
    POSITION_RANKED = "position_ranked"
    KILL_BONUS = "kill_bonus"
    WIN_LOSE = "win_lose"
    WINNER_TAKE_MOST = "winner_take_most"


def _require_non_negative_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfig(f"{name} must be an integer amount, got {value!r}.")
    if value < 0:
        raise InvalidConfig(f"{name} cannot be negative.")


@dataclass(frozen=True)
class PositionRankedConfig:
    """Fixed prize per finishing position plus an optional per-kill bonus."""

    position_prizes: dict[int, int] = field(default_factory=dict)
    per_kill: int | None = None

    @property
    def kind(self) -> MatchKind:
        return MatchKind.POSITION_RANKED

    def validate(self) -> None:
        if not self.position_prizes and self.per_kill is None:
            raise InvalidConfig("Position-ranked matches need position_prizes or per_kill.")
        for position, prize in self.position_prizes.items():
            if isinstance(position, bool) or not isinstance(position, int) or position < 1:
                raise InvalidConfig(f"Prize positions start at 1, got {position!r}.")
            _require_non_negative_int(f"position_prizes[{position}]", prize)
        if self.per_kill is not None:
            _require_non_negative_int("per_kill", self.per_kill)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "position_prizes": {str(pos): prize for pos, prize in sorted(self.position_prizes.items())},
            "per_kill": self.per_kill,
        }


@dataclass(frozen=True)
class WinLoseConfig:
    """
    Binary outcome prizes.

    kill_bonus matches must configure per_kill; plain win_lose matches may
    leave it unset. Ties split winner_prize (floor division).
    """

    winner_prize: int
    per_kill: int | None = None
    kind: MatchKind = MatchKind.WIN_LOSE

    def validate(self) -> None:
        if self.kind not in (MatchKind.WIN_LOSE, MatchKind.KILL_BONUS):
            raise InvalidConfig(f"WinLoseConfig cannot describe {self.kind.value} matches.")
        _require_non_negative_int("winner_prize", self.winner_prize)
        if self.per_kill is not None:
            _require_non_negative_int("per_kill", self.per_kill)
        elif self.kind == MatchKind.KILL_BONUS:
            raise InvalidConfig("Kill-bonus matches require per_kill.")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "winner_prize": self.winner_prize,
            "per_kill": self.per_kill,
        }


@dataclass(frozen=True)
class WinnerTakeMostConfig:
    """
    Pooled entry fees go to the single winner minus the platform fee.

    fee_fraction is kept as a decimal string ("0.10") so it converts to an
    exact Fraction.
    """

    entry_fee: int
    fee_fraction: str = "0.10"

    @property
    def kind(self) -> MatchKind:
        return MatchKind.WINNER_TAKE_MOST

    @property
    def fee(self) -> Fraction:
        try:
            return Fraction(str(self.fee_fraction))
        except (ValueError, ZeroDivisionError):
            raise InvalidConfig(f"fee_fraction is not a number: {self.fee_fraction!r}") from None

    def validate(self) -> None:
        _require_non_negative_int("entry_fee", self.entry_fee)
        if not 0 <= self.fee < 1:
            raise InvalidConfig("fee_fraction must be in [0, 1).")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "entry_fee": self.entry_fee,
            "fee_fraction": str(self.fee_fraction),
        }


PrizeConfig = Union[PositionRankedConfig, WinLoseConfig, WinnerTakeMostConfig]


def _optional_int(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidConfig(f"{key} must be an integer, got {value!r}.") from None


def parse_prize_config(
    kind: MatchKind | str, data: dict[str, Any] | None, *, entry_fee: int | None = None
) -> PrizeConfig:
    """
    Build and validate a prize config for `kind` from a plain dict.

    For winner-take-most matches the entry fee comes from the match itself
    when the dict does not carry one.
    """
    data = dict(data or {})
    try:
        kind = MatchKind(kind)
    except ValueError:
        raise InvalidConfig(f"Unknown match kind: {kind!r}") from None

    if "kind" in data and data["kind"] != kind.value:
        raise InvalidConfig(f"Prize config is for {data['kind']}, match is {kind.value}.")

    if kind == MatchKind.POSITION_RANKED:
        raw_prizes = data.get("position_prizes") or {}
        if not isinstance(raw_prizes, dict):
            raise InvalidConfig("position_prizes must be a mapping of position to prize.")
        try:
            prizes = {int(pos): int(prize) for pos, prize in raw_prizes.items()}
        except (TypeError, ValueError):
            raise InvalidConfig("position_prizes must map integer positions to integer prizes.") from None
        config: PrizeConfig = PositionRankedConfig(
            position_prizes=prizes, per_kill=_optional_int(data, "per_kill")
        )
    elif kind in (MatchKind.WIN_LOSE, MatchKind.KILL_BONUS):
        winner_prize = _optional_int(data, "winner_prize")
        if winner_prize is None:
            raise InvalidConfig(f"{kind.value} matches require winner_prize.")
        config = WinLoseConfig(
            winner_prize=winner_prize, per_kill=_optional_int(data, "per_kill"), kind=kind
        )
    else:
        fee_in_config = _optional_int(data, "entry_fee")
        if fee_in_config is not None and entry_fee is not None and fee_in_config != entry_fee:
            raise InvalidConfig("Prize config entry_fee differs from the match entry fee.")
        resolved_fee = fee_in_config if fee_in_config is not None else entry_fee
        if resolved_fee is None:
            raise InvalidConfig("winner_take_most matches require entry_fee.")
        fee_fraction = data.get("fee_fraction")
        if fee_fraction is None:
            raise InvalidConfig("winner_take_most matches require fee_fraction.")
        config = WinnerTakeMostConfig(entry_fee=resolved_fee, fee_fraction=str(fee_fraction))

    config.validate()
    return config


def prize_config_to_json(config: PrizeConfig) -> str:
    return json.dumps(config.to_dict(), sort_keys=True)


def prize_config_from_json(raw: str) -> PrizeConfig:
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        raise InvalidConfig("Stored prize config is not valid JSON.") from None
    return parse_prize_config(data.get("kind"), data)
