"""
Tests for prize config parsing and serialization.
"""

import pytest

from domain.models.outcome import Outcome, OutcomeResult
from domain.models.prize_config import (
    MatchKind,
    PositionRankedConfig,
    WinLoseConfig,
    WinnerTakeMostConfig,
    parse_prize_config,
    prize_config_from_json,
    prize_config_to_json,
)
from services.errors import InvalidConfig, InvalidOutcome


def test_position_prizes_accept_string_keys():
    config = parse_prize_config("position_ranked", {"position_prizes": {"1": 100, "2": 50}, "per_kill": 5})
    assert config == PositionRankedConfig(position_prizes={1: 100, 2: 50}, per_kill=5)


def test_win_lose_requires_winner_prize():
    with pytest.raises(InvalidConfig):
        parse_prize_config(MatchKind.WIN_LOSE, {})


def test_kill_bonus_requires_per_kill():
    with pytest.raises(InvalidConfig):
        parse_prize_config(MatchKind.KILL_BONUS, {"winner_prize": 10})


def test_winner_take_most_takes_fee_from_match():
    config = parse_prize_config("winner_take_most", {"fee_fraction": "0.10"}, entry_fee=50)
    assert config == WinnerTakeMostConfig(entry_fee=50, fee_fraction="0.10")


def test_winner_take_most_rejects_mismatched_entry_fee():
    with pytest.raises(InvalidConfig):
        parse_prize_config("winner_take_most", {"entry_fee": 40, "fee_fraction": "0.1"}, entry_fee=50)


def test_kind_mismatch_rejected():
    with pytest.raises(InvalidConfig):
        parse_prize_config("win_lose", {"kind": "position_ranked", "winner_prize": 10})


def test_unknown_kind_rejected():
    with pytest.raises(InvalidConfig):
        parse_prize_config("battle_royale", {})


def test_negative_prize_rejected():
    with pytest.raises(InvalidConfig):
        parse_prize_config("position_ranked", {"position_prizes": {"1": -5}})


def test_json_storage_keeps_kind_and_values():
    config = WinLoseConfig(winner_prize=90, per_kill=3, kind=MatchKind.KILL_BONUS)
    restored = prize_config_from_json(prize_config_to_json(config))
    assert restored == config
    assert restored.kind == MatchKind.KILL_BONUS


def test_outcome_from_dict():
    assert Outcome.from_dict({"result": "win", "kills": 2}) == Outcome(result=OutcomeResult.WIN, kills=2)
    assert Outcome.from_dict(None).is_unset
    with pytest.raises(InvalidOutcome):
        Outcome.from_dict({"result": "draw"})


def test_winner_is_derived_from_tag():
    assert Outcome.win().is_winner
    assert Outcome.ranked(1).is_winner
    assert not Outcome.ranked(2).is_winner
    assert not Outcome.tie().is_winner
