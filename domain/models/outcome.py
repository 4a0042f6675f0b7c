"""
Participant outcome domain model.

The outcome tag is the single source of truth for a participant's result.
"Is this a winner" is always derived from it, never stored separately.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from services.errors import InvalidOutcome


class OutcomeResult(str, Enum):
    WIN = "win"
    LOSE = "lose"
    TIE = "tie"


@dataclass(frozen=True)
class Outcome:
    """
    Raw result reported for one participant.

    Position-ranked matches use `position` (1 = first place); win/lose style
    matches use `result`. `kills` applies to both. An outcome with neither a
    result nor a position is explicitly unset.
    """

    result: OutcomeResult | None = None
    position: int | None = None
    kills: int = 0

    @classmethod
    def unset(cls, kills: int = 0) -> Outcome:
        return cls(kills=kills)

    @classmethod
    def win(cls, kills: int = 0) -> Outcome:
        return cls(result=OutcomeResult.WIN, kills=kills)

    @classmethod
    def lose(cls, kills: int = 0) -> Outcome:
        return cls(result=OutcomeResult.LOSE, kills=kills)

    @classmethod
    def tie(cls, kills: int = 0) -> Outcome:
        return cls(result=OutcomeResult.TIE, kills=kills)

    @classmethod
    def ranked(cls, position: int | None, kills: int = 0) -> Outcome:
        return cls(position=position, kills=kills)

    @property
    def is_unset(self) -> bool:
        return self.result is None and self.position is None

    @property
    def is_winner(self) -> bool:
        """Derived from the tag: an explicit win, or first place."""
        return self.result == OutcomeResult.WIN or self.position == 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": self.result.value if self.result else None,
            "position": self.position,
            "kills": self.kills,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Outcome:
        if not data:
            return cls.unset()
        raw_result = data.get("result")
        try:
            result = OutcomeResult(raw_result) if raw_result else None
        except ValueError:
            raise InvalidOutcome(f"Unknown outcome result: {raw_result!r}") from None
        position = data.get("position")
        return cls(
            result=result,
            position=int(position) if position is not None else None,
            kills=int(data.get("kills") or 0),
        )
