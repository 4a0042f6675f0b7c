"""
Match (room) domain model and its lifecycle state machine.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from domain.models.outcome import Outcome
from domain.models.prize_config import MatchKind, PrizeConfig


class MatchState(str, Enum):
    OPEN = "open"
    FILLED = "filled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Legal lifecycle transitions. Completed and Cancelled are terminal.
TRANSITIONS: dict[MatchState, frozenset[MatchState]] = {
    MatchState.OPEN: frozenset({MatchState.FILLED, MatchState.CANCELLED}),
    MatchState.FILLED: frozenset({MatchState.ACTIVE, MatchState.CANCELLED}),
    MatchState.ACTIVE: frozenset({MatchState.COMPLETED, MatchState.CANCELLED}),
    MatchState.COMPLETED: frozenset(),
    MatchState.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset({MatchState.COMPLETED, MatchState.CANCELLED})


def can_transition(current: MatchState, target: MatchState) -> bool:
    return target in TRANSITIONS[current]


@dataclass(frozen=True)
class MatchTerms:
    """Entry terms reused verbatim when a match is cloned for a rematch."""

    kind: MatchKind
    entry_fee: int
    prize_config: PrizeConfig


@dataclass
class Match:
    """A wagering unit: fixed capacity, fixed entry fee, one prize rule."""

    match_id: int
    kind: MatchKind
    capacity: int
    entry_fee: int
    prize_config: PrizeConfig
    state: MatchState
    filled_count: int
    created_by: int
    created_at: int
    updated_at: int
    room_code: str | None = None
    title: str | None = None
    starts_at: int | None = None
    auto_activate: bool = False
    source_match_id: int | None = None
    cancel_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_full(self) -> bool:
        return self.filled_count >= self.capacity

    @property
    def is_free(self) -> bool:
        return self.entry_fee == 0

    def terms(self) -> MatchTerms:
        return MatchTerms(kind=self.kind, entry_fee=self.entry_fee, prize_config=self.prize_config)


class ParticipantStatus(str, Enum):
    ACTIVE = "active"
    REFUNDED = "refunded"


@dataclass
class Participant:
    """A user's slot in a match, tied to the reservation that paid for it."""

    participant_id: int
    match_id: int
    user_id: int
    joined_at: int
    reservation_id: int | None
    slot_index: int
    outcome: Outcome | None = None
    settled_amount: int | None = None
    settlement_id: int | None = None
    status: ParticipantStatus = ParticipantStatus.ACTIVE

    @property
    def is_settled(self) -> bool:
        return self.settlement_id is not None
