"""
Application services layer.

Services orchestrate business operations using repositories and domain services.
Concrete services are imported from their modules; this package only exposes
the shared result and error types so that domain models can depend on them
without pulling in the repositories.
"""

# Result type for consistent error handling
from services.result import Result
from services.errors import (
    AccountNotFound,
    AlreadyJoined,
    AlreadySettled,
    Full,
    InsufficientFunds,
    InvalidCode,
    InvalidConfig,
    InvalidOutcome,
    InvalidState,
    MatchNotFound,
    NotOfferParty,
    NotParticipant,
    OfferExpired,
    OfferNotFound,
    PartialCancelFailure,
    PartialSettlementFailure,
    RematchFailed,
    WagerError,
)

__all__ = [
    "Result",
    "WagerError",
    "AccountNotFound",
    "InsufficientFunds",
    "AlreadySettled",
    "MatchNotFound",
    "Full",
    "AlreadyJoined",
    "NotParticipant",
    "InvalidCode",
    "InvalidState",
    "PartialCancelFailure",
    "InvalidConfig",
    "InvalidOutcome",
    "PartialSettlementFailure",
    "OfferNotFound",
    "OfferExpired",
    "NotOfferParty",
    "RematchFailed",
]
