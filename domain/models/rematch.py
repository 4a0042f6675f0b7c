"""
Rematch offer domain model.
"""

from dataclasses import dataclass
from enum import Enum


class RematchStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


@dataclass
class RematchOffer:
    offer_id: int
    source_match_id: int
    requester_id: int
    responder_id: int
    status: RematchStatus
    expires_at: int
    created_at: int
    responded_at: int | None = None
    decline_reason: str | None = None
    new_match_id: int | None = None

    def is_expired_at(self, now: int) -> bool:
        """Pending offers past their deadline count as expired even before a sweep."""
        return self.status == RematchStatus.EXPIRED or (
            self.status == RematchStatus.PENDING and now >= self.expires_at
        )

