"""
Error kinds raised by the wager engine.

Every error is a ValueError carrying a stable error_code from
services.error_codes, so command handlers can branch without parsing text.
"""

from services import error_codes


class WagerError(ValueError):
    """Base class for all engine errors."""

    error_code = error_codes.VALIDATION_ERROR


# ============ Ledger ============


class AccountNotFound(WagerError):
    error_code = error_codes.ACCOUNT_NOT_FOUND

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"No wallet found for user {user_id}.")


class InsufficientFunds(WagerError):
    error_code = error_codes.INSUFFICIENT_FUNDS

    def __init__(self, user_id: int, available: int, required: int):
        self.user_id = user_id
        self.available = available
        self.required = required
        super().__init__(f"Insufficient balance. You have {available}, need {required}.")


class AlreadySettled(WagerError):
    """Reservation already left the held state. Callers retrying treat it as done."""

    error_code = error_codes.ALREADY_SETTLED

    def __init__(self, reservation_id: int, status: str):
        self.reservation_id = reservation_id
        self.status = status
        super().__init__(f"Reservation {reservation_id} is already {status}.")


# ============ Lifecycle ============


class MatchNotFound(WagerError):
    error_code = error_codes.MATCH_NOT_FOUND

    def __init__(self, match_id):
        self.match_id = match_id
        super().__init__(f"Match {match_id} not found.")


class Full(WagerError):
    error_code = error_codes.MATCH_FULL

    def __init__(self, match_id: int):
        self.match_id = match_id
        super().__init__(f"Match {match_id} is full.")


class AlreadyJoined(WagerError):
    error_code = error_codes.ALREADY_JOINED

    def __init__(self, match_id: int, user_id: int):
        self.match_id = match_id
        self.user_id = user_id
        super().__init__(f"You already hold a slot in match {match_id}.")


class NotParticipant(WagerError):
    error_code = error_codes.NOT_PARTICIPANT

    def __init__(self, match_id: int, user_id: int):
        self.match_id = match_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not a participant of match {match_id}.")


class InvalidCode(WagerError):
    error_code = error_codes.INVALID_CODE

    def __init__(self, match_id: int):
        self.match_id = match_id
        super().__init__("Room code does not match.")


class InvalidState(WagerError):
    """Operation not valid for the current lifecycle or offer state."""

    error_code = error_codes.INVALID_STATE


class PartialCancelFailure(WagerError):
    """Some reservations could not be released. The match keeps its state; retry is safe."""

    error_code = error_codes.PARTIAL_CANCEL_FAILURE

    def __init__(self, match_id: int, released: list[int], failed: dict[int, str]):
        self.match_id = match_id
        self.released = released
        self.failed = failed
        super().__init__(
            f"Cancel of match {match_id} incomplete: {len(failed)} refund(s) failed "
            f"for participant(s) {sorted(failed)}. Retry the cancel."
        )


# ============ Prizes / settlement ============


class InvalidConfig(WagerError):
    error_code = error_codes.INVALID_CONFIG


class InvalidOutcome(WagerError):
    error_code = error_codes.INVALID_OUTCOME


class PartialSettlementFailure(WagerError):
    """Some captures failed after retries. The match stays active; retry is safe."""

    error_code = error_codes.PARTIAL_SETTLEMENT_FAILURE

    def __init__(self, match_id: int, settled: list[int], failed: dict[int, str]):
        self.match_id = match_id
        self.settled = settled
        self.failed = failed
        super().__init__(
            f"Settlement of match {match_id} incomplete: {len(failed)} payout(s) failed "
            f"for participant(s) {sorted(failed)}. Retry the settlement."
        )


# ============ Rematch ============


class OfferNotFound(WagerError):
    error_code = error_codes.OFFER_NOT_FOUND

    def __init__(self, offer_id: int):
        self.offer_id = offer_id
        super().__init__(f"Rematch offer {offer_id} not found.")


class OfferExpired(WagerError):
    error_code = error_codes.OFFER_EXPIRED

    def __init__(self, offer_id: int):
        self.offer_id = offer_id
        super().__init__(f"Rematch offer {offer_id} has expired.")


class NotOfferParty(WagerError):
    error_code = error_codes.NOT_OFFER_PARTY


class RematchFailed(WagerError):
    """Rematch could not be created; the offer was declined with this reason."""

    error_code = error_codes.REMATCH_FAILED

    def __init__(self, offer_id: int, reason: str, cause_code: str | None = None):
        self.offer_id = offer_id
        self.reason = reason
        self.cause_code = cause_code
        super().__init__(f"Rematch could not start: {reason}")
