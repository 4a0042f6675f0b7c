"""
Stable error codes carried by every WagerError.

Command handlers and Result consumers branch on these instead of parsing
message text:

    except WagerError as e:
        if e.error_code == INSUFFICIENT_FUNDS:
            ...
"""

# Base code for WagerError itself
VALIDATION_ERROR = "validation_error"

# Ledger errors
ACCOUNT_NOT_FOUND = "account_not_found"
INSUFFICIENT_FUNDS = "insufficient_funds"
ALREADY_SETTLED = "already_settled"

# Lifecycle errors
MATCH_NOT_FOUND = "match_not_found"
MATCH_FULL = "match_full"
ALREADY_JOINED = "already_joined"
NOT_PARTICIPANT = "not_participant"
INVALID_CODE = "invalid_code"
INVALID_STATE = "invalid_state"
PARTIAL_CANCEL_FAILURE = "partial_cancel_failure"

# Prize / settlement errors
INVALID_CONFIG = "invalid_config"
INVALID_OUTCOME = "invalid_outcome"
PARTIAL_SETTLEMENT_FAILURE = "partial_settlement_failure"

# Rematch errors
OFFER_NOT_FOUND = "offer_not_found"
OFFER_EXPIRED = "offer_expired"
NOT_OFFER_PARTY = "not_offer_party"
REMATCH_FAILED = "rematch_failed"
