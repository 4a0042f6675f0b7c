"""
Centralized configuration for the wager settlement bot.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _parse_int(env_var: str, default: int) -> int:
    raw = os.getenv(env_var)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_bool(env_var: str, default: bool) -> bool:
    raw = os.getenv(env_var)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _parse_int_list(env_var: str, default: list[int]) -> list[int]:
    raw = os.getenv(env_var)
    if raw is None:
        return default
    try:
        return [int(x.strip()) for x in raw.split(",") if x.strip()]
    except ValueError:
        return default


DB_PATH = os.getenv("DB_PATH", "wager.db")
DISCORD_BOT_TOKEN = os.getenv("DISCORD_BOT_TOKEN")
ADMIN_USER_IDS: list[int] = _parse_int_list("ADMIN_USER_IDS", [])

# Rematch offers expire after this many seconds without a response
REMATCH_TTL_SECONDS = _parse_int("REMATCH_TTL_SECONDS", 30)

# Platform share retained from winner-take-most pools and private rooms.
# Kept as the raw string so prize math can evaluate it exactly.
DEFAULT_FEE_FRACTION = os.getenv("DEFAULT_FEE_FRACTION", "0.10")
try:
    _fee_check = float(DEFAULT_FEE_FRACTION)
    if not 0.0 <= _fee_check < 1.0:
        DEFAULT_FEE_FRACTION = "0.10"
except ValueError:
    DEFAULT_FEE_FRACTION = "0.10"

ROOM_CODE_LENGTH = _parse_int("ROOM_CODE_LENGTH", 6)
MAX_MATCH_CAPACITY = _parse_int("MAX_MATCH_CAPACITY", 128)

# Per-participant attempts before a settlement reports a partial failure
SETTLEMENT_CAPTURE_ATTEMPTS = max(1, _parse_int("SETTLEMENT_CAPTURE_ATTEMPTS", 3))

# Balance granted when an account is opened through the bot
STARTING_BALANCE = max(0, _parse_int("STARTING_BALANCE", 0))

# Background sweep (rematch expiry, unfilled scheduled matches)
SWEEP_INTERVAL_SECONDS = _parse_int("SWEEP_INTERVAL_SECONDS", 30)
SWEEP_ENABLED = _parse_bool("SWEEP_ENABLED", True)

# Two-party rooms start as soon as the second player joins
AUTO_ACTIVATE_TWO_PARTY = _parse_bool("AUTO_ACTIVATE_TWO_PARTY", True)

# Currency label used in Discord output
CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "₹")
# Amounts are stored in minor units; this many minor units make one major unit
MINOR_UNITS_PER_MAJOR = max(1, _parse_int("MINOR_UNITS_PER_MAJOR", 1))
