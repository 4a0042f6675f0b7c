"""
Room code generation for private two-player rooms.
"""

import secrets
from collections.abc import Callable

from config import ROOM_CODE_LENGTH


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    """Random numeric code, zero padded (e.g. '048213')."""
    return "".join(secrets.choice("0123456789") for _ in range(length))


def generate_unique_room_code(
    in_use: Callable[[str], bool],
    length: int = ROOM_CODE_LENGTH,
    max_attempts: int = 20,
) -> str:
    """
    Draw codes until one is not used by an active room.

    Raises:
        RuntimeError: no free code found within max_attempts
    """
    for _ in range(max_attempts):
        code = generate_room_code(length)
        if not in_use(code):
            return code
    raise RuntimeError(f"Could not allocate a free room code after {max_attempts} attempts")


def normalize_room_code(raw: str | None) -> str | None:
    if raw is None:
        return None
    code = raw.strip()
    return code or None
