"""
Permission checks for staff-only wager commands.
"""

import discord

from config import ADMIN_USER_IDS


def is_allowlisted_staff(user_id: int) -> bool:
    """Explicit ADMIN_USER_IDS allowlist. Empty list means nobody."""
    return user_id in ADMIN_USER_IDS


def has_admin_permission(interaction: discord.Interaction) -> bool:
    """
    Staff may create, cancel, settle and correct matches and credit wallets.

    Allowlisted user ids always pass; otherwise Administrator or Manage
    Server in the current guild is required.
    """
    if is_allowlisted_staff(interaction.user.id):
        return True

    if interaction.guild:
        get_member = getattr(interaction.guild, "get_member", None)
        if callable(get_member):
            member = get_member(interaction.user.id)
            if member and getattr(member, "guild_permissions", None):
                return member.guild_permissions.administrator or member.guild_permissions.manage_guild

    # Mocks and partial objects may carry guild_permissions on the user itself
    perms = getattr(interaction.user, "guild_permissions", None)
    if perms:
        return bool(getattr(perms, "administrator", False) or getattr(perms, "manage_guild", False))

    return False
