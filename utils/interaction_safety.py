"""
Helpers for responding to Discord interactions without crashing handlers.

Interactions expire after a few seconds and can be acknowledged only once;
these wrappers log and swallow the Discord-side failures so a slow database
call never turns into an unhandled exception in a command.
"""

import logging

import discord

logger = logging.getLogger("wager_bot.utils.interaction_safety")


async def safe_defer(interaction: discord.Interaction, ephemeral: bool = False) -> bool:
    """
    Defer the interaction response.

    Returns:
        True if the caller may continue with followups, False if the
        interaction is already gone.
    """
    try:
        if interaction.response.is_done():
            return True
        await interaction.response.defer(ephemeral=ephemeral)
        return True
    except discord.NotFound:
        logger.warning(f"Interaction {interaction.id} expired before it could be deferred")
        return False
    except discord.HTTPException as e:
        logger.warning(f"Failed to defer interaction {interaction.id}: {e}")
        return False


async def safe_followup(
    interaction: discord.Interaction,
    content: str | None = None,
    embed: discord.Embed | None = None,
    ephemeral: bool = False,
    **kwargs,
):
    """
    Send a followup message after safe_defer.

    Returns the sent message, or None when Discord rejected it.
    """
    payload = {"ephemeral": ephemeral, **kwargs}
    if content is not None:
        payload["content"] = content
    if embed is not None:
        payload["embed"] = embed

    try:
        return await interaction.followup.send(**payload)
    except discord.NotFound:
        logger.warning(f"Interaction {interaction.id} expired before followup was sent")
    except discord.HTTPException as e:
        logger.warning(f"Failed to send followup for interaction {interaction.id}: {e}")
    return None
