"""
Main Discord bot entry for the wager settlement bot.
"""

import asyncio
import logging

# Configure logging BEFORE importing discord to prevent duplicate handlers
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    force=True,  # Override any existing handlers (e.g., from discord.py)
)
logger = logging.getLogger("wager_bot")


# Suppress PyNaCl warning since voice support isn't needed
class _PyNaClFilter(logging.Filter):
    """Filter out the PyNaCl warning from discord.py."""

    def filter(self, record):
        return "PyNaCl is not installed" not in record.getMessage()


logging.getLogger("discord.client").addFilter(_PyNaClFilter())

# Now import discord after logging is configured
import discord
from discord import app_commands
from discord.app_commands.errors import TransformerError
from discord.ext import commands

# discord.py adds its own handler to the 'discord' logger on import
_discord_logger = logging.getLogger("discord")
_discord_logger.handlers.clear()
_discord_logger.setLevel(logging.INFO)

from config import DISCORD_BOT_TOKEN
from infrastructure.service_container import ServiceConfig, ServiceContainer
from services.errors import WagerError
from utils.discord_notifier import DiscordUserNotifier

# Bot setup

intents = discord.Intents.default()
intents.members = True  # has_admin_permission looks members up in the guild

bot = commands.Bot(command_prefix="!", intents=intents)

_notifier = DiscordUserNotifier(bot)
_container: ServiceContainer | None = None

EXTENSIONS = [
    "commands.wager",
]


async def _init_services():
    """Build the engine once and hang its services on the bot for the cogs."""
    global _container

    if _container is not None:
        return

    _container = ServiceContainer(ServiceConfig(), notifier=_notifier)
    await _container.initialize()
    _container.expose_to_bot(bot)


async def _load_extensions():
    await _init_services()

    failed = []
    for ext in EXTENSIONS:
        if ext in bot.extensions:
            continue
        try:
            await bot.load_extension(ext)
            logger.info(f"Loaded extension: {ext}")
        except commands.ExtensionError as exc:
            failed.append(ext)
            logger.error(f"Failed to load extension {ext}: {exc}", exc_info=True)

    if failed:
        logger.warning(f"Extensions not loaded: {', '.join(failed)}")
    logger.info(f"{len(list(bot.tree.walk_commands()))} slash commands registered")


@bot.event
async def setup_hook():
    """Bind the DM notifier to the running loop, then build the engine and load cogs."""
    _notifier.bind_loop(asyncio.get_running_loop())
    await _load_extensions()


@bot.event
async def on_ready():
    logger.info(f"{bot.user} connected to {len(bot.guilds)} guild(s); cogs: {', '.join(bot.cogs)}")
    try:
        synced = await bot.tree.sync()
        logger.info(f"Synced {len(synced)} slash commands")
    except discord.HTTPException as exc:
        logger.error(f"Slash command sync failed: {exc}", exc_info=True)


def _describe_command_error(error: app_commands.AppCommandError) -> str:
    """User-facing text for errors that escaped a command handler."""
    original = getattr(error, "original", None)
    if isinstance(original, WagerError):
        return str(original)
    if isinstance(error, TransformerError):
        return (
            f"Could not resolve `{getattr(error, 'value', None)}`. "
            "Pick the player from Discord's user picker."
        )
    if isinstance(error, app_commands.CheckFailure):
        return "You are not allowed to use this command."
    return "Something went wrong while processing your command. Please try again."


@bot.tree.error
async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
    """Last-resort handler so an interaction never stays in the 'thinking...' state."""
    command_name = interaction.command.name if interaction.command else "unknown"
    if isinstance(getattr(error, "original", None), WagerError):
        logger.info(f"/{command_name} rejected for {interaction.user.id}: {error.original}")
    else:
        logger.error(f"Unhandled error in /{command_name}: {error}", exc_info=error)

    content = f"❌ {_describe_command_error(error)}"
    try:
        if interaction.response.is_done():
            await interaction.followup.send(content=content, ephemeral=True)
        else:
            await interaction.response.send_message(content=content, ephemeral=True)
    except discord.HTTPException as send_error:
        logger.warning(f"Could not report error for /{command_name}: {send_error}")


def main():
    if not DISCORD_BOT_TOKEN:
        logger.error("DISCORD_BOT_TOKEN is not set; add it to .env or the environment")
        return

    try:
        # Logging is already configured above
        bot.run(DISCORD_BOT_TOKEN, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Bot stopped by user (Ctrl+C)")


if __name__ == "__main__":
    main()
