"""
Direct-message delivery for engine notifications.
"""

import asyncio
import logging

import discord

from services.notification_service import IUserNotifier

logger = logging.getLogger("wager_bot.utils.discord_notifier")


class DiscordUserNotifier(IUserNotifier):
    """
    Sends engine notifications as DMs.

    notify() only schedules the send and returns immediately. Services call
    it from worker threads (commands run them through asyncio.to_thread), so
    the coroutine is handed to the bot's loop thread-safely.
    """

    def __init__(self, client: discord.Client, loop: asyncio.AbstractEventLoop | None = None):
        self.client = client
        self._loop = loop

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def notify(self, user_id: int, title: str, message: str) -> None:
        coro = self._send(user_id, title, message)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None:
            running.create_task(coro)
            return
        if self._loop is None or self._loop.is_closed():
            coro.close()
            logger.warning(f"No event loop bound; dropped notification '{title}' for {user_id}")
            return
        asyncio.run_coroutine_threadsafe(coro, self._loop)

    async def _send(self, user_id: int, title: str, message: str) -> None:
        try:
            user = self.client.get_user(user_id) or await self.client.fetch_user(user_id)
            embed = discord.Embed(title=title, description=message, color=discord.Color.blurple())
            await user.send(embed=embed)
        except discord.Forbidden:
            logger.info(f"User {user_id} does not accept DMs; skipped '{title}'")
        except discord.HTTPException as e:
            logger.warning(f"Failed to DM user {user_id}: {e}")
