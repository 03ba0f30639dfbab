"""Discord bot lifecycle management.

The bot holds the gateway connection the role and DM operations go through.
It has no user commands.
"""

import asyncio
import logging

import discord
from discord.ext import commands

from paidroles.config.settings import get_config

logger = logging.getLogger(__name__)


class PaidRolesBot(commands.Bot):
    """Discord bot that grants and revokes paid roles.

    Needs the members intent so guild member lookups resolve from cache.
    """

    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True

        super().__init__(
            command_prefix="!",  # Unused, required by commands.Bot
            intents=intents,
            help_command=None,
        )

        self.config = get_config()
        self._ready = asyncio.Event()
        self._shutdown = asyncio.Event()

    async def on_ready(self) -> None:
        """Called when bot has connected to Discord and is ready."""
        logger.info(f"Bot connected as {self.user} to {len(self.guilds)} server(s)")
        for guild in self.guilds:
            me = guild.me
            if me is not None and not (
                me.guild_permissions.administrator or me.guild_permissions.manage_roles
            ):
                logger.warning(f"Bot lacks Manage Roles in {guild.name} ({guild.id})")
        self._ready.set()

    async def on_guild_join(self, guild: discord.Guild) -> None:
        logger.info(f"Joined server {guild.name} ({guild.id})")

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        logger.warning(f"Removed from server {guild.name} ({guild.id}); role sync will fail there")

    async def on_error(self, event: str, *args, **kwargs) -> None:
        """Called when an event handler raises an exception."""
        logger.exception(f"Error in event {event}")

    async def wait_ready(self, timeout: float = 30.0) -> bool:
        """Wait for bot to be ready.

        Args:
            timeout: Maximum seconds to wait

        Returns:
            True if bot became ready, False if timeout
        """
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.error(f"Bot did not become ready within {timeout}s")
            return False

    def shutdown(self) -> None:
        """Signal bot to shut down gracefully."""
        logger.info("Shutdown signal received")
        self._shutdown.set()

    async def run_until_shutdown(self) -> None:
        """Run bot until shutdown signal received."""
        bot_task = asyncio.create_task(self.start(self.config.discord_token.get_secret_value()))
        shutdown_task = asyncio.create_task(self._shutdown.wait())

        done, _ = await asyncio.wait(
            {bot_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
        )

        if bot_task in done:
            shutdown_task.cancel()
            # Surface login or connection failures to the caller
            bot_task.result()
            return

        logger.info("Shutting down bot...")
        await self.close()

        try:
            await asyncio.wait_for(bot_task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Bot task did not complete within timeout")
            bot_task.cancel()
