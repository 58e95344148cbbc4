"""Discord bot wiring for the team roster.

The bot owns no roster state itself: the :class:`TeamRegistry` and the HTTP
adapter are handed to it on construction and the slash commands registered
in :mod:`roster_bot.commands.register` call into them.
"""

from __future__ import annotations

from typing import Any

import discord
from discord.ext import commands

from .adapters.base import Adapter
from .core.registry import TeamRegistry
from .logging_config import setup_logging


class RosterBot(commands.Bot):
    """Small ``discord.py`` based bot exposing the roster as slash commands."""

    def __init__(
        self,
        registry: TeamRegistry,
        adapter: Adapter,
        sync_per_guild: bool = True,
        **kwargs: Any,
    ) -> None:  # pragma: no cover - trivial
        """Initialize the bot with the minimal intents required."""
        intents = kwargs.pop("intents", None) or discord.Intents.default()
        # We use slash commands only; message content intent not needed.
        intents.message_content = False
        super().__init__(
            command_prefix=kwargs.pop("command_prefix", "!"),
            intents=intents,
        )
        self.log = setup_logging()
        self.registry = registry
        self.adapter = adapter
        self.sync_per_guild = sync_per_guild

    async def setup_hook(self) -> None:
        """Sync slash commands with Discord."""
        # ``discord.py`` does not automatically register new slash commands
        # with Discord, so the tree is synced on every start.
        tree = getattr(self, "tree", None)
        if tree is not None:  # pragma: no cover - exercised in integration
            synced = await tree.sync()
            self.log.info("Synced %d global command(s)", len(synced))
        await super().setup_hook()

    async def on_guild_available(self, guild: discord.Guild) -> None:  # pragma: no cover
        """Copy global commands to each guild so they show up immediately."""
        if not self.sync_per_guild:
            return
        try:
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
        except discord.HTTPException:
            self.log.exception(
                "Failed to sync commands for guild %s", getattr(guild, "id", "?")
            )

    async def on_ready(self) -> None:  # pragma: no cover - requires discord
        """Log a short confirmation once the bot connected successfully."""
        await self.change_presence(activity=discord.Game(name="/team create"))
        self.log.info(
            "Logged in as %s (%s)",
            self.user,
            self.user.id if self.user else "?",
        )

    async def close(self) -> None:  # pragma: no cover - requires discord
        close_adapter = getattr(self.adapter, "close", None)
        if close_adapter is not None:
            await close_adapter()
        await super().close()


__all__ = ["RosterBot"]
