from __future__ import annotations

import asyncio

from .adapters.discord import DiscordAdapter
from .bot import RosterBot
from .commands.register import register_commands
from .config import load_settings
from .core.registry import TeamRegistry
from .core.storage import JSONStorage
from .logging_config import setup_logging


def main() -> int:
    log = setup_logging()
    settings = load_settings()
    if not settings.token:
        log.error(
            "DISCORD_BOT_TOKEN is not set. "
            "Export it in your environment before running."
        )
        return 2
    storage = JSONStorage(settings.data_dir)
    registry = TeamRegistry(storage)
    adapter = DiscordAdapter(settings.token)
    bot = RosterBot(registry, adapter, sync_per_guild=settings.sync_per_guild)
    register_commands(bot, registry, adapter)
    log.info("Using data directory %s", storage.root)

    async def runner():
        try:
            async with bot:
                await bot.start(settings.token)
        except KeyboardInterrupt:
            log.info("Shutting down...")
        return 0

    return asyncio.run(runner())


if __name__ == "__main__":
    raise SystemExit(main())
