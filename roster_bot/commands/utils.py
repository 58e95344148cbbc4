from __future__ import annotations

import discord

from ..core.models import Student
from ..core.registry import TeamRegistry
from ..logging_config import get_logger

log = get_logger("commands")


def log_command(interaction: discord.Interaction) -> None:
    """Note who ran which command, and where."""
    command = interaction.command.qualified_name if interaction.command else "?"
    log.info(
        "Executing command `/%s`, triggered by %s (%s) in guild %s",
        command,
        interaction.user,
        interaction.user.id,
        interaction.guild_id,
    )


def observe(registry: TeamRegistry, user: discord.abc.User) -> Student:
    """Return the student record for ``user``, creating it on first sight."""
    return registry.get_or_create_student(user.id, str(user))


def guild_id_of(interaction: discord.Interaction) -> int:
    if interaction.guild_id is None:
        raise discord.app_commands.NoPrivateMessage()
    return interaction.guild_id


async def reply(interaction: discord.Interaction, content: str, **kwargs) -> None:
    """Send an ephemeral reply, falling back to a followup if already answered."""
    if interaction.response.is_done():
        await interaction.followup.send(content, ephemeral=True, **kwargs)
    else:
        await interaction.response.send_message(content, ephemeral=True, **kwargs)
