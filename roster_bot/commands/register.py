"""Registration of slash commands for the bot."""

from __future__ import annotations

import io

import discord
import httpx
from discord import app_commands
from discord.ext import commands

from ..adapters.base import Adapter
from ..adapters.discord import AttachmentTooLarge
from ..core.errors import RegistryError
from ..core.registry import TeamRegistry
from . import replies
from .utils import guild_id_of, log, log_command, observe, reply

MANAGE_GUILD = discord.Permissions(manage_guild=True)


def _users(*members: discord.Member | None) -> list[discord.Member]:
    return [m for m in members if m is not None]


def register_commands(bot: commands.Bot, registry: TeamRegistry, adapter: Adapter) -> None:
    """Register the roster commands on ``bot.tree``."""
    tree = bot.tree

    @tree.error
    async def on_app_command_error(
        interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, RegistryError):
            await reply(interaction, str(original))
            return
        if isinstance(original, app_commands.NoPrivateMessage):
            await reply(interaction, "This command can only be used in a server.")
            return
        log.exception("Command failed", exc_info=original)
        await reply(interaction, "Something went wrong while running that command.")

    # ------------------------------------------------------------------
    # /team: student self-service
    team = app_commands.Group(
        name="team", description="Form and manage your team", guild_only=True
    )

    @team.command(name="create", description="Create and join a new team, inviting other students")
    @app_commands.describe(
        student="A student to invite",
        student2="Another student to invite",
        student3="Another student to invite",
    )
    async def team_create(
        interaction: discord.Interaction,
        student: discord.Member | None = None,
        student2: discord.Member | None = None,
        student3: discord.Member | None = None,
    ) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        observe(registry, interaction.user)
        others = _users(student, student2, student3)
        for other in others:
            observe(registry, other)
        outcome = registry.create(gid, interaction.user.id, [o.id for o in others])
        await reply(interaction, replies.team_created(outcome))

    @team.command(name="invite", description="Invite other students to join your current team")
    @app_commands.describe(
        student="A student to invite",
        student2="Another student to invite",
        student3="Another student to invite",
    )
    async def team_invite(
        interaction: discord.Interaction,
        student: discord.Member,
        student2: discord.Member | None = None,
        student3: discord.Member | None = None,
    ) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        observe(registry, interaction.user)
        others = _users(student, student2, student3)
        for other in others:
            observe(registry, other)
        outcome = registry.invite(gid, interaction.user.id, [o.id for o in others])
        await reply(interaction, replies.invitations_sent(outcome))

    @team.command(name="invitations", description="Check your pending team invitations")
    async def team_invitations(interaction: discord.Interaction) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        observe(registry, interaction.user)
        await reply(interaction, replies.invitations(registry.invitations(gid, interaction.user.id)))

    @team.command(name="join", description="Join a team you were invited to")
    @app_commands.describe(team_id="The team to join")
    @app_commands.rename(team_id="team")
    async def team_join(interaction: discord.Interaction, team_id: str) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        observe(registry, interaction.user)
        joined = registry.join(gid, interaction.user.id, team_id.strip())
        await reply(interaction, replies.team_joined(joined))

    @team_join.autocomplete("team_id")
    async def team_join_autocomplete(
        interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        if interaction.guild_id is None:
            return []
        student = registry.storage.load_student(interaction.user.id)
        if student is None:
            return []
        current_lower = current.lower()
        return [
            app_commands.Choice(name=req.team_id, value=req.team_id)
            for req in student.pending_requests(interaction.guild_id)
            if current_lower in req.team_id.lower()
        ][:25]

    @team.command(name="leave", description="Leave your current team")
    async def team_leave(interaction: discord.Interaction) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        observe(registry, interaction.user)
        left = registry.leave(gid, interaction.user.id)
        await reply(interaction, replies.team_left(left))

    @team.command(name="rename", description="Rename your team")
    @app_commands.describe(new_name="The new name for the team")
    async def team_rename(interaction: discord.Interaction, new_name: str) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        observe(registry, interaction.user)
        renamed = registry.rename(gid, interaction.user.id, new_name)
        await reply(interaction, replies.team_renamed(renamed))

    tree.add_command(team)

    # ------------------------------------------------------------------
    # /teamedit: administrative overrides
    teamedit = app_commands.Group(
        name="teamedit",
        description="Edit the server's teams",
        guild_only=True,
        default_permissions=MANAGE_GUILD,
    )

    @teamedit.command(name="move", description="Move a student to a team, leaving their previous one")
    @app_commands.describe(student="The student to move", new_team="The team to move them to")
    async def teamedit_move(
        interaction: discord.Interaction, student: discord.Member, new_team: str
    ) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        observe(registry, student)
        moved = registry.admin_move(gid, student.id, new_team.strip())
        await reply(interaction, f"Correctly moved student {student.mention} to team {moved.id}.")

    @teamedit.command(name="add", description="Add a student to a team, creating it if needed")
    @app_commands.describe(student="The student to add", team_id="The team to add them to")
    @app_commands.rename(team_id="team")
    async def teamedit_add(
        interaction: discord.Interaction, student: discord.Member, team_id: str
    ) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        observe(registry, student)
        added = registry.admin_add(gid, student.id, team_id.strip())
        await reply(interaction, f"Correctly added student {student.mention} to team {added.id}.")

    @teamedit.command(name="remove", description="Remove a student from their team")
    @app_commands.describe(student="The student to remove")
    async def teamedit_remove(interaction: discord.Interaction, student: discord.Member) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        observe(registry, student)
        removed = registry.admin_remove(gid, student.id)
        await reply(
            interaction, f"Correctly removed student {student.mention} from team {removed.id}."
        )

    @teamedit.command(name="confirm", description="Confirm a team, freezing its membership")
    @app_commands.describe(team_id="The team to confirm")
    @app_commands.rename(team_id="team")
    async def teamedit_confirm(interaction: discord.Interaction, team_id: str) -> None:
        log_command(interaction)
        confirmed = registry.confirm(guild_id_of(interaction), team_id.strip())
        await reply(interaction, f"Correctly confirmed team {confirmed.id}. It is no longer editable.")

    @teamedit.command(name="unconfirm", description="Unconfirm a team, to make it modifiable")
    @app_commands.describe(team_id="The team to unconfirm")
    @app_commands.rename(team_id="team")
    async def teamedit_unconfirm(interaction: discord.Interaction, team_id: str) -> None:
        log_command(interaction)
        unconfirmed = registry.unconfirm(guild_id_of(interaction), team_id.strip())
        await reply(
            interaction, f"Correctly unconfirmed team {unconfirmed.id}. It is now editable."
        )

    @teamedit.command(name="password", description="Set the password of a team")
    @app_commands.describe(team_id="The team", password="The new password")
    @app_commands.rename(team_id="team")
    async def teamedit_password(
        interaction: discord.Interaction, team_id: str, password: str
    ) -> None:
        log_command(interaction)
        updated = registry.set_password(guild_id_of(interaction), team_id.strip(), password)
        await reply(interaction, f"Correctly set the password for team {updated.id}.")

    @teamedit.command(name="rename", description="Rename a team")
    @app_commands.describe(team_id="The team", new_name="The new name")
    @app_commands.rename(team_id="team")
    async def teamedit_rename(
        interaction: discord.Interaction, team_id: str, new_name: str
    ) -> None:
        log_command(interaction)
        renamed = registry.admin_rename(guild_id_of(interaction), team_id.strip(), new_name)
        await reply(interaction, replies.team_renamed(renamed))

    @teamedit.command(name="delete", description="Delete a team, releasing all its members")
    @app_commands.describe(team_id="The team to delete")
    @app_commands.rename(team_id="team")
    async def teamedit_delete(interaction: discord.Interaction, team_id: str) -> None:
        log_command(interaction)
        registry.delete_team(guild_id_of(interaction), team_id.strip())
        await reply(interaction, f"Team {team_id.strip()} has been deleted.")

    tree.add_command(teamedit)

    # ------------------------------------------------------------------
    # /teamconfig: per-guild team settings
    teamconfig = app_commands.Group(
        name="teamconfig",
        description="Configure how teams are formed",
        guild_only=True,
        default_permissions=MANAGE_GUILD,
    )

    @teamconfig.command(name="capacity", description="Set the maximum number of members per team")
    @app_commands.describe(capacity="Maximum team size")
    async def teamconfig_capacity(
        interaction: discord.Interaction, capacity: app_commands.Range[int, 1, 25]
    ) -> None:
        log_command(interaction)
        config = registry.update_config(guild_id_of(interaction), team_capacity=capacity)
        await reply(interaction, f"Teams may now have up to {config.team_capacity} member(s).")

    @teamconfig.command(name="prefix", description="Set the prefix of new team identifiers")
    @app_commands.describe(prefix="Prefix, e.g. `g` for `g01`")
    async def teamconfig_prefix(interaction: discord.Interaction, prefix: str) -> None:
        log_command(interaction)
        config = registry.update_config(guild_id_of(interaction), team_prefix=prefix.strip())
        await reply(interaction, f"New teams will be named `{config.team_prefix}01`, `{config.team_prefix}02`, ...")

    tree.add_command(teamconfig)

    # ------------------------------------------------------------------
    # Bulk admin commands
    @tree.command(name="passwords", description="Set the passwords for the server's teams")
    @app_commands.describe(file="Text file with one `<team> <password>` pair per line")
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.guild_only()
    async def passwords(interaction: discord.Interaction, file: discord.Attachment) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            content = await adapter.fetch_attachment(file.url)
        except (httpx.HTTPError, AttachmentTooLarge, UnicodeDecodeError) as exc:
            log.warning("Could not read passwords file %s: %s", file.url, exc)
            await reply(interaction, "Could not read the provided file.")
            return
        mapping = registry.parse_password_file(content)
        updated = registry.import_passwords(gid, mapping)
        await reply(
            interaction,
            f"Stored {len(mapping)} password(s); {len(updated)} existing team(s) updated.",
        )

    @tree.command(name="teamdump", description="Export the server's teams and their members")
    @app_commands.describe(channel="Channel to also post the list of teams to")
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.guild_only()
    async def teamdump(
        interaction: discord.Interaction, channel: discord.TextChannel | None = None
    ) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        entries = registry.team_dump(gid)
        await interaction.response.defer(ephemeral=True, thinking=True)
        if channel is not None:
            await adapter.send_messages(str(channel.id), replies.dump_messages(entries))
        text = registry.dump_text(entries)
        await reply(
            interaction,
            "List of teams on the server:",
            file=discord.File(io.BytesIO(text.encode("utf-8")), filename="team_list.txt"),
        )

    # ------------------------------------------------------------------
    # Personal settings
    settings = app_commands.Group(
        name="settings", description="Your settings for this server", guild_only=True
    )

    @settings.command(name="get", description="Print your current settings")
    async def settings_get(interaction: discord.Interaction) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        student = observe(registry, interaction.user)
        await reply(interaction, replies.settings(student, gid))

    @settings.command(name="set_queue", description="Change your default queue for requests")
    @app_commands.describe(queue="The queue to use by default")
    async def settings_set_queue(interaction: discord.Interaction, queue: str) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        observe(registry, interaction.user)
        registry.set_preferred_queue(gid, interaction.user.id, queue.strip())
        await reply(interaction, f"Your default queue for requests has been set to `{queue.strip()}`")

    tree.add_command(settings)

    @tree.command(name="history", description="Get your most recent requests")
    @app_commands.guild_only()
    async def history(interaction: discord.Interaction) -> None:
        log_command(interaction)
        gid = guild_id_of(interaction)
        observe(registry, interaction.user)
        await reply(interaction, replies.history(registry.history(gid, interaction.user.id)))
