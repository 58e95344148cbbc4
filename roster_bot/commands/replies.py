"""Plain-text replies for the slash commands.

Kept free of ``discord`` imports so the wording can be tested directly.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from ..core.models import Student, Team, TeamRequest
from ..core.registry import InviteOutcome

#: Discord refuses messages longer than this.
MESSAGE_LIMIT = 2000

_SKIP_REASONS = {
    "self": "You cannot invite yourself to your own team.",
    "unknown": "<@{id}> has not used the bot yet and cannot be invited.",
    "affiliated": "<@{id}> is already in a team in this server.",
    "pending": "<@{id}> already has an invitation to this team.",
}


def mention(user_id: int) -> str:
    return f"<@{user_id}>"


def skipped_lines(outcome: InviteOutcome) -> list[str]:
    return [
        _SKIP_REASONS.get(reason, "<@{id}> could not be invited.").format(id=uid)
        for uid, reason in outcome.skipped.items()
    ]


def team_created(outcome: InviteOutcome) -> str:
    tid = outcome.team.id
    lines = [f"Team {tid} has been created successfully."]
    if outcome.invited:
        lines.append(
            f"Tell your partner(s) to use `/team join {tid}` to join the team, "
            "or `/team invitations` to check their invitations."
        )
    lines.extend(skipped_lines(outcome))
    return "\n".join(lines)


def invitations_sent(outcome: InviteOutcome) -> str:
    lines = []
    if outcome.invited:
        invited = ", ".join(mention(uid) for uid in outcome.invited)
        lines.append(f"Invitations to team {outcome.team.id} sent to {invited}.")
    else:
        lines.append("No invitations were sent.")
    lines.extend(skipped_lines(outcome))
    return "\n".join(lines)


def invitations(requests: Sequence[TeamRequest]) -> str:
    if not requests:
        return "You do not have any team invitations."
    lines = ["You have the following team invitations:"]
    for req in requests:
        team_id, sender_id = req.as_tuple()
        lines.append(f"- Team {team_id} by {mention(sender_id)}")
    return "\n".join(lines)


def team_joined(team: Team) -> str:
    return f"You have joined team {team.id} successfully."


def team_left(team: Team) -> str:
    if not team.members:
        return f"You have left team {team.id}. The team was empty and has been deleted."
    return f"You have left team {team.id} successfully."


def team_renamed(team: Team) -> str:
    return f"Team {team.id} has been correctly renamed to \"{team.name}\"."


def settings(student: Student, guild_id: int) -> str:
    lines = ["Your current settings for this server are:"]
    creds = student.credentials.get(guild_id)
    if creds is None:
        lines.append("- You are not in a team in this server")
    else:
        lines.append(f"- Team: `{creds.team}`")
        if creds.password is None:
            lines.append("- Password: [Not set]")
        else:
            lines.append(f"- Password: ||`{creds.password}`||")
    queue = student.preferred_queue.get(guild_id)
    lines.append(
        f"- Default queue for requests: `{queue}`"
        if queue
        else "- Default queue for requests: [Not set]"
    )
    last = student.last_command.get(guild_id)
    if last:
        lines.append(f"- Last request command: `{last}`")
    return "\n".join(lines)


def history(request_ids: Sequence[int]) -> str:
    if not request_ids:
        return "You have not sent any requests in this server yet."
    lines = ["**Last requests sent:**"]
    lines.extend(f"- Request {rid}" for rid in request_ids)
    return "\n".join(lines)


def dump_messages(entries: Iterable[tuple[str, list[int]]]) -> list[str]:
    """Render the team list as Discord messages, each under :data:`MESSAGE_LIMIT`."""
    header = "## List of teams:\n\n"
    messages: list[str] = []
    current = header
    seen = False
    for team_id, members in entries:
        seen = True
        line = f"**{team_id}** " + " ".join(mention(m) for m in members) + "\n"
        if len(current) + len(line) > MESSAGE_LIMIT:
            messages.append(current)
            current = ""
        current += line
    if not seen:
        return [header + "No teams yet.\n"]
    messages.append(current)
    return messages
