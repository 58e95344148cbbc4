"""Data models for the team roster.

The models are implemented using :mod:`pydantic` so that they provide
runtime validation and convenient serialisation to and from JSON. They only
mutate themselves in memory; persisting the changes is the job of
:class:`~roster_bot.core.registry.TeamRegistry`, which always updates both
sides of a student/team relationship within the same operation.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from .errors import AlreadyInUse, InvalidTeamId, NotAffiliated

#: Number of past submission requests remembered per student and guild.
HISTORY_LIMIT = 30

#: Highest team number that can be registered explicitly.
MAX_TEAM_NUMBER = 65535


class Credentials(BaseModel):
    """A student's view of the team they belong to in one guild."""

    team: str
    password: str | None = None


class TeamRequest(BaseModel):
    """An invitation to join ``team_id``, sent by ``sender_id``.

    Two requests are equal when they point to the same team. Since a student
    belongs to at most one team per guild, there is never a reason to keep
    two invitations to the same team around.
    """

    team_id: str
    sender_id: int

    @classmethod
    def from_tuple(cls, pair: tuple[str, int]) -> TeamRequest:
        team_id, sender_id = pair
        return cls(team_id=team_id, sender_id=sender_id)

    def as_tuple(self) -> tuple[str, int]:
        return (self.team_id, self.sender_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TeamRequest):
            return NotImplemented
        return self.team_id == other.team_id

    def __hash__(self) -> int:
        return hash(self.team_id)


class Student(BaseModel):
    """A person observed in one or more guilds.

    Attributes
    ----------
    id:
        Discord user ID, stable across name changes.
    name:
        Last known display name.
    credentials:
        Team membership per guild.
    preferred_queue:
        Default submission queue per guild.
    last_command:
        Last submission command used per guild.
    team_requests:
        Pending invitations per guild. Always empty for guilds in which the
        student already holds credentials.
    request_history:
        Submission request identifiers per guild, most recent last.

    """

    id: int
    name: str
    credentials: dict[int, Credentials] = Field(default_factory=dict)
    preferred_queue: dict[int, str] = Field(default_factory=dict)
    last_command: dict[int, str] = Field(default_factory=dict)
    team_requests: dict[int, list[TeamRequest]] = Field(default_factory=dict)
    request_history: dict[int, list[int]] = Field(default_factory=dict)

    # ------------------------------------------------------------------
    # Team membership
    def team_id(self, guild_id: int) -> str | None:
        creds = self.credentials.get(guild_id)
        return creds.team if creds else None

    def add_team(self, guild_id: int, team_id: str, password: str | None) -> None:
        """Record membership of ``team_id``, dropping all pending invitations."""
        self.credentials[guild_id] = Credentials(team=team_id, password=password)
        self.team_requests.pop(guild_id, None)

    def remove_team(self, guild_id: int) -> None:
        self.credentials.pop(guild_id, None)

    def set_password(self, guild_id: int, password: str | None) -> None:
        creds = self.credentials.get(guild_id)
        if creds is None:
            raise NotAffiliated(f"Student {self.id} has no team in guild {guild_id}.")
        creds.password = password

    # ------------------------------------------------------------------
    # Invitations
    def add_team_request(self, guild_id: int, team_id: str, sender_id: int) -> bool:
        """Store an invitation. Returns ``False`` if one for the team was pending."""
        request = TeamRequest(team_id=team_id, sender_id=sender_id)
        requests = self.team_requests.setdefault(guild_id, [])
        if request in requests:
            return False
        requests.append(request)
        return True

    def pending_requests(self, guild_id: int) -> list[TeamRequest]:
        return list(self.team_requests.get(guild_id, []))

    def has_request(self, guild_id: int, team_id: str) -> bool:
        return any(r.team_id == team_id for r in self.team_requests.get(guild_id, []))

    # ------------------------------------------------------------------
    # Preferences and history
    def set_preferred_queue(self, guild_id: int, queue: str) -> None:
        self.preferred_queue[guild_id] = queue

    def set_last_command(self, guild_id: int, command: str) -> None:
        self.last_command[guild_id] = command

    def add_request(self, guild_id: int, request_id: int) -> None:
        history = self.request_history.setdefault(guild_id, [])
        history.append(request_id)
        del history[:-HISTORY_LIMIT]

    def recent_requests(self, guild_id: int, limit: int = HISTORY_LIMIT) -> list[int]:
        if limit <= 0:
            return []
        return self.request_history.get(guild_id, [])[-limit:]


class Team(BaseModel):
    """A study team. ``members`` is never empty while the team is stored."""

    id: str
    guild_id: int
    password: str | None = None
    name: str = ""
    members: set[int] = Field(default_factory=set)
    confirmed: bool = False

    def model_post_init(self, __context: object) -> None:
        if not self.name:
            self.name = self.id

    def is_member(self, student_id: int) -> bool:
        return student_id in self.members

    @property
    def size(self) -> int:
        return len(self.members)


class GuildTeamInfo(BaseModel):
    """Per-guild team metadata: identifier allocation, passwords and names.

    ``count`` is the highest identifier number ever issued and never goes
    down. Retired identifiers are kept in ``holes`` and handed out again,
    most recently retired first.
    """

    guild_id: int
    prefix: str = "g"
    count: int = 0
    holes: list[str] = Field(default_factory=list)
    passwords: dict[str, str] = Field(default_factory=dict)
    names: dict[str, str] = Field(default_factory=dict)

    # ------------------------------------------------------------------
    # Identifier allocation
    def format_id(self, number: int) -> str:
        return f"{self.prefix}{number:02d}"

    def parse_number(self, team_id: str) -> int:
        """Return the numeric part of ``team_id``.

        Only identifiers in the form :meth:`format_id` produces are accepted,
        so `g5` and `g005` are refused rather than aliasing `g05`.
        """
        suffix = team_id[len(self.prefix):]
        if team_id.startswith(self.prefix) and re.fullmatch(r"[0-9]+", suffix):
            number = int(suffix)
            if 0 < number <= MAX_TEAM_NUMBER and team_id == self.format_id(number):
                return number
        raise InvalidTeamId(
            f"`{team_id}` is not a valid team identifier "
            f"(expected `{self.prefix}` followed by a number from 01 to {MAX_TEAM_NUMBER})."
        )

    def register_new(self) -> str:
        if self.holes:
            return self.holes.pop()
        self.count += 1
        return self.format_id(self.count)

    def register_specific(self, team_id: str) -> None:
        number = self.parse_number(team_id)
        if number > self.count:
            # Identifiers skipped over become available for later teams.
            for n in range(self.count + 1, number):
                self.holes.append(self.format_id(n))
            self.count = number
        elif team_id in self.holes:
            self.holes = [h for h in self.holes if h != team_id]
        else:
            raise AlreadyInUse(
                f"Team identifier `{team_id}` is already in use in this server."
            )

    def discard(self, team_id: str) -> None:
        self.holes.append(team_id)

    # ------------------------------------------------------------------
    # Configuration
    def update_prefix(self, prefix: str) -> None:
        self.prefix = prefix

    def update_passwords(self, passwords: dict[str, str]) -> None:
        self.passwords = dict(passwords)

    # ------------------------------------------------------------------
    # Name map
    def name_taken(self, name: str, team_id: str) -> bool:
        owner = self.names.get(name)
        return owner is not None and owner != team_id

    def claim_name(self, name: str, team_id: str) -> None:
        self.names[name] = team_id

    def release_name(self, name: str) -> None:
        self.names.pop(name, None)
