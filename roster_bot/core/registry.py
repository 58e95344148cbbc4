"""Team registry: the operations that form, change and lock teams.

:class:`TeamRegistry` is the only writer of roster records. Every operation
follows the same pattern: load the records it needs, check the rules,
mutate the models in memory and save each touched record as a whole.

Locking
-------
Operations scoped to a guild hold that guild's lock for their whole
duration, so teams, the guild aggregate and the guild-scoped parts of
student records (credentials and invitations) only ever change under it.
Student records are additionally re-read and saved under a per-student
lock (:meth:`TeamRegistry._update_student`), which is also what
guild-independent updates (preferences, history) take. A student lock is
never held while acquiring another lock.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from pydantic import ValidationError

from ..config import GuildConfig
from ..logging_config import get_logger
from .errors import (
    AlreadyAffiliated,
    CapacityExceeded,
    InvalidPasswordFile,
    NameConflict,
    NotAffiliated,
    NotFound,
    NotInvited,
    RegistryError,
    TeamLocked,
)
from .models import HISTORY_LIMIT, GuildTeamInfo, Student, Team, TeamRequest
from .storage import JSONStorage

log = get_logger("registry")

ConfigProvider = Callable[[int], GuildConfig]


@dataclass
class InviteOutcome:
    """Result of sending a batch of invitations."""

    team: Team
    invited: list[int] = field(default_factory=list)
    # invitee id -> "self" | "unknown" | "affiliated" | "pending"
    skipped: dict[int, str] = field(default_factory=dict)


class TeamRegistry:
    """Registry operations over a :class:`JSONStorage`."""

    def __init__(
        self, storage: JSONStorage, config_provider: ConfigProvider | None = None
    ) -> None:
        self.storage = storage
        self._config_provider = config_provider or self._stored_config

    # ------------------------------------------------------------------
    # Configuration
    def _stored_config(self, guild_id: int) -> GuildConfig:
        return self.storage.load_config(guild_id) or GuildConfig()

    def config(self, guild_id: int) -> GuildConfig:
        return self._config_provider(guild_id)

    def update_config(
        self,
        guild_id: int,
        team_capacity: int | None = None,
        team_prefix: str | None = None,
    ) -> GuildConfig:
        """Change the stored guild configuration.

        A new prefix is propagated to the guild's team metadata. Teams that
        already exist keep their identifiers.
        """
        with self._guild(guild_id):
            current = self._stored_config(guild_id)
            changes = {}
            if team_capacity is not None:
                changes["team_capacity"] = team_capacity
            if team_prefix is not None:
                changes["team_prefix"] = team_prefix
            try:
                config = GuildConfig.model_validate({**current.model_dump(), **changes})
            except ValidationError as exc:
                problems = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                    for err in exc.errors()
                )
                raise RegistryError(f"Invalid team settings ({problems}).") from exc
            self.storage.save_config(guild_id, config)
            info = self.storage.load_guild_info(guild_id)
            if info is not None and info.prefix != config.team_prefix:
                info.update_prefix(config.team_prefix)
                self.storage.save_guild_info(info)
            log.info("Guild %s configuration updated: %s", guild_id, changes)
            return config

    # ------------------------------------------------------------------
    # Locking helpers
    def _guild(self, guild_id: int):
        return self.storage.lock(("guild", guild_id))

    def _update_student(
        self, student_id: int, mutate: Callable[[Student], object]
    ) -> Student:
        """Re-read, mutate and save a student record under its own lock."""
        with self.storage.lock(("student", student_id)):
            student = self.storage.load_student(student_id)
            if student is None:
                raise NotFound(f"<@{student_id}> is not registered.")
            mutate(student)
            self.storage.save_student(student)
            return student

    # ------------------------------------------------------------------
    # Lookups
    def get_student(self, student_id: int) -> Student:
        student = self.storage.load_student(student_id)
        if student is None:
            raise NotFound(f"<@{student_id}> is not registered.")
        return student

    def get_or_create_student(self, student_id: int, name: str) -> Student:
        """Return the student, creating the record on first observation."""
        with self.storage.lock(("student", student_id)):
            student = self.storage.load_student(student_id)
            if student is None:
                student = Student(id=student_id, name=name)
                self.storage.save_student(student)
                log.info("Registered student %s (%s)", name, student_id)
            elif name and student.name != name:
                student.name = name
                self.storage.save_student(student)
            return student

    def find_team(self, guild_id: int, team_id: str) -> Team | None:
        return self.storage.load_team(guild_id, team_id)

    def get_team(self, guild_id: int, team_id: str) -> Team:
        team = self.find_team(guild_id, team_id)
        if team is None:
            raise NotFound(f"Team `{team_id}` does not exist.")
        return team

    def guild_info(self, guild_id: int) -> GuildTeamInfo:
        """Return the guild's team metadata, creating it on first use."""
        info = self.storage.load_guild_info(guild_id)
        if info is None:
            info = GuildTeamInfo(guild_id=guild_id, prefix=self.config(guild_id).team_prefix)
            self.storage.save_guild_info(info)
        return info

    def student_team(self, guild_id: int, student_id: int) -> Team:
        """Return the team ``student_id`` belongs to in ``guild_id``."""
        student = self.get_student(student_id)
        team_id = student.team_id(guild_id)
        if team_id is None:
            raise NotAffiliated()
        team = self.find_team(guild_id, team_id)
        if team is None:
            # Credentials outlived their team; drop them so the student can move on.
            log.warning(
                "Student %s referenced missing team %s in guild %s",
                student_id, team_id, guild_id,
            )
            self._update_student(student_id, lambda s: s.remove_team(guild_id))
            raise NotAffiliated()
        return team

    # ------------------------------------------------------------------
    # Team lifecycle
    def _found_team(
        self, info: GuildTeamInfo, founder_id: int, team_id: str | None = None
    ) -> Team:
        """Allocate an identifier and create a team whose first member is the founder.

        The caller saves ``info``.
        """
        if team_id is None:
            team_id = info.register_new()
        else:
            info.register_specific(team_id)
        team = Team(id=team_id, guild_id=info.guild_id, password=info.passwords.get(team_id))
        try:
            self._add_member(team, founder_id)
        except RegistryError:
            info.discard(team_id)
            raise
        if not info.name_taken(team.name, team.id):
            info.claim_name(team.name, team.id)
        log.info("Team %s created in guild %s", team.id, info.guild_id)
        return team

    def create_team(
        self, guild_id: int, founder_id: int, team_id: str | None = None
    ) -> Team:
        """Create a team with ``founder_id`` as its only member.

        ``team_id`` registers a specific identifier, as administrators do;
        otherwise the next free identifier is used.
        """
        with self._guild(guild_id):
            founder = self.get_student(founder_id)
            if founder.team_id(guild_id) is not None:
                raise AlreadyAffiliated(f"<@{founder_id}> is already in a team in this server.")
            info = self.guild_info(guild_id)
            team = self._found_team(info, founder_id, team_id)
            self.storage.save_guild_info(info)
            return team

    def _add_member(self, team: Team, student_id: int) -> bool:
        if team.is_member(student_id):
            return False

        def attach(student: Student) -> None:
            student.add_team(team.guild_id, team.id, team.password)

        # The team is written first so a refused team record never leaves
        # the student holding credentials for it.
        team.members.add(student_id)
        try:
            self.storage.save_team(team)
        except RegistryError:
            team.members.discard(student_id)
            raise
        try:
            self._update_student(student_id, attach)
        except RegistryError:
            team.members.discard(student_id)
            if team.members:
                self.storage.save_team(team)
            else:
                self.storage.delete_team(team.guild_id, team.id)
            raise
        log.info("Student %s joined team %s in guild %s", student_id, team.id, team.guild_id)
        return True

    def add_member(self, guild_id: int, team_id: str, student_id: int) -> Team:
        """Add a student to an existing team. Adding a member again changes nothing."""
        with self._guild(guild_id):
            team = self.get_team(guild_id, team_id)
            self._add_member(team, student_id)
            return team

    def _detach(self, team: Team, student_id: int) -> None:
        def detach(student: Student) -> None:
            if student.team_id(team.guild_id) == team.id:
                student.remove_team(team.guild_id)

        try:
            self._update_student(student_id, detach)
        except NotFound:
            log.warning("Member %s of team %s has no student record", student_id, team.id)

    def _remove_member(self, team: Team, student_id: int, info: GuildTeamInfo) -> bool:
        """Remove a member, retiring the team when it empties. The caller saves ``info``."""
        if not team.is_member(student_id):
            return False
        team.members.discard(student_id)
        self._detach(team, student_id)
        log.info("Student %s left team %s in guild %s", student_id, team.id, team.guild_id)
        if team.members:
            self.storage.save_team(team)
        else:
            self._delete(team, info)
        return True

    def remove_member(self, guild_id: int, team_id: str, student_id: int) -> Team:
        """Remove a student from a team. The returned team is gone if it has no members."""
        with self._guild(guild_id):
            team = self.get_team(guild_id, team_id)
            info = self.guild_info(guild_id)
            if self._remove_member(team, student_id, info):
                self.storage.save_guild_info(info)
            return team

    def _delete(self, team: Team, info: GuildTeamInfo) -> None:
        for member in sorted(team.members):
            self._detach(team, member)
        team.members.clear()
        self.storage.delete_team(team.guild_id, team.id)
        if info.names.get(team.name) == team.id:
            info.release_name(team.name)
        info.discard(team.id)
        log.info("Team %s deleted from guild %s", team.id, team.guild_id)

    def delete_team(self, guild_id: int, team_id: str) -> None:
        """Delete a team, releasing its members, name and identifier."""
        with self._guild(guild_id):
            team = self.get_team(guild_id, team_id)
            info = self.guild_info(guild_id)
            self._delete(team, info)
            self.storage.save_guild_info(info)

    def _set_password(self, team: Team, password: str) -> None:
        team.password = password

        def refresh(student: Student) -> None:
            if student.team_id(team.guild_id) == team.id:
                student.set_password(team.guild_id, password)
            else:
                log.warning(
                    "Student %s is listed in team %s but holds no credentials for it",
                    student.id, team.id,
                )

        for member in sorted(team.members):
            self._update_student(member, refresh)
        self.storage.save_team(team)
        log.info("Password changed for team %s in guild %s", team.id, team.guild_id)

    def set_password(self, guild_id: int, team_id: str, password: str) -> Team:
        """Set the team password and copy it into every member's credentials."""
        with self._guild(guild_id):
            team = self.get_team(guild_id, team_id)
            self._set_password(team, password)
            return team

    def _set_confirmed(self, guild_id: int, team_id: str, confirmed: bool) -> Team:
        with self._guild(guild_id):
            team = self.get_team(guild_id, team_id)
            team.confirmed = confirmed
            self.storage.save_team(team)
            log.info(
                "Team %s in guild %s %s",
                team_id, guild_id, "confirmed" if confirmed else "unconfirmed",
            )
            return team

    def confirm(self, guild_id: int, team_id: str) -> Team:
        return self._set_confirmed(guild_id, team_id, True)

    def unconfirm(self, guild_id: int, team_id: str) -> Team:
        return self._set_confirmed(guild_id, team_id, False)

    def _change_name(self, team: Team, name: str, info: GuildTeamInfo) -> bool:
        if info.name_taken(name, team.id):
            return False
        if info.names.get(team.name) == team.id:
            info.release_name(team.name)
        team.name = name
        info.claim_name(name, team.id)
        self.storage.save_team(team)
        self.storage.save_guild_info(info)
        return True

    def change_name(self, guild_id: int, team_id: str, name: str) -> bool:
        """Rename a team. Returns ``False`` when another team already uses ``name``."""
        with self._guild(guild_id):
            team = self.get_team(guild_id, team_id)
            return self._change_name(team, name, self.guild_info(guild_id))

    # ------------------------------------------------------------------
    # Invitation workflow
    def _send_invitations(
        self, team: Team, inviter_id: int, invitee_ids: Iterable[int]
    ) -> InviteOutcome:
        outcome = InviteOutcome(team=team)
        for invitee_id in invitee_ids:
            if invitee_id == inviter_id:
                outcome.skipped[invitee_id] = "self"
                continue
            invitee = self.storage.load_student(invitee_id)
            if invitee is None:
                outcome.skipped[invitee_id] = "unknown"
                continue
            if invitee.team_id(team.guild_id) is not None:
                outcome.skipped[invitee_id] = "affiliated"
                continue
            if invitee.has_request(team.guild_id, team.id):
                outcome.skipped[invitee_id] = "pending"
                continue

            def remember(student: Student) -> None:
                student.add_team_request(team.guild_id, team.id, inviter_id)

            self._update_student(invitee_id, remember)
            outcome.invited.append(invitee_id)
        if outcome.invited:
            log.info(
                "Student %s invited %s to team %s in guild %s",
                inviter_id, outcome.invited, team.id, team.guild_id,
            )
        return outcome

    def create(
        self, guild_id: int, inviter_id: int, invitee_ids: Iterable[int] = ()
    ) -> InviteOutcome:
        """Create a team for ``inviter_id`` and invite ``invitee_ids`` to it.

        Invitees that cannot be invited are reported in the outcome; the
        team is created regardless.
        """
        invitees = list(dict.fromkeys(invitee_ids))
        with self._guild(guild_id):
            inviter = self.get_student(inviter_id)
            if inviter.team_id(guild_id) is not None:
                raise AlreadyAffiliated()
            capacity = self.config(guild_id).team_capacity
            if len(invitees) > capacity - 1:
                raise CapacityExceeded(
                    f"You can only invite up to {capacity - 1} other student(s) to the team."
                )
            info = self.guild_info(guild_id)
            team = self._found_team(info, inviter_id)
            self.storage.save_guild_info(info)
            return self._send_invitations(team, inviter_id, invitees)

    def invite(
        self, guild_id: int, inviter_id: int, invitee_ids: Iterable[int]
    ) -> InviteOutcome:
        """Invite students to the inviter's current team."""
        invitees = list(dict.fromkeys(invitee_ids))
        with self._guild(guild_id):
            team = self.student_team(guild_id, inviter_id)
            if team.confirmed:
                raise TeamLocked(
                    "You can no longer invite other students to your team, as it is definitive."
                )
            remaining = max(self.config(guild_id).team_capacity - team.size, 0)
            if len(invitees) > remaining:
                raise CapacityExceeded(
                    f"You can only invite up to {remaining} other student(s) to the team."
                )
            return self._send_invitations(team, inviter_id, invitees)

    def invitations(self, guild_id: int, student_id: int) -> list[TeamRequest]:
        return self.get_student(student_id).pending_requests(guild_id)

    def join(self, guild_id: int, student_id: int, team_id: str) -> Team:
        """Accept an invitation. All other invitations in the guild are dropped."""
        with self._guild(guild_id):
            student = self.get_student(student_id)
            if student.team_id(guild_id) is not None:
                raise AlreadyAffiliated()
            if not student.has_request(guild_id, team_id):
                raise NotInvited()
            team = self.find_team(guild_id, team_id)
            if team is None:
                raise NotFound(f"Team `{team_id}` no longer exists.")
            if team.confirmed:
                raise TeamLocked(f"Team `{team_id}` is confirmed and cannot take new members.")
            if team.size >= self.config(guild_id).team_capacity:
                raise CapacityExceeded(f"Team `{team_id}` is already full.")
            self._add_member(team, student_id)
            return team

    def leave(self, guild_id: int, student_id: int) -> Team:
        """Leave the current team. An emptied team is deleted."""
        with self._guild(guild_id):
            team = self.student_team(guild_id, student_id)
            if team.confirmed:
                raise TeamLocked("You can no longer leave your team, as it is definitive.")
            info = self.guild_info(guild_id)
            self._remove_member(team, student_id, info)
            self.storage.save_guild_info(info)
            return team

    def rename(self, guild_id: int, student_id: int, name: str) -> Team:
        """Rename the student's team, refusing names used by another team."""
        name = name.strip()
        if not name:
            raise RegistryError("Team names cannot be empty.")
        with self._guild(guild_id):
            team = self.student_team(guild_id, student_id)
            if not self._change_name(team, name, self.guild_info(guild_id)):
                raise NameConflict(f"Another team in this server is already called \"{name}\".")
            return team

    # ------------------------------------------------------------------
    # Administrative overrides
    def _place(self, guild_id: int, student_id: int, team_id: str, info: GuildTeamInfo) -> Team:
        team = self.find_team(guild_id, team_id)
        if team is None:
            return self._found_team(info, student_id, team_id)
        self._add_member(team, student_id)
        return team

    def admin_add(self, guild_id: int, student_id: int, team_id: str) -> Team:
        """Put an unaffiliated student in ``team_id``, creating the team if needed.

        Capacity and confirmation are not enforced for administrators.
        """
        with self._guild(guild_id):
            student = self.get_student(student_id)
            current = student.team_id(guild_id)
            if current == team_id:
                return self.get_team(guild_id, team_id)
            if current is not None:
                raise AlreadyAffiliated(f"<@{student_id}> is already in team `{current}`.")
            info = self.guild_info(guild_id)
            team = self._place(guild_id, student_id, team_id, info)
            self.storage.save_guild_info(info)
            return team

    def admin_move(self, guild_id: int, student_id: int, team_id: str) -> Team:
        """Move a student to ``team_id``, leaving their previous team if any."""
        with self._guild(guild_id):
            student = self.get_student(student_id)
            current = student.team_id(guild_id)
            if current == team_id:
                return self.get_team(guild_id, team_id)
            info = self.guild_info(guild_id)
            if self.find_team(guild_id, team_id) is None:
                # Validate the identifier before touching the old team.
                info.register_specific(team_id)
                info.discard(team_id)
            if current is not None:
                old = self.find_team(guild_id, current)
                if old is not None:
                    self._remove_member(old, student_id, info)
                else:
                    self._update_student(student_id, lambda s: s.remove_team(guild_id))
            team = self.find_team(guild_id, team_id)
            if team is None:
                # Reclaim the hole reserved above.
                team = self._found_team(info, student_id, team_id)
            else:
                self._add_member(team, student_id)
            self.storage.save_guild_info(info)
            log.info("Student %s moved from %s to %s in guild %s", student_id, current, team_id, guild_id)
            return team

    def admin_remove(self, guild_id: int, student_id: int) -> Team:
        """Remove a student from their team, even if it is confirmed."""
        with self._guild(guild_id):
            team = self.student_team(guild_id, student_id)
            info = self.guild_info(guild_id)
            self._remove_member(team, student_id, info)
            self.storage.save_guild_info(info)
            return team

    def admin_rename(self, guild_id: int, team_id: str, name: str) -> Team:
        name = name.strip()
        if not name:
            raise RegistryError("Team names cannot be empty.")
        with self._guild(guild_id):
            team = self.get_team(guild_id, team_id)
            if not self._change_name(team, name, self.guild_info(guild_id)):
                raise NameConflict(f"Another team in this server is already called \"{name}\".")
            return team

    # ------------------------------------------------------------------
    # Passwords
    @staticmethod
    def parse_password_file(text: str) -> dict[str, str]:
        """Parse ``<team_id> <password>`` lines. Blank lines are ignored."""
        passwords: dict[str, str] = {}
        for lineno, line in enumerate(text.splitlines(), start=1):
            parts = line.split()
            if not parts:
                continue
            if len(parts) < 2:
                raise InvalidPasswordFile(
                    f"Line {lineno} of the passwords file has no password: `{line.strip()}`"
                )
            passwords[parts[0]] = parts[1]
        return passwords

    def import_passwords(self, guild_id: int, passwords: dict[str, str]) -> list[str]:
        """Apply passwords to existing teams and keep them for teams created later.

        Returns the identifiers of the existing teams that were updated.
        """
        with self._guild(guild_id):
            updated = []
            for team_id, password in passwords.items():
                try:
                    team = self.find_team(guild_id, team_id)
                except NotFound:
                    continue
                if team is not None:
                    self._set_password(team, password)
                    updated.append(team_id)
            info = self.guild_info(guild_id)
            info.update_passwords(passwords)
            self.storage.save_guild_info(info)
            log.info(
                "Imported %d password(s) for guild %s (%d existing team(s) updated)",
                len(passwords), guild_id, len(updated),
            )
            return updated

    # ------------------------------------------------------------------
    # Reporting
    def team_dump(self, guild_id: int) -> list[tuple[str, list[int]]]:
        """Return every team with its members, ordered by identifier."""
        info = self.storage.load_guild_info(guild_id)
        prefix = info.prefix if info else self.config(guild_id).team_prefix

        def order(team: Team) -> tuple[int, str]:
            suffix = team.id[len(prefix):] if team.id.startswith(prefix) else ""
            return (int(suffix), team.id) if suffix.isdecimal() else (-1, team.id)

        teams = sorted(self.storage.all_teams(guild_id), key=order)
        return [(team.id, sorted(team.members)) for team in teams if team.members]

    @staticmethod
    def dump_text(entries: Iterable[tuple[str, list[int]]]) -> str:
        lines = [f"{team_id} {member}" for team_id, members in entries for member in members]
        return "".join(line + "\n" for line in lines)

    # ------------------------------------------------------------------
    # Student preferences
    def set_preferred_queue(self, guild_id: int, student_id: int, queue: str) -> Student:
        return self._update_student(student_id, lambda s: s.set_preferred_queue(guild_id, queue))

    def set_last_command(self, guild_id: int, student_id: int, command: str) -> Student:
        return self._update_student(student_id, lambda s: s.set_last_command(guild_id, command))

    def record_request(self, guild_id: int, student_id: int, request_id: int) -> Student:
        return self._update_student(student_id, lambda s: s.add_request(guild_id, request_id))

    def history(
        self, guild_id: int, student_id: int, limit: int = HISTORY_LIMIT
    ) -> list[int]:
        return self.get_student(student_id).recent_requests(guild_id, limit)


__all__ = ["InviteOutcome", "TeamRegistry"]
