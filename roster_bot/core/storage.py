"""JSON-backed storage for roster records.

Each student, team and guild aggregate lives in its own file so that records
can be read and written independently::

    <root>/users/<student_id>.json
    <root>/guilds/<guild_id>/config.json
    <root>/guilds/<guild_id>/teams/info.json
    <root>/guilds/<guild_id>/teams/<team_id>.json

Saves replace the whole file atomically. There is no cross-record
transaction: callers that need several records to change together hold the
relevant :meth:`JSONStorage.lock` for the duration of the operation.
"""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Hashable, Iterator
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from ..config import GuildConfig
from .errors import NotFound, StorageError
from .models import GuildTeamInfo, Student, Team

M = TypeVar("M", bound=BaseModel)

INFO_FILE = "info.json"


class JSONStorage:
    """Persist :class:`Student`, :class:`Team` and :class:`GuildTeamInfo` data."""

    def __init__(self, root: Path | str) -> None:
        """Initialise storage rooted at ``root``, creating its directories."""
        self.root = Path(root)
        self.users_dir = self.root / "users"
        self.guilds_dir = self.root / "guilds"
        try:
            self.users_dir.mkdir(parents=True, exist_ok=True)
            self.guilds_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create data directory {self.root}: {exc}") from exc
        self._locks: dict[Hashable, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Locking
    def _lock_for(self, key: Hashable) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def lock(self, *keys: tuple) -> Iterator[None]:
        """Hold one exclusive lock per record key.

        Keys are acquired in sorted order so two operations asking for the
        same records cannot deadlock.
        """
        with ExitStack() as stack:
            for key in sorted(set(keys), key=repr):
                stack.enter_context(self._lock_for(key))
            yield

    # ------------------------------------------------------------------
    # Internal helpers
    def _read(self, path: Path, model: type[M]) -> M | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Cannot read {path}: {exc}") from exc
        try:
            return model.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StorageError(f"Cannot parse {path} as a {model.__name__}: {exc}") from exc

    def _write(self, path: Path, record: BaseModel) -> None:
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(record.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError as exc:
            raise StorageError(f"Cannot write {path}: {exc}") from exc

    def _teams_dir(self, guild_id: int) -> Path:
        return self.guilds_dir / str(guild_id) / "teams"

    def _team_path(self, guild_id: int, team_id: str) -> Path:
        if not team_id or "/" in team_id or "\\" in team_id or team_id.startswith("."):
            raise NotFound(f"Team `{team_id}` does not exist.")
        if team_id + ".json" == INFO_FILE:
            raise NotFound(f"Team `{team_id}` does not exist.")
        return self._teams_dir(guild_id) / f"{team_id}.json"

    # ------------------------------------------------------------------
    # Students
    def load_student(self, student_id: int) -> Student | None:
        """Retrieve a student by their Discord user ID."""
        return self._read(self.users_dir / f"{student_id}.json", Student)

    def save_student(self, student: Student) -> None:
        self._write(self.users_dir / f"{student.id}.json", student)

    def all_students(self) -> Iterator[Student]:
        """Yield every stored student."""
        for path in sorted(self.users_dir.glob("*.json")):
            student = self._read(path, Student)
            if student is not None:
                yield student

    # ------------------------------------------------------------------
    # Teams
    def load_team(self, guild_id: int, team_id: str) -> Team | None:
        """Retrieve a team by guild and identifier."""
        return self._read(self._team_path(guild_id, team_id), Team)

    def save_team(self, team: Team) -> None:
        self._write(self._team_path(team.guild_id, team.id), team)

    def delete_team(self, guild_id: int, team_id: str) -> None:
        path = self._team_path(guild_id, team_id)
        try:
            path.unlink()
        except FileNotFoundError:
            raise NotFound(f"Team `{team_id}` does not exist.") from None
        except OSError as exc:
            raise StorageError(f"Cannot delete {path}: {exc}") from exc

    def all_teams(self, guild_id: int) -> list[Team]:
        """Return every stored team of ``guild_id``."""
        teams_dir = self._teams_dir(guild_id)
        if not teams_dir.is_dir():
            return []
        teams = []
        for path in sorted(teams_dir.glob("*.json")):
            if path.name == INFO_FILE:
                continue
            team = self._read(path, Team)
            if team is not None:
                teams.append(team)
        return teams

    # ------------------------------------------------------------------
    # Guild aggregates
    def load_guild_info(self, guild_id: int) -> GuildTeamInfo | None:
        return self._read(self._teams_dir(guild_id) / INFO_FILE, GuildTeamInfo)

    def save_guild_info(self, info: GuildTeamInfo) -> None:
        self._write(self._teams_dir(info.guild_id) / INFO_FILE, info)

    def load_config(self, guild_id: int) -> GuildConfig | None:
        return self._read(self.guilds_dir / str(guild_id) / "config.json", GuildConfig)

    def save_config(self, guild_id: int, config: GuildConfig) -> None:
        self._write(self.guilds_dir / str(guild_id) / "config.json", config)
