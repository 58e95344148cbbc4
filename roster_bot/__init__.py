"""Core package for the study-team roster bot.

This module exposes the roster models, the storage layer and the registry
operations so that consumers of the package can simply import them from
``roster_bot``. The Discord-facing modules (``bot``, ``commands``) are not
imported here so the registry can be used without ``discord.py`` loaded.
"""

from .core.errors import RegistryError, StorageError
from .core.models import Credentials, GuildTeamInfo, Student, Team, TeamRequest
from .core.registry import InviteOutcome, TeamRegistry
from .core.storage import JSONStorage

__all__ = [
    "Credentials",
    "GuildTeamInfo",
    "InviteOutcome",
    "JSONStorage",
    "RegistryError",
    "StorageError",
    "Student",
    "Team",
    "TeamRegistry",
    "TeamRequest",
]
