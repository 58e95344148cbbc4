"""Exceptions raised by the roster.

Everything deriving from :class:`RegistryError` is recoverable: the command
layer catches it and shows ``str(exc)`` to the user. :class:`StorageError`
signals a broken data directory and is left to propagate.
"""

from __future__ import annotations


class RegistryError(Exception):
    """Base class for recoverable roster errors."""

    default_message = "The operation could not be completed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class NotFound(RegistryError):
    default_message = "Not found."


class AlreadyAffiliated(RegistryError):
    default_message = "You are already in a team in this server."


class NotAffiliated(RegistryError):
    default_message = "You are not in a team in this server."


class TeamLocked(RegistryError):
    default_message = "The team is confirmed and can no longer be modified."


class CapacityExceeded(RegistryError):
    default_message = "The team is full."


class NotInvited(RegistryError):
    default_message = "You were not invited to that team."


class NameConflict(RegistryError):
    default_message = "Another team in this server already uses that name."


class AlreadyInUse(RegistryError):
    default_message = "That team identifier is already in use."


class InvalidTeamId(RegistryError):
    default_message = "Invalid team identifier."


class InvalidPasswordFile(RegistryError):
    default_message = "The passwords file is malformed."


class StorageError(Exception):
    """Raised when persisted data cannot be read or written."""


__all__ = [
    "RegistryError",
    "NotFound",
    "AlreadyAffiliated",
    "NotAffiliated",
    "TeamLocked",
    "CapacityExceeded",
    "NotInvited",
    "NameConflict",
    "AlreadyInUse",
    "InvalidTeamId",
    "InvalidPasswordFile",
    "StorageError",
]
