"""Base adapter interface for platform specific implementations."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Adapter(ABC):
    """Abstract adapter for communication platforms."""

    @abstractmethod
    async def send_message(self, channel_id: str, content: str) -> None:
        """Send ``content`` to the specified ``channel_id``."""

    @abstractmethod
    async def fetch_attachment(self, url: str) -> str:
        """Download an uploaded file and return it decoded as text."""

    async def send_messages(self, channel_id: str, contents: list[str]) -> None:
        """Send several messages to ``channel_id`` in order."""
        for content in contents:
            await self.send_message(channel_id, content)
