"""Discord adapter implementing the :class:`~roster_bot.adapters.base.Adapter`.

The bot talks to Discord through ``discord.py`` for everything interactive.
This adapter covers the two plain HTTP needs of the admin commands: posting
the team list to a channel and downloading uploaded password files. It uses
:mod:`httpx` so both can be exercised in tests with a mock transport.
"""

from __future__ import annotations

import httpx

from ..logging_config import get_logger
from .base import Adapter

log = get_logger("adapters.discord")

#: Upper bound for downloaded attachments; password lists are tiny.
MAX_ATTACHMENT_BYTES = 1_000_000


class AttachmentTooLarge(Exception):
    """Raised when a downloaded attachment exceeds :data:`MAX_ATTACHMENT_BYTES`."""


class DiscordAdapter(Adapter):
    """Adapter that sends requests directly to the Discord HTTP API."""

    api_base = "https://discord.com/api"

    def __init__(self, token: str, client: httpx.AsyncClient | None = None) -> None:
        """Store authentication ``token`` and optional HTTP ``client``."""
        self.token = token
        self.client = client or httpx.AsyncClient()

    # ------------------------------------------------------------------
    async def send_message(self, channel_id: str, content: str) -> None:
        """Send a message to a channel.

        Parameters
        ----------
        channel_id:
            Identifier of the Discord channel.
        content:
            Message body to send.

        """
        url = f"{self.api_base}/channels/{channel_id}/messages"
        headers = {"Authorization": f"Bot {self.token}"}
        payload = {"content": content, "allowed_mentions": {"parse": []}}
        response = await self.client.post(url, json=payload, headers=headers)
        response.raise_for_status()

    async def fetch_attachment(self, url: str) -> str:
        """Download an attachment from Discord's CDN.

        Attachment URLs are pre-signed, so no authorization header is sent.
        """
        limit = MAX_ATTACHMENT_BYTES
        async with self.client.stream("GET", url, follow_redirects=True) as response:
            response.raise_for_status()
            declared = response.headers.get("Content-Length")
            if declared is not None and declared.isdigit() and int(declared) > limit:
                raise AttachmentTooLarge(
                    f"Attachment is {declared} bytes, the limit is {limit}."
                )
            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > limit:
                    raise AttachmentTooLarge(
                        f"Attachment exceeds the limit of {limit} bytes."
                    )
        log.debug("Downloaded attachment %s (%d bytes)", url, len(body))
        return bytes(body).decode("utf-8-sig")

    async def close(self) -> None:
        """Close the underlying :class:`httpx.AsyncClient`."""
        await self.client.aclose()
