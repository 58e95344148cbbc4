"""Tests for the :mod:`roster_bot.adapters.discord` module."""

import asyncio
from typing import Any

import httpx
import pytest

from roster_bot.adapters import discord as discord_adapter
from roster_bot.adapters.discord import AttachmentTooLarge, DiscordAdapter


def run(coro: Any) -> Any:
    """Run an async coroutine synchronously for tests."""
    return asyncio.run(coro)


def test_send_message_makes_correct_request() -> None:
    """Ensure ``send_message`` posts the expected payload."""
    captured: dict[str, httpx.Request] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        return httpx.Response(200, json={"id": "123"})

    transport = httpx.MockTransport(handler)
    client = httpx.AsyncClient(transport=transport)
    adapter = DiscordAdapter("TOKEN", client=client)

    run(adapter.send_message("chan", "hello"))

    request = captured["request"]
    assert request.headers["Authorization"] == "Bot TOKEN"
    assert request.url.path.endswith("/channels/chan/messages")
    assert b'"allowed_mentions"' in request.content


def test_send_messages_keeps_order() -> None:
    bodies: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content)
        return httpx.Response(200, json={"id": "1"})

    adapter = DiscordAdapter("TOKEN", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    run(adapter.send_messages("chan", ["first", "second"]))
    assert b"first" in bodies[0] and b"second" in bodies[1]


def test_fetch_attachment_returns_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert "Authorization" not in request.headers
        assert request.url.path == "/attachments/1/2/passwords.txt"
        return httpx.Response(200, content="\ufeffg01 alpha\ng02 beta\n".encode("utf-8"))

    adapter = DiscordAdapter("TOKEN", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    text = run(adapter.fetch_attachment("https://cdn.discordapp.com/attachments/1/2/passwords.txt"))
    assert text == "g01 alpha\ng02 beta\n"


def test_fetch_attachment_errors(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("missing.txt"):
            return httpx.Response(404)
        return httpx.Response(200, content=b"x" * 20)

    adapter = DiscordAdapter("TOKEN", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(httpx.HTTPStatusError):
        run(adapter.fetch_attachment("https://cdn.discordapp.com/missing.txt"))

    monkeypatch.setattr(discord_adapter, "MAX_ATTACHMENT_BYTES", 10)
    with pytest.raises(AttachmentTooLarge):
        run(adapter.fetch_attachment("https://cdn.discordapp.com/big.txt"))


def test_fetch_attachment_stops_reading_past_the_limit(monkeypatch) -> None:
    sent: list[int] = []

    async def body():
        for n in range(100):
            sent.append(n)
            yield b"x" * 4

    def handler(request: httpx.Request) -> httpx.Response:
        # No Content-Length: the size is only known while reading.
        return httpx.Response(200, content=body())

    monkeypatch.setattr(discord_adapter, "MAX_ATTACHMENT_BYTES", 10)
    adapter = DiscordAdapter("TOKEN", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(AttachmentTooLarge):
        run(adapter.fetch_attachment("https://cdn.discordapp.com/endless.txt"))
    assert len(sent) < 100
