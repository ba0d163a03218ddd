# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any

import pytest
from websockets.exceptions import InvalidURI

import channel.gemini_live as gemini_mod
from channel.base import (
    ChannelClosed,
    ChannelClosedError,
    ChannelOpenError,
    InboundMessage,
    LiveConfig,
    MediaInput,
    TextInput,
)
from channel.gemini_live import GeminiLiveChannel


CONFIG = LiveConfig(system_instruction_text="You are a dispatcher.")


class FakeWebSocket:
    """
    Minimal stand-in for websockets' ClientConnection.

    Incoming payloads are fed with feed(); drop(code) ends the stream the
    way a remote close would.
    """

    def __init__(self, replies: list[str] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self._replies = list(replies or [])
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.close_calls = 0

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    async def recv(self) -> str:
        return self._replies.pop(0)

    def feed(self, raw: str) -> None:
        self._incoming.put_nowait(raw)

    def drop(self, code: int, reason: str = "") -> None:
        self.close_code = code
        self.close_reason = reason
        self._incoming.put_nowait(None)

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        raw = await self._incoming.get()
        if raw is None:
            raise StopAsyncIteration
        return raw

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_code is None:
            self.drop(1000)


@pytest.fixture(autouse=True)
def _silence_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(gemini_mod, "log_event", lambda event: None)


async def _collect(channel: GeminiLiveChannel) -> list[Any]:
    return [event async for event in channel.events()]


# ---------------------------------------------------------------------
# open()
# ---------------------------------------------------------------------


def test_open_sends_setup_and_waits_for_ack(monkeypatch: pytest.MonkeyPatch) -> None:
    ws = FakeWebSocket(replies=['{"setupComplete": {}}'])
    seen: dict[str, Any] = {}

    async def fake_connect(uri: str, **kwargs: Any) -> FakeWebSocket:
        seen["uri"] = uri
        seen.update(kwargs)
        return ws

    monkeypatch.setattr(gemini_mod, "ws_connect", fake_connect)

    async def scenario() -> None:
        channel = await GeminiLiveChannel.open(
            CONFIG, api_key="k", model="live-model", endpoint="wss://example.test/live",
        )
        assert not channel.closed
        await channel.close()

    asyncio.run(scenario())

    assert seen["uri"] == "wss://example.test/live"
    assert seen["additional_headers"] == {"x-goog-api-key": "k"}
    assert ws.sent[0]["setup"]["model"] == "models/live-model"


def test_open_rejects_missing_ack(monkeypatch: pytest.MonkeyPatch) -> None:
    ws = FakeWebSocket(replies=['{"error": {"code": 400}}'])

    async def fake_connect(uri: str, **kwargs: Any) -> FakeWebSocket:
        return ws

    monkeypatch.setattr(gemini_mod, "ws_connect", fake_connect)

    with pytest.raises(ChannelOpenError):
        asyncio.run(GeminiLiveChannel.open(CONFIG, api_key="k"))
    assert ws.close_calls == 1


def test_open_wraps_connect_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_connect(uri: str, **kwargs: Any) -> FakeWebSocket:
        raise InvalidURI(uri, "bad scheme")

    monkeypatch.setattr(gemini_mod, "ws_connect", fake_connect)

    with pytest.raises(ChannelOpenError):
        asyncio.run(GeminiLiveChannel.open(CONFIG, api_key="k"))


# ---------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------


def test_send_preserves_call_order() -> None:
    async def scenario() -> FakeWebSocket:
        ws = FakeWebSocket()
        channel = GeminiLiveChannel(ws)  # type: ignore[arg-type]

        channel.send(TextInput("nudge"))
        for i in range(3):
            channel.send(MediaInput(data=f"chunk{i}", mime_type="audio/pcm;rate=16000"))
        await asyncio.sleep(0.01)
        await channel.close()
        return ws

    ws = asyncio.run(scenario())

    assert ws.sent[0] == {"realtimeInput": {"text": "nudge"}}
    assert [m["realtimeInput"]["audio"]["data"] for m in ws.sent[1:]] == [
        "chunk0", "chunk1", "chunk2",
    ]


def test_send_and_close_after_close_raise() -> None:
    async def scenario() -> None:
        channel = GeminiLiveChannel(FakeWebSocket())  # type: ignore[arg-type]
        await channel.close()

        with pytest.raises(ChannelClosedError):
            channel.send(TextInput("late"))
        with pytest.raises(ChannelClosedError):
            await channel.close()

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------


def test_events_in_arrival_order_and_malformed_skipped() -> None:
    async def scenario() -> list[Any]:
        ws = FakeWebSocket()
        channel = GeminiLiveChannel(ws)  # type: ignore[arg-type]

        ws.feed('{"serverContent": {"inputTranscription": {"text": "Hel"}}}')
        ws.feed("not json")
        ws.feed('{"usageMetadata": {}}')
        ws.feed('{"serverContent": {"turnComplete": true}}')
        ws.drop(1000)
        return await _collect(channel)

    events = asyncio.run(scenario())

    assert events == [
        InboundMessage(input_transcription="Hel"),
        InboundMessage(turn_complete=True),
        ChannelClosed(reason="", code=1000, clean=True),
    ]


def test_abnormal_remote_close_is_unclean() -> None:
    async def scenario() -> list[Any]:
        ws = FakeWebSocket()
        channel = GeminiLiveChannel(ws)  # type: ignore[arg-type]
        ws.drop(1011, "internal error")
        return await _collect(channel)

    events = asyncio.run(scenario())

    assert events == [ChannelClosed(reason="internal error", code=1011, clean=False)]


def test_local_close_is_clean() -> None:
    async def scenario() -> list[Any]:
        ws = FakeWebSocket()
        channel = GeminiLiveChannel(ws)  # type: ignore[arg-type]
        ws.close_code = 1006
        await channel.close()
        ws.drop(1006)
        return await _collect(channel)

    events = asyncio.run(scenario())

    assert len(events) == 1
    assert events[0].clean
