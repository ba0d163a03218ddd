# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import numpy as np
import pytest

import session.controller as controller_mod
from audio.pcm import b64encode_pcm, float32_to_pcm16le
from audio.platform import MicPermissionDenied, MicUnavailable, PlaybackUnavailable
from channel.base import (
    ChannelClosed,
    ChannelFault,
    InboundMessage,
    MediaInput,
    TextInput,
)
from constants import NUDGE_TEXT
from session.controller import SessionController
from session.errors import SessionErrorReason, user_message
from session.resident import ResidentContext
from session.state import SessionState
from transcript.assembler import Speaker, TranscriptEntry

from fakes import FakeConnector, FakePlatform, open_failure, wait_until


ANA = ResidentContext(name="Ana", apartment_number="4B", floor="9")


@pytest.fixture(autouse=True)
def _silence_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(controller_mod, "log_event", emitted.append)
    return emitted


def _make(platform: FakePlatform | None = None, connector: FakeConnector | None = None):
    platform = platform or FakePlatform()
    connector = connector or FakeConnector()
    ctl = SessionController(platform=platform, connector=connector)
    return ctl, platform, connector


def _states(ctl: SessionController) -> list[str]:
    return [u["state"] for u in ctl.session.drain_updates() if u["type"] == "STATE"]


def _audio_payload(num_samples: int) -> str:
    return b64encode_pcm(float32_to_pcm16le(np.zeros(num_samples, dtype=np.float32)))


# ---------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------


def test_start_connects_and_sends_nudge_first() -> None:
    async def scenario() -> None:
        ctl, platform, connector = _make()

        state = await ctl.start(ANA)

        assert state is SessionState.CONNECTED
        assert _states(ctl) == ["connecting", "connected"]

        instruction = connector.configs[0].system_instruction_text
        assert "4B" in instruction
        assert "9" in instruction
        assert "Ana" in instruction

        platform.capture_node.push(np.zeros(4096, dtype=np.float32))

        sent = connector.channel.sent
        assert sent[0] == TextInput(NUDGE_TEXT)
        assert isinstance(sent[1], MediaInput)
        assert sent[1].mime_type == "audio/pcm;rate=16000"

        await ctl.end()

    asyncio.run(scenario())


def test_start_accepts_profile_mapping() -> None:
    async def scenario() -> None:
        ctl, _, connector = _make()

        await ctl.start({"name": "Ana", "aptNumber": "4B", "floor": "9", "phone": "x"})

        assert ctl.session.resident == ANA
        assert "apartment 4B" in connector.configs[0].system_instruction_text
        await ctl.end()

    asyncio.run(scenario())


def test_mic_denied_enters_error_without_opening_channel() -> None:
    async def scenario() -> None:
        ctl, _, connector = _make(FakePlatform(mic_error=MicPermissionDenied("denied")))

        state = await ctl.start(ANA)

        assert state is SessionState.ERROR
        assert ctl.error_message == user_message(SessionErrorReason.MIC_PERMISSION_DENIED)
        assert connector.configs == []
        assert not ctl.resources.held

    asyncio.run(scenario())


def test_mic_unavailable_maps_to_hardware_message() -> None:
    async def scenario() -> None:
        ctl, _, _ = _make(FakePlatform(mic_error=MicUnavailable("no device")))

        await ctl.start(ANA)

        assert ctl.session.error_reason is SessionErrorReason.MIC_UNAVAILABLE

    asyncio.run(scenario())


def test_playback_unavailable_releases_microphone() -> None:
    async def scenario() -> None:
        platform = FakePlatform(playback_error=PlaybackUnavailable("no output"))
        ctl, _, connector = _make(platform)

        state = await ctl.start(ANA)

        assert state is SessionState.ERROR
        assert platform.microphones[0].stop_calls == 1
        assert platform.capture_contexts[0].closed
        assert connector.configs == []

    asyncio.run(scenario())


def test_channel_open_failure_releases_audio() -> None:
    async def scenario() -> None:
        ctl, platform, _ = _make(connector=FakeConnector(error=open_failure()))

        state = await ctl.start(ANA)

        assert state is SessionState.ERROR
        assert ctl.error_message == user_message(SessionErrorReason.CHANNEL_OPEN_FAILED)
        assert not platform.microphones[0].active
        assert platform.capture_contexts[0].closed
        assert platform.playback_contexts[0].closed
        assert not ctl.resources.held

    asyncio.run(scenario())


def test_channel_closed_before_nudge_enters_error() -> None:
    async def scenario() -> None:
        connector = FakeConnector(closed_on_open=ChannelClosed(reason="overloaded", code=1011, clean=False))
        ctl, platform, _ = _make(connector=connector)

        state = await ctl.start(ANA)

        assert state is SessionState.ERROR
        assert _states(ctl) == ["connecting", "error"]
        assert ctl.error_message == user_message(SessionErrorReason.CHANNEL_OPEN_FAILED)
        assert connector.channel.sent == []
        assert connector.channel.close_calls == 0
        assert platform.microphones[0].stop_calls == 1
        assert platform.capture_contexts[0].closed
        assert platform.playback_contexts[0].closed
        assert not ctl.resources.held

    asyncio.run(scenario())


def test_retry_from_error_clears_message() -> None:
    async def scenario() -> None:
        platform = FakePlatform(mic_error=MicPermissionDenied("denied"))
        ctl, _, _ = _make(platform)

        await ctl.start(ANA)
        first_id = ctl.session.session_id
        platform.mic_error = None

        state = await ctl.start(ANA)

        assert state is SessionState.CONNECTED
        assert ctl.error_message is None
        assert ctl.session.session_id != first_id
        await ctl.end()

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# End
# ---------------------------------------------------------------------


def test_end_twice_enters_idle_once() -> None:
    async def scenario() -> None:
        ctl, platform, connector = _make()
        await ctl.start(ANA)
        ctl.session.drain_updates()

        await ctl.end()
        await ctl.end()

        assert _states(ctl) == ["idle"]
        assert connector.channel.close_calls == 1
        assert platform.microphones[0].stop_calls == 1
        assert not platform.capture_node.connected
        assert not ctl.resources.held

    asyncio.run(scenario())


def test_end_during_channel_open_aborts_start() -> None:
    async def scenario() -> None:
        gate = asyncio.Event()
        ctl, platform, connector = _make(connector=FakeConnector(gate=gate))

        start = asyncio.create_task(ctl.start(ANA))
        await wait_until(lambda: connector.configs)
        assert ctl.state is SessionState.CONNECTING

        await ctl.end()
        state = await start

        assert state is SessionState.IDLE
        assert _states(ctl) == ["connecting", "idle"]
        assert platform.microphones[0].stop_calls == 1
        assert platform.playback_contexts[0].closed

        gate.set()
        await asyncio.sleep(0)
        assert connector.channels == []

    asyncio.run(scenario())


def test_end_during_mic_prompt_never_acquires_microphone() -> None:
    async def scenario() -> None:
        gate = asyncio.Event()
        ctl, platform, connector = _make(FakePlatform(mic_gate=gate))

        start = asyncio.create_task(ctl.start(ANA))
        await asyncio.sleep(0.01)

        await ctl.end()
        assert await start is SessionState.IDLE

        gate.set()
        await asyncio.sleep(0.01)
        assert platform.microphones == []
        assert connector.configs == []

    asyncio.run(scenario())


def test_shutdown_via_context_manager() -> None:
    async def scenario() -> FakePlatform:
        platform = FakePlatform()
        async with SessionController(platform=platform, connector=FakeConnector()) as ctl:
            await ctl.start(ANA)
        assert ctl.state is SessionState.IDLE
        return platform

    platform = asyncio.run(scenario())
    assert not platform.microphones[0].active


# ---------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------


def test_partials_flush_into_single_entry() -> None:
    async def scenario() -> None:
        ctl, _, connector = _make()
        await ctl.start(ANA)
        channel = connector.channel

        channel.push(InboundMessage(input_transcription="Hel"))
        channel.push(InboundMessage(input_transcription="lo"))
        await wait_until(lambda: ctl.partials.user_partial == "Hello")

        channel.push(InboundMessage(turn_complete=True))
        await wait_until(lambda: ctl.entries)

        assert ctl.entries == (TranscriptEntry(Speaker.USER, "Hello"),)
        assert ctl.partials.user_partial == ""
        await ctl.end()

    asyncio.run(scenario())


def test_turn_with_both_speakers_orders_user_first() -> None:
    async def scenario() -> None:
        ctl, _, connector = _make()
        await ctl.start(ANA)

        connector.channel.push(InboundMessage(
            output_transcription="Help is on the way.",
            input_transcription="I smell smoke",
            turn_complete=True,
        ))
        await wait_until(lambda: len(ctl.entries) == 2)

        assert [e.speaker for e in ctl.entries] == [Speaker.USER, Speaker.DISPATCHER]
        await ctl.end()

    asyncio.run(scenario())


def test_inbound_audio_is_scheduled_gaplessly() -> None:
    async def scenario() -> None:
        ctl, platform, connector = _make()
        await ctl.start(ANA)

        connector.channel.push(InboundMessage(inline_audio_data=_audio_payload(2400)))
        connector.channel.push(InboundMessage(inline_audio_data=_audio_payload(2400)))
        ctx = platform.playback_context
        await wait_until(lambda: len(ctx.sources) == 2)

        assert [s.start_time for s in ctx.sources] == pytest.approx([0.0, 0.1])

        await ctl.end()
        assert all(s.stopped for s in ctx.sources)
        assert ctx.closed

    asyncio.run(scenario())


def test_channel_fault_tears_down_with_message() -> None:
    async def scenario() -> None:
        ctl, platform, connector = _make()
        await ctl.start(ANA)
        ctl.session.drain_updates()

        connector.channel.push(ChannelFault(reason="live_recv_failed"))
        await wait_until(lambda: ctl.state is SessionState.IDLE)

        assert ctl.error_message == user_message(SessionErrorReason.CHANNEL_RUNTIME_ERROR)
        assert not platform.microphones[0].active
        assert not ctl.resources.held
        assert _states(ctl) == ["idle"]

    asyncio.run(scenario())


def test_clean_remote_close_ends_call_silently() -> None:
    async def scenario() -> None:
        ctl, platform, connector = _make()
        await ctl.start(ANA)

        connector.channel.push(ChannelClosed(code=1000, clean=True))
        await wait_until(lambda: ctl.state is SessionState.IDLE)

        assert ctl.error_message is None
        assert connector.channel.close_calls == 0
        assert not platform.microphones[0].active

    asyncio.run(scenario())


def test_unclean_remote_close_surfaces_message() -> None:
    async def scenario() -> None:
        ctl, _, connector = _make()
        await ctl.start(ANA)

        connector.channel.push(ChannelClosed(code=1006, clean=False))
        await wait_until(lambda: ctl.state is SessionState.IDLE)

        assert ctl.session.error_reason is SessionErrorReason.UNEXPECTED_REMOTE_CLOSE

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Typed messages
# ---------------------------------------------------------------------


def test_typed_message_appears_and_is_forwarded() -> None:
    async def scenario() -> None:
        ctl, _, connector = _make()
        await ctl.start(ANA)

        assert ctl.send_text("  The hallway is full of smoke ")

        assert ctl.entries[-1] == TranscriptEntry(Speaker.USER, "The hallway is full of smoke")
        assert connector.channel.sent[-1] == TextInput("The hallway is full of smoke")
        await ctl.end()

    asyncio.run(scenario())


def test_typed_message_ignored_when_blank_or_not_connected() -> None:
    async def scenario() -> None:
        ctl, _, connector = _make()

        assert not ctl.send_text("hello")

        await ctl.start(ANA)
        sent_before = len(connector.channel.sent)
        assert not ctl.send_text("   ")
        assert len(connector.channel.sent) == sent_before
        assert ctl.entries == ()
        await ctl.end()

    asyncio.run(scenario())
