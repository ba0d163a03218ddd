"""
sounddevice (PortAudio) implementation of the platform audio contract.

Threading model:
- PortAudio invokes stream callbacks on its own real-time audio thread.
- Capture callbacks copy the block and hand it to the event loop with
  call_soon_threadsafe. Nothing in a callback blocks or awaits.
- The output callback renders the playback Mixer (audio/mixer.py) and
  reports natural completion back onto the event loop the same way.
"""

from __future__ import annotations

import asyncio
from typing import Any

import numpy as np
import sounddevice as sd

from audio.mixer import Mixer
from audio.platform import (
    AudioPlatform,
    BlockHandler,
    CaptureContext,
    CaptureNode,
    EndedCallback,
    Microphone,
    MicPermissionDenied,
    MicUnavailable,
    MicrophoneError,
    PlaybackContext,
    PlaybackSource,
    PlaybackUnavailable,
)
from constants import AUDIO_CHANNELS, PLAYBACK_BLOCK_SAMPLES
from observability.logger import log_event


_PERMISSION_MARKERS = ("permission", "denied", "not authorized", "not permitted")


def _classify_input_error(exc: Exception) -> MicrophoneError:
    text = str(exc).lower()
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return MicPermissionDenied(str(exc))
    return MicUnavailable(str(exc))


def _call_on_loop(loop: asyncio.AbstractEventLoop, fn: Any, *args: Any) -> None:
    """Thread-safe handoff; silently skipped once the loop is gone."""
    if loop.is_closed():
        return
    try:
        loop.call_soon_threadsafe(fn, *args)
    except RuntimeError:
        # Loop closed between the check and the call.
        pass


# ---------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------

class SoundDeviceMicrophone(Microphone):
    """
    Open PortAudio input stream.

    The stream runs from acquisition until stop(); blocks are dropped until
    a capture node attaches a sink.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        sample_rate: int,
        block_size: int,
        device: int | str | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self._loop = loop
        self._sink: BlockHandler | None = None
        self._stream: sd.InputStream | None = sd.InputStream(
            samplerate=sample_rate,
            blocksize=block_size,
            channels=AUDIO_CHANNELS,
            dtype="float32",
            device=device,
            callback=self._callback,
        )
        self._stream.start()

    @property
    def active(self) -> bool:
        return self._stream is not None

    def attach(self, sink: BlockHandler | None) -> None:
        self._sink = sink

    def stop(self) -> None:
        stream = self._stream
        self._stream = None
        self._sink = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as exc:
            log_event({
                "event_type": "mic_stop_failed",
                "error": str(exc),
            })

    def _callback(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        sink = self._sink
        if sink is None:
            return
        # Copy: PortAudio reuses the buffer after the callback returns
        _call_on_loop(self._loop, sink, indata[:, 0].copy())


class SoundDeviceCaptureNode(CaptureNode):
    def __init__(self, microphone: SoundDeviceMicrophone) -> None:
        self._microphone: SoundDeviceMicrophone | None = microphone

    def disconnect(self) -> None:
        microphone = self._microphone
        self._microphone = None
        if microphone is not None:
            microphone.attach(None)


class SoundDeviceCaptureContext(CaptureContext):
    """Capture clock domain; the input stream itself runs at this rate."""

    def __init__(self, *, sample_rate: int) -> None:
        self.sample_rate = sample_rate
        self._closed = False
        self._nodes: list[SoundDeviceCaptureNode] = []

    def connect(
        self,
        microphone: Microphone,
        *,
        block_size: int,  # pylint: disable=unused-argument
        on_block: BlockHandler,
    ) -> CaptureNode:
        if self._closed:
            raise RuntimeError("capture context is closed")
        if not isinstance(microphone, SoundDeviceMicrophone):
            raise TypeError("expected a SoundDeviceMicrophone")
        if microphone.sample_rate != self.sample_rate:
            raise ValueError(
                f"microphone rate {microphone.sample_rate} != context rate {self.sample_rate}"
            )
        microphone.attach(on_block)
        node = SoundDeviceCaptureNode(microphone)
        self._nodes.append(node)
        return node

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for node in self._nodes:
            node.disconnect()
        self._nodes.clear()


# ---------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------

class SoundDevicePlaybackContext(PlaybackContext):
    """
    Output stream driving a Mixer (see audio/mixer.py).

    current_time is the mixer clock: frames rendered so far / sample_rate.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        sample_rate: int,
        device: int | str | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self._loop = loop
        self._mixer = Mixer(sample_rate=sample_rate)
        self._stream: sd.OutputStream | None = sd.OutputStream(
            samplerate=sample_rate,
            blocksize=PLAYBACK_BLOCK_SAMPLES,
            channels=AUDIO_CHANNELS,
            dtype="float32",
            device=device,
            callback=self._callback,
        )
        self._stream.start()

    @property
    def current_time(self) -> float:
        return self._mixer.current_time

    @property
    def closed(self) -> bool:
        return self._stream is None

    def play(
        self,
        samples: np.ndarray,
        *,
        start_time: float,
        on_ended: EndedCallback,
    ) -> PlaybackSource:
        return self._mixer.add(samples, start_time=start_time, on_ended=on_ended)

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        self._mixer.clear()
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as exc:
            log_event({
                "event_type": "playback_close_failed",
                "error": str(exc),
            })
        if self._mixer.frames_skipped:
            log_event({
                "event_type": "playback_late_frames_skipped",
                "frames": self._mixer.frames_skipped,
            })

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        for source in self._mixer.render(outdata[:, 0]):
            _call_on_loop(self._loop, source.notify_ended)


# ---------------------------------------------------------------------
# Platform
# ---------------------------------------------------------------------

class SoundDevicePlatform(AudioPlatform):
    """Default desktop audio platform backed by PortAudio."""

    def __init__(
        self,
        *,
        input_device: int | str | None = None,
        output_device: int | str | None = None,
    ) -> None:
        self._input_device = input_device
        self._output_device = output_device

    async def open_microphone(self, *, sample_rate: int, block_size: int) -> Microphone:
        loop = asyncio.get_running_loop()
        try:
            sd.check_input_settings(
                device=self._input_device,
                channels=AUDIO_CHANNELS,
                dtype="float32",
                samplerate=sample_rate,
            )
            return SoundDeviceMicrophone(
                loop=loop,
                sample_rate=sample_rate,
                block_size=block_size,
                device=self._input_device,
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise _classify_input_error(exc) from exc

    def create_capture_context(self, *, sample_rate: int) -> CaptureContext:
        return SoundDeviceCaptureContext(sample_rate=sample_rate)

    def create_playback_context(self, *, sample_rate: int) -> PlaybackContext:
        try:
            return SoundDevicePlaybackContext(
                loop=asyncio.get_running_loop(),
                sample_rate=sample_rate,
                device=self._output_device,
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise PlaybackUnavailable(str(exc)) from exc
