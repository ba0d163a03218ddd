"""
Audio frame primitives.

Pure data containers only.
No queues, no timing logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from audio.pcm import b64decode_pcm, b64encode_pcm, pcm16le_to_float32
from constants import (
    CAPTURE_SAMPLE_RATE_HZ,
    PCM16_SAMPLE_WIDTH_BYTES,
    PLAYBACK_SAMPLE_RATE_HZ,
    pcm_mime_type,
    samples_to_seconds,
)


class Direction(str, Enum):
    """Which way a frame travels over the channel."""
    OUTBOUND = "outbound"  # microphone -> backend, 16 kHz
    INBOUND = "inbound"    # backend -> speaker, 24 kHz


@dataclass(frozen=True)
class AudioFrame:
    """
    Canonical audio frame exchanged with the live channel.

    pcm_bytes:
        Raw PCM16 little-endian mono audio bytes.

    sample_rate:
        16000 for outbound (capture) frames, 24000 for inbound (playback).

    direction:
        OUTBOUND or INBOUND; fixes the expected sample rate.
    """
    pcm_bytes: bytes
    sample_rate: int
    direction: Direction

    @classmethod
    def outbound(cls, pcm_bytes: bytes) -> AudioFrame:
        """Frame captured from the microphone."""
        return cls(
            pcm_bytes=pcm_bytes,
            sample_rate=CAPTURE_SAMPLE_RATE_HZ,
            direction=Direction.OUTBOUND,
        )

    @classmethod
    def inbound(cls, pcm_bytes: bytes) -> AudioFrame:
        """Frame of synthesized speech received from the backend."""
        return cls(
            pcm_bytes=pcm_bytes,
            sample_rate=PLAYBACK_SAMPLE_RATE_HZ,
            direction=Direction.INBOUND,
        )

    @classmethod
    def inbound_from_base64(cls, data: str | bytes) -> AudioFrame:
        """Frame from a model-turn inlineData payload (base64 PCM16 @24 kHz)."""
        return cls.inbound(b64decode_pcm(data))

    @property
    def mime_type(self) -> str:
        return pcm_mime_type(self.sample_rate)

    @property
    def num_samples(self) -> int:
        return len(self.pcm_bytes) // PCM16_SAMPLE_WIDTH_BYTES

    @property
    def duration_s(self) -> float:
        return samples_to_seconds(self.num_samples, self.sample_rate)

    def to_base64(self) -> str:
        """Wire payload for the channel."""
        return b64encode_pcm(self.pcm_bytes)

    def to_float32(self) -> np.ndarray:
        return pcm16le_to_float32(self.pcm_bytes)


def decode_inbound(data: str | bytes) -> np.ndarray:
    """Playback decoder: wire payload -> inbound AudioFrame -> float32 samples."""
    return AudioFrame.inbound_from_base64(data).to_float32()
