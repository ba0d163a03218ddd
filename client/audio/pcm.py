"""
PCM conversion utilities.

Runtime-safe, adapter-agnostic helpers.
No resampling. No channel mixing.

Out-of-range policy for float -> PCM16:
    samples are scaled by 32768 and rounded to nearest, then clamped to
    [-32768, 32767]. Full-scale positive input (1.0) therefore maps to
    32767 instead of wrapping to -32768. NaN maps to 0.
"""

from __future__ import annotations

import base64

import numpy as np
from numpy.typing import ArrayLike

from constants import PCM16_MAX, PCM16_MIN, PCM16_SCALE


def float32_to_pcm16le(samples: ArrayLike) -> bytes:
    """
    Convert float samples in [-1.0, 1.0] to PCM16 little-endian mono bytes.

    round(sample * 32768), clamped to the int16 range.
    """
    audio_f32 = np.asarray(samples, dtype=np.float32).reshape(-1)
    scaled = np.rint(np.nan_to_num(audio_f32, nan=0.0) * PCM16_SCALE)
    audio_i16 = np.clip(scaled, PCM16_MIN, PCM16_MAX).astype("<i2")
    return audio_i16.tobytes()


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    Output length is len(pcm_bytes) // 2 samples.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; the trailing byte carries no full sample.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    audio_f32 = audio_i16.astype(np.float32) / PCM16_SCALE
    return audio_f32


def b64encode_pcm(pcm_bytes: bytes) -> str:
    """Base64-encode raw PCM bytes for the wire."""
    return base64.b64encode(pcm_bytes).decode("ascii")


def b64decode_pcm(data: str | bytes) -> bytes:
    """Decode a base64 wire payload back to raw PCM bytes."""
    return base64.b64decode(data)
