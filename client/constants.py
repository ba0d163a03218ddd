"""
Behavioral constants for the live distress-call session.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# PCM16 sample format
# =============================================================================

PCM16_SAMPLE_WIDTH_BYTES: Final[int] = 2  # signed 16-bit, little-endian
PCM16_SCALE: Final[float] = 32768.0
PCM16_MIN: Final[int] = -32768
PCM16_MAX: Final[int] = 32767

AUDIO_CHANNELS: Final[int] = 1

# =============================================================================
# Clock domains (capture and playback never share a context)
# =============================================================================

CAPTURE_SAMPLE_RATE_HZ: Final[int] = 16_000
PLAYBACK_SAMPLE_RATE_HZ: Final[int] = 24_000

# Samples per capture callback block (~256 ms at 16 kHz)
CAPTURE_BLOCK_SAMPLES: Final[int] = 4096

# Output stream block size for the playback mixer (platform detail)
PLAYBACK_BLOCK_SAMPLES: Final[int] = 1024

PCM_MIME_TYPE_PREFIX: Final[str] = "audio/pcm;rate="


def pcm_mime_type(sample_rate_hz: int) -> str:
    """Return the wire mime type for PCM16 mono audio at the given rate."""
    return f"{PCM_MIME_TYPE_PREFIX}{sample_rate_hz}"


# =============================================================================
# Live channel
# =============================================================================

LIVE_MODEL_DEFAULT: Final[str] = "gemini-2.5-flash-native-audio-preview-09-2025"
LIVE_ENDPOINT_DEFAULT: Final[str] = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
LIVE_RESPONSE_MODALITY_AUDIO: Final[str] = "AUDIO"

# Websocket close codes treated as a normal end of call
CLEAN_CLOSE_CODES: Final[Tuple[int, ...]] = (1000, 1001)

# Inbound messages can carry a full audio turn chunk
LIVE_MAX_MESSAGE_BYTES: Final[int] = 2**24

# One-shot message sent right after open so the dispatcher speaks first
NUDGE_TEXT: Final[str] = (
    "The user has activated the distress signal. "
    "Please respond immediately based on your instructions."
)

# Simulated first-responder ETA quoted by the dispatcher persona
SIMULATED_ETA_TEXT: Final[str] = "5-7 minutes"

# =============================================================================
# Observability
# =============================================================================

LOG_PAYLOAD_PREVIEW_CHARS: Final[int] = 100


# =============================================================================
# Helper Functions
# =============================================================================

def samples_to_seconds(num_samples: int, sample_rate_hz: int) -> float:
    """
    Convert a sample count to a duration in seconds.

    Non-positive input returns 0.0.
    """
    if num_samples <= 0:
        return 0.0
    return num_samples / float(sample_rate_hz)

