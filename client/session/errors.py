"""
Session error taxonomy.

Lower layers raise or emit structured reasons; the controller is the only
place that maps a reason to user-facing text.

Categories:

MIC_PERMISSION_DENIED / MIC_UNAVAILABLE:
    Recoverable before connect. State becomes error; no channel work was
    done. The user retries manually.

CHANNEL_OPEN_FAILED:
    Recoverable before connect. Mic and audio contexts are released.

CHANNEL_RUNTIME_ERROR:
    Fatal mid-session. The call is terminated and torn down.

UNEXPECTED_REMOTE_CLOSE:
    The backend dropped an established call without a normal close.
    A normal remote close is an end of call and carries no reason.

Notes:
- There is no automatic retry or reconnection for any reason.
"""

from __future__ import annotations

from enum import Enum
from typing import Final, Mapping

from audio.platform import AudioDeviceError, MicPermissionDenied


class SessionErrorReason(str, Enum):
    MIC_PERMISSION_DENIED = "mic_permission_denied"
    MIC_UNAVAILABLE = "mic_unavailable"
    CHANNEL_OPEN_FAILED = "channel_open_failed"
    CHANNEL_RUNTIME_ERROR = "channel_runtime_error"
    UNEXPECTED_REMOTE_CLOSE = "unexpected_remote_close"


USER_MESSAGES: Final[Mapping[SessionErrorReason, str]] = {
    SessionErrorReason.MIC_PERMISSION_DENIED: (
        "Microphone access denied. Please enable it in your settings to use this feature."
    ),
    SessionErrorReason.MIC_UNAVAILABLE: (
        "Could not access the microphone. Please ensure it is connected and working."
    ),
    SessionErrorReason.CHANNEL_OPEN_FAILED: (
        "Failed to connect to the emergency line. "
        "Please check your internet connection and try again."
    ),
    SessionErrorReason.CHANNEL_RUNTIME_ERROR: (
        "An unexpected error occurred during the call. The connection has been closed."
    ),
    SessionErrorReason.UNEXPECTED_REMOTE_CLOSE: (
        "The emergency line disconnected unexpectedly. Please try again."
    ),
}


def user_message(reason: SessionErrorReason) -> str:
    return USER_MESSAGES[reason]


def reason_for_audio_error(exc: AudioDeviceError) -> SessionErrorReason:
    """Classify a platform audio failure during session start."""
    if isinstance(exc, MicPermissionDenied):
        return SessionErrorReason.MIC_PERMISSION_DENIED
    # Missing device or any other hardware failure (input or output)
    return SessionErrorReason.MIC_UNAVAILABLE
