"""
Authoritative session state enumeration.

Rules:
- This module defines ONLY the states and the events that move them.
- No behavior, no side effects.
- Transitions are defined exclusively in session/transitions.py.
"""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """Lifecycle of one distress call as seen by the UI."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class SessionEvent(str, Enum):
    """Facts that drive the session state machine."""

    START = "start"                # user pressed the signal / retry
    OPENED = "opened"              # channel acknowledged, nudge sent
    FAILED = "failed"              # mic or channel-open failure before connect
    END = "end"                    # user ended the call
    REMOTE_CLOSE = "remote_close"  # backend closed the channel
    TEARDOWN = "teardown"          # forced teardown from any state
