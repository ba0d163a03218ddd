"""
Voice session container.

- Holds the UI-visible session state (state, error, resident snapshot)
- Owned and mutated by SessionController only
- NOT a state machine (see session/transitions.py)
- Buffers UI update messages for the host to drain
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from session.errors import SessionErrorReason
from session.resident import ResidentContext
from session.state import SessionState


# ---------------------------------------------------------------------
# VoiceSession
# ---------------------------------------------------------------------


@dataclass
class VoiceSession:
    """Mutable container for the current (or last) distress call."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    session_id: str
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Controller-owned state
    # ------------------------------------------------------------------

    state: SessionState = SessionState.IDLE
    error_reason: SessionErrorReason | None = None
    error_message: str | None = None

    # Captured once per call; never live-updated
    resident: ResidentContext | None = None

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def __post_init__(self) -> None:
        self._updates_out: deque[dict[str, Any]] = deque()
        self._updates_ready = asyncio.Event()

    # ------------------------------------------------------------------
    # Call lifecycle helpers (called by SessionController)
    # ------------------------------------------------------------------

    def begin_call(self, session_id: str, resident: ResidentContext) -> None:
        """Start a new call: fresh id, resident snapshot, no error."""
        self.session_id = session_id
        self.created_at = time.time()
        self.resident = resident
        self.clear_error()

    def set_error(self, reason: SessionErrorReason, message: str) -> None:
        self.error_reason = reason
        self.error_message = message

    def clear_error(self) -> None:
        self.error_reason = None
        self.error_message = None

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def log_context(self) -> dict[str, Any]:
        """Standard logging context for this session."""
        return {
            "session_id": self.session_id,
            "state": self.state.value,
        }

    # ------------------------------------------------------------------
    # UI update queue
    # ------------------------------------------------------------------

    def enqueue_update(self, msg: dict[str, Any]) -> None:
        """
        Enqueue a UI update message.

        Messages are buffered in FIFO order and later retrieved via
        drain_updates().
        """
        self._updates_out.append(msg)
        self._updates_ready.set()

    def drain_updates(self) -> tuple[dict[str, Any], ...]:
        """
        Atomically drain all pending UI updates.

        Returns a FIFO-ordered tuple; empty if nothing is pending.
        After this call, the update queue is empty.
        """
        self._updates_ready.clear()
        if not self._updates_out:
            return ()
        out = tuple(self._updates_out)
        self._updates_out.clear()
        return out

    async def wait_for_updates(self) -> tuple[dict[str, Any], ...]:
        """Block until at least one update is pending, then drain."""
        await self._updates_ready.wait()
        return self.drain_updates()
