"""
Pure session state machine.

(state, event) -> new_state | None

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is either an edge below or rejected
  (None). The controller treats None as a silent no-op.

Edges:
    idle       --START-------->  connecting
    error      --START-------->  connecting
    connecting --OPENED------->  connected
    connecting --FAILED------->  error
    connected  --END---------->  idle
    connected  --REMOTE_CLOSE->  idle
    any != idle --TEARDOWN---->  idle
"""

from __future__ import annotations

from typing import Mapping

from session.state import SessionEvent, SessionState


_EDGES: Mapping[tuple[SessionState, SessionEvent], SessionState] = {
    (SessionState.IDLE, SessionEvent.START): SessionState.CONNECTING,
    (SessionState.ERROR, SessionEvent.START): SessionState.CONNECTING,
    (SessionState.CONNECTING, SessionEvent.OPENED): SessionState.CONNECTED,
    (SessionState.CONNECTING, SessionEvent.FAILED): SessionState.ERROR,
    (SessionState.CONNECTED, SessionEvent.END): SessionState.IDLE,
    (SessionState.CONNECTED, SessionEvent.REMOTE_CLOSE): SessionState.IDLE,
}


def next_state(state: SessionState, event: SessionEvent) -> SessionState | None:
    """
    Return the state reached by applying event, or None if the edge is
    not allowed.

    TEARDOWN from idle returns None so idle is entered exactly once.
    """
    if event is SessionEvent.TEARDOWN:
        return None if state is SessionState.IDLE else SessionState.IDLE
    return _EDGES.get((state, event))


def is_allowed(state: SessionState, event: SessionEvent) -> bool:
    return next_state(state, event) is not None
