"""
Call metrics.

One metric = one JSONL event; nothing is aggregated in-process.

- Durations (channel open, call length) use time.monotonic_ns()
- Counters for a finished call (frames sent / scheduled / dropped) are
  emitted once as a METRIC_VALUE event each
- Event ts_ms stays wall-clock (see observability.logger.now_ms)
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

from observability.logger import log_event, now_ms


# timer_id -> (metric name, monotonic start ns)
_active_timers: dict[str, tuple[str, int]] = {}


# -----------------------------------------------------------------------------
# Timers
# -----------------------------------------------------------------------------

def start_timer(name: str) -> str:
    """Begin timing `name`; pair with stop_timer() or use timed()."""
    timer_id = f"timer_{uuid.uuid4().hex[:12]}"
    _active_timers[timer_id] = (name, time.monotonic_ns())
    return timer_id


def stop_timer(
    timer_id: str,
    *,
    session_id: str | None = None,
    state: str | None = None,
    details: dict[str, Any] | None = None,
) -> int | None:
    """
    Emit METRIC_TIMER for a running timer.

    Returns the elapsed milliseconds, or None for an unknown (or already
    stopped) timer_id, in which case nothing is emitted.
    """
    entry = _active_timers.pop(timer_id, None)
    if entry is None:
        return None

    name, started_ns = entry
    elapsed_ms = (time.monotonic_ns() - started_ns) // 1_000_000

    log_event({
        "ts_ms": now_ms(),
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": elapsed_ms,
        "session_id": session_id,
        "state": state,
        "details": details or {},
    })
    return elapsed_ms


def active_timer_count() -> int:
    return len(_active_timers)


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    state: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Time the enclosed block; the metric is emitted even if it raises
    or is cancelled.

        with timed("channel_open", session_id=session.session_id):
            channel = await connector(config)
    """
    timer_id = start_timer(name)
    try:
        yield
    finally:
        stop_timer(timer_id, session_id=session_id, state=state, details=details)


# -----------------------------------------------------------------------------
# Values
# -----------------------------------------------------------------------------

def record_values(
    values: Mapping[str, float | int],
    *,
    session_id: str | None = None,
    prefix: str = "",
) -> None:
    """Emit one METRIC_VALUE event per entry (e.g. a call's final counters)."""
    ts_ms = now_ms()
    for name, value in values.items():
        log_event({
            "ts_ms": ts_ms,
            "event_type": "METRIC_VALUE",
            "metric": f"{prefix}{name}",
            "value": value,
            "session_id": session_id,
        })
