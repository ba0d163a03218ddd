"""
Gapless playback of inbound speech.

Scheduling rule:
    start = max(cursor.next_start_time, clock.now)
    cursor.next_start_time = start + duration

Ordering:
- Payloads are scheduled in arrival order, never decode-completion order.
- A single worker task owns decode-then-schedule: frame N+1 is not decoded
  until frame N has been scheduled.

Non-responsibilities:
- No mixing or device I/O (PlaybackContext does that)
- No channel or transcript knowledge
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable

import numpy as np

from audio.frames import decode_inbound
from audio.platform import PlaybackContext, PlaybackSource
from constants import samples_to_seconds
from observability.logger import log_event


Decoder = Callable[[str], np.ndarray]


@dataclass
class PlaybackCursor:
    """
    next_start_time:
        Playback-clock time (seconds) where the next buffer starts.
        Non-decreasing.

    active_sources:
        Scheduled or playing sources; removed on natural completion.
    """
    next_start_time: float = 0.0
    active_sources: set[PlaybackSource] = field(default_factory=set)


class PlaybackScheduler:
    """Single-consumer decode/schedule pipeline for one playback context."""

    def __init__(
        self,
        context: PlaybackContext,
        *,
        session_id: str | None = None,
        decoder: Decoder = decode_inbound,
    ) -> None:
        self._ctx = context
        self._session_id = session_id
        self._decoder = decoder

        self.cursor = PlaybackCursor()

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._closed = False

        self.frames_scheduled = 0
        self.frames_dropped = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(self._run())

    def close(self) -> None:
        """
        Stop all sources, drop pending payloads, cancel the worker.

        A decode already running off-loop may finish, but its result is
        never scheduled. Idempotent.
        """
        if self._closed:
            return
        self._closed = True
        self.stop_all()

        while not self._queue.empty():
            self._queue.get_nowait()
            self.frames_dropped += 1

        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def enqueue(self, data: str) -> None:
        """Queue one base64 PCM16 @24 kHz payload, in arrival order."""
        if self._closed:
            self.frames_dropped += 1
            return
        self._queue.put_nowait(data)

    def pending(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self, samples: np.ndarray) -> float | None:
        """
        Schedule decoded samples right after the previous buffer.

        Returns the start time, or None if the context is gone.
        """
        if self._closed or self._ctx.closed:
            self.frames_dropped += 1
            return None

        start = max(self.cursor.next_start_time, self._ctx.current_time)
        duration = samples_to_seconds(len(samples), self._ctx.sample_rate)

        if len(samples) > 0:
            source: PlaybackSource | None = None

            def _on_ended() -> None:
                if source is not None:
                    self.cursor.active_sources.discard(source)

            source = self._ctx.play(samples, start_time=start, on_ended=_on_ended)
            self.cursor.active_sources.add(source)

        self.cursor.next_start_time = start + duration
        self.frames_scheduled += 1
        return start

    def stop_all(self) -> int:
        """Stop every active source and clear the set. Returns how many."""
        sources = list(self.cursor.active_sources)
        self.cursor.active_sources.clear()
        for source in sources:
            source.stop()
        return len(sources)

    def snapshot(self) -> dict[str, float | int]:
        return {
            "next_start_time": self.cursor.next_start_time,
            "active_sources": len(self.cursor.active_sources),
            "pending": self.pending(),
            "frames_scheduled": self.frames_scheduled,
            "frames_dropped": self.frames_dropped,
        }

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            data = await self._queue.get()
            try:
                samples = await asyncio.to_thread(self._decoder, data)
            except ValueError as e:
                self.frames_dropped += 1
                log_event({
                    "event_type": "playback_decode_failed",
                    "session_id": self._session_id,
                    "error": str(e),
                })
                continue
            self.schedule(samples)
