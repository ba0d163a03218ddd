"""
Sample-accurate playback mixer.

The mixer owns the output timeline for one playback context:
- Positions are in frames; current_time = frames rendered / sample_rate
- Sources keep the start position they were scheduled at. A source whose
  start has already been rendered past when its first block renders
  plays from the matching offset, so consecutive sources never overlap
- render() runs on the audio thread, add()/remove() on the event loop;
  a threading.Lock guards the sources list and the clock

No device I/O here: the output stream (see audio/sounddevice_platform.py)
calls render() from its callback and reports finished sources back onto
the event loop.
"""

from __future__ import annotations

import threading

import numpy as np

from audio.platform import EndedCallback, PlaybackSource


class ScheduledSource(PlaybackSource):
    """Buffer placed on the mixer timeline."""

    def __init__(
        self,
        *,
        mixer: Mixer,
        samples: np.ndarray,
        start_frame: int,
        on_ended: EndedCallback,
    ) -> None:
        self.samples = samples
        self.start_frame = start_frame
        self.started = False
        self._mixer = mixer
        self._on_ended: EndedCallback | None = on_ended

    @property
    def end_frame(self) -> int:
        return self.start_frame + len(self.samples)

    def stop(self) -> None:
        self._on_ended = None
        self._mixer.remove(self)

    def notify_ended(self) -> None:
        on_ended = self._on_ended
        self._on_ended = None
        if on_ended is not None:
            on_ended()


class Mixer:
    def __init__(self, *, sample_rate: int) -> None:
        self.sample_rate = sample_rate
        self._lock = threading.Lock()
        self._sources: list[ScheduledSource] = []
        self._frames_rendered = 0
        self.frames_skipped = 0

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / float(self.sample_rate)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._sources)

    def add(self, samples: np.ndarray, *, start_time: float, on_ended: EndedCallback) -> ScheduledSource:
        source = ScheduledSource(
            mixer=self,
            samples=np.asarray(samples, dtype=np.float32),
            start_frame=int(round(start_time * self.sample_rate)),
            on_ended=on_ended,
        )
        with self._lock:
            self._sources.append(source)
        return source

    def remove(self, source: ScheduledSource) -> None:
        with self._lock:
            if source in self._sources:
                self._sources.remove(source)

    def clear(self) -> None:
        with self._lock:
            self._sources.clear()

    def render(self, out: np.ndarray) -> list[ScheduledSource]:
        """
        Mix the next len(out) frames into out (1-D, overwritten).

        Returns the sources that finished within this block; they are no
        longer scheduled and the caller notifies them.
        """
        out.fill(0)
        finished: list[ScheduledSource] = []

        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + len(out)
            for source in self._sources:
                if not source.started:
                    source.started = True
                    if source.start_frame < block_start:
                        # Late: the already-rendered head is skipped
                        self.frames_skipped += min(block_start, source.end_frame) - source.start_frame
                lo = max(source.start_frame, block_start)
                hi = min(source.end_frame, block_end)
                if lo < hi:
                    out[lo - block_start:hi - block_start] += (
                        source.samples[lo - source.start_frame:hi - source.start_frame]
                    )
                if source.end_frame <= block_end:
                    finished.append(source)
            for source in finished:
                self._sources.remove(source)
            self._frames_rendered = block_end

        np.clip(out, -1.0, 1.0, out=out)
        return finished
