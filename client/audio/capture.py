"""
Microphone -> channel bridge.

Converts each captured float32 block to PCM16 and hands it to the channel.

Rules:
- Runs only while the session is connected.
- Blocks arrive on the event loop thread (the platform already did the
  cross-thread handoff); nothing here awaits.
- Sends are fire-and-forget, in capture order, never dropped. No
  backpressure against channel throughput is applied.
"""

from __future__ import annotations

from typing import Callable

import numpy as np

from audio.frames import AudioFrame
from audio.pcm import float32_to_pcm16le
from constants import CAPTURE_BLOCK_SAMPLES


FrameSink = Callable[[AudioFrame], None]


class AudioCaptureBridge:
    """
    Encodes capture blocks into outbound AudioFrames.

    sink is called synchronously with each frame; it must not block.
    """

    def __init__(self, *, sink: FrameSink, block_size: int = CAPTURE_BLOCK_SAMPLES) -> None:
        self._sink = sink
        self.block_size = block_size
        self._running = True

        self.blocks_sent = 0
        self.bytes_sent = 0

    @property
    def running(self) -> bool:
        return self._running

    def on_block(self, samples: np.ndarray) -> None:
        """Capture callback target: one mono float32 block."""
        if not self._running:
            return

        frame = AudioFrame.outbound(float32_to_pcm16le(samples))
        self._sink(frame)

        self.blocks_sent += 1
        self.bytes_sent += len(frame.pcm_bytes)

    def stop(self) -> None:
        """Stop forwarding; late blocks already queued on the loop are ignored."""
        self._running = False

    def snapshot(self) -> dict[str, int]:
        return {
            "blocks_sent": self.blocks_sent,
            "bytes_sent": self.bytes_sent,
        }
