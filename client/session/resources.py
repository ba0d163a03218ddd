"""
Per-call resource registry and its single release path.

Responsibilities:
- Track every resource a call acquires (mic, contexts, capture node,
  channel, playback pipeline, inbound consumer)
- Release all of them, in a fixed order, from ONE function
- Be idempotent: each reference is detached before it is released, so a
  second or concurrent teardown finds nothing left to do

Non-responsibilities:
- Deciding WHEN to tear down (SessionController does)
- User-facing error text
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, fields
from typing import Any, Callable

from audio.capture import AudioCaptureBridge
from audio.platform import CaptureContext, CaptureNode, Microphone, PlaybackContext
from audio.playback import PlaybackScheduler
from channel.base import ChannelError, LiveChannel
from observability.logger import log_event
from observability.metrics import record_values
from session.state import SessionEvent


@dataclass
class SessionResources:
    """Nullable references; None means not held."""
    microphone: Microphone | None = None
    capture_context: CaptureContext | None = None
    capture_node: CaptureNode | None = None
    capture_bridge: AudioCaptureBridge | None = None
    playback_context: PlaybackContext | None = None
    playback: PlaybackScheduler | None = None
    channel: LiveChannel | None = None
    consumer_task: asyncio.Task[None] | None = None

    @property
    def held(self) -> bool:
        return any(getattr(self, f.name) is not None for f in fields(self))

    def held_names(self) -> list[str]:
        return [f.name for f in fields(self) if getattr(self, f.name) is not None]


class ResourceGuard:
    """
    Owns the teardown of one SessionResources.

    enter_idle is called after release with the event that caused the
    teardown; the controller maps it onto the state machine.
    """

    def __init__(
        self,
        resources: SessionResources,
        *,
        enter_idle: Callable[[SessionEvent], None],
        log_context: Callable[[], dict[str, Any]],
    ) -> None:
        self._res = resources
        self._enter_idle = enter_idle
        self._log_context = log_context

    async def teardown(self, cause: SessionEvent = SessionEvent.TEARDOWN) -> None:
        """Release everything, then move the session to idle."""
        await self.release()
        self._enter_idle(cause)

    async def release(self) -> list[str]:
        """
        Release all held resources. Safe to call any number of times.

        Order:
            capture bridge, inbound consumer, channel, microphone,
            capture node, audio contexts, playback sources

        Returns the names of the resources released by this call.
        """
        res = self._res
        released = res.held_names()
        counters: dict[str, float | int] = {}

        # Stop forwarding capture blocks before the channel goes away
        bridge, res.capture_bridge = res.capture_bridge, None
        if bridge is not None:
            bridge.stop()
            counters.update(bridge.snapshot())

        consumer, res.consumer_task = res.consumer_task, None
        if consumer is not None and consumer is not asyncio.current_task() and not consumer.done():
            consumer.cancel()

        channel, res.channel = res.channel, None
        if channel is not None and not channel.closed:
            try:
                await channel.close()
            except ChannelError as e:
                log_event({
                    "event_type": "channel_close_failed",
                    **self._log_context(),
                    "error": repr(e),
                })

        microphone, res.microphone = res.microphone, None
        if microphone is not None:
            microphone.stop()

        node, res.capture_node = res.capture_node, None
        if node is not None:
            node.disconnect()

        capture_ctx, res.capture_context = res.capture_context, None
        if capture_ctx is not None and not capture_ctx.closed:
            capture_ctx.close()

        # Sources are stopped before their context is closed
        playback, res.playback = res.playback, None
        stopped = 0
        if playback is not None:
            stopped = len(playback.cursor.active_sources)
            playback.close()
            stats = playback.snapshot()
            counters["frames_scheduled"] = stats["frames_scheduled"]
            counters["frames_dropped"] = stats["frames_dropped"]

        playback_ctx, res.playback_context = res.playback_context, None
        if playback_ctx is not None and not playback_ctx.closed:
            playback_ctx.close()

        if released:
            log_event({
                "event_type": "session_resources_released",
                **self._log_context(),
                "released": released,
                "sources_stopped": stopped,
            })
        if counters:
            record_values(counters, session_id=self._log_context().get("session_id"), prefix="call_")
        return released
