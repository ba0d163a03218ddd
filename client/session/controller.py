"""
Session controller: the only component that mutates session state.

Responsibilities:
- Run the start sequence (mic -> audio contexts -> channel -> nudge)
- Apply state transitions and publish UI updates
- Consume inbound channel events in arrival order
- Route every exit (end, failure, fault, remote close) through
  ResourceGuard

Non-responsibilities:
- Device I/O (audio platform)
- Wire format (channel)
- Transcript accumulation rules (TranscriptAssembler)

Concurrency:
- Everything here runs on one asyncio event loop.
- start() runs its sequence in a task so end() can abort it; a
  generation counter tells a superseded start apart from a cancelled
  caller.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from audio.capture import AudioCaptureBridge
from audio.frames import AudioFrame
from audio.platform import AudioDeviceError, AudioPlatform
from audio.playback import PlaybackScheduler
from channel.base import (
    ChannelClosed,
    ChannelClosedError,
    ChannelConnector,
    ChannelError,
    ChannelFault,
    InboundMessage,
    LiveChannel,
    LiveConfig,
    MediaInput,
    TextInput,
)
from channel.prompts import (
    SYSTEM_PROMPT_VERSION,
    build_system_instruction,
    nudge_text,
    prompt_hash,
)
from constants import (
    CAPTURE_BLOCK_SAMPLES,
    CAPTURE_SAMPLE_RATE_HZ,
    PLAYBACK_SAMPLE_RATE_HZ,
)
from observability.logger import log_event
from observability.metrics import timed
from session.errors import (
    SessionErrorReason,
    reason_for_audio_error,
    user_message,
)
from session.resident import ResidentContext
from session.resources import ResourceGuard, SessionResources
from session.state import SessionEvent, SessionState
from session.transitions import next_state
from session.voice_session import VoiceSession
from transcript.assembler import Speaker, TranscriptAssembler, TranscriptEntry, TranscriptState


T = TypeVar("T")


def new_session_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


async def _acquire(awaitable: Awaitable[T], release: Callable[[T], None]) -> T:
    """
    Await a resource acquisition that teardown may abort.

    If the caller is cancelled, the acquisition is cancelled too; if it
    had already produced its resource, that resource is released instead
    of leaking.
    """
    inner = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.shield(inner)
    except asyncio.CancelledError:
        inner.cancel()

        def _release_late(fut: asyncio.Future[T]) -> None:
            if fut.cancelled() or fut.exception() is not None:
                return
            release(fut.result())

        inner.add_done_callback(_release_late)
        raise


class SessionController:
    """
    Owns one VoiceSession and the resources of its current call.

    UI hosts call start / send_text / end / shutdown and read updates
    from session.drain_updates() (or await session.wait_for_updates()).
    """

    def __init__(
        self,
        *,
        platform: AudioPlatform,
        connector: ChannelConnector,
        session_id_factory: Callable[[], str] = new_session_id,
    ) -> None:
        self._platform = platform
        self._connector = connector
        self._new_session_id = session_id_factory

        self.session = VoiceSession(session_id=session_id_factory())
        self.transcript = TranscriptAssembler(self.session.session_id)

        self.resources = SessionResources()
        self._guard = ResourceGuard(
            self.resources,
            enter_idle=self._enter_idle,
            log_context=self.session.log_context,
        )

        self._start_task: asyncio.Task[None] | None = None
        self._generation = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def error_message(self) -> str | None:
        return self.session.error_message

    @property
    def entries(self) -> tuple[TranscriptEntry, ...]:
        return self.transcript.entries

    @property
    def partials(self) -> TranscriptState:
        return self.transcript.partials

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SessionController:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(self, resident: ResidentContext | Mapping[str, Any]) -> SessionState:
        """
        Start a distress call for the given resident snapshot.

        Valid from idle or error. A call still holding resources is
        ended first. Returns the state reached: connected on success,
        error on a pre-connect failure, idle if end() aborted the start.
        """
        if not isinstance(resident, ResidentContext):
            resident = ResidentContext.from_profile(resident)

        if self.resources.held or self.session.state in (
            SessionState.CONNECTING,
            SessionState.CONNECTED,
        ):
            await self.end()

        self.session.begin_call(self._new_session_id(), resident)
        self.transcript.reset(self.session.session_id)
        if not self._apply(SessionEvent.START):
            return self.session.state

        self._generation += 1
        generation = self._generation
        task = asyncio.create_task(self._connect(resident))
        self._start_task = task

        try:
            await task
        except asyncio.CancelledError:
            if generation != self._generation:
                # Superseded by end(); it already tore down.
                return self.session.state
            await self._guard.teardown()
            raise
        except Exception:
            await self._guard.teardown()
            raise
        finally:
            if self._start_task is task:
                self._start_task = None

        return self.session.state

    def send_text(self, text: str) -> bool:
        """
        Send a typed message while connected.

        The message is appended to the transcript before it is sent.
        Returns False (and does nothing) for blank text or when not
        connected.
        """
        channel = self.resources.channel
        if self.session.state is not SessionState.CONNECTED or channel is None or channel.closed:
            log_event({
                "event_type": "typed_message_ignored",
                **self.session.log_context(),
            })
            return False

        entry = self.transcript.add_typed_message(text)
        if entry is None:
            return False

        channel.send(TextInput(entry.text))
        self.session.enqueue_update({"type": "TRANSCRIPT_ENTRY", **entry.to_dict()})
        return True

    async def end(self) -> None:
        """
        End the call from any state, including mid-start.

        Idempotent: a second call finds nothing to release and the
        session already idle.
        """
        self._generation += 1
        task, self._start_task = self._start_task, None
        if task is not None and not task.done():
            task.cancel()
            log_event({
                "event_type": "session_start_aborted",
                **self.session.log_context(),
            })

        await self._guard.teardown(SessionEvent.END)

    async def shutdown(self) -> None:
        """Host is going away: release everything regardless of state."""
        log_event({
            "event_type": "session_shutdown",
            **self.session.log_context(),
        })
        await self.end()

    # ------------------------------------------------------------------
    # Start sequence
    # ------------------------------------------------------------------

    async def _connect(self, resident: ResidentContext) -> None:
        res = self.resources
        session_id = self.session.session_id

        # 1. Microphone (may block on a permission prompt)
        try:
            microphone = await _acquire(
                self._platform.open_microphone(
                    sample_rate=CAPTURE_SAMPLE_RATE_HZ,
                    block_size=CAPTURE_BLOCK_SAMPLES,
                ),
                release=lambda mic: mic.stop(),
            )
        except AudioDeviceError as e:
            await self._fail(reason_for_audio_error(e), e, stage="microphone")
            return
        res.microphone = microphone

        # 2. Audio contexts
        try:
            res.capture_context = self._platform.create_capture_context(
                sample_rate=CAPTURE_SAMPLE_RATE_HZ,
            )
            res.playback_context = self._platform.create_playback_context(
                sample_rate=PLAYBACK_SAMPLE_RATE_HZ,
            )
        except AudioDeviceError as e:
            await self._fail(reason_for_audio_error(e), e, stage="audio_context")
            return

        # 3. Channel
        instruction = build_system_instruction(resident)
        log_event({
            "event_type": "channel_open_requested",
            **self.session.log_context(),
            **resident.log_fields(),
            "prompt_version": SYSTEM_PROMPT_VERSION,
            "prompt_hash": prompt_hash(instruction),
        })
        try:
            with timed("channel_open", session_id=session_id, state=self.session.state.value):
                channel = await _acquire(
                    self._connector(LiveConfig(system_instruction_text=instruction)),
                    release=self._discard_channel,
                )
        except ChannelError as e:
            await self._fail(SessionErrorReason.CHANNEL_OPEN_FAILED, e, stage="channel_open")
            return
        res.channel = channel

        # 4. Nudge goes out before any captured audio. The backend may
        # already have closed the socket right after acknowledging setup.
        try:
            if channel.closed:
                raise ChannelClosedError("channel closed before the nudge was sent")
            channel.send(TextInput(nudge_text()))
        except ChannelError as e:
            await self._fail(SessionErrorReason.CHANNEL_OPEN_FAILED, e, stage="nudge")
            return
        self._apply(SessionEvent.OPENED)

        # 5. Inbound pipeline
        playback = PlaybackScheduler(res.playback_context, session_id=session_id)
        res.playback = playback
        playback.start()
        res.consumer_task = asyncio.create_task(self._consume(channel, playback))

        # 6. Capture -> channel
        bridge = AudioCaptureBridge(sink=self._audio_sink(channel))
        res.capture_bridge = bridge
        res.capture_node = res.capture_context.connect(
            microphone,
            block_size=bridge.block_size,
            on_block=bridge.on_block,
        )

        log_event({
            "event_type": "session_connected",
            **self.session.log_context(),
        })

    def _audio_sink(self, channel: LiveChannel) -> Callable[[AudioFrame], None]:
        def _sink(frame: AudioFrame) -> None:
            if channel.closed:
                return
            channel.send(MediaInput(data=frame.to_base64(), mime_type=frame.mime_type))
        return _sink

    def _discard_channel(self, channel: LiveChannel) -> None:
        """Close a channel whose open completed after the start was aborted."""
        if not channel.closed:
            asyncio.ensure_future(channel.close())

    async def _fail(self, reason: SessionErrorReason, exc: Exception, *, stage: str) -> None:
        log_event({
            "event_type": "session_start_failed",
            **self.session.log_context(),
            "stage": stage,
            "reason": reason.value,
            "error": repr(exc),
        })
        await self._guard.release()
        self.session.set_error(reason, user_message(reason))
        self._apply(SessionEvent.FAILED)

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    async def _consume(self, channel: LiveChannel, playback: PlaybackScheduler) -> None:
        async for event in channel.events():
            if isinstance(event, InboundMessage):
                self._handle_message(event, playback)
            elif isinstance(event, ChannelFault):
                await self._on_fault(event)
                return
            elif isinstance(event, ChannelClosed):
                await self._on_closed(event)
                return

    def _handle_message(self, msg: InboundMessage, playback: PlaybackScheduler) -> None:
        """Transcriptions first, then turn completion, then audio."""
        if msg.input_transcription:
            self.transcript.append_partial(Speaker.USER, msg.input_transcription)
        if msg.output_transcription:
            self.transcript.append_partial(Speaker.DISPATCHER, msg.output_transcription)
        if msg.input_transcription or msg.output_transcription:
            partials = self.transcript.partials
            self.session.enqueue_update({
                "type": "PARTIAL",
                "user": partials.user_partial,
                "dispatcher": partials.dispatcher_partial,
            })

        if msg.turn_complete:
            for entry in self.transcript.flush_turn():
                self.session.enqueue_update({"type": "TRANSCRIPT_ENTRY", **entry.to_dict()})
            self.session.enqueue_update({"type": "PARTIAL", "user": "", "dispatcher": ""})

        if msg.inline_audio_data:
            playback.enqueue(msg.inline_audio_data)

    async def _on_fault(self, fault: ChannelFault) -> None:
        reason = SessionErrorReason.CHANNEL_RUNTIME_ERROR
        log_event({
            "event_type": "channel_runtime_error",
            **self.session.log_context(),
            "error": fault.reason,
        })
        self.session.set_error(reason, user_message(reason))
        await self._guard.teardown()

    async def _on_closed(self, closed: ChannelClosed) -> None:
        log_event({
            "event_type": "channel_remote_close",
            **self.session.log_context(),
            "code": closed.code,
            "reason": closed.reason,
            "clean": closed.clean,
        })
        if not closed.clean:
            reason = SessionErrorReason.UNEXPECTED_REMOTE_CLOSE
            self.session.set_error(reason, user_message(reason))
        await self._guard.teardown(SessionEvent.REMOTE_CLOSE)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _enter_idle(self, cause: SessionEvent) -> None:
        if self._apply(cause, quiet=True):
            return
        self._apply(SessionEvent.TEARDOWN, quiet=True)

    def _apply(self, event: SessionEvent, *, quiet: bool = False) -> bool:
        prev = self.session.state
        new = next_state(prev, event)
        if new is None:
            if not quiet:
                log_event({
                    "event_type": "transition_rejected",
                    **self.session.log_context(),
                    "event": event.value,
                })
            return False

        self.session.state = new
        log_event({
            "event_type": "state_changed",
            "session_id": self.session.session_id,
            "from": prev.value,
            "to": new.value,
            "event": event.value,
        })
        self.session.enqueue_update({
            "type": "STATE",
            "state": new.value,
            "error_message": self.session.error_message,
        })
        return True
