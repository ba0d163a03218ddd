"""
Call transcript assembly.

Responsibilities:
- Accumulate partial speech-to-text fragments per speaker
- Flush finalized entries on turn-complete boundaries
- Record typed (non-spoken) user messages immediately
- Keep the ordered transcript log (insertion order = conversational order)

Non-responsibilities:
- No channel I/O (the controller forwards typed text)
- No state machine decisions
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from observability.logger import log_event


class Speaker(str, Enum):
    USER = "user"
    DISPATCHER = "dispatcher"


@dataclass(frozen=True)
class TranscriptEntry:
    """Single finalized transcript line."""
    speaker: Speaker
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"speaker": self.speaker.value, "text": self.text}


@dataclass
class TranscriptState:
    """
    In-progress text for the current turn.

    Accumulators only grow until take() resets them; they are never
    overwritten by a later partial.
    """
    user_partial: str = ""
    dispatcher_partial: str = ""

    def append(self, speaker: Speaker, text: str) -> None:
        if speaker is Speaker.USER:
            self.user_partial += text
        else:
            self.dispatcher_partial += text

    def take(self) -> tuple[str, str]:
        """
        Read both accumulators and reset them in one step.

        Synchronous on the event loop, so no partial event can interleave
        between the read and the reset.
        """
        user, dispatcher = self.user_partial, self.dispatcher_partial
        self.user_partial = ""
        self.dispatcher_partial = ""
        return user, dispatcher


class TranscriptAssembler:
    """
    Ordered transcript for one call.

    Invariants:
    - An entry is appended only by flush_turn() or add_typed_message()
    - flush_turn() emits the user entry before the dispatcher entry
    - Blank accumulators produce no entry
    """

    def __init__(self, session_id: str | None = None) -> None:
        self._session_id = session_id
        self._entries: list[TranscriptEntry] = []
        self._state = TranscriptState()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def entries(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    @property
    def partials(self) -> TranscriptState:
        """Copy of the in-progress text (for live display)."""
        return TranscriptState(
            user_partial=self._state.user_partial,
            dispatcher_partial=self._state.dispatcher_partial,
        )

    def append_partial(self, speaker: Speaker, text: str) -> None:
        """Add an incremental speech-to-text fragment."""
        if text:
            self._state.append(speaker, text)

    def flush_turn(self) -> tuple[TranscriptEntry, ...]:
        """
        Finalize the current turn.

        Returns the entries appended (zero, one or two).
        """
        user_text, dispatcher_text = self._state.take()

        new_entries: list[TranscriptEntry] = []
        if user_text.strip():
            new_entries.append(TranscriptEntry(Speaker.USER, user_text.strip()))
        if dispatcher_text.strip():
            new_entries.append(TranscriptEntry(Speaker.DISPATCHER, dispatcher_text.strip()))

        self._entries.extend(new_entries)

        if new_entries:
            log_event({
                "event_type": "transcript_turn_flushed",
                "session_id": self._session_id,
                "entries": len(new_entries),
                "total_entries": len(self._entries),
            })
        return tuple(new_entries)

    def add_typed_message(self, text: str) -> TranscriptEntry | None:
        """
        Record a typed user message, bypassing the partial mechanism.

        Returns None for blank input.
        """
        text = text.strip()
        if not text:
            return None
        entry = TranscriptEntry(Speaker.USER, text)
        self._entries.append(entry)
        log_event({
            "event_type": "transcript_typed_message",
            "session_id": self._session_id,
            "char_count": len(text),
        })
        return entry

    def reset(self, session_id: str | None = None) -> None:
        """Clear log and accumulators for a new call."""
        if session_id is not None:
            self._session_id = session_id
        self._entries.clear()
        self._state.take()
