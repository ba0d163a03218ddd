"""
Live channel contract.

This module defines the *interface only*: the bidirectional realtime link
to the conversational backend, modelled as a capability object with
send/close plus a single ordered inbound event stream.

Key invariants:
- The session controller is the only caller of a channel.
- send() never blocks and never reorders: messages leave in call order.
  There is no backpressure; the outbound queue is unbounded.
- events() yields every inbound event in arrival order and ends after
  exactly one ChannelClosed.
- The channel reports failures as events or exceptions carrying a reason;
  it never decides what the session does next.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Union

from constants import LIVE_RESPONSE_MODALITY_AUDIO


# -------------------------
# Exceptions
# -------------------------

class ChannelError(Exception):
    """Base class for channel failures."""


class ChannelOpenError(ChannelError):
    """Raised when the channel could not be opened or was not acknowledged."""


class ChannelClosedError(ChannelError):
    """Raised when operating on a channel that is already closed."""


# -------------------------
# Open configuration
# -------------------------

@dataclass(frozen=True)
class LiveConfig:
    """Configuration sent once when the channel opens."""
    system_instruction_text: str
    response_modality: str = LIVE_RESPONSE_MODALITY_AUDIO
    input_transcription_enabled: bool = True
    output_transcription_enabled: bool = True


# -------------------------
# Outbound messages
# -------------------------

@dataclass(frozen=True)
class TextInput:
    """Text turn (typed message or the opening nudge)."""
    text: str


@dataclass(frozen=True)
class MediaInput:
    """Realtime media chunk: base64 payload plus its mime type."""
    data: str
    mime_type: str


OutboundMessage = Union[TextInput, MediaInput]


# -------------------------
# Inbound events
# -------------------------

@dataclass(frozen=True)
class InboundMessage:
    """
    One server message, reduced to the fields the session consumes.

    Any combination of fields may be present in a single message.
    """
    input_transcription: str | None = None
    output_transcription: str | None = None
    turn_complete: bool = False
    inline_audio_data: str | None = None


@dataclass(frozen=True)
class ChannelFault:
    """Runtime failure on an open channel (transport or server error)."""
    reason: str


@dataclass(frozen=True)
class ChannelClosed:
    """
    Terminal event.

    clean=True: normal end of call (normal close code or local close).
    clean=False: the remote side dropped the connection unexpectedly.
    """
    reason: str = ""
    code: int | None = None
    clean: bool = True


ChannelEvent = Union[InboundMessage, ChannelFault, ChannelClosed]


# -------------------------
# Channel capability
# -------------------------

class LiveChannel(ABC):
    """Open, acknowledged channel handle."""

    @abstractmethod
    def send(self, message: OutboundMessage) -> None:
        """
        Queue a message for delivery. Fire-and-forget.

        Raises:
            ChannelClosedError: the channel is already closed
        """
        raise NotImplementedError

    @abstractmethod
    def events(self) -> AsyncIterator[ChannelEvent]:
        """Single ordered inbound event stream (one consumer only)."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """
        Close the channel.

        Raises:
            ChannelClosedError: the channel was already closed
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def closed(self) -> bool:
        raise NotImplementedError


# Opens a channel; resolves once the backend acknowledged the configuration.
# Raises ChannelOpenError on failure.
ChannelConnector = Callable[[LiveConfig], Awaitable[LiveChannel]]
