"""
Platform audio contract.

This module defines the *interface only*: two independent unidirectional
audio pipes (capture and playback) over a generic platform audio
capability. Threading and buffering primitives are a platform concern and
live in the concrete implementation (see audio/sounddevice_platform.py).

Key invariants:
- Capture and playback are separate clock domains with their own sample
  rates and lifecycles; they never share a context.
- Callbacks handed to the platform (capture blocks, playback completion)
  are always invoked on the asyncio event loop thread. The platform is
  responsible for the cross-thread handoff; it must never block inside its
  real-time audio callback.
- close()/stop()/disconnect() are idempotent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

import numpy as np


BlockHandler = Callable[[np.ndarray], None]
EndedCallback = Callable[[], None]


# -------------------------
# Exceptions
# -------------------------

class AudioDeviceError(Exception):
    """Base class for platform audio hardware failures."""


class PlaybackUnavailable(AudioDeviceError):
    """Raised when the output device cannot be opened."""


class MicrophoneError(AudioDeviceError):
    """Base class for microphone acquisition failures."""


class MicPermissionDenied(MicrophoneError):
    """
    Raised when the user or OS refused access to the microphone.

    Recoverable: the user can grant access and retry.
    """


class MicUnavailable(MicrophoneError):
    """
    Raised when no usable input device exists or the hardware failed to open.
    """


# -------------------------
# Capture side
# -------------------------

class Microphone(ABC):
    """Granted microphone access (the platform's media stream)."""

    sample_rate: int

    @abstractmethod
    def stop(self) -> None:
        """Stop and release every underlying input track. Idempotent."""
        raise NotImplementedError

    @property
    @abstractmethod
    def active(self) -> bool:
        raise NotImplementedError


class CaptureNode(ABC):
    """Processing node delivering fixed-size capture blocks to a handler."""

    @abstractmethod
    def disconnect(self) -> None:
        """Stop delivering blocks. Idempotent."""
        raise NotImplementedError


class CaptureContext(ABC):
    """16 kHz capture clock domain."""

    sample_rate: int

    @abstractmethod
    def connect(
        self,
        microphone: Microphone,
        *,
        block_size: int,
        on_block: BlockHandler,
    ) -> CaptureNode:
        """
        Route microphone audio through a processing node.

        on_block receives mono float32 arrays of block_size samples, in
        capture order, on the event loop thread.
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def closed(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


# -------------------------
# Playback side
# -------------------------

class PlaybackSource(ABC):
    """One scheduled buffer of output audio."""

    @abstractmethod
    def stop(self) -> None:
        """Stop immediately (or cancel if not yet started). Idempotent."""
        raise NotImplementedError


class PlaybackContext(ABC):
    """
    24 kHz playback clock domain.

    current_time is a monotonic clock in seconds owned by the output device:
    it advances only as audio is rendered.
    """

    sample_rate: int

    @property
    @abstractmethod
    def current_time(self) -> float:
        raise NotImplementedError

    @abstractmethod
    def play(
        self,
        samples: np.ndarray,
        *,
        start_time: float,
        on_ended: EndedCallback,
    ) -> PlaybackSource:
        """
        Schedule samples to begin at start_time (context clock seconds).

        on_ended fires once on natural completion, not after stop().
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def closed(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


# -------------------------
# Platform capability
# -------------------------

class AudioPlatform(ABC):
    """Factory for microphone access and the two clock domains."""

    @abstractmethod
    async def open_microphone(self, *, sample_rate: int, block_size: int) -> Microphone:
        """
        Acquire the microphone.

        Raises:
            MicPermissionDenied: access refused
            MicUnavailable: no device / hardware failure
        """
        raise NotImplementedError

    @abstractmethod
    def create_capture_context(self, *, sample_rate: int) -> CaptureContext:
        raise NotImplementedError

    @abstractmethod
    def create_playback_context(self, *, sample_rate: int) -> PlaybackContext:
        """
        Open the output clock domain.

        Raises:
            PlaybackUnavailable: output device could not be opened
        """
        raise NotImplementedError
