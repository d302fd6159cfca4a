# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Base interface for speech recognition backends.

This module defines the abstract interface that all backends (Vosk,
whisper-stream, OpenAI Whisper) must implement. The session controller only
ever talks to this interface.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import numpy as np
import numpy.typing as npt

from .config import Config
from .errors import RecognitionError


@dataclass(frozen=True)
class Fragment:
    """One update from a backend: recognized text, or a terminal error."""

    text: str = ""
    error: RecognitionError | None = None
    is_partial: bool = True

    def __repr__(self) -> str:
        if self.error is not None:
            return f"Fragment(error={self.error!r})"
        status: str = "partial" if self.is_partial else "final"
        return f"Fragment({status}: '{self.text}')"


@dataclass(frozen=True)
class MicConfig:
    """Audio route a backend is started with."""

    device: int | str | None = None
    sample_rate: int = 16000
    channels: int = 1


class PermissionStatus(Enum):
    """Whether audio capture is allowed."""
    GRANTED = "granted"
    DENIED = "denied"
    NOT_DETERMINED = "not_determined"


@dataclass
class ModelInfo:
    """Information about an installable recognition model."""

    id: str  # Unique identifier (e.g., "vosk-en-us-small")
    name: str  # Display name (e.g., "English US - Small")
    provider: str  # Backend kind ("vosk")
    locale: str  # Locale the model recognizes (e.g., "en-US")
    size_mb: int | None = None
    description: str | None = None


FragmentCallback = Callable[[Fragment], None]


class TranscriptionBackend(ABC):
    """Base interface for speech recognition backends.

    Backends report results through the on_fragment callback given at
    construction. The callback may be invoked from any thread. After a
    fragment carrying an error, a backend emits nothing further.
    """

    kind: str = ""

    def __init__(self, on_fragment: FragmentCallback, config: Config) -> None:
        """
        Initialize the backend.

        Args:
            on_fragment: Receives every fragment this backend produces
            config: Configuration snapshot for this session
        """
        self.on_fragment = on_fragment
        self.config = config

    @abstractmethod
    async def start(self, reference_text: str, locale: str, mic: MicConfig) -> None:
        """
        Start recognizing.

        Args:
            reference_text: The script being read
            locale: Locale to recognize (e.g., "en-US")
            mic: Audio route and format of the frames passed to feed_audio()

        Raises:
            RecognitionError: If the backend cannot start
        """

    @abstractmethod
    def feed_audio(self, frame: npt.NDArray[np.float32]) -> None:
        """
        Accept one captured audio frame.

        Called on the audio callback thread, so it must never block.

        Args:
            frame: Float samples in [-1, 1], shaped (frames, channels)
        """

    @abstractmethod
    async def stop(self) -> None:
        """Stop recognizing and release resources. Safe to call more than once."""

    def describe_locale(self, locale: str) -> str:
        """Locale label for display while this backend is active."""
        return locale

    @staticmethod
    def supported_locales() -> list[str]:
        """Locales this backend can recognize, or an empty list if it detects language itself."""
        return []

    def emit_text(self, text: str, is_partial: bool = True) -> None:
        """Report recognized text."""
        self.on_fragment(Fragment(text=text, is_partial=is_partial))

    def emit_error(self, error: RecognitionError) -> None:
        """Report a failure. No further fragments should follow."""
        self.on_fragment(Fragment(error=error))


def to_mono(frame: npt.NDArray[np.float32]) -> npt.NDArray[np.float32]:
    """Average all channels of a (frames, channels) block."""
    if frame.ndim > 1:
        return frame.mean(axis=1).astype(np.float32)
    return frame.astype(np.float32, copy=False)


def to_pcm16(samples: npt.NDArray[np.float32]) -> bytes:
    """Convert float samples in [-1, 1] to little-endian 16-bit PCM bytes."""
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767.0).astype('<i2').tobytes()
