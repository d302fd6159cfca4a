# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Errors raised or emitted by recognition backends and the session controller.

Whether an error is retried is decided by the session controller from the
error's type; the `recoverable` flag documents the default policy.
"""


class RecognitionError(Exception):
    """Base class for all recognition failures."""

    recoverable: bool = True


class PermissionDenied(RecognitionError):
    """Audio capture is not permitted. The user has to grant it externally."""

    recoverable = False


class LocaleUnsupported(RecognitionError):
    """The backend has no language model for the requested locale."""

    def __init__(self, locale: str, message: str | None = None) -> None:
        self.locale = locale
        super().__init__(message or f"Speech recognition is not available for {locale}")


class AudioDeviceTransient(RecognitionError):
    """The input device reported an unusable format, usually mid-transition."""


class BackendProcessExit(RecognitionError):
    """A recognizer subprocess exited while it should still be listening."""

    def __init__(self, returncode: int | None) -> None:
        self.returncode = returncode
        super().__init__(f"Recognizer process exited with code {returncode}")


class NetworkOrAPIError(RecognitionError):
    """A cloud transcription request failed."""


class BackendUnavailable(RecognitionError):
    """The backend cannot run at all: missing model, binary or credentials."""

    recoverable = False


class RetriesExhausted(RecognitionError):
    """Recoverable failures kept happening until the retry budget ran out."""

    recoverable = False
