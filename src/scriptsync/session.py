# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Recognition session controller.

Owns the active backend and audio route, decides what to do when recognition
fails, and turns recognized fragments into script progress. All state lives
on the event loop; the audio thread and backend worker threads only reach it
through the (generation, fragment) queue.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import numpy as np
import numpy.typing as npt

from . import debug_log
from .aligner import AlignmentCursor, ReferenceScript, advance, jump_to
from .config import (
    Config,
    get_level_settings,
    get_recognition_settings,
    get_retry_settings,
    merge_config,
    snapshot_config,
)
from .errors import (
    AudioDeviceTransient,
    BackendUnavailable,
    LocaleUnsupported,
    PermissionDenied,
    RecognitionError,
    RetriesExhausted,
)
from .language import detect_locale
from .levels import LevelMonitor
from .providers import ON_DEVICE_KINDS, create_backend, supported_locales
from .transcription_provider import (
    Fragment,
    FragmentCallback,
    MicConfig,
    PermissionStatus,
    TranscriptionBackend,
)

logger = logging.getLogger(__name__)

FALLBACK_LOCALE: str = "en-US"
SPOKEN_TEXT_TAIL: int = 60


class SessionState(Enum):
    """Lifecycle of the recognition session."""
    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    ERROR = "error"
    RESTARTING = "restarting"


@dataclass
class Session:
    """One attempt at running a backend. Replaced on every (re)start."""
    generation: int
    backend: TranscriptionBackend | None = None
    locale: str | None = None
    retry_count: int = 0
    failed_locales: set[str] = field(default_factory=set)


class Capture(Protocol):
    """Audio route used by the controller (see audio.AudioCapture)."""

    def open(self) -> MicConfig: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


class Permission(Protocol):
    """Capture permission check (see audio.InputDevicePermission)."""

    def status(self) -> PermissionStatus: ...

    async def request(self) -> bool: ...


BackendFactory = Callable[[str, FragmentCallback, Config], TranscriptionBackend]
CaptureFactory = Callable[[int | str | None, int, Callable[[npt.NDArray[np.float32]], None]], Capture]
Listener = Callable[["SessionController"], None]


def _default_capture_factory(
    device: int | str | None,
    chunk_ms: int,
    on_frame: Callable[[npt.NDArray[np.float32]], None]
) -> Capture:
    # Imported here so the package works without PortAudio until capture starts
    from .audio import AudioCapture
    return AudioCapture(device=device, chunk_duration_ms=chunk_ms, on_frame=on_frame)


class SessionController:
    """Runs recognition against a reference script and tracks progress."""

    def __init__(
        self,
        config: Config | None = None,
        backend_factory: BackendFactory = create_backend,
        capture_factory: CaptureFactory | None = None,
        permission: Permission | None = None,
        level_monitor: LevelMonitor | None = None
    ) -> None:
        """
        Initialize the controller.

        Args:
            config: Live configuration; a snapshot is taken at every start
            backend_factory: Creates a backend for a kind (see providers.create_backend)
            capture_factory: Creates the audio route, AudioCapture by default
            permission: Capture permission check, InputDevicePermission by default
            level_monitor: Input level series, built from config by default
        """
        self.config: Config = config if config is not None else merge_config()
        self.backend_factory = backend_factory
        self.capture_factory: CaptureFactory = capture_factory or _default_capture_factory
        self._permission = permission
        self.level_monitor = level_monitor or LevelMonitor(**get_level_settings(self.config))

        self.script: ReferenceScript | None = None
        self.cursor: AlignmentCursor = AlignmentCursor()
        self.session: Session = Session(generation=0)
        self._snapshot: Config = snapshot_config(self.config)
        self._generation: int = 0
        self._state: SessionState = SessionState.IDLE
        self._last_error: RecognitionError | None = None
        self._last_spoken_text: str = ""
        self._dismissed: bool = False
        self._listening_since: float | None = None

        self._capture: Capture | None = None
        self._restart_task: asyncio.Task[None] | None = None
        self._fragments: asyncio.Queue[tuple[int, Fragment]] | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._listeners: list[Listener] = []

    # Observable state

    @property
    def recognized_char_count(self) -> int:
        return self.cursor.recognized_char_count

    @property
    def is_listening(self) -> bool:
        return self._state is SessionState.LISTENING

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_error(self) -> RecognitionError | None:
        return self._last_error

    @property
    def last_spoken_text(self) -> str:
        return self._last_spoken_text

    @property
    def levels(self) -> list[float]:
        return self.level_monitor.levels

    @property
    def active_locale(self) -> str | None:
        """Locale label of the running session, as the backend describes it."""
        locale = self.session.locale
        backend = self.session.backend
        if locale is None:
            return None
        return backend.describe_locale(locale) if backend is not None else locale

    @property
    def debug_status(self) -> str:
        """One-line summary for logs and the CLI status line."""
        length = len(self.script) if self.script is not None else 0
        return (f"state={self._state.value} gen={self._generation} "
                f"pos={self.cursor.recognized_char_count}/{length} "
                f"start={self.cursor.match_start_offset} "
                f"retries={self.session.retry_count} locale={self.session.locale}")

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        """
        Register a callback run on the event loop after every state change.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)
        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # Operations

    async def start(self, text: str) -> None:
        """
        Start recognizing against a new script.

        Cancels any running session, resets progress and clears previous
        errors and failed locales.
        """
        self._generation += 1
        await self._cancel_restart()
        await self._teardown()

        self.script = ReferenceScript.from_text(text)
        self.cursor = AlignmentCursor()
        self._snapshot = snapshot_config(self.config)
        self.session = Session(generation=self._generation)
        self._last_error = None
        self._last_spoken_text = ""
        self._dismissed = False
        self._ensure_dispatcher()

        debug_log.clear_logs()
        debug_log.log_session_event("start", f"{len(self.script)} chars")
        logger.info("Starting session for %d character script", len(self.script))

        permission = self._get_permission()
        status = permission.status()
        if status is PermissionStatus.DENIED:
            await self._terminal(PermissionDenied("Microphone access was denied"))
            return
        if status is PermissionStatus.NOT_DETERMINED:
            generation = self._generation
            self._state = SessionState.STARTING
            self._notify()
            granted = await permission.request()
            if generation != self._generation:
                return
            if not granted:
                await self._terminal(PermissionDenied("Microphone access was denied"))
                return

        await self._begin()

    async def stop(self) -> None:
        """Stop recognizing. Progress is kept. Safe to call more than once."""
        active = (self._state is not SessionState.IDLE
                  or self.session.backend is not None
                  or self._capture is not None
                  or (self._restart_task is not None and not self._restart_task.done()))
        if not active:
            return

        self._generation += 1
        await self._cancel_restart()
        await self._teardown()
        self._state = SessionState.IDLE
        self._listening_since = None
        self._last_spoken_text = ""
        self.level_monitor.clear()
        debug_log.log_session_event("stop", f"pos={self.cursor.recognized_char_count}")
        logger.info("Session stopped at %d", self.cursor.recognized_char_count)
        self._notify()

    async def force_stop(self) -> None:
        """Stop and dismiss the session. Nothing restarts until start() or resume()."""
        await self.stop()
        self._generation += 1
        self.session.retry_count = get_retry_settings(self._snapshot)["max_retries"]
        self._dismissed = True
        self.script = None
        debug_log.log_session_event("force_stop")
        self._notify()

    async def resume(self) -> None:
        """Restart recognition from the current position with a fresh retry budget."""
        if self.script is None:
            logger.info("Nothing to resume")
            return
        self._generation += 1
        await self._cancel_restart()
        await self._teardown()

        self._dismissed = False
        self._last_error = None
        self.session.retry_count = 0
        self.cursor = AlignmentCursor.at(self.cursor.recognized_char_count)
        self._ensure_dispatcher()
        debug_log.log_session_event("resume", f"pos={self.cursor.recognized_char_count}")
        await self._begin()

    def jump_to(self, offset: int) -> None:
        """
        Move progress to an offset chosen by the user.

        The offset is clamped to the script. A running session restarts so
        that recognized text is matched from the new position.
        """
        length = len(self.script) if self.script is not None else 0
        target = max(0, min(offset, length))
        old = self.cursor.recognized_char_count
        self.cursor = jump_to(target)
        if self.script is not None:
            debug_log.log_position_update(old, target, self.script.source_text, "jump")
        self._notify()

        if self.is_listening:
            self.session.retry_count = 0
            self._schedule_restart(get_retry_settings(self._snapshot)["restart_delay"], "jump")

    def notify_configuration_change(self) -> None:
        """
        Restart with the current configuration after an external change.

        Ignored when not listening, and shortly after a start, since opening
        the audio route itself triggers device notifications.
        """
        if not self.is_listening or self._listening_since is None:
            return
        settle = get_retry_settings(self._snapshot)["settle_seconds"]
        now = asyncio.get_running_loop().time()
        if now - self._listening_since < settle:
            logger.debug("Ignoring configuration change during settle window")
            return

        logger.info("Configuration changed, restarting recognition")
        self._snapshot = snapshot_config(self.config)
        self.session.retry_count = 0
        self._schedule_restart(get_retry_settings(self._snapshot)["restart_delay"],
                               "configuration change")

    async def close(self) -> None:
        """Stop and shut down the fragment dispatcher."""
        await self.stop()
        dispatcher, self._dispatcher = self._dispatcher, None
        self._fragments = None
        if dispatcher is not None:
            dispatcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await dispatcher

    # Fragment handling

    async def dispatch(self, generation: int, fragment: Fragment) -> None:
        """
        Handle one fragment from a backend.

        Fragments from any generation but the current one are dropped.
        """
        if generation != self._generation or self.script is None:
            logger.debug("Dropping stale %r (generation %d, current %d)",
                         fragment, generation, self._generation)
            return

        if fragment.error is not None:
            await self._handle_failure(fragment.error)
            return

        if not fragment.text:
            return

        self.session.retry_count = 0
        self._last_spoken_text = fragment.text[-SPOKEN_TEXT_TAIL:]
        debug_log.log_fragment(generation, fragment.text, fragment.is_partial)

        old = self.cursor.recognized_char_count
        self.cursor = advance(fragment.text, self.cursor, self.script.source_text)
        if self.cursor.recognized_char_count != old:
            debug_log.log_position_update(old, self.cursor.recognized_char_count,
                                          self.script.source_text, "advance")
        self._notify()

    def _make_emitter(self, generation: int) -> FragmentCallback:
        """Fragment callback for one backend, stamping its generation."""
        loop = asyncio.get_running_loop()
        fragments = self._fragments
        assert fragments is not None

        def emit(fragment: Fragment) -> None:
            if loop.is_closed():
                return
            loop.call_soon_threadsafe(fragments.put_nowait, (generation, fragment))
        return emit

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is not None and not self._dispatcher.done():
            return
        self._fragments = asyncio.Queue()
        self._dispatcher = asyncio.create_task(self._dispatch_loop(self._fragments))

    async def _dispatch_loop(self, fragments: asyncio.Queue[tuple[int, Fragment]]) -> None:
        while True:
            generation, fragment = await fragments.get()
            await self.dispatch(generation, fragment)

    def _on_audio_frame(self, frame: npt.NDArray[np.float32]) -> None:
        # Audio thread
        self.level_monitor.on_frame(frame)
        backend = self.session.backend
        if backend is not None:
            backend.feed_audio(frame)

    # Session lifecycle

    def _get_permission(self) -> Permission:
        if self._permission is None:
            from .audio import InputDevicePermission
            self._permission = InputDevicePermission()
        return self._permission

    def _resolve_locale(self) -> str | None:
        """
        Pick the locale for the next attempt.

        Tries the locale detected from the script, then the configured one,
        then en-US, skipping any that already failed.
        """
        settings = get_recognition_settings(self._snapshot)
        candidates: list[str] = []
        if settings["auto_detect_language"] and self.script is not None:
            detected = detect_locale(self.script.source_text,
                                     supported_locales(settings["backend"]))
            if detected:
                candidates.append(detected)
        candidates += [settings["locale"], FALLBACK_LOCALE]

        for candidate in candidates:
            if candidate not in self.session.failed_locales:
                return candidate
        return None

    async def _begin(self) -> None:
        """Open the audio route and start a backend for a new generation."""
        if self.script is None:
            return

        self._generation += 1
        generation = self._generation
        locale = self._resolve_locale()
        if locale is None:
            await self._terminal(LocaleUnsupported(
                self.session.locale or FALLBACK_LOCALE,
                "No supported recognition language is available"))
            return

        self.session = Session(
            generation=generation,
            locale=locale,
            retry_count=self.session.retry_count,
            failed_locales=self.session.failed_locales,
        )
        self._state = SessionState.STARTING
        self._notify()

        settings = get_recognition_settings(self._snapshot)
        kind = settings["backend"]
        debug_log.log_session_event("begin", f"gen={generation} backend={kind} locale={locale}")
        logger.info("Starting %s backend (locale %s, attempt %d)",
                    kind, locale, self.session.retry_count + 1)

        try:
            if settings["on_device_only"] and kind not in ON_DEVICE_KINDS:
                raise BackendUnavailable(
                    f"The {kind} backend sends audio off this device, "
                    f"but on-device recognition is required")
            capture = self.capture_factory(settings["microphone"], settings["chunk_ms"],
                                           self._on_audio_frame)
            self._capture = capture
            mic = capture.open()

            try:
                backend = self.backend_factory(kind, self._make_emitter(generation), self._snapshot)
            except ValueError as e:
                raise BackendUnavailable(str(e)) from e
            self.session.backend = backend
            await backend.start(self.script.source_text, locale, mic)
            if generation != self._generation:
                return
            capture.start()
        except RecognitionError as e:
            if generation != self._generation:
                return
            await self._handle_failure(e)
            return
        except Exception as e:
            if generation != self._generation:
                return
            logger.exception("Unexpected failure starting %s backend", kind)
            await self._handle_failure(BackendUnavailable(f"Could not start {kind} backend: {e}"))
            return

        self._state = SessionState.LISTENING
        self._listening_since = asyncio.get_running_loop().time()
        logger.info("Listening (%s)", self.active_locale)
        self._notify()

    async def _handle_failure(self, error: RecognitionError) -> None:
        """Classify a failure and retry, fall back or give up."""
        logger.warning("Recognition error (%s): %s", type(error).__name__, error)
        debug_log.log_session_event("error", f"{type(error).__name__}: {error}")
        if self._dismissed:
            return

        self._state = SessionState.ERROR
        retry = get_retry_settings(self._snapshot)

        if not error.recoverable:
            await self._terminal(error)
            return

        if isinstance(error, LocaleUnsupported):
            self.session.failed_locales.add(error.locale)
            if self.session.locale:
                self.session.failed_locales.add(self.session.locale)
            if self._resolve_locale() is None:
                await self._terminal(error)
                return
            self._schedule_restart(retry["locale_fallback_delay"], "locale fallback")
            return

        self.session.retry_count += 1
        if self.session.retry_count > retry["max_retries"]:
            await self._terminal(RetriesExhausted(
                f"Gave up after {retry['max_retries']} retries: {error}"))
            return

        if not isinstance(error, AudioDeviceTransient):
            # Recognizers restart from scratch, so match from the current position
            self.cursor = AlignmentCursor.at(self.cursor.recognized_char_count)

        delay = min(self.session.retry_count * retry["backoff_step"], retry["backoff_cap"])
        self._schedule_restart(delay, f"retry {self.session.retry_count}")

    def _schedule_restart(self, delay: float, reason: str) -> None:
        """Tear down and start again after a delay, replacing any pending restart."""
        pending = self._restart_task
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            pending.cancel()

        self._generation += 1
        self._state = SessionState.RESTARTING
        self._listening_since = None
        debug_log.log_session_event("restart", f"{reason} in {delay:.2f}s")
        logger.info("Restarting in %.2fs (%s)", delay, reason)
        self._notify()
        self._restart_task = asyncio.create_task(self._restart(delay))

    async def _restart(self, delay: float) -> None:
        await self._teardown()
        await asyncio.sleep(delay)
        await self._begin()

    async def _cancel_restart(self) -> None:
        task, self._restart_task = self._restart_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _teardown(self) -> None:
        """Release the backend and audio route of the current session."""
        capture, self._capture = self._capture, None
        backend, self.session.backend = self.session.backend, None
        if capture is not None:
            capture.stop()
        if backend is not None:
            await backend.stop()

    async def _terminal(self, error: RecognitionError) -> None:
        """Give up: record the error and go idle, keeping progress."""
        self._generation += 1
        await self._cancel_restart()
        await self._teardown()
        self._last_error = error
        self._state = SessionState.IDLE
        self._listening_since = None
        logger.error("Recognition stopped: %s", error)
        debug_log.log_session_event("terminal", f"{type(error).__name__}: {error}")
        self._notify()
