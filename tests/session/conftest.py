"""Fakes for driving the session controller without audio hardware or recognizers."""

import asyncio

import pytest

from scriptsync.config import merge_config
from scriptsync.errors import LocaleUnsupported
from scriptsync.session import SessionController
from scriptsync.transcription_provider import MicConfig, PermissionStatus, TranscriptionBackend


class FakeBackend(TranscriptionBackend):
    """Backend whose start outcome and emitted fragments are controlled by the test."""

    kind = "fake"

    def __init__(self, on_fragment, config, start_error=None, unsupported=()):
        super().__init__(on_fragment, config)
        self.start_error = start_error
        self.unsupported = set(unsupported)
        self.locale = None
        self.mic = None
        self.frames = []
        self.stop_calls = 0

    async def start(self, reference_text, locale, mic):
        self.locale = locale
        self.mic = mic
        if locale in self.unsupported:
            raise LocaleUnsupported(locale)
        if self.start_error is not None:
            raise self.start_error

    def feed_audio(self, frame):
        self.frames.append(frame)

    async def stop(self):
        self.stop_calls += 1


class BackendRecorder:
    """Backend factory that records every backend it creates."""

    def __init__(self):
        self.created = []
        self.start_errors = []
        self.unsupported = set()

    def __call__(self, kind, on_fragment, config):
        error = self.start_errors.pop(0) if self.start_errors else None
        backend = FakeBackend(on_fragment, config, error, self.unsupported)
        self.created.append(backend)
        return backend

    @property
    def latest(self):
        return self.created[-1]

    @property
    def started_locales(self):
        return [b.locale for b in self.created]


class FakeCapture:
    """Audio route that records lifecycle calls."""

    def __init__(self, on_frame, open_error=None):
        self.on_frame = on_frame
        self.open_error = open_error
        self.started = False
        self.stop_calls = 0

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        return MicConfig(sample_rate=48000, channels=1)

    def start(self):
        self.started = True

    def stop(self):
        self.started = False
        self.stop_calls += 1


class CaptureRecorder:
    """Capture factory that records every capture it creates."""

    def __init__(self):
        self.created = []
        self.open_errors = []

    def __call__(self, device, chunk_ms, on_frame):
        error = self.open_errors.pop(0) if self.open_errors else None
        capture = FakeCapture(on_frame, error)
        self.created.append(capture)
        return capture

    @property
    def latest(self):
        return self.created[-1]


class FakePermission:
    def __init__(self, status=PermissionStatus.GRANTED, grant=True):
        self._status = status
        self.grant = grant
        self.requests = 0

    def status(self):
        return self._status

    async def request(self):
        self.requests += 1
        await asyncio.sleep(0)
        return self.grant


FAST_RETRY = {
    "max_retries": 3,
    "backoff_step": 0.01,
    "backoff_cap": 0.02,
    "restart_delay": 0.01,
    "locale_fallback_delay": 0.01,
    "settle_seconds": 0.0,
}


@pytest.fixture
def backends():
    return BackendRecorder()


@pytest.fixture
def captures():
    return CaptureRecorder()


@pytest.fixture
def make_controller(backends, captures):
    """Build a controller with fast retries and fake collaborators."""
    def factory(recognition=None, retry=None, permission=None):
        config = merge_config({
            "recognition": {"auto_detect_language": False, **(recognition or {})},
            "retry": {**FAST_RETRY, **(retry or {})},
        })
        controller = SessionController(
            config=config,
            backend_factory=backends,
            capture_factory=captures,
            permission=permission or FakePermission(),
        )
        return controller

    return factory


async def wait_until(predicate, timeout=2.0):
    """Poll until predicate() is true or the timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait():
    return wait_until
