"""Tests for the session controller lifecycle and fragment handling."""

import asyncio

import numpy as np
import pytest
from conftest import FakePermission

from scriptsync.errors import BackendUnavailable, PermissionDenied
from scriptsync.session import SessionState
from scriptsync.transcription_provider import Fragment, PermissionStatus

SCRIPT = "Hello world, how are you today?"


class TestStart:
    """Test starting a session."""

    @pytest.mark.asyncio
    async def test_start_reaches_listening(self, make_controller, backends, captures):
        controller = make_controller()
        await controller.start(SCRIPT)

        assert controller.state is SessionState.LISTENING
        assert controller.is_listening
        assert controller.recognized_char_count == 0
        assert controller.active_locale == "en-US"
        assert backends.latest.locale == "en-US"
        assert backends.latest.mic.sample_rate == 48000
        assert captures.latest.started
        await controller.close()

    @pytest.mark.asyncio
    async def test_start_collapses_script_whitespace(self, make_controller):
        controller = make_controller()
        await controller.start("  Hello\n\nworld  ")
        assert controller.script.source_text == "Hello world"
        await controller.close()

    @pytest.mark.asyncio
    async def test_restart_with_new_script_resets_progress(self, make_controller, backends, wait):
        controller = make_controller()
        await controller.start(SCRIPT)
        first = backends.latest
        first.emit_text("hello world")
        await wait(lambda: controller.recognized_char_count > 0)

        await controller.start("Another script entirely")
        assert controller.recognized_char_count == 0
        assert first.stop_calls == 1
        assert controller.last_error is None
        await controller.close()

    @pytest.mark.asyncio
    async def test_unknown_backend_kind_is_terminal(self, make_controller):
        def failing_factory(kind, on_fragment, config):
            raise ValueError(f"Unknown backend: {kind}")

        controller = make_controller()
        controller.backend_factory = failing_factory
        await controller.start(SCRIPT)

        assert controller.state is SessionState.IDLE
        assert isinstance(controller.last_error, BackendUnavailable)
        await controller.close()

    @pytest.mark.asyncio
    async def test_on_device_only_rejects_cloud_backend(self, make_controller, backends):
        controller = make_controller(recognition={"backend": "whisper-cloud",
                                                  "on_device_only": True})
        await controller.start(SCRIPT)

        assert isinstance(controller.last_error, BackendUnavailable)
        assert backends.created == []
        assert controller.state is SessionState.IDLE
        await controller.close()


class TestPermission:
    """Test capture permission handling."""

    @pytest.mark.asyncio
    async def test_denied_is_terminal(self, make_controller, backends):
        controller = make_controller(permission=FakePermission(PermissionStatus.DENIED))
        await controller.start(SCRIPT)

        assert isinstance(controller.last_error, PermissionDenied)
        assert controller.state is SessionState.IDLE
        assert backends.created == []
        await controller.close()

    @pytest.mark.asyncio
    async def test_not_determined_requests_and_proceeds(self, make_controller):
        permission = FakePermission(PermissionStatus.NOT_DETERMINED, grant=True)
        controller = make_controller(permission=permission)
        await controller.start(SCRIPT)

        assert permission.requests == 1
        assert controller.is_listening
        await controller.close()

    @pytest.mark.asyncio
    async def test_not_determined_then_refused(self, make_controller, backends):
        permission = FakePermission(PermissionStatus.NOT_DETERMINED, grant=False)
        controller = make_controller(permission=permission)
        await controller.start(SCRIPT)

        assert isinstance(controller.last_error, PermissionDenied)
        assert backends.created == []
        await controller.close()


class TestFragments:
    """Test turning backend fragments into progress."""

    @pytest.mark.asyncio
    async def test_fragments_advance_cursor(self, make_controller, backends, wait):
        controller = make_controller()
        await controller.start(SCRIPT)

        backends.latest.emit_text("hello world")
        await wait(lambda: controller.recognized_char_count > 0)
        assert controller.recognized_char_count == len("Hello world, ")

        backends.latest.emit_text("hello world how are you today")
        await wait(lambda: controller.recognized_char_count == len(SCRIPT))
        assert controller.last_spoken_text == "hello world how are you today"
        await controller.close()

    @pytest.mark.asyncio
    async def test_last_spoken_text_keeps_tail(self, make_controller):
        controller = make_controller()
        await controller.start(SCRIPT)
        long_text = "word " * 40

        await controller.dispatch(controller.generation, Fragment(text=long_text))
        assert controller.last_spoken_text == long_text[-60:]
        await controller.close()

    @pytest.mark.asyncio
    async def test_stale_generation_is_dropped(self, make_controller):
        controller = make_controller()
        await controller.start(SCRIPT)

        await controller.dispatch(controller.generation - 1, Fragment(text="hello world"))
        assert controller.recognized_char_count == 0
        assert controller.last_spoken_text == ""
        await controller.close()

    @pytest.mark.asyncio
    async def test_old_backend_fragments_ignored_after_restart(self, make_controller, backends, wait):
        """A backend replaced by a restart can no longer move the cursor."""
        controller = make_controller()
        await controller.start(SCRIPT)
        old = backends.latest

        controller.jump_to(0)
        await wait(lambda: len(backends.created) == 2 and controller.is_listening)

        old.emit_text("hello world how are you today")
        backends.latest.emit_text("hello world")
        await wait(lambda: controller.recognized_char_count > 0)
        assert controller.recognized_char_count == len("Hello world, ")
        await controller.close()

    @pytest.mark.asyncio
    async def test_listeners_are_notified(self, make_controller, backends, wait):
        controller = make_controller()
        seen = []
        remove = controller.add_listener(lambda c: seen.append(c.recognized_char_count))
        await controller.start(SCRIPT)
        backends.latest.emit_text("hello")
        await wait(lambda: seen and seen[-1] > 0)

        remove()
        count = len(seen)
        await controller.stop()
        assert len(seen) == count
        await controller.close()

    @pytest.mark.asyncio
    async def test_audio_frames_reach_levels_and_backend(self, make_controller, backends, captures):
        controller = make_controller()
        await controller.start(SCRIPT)

        captures.latest.on_frame(np.full((480, 1), 0.1, dtype=np.float32))
        assert controller.levels[-1] == pytest.approx(0.5, abs=1e-3)
        assert len(backends.latest.frames) == 1
        await controller.close()


class TestStop:
    """Test stopping."""

    @pytest.mark.asyncio
    async def test_stop_keeps_progress(self, make_controller, backends, captures, wait):
        controller = make_controller()
        await controller.start(SCRIPT)
        backends.latest.emit_text("hello world")
        await wait(lambda: controller.recognized_char_count > 0)

        await controller.stop()
        assert controller.state is SessionState.IDLE
        assert not controller.is_listening
        assert controller.recognized_char_count == len("Hello world, ")
        assert controller.last_spoken_text == ""
        assert controller.levels == [0.0] * 30
        assert backends.latest.stop_calls == 1
        assert not captures.latest.started
        await controller.close()

    @pytest.mark.asyncio
    async def test_stop_twice_is_harmless(self, make_controller, backends):
        controller = make_controller()
        await controller.start(SCRIPT)
        await controller.stop()
        before = (controller.state, controller.recognized_char_count, controller.generation,
                  controller.last_error, controller.is_listening)

        await controller.stop()
        after = (controller.state, controller.recognized_char_count, controller.generation,
                 controller.last_error, controller.is_listening)
        assert before == after
        assert backends.latest.stop_calls == 1
        await controller.close()

    @pytest.mark.asyncio
    async def test_stop_before_start(self, make_controller):
        controller = make_controller()
        await controller.stop()
        assert controller.state is SessionState.IDLE
        assert controller.generation == 0

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_restart(self, make_controller, backends):
        controller = make_controller(retry={"restart_delay": 0.2})
        await controller.start(SCRIPT)
        controller.jump_to(5)
        assert controller.state is SessionState.RESTARTING

        await controller.stop()
        await asyncio.sleep(0.3)
        assert len(backends.created) == 1
        assert controller.state is SessionState.IDLE
        assert controller.recognized_char_count == 5
        await controller.close()


class TestJump:
    """Test user jumps."""

    @pytest.mark.asyncio
    async def test_jump_is_clamped(self, make_controller):
        controller = make_controller()
        await controller.start(SCRIPT)
        await controller.stop()

        controller.jump_to(-10)
        assert controller.recognized_char_count == 0
        controller.jump_to(10_000)
        assert controller.recognized_char_count == len(SCRIPT)
        assert controller.cursor.match_start_offset == len(SCRIPT)
        await controller.close()

    @pytest.mark.asyncio
    async def test_jump_while_listening_restarts(self, make_controller, backends, wait):
        controller = make_controller()
        await controller.start(SCRIPT)

        controller.jump_to(13)
        await wait(lambda: len(backends.created) == 2 and controller.is_listening)
        assert controller.cursor.match_start_offset == 13

        backends.latest.emit_text("how are you")
        await wait(lambda: controller.recognized_char_count > 13)
        assert controller.recognized_char_count == len("Hello world, how are you ")
        await controller.close()

    @pytest.mark.asyncio
    async def test_jump_backwards(self, make_controller, backends, wait):
        controller = make_controller()
        await controller.start(SCRIPT)
        backends.latest.emit_text("hello world how are you today")
        await wait(lambda: controller.recognized_char_count == len(SCRIPT))

        controller.jump_to(0)
        assert controller.recognized_char_count == 0
        await controller.close()

    @pytest.mark.asyncio
    async def test_debug_status_line(self, make_controller):
        controller = make_controller()
        await controller.start(SCRIPT)
        controller.jump_to(0)
        status = controller.debug_status
        assert "pos=0/31" in status
        assert "locale=en-US" in status
        await controller.close()
