"""Tests for the debug_log module enable/disable functionality."""

from unittest import mock

import pytest

from scriptsync import debug_log


@pytest.fixture
def log_dir(tmp_path):
    """Enable debug logging into a temporary directory."""
    original = (debug_log.LOG_DIR, debug_log.ALIGNMENT_LOG, debug_log.SESSION_LOG)
    debug_log.enable(tmp_path / "logs")
    yield tmp_path / "logs"
    debug_log.disable()
    debug_log.LOG_DIR, debug_log.ALIGNMENT_LOG, debug_log.SESSION_LOG = original


class TestDebugLogEnableDisable:
    """Test the enable/disable functionality of debug logging."""

    def setup_method(self):
        """Reset debug log state before each test."""
        debug_log.disable()

    def test_disabled_by_default(self):
        """Debug logging should be disabled by default."""
        assert not debug_log.is_enabled()

    def test_enable(self):
        """enable() should turn on debug logging."""
        debug_log.enable()
        assert debug_log.is_enabled()
        debug_log.disable()

    def test_clear_logs_no_op_when_disabled(self):
        """clear_logs() should do nothing when logging is disabled."""
        with mock.patch.object(debug_log, '_ensure_log_dir') as mock_ensure:
            debug_log.clear_logs()
            mock_ensure.assert_not_called()

    def test_log_fragment_no_op_when_disabled(self):
        with mock.patch.object(debug_log, '_ensure_log_dir') as mock_ensure:
            debug_log.log_fragment(1, "hello", True)
            mock_ensure.assert_not_called()

    def test_log_position_update_no_op_when_disabled(self):
        with mock.patch.object(debug_log, '_ensure_log_dir') as mock_ensure:
            debug_log.log_position_update(0, 5, "hello world", "advance")
            mock_ensure.assert_not_called()

    def test_log_session_event_no_op_when_disabled(self):
        with mock.patch.object(debug_log, '_ensure_log_dir') as mock_ensure:
            debug_log.log_session_event("start")
            mock_ensure.assert_not_called()


class TestDebugLogWriting:
    """Test what gets written when logging is enabled."""

    def test_clear_logs_creates_both_files(self, log_dir):
        debug_log.clear_logs()
        assert (log_dir / "alignment.log").read_text(encoding="utf-8").startswith("=== New session")
        assert (log_dir / "session.log").exists()

    def test_position_update_shows_covered_text(self, log_dir):
        debug_log.log_position_update(0, 5, "hello world", "advance")
        content = (log_dir / "alignment.log").read_text(encoding="utf-8")
        assert "POSITION CHANGE: 0 -> 5 (advance)" in content
        assert "\"hello\"" in content

    def test_fragment_is_logged_with_generation(self, log_dir):
        debug_log.log_fragment(7, "some recognized text", False)
        content = (log_dir / "alignment.log").read_text(encoding="utf-8")
        assert "gen=  7" in content
        assert "final" in content

    def test_session_event(self, log_dir):
        debug_log.log_session_event("restart", "retry 1 in 0.50s")
        content = (log_dir / "session.log").read_text(encoding="utf-8")
        assert "restart" in content
        assert "retry 1 in 0.50s" in content
