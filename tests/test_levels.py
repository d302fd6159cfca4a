"""Tests for the input level monitor."""

import numpy as np
import pytest

from scriptsync.levels import LevelMonitor


class TestLevelMonitor:
    """Test level computation and the rolling series."""

    def test_starts_silent_and_full(self):
        monitor = LevelMonitor()
        assert monitor.levels == [0.0] * 30
        assert not monitor.is_speaking

    def test_silence_gives_zero(self):
        monitor = LevelMonitor()
        assert monitor.on_frame(np.zeros(1600, dtype=np.float32)) == 0.0

    def test_level_is_scaled_rms(self):
        """A constant 0.1 signal has RMS 0.1, scaled by the gain of 5."""
        monitor = LevelMonitor()
        level = monitor.on_frame(np.full(1600, 0.1, dtype=np.float32))
        assert level == pytest.approx(0.5, abs=1e-4)

    def test_level_is_clamped(self):
        monitor = LevelMonitor()
        assert monitor.on_frame(np.ones(1600, dtype=np.float32)) == 1.0

    def test_int16_samples(self):
        monitor = LevelMonitor()
        level = monitor.on_frame(np.full(1600, 3277, dtype=np.int16))
        assert level == pytest.approx(0.5, abs=1e-3)

    def test_uses_first_channel(self):
        frame = np.zeros((1600, 2), dtype=np.float32)
        frame[:, 1] = 1.0
        monitor = LevelMonitor()
        assert monitor.on_frame(frame) == 0.0

    def test_oldest_level_is_evicted(self):
        monitor = LevelMonitor(capacity=3)
        for value in (0.02, 0.04, 0.06, 0.08):
            monitor.on_frame(np.full(100, value, dtype=np.float32))
        assert len(monitor.levels) == 3
        assert monitor.levels[0] == pytest.approx(0.2, abs=1e-4)

    def test_is_speaking_uses_recent_average(self):
        monitor = LevelMonitor()
        for _ in range(10):
            monitor.on_frame(np.full(100, 0.05, dtype=np.float32))
        assert monitor.is_speaking

        for _ in range(10):
            monitor.on_frame(np.zeros(100, dtype=np.float32))
        assert not monitor.is_speaking

    def test_clear(self):
        monitor = LevelMonitor()
        monitor.on_frame(np.ones(100, dtype=np.float32))
        monitor.clear()
        assert monitor.levels == [0.0] * 30
