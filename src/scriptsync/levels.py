# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Input level monitoring for the waveform indicator and voice-paced scrolling.
"""

from collections import deque

import numpy as np
import numpy.typing as npt


class LevelMonitor:
    """Keeps a short rolling series of normalized input levels.

    on_frame() is called from the audio callback thread. deque appends with
    a maxlen are atomic, so readers on other threads see a consistent series.
    """

    capacity: int
    gain: float
    speaking_threshold: float
    speaking_window: int

    def __init__(
        self,
        capacity: int = 30,
        gain: float = 5.0,
        speaking_threshold: float = 0.08,
        speaking_window: int = 10
    ) -> None:
        self.capacity = capacity
        self.gain = gain
        self.speaking_threshold = speaking_threshold
        self.speaking_window = speaking_window
        self._levels: deque[float] = deque([0.0] * capacity, maxlen=capacity)

    def on_frame(self, samples: npt.NDArray[np.generic]) -> float:
        """
        Summarize one audio frame into a level in [0, 1] and record it.

        Args:
            samples: Frame samples, either float in [-1, 1] or int16, shaped
                (frames,) or (frames, channels). Only the first channel is used.

        Returns:
            The recorded level
        """
        data = np.asarray(samples)
        if data.ndim > 1:
            data = data[:, 0]
        if data.dtype == np.int16:
            data = data.astype(np.float32) / 32768.0
        else:
            data = data.astype(np.float32, copy=False)

        if data.size == 0:
            rms = 0.0
        else:
            rms = float(np.sqrt(np.mean(np.square(data))))
        level: float = min(max(rms * self.gain, 0.0), 1.0)
        self._levels.append(level)
        return level

    @property
    def levels(self) -> list[float]:
        """Snapshot of the series, oldest first."""
        return list(self._levels)

    @property
    def is_speaking(self) -> bool:
        """True when the recent average level suggests the user is talking."""
        recent = list(self._levels)[-self.speaking_window:]
        if not recent:
            return False
        return sum(recent) / len(recent) > self.speaking_threshold

    def clear(self) -> None:
        """Reset the series to silence."""
        self._levels.clear()
        self._levels.extend([0.0] * self.capacity)
