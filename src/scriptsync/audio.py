# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Audio capture module using sounddevice for low-latency microphone input.
Captures audio in small chunks and hands each one to a frame callback.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from typing import Any

import numpy as np
import numpy.typing as npt
import sounddevice as sd

from .errors import AudioDeviceTransient
from .transcription_provider import MicConfig, PermissionStatus

logger = logging.getLogger(__name__)

FrameCallback = Callable[[npt.NDArray[np.float32]], None]

# Most recognizers only use a downmix, so wider devices are opened in stereo
MAX_CHANNELS: int = 2


class AudioCapture:
    """Captures audio from an input device in small chunks."""

    device: int | str | None
    chunk_duration_ms: int
    on_frame: FrameCallback | None
    stream: sd.InputStream | None
    mic: MicConfig | None
    running: bool

    def __init__(
        self,
        device: int | str | None = None,
        chunk_duration_ms: int = 100,
        on_frame: FrameCallback | None = None
    ) -> None:
        """
        Initialize audio capture.

        Args:
            device: Audio device index or name, or None for default
            chunk_duration_ms: Duration of each audio chunk in milliseconds
            on_frame: Called on the audio thread with each (frames, channels) block
        """
        self.device = device
        self.chunk_duration_ms = chunk_duration_ms
        self.on_frame = on_frame

        self.stream = None
        self.mic = None
        self.running = False

    def _audio_callback(
        self,
        indata: npt.NDArray[np.float32],
        frames: int,
        time: Any,
        status: sd.CallbackFlags
    ) -> None:
        """Called for each audio chunk from the device."""
        if status:
            logger.debug("Audio status: %s", status)
        if self.on_frame is not None:
            self.on_frame(indata.copy())

    def open(self) -> MicConfig:
        """
        Open the device at its native sample rate.

        Returns:
            The format frames will be delivered in

        Raises:
            AudioDeviceTransient: If the device reports an unusable format or
                cannot be opened
        """
        if self.stream is not None and self.mic is not None:
            return self.mic

        try:
            info: dict[str, Any] = dict(sd.query_devices(self.device, kind="input"))
        except (ValueError, sd.PortAudioError) as e:
            raise AudioDeviceTransient(f"Could not query input device: {e}") from e

        sample_rate = int(info.get("default_samplerate") or 0)
        channels = min(int(info.get("max_input_channels") or 0), MAX_CHANNELS)
        if sample_rate <= 0 or channels <= 0:
            raise AudioDeviceTransient(
                f"Invalid audio format: {sample_rate} Hz, {channels} channels")

        blocksize = int(sample_rate * self.chunk_duration_ms / 1000)
        try:
            self.stream = sd.InputStream(
                samplerate=sample_rate,
                blocksize=blocksize,
                device=self.device,
                dtype="float32",
                channels=channels,
                callback=self._audio_callback
            )
        except (ValueError, sd.PortAudioError) as e:
            raise AudioDeviceTransient(f"Could not open input stream: {e}") from e

        self.mic = MicConfig(device=self.device, sample_rate=sample_rate, channels=channels)
        logger.info("Opened input %s: %d Hz, %d channel(s)",
                    info.get("name", self.device), sample_rate, channels)
        return self.mic

    def start(self) -> None:
        """Start capturing audio, opening the device first if needed."""
        if self.running:
            return
        self.open()
        assert self.stream is not None
        try:
            self.stream.start()
        except sd.PortAudioError as e:
            raise AudioDeviceTransient(f"Could not start input stream: {e}") from e
        self.running = True

    def stop(self) -> None:
        """Stop capturing audio. Safe to call more than once."""
        self.running = False
        stream, self.stream = self.stream, None
        self.mic = None
        if stream is not None:
            with contextlib.suppress(sd.PortAudioError):
                stream.stop()
            stream.close()


def input_devices() -> list[tuple[int, str, int]]:
    """Index, name and input channel count of every input device."""
    devices: Sequence[Any] = sd.query_devices()
    found: list[tuple[int, str, int]] = []
    for i, device in enumerate(devices):
        dev: dict[str, Any] = dict(device)
        if dev.get('max_input_channels', 0) > 0:
            found.append((i, dev.get('name', 'Unknown'), dev['max_input_channels']))
    return found


def list_devices() -> list[tuple[int, str, int]]:
    """List available audio input devices."""
    print("Available audio input devices:")
    devices = input_devices()
    for index, name, channels in devices:
        print(f"  [{index}] {name} (inputs: {channels})")
    return devices


class InputDevicePermission:
    """Capture permission as seen through PortAudio.

    Desktop platforms without a permission prompt are treated as granted
    whenever an input device is present.
    """

    def status(self) -> PermissionStatus:
        try:
            devices = input_devices()
        except sd.PortAudioError as e:
            logger.warning("Could not list input devices: %s", e)
            return PermissionStatus.DENIED
        return PermissionStatus.GRANTED if devices else PermissionStatus.DENIED

    async def request(self) -> bool:
        """Ask for permission. Returns True if capture may proceed."""
        loop = asyncio.get_running_loop()
        status = await loop.run_in_executor(None, self.status)
        return status is PermissionStatus.GRANTED


class DeviceWatcher:
    """Polls the input device list and reports changes."""

    def __init__(self, on_change: Callable[[], None], interval: float = 2.0) -> None:
        self.on_change = on_change
        self.interval = interval
        self._known: list[tuple[int, str, int]] | None = None
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._task is not None:
            return
        loop = asyncio.get_running_loop()
        self._known = await loop.run_in_executor(None, input_devices)
        self._task = asyncio.create_task(self._poll())

    async def _poll(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self.interval)
            try:
                current = await loop.run_in_executor(None, input_devices)
            except sd.PortAudioError as e:
                logger.debug("Device poll failed: %s", e)
                continue
            if current != self._known:
                logger.info("Input devices changed")
                self._known = current
                self.on_change()

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
