# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Local whisper.cpp streaming backend.

Runs the whisper-stream example as a subprocess. It captures the microphone
itself, so captured frames are only used for the level meter. Its stdout is
a terminal-oriented display that redraws the current window, so the output
is cleaned of control sequences and log lines before being reported.
"""

import asyncio
import contextlib
import logging
import os
import re

import numpy as np
import numpy.typing as npt

from ..config import Config
from ..errors import BackendProcessExit, BackendUnavailable
from ..transcription_provider import FragmentCallback, MicConfig, TranscriptionBackend

logger = logging.getLogger(__name__)

ANSI_PATTERN: re.Pattern[str] = re.compile(r"\x1B\[[0-9;]*[A-Za-z]|\[2K")

# Lines whisper-stream prints that are not speech
NOISE_PREFIXES: tuple[str, ...] = ("whisper_", "init:", "[Start", "main:")
NOISE_MARKERS: tuple[str, ...] = ("[BLANK_AUDIO]",)

READ_SIZE: int = 4096


def clean_stream_output(output: str) -> str:
    """
    Extract recognized speech from accumulated whisper-stream output.

    Args:
        output: Everything read from stdout so far

    Returns:
        Recognized lines joined by single spaces
    """
    stripped: str = ANSI_PATTERN.sub("", output)
    kept: list[str] = []
    for line in stripped.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        if any(marker in trimmed for marker in NOISE_MARKERS):
            continue
        if trimmed.startswith(NOISE_PREFIXES):
            continue
        kept.append(trimmed)
    return " ".join(kept)


class WhisperLocalBackend(TranscriptionBackend):
    """whisper-stream subprocess recognition."""

    kind = "whisper-local"

    def __init__(self, on_fragment: FragmentCallback, config: Config) -> None:
        super().__init__(on_fragment, config)
        self.settings = config["whisper_local"]
        self.process: asyncio.subprocess.Process | None = None
        self.output_buffer: str = ""
        self.running: bool = False
        self._reader: asyncio.Task[None] | None = None
        self._last_emitted: str = ""

    def describe_locale(self, locale: str) -> str:
        return "auto (Whisper)" if self.settings["language"] == "auto" else self.settings["language"]

    def build_command(self, mic: MicConfig) -> list[str]:
        """Command line for whisper-stream with the configured windowing."""
        s = self.settings
        command: list[str] = [
            s["binary"],
            "-m", s["model_path"],
            "-l", s["language"],
            "--step", str(s["step_ms"]),
            "--length", str(s["length_ms"]),
            "--keep", str(s["keep_ms"]),
            "-t", str(s["threads"]),
            "--vad-thold", str(s["vad_threshold"]),
        ]
        if isinstance(mic.device, int):
            command += ["-c", str(mic.device)]
        return command

    async def start(self, reference_text: str, locale: str, mic: MicConfig) -> None:
        model_path: str = self.settings["model_path"]
        if not model_path or not os.path.exists(model_path):
            raise BackendUnavailable(f"Whisper model not found at: {model_path}")
        binary: str = self.settings["binary"]
        if not os.path.exists(binary):
            raise BackendUnavailable(
                "whisper-stream not found. Install whisper.cpp or set whisper_local.binary")

        self.output_buffer = ""
        self._last_emitted = ""
        self.running = True
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.build_command(mic),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            self.running = False
            raise BackendUnavailable(f"Failed to start whisper-stream: {e}") from e

        if not self.running:
            # Stopped while spawning
            await self._terminate()
            return

        logger.info("whisper-stream started, PID=%s", self.process.pid)
        self._reader = asyncio.create_task(self._read_output(self.process))

    async def _read_output(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        while True:
            data: bytes = await process.stdout.read(READ_SIZE)
            if not data:
                break
            self.process_output(data.decode("utf-8", errors="ignore"))

        returncode = await process.wait()
        logger.info("whisper-stream exited with code %s", returncode)
        if self.running:
            self.running = False
            self.emit_error(BackendProcessExit(returncode))

    def process_output(self, chunk: str) -> None:
        """Add a chunk of stdout and report the cleaned transcript if it changed."""
        self.output_buffer += chunk
        cleaned: str = clean_stream_output(self.output_buffer)
        if cleaned and cleaned != self._last_emitted:
            self._last_emitted = cleaned
            self.emit_text(cleaned)

    def feed_audio(self, frame: npt.NDArray[np.float32]) -> None:
        # whisper-stream reads the microphone itself
        pass

    async def _terminate(self) -> None:
        process, self.process = self.process, None
        if process is None or process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=2.0)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
        logger.info("whisper-stream terminated")

    async def stop(self) -> None:
        self.running = False
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        await self._terminate()
        self.output_buffer = ""
