# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
OpenAI Whisper cloud backend.

Captured audio is buffered and sent in fixed-length chunks. Each response is
appended to a running transcript, and the whole transcript is reported so
that words split across chunk boundaries can still be matched.
"""

import asyncio
import contextlib
import io
import logging
import os
import queue
import wave
from typing import Any

import aiohttp
import numpy as np
import numpy.typing as npt

from ..config import Config
from ..errors import BackendUnavailable, NetworkOrAPIError
from ..transcription_provider import (
    FragmentCallback,
    MicConfig,
    TranscriptionBackend,
    to_mono,
    to_pcm16,
)

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE: int = 16000


def resample(samples: npt.NDArray[np.float32], source_rate: int,
             target_rate: int = TARGET_SAMPLE_RATE) -> npt.NDArray[np.float32]:
    """
    Resample mono audio using linear interpolation.

    Args:
        samples: Mono float samples
        source_rate: Sample rate of samples in Hz
        target_rate: Wanted sample rate in Hz

    Returns:
        Resampled float32 samples
    """
    if source_rate == target_rate or samples.size == 0:
        return samples.astype(np.float32, copy=False)

    target_len = int(round(samples.size * target_rate / source_rate))
    if target_len <= 0:
        return np.zeros(0, dtype=np.float32)
    src_times = np.arange(samples.size) / source_rate
    dst_times = np.arange(target_len) / target_rate
    return np.interp(dst_times, src_times, samples).astype(np.float32)


def encode_wav(samples: npt.NDArray[np.float32], sample_rate: int = TARGET_SAMPLE_RATE) -> bytes:
    """Encode mono float samples as a 16-bit PCM WAV file in memory."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(to_pcm16(samples))
    return buffer.getvalue()


class WhisperCloudBackend(TranscriptionBackend):
    """Chunked transcription through the OpenAI audio API."""

    kind = "whisper-cloud"

    def __init__(self, on_fragment: FragmentCallback, config: Config) -> None:
        super().__init__(on_fragment, config)
        self.settings = config["whisper_cloud"]
        self.frames: queue.Queue[npt.NDArray[np.float32]] = queue.Queue()
        self.sample_rate: int = TARGET_SAMPLE_RATE
        self.running: bool = False
        self.in_flight: bool = False
        self.accumulated_text: str = ""
        self._session: aiohttp.ClientSession | None = None
        self._timer: asyncio.Task[None] | None = None
        self._request: asyncio.Task[None] | None = None

    def describe_locale(self, locale: str) -> str:
        return "auto (OpenAI)"

    def api_key(self) -> str:
        """API key from config, falling back to the configured environment variable."""
        return self.settings.get("api_key") or os.environ.get(self.settings["api_key_env"], "")

    async def start(self, reference_text: str, locale: str, mic: MicConfig) -> None:
        if not self.api_key():
            raise BackendUnavailable(
                f"No OpenAI API key. Set whisper_cloud.api_key or {self.settings['api_key_env']}")

        self.sample_rate = mic.sample_rate
        self.accumulated_text = ""
        self.in_flight = False
        self.running = True
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.settings["timeout"]))
        self._timer = asyncio.create_task(self._chunk_timer())
        logger.info("OpenAI Whisper backend started")

    def feed_audio(self, frame: npt.NDArray[np.float32]) -> None:
        if self.running:
            self.frames.put_nowait(frame)

    async def _chunk_timer(self) -> None:
        while self.running:
            await asyncio.sleep(self.settings["chunk_seconds"])
            self.send_chunk()

    def drain_frames(self) -> npt.NDArray[np.float32] | None:
        """Take every buffered frame and merge them into one block."""
        blocks: list[npt.NDArray[np.float32]] = []
        while True:
            try:
                blocks.append(self.frames.get_nowait())
            except queue.Empty:
                break
        if not blocks:
            return None
        return np.concatenate(blocks, axis=0)

    def send_chunk(self) -> bool:
        """
        Start transcribing the buffered audio.

        Only one request runs at a time. While one is in flight, frames keep
        accumulating and go out with the next chunk.

        Returns:
            True if a request was started
        """
        if not self.running or self.in_flight or self.frames.empty():
            return False
        merged = self.drain_frames()
        if merged is None or merged.size == 0:
            return False

        wav: bytes = encode_wav(resample(to_mono(merged), self.sample_rate))
        self.in_flight = True
        self._request = asyncio.create_task(self._transcribe_chunk(wav))
        return True

    async def _transcribe_chunk(self, wav: bytes) -> None:
        try:
            text: str = await self.transcribe(wav)
        except NetworkOrAPIError as e:
            self.in_flight = False
            logger.warning("Cloud Whisper error: %s", e)
            if self.running:
                self.running = False
                self.emit_error(e)
            return

        self.in_flight = False
        if not self.running:
            return
        trimmed: str = text.strip()
        if not trimmed:
            return
        self.accumulated_text = f"{self.accumulated_text} {trimmed}".strip()
        logger.debug("Cloud Whisper: %s", self.accumulated_text[-80:])
        self.emit_text(self.accumulated_text, is_partial=False)

    async def transcribe(self, wav: bytes) -> str:
        """
        Send one WAV chunk to the transcription endpoint.

        Args:
            wav: WAV file contents

        Returns:
            Transcribed text

        Raises:
            NetworkOrAPIError: On connection failure, timeout, HTTP error or
                an unparseable response
        """
        if self._session is None:
            raise NetworkOrAPIError("Cloud backend is not running")

        form = aiohttp.FormData()
        form.add_field("model", self.settings["model"])
        form.add_field("response_format", "json")
        form.add_field("file", wav, filename="audio.wav", content_type="audio/wav")
        headers: dict[str, str] = {"Authorization": f"Bearer {self.api_key()}"}

        try:
            async with self._session.post(self.settings["api_url"], data=form,
                                          headers=headers) as response:
                if response.status != 200:
                    message: str = f"HTTP {response.status}"
                    with contextlib.suppress(aiohttp.ContentTypeError, ValueError, KeyError, TypeError):
                        error_payload: Any = await response.json(content_type=None)
                        message = str(error_payload["error"]["message"])
                    raise NetworkOrAPIError(f"Whisper API: {message}")
                payload: Any = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkOrAPIError(f"Network error: {e}") from e
        except ValueError as e:
            raise NetworkOrAPIError("Whisper API: Could not parse response") from e

        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise NetworkOrAPIError("Whisper API: Could not parse response")
        return text

    async def stop(self) -> None:
        self.running = False
        for task in (self._timer, self._request):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._timer = None
        self._request = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self.drain_frames()
        self.in_flight = False
        self.accumulated_text = ""
