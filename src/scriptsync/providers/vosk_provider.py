# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Vosk on-device recognition backend.

Audio frames are queued from the capture thread and decoded by a worker
running in the default executor. Vosk resets its partial text after every
final result, so the backend reports everything finalized so far followed by
the current partial.
"""

import asyncio
import json
import logging
import os
import queue
import tempfile
import urllib.request
import zipfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np
import numpy.typing as npt
from vosk import KaldiRecognizer, Model, SetLogLevel

from ..config import Config
from ..errors import BackendUnavailable, LocaleUnsupported, RecognitionError
from ..transcription_provider import (
    FragmentCallback,
    MicConfig,
    ModelInfo,
    TranscriptionBackend,
    to_mono,
    to_pcm16,
)

logger = logging.getLogger(__name__)

# Suppress Vosk's verbose logging
SetLogLevel(-1)

DEFAULT_MODEL_DIR: Path = Path.home() / ".cache" / "scriptsync" / "models"


class VoskBackend(TranscriptionBackend):
    """Vosk streaming speech recognition, one model per locale."""

    kind = "vosk"

    # Available Vosk models with metadata
    MODELS: dict[str, dict[str, Any]] = {
        "vosk-en-us-small": {
            "dir": "vosk-model-small-en-us-0.15",
            "name": "English US - Small",
            "locale": "en-US",
            "size_mb": 40,
            "url": "https://alphacephei.com/vosk/models/vosk-model-small-en-us-0.15.zip",
        },
        "vosk-en-gb-small": {
            "dir": "vosk-model-small-en-gb-0.15",
            "name": "English GB - Small",
            "locale": "en-GB",
            "size_mb": 40,
            "url": "https://alphacephei.com/vosk/models/vosk-model-small-en-gb-0.15.zip",
        },
        "vosk-de-small": {
            "dir": "vosk-model-small-de-0.15",
            "name": "German - Small",
            "locale": "de-DE",
            "size_mb": 45,
            "url": "https://alphacephei.com/vosk/models/vosk-model-small-de-0.15.zip",
        },
        "vosk-fr-small": {
            "dir": "vosk-model-small-fr-0.22",
            "name": "French - Small",
            "locale": "fr-FR",
            "size_mb": 41,
            "url": "https://alphacephei.com/vosk/models/vosk-model-small-fr-0.22.zip",
        },
        "vosk-es-small": {
            "dir": "vosk-model-small-es-0.42",
            "name": "Spanish - Small",
            "locale": "es-ES",
            "size_mb": 39,
            "url": "https://alphacephei.com/vosk/models/vosk-model-small-es-0.42.zip",
        },
        "vosk-it-small": {
            "dir": "vosk-model-small-it-0.22",
            "name": "Italian - Small",
            "locale": "it-IT",
            "size_mb": 48,
            "url": "https://alphacephei.com/vosk/models/vosk-model-small-it-0.22.zip",
        },
        "vosk-ru-small": {
            "dir": "vosk-model-small-ru-0.22",
            "name": "Russian - Small",
            "locale": "ru-RU",
            "size_mb": 45,
            "url": "https://alphacephei.com/vosk/models/vosk-model-small-ru-0.22.zip",
        },
    }

    model: Model | None
    recognizer: KaldiRecognizer | None
    sample_rate: int

    def __init__(self, on_fragment: FragmentCallback, config: Config) -> None:
        super().__init__(on_fragment, config)
        settings = config.get("vosk", {})
        self.model_dir: Path = Path(settings.get("model_dir") or DEFAULT_MODEL_DIR)
        self.model_overrides: dict[str, str] = dict(settings.get("models") or {})

        self.model = None
        self.recognizer = None
        self.sample_rate = 16000
        self.audio_queue: queue.Queue[bytes] = queue.Queue()
        self.running: bool = False
        self._worker: asyncio.Task[None] | None = None
        self._committed: str = ""
        self._last_emitted: str = ""

    @staticmethod
    def supported_locales() -> list[str]:
        """Locales with a registered model."""
        return [info["locale"] for info in VoskBackend.MODELS.values()]

    def model_id_for_locale(self, locale: str) -> str | None:
        """Find the model registered for a locale, honouring config overrides."""
        if locale in self.model_overrides:
            return self.model_overrides[locale]
        return self.model_id_for(locale)

    def _get_model_path(self, model_id: str) -> Path:
        """Get the path to the model directory."""
        model_info = self.MODELS.get(model_id)
        if not model_info:
            # Assume custom model path
            return Path(model_id)
        return self.model_dir / model_info["dir"]

    async def start(self, reference_text: str, locale: str, mic: MicConfig) -> None:
        """Load the model for the locale and start the decoding worker."""
        model_id = self.model_id_for_locale(locale)
        if model_id is None:
            raise LocaleUnsupported(locale, f"No Vosk model registered for {locale}")
        model_path = self._get_model_path(model_id)
        if not model_path.exists():
            raise LocaleUnsupported(
                locale,
                f"Vosk model for {locale} not found at {model_path}. "
                f"Download it with: scriptsync --download-model {locale}"
            )

        self.running = True
        self.sample_rate = mic.sample_rate
        self._committed = ""
        self._last_emitted = ""

        logger.info("Loading Vosk model from: %s", model_path)
        loop = asyncio.get_running_loop()
        try:
            self.model = await loop.run_in_executor(None, Model, str(model_path))
        except Exception as e:
            self.running = False
            raise BackendUnavailable(f"Could not load Vosk model {model_path}: {e}") from e

        if not self.running:
            # Stopped while the model was loading
            return

        try:
            self.recognizer = KaldiRecognizer(self.model, float(self.sample_rate))
            self.recognizer.SetWords(True)
        except Exception as e:
            self.running = False
            self.model = None
            raise BackendUnavailable(f"Could not create Vosk recognizer: {e}") from e
        self._worker = asyncio.create_task(self._decode_loop())

    def feed_audio(self, frame: npt.NDArray[np.float32]) -> None:
        if self.running:
            self.audio_queue.put_nowait(to_pcm16(to_mono(frame)))

    def _next_chunk(self, timeout: float) -> bytes | None:
        try:
            return self.audio_queue.get(timeout=timeout)
        except queue.Empty:
            return None

    async def _decode_loop(self) -> None:
        """Pull audio off the queue and decode it without blocking the event loop."""
        loop = asyncio.get_running_loop()
        while self.running:
            chunk: bytes | None = await loop.run_in_executor(None, self._next_chunk, 0.05)
            if chunk is None or not self.running:
                continue
            try:
                text: str | None = await loop.run_in_executor(None, self.process_audio, chunk)
            except Exception as e:
                if not self.running:
                    return
                self.running = False
                logger.error("Vosk decoding failed: %s", e)
                self.emit_error(RecognitionError(f"Vosk decoding failed: {e}"))
                return
            if text and text != self._last_emitted and self.running:
                self._last_emitted = text
                self.emit_text(text)

    def process_audio(self, audio_data: bytes) -> str | None:
        """
        Process an audio chunk.

        Args:
            audio_data: Raw audio bytes (16-bit PCM, mono)

        Returns:
            Everything recognized so far, or None if nothing new was heard
        """
        recognizer = self.recognizer
        if recognizer is None:
            return None
        if recognizer.AcceptWaveform(audio_data):
            # Final result - speech segment complete
            result: dict[str, Any] = json.loads(recognizer.Result())
            text: str = result.get("text", "").strip()
            if text and not self._is_vosk_artifact(text):
                self._committed = f"{self._committed} {text}".strip()
                return self._committed
        else:
            # Partial result - speech still in progress
            result = json.loads(recognizer.PartialResult())
            text = result.get("partial", "").strip()
            if text and not self._is_vosk_artifact(text):
                return f"{self._committed} {text}".strip()
        return None

    async def stop(self) -> None:
        self.running = False
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        while not self.audio_queue.empty():
            try:
                self.audio_queue.get_nowait()
            except queue.Empty:
                break
        self.recognizer = None
        self.model = None

    def _is_vosk_artifact(self, text: str) -> bool:
        """
        Check if the text is a known Vosk artifact from no/bad audio input.

        Vosk sometimes returns "the" when there's no valid sound input.
        """
        return text.lower() == "the"

    @staticmethod
    def get_available_models() -> list[ModelInfo]:
        """Get list of available Vosk models."""
        return [
            ModelInfo(
                id=model_id,
                name=info["name"],
                provider="vosk",
                locale=info["locale"],
                size_mb=info["size_mb"],
                description=f"Vosk model - {info['name']}",
            )
            for model_id, info in VoskBackend.MODELS.items()
        ]

    @staticmethod
    def download_model(
        model_id: str,
        target_dir: str | None = None,
        progress_callback: Callable[[str, int], None] | None = None
    ) -> str:
        """
        Fetch and unpack a registered Vosk model.

        Args:
            model_id: Registry key such as "vosk-de-small"
            target_dir: Directory holding model folders, DEFAULT_MODEL_DIR if None
            progress_callback: Receives (stage, percent) with stage one of
                "downloading", "extracting" or "complete"

        Returns:
            Path of the unpacked model folder.

        Raises:
            ValueError: If model_id is not registered
        """
        info = VoskBackend.MODELS.get(model_id)
        if info is None:
            known = ", ".join(VoskBackend.MODELS)
            raise ValueError(f"Unknown Vosk model: {model_id} (known models: {known})")

        report: Callable[[str, int], None] = progress_callback or (lambda stage, percent: None)
        models_root = Path(target_dir) if target_dir else DEFAULT_MODEL_DIR
        destination = models_root / info["dir"]
        if destination.exists():
            print(f"Model already exists at {destination}")
            report("complete", 100)
            return str(destination)

        models_root.mkdir(parents=True, exist_ok=True)
        print(f"Fetching {info['name']} ({info['size_mb']}MB) from {info['url']}")
        archive = _fetch_archive(info["url"], report)
        try:
            report("extracting", 0)
            with zipfile.ZipFile(archive) as bundle:
                bundle.extractall(models_root)
        finally:
            archive.unlink(missing_ok=True)

        report("complete", 100)
        print(f"Model installed to {destination}")
        return str(destination)

    @staticmethod
    def model_id_for(locale: str) -> str | None:
        """Registered model for a locale, ignoring config overrides."""
        wanted = locale.replace("_", "-").lower()
        for model_id, info in VoskBackend.MODELS.items():
            if info["locale"].lower() == wanted:
                return model_id
        return None


def _fetch_archive(url: str, report: Callable[[str, int], None]) -> Path:
    """Download url into a temporary .zip file and return its path."""
    fd, name = tempfile.mkstemp(suffix=".zip")
    os.close(fd)

    def on_block(blocks: int, block_size: int, total: int) -> None:
        if total > 0:
            report("downloading", min(100, blocks * block_size * 100 // total))

    report("downloading", 0)
    try:
        urllib.request.urlretrieve(url, name, on_block)
    except OSError:
        os.unlink(name)
        raise
    return Path(name)
