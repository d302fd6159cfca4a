# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Recognition backend factory and registry.

This module provides a factory for creating recognition backends and
managing the registry of available backend kinds.
"""

from collections.abc import Callable
from pathlib import Path

from ..config import Config
from ..transcription_provider import FragmentCallback, ModelInfo, TranscriptionBackend
from .vosk_provider import DEFAULT_MODEL_DIR, VoskBackend
from .whisper_cloud_provider import WhisperCloudBackend
from .whisper_local_provider import WhisperLocalBackend

# Registry of available backends
PROVIDER_REGISTRY: dict[str, type[TranscriptionBackend]] = {
    "vosk": VoskBackend,
    "whisper-local": WhisperLocalBackend,
    "whisper-cloud": WhisperCloudBackend,
}

# Backends that never send audio off the machine
ON_DEVICE_KINDS: frozenset[str] = frozenset({"vosk", "whisper-local"})


def create_backend(
    kind: str, on_fragment: FragmentCallback, config: Config
) -> TranscriptionBackend:
    """
    Factory function to create a recognition backend.

    Args:
        kind: Backend kind ("vosk", "whisper-local", "whisper-cloud")
        on_fragment: Receives every fragment the backend produces
        config: Configuration snapshot for the session

    Returns:
        Backend instance, not yet started

    Raises:
        ValueError: If kind is not registered
    """
    backend_class = PROVIDER_REGISTRY.get(kind)
    if not backend_class:
        available = ", ".join(PROVIDER_REGISTRY.keys())
        raise ValueError(f"Unknown backend: {kind}. Available backends: {available}")

    return backend_class(on_fragment, config)


def supported_locales(kind: str) -> list[str]:
    """Locales a backend kind can recognize, empty if it detects language itself."""
    backend_class = PROVIDER_REGISTRY.get(kind)
    if not backend_class:
        return []
    return backend_class.supported_locales()


def get_all_available_models() -> list[ModelInfo]:
    """
    Get all installable models.

    Only the Vosk backend has downloadable models; whisper models are
    managed outside scriptsync.
    """
    return VoskBackend.get_available_models()


def is_model_downloaded(locale: str, config: Config | None = None) -> bool:
    """
    Check if the Vosk model for a locale is already downloaded.

    Args:
        locale: Locale such as "en-US"
        config: Optional config whose vosk.model_dir is searched

    Returns:
        True if the model directory exists
    """
    model_id = VoskBackend.model_id_for(locale)
    if model_id is None:
        return False
    model_dir = DEFAULT_MODEL_DIR
    if config is not None and config["vosk"].get("model_dir"):
        model_dir = Path(config["vosk"]["model_dir"])  # type: ignore[arg-type]
    return (model_dir / VoskBackend.MODELS[model_id]["dir"]).exists()


def download_model_for_locale(
    locale: str,
    target_dir: str | None = None,
    progress_callback: Callable[[str, int], None] | None = None
) -> str:
    """
    Download the Vosk model registered for a locale.

    Raises:
        ValueError: If no model is registered for the locale
    """
    model_id = VoskBackend.model_id_for(locale)
    if model_id is None:
        available = ", ".join(VoskBackend.supported_locales())
        raise ValueError(f"No Vosk model for locale {locale}. Available locales: {available}")
    return VoskBackend.download_model(model_id, target_dir, progress_callback)


__all__ = [
    "create_backend",
    "supported_locales",
    "get_all_available_models",
    "is_model_downloaded",
    "download_model_for_locale",
    "PROVIDER_REGISTRY",
    "ON_DEVICE_KINDS",
    "VoskBackend",
    "WhisperLocalBackend",
    "WhisperCloudBackend",
]
