# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Configuration management for scriptsync.
Handles loading and saving settings from a YAML config file.
"""

import copy
from pathlib import Path
from typing import Any, TypedDict

import yaml

CONFIG_FILENAME: str = ".scriptsync.yaml"


class RecognitionSettings(TypedDict):
    """Type definition for recognition configuration settings."""
    backend: str  # "vosk", "whisper-local" or "whisper-cloud"
    locale: str  # Locale used when auto-detection is off or fails
    auto_detect_language: bool
    on_device_only: bool  # Refuse backends that send audio off the machine
    microphone: int | str | None  # sounddevice index or name, None for default
    chunk_ms: int


class RetrySettings(TypedDict):
    """Type definition for retry and restart timing."""
    max_retries: int
    backoff_step: float  # Seconds added per retry
    backoff_cap: float  # Longest wait between retries
    restart_delay: float  # Wait before a full restart (device change, jump)
    locale_fallback_delay: float
    settle_seconds: float  # Configuration changes ignored this long after a start


class VoskSettings(TypedDict):
    """Type definition for the on-device Vosk backend."""
    model_dir: str | None  # None for ~/.cache/scriptsync/models
    models: dict[str, str]  # locale -> model id overrides


class WhisperLocalSettings(TypedDict):
    """Type definition for the whisper-stream subprocess backend."""
    binary: str
    model_path: str
    language: str
    threads: int
    step_ms: int
    length_ms: int
    keep_ms: int
    vad_threshold: float


class WhisperCloudSettings(TypedDict):
    """Type definition for the OpenAI Whisper cloud backend."""
    api_key: str | None
    api_key_env: str  # Environment variable read when api_key is empty
    api_url: str
    model: str
    chunk_seconds: float
    timeout: float


class LevelSettings(TypedDict):
    """Type definition for input level monitoring."""
    capacity: int
    gain: float
    speaking_threshold: float
    speaking_window: int


class Config(TypedDict):
    """Type definition for the complete configuration."""
    recognition: RecognitionSettings
    retry: RetrySettings
    vosk: VoskSettings
    whisper_local: WhisperLocalSettings
    whisper_cloud: WhisperCloudSettings
    levels: LevelSettings


# Default configuration values
DEFAULT_CONFIG: Config = {
    "recognition": {
        "backend": "vosk",
        "locale": "en-US",
        "auto_detect_language": True,
        "on_device_only": False,
        "microphone": None,
        "chunk_ms": 100,
    },

    "retry": {
        "max_retries": 10,
        "backoff_step": 0.5,
        "backoff_cap": 1.5,
        "restart_delay": 0.5,
        "locale_fallback_delay": 0.3,
        "settle_seconds": 2.0,
    },

    "vosk": {
        "model_dir": None,
        "models": {},
    },

    # whisper.cpp streaming example
    "whisper_local": {
        "binary": "/opt/homebrew/bin/whisper-stream",
        "model_path": "",
        "language": "auto",
        "threads": 4,
        "step_ms": 3000,
        "length_ms": 5000,
        "keep_ms": 500,
        "vad_threshold": 0.5,
    },

    "whisper_cloud": {
        "api_key": None,
        "api_key_env": "OPENAI_API_KEY",
        "api_url": "https://api.openai.com/v1/audio/transcriptions",
        "model": "whisper-1",
        "chunk_seconds": 4.0,
        "timeout": 30.0,
    },

    "levels": {
        "capacity": 30,
        "gain": 5.0,
        "speaking_threshold": 0.08,
        "speaking_window": 10,
    },
}


def get_config_path() -> Path:
    """Get the path to the config file in the current working directory."""
    return Path.cwd() / CONFIG_FILENAME


def _deep_merge(base, override):
    """
    Deep merge two dictionaries, with override taking precedence.
    Returns a new dictionary without modifying the originals.

    Args:
        base: Base dictionary to merge from.
        override: Dictionary with values that take precedence over base.

    Returns:
        New dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def merge_config(override: dict[str, Any] | None = None) -> Config:
    """
    Build a complete config from the defaults and a partial override.

    Args:
        override: Partial configuration, e.g. {"retry": {"max_retries": 3}}

    Returns:
        New configuration with every section present.
    """
    config: dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
    if override:
        config = _deep_merge(config, copy.deepcopy(override))
    return config  # type: ignore[return-value]


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, merged with defaults.

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        Configuration dictionary with all values (defaults + overrides from file).
    """
    if config_path is None:
        config_path = get_config_path()

    file_config: dict[str, Any] | None = None
    if config_path.exists():
        try:
            with open(config_path, encoding='utf-8') as f:
                file_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            print(f"Warning: Could not load config from {config_path}: {e}")

    return merge_config(file_config if isinstance(file_config, dict) else None)


def save_config(config: Config, config_path: Path | None = None) -> bool:
    """
    Save configuration to file.

    Args:
        config: Configuration dictionary to save.
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        True if save was successful, False otherwise.
    """
    if config_path is None:
        config_path = get_config_path()

    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config, f, default_flow_style=False, sort_keys=False)
        return True
    except (OSError, yaml.YAMLError) as e:
        print(f"Error saving config to {config_path}: {e}")
        return False


def get_recognition_settings(config: Config) -> RecognitionSettings:
    """Extract recognition settings from config."""
    return config.get("recognition",
                      DEFAULT_CONFIG["recognition"]
                      ).copy()  # type: ignore[return-value]


def get_retry_settings(config: Config) -> RetrySettings:
    """Extract retry settings from config."""
    return config.get("retry", DEFAULT_CONFIG["retry"]).copy()  # type: ignore[return-value]


def get_level_settings(config: Config) -> LevelSettings:
    """Extract level monitor settings from config."""
    return config.get("levels", DEFAULT_CONFIG["levels"]).copy()  # type: ignore[return-value]


def snapshot_config(config: Config) -> Config:
    """
    Take a deep copy of the config so a running session is unaffected by later edits.

    Args:
        config: Current configuration.

    Returns:
        Independent copy with defaults filled in.
    """
    return merge_config(config)  # type: ignore[arg-type]
