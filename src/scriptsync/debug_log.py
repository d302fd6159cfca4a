"""
Debug logging for tracking alignment progress during a session.

Creates two log files:
- alignment.log: Recognized fragments and the position changes they caused
- session.log: Session lifecycle events (starts, failures, restarts, stops)

Logging is disabled by default. Call enable() to turn it on.
"""

from datetime import datetime
from pathlib import Path

# Log files location (relative to the working directory)
LOG_DIR: Path = Path.cwd() / "logs"
ALIGNMENT_LOG: Path = LOG_DIR / "alignment.log"
SESSION_LOG: Path = LOG_DIR / "session.log"

# Global flag to control whether debug logging is enabled
_ENABLED: bool = False  # pylint: disable=invalid-name


def enable(log_dir: Path | None = None) -> None:
    """Enable debug logging, optionally writing to a different directory."""
    global _ENABLED, LOG_DIR, ALIGNMENT_LOG, SESSION_LOG  # pylint: disable=global-statement
    if log_dir is not None:
        LOG_DIR = log_dir
        ALIGNMENT_LOG = LOG_DIR / "alignment.log"
        SESSION_LOG = LOG_DIR / "session.log"
    _ENABLED = True


def disable() -> None:
    """Disable debug logging."""
    global _ENABLED  # pylint: disable=global-statement
    _ENABLED = False


def is_enabled() -> bool:
    """Check if debug logging is enabled."""
    return _ENABLED


def _ensure_log_dir() -> None:
    """Create log directory if it doesn't exist."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)


def _timestamp() -> str:
    """Get current timestamp."""
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


def clear_logs() -> None:
    """Clear both log files for a fresh session."""
    if not _ENABLED:
        return
    _ensure_log_dir()
    log_file: Path
    for log_file in [ALIGNMENT_LOG, SESSION_LOG]:
        with open(log_file, 'w', encoding='utf-8') as f:
            f.write(
                f"=== New session started at {datetime.now().isoformat()} ===\n\n")


def log_fragment(generation: int, text: str, is_partial: bool) -> None:
    """
    Log a recognized fragment.

    Args:
        generation: Session generation the fragment belongs to
        text: Recognized text (only the tail is written)
        is_partial: Whether the backend may still revise it
    """
    if not _ENABLED:
        return
    _ensure_log_dir()
    kind = "partial" if is_partial else "final"
    with open(ALIGNMENT_LOG, 'a', encoding='utf-8') as f:
        f.write(
            f"[{_timestamp()}] gen={generation:3d} {kind:7} \"{text[-60:]}\"\n")


def log_position_update(old_pos: int, new_pos: int, source_text: str, reason: str) -> None:
    """
    Log a position change.

    Args:
        old_pos: Previous recognized character count
        new_pos: New recognized character count
        source_text: The reference script, used to show the text covered
        reason: Why the position changed (advance, jump, ...)
    """
    if not _ENABLED:
        return
    _ensure_log_dir()
    low, high = sorted((old_pos, new_pos))
    with open(ALIGNMENT_LOG, 'a', encoding='utf-8') as f:
        f.write(
            f"[{_timestamp()}] POSITION CHANGE: {old_pos} -> {new_pos} ({reason})\n")
        f.write(f"                 text: \"{source_text[low:high]}\"\n")


def log_session_event(event: str, detail: str = "") -> None:
    """Log a session lifecycle event."""
    if not _ENABLED:
        return
    _ensure_log_dir()
    with open(SESSION_LOG, 'a', encoding='utf-8') as f:
        f.write(f"[{_timestamp()}] {event:15} {detail}\n")
