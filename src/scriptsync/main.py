"""
Main scriptsync application.
Runs a recognition session against a script file and prints progress.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from . import debug_log
from .config import (
    Config,
    get_config_path,
    get_recognition_settings,
    load_config,
    save_config,
)
from .providers import PROVIDER_REGISTRY, download_model_for_locale, get_all_available_models
from .session import SessionController, SessionState

logger = logging.getLogger(__name__)


class ScriptSyncApp:
    """
    Command line front end that owns one session controller.
    """

    def __init__(self, script_text: str, config: Config) -> None:
        self.script_text: str = script_text
        self.config: Config = config
        self.controller: SessionController = SessionController(config=config)
        self.watcher = None
        self.running: bool = False

        # Last printed status, to avoid repeating identical lines
        self._last_status: tuple[int, SessionState, str] | None = None

    def print_status(self, controller: SessionController) -> None:
        """Print a progress line whenever position or state changes."""
        status = (controller.recognized_char_count, controller.state,
                  controller.last_spoken_text)
        if status == self._last_status:
            return
        self._last_status = status
        logger.debug(controller.debug_status)

        total: int = len(controller.script) if controller.script is not None else 0
        percent: float = 100.0 * controller.recognized_char_count / total if total else 0.0
        indicator: str = "●" if controller.is_listening else "○"
        speaking: str = "~" if controller.level_monitor.is_speaking else " "
        print(f"{indicator}{speaking} {percent:5.1f}% [{controller.state.value:10}] "
              f"{controller.last_spoken_text}")

        if controller.last_error is not None and controller.state is SessionState.IDLE:
            print(f"Recognition stopped: {controller.last_error}")

    async def start(self) -> None:
        """Start listening and run until stopped."""
        # Imported here so --help and --list-models work without PortAudio
        from .audio import DeviceWatcher

        print("Starting scriptsync...")
        self.running = True
        self.controller.add_listener(self.print_status)

        self.watcher = DeviceWatcher(self.controller.notify_configuration_change)
        await self.watcher.start()

        await self.controller.start(self.script_text)
        if self.controller.script is not None:
            print(f"Script loaded: {len(self.controller.script)} characters")
        print(f"Backend: {get_recognition_settings(self.config)['backend']}, "
              f"locale: {self.controller.active_locale}")
        print("  Press Ctrl+C to stop\n")

        while self.running:
            await asyncio.sleep(0.1)

    async def stop(self) -> None:
        """Stop the session and release the audio device."""
        print("\nStopping scriptsync...")
        self.running = False
        if self.watcher is not None:
            await self.watcher.stop()
        await self.controller.close()
        total = len(self.controller.script) if self.controller.script is not None else 0
        print(f"Stopped at character {self.controller.recognized_char_count} of {total}.")


def device_arg(value: str) -> int | str:
    """Device index when numeric, otherwise a device name for sounddevice to match."""
    return int(value) if value.strip().isdigit() else value


def main() -> None:
    """Main entry point."""
    # Configure logging - minimal console output
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )

    # Load config first to use as defaults
    config: Config = load_config()
    recognition = config["recognition"]

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="scriptsync - Follow a spoken script with live speech recognition"
    )

    parser.add_argument(
        "script",
        nargs="?",
        help="Text file containing the script to follow"
    )

    parser.add_argument(
        "--backend", "-b",
        default=recognition["backend"],
        choices=list(PROVIDER_REGISTRY.keys()),
        help="Recognition backend (default: from config or 'vosk')"
    )

    parser.add_argument(
        "--locale", "-l",
        default=recognition["locale"],
        help="Recognition locale used when detection is off or fails (default: from config or en-US)"
    )

    parser.add_argument(
        "--auto-detect",
        action=argparse.BooleanOptionalAction,
        default=recognition["auto_detect_language"],
        help="Detect the script language to pick the recognition locale"
    )

    parser.add_argument(
        "--on-device-only",
        action="store_true",
        default=recognition["on_device_only"],
        help="Refuse backends that send audio off this machine"
    )

    parser.add_argument(
        "--device", "-d",
        type=device_arg,
        default=recognition["microphone"],
        help="Audio input device index or name"
    )

    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List available audio input devices and exit"
    )

    parser.add_argument(
        "--list-models",
        action="store_true",
        help="List all downloadable recognition models and exit"
    )

    parser.add_argument(
        "--download-model",
        metavar="LOCALE",
        help="Download the Vosk model for a locale (e.g. en-US) and exit"
    )

    parser.add_argument(
        "--save-config",
        action="store_true",
        help="Save current CLI options to config file and exit"
    )

    parser.add_argument(
        "--debug-log",
        action="store_true",
        help="Enable alignment debug logging to ./logs/"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show informational log messages"
    )

    args: argparse.Namespace = parser.parse_args()

    if args.verbose:
        logging.getLogger("scriptsync").setLevel(logging.INFO)

    # Handle special commands
    if args.list_devices:
        from .audio import list_devices
        list_devices()
        return

    if args.list_models:
        models = get_all_available_models()
        print("\nAvailable recognition models:")
        print("-" * 80)
        for model in sorted(models, key=lambda m: m.locale):
            print(f"  {model.locale:8} {model.id}")
            print(f"    Name: {model.name}")
            print(f"    Size: {model.size_mb}MB")
            print()
        return

    if args.download_model:
        print(f"Downloading model for: {args.download_model}")
        try:
            download_model_for_locale(args.download_model, config["vosk"].get("model_dir"))
        except ValueError as e:
            print(f"Error: {e}")
            sys.exit(1)
        return

    recognition["backend"] = args.backend
    recognition["locale"] = args.locale
    recognition["auto_detect_language"] = args.auto_detect
    recognition["on_device_only"] = args.on_device_only
    recognition["microphone"] = args.device

    if args.save_config:
        if save_config(config):
            print(f"Configuration saved to {get_config_path()}")
        return

    if not args.script:
        parser.error("a script file is required")

    try:
        script_text: str = Path(args.script).read_text(encoding="utf-8")
    except OSError as e:
        print(f"Error: Could not read script {args.script}: {e}")
        sys.exit(1)

    # Enable debug logging if requested
    if args.debug_log:
        debug_log.enable()
        print("Debug logging enabled (logs will be saved to ./logs/)")

    app: ScriptSyncApp = ScriptSyncApp(script_text, config)
    run_app(app)


def run_app(app: ScriptSyncApp) -> None:
    """Run the app on a fresh event loop until a signal or Ctrl+C stops it."""
    loop: asyncio.AbstractEventLoop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def request_stop(sig: int, frame: object) -> None:
        print(f"\nReceived {signal.Signals(sig).name}...")
        app.running = False

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, request_stop)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        app.running = False
    finally:
        try:
            loop.run_until_complete(app.stop())
        except Exception:
            logger.exception("Error while stopping")
        leftovers = asyncio.all_tasks(loop)
        for task in leftovers:
            task.cancel()
        if leftovers:
            loop.run_until_complete(asyncio.gather(*leftovers, return_exceptions=True))
        loop.close()


if __name__ == "__main__":
    main()
