"""
Standalone host for the music supervisor.

Runs background music until SIGINT/SIGTERM, the same way a host program owns
the supervisor: created at startup, stop() guaranteed on every exit path.

Example:
    ```bash
    python3 -m jukebox --music-dir ~/music --volume 0.3
    ```
"""

import argparse
import logging
import logging.handlers
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from jukebox.config import JukeboxSettings, load_settings
from jukebox.supervisor import MusicSupervisor

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="jukebox",
        description="Play a directory of audio files on a loop in the background.",
    )
    parser.add_argument("--music-dir", help="Music directory (default: JUKEBOX_MUSIC_DIR or ./web/music)")
    parser.add_argument("--fade-ms", type=int, help="Cutover window when stopping mid-track")
    parser.add_argument("--delay-ms", type=int, help="Silence between songs")
    parser.add_argument("--volume", type=float, help="Volume from 0.0 to 1.0")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR or CRITICAL")
    parser.add_argument("--env-file", help="Path to a .env file")
    return parser.parse_args(argv)


def apply_args(settings: JukeboxSettings, args: argparse.Namespace) -> JukeboxSettings:
    """Override loaded settings with any command-line values given."""
    if args.music_dir:
        settings.music_dir = Path(args.music_dir).expanduser()
    if args.fade_ms is not None:
        settings.fade_duration_ms = args.fade_ms
    if args.delay_ms is not None:
        settings.delay_between_songs_ms = args.delay_ms
    if args.volume is not None:
        settings.volume = args.volume
    if args.log_level:
        settings.log_level = args.log_level.upper()
    settings.validate()
    return settings


def configure_logging(settings: JukeboxSettings) -> None:
    """
    Console logging, plus an optional rotation-tolerant log file.

    File write failures are swallowed so logging can never take the host down.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    if not settings.log_file:
        return

    try:
        # WatchedFileHandler reopens the file after external rotation
        handler = logging.handlers.WatchedFileHandler(settings.log_file, mode="a")
    except OSError as e:
        logger.warning(f"Cannot open log file {settings.log_file}: {e}")
        return

    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    original_emit = handler.emit

    def safe_emit(record):
        try:
            original_emit(record)
        except OSError:
            pass

    handler.emit = safe_emit
    logging.getLogger("jukebox").addHandler(handler)


def run(settings: JukeboxSettings, shutdown_event: Optional[threading.Event] = None) -> int:
    """
    Own one supervisor until shutdown is requested.

    Args:
        settings: Loaded settings
        shutdown_event: Event that ends the run (default: a new event set by
                        SIGINT/SIGTERM)

    Returns:
        Process exit code
    """
    shutdown_event = shutdown_event or threading.Event()

    def signal_handler(sig, frame):
        if shutdown_event.is_set():
            logger.debug("Shutdown already in progress, ignoring duplicate signal")
            return
        logger.info(f"Received {signal.Signals(sig).name} - shutting down background music")
        shutdown_event.set()

    previous_handlers = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous_handlers[sig] = signal.signal(sig, signal_handler)

    supervisor = MusicSupervisor(
        settings.music_dir,
        settings.music_config,
        poll_interval_ms=settings.poll_interval_ms,
        max_termination_grace_sec=settings.max_termination_grace_sec,
    )
    try:
        supervisor.start()
        status = supervisor.status()
        logger.info(
            f"Background music running: player={status.player or 'none'} "
            f"tracks={status.playlist_size}"
        )
        shutdown_event.wait()
    finally:
        supervisor.stop()
        for sig, handler in previous_handlers.items():
            if handler is not None:
                signal.signal(sig, handler)

    logger.info("Jukebox stopped")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = apply_args(load_settings(args.env_file), args)
    except ValueError as e:
        logging.basicConfig(level=logging.ERROR, format=LOG_FORMAT)
        logger.error(f"Jukebox failed to start: {e}")
        return 1

    configure_logging(settings)
    return run(settings)


if __name__ == "__main__":
    sys.exit(main())
