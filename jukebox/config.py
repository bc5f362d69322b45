"""
Configuration management for Jukebox.

Reads settings from an optional .env file and environment variables with
sensible defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from jukebox.config_store import (
    DEFAULT_DELAY_BETWEEN_SONGS_MS,
    DEFAULT_FADE_DURATION_MS,
    DEFAULT_VOLUME,
    MusicConfig,
)
from jukebox.controller import (
    DEFAULT_MAX_TERMINATION_GRACE_SEC,
    DEFAULT_POLL_INTERVAL_MS,
    MAX_POLL_INTERVAL_MS,
)

# Default .env file location
DEFAULT_ENV_FILE = Path("/etc/jukebox/jukebox.env")

# Relative location of the music directory under the project root
WEB_DIR_NAME = "web"
MUSIC_SUBDIR = Path(WEB_DIR_NAME) / "music"

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

logger = logging.getLogger(__name__)


def _load_env_file(env_file: Optional[str] = None) -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(env_file or os.getenv("JUKEBOX_ENV_FILE", str(DEFAULT_ENV_FILE)))

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars
        logger.debug(f"Loaded environment variables from {env_path}")


def find_music_dir(start: Optional[Path] = None) -> Path:
    """
    Locate the default music directory.

    Walks upward from start (default: current directory) to the first
    directory that contains a web/ subdirectory and returns <it>/web/music.
    Falls back to <start>/web/music when no such directory exists.

    Args:
        start: Directory to start searching from

    Returns:
        Path to the music directory (may not exist)
    """
    origin = Path(start) if start is not None else Path.cwd()
    origin = origin.resolve()
    for candidate in (origin, *origin.parents):
        if (candidate / WEB_DIR_NAME).is_dir():
            return candidate / MUSIC_SUBDIR
    return origin / MUSIC_SUBDIR


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw} (must be an integer)")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw} (must be a number)")


@dataclass
class JukeboxSettings:
    """Jukebox settings loaded from .env file and environment variables."""

    # Music source
    music_dir: Path = field(default_factory=find_music_dir)

    # Initial playback config (hot-swappable at runtime via the supervisor)
    fade_duration_ms: int = DEFAULT_FADE_DURATION_MS
    delay_between_songs_ms: int = DEFAULT_DELAY_BETWEEN_SONGS_MS
    volume: float = DEFAULT_VOLUME

    # Shutdown responsiveness
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    max_termination_grace_sec: float = DEFAULT_MAX_TERMINATION_GRACE_SEC

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def music_config(self) -> MusicConfig:
        """Initial MusicConfig (volume clamped, durations normalized)."""
        return MusicConfig(
            fade_duration_ms=self.fade_duration_ms,
            delay_between_songs_ms=self.delay_between_songs_ms,
            volume=self.volume,
        )

    @classmethod
    def load_settings(cls, env_file: Optional[str] = None) -> "JukeboxSettings":
        """
        Load settings from environment variables.

        Args:
            env_file: Optional .env path (default: JUKEBOX_ENV_FILE or
                      /etc/jukebox/jukebox.env)

        Returns:
            JukeboxSettings instance with loaded values

        Raises:
            ValueError: If a setting is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file(env_file)

        music_dir_str = os.getenv("JUKEBOX_MUSIC_DIR", "").strip()
        music_dir = Path(music_dir_str).expanduser() if music_dir_str else find_music_dir()

        log_file = os.getenv("JUKEBOX_LOG_FILE", "").strip() or None

        settings = cls(
            music_dir=music_dir,
            fade_duration_ms=_int_env("JUKEBOX_FADE_MS", DEFAULT_FADE_DURATION_MS),
            delay_between_songs_ms=_int_env("JUKEBOX_DELAY_MS", DEFAULT_DELAY_BETWEEN_SONGS_MS),
            volume=_float_env("JUKEBOX_VOLUME", DEFAULT_VOLUME),
            poll_interval_ms=_int_env("JUKEBOX_POLL_INTERVAL_MS", DEFAULT_POLL_INTERVAL_MS),
            max_termination_grace_sec=_float_env(
                "JUKEBOX_MAX_TERMINATION_GRACE_SEC", DEFAULT_MAX_TERMINATION_GRACE_SEC
            ),
            log_level=os.getenv("JUKEBOX_LOG_LEVEL", "INFO").strip().upper(),
            log_file=log_file,
        )

        settings.validate()
        return settings

    def validate(self) -> None:
        """
        Validate setting values.

        Volume is not validated here; MusicConfig clamps it.

        Raises:
            ValueError: If a setting is invalid
        """
        if self.fade_duration_ms < 0:
            raise ValueError(f"Invalid fade duration: {self.fade_duration_ms} (must be >= 0)")

        if self.delay_between_songs_ms < 0:
            raise ValueError(f"Invalid delay between songs: {self.delay_between_songs_ms} (must be >= 0)")

        if not 1 <= self.poll_interval_ms <= MAX_POLL_INTERVAL_MS:
            raise ValueError(
                f"Invalid poll interval: {self.poll_interval_ms} (must be 1-{MAX_POLL_INTERVAL_MS} ms)"
            )

        if self.max_termination_grace_sec < 0:
            raise ValueError(
                f"Invalid max termination grace: {self.max_termination_grace_sec} (must be >= 0)"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(VALID_LOG_LEVELS)})"
            )


def load_settings(env_file: Optional[str] = None) -> JukeboxSettings:
    """
    Load and validate Jukebox settings from environment variables.

    Raises:
        ValueError: If settings are invalid
    """
    try:
        return JukeboxSettings.load_settings(env_file)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise
