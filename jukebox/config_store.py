"""
Hot-swappable playback configuration.

MusicConfig is the value object the controller reads at each loop boundary;
ConfigStore is the lock-protected holder shared between the caller thread and
the controller thread.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_FADE_DURATION_MS = 1000
DEFAULT_DELAY_BETWEEN_SONGS_MS = 2000
DEFAULT_VOLUME = 0.5

MIN_VOLUME = 0.0
MAX_VOLUME = 1.0


def clamp_volume(volume: Any) -> float:
    """Clamp a volume into [0.0, 1.0]. NaN becomes 0.0."""
    value = float(volume)
    if math.isnan(value):
        return MIN_VOLUME
    return max(MIN_VOLUME, min(MAX_VOLUME, value))


def _non_negative_ms(value: Any) -> int:
    """Coerce a duration to a non-negative int. Non-finite floats raise ValueError."""
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"Duration must be finite, got {value}")
    return max(0, int(value))


@dataclass(frozen=True)
class MusicConfig:
    """
    Playback configuration triple.

    Values are normalized on construction: volume is clamped into [0.0, 1.0],
    durations are coerced to int and clamped to be non-negative.

    Attributes:
        fade_duration_ms: Cutover window used when a playing track is stopped
        delay_between_songs_ms: Silence inserted between tracks
        volume: Player volume, 0.0 (mute) to 1.0 (full)
    """
    fade_duration_ms: int = DEFAULT_FADE_DURATION_MS
    delay_between_songs_ms: int = DEFAULT_DELAY_BETWEEN_SONGS_MS
    volume: float = DEFAULT_VOLUME

    def __post_init__(self) -> None:
        object.__setattr__(self, "fade_duration_ms", _non_negative_ms(self.fade_duration_ms))
        object.__setattr__(self, "delay_between_songs_ms", _non_negative_ms(self.delay_between_songs_ms))
        object.__setattr__(self, "volume", clamp_volume(self.volume))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MusicConfig":
        """Build a config from a mapping, ignoring unknown keys."""
        known = {k: data[k] for k in ("fade_duration_ms", "delay_between_songs_ms", "volume") if k in data}
        return cls(**known)

    def to_dict(self) -> dict:
        return {
            "fade_duration_ms": self.fade_duration_ms,
            "delay_between_songs_ms": self.delay_between_songs_ms,
            "volume": self.volume,
        }


class ConfigStore:
    """
    Thread-safe holder for the current MusicConfig.

    The controller takes snapshots with get() at the start of each track and
    at each delay phase; callers may update() at any time.
    """

    def __init__(self, initial: Optional[MusicConfig] = None) -> None:
        self._lock = threading.Lock()
        self._config = initial if initial is not None else MusicConfig()

    def get(self) -> MusicConfig:
        with self._lock:
            return self._config

    def update(self, new_config: Optional[MusicConfig] = None, **changes: Any) -> MusicConfig:
        """
        Replace the stored configuration.

        Args:
            new_config: Full replacement config (default: keep the stored one)
            **changes: Field overrides applied on top of new_config or the
                       stored config (e.g. volume=0.8)

        Returns:
            The normalized MusicConfig actually stored.

        Raises:
            TypeError: If an unknown field name is given
            ValueError: If a value cannot be converted to a number, or a
                        duration is not finite
        """
        if new_config is not None and not isinstance(new_config, MusicConfig):
            raise TypeError(f"Expected MusicConfig, got {type(new_config).__name__}")

        with self._lock:
            base = new_config if new_config is not None else self._config
            # replace() re-runs __post_init__, so overrides are clamped as well
            updated = replace(base, **changes) if changes else base
            previous = self._config
            self._config = updated

        if updated != previous:
            logger.info(
                f"Music config updated: fade={updated.fade_duration_ms}ms "
                f"delay={updated.delay_between_songs_ms}ms volume={updated.volume:.2f}"
            )
        return updated
