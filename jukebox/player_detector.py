"""
External audio player discovery.

The catalog below is probed in priority order; the first executable found on
PATH wins. Players are expected to play a single file and exit.
"""

from __future__ import annotations

import logging
import shutil
import string
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# Placeholders understood by PlayerBinary.build_argv()
PATH_FIELD = "path"
VOLUME_FIELDS = ("volume", "volume_percent", "volume_scale", "volume_pulse")

# mpg123 -f: 32768 is unity gain
MPG123_UNITY_SCALE = 32768
# paplay --volume: 65536 is 100%
PULSE_VOLUME_NORM = 65536


@dataclass(frozen=True)
class PlayerBinary:
    """
    One candidate player executable.

    Attributes:
        executable_name: Name resolved via PATH
        priority_rank: Lower rank is probed first
        argv_template: Argument vector with str.format placeholders
                       ({path}, and optionally a volume placeholder)
    """
    executable_name: str
    priority_rank: int
    argv_template: Tuple[str, ...]

    @property
    def supports_volume(self) -> bool:
        return any(field in VOLUME_FIELDS for field in _template_fields(self.argv_template))

    def build_argv(self, path: str, volume: float) -> List[str]:
        """
        Substitute the file path and volume into the template.

        Args:
            path: Absolute path of the file to play
            volume: Volume in [0.0, 1.0]; ignored by players without a volume flag

        Returns:
            Argument vector ready for subprocess
        """
        values = {
            PATH_FIELD: path,
            "volume": f"{volume:.3f}",
            "volume_percent": str(int(round(volume * 100))),
            "volume_scale": str(int(round(volume * MPG123_UNITY_SCALE))),
            "volume_pulse": str(int(round(volume * PULSE_VOLUME_NORM))),
        }
        return [arg.format(**values) for arg in self.argv_template]


def _template_fields(template: Iterable[str]) -> List[str]:
    formatter = string.Formatter()
    return [
        field
        for arg in template
        for _, field, _, _ in formatter.parse(arg)
        if field
    ]


PLAYER_CATALOG: Tuple[PlayerBinary, ...] = (
    PlayerBinary(
        "ffplay", 0,
        ("ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet", "-volume", "{volume_percent}", "{path}"),
    ),
    PlayerBinary("mpg123", 1, ("mpg123", "-q", "-f", "{volume_scale}", "{path}")),
    PlayerBinary("play", 2, ("play", "-q", "-v", "{volume}", "{path}")),
    PlayerBinary("aplay", 3, ("aplay", "-q", "{path}")),
    PlayerBinary("paplay", 4, ("paplay", "--volume={volume_pulse}", "{path}")),
)


class PlayerDetector:
    """Finds the highest-priority player available on PATH."""

    def __init__(
        self,
        catalog: Sequence[PlayerBinary] = PLAYER_CATALOG,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        """
        Args:
            catalog: Candidate players (default: PLAYER_CATALOG)
            which: PATH lookup function (default: shutil.which)
        """
        self._catalog = sorted(catalog, key=lambda player: player.priority_rank)
        self._which = which

    def detect(self) -> Optional[PlayerBinary]:
        """
        Probe candidates in priority order.

        Returns:
            The first resolvable PlayerBinary, or None if none resolve.
        """
        for player in self._catalog:
            resolved = self._which(player.executable_name)
            if resolved:
                logger.info(f"Using audio player: {player.executable_name} ({resolved})")
                return player
            logger.debug(f"Audio player not found on PATH: {player.executable_name}")
        return None
