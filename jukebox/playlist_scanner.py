"""Music directory scanning."""

import logging
import os
from dataclasses import dataclass
from typing import FrozenSet, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS: FrozenSet[str] = frozenset({"mp3", "wav", "flac", "ogg", "m4a", "aac"})


def file_extension(name: str) -> str:
    """
    Lower-case extension without the dot ('' if none).

    Dotfiles have no extension, so a file named ".mp3" is not treated as audio.
    """
    return os.path.splitext(name)[1][1:].lower()


@dataclass(frozen=True)
class AudioFile:
    """A playable file, identified by its absolute path."""
    absolute_path: str
    extension: str

    @property
    def name(self) -> str:
        return os.path.basename(self.absolute_path)


@dataclass(frozen=True)
class Playlist:
    """
    Ordered, immutable list of audio files.

    Attributes:
        directory: Directory the playlist was scanned from
        files: Files in playback order
        warning: Why the playlist is empty, if it is (None otherwise)
    """
    directory: str
    files: Tuple[AudioFile, ...] = ()
    warning: Optional[str] = None

    def __len__(self) -> int:
        return len(self.files)

    def __iter__(self) -> Iterator[AudioFile]:
        return iter(self.files)

    def __getitem__(self, index: int) -> AudioFile:
        return self.files[index]

    @property
    def is_empty(self) -> bool:
        return not self.files


class PlaylistScanner:
    """Builds a Playlist from the immediate entries of one directory."""

    def __init__(self, extensions: FrozenSet[str] = SUPPORTED_EXTENSIONS) -> None:
        self.extensions = frozenset(ext.lower() for ext in extensions)

    def scan(self, directory: str) -> Playlist:
        """
        List supported audio files in a directory (non-recursive).

        Files are ordered lexicographically by filename so repeated scans of
        an unchanged directory give the same sequence. A missing or unreadable
        directory gives an empty playlist with a warning, not an error.

        Args:
            directory: Path to the music directory

        Returns:
            Playlist (possibly empty)
        """
        directory = os.path.abspath(directory)

        if not os.path.isdir(directory):
            return self._empty(directory, f"Music directory does not exist: {directory}")

        try:
            with os.scandir(directory) as entries:
                names = [
                    entry.name
                    for entry in entries
                    if entry.is_file() and file_extension(entry.name) in self.extensions
                ]
        except OSError as e:
            return self._empty(directory, f"Cannot read music directory {directory}: {e}")

        if not names:
            return self._empty(directory, f"No music files found in {directory}")

        files = tuple(
            AudioFile(os.path.join(directory, name), file_extension(name))
            for name in sorted(names)
        )
        logger.info(f"Loaded {len(files)} music file(s) for background playback from {directory}")
        return Playlist(directory=directory, files=files)

    @staticmethod
    def _empty(directory: str, warning: str) -> Playlist:
        logger.warning(warning)
        return Playlist(directory=directory, warning=warning)
