"""Jukebox - background music supervisor built on external audio players."""

from .config_store import ConfigStore, MusicConfig
from .controller import ControllerState, PlaybackController
from .playback_session import PlaybackSession, SpawnError
from .player_detector import PLAYER_CATALOG, PlayerBinary, PlayerDetector
from .playlist_scanner import SUPPORTED_EXTENSIONS, AudioFile, Playlist, PlaylistScanner
from .supervisor import LifecycleState, MusicSupervisor, SupervisorStatus

__all__ = [
    'AudioFile',
    'ConfigStore',
    'ControllerState',
    'LifecycleState',
    'MusicConfig',
    'MusicSupervisor',
    'PLAYER_CATALOG',
    'PlaybackController',
    'PlaybackSession',
    'PlayerBinary',
    'PlayerDetector',
    'Playlist',
    'PlaylistScanner',
    'SUPPORTED_EXTENSIONS',
    'SpawnError',
    'SupervisorStatus',
]
