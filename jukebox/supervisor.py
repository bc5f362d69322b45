"""
Background music supervisor.

MusicSupervisor is the only object a host program deals with. It owns the
controller's background thread and guarantees that stop() leaves neither the
thread nor a player process behind.

Example:
    ```python
    from jukebox import MusicConfig, MusicSupervisor

    with MusicSupervisor("web/music", MusicConfig(volume=0.3)) as music:
        serve_forever()
    ```
"""

from __future__ import annotations

import enum
import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from jukebox.config_store import ConfigStore, MusicConfig
from jukebox.controller import (
    DEFAULT_MAX_TERMINATION_GRACE_SEC,
    DEFAULT_POLL_INTERVAL_MS,
    ControllerState,
    PlaybackController,
    SessionFactory,
)
from jukebox.playback_session import KILL_WAIT_SEC, PlaybackSession
from jukebox.player_detector import PlayerBinary, PlayerDetector
from jukebox.playlist_scanner import Playlist, PlaylistScanner

logger = logging.getLogger(__name__)

# Extra time allowed for the controller thread to exit after its session is gone
JOIN_MARGIN_SEC = 2.0


class LifecycleState(enum.Enum):
    """Supervisor lifecycle. Transitions are one-way; STOPPED is terminal."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SupervisorStatus:
    """Read-only snapshot of the supervisor and its controller."""
    lifecycle: LifecycleState
    controller_state: Optional[ControllerState]
    player: Optional[str]
    playlist_size: int
    current_track: Optional[str]
    tracks_started: int
    spawn_failures: int
    unexpected_exits: int


class MusicSupervisor:
    """
    Plays a directory of audio files on a loop for the lifetime of a host.

    Nothing here raises into the host: detection and scanning failures leave
    the controller dormant, playback failures are skipped, and stop() always
    returns within a bounded time.
    """

    def __init__(
        self,
        directory: Union[str, os.PathLike],
        initial_config: Optional[MusicConfig] = None,
        *,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_termination_grace_sec: float = DEFAULT_MAX_TERMINATION_GRACE_SEC,
        detector: Optional[PlayerDetector] = None,
        scanner: Optional[PlaylistScanner] = None,
        session_factory: SessionFactory = PlaybackSession.spawn,
    ) -> None:
        """
        Create a supervisor. Performs no I/O and spawns nothing.

        Args:
            directory: Music directory to scan on start()
            initial_config: Initial playback config (default: MusicConfig())
            poll_interval_ms: Stop-signal check granularity (1..100ms)
            max_termination_grace_sec: Upper bound on the stop-time fade window
            detector: Player detector (default: PlayerDetector())
            scanner: Playlist scanner (default: PlaylistScanner())
            session_factory: Creates player sessions (default: PlaybackSession.spawn)
        """
        self.directory = os.fspath(directory)
        self._config_store = ConfigStore(initial_config)
        self._poll_interval_ms = poll_interval_ms
        self._max_termination_grace_sec = max_termination_grace_sec
        self._detector = detector or PlayerDetector()
        self._scanner = scanner or PlaylistScanner()
        self._session_factory = session_factory

        self._lifecycle = LifecycleState.NOT_STARTED
        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()

        self._player: Optional[PlayerBinary] = None
        self._playlist: Optional[Playlist] = None
        self._controller: Optional[PlaybackController] = None
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> "MusicSupervisor":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def lifecycle_state(self) -> LifecycleState:
        with self._lifecycle_lock:
            return self._lifecycle

    @property
    def controller_state(self) -> Optional[ControllerState]:
        controller = self._controller
        return controller.state if controller is not None else None

    @property
    def player(self) -> Optional[PlayerBinary]:
        return self._player

    @property
    def playlist(self) -> Optional[Playlist]:
        return self._playlist

    def start(self) -> None:
        """
        Detect a player, scan the directory and start the background loop.

        Always succeeds. If no player is found or the playlist is empty the
        controller goes dormant. Calling start() on a running or stopped
        supervisor does nothing; a stopped supervisor cannot be restarted.
        """
        with self._lifecycle_lock:
            if self._lifecycle != LifecycleState.NOT_STARTED:
                logger.warning(f"Ignoring start() on music supervisor in state: {self._lifecycle.value}")
                return

            try:
                self._player = self._detector.detect()
            except Exception as e:
                logger.error(f"Audio player detection failed: {e}", exc_info=True)
                self._player = None
            if self._player is None:
                logger.warning("No supported audio player found on PATH; background music disabled")

            try:
                self._playlist = self._scanner.scan(self.directory)
            except Exception as e:
                logger.error(f"Scanning {self.directory} failed: {e}", exc_info=True)
                self._playlist = Playlist(directory=self.directory, warning=str(e))

            self._controller = PlaybackController(
                playlist=self._playlist,
                player=self._player,
                config_store=self._config_store,
                stop_event=self._stop_event,
                poll_interval_ms=self._poll_interval_ms,
                max_termination_grace_sec=self._max_termination_grace_sec,
                session_factory=self._session_factory,
            )
            self._thread = threading.Thread(
                target=self._controller.run,
                daemon=True,
                name="JukeboxController",
            )
            try:
                self._thread.start()
            except RuntimeError as e:
                logger.error(f"Could not start background music thread: {e}")
                self._thread = None

            self._lifecycle = LifecycleState.RUNNING
            logger.info(f"Music supervisor started ({len(self._playlist)} track(s) in {self.directory})")

    def stop(self) -> None:
        """
        Stop playback and wait for the background thread to exit.

        Idempotent. Before start() this is a no-op, and a call made while
        another stop() is in progress returns at once. Blocks for at most the
        stop-time fade window plus a small margin.
        """
        with self._lifecycle_lock:
            if self._lifecycle != LifecycleState.RUNNING or self._stop_event.is_set():
                logger.debug(f"Ignoring stop() on music supervisor in state: {self._lifecycle.value}")
                return

            logger.info("Stopping music supervisor...")
            self._stop_event.set()
            thread = self._thread
            self._thread = None

        # Join outside lock so status() stays responsive during shutdown
        if thread is not None and thread.is_alive():
            join_timeout = self._max_termination_grace_sec + KILL_WAIT_SEC + JOIN_MARGIN_SEC
            thread.join(timeout=join_timeout)
            if thread.is_alive():
                logger.error(f"Background music thread did not exit within {join_timeout:.1f}s")

        with self._lifecycle_lock:
            self._lifecycle = LifecycleState.STOPPED
        logger.info("Music supervisor stopped")

    def update_config(
        self,
        config: Union[MusicConfig, Mapping[str, Any], None] = None,
        **changes: Any,
    ) -> MusicConfig:
        """
        Replace the playback config. Callable at any lifecycle stage.

        Takes effect for playback at the next track or delay boundary; the
        playing track is not affected.

        Args:
            config: Full replacement MusicConfig, or a mapping of field
                    overrides (e.g. {"volume": 0.8})
            **changes: Individual field overrides (e.g. volume=0.8)

        Returns:
            The config actually stored (volume clamped, durations normalized).
            On invalid input the stored config is left unchanged and returned.
        """
        if isinstance(config, Mapping):
            changes = {**config, **changes}
            config = None
        try:
            return self._config_store.update(config, **changes)
        except (TypeError, ValueError, OverflowError) as e:
            logger.error(f"Rejected music config update {changes or config}: {e}")
            return self._config_store.get()

    def get_config(self) -> MusicConfig:
        return self._config_store.get()

    def status(self) -> SupervisorStatus:
        controller = self._controller
        stats = controller.stats() if controller is not None else None
        return SupervisorStatus(
            lifecycle=self.lifecycle_state,
            controller_state=stats.state if stats else None,
            player=self._player.executable_name if self._player else None,
            playlist_size=len(self._playlist) if self._playlist is not None else 0,
            current_track=stats.current_track if stats else None,
            tracks_started=stats.tracks_started if stats else 0,
            spawn_failures=stats.spawn_failures if stats else 0,
            unexpected_exits=stats.unexpected_exits if stats else 0,
        )
