"""
Playback controller: the background playback loop.

The controller runs on the supervisor's background thread and cycles through
a fixed playlist forever:

    SELECTING -> PLAYING -> DELAYING -> SELECTING -> ...

It enters DORMANT when there is nothing it can play, and SHUTTING_DOWN as
soon as the stop event is set. At most one player process is alive at any
instant; the session is always terminated and reaped before the next one is
spawned.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from jukebox.config_store import ConfigStore, MusicConfig
from jukebox.playback_session import PlaybackSession, SpawnError
from jukebox.player_detector import PlayerBinary
from jukebox.playlist_scanner import AudioFile, Playlist

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 50
MAX_POLL_INTERVAL_MS = 100
DEFAULT_MAX_TERMINATION_GRACE_SEC = 2.0

SessionFactory = Callable[[AudioFile, PlayerBinary, float], PlaybackSession]


class ControllerState(enum.Enum):
    """Controller state enumeration."""
    DORMANT = "dormant"
    SELECTING = "selecting"
    PLAYING = "playing"
    DELAYING = "delaying"
    SHUTTING_DOWN = "shutting_down"


@dataclass(frozen=True)
class ControllerStats:
    """Snapshot of controller counters."""
    state: ControllerState
    current_index: Optional[int]
    current_track: Optional[str]
    tracks_started: int
    spawn_failures: int
    unexpected_exits: int


def next_index(current: Optional[int], length: int) -> int:
    """Index of the next track: 0 on first selection, then wraps around."""
    if current is None:
        return 0
    return (current + 1) % length


class PlaybackController:
    """
    State machine that plays a playlist on a loop.

    Config is read from the ConfigStore only at SELECTING (volume, fade) and
    DELAYING (delay), so a playing track keeps the config it started with.
    """

    def __init__(
        self,
        playlist: Playlist,
        player: Optional[PlayerBinary],
        config_store: ConfigStore,
        stop_event: threading.Event,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_termination_grace_sec: float = DEFAULT_MAX_TERMINATION_GRACE_SEC,
        session_factory: SessionFactory = PlaybackSession.spawn,
        on_state_change: Optional[Callable[[ControllerState], None]] = None,
    ) -> None:
        """
        Initialize controller.

        Args:
            playlist: Fixed playlist to cycle through
            player: Selected player, or None if detection failed
            config_store: Shared config store
            stop_event: Cooperative cancellation token set by the supervisor
            poll_interval_ms: Stop-signal check granularity (1..100ms)
            max_termination_grace_sec: Upper bound on the stop-time fade window
            session_factory: Creates a session for (file, player, volume)
            on_state_change: Optional callback, called on the controller thread
        """
        self._playlist = playlist
        self._player = player
        self._config_store = config_store
        self._stop_event = stop_event
        self._poll_interval_sec = min(max(1, int(poll_interval_ms)), MAX_POLL_INTERVAL_MS) / 1000.0
        self._max_termination_grace_sec = max(0.0, max_termination_grace_sec)
        self._session_factory = session_factory
        self._on_state_change = on_state_change

        self._state = ControllerState.SELECTING
        self._stats_lock = threading.Lock()
        self._current_index: Optional[int] = None
        self._current_track: Optional[str] = None
        self._tracks_started = 0
        self._spawn_failures = 0
        self._unexpected_exits = 0
        self._consecutive_spawn_failures = 0

        # Owned by the controller thread only
        self._session: Optional[PlaybackSession] = None
        self._session_config: Optional[MusicConfig] = None

    @property
    def state(self) -> ControllerState:
        with self._stats_lock:
            return self._state

    def stats(self) -> ControllerStats:
        with self._stats_lock:
            return ControllerStats(
                state=self._state,
                current_index=self._current_index,
                current_track=self._current_track,
                tracks_started=self._tracks_started,
                spawn_failures=self._spawn_failures,
                unexpected_exits=self._unexpected_exits,
            )

    def run(self) -> None:
        """
        Thread target. Returns only after the stop event is set and any
        session has been torn down. Never raises.
        """
        try:
            if self._playlist.is_empty or self._player is None:
                self._run_dormant()
            else:
                self._run_loop()
        except Exception as e:
            logger.error(f"Playback controller failed, going dormant: {e}", exc_info=True)
            self._teardown_session(grace_sec=0.0)
            self._run_dormant()
        finally:
            self._teardown_session(grace_sec=self._stop_grace_sec())
            self._set_state(ControllerState.SHUTTING_DOWN)
            logger.info("Playback controller stopped")

    def _run_dormant(self) -> None:
        self._set_state(ControllerState.DORMANT)
        logger.info("Background music dormant (nothing to play)")
        self._stop_event.wait()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self._set_state(ControllerState.SELECTING)
            index = next_index(self._current_index, len(self._playlist))
            config = self._config_store.get()
            track = self._playlist[index]
            with self._stats_lock:
                self._current_index = index
                self._current_track = track.name

            if self._stop_event.is_set():
                break

            if not self._play(track, config):
                # Spawn failed: skip straight to the next file unless the
                # whole playlist has failed in a row
                if self._consecutive_spawn_failures < len(self._playlist):
                    continue
                logger.warning(
                    f"All {len(self._playlist)} file(s) failed to start, "
                    f"waiting before retrying"
                )
                self._consecutive_spawn_failures = 0
                self._delay(minimum_sec=self._poll_interval_sec)
                continue

            if self._stop_event.is_set():
                break
            self._delay()

    def _play(self, track: AudioFile, config: MusicConfig) -> bool:
        """
        Play one track to completion (or until stop).

        Returns:
            False if the player could not be started, True otherwise.
        """
        try:
            session = self._session_factory(track, self._player, config.volume)
        except SpawnError as e:
            logger.warning(str(e))
            with self._stats_lock:
                self._spawn_failures += 1
            self._consecutive_spawn_failures += 1
            return False

        self._session = session
        self._session_config = config
        self._consecutive_spawn_failures = 0
        with self._stats_lock:
            self._tracks_started += 1
        self._set_state(ControllerState.PLAYING)

        while True:
            code = session.poll()
            if code is not None:
                if code != 0:
                    logger.warning(f"Player exited with code {code} while playing {track.name}")
                    with self._stats_lock:
                        self._unexpected_exits += 1
                else:
                    logger.debug(f"Finished playing: {track.name}")
                break
            if self._stop_event.wait(self._poll_interval_sec):
                # Stop requested mid-track; the finally in run() cuts it over
                return True

        self._teardown_session(grace_sec=0.0)
        return True

    def _delay(self, minimum_sec: float = 0.0) -> None:
        self._set_state(ControllerState.DELAYING)
        config = self._config_store.get()
        delay_sec = max(config.delay_between_songs_ms / 1000.0, minimum_sec)
        deadline = time.monotonic() + delay_sec
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            if self._stop_event.wait(min(remaining, self._poll_interval_sec)):
                return

    def _stop_grace_sec(self) -> float:
        """Fade window for a stop-triggered cutover of the playing track."""
        if self._session_config is None:
            return 0.0
        return min(self._session_config.fade_duration_ms / 1000.0, self._max_termination_grace_sec)

    def _teardown_session(self, grace_sec: float) -> None:
        session = self._session
        if session is None:
            return
        self._session = None
        self._session_config = None
        try:
            session.terminate(grace_sec)
        except Exception as e:
            logger.error(f"Error terminating player for {session.file.name}: {e}", exc_info=True)
        with self._stats_lock:
            self._current_track = None

    def _set_state(self, new_state: ControllerState) -> None:
        with self._stats_lock:
            old_state = self._state
            self._state = new_state

        # Notify outside lock
        if old_state != new_state:
            logger.debug(f"Controller state: {old_state.value} -> {new_state.value}")
            if self._on_state_change:
                try:
                    self._on_state_change(new_state)
                except Exception as e:
                    logger.warning(f"State change callback failed: {e}")
