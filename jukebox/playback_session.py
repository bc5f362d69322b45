"""
One spawned player process.

A PlaybackSession owns exactly one child process for one playlist entry. The
child runs in its own process group so termination reaches anything the
player forks, and no orphaned processes remain after terminate().
"""

import logging
import os
import signal
import subprocess
import time
from typing import Callable, Optional

from jukebox.player_detector import PlayerBinary
from jukebox.playlist_scanner import AudioFile

logger = logging.getLogger(__name__)

# Wait after SIGKILL before giving up on reaping
KILL_WAIT_SEC = 1.0


class SpawnError(Exception):
    """The player process could not be started."""


class PlaybackSession:
    """
    A running (or finished) player process and its timing metadata.

    Sessions are created with spawn() and must be torn down with terminate()
    before the next one is spawned. Only the controller thread touches a
    session.
    """

    def __init__(self, file: AudioFile, process: subprocess.Popen, started_at: float) -> None:
        self.file = file
        self.process = process
        self.started_at = started_at
        # start_new_session makes the player its own group leader, so the
        # group id equals its pid and stays valid after the leader is reaped
        self.pgid = process.pid
        self._reaped = False
        self._group_killed = False

    @classmethod
    def spawn(
        cls,
        file: AudioFile,
        player: PlayerBinary,
        volume: float,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> "PlaybackSession":
        """
        Start the player on one file.

        Args:
            file: File to play
            player: Selected player binary
            volume: Volume in [0.0, 1.0] (ignored if the player has no volume flag)
            popen: Process factory (default: subprocess.Popen)

        Returns:
            New PlaybackSession

        Raises:
            SpawnError: If the process could not be started
        """
        argv = player.build_argv(file.absolute_path, volume)
        try:
            # start_new_session puts the player in its own process group and
            # keeps terminal Ctrl-C from reaching it directly
            process = popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnError(f"Failed to start {player.executable_name} for {file.name}: {e}") from e

        logger.info(f"Playing: {file.name} ({player.executable_name} PID={process.pid})")
        return cls(file=file, process=process, started_at=time.monotonic())

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def elapsed_sec(self) -> float:
        return time.monotonic() - self.started_at

    def poll(self) -> Optional[int]:
        """Exit code if the process has exited, else None. Non-blocking."""
        return self.process.poll()

    def is_alive(self) -> bool:
        return self.poll() is None

    def terminate(self, grace_sec: float = 2.0) -> Optional[int]:
        """
        Stop the player and reap it.

        Sends SIGTERM to the process group, waits up to grace_sec, then sends
        SIGKILL. Once the player is reaped, anything it left running in its
        group is killed as well. Idempotent: a player that already exited is
        never sent SIGTERM.

        Args:
            grace_sec: Time allowed for a clean exit after SIGTERM

        Returns:
            The process exit code (None if it could not be reaped)
        """
        if self._reaped:
            return self.process.returncode

        if self.process.poll() is not None:
            self._reaped = True
            logger.debug(f"Player already exited (pid={self.pid}, code={self.process.returncode})")
            self._kill_leftovers()
            return self.process.returncode

        logger.debug(f"Player SIGTERM sent (pid={self.pid})")
        self._signal_group(signal.SIGTERM)
        try:
            self.process.wait(timeout=max(0.0, grace_sec))
        except subprocess.TimeoutExpired:
            logger.warning(f"Player did not exit within {grace_sec:.2f}s, sending SIGKILL (pid={self.pid})")
            self._signal_group(getattr(signal, "SIGKILL", signal.SIGTERM))
            try:
                self.process.wait(timeout=KILL_WAIT_SEC)
            except subprocess.TimeoutExpired:
                logger.error(f"Player did not exit after SIGKILL (pid={self.pid})")
                return None

        self._reaped = True
        logger.debug(f"Player exited (pid={self.pid}, code={self.process.returncode})")
        self._kill_leftovers()
        return self.process.returncode

    def _kill_leftovers(self) -> None:
        """SIGKILL whatever the player left behind in its process group."""
        if self._group_killed or not hasattr(os, "killpg"):
            return
        try:
            os.killpg(self.pgid, signal.SIGKILL)
            logger.debug(f"Killed leftover processes in player group (pgid={self.pgid})")
        except ProcessLookupError:
            # Group is already empty
            pass
        except OSError as e:
            logger.warning(f"Error killing player process group (pgid={self.pgid}): {e}")
        self._group_killed = True

    def _signal_group(self, sig: int) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(self.pgid, sig)
                if sig == getattr(signal, "SIGKILL", None):
                    self._group_killed = True
            elif sig == signal.SIGTERM:
                self.process.terminate()
            else:
                self.process.kill()
        except ProcessLookupError:
            # Exited between poll() and the signal
            pass
        except OSError as e:
            logger.warning(f"Error signalling player process group (pid={self.pid}): {e}")
            self.process.kill()
