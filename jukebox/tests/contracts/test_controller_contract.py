"""
Contract tests for PlaybackController.

Covers: cyclic selection order, single live session, dormancy, spawn and
exit failure handling, config capture at track boundaries, and bounded
response to the stop signal in every active state.
"""

import threading
import time

import pytest

from jukebox.config_store import ConfigStore, MusicConfig
from jukebox.controller import ControllerState, PlaybackController, next_index
from jukebox.playlist_scanner import Playlist, PlaylistScanner
from jukebox.tests.contracts.test_doubles import (
    ScriptedSessionFactory,
    catalog_player,
    make_music_dir,
    wait_until,
)

PLAYER = catalog_player("mpg123")


def start_controller(controller: PlaybackController) -> threading.Thread:
    thread = threading.Thread(target=controller.run, daemon=True, name="TestController")
    thread.start()
    return thread


def stop_controller(stop_event: threading.Event, thread: threading.Thread, timeout: float = 3.0) -> float:
    """Set the stop event and return how long the thread took to exit."""
    t0 = time.monotonic()
    stop_event.set()
    thread.join(timeout=timeout)
    assert not thread.is_alive(), "Controller thread did not exit"
    return time.monotonic() - t0


class TestSelectionOrder:
    """Files play in playlist order, wrapping forever."""

    @pytest.mark.parametrize("current,length,expected", [
        (None, 3, 0),
        (0, 3, 1),
        (2, 3, 0),
        (0, 1, 0),
    ])
    def test_next_index(self, current, length, expected):
        assert next_index(current, length) == expected

    def test_cycles_over_two_full_passes(self, playlist, fast_store, thread_leak_guard):
        """2N+1 spawns visit a, b, c, a, b, c, a."""
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(run_sec=0.0, stop_after=2 * len(playlist) + 1, stop_event=stop_event)
        controller = PlaybackController(playlist, PLAYER, fast_store, stop_event,
                                        poll_interval_ms=5, session_factory=factory)
        thread = start_controller(controller)
        thread.join(timeout=5.0)
        assert not thread.is_alive()

        assert factory.played == ["a.wav", "b.mp3", "c.ogg", "a.wav", "b.mp3", "c.ogg", "a.wav"]
        assert controller.stats().tracks_started == 7
        assert controller.state == ControllerState.SHUTTING_DOWN

    def test_single_file_repeats(self, tmp_path, fast_store):
        single = PlaylistScanner().scan(str(make_music_dir(tmp_path / "one", ["only.mp3"])))
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(run_sec=0.0, stop_after=3, stop_event=stop_event)
        controller = PlaybackController(single, PLAYER, fast_store, stop_event,
                                        poll_interval_ms=5, session_factory=factory)
        start_controller(controller).join(timeout=5.0)
        assert factory.played == ["only.mp3"] * 3

    def test_never_two_sessions_alive(self, playlist, fast_store):
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(run_sec=0.01)
        live_counts = []

        def on_state_change(state):
            live_counts.append(len(factory.live_sessions()))

        controller = PlaybackController(playlist, PLAYER, fast_store, stop_event, poll_interval_ms=2,
                                        session_factory=factory, on_state_change=on_state_change)
        thread = start_controller(controller)
        assert wait_until(lambda: len(factory.sessions) >= 6)
        stop_controller(stop_event, thread)

        assert max(live_counts) <= 1
        assert factory.live_sessions() == []


class TestDormancy:
    """Nothing to play means no process is ever spawned."""

    def test_empty_playlist(self, tmp_path, fast_store, thread_leak_guard):
        stop_event = threading.Event()
        factory = ScriptedSessionFactory()
        controller = PlaybackController(Playlist(directory=str(tmp_path)), PLAYER, fast_store,
                                        stop_event, session_factory=factory)
        thread = start_controller(controller)
        assert wait_until(lambda: controller.state == ControllerState.DORMANT)

        assert stop_controller(stop_event, thread) < 0.5
        assert factory.attempts == []

    def test_no_player(self, playlist, fast_store):
        stop_event = threading.Event()
        factory = ScriptedSessionFactory()
        controller = PlaybackController(playlist, None, fast_store, stop_event, session_factory=factory)
        thread = start_controller(controller)
        assert wait_until(lambda: controller.state == ControllerState.DORMANT)
        stop_controller(stop_event, thread)
        assert factory.attempts == []

    def test_unexpected_error_goes_dormant(self, playlist, fast_store):
        stop_event = threading.Event()

        def broken_factory(file, player, volume):
            raise RuntimeError("player catalog corrupted")

        controller = PlaybackController(playlist, PLAYER, fast_store, stop_event,
                                        session_factory=broken_factory)
        thread = start_controller(controller)
        assert wait_until(lambda: controller.state == ControllerState.DORMANT)
        stop_controller(stop_event, thread)
        assert controller.state == ControllerState.SHUTTING_DOWN


class TestFailureHandling:
    """Player failures skip to the next file without stopping the loop."""

    def test_spawn_failure_skips_file(self, playlist, fast_store):
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(fail_names={"b.mp3"}, stop_after=3, stop_event=stop_event)
        controller = PlaybackController(playlist, PLAYER, fast_store, stop_event,
                                        poll_interval_ms=5, session_factory=factory)
        start_controller(controller).join(timeout=5.0)

        assert factory.attempts == ["a.wav", "b.mp3", "c.ogg", "a.wav"]
        assert factory.played == ["a.wav", "c.ogg", "a.wav"]
        assert controller.stats().spawn_failures == 1

    def test_all_spawns_failing_waits_before_retrying(self, playlist, fast_store):
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(fail_names={"a.wav", "b.mp3", "c.ogg"})
        states = []
        controller = PlaybackController(playlist, PLAYER, fast_store, stop_event, poll_interval_ms=20,
                                        session_factory=factory, on_state_change=states.append)
        thread = start_controller(controller)
        assert wait_until(lambda: len(factory.attempts) >= 2 * len(playlist))
        stop_controller(stop_event, thread)

        assert ControllerState.DELAYING in states
        assert ControllerState.PLAYING not in states
        assert controller.stats().tracks_started == 0

    def test_nonzero_exit_counted_and_skipped(self, playlist, fast_store):
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(exit_code=1, stop_after=4, stop_event=stop_event)
        controller = PlaybackController(playlist, PLAYER, fast_store, stop_event,
                                        poll_interval_ms=5, session_factory=factory)
        start_controller(controller).join(timeout=5.0)

        assert factory.played == ["a.wav", "b.mp3", "c.ogg", "a.wav"]
        assert controller.stats().unexpected_exits == 4

    def test_state_callback_errors_are_contained(self, playlist, fast_store):
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(stop_after=2, stop_event=stop_event)

        def bad_callback(state):
            raise ValueError("listener bug")

        controller = PlaybackController(playlist, PLAYER, fast_store, stop_event, poll_interval_ms=5,
                                        session_factory=factory, on_state_change=bad_callback)
        start_controller(controller).join(timeout=5.0)
        assert factory.played == ["a.wav", "b.mp3"]


class TestConfigBoundaries:
    """Config is captured when a track starts; updates apply to the next one."""

    def test_volume_change_applies_to_next_track(self, playlist, fast_store):
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(run_sec=None)
        controller = PlaybackController(playlist, PLAYER, fast_store, stop_event,
                                        poll_interval_ms=5, session_factory=factory)
        thread = start_controller(controller)
        try:
            assert wait_until(lambda: len(factory.sessions) == 1)
            fast_store.update(volume=0.9)
            time.sleep(0.05)
            assert factory.volumes == [0.5]

            factory.sessions[0].finish()
            assert wait_until(lambda: len(factory.sessions) == 2)
            assert factory.volumes == [0.5, 0.9]
        finally:
            stop_controller(stop_event, thread)

    def test_delay_read_at_delay_phase(self, playlist):
        store = ConfigStore(MusicConfig(fade_duration_ms=0, delay_between_songs_ms=60000, volume=0.5))
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(run_sec=None)
        controller = PlaybackController(playlist, PLAYER, store, stop_event,
                                        poll_interval_ms=5, session_factory=factory)
        thread = start_controller(controller)
        try:
            assert wait_until(lambda: len(factory.sessions) == 1)
            store.update(delay_between_songs_ms=0)
            factory.sessions[0].finish()
            assert wait_until(lambda: len(factory.sessions) == 2)
        finally:
            stop_controller(stop_event, thread)


class TestStopResponsiveness:
    """The stop signal is observed within one poll interval in every state."""

    def test_stop_during_long_delay(self, playlist):
        store = ConfigStore(MusicConfig(fade_duration_ms=0, delay_between_songs_ms=60000, volume=0.5))
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(run_sec=0.0)
        controller = PlaybackController(playlist, PLAYER, store, stop_event,
                                        poll_interval_ms=10, session_factory=factory)
        thread = start_controller(controller)
        assert wait_until(lambda: controller.state == ControllerState.DELAYING)

        assert stop_controller(stop_event, thread) < 0.5
        assert factory.played == ["a.wav"]

    def test_stop_mid_track_uses_fade_window(self, playlist):
        store = ConfigStore(MusicConfig(fade_duration_ms=300, delay_between_songs_ms=0, volume=0.5))
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(run_sec=None)
        controller = PlaybackController(playlist, PLAYER, store, stop_event,
                                        poll_interval_ms=10, session_factory=factory)
        thread = start_controller(controller)
        assert wait_until(lambda: controller.state == ControllerState.PLAYING)

        stop_controller(stop_event, thread)
        session = factory.sessions[0]
        assert session.terminate_calls == [0.3]
        assert session.signals_sent == 1
        assert controller.stats().current_track is None

    def test_fade_window_is_capped(self, playlist):
        store = ConfigStore(MusicConfig(fade_duration_ms=5000, delay_between_songs_ms=0, volume=0.5))
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(run_sec=None)
        controller = PlaybackController(playlist, PLAYER, store, stop_event, poll_interval_ms=10,
                                        max_termination_grace_sec=0.5, session_factory=factory)
        thread = start_controller(controller)
        assert wait_until(lambda: controller.state == ControllerState.PLAYING)

        stop_controller(stop_event, thread)
        assert factory.sessions[0].terminate_calls == [0.5]

    def test_finished_track_torn_down_once(self, playlist, fast_store):
        stop_event = threading.Event()
        factory = ScriptedSessionFactory(run_sec=0.0, stop_after=3, stop_event=stop_event)
        controller = PlaybackController(playlist, PLAYER, fast_store, stop_event,
                                        poll_interval_ms=5, session_factory=factory)
        start_controller(controller).join(timeout=5.0)

        for session in factory.sessions:
            assert len(session.terminate_calls) == 1
            assert session.signals_sent == 0

    def test_poll_interval_is_bounded(self, playlist, fast_store):
        controller = PlaybackController(playlist, PLAYER, fast_store, threading.Event(), poll_interval_ms=5000)
        assert controller._poll_interval_sec == 0.1
        controller = PlaybackController(playlist, PLAYER, fast_store, threading.Event(), poll_interval_ms=0)
        assert controller._poll_interval_sec == 0.001
