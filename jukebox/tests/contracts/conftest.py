"""
Shared pytest fixtures for contract tests.
"""
import threading

import pytest

from jukebox.config_store import ConfigStore, MusicConfig
from jukebox.playlist_scanner import PlaylistScanner
from jukebox.tests.contracts.test_doubles import make_music_dir

JUKEBOX_ENV_VARS = (
    "JUKEBOX_ENV_FILE",
    "JUKEBOX_MUSIC_DIR",
    "JUKEBOX_FADE_MS",
    "JUKEBOX_DELAY_MS",
    "JUKEBOX_VOLUME",
    "JUKEBOX_POLL_INTERVAL_MS",
    "JUKEBOX_MAX_TERMINATION_GRACE_SEC",
    "JUKEBOX_LOG_LEVEL",
    "JUKEBOX_LOG_FILE",
)


@pytest.fixture
def music_dir(tmp_path):
    """Directory with three playable files and one that must be ignored."""
    return make_music_dir(tmp_path / "music", ["b.mp3", "a.wav", "c.ogg", "notes.txt"])


@pytest.fixture
def playlist(music_dir):
    """Playlist scanned from music_dir: a.wav, b.mp3, c.ogg."""
    return PlaylistScanner().scan(str(music_dir))


@pytest.fixture
def fast_store():
    """ConfigStore with no delay between songs and a short fade."""
    return ConfigStore(MusicConfig(fade_duration_ms=100, delay_between_songs_ms=0, volume=0.5))


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """
    Remove JUKEBOX_* variables for the duration of a test.

    Variables that python-dotenv sets during the test are removed again on
    teardown, because each name is registered with monkeypatch first.
    """
    for name in JUKEBOX_ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    # Keep tests away from a real /etc/jukebox/jukebox.env
    monkeypatch.setenv("JUKEBOX_ENV_FILE", str(tmp_path / "missing.env"))
    return monkeypatch


@pytest.fixture(autouse=False)  # Request explicitly in tests that start threads
def thread_leak_guard():
    """
    Detect thread leaks between tests.

    This ensures shutdown contracts are actually respected across tests.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    after = set(t.ident for t in threading.enumerate())
    leaked = after - before
    if leaked:
        leaked_threads = [t for t in threading.enumerate() if t.ident in leaked]
        thread_info = '\n'.join(f"  - {t.name} (daemon={t.daemon})" for t in leaked_threads)
        assert False, f"Thread leak detected - shutdown incomplete.\nLeaked threads:\n{thread_info}"
