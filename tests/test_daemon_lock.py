"""Tests for the single-instance lock.

Only one watcher may write to a history database, so the lock must:
1. Prevent two watchers from running simultaneously
2. Clean up the lock file on graceful shutdown
3. Reclaim stale lock files left by a dead process
"""

import os

import pytest

from ipwatcher.daemon_lock import DaemonAlreadyRunningError, DaemonLock
from ipwatcher.errors import IpWatcherError


class TestDaemonLockAcquire:
    """Tests for acquiring the lock."""

    def test_acquire_lock_succeeds_when_no_lock_exists(self, tmp_path):
        lock_file = tmp_path / "ipwatcher.lock"

        lock = DaemonLock(lock_file)
        lock.acquire()

        assert lock.is_held()
        assert lock_file.read_text().strip() == str(os.getpid())

        lock.release()

    def test_acquire_creates_parent_directory(self, tmp_path):
        lock_file = tmp_path / "nested" / "ipwatcher.lock"

        with DaemonLock(lock_file):
            assert lock_file.exists()

    def test_acquire_lock_fails_when_already_held(self, tmp_path):
        lock_file = tmp_path / "ipwatcher.lock"

        lock1 = DaemonLock(lock_file)
        lock1.acquire()

        lock2 = DaemonLock(lock_file)
        with pytest.raises(DaemonAlreadyRunningError) as exc_info:
            lock2.acquire()

        assert "already running" in str(exc_info.value).lower()
        assert isinstance(exc_info.value, IpWatcherError)
        assert not lock2.is_held()

        lock1.release()

    def test_acquire_lock_succeeds_after_release(self, tmp_path):
        lock_file = tmp_path / "ipwatcher.lock"

        lock1 = DaemonLock(lock_file)
        lock1.acquire()
        lock1.release()

        lock2 = DaemonLock(lock_file)
        lock2.acquire()

        assert lock2.is_held()
        lock2.release()

    def test_acquire_twice_is_noop(self, tmp_path):
        lock = DaemonLock(tmp_path / "ipwatcher.lock")
        lock.acquire()
        lock.acquire()

        assert lock.is_held()
        lock.release()

    def test_stale_lock_is_reclaimed(self, tmp_path, monkeypatch):
        lock_file = tmp_path / "ipwatcher.lock"
        lock_file.write_text("999999\n")
        monkeypatch.setattr("ipwatcher.daemon_lock._pid_alive", lambda pid: False)

        with DaemonLock(lock_file) as lock:
            assert lock.is_held()
            assert lock.get_owner_pid() == os.getpid()

    def test_live_foreign_pid_blocks(self, tmp_path, monkeypatch):
        lock_file = tmp_path / "ipwatcher.lock"
        lock_file.write_text("4242\n")
        monkeypatch.setattr("ipwatcher.daemon_lock._pid_alive", lambda pid: True)

        with pytest.raises(DaemonAlreadyRunningError) as exc_info:
            DaemonLock(lock_file).acquire()

        assert exc_info.value.pid == 4242


class TestDaemonLockRelease:
    """Tests for releasing the lock."""

    def test_release_removes_lock_file(self, tmp_path):
        lock_file = tmp_path / "ipwatcher.lock"

        lock = DaemonLock(lock_file)
        lock.acquire()
        lock.release()

        assert not lock_file.exists()
        assert not lock.is_held()

    def test_release_without_acquire_is_safe(self, tmp_path):
        DaemonLock(tmp_path / "ipwatcher.lock").release()

    def test_context_manager_releases_on_error(self, tmp_path):
        lock_file = tmp_path / "ipwatcher.lock"

        with pytest.raises(ValueError):
            with DaemonLock(lock_file):
                raise ValueError("boom")

        assert not lock_file.exists()


class TestGetOwnerPid:
    """Tests for reading the owner PID."""

    def test_no_file(self, tmp_path):
        assert DaemonLock(tmp_path / "missing.lock").get_owner_pid() is None

    def test_garbage_file(self, tmp_path):
        lock_file = tmp_path / "ipwatcher.lock"
        lock_file.write_text("not a pid")

        assert DaemonLock(lock_file).get_owner_pid() is None
