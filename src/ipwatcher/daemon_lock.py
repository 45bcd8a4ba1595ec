"""Single-instance lock for the watcher process.

The history database must have exactly one writer, so `ipwatcher run`
holds a PID lock file with an fcntl exclusive lock while it runs.
"""

import fcntl
import os
from pathlib import Path

from ipwatcher.errors import IpWatcherError


class DaemonAlreadyRunningError(IpWatcherError):
    """Another watcher already holds the lock."""

    def __init__(self, pid: int | None = None):
        self.pid = pid
        if pid:
            super().__init__(f"ipwatcher already running with PID {pid}")
        else:
            super().__init__("ipwatcher already running")


class DaemonLock:
    """PID lock file held for the lifetime of the watcher.

    A lock file left behind by a dead process is reclaimed.

    Usage:
        with DaemonLock(Path("~/.config/ipwatcher/ipwatcher.lock")):
            run_watcher()
    """

    def __init__(self, lock_file: Path | str):
        self._lock_file = Path(lock_file).expanduser()
        self._fd: int | None = None

    @property
    def path(self) -> Path:
        return self._lock_file

    def is_held(self) -> bool:
        """True if this instance holds the lock."""
        return self._fd is not None

    def acquire(self) -> None:
        """Take the lock and write our PID into the file.

        Raises:
            DaemonAlreadyRunningError: If a live process holds the lock.
        """
        if self._fd is not None:
            return

        owner = self.get_owner_pid()
        if owner is not None and owner != os.getpid() and _pid_alive(owner):
            raise DaemonAlreadyRunningError(owner)

        self._lock_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self._lock_file), os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise DaemonAlreadyRunningError() from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            raise DaemonAlreadyRunningError(self.get_owner_pid())

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        os.fsync(fd)
        self._fd = fd

    def release(self) -> None:
        """Drop the lock and delete the file. Safe to call repeatedly."""
        if self._fd is None:
            return

        fd, self._fd = self._fd, None
        try:
            self._lock_file.unlink()
        except FileNotFoundError:
            pass
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def get_owner_pid(self) -> int | None:
        """PID recorded in the lock file, or None."""
        try:
            return int(self._lock_file.read_text().strip())
        except (OSError, ValueError):
            return None

    def __enter__(self) -> "DaemonLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def _pid_alive(pid: int) -> bool:
    # Signal 0 only checks for existence
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
