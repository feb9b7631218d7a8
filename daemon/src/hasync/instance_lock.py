"""Single-instance guard for the daemon.

The realtime connection registry and the session sweeper live in one
process. A second daemon pointed at the same database would split the
registry and race the sweeper, so startup takes an exclusive fcntl lock
on a PID file next to the database.
"""

import fcntl
import os
from pathlib import Path


class InstanceAlreadyRunningError(Exception):
    """Another daemon already holds the lock."""

    def __init__(self, pid: int | None = None):
        self.pid = pid
        if pid:
            super().__init__(f"hasync daemon already running with PID {pid}")
        else:
            super().__init__("hasync daemon already running")


def lock_path_for(database_file: str | Path) -> Path:
    """Lock file path that belongs to a database file."""
    db_path = Path(database_file).expanduser()
    return db_path.with_name(db_path.name + ".lock")


class InstanceLock:
    """Exclusive PID-file lock.

    Usage:
        with InstanceLock(lock_path_for(config.database_file)):
            run_daemon()
    """

    def __init__(self, lock_file: Path):
        self._lock_file = Path(lock_file).expanduser()
        self._fd: int | None = None

    @property
    def is_held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """Take the lock and record our PID.

        Raises:
            InstanceAlreadyRunningError: If another process holds it.
        """
        if self._fd is not None:
            return

        self._lock_file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self._lock_file), os.O_RDWR | os.O_CREAT, 0o600)

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            raise InstanceAlreadyRunningError(self.owner_pid())

        # A leftover file from a crashed process is simply overwritten
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        os.fsync(fd)
        self._fd = fd

    def release(self) -> None:
        """Drop the lock and remove the file. Safe to call twice."""
        if self._fd is None:
            return
        try:
            self._lock_file.unlink()
        except FileNotFoundError:
            pass
        fcntl.flock(self._fd, fcntl.LOCK_UN)
        os.close(self._fd)
        self._fd = None

    def owner_pid(self) -> int | None:
        """PID recorded in the lock file, if any."""
        try:
            return int(self._lock_file.read_text().strip())
        except (OSError, ValueError):
            return None

    def __enter__(self) -> "InstanceLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
