"""
Advisory lock on the package database.

The lock is a flock() on a file next to the database, so it serializes
transactions across processes, not just threads. Acquisition never
waits: a held lock is reported immediately.
"""

import errno
import fcntl
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class DatabaseLock:
    """Manages the package database lock file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock_fd = None
        self.locked = False

    def acquire(self) -> int:
        """Try to take the lock.

        Returns:
            0 on success, an errno value otherwise (EAGAIN when another
            process holds it)
        """
        if self.locked:
            return errno.EDEADLK

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.lock_fd = open(self.path, 'a+')
        except OSError as e:
            logger.error(f"Cannot open lock file {self.path}: {e}")
            return e.errno or errno.EIO

        try:
            fcntl.flock(self.lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            holder = self.holder_pid()
            if holder:
                logger.info(f"Package database locked by PID {holder}")
            self.lock_fd.close()
            self.lock_fd = None
            if e.errno in (errno.EWOULDBLOCK, errno.EAGAIN):
                return errno.EAGAIN
            return e.errno or errno.EIO

        # Got the lock - write our PID
        self.lock_fd.seek(0)
        self.lock_fd.truncate(0)
        self.lock_fd.write(str(os.getpid()))
        self.lock_fd.flush()
        self.locked = True
        return 0

    def release(self):
        """Release the lock. Safe to call when not held."""
        if self.lock_fd is None:
            return
        try:
            if self.locked:
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
        finally:
            self.lock_fd.close()
            self.lock_fd = None
            self.locked = False

    def holder_pid(self) -> Optional[int]:
        """PID written by the current holder, if readable."""
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def __enter__(self):
        code = self.acquire()
        if code != 0:
            raise OSError(code, os.strerror(code), str(self.path))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
