"""Tests for the database lock file"""

import errno
import os

import pytest

from pkengine.core.lock import DatabaseLock


class TestDatabaseLock:

    def test_acquire_release(self, tmp_path):
        lock = DatabaseLock(tmp_path / "sub" / "pkgdb.lock")
        assert lock.acquire() == 0
        assert lock.locked
        assert lock.holder_pid() == os.getpid()
        lock.release()
        assert not lock.locked

    def test_contention(self, tmp_path):
        first = DatabaseLock(tmp_path / "pkgdb.lock")
        second = DatabaseLock(tmp_path / "pkgdb.lock")
        assert first.acquire() == 0
        try:
            assert second.acquire() == errno.EAGAIN
            assert not second.locked
        finally:
            first.release()
        assert second.acquire() == 0
        second.release()

    def test_acquire_twice(self, tmp_path):
        lock = DatabaseLock(tmp_path / "pkgdb.lock")
        assert lock.acquire() == 0
        assert lock.acquire() == errno.EDEADLK
        lock.release()

    def test_release_when_not_held(self, tmp_path):
        lock = DatabaseLock(tmp_path / "pkgdb.lock")
        lock.release()
        assert not lock.locked

    def test_context_manager(self, tmp_path):
        path = tmp_path / "pkgdb.lock"
        with DatabaseLock(path) as lock:
            assert lock.locked
            with pytest.raises(OSError) as exc:
                with DatabaseLock(path):
                    pass
            assert exc.value.errno == errno.EAGAIN
        assert not lock.locked

    def test_unreadable_holder(self, tmp_path):
        path = tmp_path / "pkgdb.lock"
        path.write_text("not a pid")
        assert DatabaseLock(path).holder_pid() is None
