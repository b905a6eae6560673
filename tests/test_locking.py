#tests\test_locking.py

"""Test the host-wide lock."""

import threading

import pytest

from deployment_engine.controller.locking import HostLock


class TestHostLock:

    def test_creates_parent_directory(self, tmp_path):
        lock = HostLock(tmp_path / "locks" / "host.lock")
        assert (tmp_path / "locks").is_dir()

        with lock:
            assert lock.lock_path.exists()

    def test_reacquire_after_release(self, tmp_path):
        lock = HostLock(tmp_path / "host.lock")

        lock.acquire()
        lock.release()
        lock.acquire()
        lock.release()

    def test_serializes_threads(self, tmp_path):
        lock = HostLock(tmp_path / "host.lock")
        inside = []
        overlaps = []

        def worker():
            for _ in range(20):
                with lock:
                    inside.append(1)
                    if len(inside) > 1:
                        overlaps.append(1)
                    inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []

    def test_release_after_error_in_block(self, tmp_path):
        lock = HostLock(tmp_path / "host.lock")

        with pytest.raises(RuntimeError):
            with lock:
                raise RuntimeError("fail")

        assert lock.acquire() is None
        lock.release()

    def test_controllers_sharing_path_share_lock(self, tmp_path):
        """Two locks on one path exclude each other through the file lock."""
        first = HostLock(tmp_path / "host.lock")
        second = HostLock(tmp_path / "host.lock")
        acquired = threading.Event()

        def take_second():
            with second:
                acquired.set()

        with first:
            t = threading.Thread(target=take_second)
            t.start()
            assert not acquired.wait(0.2)

        t.join(timeout=5)
        assert acquired.is_set()
