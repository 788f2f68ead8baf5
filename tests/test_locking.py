"""Tests for sprintflow.runner.locking module."""

import os
import threading

import pytest

from sprintflow.runner.locking import (
    LockTimeout,
    is_locked,
    merge_lock,
    sprint_lock,
    sprint_lock_path,
)


def try_in_thread(fn):
    """Run fn on another thread and return the exception it raised, if any."""
    errors = []

    def target():
        try:
            fn()
        except Exception as e:
            errors.append(e)

    thread = threading.Thread(target=target)
    thread.start()
    thread.join()
    return errors[0] if errors else None


class TestSprintLock:
    """Tests for sprint_lock()."""

    def test_held_lock_excludes_other_threads(self, tmp_path):
        def contend():
            with sprint_lock(tmp_path, 1, timeout=0.3):
                pass

        with sprint_lock(tmp_path, 1):
            assert isinstance(try_in_thread(contend), LockTimeout)

    def test_different_sprints_do_not_contend(self, tmp_path):
        def other():
            with sprint_lock(tmp_path, 2, timeout=0.3):
                pass

        with sprint_lock(tmp_path, 1):
            assert try_in_thread(other) is None

    def test_released_on_exit(self, tmp_path):
        with sprint_lock(tmp_path, 1):
            assert is_locked(sprint_lock_path(tmp_path, 1))
        assert not is_locked(sprint_lock_path(tmp_path, 1))

    def test_released_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with sprint_lock(tmp_path, 1):
                raise RuntimeError("phase crashed")
        with sprint_lock(tmp_path, 1, timeout=0.3):
            pass

    def test_is_locked_missing_file(self, tmp_path):
        assert not is_locked(sprint_lock_path(tmp_path, 9))


class TestMergeLock:
    """Tests for merge_lock()."""

    def test_records_pid(self, tmp_path):
        with merge_lock(tmp_path):
            assert (tmp_path / "locks" / "merge.lock").read_text() == f"{os.getpid()}\n"

    def test_serializes_merges(self, tmp_path):
        def contend():
            with merge_lock(tmp_path, timeout=0.3):
                pass

        with merge_lock(tmp_path):
            assert isinstance(try_in_thread(contend), LockTimeout)
