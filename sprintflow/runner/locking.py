"""
Lock management for sprintflow.

Uses flock on files under .sprintflow/locks/. Every acquisition opens its own
file description, so the locks exclude other threads of this process as well
as other processes.
"""

import atexit
import fcntl
import logging
import os
import signal
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2


class LockTimeout(Exception):
    """Lock acquisition timed out."""
    pass


def is_locked(lock_file: Path) -> bool:
    """Check whether someone currently holds lock_file."""
    if not lock_file.exists():
        return False
    with open(lock_file, 'r') as fd:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        fcntl.flock(fd, fcntl.LOCK_UN)
    return False


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Internal helper to acquire a file lock.

    Args:
        lock_file: Path to the lock file
        timeout: Seconds to wait for lock
        lock_name: Human-readable name for error messages
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'a')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start > timeout:
                fd.close()
                raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(POLL_INTERVAL)

    def cleanup():
        if fd.closed:
            return
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as e:
            logger.debug(f"Unlocking {lock_name} failed: {e}")
        fd.close()

    # signal.signal only works from the main thread; worker threads rely on atexit
    on_main = threading.current_thread() is threading.main_thread()
    atexit.register(cleanup)
    if on_main:
        original_sigterm = signal.signal(signal.SIGTERM, lambda *_: sys.exit(1))

    try:
        fd.truncate(0)
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        atexit.unregister(cleanup)
        if on_main:
            signal.signal(signal.SIGTERM, original_sigterm)
        cleanup()


def sprint_lock_path(state_dir: Path, sprint_id: int) -> Path:
    return state_dir / "locks" / "sprints" / f"sprint-{sprint_id}.lock"


@contextmanager
def sprint_lock(state_dir: Path, sprint_id: int, timeout: float = 5):
    """
    Acquire the per-sprint lock, yield, release on exit.

    One sprint never runs two phases at once; different sprints run in parallel.
    """
    with _acquire_lock(sprint_lock_path(state_dir, sprint_id), timeout, f"lock for sprint {sprint_id}"):
        yield


@contextmanager
def merge_lock(state_dir: Path, timeout: float = 600):
    """
    Acquire the mainline lock, yield, release on exit.

    Used for merge operations that touch the mainline branch.
    """
    lock_file = state_dir / "locks" / "merge.lock"
    with _acquire_lock(lock_file, timeout, "merge lock"):
        yield


@contextmanager
def store_lock(state_dir: Path, timeout: float = 30):
    """Serialize read-modify-write cycles on SPRINTS.yml."""
    lock_file = state_dir / "locks" / "store.lock"
    with _acquire_lock(lock_file, timeout, "state file lock"):
        yield
