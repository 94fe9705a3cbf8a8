"""
Cross-platform file locking utilities for svnws.

The state store takes this lock around each read-modify-write of the state
document so individual writes stay atomic when several svnws processes run.
Whole commands are not serialised.
"""

import os
import time
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import psutil

from .config import Config

STALE_LOCK_AGE_SECONDS = 300


def _read_lock_owner(lock_file_path: Path) -> Optional[int]:
    """Return the PID recorded in a lock file, or None if it cannot be parsed."""
    lock_content = lock_file_path.read_text()
    if "locked_by_pid_" not in lock_content:
        return None
    try:
        return int(lock_content.split("locked_by_pid_")[1].split("_")[0])
    except (ValueError, IndexError):
        return None


class FileLock:
    """
    Exclusive lock backed by a lock file created with O_CREAT | O_EXCL.

    A lock left behind by a dead process, or older than five minutes, is
    treated as stale and removed.
    """

    def __init__(self, lock_file_path: Path, timeout: float = 30.0):
        """
        Initialize file lock.

        Args:
            lock_file_path: Path to the lock file
            timeout: Maximum time to wait for lock acquisition (seconds)
        """
        self.lock_file_path = lock_file_path
        self.timeout = timeout
        self.logger = logging.getLogger('svnws.file_lock')
        self._lock_acquired = False

    def acquire(self) -> bool:
        """
        Acquire the file lock.

        Returns:
            True if lock was acquired, False if timeout occurred
        """
        start_time = time.time()
        self.lock_file_path.parent.mkdir(parents=True, exist_ok=True)

        while time.time() - start_time < self.timeout:
            if self._try_create_lock_file():
                self._lock_acquired = True
                self.logger.debug(f"Acquired lock: {self.lock_file_path}")
                return True
            time.sleep(0.1)

        self.logger.warning(f"Failed to acquire lock {self.lock_file_path} within {self.timeout}s")
        return False

    def _try_create_lock_file(self) -> bool:
        try:
            fd = os.open(
                self.lock_file_path,
                os.O_CREAT | os.O_EXCL | os.O_WRONLY,
                0o644
            )
        except FileExistsError:
            return self._check_and_cleanup_stale_lock()

        with os.fdopen(fd, 'w') as f:
            f.write(f"locked_by_pid_{os.getpid()}_thread_{threading.get_ident()}")
        return True

    def _check_and_cleanup_stale_lock(self) -> bool:
        """
        Remove the existing lock file if it is stale.

        Returns False in every case so the caller retries the exclusive
        create; another process may win the race after the cleanup.
        """
        try:
            lock_age = time.time() - self.lock_file_path.stat().st_mtime
            if lock_age > STALE_LOCK_AGE_SECONDS:
                self.logger.warning(f"Cleaning up stale lock file: {self.lock_file_path}")
                self.lock_file_path.unlink()
                return False

            pid = _read_lock_owner(self.lock_file_path)
            if pid is None:
                # Writer may not have flushed yet; only give up on it once it ages out
                return False

            if not psutil.pid_exists(pid):
                self.logger.warning(f"Cleaning up lock from dead process {pid}: {self.lock_file_path}")
                self.lock_file_path.unlink()
        except FileNotFoundError:
            # Released between our create attempt and the check
            pass
        return False

    def release(self) -> bool:
        """
        Release the file lock.

        Returns:
            True if lock was released, False otherwise
        """
        if not self._lock_acquired:
            return True

        try:
            self.lock_file_path.unlink()
            self.logger.debug(f"Released lock: {self.lock_file_path}")
        except FileNotFoundError:
            self.logger.warning(f"Lock file vanished before release: {self.lock_file_path}")
        except OSError as e:
            self.logger.error(f"Error releasing lock {self.lock_file_path}: {e}")
            return False

        self._lock_acquired = False
        return True

    def is_locked(self) -> bool:
        """Check if the lock is currently held by this instance."""
        return self._lock_acquired

    def __enter__(self):
        if not self.acquire():
            raise TimeoutError(f"Could not acquire lock {self.lock_file_path} within {self.timeout}s")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


def state_lock_for(config: Config) -> FileLock:
    """Build the lock guarding the workspace state document."""
    return FileLock(config.lock_dir / f"{config.state_file.name}.lock", config.lock_timeout)


@contextmanager
def state_file_lock(config: Config):
    """
    Context manager holding the state-file lock.

    Raises:
        TimeoutError: If lock cannot be acquired within the configured timeout
    """
    with state_lock_for(config) as lock:
        yield lock


def cleanup_stale_locks(config: Config, max_age_minutes: int = 10) -> int:
    """
    Remove lock files older than ``max_age_minutes`` whose owner is gone.

    Returns:
        Number of stale locks cleaned up
    """
    lock_dir = config.lock_dir
    logger = logging.getLogger('svnws.file_lock')
    if not lock_dir.exists():
        return 0

    cleaned_count = 0
    max_age_seconds = max_age_minutes * 60
    current_time = time.time()

    for lock_file in lock_dir.glob("*.lock"):
        try:
            if current_time - lock_file.stat().st_mtime <= max_age_seconds:
                continue
            pid = _read_lock_owner(lock_file)
            if pid is not None and psutil.pid_exists(pid):
                continue
            lock_file.unlink()
            cleaned_count += 1
            logger.info(f"Cleaned up stale lock file: {lock_file}")
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Error processing lock file {lock_file}: {e}")

    if cleaned_count > 0:
        logger.info(f"Cleaned up {cleaned_count} stale lock files")

    return cleaned_count
