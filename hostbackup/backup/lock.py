"""
Host-wide run lock.

Only one state-mutating operation (create, restore, prune) may run at a
time. The lock is an advisory fcntl lock on a well-known file, so a crashed
process never leaves a stale lock behind: the kernel drops the lock with the
process and the next run simply re-locks the leftover file.
"""

import os
import fcntl
import signal
import logging
from typing import Optional

from .errors import AlreadyRunning, BackupError


logger = logging.getLogger(__name__)

# Signals converted into SystemExit while the lock is held so that
# context managers unwind and release() runs.
HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def _raise_system_exit(signum, frame):
    raise SystemExit(128 + signum)


class RunLock:
    """
    Exclusive, non-blocking run lock.

    Usage:
        with RunLock('/tmp/backup.lock'):
            ...

    acquire() fails immediately with AlreadyRunning when another process
    holds the lock. release() is idempotent.
    """

    def __init__(self, path: str, handle_signals: bool = True):
        """
        Initialize run lock.

        Args:
            path: Location of the lock file
            handle_signals: Turn SIGTERM/SIGHUP into SystemExit while held
        """
        self.path = path
        self.handle_signals = handle_signals
        self.fd: Optional[int] = None
        self._previous_handlers = {}

    @property
    def held(self) -> bool:
        return self.fd is not None

    def acquire(self) -> 'RunLock':
        """
        Take the lock.

        Returns:
            self

        Raises:
            AlreadyRunning: If another process holds the lock
            BackupError: If the lock file cannot be created
        """
        if self.held:
            raise AlreadyRunning(f"Run lock already held by this process: {self.path}", path=self.path)

        try:
            lock_dir = os.path.dirname(self.path)
            if lock_dir:
                os.makedirs(lock_dir, exist_ok=True)
            fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o644)
        except OSError as e:
            raise BackupError(f"Cannot open run lock {self.path}: {e}", path=self.path) from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            logger.error(f"Lock held: {self.path}")
            raise AlreadyRunning(f"Another backup operation is already running (lock: {self.path})",
                                 path=self.path)

        # The previous holder may have unlinked the file between our open()
        # and flock(); a lock on an orphaned inode excludes nobody.
        try:
            current = os.stat(self.path)
        except FileNotFoundError:
            current = None
        if current is None or current.st_ino != os.fstat(fd).st_ino:
            os.close(fd)
            raise AlreadyRunning(f"Run lock was replaced while acquiring: {self.path}", path=self.path)

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())

        self.fd = fd
        if self.handle_signals:
            self._install_signal_handlers()
        logger.debug(f"Acquired run lock {self.path}")
        return self

    def release(self):
        """Release the lock and remove the marker file. Safe to call twice."""
        if self.fd is None:
            return

        fd, self.fd = self.fd, None
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
            self._restore_signal_handlers()
        logger.debug(f"Released run lock {self.path}")

    def _install_signal_handlers(self):
        for signum in HANDLED_SIGNALS:
            try:
                self._previous_handlers[signum] = signal.signal(signum, _raise_system_exit)
            except ValueError:
                # signal.signal() only works in the main thread
                pass

    def _restore_signal_handlers(self):
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def __repr__(self):
        state = 'held' if self.held else 'free'
        return f'<RunLock {self.path} ({state})>'
