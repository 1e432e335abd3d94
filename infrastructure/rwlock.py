"""
Reader/writer lock for the in-memory stores.

Readers share the lock; a writer holds it alone. Waiting writers block new
readers so a steady stream of queries cannot starve a mutation.

The lock is not reentrant: a thread that holds the write lock and asks for
it again (read or write) gets a RuntimeError instead of a deadlock.
"""
import threading
from contextlib import contextmanager
from typing import Iterator, Optional


class ReadWriteLock:
    """
    Writer-preferring shared/exclusive lock.

    Usage:
        lock = ReadWriteLock()

        with lock.read_locked():
            ...  # many threads at once

        with lock.write_locked():
            ...  # one thread, no readers
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: Optional[int] = None
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        """Number of threads currently holding the read lock."""
        with self._cond:
            return self._readers

    @property
    def write_locked_now(self) -> bool:
        with self._cond:
            return self._writer is not None

    def acquire_read(self, timeout: Optional[float] = None) -> bool:
        """Acquire the shared lock. Returns False on timeout."""
        with self._cond:
            self._check_not_writer()
            acquired = self._cond.wait_for(
                lambda: self._writer is None and self._waiting_writers == 0,
                timeout=timeout,
            )
            if acquired:
                self._readers += 1
            return acquired

    def release_read(self) -> None:
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError("release_read() called without a read lock")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self, timeout: Optional[float] = None) -> bool:
        """Acquire the exclusive lock. Returns False on timeout."""
        with self._cond:
            self._check_not_writer()
            self._waiting_writers += 1
            try:
                acquired = self._cond.wait_for(
                    lambda: self._writer is None and self._readers == 0,
                    timeout=timeout,
                )
            finally:
                self._waiting_writers -= 1
            if acquired:
                self._writer = threading.get_ident()
            else:
                # Readers blocked behind us may proceed now
                self._cond.notify_all()
            return acquired

    def release_write(self) -> None:
        with self._cond:
            if self._writer != threading.get_ident():
                raise RuntimeError("release_write() called by a thread that does not hold the lock")
            self._writer = None
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    def _check_not_writer(self) -> None:
        if self._writer == threading.get_ident():
            raise RuntimeError("ReadWriteLock is not reentrant; this thread holds the write lock")
