"""Read/write lock guarding one persisted document.

Readers share the lock; a writer holds it alone. Waiting writers block new
readers so a steady stream of refresh-tick reads cannot starve a foreground
save. The lock is not reentrant: code holding it must use the store's private
helpers instead of calling back into its public methods.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ReadWriteLock:
    """Writer-preferring shared/exclusive lock built on :class:`threading.Condition`.

    Examples
    --------
    >>> lock = ReadWriteLock()
    >>> with lock.read_locked():
    ...     with lock.read_locked():
    ...         lock.readers
    2
    >>> with lock.write_locked():
    ...     lock.writing
    True
    """

    def __init__(self) -> None:
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writing(self) -> bool:
        return self._writing

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._condition:
            while self._writing or self._waiting_writers:
                self._condition.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._condition:
                self._readers -= 1
                if not self._readers:
                    self._condition.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._condition:
            self._waiting_writers += 1
            try:
                while self._writing or self._readers:
                    self._condition.wait()
            finally:
                self._waiting_writers -= 1
            self._writing = True
        try:
            yield
        finally:
            with self._condition:
                self._writing = False
                self._condition.notify_all()
