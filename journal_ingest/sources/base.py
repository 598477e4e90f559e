"""Journal source contract and the cancellable readiness wait.

A source walks a local append-only journal one entry at a time. Every
operation that fails raises SourceError; the ingestion loop decides whether
that is fatal.
"""

import logging
import os
import selectors
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterator

from journal_ingest.errors import SourceError
from journal_ingest.models import RawEntry

logger = logging.getLogger(__name__)


class WaitResult(Enum):
    READY = "ready"
    CANCELLED = "cancelled"
    INTERRUPTED = "interrupted"


def check_status(rc: int, operation: str) -> int:
    """Treat any non-negative journal return code as success.

    Some journal calls report success as 1 on older systems and 0 on newer
    ones, so only negative (-errno) values are failures.
    """
    if rc < 0:
        raise SourceError(f"{operation} failed: {os.strerror(-rc)}")
    return rc


class CancelSignal:
    """Termination flag that can also wake a blocked readiness wait.

    Backed by a self-pipe so it can be multiplexed with a source's file
    descriptor. ``cancel()`` is safe to call from a signal handler.
    """

    def __init__(self):
        self._event = threading.Event()
        self._closed = False
        self._rfd, self._wfd = os.pipe()
        os.set_blocking(self._rfd, False)
        os.set_blocking(self._wfd, False)

    def cancel(self) -> None:
        self._event.set()
        if self._closed:
            return
        try:
            os.write(self._wfd, b"x")
        except (BlockingIOError, OSError):
            # Pipe already full or closed; the flag alone is enough.
            pass

    def is_set(self) -> bool:
        return self._event.is_set()

    def fileno(self) -> int:
        return self._rfd

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for fd in (self._rfd, self._wfd):
            try:
                os.close(fd)
            except OSError:
                pass


def wait_readable(fd: int, cancel: CancelSignal) -> WaitResult:
    """Block until *fd* is readable or *cancel* fires. No timeout."""
    if cancel.is_set():
        return WaitResult.CANCELLED
    with selectors.DefaultSelector() as selector:
        selector.register(fd, selectors.EVENT_READ)
        selector.register(cancel.fileno(), selectors.EVENT_READ)
        # select() retries EINTR itself (PEP 475); stop() wakes it through the
        # cancel pipe, so INTERRUPTED is rarely returned.
        try:
            selector.select()
        except InterruptedError:
            return WaitResult.INTERRUPTED
        except OSError as e:
            raise SourceError(f"poll() failed: {e}") from e
    if cancel.is_set():
        return WaitResult.CANCELLED
    return WaitResult.READY


class JournalSource(ABC):
    """A local structured log store read through a movable cursor."""

    name = "journal"

    @abstractmethod
    def open(self) -> None:
        """Acquire the underlying handle. Raises SourceError."""

    @abstractmethod
    def close(self) -> None:
        """Release the handle. Safe to call more than once."""

    @abstractmethod
    def advance(self) -> bool:
        """Move to the next entry. False when no entry is available yet."""

    @abstractmethod
    def iterate_fields(self) -> Iterator[bytes]:
        """Yield every ``NAME=value`` blob of the current entry."""

    @abstractmethod
    def realtime(self) -> int | None:
        """Wall-clock time of the current entry in microseconds, if known."""

    @abstractmethod
    def get_cursor(self) -> str:
        """Opaque token for the current entry."""

    @abstractmethod
    def seek_cursor(self, cursor: str) -> None:
        """Position so that the next advance() returns the cursor's entry."""

    @abstractmethod
    def seek_tail(self) -> None:
        """Position after the newest entry."""

    @abstractmethod
    def step_back(self) -> None:
        """Move back one entry from the current position."""

    @abstractmethod
    def wait(self, cancel: CancelSignal) -> WaitResult:
        """Block until new entries may be available or *cancel* fires."""

    def get_field(self, name: str) -> bytes | None:
        """Return the first ``NAME=value`` blob for *name* in the current entry."""
        return self.entry().get(name)

    def entry(self) -> RawEntry:
        """Snapshot of the current entry's fields."""
        return RawEntry(list(self.iterate_fields()))
