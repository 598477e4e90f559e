import os
import re

import pytest

from journal_ingest.config import Config
from journal_ingest.errors import SinkError, SourceError
from journal_ingest.sink import Sink
from journal_ingest.sources.base import JournalSource, WaitResult, wait_readable

_FAKE_CURSOR_RE = re.compile(r"^s=fake;i=(\d+)$")


def make_entry(*fields: bytes, realtime: int | None = None) -> tuple[list[bytes], int | None]:
    return list(fields), realtime


class FakeJournalSource(JournalSource):
    """In-memory journal. Each entry is (list of NAME=value blobs, realtime usec).

    By default wait() cancels the loop, so run() stops once the entries are
    exhausted. ``on_wait`` may append entries or stop the loop instead, and
    may return a WaitResult to report; ``block=True`` waits on the cancel
    signal only.
    """

    name = "fake"

    def __init__(self, entries=None, fail_open=False, fail_advance_at=None,
                 on_wait=None, block=False):
        self.entries = list(entries or [])
        self.fail_open = fail_open
        self.fail_advance_at = fail_advance_at
        self.on_wait = on_wait
        self.block = block
        self.opened = False
        self.closed = False
        self.calls: list[tuple] = []
        self.waits = 0
        self._next = 0
        self._current = None

    def open(self):
        if self.fail_open:
            raise SourceError("journal not available")
        self.opened = True

    def close(self):
        self.closed = True

    def advance(self):
        if self.fail_advance_at is not None and self._next == self.fail_advance_at:
            raise SourceError("sd_journal_next() failed: Bad message")
        if self._next < len(self.entries):
            self._current = self._next
            self._next += 1
            return True
        return False

    def iterate_fields(self):
        if self._current is None:
            raise SourceError("no current entry")
        return iter(self.entries[self._current][0])

    def realtime(self):
        return self.entries[self._current][1]

    def get_cursor(self):
        if self._current is None:
            raise SourceError("no current entry")
        return f"s=fake;i={self._current}"

    def seek_cursor(self, cursor):
        self.calls.append(("seek_cursor", cursor))
        m = _FAKE_CURSOR_RE.match(cursor)
        if m is None or int(m.group(1)) >= len(self.entries):
            raise SourceError(f"invalid cursor {cursor}")
        self._next = int(m.group(1))
        self._current = None

    def seek_tail(self):
        self.calls.append(("seek_tail",))
        self._next = len(self.entries)
        self._current = None

    def step_back(self):
        self.calls.append(("step_back",))
        if self._next > 0:
            self._current = self._next - 1

    def wait(self, cancel):
        self.waits += 1
        if self.block:
            rfd, wfd = os.pipe()
            try:
                return wait_readable(rfd, cancel)
            finally:
                os.close(rfd)
                os.close(wfd)
        if self.on_wait is not None:
            result = self.on_wait(self)
            if result is not None:
                return result
            return WaitResult.CANCELLED if cancel.is_set() else WaitResult.READY
        cancel.cancel()
        return WaitResult.CANCELLED

    @property
    def position(self):
        return self._next


class ListSink(Sink):
    def __init__(self, fail_on: str | None = None):
        self.records = []
        self.fail_on = fail_on

    def submit(self, record):
        if self.fail_on is not None and record.message == self.fail_on:
            raise SinkError("downstream unavailable")
        self.records.append(record)


@pytest.fixture
def sink():
    return ListSink()


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def numbered_entries():
    return [
        make_entry(f"MESSAGE=msg {i}".encode(), b"SYSLOG_IDENTIFIER=app", realtime=1_700_000_000_000_000 + i)
        for i in range(25)
    ]
