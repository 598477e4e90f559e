"""Journal source backed by the local systemd journal (python-systemd)."""

import logging
from typing import Iterator

from journal_ingest.errors import SourceError
from journal_ingest.sources.base import CancelSignal, JournalSource, WaitResult, check_status, wait_readable

logger = logging.getLogger(__name__)


def _to_blobs(fields: dict) -> Iterator[bytes]:
    """Rebuild ``NAME=value`` blobs from the reader's field dict."""
    for name, value in fields.items():
        key = name.encode("utf-8")
        values = value if isinstance(value, list) else [value]
        for item in values:
            if isinstance(item, str):
                item = item.encode("utf-8")
            yield key + b"=" + item


class SystemdJournalSource(JournalSource):
    """Reads the local journal, optionally from a specific journal directory."""

    name = "systemd"

    def __init__(self, path: str | None = None):
        self._path = path
        self._reader = None

    def open(self) -> None:
        try:
            from systemd import journal
        except ImportError as e:
            raise SourceError(
                "python-systemd is not installed; install the 'systemd' extra"
            ) from e
        try:
            self._reader = journal.Reader(flags=journal.LOCAL_ONLY, path=self._path)
        except OSError as e:
            raise SourceError(f"sd_journal_open() failed: {e}") from e
        logger.info("Opened systemd journal%s", f" at {self._path}" if self._path else "")

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None

    def _handle(self):
        if self._reader is None:
            raise SourceError("journal is not open")
        return self._reader

    def advance(self) -> bool:
        try:
            return bool(self._handle()._next())
        except OSError as e:
            raise SourceError(f"sd_journal_next() failed: {e}") from e

    def iterate_fields(self) -> Iterator[bytes]:
        try:
            fields = self._handle()._get_all()
        except OSError as e:
            raise SourceError(f"reading journal fields failed: {e}") from e
        return _to_blobs(fields)

    def realtime(self) -> int | None:
        try:
            return int(self._handle()._get_realtime())
        except OSError:
            return None

    def get_cursor(self) -> str:
        try:
            return self._handle()._get_cursor()
        except OSError as e:
            raise SourceError(f"sd_journal_get_cursor() failed: {e}") from e

    def seek_cursor(self, cursor: str) -> None:
        try:
            self._handle().seek_cursor(cursor)
        except (OSError, ValueError) as e:
            raise SourceError(f"couldn't seek to cursor '{cursor}': {e}") from e

    def seek_tail(self) -> None:
        try:
            self._handle().seek_tail()
        except OSError as e:
            raise SourceError(f"sd_journal_seek_tail() failed: {e}") from e

    def step_back(self) -> None:
        try:
            self._handle()._previous()
        except OSError as e:
            raise SourceError(f"sd_journal_previous() failed: {e}") from e

    def wait(self, cancel: CancelSignal) -> WaitResult:
        reader = self._handle()
        result = wait_readable(reader.fileno(), cancel)
        if result is WaitResult.READY:
            try:
                check_status(reader.process(), "sd_journal_process()")
            except OSError as e:
                raise SourceError(f"sd_journal_process() failed: {e}") from e
        return result
