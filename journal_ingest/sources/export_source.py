"""Journal source over a file in the journal export format.

The file is what ``journalctl -o export`` (or systemd-journal-remote's
export stream) produces: entries separated by an empty line, text fields as
``NAME=value\\n`` and binary fields as ``NAME\\n`` + little-endian u64 length
+ data + ``\\n``. Fields whose name starts with ``__`` are address fields
(cursor, timestamps) and are not part of the entry's data.

New data is detected with a watchdog observer on the file's directory. The
cursor is ``i=<inode>;o=<offset>``, the byte offset where the entry starts.
"""

import logging
import os
import re
import struct
from dataclasses import dataclass
from typing import Iterator

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from journal_ingest.errors import MalformedInputError, SourceError
from journal_ingest.sources.base import CancelSignal, JournalSource, WaitResult, wait_readable

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024
MAX_BINARY_FIELD = 64 * 1024 * 1024
_LENGTH = struct.Struct("<Q")
_CURSOR_RE = re.compile(r"^i=(\d+);o=(\d+)$")


@dataclass
class ExportEntry:
    fields: list[bytes]
    address: dict[str, bytes]
    start: int          # offset of the first field, relative to the parsed buffer
    end: int            # offset just past the terminating empty line

    @property
    def realtime(self) -> int | None:
        raw = self.address.get("__REALTIME_TIMESTAMP")
        if raw is None or not raw.isdigit():
            return None
        return int(raw)


def parse_export_entry(buf: bytes) -> ExportEntry | None:
    """Parse one entry from the start of *buf*.

    Returns None when *buf* does not yet hold a complete entry. Raises
    MalformedInputError for framing that can never become valid.
    """
    i = 0
    while buf[i:i + 1] == b"\n":
        i += 1
    start = i
    fields: list[bytes] = []
    address: dict[str, bytes] = {}
    if i >= len(buf):
        return None

    while True:
        nl = buf.find(b"\n", i)
        if nl < 0:
            return None
        line = buf[i:nl]
        if not line:
            return ExportEntry(fields, address, start, nl + 1)

        if b"=" in line:
            name = line[:line.index(b"=")]
            blob = line
            i = nl + 1
        else:
            name = line
            data_start = nl + 1 + _LENGTH.size
            if len(buf) < data_start:
                return None
            (size,) = _LENGTH.unpack_from(buf, nl + 1)
            if size > MAX_BINARY_FIELD:
                raise MalformedInputError(f"binary field {name[:64]!r} claims {size} bytes")
            data_end = data_start + size
            if len(buf) < data_end + 1:
                return None
            if buf[data_end:data_end + 1] != b"\n":
                raise MalformedInputError(f"binary field {name[:64]!r} is not newline-terminated")
            blob = name + b"=" + buf[data_start:data_end]
            i = data_end + 1

        if name.startswith(b"__"):
            address[name.decode("ascii", errors="replace")] = blob[len(name) + 1:]
        else:
            fields.append(blob)


class _WakeHandler(FileSystemEventHandler):
    """Pokes the source's wake pipe whenever the watched file changes."""

    def __init__(self, path: str, wake_fd: int):
        super().__init__()
        self._path = path
        self._wake_fd = wake_fd

    def _matches(self, event) -> bool:
        if event.is_directory:
            return False
        paths = [event.src_path, getattr(event, "dest_path", "")]
        return any(p and os.path.abspath(os.fsdecode(p)) == self._path for p in paths)

    def on_any_event(self, event):
        if self._matches(event):
            try:
                os.write(self._wake_fd, b"x")
            except (BlockingIOError, OSError):
                pass


class ExportFileSource(JournalSource):
    name = "export"

    def __init__(self, path: str, observer_factory=None):
        self._path = os.path.abspath(path)
        self._observer_factory = observer_factory or Observer
        self._file = None
        self._inode = 0
        self._pos = 0                 # file offset of self._buf[0]
        self._buf = b""
        self._current: ExportEntry | None = None
        self._current_start = 0       # absolute offset of the current entry
        self._observer = None
        self._wake_r = self._wake_w = -1

    # -- lifecycle ---------------------------------------------------------

    def open(self) -> None:
        try:
            self._open_file()
        except OSError as e:
            raise SourceError(f"cannot open export file {self._path}: {e}") from e

        self._wake_r, self._wake_w = os.pipe()
        os.set_blocking(self._wake_r, False)
        os.set_blocking(self._wake_w, False)
        self._observer = self._observer_factory()
        self._observer.schedule(
            _WakeHandler(self._path, self._wake_w), os.path.dirname(self._path), recursive=False,
        )
        self._observer.start()
        logger.info("Opened export file %s (inode=%d)", self._path, self._inode)

    def close(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        if self._file is not None:
            self._file.close()
            self._file = None
        for fd in (self._wake_r, self._wake_w):
            if fd >= 0:
                os.close(fd)
        self._wake_r = self._wake_w = -1

    def _open_file(self) -> None:
        if self._file is not None:
            self._file.close()
        self._file = open(self._path, "rb")
        self._inode = os.fstat(self._file.fileno()).st_ino
        self._reposition(0)

    def _handle(self):
        if self._file is None:
            raise SourceError("export file is not open")
        return self._file

    # -- buffered parsing --------------------------------------------------

    def _reposition(self, offset: int) -> None:
        self._handle().seek(offset)
        self._pos = offset
        self._buf = b""

    def _fill(self) -> bool:
        try:
            chunk = self._handle().read(READ_CHUNK)
        except OSError as e:
            raise SourceError(f"read from {self._path} failed: {e}") from e
        if not chunk:
            return False
        self._buf += chunk
        return True

    def _consume(self, n: int) -> None:
        self._buf = self._buf[n:]
        self._pos += n

    def _next_entry(self) -> tuple[ExportEntry, int] | None:
        """Parse the next complete entry; returns it with its absolute start."""
        while True:
            try:
                entry = parse_export_entry(self._buf)
            except MalformedInputError as e:
                end = self._buf.find(b"\n\n")
                if end < 0:
                    if not self._fill():
                        return None
                    continue
                logger.warning("Skipping malformed export entry at offset %d: %s", self._pos, e)
                self._consume(end + 2)
                continue
            if entry is not None:
                start = self._pos + entry.start
                self._consume(entry.end)
                return entry, start
            if not self._fill():
                return None

    def _check_rotation(self) -> None:
        """Start over if the file was replaced or truncated."""
        try:
            stat = os.stat(self._path)
        except FileNotFoundError:
            return
        if stat.st_ino != self._inode:
            logger.info("Export file replaced (inode changed): %s", self._path)
            self._open_file()
            self._current = None
        elif stat.st_size < self._handle().tell():
            logger.info("Export file truncated: %s", self._path)
            self._reposition(0)
            self._current = None

    def _scan(self) -> Iterator[tuple[int, int]]:
        """Yield (start, end) of every complete entry from the file start."""
        self._reposition(0)
        while True:
            found = self._next_entry()
            if found is None:
                return
            entry, start = found
            yield start, self._pos

    # -- JournalSource -----------------------------------------------------

    def advance(self) -> bool:
        found = self._next_entry()
        if found is None:
            self._check_rotation()
            return False
        self._current, self._current_start = found
        return True

    def _entry(self) -> ExportEntry:
        if self._current is None:
            raise SourceError("no current entry")
        return self._current

    def iterate_fields(self) -> Iterator[bytes]:
        return iter(self._entry().fields)

    def realtime(self) -> int | None:
        return self._entry().realtime

    def get_cursor(self) -> str:
        self._entry()
        return f"i={self._inode};o={self._current_start}"

    def seek_cursor(self, cursor: str) -> None:
        m = _CURSOR_RE.match(cursor.strip())
        if m is None:
            raise SourceError(f"malformed cursor '{cursor}'")
        inode, offset = int(m.group(1)), int(m.group(2))
        if inode != self._inode:
            raise SourceError(f"cursor '{cursor}' belongs to another file (inode {inode})")

        if offset == 1:
            raise SourceError(f"cursor '{cursor}' is not on an entry boundary")
        if offset > 0:
            # Every entry but the first follows the previous entry's empty line.
            self._reposition(offset - 2)
            self._fill()
            if self._buf[:2] != b"\n\n":
                raise SourceError(f"cursor '{cursor}' is not on an entry boundary")
            self._consume(2)
        else:
            self._reposition(0)
        found = self._next_entry()
        if found is None or found[1] != offset:
            raise SourceError(f"cursor '{cursor}' does not resolve to an entry")
        self._reposition(offset)
        self._current = None

    def seek_tail(self) -> None:
        tail = 0
        for _, end in self._scan():
            tail = end
        self._reposition(tail)
        self._current = None

    def step_back(self) -> None:
        anchor = self._current_start if self._current is not None else self._pos
        target = None
        for start, end in self._scan():
            if end > anchor:
                break
            target = (start, end)
        if target is None:
            self._reposition(0)
            self._current = None
            return
        start, end = target
        self._reposition(start)
        self._current, self._current_start = self._next_entry()

    def wait(self, cancel: CancelSignal) -> WaitResult:
        if self._wake_r < 0:
            raise SourceError("export file is not open")
        result = wait_readable(self._wake_r, cancel)
        if result is WaitResult.READY:
            try:
                while os.read(self._wake_r, 4096):
                    pass
            except BlockingIOError:
                pass
        return result
