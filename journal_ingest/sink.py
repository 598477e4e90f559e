"""Downstream sinks that receive normalized records.

Submission is one blocking call per record. A sink that cannot take a record
raises SinkError; retry policy, if any, belongs to the sink.

The CLI builds JsonLinesSink or SyslogLineSink from ``output.format``.
QueueSink is for embedding: pass it to IngestLoop and consume the records
from another thread.
"""

import json
import queue
import socket
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from journal_ingest.errors import SinkError
from journal_ingest.models import NormalizedRecord


class Sink(ABC):
    @abstractmethod
    def submit(self, record: NormalizedRecord) -> None:
        """Hand one record downstream. Raises SinkError on a transient failure."""

    def close(self) -> None:
        pass


class _StreamSink(Sink):
    def __init__(self, stream):
        self._stream = stream

    def _write_line(self, line: str) -> None:
        try:
            self._stream.write(line + "\n")
            self._stream.flush()
        except (OSError, ValueError) as e:
            raise SinkError(f"write failed: {e}") from e

    def close(self) -> None:
        try:
            self._stream.flush()
        except (OSError, ValueError):
            pass


class JsonLinesSink(_StreamSink):
    """Writes one JSON object per record (NDJSON)."""

    def submit(self, record: NormalizedRecord) -> None:
        self._write_line(json.dumps(record.to_dict(), ensure_ascii=False))


def format_syslog_line(record: NormalizedRecord, hostname: str) -> str:
    """Render an RFC 3164 style line: ``<PRI>Mmm dd HH:MM:SS host tag msg``."""
    if record.timestamp is not None:
        ts = datetime.fromtimestamp(record.timestamp[0], tz=timezone.utc)
    else:
        ts = datetime.now(timezone.utc)
    time_str = ts.strftime("%b %d %H:%M:%S")
    return f"<{record.priority}>{time_str} {hostname} {record.tag} {record.message}"


class SyslogLineSink(_StreamSink):
    def __init__(self, stream, hostname: str | None = None):
        super().__init__(stream)
        self._hostname = hostname or socket.gethostname()

    def submit(self, record: NormalizedRecord) -> None:
        self._write_line(format_syslog_line(record, self._hostname))


class QueueSink(Sink):
    """Puts records on a queue.Queue; a full queue blocks (backpressure).

    With a *timeout*, a queue that stays full raises SinkError instead.
    """

    def __init__(self, q: queue.Queue, timeout: float | None = None):
        self._queue = q
        self._timeout = timeout

    def submit(self, record: NormalizedRecord) -> None:
        try:
            self._queue.put(record, timeout=self._timeout)
        except queue.Full as e:
            raise SinkError("queue full") from e
