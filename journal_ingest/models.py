"""Record types shared by the mapper, the sources and the sinks."""

from dataclasses import dataclass, field
from datetime import datetime, timezone


class RawEntry:
    """Fields of the journal entry at the current read position.

    Each field is the raw ``NAME=value`` blob as the source enumerates it.
    Values may contain NUL bytes.
    """

    def __init__(self, fields: list[bytes]):
        self._fields = list(fields)

    def __iter__(self):
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def get(self, name: str) -> bytes | None:
        """Return the first blob named *name* (``NAME=`` included), or None."""
        prefix = name.encode("ascii") + b"="
        for blob in self._fields:
            if blob.startswith(prefix):
                return blob
        return None


@dataclass
class NormalizedRecord:
    message: str
    tag: str
    facility: int                         # 0..23
    severity: int                         # 0..7
    timestamp: tuple[int, int] | None = None   # (seconds, microseconds)
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def priority(self) -> int:
        return self.facility * 8 + self.severity

    def to_dict(self) -> dict:
        """JSON-ready representation used by the sinks."""
        if self.timestamp is not None:
            seconds, micros = self.timestamp
            ts = datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=micros)
        else:
            ts = datetime.now(timezone.utc)
        return {
            "timestamp": ts.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "facility": self.facility,
            "severity": self.severity,
            "tag": self.tag,
            "message": self.message,
            "metadata": dict(self.metadata),
        }
