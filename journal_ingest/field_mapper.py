"""Maps raw journal fields to a NormalizedRecord.

Total over any input: malformed fields are logged and skipped, out-of-range
priority and facility values fall back to the configured defaults.
"""

import logging

from journal_ingest.models import NormalizedRecord, RawEntry

logger = logging.getLogger(__name__)

DEFAULT_IDENTIFIER = "journal"

# Well-known trusted journal fields and their short names. Matching is on the
# full field name, so "_PIDX" or "_COMMAND" keep their original names.
FIELD_NAME_TABLE = {
    "_PID": "pid",
    "_GID": "gid",
    "_UID": "uid",
    "_EXE": "exe",
    "_COMM": "appname",
    "_CMDLINE": "cmd",
}

# Widths of the encoded blobs, "NAME=" included.
_PRIORITY_WIDTH = len(b"PRIORITY=") + 1
_FACILITY_PREFIX = len(b"SYSLOG_FACILITY=")
_FACILITY_WIDTHS = (_FACILITY_PREFIX + 1, _FACILITY_PREFIX + 2)

_DIGIT_ZERO = ord("0")

# 9999-12-31T23:59:59.999999Z, the last instant datetime can represent.
MAX_REALTIME_USEC = 253_402_300_799_999_999


def sanitize_value(value: bytes) -> bytes:
    """Replace embedded NUL bytes with spaces; nothing else changes."""
    return value.replace(b"\x00", b" ")


def translate_field_name(name: str) -> str:
    """Return the normalized metadata key for a raw journal field name."""
    return FIELD_NAME_TABLE.get(name, name)


def _decode(value: bytes) -> str:
    return value.decode("utf-8", errors="replace")


def _field_value(blob: bytes | None, name: str) -> bytes | None:
    if blob is None:
        return None
    return blob[len(name) + 1:]


def _parse_severity(blob: bytes | None, default: int) -> int:
    if blob is None:
        return default
    if len(blob) != _PRIORITY_WIDTH:
        logger.debug("PRIORITY field has unexpected length %d", len(blob))
        return default
    severity = blob[_PRIORITY_WIDTH - 1] - _DIGIT_ZERO
    if not 0 <= severity <= 7:
        logger.debug("PRIORITY value out of bounds: %d, using default", severity)
        return default
    return severity


def _parse_facility(blob: bytes | None, default: int) -> int:
    if blob is None:
        return default
    if len(blob) not in _FACILITY_WIDTHS:
        logger.debug("SYSLOG_FACILITY field has unexpected length %d", len(blob))
        return default
    facility = blob[_FACILITY_PREFIX] - _DIGIT_ZERO
    if len(blob) == _FACILITY_WIDTHS[1]:
        facility = facility * 10 + (blob[_FACILITY_PREFIX + 1] - _DIGIT_ZERO)
    if not 0 <= facility <= 23:
        logger.debug("SYSLOG_FACILITY value out of bounds: %d, using default", facility)
        return default
    return facility


def build_tag(entry: RawEntry) -> str:
    """Build ``ident[pid]:`` or ``ident:`` from the syslog identifier fields."""
    ident_raw = _field_value(entry.get("SYSLOG_IDENTIFIER"), "SYSLOG_IDENTIFIER")
    ident = _decode(sanitize_value(ident_raw)) if ident_raw is not None else DEFAULT_IDENTIFIER

    pid_raw = _field_value(entry.get("SYSLOG_PID"), "SYSLOG_PID")
    if pid_raw is not None:
        pid = sanitize_value(pid_raw)
        if pid.isdigit():
            return f"{ident}[{pid.decode('ascii')}]:"
        logger.debug("Ignoring non-numeric SYSLOG_PID %r", pid_raw[:32])
    return f"{ident}:"


def build_metadata(entry: RawEntry) -> dict[str, str]:
    """Translate every well-formed field into the metadata mapping."""
    metadata: dict[str, str] = {}
    for blob in entry:
        sep = blob.find(b"=")
        if sep < 0:
            logger.warning("Skipping malformed journal field (has no '='): %r", blob[:64])
            continue
        name = translate_field_name(_decode(blob[:sep]))
        metadata[name] = _decode(sanitize_value(blob[sep + 1:]))
    return metadata


def map_entry(entry: RawEntry, default_severity: int, default_facility: int,
              realtime: int | None = None) -> NormalizedRecord:
    """Normalize one journal entry.

    *realtime* is the entry's wall-clock time in microseconds since the epoch,
    or None to let the sink stamp the receipt time.
    """
    message_raw = _field_value(entry.get("MESSAGE"), "MESSAGE")
    message = _decode(sanitize_value(message_raw)) if message_raw is not None else ""

    timestamp = None
    if realtime is not None:
        if 0 <= realtime <= MAX_REALTIME_USEC:
            timestamp = divmod(realtime, 1_000_000)
        else:
            logger.warning("Ignoring out-of-range realtime timestamp %d", realtime)

    return NormalizedRecord(
        message=message,
        tag=build_tag(entry),
        facility=_parse_facility(entry.get("SYSLOG_FACILITY"), default_facility),
        severity=_parse_severity(entry.get("PRIORITY"), default_severity),
        timestamp=timestamp,
        metadata=build_metadata(entry),
    )
