"""Persists the journal cursor so ingestion resumes where it stopped.

The state file holds one line: the cursor token. Writes go to a temp file in
the same directory followed by os.replace, so a failed save leaves the
previous checkpoint in place.
"""

import logging
import os
import tempfile
from enum import Enum

from journal_ingest.errors import CheckpointError, ResumeError, SourceError
from journal_ingest.sources.base import JournalSource

logger = logging.getLogger(__name__)

MAX_CURSOR_LENGTH = 512


class ResumeMode(Enum):
    CURSOR = "cursor"
    TAIL = "tail"
    HEAD = "head"


def resolve_state_path(statefile: str, workdir: str) -> str:
    """Relative state files live under the working directory."""
    if os.path.isabs(statefile):
        return statefile
    return os.path.join(workdir, statefile)


class CheckpointStore:
    def __init__(self, statefile: str, workdir: str = "."):
        self._path = resolve_state_path(statefile, workdir)

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> str | None:
        """Return the stored cursor, or None if no state file exists yet."""
        if not os.path.exists(self._path):
            return None
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                content = f.read(MAX_CURSOR_LENGTH * 4)
        except (OSError, UnicodeDecodeError) as e:
            raise CheckpointError(f"open on state file '{self._path}' failed: {e}") from e

        tokens = content.split()
        if not tokens:
            raise CheckpointError(f"state file '{self._path}' is empty")
        cursor = tokens[0]
        if len(cursor) > MAX_CURSOR_LENGTH:
            raise CheckpointError(f"state file '{self._path}' holds an oversized cursor")
        return cursor

    def save(self, cursor: str) -> None:
        """Replace the state file's content with *cursor*."""
        directory = os.path.dirname(self._path) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=directory, prefix=".cursor-")
        except OSError as e:
            raise CheckpointError(f"cannot write state file '{self._path}': {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(cursor)
            os.replace(tmp, self._path)
        except OSError as e:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise CheckpointError(f"cannot write state file '{self._path}': {e}") from e


def skip_old_messages(source: JournalSource) -> None:
    """Position so the next read returns only entries written from now on."""
    source.seek_tail()
    source.step_back()


def apply_resume_policy(source: JournalSource, store: CheckpointStore | None,
                        ignore_previous: bool) -> ResumeMode:
    """Position *source* according to the stored cursor and configuration.

    A stored cursor wins over ``ignore_previous``. A cursor the source cannot
    seek to raises ResumeError. An unreadable state file is logged and the
    decision falls through to the remaining options.
    """
    if store is not None:
        cursor = None
        try:
            cursor = store.load()
        except CheckpointError as e:
            logger.error("Ignoring unreadable checkpoint: %s", e)

        if cursor is not None:
            try:
                source.seek_cursor(cursor)
                source.advance()
            except SourceError as e:
                raise ResumeError(f"couldn't seek to cursor '{cursor}': {e}") from e
            logger.info("Resuming after cursor from %s", store.path)
            return ResumeMode.CURSOR

    if ignore_previous:
        skip_old_messages(source)
        logger.info("Ignoring previous messages, reading from the journal tail")
        return ResumeMode.TAIL

    logger.info("No checkpoint, reading from the start of the journal")
    return ResumeMode.HEAD
