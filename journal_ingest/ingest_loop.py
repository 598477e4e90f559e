"""Ingestion loop: journal source -> field mapper -> rate limiter -> sink.

One loop owns the source, the rate limiter and the checkpoint store. The only
blocking point is the readiness wait, which wakes on new journal data or on
stop().
"""

import logging
from enum import Enum

from journal_ingest.checkpoint import CheckpointStore, ResumeMode, apply_resume_policy
from journal_ingest.config import Config
from journal_ingest.errors import CheckpointError, FatalSourceError, SinkError, SourceError
from journal_ingest.field_mapper import map_entry
from journal_ingest.rate_limiter import RateLimiter
from journal_ingest.sink import Sink
from journal_ingest.sources.base import CancelSignal, JournalSource, WaitResult
from journal_ingest.stats import IngestStats

logger = logging.getLogger(__name__)


class LoopState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class IngestLoop:
    def __init__(self, source: JournalSource, sink: Sink, config: Config,
                 limiter: RateLimiter | None = None,
                 checkpoint: CheckpointStore | None = None,
                 stats: IngestStats | None = None,
                 cancel: CancelSignal | None = None):
        self._source = source
        self._sink = sink
        self._config = config
        self._limiter = limiter
        if checkpoint is None and config.statefile:
            checkpoint = CheckpointStore(config.statefile, config.workdir)
        self._checkpoint = checkpoint
        self._stats = stats or IngestStats()
        self._owns_cancel = cancel is None
        self._cancel = cancel or CancelSignal()
        self._state = LoopState.STARTING
        self._resume_mode: ResumeMode | None = None
        self._since_checkpoint = 0
        self._positioned = False
        self._lost = 0

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def stats(self) -> IngestStats:
        return self._stats

    @property
    def resume_mode(self) -> ResumeMode | None:
        return self._resume_mode

    def stop(self) -> None:
        """Request a cooperative shutdown. Safe from signal handlers and other threads."""
        self._cancel.cancel()

    def run(self) -> None:
        """Ingest until stop() is called or the source fails fatally."""
        self._state = LoopState.STARTING
        try:
            self._source.open()
        except SourceError as e:
            self._state = LoopState.STOPPED
            if self._owns_cancel:
                self._cancel.close()
            logger.error("Cannot open the journal: %s", e)
            raise FatalSourceError(f"cannot open the journal: {e}") from e

        try:
            self._start()
            self._state = LoopState.RUNNING
            logger.info("Ingesting from %s source", self._source.name)
            self._read_loop()
        except FatalSourceError as e:
            logger.error("Fatal journal error, ingestion aborted: %s", e)
            raise
        finally:
            self._state = LoopState.DRAINING
            self._drain()
            self._state = LoopState.STOPPED

    def _start(self) -> None:
        try:
            self._resume_mode = apply_resume_policy(
                self._source, self._checkpoint, self._config.ignore_previous_messages,
            )
        except SourceError as e:
            raise FatalSourceError(f"cannot position the journal: {e}") from e
        # After seek_tail + step_back the source sits on the newest entry.
        self._positioned = self._resume_mode in (ResumeMode.CURSOR, ResumeMode.TAIL)

        if self._limiter is None:
            self._limiter = RateLimiter(self._config.ratelimit_interval, self._config.ratelimit_burst)
        logger.info("Rate limiting: burst %d, interval %d",
                    self._limiter.burst, self._limiter.interval)

    def _read_loop(self) -> None:
        while not self._cancel.is_set():
            try:
                available = self._source.advance()
            except SourceError as e:
                raise FatalSourceError(f"advancing the journal failed: {e}") from e

            if not available:
                try:
                    result = self._source.wait(self._cancel)
                except SourceError as e:
                    raise FatalSourceError(f"waiting for the journal failed: {e}") from e
                if result is WaitResult.INTERRUPTED:
                    logger.debug("Readiness wait interrupted, re-checking termination")
                continue

            self._positioned = True
            self._process_entry()

            if self._checkpoint is not None:
                self._since_checkpoint += 1
                if self._since_checkpoint >= self._config.persist_state_interval:
                    self._since_checkpoint = 0
                    self._persist_state()

    def _process_entry(self) -> None:
        try:
            entry = self._source.entry()
        except SourceError as e:
            self._stats.increment("malformed_entries")
            logger.warning("Skipping unreadable journal entry: %s", e)
            return
        record = map_entry(
            entry,
            self._config.default_severity,
            self._config.default_facility,
            self._source.realtime(),
        )
        self._stats.increment("received")

        if not self._limiter.admit():
            if self._lost == 0:
                logger.warning("Begin to drop messages due to rate-limiting")
            self._lost += 1
            self._stats.increment("dropped")
            return
        self._report_lost()

        try:
            self._sink.submit(record)
        except SinkError as e:
            self._stats.increment("sink_errors")
            logger.error("Sink rejected record from %s: %s", record.tag, e)
            return
        self._stats.increment("forwarded")

    def _report_lost(self) -> None:
        if self._lost:
            logger.warning("%d messages lost due to rate-limiting", self._lost)
            self._lost = 0

    def _persist_state(self) -> None:
        try:
            cursor = self._source.get_cursor()
            self._checkpoint.save(cursor)
        except (SourceError, CheckpointError) as e:
            self._stats.increment("checkpoint_failures")
            logger.error("Failed to persist journal state: %s", e)
            return
        self._stats.increment("checkpoints_saved")

    def _drain(self) -> None:
        self._report_lost()
        if self._checkpoint is not None and self._positioned:
            self._persist_state()
        try:
            self._source.close()
        except (OSError, SourceError) as e:
            logger.error("Error closing the journal: %s", e)
        if self._owns_cancel:
            self._cancel.close()
        logger.info("Ingestion stopped: %s", self._stats.snapshot())
