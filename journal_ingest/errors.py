"""Exception hierarchy for the journal ingestion engine.

MalformedInputError is handled where it is detected and never reaches the
loop. SourceError and its fatal subclass abort ingestion. CheckpointError and
SinkError are logged and ingestion continues. ConfigurationError is surfaced
to whoever starts the engine.
"""


class IngestError(Exception):
    """Base exception for all ingestion failures."""


class MalformedInputError(IngestError):
    """A single field or entry could not be read."""


class SourceError(IngestError):
    """The journal source failed an open, seek, advance or wait."""


class FatalSourceError(SourceError):
    """A source failure that ends the ingestion loop."""


class CheckpointError(IngestError):
    """The cursor state file could not be loaded or saved."""


class ConfigurationError(IngestError):
    """Invalid configuration values or resume combination."""


class ResumeError(ConfigurationError):
    """A stored cursor exists but the source refused to seek to it."""


class SinkError(IngestError):
    """The downstream sink rejected a record (transient)."""
