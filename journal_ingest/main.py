#!/usr/bin/env python3
"""Entry point for the journal ingest service."""

import argparse
import logging
import signal
import sys

from journal_ingest.config import Config, load_config, load_yaml_config
from journal_ingest.errors import ConfigurationError, FatalSourceError
from journal_ingest.ingest_loop import IngestLoop
from journal_ingest.sink import JsonLinesSink, Sink, SyslogLineSink
from journal_ingest.sources.base import JournalSource
from journal_ingest.sources.export_source import ExportFileSource
from journal_ingest.sources.systemd_source import SystemdJournalSource

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Forward local journal entries as syslog records")
    parser.add_argument("--config", default=None, help="Path to YAML config file")
    parser.add_argument(
        "--source", default=None,
        help="'systemd', 'systemd:<journal dir>' or a journal export file path",
    )
    parser.add_argument("--statefile", default=None, help="Cursor state file")
    parser.add_argument("--workdir", default=None, help="Base directory for a relative state file")
    parser.add_argument(
        "--persist-state-interval", dest="persist_state_interval", type=int, default=None,
        help="Save the cursor every N entries (default: 10)",
    )
    parser.add_argument("--ratelimit-interval", dest="ratelimit_interval", type=int, default=None)
    parser.add_argument("--ratelimit-burst", dest="ratelimit_burst", type=int, default=None)
    parser.add_argument(
        "--ignore-previous", dest="ignore_previous_messages", action="store_true", default=None,
        help="Start at the journal tail when no state file exists",
    )
    parser.add_argument("--default-severity", dest="default_severity", default=None)
    parser.add_argument("--default-facility", dest="default_facility", default=None)
    parser.add_argument("--format", dest="output_format", default=None, choices=("json", "syslog"))
    parser.add_argument("--hostname", default=None)
    parser.add_argument("--log-level", dest="log_level", default=None)
    return parser


def build_source(config: Config) -> JournalSource:
    if config.source == "systemd":
        return SystemdJournalSource()
    if config.source.startswith("systemd:"):
        return SystemdJournalSource(config.source[len("systemd:"):])
    return ExportFileSource(config.source)


def build_sink(config: Config, stream=None) -> Sink:
    stream = stream or sys.stdout
    if config.output_format == "syslog":
        return SyslogLineSink(stream, config.hostname)
    return JsonLinesSink(stream)


def main(argv: list[str] | None = None) -> int:
    args = build_cli_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [IMJOURNAL] %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(args, load_yaml_config(args.config))
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    logging.getLogger().setLevel(config.log_level)
    logger.info("Config: source=%s, statefile=%s, persist every %d entries",
                config.source, config.statefile, config.persist_state_interval)

    sink = build_sink(config)
    loop = IngestLoop(build_source(config), sink, config)

    def _signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        loop.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        loop.run()
    except ConfigurationError as e:
        logger.error("Cannot resume ingestion: %s", e)
        return 2
    except FatalSourceError:
        return 1
    finally:
        sink.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
