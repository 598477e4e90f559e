"""Configuration loading from defaults, an optional YAML file, env vars and CLI args."""

import logging
import os
from dataclasses import dataclass

import yaml

from journal_ingest.errors import ConfigurationError

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
OUTPUT_FORMATS = ("json", "syslog")

SEVERITY_NAMES = {
    "emerg": 0, "panic": 0,
    "alert": 1,
    "crit": 2,
    "err": 3, "error": 3,
    "warning": 4, "warn": 4,
    "notice": 5,
    "info": 6,
    "debug": 7,
}

FACILITY_NAMES = {
    "kern": 0, "user": 1, "mail": 2, "daemon": 3,
    "auth": 4, "security": 4, "syslog": 5, "lpr": 6,
    "news": 7, "uucp": 8, "cron": 9, "authpriv": 10,
    "ftp": 11, "ntp": 12, "audit": 13, "alert": 14, "clock": 15,
    "local0": 16, "local1": 17, "local2": 18, "local3": 19,
    "local4": 20, "local5": 21, "local6": 22, "local7": 23,
}

# YAML key -> (env var, Config field)
_SETTINGS = {
    "statefile": ("IMJOURNAL_STATEFILE", "statefile"),
    "workdir": ("IMJOURNAL_WORKDIR", "workdir"),
    "persiststateinterval": ("IMJOURNAL_PERSIST_STATE_INTERVAL", "persist_state_interval"),
    "ratelimit.interval": ("IMJOURNAL_RATELIMIT_INTERVAL", "ratelimit_interval"),
    "ratelimit.burst": ("IMJOURNAL_RATELIMIT_BURST", "ratelimit_burst"),
    "ignorepreviousmessages": ("IMJOURNAL_IGNORE_PREVIOUS", "ignore_previous_messages"),
    "defaultseverity": ("IMJOURNAL_DEFAULT_SEVERITY", "default_severity"),
    "defaultfacility": ("IMJOURNAL_DEFAULT_FACILITY", "default_facility"),
    "source": ("IMJOURNAL_SOURCE", "source"),
    "output.format": ("IMJOURNAL_OUTPUT_FORMAT", "output_format"),
    "hostname": ("IMJOURNAL_HOSTNAME", "hostname"),
    "log_level": ("IMJOURNAL_LOG_LEVEL", "log_level"),
}


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def _parse_int(value, name: str, minimum: int = 0) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e
    if number < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {number}")
    return number


def parse_severity(value) -> int:
    """Accept 0..7 or a syslog severity name."""
    text = str(value).strip().lower()
    if text.isdigit():
        severity = int(text)
    elif text in SEVERITY_NAMES:
        severity = SEVERITY_NAMES[text]
    else:
        raise ConfigurationError(f"unknown severity {value!r}")
    if not 0 <= severity <= 7:
        raise ConfigurationError(f"severity must be in 0..7, got {severity}")
    return severity


def parse_facility(value) -> int:
    """Accept 0..23 or a syslog facility name such as ``local3``."""
    text = str(value).strip().lower()
    if text.isdigit():
        facility = int(text)
    elif text in FACILITY_NAMES:
        facility = FACILITY_NAMES[text]
    else:
        raise ConfigurationError(f"unknown facility {value!r}")
    if not 0 <= facility <= 23:
        raise ConfigurationError(f"facility must be in 0..23, got {facility}")
    return facility


@dataclass(frozen=True)
class Config:
    statefile: str | None = None
    workdir: str = "."
    persist_state_interval: int = 10
    ratelimit_interval: int = 600
    ratelimit_burst: int = 20000
    ignore_previous_messages: bool = False
    default_severity: int = 5       # notice
    default_facility: int = 1       # user
    source: str = "systemd"
    output_format: str = "json"
    hostname: str | None = None
    log_level: str = "INFO"


def load_yaml_config(path: str | None) -> dict:
    """Load the YAML config file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)
    return data


def _flatten(data: dict, prefix: str = "") -> dict:
    """``{"ratelimit": {"burst": 5}}`` -> ``{"ratelimit.burst": 5}``."""
    flat = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, name + "."))
        else:
            flat[name] = value
    return flat


def _coerce(field_name: str, value):
    if field_name == "persist_state_interval":
        return _parse_int(value, "persiststateinterval", minimum=1)
    if field_name == "ratelimit_interval":
        return _parse_int(value, "ratelimit.interval")
    if field_name == "ratelimit_burst":
        return _parse_int(value, "ratelimit.burst")
    if field_name == "ignore_previous_messages":
        return _parse_bool(value)
    if field_name == "default_severity":
        return parse_severity(value)
    if field_name == "default_facility":
        return parse_facility(value)
    if field_name == "output_format":
        fmt = str(value).strip().lower()
        if fmt not in OUTPUT_FORMATS:
            raise ConfigurationError(f"output.format must be one of {OUTPUT_FORMATS}, got {value!r}")
        return fmt
    if field_name == "log_level":
        level = str(value).strip().upper()
        if level not in LOG_LEVELS:
            raise ConfigurationError(f"log_level must be one of {LOG_LEVELS}, got {value!r}")
        return level
    return str(value)


def load_config(cli_args=None, yaml_data: dict | None = None, environ=None) -> Config:
    """Build Config from defaults <- YAML <- env vars <- CLI args (highest priority)."""
    environ = os.environ if environ is None else environ
    flat_yaml = _flatten(yaml_data or {})
    unknown = set(flat_yaml) - set(_SETTINGS)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))

    kwargs = {}
    for key, (env_var, field_name) in _SETTINGS.items():
        value = flat_yaml.get(key)
        if env_var in environ:
            value = environ[env_var]
        cli_value = getattr(cli_args, field_name, None) if cli_args is not None else None
        if cli_value is not None:
            value = cli_value
        if value is not None:
            kwargs[field_name] = _coerce(field_name, value)

    return Config(**kwargs)
