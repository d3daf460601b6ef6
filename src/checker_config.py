"""
checker_config.py

Builds the checker Settings once at startup. Values come from, in order of
precedence: command line flags, VC_ prefixed environment variables, a JSON
config file (--config, or ./config.json when present) and the defaults in
checker_constants.py.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

import argparse
import json
import os
import re
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from checker_constants import (
    CONFIG_PATH,
    DEFAULT_CHECK_INTERVAL,
    DEFAULT_DISTANCE_KILOMETERS,
    DEFAULT_NOTIFICATION_METHOD,
    DEFAULT_NOTIFICATION_TIMEOUT,
    DEFAULT_NOTIFICATION_URL,
    DEFAULT_SEARCH_METHOD,
    DEFAULT_SEARCH_TIMEOUT,
    DEFAULT_SEARCH_URL_PATTERN,
    DEFAULT_TICK_INTERVAL,
    ENV_PREFIX,
    LOGS_PATH,
    METERS_PER_KILOMETER,
)
from checker_errors import ConfigError, ConfigFileError
from checker_logger import getCheckerLogger
from checker_types import Location


logger = getCheckerLogger(__name__)

_SECONDS_RE = re.compile(r"\d+(\.\d+)?")
_DURATION_RE = re.compile(r"(?:\d+(?:\.\d+)?(?:ms|s|m|h))+")
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# Accepts plain seconds or Go style durations such as "500ms", "30s", "1h30m"
def parse_duration(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    text = value.strip()
    if _SECONDS_RE.fullmatch(text):
        return float(text)
    if not _DURATION_RE.fullmatch(text):
        raise ValueError(f"invalid duration {value!r}")
    return sum(
        float(amount) * _DURATION_UNITS[unit]
        for amount, unit in _DURATION_PART_RE.findall(text)
    )


class Settings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    search_url_pattern: str = DEFAULT_SEARCH_URL_PATTERN
    search_method: str = DEFAULT_SEARCH_METHOD
    search_params: List[str] = Field(default_factory=list)
    search_timeout: float = Field(default=DEFAULT_SEARCH_TIMEOUT, gt=0)

    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    # Kilometers
    distance: float = Field(default=DEFAULT_DISTANCE_KILOMETERS, ge=0)
    include_second_dose_only: bool = False

    notification_url: str = DEFAULT_NOTIFICATION_URL
    notification_method: str = DEFAULT_NOTIFICATION_METHOD
    notification_params: List[str] = Field(default_factory=list)
    notification_timeout: float = Field(default=DEFAULT_NOTIFICATION_TIMEOUT, gt=0)

    check_interval: float = Field(default=DEFAULT_CHECK_INTERVAL, gt=0)
    tick_interval: float = Field(default=DEFAULT_TICK_INTERVAL, gt=0)
    silent: bool = False

    log_level: str = "INFO"
    # Empty disables file logging
    log_file: str = LOGS_PATH

    @field_validator(
        "search_timeout",
        "notification_timeout",
        "check_interval",
        "tick_interval",
        mode="before",
    )
    @classmethod
    def _parse_duration(cls, value: Any) -> Any:
        return parse_duration(value)

    @field_validator("search_params", "notification_params", mode="before")
    @classmethod
    def _split_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("search_method", "notification_method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in _LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(_LOG_LEVELS)}")
        return value

    @property
    def location(self) -> Location:
        return Location(longitude=self.longitude, latitude=self.latitude)

    @property
    def distance_meters(self) -> float:
        return self.distance * METERS_PER_KILOMETER


def flag_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="checker",
        description="Polls for vaccine appointments near a location and "
        "notifies when new ones show up.",
    )
    parser.add_argument("--config", help="JSON config file (default ./config.json if present)")
    parser.add_argument("--search-url-pattern", help="%%s pattern for URL to search for appointments")
    parser.add_argument("--search-method", help="HTTP method to hit search-url with")
    parser.add_argument(
        "--search-params", action="append",
        help="params substituted into search-url-pattern, comma separated or repeated",
    )
    parser.add_argument("--search-timeout", help="timeout for the search request, e.g. 20s")
    parser.add_argument("--latitude", type=float, help="latitude of location to check around")
    parser.add_argument("--longitude", type=float, help="longitude of location to check around")
    parser.add_argument("--distance", type=float, help="kilometers from location to check")
    parser.add_argument(
        "--include-second-dose-only", action=argparse.BooleanOptionalAction, default=None,
        help="include sites that are only giving second doses",
    )
    parser.add_argument("--notification-url", help="URL to hit when appointments are found")
    parser.add_argument("--notification-method", help="HTTP method to hit notification-url with")
    parser.add_argument(
        "--notification-params", action="append",
        help="query params (or body params for POST) to send with notification",
    )
    parser.add_argument("--notification-timeout", help="timeout for the notification request, e.g. 10s")
    parser.add_argument("--check-interval", help="how often to check, e.g. 30s")
    parser.add_argument("--tick-interval", help="how often to just give an alive message, e.g. 5m")
    parser.add_argument(
        "--silent", action=argparse.BooleanOptionalAction, default=None,
        help="skip notification",
    )
    parser.add_argument("--log-level", help="stdout log level")
    parser.add_argument("--log-file", help="debug log file, empty to disable")
    return parser


# Returns the flags that were actually given, plus the --config path
def read_flags(argv: Optional[Sequence[str]] = None) -> Tuple[Dict[str, Any], Optional[str]]:
    args = vars(flag_parser().parse_args(argv))
    config_path = args.pop("config")

    values: Dict[str, Any] = {}
    for key, value in args.items():
        if value is None:
            continue
        if key in ("search_params", "notification_params"):
            value = [
                item.strip()
                for chunk in value
                for item in chunk.split(",")
                if item.strip()
            ]
        values[key] = value
    return values, config_path


def read_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name in Settings.model_fields:
        key = ENV_PREFIX + name.upper()
        if key in environ:
            values[name] = environ[key]
    return values


"""
Desc: Reads the JSON config file. A missing default config.json is fine, a
missing file given with --config is not. Keys may use dashes like the flags.
"""
def read_config_file(path: Optional[str] = None) -> Dict[str, Any]:
    explicit = path is not None
    path = path if explicit else CONFIG_PATH
    if not explicit and not os.path.isfile(path):
        logger.debug(f"No {path} found, using flags and environment only")
        return {}

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigFileError(f"Fatal error config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigFileError(
            f"Fatal error config file {path}: expected a JSON object"
        )
    logger.debug(f"Read config file {path}")
    return {key.replace("-", "_"): value for key, value in data.items()}


def _fmt_validation_error(err: Dict[str, Any]) -> str:
    name = ".".join(str(part) for part in err["loc"])
    return f"invalid --{name.replace('_', '-')}: {err['msg']}"


# Everything wrong with the settings, not just the first problem. Checks on
# fields named in skip are left out, those already failed to parse.
def validate_settings(settings: Settings, skip: Set[str] = frozenset()) -> List[str]:
    errors: List[str] = []

    if settings.latitude is None and "latitude" not in skip:
        errors.append("missing --latitude")

    if settings.longitude is None and "longitude" not in skip:
        errors.append("missing --longitude")

    if not skip & {"silent", "notification_url"} and \
            not settings.silent and not settings.notification_url:
        errors.append("missing --notification-url")

    if skip & {"search_url_pattern", "search_params"}:
        return errors
    try:
        settings.search_url_pattern % tuple(settings.search_params)
    except (TypeError, ValueError) as e:
        errors.append(
            f"--search-url-pattern {settings.search_url_pattern!r} does not "
            f"fit --search-params {settings.search_params}: {e}"
        )

    return errors


def build_settings(values: Mapping[str, Any]) -> Settings:
    try:
        settings = Settings.model_validate(dict(values))
    except ValidationError as e:
        errors = [_fmt_validation_error(err) for err in e.errors()]
        # Check whatever did parse so every problem is reported at once
        bad = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
        partial = Settings.model_validate(
            {key: value for key, value in values.items() if key not in bad})
        errors.extend(validate_settings(partial, skip=bad))
        raise ConfigError(errors) from e

    errors = validate_settings(settings)
    if errors:
        raise ConfigError(errors)
    return settings


def load_settings(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    flags, config_path = read_flags(argv)
    if environ is None:
        environ = os.environ

    values: Dict[str, Any] = {}
    values.update(read_config_file(config_path))
    values.update(read_env(environ))
    values.update(flags)

    settings = build_settings(values)
    logger.debug(f"Got the following settings:\n{settings}")
    return settings
